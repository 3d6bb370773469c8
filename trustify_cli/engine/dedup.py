"""Duplicate detection by ``document_id``."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, NamedTuple

import structlog
from pydantic import BaseModel, ConfigDict

from .reader import InventoryRecord


class PrimaryRef(NamedTuple):
    id: str
    published: str | None


class DuplicateGroup(BaseModel):
    """Records sharing one ``document_id``: the primary kept, the rest to delete."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    published: str | None = None
    id: str
    duplicates: tuple[str, ...] = ()

    @property
    def primary(self) -> PrimaryRef:
        return PrimaryRef(self.id, self.published)


@dataclass(slots=True)
class _GroupState:
    best: InventoryRecord
    best_at: datetime | None
    duplicates: list[str] = field(default_factory=list)
    seen_ids: set[str] = field(default_factory=set)


def _is_newer(candidate: datetime | None, current: datetime | None) -> bool:
    # Absent timestamps sort before any present one.
    if candidate is None:
        return False
    if current is None:
        return True
    return candidate > current


class DuplicateAggregator:
    """Streaming fold of records into duplicate groups.

    The record with the latest ``published`` timestamp becomes the primary.
    Equal or absent timestamps keep the earliest-seen record, so the result
    depends only on the input order.
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._groups: dict[str, _GroupState] = {}
        self.records_seen = 0
        self.repeats = 0
        self.logger = logger or structlog.get_logger("trustify_cli.dedup")

    def add(self, record: InventoryRecord) -> None:
        self.records_seen += 1
        published_at = record.published_at
        state = self._groups.get(record.document_id)
        if state is None:
            self._groups[record.document_id] = _GroupState(
                best=record, best_at=published_at, seen_ids={record.id}
            )
            return
        # Each id is folded at most once per document.
        if record.id in state.seen_ids:
            self.repeats += 1
            self.logger.warning(
                "record_repeated", id=record.id, document_id=record.document_id
            )
            return
        state.seen_ids.add(record.id)
        if _is_newer(published_at, state.best_at):
            state.duplicates.append(state.best.id)
            state.best = record
            state.best_at = published_at
        else:
            state.duplicates.append(record.id)

    def extend(self, records: Iterable[InventoryRecord]) -> "DuplicateAggregator":
        for record in records:
            self.add(record)
        return self

    def groups(self) -> list[DuplicateGroup]:
        return [
            DuplicateGroup(
                document_id=document_id,
                published=state.best.published,
                id=state.best.id,
                duplicates=tuple(state.duplicates),
            )
            for document_id, state in self._groups.items()
            if state.duplicates
        ]


def find_duplicate_groups(records: Iterable[InventoryRecord]) -> list[DuplicateGroup]:
    """Group ``records`` (in the given order) into duplicate sets."""

    return DuplicateAggregator().extend(records).groups()


__all__ = ["DuplicateAggregator", "DuplicateGroup", "PrimaryRef", "find_duplicate_groups"]
