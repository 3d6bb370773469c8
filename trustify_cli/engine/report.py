"""Reading and writing the duplicate report file."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Iterable

from pydantic import TypeAdapter, ValidationError

from ..errors import SerializationError
from .dedup import DuplicateGroup

_GROUPS_ADAPTER = TypeAdapter(list[DuplicateGroup])


def dump_groups(groups: Iterable[DuplicateGroup]) -> str:
    payload = [group.model_dump(mode="json") for group in groups]
    return json.dumps(payload, indent=2, ensure_ascii=False)


def parse_groups(text: str, source: str = "<report>") -> list[DuplicateGroup]:
    try:
        return _GROUPS_ADAPTER.validate_json(text)
    except ValidationError as exc:
        raise SerializationError(f"Failed to parse input file {source}: {exc}") from exc


class DuplicateReport:
    """A duplicate report stored as a JSON list of groups."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def save(self, groups: Iterable[DuplicateGroup]) -> Path:
        text = dump_groups(groups)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Never leave a partial report at ``path``.
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        tmp_path.write_text(text, encoding="utf-8")
        tmp_path.replace(self.path)
        return self.path

    def load(self) -> list[DuplicateGroup]:
        if not self.path.exists():
            raise SerializationError(f"Input file not found: {self.path}")
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SerializationError(f"Failed to open input file {self.path}: {exc}") from exc
        return parse_groups(text, str(self.path))


def unique_path(path: Path) -> Path:
    """Return ``<stem>_<n><suffix>`` for the first n in 1..999 that does not exist."""

    path = Path(path)
    suffix = path.suffix or ".json"
    for index in range(1, 1000):
        candidate = path.with_name(f"{path.stem}_{index}{suffix}")
        if not candidate.exists():
            return candidate
    return path.with_name(f"{path.stem}_{int(time.time())}{suffix}")


__all__ = ["DuplicateReport", "dump_groups", "parse_groups", "unique_path"]
