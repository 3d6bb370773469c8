"""Paginated enumeration of SBOM listing entries."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count, islice
from typing import Any, Callable, Iterator, Mapping

import structlog

from ..errors import TransportError
from .thread_pool import FetchPage, Outcome, WorkerPool
from .transport import Transport

SBOM_PATH = "/v2/sbom"
# Pages handed to the pool per round, as a multiple of the concurrency.
ROUND_FACTOR = 4
_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO8601 timestamp into an aware UTC datetime, or ``None``."""

    if not value:
        return None
    text = value.strip()
    normalized = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    # fromisoformat on 3.10 only takes 3 or 6 fractional digits.
    normalized = _FRACTION.sub(
        lambda match: "." + match.group(1)[:6].ljust(6, "0"), normalized, count=1
    )
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class InventoryRecord:
    """One SBOM listing entry; ``raw`` keeps the opaque payload."""

    id: str
    document_id: str
    published: str | None = None
    name: str | None = None
    size: int | None = None
    ingested: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def published_at(self) -> datetime | None:
        return parse_timestamp(self.published)

    @classmethod
    def from_payload(cls, payload: Any) -> "InventoryRecord | None":
        if not isinstance(payload, Mapping):
            return None
        record_id = payload.get("id")
        document_id = payload.get("document_id")
        if not isinstance(record_id, str) or not record_id:
            return None
        if not isinstance(document_id, str) or not document_id:
            return None
        published = payload.get("published")
        ingested = payload.get("ingested")
        size = payload.get("size")
        name = payload.get("name")
        return cls(
            id=record_id,
            document_id=document_id,
            published=published if isinstance(published, str) else None,
            name=name if isinstance(name, str) else None,
            size=size if isinstance(size, int) else None,
            ingested=ingested if isinstance(ingested, str) else None,
            raw=payload,
        )


@dataclass(frozen=True, slots=True)
class PageResult:
    """Records of one listing page, attributed to its offset."""

    offset: int
    limit: int
    records: tuple[InventoryRecord, ...]
    item_count: int
    total: int | None = None

    @property
    def is_last(self) -> bool:
        if self.item_count < self.limit:
            return True
        if self.total is not None and self.offset + self.item_count >= self.total:
            return True
        return False


class PaginatedReader:
    """Drive offset/limit page fetches through the worker pool."""

    def __init__(
        self,
        transport: Transport,
        pool: WorkerPool,
        *,
        path: str = SBOM_PATH,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.transport = transport
        self.pool = pool
        self.path = path
        self.logger = logger or structlog.get_logger("trustify_cli.reader")
        self.total: int | None = None
        self.failures: list[Outcome[FetchPage]] = []
        self.pages_fetched = 0

    # ------------------------------------------------------------------
    def list_page(
        self,
        limit: int | None = None,
        offset: int | None = None,
        query: str | None = None,
        sort: str | None = None,
    ) -> Any:
        params: dict[str, Any] = {}
        if query is not None:
            params["q"] = query
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        if sort is not None:
            params["sort"] = sort
        return self.transport.get(self.path, params=params or None)

    def fetch_page(self, page: FetchPage) -> PageResult:
        payload = self.list_page(
            limit=page.limit, offset=page.offset, query=page.query, sort=page.sort
        )
        if not isinstance(payload, Mapping) or not isinstance(payload.get("items"), list):
            raise TransportError(f"malformed listing response at offset {page.offset}")
        items = payload["items"]
        records = tuple(
            record
            for record in (InventoryRecord.from_payload(item) for item in items)
            if record is not None
        )
        total = payload.get("total")
        return PageResult(
            offset=page.offset,
            limit=page.limit,
            records=records,
            item_count=len(items),
            total=total if isinstance(total, int) else None,
        )

    def stream(
        self,
        batch_size: int,
        concurrency: int = 4,
        *,
        query: str | None = None,
        sort: str | None = None,
        on_page: Callable[[Outcome[FetchPage]], None] | None = None,
    ) -> Iterator[InventoryRecord]:
        """Yield every listing entry, pages in offset order.

        Offsets are generated here and each one is handed to the pool exactly
        once; pages are reassembled by offset before their records are
        yielded, whatever order the concurrent fetches complete in.
        """

        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.total = None
        self.failures = []
        self.pages_fetched = 0

        # The first page is fetched inline: its total bounds the offsets handed out below.
        first_item = FetchPage(offset=0, limit=batch_size, query=query, sort=sort)
        first = self.fetch_page(first_item)
        self.total = first.total
        self.pages_fetched += 1
        if on_page is not None:
            on_page(Outcome(item=first_item, succeeded=True, result=first))
        self.logger.info(
            "listing_started", total=self.total, batch_size=batch_size, concurrency=concurrency
        )
        yield from first.records
        if first.is_last:
            return

        offsets: Iterator[int]
        if self.total is not None:
            offsets = iter(range(batch_size, self.total, batch_size))
        else:
            offsets = count(batch_size, batch_size)

        round_size = max(1, concurrency) * ROUND_FACTOR
        while True:
            pages = [
                FetchPage(offset=offset, limit=batch_size, query=query, sort=sort)
                for offset in islice(offsets, round_size)
            ]
            if not pages:
                return
            outcomes = self.pool.run(pages, concurrency, self.fetch_page, on_outcome=on_page)
            reached_end = False
            succeeded = 0
            for outcome in sorted(outcomes, key=lambda o: o.item.offset):
                if not outcome.succeeded:
                    self.failures.append(outcome)
                    self.logger.error(
                        "page_failed", offset=outcome.item.offset, error=str(outcome.error)
                    )
                    continue
                succeeded += 1
                self.pages_fetched += 1
                page: PageResult = outcome.result
                yield from page.records
                if page.is_last:
                    reached_end = True
            if reached_end:
                return
            if succeeded == 0 and self.total is None:
                self.logger.error("listing_aborted", reason="every page in round failed")
                return


__all__ = ["InventoryRecord", "PageResult", "PaginatedReader", "SBOM_PATH", "parse_timestamp"]
