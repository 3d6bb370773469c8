"""Workflow coordinator wiring reader, aggregator, report and worker pool."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

import structlog

from .engine import (
    DeleteRecord,
    DuplicateAggregator,
    DuplicateGroup,
    DuplicateReport,
    FetchPage,
    Outcome,
    PageResult,
    PaginatedReader,
    Transport,
    WorkerPool,
)
from .engine.reader import SBOM_PATH
from .errors import NotFoundError
from .ui import ProgressReporter

DELETED = "deleted"
NOT_FOUND = "not_found"
DRY_RUN = "dry_run"


@dataclass(slots=True)
class FindSummary:
    groups: list[DuplicateGroup]
    records_seen: int
    pages_failed: int
    total: int | None
    output: Path | None = None

    @property
    def duplicate_count(self) -> int:
        return sum(len(group.duplicates) for group in self.groups)

    @property
    def ok(self) -> bool:
        return self.pages_failed == 0


@dataclass(slots=True)
class DeleteSummary:
    total: int
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: bool = False
    outcomes: list[Outcome[DeleteRecord]] = field(default_factory=list)

    @classmethod
    def from_outcomes(
        cls, outcomes: Sequence[Outcome[DeleteRecord]], dry_run: bool
    ) -> "DeleteSummary":
        summary = cls(total=len(outcomes), dry_run=dry_run, outcomes=list(outcomes))
        for outcome in outcomes:
            if not outcome.succeeded:
                summary.failed += 1
            elif outcome.result == NOT_FOUND:
                summary.skipped += 1
            elif outcome.result == DELETED:
                summary.deleted += 1
        return summary

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def failures(self) -> list[Outcome[DeleteRecord]]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]


class Orchestrator:
    """Central coordinator for the SBOM commands."""

    def __init__(
        self,
        transport: Transport,
        *,
        pool: WorkerPool | None = None,
        reader: PaginatedReader | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.transport = transport
        self.logger = logger or structlog.get_logger("trustify_cli.orchestrator")
        self.pool = pool or WorkerPool(logger=self.logger)
        self.reader = reader or PaginatedReader(transport, self.pool, logger=self.logger)

    def close(self) -> None:
        self.transport.close()

    # ------------------------------------------------------------------
    def get_sbom(self, sbom_id: str) -> Any:
        return self.transport.get(f"{SBOM_PATH}/{sbom_id}")

    def list_sboms(
        self,
        query: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        sort: str | None = None,
    ) -> Any:
        return self.reader.list_page(limit=limit, offset=offset, query=query, sort=sort)

    # ------------------------------------------------------------------
    def find_duplicates(
        self,
        batch_size: int,
        concurrency: int,
        output: Path | None = None,
        progress: ProgressReporter | None = None,
    ) -> FindSummary:
        """Enumerate every SBOM, group duplicates and optionally save the report."""

        aggregator = DuplicateAggregator(logger=self.logger)
        if progress is not None:
            progress.start(None)

        def _on_page(outcome: Outcome[FetchPage]) -> None:
            if progress is None:
                return
            if progress.state is not None and progress.state.total is None and self.reader.total:
                progress.set_total(self.reader.total)
            if outcome.succeeded:
                page: PageResult = outcome.result
                progress.advance(
                    success=True, current=f"offset {page.offset}", amount=len(page.records)
                )
            else:
                progress.advance(failed=True, current=f"offset {outcome.item.offset}", amount=0)

        try:
            aggregator.extend(
                self.reader.stream(batch_size, concurrency, on_page=_on_page)
            )
        finally:
            if progress is not None:
                progress.close()

        groups = aggregator.groups()
        summary = FindSummary(
            groups=groups,
            records_seen=aggregator.records_seen,
            pages_failed=len(self.reader.failures),
            total=self.reader.total,
        )
        self.logger.info(
            "duplicates_found",
            records=summary.records_seen,
            groups=len(groups),
            duplicates=summary.duplicate_count,
            pages_failed=summary.pages_failed,
        )
        if output is not None:
            summary.output = DuplicateReport(output).save(groups)
        return summary

    def delete_duplicates(
        self,
        groups: Iterable[DuplicateGroup],
        concurrency: int,
        dry_run: bool = False,
        progress: ProgressReporter | None = None,
    ) -> DeleteSummary:
        groups = list(groups)
        primaries = {group.id for group in groups}
        items: list[DeleteRecord] = []
        seen: set[str] = set()
        for group in groups:
            for duplicate_id in group.duplicates:
                if duplicate_id in primaries:
                    self.logger.warning(
                        "primary_not_deleted", id=duplicate_id, document_id=group.document_id
                    )
                    continue
                if duplicate_id in seen:
                    self.logger.warning(
                        "duplicate_id_repeated", id=duplicate_id, document_id=group.document_id
                    )
                    continue
                seen.add(duplicate_id)
                items.append(DeleteRecord(id=duplicate_id, document_id=group.document_id))
        return self._run_deletes(items, concurrency, dry_run, progress)

    def delete_by_id(self, sbom_id: str, dry_run: bool = False) -> DeleteSummary:
        return self._run_deletes([DeleteRecord(id=sbom_id)], 1, dry_run, None)

    def delete_by_query(
        self,
        query: str,
        concurrency: int,
        batch_size: int = 100,
        dry_run: bool = False,
        progress: ProgressReporter | None = None,
    ) -> DeleteSummary:
        """Delete every SBOM matching ``query``.

        All matches are enumerated before the first delete so removals do not
        shift the offsets still being listed.
        """

        items = [
            DeleteRecord(id=record.id, document_id=record.document_id)
            for record in self.reader.stream(batch_size, concurrency, query=query)
        ]
        summary = self._run_deletes(items, concurrency, dry_run, progress)
        if self.reader.failures:
            summary.failed += len(self.reader.failures)
        return summary

    # ------------------------------------------------------------------
    def _run_deletes(
        self,
        items: Sequence[DeleteRecord],
        concurrency: int,
        dry_run: bool,
        progress: ProgressReporter | None,
    ) -> DeleteSummary:
        handler = self._dry_run_delete if dry_run else self._delete_record

        def _on_outcome(outcome: Outcome[DeleteRecord]) -> None:
            if progress is None:
                return
            progress.advance(
                success=outcome.succeeded and outcome.result != NOT_FOUND,
                skipped=outcome.result == NOT_FOUND,
                failed=not outcome.succeeded,
                current=outcome.item.id,
            )

        self.logger.info(
            "delete_started", total=len(items), concurrency=concurrency, dry_run=dry_run
        )
        if progress is not None:
            progress.start(len(items))
        try:
            outcomes = self.pool.run(items, concurrency, handler, on_outcome=_on_outcome)
        finally:
            if progress is not None:
                progress.close()
        summary = DeleteSummary.from_outcomes(outcomes, dry_run)
        self.logger.info(
            "delete_finished",
            deleted=summary.deleted,
            skipped=summary.skipped,
            failed=summary.failed,
            total=summary.total,
            dry_run=dry_run,
        )
        return summary

    def _delete_record(self, item: DeleteRecord) -> str:
        try:
            self.transport.delete(f"{SBOM_PATH}/{item.id}")
        except NotFoundError:
            self.logger.debug("delete_not_found", id=item.id, document_id=item.document_id)
            return NOT_FOUND
        return DELETED

    @staticmethod
    def _dry_run_delete(item: DeleteRecord) -> str:
        return DRY_RUN


__all__ = ["DeleteSummary", "FindSummary", "Orchestrator"]
