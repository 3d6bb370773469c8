"""Bounded-concurrency worker pool driving fetch and delete work items."""

from __future__ import annotations

import queue
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import Event, Lock
from typing import Any, Callable, Generic, Sequence, TypeVar, Union

import structlog

from ..errors import AuthError


@dataclass(frozen=True, slots=True)
class FetchPage:
    """Fetch ``limit`` listing entries starting at ``offset``."""

    offset: int
    limit: int
    query: str | None = None
    sort: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteRecord:
    """Delete one record by id."""

    id: str
    document_id: str | None = None


WorkItem = Union[FetchPage, DeleteRecord]
ItemT = TypeVar("ItemT")


@dataclass(frozen=True, slots=True)
class Outcome(Generic[ItemT]):
    """Final result of one work item."""

    item: ItemT
    succeeded: bool
    result: Any = None
    error: Exception | None = None


class WorkerPool:
    """Fan a queue of items out over exactly ``concurrency`` worker threads.

    Each worker claims the next item from a shared queue, so every item is
    handled by exactly one worker. Handler errors become failed outcomes;
    :class:`AuthError` stops all workers and is re-raised from :meth:`run`.
    """

    def __init__(
        self,
        *,
        thread_name_prefix: str = "trustify",
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.thread_name_prefix = thread_name_prefix
        self.logger = logger or structlog.get_logger("trustify_cli.pool")

    def run(
        self,
        items: Sequence[ItemT],
        concurrency: int,
        handler: Callable[[ItemT], Any],
        on_outcome: Callable[[Outcome[ItemT]], None] | None = None,
    ) -> list[Outcome[ItemT]]:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        items = list(items)
        if not items:
            return []

        pending: queue.SimpleQueue[tuple[int, ItemT]] = queue.SimpleQueue()
        for index, item in enumerate(items):
            pending.put((index, item))

        results: list[Outcome[ItemT] | None] = [None] * len(items)
        stop = Event()
        fatal: list[AuthError] = []
        report_lock = Lock()

        def _worker() -> None:
            while not stop.is_set():
                try:
                    index, item = pending.get_nowait()
                except queue.Empty:
                    return
                try:
                    value = handler(item)
                except AuthError as exc:
                    with report_lock:
                        fatal.append(exc)
                    stop.set()
                    return
                except Exception as exc:  # noqa: BLE001
                    self.logger.warning("item_failed", item=repr(item), error=str(exc))
                    outcome = Outcome(item=item, succeeded=False, error=exc)
                else:
                    outcome = Outcome(item=item, succeeded=True, result=value)
                results[index] = outcome
                if on_outcome is not None:
                    with report_lock:
                        on_outcome(outcome)

        workers = min(concurrency, len(items))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=self.thread_name_prefix
        ) as executor:
            futures = [executor.submit(_worker) for _ in range(workers)]
        for future in futures:
            future.result()

        if fatal:
            raise fatal[0]
        return [outcome for outcome in results if outcome is not None]


__all__ = ["DeleteRecord", "FetchPage", "Outcome", "WorkItem", "WorkerPool"]
