from __future__ import annotations

import threading
import time

import pytest

from trustify_cli.engine import DeleteRecord, WorkerPool
from trustify_cli.errors import AuthError, TransportError


def test_every_item_processed_exactly_once_within_concurrency(pool: WorkerPool) -> None:
    items = [DeleteRecord(id=f"id-{index}") for index in range(100)]
    handled: list[str] = []
    lock = threading.Lock()
    active = 0
    peak = 0

    def handler(item: DeleteRecord) -> str:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.002)
        with lock:
            active -= 1
            handled.append(item.id)
        return item.id.upper()

    outcomes = pool.run(items, 4, handler)

    assert sorted(handled) == sorted(item.id for item in items)
    assert len(handled) == 100
    assert peak <= 4
    assert [outcome.item for outcome in outcomes] == items
    assert all(outcome.succeeded for outcome in outcomes)
    assert outcomes[7].result == "ID-7"


def test_handler_errors_become_failed_outcomes(pool: WorkerPool) -> None:
    def handler(item: DeleteRecord) -> str:
        if item.id == "bad":
            raise TransportError("boom", status=503)
        return "ok"

    items = [DeleteRecord(id="good"), DeleteRecord(id="bad"), DeleteRecord(id="fine")]
    outcomes = pool.run(items, 2, handler)

    assert [outcome.succeeded for outcome in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, TransportError)


def test_auth_error_stops_the_run(pool: WorkerPool) -> None:
    started: list[str] = []

    def handler(item: DeleteRecord) -> None:
        started.append(item.id)
        if item.id == "id-0":
            raise AuthError("token refresh failed")
        time.sleep(0.01)

    items = [DeleteRecord(id=f"id-{index}") for index in range(50)]
    with pytest.raises(AuthError):
        pool.run(items, 1, handler)
    assert started == ["id-0"]


def test_on_outcome_sees_each_result(pool: WorkerPool) -> None:
    seen: list[str] = []
    pool.run(
        [DeleteRecord(id="a"), DeleteRecord(id="b")],
        8,
        lambda item: item.id,
        on_outcome=lambda outcome: seen.append(outcome.result),
    )
    assert sorted(seen) == ["a", "b"]


def test_empty_input_and_invalid_concurrency(pool: WorkerPool) -> None:
    assert pool.run([], 4, lambda item: item) == []
    with pytest.raises(ValueError):
        pool.run([DeleteRecord(id="a")], 0, lambda item: item)
