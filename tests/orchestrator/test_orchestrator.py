from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeInventoryApi, make_record
from trustify_cli.engine import DuplicateGroup
from trustify_cli.errors import AuthError
from trustify_cli.orchestrator import Orchestrator
from trustify_cli.ui import ProgressReporter


def _inventory() -> list[dict]:
    """100 records over 40 documents: documents 0-19 have 4 copies each."""

    records = []
    for index in range(20):
        for copy in range(4):
            records.append(
                make_record(
                    f"dup-{index}-{copy}",
                    f"doc-{index}",
                    f"2024-0{copy + 1}-01T00:00:00Z",
                )
            )
    for index in range(20, 40):
        records.append(make_record(f"solo-{index}", f"doc-{index}", "2024-01-01T00:00:00Z"))
    return records


def test_find_duplicates_writes_report(make_transport, tmp_path: Path) -> None:
    api = FakeInventoryApi(_inventory(), delay=0.002)
    orchestrator = Orchestrator(make_transport(api))
    output = tmp_path / "duplicates.json"
    progress = ProgressReporter(enabled=False)

    summary = orchestrator.find_duplicates(10, 4, output=output, progress=progress)

    assert summary.records_seen == 100
    assert summary.total == 100
    assert len(summary.groups) == 20
    assert summary.duplicate_count == 60
    assert summary.ok
    assert summary.output == output
    assert api.max_in_flight <= 4
    assert progress.summary()["success"] == 10

    report = json.loads(output.read_text(encoding="utf-8"))
    assert [group["document_id"] for group in report] == [f"doc-{index}" for index in range(20)]
    assert report[0]["id"] == "dup-0-3"
    assert report[0]["published"] == "2024-04-01T00:00:00Z"
    assert sorted(report[0]["duplicates"]) == ["dup-0-0", "dup-0-1", "dup-0-2"]


def test_delete_duplicates_removes_only_duplicates(make_transport) -> None:
    api = FakeInventoryApi(_inventory())
    orchestrator = Orchestrator(make_transport(api))
    groups = orchestrator.find_duplicates(25, 4).groups

    summary = orchestrator.delete_duplicates(groups, 8)

    assert summary.deleted == 60
    assert summary.failed == 0
    assert summary.ok
    assert sorted(api.deleted) == sorted(dup for group in groups for dup in group.duplicates)
    remaining = {record["id"] for record in api.records}
    assert {group.id for group in groups} <= remaining
    assert len(remaining) == 40


def test_dry_run_issues_no_deletes(make_transport) -> None:
    api = FakeInventoryApi([make_record(f"r{index}", "doc") for index in range(6)])
    orchestrator = Orchestrator(make_transport(api))
    groups = [DuplicateGroup(document_id="doc", id="r0", duplicates=("r1", "r2", "r3", "r4", "r5"))]

    summary = orchestrator.delete_duplicates(groups, 4, dry_run=True)

    assert summary.dry_run
    assert summary.total == 5
    assert [outcome.result for outcome in summary.outcomes] == ["dry_run"] * 5
    assert summary.deleted == 0
    assert api.count("DELETE") == 0
    assert len(api.records) == 6


def test_repeated_ids_are_deleted_once(make_transport) -> None:
    api = FakeInventoryApi([make_record("x", "doc-a"), make_record("y", "doc-b")])
    orchestrator = Orchestrator(make_transport(api))
    groups = [
        DuplicateGroup(document_id="doc-a", id="keep-a", duplicates=("x",)),
        DuplicateGroup(document_id="doc-b", id="keep-b", duplicates=("x", "y")),
    ]

    summary = orchestrator.delete_duplicates(groups, 2)

    assert summary.total == 2
    assert api.count("DELETE", "/api/v2/sbom/x") == 1


def test_primary_ids_are_never_deleted(make_transport) -> None:
    api = FakeInventoryApi([make_record("keep", "doc"), make_record("old", "doc")])
    orchestrator = Orchestrator(make_transport(api))
    groups = [DuplicateGroup(document_id="doc", id="keep", duplicates=("keep", "old"))]

    summary = orchestrator.delete_duplicates(groups, 2)

    assert summary.total == 1
    assert api.deleted == ["old"]
    assert api.count("DELETE", "/api/v2/sbom/keep") == 0


def test_repeated_listing_entries_keep_their_primary(make_transport) -> None:
    api = FakeInventoryApi(
        [
            make_record("x", "doc", "2024-01-01T00:00:00Z"),
            make_record("x", "doc", "2024-01-01T00:00:00Z"),
            make_record("y", "doc", "2023-01-01T00:00:00Z"),
        ]
    )
    orchestrator = Orchestrator(make_transport(api))

    groups = orchestrator.find_duplicates(10, 2).groups
    summary = orchestrator.delete_duplicates(groups, 2)

    assert [(group.id, group.duplicates) for group in groups] == [("x", ("y",))]
    assert summary.deleted == 1
    assert api.deleted == ["y"]


def test_missing_and_failing_deletes_are_counted(make_transport) -> None:
    api = FakeInventoryApi([make_record("ok", "doc"), make_record("broken", "doc")])
    orchestrator = Orchestrator(make_transport(api, max_attempts=2))
    api.fail_next("DELETE", "/api/v2/sbom/broken", 500, 500)
    groups = [DuplicateGroup(document_id="doc", id="keep", duplicates=("ok", "gone", "broken"))]
    progress = ProgressReporter(enabled=False)

    summary = orchestrator.delete_duplicates(groups, 3, progress=progress)

    assert (summary.deleted, summary.skipped, summary.failed, summary.total) == (1, 1, 1, 3)
    assert not summary.ok
    assert [outcome.item.id for outcome in summary.failures] == ["broken"]
    assert progress.summary() == {"success": 1, "failed": 1, "skipped": 1}


def test_delete_by_id_and_by_query(make_transport) -> None:
    api = FakeInventoryApi(
        [
            make_record("a", "d1", name="openssl-3.0"),
            make_record("b", "d2", name="openssl-1.1"),
            make_record("c", "d3", name="zlib"),
        ]
    )
    orchestrator = Orchestrator(make_transport(api))

    by_query = orchestrator.delete_by_query("openssl", 2, batch_size=1)
    assert by_query.deleted == 2
    assert [record["id"] for record in api.records] == ["c"]

    assert orchestrator.delete_by_id("c").deleted == 1
    assert orchestrator.delete_by_id("c").skipped == 1


def test_get_and_list_pass_through(make_transport) -> None:
    api = FakeInventoryApi([make_record("a", "d1"), make_record("b", "d2")])
    orchestrator = Orchestrator(make_transport(api))

    assert orchestrator.get_sbom("b")["document_id"] == "d2"
    payload = orchestrator.list_sboms(limit=1, offset=1)
    assert payload["total"] == 2
    assert [item["id"] for item in payload["items"]] == ["b"]


def test_token_expiry_mid_run_is_recovered(make_transport) -> None:
    api = FakeInventoryApi(_inventory(), require_auth=True)
    orchestrator = Orchestrator(make_transport(api, auth=True))
    groups = orchestrator.find_duplicates(20, 4).groups

    api.expire_tokens()
    summary = orchestrator.delete_duplicates(groups, 8)

    assert summary.deleted == 60
    assert api.token_requests == 2


def test_auth_failure_aborts_the_run(make_transport) -> None:
    api = FakeInventoryApi(_inventory(), require_auth=True)
    orchestrator = Orchestrator(make_transport(api, auth=True))
    groups = orchestrator.find_duplicates(50, 2).groups

    api.expire_tokens()
    api.token_status = 401
    with pytest.raises(AuthError):
        orchestrator.delete_duplicates(groups, 4)
    assert api.deleted == []
