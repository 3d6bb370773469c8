"""Rendering of listing payloads and workflow summaries."""

from __future__ import annotations

import json
from enum import Enum
from typing import TYPE_CHECKING, Any

from rich import box
from rich.table import Table

if TYPE_CHECKING:
    from ..orchestrator import DeleteSummary

NAME_FIELDS = ("id", "name", "document_id")
SHORT_FIELDS = ("id", "name", "document_id", "ingested", "published", "size")


class ListFormat(str, Enum):
    """Output formats accepted by ``sbom list``."""

    ID = "id"
    NAME = "name"
    SHORT = "short"
    FULL = "full"


def format_list(payload: Any, fmt: ListFormat) -> str:
    """Render a listing payload (``{"items": [...], "total": N}``)."""

    items = payload.get("items") if isinstance(payload, dict) else None
    if fmt is ListFormat.FULL or not isinstance(items, list):
        return json.dumps(payload, indent=2, ensure_ascii=False)
    if fmt is ListFormat.ID:
        return "\n".join(
            item["id"] for item in items if isinstance(item, dict) and isinstance(item.get("id"), str)
        )
    fields = NAME_FIELDS if fmt is ListFormat.NAME else SHORT_FIELDS
    rows = [{key: item.get(key) for key in fields} for item in items if isinstance(item, dict)]
    return json.dumps(rows, ensure_ascii=False)


def render_delete_summary(summary: "DeleteSummary", title: str = "Delete summary") -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAVY)
    table.add_column("Deleted", justify="right", style="green")
    table.add_column("Skipped (not found)", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Total", justify="right", style="bold")
    table.add_row(
        str(summary.deleted),
        str(summary.skipped),
        str(summary.failed),
        str(summary.total),
    )
    return table


__all__ = ["ListFormat", "format_list", "render_delete_summary"]
