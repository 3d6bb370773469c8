"""User interaction helpers."""

from .formatting import ListFormat, format_list, render_delete_summary
from .progress import ProgressReporter

__all__ = ["ListFormat", "ProgressReporter", "format_list", "render_delete_summary"]
