"""Terminal progress helpers with Rich-based rendering."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)


@dataclass
class ProgressState:
    total: int | None
    success: int = 0
    failed: int = 0
    skipped: int = 0
    current: str | None = None


class ProgressReporter:
    """Render a progress bar and keep success/failed/skipped counters.

    Counters are always maintained; rendering is dropped silently when
    disabled or when the console is not a terminal.
    """

    def __init__(self, enabled: bool = True, label: str = "working", console: Console | None = None) -> None:
        self.enabled = enabled
        self._label = label
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self.state: ProgressState | None = None

    def start(self, total: int | None) -> None:
        self.state = ProgressState(total=total)
        if not self.enabled:
            return
        console = self._console or Console(stderr=True)
        if not console.is_terminal:
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<12}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green", pulse_style="cyan"),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("[green]✓{task.fields[success]:>4}", justify="right"),
            TextColumn("[red]✗{task.fields[failed]:>4}", justify="right"),
            TextColumn("[yellow]↺{task.fields[skipped]:>4}", justify="right"),
            TextColumn("[dim]{task.fields[current]}", justify="left"),
            console=console,
            transient=True,
            refresh_per_second=12,
            expand=True,
        )
        try:
            self._progress.start()
        except LiveError:
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task(
            self._label,
            total=total,
            label=self._label,
            success=0,
            failed=0,
            skipped=0,
            current="",
        )

    def set_total(self, total: int | None) -> None:
        if self.state is not None:
            self.state.total = total
        if self._progress is not None and self._task_id is not None:
            self._progress.update(self._task_id, total=total)

    def advance(
        self,
        success: bool = False,
        failed: bool = False,
        skipped: bool = False,
        current: str | None = None,
        amount: int = 1,
    ) -> None:
        if not self.state:
            raise RuntimeError("ProgressReporter.start must be called before advance")
        if current:
            self.state.current = current
        if success:
            self.state.success += 1
        if failed:
            self.state.failed += 1
        if skipped:
            self.state.skipped += 1
        if self._progress is not None and self._task_id is not None:
            display = self.state.current or ""
            if len(display) > 48:
                display = display[:45] + "..."
            self._progress.update(
                self._task_id,
                advance=amount,
                success=self.state.success,
                failed=self.state.failed,
                skipped=self.state.skipped,
                current=display,
            )

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
        self._task_id = None

    def summary(self) -> dict[str, int]:
        if not self.state:
            return {"success": 0, "failed": 0, "skipped": 0}
        return {
            "success": self.state.success,
            "failed": self.state.failed,
            "skipped": self.state.skipped,
        }


__all__ = ["ProgressReporter", "ProgressState"]
