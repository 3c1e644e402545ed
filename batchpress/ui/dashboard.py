import threading
import time
from typing import List, Optional

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text
from rich.box import ROUNDED

from batchpress.domain.models import BatchSummary, ConflictEntry, Task, TaskStatus
from batchpress.ui.state import UIState

STATUS_STYLES = {
    TaskStatus.COMPLETED: ("✓", "green"),
    TaskStatus.FAILED: ("✗", "red"),
    TaskStatus.CANCELLED: ("⊘", "yellow"),
}


def format_time(seconds: Optional[float]) -> str:
    """Format time: 59s, 01m 01s, 1h 01m."""
    if seconds is None:
        return "--:--"
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60):02d}m {int(seconds % 60):02d}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60):02d}m"


def _truncate(name: str, max_len: int = 32) -> str:
    if len(name) <= max_len:
        return name
    return name[: max_len - 1] + "…"


class Dashboard:
    """Live batch view: overall bar, running tasks and recent results."""

    def __init__(self, state: UIState, console: Optional[Console] = None, max_active_tasks: int = 6):
        self.state = state
        self.console = console or Console()
        self.max_active_tasks = max_active_tasks
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    def _render_header(self) -> RenderableType:
        with self.state._lock:
            done = self.state.completed_count + self.state.failed_count + self.state.cancelled_count
            percent = self.state.overall_percent
            grid = Table.grid(padding=(0, 1), expand=True)
            grid.add_column(ratio=1)
            grid.add_column(justify="right")
            grid.add_row(
                ProgressBar(total=100, completed=percent),
                Text(f"{percent:5.1f}%  {done}/{self.state.total_count}  ETA {format_time(self.state.eta_seconds)}"),
            )
            counts = Text()
            counts.append(f"✓ {self.state.completed_count}  ", style="green")
            counts.append(f"✗ {self.state.failed_count}  ", style="red")
            counts.append(f"⊘ {self.state.cancelled_count}  ", style="yellow")
            counts.append(f"⋯ {self.state.pending_count} pending", style="dim")
            if self.state.thermal_pressure is not None:
                counts.append(
                    f"   CPU {self.state.cpu_usage:.0f}% {self.state.cpu_temperature:.0f}°C "
                    f"pressure {self.state.thermal_pressure:.0f}",
                    style="dim",
                )
            if self.state.conflict_count:
                counts.append(f"   {self.state.conflict_count} existing outputs", style="dim")
            lines: List[RenderableType] = [grid, counts]
            if self.state.admission_paused:
                lines.append(Text(f"Paused: {self.state.pause_reason}", style="bold yellow"))
            if self.state.cancel_requested and not self.state.finished:
                lines.append(Text("Cancelling…", style="bold yellow"))
            action = self.state.get_last_action()
            if action:
                lines.append(Text(action, style="cyan"))
        return Group(*lines)

    def _render_active(self) -> RenderableType:
        table = Table(show_header=False, box=None, padding=(0, 1), expand=True)
        table.add_column(ratio=2)
        table.add_column(ratio=1)
        table.add_column(ratio=2)
        table.add_column(justify="right")
        active = self.state.snapshot_active()[: self.max_active_tasks]
        for task in active:
            table.add_row(
                _truncate(task.file_name),
                task.preset_id,
                ProgressBar(total=100, completed=task.progress),
                f"{task.progress:.0f}%",
            )
        if not active:
            table.add_row(Text("waiting…", style="dim"), "", "", "")
        return table

    def _render_recent(self) -> RenderableType:
        table = Table(show_header=False, box=None, padding=(0, 1), expand=True)
        with self.state._lock:
            recent = list(self.state.recent_tasks)
        for task in recent:
            icon, style = STATUS_STYLES.get(task.status, ("•", "white"))
            duration = format_time(task.duration_seconds) if task.duration_seconds is not None else ""
            table.add_row(Text(icon, style=style), _truncate(task.file_name), task.preset_id, duration)
        return table

    def create_display(self) -> RenderableType:
        return Panel(
            Group(self._render_header(), Text(""), self._render_active(), Text(""), self._render_recent()),
            title="batchpress",
            subtitle="< / > concurrency",
            box=ROUNDED,
        )

    def _refresh_loop(self):
        while not self._stop_refresh.is_set():
            if self._live:
                display = self.create_display()
                with self._ui_lock:
                    self._live.update(display)
            self._stop_refresh.wait(0.5)

    def start(self):
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=4)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
            self._refresh_thread = None
        if self._live:
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()
            self._live = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


def render_summary(summary: BatchSummary) -> Table:
    """End-of-batch summary table."""
    title = "Batch cancelled" if summary.cancelled_by_user else "Batch complete"
    table = Table(title=title, box=ROUNDED, show_header=False)
    table.add_column("", style="bold")
    table.add_column("", justify="right")
    table.add_row("Total", str(summary.total))
    table.add_row(Text("Completed", style="green"), str(summary.completed))
    table.add_row(Text("Failed", style="red"), str(summary.failed))
    table.add_row(Text("Cancelled", style="yellow"), str(summary.cancelled))
    table.add_row("Success rate", f"{summary.success_rate}%")
    return table


def render_conflicts(conflicts: List[ConflictEntry]) -> Table:
    table = Table(title=f"{len(conflicts)} outputs already exist", box=ROUNDED)
    table.add_column("Source")
    table.add_column("Preset")
    table.add_column("Existing output")
    for conflict in conflicts:
        table.add_row(conflict.file_path.name, conflict.preset_id, str(conflict.existing_output_path))
    return table


def render_tasks(tasks: List[Task]) -> Table:
    table = Table(box=ROUNDED)
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Output / error")
    for task in tasks:
        icon, style = STATUS_STYLES.get(task.status, ("•", "white"))
        detail = task.error if task.status == TaskStatus.FAILED else str(task.output_path or "")
        table.add_row(task.task_key, Text(f"{icon} {task.status.value}", style=style), detail or "")
    return table
