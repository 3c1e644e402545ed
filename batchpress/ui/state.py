import threading
from datetime import datetime
from collections import deque
from typing import Dict, List, Optional
from batchpress.domain.models import BatchProgress, BatchSummary, Task


class UIState:
    """Thread-safe state for the batch progress display."""

    def __init__(self, activity_feed_max_items: int = 5):
        self._lock = threading.RLock()

        # Counters
        self.total_count = 0
        self.completed_count = 0
        self.failed_count = 0
        self.cancelled_count = 0
        self.pending_count = 0
        self.overall_percent = 0.0
        self.eta_seconds: Optional[float] = None

        # Task lists
        self.active_tasks: Dict[str, Task] = {}
        self.recent_tasks = deque(maxlen=activity_feed_max_items)
        self.errors: List[str] = []

        # Global status
        self.generation = 0
        self.current_concurrency = 0
        self.cancel_requested = False
        self.finished = False
        self.summary: Optional[BatchSummary] = None
        self.warning = ""
        self.conflict_count = 0
        self.processing_start_time: Optional[datetime] = None

        # Telemetry
        self.cpu_usage: Optional[float] = None
        self.cpu_temperature: Optional[float] = None
        self.thermal_pressure: Optional[float] = None
        self.admission_paused = False
        self.pause_reason = ""

        self.last_action: str = ""
        self.last_action_time: Optional[datetime] = None

    def reset(self, total_count: int, generation: int):
        with self._lock:
            self.total_count = total_count
            self.generation = generation
            self.completed_count = 0
            self.failed_count = 0
            self.cancelled_count = 0
            self.pending_count = total_count
            self.overall_percent = 0.0
            self.eta_seconds = None
            self.active_tasks.clear()
            self.recent_tasks.clear()
            self.errors = []
            self.cancel_requested = False
            self.finished = False
            self.summary = None
            self.processing_start_time = datetime.now()

    def apply_progress(self, progress: BatchProgress):
        with self._lock:
            self.total_count = progress.total_count
            self.completed_count = progress.completed_count
            self.failed_count = progress.failed_count
            self.cancelled_count = progress.cancelled_count
            self.pending_count = progress.pending_count
            self.overall_percent = progress.overall_percent
            self.eta_seconds = progress.estimated_seconds_remaining

    def upsert_active_task(self, task: Task):
        with self._lock:
            self.active_tasks[task.task_key] = task

    def finish_task(self, task: Task, error: Optional[str] = None):
        with self._lock:
            self.active_tasks.pop(task.task_key, None)
            self.recent_tasks.appendleft(task)
            if error:
                self.errors.append(f"{task.file_name} ({task.preset_id}): {error}")

    def snapshot_active(self) -> List[Task]:
        with self._lock:
            return list(self.active_tasks.values())

    def set_last_action(self, action: str):
        with self._lock:
            self.last_action = action
            self.last_action_time = datetime.now()

    def get_last_action(self) -> str:
        """Last action message; cleared after 60 seconds."""
        with self._lock:
            if self.last_action and self.last_action_time:
                elapsed = (datetime.now() - self.last_action_time).total_seconds()
                if elapsed > 60:
                    self.last_action = ""
                    self.last_action_time = None
            return self.last_action
