import logging
from batchpress.infrastructure.event_bus import EventBus
from batchpress.ui.state import UIState
from batchpress.domain.events import (
    ActionMessage,
    AdmissionPaused,
    AdmissionResumed,
    BatchCancelled,
    BatchCompleted,
    BatchInitialized,
    BatchProgressUpdated,
    ConflictsDetected,
    LargeBatchWarning,
    TaskCancelled,
    TaskCompleted,
    TaskFailed,
    TaskProgressUpdated,
    TaskStarted,
    ThermalStatusUpdated,
)


class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(BatchInitialized, self.on_batch_initialized)
        self.bus.subscribe(BatchProgressUpdated, self.on_batch_progress)
        self.bus.subscribe(TaskStarted, self.on_task_started)
        self.bus.subscribe(TaskProgressUpdated, self.on_task_progress)
        self.bus.subscribe(TaskCompleted, self.on_task_completed)
        self.bus.subscribe(TaskFailed, self.on_task_failed)
        self.bus.subscribe(TaskCancelled, self.on_task_cancelled)
        self.bus.subscribe(BatchCancelled, self.on_batch_cancelled)
        self.bus.subscribe(BatchCompleted, self.on_batch_completed)
        self.bus.subscribe(ConflictsDetected, self.on_conflicts_detected)
        self.bus.subscribe(LargeBatchWarning, self.on_large_batch_warning)
        self.bus.subscribe(ThermalStatusUpdated, self.on_thermal_status)
        self.bus.subscribe(AdmissionPaused, self.on_admission_paused)
        self.bus.subscribe(AdmissionResumed, self.on_admission_resumed)
        self.bus.subscribe(ActionMessage, self.on_action_message)

    def on_batch_initialized(self, event: BatchInitialized):
        self.state.reset(event.total_count, event.generation)

    def on_batch_progress(self, event: BatchProgressUpdated):
        self.state.apply_progress(event.progress)
        with self.state._lock:
            self.state.current_concurrency = event.progress.running_count

    def on_task_started(self, event: TaskStarted):
        self.state.upsert_active_task(event.task)

    def on_task_progress(self, event: TaskProgressUpdated):
        self.state.upsert_active_task(event.task)

    def on_task_completed(self, event: TaskCompleted):
        self.state.finish_task(event.task)

    def on_task_failed(self, event: TaskFailed):
        self.state.finish_task(event.task, error=event.error_message)
        self.state.set_last_action(f"Failed: {event.task.file_name} ({event.task.preset_id})")

    def on_task_cancelled(self, event: TaskCancelled):
        self.state.finish_task(event.task)

    def on_batch_cancelled(self, event: BatchCancelled):
        with self.state._lock:
            self.state.cancel_requested = True
        self.state.set_last_action(
            f"Cancelling: {event.pending_cancelled} pending dropped, {event.running_signalled} stopping"
        )

    def on_batch_completed(self, event: BatchCompleted):
        self.logger.debug(
            f"UI: batch finished completed={event.summary.completed} failed={event.summary.failed} "
            f"cancelled={event.summary.cancelled}"
        )
        with self.state._lock:
            self.state.summary = event.summary
            self.state.finished = True

    def on_large_batch_warning(self, event: LargeBatchWarning):
        with self.state._lock:
            self.state.warning = event.message

    def on_conflicts_detected(self, event: ConflictsDetected):
        with self.state._lock:
            self.state.conflict_count = len(event.conflicts)
        self.state.set_last_action(f"{len(event.conflicts)} outputs already existed")

    def on_thermal_status(self, event: ThermalStatusUpdated):
        with self.state._lock:
            self.state.cpu_usage = event.cpu_usage
            self.state.cpu_temperature = event.cpu_temperature
            self.state.thermal_pressure = event.thermal_pressure

    def on_admission_paused(self, event: AdmissionPaused):
        with self.state._lock:
            self.state.admission_paused = True
            self.state.pause_reason = event.reason
        self.state.set_last_action(f"Paused: {event.reason}")

    def on_admission_resumed(self, event: AdmissionResumed):
        with self.state._lock:
            self.state.admission_paused = False
            self.state.pause_reason = ""
        self.state.set_last_action("Resumed")

    def on_action_message(self, event: ActionMessage):
        self.state.set_last_action(event.message)
