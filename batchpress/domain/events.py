"""Domain events for the batch compression pipeline.

Events represent state changes and notifications that flow through the EventBus,
decoupling the batch orchestrator from the UI layer and enabling extensibility.
Every task carried by an event is a snapshot copy; mutating it has no effect
on the batch.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from typing import List, Optional
from pydantic import BaseModel, Field
from .models import Task, BatchProgress, BatchSummary, ConflictEntry


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class TaskEvent(Event):
    """Base class for events related to a specific task."""

    task: Task


class TaskStarted(TaskEvent):
    """Emitted when the encoder process for a task has been spawned."""

    pass


class TaskProgressUpdated(TaskEvent):
    """Emitted for every accepted progress report of a running task."""

    progress_percent: float


class TaskCompleted(TaskEvent):
    """Emitted when a task's output has been written."""

    pass


class TaskFailed(TaskEvent):
    """Emitted when a task fails; the rest of the batch carries on."""

    error_message: str
    category: str = "unknown"
    suggested_action: Optional[str] = None


class TaskCancelled(TaskEvent):
    """Emitted when a pending task is dropped or a running one is stopped by cancel()."""

    pass


class BatchInitialized(Event):
    total_count: int
    generation: int


class LargeBatchWarning(Event):
    """Emitted on initialization when a plan creates unusually many tasks."""

    message: str
    total_tasks: int
    max_concurrency: int


class BatchProgressUpdated(Event):
    """Aggregate progress, republished on every accepted task event."""

    progress: BatchProgress


class BatchCompleted(Event):
    """Emitted exactly once per batch, when every task reached a terminal state."""

    summary: BatchSummary


class BatchCancelled(Event):
    """Emitted when cancel() has been accepted."""

    pending_cancelled: int
    running_signalled: int


class BatchTornDown(Event):
    generation: int
    forced: bool = False


class ConflictsDetected(Event):
    conflicts: List[ConflictEntry] = Field(default_factory=list)


class ThermalStatusUpdated(Event):
    cpu_usage: float
    cpu_temperature: float
    thermal_pressure: float
    recommended_action: str = "normal"


class AdmissionPaused(Event):
    """Emitted when thermal pressure stops admission of new tasks."""

    reason: str


class AdmissionResumed(Event):
    pass


class ConcurrencyChangeRequested(Event):
    """Event emitted to adjust the concurrency ceiling of the running batch."""

    change: int  # +1 or -1


class ActionMessage(Event):
    """Event for user action feedback."""
    message: str
