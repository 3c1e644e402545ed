from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set
from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class BatchLifecycle(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    COMPLETED = "completed"  # every task terminal, batch-complete published
    CANCELLING = "cancelling"
    TEARING_DOWN = "tearing_down"


class ConflictDisposition(str, Enum):
    OVERWRITE = "overwrite"
    SKIP = "skip"


class PresetConfig(BaseModel):
    """One preset selected for a batch, with its audio choice."""
    preset_id: str
    keep_audio: bool = True


class Task(BaseModel):
    task_key: str
    file_path: Path
    preset_id: str
    keep_audio: bool = True
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    output_path: Optional[Path] = None  # planned destination; final once completed
    error: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def file_name(self) -> str:
        return self.file_path.name

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


class BatchPlan(BaseModel):
    """The (files x presets) cross product a user asked for, before it becomes a batch."""
    files: List[Path]
    presets: List[PresetConfig]
    output_directory: Path
    custom_output_names: Dict[Path, str] = Field(default_factory=dict)
    skipped_keys: Set[str] = Field(default_factory=set)

    def excluding(self, task_keys) -> "BatchPlan":
        """Returns a copy of the plan with the given task keys marked as skipped."""
        return self.model_copy(update={"skipped_keys": set(self.skipped_keys) | set(task_keys)})


class ConflictEntry(BaseModel):
    task_key: str
    file_path: Path
    preset_id: str
    existing_output_path: Path
    existing_file_name: str


class OperationResult(BaseModel):
    accepted: bool
    message: str = ""


class BatchProgress(BaseModel):
    total_count: int
    completed_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0
    running_count: int = 0
    pending_count: int = 0
    overall_percent: float = 0.0
    estimated_seconds_remaining: Optional[float] = None


class BatchSummary(BaseModel):
    total: int
    completed: int
    failed: int
    cancelled: int
    success_rate: int
    errors: List[str] = Field(default_factory=list)
    cancelled_by_user: bool = False
