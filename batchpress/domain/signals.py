"""Signals emitted by the encoder for one running task.

Unlike bus events (see `events.py`) these are point-to-point: each
encoder handle delivers its signals, in order, to the single sink the
Orchestrator gave it. ``generation`` identifies the batch that spawned the
process so signals outliving their batch can be recognised.
"""

from pathlib import Path
from pydantic import BaseModel

CANCELLED_ERROR = "cancelled"


class EncoderSignal(BaseModel):
    task_key: str
    generation: int = 0


class EncoderStarted(EncoderSignal):
    pass


class EncoderProgress(EncoderSignal):
    percent: float


class EncoderSucceeded(EncoderSignal):
    output_path: Path


class EncoderFailed(EncoderSignal):
    error: str

    @property
    def cancelled(self) -> bool:
        return self.error == CANCELLED_ERROR
