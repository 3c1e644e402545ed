import pytest
import yaml
from pathlib import Path
from typing import Dict, List, Optional
from batchpress.config.models import AppConfig
from batchpress.domain.models import BatchPlan, PresetConfig
from batchpress.domain.signals import (
    CANCELLED_ERROR,
    EncoderFailed,
    EncoderProgress,
    EncoderStarted,
    EncoderSucceeded,
)
from batchpress.infrastructure.event_bus import EventBus
from batchpress.pipeline.orchestrator import Orchestrator

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "max_concurrency": 2,
            "max_videos_per_batch": 10,
            "max_tasks_per_batch": 500,
            "large_batch_warning": 20,
            "debug": False,
        },
        thermal={"enabled": False},
    )


@pytest.fixture
def thermal_config():
    """Returns config with thermal management enabled."""
    return AppConfig(
        general={"max_concurrency": 4},
        thermal={
            "enabled": True,
            "reduce_threshold": 70,
            "critical_threshold": 90,
            "pause_on_overheat": True,
            "max_cpu_usage": 85,
        },
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "batchpress.yaml"

    content = {
        "general": {
            "max_concurrency": 3,
            "max_videos_per_batch": 5,
            "muted_suffix": " (silent)",
            "debug": True,
        },
        "thermal": {"enabled": True, "reduce_threshold": 60},
        "encoder": {"ffmpeg_path": "/opt/ffmpeg/bin/ffmpeg"},
        "presets": {
            "web-standard": {"params": {"crf": 22}},
            "archive": {
                "name": "Archive",
                "folder_name": "Archive",
                "file_suffix": " - Archive",
                "params": {"video_bitrate": "6000k", "crf": 18},
            },
        },
    }

    with open(conf_file, "w") as f:
        yaml.dump(content, f)

    return conf_file


# ============================================================================
# Encoder Fixtures
# ============================================================================

class FakeHandle:
    """Stands in for an EncoderHandle; tests drive its signals by hand."""

    def __init__(self, request, sink):
        self.request = request
        self.sink = sink
        self.done = False
        self.cancel_requested = False

    @property
    def task_key(self) -> str:
        return self.request.task_key

    def _emit(self, signal):
        if self.done:
            return
        if isinstance(signal, (EncoderSucceeded, EncoderFailed)):
            self.done = True
        self.sink(signal)

    def started(self):
        self._emit(EncoderStarted(task_key=self.task_key, generation=self.request.generation))

    def progress(self, percent: float):
        self._emit(EncoderProgress(task_key=self.task_key, generation=self.request.generation, percent=percent))

    def succeed(self):
        self._emit(EncoderSucceeded(task_key=self.task_key, generation=self.request.generation,
                                    output_path=self.request.output_path))

    def fail(self, error: str = "ffmpeg exited with code 1: Invalid data found when processing input"):
        self._emit(EncoderFailed(task_key=self.task_key, generation=self.request.generation, error=error))

    def cancelled(self):
        self.fail(CANCELLED_ERROR)


class FakeEncoder:
    """Records invocations. With ``auto_cancel`` a cancel emits the cancelled signal at once."""

    def __init__(self, auto_cancel: bool = False, fail_on_invoke: Optional[str] = None):
        self.auto_cancel = auto_cancel
        self.fail_on_invoke = fail_on_invoke
        self.handles: Dict[str, FakeHandle] = {}
        self.invocations: List = []
        self.cancelled: List[str] = []

    def invoke(self, request, sink):
        handle = FakeHandle(request, sink)
        self.invocations.append(request)
        self.handles[request.task_key] = handle
        if self.fail_on_invoke:
            handle.fail(self.fail_on_invoke)
        return handle

    def cancel(self, handle):
        if handle.done:
            return False
        handle.cancel_requested = True
        self.cancelled.append(handle.task_key)
        if self.auto_cancel:
            handle.cancelled()
        return True

    @property
    def invoked_keys(self) -> List[str]:
        return [request.task_key for request in self.invocations]


class RecordingBus(EventBus):
    """EventBus that also keeps every published event in order."""

    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, event):
        self.events.append(event)
        super().publish(event)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def recording_bus():
    return RecordingBus()


@pytest.fixture
def source_files(tmp_path):
    """Three small source files on disk."""
    src = tmp_path / "src"
    src.mkdir()
    paths = []
    for name in ("a.mp4", "b.mov", "c.mp4"):
        path = src / name
        path.write_bytes(b"\x00" * 64)
        paths.append(path)
    return paths


@pytest.fixture
def output_dir(tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    return out


@pytest.fixture
def make_plan(output_dir):
    def _make(files, preset_ids=("web-standard",), keep_audio=True, **kwargs):
        return BatchPlan(
            files=list(files),
            presets=[PresetConfig(preset_id=p, keep_audio=keep_audio) for p in preset_ids],
            output_directory=output_dir,
            **kwargs,
        )
    return _make


@pytest.fixture
def orchestrator(sample_config, recording_bus, fake_encoder):
    """Orchestrator with signals applied synchronously (no dispatcher thread)."""
    return Orchestrator(sample_config, recording_bus, fake_encoder)
