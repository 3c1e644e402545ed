import subprocess
import re
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional
from pydantic import BaseModel

from batchpress.config.models import EncoderConfig, EncodingParams
from batchpress.domain.naming import output_extension_for_codec, partial_output_path
from batchpress.domain.signals import (
    CANCELLED_ERROR,
    EncoderFailed,
    EncoderProgress,
    EncoderSignal,
    EncoderStarted,
    EncoderSucceeded,
)

SignalSink = Callable[[EncoderSignal], None]

# 'Duration: 00:01:02.50' in the input banner and 'time=00:00:05.00' in status lines
DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
TIME_RE = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")

MIN_PROGRESS_STEP = 0.5


def _to_seconds(match: "re.Match") -> float:
    h, m, s = map(float, match.groups())
    return h * 3600 + m * 60 + s


def build_scale_filter(resolution: Optional[str], preserve_aspect_ratio: bool = True) -> Optional[str]:
    if not resolution:
        return None
    width, height = resolution.split("x")
    if preserve_aspect_ratio:
        return (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
        )
    return f"scale={width}:{height}"


class EncodeRequest(BaseModel):
    task_key: str
    generation: int = 0
    file_path: Path
    preset_id: str
    keep_audio: bool = True
    output_path: Path
    params: EncodingParams

    @property
    def tmp_path(self) -> Path:
        return partial_output_path(self.output_path)


class EncoderHandle:
    """One spawned encoder process and the ordered signal stream it feeds.

    Guarantees exactly one terminal signal per handle: whichever of natural
    exit or cancellation is observed first wins, later ones are dropped.
    """

    def __init__(self, request: EncodeRequest, sink: SignalSink, terminate_grace_s: float = 3.0):
        self.request = request
        self._sink = sink
        self._terminate_grace_s = terminate_grace_s
        self._lock = threading.Lock()
        self._terminal_sent = False
        self._cancel_requested = False
        self.process: Optional[subprocess.Popen] = None
        self.logger = logging.getLogger(__name__)

    @property
    def task_key(self) -> str:
        return self.request.task_key

    @property
    def done(self) -> bool:
        with self._lock:
            return self._terminal_sent

    @property
    def cancel_requested(self) -> bool:
        with self._lock:
            return self._cancel_requested

    def emit(self, signal: EncoderSignal) -> bool:
        terminal = isinstance(signal, (EncoderSucceeded, EncoderFailed))
        with self._lock:
            if self._terminal_sent:
                return False
            if terminal:
                self._terminal_sent = True
        self._sink(signal)
        return True

    def cancel(self) -> bool:
        """Asks the process to stop. Returns False if the handle already finished."""
        with self._lock:
            if self._terminal_sent or self._cancel_requested:
                return False
            self._cancel_requested = True
            process = self.process
        if process is None or process.poll() is not None:
            return True
        self.logger.info(f"ENCODER_CANCEL: {self.task_key}")
        try:
            process.terminate()
        except OSError as e:
            self.logger.debug(f"terminate() failed for {self.task_key}: {e}")
            return True
        killer = threading.Timer(self._terminate_grace_s, self._kill_if_alive)
        killer.daemon = True
        killer.start()
        return True

    def _kill_if_alive(self):
        process = self.process
        if process is not None and process.poll() is None:
            self.logger.warning(f"ENCODER_KILL: {self.task_key} ignored terminate, killing")
            try:
                process.kill()
            except OSError:
                pass


class FFmpegEncoder:
    """Encoder Invoker backed by one ffmpeg process per (file, preset) task."""

    def __init__(self, config: Optional[EncoderConfig] = None, debug: bool = False):
        self.config = config or EncoderConfig()
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _build_command(self, request: EncodeRequest) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        params = request.params
        container = output_extension_for_codec(params.video_codec)
        cmd = [
            self.config.ffmpeg_path,
            "-y",  # Overwrite: conflicts are resolved before a batch starts
            "-hide_banner",
            "-i", str(request.file_path),
            "-c:v", params.video_codec,
        ]
        if params.video_bitrate:
            cmd.extend(["-b:v", params.video_bitrate])
        if params.fps:
            cmd.extend(["-r", f"{params.fps:g}"])
        if params.crf is not None:
            cmd.extend(["-crf", str(params.crf)])
        if params.preset:
            # libvpx has no -preset; its speed/quality knob is -deadline
            flag = "-deadline" if container == "webm" else "-preset"
            cmd.extend([flag, params.preset])

        scale = build_scale_filter(params.resolution, params.preserve_aspect_ratio)
        if scale:
            cmd.extend(["-vf", scale])
        if params.fast_start and container == "mp4":
            cmd.extend(["-movflags", "+faststart"])

        if request.keep_audio:
            cmd.extend(["-c:a", params.audio_codec])
            if params.audio_bitrate:
                cmd.extend(["-b:a", params.audio_bitrate])
        else:
            cmd.append("-an")

        # Write to .tmp during encoding (renamed on success); .tmp carries no format hint
        cmd.extend(["-f", container, str(request.tmp_path)])
        return cmd

    def invoke(self, request: EncodeRequest, sink: SignalSink) -> EncoderHandle:
        """Spawns the encoder for one task. Never raises for encoder-level failures."""
        handle = EncoderHandle(request, sink, terminate_grace_s=self.config.terminate_grace_s)
        cmd = self._build_command(request)
        if self.debug:
            self.logger.debug(f"ENCODER_CMD: {' '.join(cmd)}")

        try:
            request.output_path.parent.mkdir(parents=True, exist_ok=True)
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                universal_newlines=True,
                bufsize=1,
            )
        except OSError as e:
            self.logger.error(f"ENCODER_SPAWN_FAILED: {request.task_key} - {e}")
            handle.emit(EncoderFailed(task_key=request.task_key, generation=request.generation,
                                      error=f"Failed to start encoder: {e}"))
            return handle

        handle.process = process
        if handle.cancel_requested:
            process.terminate()
        handle.emit(EncoderStarted(task_key=request.task_key, generation=request.generation))
        watcher = threading.Thread(
            target=self._supervise,
            args=(handle, process),
            name=f"encoder-{request.task_key}",
            daemon=True,
        )
        watcher.start()
        return handle

    def cancel(self, handle: EncoderHandle) -> bool:
        return handle.cancel()

    def _supervise(self, handle: EncoderHandle, process: subprocess.Popen):
        """Reads encoder output until exit and emits progress plus one terminal signal."""
        request = handle.request
        start_time = time.monotonic()
        total_duration = 0.0
        last_percent = 0.0
        last_line = ""

        try:
            for line in process.stdout or []:
                line = line.strip()
                if line:
                    last_line = line
                if not total_duration:
                    match = DURATION_RE.search(line)
                    if match:
                        total_duration = _to_seconds(match)
                        continue
                match = TIME_RE.search(line)
                if match and total_duration > 0:
                    percent = max(0.0, min(100.0, _to_seconds(match) / total_duration * 100.0))
                    if percent - last_percent >= MIN_PROGRESS_STEP:
                        last_percent = percent
                        handle.emit(EncoderProgress(task_key=request.task_key,
                                                    generation=request.generation,
                                                    percent=percent))
        except (OSError, ValueError) as e:
            self.logger.debug(f"Encoder output closed early for {request.task_key}: {e}")
        returncode = process.wait()

        if self.debug:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"ENCODER_END: {request.task_key} code={returncode} elapsed={elapsed:.2f}s")

        if returncode == 0:
            self._finish_success(handle)
            return

        self._remove_tmp(request)
        if handle.cancel_requested:
            handle.emit(EncoderFailed(task_key=request.task_key, generation=request.generation,
                                      error=CANCELLED_ERROR))
            return
        detail = f"ffmpeg exited with code {returncode}"
        if last_line:
            detail = f"{detail}: {last_line}"
        handle.emit(EncoderFailed(task_key=request.task_key, generation=request.generation, error=detail))

    def _finish_success(self, handle: EncoderHandle):
        request = handle.request
        try:
            if not request.tmp_path.exists() or request.tmp_path.stat().st_size == 0:
                raise OSError(f"Output verification failed: {request.tmp_path} is missing or empty")
            request.tmp_path.replace(request.output_path)
        except OSError as e:
            self._remove_tmp(request)
            handle.emit(EncoderFailed(task_key=request.task_key, generation=request.generation, error=str(e)))
            return
        handle.emit(EncoderSucceeded(task_key=request.task_key, generation=request.generation,
                                     output_path=request.output_path))

    def _remove_tmp(self, request: EncodeRequest):
        try:
            if request.tmp_path.exists():
                request.tmp_path.unlink()
        except OSError as e:
            self.logger.warning(f"Could not remove partial output {request.tmp_path}: {e}")
