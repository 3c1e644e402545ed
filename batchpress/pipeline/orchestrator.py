"""Batch orchestrator for the (files x presets) compression lifecycle.

Owns every task of the current batch and is the only code that mutates them.
Encoder signals, user commands and telemetry updates are all applied under one
re-entrant lock, and the results are published on the EventBus as snapshot
copies so the UI never sees half-applied state.

Key responsibilities:
- Validate a BatchPlan and expand it into one Task per (file, preset) key
- Start pending tasks as admission allows (concurrency ceiling, thermal pressure)
- Apply encoder signals: progress, success, failure, cancellation
- Publish aggregate progress and exactly one BatchCompleted per batch
- Cancel a batch (pending dropped, running signalled) and tear it down

Each batch gets a new generation number. Encoder signals carry the generation
of the batch that spawned them, and anything from an older generation is dropped.
"""

import logging
import queue
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple, Any

from batchpress.config.models import AppConfig
from batchpress.domain.errors import classify_encoder_error
from batchpress.domain.events import (
    ActionMessage,
    AdmissionPaused,
    AdmissionResumed,
    BatchCancelled,
    BatchCompleted,
    BatchInitialized,
    BatchProgressUpdated,
    BatchTornDown,
    ConcurrencyChangeRequested,
    LargeBatchWarning,
    TaskCancelled,
    TaskCompleted,
    TaskFailed,
    TaskProgressUpdated,
    TaskStarted,
    ThermalStatusUpdated,
)
from batchpress.domain.models import (
    BatchLifecycle,
    BatchPlan,
    BatchProgress,
    BatchSummary,
    OperationResult,
    Task,
    TaskStatus,
)
from batchpress.domain.signals import (
    EncoderFailed,
    EncoderProgress,
    EncoderSignal,
    EncoderStarted,
    EncoderSucceeded,
)
from batchpress.domain.telemetry import TelemetrySample
from batchpress.infrastructure.event_bus import EventBus
from batchpress.infrastructure.ffmpeg import EncodeRequest
from batchpress.pipeline.admission import AdmissionController
from batchpress.pipeline.planning import PlannedTask, expand_plan, validate_plan

MAX_CONCURRENCY_LIMIT = 6

_IDLE_LIFECYCLES = (BatchLifecycle.UNINITIALIZED, BatchLifecycle.COMPLETED, BatchLifecycle.TEARING_DOWN)


class Orchestrator:
    """Batch compression orchestrator.

    Signals from encoder handles reach ``deliver``. With the dispatcher
    started (``start()``) they are queued and applied by a dedicated thread;
    without it they are applied on the thread that emitted them. Either way
    every mutation happens under ``_lock``.

    Args:
        config: AppConfig with general, thermal, encoder and preset settings.
        event_bus: EventBus for publishing task and batch events.
        encoder: Encoder invoker with ``invoke(request, sink)`` and ``cancel(handle)``.
        admission: AdmissionController; a default one is built from ``config.thermal``.
        telemetry: Callable returning the latest TelemetrySample, or None.
        source_exists: Check used to reject plans naming missing files.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        encoder: Any,
        admission: Optional[AdmissionController] = None,
        telemetry: Optional[Callable[[], Optional[TelemetrySample]]] = None,
        source_exists: Optional[Callable[..., bool]] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.encoder = encoder
        self.admission = admission or AdmissionController(config.thermal)
        self.telemetry = telemetry
        self.source_exists = source_exists
        self.logger = logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._state_changed = threading.Condition(self._lock)
        self._lifecycle = BatchLifecycle.UNINITIALIZED
        self._cleaning_up = False
        self._generation = 0

        # Batch state
        self._tasks: Dict[str, Task] = {}
        self._planned: Dict[str, PlannedTask] = {}
        self._pending: Deque[str] = deque()
        self._running: Dict[str, Any] = {}  # task_key -> encoder handle (None while spawning)
        self._completed_count = 0
        self._failed_count = 0
        self._cancelled_count = 0
        self._errors: List[str] = []
        self._batch_completed_published = False
        self._cancelled_by_user = False
        self._batch_started_at: Optional[float] = None

        # Handles cancelled by teardown whose terminal signal has not arrived yet
        self._orphans: Dict[Tuple[int, str], Any] = {}

        # Dynamic control state
        self._max_concurrency = config.general.max_concurrency
        self._admission_paused = False
        self._filling = False
        self._refill_requested = False

        # Dispatcher
        self._inbox: "queue.Queue[EncoderSignal]" = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None
        self._dispatch_stop = threading.Event()

        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.event_bus.subscribe(ThermalStatusUpdated, self._on_thermal_status)
        self.event_bus.subscribe(ConcurrencyChangeRequested, self._on_concurrency_change)

    # ------------------------------------------------------------------ read side

    @property
    def lifecycle(self) -> BatchLifecycle:
        with self._lock:
            return self._lifecycle

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def max_concurrency(self) -> int:
        with self._lock:
            return self._max_concurrency

    def tasks(self) -> List[Task]:
        """Snapshot copies of every task, in plan order."""
        with self._lock:
            return [task.model_copy() for task in self._tasks.values()]

    def get_task(self, task_key: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_key)
            return task.model_copy() if task else None

    def progress(self) -> BatchProgress:
        with self._lock:
            return self._progress_locked()

    def summary(self) -> BatchSummary:
        with self._lock:
            return self._summary_locked()

    def _progress_locked(self) -> BatchProgress:
        total = len(self._tasks)
        running_progress = sum(
            task.progress for task in self._tasks.values() if task.status == TaskStatus.RUNNING
        )
        overall = 0.0
        if total:
            overall = (running_progress + 100.0 * self._completed_count) / total
        return BatchProgress(
            total_count=total,
            completed_count=self._completed_count,
            failed_count=self._failed_count,
            cancelled_count=self._cancelled_count,
            running_count=len(self._running),
            pending_count=len(self._pending),
            overall_percent=overall,
            estimated_seconds_remaining=self._estimate_remaining_locked(),
        )

    def _estimate_remaining_locked(self) -> Optional[float]:
        durations = [
            task.duration_seconds for task in self._tasks.values()
            if task.status == TaskStatus.COMPLETED and task.duration_seconds is not None
        ]
        if not durations:
            return None
        remaining = len(self._pending) + len(self._running)
        average = sum(durations) / len(durations)
        return average * remaining / max(1, self._max_concurrency)

    def _summary_locked(self) -> BatchSummary:
        total = len(self._tasks)
        success_rate = round(self._completed_count / total * 100) if total else 0
        return BatchSummary(
            total=total,
            completed=self._completed_count,
            failed=self._failed_count,
            cancelled=self._cancelled_count,
            success_rate=success_rate,
            errors=list(self._errors),
            cancelled_by_user=self._cancelled_by_user,
        )

    # ------------------------------------------------------------------ lifecycle

    def initialize_batch(self, plan: BatchPlan) -> BatchProgress:
        """Validates the plan and creates one pending task per (file, preset).

        Any batch still held is torn down first. Raises BatchValidationError
        (or UnknownPresetError) without touching the current batch.
        """
        validate_plan(plan, self.config, self.source_exists)
        planned = expand_plan(plan, self.config)

        with self._lock:
            if self._lifecycle != BatchLifecycle.UNINITIALIZED:
                self.logger.info(f"BATCH_REINIT: tearing down batch {self._generation} first")
                self._teardown_locked()

            self._lifecycle = BatchLifecycle.INITIALIZING
            generation = self._generation
            for item in planned:
                self._planned[item.task_key] = item
                self._tasks[item.task_key] = Task(
                    task_key=item.task_key,
                    file_path=item.file_path,
                    preset_id=item.preset.preset_id,
                    keep_audio=item.preset.keep_audio,
                    output_path=item.output_path,
                )
                self._pending.append(item.task_key)
            self._batch_started_at = time.time()
            self._lifecycle = BatchLifecycle.ACTIVE
            progress = self._progress_locked()
            self._state_changed.notify_all()

        total = len(planned)
        self.logger.info(
            f"BATCH_INIT: generation={generation} tasks={total} "
            f"files={len({p.file_path for p in planned})} max_concurrency={self.max_concurrency}"
        )
        if total > self.config.general.large_batch_warning:
            self.event_bus.publish(LargeBatchWarning(
                message=(
                    f"Large batch: {total} compression tasks will run at most "
                    f"{self.max_concurrency} at a time. This may take a while."
                ),
                total_tasks=total,
                max_concurrency=self.max_concurrency,
            ))
        self.event_bus.publish(BatchInitialized(total_count=total, generation=generation))
        self.event_bus.publish(BatchProgressUpdated(progress=progress))
        return progress

    def run(self) -> int:
        """Starts as many pending tasks as admission allows. Returns how many started.

        Safe to call at any time and from inside signal handling; a nested
        call only asks the outer one to go round again.
        """
        with self._lock:
            if self._filling:
                self._refill_requested = True
                return 0
            self._filling = True
            started = 0
            try:
                while True:
                    self._refill_requested = False
                    started += self._fill_once_locked()
                    if not self._refill_requested:
                        break
            finally:
                self._filling = False
            self._check_batch_finished_locked()
            return started

    def _fill_once_locked(self) -> int:
        if self._lifecycle != BatchLifecycle.ACTIVE or not self._pending:
            return 0
        sample = self.telemetry() if self.telemetry else None
        decision = self.admission.decide(len(self._running), self._max_concurrency, sample)
        self._update_admission_state_locked(decision.paused, decision.reason)

        started = 0
        for _ in range(decision.slots):
            if self._lifecycle != BatchLifecycle.ACTIVE or not self._pending:
                break
            self._start_task_locked(self._pending.popleft())
            started += 1
        return started

    def _update_admission_state_locked(self, paused: bool, reason: str):
        if paused and not self._admission_paused:
            self._admission_paused = True
            self.logger.warning(f"ADMISSION_PAUSED: {reason}")
            self.event_bus.publish(AdmissionPaused(reason=reason))
        elif not paused and self._admission_paused:
            self._admission_paused = False
            self.logger.info("ADMISSION_RESUMED")
            self.event_bus.publish(AdmissionResumed())

    def _start_task_locked(self, task_key: str):
        task = self._tasks[task_key]
        planned = self._planned[task_key]
        preset = self.config.get_preset(planned.preset.preset_id)

        task.status = TaskStatus.RUNNING
        task.started_at = time.time()
        self._running[task_key] = None
        self.logger.info(f"TASK_START: {task_key} -> {planned.output_path}")
        self.event_bus.publish(TaskStarted(task=task.model_copy()))
        self._publish_progress_locked()

        request = EncodeRequest(
            task_key=task_key,
            generation=self._generation,
            file_path=planned.file_path,
            preset_id=planned.preset.preset_id,
            keep_audio=planned.preset.keep_audio,
            output_path=planned.output_path,
            params=preset.params,
        )
        try:
            handle = self.encoder.invoke(request, self._sink)
        except Exception as e:
            self.logger.exception(f"Encoder invoke failed for {task_key}")
            self.deliver(EncoderFailed(task_key=task_key, generation=request.generation,
                                       error=f"Failed to start encoder: {e}"))
            return

        # The encoder may already have reported a terminal signal synchronously
        if task_key in self._running and task.status == TaskStatus.RUNNING:
            self._running[task_key] = handle

    def cancel(self) -> OperationResult:
        """Drops pending tasks and asks every running encoder to stop."""
        with self._lock:
            if self._lifecycle != BatchLifecycle.ACTIVE:
                message = f"Cannot cancel: batch is {self._lifecycle.value}"
                self.logger.info(f"BATCH_CANCEL_REJECTED: {message}")
                return OperationResult(accepted=False, message=message)

            self._lifecycle = BatchLifecycle.CANCELLING
            self._cancelled_by_user = True

            pending = list(self._pending)
            self._pending.clear()
            now = time.time()
            for key in pending:
                task = self._tasks[key]
                task.status = TaskStatus.CANCELLED
                task.finished_at = now
                self._cancelled_count += 1
                self.event_bus.publish(TaskCancelled(task=task.model_copy()))

            running = [(key, handle) for key, handle in self._running.items() if handle is not None]
            self.logger.info(f"BATCH_CANCEL: pending={len(pending)} running={len(running)}")
            self.event_bus.publish(BatchCancelled(pending_cancelled=len(pending), running_signalled=len(running)))
            self._publish_progress_locked()

            for key, handle in running:
                self._cancel_handle(key, handle)

            self._check_batch_finished_locked()
            self._state_changed.notify_all()
            return OperationResult(
                accepted=True,
                message=f"Cancelled {len(pending)} pending tasks, stopping {len(running)} running",
            )

    def teardown(self) -> OperationResult:
        """Discards the batch. Running encoders are cancelled and their late signals ignored."""
        with self._lock:
            if self._lifecycle == BatchLifecycle.UNINITIALIZED:
                return OperationResult(accepted=False, message="No batch to tear down")
            generation, forced = self._teardown_locked()
        self.event_bus.publish(BatchTornDown(generation=generation, forced=forced))
        return OperationResult(accepted=True, message=f"Batch {generation} torn down")

    def _teardown_locked(self) -> Tuple[int, bool]:
        generation = self._generation
        forced = self._lifecycle in (BatchLifecycle.ACTIVE, BatchLifecycle.CANCELLING, BatchLifecycle.INITIALIZING)
        self._cleaning_up = True
        try:
            self._lifecycle = BatchLifecycle.TEARING_DOWN
            running = [(key, handle) for key, handle in self._running.items() if handle is not None]
            for key, handle in running:
                if not getattr(handle, "done", False):
                    self._orphans[(generation, key)] = handle
            for key, handle in running:
                self._cancel_handle(key, handle)

            self._tasks.clear()
            self._planned.clear()
            self._pending.clear()
            self._running.clear()
            self._completed_count = 0
            self._failed_count = 0
            self._cancelled_count = 0
            self._errors = []
            self._batch_completed_published = False
            self._cancelled_by_user = False
            self._batch_started_at = None
            self._admission_paused = False
            self._generation += 1
            self._lifecycle = BatchLifecycle.UNINITIALIZED
        finally:
            self._cleaning_up = False
        self.logger.info(
            f"BATCH_TEARDOWN: generation={generation} forced={forced} "
            f"running_cancelled={len(running)}"
        )
        self._state_changed.notify_all()
        return generation, forced

    def _cancel_handle(self, task_key: str, handle: Any):
        try:
            self.encoder.cancel(handle)
        except Exception:
            self.logger.exception(f"Encoder cancel failed for {task_key}")

    # ------------------------------------------------------------------ signals

    def _sink(self, signal: EncoderSignal):
        if self._dispatcher is not None:
            self._inbox.put(signal)
        else:
            self.deliver(signal)

    def deliver(self, signal: EncoderSignal) -> bool:
        """Applies one encoder signal. Returns False when it was discarded."""
        with self._lock:
            terminal = isinstance(signal, (EncoderSucceeded, EncoderFailed))
            if self._cleaning_up or signal.generation != self._generation:
                if terminal and self._orphans.pop((signal.generation, signal.task_key), None) is not None:
                    self._state_changed.notify_all()
                self.logger.debug(f"SIGNAL_STALE: {type(signal).__name__} {signal.task_key} gen={signal.generation}")
                return False

            task = self._tasks.get(signal.task_key)
            if task is None or task.status != TaskStatus.RUNNING:
                self.logger.debug(f"SIGNAL_IGNORED: {type(signal).__name__} {signal.task_key}")
                return False

            if isinstance(signal, EncoderStarted):
                return self._lifecycle == BatchLifecycle.ACTIVE
            if isinstance(signal, EncoderProgress):
                if self._lifecycle != BatchLifecycle.ACTIVE:
                    return False
                self._apply_progress_locked(task, signal.percent)
                self.run()
                return True
            if terminal:
                if self._lifecycle not in (BatchLifecycle.ACTIVE, BatchLifecycle.CANCELLING):
                    return False
                self._apply_terminal_locked(task, signal)
                self._check_batch_finished_locked()
                self.run()
                self._state_changed.notify_all()
                return True
            return False

    def _apply_progress_locked(self, task: Task, percent: float):
        percent = max(0.0, min(100.0, float(percent)))
        if percent <= task.progress:
            return
        task.progress = percent
        self.event_bus.publish(TaskProgressUpdated(task=task.model_copy(), progress_percent=percent))
        self._publish_progress_locked()

    def _apply_terminal_locked(self, task: Task, signal: EncoderSignal):
        self._running.pop(task.task_key, None)
        task.finished_at = time.time()
        elapsed = task.duration_seconds or 0.0

        if isinstance(signal, EncoderSucceeded):
            task.status = TaskStatus.COMPLETED
            task.progress = 100.0
            task.output_path = signal.output_path
            self._completed_count += 1
            self.logger.info(f"TASK_END: {task.task_key} status=completed elapsed={elapsed:.2f}s")
            self.event_bus.publish(TaskCompleted(task=task.model_copy()))
        elif signal.cancelled:
            task.status = TaskStatus.CANCELLED
            self._cancelled_count += 1
            self.logger.info(f"TASK_END: {task.task_key} status=cancelled elapsed={elapsed:.2f}s")
            self.event_bus.publish(TaskCancelled(task=task.model_copy()))
        else:
            task.status = TaskStatus.FAILED
            task.error = signal.error
            self._failed_count += 1
            error = classify_encoder_error(signal.error, task.file_name)
            self._errors.append(f"{task.file_name} ({task.preset_id}): {error.message}")
            self.logger.error(f"TASK_END: {task.task_key} status=failed error={signal.error}")
            self.event_bus.publish(TaskFailed(
                task=task.model_copy(),
                error_message=error.message,
                category=error.category,
                suggested_action=error.suggested_action,
            ))
        self._publish_progress_locked()

    def _check_batch_finished_locked(self):
        if self._batch_completed_published:
            return
        if self._lifecycle not in (BatchLifecycle.ACTIVE, BatchLifecycle.CANCELLING):
            return
        finished = self._completed_count + self._failed_count + self._cancelled_count
        if finished != len(self._tasks) or self._running:
            return

        self._batch_completed_published = True
        if self._lifecycle == BatchLifecycle.CANCELLING:
            self._lifecycle = BatchLifecycle.TEARING_DOWN
        else:
            self._lifecycle = BatchLifecycle.COMPLETED
        summary = self._summary_locked()
        elapsed = time.time() - self._batch_started_at if self._batch_started_at else 0.0
        self.logger.info(
            f"BATCH_END: generation={self._generation} completed={summary.completed} "
            f"failed={summary.failed} cancelled={summary.cancelled} elapsed={elapsed:.2f}s"
        )
        self.event_bus.publish(BatchCompleted(summary=summary))
        self._state_changed.notify_all()

    def _publish_progress_locked(self):
        self.event_bus.publish(BatchProgressUpdated(progress=self._progress_locked()))

    # ------------------------------------------------------------------ control events

    def _on_thermal_status(self, event: ThermalStatusUpdated):
        self.run()

    def _on_concurrency_change(self, event: ConcurrencyChangeRequested):
        with self._lock:
            old_val = self._max_concurrency
            requested = old_val + event.change
            self._max_concurrency = max(1, min(MAX_CONCURRENCY_LIMIT, requested))
            new_val = self._max_concurrency
        if new_val != old_val:
            self.event_bus.publish(ActionMessage(message=f"Concurrency: {old_val} → {new_val}"))
        elif requested > new_val:
            self.event_bus.publish(ActionMessage(message=f"Concurrency: {new_val} (max)"))
        elif requested < new_val:
            self.event_bus.publish(ActionMessage(message=f"Concurrency: {new_val} (min)"))
        self.run()

    # ------------------------------------------------------------------ dispatcher

    def start(self):
        """Starts the dispatcher thread that applies queued encoder signals."""
        if self._dispatcher is not None:
            return
        self._dispatch_stop.clear()
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="batch-dispatcher", daemon=True)
        self._dispatcher.start()

    def stop(self, timeout: float = 2.0):
        """Stops the dispatcher after applying whatever is already queued."""
        thread = self._dispatcher
        if thread is None:
            return
        self._dispatch_stop.set()
        thread.join(timeout=timeout)
        self._dispatcher = None
        self._drain_inbox()

    def _dispatch_loop(self):
        while not self._dispatch_stop.is_set():
            try:
                signal = self._inbox.get(timeout=0.1)
            except queue.Empty:
                continue
            self._deliver_safely(signal)
        self._drain_inbox()

    def _drain_inbox(self):
        while True:
            try:
                signal = self._inbox.get_nowait()
            except queue.Empty:
                return
            self._deliver_safely(signal)

    def _deliver_safely(self, signal: EncoderSignal):
        try:
            self.deliver(signal)
        except Exception:
            self.logger.exception(f"Failed to apply {type(signal).__name__} for {signal.task_key}")

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the batch has finished, been cancelled out, or torn down."""
        with self._state_changed:
            return self._state_changed.wait_for(
                lambda: self._lifecycle in _IDLE_LIFECYCLES and not self._running,
                timeout=timeout,
            )

    def wait_for_orphans(self, timeout: Optional[float] = None) -> bool:
        """Blocks until every encoder cancelled by teardown has reported its exit."""
        with self._state_changed:
            return self._state_changed.wait_for(lambda: not self._orphans, timeout=timeout)
