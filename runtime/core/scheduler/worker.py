"""Job admission and concurrency-limited scheduling.

The worker keeps, per work class:
- a pending queue (batch id -> Batch, insertion ordered)
- an in-flight set (batch id -> Batch) capped at the class's max concurrency

Producers call `enqueue`; the control loop calls `tick`. Queue and in-flight
state of a class are guarded by one lock so "check for duplicate, then insert"
and "pop from queue, then reserve a slot" are atomic. Runner calls happen
outside the lock with a per-call timeout, each on its own daemon thread, so a
hung backend call never delays the calls after it.

Invariants:
- at most one pending-or-active batch per id per work class
- len(in_flight) <= max concurrency for the class, checked at launch only
- a batch is never in the queue and the in-flight set at the same time
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from errors import CleanupError, LaunchError, ProbeError
from runners.interfaces import Runner
from scheduler.batch import Batch, WorkClass

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _describe(err: BaseException) -> str:
    return str(err) or type(err).__name__


@dataclass
class _ClassState:
    max_jobs: int
    lock: threading.Lock = field(default_factory=threading.Lock)
    queue: dict[str, Batch] = field(default_factory=dict)
    in_flight: dict[str, Batch] = field(default_factory=dict)


@dataclass(frozen=True)
class ClassReport:
    finished: tuple[str, ...] = ()
    started: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()


@dataclass(frozen=True)
class TickReport:
    classes: dict[WorkClass, ClassReport]
    cleanup_ok: bool = True

    def for_class(self, work_class: WorkClass) -> ClassReport:
        return self.classes.get(work_class, ClassReport())


class JobWorker:
    def __init__(
        self,
        *,
        runner: Runner,
        max_cron_jobs: int = 10,
        max_hook_jobs: int = 10,
        call_timeout_seconds: float = 120.0,
        probe_attempts: int = 3,
        probe_backoff_seconds: float = 0.5,
    ):
        if max_cron_jobs <= 0 or max_hook_jobs <= 0:
            raise ValueError("max concurrency must be positive")
        if probe_attempts <= 0:
            raise ValueError("probe_attempts must be positive")
        self._runner = runner
        self._states: dict[WorkClass, _ClassState] = {
            WorkClass.SCHEDULED: _ClassState(max_jobs=max_cron_jobs),
            WorkClass.EVENT: _ClassState(max_jobs=max_hook_jobs),
        }
        self._call_timeout = call_timeout_seconds
        self._probe_attempts = probe_attempts
        self._probe_backoff = probe_backoff_seconds
        self._tick_lock = threading.Lock()

    # Admission

    def enqueue(self, work_class: WorkClass, batch: Batch) -> bool:
        """Queue a batch unless its id is already pending or in flight for the class.

        Returns True when the batch was queued, False for a duplicate.
        """
        work_class = WorkClass(work_class)
        if batch.work_class != work_class:
            raise ValueError(f"Batch {batch.id} is {batch.work_class.value}, cannot enqueue as {work_class.value}")

        state = self._states[work_class]
        with state.lock:
            if batch.id in state.queue or batch.id in state.in_flight:
                duplicate = True
            else:
                state.queue[batch.id] = batch
                duplicate = False

        extra = {"event": "batch_duplicate" if duplicate else "batch_enqueued", "batch_id": batch.id, "work_class": work_class.value}
        if duplicate:
            logger.warning("batch_duplicate", extra=extra)
            return False
        logger.info("batch_enqueued", extra=extra)
        return True

    def add_batch_job(self, batch: Batch) -> bool:
        return self.enqueue(WorkClass.SCHEDULED, batch)

    def add_hook_job(self, batch: Batch) -> bool:
        return self.enqueue(WorkClass.EVENT, batch)

    # Inspection

    def in_flight(self, work_class: WorkClass) -> list[Batch]:
        state = self._states[WorkClass(work_class)]
        with state.lock:
            return list(state.in_flight.values())

    def pending(self, work_class: WorkClass) -> list[Batch]:
        state = self._states[WorkClass(work_class)]
        with state.lock:
            return list(state.queue.values())

    def snapshot(self) -> dict[str, dict[str, list[dict[str, Any]]]]:
        return {
            "jobs": {wc.value: [b.to_dict() for b in self.in_flight(wc)] for wc in WorkClass},
            "queue": {wc.value: [b.to_dict() for b in self.pending(wc)] for wc in WorkClass},
        }

    # Scheduling

    def tick(self) -> TickReport | None:
        """Reconcile, then admit, for each work class; then clean up the runner once.

        Returns None when another tick is still running.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("tick_skipped", extra={"event": "tick_skipped"})
            return None
        try:
            reports: dict[WorkClass, ClassReport] = {}
            for work_class in (WorkClass.SCHEDULED, WorkClass.EVENT):
                reports[work_class] = self._handle_class(work_class)
            return TickReport(classes=reports, cleanup_ok=self._clean_up())
        finally:
            self._tick_lock.release()

    def _handle_class(self, work_class: WorkClass) -> ClassReport:
        state = self._states[work_class]
        finished = self._reconcile(work_class, state)
        started, failed = self._admit(work_class, state)
        return ClassReport(finished=tuple(finished), started=tuple(started), failed=tuple(failed))

    def _reconcile(self, work_class: WorkClass, state: _ClassState) -> list[str]:
        with state.lock:
            active = list(state.in_flight.values())

        finished: list[str] = []
        for batch in active:
            if self._is_running(batch, work_class):
                continue
            with state.lock:
                state.in_flight.pop(batch.id, None)
            finished.append(batch.id)
            logger.info("job_finished", extra={"event": "job_finished", "batch_id": batch.id, "work_class": work_class.value})
        return finished

    def _is_running(self, batch: Batch, work_class: WorkClass) -> bool:
        extra = {"batch_id": batch.id, "work_class": work_class.value}
        for attempt in range(1, self._probe_attempts + 1):
            try:
                return bool(self._call(self._runner.check_job, batch))
            except (ProbeError, FutureTimeoutError) as e:
                logger.warning(
                    "job_probe_retry: attempt %d/%d: %s",
                    attempt,
                    self._probe_attempts,
                    _describe(e),
                    extra={"event": "job_probe_retry", **extra},
                )
            except Exception:
                logger.exception("job_probe_error", extra={"event": "job_probe_error", **extra})
            if attempt < self._probe_attempts and self._probe_backoff > 0:
                time.sleep(self._probe_backoff * attempt)

        # Backend unreachable: treat the job as finished.
        logger.error("job_probe_failed", extra={"event": "job_probe_failed", **extra})
        return False

    def _admit(self, work_class: WorkClass, state: _ClassState) -> tuple[list[str], list[str]]:
        with state.lock:
            free = max(0, state.max_jobs - len(state.in_flight))
            admitted: list[Batch] = []
            while state.queue and len(admitted) < free:
                batch_id = next(iter(state.queue))
                batch = state.queue.pop(batch_id)
                state.in_flight[batch_id] = batch
                admitted.append(batch)

        started: list[str] = []
        failed: list[str] = []
        for batch in admitted:
            extra = {"batch_id": batch.id, "work_class": work_class.value}
            try:
                self._call(self._runner.run_job, batch)
            except (LaunchError, FutureTimeoutError) as e:
                self._release(state, batch)
                failed.append(batch.id)
                logger.error("job_launch_failed: %s", _describe(e), extra={"event": "job_launch_failed", **extra})
                continue
            except Exception:
                self._release(state, batch)
                failed.append(batch.id)
                logger.exception("job_launch_failed", extra={"event": "job_launch_failed", **extra})
                continue
            started.append(batch.id)
            logger.info("job_started", extra={"event": "job_started", **extra})
        return started, failed

    @staticmethod
    def _release(state: _ClassState, batch: Batch) -> None:
        with state.lock:
            state.in_flight.pop(batch.id, None)

    def _clean_up(self) -> bool:
        try:
            self._call(self._runner.clean_up)
        except (CleanupError, FutureTimeoutError) as e:
            logger.error("cleanup_failed: %s", _describe(e), extra={"event": "cleanup_failed"})
            return False
        except Exception:
            logger.exception("cleanup_failed", extra={"event": "cleanup_failed"})
            return False
        return True

    def _call(self, fn: Callable[..., T], *args: Any) -> T:
        future: Future[T] = Future()

        def _run() -> None:
            try:
                future.set_result(fn(*args))
            except BaseException as e:
                future.set_exception(e)

        # A call that outlives its timeout is abandoned; its thread ends when the backend returns.
        threading.Thread(target=_run, name=f"re-backend-{getattr(fn, '__name__', 'call')}", daemon=True).start()
        return future.result(timeout=self._call_timeout)
