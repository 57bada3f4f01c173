"""Periodic control loop.

Two daemon threads drive the worker:
- the tick loop calls JobWorker.tick on a fixed short period
- the cron loop runs the scheduled producer on a cron expression

Ticks run on one thread, so they never overlap. A scheduled producer that
exhausts its retries terminates the process so a supervisor restarts it.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from typing import Callable

from croniter import croniter

from config.settings import CronConfig, SchedulerConfig
from errors import CronRetriesExhausted
from scheduler.worker import JobWorker

logger = logging.getLogger(__name__)


def _exit_process(code: int) -> None:
    # Called from a worker thread: sys.exit would only end the thread.
    logging.shutdown()
    os._exit(code)


class Scheduler:
    def __init__(
        self,
        *,
        worker: JobWorker,
        config: SchedulerConfig,
        cron: CronConfig,
        cron_job: Callable[[], object],
        exit_process: Callable[[int], None] = _exit_process,
    ):
        self._worker = worker
        self._config = config
        self._cron = cron
        self._cron_job = cron_job
        self._exit_process = exit_process
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if not self._config.enabled:
            logger.info("scheduler_disabled", extra={"event": "scheduler_disabled"})
            return
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._tick_loop, name="re-tick", daemon=True),
            threading.Thread(target=self._cron_loop, name="re-cron", daemon=True),
        ]
        for t in self._threads:
            t.start()
        logger.info(
            "scheduler_started: tick every %ss, cron %r",
            self._config.tick_interval_seconds,
            self._cron.schedule,
            extra={"event": "scheduler_started"},
        )

    def stop(self, *, timeout_s: float = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout=timeout_s)
        self._threads = []

    def _tick_loop(self) -> None:
        while not self._stop.wait(self._config.tick_interval_seconds):
            try:
                self._worker.tick()
            except Exception:
                logger.exception("tick_failed", extra={"event": "tick_failed"})

    def _cron_loop(self) -> None:
        schedule = croniter(self._cron.schedule, datetime.now().astimezone())
        while not self._stop.is_set():
            fire_at = schedule.get_next(datetime)
            delay = max(0.0, (fire_at - datetime.now().astimezone()).total_seconds())
            if self._stop.wait(delay):
                return
            self.run_cron_once()

    def run_cron_once(self) -> None:
        try:
            self._cron_job()
        except CronRetriesExhausted as e:
            logger.critical("cron_retries_exhausted: %s", e, extra={"event": "cron_retries_exhausted"})
            self._exit_process(1)
        except Exception:
            logger.exception("cron_cycle_crashed", extra={"event": "cron_cycle_crashed"})
