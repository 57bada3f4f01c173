"""Scheduled producer: list repositories and queue them in fixed-size batches."""

from __future__ import annotations

import logging

from errors import CronRetriesExhausted
from handlers.interfaces import Handler
from scheduler.batch import Batch, WorkClass
from scheduler.worker import JobWorker
from utils import chunked

logger = logging.getLogger(__name__)


def run_cron_cycle(*, handler: Handler, worker: JobWorker, batch_size: int = 10) -> list[Batch]:
    """Fetch all repositories and enqueue one scheduled batch per consecutive slice.

    Returns the batches created this cycle (duplicates the worker rejected included).
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    logger.info("cron_cycle_started", extra={"event": "cron_cycle_started"})
    repositories = handler.fetch()
    if not repositories:
        logger.warning("no_repositories_found", extra={"event": "no_repositories_found"})
        return []
    logger.info("repositories_fetched: %d", len(repositories), extra={"event": "repositories_fetched"})

    batches = [Batch.create(chunk, WorkClass.SCHEDULED) for chunk in chunked(repositories, batch_size)]
    logger.info(
        "batches_created: %d batch(es) of up to %d repositories",
        len(batches),
        batch_size,
        extra={"event": "batches_created"},
    )

    for batch in batches:
        worker.add_batch_job(batch)
    return batches


def run_cron_with_retries(*, handler: Handler, worker: JobWorker, batch_size: int, retries: int) -> list[Batch]:
    """Run one cycle, retrying failed attempts. Raises CronRetriesExhausted after `retries` failures."""
    if retries <= 0:
        raise ValueError("retries must be positive")
    attempt = 1
    while True:
        try:
            return run_cron_cycle(handler=handler, worker=worker, batch_size=batch_size)
        except Exception as e:
            logger.error(
                "cron_cycle_failed: attempt %d/%d: %s",
                attempt,
                retries,
                e,
                extra={"event": "cron_cycle_failed"},
            )
            if attempt >= retries:
                raise CronRetriesExhausted(retries, e) from e
        attempt += 1
