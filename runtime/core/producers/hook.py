"""Event producer: turn one qualifying webhook into one single-repository batch."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from errors import ApprovalError
from handlers.interfaces import Handler
from scheduler.batch import Batch, Repository, WorkClass
from scheduler.worker import JobWorker

logger = logging.getLogger(__name__)


def auto_approve_merge_requests(handler: Handler, repository: Repository) -> int:
    """Approve the open merge requests of a repository that qualify. Returns how many were approved.

    Failures are logged per merge request and never propagate.
    """
    try:
        merge_requests = handler.list_merge_requests(repository)
    except Exception as e:
        logger.error("merge_request_listing_failed: %s", e, extra={"event": "merge_request_listing_failed", "repository": repository.path})
        return 0

    approved = 0
    for mr in merge_requests:
        extra = {"repository": repository.path}
        try:
            if not handler.approve_merge_request(mr):
                continue
        except ApprovalError as e:
            logger.info("merge_request_skipped: !%s: %s", mr.id, e, extra={"event": "merge_request_skipped", **extra})
            continue
        except Exception as e:
            logger.error("merge_request_approval_failed: !%s: %s", mr.id, e, extra={"event": "merge_request_approval_failed", **extra})
            continue
        approved += 1
        logger.info("merge_request_approved: !%s", mr.id, extra={"event": "merge_request_approved", **extra})
    return approved


def handle_hook(
    *,
    headers: Mapping[str, str],
    payload: dict[str, Any],
    handler: Handler,
    worker: JobWorker,
    auto_approve: bool = False,
) -> Batch | None:
    """Resolve the webhook's repository and enqueue it as an event batch.

    Returns the batch, or None when the handler declined the repository.
    """
    result = handler.check(headers, payload)
    if result.repository is None:
        logger.info("hook_repository_skipped", extra={"event": "hook_repository_skipped"})
        return None

    repository = result.repository
    if auto_approve and handler.is_merge_request(result.event_kind):
        auto_approve_merge_requests(handler, repository)

    batch = Batch.create([repository], WorkClass.EVENT)
    worker.add_hook_job(batch)
    return batch
