"""Core runtime error types.

Backend and network failures are converted into these types at the Runner and
Handler boundaries; the scheduler only ever sees the contract errors below.
HTTP-facing errors are mapped to responses in the API layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable


class RenovateExecutorError(Exception):
    """Base class for runtime errors."""


class ConfigurationError(RenovateExecutorError):
    def __init__(self, message: str, details: Any | None = None):
        self.details = details
        super().__init__(message)


class LaunchError(RenovateExecutorError):
    """The Runner could not start a job for a batch."""

    def __init__(self, batch_id: str, message: str):
        self.batch_id = batch_id
        super().__init__(f"Failed to start job {batch_id}: {message}")


class ProbeError(RenovateExecutorError):
    """The Runner could not determine whether a job is still active."""

    def __init__(self, batch_id: str, message: str):
        self.batch_id = batch_id
        super().__init__(f"Failed to check job {batch_id}: {message}")


class CleanupError(RenovateExecutorError):
    pass


class DiscoveryError(RenovateExecutorError):
    """Listing or fetching repositories from the source-control provider failed."""


class EventNotAllowedError(RenovateExecutorError):
    def __init__(self, event_kind: str, allowed: Iterable[str]):
        self.event_kind = event_kind
        self.allowed = list(allowed)
        super().__init__(f"Event not allowed: {event_kind}. Allowed events: {', '.join(self.allowed)}")


@dataclass(frozen=True)
class SchemaViolation:
    path: str
    message: str


class SchemaValidationError(RenovateExecutorError):
    def __init__(self, kind: str, violations: Iterable[SchemaViolation]):
        self.kind = kind
        self.violations = list(violations)
        super().__init__(f"{kind} failed schema validation ({len(self.violations)} violation(s))")


class UnauthorizedError(RenovateExecutorError):
    pass


class FeatureDisabledError(RenovateExecutorError):
    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(f"{feature} is disabled")


class ApprovalError(RenovateExecutorError):
    """A merge request did not satisfy the auto-approval preconditions."""


class CronRetriesExhausted(RenovateExecutorError):
    """Every attempt of a scheduled discovery cycle failed; the process should exit."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries reached ({attempts}): {last_error}")
