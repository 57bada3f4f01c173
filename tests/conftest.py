from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Ensure `import scheduler...`, `import errors` etc. work when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "runtime" / "core"))

from fakes import FakeRunner  # noqa: E402
from scheduler.worker import JobWorker  # noqa: E402


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def worker(runner: FakeRunner) -> JobWorker:
    return JobWorker(
        runner=runner,
        max_cron_jobs=2,
        max_hook_jobs=2,
        call_timeout_seconds=5.0,
        probe_attempts=3,
        probe_backoff_seconds=0.0,
    )
