"""Backend-agnostic Runner interface.

The scheduler launches and probes jobs only through this interface. Concrete
backends live in `runners/` (Docker engine, Kubernetes) and must convert their
client library errors into LaunchError / ProbeError / CleanupError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from scheduler.batch import Batch


class Runner(ABC):
    def __init__(self, image: str, env_path: Path):
        self._image = image
        self._env_path = env_path

    @property
    def image(self) -> str:
        return self._image

    @property
    def env_path(self) -> Path:
        return self._env_path

    @abstractmethod
    def run_job(self, batch: Batch) -> None:
        """Start a job for the batch. Must be externally observable on return. Raises LaunchError."""

    @abstractmethod
    def check_job(self, batch: Batch) -> bool:
        """True while the job is running; False when finished or unknown. Raises ProbeError on backend failure."""

    def clean_up(self) -> None:
        """Backend-wide sweep of terminal jobs. Raises CleanupError. Not needed for all runners."""
        return None
