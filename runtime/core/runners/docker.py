"""Docker engine runner: one auto-removed container per batch.

The container is named after the batch id so it can be looked up later. The
Renovate environment file is injected as container environment together with
RENOVATE_REPOSITORIES; when the env file names a RENOVATE_CONFIG_FILE it is
bind-mounted read-only into /usr/src/app/.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import docker
from docker.errors import DockerException, NotFound
from docker.types import Mount

from config.settings import load_renovate_env
from errors import ConfigurationError, LaunchError, ProbeError
from runners.interfaces import Runner
from scheduler.batch import Batch
from utils import json_dumps

logger = logging.getLogger(__name__)

CONFIG_MOUNT_DIR = "/usr/src/app"
_FINISHED_STATES = {"exited", "dead", "removing"}


class DockerRunner(Runner):
    def __init__(
        self,
        image: str,
        env_path: Path,
        *,
        client: Any | None = None,
        request_timeout_seconds: float = 30.0,
    ):
        super().__init__(image, env_path)
        self._client = client
        self._request_timeout = request_timeout_seconds

    def _docker(self) -> Any:
        if self._client is None:
            self._client = docker.from_env(timeout=self._request_timeout)
        return self._client

    def create_repositories_env(self, batch: Batch) -> dict[str, str]:
        env = load_renovate_env(self.env_path)
        env["RENOVATE_REPOSITORIES"] = json_dumps(batch.repository_paths())
        return env

    @staticmethod
    def create_mount(env: dict[str, str]) -> Mount | None:
        raw = env.get("RENOVATE_CONFIG_FILE")
        if not raw:
            return None
        config_path = Path(raw).resolve()
        return Mount(
            target=f"{CONFIG_MOUNT_DIR}/{config_path.name}",
            source=str(config_path),
            type="bind",
            read_only=True,
        )

    def run_job(self, batch: Batch) -> None:
        try:
            env = self.create_repositories_env(batch)
        except ConfigurationError as e:
            raise LaunchError(batch.id, str(e)) from e
        mount = self.create_mount(env)

        try:
            client = self._docker()
            client.images.pull(self.image)
            container = client.containers.create(
                image=self.image,
                name=batch.id,
                environment=env,
                auto_remove=True,
                mounts=[mount] if mount else None,
            )
        except DockerException as e:
            raise LaunchError(batch.id, str(e)) from e

        try:
            container.start()
        except DockerException as e:
            self._discard(container, batch)
            raise LaunchError(batch.id, str(e)) from e
        logger.info("container_started", extra={"event": "container_started", "batch_id": batch.id})

    @staticmethod
    def _discard(container: Any, batch: Batch) -> None:
        try:
            container.remove(force=True)
        except NotFound:
            return
        except DockerException as e:
            logger.warning("container_remove_failed: %s", e, extra={"event": "container_remove_failed", "batch_id": batch.id})

    def check_job(self, batch: Batch) -> bool:
        try:
            container = self._docker().containers.get(batch.id)
        except NotFound:
            return False
        except DockerException as e:
            raise ProbeError(batch.id, str(e)) from e
        return container.status not in _FINISHED_STATES
