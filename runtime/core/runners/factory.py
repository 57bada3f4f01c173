"""Select the Runner backend from configuration."""

from __future__ import annotations

from config.settings import RunnerConfig
from errors import ConfigurationError
from runners.interfaces import Runner


def build_runner(config: RunnerConfig) -> Runner:
    if config.runtime == "kubernetes":
        from runners.kubernetes import KubernetesRunner

        return KubernetesRunner(config.image, config.env_path, settings=config.kubernetes, request_timeout_seconds=config.request_timeout_seconds)
    if config.runtime == "docker":
        from runners.docker import DockerRunner

        return DockerRunner(config.image, config.env_path, request_timeout_seconds=config.request_timeout_seconds)
    raise ConfigurationError(f"Runtime {config.runtime} not found")
