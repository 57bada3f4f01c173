"""Kubernetes runner: one pod per batch, labelled with the batch id.

Pods are created with restartPolicy=Never, the configured resource requests
and limits, the Renovate secret as envFrom and the Renovate config map mounted
at /tmp/config/. Finished pods are deleted when probed and by `clean_up`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

from kubernetes import client as k8s
from kubernetes import config as kube_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from config.settings import KubernetesConfig
from errors import CleanupError, LaunchError, ProbeError
from runners.interfaces import Runner
from scheduler.batch import Batch
from utils import json_dumps

logger = logging.getLogger(__name__)

BATCH_LABEL = "batchId"
CONFIG_MOUNT_PATH = "/tmp/config/"
_ACTIVE_PHASES = {"Running", "Pending"}


def pod_name(batch: Batch) -> str:
    return f"renovate-{batch.id}"


def _load_core_api() -> k8s.CoreV1Api:
    try:
        kube_config.load_incluster_config()
    except ConfigException:
        kube_config.load_kube_config()
    return k8s.CoreV1Api()


class KubernetesRunner(Runner):
    def __init__(
        self,
        image: str,
        env_path: Path,
        *,
        settings: KubernetesConfig,
        api: Any | None = None,
        request_timeout_seconds: float = 30.0,
    ):
        super().__init__(image, env_path)
        self._settings = settings
        self._api = api
        self._request_timeout = request_timeout_seconds

    @property
    def namespace(self) -> str:
        return self._settings.namespace

    def _core(self) -> Any:
        if self._api is None:
            self._api = _load_core_api()
        return self._api

    def build_pod(self, batch: Batch) -> k8s.V1Pod:
        s = self._settings
        container = k8s.V1Container(
            name="renovate",
            image=self.image,
            resources=k8s.V1ResourceRequirements(
                requests={"cpu": s.cpu_request, "memory": s.memory_request},
                limits={"cpu": s.cpu_limit, "memory": s.memory_limit},
            ),
            env_from=[k8s.V1EnvFromSource(secret_ref=k8s.V1SecretEnvSource(name=s.secret_name))],
            env=[k8s.V1EnvVar(name="RENOVATE_REPOSITORIES", value=json_dumps(batch.repository_paths()))],
            volume_mounts=[k8s.V1VolumeMount(name="renovate-config", mount_path=CONFIG_MOUNT_PATH)],
        )
        pull_secrets = [k8s.V1LocalObjectReference(name=s.image_pull_secret)] if s.image_pull_secret else None
        return k8s.V1Pod(
            api_version="v1",
            kind="Pod",
            metadata=k8s.V1ObjectMeta(name=pod_name(batch), labels={BATCH_LABEL: batch.id}),
            spec=k8s.V1PodSpec(
                restart_policy="Never",
                image_pull_secrets=pull_secrets,
                containers=[container],
                volumes=[
                    k8s.V1Volume(
                        name="renovate-config",
                        config_map=k8s.V1ConfigMapVolumeSource(name=s.config_map_name, default_mode=0o644),
                    )
                ],
            ),
        )

    def run_job(self, batch: Batch) -> None:
        try:
            self._core().create_namespaced_pod(
                self.namespace, self.build_pod(batch), _request_timeout=self._request_timeout
            )
        except (ApiException, ConfigException) as e:
            raise LaunchError(batch.id, str(e)) from e
        logger.info("pod_created", extra={"event": "pod_created", "batch_id": batch.id})

    def check_job(self, batch: Batch) -> bool:
        try:
            res = self._core().list_namespaced_pod(
                self.namespace,
                label_selector=f"{BATCH_LABEL}={batch.id}",
                limit=1,
                _request_timeout=self._request_timeout,
            )
        except (ApiException, ConfigException) as e:
            raise ProbeError(batch.id, str(e)) from e

        if not res.items:
            return False
        pod = res.items[0]
        if _phase(pod) in _ACTIVE_PHASES:
            return True
        try:
            self._delete_pod(pod.metadata.name)
        except ApiException as e:
            # The job is finished either way; clean_up retries the delete.
            logger.warning("pod_delete_failed: %s", e.reason, extra={"event": "pod_delete_failed", "batch_id": batch.id})
        return False

    def clean_up(self) -> None:
        try:
            for pod in self._iter_batch_pods():
                if _phase(pod) not in _ACTIVE_PHASES:
                    self._delete_pod(pod.metadata.name)
        except (ApiException, ConfigException) as e:
            raise CleanupError(f"Failed to clean up pods in {self.namespace}: {e}") from e

    def _iter_batch_pods(self, page_size: int = 100) -> Iterator[Any]:
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"label_selector": BATCH_LABEL, "limit": page_size, "_request_timeout": self._request_timeout}
            if token:
                kwargs["_continue"] = token
            res = self._core().list_namespaced_pod(self.namespace, **kwargs)
            yield from res.items
            token = getattr(res.metadata, "_continue", None) if res.metadata is not None else None
            if not token:
                return

    def _delete_pod(self, name: str) -> None:
        logger.info("pod_deleting: %s", name, extra={"event": "pod_deleting"})
        try:
            self._core().delete_namespaced_pod(name, self.namespace, _request_timeout=self._request_timeout)
        except ApiException as e:
            if e.status == 404:
                return
            raise


def _phase(pod: Any) -> str | None:
    status = getattr(pod, "status", None)
    return getattr(status, "phase", None)
