"""Configuration loader for the core runtime.

Rules:
- Fail closed when config is missing or invalid.
- runtime.yaml provides defaults; RE_* / KUBERNETES_* environment variables override them.
- Relative paths in runtime.yaml are resolved relative to runtime.yaml's directory.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from croniter import croniter

from errors import ConfigurationError
from utils import parse_bool, split_csv

HANDLER_KINDS = ("github", "gitlab")
RUNTIME_KINDS = ("docker", "kubernetes")


@dataclass(frozen=True)
class ServiceConfig:
    host: str
    port: int


@dataclass(frozen=True)
class FeatureFlags:
    api_enabled: bool
    webhook_enabled: bool
    api_secret: str
    webhook_secret: str
    auto_approve: bool


@dataclass(frozen=True)
class SchedulerConfig:
    enabled: bool
    tick_interval_seconds: float
    max_cron_jobs: int
    max_hook_jobs: int
    call_timeout_seconds: float
    probe_attempts: int
    probe_backoff_seconds: float


@dataclass(frozen=True)
class CronConfig:
    schedule: str
    batch_size: int
    retries: int


@dataclass(frozen=True)
class HandlerConfig:
    kind: str  # github|gitlab
    endpoint: str
    token: str
    orgs: tuple[str, ...]
    users: tuple[str, ...]
    topics: tuple[str, ...]
    repositories: tuple[str, ...]
    approve_token: str = ""
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class KubernetesConfig:
    namespace: str
    image_pull_secret: str
    cpu_request: str
    memory_request: str
    cpu_limit: str
    memory_limit: str
    secret_name: str
    config_map_name: str


@dataclass(frozen=True)
class RunnerConfig:
    runtime: str  # docker|kubernetes
    image: str
    env_path: Path
    kubernetes: KubernetesConfig
    request_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class RuntimeConfig:
    service: ServiceConfig
    features: FeatureFlags
    scheduler: SchedulerConfig
    cron: CronConfig
    handler: HandlerConfig
    runner: RunnerConfig
    schemas_dir: Path
    config_dir: Path


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Missing required config file: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid YAML root object in config file: {path}")
    return data


def _resolve_path(base_dir: Path, raw: str) -> Path:
    p = Path(raw)
    if p.is_absolute():
        return p
    return (base_dir / p).resolve()


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{name}' must be an object")
    return value


def _pick(env: Mapping[str, str], name: str, fallback: Any) -> Any:
    v = env.get(name)
    if v is None or v == "":
        return fallback
    return v


def _as_list(value: Any, *, lower: bool = False) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(split_csv(value, lower=lower))
    if isinstance(value, list):
        return tuple(split_csv(",".join(str(v) for v in value), lower=lower))
    raise ConfigurationError(f"Expected list or comma-separated string, got {type(value).__name__}")


def _positive_int(name: str, value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer (got {value!r})") from e
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be positive (got {parsed})")
    return parsed


def _positive_float(name: str, value: Any) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number (got {value!r})") from e
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be positive (got {parsed})")
    return parsed


def load_runtime_config(runtime_config_path: Path, env: Mapping[str, str] | None = None) -> RuntimeConfig:
    env = os.environ if env is None else env
    cfg_dir = runtime_config_path.parent.resolve()
    raw = _load_yaml(runtime_config_path)

    service_raw = _section(raw, "service")
    features_raw = _section(raw, "features")
    scheduler_raw = _section(raw, "scheduler")
    cron_raw = _section(raw, "cron")
    handler_raw = _section(raw, "handler")
    runner_raw = _section(raw, "runner")
    kube_raw = _section(runner_raw, "kubernetes")

    service = ServiceConfig(
        host=str(service_raw.get("host", "0.0.0.0")),
        port=_positive_int("RE_API_PORT", _pick(env, "RE_API_PORT", service_raw.get("port", 4000))),
    )

    features = FeatureFlags(
        api_enabled=parse_bool(_pick(env, "RE_API_ENABLED", features_raw.get("api_enabled", False))),
        webhook_enabled=parse_bool(_pick(env, "RE_WEBHOOK_ENABLED", features_raw.get("webhook_enabled", False))),
        api_secret=str(_pick(env, "RE_API_SECRET", features_raw.get("api_secret", ""))),
        webhook_secret=str(_pick(env, "RE_WEBHOOK_SECRET", features_raw.get("webhook_secret", ""))),
        auto_approve=parse_bool(_pick(env, "RE_AUTO_APPROVE", features_raw.get("auto_approve", False))),
    )

    probe_attempts = _positive_int("scheduler.probe_attempts", scheduler_raw.get("probe_attempts", 3))
    probe_backoff = float(scheduler_raw.get("probe_backoff_seconds", 0.5))
    if probe_backoff < 0:
        raise ConfigurationError("scheduler.probe_backoff_seconds must not be negative")

    scheduler = SchedulerConfig(
        enabled=bool(scheduler_raw.get("enabled", True)),
        # The tick period is fixed by the deployment file; it is not an env tunable.
        tick_interval_seconds=_positive_float("scheduler.tick_interval_seconds", scheduler_raw.get("tick_interval_seconds", 5)),
        max_cron_jobs=_positive_int(
            "RE_MAX_PARALLEL_CRON_JOBS", _pick(env, "RE_MAX_PARALLEL_CRON_JOBS", scheduler_raw.get("max_cron_jobs", 10))
        ),
        max_hook_jobs=_positive_int(
            "RE_MAX_PARALLEL_HOOK_JOBS", _pick(env, "RE_MAX_PARALLEL_HOOK_JOBS", scheduler_raw.get("max_hook_jobs", 10))
        ),
        call_timeout_seconds=_positive_float("scheduler.call_timeout_seconds", scheduler_raw.get("call_timeout_seconds", 120)),
        probe_attempts=probe_attempts,
        probe_backoff_seconds=probe_backoff,
    )

    schedule = str(_pick(env, "RE_CRON_SCHEDULE", cron_raw.get("schedule", "0 * * * *")))
    if not croniter.is_valid(schedule):
        raise ConfigurationError(f"Invalid cron schedule: {schedule!r}")
    cron = CronConfig(
        schedule=schedule,
        batch_size=_positive_int("RE_BATCH_SIZE", _pick(env, "RE_BATCH_SIZE", cron_raw.get("batch_size", 10))),
        retries=_positive_int("RE_RETRIES", _pick(env, "RE_RETRIES", cron_raw.get("retries", 3))),
    )

    handler = _load_handler_config(handler_raw, env)

    kubernetes = KubernetesConfig(
        namespace=str(_pick(env, "KUBERNETES_NAMESPACE", kube_raw.get("namespace", "renovate-executor"))),
        image_pull_secret=str(_pick(env, "KUBERNETES_IMAGE_PULL_SECRET", kube_raw.get("image_pull_secret", ""))),
        cpu_request=str(_pick(env, "KUBERNETES_CPU_REQUEST", kube_raw.get("cpu_request", "1000m"))),
        memory_request=str(_pick(env, "KUBERNETES_MEMORY_REQUEST", kube_raw.get("memory_request", "1024Mi"))),
        cpu_limit=str(_pick(env, "KUBERNETES_CPU_LIMIT", kube_raw.get("cpu_limit", "2000m"))),
        memory_limit=str(_pick(env, "KUBERNETES_MEMORY_LIMIT", kube_raw.get("memory_limit", "2048Mi"))),
        secret_name=str(kube_raw.get("secret_name", "renovate-secret")),
        config_map_name=str(kube_raw.get("config_map_name", "renovate-config")),
    )

    runtime = str(_pick(env, "RE_RUNTIME", runner_raw.get("runtime", "docker"))).lower()
    if runtime not in RUNTIME_KINDS:
        raise ConfigurationError(f"Runtime {runtime} not found (expected one of: {', '.join(RUNTIME_KINDS)})")
    runner = RunnerConfig(
        runtime=runtime,
        image=str(_pick(env, "RE_RENOVATE_IMAGE", runner_raw.get("image", "renovate/renovate"))),
        env_path=_resolve_path(Path.cwd(), str(_pick(env, "RE_RENOVATE_ENV", runner_raw.get("env_path", "./renovate.env.json")))),
        kubernetes=kubernetes,
        request_timeout_seconds=_positive_float("runner.request_timeout_seconds", runner_raw.get("request_timeout_seconds", 30)),
    )

    schemas_dir = _resolve_path(cfg_dir, str(raw.get("schemas_dir", "../../schemas")))

    return RuntimeConfig(
        service=service,
        features=features,
        scheduler=scheduler,
        cron=cron,
        handler=handler,
        runner=runner,
        schemas_dir=schemas_dir,
        config_dir=cfg_dir,
    )


def _load_handler_config(handler_raw: dict[str, Any], env: Mapping[str, str]) -> HandlerConfig:
    kind = str(_pick(env, "RE_HANDLER", handler_raw.get("kind", ""))).lower()
    if kind not in HANDLER_KINDS:
        raise ConfigurationError(f"Handler {kind or '<unset>'} not found (expected one of: {', '.join(HANDLER_KINDS)})")

    prefix = "RE_GITHUB" if kind == "github" else "RE_GITLAB"
    default_endpoint = "https://api.github.com" if kind == "github" else "https://gitlab.com"
    token = str(_pick(env, f"{prefix}_TOKEN", handler_raw.get("token", "")))
    if not token:
        raise ConfigurationError(f"{'GitHub' if kind == 'github' else 'GitLab'} Token not set")

    # GitHub reads orgs/users from RE_GITHUB_ORGS/RE_GITHUB_USER; GitLab from RE_GITLAB_GROUPS/RE_GITLAB_USERS.
    orgs_var = "RE_GITHUB_ORGS" if kind == "github" else "RE_GITLAB_GROUPS"
    users_var = "RE_GITHUB_USER" if kind == "github" else "RE_GITLAB_USERS"

    return HandlerConfig(
        kind=kind,
        endpoint=str(_pick(env, f"{prefix}_ENDPOINT", handler_raw.get("endpoint", default_endpoint))).rstrip("/"),
        token=token,
        orgs=_as_list(_pick(env, orgs_var, handler_raw.get("orgs")), lower=True),
        users=_as_list(_pick(env, users_var, handler_raw.get("users")), lower=True),
        topics=_as_list(_pick(env, "RE_TOPICS", handler_raw.get("topics"))),
        repositories=_as_list(_pick(env, "RE_REPOSITORIES", handler_raw.get("repositories"))),
        approve_token=str(_pick(env, "RE_GITLAB_APPROVE_TOKEN", handler_raw.get("approve_token", ""))),
        timeout_seconds=_positive_float("handler.timeout_seconds", handler_raw.get("timeout_seconds", 30)),
    )


def load_renovate_env(env_path: Path) -> dict[str, str]:
    """Read the JSON object of environment variables handed to every Renovate job."""
    try:
        raw = json.loads(env_path.resolve().read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Renovate Environment File not found or invalid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Renovate Environment File must contain a JSON object: {env_path}")
    return {str(k): str(v) for k, v in raw.items()}


def default_config_paths() -> tuple[Path, Path]:
    # Default to paths relative to the runtime working directory (runtime/core).
    runtime_path = Path.cwd() / "config" / "runtime.yaml"
    logging_path = Path.cwd() / "config" / "logging.yaml"
    return runtime_path, logging_path
