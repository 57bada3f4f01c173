"""FastAPI surface for the Renovate executor.

Routes:
- GET  /health  liveness and scheduler state
- GET  /jobs    in-flight batches per work class (API flag + secret)
- GET  /queue   pending batches per work class (API flag + secret)
- POST /hook    webhook entry point (webhook flag + signature)
"""

from __future__ import annotations

import functools
import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.security import check_api_secret, check_webhook_secret, require_api_enabled, require_webhook_enabled
from config.logging import apply_logging_config
from config.settings import FeatureFlags, RuntimeConfig, default_config_paths, load_runtime_config
from errors import (
    ConfigurationError,
    DiscoveryError,
    EventNotAllowedError,
    FeatureDisabledError,
    SchemaValidationError,
    UnauthorizedError,
)
from handlers.factory import build_handler
from handlers.interfaces import Handler
from handlers.payloads import PayloadValidator
from producers.cron import run_cron_with_retries
from producers.hook import handle_hook
from runners.factory import build_runner
from scheduler.batch import WorkClass
from scheduler.loop import Scheduler
from scheduler.worker import JobWorker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppComponents:
    features: FeatureFlags
    worker: JobWorker
    handler: Handler
    scheduler: Scheduler | None = None


def _env_path(name: str) -> Path | None:
    v = os.environ.get(name)
    if not v:
        return None
    return Path(v)


def _log_configuration(cfg: RuntimeConfig) -> None:
    logger.info(
        "configuration: handler=%s runtime=%s batch_size=%d retries=%d max_cron_jobs=%d max_hook_jobs=%d cron=%r",
        cfg.handler.kind,
        cfg.runner.runtime,
        cfg.cron.batch_size,
        cfg.cron.retries,
        cfg.scheduler.max_cron_jobs,
        cfg.scheduler.max_hook_jobs,
        cfg.cron.schedule,
        extra={"event": "configuration"},
    )


def _build_components() -> AppComponents:
    default_runtime, default_logging = default_config_paths()
    runtime_cfg_path = _env_path("RE_RUNTIME_CONFIG") or default_runtime
    logging_cfg_path = _env_path("RE_LOGGING_CONFIG") or default_logging

    apply_logging_config(logging_cfg_path)
    cfg = load_runtime_config(runtime_cfg_path)
    _log_configuration(cfg)

    payloads = PayloadValidator.load_from_dir(cfg.schemas_dir)
    handler = build_handler(cfg.handler, payloads=payloads)
    worker = JobWorker(
        runner=build_runner(cfg.runner),
        max_cron_jobs=cfg.scheduler.max_cron_jobs,
        max_hook_jobs=cfg.scheduler.max_hook_jobs,
        call_timeout_seconds=cfg.scheduler.call_timeout_seconds,
        probe_attempts=cfg.scheduler.probe_attempts,
        probe_backoff_seconds=cfg.scheduler.probe_backoff_seconds,
    )
    scheduler = Scheduler(
        worker=worker,
        config=cfg.scheduler,
        cron=cfg.cron,
        cron_job=functools.partial(
            run_cron_with_retries,
            handler=handler,
            worker=worker,
            batch_size=cfg.cron.batch_size,
            retries=cfg.cron.retries,
        ),
    )
    return AppComponents(features=cfg.features, worker=worker, handler=handler, scheduler=scheduler)


def _error_payload(err: Exception) -> dict[str, Any]:
    if isinstance(err, SchemaValidationError):
        return {
            "error": "SCHEMA_VALIDATION_ERROR",
            "kind": err.kind,
            "violations": [{"path": v.path, "message": v.message} for v in err.violations],
        }
    if isinstance(err, EventNotAllowedError):
        return {"error": "EVENT_NOT_ALLOWED", "message": str(err), "allowed": err.allowed}
    if isinstance(err, FeatureDisabledError):
        return {"error": "FEATURE_DISABLED", "message": str(err)}
    if isinstance(err, UnauthorizedError):
        return {"error": "UNAUTHORIZED", "message": "Unauthorized"}
    if isinstance(err, DiscoveryError):
        return {"error": "DISCOVERY_FAILED", "message": str(err)}
    return {"error": "INTERNAL", "message": str(err)}


def _bad_request(message: str) -> JSONResponse:
    logger.error("bad_request: %s", message, extra={"event": "bad_request"})
    return JSONResponse(status_code=400, content={"error": "BAD_REQUEST", "message": message})


def create_app(components_factory: Callable[[], AppComponents] = _build_components) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Fail closed at startup if config, schemas or backends cannot be set up.
        components = components_factory()
        app.state.components = components
        if components.scheduler is not None:
            components.scheduler.start()
        logger.info("runtime_started", extra={"event": "runtime_started"})
        try:
            yield
        finally:
            if components.scheduler is not None:
                components.scheduler.stop()
            logger.info("runtime_stopped", extra={"event": "runtime_stopped"})

    app = FastAPI(title="Renovate Executor", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(SchemaValidationError)
    def _schema_validation_handler(_req, exc: SchemaValidationError):
        return JSONResponse(status_code=422, content=_error_payload(exc))

    @app.exception_handler(EventNotAllowedError)
    def _event_not_allowed_handler(_req, exc: EventNotAllowedError):
        return JSONResponse(status_code=400, content=_error_payload(exc))

    @app.exception_handler(FeatureDisabledError)
    def _feature_disabled_handler(_req, exc: FeatureDisabledError):
        return JSONResponse(status_code=400, content=_error_payload(exc))

    @app.exception_handler(UnauthorizedError)
    def _unauthorized_handler(_req, exc: UnauthorizedError):
        return JSONResponse(status_code=401, content=_error_payload(exc))

    @app.exception_handler(DiscoveryError)
    def _discovery_handler(_req, exc: DiscoveryError):
        logger.error("discovery_failed: %s", exc, extra={"event": "discovery_failed"})
        return JSONResponse(status_code=502, content=_error_payload(exc))

    @app.exception_handler(ConfigurationError)
    @app.exception_handler(Exception)
    def _unhandled_handler(_req, exc: Exception):
        logger.exception("unhandled_error", extra={"event": "unhandled_error"})
        return JSONResponse(status_code=500, content=_error_payload(exc))

    def _components() -> AppComponents:
        return app.state.components

    @app.get("/health")
    def health() -> dict[str, Any]:
        scheduler = _components().scheduler
        return {"status": "ok", "scheduler_running": bool(scheduler and scheduler.running)}

    @app.get("/jobs")
    def list_jobs(request: Request) -> dict[str, Any]:
        """Batches whose job has been launched and not yet seen finished, split by work class."""
        comps = _components()
        require_api_enabled(comps.features)
        check_api_secret(comps.features, request.headers)
        return {wc.value: [b.to_dict() for b in comps.worker.in_flight(wc)] for wc in WorkClass}

    @app.get("/queue")
    def list_queue(request: Request) -> dict[str, Any]:
        """Batches waiting for a free slot, split by work class."""
        comps = _components()
        require_api_enabled(comps.features)
        check_api_secret(comps.features, request.headers)
        return {wc.value: [b.to_dict() for b in comps.worker.pending(wc)] for wc in WorkClass}

    @app.post("/hook")
    async def receive_hook(request: Request) -> Any:
        comps = _components()
        require_webhook_enabled(comps.features)
        body = await request.body()
        check_webhook_secret(comps.features, request.headers, body)

        content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
        if content_type != "application/json":
            return _bad_request("Content-Type must be application/json")
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            return _bad_request("Payload is not valid JSON")
        if not isinstance(payload, dict) or not payload:
            return _bad_request("Payload is empty")

        batch = await run_in_threadpool(
            handle_hook,
            headers=request.headers,
            payload=payload,
            handler=comps.handler,
            worker=comps.worker,
            auto_approve=comps.features.auto_approve,
        )
        if batch is None:
            return {"message": "Repository skipped"}
        return {"message": "Job added to the queue", "batch_id": batch.id}

    return app


app = create_app()
