"""In-memory doubles for the Runner and Handler contracts and the HTTP session."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable, Mapping, Union

import requests

from config.settings import HandlerConfig
from errors import DiscoveryError, LaunchError, ProbeError
from handlers.interfaces import Handler, HookCheck, MergeRequest
from runners.interfaces import Runner
from scheduler.batch import Batch, Repository, WorkClass

CORE_DIR = Path(__file__).resolve().parents[1] / "runtime" / "core"
SCHEMAS_DIR = CORE_DIR.parent / "schemas"


def repo(n: int, owner: str = "acme", **kwargs: Any) -> Repository:
    return Repository(id=str(n), path=f"{owner}/repo-{n}", url=f"https://git.example.test/{owner}/repo-{n}", **kwargs)


def batch_of(*ids: int, work_class: WorkClass = WorkClass.SCHEDULED) -> Batch:
    return Batch.create([repo(i) for i in ids], work_class)


def handler_config(kind: str = "github", **overrides: Any) -> HandlerConfig:
    fields: dict[str, Any] = {
        "kind": kind,
        "endpoint": "https://git.example.test",
        "token": "provider-token",
        "orgs": (),
        "users": (),
        "topics": (),
        "repositories": (),
    }
    fields.update(overrides)
    return HandlerConfig(**fields)


class FakeRunner(Runner):
    """Jobs stay "running" until `finish` is called."""

    def __init__(self) -> None:
        super().__init__("renovate/renovate", Path("renovate.env.json"))
        self.started: list[str] = []
        self.running: set[str] = set()
        self.fail_launch: set[str] = set()
        self.probe_failures: dict[str, int] = {}
        self.cleanup_error: Exception | None = None
        self.cleanups = 0
        self.launch_hook: Callable[[Batch], None] | None = None
        self.probe_hook: Callable[[Batch], None] | None = None
        self.cleanup_hook: Callable[[], None] | None = None
        self._lock = threading.Lock()

    def run_job(self, batch: Batch) -> None:
        if self.launch_hook is not None:
            self.launch_hook(batch)
        if batch.id in self.fail_launch:
            raise LaunchError(batch.id, "backend rejected the job")
        with self._lock:
            self.started.append(batch.id)
            self.running.add(batch.id)

    def check_job(self, batch: Batch) -> bool:
        if self.probe_hook is not None:
            self.probe_hook(batch)
        with self._lock:
            remaining = self.probe_failures.get(batch.id, 0)
            if remaining:
                self.probe_failures[batch.id] = remaining - 1
                raise ProbeError(batch.id, "backend unreachable")
            return batch.id in self.running

    def clean_up(self) -> None:
        if self.cleanup_hook is not None:
            self.cleanup_hook()
        self.cleanups += 1
        if self.cleanup_error is not None:
            raise self.cleanup_error

    def finish(self, batch_id: str) -> None:
        with self._lock:
            self.running.discard(batch_id)


class FakeHandler(Handler):
    allowed_events = ("push", "merge_request")

    def __init__(
        self,
        repositories: list[Repository] | None = None,
        *,
        failures: int = 0,
        hook: HookCheck | Exception | None = None,
        merge_requests: list[MergeRequest] | None = None,
    ) -> None:
        super().__init__(handler_config())
        self.repositories = list(repositories or [])
        self.failures = failures
        self.fetch_calls = 0
        self.hook = hook
        self.merge_requests = list(merge_requests or [])
        self.approve_results: dict[str, bool | Exception] = {}
        self.approved: list[str] = []

    def fetch(self) -> list[Repository]:
        self.fetch_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise DiscoveryError("provider unavailable")
        return list(self.repositories)

    def check(self, headers: Mapping[str, str], payload: dict[str, Any]) -> HookCheck:
        if isinstance(self.hook, Exception):
            raise self.hook
        if self.hook is None:
            return HookCheck(repository=None, event_kind="push")
        return self.hook

    def is_merge_request(self, event_kind: str) -> bool:
        return event_kind == "merge_request"

    def list_merge_requests(self, repository: Repository) -> list[MergeRequest]:
        return list(self.merge_requests)

    def approve_merge_request(self, merge_request: MergeRequest) -> bool:
        result = self.approve_results.get(merge_request.id, True)
        if isinstance(result, Exception):
            raise result
        if result:
            self.approved.append(merge_request.id)
        return result


class FakeResponse:
    def __init__(self, status_code: int = 200, data: Any = None):
        self.status_code = status_code
        self._data = data

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def json(self) -> Any:
        return self._data


Route = Union[FakeResponse, Callable[[dict[str, Any]], FakeResponse]]


class FakeSession:
    """Routes (method, url) to canned responses; unknown routes answer 404."""

    def __init__(self, routes: dict[tuple[str, str], Route]):
        self.headers: dict[str, str] = {}
        self.routes = routes
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, params: Any = None, headers: Any = None, timeout: Any = None) -> FakeResponse:
        params = dict(params or {})
        self.calls.append({"method": method, "url": url, "params": params, "headers": dict(headers or {})})
        route = self.routes.get((method, url))
        if route is None:
            return FakeResponse(404, {"message": "Not Found"})
        return route(params) if callable(route) else route

    def get(self, url: str, params: Any = None, timeout: Any = None) -> FakeResponse:
        return self.request("GET", url, params=params, timeout=timeout)
