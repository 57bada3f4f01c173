"""GitHub discovery handler (REST API v3)."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Mapping

import requests

from config.settings import HandlerConfig
from errors import DiscoveryError, EventNotAllowedError
from handlers.interfaces import Handler, HookCheck, dedupe_by_path, has_all_topics
from handlers.payloads import PayloadValidator
from scheduler.batch import Repository
from utils import deep_get, first_header

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def _to_repository(data: dict[str, Any]) -> Repository:
    return Repository(
        id=str(data["id"]),
        path=str(data["full_name"]),
        url=str(data.get("html_url") or ""),
        branch=data.get("default_branch"),
        topics=tuple(data.get("topics") or ()),
    )


class GitHubHandler(Handler):
    allowed_events = ("push", "pull_request", "issues")

    def __init__(self, config: HandlerConfig, *, payloads: PayloadValidator, session: requests.Session | None = None):
        super().__init__(config)
        self._payloads = payloads
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": "renovate-executor",
            }
        )

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            resp = self._session.get(f"{self.config.endpoint}{path}", params=params, timeout=self.config.timeout_seconds)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            raise DiscoveryError(f"GitHub request failed: GET {path}: {e}") from e

    def fetch(self) -> list[Repository]:
        repositories: list[Repository] = []
        page = 1
        while True:
            items = self._get("/user/repos", {"page": page, "per_page": PAGE_SIZE})
            if not isinstance(items, list):
                raise DiscoveryError(f"Could not fetch repositories: unexpected response for page {page}")
            if not items:
                break
            repositories.extend(_to_repository(item) for item in items)
            page += 1

        topics = self.config.topics
        selected = [
            repo
            for repo in repositories
            if self.owner_allowed(repo.path) and has_all_topics(repo.topics, topics) and self.in_allow_list(repo.path)
        ]
        return sorted(dedupe_by_path(selected), key=lambda r: r.path.lower())

    def check(self, headers: Mapping[str, str], payload: dict[str, Any]) -> HookCheck:
        event = first_header(headers, "X-GitHub-Event") or "not_found"
        if not self.check_event(event):
            raise EventNotAllowedError(event, self.allowed_events)
        self._payloads.validate("GitHubPayload", payload)

        full_name = str(deep_get(payload, ["repository", "full_name"]))
        payload_topics = payload["repository"].get("topics") or []
        logger.info("hook_received: %s for %s", event, full_name, extra={"event": "hook_received", "repository": full_name})

        if not self.owner_allowed(full_name):
            return HookCheck(repository=None, event_kind=event)
        if not has_all_topics(payload_topics, self.config.topics):
            return HookCheck(repository=None, event_kind=event)
        if not self.in_allow_list(full_name):
            return HookCheck(repository=None, event_kind=event)

        owner, name = full_name.split("/", 1)
        repository = _to_repository(self._get(f"/repos/{owner}/{name}"))

        branch = payload["repository"].get("default_branch")
        if branch:
            repository = dataclasses.replace(repository, branch=branch)
        return HookCheck(repository=repository, event_kind=event)
