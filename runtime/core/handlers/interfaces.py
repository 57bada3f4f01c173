"""Repository discovery interface.

A Handler lists the repositories that should be checked for updates and
resolves a single repository from a webhook. Filtering rules (owner, topics,
explicit allow-list) are shared by all providers and live here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from config.settings import HandlerConfig
from scheduler.batch import Repository
from utils import owner_of


@dataclass(frozen=True)
class HookCheck:
    repository: Repository | None
    event_kind: str


@dataclass(frozen=True)
class MergeRequest:
    id: str
    project_id: str
    title: str
    description: str
    author: str
    repository: str
    url: str
    status: str


def has_all_topics(topics: Iterable[str], required: Iterable[str]) -> bool:
    present = set(topics)
    return all(t in present for t in required)


def dedupe_by_path(repositories: Iterable[Repository]) -> list[Repository]:
    seen: set[str] = set()
    out: list[Repository] = []
    for repo in repositories:
        if repo.path in seen:
            continue
        seen.add(repo.path)
        out.append(repo)
    return out


class Handler(ABC):
    allowed_events: tuple[str, ...] = ()

    def __init__(self, config: HandlerConfig):
        self._config = config

    @property
    def config(self) -> HandlerConfig:
        return self._config

    def check_event(self, event_kind: str) -> bool:
        return event_kind in self.allowed_events

    def owner_allowed(self, path: str) -> bool:
        """When orgs or users are configured, the owner must appear in one of them."""
        orgs, users = self._config.orgs, self._config.users
        if not orgs and not users:
            return True
        owner = owner_of(path)
        return owner in orgs or owner in users

    def in_allow_list(self, path: str) -> bool:
        predefined = self._config.repositories
        return not predefined or path in predefined

    @abstractmethod
    def fetch(self) -> list[Repository]:
        """Fetch the repositories that should be checked for updates. Raises DiscoveryError."""

    @abstractmethod
    def check(self, headers: Mapping[str, str], payload: dict[str, Any]) -> HookCheck:
        """Resolve the repository a webhook refers to, or None when filtered out.

        Raises EventNotAllowedError for event kinds the handler does not accept.
        """

    def is_merge_request(self, event_kind: str) -> bool:
        return False

    def list_merge_requests(self, repository: Repository) -> list[MergeRequest]:
        raise NotImplementedError(f"{type(self).__name__} does not support merge requests")

    def approve_merge_request(self, merge_request: MergeRequest) -> bool:
        raise NotImplementedError(f"{type(self).__name__} does not support merge requests")
