"""GitLab discovery handler (REST API v4) and merge-request auto-approval."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

from config.settings import HandlerConfig
from errors import ApprovalError, DiscoveryError, EventNotAllowedError
from handlers.interfaces import Handler, HookCheck, MergeRequest, dedupe_by_path, has_all_topics
from handlers.payloads import PayloadValidator
from scheduler.batch import Repository
from utils import deep_get

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
AUTOMERGE_MARKER = "**Automerge**: Enabled"


def _to_repository(data: dict[str, Any]) -> Repository:
    return Repository(
        id=str(data["id"]),
        path=str(data["path_with_namespace"]),
        url=str(data.get("web_url") or ""),
        branch=data.get("default_branch"),
        topics=tuple(data.get("topics") or ()),
    )


def _id_sort_key(repo: Repository) -> tuple[int, str]:
    return (int(repo.id), "") if repo.id.isdigit() else (0, repo.id)


class GitLabHandler(Handler):
    allowed_events = ("push", "merge_request", "issue")

    def __init__(self, config: HandlerConfig, *, payloads: PayloadValidator, session: requests.Session | None = None):
        super().__init__(config)
        self._payloads = payloads
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "renovate-executor"})

    def _request(self, method: str, path: str, *, token: str | None = None, params: dict[str, Any] | None = None) -> requests.Response:
        resp = self._session.request(
            method,
            f"{self.config.endpoint}/api/v4{path}",
            params=params,
            headers={"PRIVATE-TOKEN": token or self.config.token},
            timeout=self.config.timeout_seconds,
        )
        resp.raise_for_status()
        return resp

    def _get_json(self, path: str, *, token: str | None = None, params: dict[str, Any] | None = None) -> Any:
        try:
            return self._request("GET", path, token=token, params=params).json()
        except (requests.RequestException, ValueError) as e:
            raise DiscoveryError(f"GitLab request failed: GET {path}: {e}") from e

    def fetch(self) -> list[Repository]:
        repositories: list[Repository] = []
        params: dict[str, Any] = {"membership": "true", "per_page": PAGE_SIZE}
        if self.config.topics:
            params["topic"] = ",".join(self.config.topics)

        page = 1
        while True:
            items = self._get_json("/projects", params={**params, "page": page})
            if not isinstance(items, list):
                raise DiscoveryError(f"Failed to fetch repositories: unexpected response for page {page}")
            repositories.extend(_to_repository(item) for item in items)
            if len(items) < PAGE_SIZE:
                break
            page += 1

        topics = self.config.topics
        selected = [
            repo
            for repo in repositories
            if self.owner_allowed(repo.path) and self.in_allow_list(repo.path) and has_all_topics(repo.topics, topics)
        ]
        return sorted(dedupe_by_path(selected), key=_id_sort_key)

    def check(self, headers: Mapping[str, str], payload: dict[str, Any]) -> HookCheck:
        kind = str(payload.get("object_kind") or "") if isinstance(payload, dict) else ""
        if not self.check_event(kind):
            raise EventNotAllowedError(kind or "not_found", self.allowed_events)
        self._payloads.validate("GitLabPayload", payload)

        path = str(deep_get(payload, ["project", "path_with_namespace"]))
        logger.info("hook_received: %s for %s", kind, path, extra={"event": "hook_received", "repository": path})

        if not self.owner_allowed(path) or not self.in_allow_list(path):
            return HookCheck(repository=None, event_kind=kind)

        # Topics are not part of the webhook body; read them from the project.
        project_id = deep_get(payload, ["project", "id"])
        try:
            repository = _to_repository(self._get_json(f"/projects/{project_id}"))
        except DiscoveryError as e:
            logger.warning("project_lookup_failed: %s", e, extra={"event": "project_lookup_failed", "repository": path})
            return HookCheck(repository=None, event_kind=kind)

        if not has_all_topics(repository.topics, self.config.topics):
            return HookCheck(repository=None, event_kind=kind)
        return HookCheck(repository=repository, event_kind=kind)

    def is_merge_request(self, event_kind: str) -> bool:
        return event_kind == "merge_request"

    def list_merge_requests(self, repository: Repository) -> list[MergeRequest]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            chunk = self._get_json(
                f"/projects/{repository.id}/merge_requests",
                params={"state": "opened", "per_page": PAGE_SIZE, "page": page},
            )
            if not isinstance(chunk, list):
                raise DiscoveryError(f"Failed to list merge requests of {repository.path}: unexpected response for page {page}")
            items.extend(chunk)
            if len(chunk) < PAGE_SIZE:
                break
            page += 1
        return [
            MergeRequest(
                id=str(mr["iid"]),
                project_id=str(mr["project_id"]),
                title=str(mr.get("title") or ""),
                description=str(mr.get("description") or ""),
                author=str(deep_get(mr, ["author", "id"])),
                repository=repository.path,
                url=str(mr.get("web_url") or ""),
                status=str(mr.get("state") or ""),
            )
            for mr in items
        ]

    def approve_merge_request(self, merge_request: MergeRequest) -> bool:
        """Approve a Renovate merge request. Returns False when it needs no approval.

        Raises ApprovalError when a precondition fails.
        """
        if AUTOMERGE_MARKER not in merge_request.description:
            raise ApprovalError("Automerge is not enabled")
        approve_token = self.config.approve_token
        if not approve_token:
            raise ApprovalError("Approver token not set")

        author = self._get_json("/user")
        if str(author.get("id")) != merge_request.author:
            raise ApprovalError("Renovate user is not the author of the merge request")

        mr_path = f"/projects/{merge_request.project_id}/merge_requests/{merge_request.id}"
        try:
            current = self._get_json(mr_path, token=approve_token)
        except DiscoveryError as e:
            raise ApprovalError(f"Failed to fetch merge request: {e}") from e

        if current.get("state") != "opened":
            raise ApprovalError("Merge request is not open")
        if not current.get("approvals_before_merge"):
            return False

        try:
            self._request("POST", f"{mr_path}/approve", token=approve_token)
        except requests.RequestException as e:
            raise ApprovalError(f"Failed to approve merge request: {e}") from e
        return True
