from __future__ import annotations

from typing import Any

import pytest

from errors import DiscoveryError, EventNotAllowedError, SchemaValidationError
from fakes import SCHEMAS_DIR, FakeResponse, FakeSession, handler_config
from handlers.github import GitHubHandler
from handlers.payloads import PayloadValidator

API = "https://git.example.test"


@pytest.fixture(scope="module")
def payloads() -> PayloadValidator:
    return PayloadValidator.load_from_dir(SCHEMAS_DIR)


def _gh_repo(n: int, full_name: str, topics: list[str] | None = None, branch: str = "main") -> dict[str, Any]:
    return {
        "id": n,
        "full_name": full_name,
        "html_url": f"https://github.example.test/{full_name}",
        "default_branch": branch,
        "topics": topics or [],
    }


def _paged(pages: list[list[dict[str, Any]]]):
    def _route(params: dict[str, Any]) -> FakeResponse:
        page = int(params["page"])
        return FakeResponse(200, pages[page - 1] if page <= len(pages) else [])

    return _route


def test_fetch_paginates_filters_and_sorts(payloads: PayloadValidator) -> None:
    pages = [
        [_gh_repo(1, "acme/zeta", ["renovate"]), _gh_repo(2, "other/app", ["renovate"])],
        [_gh_repo(3, "Acme/alpha", ["renovate", "x"]), _gh_repo(4, "acme/no-topic"), _gh_repo(1, "acme/zeta", ["renovate"])],
    ]
    session = FakeSession({("GET", f"{API}/user/repos"): _paged(pages)})
    handler = GitHubHandler(handler_config(orgs=("acme",), topics=("renovate",)), payloads=payloads, session=session)

    repos = handler.fetch()

    assert [r.path for r in repos] == ["Acme/alpha", "acme/zeta"]
    assert [c["params"]["page"] for c in session.calls] == [1, 2, 3]
    assert session.headers["Authorization"] == "Bearer provider-token"


def test_fetch_respects_allow_list(payloads: PayloadValidator) -> None:
    pages = [[_gh_repo(1, "acme/a"), _gh_repo(2, "acme/b")]]
    session = FakeSession({("GET", f"{API}/user/repos"): _paged(pages)})
    handler = GitHubHandler(handler_config(repositories=("acme/b",)), payloads=payloads, session=session)
    assert [r.path for r in handler.fetch()] == ["acme/b"]


def test_fetch_failure_is_a_discovery_error(payloads: PayloadValidator) -> None:
    session = FakeSession({("GET", f"{API}/user/repos"): FakeResponse(500, {})})
    handler = GitHubHandler(handler_config(), payloads=payloads, session=session)
    with pytest.raises(DiscoveryError):
        handler.fetch()


def test_check_rejects_disallowed_event(payloads: PayloadValidator) -> None:
    handler = GitHubHandler(handler_config(), payloads=payloads, session=FakeSession({}))
    with pytest.raises(EventNotAllowedError) as exc:
        handler.check({"X-GitHub-Event": "release"}, {"repository": {"id": 1, "full_name": "acme/app"}})
    assert "Allowed events: push, pull_request, issues" in str(exc.value)

    with pytest.raises(EventNotAllowedError, match="not_found"):
        handler.check({}, {"repository": {"id": 1, "full_name": "acme/app"}})


def test_check_validates_payload(payloads: PayloadValidator) -> None:
    handler = GitHubHandler(handler_config(), payloads=payloads, session=FakeSession({}))
    with pytest.raises(SchemaValidationError):
        handler.check({"x-github-event": "push"}, {"zen": "hello"})


def test_check_resolves_repository_and_prefers_payload_branch(payloads: PayloadValidator) -> None:
    session = FakeSession({("GET", f"{API}/repos/acme/app"): FakeResponse(200, _gh_repo(7, "acme/app", branch="main"))})
    handler = GitHubHandler(handler_config(orgs=("acme",)), payloads=payloads, session=session)

    result = handler.check(
        {"x-github-event": "push"},
        {"repository": {"id": 7, "full_name": "acme/app", "default_branch": "develop"}},
    )

    assert result.event_kind == "push"
    assert result.repository is not None
    assert result.repository.id == "7"
    assert result.repository.branch == "develop"


def test_check_skips_filtered_owner_without_calling_api(payloads: PayloadValidator) -> None:
    session = FakeSession({})
    handler = GitHubHandler(handler_config(users=("someone",)), payloads=payloads, session=session)

    result = handler.check({"X-GitHub-Event": "push"}, {"repository": {"id": 7, "full_name": "acme/app"}})

    assert result.repository is None
    assert session.calls == []


def test_check_skips_repository_missing_required_topics(payloads: PayloadValidator) -> None:
    handler = GitHubHandler(handler_config(topics=("renovate",)), payloads=payloads, session=FakeSession({}))
    result = handler.check({"X-GitHub-Event": "push"}, {"repository": {"id": 7, "full_name": "acme/app", "topics": ["other"]}})
    assert result.repository is None
