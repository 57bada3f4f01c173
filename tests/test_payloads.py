from __future__ import annotations

from pathlib import Path

import pytest

from errors import ConfigurationError, SchemaValidationError
from fakes import SCHEMAS_DIR
from handlers.payloads import PayloadValidator


@pytest.fixture(scope="module")
def payloads() -> PayloadValidator:
    return PayloadValidator.load_from_dir(SCHEMAS_DIR)


def test_github_payload_with_repository_passes(payloads: PayloadValidator) -> None:
    payloads.validate("GitHubPayload", {"repository": {"id": 1, "full_name": "acme/app", "topics": ["renovate"]}, "ref": "x"})


def test_missing_field_reports_pointer_to_parent(payloads: PayloadValidator) -> None:
    with pytest.raises(SchemaValidationError) as exc:
        payloads.validate("GitHubPayload", {"repository": {"id": 1}})
    assert exc.value.kind == "GitHubPayload"
    assert [v.path for v in exc.value.violations] == ["/repository"]
    assert "full_name" in exc.value.violations[0].message


def test_wrong_type_reports_field_pointer(payloads: PayloadValidator) -> None:
    with pytest.raises(SchemaValidationError) as exc:
        payloads.validate("GitLabPayload", {"object_kind": "push", "project": {"id": "7", "path_with_namespace": "acme/app"}})
    assert [v.path for v in exc.value.violations] == ["/project/id"]


def test_violations_are_sorted(payloads: PayloadValidator) -> None:
    with pytest.raises(SchemaValidationError) as exc:
        payloads.validate("GitLabPayload", {"project": {"id": "7", "path_with_namespace": "no-namespace"}})
    paths = [v.path for v in exc.value.violations]
    assert paths == sorted(paths)
    assert len(paths) == 3


def test_unknown_kind_is_a_configuration_error(payloads: PayloadValidator) -> None:
    with pytest.raises(ConfigurationError):
        payloads.validate("BitbucketPayload", {})


def test_missing_schema_dir_fails_closed(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        PayloadValidator.load_from_dir(tmp_path / "missing")


def test_invalid_schema_fails_on_first_use(tmp_path: Path) -> None:
    (tmp_path / "github_payload.schema.yaml").write_text("type: 12\n", encoding="utf-8")
    (tmp_path / "gitlab_payload.schema.yaml").write_text("type: object\n", encoding="utf-8")
    payloads = PayloadValidator.load_from_dir(tmp_path)
    with pytest.raises(ConfigurationError):
        payloads.validate("GitHubPayload", {})
    payloads.validate("GitLabPayload", {})
