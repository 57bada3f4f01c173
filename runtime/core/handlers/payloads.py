"""Shape checks for incoming webhook bodies.

One YAML JSON Schema (Draft 2020-12) per provider lives under `runtime/schemas/`.
The schemas only pin the fields the handlers read; the rest of a provider's
webhook body is ignored.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from errors import ConfigurationError, SchemaValidationError, SchemaViolation

SCHEMA_FILES: dict[str, str] = {
    "GitHubPayload": "github_payload.schema.yaml",
    "GitLabPayload": "gitlab_payload.schema.yaml",
}


def _read_schema(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigurationError(f"Missing payload schema: {path}")
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Unreadable payload schema {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ConfigurationError(f"Payload schema must be a YAML object: {path}")
    return doc


def _pointer(parts: Iterable[Any]) -> str:
    return "/" + "/".join(str(p).replace("~", "~0").replace("/", "~1") for p in parts)


class PayloadValidator:
    def __init__(self, schemas: Mapping[str, dict[str, Any]]):
        self._schemas = dict(schemas)
        self._validators: dict[str, Draft202012Validator] = {}

    @classmethod
    def load_from_dir(cls, schemas_dir: Path) -> "PayloadValidator":
        if not schemas_dir.is_dir():
            raise ConfigurationError(f"Schemas directory not found: {schemas_dir}")
        return cls({kind: _read_schema(schemas_dir / name) for kind, name in SCHEMA_FILES.items()})

    def validate(self, kind: str, payload: Any) -> None:
        """Raise SchemaValidationError listing every violation, ordered by JSON pointer."""
        violations = sorted(
            (SchemaViolation(path=_pointer(err.absolute_path), message=err.message) for err in self._validator(kind).iter_errors(payload)),
            key=lambda v: (v.path, v.message),
        )
        if violations:
            raise SchemaValidationError(kind, violations)

    def _validator(self, kind: str) -> Draft202012Validator:
        validator = self._validators.get(kind)
        if validator is not None:
            return validator
        schema = self._schemas.get(kind)
        if schema is None:
            raise ConfigurationError(f"Unknown payload kind: {kind}")
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as e:
            raise ConfigurationError(f"Invalid payload schema for {kind}: {e.message}") from e
        validator = self._validators[kind] = Draft202012Validator(schema)
        return validator
