"""Small utility helpers used across the core runtime."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Sequence, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_rfc3339(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=True, sort_keys=True, separators=(",", ":"))


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of `size` items, preserving order. The last slice may be shorter."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def split_csv(raw: str | None, *, lower: bool = False) -> list[str]:
    """Split a comma-separated setting, dropping empty entries."""
    if not raw:
        return []
    values = [v.strip() for v in raw.split(",")]
    if lower:
        values = [v.lower() for v in values]
    return [v for v in values if v]


def parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def deep_get(d: dict[str, Any], path: list[str]) -> Any:
    cur: Any = d
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            raise KeyError("missing path: " + ".".join(path))
        cur = cur[k]
    return cur


def owner_of(path: str) -> str:
    """Return the lowercased namespace of a `owner/name` repository path."""
    return path.split("/", 1)[0].lower()


def first_header(headers: Any, name: str) -> str | None:
    """Case-insensitive header lookup over a mapping or an iterable of pairs."""
    items: Iterable[tuple[str, Any]] = headers.items() if hasattr(headers, "items") else headers
    lname = name.lower()
    for k, v in items:
        if str(k).lower() == lname:
            return None if v is None else str(v)
    return None
