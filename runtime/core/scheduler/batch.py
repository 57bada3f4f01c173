"""Repository and batch model.

A batch is the unit of schedulable work: an ordered, non-empty group of
repositories launched as a single backend job. Its id is derived from the
repository ids and is the admission/dedup key for the scheduler.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Sequence


class WorkClass(str, Enum):
    SCHEDULED = "cron"
    EVENT = "hook"


@dataclass(frozen=True)
class Repository:
    id: str
    path: str
    url: str
    branch: str | None = None
    topics: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "url": self.url,
            "branch": self.branch,
            "topics": list(self.topics),
        }


def create_batch_id(repositories: Iterable[Repository]) -> str:
    """Derive a batch id from the ordered repository ids.

    Order-sensitive: the same repositories in a different order produce a
    different id.
    """
    digest = hashlib.sha1(",".join(repo.id for repo in repositories).encode("utf-8"))
    return digest.hexdigest()


@dataclass(frozen=True)
class Batch:
    id: str
    repositories: tuple[Repository, ...]
    work_class: WorkClass

    @classmethod
    def create(cls, repositories: Sequence[Repository], work_class: WorkClass) -> "Batch":
        repos = tuple(repositories)
        if not repos:
            raise ValueError("A batch needs at least one repository")
        return cls(id=create_batch_id(repos), repositories=repos, work_class=WorkClass(work_class))

    def repository_paths(self) -> list[str]:
        return [repo.path for repo in self.repositories]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "repositories": [repo.to_dict() for repo in self.repositories],
            "type": self.work_class.value,
        }
