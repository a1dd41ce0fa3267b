"""Core value types shared by the resolver, codec, orchestrator and scheduler.

Identity rules:

* ``RepositoryId`` stringifies to ``organization/name``; a bare ``name`` parses
  against the configured default organization.
* ``ChangeRequestId`` stringifies to the hosted review URL
  (``https://github.com/<org>/<name>/pull/<n>``). That string is the identity
  used for graph keys and persisted state, so ``parse_change_id`` must accept
  everything ``str()`` produces.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_ORGANIZATION = "GTNewHorizons"
GITHUB_URL = "https://github.com"

_CHANGE_URL = re.compile(
    r"^https://github\.com/(?P<org>[\w.\-]+)/(?P<name>[\w.\-]+)/pull/(?P<number>\d+)/?$"
)
_CHANGE_SHORT = re.compile(r"^(?P<org>[\w.\-]+)/(?P<name>[\w.\-]+)#(?P<number>\d+)$")
_REPO_NAME = re.compile(r"^[\w.\-]+$")


@dataclass(frozen=True, order=True)
class RepositoryId:
    organization: str
    name: str

    def __str__(self) -> str:
        return f"{self.organization}/{self.name}"

    @property
    def url(self) -> str:
        return f"{GITHUB_URL}/{self}"


def parse_repository_id(text: str, default_organization: str = DEFAULT_ORGANIZATION) -> RepositoryId:
    """Parse ``org/name`` or a bare ``name`` (implying the default organization)."""
    raw = text.strip().strip("/")
    if raw.startswith(GITHUB_URL + "/"):
        raw = raw[len(GITHUB_URL) + 1 :]
    parts = raw.split("/")
    if len(parts) == 1 and _REPO_NAME.match(parts[0]):
        return RepositoryId(default_organization, parts[0])
    if len(parts) == 2 and all(_REPO_NAME.match(p) for p in parts):  # noqa: PLR2004
        return RepositoryId(parts[0], parts[1])
    raise ValueError(f"Invalid repository identifier: {text!r}")


@dataclass(frozen=True, order=True)
class ChangeRequestId:
    repo: RepositoryId
    number: int

    def __str__(self) -> str:
        return f"{self.repo.url}/pull/{self.number}"

    @property
    def url(self) -> str:
        return str(self)

    @property
    def short(self) -> str:
        return f"{self.repo}#{self.number}"


def parse_change_id(text: str) -> ChangeRequestId | None:
    """Parse a change URL or ``org/name#N`` short form; ``None`` when invalid."""
    candidate = text.strip()
    match = _CHANGE_URL.match(candidate) or _CHANGE_SHORT.match(candidate)
    if not match:
        return None
    return ChangeRequestId(
        RepositoryId(match.group("org"), match.group("name")),
        int(match.group("number")),
    )


@dataclass
class ChangeRequest:
    """A pull request as fetched from the hosting provider for one cycle."""

    id: ChangeRequestId
    title: str
    target_branch: str
    description: str
    updated_at: datetime
    labels: frozenset[str] = frozenset()
    draft: bool = False
    locked: bool = False
    merged: bool = False
    in_merge_queue: bool = False
    dependencies: list[ChangeRequestId] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.labels = frozenset(label.strip().lower() for label in self.labels)

    @property
    def permalink(self) -> str:
        return str(self.id)

    @property
    def number(self) -> int:
        return self.id.number

    def has_label(self, label: str) -> bool:
        return label.strip().lower() in self.labels


@dataclass(frozen=True)
class Commit:
    sha: str
    author_name: str
    author_email: str
    author_date: datetime
    committer_name: str
    committer_email: str
    committer_date: datetime
    subject: str
    body: str = ""


class Variant(str, Enum):
    STABLE = "stable"
    INTEGRATION = "integration"


@dataclass(frozen=True, order=True)
class ReleaseTarget:
    repo: RepositoryId
    variant: Variant

    @property
    def key(self) -> str:
        return f"{self.repo}:{self.variant.value}"

    @property
    def prerelease(self) -> bool:
        return self.variant is Variant.INTEGRATION

    def __str__(self) -> str:
        return self.key


__all__ = [
    "DEFAULT_ORGANIZATION",
    "RepositoryId",
    "ChangeRequestId",
    "ChangeRequest",
    "Commit",
    "Variant",
    "ReleaseTarget",
    "parse_repository_id",
    "parse_change_id",
]
