"""Change dependency resolution for a single repository.

Given the open change requests of a repository, ``resolve_changes`` applies
the label policy, parses each change's declared ``depends on:`` lines and
orders the survivors so that every change comes after the changes it depends
on. Dependencies that live in another repository are returned separately so
the release scheduler can order repositories against each other.

A change whose declared dependency cannot be parsed is excluded (and
reported); it never contributes nodes or edges to the graph, so its siblings
resolve exactly as if it did not exist.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import InvalidDependencyError
from .graph import DependencyGraph
from .logging import get_logger
from .models import ChangeRequest, ChangeRequestId, Commit, RepositoryId, parse_change_id

if TYPE_CHECKING:  # pragma: no cover
    from .config import MergeConfig

DEPENDS_ON_MARKER = "depends on:"

_NEWLINE = re.compile(r"[\n\r]+")
_SHORT_HASH = re.compile(r"^#(\d+)$")
_MERGE_SUBJECT = re.compile(r"^Merge pull request #(\d+)\b")
_SQUASH_SUBJECT = re.compile(r"\(#(\d+)\)\s*$")


@dataclass(frozen=True)
class ResolverPolicy:
    """Label policy; every label is compared case-insensitively."""

    blocking: frozenset[str] = frozenset()
    ready: frozenset[str] = frozenset()
    not_revertable: str = "not revertable"

    def __post_init__(self) -> None:
        object.__setattr__(self, "blocking", frozenset(x.strip().lower() for x in self.blocking))
        object.__setattr__(self, "ready", frozenset(x.strip().lower() for x in self.ready))
        object.__setattr__(self, "not_revertable", self.not_revertable.strip().lower())

    @classmethod
    def from_config(cls, cfg: MergeConfig) -> ResolverPolicy:
        return cls(
            blocking=frozenset(cfg.blocking_labels),
            ready=frozenset(cfg.ready_labels),
            not_revertable=cfg.not_revertable_label,
        )

    def is_blocked(self, change: ChangeRequest) -> bool:
        return bool(self.blocking & change.labels)

    def is_ready(self, change: ChangeRequest) -> bool:
        # an empty ready set means no ready label is required
        return not self.ready or bool(self.ready & change.labels)

    def is_revertable(self, change: ChangeRequest) -> bool:
        return not change.has_label(self.not_revertable)


@dataclass
class ResolvedChanges:
    repo: RepositoryId
    changes: list[ChangeRequest] = field(default_factory=list)
    dependencies: list[ChangeRequestId] = field(default_factory=list)
    invalid: list[ChangeRequestId] = field(default_factory=list)

    @property
    def permalinks(self) -> list[str]:
        return [c.permalink for c in self.changes]

    def __len__(self) -> int:
        return len(self.changes)


def parse_declared_dependencies(description: str, repo: RepositoryId) -> list[ChangeRequestId]:
    """Parse ``depends on:`` lines; ``#N`` resolves against ``repo``.

    Raises ``InvalidDependencyError`` for the first reference that is not a
    change URL, ``org/name#N`` or ``#N``.
    """
    deps: list[ChangeRequestId] = []
    for line in _NEWLINE.split(description or ""):
        stripped = line.strip()
        if not stripped.lower().startswith(DEPENDS_ON_MARKER):
            continue
        reference = stripped[len(DEPENDS_ON_MARKER) :].strip()
        short = _SHORT_HASH.match(reference)
        dep = ChangeRequestId(repo, int(short.group(1))) if short else parse_change_id(reference)
        if dep is None:
            raise InvalidDependencyError(reference)
        if dep not in deps:
            deps.append(dep)
    return deps


def _eligible(change: ChangeRequest, default_branch: str) -> bool:
    return (
        change.target_branch == default_branch
        and not change.draft
        and not change.locked
        and not change.merged
        and not change.in_merge_queue
    )


def _attach_dependencies(
    repo: RepositoryId, changes: Iterable[ChangeRequest], invalid: list[ChangeRequestId]
) -> list[ChangeRequest]:
    """Parse declared dependencies of every change before any graph mutation."""
    logger = get_logger()
    valid: list[ChangeRequest] = []
    for change in changes:
        try:
            change.dependencies = parse_declared_dependencies(change.description, repo)
        except InvalidDependencyError as exc:
            logger.error(
                f"Change {change.permalink} depends on invalid change {exc.reference!r}: "
                "it will be removed from this release",
                repo=str(repo),
                change=change.permalink,
            )
            invalid.append(change.id)
            continue
        valid.append(change)
    return valid


def _order(repo: RepositoryId, changes: Sequence[ChangeRequest]) -> tuple[list[ChangeRequest], list[ChangeRequestId]]:
    graph: DependencyGraph[ChangeRequest] = DependencyGraph()
    for change in changes:
        graph.add_node(change.permalink, change)
    for change in changes:
        for dep in change.dependencies:
            # synthetic node so ordering still accounts for changes outside this set
            graph.add_node(str(dep))
            graph.add_dependency(change.permalink, str(dep))
    ordered = [
        payload for payload in (graph.payload(key) for key in graph.overall_order()) if payload is not None
    ]
    cross_repo: list[ChangeRequestId] = []
    for change in ordered:
        for dep in change.dependencies:
            if dep.repo != repo and dep not in cross_repo:
                cross_repo.append(dep)
    return ordered, cross_repo


def resolve_changes(
    repo: RepositoryId,
    candidates: Iterable[ChangeRequest],
    policy: ResolverPolicy,
    default_branch: str,
    third_party: Iterable[ChangeRequest] = (),
) -> ResolvedChanges:
    """Filter, validate and order the open changes of ``repo``.

    Third-party changes are appended after the ordered set without label
    filtering or dependency parsing.
    """
    logger = get_logger()
    result = ResolvedChanges(repo)
    surviving: list[ChangeRequest] = []
    for change in candidates:
        if not _eligible(change, default_branch):
            continue
        if policy.is_blocked(change):
            logger.info(f"Skipping blocked change {change.permalink}", repo=str(repo), change=change.permalink)
            continue
        if not policy.is_ready(change):
            logger.debug(f"Skipping change without a ready label {change.permalink}", repo=str(repo))
            continue
        surviving.append(change)
    valid = _attach_dependencies(repo, surviving, result.invalid)
    result.changes, result.dependencies = _order(repo, valid)
    seen = {c.id for c in result.changes}
    for change in third_party:
        if change.id not in seen:
            seen.add(change.id)
            result.changes.append(change)
    logger.log_operation(
        "changes_resolved",
        repo=str(repo),
        changes=result.permalinks,
        dependencies=[str(d) for d in result.dependencies],
        invalid=[str(i) for i in result.invalid],
    )
    return result


def merged_numbers_from_commits(commits: Iterable[Commit]) -> set[int]:
    """Change numbers referenced by merge (``Merge pull request #N``) or squash (``... (#N)``) subjects."""
    numbers: set[int] = set()
    for commit in commits:
        match = _MERGE_SUBJECT.match(commit.subject) or _SQUASH_SUBJECT.search(commit.subject)
        if match:
            numbers.add(int(match.group(1)))
    return numbers


def merged_fetch_limit(count: int, multiplier: float = 1.5) -> int:
    return int(math.floor(count * multiplier))


def resolve_merged_changes(
    repo: RepositoryId, merged: Iterable[ChangeRequest], allowed: set[int]
) -> ResolvedChanges:
    """Provenance of merged changes whose numbers appear in ``allowed``.

    Unlike ``resolve_changes`` an unparsable dependency does not exclude the
    change (it is already merged); its declared dependencies are dropped.
    """
    logger = get_logger()
    result = ResolvedChanges(repo)
    picked: list[ChangeRequest] = []
    for change in merged:
        if change.number not in allowed or any(p.id == change.id for p in picked):
            continue
        try:
            change.dependencies = parse_declared_dependencies(change.description, repo)
        except InvalidDependencyError as exc:
            logger.warning(
                f"Merged change {change.permalink} declares an invalid dependency {exc.reference!r}",
                repo=str(repo),
            )
            change.dependencies = []
        picked.append(change)
    result.changes, result.dependencies = _order(repo, picked)
    return result


__all__ = [
    "DEPENDS_ON_MARKER",
    "ResolverPolicy",
    "ResolvedChanges",
    "parse_declared_dependencies",
    "resolve_changes",
    "resolve_merged_changes",
    "merged_numbers_from_commits",
    "merged_fetch_limit",
]
