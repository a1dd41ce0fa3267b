"""Per-run context shared by the update and tag phases.

Every table is keyed by typed identifiers and owned by one ``RunContext``
instance, which the drivers pass into each phase explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .models import ChangeRequestId, ReleaseTarget, RepositoryId, Variant
from .state_codec import IntegrationBranchState


@dataclass
class ReleaseRecord:
    target: ReleaseTarget
    tag: str
    created: bool
    pipeline_run: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.key,
            "tag": self.tag,
            "created": self.created,
            "pipeline_run": self.pipeline_run,
        }


@dataclass
class RunContext:
    dry_run: bool = False
    default_branches: dict[RepositoryId, str] = field(default_factory=dict)
    # provenance of what each variant ships
    stable_included: dict[RepositoryId, list[ChangeRequestId]] = field(default_factory=dict)
    stable_dependencies: dict[RepositoryId, list[ChangeRequestId]] = field(default_factory=dict)
    integration_included: dict[RepositoryId, list[ChangeRequestId]] = field(default_factory=dict)
    integration_removed: dict[RepositoryId, list[ChangeRequestId]] = field(default_factory=dict)
    integration_dependencies: dict[RepositoryId, list[ChangeRequestId]] = field(default_factory=dict)
    has_integration: set[RepositoryId] = field(default_factory=set)
    # release bookkeeping
    target_tags: dict[ReleaseTarget, str] = field(default_factory=dict)
    pipeline_runs: dict[ReleaseTarget, int] = field(default_factory=dict)
    passed_pipelines: set[ReleaseTarget] = field(default_factory=set)
    releases: list[ReleaseRecord] = field(default_factory=list)
    # per-repository outcomes for the run summary
    outcomes: dict[RepositoryId, dict[str, Any]] = field(default_factory=dict)
    escalations: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def record_integration_state(self, repo: RepositoryId, state: IntegrationBranchState) -> None:
        self.has_integration.add(repo)
        self.integration_included[repo] = list(state.included)
        self.integration_removed[repo] = list(state.removed)
        self.integration_dependencies[repo] = list(state.dependencies)

    def forget_integration(self, repo: RepositoryId) -> None:
        self.has_integration.discard(repo)
        for table in (self.integration_included, self.integration_removed, self.integration_dependencies):
            table.pop(repo, None)

    def record_stable(
        self, repo: RepositoryId, included: list[ChangeRequestId], dependencies: list[ChangeRequestId]
    ) -> None:
        self.stable_included[repo] = list(included)
        self.stable_dependencies[repo] = list(dependencies)

    def dependencies_for(self, target: ReleaseTarget) -> list[ChangeRequestId]:
        table = self.integration_dependencies if target.prerelease else self.stable_dependencies
        return list(table.get(target.repo, []))

    def locations(self) -> dict[ChangeRequestId, ReleaseTarget]:
        """Release target that most recently included each change.

        Integration-variant state wins over stable-variant state.
        """
        found: dict[ChangeRequestId, ReleaseTarget] = {}
        for repo, changes in self.stable_included.items():
            for change in changes:
                found[change] = ReleaseTarget(repo, Variant.STABLE)
        for repo, changes in self.integration_included.items():
            for change in changes:
                found[change] = ReleaseTarget(repo, Variant.INTEGRATION)
        return found

    def tags_for(self, repo: RepositoryId) -> list[str]:
        """Tags derived for ``repo`` earlier in this run (either variant)."""
        return [tag for target, tag in self.target_tags.items() if target.repo == repo]

    def outcome(self, repo: RepositoryId) -> dict[str, Any]:
        return self.outcomes.setdefault(repo, {})


__all__ = ["RunContext", "ReleaseRecord"]
