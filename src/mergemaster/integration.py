"""Integration-branch rebuild state machine.

::

    CLEAN -> SNAPSHOTTING_PRIOR_STATE -> RESET_FROM_DEFAULT -> REPLAYING_CHANGES
          -> MERGING_OVERLAY -> NORMALIZING -> COMMITTING_STATE -> PUBLISHING

``FAILED`` is reachable from ``REPLAYING_CHANGES`` (a non-revertible change
that was part of the previous build no longer merges) and from
``MERGING_OVERLAY`` (any overlay merge failure). Both publish the pre-merge
tip of the integration branch to the error branch and raise
``EscalatedMergeError``. A revertible change that fails to merge is dropped
from this cycle and replay continues.

The orchestrator works on an already cloned working copy and never deletes
it; cleanup is the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, NoReturn

from .errors import CommandError, EscalatedMergeError
from .logging import get_logger
from .models import ChangeRequest, ChangeRequestId
from .resolver import ResolvedChanges, ResolverPolicy
from .state_codec import STATE_SUBJECT, IntegrationBranchState, encode_state, find_state
from .vcs import WorkspaceProtocol

if TYPE_CHECKING:  # pragma: no cover
    from .buildtool import BuildTool

FORMATTING_SUBJECT = "Apply formatting (spotlessApply)"


class IntegrationPhase(str, Enum):
    CLEAN = "clean"
    SNAPSHOTTING_PRIOR_STATE = "snapshotting_prior_state"
    RESET_FROM_DEFAULT = "reset_from_default"
    REPLAYING_CHANGES = "replaying_changes"
    MERGING_OVERLAY = "merging_overlay"
    NORMALIZING = "normalizing"
    COMMITTING_STATE = "committing_state"
    PUBLISHING = "publishing"
    FAILED = "failed"


@dataclass
class IntegrationResult:
    merged: list[ChangeRequest] = field(default_factory=list)
    failed: list[ChangeRequest] = field(default_factory=list)
    state: IntegrationBranchState = field(default_factory=IntegrationBranchState)
    prior_state: IntegrationBranchState | None = None
    overlay_merged: bool = False
    formatted: bool = False
    published: bool = False


@dataclass
class BranchNames:
    integration: str
    overlay: str
    error: str


class IntegrationOrchestrator:
    def __init__(
        self,
        workspace: WorkspaceProtocol,
        build_tool: BuildTool,
        branches: BranchNames,
        policy: ResolverPolicy,
        *,
        identity_name: str = "MergeMasterXXL",
        state_lookback: int = 5,
        formatting_enabled: bool = True,
        dry_run: bool = False,
    ):
        self.workspace = workspace
        self.build_tool = build_tool
        self.branches = branches
        self.policy = policy
        self.identity_name = identity_name
        self.state_lookback = state_lookback
        self.formatting_enabled = formatting_enabled
        self.dry_run = dry_run
        self.phase = IntegrationPhase.CLEAN
        self.logger = get_logger()

    @property
    def _repo(self) -> str:
        return str(self.workspace.repo)

    def _enter(self, phase: IntegrationPhase) -> None:
        self.logger.log_operation("integration_phase", repo=self._repo, phase=phase.value, previous=self.phase.value)
        self.phase = phase

    # --- phases -------------------------------------------------------------
    def _snapshot_prior_state(self) -> IntegrationBranchState | None:
        integration = self.branches.integration
        if not self.workspace.checkout_branch(integration):
            return None
        self._enter(IntegrationPhase.SNAPSHOTTING_PRIOR_STATE)
        commits = self.workspace.get_commits(integration, self.state_lookback)
        prior = find_state(commits, self.identity_name)
        if prior is None:
            self.logger.warning(f"No readable state on {integration}", repo=self._repo)
        return prior

    def _reset(self, default_branch: str) -> None:
        self._enter(IntegrationPhase.RESET_FROM_DEFAULT)
        if not self.workspace.checkout_branch(default_branch):
            raise CommandError(["git", "checkout", default_branch], "default branch is not available")
        self.workspace.delete_branch(self.branches.integration)
        self.workspace.checkout_new_branch(self.branches.integration)

    def _escalate(self, reason: str) -> NoReturn:
        self._enter(IntegrationPhase.FAILED)
        error = self.branches.error
        self.logger.log_error(
            f"Experimental tagging will be cancelled since {reason}: "
            f"the {self.branches.integration} branch prior to this merge will be pushed to {error}",
            repo=self._repo,
        )
        if not self.dry_run:
            self.workspace.force_push("HEAD", f"refs/heads/{error}")
        raise EscalatedMergeError(self._repo, reason, error)

    def _merge_change(self, change: ChangeRequest, previously_included: set[ChangeRequestId]) -> bool:
        local = f"mergemaster/{change.id.repo.name}-{change.number}"
        integration = self.branches.integration
        try:
            self.workspace.checkout_change(change.id, local)
            if not self.workspace.checkout_branch(integration):
                raise CommandError(["git", "checkout", integration], "integration branch vanished")
            self.workspace.merge(local, f"Merge '{change.title}' into {integration}")
        except CommandError as exc:
            self.logger.log_error(
                f"Could not merge {change.permalink} into {integration}",
                error=str(exc),
                repo=self._repo,
                change=change.permalink,
            )
            self.workspace.abort_merge()
            self.workspace.checkout_branch(integration)
            if not self.policy.is_revertable(change) and change.id in previously_included:
                self._escalate(f"non-revertible change {change.permalink} could not be merged into {integration}")
            return False
        self.logger.log_change_action("merged", change.permalink, self._repo, dry_run=self.dry_run)
        return True

    def _merge_overlay(self) -> bool:
        overlay = self.branches.overlay
        integration = self.branches.integration
        if not self.workspace.branch_exists(overlay) or not self.workspace.checkout_branch(overlay):
            self.logger.info(f"{overlay} does not exist: it will not be merged into {integration}", repo=self._repo)
            return False
        self._enter(IntegrationPhase.MERGING_OVERLAY)
        try:
            if not self.workspace.checkout_branch(integration):
                raise CommandError(["git", "checkout", integration], "integration branch vanished")
            self.workspace.merge(overlay, f"Merge '{overlay}' into {integration}")
        except CommandError as exc:
            self.logger.log_error(f"Could not merge {overlay} into {integration}", error=str(exc), repo=self._repo)
            self.workspace.abort_merge()
            self._escalate(f"{overlay} could not be merged into {integration}")
        return True

    def _normalize(self) -> bool:
        if not self.formatting_enabled:
            return False
        self._enter(IntegrationPhase.NORMALIZING)
        if not self.build_tool.apply_formatting(self.workspace.path):
            return False
        if not self.workspace.has_changes():
            return False
        self.workspace.commit(FORMATTING_SUBJECT)
        return True

    # --- entry point ----------------------------------------------------------
    def rebuild(self, resolved: ResolvedChanges, default_branch: str) -> IntegrationResult:
        self.phase = IntegrationPhase.CLEAN
        result = IntegrationResult()
        with self.logger.timed_operation("integration_rebuild", repo=self._repo):
            result.prior_state = self._snapshot_prior_state()
            previously_included = set(result.prior_state.included) if result.prior_state else set()

            self._reset(default_branch)

            self._enter(IntegrationPhase.REPLAYING_CHANGES)
            self.logger.info(f"Merging {len(resolved.changes)} change(s)", repo=self._repo)
            for change in resolved.changes:
                if self._merge_change(change, previously_included):
                    result.merged.append(change)
                else:
                    result.failed.append(change)

            result.overlay_merged = self._merge_overlay()
            result.formatted = self._normalize()

            self._enter(IntegrationPhase.COMMITTING_STATE)
            merged_ids = [c.id for c in result.merged]
            prior_included = result.prior_state.included if result.prior_state else []
            result.state = IntegrationBranchState(
                included=merged_ids,
                removed=[p for p in prior_included if p not in merged_ids],
                dependencies=list(resolved.dependencies),
            )
            self.workspace.commit(STATE_SUBJECT, encode_state(result.state), allow_empty=True)

            self._enter(IntegrationPhase.PUBLISHING)
            if self.dry_run:
                self.logger.info(f"Dry run: not pushing {self.branches.integration}", repo=self._repo)
            else:
                self.workspace.force_push(self.branches.integration)
                result.published = True
        return result


__all__ = ["IntegrationPhase", "IntegrationOrchestrator", "IntegrationResult", "BranchNames", "FORMATTING_SUBJECT"]
