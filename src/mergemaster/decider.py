"""Incremental rebuild decision for one repository's integration branch.

Decision table (first match wins):

================================================  ===========
condition                                         action
================================================  ===========
no changes, no overlay, no integration branch     SKIP
no changes, no overlay, integration branch        TEAR_DOWN
no integration branch                             REBUILD
no readable prior state                           REBUILD
included set differs from resolved set            REBUILD
a resolved change updated after the branch        REBUILD
default branch has commits the branch lacks       REBUILD
otherwise                                         REUSE
================================================  ===========

An overlay branch newer than the integration branch is logged only: its
content cannot be diffed against the recorded state.

``quick_decision`` covers the rows that need nothing but hosting-API
timestamps, so callers can skip cloning when it answers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .logging import get_logger
from .models import ChangeRequestId, RepositoryId
from .resolver import ResolvedChanges
from .state_codec import IntegrationBranchState


class RebuildAction(str, Enum):
    SKIP = "skip"
    TEAR_DOWN = "tear_down"
    REBUILD = "rebuild"
    REUSE = "reuse"


@dataclass
class RebuildDecision:
    action: RebuildAction
    added: list[ChangeRequestId] = field(default_factory=list)
    removed: list[ChangeRequestId] = field(default_factory=list)
    updated: list[ChangeRequestId] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)
    prior_state: IntegrationBranchState | None = None

    @property
    def needs_rebuild(self) -> bool:
        return self.action is RebuildAction.REBUILD


def quick_decision(
    repo: RepositoryId,
    resolved: ResolvedChanges,
    *,
    integration_updated_at: datetime | None,
    overlay_updated_at: datetime | None,
    integration_branch: str = "integration branch",
) -> RebuildDecision | None:
    """Decide from branch existence alone; ``None`` when prior state must be read."""
    logger = get_logger()
    if not resolved.changes and overlay_updated_at is None:
        if integration_updated_at is None:
            logger.info(
                f"No experimental changes for {repo} and no {integration_branch}: skipping it",
                repo=str(repo),
            )
            return RebuildDecision(RebuildAction.SKIP, reasons=["nothing to integrate"])
        logger.info(
            f"No experimental changes for {repo}: tearing down {integration_branch}",
            repo=str(repo),
        )
        return RebuildDecision(RebuildAction.TEAR_DOWN, reasons=["no changes and no overlay"])
    if integration_updated_at is None:
        return RebuildDecision(RebuildAction.REBUILD, reasons=[f"{integration_branch} does not exist"])
    return None


def decide_rebuild(
    repo: RepositoryId,
    resolved: ResolvedChanges,
    *,
    integration_updated_at: datetime | None,
    overlay_updated_at: datetime | None,
    prior_state: IntegrationBranchState | None,
    default_branch_ahead: int = 0,
    integration_branch: str = "integration branch",
) -> RebuildDecision:
    logger = get_logger()
    quick = quick_decision(
        repo,
        resolved,
        integration_updated_at=integration_updated_at,
        overlay_updated_at=overlay_updated_at,
        integration_branch=integration_branch,
    )
    if quick is not None or integration_updated_at is None:
        early = quick or RebuildDecision(RebuildAction.REBUILD, reasons=[f"{integration_branch} does not exist"])
        early.prior_state = prior_state
        _log(repo, early)
        return early

    decision = RebuildDecision(RebuildAction.REUSE, prior_state=prior_state)
    if prior_state is None:
        decision.reasons.append("no readable prior state")
    else:
        previous = set(prior_state.included)
        current = [c.id for c in resolved.changes]
        decision.added = [c for c in current if c not in previous]
        decision.removed = [p for p in prior_state.included if p not in set(current)]
        if decision.added:
            decision.reasons.append("new changes: " + ", ".join(map(str, decision.added)))
        if decision.removed:
            decision.reasons.append("merged or closed changes: " + ", ".join(map(str, decision.removed)))

    decision.updated = [c.id for c in resolved.changes if c.updated_at > integration_updated_at]
    if decision.updated:
        decision.reasons.append("updated changes: " + ", ".join(map(str, decision.updated)))

    if default_branch_ahead > 0:
        decision.reasons.append(f"{default_branch_ahead} new commit(s) on the default branch")

    if overlay_updated_at is not None and overlay_updated_at > integration_updated_at:
        logger.info(
            f"Detected changes in the overlay branch (last updated at {overlay_updated_at.isoformat()})",
            repo=str(repo),
        )

    if decision.reasons:
        decision.action = RebuildAction.REBUILD
    _log(repo, decision)
    return decision


def _log(repo: RepositoryId, decision: RebuildDecision) -> None:
    get_logger().log_operation(
        "rebuild_decision",
        repo=str(repo),
        action=decision.action.value,
        reasons=decision.reasons,
        added=[str(a) for a in decision.added],
        removed=[str(r) for r in decision.removed],
    )


__all__ = ["RebuildAction", "RebuildDecision", "quick_decision", "decide_rebuild"]
