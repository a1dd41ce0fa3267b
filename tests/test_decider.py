from __future__ import annotations

from datetime import timedelta

from mergemaster.decider import RebuildAction, decide_rebuild, quick_decision
from mergemaster.models import ChangeRequestId
from mergemaster.resolver import ResolvedChanges
from mergemaster.state_codec import IntegrationBranchState
from conftest import BASE_TIME, make_change

BRANCH_TIME = BASE_TIME + timedelta(hours=1)


def _resolved(repo, *numbers, updated_minutes=0):
    return ResolvedChanges(repo, [make_change(repo, n, updated_minutes=updated_minutes) for n in numbers])


def _prior(repo, *numbers):
    return IntegrationBranchState(included=[ChangeRequestId(repo, n) for n in numbers])


def test_no_changes_no_branch_skips(repo):
    decision = decide_rebuild(
        repo, _resolved(repo), integration_updated_at=None, overlay_updated_at=None, prior_state=None
    )
    assert decision.action is RebuildAction.SKIP


def test_no_changes_with_branch_tears_down(repo):
    decision = quick_decision(repo, _resolved(repo), integration_updated_at=BRANCH_TIME, overlay_updated_at=None)
    assert decision is not None
    assert decision.action is RebuildAction.TEAR_DOWN
    assert not decision.needs_rebuild


def test_overlay_alone_keeps_branch_alive(repo):
    decision = quick_decision(repo, _resolved(repo), integration_updated_at=None, overlay_updated_at=BRANCH_TIME)
    assert decision is not None
    assert decision.action is RebuildAction.REBUILD


def test_missing_integration_branch_rebuilds(repo):
    decision = quick_decision(repo, _resolved(repo, 1), integration_updated_at=None, overlay_updated_at=None)
    assert decision is not None and decision.needs_rebuild


def test_missing_integration_branch_rebuilds_even_with_prior_state(repo):
    decision = decide_rebuild(
        repo,
        _resolved(repo, 1),
        integration_updated_at=None,
        overlay_updated_at=None,
        prior_state=_prior(repo, 1),
    )
    assert decision.action is RebuildAction.REBUILD
    assert decision.reasons == ["integration branch does not exist"]
    assert decision.prior_state == _prior(repo, 1)


def test_existing_branch_needs_prior_state(repo):
    assert (
        quick_decision(repo, _resolved(repo, 1), integration_updated_at=BRANCH_TIME, overlay_updated_at=None)
        is None
    )


def test_symmetric_difference_forces_rebuild(repo):
    a, b, c = (ChangeRequestId(repo, n) for n in (1, 2, 3))
    decision = decide_rebuild(
        repo,
        _resolved(repo, 1, 3),
        integration_updated_at=BRANCH_TIME,
        overlay_updated_at=None,
        prior_state=_prior(repo, 1, 2),
    )
    assert decision.needs_rebuild
    assert decision.added == [c]
    assert decision.removed == [b]
    assert a not in decision.added + decision.removed


def test_unchanged_set_is_reused(repo):
    prior = _prior(repo, 1, 2)
    decision = decide_rebuild(
        repo,
        _resolved(repo, 1, 2),
        integration_updated_at=BRANCH_TIME,
        overlay_updated_at=None,
        prior_state=prior,
    )
    assert decision.action is RebuildAction.REUSE
    assert decision.prior_state is prior
    assert decision.reasons == []


def test_updated_change_forces_rebuild(repo):
    decision = decide_rebuild(
        repo,
        _resolved(repo, 1, updated_minutes=120),
        integration_updated_at=BRANCH_TIME,
        overlay_updated_at=None,
        prior_state=_prior(repo, 1),
    )
    assert decision.needs_rebuild
    assert decision.updated == [ChangeRequestId(repo, 1)]


def test_newer_overlay_alone_does_not_force_rebuild(repo):
    decision = decide_rebuild(
        repo,
        _resolved(repo, 1),
        integration_updated_at=BRANCH_TIME,
        overlay_updated_at=BRANCH_TIME + timedelta(hours=2),
        prior_state=_prior(repo, 1),
    )
    assert decision.action is RebuildAction.REUSE


def test_default_branch_commits_force_rebuild(repo):
    decision = decide_rebuild(
        repo,
        _resolved(repo, 1),
        integration_updated_at=BRANCH_TIME,
        overlay_updated_at=None,
        prior_state=_prior(repo, 1),
        default_branch_ahead=2,
    )
    assert decision.needs_rebuild


def test_unreadable_prior_state_forces_rebuild(repo):
    decision = decide_rebuild(
        repo, _resolved(repo, 1), integration_updated_at=BRANCH_TIME, overlay_updated_at=None, prior_state=None
    )
    assert decision.needs_rebuild
    assert decision.reasons == ["no readable prior state"]
