from __future__ import annotations

from datetime import timedelta

import jsonschema
import requests

from mergemaster.config import MergeConfig
from mergemaster.context import ReleaseRecord, RunContext
from mergemaster.models import ChangeRequestId, ReleaseTarget, RepositoryId, Variant
from mergemaster.orchestrator import (
    Services,
    build_summary,
    plan_repositories,
    update_integration_branches,
    update_repository,
    write_summary,
)
from mergemaster.schemas import get_schemas
from mergemaster.state_codec import STATE_SUBJECT, IntegrationBranchState, encode_state
from conftest import BASE_TIME, make_change
from fakes import FakeBuildTool, FakeHosting, FakeWorkspace, make_commit


class _Setup:
    def __init__(self, tmp_path, repo, **workspace_kw):
        self.hosting = FakeHosting()
        self.workspace = FakeWorkspace(repo, tmp_path, **workspace_kw)
        self.requested: list[RepositoryId] = []
        self.services = Services(self.hosting, self._factory, FakeBuildTool())
        self.context = RunContext()

    def _factory(self, repo):
        self.requested.append(repo)
        return self.workspace


def _state_branch(*included):
    state = IntegrationBranchState(included=list(included))
    return {"dev-mmxxl": [make_commit(STATE_SUBJECT, encode_state(state))]}


def test_repository_without_changes_or_branch_is_skipped(tmp_path, repo):
    setup = _Setup(tmp_path, repo)
    outcome = update_repository(MergeConfig(scratchpad=tmp_path), setup.services, repo, setup.context)
    assert outcome["action"] == "skip"
    assert setup.requested == []
    assert repo not in setup.context.has_integration


def test_stale_integration_branch_is_torn_down(tmp_path, repo):
    setup = _Setup(tmp_path, repo)
    setup.hosting.branch_times[(repo, "dev-mmxxl")] = BASE_TIME
    outcome = update_repository(MergeConfig(scratchpad=tmp_path), setup.services, repo, setup.context)
    assert outcome["action"] == "tear_down"
    assert setup.hosting.deleted == [(repo, "dev-mmxxl")]
    assert setup.requested == []


def test_tear_down_in_dry_run_deletes_nothing(tmp_path, repo):
    setup = _Setup(tmp_path, repo)
    setup.hosting.branch_times[(repo, "dev-mmxxl")] = BASE_TIME
    update_repository(MergeConfig(scratchpad=tmp_path, dry_run=True), setup.services, repo, setup.context)
    assert setup.hosting.deleted == []


def test_missing_integration_branch_is_rebuilt(tmp_path, repo):
    setup = _Setup(tmp_path, repo)
    setup.hosting.open[repo] = [make_change(repo, 1)]
    outcome = update_repository(MergeConfig(scratchpad=tmp_path), setup.services, repo, setup.context)

    assert outcome["action"] == "rebuild"
    assert outcome["merged"] == [str(ChangeRequestId(repo, 1))]
    assert outcome["published"] is True
    assert setup.context.integration_included[repo] == [ChangeRequestId(repo, 1)]
    assert setup.workspace.removed == 1


def test_unchanged_integration_branch_is_reused(tmp_path, repo):
    setup = _Setup(tmp_path, repo, branches=_state_branch(ChangeRequestId(repo, 1)))
    setup.hosting.open[repo] = [make_change(repo, 1)]
    setup.hosting.branch_times[(repo, "dev-mmxxl")] = BASE_TIME + timedelta(hours=1)
    outcome = update_repository(MergeConfig(scratchpad=tmp_path), setup.services, repo, setup.context)

    assert outcome["action"] == "reuse"
    assert setup.workspace.merged == []
    assert setup.workspace.pushes == []
    assert setup.context.integration_included[repo] == [ChangeRequestId(repo, 1)]


def test_updated_change_triggers_rebuild(tmp_path, repo):
    setup = _Setup(tmp_path, repo, branches=_state_branch(ChangeRequestId(repo, 1)))
    setup.hosting.open[repo] = [make_change(repo, 1, updated_minutes=90)]
    setup.hosting.branch_times[(repo, "dev-mmxxl")] = BASE_TIME + timedelta(hours=1)
    outcome = update_repository(MergeConfig(scratchpad=tmp_path), setup.services, repo, setup.context)
    assert outcome["action"] == "rebuild"
    assert any(reason.startswith("updated changes") for reason in outcome["reasons"])


def test_keep_workspaces(tmp_path, repo):
    setup = _Setup(tmp_path, repo)
    setup.hosting.open[repo] = [make_change(repo, 1)]
    update_repository(MergeConfig(scratchpad=tmp_path, keep_workspaces=True), setup.services, repo, setup.context)
    assert setup.workspace.removed == 0


def test_escalation_is_recorded_and_run_continues(tmp_path, repo):
    other = RepositoryId("GTNewHorizons", "Quiet")
    setup = _Setup(
        tmp_path,
        repo,
        branches=_state_branch(ChangeRequestId(repo, 1)),
        conflicts=("mergemaster/Example-1",),
    )
    setup.hosting.open[repo] = [make_change(repo, 1, labels=("Not Revertable",), updated_minutes=90)]
    setup.hosting.branch_times[(repo, "dev-mmxxl")] = BASE_TIME

    exit_code = update_integration_branches(
        MergeConfig(scratchpad=tmp_path), setup.services, [repo, other], setup.context
    )

    assert exit_code == 1
    assert setup.context.escalations == [str(repo)]
    assert setup.context.outcomes[repo]["error"]["category"] == "merge.escalated"
    assert setup.context.outcomes[other]["action"] == "skip"
    assert setup.workspace.pushes == [("force", "HEAD", "refs/heads/dev-mmxxl-error")]


def test_network_failure_is_recorded_and_run_continues(tmp_path, repo, monkeypatch):
    other = RepositoryId("GTNewHorizons", "Quiet")
    setup = _Setup(tmp_path, repo)
    answer = setup.hosting.default_branch

    def flaky_default_branch(target):
        if target == repo:
            raise requests.ConnectionError("Connection reset by peer")
        return answer(target)

    monkeypatch.setattr(setup.hosting, "default_branch", flaky_default_branch)

    exit_code = update_integration_branches(
        MergeConfig(scratchpad=tmp_path), setup.services, [repo, other], setup.context
    )

    assert exit_code == 1
    assert setup.context.escalations == []
    assert setup.context.outcomes[repo]["error"]["category"] == "network"
    assert setup.context.outcomes[other]["action"] == "skip"


def test_third_party_changes_are_appended(tmp_path, repo):
    fork = ChangeRequestId(RepositoryId("Someone", "Fork"), 3)
    setup = _Setup(tmp_path, repo)
    setup.hosting.open[repo] = [make_change(repo, 1)]
    setup.hosting.changes[fork] = make_change(fork.repo, 3, target_branch="main")
    cfg = MergeConfig(scratchpad=tmp_path, third_party={"Example": [str(fork), "not a change"]})

    plan = plan_repositories(cfg, setup.services, [repo])

    assert plan[str(repo)]["order"] == [str(ChangeRequestId(repo, 1)), str(fork)]
    assert setup.requested == []


def test_plan_reports_invalid_dependencies(tmp_path, repo):
    setup = _Setup(tmp_path, repo)
    setup.hosting.open[repo] = [
        make_change(repo, 1),
        make_change(repo, 2, description="depends on: the texture rework"),
    ]
    entry = plan_repositories(MergeConfig(scratchpad=tmp_path), setup.services, [repo])[str(repo)]
    assert entry["default_branch"] == "master"
    assert entry["order"] == [str(ChangeRequestId(repo, 1))]
    assert entry["invalid"] == [str(ChangeRequestId(repo, 2))]


def test_summary_matches_schema(tmp_path, repo):
    context = RunContext(dry_run=True)
    context.outcome(repo).update(action="reuse", reasons=[])
    context.releases.append(ReleaseRecord(ReleaseTarget(repo, Variant.STABLE), "1.0.1", True, 7))
    summary = build_summary("run", context)

    jsonschema.validate(summary, get_schemas()["summary"])
    assert summary["command"] == "run"
    assert summary["releases"] == [
        {"target": "GTNewHorizons/Example:stable", "tag": "1.0.1", "created": True, "pipeline_run": 7}
    ]

    path = write_summary(tmp_path / "out" / "summary.json", summary)
    assert path.read_text().endswith("\n")
