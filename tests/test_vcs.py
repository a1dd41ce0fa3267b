from __future__ import annotations

import shutil
import subprocess  # nosec B404 - builds a scratch repository with the real git binary

import pytest

from mergemaster.errors import CommandError
from mergemaster.state_codec import STATE_SUBJECT, IntegrationBranchState, encode_state, find_state
from mergemaster.models import ChangeRequestId
from mergemaster.vcs import GitWorkspace, _parse_log

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")

BOT = "MergeMasterXXL"


def _git(path, *args):
    subprocess.run(["git", *args], cwd=path, check=True, capture_output=True)  # nosec B603 B607


@pytest.fixture
def workspace(tmp_path, repo):
    ws = GitWorkspace(repo, tmp_path, BOT, "bot@example.invalid")
    ws.path.mkdir(parents=True)
    _git(ws.path, "init", "-q")
    _git(ws.path, "symbolic-ref", "HEAD", "refs/heads/master")
    _git(ws.path, "config", "user.name", BOT)
    _git(ws.path, "config", "user.email", "bot@example.invalid")
    _git(ws.path, "config", "commit.gpgsign", "false")
    _git(ws.path, "config", "tag.gpgsign", "false")
    (ws.path / "README.md").write_text("hello\n", encoding="utf-8")
    ws.commit("Initial commit")
    return ws


def test_workspace_path_is_derived_from_repository(tmp_path, repo):
    assert GitWorkspace(repo, tmp_path).path == tmp_path / "GTNewHorizons" / "Example"


def test_state_commit_round_trips_through_git_log(workspace, repo):
    state = IntegrationBranchState(included=[ChangeRequestId(repo, 1)], dependencies=[])
    workspace.commit(STATE_SUBJECT, encode_state(state), allow_empty=True)
    commits = workspace.get_commits("master", 5)
    assert [c.subject for c in commits] == [STATE_SUBJECT, "Initial commit"]
    assert commits[0].author_name == BOT
    assert find_state(commits, BOT) == state


def test_branch_helpers(workspace):
    workspace.checkout_new_branch("dev-mmxxl")
    assert workspace.branch_exists("dev-mmxxl")
    assert workspace.checkout_branch("missing") is False
    assert workspace.checkout_branch("master") is True
    assert workspace.delete_branch("dev-mmxxl") is True
    assert workspace.delete_branch("dev-mmxxl") is False
    assert workspace.branch_exists("dev-mmxxl") is False


def test_merge_uses_given_message(workspace):
    workspace.checkout_new_branch("feature")
    (workspace.path / "feature.txt").write_text("x\n", encoding="utf-8")
    workspace.commit("Add feature")
    workspace.checkout_branch("master")
    workspace.merge("feature", "Merge 'Add feature' into master")
    assert workspace.get_commits("master", 1)[0].subject == "Merge 'Add feature' into master"


def test_conflicting_merge_raises_and_aborts_cleanly(workspace):
    workspace.checkout_new_branch("feature")
    (workspace.path / "README.md").write_text("feature\n", encoding="utf-8")
    workspace.commit("Feature edit")
    workspace.checkout_branch("master")
    (workspace.path / "README.md").write_text("master\n", encoding="utf-8")
    workspace.commit("Master edit")
    with pytest.raises(CommandError):
        workspace.merge("feature", "Merge 'Feature edit' into master")
    workspace.abort_merge()
    assert workspace.has_changes() is False
    assert (workspace.path / "README.md").read_text(encoding="utf-8") == "master\n"


def test_tag_queries(workspace):
    assert workspace.latest_reachable_tag("master") is None
    assert workspace.tag_for_ref("master") is None
    workspace.create_tag("1.0.0")
    assert workspace.tag_for_ref("master") == "1.0.0"
    (workspace.path / "more.txt").write_text("more\n", encoding="utf-8")
    assert workspace.has_changes() is True
    workspace.commit("More")
    assert workspace.has_changes() is False
    assert workspace.tag_for_ref("master") is None
    assert workspace.latest_reachable_tag("master") == "1.0.0"
    assert workspace.recent_tags(5) == ["1.0.0"]
    assert workspace.count_commits("1.0.0..master") == 1
    assert len(workspace.rev_parse("HEAD")) == 40


def test_discovery_reads_do_not_raise(workspace):
    assert workspace.get_commits("no-such-ref") == []
    assert workspace.has_file("README.md") is True
    assert workspace.has_file(".github/workflows/release-tags.yml") is False


def test_parse_log_handles_multiline_bodies():
    record = "\x1f".join(
        [
            "a" * 40,
            "Dev",
            "dev@example.com",
            "2024-01-01T12:00:00+00:00",
            "Dev",
            "dev@example.com",
            "2024-01-01T12:30:00+00:00",
            "Subject",
            "line one\nline two\n",
        ]
    )
    commits = _parse_log(record + "\0\n" + record + "\0")
    assert len(commits) == 2
    assert commits[0].body == "line one\nline two"
    assert commits[1].committer_date.minute == 30
