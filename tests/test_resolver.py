from __future__ import annotations

import pytest

from mergemaster.errors import InvalidDependencyError
from mergemaster.models import ChangeRequestId, Commit, RepositoryId
from mergemaster.resolver import (
    ResolverPolicy,
    merged_fetch_limit,
    merged_numbers_from_commits,
    parse_declared_dependencies,
    resolve_changes,
    resolve_merged_changes,
)
from conftest import BASE_TIME, make_change

POLICY = ResolverPolicy(
    blocking=frozenset({"Affects Balance", "not ready for testing"}),
    ready=frozenset({"ready for testing"}),
    not_revertable="Not Revertable",
)


def _ready(repo, number, **kw):
    return make_change(repo, number, labels=("Ready For Testing",), **kw)


def test_parse_declared_dependencies_forms(repo):
    description = (
        "Some text\r\n"
        "Depends on: #3\n"
        "depends on: https://github.com/GTNewHorizons/Other/pull/9\n"
        "  depends on: lucko/spark#495  \n"
        "depends on: #3\n"
    )
    assert parse_declared_dependencies(description, repo) == [
        ChangeRequestId(repo, 3),
        ChangeRequestId(RepositoryId("GTNewHorizons", "Other"), 9),
        ChangeRequestId(RepositoryId("lucko", "spark"), 495),
    ]


def test_parse_declared_dependencies_rejects_garbage(repo):
    with pytest.raises(InvalidDependencyError) as excinfo:
        parse_declared_dependencies("depends on: the other thing", repo)
    assert excinfo.value.reference == "the other thing"


def test_dependency_order_within_repository(repo):
    first = _ready(repo, 1)
    second = _ready(repo, 2, description="depends on: #1")
    resolved = resolve_changes(repo, [second, first], POLICY, "master")
    assert [c.number for c in resolved.changes] == [1, 2]
    assert resolved.dependencies == []


def test_label_policy_is_case_insensitive(repo):
    blocked = make_change(repo, 1, labels=("Ready for testing", "AFFECTS BALANCE"))
    unready = make_change(repo, 2)
    ready = _ready(repo, 3)
    resolved = resolve_changes(repo, [blocked, unready, ready], POLICY, "master")
    assert [c.number for c in resolved.changes] == [3]


def test_empty_ready_set_requires_no_label(repo):
    policy = ResolverPolicy(blocking=frozenset({"wip"}))
    resolved = resolve_changes(repo, [make_change(repo, 1), make_change(repo, 2, labels=("WIP",))], policy, "master")
    assert [c.number for c in resolved.changes] == [1]


def test_ineligible_changes_are_dropped(repo):
    candidates = [
        _ready(repo, 1, draft=True),
        _ready(repo, 2, locked=True),
        _ready(repo, 3, in_merge_queue=True),
        _ready(repo, 4, target_branch="dev"),
        _ready(repo, 5),
    ]
    resolved = resolve_changes(repo, candidates, POLICY, "master")
    assert [c.number for c in resolved.changes] == [5]


def test_invalid_dependency_excludes_only_the_owning_change(repo):
    good = _ready(repo, 1)
    bad = _ready(repo, 2, description="depends on: nonsense")
    sibling = _ready(repo, 3, description="depends on: #1")
    resolved = resolve_changes(repo, [good, bad, sibling], POLICY, "master")
    assert [c.number for c in resolved.changes] == [1, 3]
    assert resolved.invalid == [ChangeRequestId(repo, 2)]


def test_cross_repo_dependencies_are_collected(repo):
    other = RepositoryId("GTNewHorizons", "Other")
    change = _ready(repo, 1, description=f"depends on: {other.url}/pull/7\ndepends on: #5")
    resolved = resolve_changes(repo, [change], POLICY, "master")
    assert resolved.permalinks == [change.permalink]
    assert resolved.dependencies == [ChangeRequestId(other, 7)]


def test_third_party_changes_are_appended_unfiltered(repo):
    spark = RepositoryId("lucko", "spark")
    external = make_change(spark, 495, target_branch="anything", labels=("affects balance",))
    resolved = resolve_changes(repo, [_ready(repo, 1)], POLICY, "master", third_party=[external])
    assert resolved.permalinks == [f"{repo.url}/pull/1", "https://github.com/lucko/spark/pull/495"]


def _commit(subject: str) -> Commit:
    return Commit("0" * 40, "a", "a@x", BASE_TIME, "c", "c@x", BASE_TIME, subject)


def test_merged_numbers_from_commit_subjects():
    commits = [
        _commit("Merge pull request #12 from someone/branch"),
        _commit("Fix the widget (#15)"),
        _commit("Unrelated commit"),
    ]
    assert merged_numbers_from_commits(commits) == {12, 15}


def test_merged_fetch_limit_overfetches():
    assert merged_fetch_limit(10) == 15
    assert merged_fetch_limit(3) == 4
    assert merged_fetch_limit(0) == 0


def test_resolve_merged_changes_keeps_change_with_bad_dependency(repo):
    other = RepositoryId("GTNewHorizons", "Other")
    merged = [
        make_change(repo, 12, merged=True, description=f"depends on: {other}#4"),
        make_change(repo, 15, merged=True, description="depends on: ???"),
        make_change(repo, 16, merged=True),
    ]
    resolved = resolve_merged_changes(repo, merged, {12, 15})
    assert sorted(c.number for c in resolved.changes) == [12, 15]
    assert resolved.dependencies == [ChangeRequestId(other, 4)]
