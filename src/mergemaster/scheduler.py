"""Cross-repository release scheduler.

Phases of one ``ReleaseScheduler.run``:

1. ``scan``: for every repository record which changes the stable branch
   shipped since its latest tag (and the cross-repo dependencies they
   declared) plus the persisted integration-branch state.
2. ``build_release_graph``: one stable target per repository, one integration
   target per repository that has an integration branch, an ``ORDERING`` edge
   from integration to stable, and a ``REQUIRES`` edge for every cross-repo
   dependency towards the target that most recently included it.
3. ``release``: walk targets in topological order. Already tagged branches are
   skipped. Otherwise every ``REQUIRES`` dependency must have a passing
   pipeline (waited on at most once per run), its fresh version is pinned,
   dependencies are updated, the branch and a new tag are pushed and the
   triggered pipeline run is located.
4. ``final_wait``: wait for every pipeline not yet seen passing.

A failed or timed out dependency pipeline raises ``PipelineFailedError`` and
aborts the whole run; unresolvable dependencies raise ``DependencyCheckError``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .context import ReleaseRecord, RunContext
from .errors import DependencyCheckError, PipelineFailedError
from .graph import DependencyGraph, EdgeKind
from .logging import get_logger
from .models import ChangeRequestId, ReleaseTarget, RepositoryId, Variant
from .pipelines import PipelineWaiter, locate_pipeline_run, run_url
from .resolver import merged_fetch_limit, merged_numbers_from_commits, resolve_merged_changes
from .state_codec import find_state
from .tags import increment_tag, latest_tag, try_parse_tag

if TYPE_CHECKING:  # pragma: no cover
    from .buildtool import BuildTool
    from .config import MergeConfig
    from .github_pulls import PullRequestsClient
    from .vcs import GitWorkspace

UPDATE_SUBJECT = "Update dependencies and buildscript"


@dataclass
class ReleasePlan:
    graph: DependencyGraph[ReleaseTarget]
    order: list[ReleaseTarget] = field(default_factory=list)

    def dependencies_of(self, target: ReleaseTarget, kind: EdgeKind | None = None) -> list[ReleaseTarget]:
        deps = [self.graph.payload(key) for key in self.graph.dependencies_of(target.key, kind)]
        return [d for d in deps if d is not None]

    def to_dict(self) -> dict[str, list[str]]:
        return {t.key: [d.key for d in self.dependencies_of(t)] for t in self.order}


class ReleaseScheduler:
    def __init__(
        self,
        cfg: MergeConfig,
        hosting: PullRequestsClient,
        workspace_factory: Callable[[RepositoryId], GitWorkspace],
        build_tool: BuildTool,
        context: RunContext | None = None,
        *,
        waiter: PipelineWaiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cfg = cfg
        self.hosting = hosting
        self.workspace_factory = workspace_factory
        self.build_tool = build_tool
        self.context = context or RunContext(dry_run=cfg.dry_run)
        self.sleep = sleep
        self.waiter = waiter or PipelineWaiter(
            hosting,
            initial_wait=cfg.pipeline_initial_wait,
            poll_interval=cfg.pipeline_poll_interval,
            max_polls=cfg.pipeline_max_polls,
            sleep=sleep,
        )
        self.logger = get_logger()

    @property
    def dry_run(self) -> bool:
        return self.cfg.dry_run

    def _cleanup(self, workspace: GitWorkspace) -> None:
        if not self.cfg.keep_workspaces:
            workspace.remove()

    # --- phase 1: scan --------------------------------------------------------
    def _scan_stable(self, repo: RepositoryId, workspace: GitWorkspace, default_branch: str) -> None:
        latest = workspace.latest_reachable_tag(default_branch)
        if latest is None:
            self.logger.info(f"{repo} has no tags reachable from {default_branch}", repo=str(repo))
            return
        numbers = merged_numbers_from_commits(workspace.get_commits(f"{latest}..{default_branch}"))
        if not numbers:
            return
        limit = merged_fetch_limit(len(numbers), self.cfg.merged_overfetch)
        merged = self.hosting.list_merged_changes(repo, default_branch, limit)
        resolved = resolve_merged_changes(repo, merged, numbers)
        self.context.record_stable(repo, [c.id for c in resolved.changes], resolved.dependencies)

    def _scan_integration(self, repo: RepositoryId, workspace: GitWorkspace, default_branch: str) -> None:
        integration = self.cfg.integration_branch
        if not workspace.checkout_branch(integration):
            self.context.forget_integration(repo)
            return
        self.context.has_integration.add(repo)
        state = find_state(workspace.get_commits(integration, self.cfg.state_lookback), self.cfg.identity_name)
        if state is not None:
            self.context.record_integration_state(repo, state)
        workspace.checkout_branch(default_branch)

    def scan(self, repos: Sequence[RepositoryId]) -> None:
        self.logger.log_operation("release_scan", repos=[str(r) for r in repos])
        for repo in repos:
            workspace = self.workspace_factory(repo)
            try:
                default_branch = workspace.clone()
                self.context.default_branches[repo] = default_branch
                self._scan_stable(repo, workspace, default_branch)
                self._scan_integration(repo, workspace, default_branch)
            finally:
                self._cleanup(workspace)

    # --- phase 2: graph ---------------------------------------------------------
    def build_release_graph(self, repos: Sequence[RepositoryId]) -> ReleasePlan:
        graph: DependencyGraph[ReleaseTarget] = DependencyGraph()
        for repo in repos:
            stable = ReleaseTarget(repo, Variant.STABLE)
            graph.add_node(stable.key, stable)
            if repo in self.context.has_integration:
                integration = ReleaseTarget(repo, Variant.INTEGRATION)
                graph.add_node(integration.key, integration)
                graph.add_dependency(integration.key, stable.key, EdgeKind.ORDERING)

        locations = self.context.locations()
        problems: list[str] = []
        for repo in repos:
            for variant in (Variant.STABLE, Variant.INTEGRATION):
                target = ReleaseTarget(repo, variant)
                if target.key not in graph:
                    continue
                for dep in self.context.dependencies_for(target):
                    location = locations.get(dep)
                    if location is None:
                        problem = self._check_unlocated(target, dep)
                        if problem:
                            self.logger.error(problem, target=target.key)
                            problems.append(problem)
                        continue
                    if variant is Variant.STABLE and location.variant is Variant.INTEGRATION:
                        self.logger.warning(
                            f"Stable branch of {repo} depends on integration change {dep}", target=target.key
                        )
                    if location == target:
                        continue
                    if location.key not in graph:
                        self.logger.warning(
                            f"Ignoring dependency of {target} on {location}: not part of this run",
                            target=target.key,
                        )
                        continue
                    graph.add_dependency(target.key, location.key, EdgeKind.REQUIRES)
        if problems:
            raise DependencyCheckError(problems)

        order = [t for t in (graph.payload(k) for k in graph.overall_order()) if t is not None]
        plan = ReleasePlan(graph, order)
        self.logger.log_operation("release_order", order=[t.key for t in order])
        return plan

    def _check_unlocated(self, target: ReleaseTarget, dep: ChangeRequestId) -> str | None:
        change = self.hosting.get_change(dep)
        if change is None:
            return f"{target} requires change {dep}, which does not exist"
        if change.merged:
            self.logger.info(f"{target} requires {dep}, which is already merged", target=target.key)
            return None
        return (
            f"{target} requires change {dep}, which was not included in any build: "
            "this cannot be recovered automatically"
        )

    # --- phase 3: release ---------------------------------------------------------
    def _await_pipeline(self, dependency: ReleaseTarget, dependent: ReleaseTarget | None = None) -> None:
        if dependency in self.context.passed_pipelines:
            self.logger.info(f"Pipeline for {dependency} already succeeded: skipping", target=dependency.key)
            return
        run_id = self.context.pipeline_runs.get(dependency)
        if run_id is None:
            self.logger.warning(f"Dependency {dependency} has no trackable pipeline", target=dependency.key)
        elif not self.waiter.wait(dependency.repo, run_id):
            raise PipelineFailedError(
                dependency.key, run_url(dependency.repo, run_id), dependent.key if dependent else None
            )
        self.context.passed_pipelines.add(dependency)

    def _next_tag(self, target: ReleaseTarget, workspace: GitWorkspace) -> str | None:
        candidates = [*workspace.recent_tags(self.cfg.recent_tags), *self.context.tags_for(target.repo)]
        parsed = [t for t in (try_parse_tag(c) for c in candidates) if t is not None]
        latest = latest_tag(parsed)
        if latest is None:
            return None
        return increment_tag(latest, target.prerelease)

    def _release_target(self, plan: ReleasePlan, target: ReleaseTarget) -> None:
        repo = target.repo
        workspace = self.workspace_factory(repo)
        try:
            default_branch = workspace.clone()
            branch = self.cfg.integration_branch if target.prerelease else default_branch
            if not workspace.checkout_branch(branch):
                self.logger.warning(f"{branch} is not available for {target}: skipping", target=target.key)
                return
            existing = workspace.tag_for_ref(branch)
            if existing:
                self.logger.info(
                    f"{branch} of {repo} is already tagged {existing}: not tagging again", target=target.key
                )
                self.context.target_tags.setdefault(target, existing)
                self.context.releases.append(ReleaseRecord(target, existing, created=False))
                return
            tag_name = self._next_tag(target, workspace)
            if tag_name is None:
                self.logger.warning(f"{repo} has no parsable tags: {target} will not be tagged", target=target.key)
                return
            self.logger.info(f"Creating tag {tag_name} off of {branch} (target: {target})", target=target.key)

            overrides: dict[RepositoryId, str] = {}
            for dependency in plan.dependencies_of(target, EdgeKind.REQUIRES):
                self.logger.info(f"Checking dependency {dependency} (target: {target})", target=target.key)
                self._await_pipeline(dependency, target)
                version = self.context.target_tags.get(dependency)
                if version:
                    overrides[dependency.repo] = version

            if self.cfg.is_dependency_update_blacklisted(repo):
                self.logger.info(f"Dependency updates are disabled for {repo}", target=target.key)
            else:
                self.build_tool.update_dependencies(workspace.path, overrides)
                if workspace.has_changes():
                    workspace.commit(UPDATE_SUBJECT)

            workspace.create_tag(tag_name, "HEAD")
            self.context.target_tags[target] = tag_name
            record = ReleaseRecord(target, tag_name, created=True)
            self.context.releases.append(record)
            if self.dry_run:
                self.logger.info(f"Dry run: created {tag_name} locally (target: {target})", target=target.key)
                return

            if target.prerelease:
                workspace.force_push(branch)
            else:
                workspace.push(branch)
            workspace.push_tag(tag_name)
            if workspace.has_file(self.cfg.workflow_file):
                record.pipeline_run = locate_pipeline_run(
                    self.hosting,
                    repo,
                    self.cfg.workflow_file,
                    workspace.rev_parse("HEAD"),
                    tag_name,
                    attempts=self.cfg.pipeline_lookup_attempts,
                    pause=self.cfg.pipeline_lookup_pause,
                    initial_delay=self.cfg.pipeline_lookup_initial_delay,
                    sleep=self.sleep,
                )
                if record.pipeline_run is not None:
                    self.context.pipeline_runs[target] = record.pipeline_run
            self.logger.log_operation(
                "release_tagged", target=target.key, tag=tag_name, pipeline_run=record.pipeline_run
            )
        finally:
            self._cleanup(workspace)

    def release(self, plan: ReleasePlan) -> None:
        for target in plan.order:
            with self.logger.timed_operation("release_target", target=target.key):
                self._release_target(plan, target)

    # --- phase 4: drain ---------------------------------------------------------
    def final_wait(self, plan: ReleasePlan) -> None:
        self.logger.info("Finished tagging: waiting for remaining pipelines")
        for target in plan.order:
            if target in self.context.pipeline_runs:
                self._await_pipeline(target)

    def run(self, repos: Sequence[RepositoryId]) -> ReleasePlan:
        self.scan(repos)
        plan = self.build_release_graph(repos)
        self.release(plan)
        self.final_wait(plan)
        return plan


__all__ = ["ReleaseScheduler", "ReleasePlan", "UPDATE_SUBJECT"]
