"""Multi-repository drivers for the ``update``, ``tag`` and ``plan`` commands.

``update_integration_branches`` runs resolve -> decide -> rebuild for each
repository in sequence. An escalation (or any other mergemaster / API error)
ends that repository's cycle only; the run continues and exits non-zero.
``tag_releases`` hands the repository set to the release scheduler, where
any scheduling error aborts the whole run.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypedDict

import requests

from .buildtool import BuildTool
from .config import MergeConfig
from .context import RunContext
from .decider import RebuildAction, decide_rebuild, quick_decision
from .env_auth import EnvAuthConfig, EnvironmentAuthManager
from .errors import EscalatedMergeError, MergeMasterError, classify_error
from .github_pulls import PullRequestsClient
from .github_rest import GitHubAPIError, GitHubRestClient
from .integration import BranchNames, IntegrationOrchestrator
from .logging import get_logger
from .models import ChangeRequest, RepositoryId, parse_change_id
from .resolver import ResolvedChanges, ResolverPolicy, resolve_changes
from .scheduler import ReleaseScheduler
from .schema_registry import get_schema_descriptor
from .state_codec import IntegrationBranchState, find_state
from .vcs import GitWorkspace


class RunSummary(TypedDict, total=False):
    schemaVersion: str
    generated_at: str
    command: str
    dry_run: bool
    repositories: dict[str, dict[str, Any]]
    releases: list[dict[str, Any]]
    errors: list[dict[str, Any]]


@dataclass
class Services:
    hosting: PullRequestsClient
    workspace_factory: Callable[[RepositoryId], GitWorkspace]
    build_tool: BuildTool


def build_services(cfg: MergeConfig) -> Services:
    auth = EnvironmentAuthManager(
        EnvAuthConfig(load_dotenv=cfg.env_auth_load_dotenv, dotenv_path=cfg.env_auth_dotenv_path)
    )
    token = cfg.github_token or auth.get_github_token()
    auth.configure_github_cli(token)
    rest = GitHubRestClient(token=token, base_url=cfg.github_api_url, graphql_url=cfg.github_graphql_url)

    def _workspace(repo: RepositoryId) -> GitWorkspace:
        return GitWorkspace(repo, cfg.scratchpad, cfg.identity_name, cfg.identity_email)

    return Services(PullRequestsClient(rest), _workspace, BuildTool())


def branch_names(cfg: MergeConfig) -> BranchNames:
    return BranchNames(cfg.integration_branch, cfg.overlay_branch, cfg.error_branch)


# --- resolution -------------------------------------------------------------------


def _third_party_changes(cfg: MergeConfig, services: Services, repo: RepositoryId) -> list[ChangeRequest]:
    changes: list[ChangeRequest] = []
    for url in cfg.third_party_for(repo):
        change_id = parse_change_id(url)
        if change_id is None:
            get_logger().warning(f"Ignoring invalid third-party change {url!r}", repo=str(repo))
            continue
        change = services.hosting.get_change(change_id)
        if change is not None and not change.merged:
            changes.append(change)
    return changes


def resolve_repository(
    cfg: MergeConfig, services: Services, repo: RepositoryId, default_branch: str
) -> ResolvedChanges:
    return resolve_changes(
        repo,
        services.hosting.list_open_changes(repo),
        ResolverPolicy.from_config(cfg),
        default_branch,
        third_party=_third_party_changes(cfg, services, repo),
    )


# --- update -------------------------------------------------------------------------


def _rebuild(
    cfg: MergeConfig,
    workspace: GitWorkspace,
    services: Services,
    resolved: ResolvedChanges,
    default_branch: str,
    outcome: dict[str, Any],
) -> IntegrationBranchState:
    orchestrator = IntegrationOrchestrator(
        workspace,
        services.build_tool,
        branch_names(cfg),
        ResolverPolicy.from_config(cfg),
        identity_name=cfg.identity_name,
        state_lookback=cfg.state_lookback,
        formatting_enabled=not cfg.is_formatting_blacklisted(workspace.repo),
        dry_run=cfg.dry_run,
    )
    result = orchestrator.rebuild(resolved, default_branch)
    outcome["merged"] = [c.permalink for c in result.merged]
    outcome["failed"] = [c.permalink for c in result.failed]
    outcome["published"] = result.published
    return result.state


def update_repository(
    cfg: MergeConfig, services: Services, repo: RepositoryId, context: RunContext
) -> dict[str, Any]:
    logger = get_logger()
    hosting = services.hosting
    outcome: dict[str, Any] = {}
    context.outcomes[repo] = outcome
    logger.info(f"Checking for changes in {repo.url}", repo=str(repo))

    default_branch = hosting.default_branch(repo)
    resolved = resolve_repository(cfg, services, repo, default_branch)
    outcome["changes"] = resolved.permalinks
    outcome["invalid"] = [str(i) for i in resolved.invalid]
    outcome["dependencies"] = [str(d) for d in resolved.dependencies]
    logger.info(f"{repo} has {len(resolved)} change(s) ready for testing", repo=str(repo))

    integration_updated_at = hosting.branch_updated_at(repo, cfg.integration_branch)
    overlay_updated_at = hosting.branch_updated_at(repo, cfg.overlay_branch)
    decision = quick_decision(
        repo,
        resolved,
        integration_updated_at=integration_updated_at,
        overlay_updated_at=overlay_updated_at,
        integration_branch=cfg.integration_branch,
    )
    if decision is not None and decision.action is RebuildAction.SKIP:
        outcome.update(action=decision.action.value, reasons=decision.reasons)
        context.forget_integration(repo)
        return outcome
    if decision is not None and decision.action is RebuildAction.TEAR_DOWN:
        outcome.update(action=decision.action.value, reasons=decision.reasons)
        if cfg.dry_run:
            logger.info(f"Dry run: not deleting {cfg.integration_branch}", repo=str(repo))
        else:
            hosting.delete_branch(repo, cfg.integration_branch)
            logger.info(f"Deleted {cfg.integration_branch}", repo=str(repo))
        context.forget_integration(repo)
        return outcome

    workspace = services.workspace_factory(repo)
    try:
        default_branch = workspace.clone()
        if decision is None:
            prior_state: IntegrationBranchState | None = None
            ahead = 0
            if workspace.checkout_branch(cfg.integration_branch):
                commits = workspace.get_commits(cfg.integration_branch, cfg.state_lookback)
                prior_state = find_state(commits, cfg.identity_name)
                ahead = workspace.count_commits(f"{cfg.integration_branch}..{default_branch}")
                logger.info(
                    f"There have been {ahead} commit(s) to {default_branch} since {cfg.integration_branch} "
                    "was last rebuilt",
                    repo=str(repo),
                )
                workspace.checkout_branch(default_branch)
            decision = decide_rebuild(
                repo,
                resolved,
                integration_updated_at=integration_updated_at,
                overlay_updated_at=overlay_updated_at,
                prior_state=prior_state,
                default_branch_ahead=ahead,
                integration_branch=cfg.integration_branch,
            )
        outcome.update(action=decision.action.value, reasons=decision.reasons)
        if decision.action is RebuildAction.REUSE:
            logger.info(f"No changes have been updated: {cfg.integration_branch} will not be rebuilt", repo=str(repo))
            if decision.prior_state is not None:
                context.record_integration_state(repo, decision.prior_state)
            else:
                context.has_integration.add(repo)
            return outcome
        state = _rebuild(cfg, workspace, services, resolved, default_branch, outcome)
        context.record_integration_state(repo, state)
        return outcome
    finally:
        if not cfg.keep_workspaces:
            workspace.remove()


def _record_error(context: RunContext, repo: RepositoryId | None, exc: BaseException) -> dict[str, Any]:
    info = classify_error(exc)
    entry: dict[str, Any] = {
        "repo": str(repo) if repo else None,
        "category": info.category,
        "message": info.message,
        "type": info.original_type,
        "transient": info.transient,
    }
    context.errors.append(entry)
    get_logger().log_error(f"{repo or 'run'} failed [{info.category}]", error=info.message)
    return entry


def update_integration_branches(
    cfg: MergeConfig, services: Services, repos: Sequence[RepositoryId], context: RunContext
) -> int:
    logger = get_logger()
    logger.info(f"Updating {len(repos)} repositories")
    failed = False
    for repo in repos:
        try:
            with logger.timed_operation("update_repository", repo=str(repo)):
                update_repository(cfg, services, repo, context)
        except (MergeMasterError, GitHubAPIError, requests.RequestException) as exc:
            failed = True
            if isinstance(exc, EscalatedMergeError):
                context.escalations.append(str(repo))
            context.outcome(repo)["error"] = _record_error(context, repo, exc)
    return 1 if failed else 0


# --- tag ----------------------------------------------------------------------------


def tag_releases(
    cfg: MergeConfig, services: Services, repos: Sequence[RepositoryId], context: RunContext
) -> int:
    scheduler = ReleaseScheduler(
        cfg, services.hosting, services.workspace_factory, services.build_tool, context
    )
    try:
        scheduler.run(repos)
    except (MergeMasterError, GitHubAPIError, requests.RequestException) as exc:
        _record_error(context, None, exc)
        return 1
    return 0


# --- plan ---------------------------------------------------------------------------


def plan_repositories(cfg: MergeConfig, services: Services, repos: Sequence[RepositoryId]) -> dict[str, Any]:
    """Merge order and cross-repo dependencies per repository; touches no working copy."""
    plan: dict[str, Any] = {}
    for repo in repos:
        default_branch = services.hosting.default_branch(repo)
        resolved = resolve_repository(cfg, services, repo, default_branch)
        plan[str(repo)] = {
            "default_branch": default_branch,
            "order": resolved.permalinks,
            "dependencies": [str(d) for d in resolved.dependencies],
            "invalid": [str(i) for i in resolved.invalid],
        }
    return plan


# --- summary ------------------------------------------------------------------------


def build_summary(command: str, context: RunContext) -> RunSummary:
    return {
        "schemaVersion": get_schema_descriptor("summary").version,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "command": command,
        "dry_run": context.dry_run,
        "repositories": {str(repo): dict(outcome) for repo, outcome in context.outcomes.items()},
        "releases": [record.to_dict() for record in context.releases],
        "errors": list(context.errors),
    }


def write_summary(path: str | Path, summary: RunSummary) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(summary, indent=2) + "\n", encoding="utf-8")
    get_logger().log_operation("summary_written", path=str(out))
    return out


__all__ = [
    "Services",
    "RunSummary",
    "build_services",
    "branch_names",
    "resolve_repository",
    "update_repository",
    "update_integration_branches",
    "tag_releases",
    "plan_repositories",
    "build_summary",
    "write_summary",
]
