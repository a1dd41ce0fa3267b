"""mergemaster CLI.

Subcommands:
  update  -> rebuild integration branches from ready changes (summary JSON)
  tag     -> tag and push release targets in cross-repository dependency order
  run     -> update followed by tag in the same process
  plan    -> print each repository's merge order without touching working copies
  state   -> print the decoded integration-branch state of one repository
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

import requests
import yaml

from .config import CONFIG_DEFAULT, ConfigError, MergeConfig
from .context import RunContext
from .errors import MergeMasterError, classify_error, redact
from .github_rest import GitHubAPIError
from .orchestrator import (
    Services,
    build_services,
    build_summary,
    plan_repositories,
    tag_releases,
    update_integration_branches,
    write_summary,
)
from .repositories import discover_repositories
from .runtime import execute_command, prepare_config
from .state_codec import find_state

EXIT_CONFIG_ERROR = 2
REPO_HELP = "Process only this repository (organization/name or bare name); repeatable"

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _add_branch_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=CONFIG_DEFAULT)
    parser.add_argument("--integration-branch", help="Override the integration branch name")
    parser.add_argument("--overlay-branch", help="Override the manually curated overlay branch name")
    parser.add_argument("--error-branch", help="Override the branch receiving escalated failures")


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    _add_branch_options(parser)
    parser.add_argument("--repo", action="append", help=REPO_HELP)
    parser.add_argument("--dry-run", action="store_true", help="Compute and log, but push nothing")
    parser.add_argument("--summary-json", help="Write the run summary to this path")


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with subcommands.

    Keep ordering stable for help output readability.
    """
    p = _FormatterArgumentParser(
        prog="mergemaster", description="Multi-repository experimental release integration"
    )
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress informational logging (env: MERGEMASTER_QUIET=1)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pu = sub.add_parser("update", help="Rebuild integration branches from ready changes")
    _add_common_options(pu)

    pt = sub.add_parser("tag", help="Tag and push releases in dependency order")
    _add_common_options(pt)

    pr = sub.add_parser("run", help="Run update followed by tag")
    _add_common_options(pr)

    pp = sub.add_parser("plan", help="Print merge order and cross-repository dependencies")
    _add_common_options(pp)
    pp.add_argument("--json", action="store_true", help="Emit the plan as JSON")

    pst = sub.add_parser("state", help="Print the recorded integration-branch state of a repository")
    _add_branch_options(pst)
    pst.add_argument("repository", help="organization/name or bare name")
    return p


def _quiet(args: argparse.Namespace) -> bool:
    return bool(getattr(args, "quiet", False))


def _finish(command: str, cfg: MergeConfig, args: argparse.Namespace, context: RunContext, exit_code: int) -> int:
    from .ux import print_run_summary, quiet_line  # noqa: PLC0415

    summary = build_summary(command, context)
    if cfg.summary_json:
        write_summary(cfg.summary_json, summary)
    if _quiet(args):
        print(quiet_line(command, context))
    else:
        print_run_summary(command, context, exit_code)
    return exit_code


def _cmd_update(cfg: MergeConfig, args: argparse.Namespace, services: Services | None = None) -> int:
    services = services or build_services(cfg)
    repos = discover_repositories(cfg, args.repo)
    context = RunContext(dry_run=cfg.dry_run)
    exit_code = update_integration_branches(cfg, services, repos, context)
    return _finish("update", cfg, args, context, exit_code)


def _cmd_tag(cfg: MergeConfig, args: argparse.Namespace, services: Services | None = None) -> int:
    services = services or build_services(cfg)
    repos = discover_repositories(cfg, args.repo)
    context = RunContext(dry_run=cfg.dry_run)
    exit_code = tag_releases(cfg, services, repos, context)
    return _finish("tag", cfg, args, context, exit_code)


def _cmd_run(cfg: MergeConfig, args: argparse.Namespace, services: Services | None = None) -> int:
    services = services or build_services(cfg)
    repos = discover_repositories(cfg, args.repo)
    context = RunContext(dry_run=cfg.dry_run)
    update_code = update_integration_branches(cfg, services, repos, context)
    tag_code = tag_releases(cfg, services, repos, context)
    return _finish("run", cfg, args, context, max(update_code, tag_code))


def _cmd_plan(cfg: MergeConfig, args: argparse.Namespace, services: Services | None = None) -> int:
    from .ux import Colors, colorize, print_header  # noqa: PLC0415

    services = services or build_services(cfg)
    repos = discover_repositories(cfg, args.repo)
    plan = plan_repositories(cfg, services, repos)
    if args.json:
        print(json.dumps(plan, indent=2))
        return 0
    for repo, entry in plan.items():
        print_header(f"{repo} ({entry['default_branch']})")
        if not entry["order"]:
            print(f"  {colorize('no changes ready', Colors.DIM)}")
        for index, permalink in enumerate(entry["order"], start=1):
            print(f"  {index}. {permalink}")
        for dependency in entry["dependencies"]:
            print(f"  depends on {dependency}")
        for invalid in entry["invalid"]:
            print(f"  {colorize('excluded', Colors.YELLOW)} {invalid}")
    return 0


def _cmd_state(cfg: MergeConfig, args: argparse.Namespace, services: Services | None = None) -> int:
    try:
        repo = cfg.repo_id(args.repository)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    services = services or build_services(cfg)
    workspace = services.workspace_factory(repo)
    try:
        workspace.clone()
        if not workspace.checkout_branch(cfg.integration_branch):
            print(f"{repo} has no {cfg.integration_branch} branch", file=sys.stderr)
            return 1
        commits = workspace.get_commits(cfg.integration_branch, cfg.state_lookback)
        state = find_state(commits, cfg.identity_name)
    finally:
        if not cfg.keep_workspaces:
            workspace.remove()
    if state is None:
        print(
            f"No state commit found in the last {cfg.state_lookback} commits of {repo}:{cfg.integration_branch}",
            file=sys.stderr,
        )
        return 1
    print(yaml.safe_dump(state.to_document(), sort_keys=False), end="")
    return 0


def _build_handlers(args: argparse.Namespace, cfg: MergeConfig) -> dict[str, Any]:
    return {
        "update": lambda: _cmd_update(cfg, args),
        "tag": lambda: _cmd_tag(cfg, args),
        "run": lambda: _cmd_run(cfg, args),
        "plan": lambda: _cmd_plan(cfg, args),
        "state": lambda: _cmd_state(cfg, args),
    }


def _report_failure(exc: BaseException) -> None:
    from .ux import print_error  # noqa: PLC0415

    info = classify_error(exc)
    print_error(f"[{info.category}] {redact(info.message)}")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "quiet", False) and os.environ.get("MERGEMASTER_QUIET") == "1":
        args.quiet = True
    try:
        cfg = prepare_config(args)
        handlers = _build_handlers(args, cfg)
        handler = handlers.get(args.cmd)
        if handler is None:  # pragma: no cover - argparse enforces valid choices
            parser.print_help()
            return 1
        return execute_command(handler, args, cfg, args.cmd)
    except ConfigError as exc:
        _report_failure(exc)
        return EXIT_CONFIG_ERROR
    except (MergeMasterError, GitHubAPIError, requests.RequestException) as exc:
        _report_failure(exc)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
