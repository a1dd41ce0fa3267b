"""Terminal output for the update, tag and run commands."""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from .context import ReleaseRecord, RunContext


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"


# repository actions as recorded by the update phase
ACTION_COLORS = {
    "rebuild": Colors.GREEN,
    "reuse": Colors.DIM,
    "tear_down": Colors.YELLOW,
    "skip": Colors.DIM,
}


def _supports_color(stream: TextIO | None = None) -> bool:
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR"):
        return False
    if not hasattr(stream, "isatty") or not stream.isatty():
        return False
    return os.environ.get("TERM") != "dumb"


def colorize(text: str, color: str, bold: bool = False, stream: TextIO | None = None) -> str:
    """Wrap ``text`` in ANSI codes when ``stream`` is a color terminal."""
    if not _supports_color(stream):
        return text
    prefix = (Colors.BOLD if bold else "") + color
    return f"{prefix}{text}{Colors.RESET}"


def print_error(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stderr
    print(colorize("✗", Colors.RED, bold=True, stream=stream) + " " + message, file=stream)


def print_header(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    print(colorize(message, Colors.CYAN, bold=True, stream=stream), file=stream)


def quiet_line(command: str, context: RunContext) -> str:
    return (
        f"[{command}] repositories={len(context.outcomes)} releases={len(context.releases)} "
        f"errors={len(context.errors)}"
    )


def _outcome_text(outcome: dict[str, Any], stream: TextIO) -> str:
    error = outcome.get("error")
    if error:
        return colorize(f"error [{error.get('category', 'generic')}]", Colors.RED, bold=True, stream=stream)
    action = str(outcome.get("action") or "pending")
    text = colorize(action, ACTION_COLORS.get(action, Colors.RESET), stream=stream)
    merged = outcome.get("merged")
    failed = outcome.get("failed")
    if merged is not None:
        text += f" merged={len(merged)}"
    if failed:
        text += " " + colorize(f"failed={len(failed)}", Colors.YELLOW, stream=stream)
    return text


def _release_text(record: ReleaseRecord, stream: TextIO) -> str:
    state = colorize("new", Colors.GREEN, stream=stream) if record.created else "existing"
    text = f"{record.tag} ({record.target}) {state}"
    if record.pipeline_run is not None:
        text += f" pipeline #{record.pipeline_run}"
    return text


def print_run_summary(command: str, context: RunContext, exit_code: int, stream: TextIO | None = None) -> None:
    """Per-repository outcomes, releases and escalations of one run, then a status line."""
    stream = stream or sys.stdout
    title = f"{command.capitalize()} Summary" + (" (dry run)" if context.dry_run else "")
    rule = colorize("─" * 60, Colors.DIM, stream=stream)

    print(colorize(f"\n{title}", Colors.CYAN, bold=True, stream=stream), file=stream)
    print(rule, file=stream)
    names = [str(repo) for repo in context.outcomes]
    width = max((len(name) for name in names), default=0)
    for name, outcome in zip(names, context.outcomes.values()):
        print(f"  {name.ljust(width)}  {_outcome_text(outcome, stream)}", file=stream)
    for record in context.releases:
        print(f"  release  {_release_text(record, stream)}", file=stream)
    if context.escalations:
        escalated = colorize(", ".join(context.escalations), Colors.RED, stream=stream)
        print(f"  escalated  {escalated}", file=stream)
    print(rule, file=stream)

    if exit_code == 0:
        status = colorize("✓", Colors.GREEN, bold=True, stream=stream) + f" {command}: completed"
    else:
        status = colorize("✗", Colors.RED, bold=True, stream=stream) + f" {command}: failed"
    if context.errors:
        status += " " + colorize(f"({len(context.errors)} errors)", Colors.DIM, stream=stream)
    print(status, file=stream)


__all__ = [
    "ACTION_COLORS",
    "Colors",
    "colorize",
    "print_error",
    "print_header",
    "print_run_summary",
    "quiet_line",
]
