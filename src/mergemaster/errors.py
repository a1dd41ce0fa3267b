"""Error taxonomy & redaction helpers.

Failure classes, from least to most severe:

- Recoverable per change: a revertible change failed to merge. Never raised;
  the integration orchestrator logs it and drops the change from the cycle.
- ``EscalatedMergeError``: a non-revertible change (or the overlay branch)
  could not be merged. Aborts the current repository's cycle only.
- ``SchedulingError`` (``DependencyCheckError``, ``PipelineFailedError``):
  aborts the whole multi-repository release run.
- ``CycleError``: the declared dependencies form a cycle; fatal for the
  pipeline that built the graph.

Public helpers:
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"gh[osu]_[A-Za-z0-9]{20,40}"),  # OAuth / app installation tokens
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"(?<=://)[^/@\s]+:[^/@\s]+(?=@)"),  # credentials embedded in remote URLs
]

_REDACTION_PLACEHOLDER = "<redacted>"


class MergeMasterError(RuntimeError):
    """Base class for all errors raised by mergemaster."""


class CycleError(MergeMasterError):
    def __init__(self, path: Sequence[str]):
        self.path = list(path)
        super().__init__("Dependency cycle detected: " + " -> ".join(self.path))


class InvalidDependencyError(MergeMasterError):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Invalid dependency reference: {reference!r}")


class CommandError(MergeMasterError):
    """A git / gh / build tool subprocess exited non-zero."""

    def __init__(self, cmd: Sequence[str], output: str = "", returncode: int | None = None):
        self.cmd = list(cmd)
        self.output = output
        self.returncode = returncode
        super().__init__(f"Command failed: {' '.join(self.cmd)}: {output.strip()}")


class EscalatedMergeError(MergeMasterError):
    def __init__(self, repo: str, reason: str, error_branch: str):
        self.repo = repo
        self.reason = reason
        self.error_branch = error_branch
        super().__init__(f"{repo}: {reason} (pre-merge state published to {error_branch})")


class SchedulingError(MergeMasterError):
    """Fatal for the whole release run."""


class DependencyCheckError(SchedulingError):
    def __init__(self, problems: Sequence[str]):
        self.problems = list(problems)
        super().__init__("Change dependency check failed: " + "; ".join(self.problems))


class PipelineFailedError(SchedulingError):
    def __init__(self, target: str, run_url: str, dependent: str | None = None):
        self.target = target
        self.run_url = run_url
        self.dependent = dependent
        suffix = f": cannot release {dependent}" if dependent else ""
        super().__init__(f"Pipeline for {target} failed or timed out ({run_url}){suffix}")


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Redact tokens and URL credentials in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception for logs and the run summary."""
    msg = str(exc) if exc else ""
    low = msg.lower()
    name = exc.__class__.__name__

    if isinstance(exc, EscalatedMergeError):
        return ErrorInfo("merge.escalated", redact(msg), name, details={"error_branch": exc.error_branch})
    if isinstance(exc, PipelineFailedError):
        return ErrorInfo("pipeline.failed", redact(msg), name, details={"target": exc.target})
    if isinstance(exc, DependencyCheckError):
        return ErrorInfo("dependency.check", redact(msg), name, details={"problems": exc.problems})
    if isinstance(exc, CycleError):
        return ErrorInfo("dependency.cycle", redact(msg), name, details={"path": exc.path})
    if "rate limit" in low or "secondary rate" in low:
        return ErrorInfo("github.rate_limit", redact(msg), name, transient=True)
    if "abuse" in low:
        return ErrorInfo("github.abuse", redact(msg), name, transient=True)
    if any(k in low for k in ("timeout", "timed out", "connection reset", "temporarily unavailable")):
        return ErrorInfo("network", redact(msg), name, transient=True)
    if "conflict" in low:
        return ErrorInfo("merge.conflict", redact(msg), name)
    if any(k in low for k in ("yaml", "scannererror", "parsererror")):
        return ErrorInfo("parse", redact(msg), name)
    return ErrorInfo("generic", redact(msg), name)


__all__ = [
    "MergeMasterError",
    "CycleError",
    "InvalidDependencyError",
    "CommandError",
    "EscalatedMergeError",
    "SchedulingError",
    "DependencyCheckError",
    "PipelineFailedError",
    "ErrorInfo",
    "classify_error",
    "redact",
]
