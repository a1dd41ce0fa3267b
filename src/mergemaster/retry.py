"""Centralized retry / backoff helpers.

``run_with_retries`` wraps a thunk with exponential backoff plus jitter and
retries only transient GitHub failure modes (rate limit / abuse / secondary
rate limits), whether they surface from a ``gh`` subprocess or from a REST
response carrying one of those messages.

Environment overrides:
  MERGEMASTER_RETRY_ATTEMPTS (default 3)
  MERGEMASTER_RETRY_BASE (seconds base, default 0.5)
  MERGEMASTER_RETRY_MAX_SLEEP (cap in seconds, optional)
"""

from __future__ import annotations

import os
import random
import re
import subprocess  # nosec B404 - required for retrying git / GitHub CLI interactions
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .logging import get_logger

T = TypeVar("T")

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
)
RETRYABLE_STATUS = {429, 502, 503, 504}

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports ``Retry-After: 12``, ``retry after 12`` and ``wait 30 seconds``.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: int(os.environ.get("MERGEMASTER_RETRY_ATTEMPTS", "3")))
    base_sleep: float = field(default_factory=lambda: float(os.environ.get("MERGEMASTER_RETRY_BASE", "0.5")))
    sleep: Callable[[float], None] = time.sleep


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def _compute_sleep(attempt: int, cfg: RetryConfig, out: str) -> float:
    explicit = _extract_explicit_backoff(out)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("MERGEMASTER_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def _response_text(result: Any) -> str | None:
    """Return the body of a retryable HTTP response, ``None`` for anything else."""
    status = getattr(result, "status_code", None)
    if not isinstance(status, int):
        return None
    text = str(getattr(result, "text", "") or "")
    if status in RETRYABLE_STATUS or (status == 403 and is_transient(text)):  # noqa: PLR2004
        headers = getattr(result, "headers", None) or {}
        retry_after = headers.get("Retry-After") if hasattr(headers, "get") else None
        return f"Retry-After: {retry_after}\n{text}" if retry_after else text or "retryable status"
    return None


def _backoff(attempt: int, attempts: int, cfg: RetryConfig, out: str) -> None:
    sleep_for = _compute_sleep(attempt, cfg, out)
    get_logger().warning(
        f"[retry] transient error, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s",
        attempt=attempt,
    )
    cfg.sleep(sleep_for)


def run_with_retries(fn: Callable[[], T], *, cfg: RetryConfig | None = None) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            result = fn()
        except subprocess.CalledProcessError as exc:
            out = str(exc.output or "")
            if attempt >= attempts or not is_transient(out):
                raise
            _backoff(attempt, attempts, cfg, out)
            continue
        retry_text = _response_text(result)
        if retry_text is None or attempt >= attempts:
            return result
        _backoff(attempt, attempts, cfg, retry_text)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "run_with_retries", "is_transient"]
