"""Runtime helpers for mergemaster CLI orchestration."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol

from .config import MergeConfig, load_config
from .logging import configure_logging, get_logger


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


def prepare_config(
    args: Any, *, loader: Callable[[str], MergeConfig] = load_config
) -> MergeConfig:
    """Load MergeConfig and apply command-line overrides from the argparse namespace."""
    if not hasattr(args, "config"):
        raise AttributeError("Command namespace is missing 'config' attribute")
    cfg = loader(args.config)
    repos = getattr(args, "repo", None)
    if repos:
        cfg.repositories = list(repos)
    cfg.apply_branch_overrides(
        getattr(args, "integration_branch", None),
        getattr(args, "overlay_branch", None),
        getattr(args, "error_branch", None),
    )
    if getattr(args, "dry_run", False):
        cfg.dry_run = True
    summary_path = getattr(args, "summary_json", None)
    if summary_path:
        cfg.summary_json = summary_path
    level = "WARNING" if getattr(args, "quiet", False) else cfg.logging_level
    configure_logging(json_logging=cfg.logging_json_enabled, level=level)
    return cfg


def execute_command(
    handler: _HandlerCallable, args: Any, cfg: MergeConfig | None, command: str
) -> int:
    """Execute a command handler, logging its exit code and duration."""
    start = time.monotonic()
    logger = get_logger()
    exit_code = 1
    try:
        result = handler()
        exit_code = int(result) if result is not None else 0
    except SystemExit as exc:  # pragma: no cover - allow propagation
        exit_code = int(exc.code or 0)
        raise
    finally:
        duration_ms = max(0.0, time.monotonic() - start) * 1000
        logger.log_performance(
            command,
            duration_ms,
            exit_code=exit_code,
            dry_run=bool(cfg.dry_run) if cfg is not None else False,
        )
    return exit_code


__all__ = ["prepare_config", "execute_command"]
