"""mergemaster - multi-repository experimental release integration.

High-level public API:

from mergemaster import load_config, ReleaseScheduler, resolve_changes

cfg = load_config('mergemaster.config.yaml')

The CLI (``mergemaster update|tag|run|plan|state``) delegates to this library.
"""

from __future__ import annotations

from .config import MergeConfig, load_config
from .graph import DependencyGraph, EdgeKind
from .tags import compare_tags, increment_tag, parse_tag, stringify_tag

# Version constant (keep in sync with pyproject)
__version__ = "0.1.0"


def __getattr__(name: str) -> object:
    """Lazily import the heavier orchestration entry points."""
    if name == "resolve_changes":
        from .resolver import resolve_changes  # noqa: PLC0415

        return resolve_changes
    if name == "IntegrationOrchestrator":
        from .integration import IntegrationOrchestrator  # noqa: PLC0415

        return IntegrationOrchestrator
    if name == "ReleaseScheduler":
        from .scheduler import ReleaseScheduler  # noqa: PLC0415

        return ReleaseScheduler
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "load_config",
    "MergeConfig",
    "DependencyGraph",
    "EdgeKind",
    "parse_tag",
    "stringify_tag",
    "compare_tags",
    "increment_tag",
    "resolve_changes",
    "IntegrationOrchestrator",
    "ReleaseScheduler",
    "__version__",
]
