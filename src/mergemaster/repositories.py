"""Repository selection: explicit allow-list, else the keys of a remote JSON manifest."""

from __future__ import annotations

from collections.abc import Sequence

import requests

from .config import ConfigError, MergeConfig
from .logging import get_logger
from .models import RepositoryId
from .retry import run_with_retries


def fetch_manifest_repositories(
    url: str, key: str, session: requests.Session | None = None, timeout: float = 30.0
) -> list[str]:
    http = session or requests.Session()
    response = run_with_retries(lambda: http.get(url, timeout=timeout))
    response.raise_for_status()
    data = response.json()
    section = data.get(key) if isinstance(data, dict) else None
    if not isinstance(section, dict):
        raise ConfigError(f"Manifest {url} has no '{key}' mapping")
    return [str(name) for name in section]


def discover_repositories(
    cfg: MergeConfig,
    explicit: Sequence[str] | None = None,
    session: requests.Session | None = None,
) -> list[RepositoryId]:
    """Resolve the repositories to process, minus the processing blacklist.

    Precedence: ``explicit`` (CLI), ``repositories.include``, then the manifest.
    """
    logger = get_logger()
    names = list(explicit or cfg.repositories)
    if not names:
        if not cfg.manifest_url:
            raise ConfigError("No repositories configured: set repositories.include or repositories.manifest_url")
        names = fetch_manifest_repositories(cfg.manifest_url, cfg.manifest_key, session)
    repos: list[RepositoryId] = []
    for name in names:
        try:
            repo = cfg.repo_id(name)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        if cfg.is_processing_blacklisted(repo):
            logger.info(f"Skipping blacklisted repository {repo}", repo=str(repo))
            continue
        if repo not in repos:
            repos.append(repo)
    logger.log_operation("repositories_selected", count=len(repos), repos=[str(r) for r in repos])
    return repos


__all__ = ["discover_repositories", "fetch_manifest_repositories"]
