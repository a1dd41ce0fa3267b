from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .models import DEFAULT_ORGANIZATION, RepositoryId, parse_repository_id

CONFIG_DEFAULT = "mergemaster.config.yaml"

DEFAULT_INTEGRATION_BRANCH = "dev-mmxxl"
DEFAULT_BLOCKING_LABELS = ["affects balance", "not ready for testing"]
DEFAULT_NOT_REVERTABLE_LABEL = "Not Revertable"
DEFAULT_WORKFLOW_FILE = ".github/workflows/release-tags.yml"


class ConfigError(RuntimeError):
    pass


@dataclass
class MergeConfig:
    source_file: Path | None = None
    organization: str = DEFAULT_ORGANIZATION
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    github_graphql_url: str = "https://api.github.com/graphql"
    # Repository selection
    repositories: list[str] = field(default_factory=list)
    manifest_url: str | None = None
    manifest_key: str = "github_mods"
    # Branch names
    integration_branch: str = DEFAULT_INTEGRATION_BRANCH
    overlay_branch: str = f"{DEFAULT_INTEGRATION_BRANCH}-custom"
    error_branch: str = f"{DEFAULT_INTEGRATION_BRANCH}-error"
    # Label policy
    blocking_labels: list[str] = field(default_factory=lambda: list(DEFAULT_BLOCKING_LABELS))
    ready_labels: list[str] = field(default_factory=list)
    not_revertable_label: str = DEFAULT_NOT_REVERTABLE_LABEL
    third_party: dict[str, list[str]] = field(default_factory=dict)
    # Blacklists (organization/name)
    processing_blacklist: list[str] = field(default_factory=list)
    formatting_blacklist: list[str] = field(default_factory=list)
    dependency_update_blacklist: list[str] = field(default_factory=list)
    # Working copies
    scratchpad: Path = Path(".mergemaster/clones")
    keep_workspaces: bool = False
    # Identity of machine-authored commits
    identity_name: str = "MergeMasterXXL"
    identity_email: str = "N/A"
    # Behavior
    dry_run: bool = False
    state_lookback: int = 5
    merged_overfetch: float = 1.5
    recent_tags: int = 5
    # Pipelines
    workflow_file: str = DEFAULT_WORKFLOW_FILE
    pipeline_initial_wait: float = 120.0
    pipeline_poll_interval: float = 60.0
    pipeline_max_polls: int = 6
    pipeline_lookup_attempts: int = 3
    pipeline_lookup_pause: float = 10.0
    pipeline_lookup_initial_delay: float = 1.0
    # Logging
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    # Output
    summary_json: str | None = "mergemaster_summary.json"
    # Environment authentication
    env_auth_load_dotenv: bool = True
    env_auth_dotenv_path: str | None = None

    def repo_id(self, text: str) -> RepositoryId:
        return parse_repository_id(text, self.organization)

    def _listed(self, repo: RepositoryId, entries: list[str]) -> bool:
        return any(self.repo_id(entry) == repo for entry in entries)

    def is_processing_blacklisted(self, repo: RepositoryId) -> bool:
        return self._listed(repo, self.processing_blacklist)

    def is_formatting_blacklisted(self, repo: RepositoryId) -> bool:
        return self._listed(repo, self.formatting_blacklist)

    def is_dependency_update_blacklisted(self, repo: RepositoryId) -> bool:
        return self._listed(repo, self.dependency_update_blacklist)

    def third_party_for(self, repo: RepositoryId) -> list[str]:
        for key, urls in self.third_party.items():
            if self.repo_id(key) == repo:
                return list(urls)
        return []

    def apply_branch_overrides(
        self,
        integration: str | None = None,
        overlay: str | None = None,
        error: str | None = None,
    ) -> None:
        """Override branch names; overlay / error follow a new integration name unless given."""
        if integration:
            self.integration_branch = integration
            self.overlay_branch = f"{integration}-custom"
            self.error_branch = f"{integration}-error"
        if overlay:
            self.overlay_branch = overlay
        if error:
            self.error_branch = error


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith("$"):
        env_name = env_var_name or value[1:]
        return os.getenv(env_name, None)
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def _str_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"Config value '{name}' must be a list")
    return [str(v) for v in value]


def load_config(path: str | Path) -> MergeConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")
    try:
        raw_any = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(raw_any, dict):
        raise ConfigError(f"Configuration root must be a mapping: {p}")
    raw = cast(dict[str, Any], raw_any)
    gh = _section(raw, "github")
    repos = _section(raw, "repositories")
    branches = _section(raw, "branches")
    labels = _section(raw, "labels")
    blacklists = _section(raw, "blacklists")
    workspace = _section(raw, "workspace")
    identity = _section(raw, "identity")
    behavior = _section(raw, "behavior")
    pipelines = _section(raw, "pipelines")
    logging_config = _section(raw, "logging")
    out = _section(raw, "output")
    env_auth = _section(raw, "environment")
    third_party = _section(raw, "third_party")

    integration = str(branches.get("integration", DEFAULT_INTEGRATION_BRANCH))
    scratchpad = _resolve_env_var(workspace.get("scratchpad", "$CLONE_SCRATCHPAD"))

    cfg = MergeConfig(
        source_file=p,
        organization=str(gh.get("organization", DEFAULT_ORGANIZATION)),
        github_token=_resolve_env_var(gh.get("token")),
        github_api_url=str(gh.get("api_url", "https://api.github.com")),
        github_graphql_url=str(gh.get("graphql_url", "https://api.github.com/graphql")),
        repositories=_str_list(repos.get("include"), "repositories.include"),
        manifest_url=repos.get("manifest_url"),
        manifest_key=str(repos.get("manifest_key", "github_mods")),
        integration_branch=integration,
        overlay_branch=str(branches.get("overlay", f"{integration}-custom")),
        error_branch=str(branches.get("error", f"{integration}-error")),
        blocking_labels=_str_list(labels.get("blocking", DEFAULT_BLOCKING_LABELS), "labels.blocking"),
        ready_labels=_str_list(labels.get("ready"), "labels.ready"),
        not_revertable_label=str(labels.get("not_revertable", DEFAULT_NOT_REVERTABLE_LABEL)),
        third_party={str(k): _str_list(v, f"third_party.{k}") for k, v in third_party.items()},
        processing_blacklist=_str_list(blacklists.get("processing"), "blacklists.processing"),
        formatting_blacklist=_str_list(blacklists.get("formatting"), "blacklists.formatting"),
        dependency_update_blacklist=_str_list(
            blacklists.get("dependency_updates"), "blacklists.dependency_updates"
        ),
        # Relative scratchpads resolve against the config file directory
        scratchpad=p.parent / (scratchpad or ".mergemaster/clones"),
        keep_workspaces=bool(workspace.get("keep", False)),
        identity_name=str(identity.get("name", "MergeMasterXXL")),
        identity_email=str(identity.get("email", "N/A")),
        dry_run=bool(behavior.get("dry_run_default", False)),
        state_lookback=int(behavior.get("state_lookback", 5)),
        merged_overfetch=float(behavior.get("merged_overfetch", 1.5)),
        recent_tags=int(behavior.get("recent_tags", 5)),
        workflow_file=str(pipelines.get("workflow_file", DEFAULT_WORKFLOW_FILE)),
        pipeline_initial_wait=float(pipelines.get("initial_wait_seconds", 120)),
        pipeline_poll_interval=float(pipelines.get("poll_interval_seconds", 60)),
        pipeline_max_polls=int(pipelines.get("max_polls", 6)),
        pipeline_lookup_attempts=int(pipelines.get("lookup_attempts", 3)),
        pipeline_lookup_pause=float(pipelines.get("lookup_pause_seconds", 10)),
        pipeline_lookup_initial_delay=float(pipelines.get("lookup_initial_delay_seconds", 1)),
        logging_json_enabled=bool(logging_config.get("json_enabled", False)),
        logging_level=str(logging_config.get("level", "INFO")),
        summary_json=out.get("summary_json", "mergemaster_summary.json"),
        env_auth_load_dotenv=bool(env_auth.get("load_dotenv", True)),
        env_auth_dotenv_path=env_auth.get("dotenv_path"),
    )
    for entry in [*cfg.repositories, *cfg.third_party]:
        try:
            cfg.repo_id(entry)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    return cfg


__all__ = ["CONFIG_DEFAULT", "ConfigError", "MergeConfig", "load_config"]
