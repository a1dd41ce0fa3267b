"""Hosting-provider queries used by the update and tag pipelines.

``PullRequestsClient`` turns GitHub REST / GraphQL payloads into the
``ChangeRequest`` model and exposes the handful of branch and workflow-run
lookups the orchestrators need. It is the only module that knows GitHub's
JSON shapes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from .github_rest import GitHubRestClient
from .logging import get_logger
from .models import ChangeRequest, ChangeRequestId, RepositoryId

OPEN_CHANGES_QUERY = """
query($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    pullRequests(states: [OPEN], first: 100, after: $cursor) {
      nodes {
        labels(first: 20) { nodes { name } }
        baseRefName
        bodyText
        isDraft
        isInMergeQueue
        locked
        number
        permalink
        title
        updatedAt
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""


def parse_timestamp(value: Any) -> datetime:
    """Parse GitHub ISO-8601 timestamps (``...Z``) into aware datetimes."""
    text = str(value or "")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _from_graphql(repo: RepositoryId, node: dict[str, Any]) -> ChangeRequest:
    labels = (node.get("labels") or {}).get("nodes") or []
    return ChangeRequest(
        id=ChangeRequestId(repo, int(node["number"])),
        title=str(node.get("title") or ""),
        target_branch=str(node.get("baseRefName") or ""),
        description=str(node.get("bodyText") or ""),
        updated_at=parse_timestamp(node.get("updatedAt")),
        labels=frozenset(str(label.get("name", "")) for label in labels if isinstance(label, dict)),
        draft=bool(node.get("isDraft")),
        locked=bool(node.get("locked")),
        in_merge_queue=bool(node.get("isInMergeQueue")),
    )


def _from_rest(repo: RepositoryId, data: dict[str, Any]) -> ChangeRequest:
    labels = data.get("labels") or []
    base = data.get("base") or {}
    return ChangeRequest(
        id=ChangeRequestId(repo, int(data["number"])),
        title=str(data.get("title") or ""),
        target_branch=str(base.get("ref") or ""),
        description=str(data.get("body") or ""),
        updated_at=parse_timestamp(data.get("updated_at")),
        labels=frozenset(str(label.get("name", "")) for label in labels if isinstance(label, dict)),
        draft=bool(data.get("draft")),
        locked=bool(data.get("locked")),
        merged=bool(data.get("merged") or data.get("merged_at")),
    )


def _is_merged(entry: Any) -> bool:
    return isinstance(entry, dict) and bool(entry.get("merged_at"))


class PullRequestsClient:
    def __init__(self, rest: GitHubRestClient):
        self.rest = rest
        self.logger = get_logger()

    # ---- change requests ---------------------------------------------
    def list_open_changes(self, repo: RepositoryId) -> list[ChangeRequest]:
        changes: list[ChangeRequest] = []
        cursor: str | None = None
        while True:
            data = self.rest.graphql(
                OPEN_CHANGES_QUERY,
                {"owner": repo.organization, "name": repo.name, "cursor": cursor},
            )
            block = (((data or {}).get("data") or {}).get("repository") or {}).get("pullRequests") or {}
            for node in block.get("nodes") or []:
                if isinstance(node, dict):
                    changes.append(_from_graphql(repo, node))
            page = block.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                break
            cursor = page.get("endCursor")
        self.logger.debug(f"{repo}: {len(changes)} open change requests", repo=str(repo))
        return changes

    def list_merged_changes(self, repo: RepositoryId, base: str, limit: int) -> list[ChangeRequest]:
        """Most recently updated closed-and-merged changes targeting ``base``."""
        if limit <= 0:
            return []
        params = {"state": "closed", "base": base, "sort": "updated", "direction": "desc"}
        entries = self.rest.paginate(f"/repos/{repo}/pulls", params=params, limit=limit, accept=_is_merged)
        return [_from_rest(repo, entry) for entry in entries]

    def get_change(self, change: ChangeRequestId) -> ChangeRequest | None:
        data = self.rest.get_optional(f"/repos/{change.repo}/pulls/{change.number}")
        if not isinstance(data, dict):
            self.logger.error(f"Could not find change request {change}")
            return None
        return _from_rest(change.repo, data)

    # ---- branches ------------------------------------------------------
    def default_branch(self, repo: RepositoryId) -> str:
        data = self.rest.get(f"/repos/{repo}")
        return str((data or {}).get("default_branch") or "master")

    def branch_updated_at(self, repo: RepositoryId, branch: str) -> datetime | None:
        """Committer date of the branch head; ``None`` when the branch does not exist."""
        data = self.rest.get_optional(f"/repos/{repo}/branches/{branch}")
        if not isinstance(data, dict):
            return None
        commit = ((data.get("commit") or {}).get("commit")) or {}
        stamp = (commit.get("committer") or commit.get("author") or {}).get("date")
        return parse_timestamp(stamp) if stamp else None

    def delete_branch(self, repo: RepositoryId, branch: str) -> bool:
        return self.rest.delete(f"/repos/{repo}/git/refs/heads/{branch}")

    # ---- workflow runs ---------------------------------------------------
    def find_workflow_runs(self, repo: RepositoryId, workflow_file: str, head_sha: str) -> list[dict[str, Any]]:
        workflow = workflow_file.rsplit("/", 1)[-1]
        data = self.rest.get_optional(
            f"/repos/{repo}/actions/workflows/{workflow}/runs",
            params={"event": "push", "head_sha": head_sha},
        )
        runs = (data or {}).get("workflow_runs") if isinstance(data, dict) else None
        return [run for run in runs or [] if isinstance(run, dict)]

    def get_workflow_run(self, repo: RepositoryId, run_id: int) -> dict[str, Any]:
        data = self.rest.get(f"/repos/{repo}/actions/runs/{run_id}")
        return data if isinstance(data, dict) else {}


__all__ = ["PullRequestsClient", "OPEN_CHANGES_QUERY", "parse_timestamp"]
