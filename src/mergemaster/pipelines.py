"""CI pipeline tracking for pushed release tags.

Lookup: ``locate_pipeline_run`` finds the workflow run triggered by a pushed
tag, retrying a bounded number of times because the hosting side lists runs
with a delay. Exhausting the retries yields ``None`` ("no trackable
pipeline"), which callers treat as unobservable, not as failed.

Polling: ``PipelineWaiter.wait`` sleeps a long initial interval once, then
polls at a shorter fixed interval up to ``max_polls`` times. Running out of
polls is a timeout and reported as failure.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from .logging import get_logger
from .models import RepositoryId

_IN_PROGRESS = {"queued", "in_progress", "requested", "waiting", "pending"}


class PipelineStatus(str, Enum):
    UNKNOWN = "unknown"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowRunSource(Protocol):  # pragma: no cover - interface only
    def find_workflow_runs(self, repo: RepositoryId, workflow_file: str, head_sha: str) -> list[dict[str, Any]]: ...

    def get_workflow_run(self, repo: RepositoryId, run_id: int) -> dict[str, Any]: ...


def run_url(repo: RepositoryId, run_id: int) -> str:
    return f"{repo.url}/actions/runs/{run_id}"


def classify_run(run: dict[str, Any] | None) -> PipelineStatus:
    """Map a workflow run payload (``status`` / ``conclusion``) onto ``PipelineStatus``."""
    if not run:
        return PipelineStatus.UNKNOWN
    status = str(run.get("status") or "")
    if status == "completed":
        return PipelineStatus.COMPLETED if run.get("conclusion") == "success" else PipelineStatus.FAILED
    if status in _IN_PROGRESS:
        return PipelineStatus.IN_PROGRESS
    return PipelineStatus.UNKNOWN


def locate_pipeline_run(
    source: WorkflowRunSource,
    repo: RepositoryId,
    workflow_file: str,
    head_sha: str,
    tag_name: str,
    *,
    attempts: int = 3,
    pause: float = 10.0,
    initial_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int | None:
    logger = get_logger()
    sleep(initial_delay)
    for attempt in range(1, max(1, attempts) + 1):
        for run in source.find_workflow_runs(repo, workflow_file, head_sha):
            if run.get("head_branch") == tag_name and isinstance(run.get("id"), int):
                logger.info(f"Found pipeline run for {tag_name}: {run_url(repo, run['id'])}", repo=str(repo))
                return int(run["id"])
        if attempt < attempts:
            logger.info(f"Could not find a pipeline run for {head_sha}: waiting {pause:g}s", repo=str(repo))
            sleep(pause)
    logger.warning(
        f"Could not find a pipeline run for {head_sha} after {attempts} attempt(s): assuming it was cancelled",
        repo=str(repo),
    )
    return None


class PipelineWaiter:
    def __init__(
        self,
        source: WorkflowRunSource,
        *,
        initial_wait: float = 120.0,
        poll_interval: float = 60.0,
        max_polls: int = 6,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.initial_wait = initial_wait
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.sleep = sleep
        self.logger = get_logger()

    def status(self, repo: RepositoryId, run_id: int) -> PipelineStatus:
        status = classify_run(self.source.get_workflow_run(repo, run_id))
        self.logger.debug(f"Pipeline {run_url(repo, run_id)} is {status.value}", repo=str(repo), status=status.value)
        return status

    def wait(self, repo: RepositoryId, run_id: int) -> bool:
        """Block until the run succeeds (``True``), fails or times out (``False``)."""
        url = run_url(repo, run_id)
        status = self.status(repo, run_id)
        if status is PipelineStatus.COMPLETED:
            self.logger.info(f"Pipeline {url} was already finished", repo=str(repo))
            return True
        if status is PipelineStatus.FAILED:
            self.logger.error(f"Pipeline {url} has failed", repo=str(repo))
            return False
        self.logger.info(f"Waiting for pipeline {url}: sleeping {self.initial_wait:g}s", repo=str(repo))
        self.sleep(self.initial_wait)
        for poll in range(1, self.max_polls + 1):
            status = self.status(repo, run_id)
            if status is PipelineStatus.COMPLETED:
                self.logger.info(f"Pipeline {url} has completed", repo=str(repo))
                return True
            if status is PipelineStatus.FAILED:
                self.logger.error(f"Pipeline {url} has failed", repo=str(repo))
                return False
            if poll < self.max_polls:
                self.sleep(self.poll_interval)
        self.logger.error(f"Pipeline {url} has timed out", repo=str(repo))
        return False


__all__ = ["PipelineStatus", "PipelineWaiter", "classify_run", "locate_pipeline_run", "run_url"]
