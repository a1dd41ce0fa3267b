"""Pytest configuration for mergemaster tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and provides the
`make_change` factory shared by the resolver and state-machine tests.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from mergemaster.models import ChangeRequest, ChangeRequestId, RepositoryId  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_change(
    repo: RepositoryId,
    number: int,
    *,
    description: str = "",
    labels: tuple[str, ...] = (),
    updated_minutes: int = 0,
    target_branch: str = "master",
    title: str | None = None,
    **kw: object,
) -> ChangeRequest:
    return ChangeRequest(
        id=ChangeRequestId(repo, number),
        title=title or f"Change {number}",
        target_branch=target_branch,
        description=description,
        updated_at=BASE_TIME + timedelta(minutes=updated_minutes),
        labels=frozenset(labels),
        **kw,  # type: ignore[arg-type]
    )


@pytest.fixture
def repo() -> RepositoryId:
    return RepositoryId("GTNewHorizons", "Example")


@pytest.fixture(autouse=True)
def _fast_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MERGEMASTER_RETRY_ATTEMPTS", "1")
    monkeypatch.setenv("MERGEMASTER_RETRY_BASE", "0")
