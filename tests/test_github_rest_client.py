from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import pytest

from mergemaster.github_rest import GitHubAPIError, GitHubRestClient


@dataclass
class _DummyResponse:
    status_code: int
    payload: Any
    headers: dict[str, str] | None = None

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    @property
    def text(self) -> str:
        payload = self.payload
        if isinstance(payload, (dict, list)):
            return json.dumps(payload)
        return "" if payload is None else str(payload)


class _DummySession:
    def __init__(self, responses: list[_DummyResponse]):
        self._responses = responses
        self.request_log: list[tuple[str, str, dict[str, Any]]] = []
        self.headers: dict[str, str] = {}

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        json: Any | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> _DummyResponse:
        self.request_log.append((method, url, {"headers": headers, "json": json, "params": dict(params or {})}))
        if not self._responses:
            raise AssertionError("No response queued for request")
        return self._responses.pop(0)


def test_client_sets_auth_headers_and_joins_urls():
    session = _DummySession([_DummyResponse(200, {"default_branch": "main"})])
    client = GitHubRestClient(token="tkn", session=session)
    assert client.get("/repos/acme/widgets") == {"default_branch": "main"}
    method, url, meta = session.request_log[0]
    assert (method, url) == ("GET", "https://api.github.com/repos/acme/widgets")
    assert meta["headers"]["Authorization"] == "Bearer tkn"
    assert meta["headers"]["Accept"] == "application/vnd.github+json"


def test_error_status_raises_with_details():
    session = _DummySession([_DummyResponse(422, {"message": "Validation Failed"})])
    client = GitHubRestClient(token="tkn", session=session)
    with pytest.raises(GitHubAPIError) as excinfo:
        client.get("/repos/acme/widgets")
    assert excinfo.value.status == 422
    assert "Validation Failed" in (excinfo.value.response_text or "")


def test_not_found_is_optional():
    session = _DummySession([_DummyResponse(404, {"message": "Not Found"}), _DummyResponse(404, {})])
    client = GitHubRestClient(session=session)
    assert client.get_optional("/repos/acme/widgets/branches/gone") is None
    assert client.delete("/repos/acme/widgets/git/refs/heads/gone") is False


def test_delete_without_body():
    session = _DummySession([_DummyResponse(204, None)])
    client = GitHubRestClient(session=session)
    assert client.delete("/repos/acme/widgets/git/refs/heads/dev") is True
    assert session.request_log[0][0] == "DELETE"


def test_paginate_follows_pages_until_short_page():
    first = [{"n": i} for i in range(2)]
    session = _DummySession([_DummyResponse(200, first), _DummyResponse(200, [{"n": 2}])])
    client = GitHubRestClient(session=session)
    results = client.paginate("/repos/acme/widgets/pulls", params={"per_page": 2})
    assert [r["n"] for r in results] == [0, 1, 2]
    assert [entry[2]["params"]["page"] for entry in session.request_log] == [1, 2]


def test_paginate_respects_limit():
    session = _DummySession([_DummyResponse(200, [{"n": i} for i in range(100)])])
    client = GitHubRestClient(session=session)
    assert len(client.paginate("/things", limit=3)) == 3
    assert len(session.request_log) == 1


def test_paginate_limit_counts_only_accepted_entries():
    first = [{"n": i, "keep": i >= 2} for i in range(3)]
    second = [{"n": i, "keep": True} for i in range(3, 5)]
    session = _DummySession([_DummyResponse(200, first), _DummyResponse(200, second)])
    client = GitHubRestClient(session=session)
    results = client.paginate("/things", params={"per_page": 3}, limit=2, accept=lambda entry: entry["keep"])
    assert [r["n"] for r in results] == [2, 3]
    assert len(session.request_log) == 2


def test_graphql_errors_raise():
    session = _DummySession([_DummyResponse(200, {"errors": [{"message": "boom"}]})])
    client = GitHubRestClient(session=session)
    with pytest.raises(GitHubAPIError):
        client.graphql("query { viewer { login } }")
    assert session.request_log[0][1] == "https://api.github.com/graphql"


def test_transient_status_is_retried(monkeypatch):
    monkeypatch.setenv("MERGEMASTER_RETRY_ATTEMPTS", "2")
    session = _DummySession(
        [_DummyResponse(502, "bad gateway", headers={"Retry-After": "0"}), _DummyResponse(200, {"ok": True})]
    )
    client = GitHubRestClient(session=session)
    assert client.get("/ping") == {"ok": True}
    assert len(session.request_log) == 2
