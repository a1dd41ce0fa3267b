from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from .retry import run_with_retries

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "mergemaster-rest/0.1.0"
HTTP_ERROR_STATUS = 400
HTTP_NOT_FOUND = 404


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub REST/GraphQL API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


@dataclass
class GitHubRestClient:
    """Lightweight REST/GraphQL client shared by every repository in a run."""

    token: str | None = None
    base_url: str = DEFAULT_API_URL
    graphql_url: str = DEFAULT_GRAPHQL_URL
    session: requests.Session | None = None
    timeout: float = 30.0
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        self._session = self.session or requests.Session()
        if self.token:
            self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- REST helpers -------------------------------------------------
    def _url(self, path: str) -> str:
        return path if path.startswith("http") else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> requests.Response:
        url = self._url(path)

        def _run() -> requests.Response:
            return self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._session.headers,
                timeout=self.timeout,
            )

        return run_with_retries(_run)

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if response.text:
            try:
                return response.json()
            except ValueError:
                return response.text
        return None

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        response = self._send(method, path, params=params, json_body=json_body)
        if response.status_code >= HTTP_ERROR_STATUS:
            raise GitHubAPIError(
                f"GitHub API {method} {self._url(path)} failed with {response.status_code}",
                status=response.status_code,
                response_text=response.text,
            )
        return self._decode(response)

    def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return self._request("GET", path, params=params)

    def get_optional(self, path: str, *, params: dict[str, Any] | None = None) -> Any | None:
        """GET that maps 404 to ``None`` instead of raising."""
        try:
            return self._request("GET", path, params=params)
        except GitHubAPIError as exc:
            if exc.status == HTTP_NOT_FOUND:
                return None
            raise

    def delete(self, path: str) -> bool:
        """DELETE; ``False`` when the resource was already gone."""
        try:
            self._request("DELETE", path)
        except GitHubAPIError as exc:
            if exc.status == HTTP_NOT_FOUND:
                return False
            raise
        return True

    def paginate(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        limit: int | None = None,
        accept: Callable[[Any], bool] | None = None,
    ) -> list[Any]:
        """Follow numbered pages until a short page or ``limit`` accepted entries.

        Entries rejected by ``accept`` do not count towards ``limit``.
        """
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=params)
            if not isinstance(data, list):
                break
            results.extend(entry for entry in data if accept is None or accept(entry))
            if len(data) < per_page or (limit is not None and len(results) >= limit):
                break
            params["page"] = params.get("page", 1) + 1
        return results if limit is None else results[:limit]

    # ---- GraphQL ------------------------------------------------------
    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> Any:
        payload = {"query": query, "variables": variables or {}}
        data = self._request("POST", self.graphql_url, json_body=payload)
        if isinstance(data, dict) and data.get("errors"):
            raise GitHubAPIError(f"GraphQL query failed: {data['errors']}")
        return data


__all__ = ["GitHubAPIError", "GitHubRestClient", "DEFAULT_API_URL", "DEFAULT_GRAPHQL_URL"]
