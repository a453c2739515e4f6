from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from .retry import run_with_retries

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = "boardsync-rest/0.3.0"
PROJECTS_ACCEPT = "application/vnd.github.inertia-preview+json"
HTTP_ERROR_STATUS = 400
PAGE_SIZE = 100


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub REST API returns an error."""

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
    """Blocking client for the classic Projects (boards) REST API.

    Every call goes through :func:`~boardsync.retry.run_with_retries`; any
    status >= 400 left after retries raises :class:`GitHubAPIError`.
    """

    token: str
    base_url: str = DEFAULT_API_URL
    session: requests.Session | None = None
    timeout: float = 30
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- transport --------------------------------------------------
    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        accept: str | None = None,
    ) -> requests.Response:
        headers = dict(self._session.headers)
        if accept:
            headers["Accept"] = accept
        response = run_with_retries(
            lambda: self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        )
        if response.status_code >= HTTP_ERROR_STATUS:
            raise GitHubAPIError(
                f"GitHub API {method} {url} failed with {response.status_code}",
                status=response.status_code,
                response_text=response.text,
            )
        return response

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return self._decode(self._send(method, self._url(path), **kwargs))

    def _paginate(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        accept: str | None = None,
    ) -> list[dict[str, Any]]:
        """Collect every page by following the ``Link: rel="next"`` header."""
        url: str | None = self._url(path)
        query: dict[str, Any] | None = {"per_page": PAGE_SIZE, **(params or {})}
        results: list[dict[str, Any]] = []
        while url:
            response = self._send("GET", url, params=query, accept=accept)
            page = self._decode(response)
            if not isinstance(page, list):
                break
            results.extend(item for item in page if isinstance(item, dict))
            url = (getattr(response, "links", None) or {}).get("next", {}).get("url")
            # the next link already carries the query string
            query = None
        return results

    # ---- Owners -------------------------------------------------------
    def get_user(self, login: str) -> dict[str, Any]:
        data = self._request("GET", f"/users/{login}")
        return data if isinstance(data, dict) else {}

    def get_owner_type(self, login: str) -> str | None:
        owner_type = self.get_user(login).get("type")
        return owner_type if isinstance(owner_type, str) else None

    # ---- Boards -------------------------------------------------------
    def list_org_projects(self, org: str, *, state: str = "open") -> list[dict[str, Any]]:
        return self._paginate(
            f"/orgs/{org}/projects", params={"state": state}, accept=PROJECTS_ACCEPT
        )

    def list_repo_projects(
        self, owner: str, repo: str, *, state: str = "open"
    ) -> list[dict[str, Any]]:
        return self._paginate(
            f"/repos/{owner}/{repo}/projects", params={"state": state}, accept=PROJECTS_ACCEPT
        )

    def list_project_columns(self, project_id: int) -> list[dict[str, Any]]:
        return self._paginate(f"/projects/{project_id}/columns", accept=PROJECTS_ACCEPT)

    def list_column_cards(self, column_id: int) -> list[dict[str, Any]]:
        return self._paginate(
            f"/projects/columns/{column_id}/cards",
            params={"archived_state": "not_archived"},
            accept=PROJECTS_ACCEPT,
        )

    def create_project_card(
        self, *, column_id: int, content_id: int, content_type: str
    ) -> dict[str, Any]:
        data = self._request(
            "POST",
            f"/projects/columns/{column_id}/cards",
            json_body={"content_id": content_id, "content_type": content_type},
            accept=PROJECTS_ACCEPT,
        )
        return data if isinstance(data, dict) else {}

    def move_project_card(
        self, *, card_id: int, column_id: int, position: str = "top"
    ) -> None:
        self._request(
            "POST",
            f"/projects/columns/cards/{card_id}/moves",
            json_body={"position": position, "column_id": column_id},
            accept=PROJECTS_ACCEPT,
        )

    # ---- Pull requests ------------------------------------------------
    def list_pull_request_reviews(
        self, owner: str, repo: str, number: int
    ) -> list[dict[str, Any]]:
        return self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/reviews")


__all__ = [
    "DEFAULT_API_URL",
    "GitHubAPIError",
    "GitHubRestClient",
]
