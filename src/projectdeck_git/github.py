"""Minimal async GitHub REST client (repos, branches, commits)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from projectdeck.observability import log_debug

GITHUB_API = "https://api.github.com"
API_VERSION = "2022-11-28"
MAX_PER_PAGE = 100


class GitHubError(Exception):
    """GitHub request failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ListParameters:
    """Filters for listing the authenticated user's repositories."""

    visibility: Optional[str] = None
    affiliation: Optional[str] = None
    repo_type: Optional[str] = None
    sort: Optional[str] = None
    direction: Optional[str] = None
    per_page: Optional[int] = None
    page: Optional[int] = None
    since: Optional[datetime] = None
    before: Optional[datetime] = None

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        for key, value in (
            ("visibility", self.visibility),
            ("affiliation", self.affiliation),
            ("type", self.repo_type),
            ("sort", self.sort),
            ("direction", self.direction),
            ("per_page", self.per_page),
            ("page", self.page),
        ):
            if value:
                query[key] = value
        if self.since is not None:
            query["since"] = self.since.isoformat()
        if self.before is not None:
            query["before"] = self.before.isoformat()
        return query


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class Repository:
    id: int
    name: str
    url: Optional[str] = None
    owner: Optional[str] = None
    description: Optional[str] = None
    ssh_url: Optional[str] = None
    visibility: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repository":
        full_name = data.get("full_name")
        owner = data.get("owner") or {}
        return cls(
            id=int(data["id"]),
            name=data["name"],
            url=f"github.com/{full_name}" if full_name else None,
            owner=owner.get("login"),
            description=data.get("description"),
            ssh_url=data.get("ssh_url"),
            visibility=data.get("visibility"),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


class GitHubClient:
    """Token-authenticated client over ``httpx.AsyncClient``.

    Use as an async context manager, or call ``aclose()`` when done.
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = GITHUB_API,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
                "User-Agent": "projectdeck",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise GitHubError(f"GET {url} failed: {e}") from e
        if response.is_error:
            try:
                message = response.json().get("message", "")
            except ValueError:
                message = response.text
            raise GitHubError(
                f"GET {url} -> {response.status_code}: {message}",
                status_code=response.status_code,
            )
        return response

    async def _paginate(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        max_items: Optional[int] = None,
    ) -> List[Any]:
        """Follow ``Link: rel="next"`` until exhausted (or max_items reached)."""
        items: List[Any] = []
        next_url: Optional[str] = url
        page = 0
        while next_url:
            response = await self._get(next_url, params)
            items.extend(response.json())
            page += 1
            if max_items is not None and len(items) >= max_items:
                return items[:max_items]
            next_url = response.links.get("next", {}).get("url")
            # The next link already carries the query string
            params = None
        log_debug(f"[GITHUB] {url}: {len(items)} items in {page} pages")
        return items

    async def list_repos(self, params: Optional[ListParameters] = None) -> List[Repository]:
        """Repositories of the authenticated user.

        An explicit ``page`` fetches just that page; otherwise all pages.
        """
        params = params or ListParameters(per_page=MAX_PER_PAGE)
        query = params.to_query()
        if params.page:
            data = (await self._get("/user/repos", query)).json()
        else:
            data = await self._paginate("/user/repos", query)
        return [Repository.from_api(item) for item in data]

    async def list_branches(self, owner: str, repo: str) -> Dict[str, str]:
        """Branch name -> head commit sha."""
        data = await self._paginate(
            f"/repos/{owner}/{repo}/branches", {"per_page": MAX_PER_PAGE}
        )
        return {item["name"]: item["commit"]["sha"] for item in data}

    async def list_commits(
        self,
        owner: str,
        repo: str,
        branch: str,
        *,
        max_commits: Optional[int] = None,
    ) -> List[str]:
        """Commit shas reachable from ``branch``, newest first."""
        data = await self._paginate(
            f"/repos/{owner}/{repo}/commits",
            {"sha": branch, "per_page": MAX_PER_PAGE},
            max_items=max_commits,
        )
        return [item["sha"] for item in data]
