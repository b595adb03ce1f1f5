"""GitHub API client used by the maintainer and community rules."""

import base64
import binascii
import logging
import os
from datetime import datetime, timezone
from typing import Any

import httpx

from npmscore.errors import FetchError, RateLimitError

logger = logging.getLogger(__name__)


class GitHubClient:
    """Fetches repository and user data from the GitHub REST API.

    A personal access token raises the rate limit from 60 to 5000 requests
    per hour. Set GITHUB_TOKEN or pass ``token`` to the constructor.
    404 responses are returned as None (or an empty list); other failures
    raise FetchError, and an exhausted quota raises RateLimitError.
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            token: GitHub personal access token. If not provided, uses GITHUB_TOKEN env var.
            client: Optional httpx client. If not provided, a new client is created per request.
            base_url: API base URL, for GitHub Enterprise.
            timeout: Request timeout in seconds when creating a client.
        """
        self._token = token or os.environ.get("GITHUB_TOKEN")
        self._client = client
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout

        # Rate limit tracking
        self.rate_limit_remaining: int | None = None
        self.rate_limit_total: int | None = None
        self.rate_limit_reset: datetime | None = None

    def _headers(self) -> dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "npm-security-score",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.timeout, headers=self._headers())

    def _update_rate_limits(self, response: httpx.Response) -> None:
        """Extract and store rate limit info from response headers."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        limit = response.headers.get("X-RateLimit-Limit")
        reset = response.headers.get("X-RateLimit-Reset")

        try:
            if remaining is not None:
                self.rate_limit_remaining = int(remaining)
            if limit is not None:
                self.rate_limit_total = int(limit)
            if reset is not None:
                self.rate_limit_reset = datetime.fromtimestamp(int(reset), tz=timezone.utc)
        except ValueError:
            logger.debug(f"Ignoring malformed rate limit headers: {remaining}/{limit}/{reset}")

    def has_rate_limit(self) -> bool:
        """True unless the last response reported an exhausted quota."""
        return self.rate_limit_remaining is None or self.rate_limit_remaining > 0

    async def _fetch(self, path: str, params: dict | None = None) -> dict | list | None:
        """Fetch from GitHub API.

        Returns None if 404, raises on other errors.
        """
        client = await self._get_client()
        url = f"{self.base_url}{path}"

        try:
            response = await client.get(url, params=params, headers=self._headers())
            self._update_rate_limits(response)

            if response.status_code in (403, 429) and self.rate_limit_remaining == 0:
                logger.warning(f"GitHub rate limit exhausted, resets at {self.rate_limit_reset}")
                raise RateLimitError(self.rate_limit_reset)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"GitHub API error: {e.response.status_code} for {path}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"GitHub request failed for {path}: {e}") from e
        except ValueError as e:
            raise FetchError(f"Invalid JSON from GitHub for {path}") from e
        finally:
            if self._client is None:
                await client.aclose()

    async def _fetch_list(self, path: str, params: dict | None = None) -> list[dict[str, Any]]:
        data = await self._fetch(path, params=params)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any] | None:
        if not owner or not repo:
            raise ValueError("Owner and repo are required")
        data = await self._fetch(f"/repos/{owner}/{repo}")
        return data if isinstance(data, dict) else None

    async def get_user(self, username: str) -> dict[str, Any] | None:
        if not username:
            raise ValueError("Username is required")
        data = await self._fetch(f"/users/{username}")
        return data if isinstance(data, dict) else None

    async def get_commits(
        self,
        owner: str,
        repo: str,
        since: datetime | None = None,
        per_page: int = 100,
    ) -> list[dict[str, Any]]:
        """Most recent commits on the default branch, optionally since a date."""
        params: dict[str, Any] = {"per_page": per_page}
        if since is not None:
            params["since"] = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return await self._fetch_list(f"/repos/{owner}/{repo}/commits", params)

    async def get_issues(
        self, owner: str, repo: str, state: str = "all", per_page: int = 30
    ) -> list[dict[str, Any]]:
        """Recent issues. GitHub includes pull requests in this listing."""
        return await self._fetch_list(
            f"/repos/{owner}/{repo}/issues",
            {"state": state, "per_page": per_page, "sort": "created", "direction": "desc"},
        )

    async def get_pull_requests(
        self, owner: str, repo: str, state: str = "all", per_page: int = 30
    ) -> list[dict[str, Any]]:
        return await self._fetch_list(
            f"/repos/{owner}/{repo}/pulls",
            {"state": state, "per_page": per_page, "sort": "created", "direction": "desc"},
        )

    async def get_repository_contents(
        self, owner: str, repo: str, path: str = ""
    ) -> dict | list | None:
        return await self._fetch(f"/repos/{owner}/{repo}/contents/{path}")

    async def has_security_policy(self, owner: str, repo: str) -> bool:
        """Check for a SECURITY.md at the repository root."""
        return await self.get_repository_contents(owner, repo, "SECURITY.md") is not None

    async def get_security_policy(self, owner: str, repo: str) -> str | None:
        """Fetch SECURITY.md content, decoded from the API's base64 payload."""
        security = await self.get_repository_contents(owner, repo, "SECURITY.md")
        if not security or not isinstance(security, dict):
            return None

        content = security.get("content") or ""
        if not content:
            return None
        try:
            return base64.b64decode("".join(content.split())).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            logger.debug(f"SECURITY.md for {owner}/{repo} is not base64, using raw content")
            return content
