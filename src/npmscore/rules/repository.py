"""Helpers shared by the rules that inspect a package's GitHub repository."""

from datetime import datetime, timezone
from typing import Any, Protocol

from npmscore.adapters.base import parse_repo_url
from npmscore.models.schemas import PackageSnapshot, Platform, RepoRef


class RepositorySource(Protocol):
    """The subset of GitHubClient the repository rules rely on."""

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any] | None: ...

    async def get_user(self, username: str) -> dict[str, Any] | None: ...

    async def get_commits(
        self, owner: str, repo: str, since: datetime | None = None, per_page: int = 100
    ) -> list[dict[str, Any]]: ...

    async def get_issues(
        self, owner: str, repo: str, state: str = "all", per_page: int = 30
    ) -> list[dict[str, Any]]: ...

    async def get_pull_requests(
        self, owner: str, repo: str, state: str = "all", per_page: int = 30
    ) -> list[dict[str, Any]]: ...

    async def has_security_policy(self, owner: str, repo: str) -> bool: ...

    async def get_security_policy(self, owner: str, repo: str) -> str | None: ...


def source_repo_for(snapshot: PackageSnapshot) -> RepoRef | None:
    """Repository from the repository field or homepage, GitHub preferred."""
    fallback = None
    for url in (snapshot.repository_url, snapshot.homepage):
        if not url:
            continue
        ref = parse_repo_url(url)
        if ref is None:
            continue
        if ref.platform == Platform.GITHUB:
            return ref
        fallback = fallback or ref
    return fallback


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp as returned by the GitHub API."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def days_since(value: Any, now: datetime | None = None) -> int | None:
    timestamp = parse_timestamp(value)
    if timestamp is None:
        return None
    now = now or datetime.now(timezone.utc)
    return (now - timestamp).days
