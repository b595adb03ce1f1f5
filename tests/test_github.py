"""Tests for the GitHub API client."""

import base64
from datetime import datetime, timezone

import httpx
import pytest

from npmscore.analyzers.github import GitHubClient
from npmscore.errors import FetchError, RateLimitError


def github(handler) -> GitHubClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubClient(token="test-token", client=client)


async def test_get_repository_sends_auth_and_tracks_limits():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["path"] = request.url.path
        return httpx.Response(
            200,
            json={"full_name": "owner/repo", "archived": False},
            headers={"X-RateLimit-Remaining": "4999", "X-RateLimit-Limit": "5000"},
        )

    client = github(handler)
    repo = await client.get_repository("owner", "repo")

    assert repo["full_name"] == "owner/repo"
    assert seen == {"auth": "Bearer test-token", "path": "/repos/owner/repo"}
    assert client.rate_limit_remaining == 4999
    assert client.rate_limit_total == 5000
    assert client.has_rate_limit()


async def test_not_found_returns_none():
    client = github(lambda request: httpx.Response(404))

    assert await client.get_repository("owner", "missing") is None
    assert await client.get_user("ghost") is None
    assert await client.get_commits("owner", "missing") == []
    assert await client.has_security_policy("owner", "missing") is False


async def test_rate_limit_exhausted():
    reset = 1_700_000_000

    def handler(request):
        return httpx.Response(
            403,
            json={"message": "API rate limit exceeded"},
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(reset)},
        )

    client = github(handler)
    with pytest.raises(RateLimitError) as excinfo:
        await client.get_repository("owner", "repo")

    assert excinfo.value.reset_time == datetime.fromtimestamp(reset, tz=timezone.utc)
    assert not client.has_rate_limit()


async def test_forbidden_without_exhausted_quota_is_fetch_error():
    client = github(lambda request: httpx.Response(403, headers={"X-RateLimit-Remaining": "10"}))

    with pytest.raises(FetchError) as excinfo:
        await client.get_repository("owner", "repo")

    assert not isinstance(excinfo.value, RateLimitError)
    assert excinfo.value.status_code == 403


async def test_commits_since_parameter():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json=[{"sha": "abc"}, "junk"])

    client = github(handler)
    commits = await client.get_commits(
        "owner", "repo", since=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    )

    assert commits == [{"sha": "abc"}]
    assert seen["since"] == "2024-01-02T03:04:05Z"
    assert seen["per_page"] == "100"


async def test_security_policy_decoded():
    encoded = base64.b64encode(b"# Security\nEmail security@example.com").decode()

    def handler(request):
        assert request.url.path == "/repos/owner/repo/contents/SECURITY.md"
        return httpx.Response(200, json={"content": encoded[:10] + "\n" + encoded[10:]})

    client = github(handler)

    assert await client.get_security_policy("owner", "repo") == "# Security\nEmail security@example.com"
    assert await client.has_security_policy("owner", "repo") is True


async def test_missing_owner_rejected():
    client = github(lambda request: httpx.Response(200, json={}))

    with pytest.raises(ValueError):
        await client.get_repository("", "repo")
