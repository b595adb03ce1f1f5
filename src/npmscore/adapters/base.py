"""Abstract base class for package registry adapters."""

import re
from abc import ABC, abstractmethod

from npmscore.models.schemas import PackageSnapshot, Platform, RepoRef


class BaseAdapter(ABC):
    """Base class for package registry adapters.

    Each adapter normalizes data from a specific registry into
    PackageSnapshot objects for the scoring rules.
    """

    @abstractmethod
    async def get_package_metadata(
        self, name: str, version: str | None = None
    ) -> PackageSnapshot:
        """Fetch metadata for a single package version.

        Args:
            name: Package name.
            version: Version to fetch. Defaults to the latest release.

        Returns:
            PackageSnapshot with normalized package information.

        Raises:
            PackageNotFoundError: If the package or version doesn't exist.
            FetchError: On network or HTTP failures.
        """
        ...

    @abstractmethod
    async def get_all_versions(self, name: str) -> dict[str, PackageSnapshot]:
        """Fetch every published version of a package.

        Args:
            name: Package name.

        Returns:
            Mapping of version string to snapshot. Empty if the package is unknown.
        """
        ...


def parse_repo_url(url: str) -> RepoRef | None:
    """Parse a repository URL into a RepoRef.

    Supports GitHub, GitLab, and Bitbucket URLs, including the npm
    ``git+https://`` form and ``github:owner/repo`` shorthand.

    Args:
        url: Repository URL to parse.

    Returns:
        RepoRef if the URL can be parsed, None otherwise.
    """
    if not url:
        return None

    url = url.strip().replace("git+", "", 1)

    for prefix, platform in (
        ("github:", Platform.GITHUB),
        ("gitlab:", Platform.GITLAB),
        ("bitbucket:", Platform.BITBUCKET),
    ):
        if url.startswith(prefix):
            parts = url[len(prefix):].split("/")
            if len(parts) >= 2 and parts[0] and parts[1]:
                return RepoRef(platform=platform, owner=parts[0], repo=_strip_git(parts[1]))
            return None

    # https://github.com/owner/repo
    # https://github.com/owner/repo.git
    # https://github.com/owner/repo/tree/main/subpath
    # git://github.com/owner/repo.git
    # git@github.com:owner/repo.git
    github_patterns = [
        r"(?:https?://)?(?:www\.)?github\.com/([^/]+)/([^/\s#?]+?)(?:\.git)?(?:/tree/[^/]+/([^#?]+))?(?:[/#?].*)?$",
        r"(?:ssh://)?git@github\.com[:/]([^/]+)/([^/\s#?]+?)(?:\.git)?/?$",
        r"git://github\.com/([^/]+)/([^/\s#?]+?)(?:\.git)?/?$",
    ]

    for pattern in github_patterns:
        match = re.match(pattern, url)
        if match:
            groups = match.groups()
            return RepoRef(
                platform=Platform.GITHUB,
                owner=groups[0],
                repo=groups[1],
                subpath=groups[2] if len(groups) > 2 else None,
            )

    gitlab_patterns = [
        r"(?:https?://)?(?:www\.)?gitlab\.com/([^/]+)/([^/\s#?]+?)(?:\.git)?(?:[/#?].*)?$",
        r"git@gitlab\.com:([^/]+)/([^/\s]+?)(?:\.git)?/?$",
    ]

    for pattern in gitlab_patterns:
        match = re.match(pattern, url)
        if match:
            return RepoRef(
                platform=Platform.GITLAB,
                owner=match.group(1),
                repo=match.group(2),
            )

    bitbucket_patterns = [
        r"(?:https?://)?(?:www\.)?bitbucket\.org/([^/]+)/([^/\s#?]+?)(?:\.git)?(?:[/#?].*)?$",
        r"git@bitbucket\.org:([^/]+)/([^/\s]+?)(?:\.git)?/?$",
    ]

    for pattern in bitbucket_patterns:
        match = re.match(pattern, url)
        if match:
            return RepoRef(
                platform=Platform.BITBUCKET,
                owner=match.group(1),
                repo=match.group(2),
            )

    return None


def _strip_git(name: str) -> str:
    return name[:-4] if name.endswith(".git") else name
