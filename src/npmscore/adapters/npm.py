"""npm registry adapter."""

import logging
import re
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from npmscore.adapters.base import BaseAdapter
from npmscore.errors import FetchError, PackageNotFoundError
from npmscore.models.schemas import (
    DependencySet,
    Distribution,
    Maintainer,
    PackageSnapshot,
    Publisher,
)

logger = logging.getLogger(__name__)

# "Jane Doe <jane@example.com> (https://example.com)"
PERSON_PATTERN = re.compile(r"^\s*([^<(]*?)\s*(?:<([^>]*)>)?\s*(?:\(([^)]*)\))?\s*$")


class NpmAdapter(BaseAdapter):
    """Adapter for the npm package registry.

    Data sources:
    - Package documents: https://registry.npmjs.org/{package}
    """

    REGISTRY_URL = "https://registry.npmjs.org"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        registry_url: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the adapter.

        Args:
            client: Optional httpx client for making requests.
            registry_url: Registry base URL. Defaults to the public registry.
            timeout: Request timeout in seconds when creating a client.
        """
        self._client = client
        self.registry_url = (registry_url or self.REGISTRY_URL).rstrip("/")
        self.timeout = timeout

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.timeout)

    def _package_url(self, name: str) -> str:
        # Scoped names keep their leading "@" but encode the slash
        return f"{self.registry_url}/{quote(name, safe='@')}"

    async def _fetch_packument(self, name: str) -> dict[str, Any] | None:
        """Fetch the full registry document for a package.

        Returns:
            The parsed document, or None if the registry answers 404.

        Raises:
            FetchError: On transport errors, non-404 HTTP errors or bad JSON.
        """
        url = self._package_url(name)
        client = await self._get_client()
        try:
            response = await client.get(url, headers={"Accept": "application/json"})
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"Registry returned {e.response.status_code} for {name}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch {name} from registry: {e}") from e
        except ValueError as e:
            raise FetchError(f"Invalid JSON from registry for {name}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if not isinstance(data, dict):
            raise FetchError(f"Unexpected registry response for {name}")
        return data

    async def get_package_metadata(
        self, name: str, version: str | None = None
    ) -> PackageSnapshot:
        """Fetch metadata for an npm package version.

        Args:
            name: Package name (supports scoped packages like @org/pkg).
            version: Exact version or dist-tag. Defaults to ``latest``.

        Returns:
            PackageSnapshot for the resolved version.

        Raises:
            PackageNotFoundError: If the package or version doesn't exist.
            FetchError: On network or HTTP failures.
        """
        data = await self._fetch_packument(name)
        if data is None:
            raise PackageNotFoundError(name, version)

        versions = data.get("versions") or {}
        dist_tags = data.get("dist-tags") or {}
        resolved = dist_tags.get(version or "latest", version)
        if resolved is None and versions:
            resolved = list(versions)[-1]

        manifest = versions.get(resolved) if resolved else None
        if manifest is None:
            raise PackageNotFoundError(name, version)

        times = data.get("time") or {}
        manifest = {"name": name, "version": resolved, **manifest}
        snapshot = snapshot_from_manifest(manifest, times.get(resolved))
        logger.debug(f"Fetched {snapshot.name}@{snapshot.version}")
        return snapshot

    async def get_all_versions(self, name: str) -> dict[str, PackageSnapshot]:
        """Fetch every published version of an npm package.

        Args:
            name: Package name.

        Returns:
            Mapping of version string to snapshot, in registry order.
            Empty if the package does not exist.

        Raises:
            FetchError: On network or HTTP failures.
        """
        data = await self._fetch_packument(name)
        if data is None:
            return {}

        times = data.get("time") or {}
        history: dict[str, PackageSnapshot] = {}
        for version, manifest in (data.get("versions") or {}).items():
            if not isinstance(manifest, dict):
                continue
            manifest = {"name": name, "version": version, **manifest}
            history[version] = snapshot_from_manifest(manifest, times.get(version))

        logger.debug(f"Fetched {len(history)} versions of {name}")
        return history


def snapshot_from_manifest(
    manifest: dict[str, Any], time: str | datetime | None = None
) -> PackageSnapshot:
    """Normalize one version document (a package.json as served by the registry).

    Args:
        manifest: Version document from the registry or a tarball's package.json.
        time: Publish time for the version, if known.

    Returns:
        A PackageSnapshot.
    """
    dist = manifest.get("dist") or {}
    publisher = manifest.get("publisher") or manifest.get("_npmUser")

    return PackageSnapshot(
        name=manifest.get("name") or "",
        version=str(manifest.get("version") or ""),
        description=manifest.get("description") or "",
        scripts={
            str(hook): str(command)
            for hook, command in (manifest.get("scripts") or {}).items()
            if isinstance(command, str)
        },
        dependencies=DependencySet(
            runtime=_dependency_map(manifest.get("dependencies")),
            dev=_dependency_map(manifest.get("devDependencies")),
            peer=_dependency_map(manifest.get("peerDependencies")),
            optional=_dependency_map(manifest.get("optionalDependencies")),
        ),
        dist=Distribution(
            tarball=dist.get("tarball"),
            unpacked_size=dist.get("unpackedSize"),
            file_count=dist.get("fileCount"),
            integrity=dist.get("integrity"),
            shasum=dist.get("shasum"),
            signatures=[s for s in dist.get("signatures") or [] if isinstance(s, dict)],
        ),
        maintainers=[
            m for m in (_parse_person(p) for p in manifest.get("maintainers") or []) if m
        ],
        author=_parse_person(manifest.get("author")),
        publisher=_parse_publisher(publisher),
        repository_url=_extract_repo_url(manifest.get("repository")),
        homepage=manifest.get("homepage") if isinstance(manifest.get("homepage"), str) else None,
        license=_extract_license(manifest.get("license")),
        files=[f for f in manifest.get("files") or [] if isinstance(f, str)],
        published_at=time,
    )


def _dependency_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}


def _parse_person(value: Any) -> Maintainer | None:
    """Parse an npm person field, either a dict or ``"Name <email> (url)"``."""
    if isinstance(value, dict):
        name = value.get("name") or value.get("username")
        if not name:
            return None
        return Maintainer(name=name, email=value.get("email"), url=value.get("url"))
    if isinstance(value, str) and value.strip():
        match = PERSON_PATTERN.match(value)
        if match and match.group(1):
            return Maintainer(name=match.group(1), email=match.group(2), url=match.group(3))
        return Maintainer(name=value.strip())
    return None


def _parse_publisher(value: Any) -> Publisher | None:
    if not isinstance(value, dict):
        return None
    return Publisher(
        name=value.get("name"),
        email=value.get("email"),
        verified=value.get("verified") is True,
    )


def _extract_repo_url(repository: dict | str | None) -> str | None:
    """Extract repository URL from npm repository field.

    Handles various formats:
    - {"type": "git", "url": "git+https://github.com/owner/repo.git"}
    - "github:owner/repo"
    - "owner/repo"
    - "https://github.com/owner/repo"
    """
    if not repository:
        return None

    if isinstance(repository, str):
        url = repository
    elif isinstance(repository, dict):
        url = repository.get("url", "")
    else:
        return None

    if not url or not isinstance(url, str):
        return None

    url = url.strip().replace("git+", "", 1).replace("git://", "https://", 1)
    if url.endswith(".git"):
        url = url[:-4]

    if url.startswith("github:"):
        url = f"https://github.com/{url[7:]}"
    elif re.fullmatch(r"[\w.-]+/[\w.-]+", url):
        url = f"https://github.com/{url}"

    return url or None


def _extract_license(license_info: Any) -> str | None:
    """Extract license from npm package data."""
    if isinstance(license_info, str):
        return license_info
    elif isinstance(license_info, dict):
        return license_info.get("type") or license_info.get("name")
    elif isinstance(license_info, list) and license_info:
        return _extract_license(license_info[0])
    return None
