"""Security advisory lookup across OSV and the GitHub Advisory Database."""

import logging
import time
from datetime import datetime
from typing import Any

import httpx

from npmscore.errors import FetchError, InvalidInputError
from npmscore.models.schemas import Advisory

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "high": 1, "moderate": 2, "low": 3, "unknown": 4}


def normalize_severity(severity: Any) -> str:
    """Map severity labels and CVSS-like numbers onto critical/high/moderate/low."""
    if severity is None or severity == "":
        return "unknown"
    if isinstance(severity, (int, float)):
        score = float(severity)
        if score >= 9.0:
            return "critical"
        if score >= 7.0:
            return "high"
        if score >= 4.0:
            return "moderate"
        if score > 0:
            return "low"
        return "unknown"

    normalized = str(severity).strip().lower()
    if "critical" in normalized:
        return "critical"
    if "high" in normalized:
        return "high"
    if "moderate" in normalized or "medium" in normalized:
        return "moderate"
    if "low" in normalized:
        return "low"
    try:
        return normalize_severity(float(normalized))
    except ValueError:
        return "unknown"


def _parse_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class AdvisoryClient:
    """Fetches advisories for npm packages from OSV and GitHub.

    OSV is a distributed vulnerability database for open source
    (https://osv.dev/) and also carries the OpenSSF malicious-packages
    feed (``MAL-`` identifiers). No authentication required.

    Results are merged, deduplicated by id and alias, and cached in memory.
    """

    OSV_URL = "https://api.osv.dev/v1"
    GITHUB_ADVISORY_URL = "https://api.github.com/advisories"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        osv_url: str | None = None,
        github_advisory_url: str | None = None,
        github_token: str | None = None,
        timeout: float = 30.0,
        cache_ttl: float = 3600.0,
        cache_enabled: bool = True,
    ) -> None:
        """Initialize the client.

        Args:
            client: Optional httpx client. If not provided, creates one per request.
            osv_url: OSV API base URL.
            github_advisory_url: GitHub global advisories endpoint.
            github_token: Optional token for the GitHub endpoint.
            timeout: Request timeout in seconds when creating a client.
            cache_ttl: Seconds a cached lookup stays valid.
            cache_enabled: Set False to always query the sources.
        """
        self._client = client
        self.osv_url = (osv_url or self.OSV_URL).rstrip("/")
        self.github_advisory_url = github_advisory_url or self.GITHUB_ADVISORY_URL
        self._github_token = github_token
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.cache_enabled = cache_enabled
        self._cache: dict[str, tuple[float, list[Advisory]]] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.timeout)

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and decode JSON. Returns None on 404."""
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"HTTP {e.response.status_code} from {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {url} failed: {e}") from e
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {url}") from e
        finally:
            if self._client is None:
                await client.aclose()

    async def get_advisories(self, name: str, version: str | None = None) -> list[Advisory]:
        """Fetch advisories affecting a package.

        Args:
            name: Package name.
            version: Restrict OSV results to this version, if given.

        Returns:
            Deduplicated advisories, most severe first. Empty if none.

        Raises:
            InvalidInputError: If ``name`` is empty.
        """
        if not name:
            raise InvalidInputError("Package name is required")

        cache_key = f"{name}@{version or 'latest'}"
        if self.cache_enabled:
            self._evict_expired()
            cached = self._cache.get(cache_key)
            if cached:
                logger.debug(f"Advisory cache hit for {cache_key}")
                return list(cached[1])

        advisories: list[Advisory] = []
        for source, fetch in (("OSV", self._get_osv_advisories), ("GitHub", self._get_github_advisories)):
            try:
                advisories.extend(await fetch(name, version))
            except FetchError as e:
                logger.warning(f"Failed to fetch {source} advisories for {name}: {e}")

        unique = deduplicate_advisories(advisories)
        unique.sort(key=lambda a: (not a.is_malware, SEVERITY_ORDER.get(a.severity, 4)))

        if self.cache_enabled:
            self._cache[cache_key] = (time.monotonic(), unique)
        return list(unique)

    async def _get_osv_advisories(self, name: str, version: str | None) -> list[Advisory]:
        body: dict[str, Any] = {"package": {"name": name, "ecosystem": "npm"}}
        if version:
            body["version"] = version
        data = await self._request("POST", f"{self.osv_url}/query", json=body)
        if not isinstance(data, dict):
            return []
        return [self._normalize_osv(v, name) for v in data.get("vulns", []) if isinstance(v, dict)]

    async def _get_github_advisories(self, name: str, version: str | None) -> list[Advisory]:
        headers = {"Accept": "application/vnd.github+json"}
        if self._github_token:
            headers["Authorization"] = f"Bearer {self._github_token}"
        params = {"ecosystem": "npm", "affects": f"{name}@{version}" if version else name}
        data = await self._request("GET", self.github_advisory_url, params=params, headers=headers)
        if not isinstance(data, list):
            return []
        return [self._normalize_github(a, name) for a in data if isinstance(a, dict)]

    def _normalize_osv(self, vuln: dict, name: str) -> Advisory:
        vuln_id = vuln.get("id", "UNKNOWN")
        aliases = [a for a in vuln.get("aliases", []) if isinstance(a, str)]
        cve = next((a for a in aliases if a.startswith("CVE-")), None)

        severity = "unknown"
        db_specific = vuln.get("database_specific") or {}
        if db_specific.get("severity"):
            severity = normalize_severity(db_specific["severity"])
        for affected in vuln.get("affected", []):
            eco_specific = affected.get("ecosystem_specific") or {}
            if eco_specific.get("severity"):
                severity = normalize_severity(eco_specific["severity"])
                break

        is_malware = vuln_id.startswith("MAL-")
        if is_malware:
            severity = "critical"

        references = [r.get("url") for r in vuln.get("references", []) if r.get("url")]
        return Advisory(
            id=vuln_id,
            source="osv",
            package=name,
            title=vuln.get("summary") or (vuln.get("details") or "")[:200] or "Security Advisory",
            severity=severity,
            cve=cve,
            aliases=aliases,
            url=references[0] if references else f"https://osv.dev/vulnerability/{vuln_id}",
            published=_parse_datetime(vuln.get("published")),
            patched_versions=self._parse_fixed_version(vuln),
            is_malware=is_malware,
        )

    @staticmethod
    def _parse_fixed_version(vuln: dict) -> str | None:
        for affected in vuln.get("affected", []):
            for rng in affected.get("ranges", []):
                for event in rng.get("events", []):
                    if "fixed" in event:
                        return event["fixed"]
        return None

    def _normalize_github(self, advisory: dict, name: str) -> Advisory:
        ghsa_id = advisory.get("ghsa_id") or advisory.get("id") or "UNKNOWN"
        cve = advisory.get("cve_id")
        aliases = [cve] if cve else []
        vulnerable = "*"
        patched = None
        for vuln in advisory.get("vulnerabilities") or []:
            package = vuln.get("package") or {}
            if package.get("name") == name:
                vulnerable = vuln.get("vulnerable_version_range") or "*"
                patched = vuln.get("first_patched_version")
                if isinstance(patched, dict):
                    patched = patched.get("identifier")
                break

        return Advisory(
            id=ghsa_id,
            source="github",
            package=name,
            title=advisory.get("summary") or "Security Advisory",
            severity=normalize_severity(advisory.get("severity")),
            cve=cve,
            aliases=aliases,
            url=advisory.get("html_url") or advisory.get("url"),
            published=_parse_datetime(advisory.get("published_at")),
            vulnerable_versions=vulnerable,
            patched_versions=patched,
            is_malware=advisory.get("type") == "malware",
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    def _evict_expired(self) -> None:
        now = time.monotonic()
        expired = [key for key, (stored, _) in self._cache.items() if now - stored >= self.cache_ttl]
        for key in expired:
            del self._cache[key]

    def cache_stats(self) -> dict[str, Any]:
        return {"size": len(self._cache), "entries": list(self._cache)}


def deduplicate_advisories(advisories: list[Advisory]) -> list[Advisory]:
    """Keep the first advisory for each id, treating aliases as the same id."""
    seen: set[str] = set()
    unique = []
    for advisory in advisories:
        keys = {advisory.id, *advisory.aliases}
        if advisory.cve:
            keys.add(advisory.cve)
        if keys & seen:
            continue
        seen.update(keys)
        unique.append(advisory)
    return unique
