"""SBOM detection bonus."""

import logging
import re
from pathlib import PurePosixPath
from typing import Any

from npmscore.errors import ArchiveError
from npmscore.models.schemas import PackageSnapshot, RuleResult
from npmscore.rules.base import BaseRule
from npmscore.rules.content import TarballSource

logger = logging.getLogger(__name__)

SBOM_PATTERNS = (
    # SPDX
    re.compile(r"^spdx\.json$", re.IGNORECASE),
    re.compile(r"\.spdx\.json$", re.IGNORECASE),
    re.compile(r"\.spdx$", re.IGNORECASE),
    # CycloneDX
    re.compile(r"^bom\.json$", re.IGNORECASE),
    re.compile(r"^cyclonedx\.json$", re.IGNORECASE),
    re.compile(r"\.cdx\.json$", re.IGNORECASE),
    # Lockfiles
    re.compile(r"^package-lock\.json$", re.IGNORECASE),
    re.compile(r"^yarn\.lock$", re.IGNORECASE),
    re.compile(r"^pnpm-lock\.yaml$", re.IGNORECASE),
    re.compile(r"^sbom\.json$", re.IGNORECASE),
    re.compile(r"^software-bill-of-materials\.json$", re.IGNORECASE),
    re.compile(r"\.sbom$", re.IGNORECASE),
)


def is_sbom_file(path: str) -> bool:
    if not path:
        return False
    name = PurePosixPath(path).name
    return any(p.search(name) for p in SBOM_PATTERNS)


class SBOMDetectionRule(BaseRule):
    """Awards a bonus when the package ships an SBOM or a lockfile."""

    name = "sbom-detection"
    description = "Checks if package includes SBOM (Software Bill of Materials) files"
    is_bonus = True

    def __init__(
        self,
        bonus: int = 10,
        tarball: TarballSource | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(bonus, enabled)
        self.tarball = tarball

    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        sbom_files = await self._detect_sbom_files(snapshot)
        if sbom_files:
            return RuleResult(
                bonus=self.weight,
                details={
                    "has_sbom": True,
                    "sbom_files": sbom_files,
                    "count": len(sbom_files),
                    "description": f"Package includes {len(sbom_files)} SBOM file(s)",
                },
            )
        return RuleResult(
            details={
                "has_sbom": False,
                "description": "Package does not include SBOM files",
            },
        )

    async def _detect_sbom_files(self, snapshot: PackageSnapshot) -> list[dict[str, Any]]:
        found = [
            {"path": path, "source": "package.json files field"}
            for path in snapshot.files
            if is_sbom_file(path)
        ]
        if not snapshot.dist.tarball or self.tarball is None:
            return found

        try:
            async with self.tarball.open_tarball(snapshot.dist.tarball, snapshot.name) as archive:
                entries = archive.manifest.files()
        except ArchiveError as e:
            logger.debug(f"SBOM tarball scan failed for {snapshot.name}: {e}")
            return found

        seen = {f["path"] for f in found}
        for entry in entries:
            if entry.path not in seen and is_sbom_file(entry.path):
                found.append({"path": entry.path, "source": "tarball analysis", "size": entry.size})
                seen.add(entry.path)
        return found
