"""Pydantic models for package data and scoring results."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Platform(str, Enum):
    """Source code hosting platforms."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


class RiskLevel(str, Enum):
    """Risk tier reported by a rule."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ERROR = "error"


class RepoRef(BaseModel):
    """Reference to a source code repository."""

    platform: Platform
    owner: str
    repo: str
    subpath: str | None = None

    @property
    def url(self) -> str:
        """Get the full repository URL."""
        base_urls = {
            Platform.GITHUB: "https://github.com",
            Platform.GITLAB: "https://gitlab.com",
            Platform.BITBUCKET: "https://bitbucket.org",
        }
        base = base_urls.get(self.platform, "")
        return f"{base}/{self.owner}/{self.repo}"


# --- Package Snapshot Models ---


class Maintainer(BaseModel):
    """A maintainer or author entry from package metadata."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str | None = None
    url: str | None = None


class Publisher(BaseModel):
    """The account that published a specific version."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    email: str | None = None
    verified: bool = False


class Distribution(BaseModel):
    """Distribution info (the npm ``dist`` object)."""

    model_config = ConfigDict(frozen=True)

    tarball: str | None = None
    unpacked_size: int | None = None
    file_count: int | None = None
    integrity: str | None = None
    shasum: str | None = None
    signatures: list[dict[str, Any]] = Field(default_factory=list)


class DependencySet(BaseModel):
    """Declared dependencies, one mapping of name -> range per kind."""

    model_config = ConfigDict(frozen=True)

    runtime: dict[str, str] = Field(default_factory=dict)
    dev: dict[str, str] = Field(default_factory=dict)
    peer: dict[str, str] = Field(default_factory=dict)
    optional: dict[str, str] = Field(default_factory=dict)

    def by_kind(self) -> dict[str, dict[str, str]]:
        """Return every dependency kind keyed by its name."""
        return {
            "runtime": self.runtime,
            "dev": self.dev,
            "peer": self.peer,
            "optional": self.optional,
        }


class PackageSnapshot(BaseModel):
    """Immutable view of one published version of a package."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    scripts: dict[str, str] = Field(default_factory=dict)
    dependencies: DependencySet = Field(default_factory=DependencySet)
    dist: Distribution = Field(default_factory=Distribution)
    maintainers: list[Maintainer] = Field(default_factory=list)
    author: Maintainer | None = None
    publisher: Publisher | None = None
    repository_url: str | None = None
    homepage: str | None = None
    license: str | None = None
    files: list[str] = Field(default_factory=list)
    published_at: datetime | None = None


# Versions of one package keyed by version string
VersionHistory = dict[str, PackageSnapshot]


# --- Advisory Models ---


class Advisory(BaseModel):
    """A security advisory normalized from any advisory source."""

    id: str
    source: str
    package: str
    title: str = "Security Advisory"
    severity: str = "unknown"  # critical, high, moderate, low, unknown
    cve: str | None = None
    aliases: list[str] = Field(default_factory=list)
    url: str | None = None
    published: datetime | None = None
    vulnerable_versions: str = "*"
    patched_versions: str | None = None
    is_malware: bool = False


# --- Scoring Models ---


class RuleResult(BaseModel):
    """What a single rule returns from ``evaluate``."""

    deduction: float = Field(default=0, ge=0)
    bonus: float = Field(default=0, ge=0)
    details: dict[str, Any] = Field(default_factory=dict)
    risk_level: RiskLevel = RiskLevel.NONE


class RuleOutcome(RuleResult):
    """A rule result tagged with the rule that produced it."""

    rule_name: str


class ScoreBand(BaseModel):
    """Named score range used to classify a final score."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    min_score: float
    description: str
    emoji: str = ""


class ScoreResult(BaseModel):
    """Final score for one package version."""

    model_config = ConfigDict(frozen=True)

    score: float
    band: ScoreBand
    rule_results: list[RuleOutcome] = Field(default_factory=list)
    package_name: str
    package_version: str
    timestamp: datetime

    @property
    def total_deductions(self) -> float:
        return sum(r.deduction for r in self.rule_results)

    @property
    def total_bonuses(self) -> float:
        return sum(r.bonus for r in self.rule_results)


# --- Tarball Models ---


class ArchiveEntry(BaseModel):
    """One path inside an extracted package."""

    path: str
    type: str  # "file" or "directory"
    size: int | None = None


class ArchiveManifest(BaseModel):
    """Summary of an extracted package tarball."""

    total_files: int = 0
    total_size: int = 0
    entries: list[ArchiveEntry] = Field(default_factory=list)
    largest_files: list[ArchiveEntry] = Field(default_factory=list)
    skipped_entries: list[str] = Field(default_factory=list)
    package_json: dict[str, Any] | None = None
    has_package_json: bool = False

    def files(self) -> list[ArchiveEntry]:
        """Return only file entries."""
        return [e for e in self.entries if e.type == "file"]


class ExtractedArchive(BaseModel):
    """Handle on an extracted tarball, valid only inside ``open_tarball``."""

    scratch_dir: Path
    package_root: Path
    manifest: ArchiveManifest
