"""Data models and schemas."""

from npmscore.models.schemas import (
    Advisory,
    ArchiveEntry,
    ArchiveManifest,
    DependencySet,
    Distribution,
    ExtractedArchive,
    Maintainer,
    PackageSnapshot,
    Platform,
    Publisher,
    RepoRef,
    RiskLevel,
    RuleOutcome,
    RuleResult,
    ScoreBand,
    ScoreResult,
    VersionHistory,
)

__all__ = [
    "Advisory",
    "ArchiveEntry",
    "ArchiveManifest",
    "DependencySet",
    "Distribution",
    "ExtractedArchive",
    "Maintainer",
    "PackageSnapshot",
    "Platform",
    "Publisher",
    "RepoRef",
    "RiskLevel",
    "RuleOutcome",
    "RuleResult",
    "ScoreBand",
    "ScoreResult",
    "VersionHistory",
]
