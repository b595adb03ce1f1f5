"""Network-backed analyzers and the scoring service."""

from npmscore.analyzers.advisories import AdvisoryClient
from npmscore.analyzers.github import GitHubClient
from npmscore.analyzers.service import BatchItem, ScoringService, parse_package_spec
from npmscore.analyzers.tarball import TarballAnalyzer

__all__ = [
    "AdvisoryClient",
    "BatchItem",
    "GitHubClient",
    "ScoringService",
    "TarballAnalyzer",
    "parse_package_spec",
]
