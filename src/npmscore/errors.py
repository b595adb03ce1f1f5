"""Exception hierarchy for npm-security-score."""

from __future__ import annotations

from datetime import datetime


class ScoreError(Exception):
    """Base class for all errors raised by npmscore."""


class InvalidInputError(ScoreError, ValueError):
    """Raised when a required argument is missing or empty."""


class ConfigError(ScoreError):
    """Raised when configuration cannot be loaded or is invalid."""


class FetchError(ScoreError):
    """Raised when a remote service cannot be reached or returns an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PackageNotFoundError(FetchError):
    """Raised when a package cannot be found in the registry."""

    def __init__(self, name: str, version: str | None = None) -> None:
        self.name = name
        self.version = version
        target = f"{name}@{version}" if version else name
        super().__init__(f"Package '{target}' not found in npm registry", status_code=404)


class RateLimitError(FetchError):
    """Raised when an API quota is exhausted."""

    def __init__(self, reset_time: datetime | None, remaining: int = 0) -> None:
        self.reset_time = reset_time
        self.remaining = remaining
        when = reset_time.isoformat() if reset_time else "unknown"
        super().__init__(f"API rate limit exceeded, resets at {when}", status_code=403)


class ArchiveError(ScoreError):
    """Base class for tarball ingestion failures."""


class DownloadError(ArchiveError):
    """Raised when a tarball cannot be downloaded."""


class ExtractionError(ArchiveError):
    """Raised when a tarball cannot be decompressed or unpacked."""


class UnsafePathError(ArchiveError):
    """Raised when a path resolves outside of the extraction root."""


class ArchiveReadError(ArchiveError):
    """Raised when a file inside an extracted archive cannot be read."""
