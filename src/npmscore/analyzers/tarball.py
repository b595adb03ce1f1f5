"""Download and unpack npm package tarballs for content analysis.

Each analysis gets its own scratch directory under ``TarballConfig.temp_dir``:

    <temp_dir>/<sanitized-name>-XXXXXXXX/
        package.tgz     downloaded archive
        extracted/      unpacked entries

The directory is removed when the ``open_tarball`` context exits, whether
the body finished or raised.
"""

import asyncio
import json
import logging
import re
import shutil
import tarfile
import tempfile
import zlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx

from npmscore.config import TarballConfig
from npmscore.errors import (
    ArchiveReadError,
    DownloadError,
    ExtractionError,
    InvalidInputError,
    UnsafePathError,
)
from npmscore.models.schemas import ArchiveEntry, ArchiveManifest, ExtractedArchive

logger = logging.getLogger(__name__)

LARGE_FILE_THRESHOLD = 1024 * 1024
MAX_LARGEST_FILES = 10
UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_package_name(name: str) -> str:
    """Turn a package name into a single safe path component.

    ``@scope/pkg`` becomes ``_scope_pkg``.
    """
    cleaned = UNSAFE_NAME_CHARS.sub("_", name or "").strip(".")
    return cleaned or "package"


def is_within(path: Path, root: Path) -> bool:
    """True if ``path`` resolves to ``root`` or somewhere below it."""
    return path.resolve().is_relative_to(root.resolve())


class TarballAnalyzer:
    """Fetches package tarballs and unpacks them into isolated scratch space.

    Usage:
        analyzer = TarballAnalyzer()
        async with analyzer.open_tarball(url, "left-pad") as archive:
            text = analyzer.read_file(archive, "index.js")
    """

    def __init__(
        self,
        config: TarballConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the analyzer.

        Args:
            config: Scratch location, timeout and extraction limits.
            client: Optional httpx client for downloads.
        """
        self.config = config or TarballConfig()
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.config.timeout)

    @asynccontextmanager
    async def open_tarball(self, url: str, package_name: str) -> AsyncIterator[ExtractedArchive]:
        """Download and extract a tarball for the duration of the ``async with`` block.

        Args:
            url: Tarball URL (``dist.tarball``).
            package_name: Package name, used to label the scratch directory.

        Yields:
            ExtractedArchive for the unpacked package.

        Raises:
            InvalidInputError: If ``url`` is empty.
            DownloadError: If the download fails.
            ExtractionError: If the archive is corrupt or exceeds the size limits.
        """
        if not url:
            raise InvalidInputError("Tarball URL is required")

        self.config.temp_dir.mkdir(parents=True, exist_ok=True)
        scratch_dir = Path(
            tempfile.mkdtemp(
                prefix=f"{sanitize_package_name(package_name)}-",
                dir=self.config.temp_dir,
            )
        )
        logger.debug(f"Created scratch directory {scratch_dir}")

        try:
            tarball_path = scratch_dir / "package.tgz"
            extract_dir = scratch_dir / "extracted"

            await self._download(url, tarball_path)
            skipped = await asyncio.to_thread(self._extract, tarball_path, extract_dir)

            package_root = self._find_package_root(extract_dir)
            manifest = await asyncio.to_thread(self._build_manifest, package_root)
            manifest.skipped_entries = skipped

            logger.info(
                f"Extracted {package_name}: {manifest.total_files} files, "
                f"{manifest.total_size} bytes"
            )
            yield ExtractedArchive(
                scratch_dir=scratch_dir,
                package_root=package_root,
                manifest=manifest,
            )
        finally:
            shutil.rmtree(scratch_dir, ignore_errors=True)
            if scratch_dir.exists():
                logger.warning(f"Failed to remove scratch directory {scratch_dir}")
            else:
                logger.debug(f"Removed scratch directory {scratch_dir}")

    async def analyze_tarball(self, url: str, package_name: str) -> ArchiveManifest:
        """Download, extract and summarize a tarball.

        The scratch directory is gone by the time this returns or raises.

        Returns:
            ArchiveManifest describing the package contents.
        """
        async with self.open_tarball(url, package_name) as archive:
            return archive.manifest

    def read_file(self, archive: ExtractedArchive, relative_path: str) -> str:
        """Read a text file from an extracted package.

        Args:
            archive: Handle yielded by ``open_tarball``.
            relative_path: Path relative to the package root.

        Returns:
            File contents decoded as UTF-8, undecodable bytes replaced.

        Raises:
            UnsafePathError: If the path resolves outside the package root.
            ArchiveReadError: If the file is missing or unreadable.
        """
        target = archive.package_root / relative_path
        if not is_within(target, archive.package_root):
            raise UnsafePathError(f"Path escapes package root: {relative_path}")

        try:
            return target.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ArchiveReadError(f"Failed to read {relative_path}: {e}") from e

    async def _download(self, url: str, destination: Path) -> None:
        """Stream ``url`` to ``destination``; the partial file is removed on failure."""
        client = await self._get_client()
        try:
            async with client.stream(
                "GET", url, timeout=self.config.timeout, follow_redirects=True
            ) as response:
                if not response.is_success:
                    raise DownloadError(
                        f"Failed to download tarball: HTTP {response.status_code}"
                    )
                written = 0
                with destination.open("wb") as f:
                    async for chunk in response.aiter_bytes():
                        written += len(chunk)
                        if written > self.config.max_total_size:
                            raise DownloadError(
                                f"Tarball exceeds size limit of {self.config.max_total_size} bytes"
                            )
                        f.write(chunk)
        except httpx.TimeoutException as e:
            destination.unlink(missing_ok=True)
            raise DownloadError(f"Download timeout for {url}") from e
        except httpx.HTTPError as e:
            destination.unlink(missing_ok=True)
            raise DownloadError(f"Failed to download tarball: {e}") from e
        except DownloadError:
            destination.unlink(missing_ok=True)
            raise
        except OSError as e:
            destination.unlink(missing_ok=True)
            raise DownloadError(f"Failed to write tarball: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        logger.debug(f"Downloaded {url} ({destination.stat().st_size} bytes)")

    def _extract(self, tarball_path: Path, extract_dir: Path) -> list[str]:
        """Unpack regular files and directories that stay inside ``extract_dir``.

        Returns:
            Names of entries that were skipped.
        """
        extract_dir.mkdir(parents=True, exist_ok=True)
        root = extract_dir.resolve()
        skipped: list[str] = []
        total_size = 0

        try:
            with tarfile.open(tarball_path, "r:gz") as tar:
                for member in tar:
                    name = member.name
                    if not (member.isfile() or member.isdir()):
                        logger.warning(f"Skipping non-regular entry {name!r}")
                        skipped.append(name)
                        continue

                    target = (root / name).resolve()
                    if not target.is_relative_to(root) or (target == root and member.isfile()):
                        logger.warning(f"Skipping entry outside extraction root: {name!r}")
                        skipped.append(name)
                        continue

                    if member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue

                    if member.size > self.config.max_file_size:
                        logger.warning(f"Skipping oversized entry {name!r} ({member.size} bytes)")
                        skipped.append(name)
                        continue

                    total_size += member.size
                    if total_size > self.config.max_total_size:
                        raise ExtractionError(
                            f"Archive exceeds {self.config.max_total_size} bytes when unpacked"
                        )

                    source = tar.extractfile(member)
                    if source is None:
                        skipped.append(name)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with source, target.open("wb") as out:
                        shutil.copyfileobj(source, out)
        except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
            raise ExtractionError(f"Failed to extract {tarball_path.name}: {e}") from e

        return skipped

    @staticmethod
    def _find_package_root(extract_dir: Path) -> Path:
        """``extracted/package`` if present, else a lone top-level directory."""
        package_dir = extract_dir / "package"
        if package_dir.is_dir():
            return package_dir
        children = list(extract_dir.iterdir())
        if len(children) == 1 and children[0].is_dir():
            return children[0]
        return extract_dir

    @staticmethod
    def _build_manifest(package_root: Path) -> ArchiveManifest:
        manifest = ArchiveManifest()
        large_files: list[ArchiveEntry] = []

        for path in sorted(package_root.rglob("*")):
            if path.is_symlink():
                continue
            relative = path.relative_to(package_root).as_posix()
            if path.is_dir():
                manifest.entries.append(ArchiveEntry(path=relative, type="directory"))
            elif path.is_file():
                size = path.stat().st_size
                entry = ArchiveEntry(path=relative, type="file", size=size)
                manifest.entries.append(entry)
                manifest.total_files += 1
                manifest.total_size += size
                if size > LARGE_FILE_THRESHOLD:
                    large_files.append(entry)

        manifest.largest_files = sorted(large_files, key=lambda e: e.size or 0, reverse=True)[
            :MAX_LARGEST_FILES
        ]

        package_json = package_root / "package.json"
        if package_json.is_file():
            try:
                data = json.loads(package_json.read_text(encoding="utf-8", errors="replace"))
            except ValueError as e:
                logger.debug(f"Invalid package.json in tarball: {e}")
            else:
                if isinstance(data, dict):
                    manifest.package_json = data
                    manifest.has_package_json = True

        return manifest
