"""Helpers for rules that scan the JavaScript inside a package tarball."""

import logging
import math
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from pathlib import PurePosixPath
from typing import Protocol

from npmscore.errors import ArchiveReadError, UnsafePathError
from npmscore.models.schemas import ExtractedArchive

logger = logging.getLogger(__name__)

JS_EXTENSIONS = (".js", ".mjs", ".cjs")
MAX_SCAN_BYTES = 500_000


class TarballSource(Protocol):
    """The subset of TarballAnalyzer the content rules rely on."""

    def open_tarball(self, url: str, package_name: str) -> AbstractAsyncContextManager[ExtractedArchive]: ...

    def read_file(self, archive: ExtractedArchive, relative_path: str) -> str: ...


def is_minified(content: str) -> bool:
    """Check if JS content appears to be minified."""
    lines = content.split("\n")
    if not lines:
        return False

    avg_len = sum(len(line) for line in lines) / len(lines)
    if avg_len > 200:
        return True

    # Very few lines for large content
    if len(content) > 10000 and len(lines) < 50:
        return True

    return False


def shannon_entropy(text: str) -> float:
    """Bits per character of ``text``."""
    if not text:
        return 0.0
    length = len(text)
    return -sum((n / length) * math.log2(n / length) for n in Counter(text).values())


async def iter_js_sources(
    tarball: TarballSource, archive: ExtractedArchive
) -> AsyncIterator[tuple[str, str]]:
    """Yield ``(path, content)`` for each scannable JS file in the archive.

    Files over ``MAX_SCAN_BYTES`` and unreadable files are skipped.
    """
    for entry in archive.manifest.files():
        if PurePosixPath(entry.path).suffix.lower() not in JS_EXTENSIONS:
            continue
        if entry.size is not None and entry.size >= MAX_SCAN_BYTES:
            logger.debug(f"Skipping large file {entry.path} ({entry.size} bytes)")
            continue
        try:
            content = tarball.read_file(archive, entry.path)
        except (ArchiveReadError, UnsafePathError) as e:
            logger.debug(f"Error reading {entry.path}: {e}")
            continue
        yield entry.path, content
