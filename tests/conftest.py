"""Shared fixtures: snapshot factory, tarball builder and fake collaborators."""

from __future__ import annotations

import io
import tarfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import pytest

from npmscore.analyzers.tarball import TarballAnalyzer
from npmscore.config import TarballConfig
from npmscore.models.schemas import PackageSnapshot


def _snapshot(**overrides: Any) -> PackageSnapshot:
    data: dict[str, Any] = {"name": "test-package", "version": "1.0.0"}
    data.update(overrides)
    return PackageSnapshot.model_validate(data)


@pytest.fixture
def make_snapshot():
    """Build a PackageSnapshot from keyword overrides."""
    return _snapshot


def _build_tarball(
    path: Path,
    files: dict[str, str | bytes],
    prefix: str = "package/",
    extra: list[tuple[tarfile.TarInfo, bytes | None]] | None = None,
) -> Path:
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{prefix}{name}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        for info, data in extra or []:
            tar.addfile(info, io.BytesIO(data) if data is not None else None)
    return path


@pytest.fixture
def build_tarball():
    """Write a gzipped tar with the given files under ``package/``."""
    return _build_tarball


class LocalTarball:
    """TarballAnalyzer stand-in that extracts a local .tgz instead of downloading."""

    def __init__(self, tarball_path: Path, temp_dir: Path) -> None:
        self.tarball_path = tarball_path
        self.analyzer = TarballAnalyzer(TarballConfig(temp_dir=temp_dir))
        self.opened: list[str] = []

    @asynccontextmanager
    async def open_tarball(self, url: str, package_name: str):
        self.opened.append(url)
        analyzer = self.analyzer

        async def copy_local(_url: str, destination: Path) -> None:
            destination.write_bytes(self.tarball_path.read_bytes())

        analyzer._download = copy_local
        async with analyzer.open_tarball(url, package_name) as archive:
            yield archive

    def read_file(self, archive, relative_path: str) -> str:
        return self.analyzer.read_file(archive, relative_path)


@pytest.fixture
def local_tarball(tmp_path):
    """Factory for a LocalTarball over files written into ``tmp_path``."""

    def factory(files: dict[str, str | bytes]) -> LocalTarball:
        path = _build_tarball(tmp_path / "fixture.tgz", files)
        return LocalTarball(path, tmp_path / "scratch")

    return factory
