"""Package registry adapters."""

from npmscore.adapters.base import BaseAdapter, parse_repo_url
from npmscore.adapters.npm import NpmAdapter, snapshot_from_manifest

__all__ = ["BaseAdapter", "NpmAdapter", "parse_repo_url", "snapshot_from_manifest"]
