"""Classify feed locations as remote URLs or local paths."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote


class PathType(str, Enum):
    """Kinds of feed location."""

    HTTP_URL = "http_url"
    FILE_URL = "file_url"
    VAULT_RELATIVE = "vault_relative"
    ABSOLUTE_PATH = "absolute_path"


@dataclass(frozen=True)
class PathInfo:
    """A classified feed location."""

    type: PathType
    original_path: str
    normalized_path: str

    @property
    def is_local(self) -> bool:
        return self.type != PathType.HTTP_URL

    @property
    def is_remote(self) -> bool:
        return self.type == PathType.HTTP_URL


def detect_path_type(path: str) -> PathType:
    """Classify a feed location.

    webcal:// is treated as a remote URL (it is served over HTTP).
    """
    if not path:
        return PathType.VAULT_RELATIVE

    lowered = path.lower()
    if lowered.startswith(("http://", "https://", "webcal://")):
        return PathType.HTTP_URL
    if lowered.startswith("file://"):
        return PathType.FILE_URL
    # POSIX "/...", home-relative "~/..." or a Windows drive "C:\..."
    if path.startswith(("/", "~")) or (len(path) >= 3 and path[1] == ":" and path[2] == "\\"):
        return PathType.ABSOLUTE_PATH
    return PathType.VAULT_RELATIVE


def normalize_file_path(path: str, path_type: PathType) -> str:
    """Return the location in the form the matching reader expects."""
    if path_type == PathType.FILE_URL:
        return unquote(path[len("file://"):])
    if path_type == PathType.VAULT_RELATIVE:
        normalized = posixpath.normpath(path.replace("\\", "/").strip()).lstrip("/")
        return "" if normalized == "." else normalized
    if path_type == PathType.HTTP_URL and path.lower().startswith("webcal://"):
        return "https://" + path[len("webcal://"):]
    return path


def get_path_info(path: str) -> PathInfo:
    path_type = detect_path_type(path)
    return PathInfo(path_type, path, normalize_file_path(path, path_type))


def resolve_local_path(info: PathInfo, vault_root: Optional[Union[str, Path]] = None) -> Path:
    """Map a local PathInfo to a filesystem path.

    Vault-relative paths are joined to vault_root (default: current directory);
    a leading "~" is expanded to the user's home directory.
    """
    if info.type == PathType.VAULT_RELATIVE:
        root = Path(vault_root) if vault_root else Path.cwd()
        return root / info.normalized_path
    return Path(info.normalized_path).expanduser()
