"""Suffix parsing and remote→local path mapping for generated files."""

from __future__ import annotations

import hashlib
import posixpath
from pathlib import Path

from strmsync.exceptions import InvalidPathError

STRM_EXTENSION = "strm"
MAX_NAME_BYTES = 255
_HASH_LEN = 8


def parse_suffixes(value: str | None) -> set[str]:
    """Split ``"mp4, mkv,.ts"`` into ``{"mp4", "mkv", "ts"}`` (case preserved)."""
    if not value:
        return set()
    result = set()
    for part in value.split(","):
        part = part.strip().lstrip(".")
        if part:
            result.add(part)
    return result


def truncate_filename(name: str, max_bytes: int = MAX_NAME_BYTES) -> str:
    """Shorten ``name`` to ``max_bytes`` UTF-8 bytes, keeping the extension.

    The truncated stem gets a short hash of the full name appended so two
    long names sharing a prefix still map to different files.
    """
    if len(name.encode("utf-8")) <= max_bytes:
        return name

    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    tail = f".{ext}" if ext else ""
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:_HASH_LEN]
    room = max_bytes - len(tail.encode("utf-8")) - _HASH_LEN - 1
    if room <= 0:
        raise InvalidPathError(f"Extension too long to fit a file name: {name!r}")
    short = stem.encode("utf-8")[:room].decode("utf-8", errors="ignore")
    return f"{short}_{digest}{tail}"


def strm_name(name: str, replace_suffix: bool) -> str:
    """``movie.mp4`` → ``movie.strm`` (replace) or ``movie.mp4.strm`` (keep)."""
    base = name
    if replace_suffix and "." in name.strip("."):
        base = name.rsplit(".", 1)[0]
    return f"{base}.{STRM_EXTENSION}"


def _validate_remote_path(remote_path: str) -> str:
    if not remote_path or not remote_path.startswith("/"):
        raise InvalidPathError(f"Invalid remote path: {remote_path!r}")
    if any(ord(ch) < 32 for ch in remote_path):
        raise InvalidPathError(f"Control character in remote path: {remote_path!r}")
    segments = remote_path.split("/")[1:]
    if not segments[-1] or any(seg in ("", ".", "..") for seg in segments):
        raise InvalidPathError(f"Malformed remote path: {remote_path!r}")
    return remote_path


def relative_remote_path(source_root: str, remote_path: str) -> str:
    """Path of ``remote_path`` below ``source_root`` (always forward slashes)."""
    _validate_remote_path(remote_path)
    root = posixpath.normpath("/" + source_root.strip("/"))
    if root != "/" and not remote_path.startswith(root + "/"):
        raise InvalidPathError(f"{remote_path!r} is outside source root {root!r}")
    return posixpath.relpath(remote_path, root)


def map_target_path(source_root: str, target_root: str | Path, remote_path: str, name: str | None = None) -> Path:
    """Local destination for ``remote_path``, optionally renaming the leaf."""
    rel = relative_remote_path(source_root, remote_path)
    parent, _, leaf = rel.rpartition("/")
    leaf = truncate_filename(name or leaf)
    target = Path(target_root)
    if parent:
        target = target.joinpath(*parent.split("/"))
    return target / leaf


def is_below(source_root: str, remote_path: str) -> bool:
    """True when ``remote_path`` lies strictly inside ``source_root``."""
    root = posixpath.normpath("/" + source_root.strip("/"))
    path = posixpath.normpath("/" + remote_path.strip("/"))
    if root == "/":
        return path != "/"
    return path.startswith(root + "/")
