"""Safe path resolution inside a repository working tree (no traversal, no .git access)."""

import re
import unicodedata
from pathlib import Path, PurePosixPath
from typing import List, Optional

# Safe path segment: letters, numbers, common punctuation. No / \ (traversal).
# Allow: . _ - space ( ) + ~ # ! & ' , ; = [ ] @ for "File (1).txt", "user@host.txt", etc.
_SAFE_SEGMENT_ASCII = re.compile(r"^[a-zA-Z0-9_. \-()+~#!&',;=\[\]@]+$")
_RESERVED_SEGMENTS = (".git",)


def _is_safe_path_char(c: str) -> bool:
    """True if char is allowed in a path segment (no traversal, no control chars)."""
    if len(c) != 1:
        return False
    if c in "/\\%:":
        return False
    if ord(c) < 32:
        return False
    if ("a" <= c <= "z") or ("A" <= c <= "Z") or ("0" <= c <= "9") or c in "_. -()+~#!&',;=[]@":
        return True
    cat = unicodedata.category(c)
    # Letter, Number, or Punctuation (e.g. fullwidth parentheses in "Manual（CN）.pdf")
    return cat.startswith("L") or cat.startswith("N") or cat.startswith("P")


def sanitize_segment(segment: str) -> Optional[str]:
    """Return segment if safe, else None. Rejects empty, '..', '.', '.git' and invalid chars.
    Allows Unicode letters and numbers (e.g. ä, ö, ü, é) for international filenames.
    """
    segment = segment.strip()
    if not segment or segment in (".", ".."):
        return None
    if segment.lower() in _RESERVED_SEGMENTS:
        return None
    if segment.startswith("-"):
        # git would read it as an option
        return None
    if _SAFE_SEGMENT_ASCII.match(segment):
        return segment
    if not all(_is_safe_path_char(c) for c in segment):
        return None
    return segment


def split_relative_path(relative_path: str) -> List[str]:
    """
    Split a client path ("/docs/a.txt", "docs\\a.txt") into sanitized segments.
    Raises ValueError on any unsafe segment. "/" or "" yields [] (the repository root).
    """
    parts = relative_path.replace("\\", "/").strip("/").split("/")
    out: List[str] = []
    for part in parts:
        if not part:
            continue
        safe = sanitize_segment(part)
        if not safe:
            raise ValueError(f"Unsafe path segment: {part!r}")
        out.append(safe)
    return out


def normalize_relative_path(relative_path: str) -> str:
    """Canonical repository-relative path with forward slashes and no leading slash."""
    parts = split_relative_path(relative_path)
    return str(PurePosixPath(*parts)) if parts else ""


def join_relative(folder: str, filename: str) -> str:
    """Join a folder path and a bare filename into a canonical relative path."""
    name = sanitize_segment(filename.replace("\\", "/").split("/")[-1])
    if not name:
        raise ValueError(f"Unsafe file name: {filename!r}")
    return str(PurePosixPath(*split_relative_path(folder), name))


def resolve_repo_path(root: Path, relative_path: str) -> Path:
    """
    Resolve a relative path under a repository root. Rejects traversal and unsafe names.
    relative_path uses forward slashes; segments are sanitized. Symlinks in the working
    tree must not lead outside the root.
    """
    resolved = root
    for part in split_relative_path(relative_path):
        resolved = resolved / part
    if not resolved.resolve().is_relative_to(root.resolve()):
        raise ValueError(f"Path escapes the repository: {relative_path!r}")
    return resolved
