"""Tests for repository-relative path sanitising and resolution."""

from pathlib import Path

import pytest

from gitfolder.files.paths import (
    join_relative,
    normalize_relative_path,
    resolve_repo_path,
    sanitize_segment,
    split_relative_path,
)


def test_resolve_repo_path_safe() -> None:
    """Safe relative path is resolved under the repository root."""
    got = resolve_repo_path(Path("/repos/1/docs"), "foo/bar.txt")
    assert got == Path("/repos/1/docs/foo/bar.txt")


def test_resolve_repo_path_rejects_traversal() -> None:
    """Relative path with .. raises ValueError."""
    with pytest.raises(ValueError):
        resolve_repo_path(Path("/repos/1/docs"), "../../etc/passwd")


def test_git_directory_is_not_addressable() -> None:
    """.git (any case) cannot be reached through the API."""
    for path in (".git/config", "sub/.git", ".GIT/HEAD"):
        with pytest.raises(ValueError):
            split_relative_path(path)


def test_leading_dash_rejected() -> None:
    """A segment git would read as an option is refused."""
    assert sanitize_segment("-rf") is None
    assert sanitize_segment("a-b") == "a-b"


def test_unsafe_segments_rejected() -> None:
    """Control characters, percent and colon are rejected."""
    assert sanitize_segment("a\x00b") is None
    assert sanitize_segment("100%.txt") is None
    assert sanitize_segment("HEAD:secret") is None


def test_unicode_and_punctuation_allowed() -> None:
    """International names and common punctuation pass."""
    assert sanitize_segment("Übersicht (1).pdf") == "Übersicht (1).pdf"
    assert sanitize_segment("Manual（CN）.pdf") == "Manual（CN）.pdf"
    assert sanitize_segment("user@host.txt") == "user@host.txt"


def test_normalize_relative_path() -> None:
    """Leading/trailing slashes and backslashes are normalised; root is empty."""
    assert normalize_relative_path("/docs/a.txt") == "docs/a.txt"
    assert normalize_relative_path("docs\\sub\\a.txt") == "docs/sub/a.txt"
    assert normalize_relative_path("/") == ""
    assert normalize_relative_path("") == ""


def test_join_relative() -> None:
    """Folder + filename; only the last component of the filename is kept."""
    assert join_relative("/", "a.txt") == "a.txt"
    assert join_relative("/docs/", "a.txt") == "docs/a.txt"
    assert join_relative("docs", "C:\\Users\\me\\a.txt") == "docs/a.txt"
    with pytest.raises(ValueError):
        join_relative("docs", "..")
    with pytest.raises(ValueError):
        join_relative("../x", "a.txt")


def test_resolve_repo_path_rejects_symlink_out_of_root(tmp_path) -> None:
    """A link inside the tree that points elsewhere cannot be followed."""
    root = tmp_path / "repo"
    root.mkdir()
    (tmp_path / "outside").mkdir()
    (root / "link").symlink_to(tmp_path / "outside")
    (root / "docs").mkdir()
    (root / "inner").symlink_to(root / "docs")
    with pytest.raises(ValueError):
        resolve_repo_path(root, "link/secret.txt")
    with pytest.raises(ValueError):
        resolve_repo_path(root, "link")
    assert resolve_repo_path(root, "inner/a.txt") == root / "inner" / "a.txt"
