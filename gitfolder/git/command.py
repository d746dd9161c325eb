"""Git CLI facade: one subprocess per operation, exit codes mapped to typed errors."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from gitfolder.config import Settings
from gitfolder.errors import CommandError, GitError, InvalidInputError, NotFoundError
from gitfolder.git.process import CommandResult, run_process

log = logging.getLogger(__name__)

# Unit separator keeps commit subjects containing "|" intact
_FIELD_SEP = "\x1f"
_LOG_FORMAT = "--pretty=format:%H%x1f%an%x1f%ae%x1f%at%x1f%s"
_COMMIT_HASH = re.compile(r"\[[^\]]*?\s([0-9a-f]{7,40})\]")
_LFS_TRACK_LINE = re.compile(r"^\s*(\S+)\s+\(.*\)$")
_NOTHING_TO_COMMIT = ("nothing to commit", "nothing added to commit", "no changes added to commit")


@dataclass
class CommitInfo:
    hash: str
    author: str
    email: str
    date: datetime
    message: str


def parse_log_line(line: str) -> Optional[CommitInfo]:
    """Parse one line produced by _LOG_FORMAT; None if malformed."""
    parts = line.split(_FIELD_SEP, 4)
    if len(parts) != 5:
        return None
    commit_hash, author, email, timestamp, message = parts
    try:
        date = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    except ValueError:
        return None
    return CommitInfo(hash=commit_hash, author=author, email=email, date=date, message=message)


def parse_lfs_track_output(output: str) -> List[str]:
    """Extract patterns from `git lfs track` listing lines like '    *.psd (.gitattributes)'."""
    patterns: List[str] = []
    for line in output.splitlines():
        m = _LFS_TRACK_LINE.match(line)
        if m:
            patterns.append(m.group(1))
    return patterns


def _reject_option(value: str, what: str) -> None:
    """Refuse user values that git would parse as an option."""
    if not value or value.startswith("-"):
        raise InvalidInputError(f"Invalid {what}: {value!r}")


class GitCommand:
    """Thin async wrapper around the git executable."""

    def __init__(self, settings: Settings, executable: str = "git") -> None:
        self.executable = executable
        self.timeout_ms = settings.git_timeout_ms
        self.clone_timeout_ms = settings.git_clone_timeout_ms
        self.max_buffer = settings.git_max_buffer_bytes
        self.default_branch = settings.git_default_branch
        self._env: Dict[str, str] = {
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_AUTHOR_NAME": settings.git_committer_name,
            "GIT_AUTHOR_EMAIL": settings.git_committer_email,
            "GIT_COMMITTER_NAME": settings.git_committer_name,
            "GIT_COMMITTER_EMAIL": settings.git_committer_email,
        }

    async def execute(
        self,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[int] = None,
    ) -> CommandResult:
        """Run `git args...`. Non-zero exit is returned, not raised."""
        merged = dict(self._env)
        if env:
            merged.update(env)
        return await run_process(
            self.executable,
            list(args),
            cwd=str(cwd) if cwd is not None else None,
            env=merged,
            timeout_ms=timeout_ms or self.timeout_ms,
            max_buffer=self.max_buffer,
        )

    async def is_git_repository(self, directory: Union[str, Path]) -> bool:
        try:
            result = await self.execute(["rev-parse", "--is-inside-work-tree"], cwd=directory)
        except CommandError:
            log.debug("rev-parse failed in %s", directory, exc_info=True)
            return False
        return result.ok and result.stdout == "true"

    async def get_repository_root(self, directory: Union[str, Path]) -> Optional[str]:
        try:
            result = await self.execute(["rev-parse", "--show-toplevel"], cwd=directory)
        except CommandError:
            log.debug("rev-parse --show-toplevel failed in %s", directory, exc_info=True)
            return None
        return result.stdout if result.ok else None

    async def init(
        self,
        directory: Union[str, Path],
        bare: bool = False,
        initial_branch: Optional[str] = None,
    ) -> None:
        """Create directory (if needed) and run git init."""
        Path(directory).mkdir(parents=True, exist_ok=True)
        args = ["init", f"--initial-branch={initial_branch or self.default_branch}"]
        if bare:
            args.append("--bare")
        result = await self.execute(args, cwd=directory)
        if not result.ok:
            raise GitError(
                f"Failed to initialize repository: {result.stderr}", "INIT_FAILED", result.stderr
            )
        log.info("Initialized git repository at %s", directory)

    async def clone(
        self,
        url: str,
        destination: Union[str, Path],
        depth: Optional[int] = None,
        branch: Optional[str] = None,
        single_branch: bool = False,
        timeout_ms: Optional[int] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        _reject_option(url, "repository URL")
        dest = Path(destination)
        dest.parent.mkdir(parents=True, exist_ok=True)
        args = ["clone"]
        if depth:
            args += ["--depth", str(depth)]
        if branch:
            _reject_option(branch, "branch")
            args += ["--branch", branch]
        if single_branch:
            args.append("--single-branch")
        args += ["--", url, str(dest)]
        result = await self.execute(
            args,
            cwd=dest.parent,
            env=env,
            timeout_ms=timeout_ms or self.clone_timeout_ms,
        )
        if not result.ok:
            raise GitError(f"Failed to clone repository: {result.stderr}", "CLONE_FAILED", result.stderr)
        log.info("Cloned repository from %s to %s", url, dest)

    async def add(self, paths: Union[str, Sequence[str]], cwd: Union[str, Path]) -> None:
        file_list = [paths] if isinstance(paths, str) else list(paths)
        result = await self.execute(["add", "--", *file_list], cwd=cwd)
        if not result.ok:
            raise GitError(f"Failed to add files: {result.stderr}", "ADD_FAILED", result.stderr)

    async def commit(
        self,
        message: str,
        cwd: Union[str, Path],
        author: Optional[str] = None,
        allow_empty: bool = False,
    ) -> Optional[str]:
        """
        Commit staged changes. Returns the short hash, or None when there was
        nothing to commit (not an error).
        """
        args = ["commit", "-m", message]
        if author:
            args.append(f"--author={author}")
        if allow_empty:
            args.append("--allow-empty")
        result = await self.execute(args, cwd=cwd)
        if not result.ok:
            combined = f"{result.stdout}\n{result.stderr}"
            if any(marker in combined for marker in _NOTHING_TO_COMMIT):
                log.debug("Nothing to commit in %s", cwd)
                return None
            raise GitError(f"Failed to commit: {result.stderr}", "COMMIT_FAILED", result.stderr)
        m = _COMMIT_HASH.search(result.stdout)
        return m.group(1) if m else ""

    async def push(
        self,
        cwd: Union[str, Path],
        remote: str = "origin",
        branch: Optional[str] = None,
        force: bool = False,
        set_upstream: bool = False,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        args = ["push"]
        if force:
            args.append("--force")
        if set_upstream:
            args.append("--set-upstream")
        _reject_option(remote, "remote")
        args.append(remote)
        if branch:
            _reject_option(branch, "branch")
            args.append(branch)
        result = await self.execute(args, cwd=cwd, env=env, timeout_ms=self.clone_timeout_ms)
        if not result.ok:
            raise GitError(f"Failed to push: {result.stderr}", "PUSH_FAILED", result.stderr)

    async def pull(
        self,
        cwd: Union[str, Path],
        remote: str = "origin",
        branch: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        _reject_option(remote, "remote")
        args = ["pull", remote]
        if branch:
            _reject_option(branch, "branch")
            args.append(branch)
        result = await self.execute(args, cwd=cwd, env=env, timeout_ms=self.clone_timeout_ms)
        if not result.ok:
            raise GitError(f"Failed to pull: {result.stderr}", "PULL_FAILED", result.stderr)

    async def get_current_branch(self, cwd: Union[str, Path]) -> Optional[str]:
        result = await self.execute(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
        return result.stdout if result.ok else None

    async def list_branches(self, cwd: Union[str, Path]) -> List[str]:
        result = await self.execute(["branch", "--format=%(refname:short)"], cwd=cwd)
        if not result.ok:
            raise GitError(
                f"Failed to list branches: {result.stderr}", "LIST_BRANCHES_FAILED", result.stderr
            )
        return [line for line in result.stdout.splitlines() if line]

    async def remove(self, paths: Union[str, Sequence[str]], cwd: Union[str, Path], recursive: bool = True) -> None:
        file_list = [paths] if isinstance(paths, str) else list(paths)
        args = ["rm"]
        if recursive:
            args.append("-r")
        args += ["--", *file_list]
        result = await self.execute(args, cwd=cwd)
        if not result.ok:
            raise GitError(f"Failed to remove files: {result.stderr}", "RM_FAILED", result.stderr)

    async def move(self, source: str, destination: str, cwd: Union[str, Path]) -> None:
        result = await self.execute(["mv", "--", source, destination], cwd=cwd)
        if not result.ok:
            raise GitError(f"Failed to move files: {result.stderr}", "MV_FAILED", result.stderr)

    async def show(self, revision: str, path: str, cwd: Union[str, Path]) -> bytes:
        """Return raw file content at a revision (`git show <rev>:<path>`)."""
        _reject_option(revision, "revision")
        result = await self.execute(["show", f"{revision}:{path}"], cwd=cwd)
        if not result.ok:
            if "does not exist" in result.stderr or "exists on disk, but not in" in result.stderr:
                raise NotFoundError("File not found in this version", "FILE_NOT_FOUND")
            raise GitError(f"Failed to get file version: {result.stderr}", "VERSION_FAILED", result.stderr)
        return result.stdout_bytes

    async def log(
        self,
        cwd: Union[str, Path],
        path: Optional[str] = None,
        limit: int = 20,
        revision_range: Optional[str] = None,
    ) -> List[CommitInfo]:
        args = ["log", f"--max-count={limit}", _LOG_FORMAT]
        if revision_range:
            _reject_option(revision_range, "revision range")
            args.append(revision_range)
        if path:
            args += ["--", path]
        result = await self.execute(args, cwd=cwd)
        if not result.ok:
            raise GitError(f"Failed to get history: {result.stderr}", "HISTORY_FAILED", result.stderr)
        commits = []
        for line in result.stdout.splitlines():
            info = parse_log_line(line)
            if info:
                commits.append(info)
        return commits

    async def rev_list_count(self, cwd: Union[str, Path], revision_range: str) -> int:
        _reject_option(revision_range, "revision range")
        result = await self.execute(["rev-list", "--count", revision_range], cwd=cwd)
        if not result.ok:
            return 0
        try:
            return int(result.stdout)
        except ValueError:
            return 0

    async def is_lfs_installed(self) -> bool:
        """True if `git lfs version` succeeds on this host."""
        try:
            result = await self.execute(["lfs", "version"])
        except CommandError:
            log.debug("git lfs version failed", exc_info=True)
            return False
        return result.ok

    async def lfs_install(self, cwd: Union[str, Path]) -> None:
        result = await self.execute(["lfs", "install", "--local"], cwd=cwd)
        if not result.ok:
            raise GitError(
                f"Failed to install Git LFS: {result.stderr}", "LFS_INSTALL_FAILED", result.stderr
            )

    async def lfs_track(self, pattern: str, cwd: Union[str, Path]) -> None:
        _reject_option(pattern, "LFS pattern")
        result = await self.execute(["lfs", "track", pattern], cwd=cwd)
        if not result.ok:
            raise GitError(
                f"Failed to track pattern with LFS: {result.stderr}", "LFS_TRACK_FAILED", result.stderr
            )

    async def lfs_tracked_patterns(self, cwd: Union[str, Path]) -> List[str]:
        result = await self.execute(["lfs", "track"], cwd=cwd)
        if not result.ok:
            return []
        return parse_lfs_track_output(result.stdout)
