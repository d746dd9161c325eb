"""Branch management on a repository working tree."""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from gitfolder.errors import (
    CommandError,
    ConflictError,
    GitError,
    InvalidInputError,
    NotFoundError,
)
from gitfolder.git.command import CommitInfo, GitCommand
from gitfolder.repositories.models import Repository

log = logging.getLogger(__name__)

_BRANCH_NAME = re.compile(r"^[a-zA-Z0-9/_-]+$")
_FORBIDDEN_CHARS = (" ", "~", "^", ":", "?", "*", "[")
_RESERVED_NAMES = ("HEAD", "FETCH_HEAD", "ORIG_HEAD")
PROTECTED_BRANCHES = ("main", "master")
COMPARE_COMMIT_LIMIT = 50


def is_valid_branch_name(name: str) -> bool:
    """Subset of git's ref rules: letters, digits, '/', '_', '-' and nothing ambiguous."""
    if not name:
        return False
    if name.startswith("-") or name.endswith("/"):
        return False
    if ".." in name or "//" in name:
        return False
    if any(c in name for c in _FORBIDDEN_CHARS):
        return False
    if name.upper() in _RESERVED_NAMES:
        return False
    return bool(_BRANCH_NAME.match(name))


def _require_valid(name: str) -> None:
    if not is_valid_branch_name(name):
        raise InvalidInputError(
            "Invalid branch name. Use only letters, numbers, hyphens, underscores, and slashes.",
            "INVALID_BRANCH_NAME",
        )


@dataclass
class BranchInfo:
    name: str
    is_current: bool
    last_commit: Optional[CommitInfo] = None


@dataclass
class BranchComparison:
    ahead: int
    behind: int
    ahead_commits: List[CommitInfo] = field(default_factory=list)
    behind_commits: List[CommitInfo] = field(default_factory=list)


class BranchService:
    def __init__(self, git: GitCommand) -> None:
        self.git = git

    @staticmethod
    def _cwd(repository: Repository) -> str:
        if not repository.local_path:
            raise InvalidInputError("Repository local path not set")
        return repository.local_path

    async def list_branches(self, repository: Repository) -> List[BranchInfo]:
        cwd = self._cwd(repository)
        current = await self.git.get_current_branch(cwd)
        infos = []
        for name in await self.git.list_branches(cwd):
            info = BranchInfo(name=name, is_current=name == current)
            try:
                commits = await self.git.log(cwd, limit=1, revision_range=name)
                info.last_commit = commits[0] if commits else None
            except (GitError, InvalidInputError) as e:
                log.warning("Failed to get last commit for branch %s: %s", name, e)
            infos.append(info)
        return infos

    async def create_branch(
        self, repository: Repository, name: str, from_branch: Optional[str] = None
    ) -> None:
        """Create and check out a new branch, optionally starting at from_branch."""
        cwd = self._cwd(repository)
        _require_valid(name)
        args = ["checkout", "-b", name]
        if from_branch:
            _require_valid(from_branch)
            args.append(from_branch)
        result = await self.git.execute(args, cwd=cwd)
        if not result.ok:
            if "already exists" in result.stderr:
                raise ConflictError("Branch already exists", "BRANCH_EXISTS")
            raise GitError(
                f"Failed to create branch: {result.stderr}", "CREATE_BRANCH_FAILED", result.stderr
            )
        log.info("Created branch %s in repository %s", name, repository.name)

    async def switch_branch(self, repository: Repository, name: str) -> None:
        cwd = self._cwd(repository)
        _require_valid(name)
        result = await self.git.execute(["checkout", name], cwd=cwd)
        if not result.ok:
            if "did not match" in result.stderr:
                raise NotFoundError("Branch not found", "BRANCH_NOT_FOUND")
            if "Your local changes" in result.stderr:
                raise ConflictError(
                    "Cannot switch branch: You have uncommitted changes", "UNCOMMITTED_CHANGES"
                )
            raise GitError(
                f"Failed to switch branch: {result.stderr}", "SWITCH_BRANCH_FAILED", result.stderr
            )
        log.info("Switched to branch %s in repository %s", name, repository.name)

    async def delete_branch(self, repository: Repository, name: str, force: bool = False) -> None:
        """Delete a branch. main/master and the checked-out branch are never deleted."""
        cwd = self._cwd(repository)
        if name.lower() in PROTECTED_BRANCHES:
            raise InvalidInputError("Cannot delete the main branch", "PROTECTED_BRANCH")
        if await self.git.get_current_branch(cwd) == name:
            raise InvalidInputError("Cannot delete the current branch", "CURRENT_BRANCH")
        _require_valid(name)
        result = await self.git.execute(["branch", "-D" if force else "-d", name], cwd=cwd)
        if not result.ok:
            if "not found" in result.stderr:
                raise NotFoundError("Branch not found", "BRANCH_NOT_FOUND")
            if "not fully merged" in result.stderr:
                raise ConflictError(
                    "Branch has unmerged changes. Use force delete to override.", "BRANCH_NOT_MERGED"
                )
            raise GitError(
                f"Failed to delete branch: {result.stderr}", "DELETE_BRANCH_FAILED", result.stderr
            )
        log.info("Deleted branch %s from repository %s", name, repository.name)

    async def merge_branch(
        self, repository: Repository, source: str, message: Optional[str] = None
    ) -> None:
        """Merge source into the current branch. A conflicting merge is aborted."""
        cwd = self._cwd(repository)
        _require_valid(source)
        current = await self.git.get_current_branch(cwd)
        if not current:
            raise GitError("Could not determine current branch", "MERGE_FAILED")
        args = ["merge", "--no-edit", source]
        if message:
            args += ["-m", message]
        result = await self.git.execute(args, cwd=cwd)
        if not result.ok:
            combined = f"{result.stdout}\n{result.stderr}"
            if "CONFLICT" in combined:
                try:
                    await self.git.execute(["merge", "--abort"], cwd=cwd)
                except CommandError as e:
                    log.error("merge --abort failed in %s: %s", cwd, e)
                raise ConflictError(
                    "Merge conflict detected. Manual resolution required.", "MERGE_CONFLICT"
                )
            if "not something we can merge" in combined:
                raise NotFoundError("Source branch not found", "BRANCH_NOT_FOUND")
            raise GitError(f"Failed to merge branch: {result.stderr}", "MERGE_FAILED", result.stderr)
        log.info("Merged branch %s into %s in repository %s", source, current, repository.name)

    async def compare_branches(self, repository: Repository, branch1: str, branch2: str) -> BranchComparison:
        """Commits branch1 has that branch2 lacks (ahead) and the reverse (behind)."""
        cwd = self._cwd(repository)
        _require_valid(branch1)
        _require_valid(branch2)
        ahead_range = f"{branch2}..{branch1}"
        behind_range = f"{branch1}..{branch2}"
        return BranchComparison(
            ahead=await self.git.rev_list_count(cwd, ahead_range),
            behind=await self.git.rev_list_count(cwd, behind_range),
            ahead_commits=await self._commits(cwd, ahead_range),
            behind_commits=await self._commits(cwd, behind_range),
        )

    async def _commits(self, cwd: str, revision_range: str) -> List[CommitInfo]:
        try:
            return await self.git.log(cwd, limit=COMPARE_COMMIT_LIMIT, revision_range=revision_range)
        except GitError as e:
            log.warning("log %s failed: %s", revision_range, e)
            return []
