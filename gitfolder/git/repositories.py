"""Repository lifecycle: create/clone, lookup, soft delete, LFS setup and remote sync."""

import logging
import os
import re
import shutil
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitfolder.config import Settings
from gitfolder.errors import (
    ConflictError,
    GitError,
    InvalidInputError,
    NotFoundError,
    ServiceUnavailableError,
)
from gitfolder.git.command import GitCommand
from gitfolder.repositories.models import Repository, RepositoryInfo, RepositoryResponse
from gitfolder.users.models import User
from gitfolder.users.service import get_user_private_key

log = logging.getLogger(__name__)

_REPOSITORY_NAME = re.compile(r"^[a-zA-Z0-9_-]{1,100}$")

DEFAULT_LFS_PATTERNS = (
    "*.psd", "*.psb",
    "*.ai", "*.eps",
    "*.sketch", "*.fig", "*.xd",
    "*.blend", "*.blend1",
    "*.fbx", "*.obj", "*.dae", "*.3ds", "*.max", "*.mb", "*.ma", "*.c4d",
    "*.zip", "*.rar", "*.7z",
    "*.mov", "*.mp4", "*.avi",
    "*.wav", "*.mp3", "*.flac",
    "*.pdf",
    "*.exe", "*.dll", "*.so",
)


def is_valid_repository_name(name: str) -> bool:
    return bool(name) and bool(_REPOSITORY_NAME.match(name))


class RepositoryService:
    def __init__(self, git: GitCommand, settings: Settings) -> None:
        self.git = git
        self.base_path = Path(settings.repos_base_path)
        self.ssh_key_path = Path(settings.ssh_key_path)
        self.committer = f"{settings.git_committer_name} <{settings.git_committer_email}>"

    def initialize(self) -> None:
        """Create the repository storage directory."""
        self.base_path.mkdir(parents=True, exist_ok=True)
        log.info("Repository storage initialized at %s", self.base_path)

    def repository_path(self, user_id: int, name: str) -> Path:
        return self.base_path / str(user_id) / name

    @asynccontextmanager
    async def _ssh_env(self, user: User) -> AsyncIterator[Dict[str, str]]:
        """
        Env for git network operations. When the user has a key, it is written to a
        0600 file of its own for the duration of the block and removed afterwards, so
        concurrent operations of one user never share a key file.
        """
        if not user.ssh_private_key:
            yield {}
            return
        private_key = get_user_private_key(user)
        if not private_key:
            raise InvalidInputError("Failed to decrypt user SSH key", "SSH_KEY_ERROR")
        key_dir = self.ssh_key_path / str(user.id)
        key_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd, name = tempfile.mkstemp(prefix="id_", dir=key_dir)
        key_file = Path(name)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(private_key if private_key.endswith("\n") else private_key + "\n")
            yield {
                "GIT_SSH_COMMAND": f"ssh -i {key_file} -o IdentitiesOnly=yes -o StrictHostKeyChecking=accept-new"
            }
        finally:
            key_file.unlink(missing_ok=True)

    async def _setup_default_lfs_tracking(self, cwd: Path) -> None:
        for pattern in DEFAULT_LFS_PATTERNS:
            try:
                await self.git.lfs_track(pattern, cwd)
            except GitError as e:
                log.warning("Failed to track %s with LFS: %s", pattern, e)
        if (cwd / ".gitattributes").exists():
            await self.git.add(".gitattributes", cwd)

    async def _create_initial_commit(self, cwd: Path, user: User) -> None:
        readme = (
            "# Repository\n\n"
            "This repository was created with git-folder.\n\n"
            f"Created by: {user.display_name or user.username}\n"
            f"Date: {datetime.now(timezone.utc).isoformat()}\n"
        )
        (cwd / "README.md").write_text(readme, encoding="utf-8")
        await self.git.add("README.md", cwd)
        await self.git.commit("Initial commit", cwd, author=user.author)

    async def create_repository(
        self,
        session: AsyncSession,
        user: User,
        name: str,
        git_url: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Repository:
        """
        Clone git_url (with the user's SSH key) or initialize an empty repository
        with LFS defaults and a README commit, then record it for the owner.
        """
        if not is_valid_repository_name(name):
            raise InvalidInputError(
                "Invalid repository name. Use only letters, numbers, hyphens, and underscores.",
                "INVALID_REPOSITORY_NAME",
            )
        existing = await session.execute(
            select(Repository.id).where(Repository.owner_id == user.id, Repository.name == name)
        )
        if existing.first() is not None:
            raise ConflictError("Repository with this name already exists", "REPOSITORY_EXISTS")
        repo_path = self.repository_path(user.id, name)
        if repo_path.exists():
            # Left over from a soft-deleted repository whose tree could not be removed
            raise ConflictError("Repository directory already exists", "REPOSITORY_EXISTS")
        try:
            if git_url:
                async with self._ssh_env(user) as env:
                    await self.git.clone(git_url, repo_path, env=env)
            else:
                await self.git.init(repo_path)
                if await self.git.is_lfs_installed():
                    await self.git.lfs_install(repo_path)
                    await self._setup_default_lfs_tracking(repo_path)
                await self._create_initial_commit(repo_path, user)
        except Exception:
            shutil.rmtree(repo_path, ignore_errors=True)
            raise
        repository = Repository(
            name=name,
            description=description or f"Repository {name}",
            git_url=git_url or "",
            local_path=str(repo_path),
            owner_id=user.id,
            is_active=True,
        )
        session.add(repository)
        await session.flush()
        await session.refresh(repository)
        log.info("Repository created: %s for user %s", name, user.username)
        return repository

    async def get_repository(self, session: AsyncSession, repository_id: int, user_id: int) -> Optional[Repository]:
        """Active repository owned by user_id, or None."""
        result = await session.execute(
            select(Repository).where(
                Repository.id == repository_id,
                Repository.owner_id == user_id,
                Repository.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def require_repository(self, session: AsyncSession, repository_id: int, user_id: int) -> Repository:
        repository = await self.get_repository(session, repository_id, user_id)
        if repository is None or not repository.local_path:
            raise NotFoundError("Repository not found", "REPOSITORY_NOT_FOUND")
        return repository

    async def list_user_repositories(self, session: AsyncSession, user_id: int) -> List[Repository]:
        result = await session.execute(
            select(Repository)
            .where(Repository.owner_id == user_id, Repository.is_active.is_(True))
            .order_by(Repository.created_at.desc(), Repository.id.desc())
        )
        return list(result.scalars().all())

    async def delete_repository(self, session: AsyncSession, repository_id: int, user_id: int) -> None:
        """Mark inactive and remove the working tree. The row is kept for the audit log."""
        repository = await self.require_repository(session, repository_id, user_id)
        repository.is_active = False
        # Free the (owner, name) slot for a new repository
        repository.name = f"{repository.name}.deleted-{repository.id}"
        await session.flush()
        try:
            shutil.rmtree(repository.local_path)
            log.info("Deleted repository files: %s", repository.local_path)
        except OSError as e:
            log.error("Failed to delete repository files %s: %s", repository.local_path, e)

    async def initialize_lfs(self, session: AsyncSession, repository_id: int, user_id: int) -> Optional[str]:
        repository = await self.require_repository(session, repository_id, user_id)
        if not await self.git.is_lfs_installed():
            raise ServiceUnavailableError("Git LFS is not installed on the server", "LFS_NOT_INSTALLED")
        cwd = Path(repository.local_path)
        await self.git.lfs_install(cwd)
        await self._setup_default_lfs_tracking(cwd)
        commit_hash = await self.git.commit("Initialize Git LFS tracking", cwd, author=self.committer)
        log.info("Initialized Git LFS for repository %s", repository.name)
        return commit_hash

    async def get_repository_info(self, session: AsyncSession, repository_id: int, user_id: int) -> RepositoryInfo:
        repository = await self.require_repository(session, repository_id, user_id)
        cwd = repository.local_path
        lfs_enabled = await self.git.is_lfs_installed() and bool(await self.git.lfs_tracked_patterns(cwd))
        return RepositoryInfo(
            **RepositoryResponse.model_validate(repository).model_dump(),
            current_branch=await self.git.get_current_branch(cwd),
            branches=await self.git.list_branches(cwd),
            lfs_enabled=lfs_enabled,
        )

    async def push(
        self,
        session: AsyncSession,
        repository_id: int,
        user: User,
        remote: str = "origin",
        branch: Optional[str] = None,
        force: bool = False,
    ) -> None:
        repository = await self.require_repository(session, repository_id, user.id)
        async with self._ssh_env(user) as env:
            await self.git.push(repository.local_path, remote=remote, branch=branch, force=force, env=env)
        log.info("Pushed repository %s to %s", repository.name, remote)

    async def pull(
        self,
        session: AsyncSession,
        repository_id: int,
        user: User,
        remote: str = "origin",
        branch: Optional[str] = None,
    ) -> None:
        repository = await self.require_repository(session, repository_id, user.id)
        async with self._ssh_env(user) as env:
            await self.git.pull(repository.local_path, remote=remote, branch=branch, env=env)
        log.info("Pulled repository %s from %s", repository.name, remote)
