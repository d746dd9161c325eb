"""File operations on a repository working tree; every change is committed."""

import fnmatch
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitfolder.config import Settings
from gitfolder.errors import ConflictError, InvalidInputError, NotFoundError
from gitfolder.files.paths import normalize_relative_path, resolve_repo_path
from gitfolder.git.command import CommitInfo, GitCommand
from gitfolder.repositories.models import Repository
from gitfolder.shared.models import FileOperation, OperationType, SharedFolder
from gitfolder.users.models import User

log = logging.getLogger(__name__)

_REVISION = re.compile(r"^[0-9a-fA-F]{4,64}$")


@dataclass
class FileInfo:
    name: str
    path: str
    size: int
    is_directory: bool
    last_modified: datetime


class FileOperationsService:
    def __init__(self, git: GitCommand, settings: Settings) -> None:
        self.git = git
        self.lfs_threshold_bytes = settings.lfs_threshold_bytes

    @staticmethod
    def _resolve(repository: Repository, relative_path: str, allow_root: bool = False) -> Tuple[str, Path]:
        """Return (canonical relative path, absolute path) or raise InvalidInputError."""
        if not repository.local_path:
            raise InvalidInputError("Repository local path not set")
        try:
            rel = normalize_relative_path(relative_path or "")
            if not rel and not allow_root:
                raise InvalidInputError("File path is required", "INVALID_PATH")
            return rel, resolve_repo_path(Path(repository.local_path), rel)
        except ValueError as e:
            raise InvalidInputError(str(e), "INVALID_PATH") from e

    @staticmethod
    def _reject_symlink(rel: str, target: Path) -> None:
        if target.is_symlink():
            raise InvalidInputError(f"Symbolic links are not supported: {rel}", "INVALID_PATH")

    def list_files(self, repository: Repository, folder: str = "/") -> List[FileInfo]:
        """Entries of one folder: directories first, then by name. .git is hidden."""
        root = Path(repository.local_path or "")
        _, target = self._resolve(repository, folder, allow_root=True)
        if not target.is_dir():
            raise NotFoundError("Folder not found", "FOLDER_NOT_FOUND")
        files = []
        for entry in target.iterdir():
            if entry.name == ".git":
                continue
            st = entry.lstat()
            files.append(
                FileInfo(
                    name=entry.name,
                    path=entry.relative_to(root).as_posix(),
                    size=st.st_size,
                    is_directory=entry.is_dir() and not entry.is_symlink(),
                    last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                )
            )
        files.sort(key=lambda f: (not f.is_directory, f.name.lower()))
        return files

    async def _should_use_lfs(self, size: int, filename: str, cwd: str) -> bool:
        if not await self.git.is_lfs_installed():
            return False
        if size > self.lfs_threshold_bytes:
            return True
        return any(fnmatch.fnmatch(filename, p) for p in await self.git.lfs_tracked_patterns(cwd))

    async def _ensure_lfs_tracking(self, pattern: str, cwd: str) -> None:
        if pattern in await self.git.lfs_tracked_patterns(cwd):
            return
        await self.git.lfs_track(pattern, cwd)
        await self.git.add(".gitattributes", cwd)

    async def upload_file(
        self,
        repository: Repository,
        file_path: str,
        data: bytes,
        user: User,
        message: Optional[str] = None,
        author: Optional[str] = None,
    ) -> Optional[str]:
        """
        Write data at file_path, stage and commit it. Large files and already tracked
        types go through Git LFS. Returns the commit hash, or None when the content
        was unchanged.
        """
        rel, target = self._resolve(repository, file_path)
        self._reject_symlink(rel, target)
        if target.is_dir():
            raise ConflictError(f"A folder exists at {rel}", "PATH_IS_DIRECTORY")
        cwd = repository.local_path
        name = PurePosixPath(rel).name
        if await self._should_use_lfs(len(data), name, cwd):
            ext = PurePosixPath(name).suffix.lower()
            if ext:
                await self._ensure_lfs_tracking(f"*{ext}", cwd)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        await self.git.add(rel, cwd)
        commit_hash = await self.git.commit(
            message or f"Upload {name}", cwd, author=author or user.author
        )
        log.info("File uploaded: %s (%d bytes) to repository %s", rel, len(data), repository.name)
        return commit_hash

    def download_file(self, repository: Repository, file_path: str) -> Tuple[str, Path, int]:
        """Return (canonical relative path, absolute path, size) of a file in the working tree."""
        rel, target = self._resolve(repository, file_path)
        self._reject_symlink(rel, target)
        if not target.exists():
            raise NotFoundError("File not found", "FILE_NOT_FOUND")
        if target.is_dir():
            raise InvalidInputError("Cannot download a directory", "PATH_IS_DIRECTORY")
        return rel, target, target.stat().st_size

    async def delete_file(
        self,
        repository: Repository,
        file_path: str,
        user: User,
        message: Optional[str] = None,
        author: Optional[str] = None,
    ) -> Optional[str]:
        rel, target = self._resolve(repository, file_path)
        self._reject_symlink(rel, target)
        if not target.exists():
            raise NotFoundError("File or folder not found", "FILE_NOT_FOUND")
        cwd = repository.local_path
        await self.git.remove(rel, cwd, recursive=True)
        commit_hash = await self.git.commit(
            message or f"Delete {target.name}", cwd, author=author or user.author
        )
        log.info("File deleted: %s from repository %s", rel, repository.name)
        return commit_hash

    async def move_file(
        self,
        repository: Repository,
        source: str,
        destination: str,
        user: User,
        message: Optional[str] = None,
        author: Optional[str] = None,
    ) -> Optional[str]:
        src_rel, src = self._resolve(repository, source)
        dst_rel, dst = self._resolve(repository, destination)
        self._reject_symlink(src_rel, src)
        if not src.exists():
            raise NotFoundError("Source file or folder not found", "FILE_NOT_FOUND")
        if dst.exists():
            raise ConflictError(f"Destination already exists: {dst_rel}", "DESTINATION_EXISTS")
        cwd = repository.local_path
        dst.parent.mkdir(parents=True, exist_ok=True)
        await self.git.move(src_rel, dst_rel, cwd)
        commit_hash = await self.git.commit(
            message or f"Move {src.name} to {dst_rel}", cwd, author=author or user.author
        )
        log.info("File moved: %s to %s in repository %s", src_rel, dst_rel, repository.name)
        return commit_hash

    async def get_file_history(self, repository: Repository, file_path: str, limit: int = 20) -> List[CommitInfo]:
        rel, _ = self._resolve(repository, file_path)
        return await self.git.log(repository.local_path, path=rel, limit=max(1, limit))

    async def get_file_at_version(self, repository: Repository, file_path: str, commit_hash: str) -> bytes:
        rel, _ = self._resolve(repository, file_path)
        if not _REVISION.match(commit_hash):
            raise InvalidInputError(f"Invalid commit hash: {commit_hash!r}", "INVALID_REVISION")
        return await self.git.show(commit_hash, rel, repository.local_path)

    @staticmethod
    async def find_shared_folder(session: AsyncSession, repository_id: int) -> Optional[SharedFolder]:
        """First shared folder of a repository; operations are audited against it."""
        result = await session.execute(
            select(SharedFolder)
            .where(SharedFolder.repository_id == repository_id)
            .order_by(SharedFolder.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def log_operation(
        session: AsyncSession,
        shared_folder_id: int,
        user_id: Optional[int],
        operation_type: OperationType,
        file_path: str,
        file_size: Optional[int] = None,
        commit_hash: Optional[str] = None,
        commit_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> FileOperation:
        """Insert one audit row. Caller commits."""
        op = FileOperation(
            shared_folder_id=shared_folder_id,
            user_id=user_id,
            operation_type=operation_type.value,
            file_path=file_path,
            file_size=file_size,
            commit_hash=commit_hash,
            commit_message=commit_message,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.add(op)
        await session.flush()
        return op
