"""Shared folder service: folders, per-user permissions and public tokens."""

import logging
import secrets
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gitfolder.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from gitfolder.files.paths import normalize_relative_path
from gitfolder.repositories.models import Repository
from gitfolder.shared.models import (
    FolderPermission,
    PermissionLevel,
    SharedFolder,
    SharedFolderCreate,
    SharedFolderUpdate,
)
from gitfolder.users.models import User

log = logging.getLogger(__name__)


def new_public_token() -> str:
    return secrets.token_hex(32)


def normalize_folder_path(folder_path: str) -> str:
    """Shared folder paths are stored with a leading slash ("/" is the repository root)."""
    try:
        return "/" + normalize_relative_path(folder_path)
    except ValueError as e:
        raise InvalidInputError(str(e), "INVALID_PATH") from e


async def get_permission(session: AsyncSession, folder_id: int, user_id: int) -> Optional[FolderPermission]:
    result = await session.execute(
        select(FolderPermission).where(
            FolderPermission.shared_folder_id == folder_id, FolderPermission.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def require_permission(session: AsyncSession, folder_id: int, user_id: int) -> FolderPermission:
    permission = await get_permission(session, folder_id, user_id)
    if permission is None:
        raise PermissionDeniedError("Access denied", "ACCESS_DENIED")
    return permission


async def require_admin(session: AsyncSession, folder_id: int, user_id: int) -> FolderPermission:
    permission = await get_permission(session, folder_id, user_id)
    if permission is None or permission.permission_level != PermissionLevel.admin.value:
        raise PermissionDeniedError("Admin access required", "ADMIN_REQUIRED")
    return permission


async def _admin_count(session: AsyncSession, folder_id: int) -> int:
    result = await session.execute(
        select(func.count(FolderPermission.id)).where(
            FolderPermission.shared_folder_id == folder_id,
            FolderPermission.permission_level == PermissionLevel.admin.value,
        )
    )
    return result.scalar_one()


async def list_user_folders(session: AsyncSession, user_id: int) -> List[SharedFolder]:
    """Folders the user has any permission on, newest first."""
    result = await session.execute(
        select(SharedFolder)
        .join(FolderPermission, FolderPermission.shared_folder_id == SharedFolder.id)
        .where(FolderPermission.user_id == user_id)
        .options(selectinload(SharedFolder.repository))
        .order_by(SharedFolder.created_at.desc(), SharedFolder.id.desc())
    )
    return list(result.scalars().unique().all())


async def load_folder(session: AsyncSession, folder_id: int) -> SharedFolder:
    """Folder with repository and permissions (and their users) loaded; 404 if missing."""
    result = await session.execute(
        select(SharedFolder)
        .where(SharedFolder.id == folder_id)
        .options(
            selectinload(SharedFolder.repository),
            selectinload(SharedFolder.permissions).selectinload(FolderPermission.user),
        )
        .execution_options(populate_existing=True)
    )
    folder = result.scalar_one_or_none()
    if folder is None:
        raise NotFoundError("Shared folder not found", "FOLDER_NOT_FOUND")
    return folder


async def create_folder(
    session: AsyncSession, user: User, repository: Repository, data: SharedFolderCreate
) -> SharedFolder:
    """Create a shared folder on the user's repository; the creator becomes admin."""
    name = data.name.strip()
    if not name:
        raise InvalidInputError("Name is required")
    folder = SharedFolder(
        repository_id=repository.id,
        folder_path=normalize_folder_path(data.folder_path),
        name=name,
        description=data.description or "",
        is_public=data.is_public,
        public_token=new_public_token() if data.is_public else None,
        commit_message_required=data.commit_message_required,
    )
    session.add(folder)
    await session.flush()
    session.add(
        FolderPermission(
            shared_folder_id=folder.id,
            user_id=user.id,
            permission_level=PermissionLevel.admin.value,
            granted_by=user.id,
        )
    )
    await session.flush()
    log.info("Shared folder %s created on repository %s by %s", name, repository.name, user.username)
    return await load_folder(session, folder.id)


async def update_folder(session: AsyncSession, folder_id: int, data: SharedFolderUpdate) -> SharedFolder:
    folder = await load_folder(session, folder_id)
    if data.name is not None:
        if not data.name.strip():
            raise InvalidInputError("Name must not be empty")
        folder.name = data.name.strip()
    if data.description is not None:
        folder.description = data.description
    if data.commit_message_required is not None:
        folder.commit_message_required = data.commit_message_required
    if data.is_public is not None:
        folder.is_public = data.is_public
        if data.is_public and not folder.public_token:
            folder.public_token = new_public_token()
        elif not data.is_public:
            folder.public_token = None
    await session.flush()
    return await load_folder(session, folder_id)


async def delete_folder(session: AsyncSession, folder_id: int) -> None:
    """Delete a folder; permissions and audit rows go with it (ON DELETE CASCADE)."""
    await session.execute(delete(SharedFolder).where(SharedFolder.id == folder_id))
    log.info("Shared folder %d deleted", folder_id)


async def grant_permission(
    session: AsyncSession,
    folder_id: int,
    granter: User,
    user_id: int,
    level: PermissionLevel,
) -> Tuple[FolderPermission, User]:
    """Create or change a user's permission. The last admin cannot be downgraded."""
    target = await session.get(User, user_id)
    if target is None:
        raise NotFoundError("User not found", "USER_NOT_FOUND")
    existing = await get_permission(session, folder_id, user_id)
    if existing is not None:
        if (
            existing.permission_level == PermissionLevel.admin.value
            and level != PermissionLevel.admin
            and await _admin_count(session, folder_id) == 1
        ):
            raise InvalidInputError("Cannot remove last admin", "LAST_ADMIN")
        existing.permission_level = level.value
        permission = existing
    else:
        permission = FolderPermission(
            shared_folder_id=folder_id,
            user_id=user_id,
            permission_level=level.value,
            granted_by=granter.id,
        )
        session.add(permission)
    await session.flush()
    log.info("Permission %s on folder %d granted to user %d by %s", level.value, folder_id, user_id, granter.username)
    return permission, target


async def revoke_permission(session: AsyncSession, folder_id: int, user_id: int) -> None:
    permission = await get_permission(session, folder_id, user_id)
    if permission is None:
        raise NotFoundError("Permission not found", "PERMISSION_NOT_FOUND")
    if (
        permission.permission_level == PermissionLevel.admin.value
        and await _admin_count(session, folder_id) == 1
    ):
        raise InvalidInputError("Cannot remove last admin", "LAST_ADMIN")
    await session.execute(delete(FolderPermission).where(FolderPermission.id == permission.id))
    log.info("Permission on folder %d revoked for user %d", folder_id, user_id)


async def get_public_folder(session: AsyncSession, token: str) -> SharedFolder:
    result = await session.execute(
        select(SharedFolder)
        .where(SharedFolder.public_token == token, SharedFolder.is_public.is_(True))
        .options(selectinload(SharedFolder.repository))
    )
    folder = result.scalar_one_or_none()
    if folder is None:
        raise NotFoundError("Public folder not found", "FOLDER_NOT_FOUND")
    return folder
