"""Shared folder routes: CRUD, permissions and public token access."""

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from gitfolder.auth.dependencies import AppServices, CurrentUser, DbSession, get_optional_user
from gitfolder.limiter import limiter
from gitfolder.notifications import notify_share
from gitfolder.shared import service
from gitfolder.shared.models import (
    PermissionEntry,
    PermissionGrant,
    PermissionLevel,
    PublicFolderResponse,
    RepositoryRef,
    SharedFolder,
    SharedFolderCreate,
    SharedFolderDetail,
    SharedFolderResponse,
    SharedFolderUpdate,
)
from gitfolder.users.models import User, UserSummary

router = APIRouter(prefix="/api/shared-folders", tags=["shared-folders"])
log = logging.getLogger(__name__)


def _folder_response(folder: SharedFolder) -> SharedFolderResponse:
    return SharedFolderResponse(
        id=folder.id,
        name=folder.name,
        description=folder.description,
        folder_path=folder.folder_path,
        is_public=folder.is_public,
        public_token=folder.public_token,
        commit_message_required=folder.commit_message_required,
        repository=RepositoryRef(id=folder.repository.id, name=folder.repository.name),
        created_at=folder.created_at,
    )


def _folder_detail(folder: SharedFolder, user_permission: str) -> SharedFolderDetail:
    return SharedFolderDetail(
        **_folder_response(folder).model_dump(),
        permissions=[
            PermissionEntry(
                user=UserSummary.model_validate(p.user),
                permission_level=PermissionLevel(p.permission_level),
                created_at=p.created_at,
            )
            for p in folder.permissions
        ],
        user_permission=PermissionLevel(user_permission),
    )


@router.get("")
async def list_shared_folders(current_user: CurrentUser, session: DbSession) -> dict:
    folders = await service.list_user_folders(session, current_user.id)
    return {"folders": [_folder_response(f) for f in folders]}


@router.post("", response_model=SharedFolderDetail, status_code=status.HTTP_201_CREATED)
async def create_shared_folder(
    body: SharedFolderCreate,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> SharedFolderDetail:
    """Share a folder of one of the caller's repositories."""
    repository = await services.repositories.require_repository(session, body.repository_id, current_user.id)
    folder = await service.create_folder(session, current_user, repository, body)
    return _folder_detail(folder, PermissionLevel.admin.value)


@router.get("/public/{token}", response_model=PublicFolderResponse)
@limiter.limit("60/minute")
async def get_public_folder(
    request: Request,
    token: str,
    session: DbSession,
    user: Annotated[Optional[User], Depends(get_optional_user)],
) -> PublicFolderResponse:
    """Public view of a folder shared by token; no authentication required."""
    folder = await service.get_public_folder(session, token)
    return PublicFolderResponse(
        id=folder.id,
        name=folder.name,
        description=folder.description,
        folder_path=folder.folder_path,
        repository=RepositoryRef(id=folder.repository.id, name=folder.repository.name),
        is_authenticated=user is not None,
        commit_message_required=folder.commit_message_required,
    )


@router.get("/{folder_id}", response_model=SharedFolderDetail)
async def get_shared_folder(folder_id: int, current_user: CurrentUser, session: DbSession) -> SharedFolderDetail:
    permission = await service.require_permission(session, folder_id, current_user.id)
    folder = await service.load_folder(session, folder_id)
    return _folder_detail(folder, permission.permission_level)


@router.patch("/{folder_id}", response_model=SharedFolderDetail)
async def update_shared_folder(
    folder_id: int, body: SharedFolderUpdate, current_user: CurrentUser, session: DbSession
) -> SharedFolderDetail:
    await service.require_admin(session, folder_id, current_user.id)
    folder = await service.update_folder(session, folder_id, body)
    return _folder_detail(folder, PermissionLevel.admin.value)


@router.delete("/{folder_id}")
async def delete_shared_folder(folder_id: int, current_user: CurrentUser, session: DbSession) -> dict:
    await service.require_admin(session, folder_id, current_user.id)
    await service.delete_folder(session, folder_id)
    return {"success": True, "message": "Shared folder deleted"}


@router.post("/{folder_id}/permissions", response_model=List[PermissionEntry])
async def grant_permission(
    folder_id: int,
    body: PermissionGrant,
    current_user: CurrentUser,
    session: DbSession,
    background_tasks: BackgroundTasks,
) -> List[PermissionEntry]:
    """Grant or change a user's permission; the user is emailed if notifications are on."""
    await service.require_admin(session, folder_id, current_user.id)
    _, target = await service.grant_permission(
        session, folder_id, current_user, body.user_id, body.permission_level
    )
    folder = await service.load_folder(session, folder_id)
    if target.id != current_user.id and target.effective_preferences.get("email_notifications", True):
        background_tasks.add_task(
            notify_share,
            target.email,
            target.display_name or target.username,
            folder.name,
            body.permission_level.value,
            current_user.display_name or current_user.username,
        )
    return _folder_detail(folder, PermissionLevel.admin.value).permissions


@router.delete("/{folder_id}/permissions/{user_id}")
async def revoke_permission(
    folder_id: int, user_id: int, current_user: CurrentUser, session: DbSession
) -> dict:
    await service.require_admin(session, folder_id, current_user.id)
    await service.revoke_permission(session, folder_id, user_id)
    return {"success": True, "message": "Permission revoked"}
