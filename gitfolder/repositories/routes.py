"""Repository routes: list, inspect, create, delete, LFS setup, push and pull."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Request, status

from gitfolder.auth.dependencies import AppServices, CurrentUser, DbSession
from gitfolder.limiter import limiter
from gitfolder.repositories.models import (
    RepositoryCreate,
    RepositoryInfo,
    RepositoryResponse,
    SyncRequest,
)

router = APIRouter(prefix="/api/repositories", tags=["repositories"])
log = logging.getLogger(__name__)


@router.get("", response_model=List[RepositoryResponse])
async def list_repositories(
    current_user: CurrentUser, session: DbSession, services: AppServices
) -> List[RepositoryResponse]:
    repositories = await services.repositories.list_user_repositories(session, current_user.id)
    return [RepositoryResponse.model_validate(r) for r in repositories]


@router.get("/{repository_id}", response_model=RepositoryInfo)
async def get_repository(
    repository_id: int, current_user: CurrentUser, session: DbSession, services: AppServices
) -> RepositoryInfo:
    """Repository with its current branch, branch list and LFS state."""
    return await services.repositories.get_repository_info(session, repository_id, current_user.id)


@router.post("", response_model=RepositoryResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_repository(
    request: Request,
    body: RepositoryCreate,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> RepositoryResponse:
    """Create an empty repository, or clone one when git_url is given."""
    repository = await services.repositories.create_repository(
        session,
        current_user,
        body.name.strip(),
        git_url=(body.git_url or "").strip() or None,
        description=body.description,
    )
    return RepositoryResponse.model_validate(repository)


@router.delete("/{repository_id}")
async def delete_repository(
    repository_id: int, current_user: CurrentUser, session: DbSession, services: AppServices
) -> dict:
    await services.repositories.delete_repository(session, repository_id, current_user.id)
    log.info("Repository %d deleted by %s", repository_id, current_user.username)
    return {"success": True}


@router.post("/{repository_id}/lfs")
async def initialize_lfs(
    repository_id: int, current_user: CurrentUser, session: DbSession, services: AppServices
) -> dict:
    commit_hash: Optional[str] = await services.repositories.initialize_lfs(
        session, repository_id, current_user.id
    )
    return {"success": True, "commit": commit_hash}


@router.post("/{repository_id}/push")
@limiter.limit("30/minute")
async def push_repository(
    request: Request,
    repository_id: int,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
    body: Optional[SyncRequest] = None,
) -> dict:
    body = body or SyncRequest()
    await services.repositories.push(
        session, repository_id, current_user, remote=body.remote, branch=body.branch, force=body.force
    )
    return {"success": True}


@router.post("/{repository_id}/pull")
@limiter.limit("30/minute")
async def pull_repository(
    request: Request,
    repository_id: int,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
    body: Optional[SyncRequest] = None,
) -> dict:
    body = body or SyncRequest()
    await services.repositories.pull(
        session, repository_id, current_user, remote=body.remote, branch=body.branch
    )
    return {"success": True}
