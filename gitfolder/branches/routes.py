"""Branch routes for one repository."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from gitfolder.auth.dependencies import AppServices, CurrentUser, DbSession

router = APIRouter(prefix="/api/repositories/{repository_id}/branches", tags=["branches"])
log = logging.getLogger(__name__)


class BranchCreate(BaseModel):
    name: str
    from_branch: Optional[str] = None


class BranchSwitch(BaseModel):
    branch: str


class BranchMerge(BaseModel):
    source_branch: str
    message: Optional[str] = None


@router.get("")
async def list_branches(
    repository_id: int, current_user: CurrentUser, session: DbSession, services: AppServices
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    branches = await services.branches.list_branches(repository)
    current = next((b.name for b in branches if b.is_current), None)
    return {"branches": branches, "current": current}


@router.post("")
async def create_branch(
    repository_id: int,
    body: BranchCreate,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    """Create a branch (from from_branch or HEAD) and switch to it."""
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    await services.branches.create_branch(repository, body.name, body.from_branch)
    return {"success": True, "branch": body.name}


@router.post("/switch")
async def switch_branch(
    repository_id: int,
    body: BranchSwitch,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    await services.branches.switch_branch(repository, body.branch)
    return {"success": True, "branch": body.branch}


@router.post("/merge")
async def merge_branch(
    repository_id: int,
    body: BranchMerge,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    await services.branches.merge_branch(repository, body.source_branch, body.message)
    return {"success": True}


@router.get("/compare")
async def compare_branches(
    repository_id: int,
    branch1: Annotated[str, Query(min_length=1)],
    branch2: Annotated[str, Query(min_length=1)],
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    """Commits branch1 is ahead of / behind branch2."""
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    comparison = await services.branches.compare_branches(repository, branch1, branch2)
    return {"branch1": branch1, "branch2": branch2, "comparison": comparison}


@router.delete("/{name:path}")
async def delete_branch(
    repository_id: int,
    name: str,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
    force: bool = False,
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    await services.branches.delete_branch(repository, name, force=force)
    return {"success": True}
