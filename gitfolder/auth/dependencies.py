"""FastAPI dependencies for auth and the application services."""

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from gitfolder.auth.jwt import get_subject_from_access
from gitfolder.config import get_settings
from gitfolder.db.session import get_db
from gitfolder.services import Services
from gitfolder.users.models import User
from gitfolder.users.service import ensure_dev_user, get_user_by_id

security = HTTPBearer(auto_error=False)
log = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    """Services built in the app lifespan."""
    return request.app.state.services


async def get_optional_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> Optional[User]:
    """Resolve the caller: the dev user in dev auth mode, else the Bearer token's user (or None)."""
    if get_settings().is_dev_auth:
        return await ensure_dev_user(session)
    if not credentials:
        return None
    user_id = get_subject_from_access(credentials.credentials)
    if user_id is None:
        log.debug("Invalid or expired access token")
        return None
    user = await get_user_by_id(session, user_id)
    if not user:
        log.warning("Token valid but user not found: id=%s", user_id)
    return user


async def get_current_user(
    user: Annotated[Optional[User], Depends(get_optional_user)],
) -> User:
    """Require an authenticated user; raise 401 otherwise."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
AppServices = Annotated[Services, Depends(get_services)]
