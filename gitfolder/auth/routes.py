"""Auth routes: status, dev login, token refresh, OAuth login and callback."""

import logging
from typing import Annotated, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from gitfolder.auth import oauth
from gitfolder.auth.dependencies import DbSession, get_optional_user
from gitfolder.auth.jwt import (
    create_access_token,
    create_refresh_token,
    create_state_token,
    get_subject_from_refresh,
    verify_state_token,
)
from gitfolder.config import get_settings
from gitfolder.errors import AuthenticationError
from gitfolder.limiter import limiter
from gitfolder.users.models import RefreshRequest, TokenPair, User, UserResponse
from gitfolder.users.service import ensure_dev_user, find_or_create_oauth_user, get_user_by_id

router = APIRouter(prefix="/api/auth", tags=["auth"])
log = logging.getLogger(__name__)


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        provider=user.oauth_provider,
    )


def issue_tokens(user: User) -> TokenPair:
    settings = get_settings()
    return TokenPair(
        access_token=create_access_token(user.id),
        refresh_token=create_refresh_token(user.id),
        expires_in=settings.access_token_expire_minutes * 60,
    )


@router.get("/status")
@limiter.limit("60/minute")
async def auth_status(
    request: Request,
    user: Annotated[Optional[User], Depends(get_optional_user)],
) -> dict:
    """Whether the caller is authenticated, and as whom."""
    if user is None:
        return {"authenticated": False, "user": None, "auth_mode": get_settings().auth_mode}
    return {
        "authenticated": True,
        "user": user_response(user).model_dump(),
        "auth_mode": get_settings().auth_mode,
    }


@router.post("/dev-login")
@limiter.limit("10/minute")
async def dev_login(request: Request, session: DbSession) -> dict:
    """Issue tokens for the local dev user. Only available in dev auth mode."""
    if not get_settings().is_dev_auth:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Dev mode not enabled")
    user = await ensure_dev_user(session)
    log.info("Dev login for user id=%d", user.id)
    return {"success": True, "user": user_response(user).model_dump(), **issue_tokens(user).model_dump()}


@router.post("/refresh", response_model=TokenPair)
@limiter.limit("20/minute")
async def refresh(request: Request, body: RefreshRequest, session: DbSession) -> TokenPair:
    """Exchange refresh token for new access and refresh tokens."""
    user_id = get_subject_from_refresh(body.refresh_token)
    if user_id is None:
        log.warning("Refresh failed: invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )
    user = await get_user_by_id(session, user_id)
    if not user:
        log.warning("Refresh failed: user not found id=%d", user_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return issue_tokens(user)


@router.post("/logout")
async def logout() -> dict:
    """Tokens are stateless; the client discards them."""
    return {"success": True}


@router.get("/providers")
async def list_providers() -> dict:
    """OAuth providers configured on this server."""
    settings = get_settings()
    return {
        "providers": [
            {"name": p.name, "display_name": p.display_name, "url": f"/api/auth/{p.name}"}
            for p in oauth.configured_providers(settings)
        ],
        "dev_mode": settings.is_dev_auth,
    }


@router.get("/{provider}")
@limiter.limit("20/minute")
async def oauth_login(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's consent page."""
    settings = get_settings()
    p = oauth.get_provider(settings, provider)
    return RedirectResponse(oauth.authorization_url(settings, p, create_state_token(p.name)))


@router.get("/{provider}/callback")
@limiter.limit("20/minute")
async def oauth_callback(
    request: Request,
    provider: str,
    session: DbSession,
    code: Annotated[str, Query(min_length=1)],
    state: Annotated[str, Query(min_length=1)],
) -> RedirectResponse:
    """
    Finish the OAuth flow: verify state, exchange the code, find or create the user
    and redirect to the frontend with the tokens in the URL fragment.
    """
    settings = get_settings()
    p = oauth.get_provider(settings, provider)
    if not verify_state_token(state, p.name):
        log.warning("OAuth callback with invalid state for provider=%s", p.name)
        raise AuthenticationError("Invalid or expired OAuth state", "OAUTH_STATE_INVALID")
    profile = await oauth.fetch_profile(settings, p, code)
    user = await find_or_create_oauth_user(session, profile)
    tokens = issue_tokens(user)
    log.info("OAuth login user=%s provider=%s", user.username, p.name)
    fragment = urlencode({k: str(v) for k, v in tokens.model_dump().items()})
    return RedirectResponse(f"{settings.frontend_url}#{fragment}", status_code=status.HTTP_302_FOUND)
