"""Current-user routes: profile, preferences and SSH keys."""

import logging

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from gitfolder.auth.dependencies import CurrentUser, DbSession
from gitfolder.limiter import limiter
from gitfolder.users import ssh
from gitfolder.users.models import (
    Preferences,
    PreferencesUpdate,
    ProfileResponse,
    ProfileUpdate,
    SSHKeyResponse,
    SSHKeyUpload,
    User,
)
from gitfolder.users.service import (
    clear_user_ssh_keys,
    generate_user_ssh_keys,
    get_user_private_key,
    set_user_ssh_keys,
    update_preferences,
)

router = APIRouter(prefix="/api/user", tags=["user"])
log = logging.getLogger(__name__)


def _profile(user: User) -> ProfileResponse:
    return ProfileResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        provider=user.oauth_provider,
        has_ssh_key=user.has_ssh_key,
        ssh_public_key=user.ssh_public_key,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(current_user: CurrentUser) -> ProfileResponse:
    return _profile(current_user)


@router.patch("/profile", response_model=ProfileResponse)
async def update_profile(body: ProfileUpdate, current_user: CurrentUser, session: DbSession) -> ProfileResponse:
    """Update display name (the only user-editable profile field)."""
    if body.display_name is not None:
        name = body.display_name.strip()
        if not name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Display name must not be empty")
        current_user.display_name = name[:255]
        await session.flush()
        await session.refresh(current_user)
        log.info("Profile updated user=%s", current_user.username)
    return _profile(current_user)


@router.get("/preferences", response_model=Preferences)
async def get_preferences(current_user: CurrentUser) -> Preferences:
    return Preferences(**current_user.effective_preferences)


@router.patch("/preferences", response_model=Preferences)
async def patch_preferences(body: PreferencesUpdate, current_user: CurrentUser, session: DbSession) -> Preferences:
    merged = update_preferences(current_user, body.model_dump(exclude_none=True))
    await session.flush()
    return Preferences(**merged)


@router.post("/ssh/generate", response_model=SSHKeyResponse)
@limiter.limit("10/minute")
async def generate_ssh_key(request: Request, current_user: CurrentUser, session: DbSession) -> SSHKeyResponse:
    """Replace the user's key pair with a freshly generated one."""
    pair = await generate_user_ssh_keys(session, current_user)
    return SSHKeyResponse(public_key=pair.public_key, fingerprint=pair.fingerprint)


@router.post("/ssh/upload", response_model=SSHKeyResponse)
async def upload_ssh_key(body: SSHKeyUpload, current_user: CurrentUser, session: DbSession) -> SSHKeyResponse:
    public_key = body.public_key.strip()
    private_key = body.private_key.strip()
    if not public_key or not private_key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Both public and private keys are required",
        )
    if not ssh.is_valid_public_key(public_key):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid public key format")
    if not ssh.is_valid_private_key(private_key):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid private key format")
    set_user_ssh_keys(current_user, public_key, private_key)
    await session.flush()
    log.info("SSH key uploaded for user %s", current_user.username)
    return SSHKeyResponse(public_key=public_key)


@router.delete("/ssh")
async def delete_ssh_key(current_user: CurrentUser, session: DbSession) -> dict:
    clear_user_ssh_keys(current_user)
    await session.flush()
    log.info("SSH key deleted for user %s", current_user.username)
    return {"success": True}


@router.get("/ssh/download-private")
@limiter.limit("10/minute")
async def download_private_key(request: Request, current_user: CurrentUser) -> PlainTextResponse:
    if not current_user.ssh_private_key:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No SSH key found")
    private_key = get_user_private_key(current_user)
    if private_key is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to decrypt private key",
        )
    return PlainTextResponse(
        private_key,
        headers={"Content-Disposition": 'attachment; filename="id_rsa"'},
    )
