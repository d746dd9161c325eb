"""User service: OAuth provisioning, dev user bootstrap, SSH keys, preferences."""

import logging
import re
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitfolder.auth.oauth import OAuthProfile
from gitfolder.users import ssh
from gitfolder.users.models import DEFAULT_PREFERENCES, User

log = logging.getLogger(__name__)

DEV_PROVIDER = "dev"
DEV_OAUTH_ID = "dev-user"


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    """Return user by id or None."""
    return await session.get(User, user_id)


async def get_user_by_oauth(session: AsyncSession, provider: str, oauth_id: str) -> Optional[User]:
    result = await session.execute(
        select(User).where(User.oauth_provider == provider, User.oauth_id == oauth_id)
    )
    return result.scalar_one_or_none()


def _username_from_profile(profile: OAuthProfile) -> str:
    raw = profile.username or re.sub(r"\s+", "", profile.display_name or "") or profile.id
    return raw.lower()[:100]


async def generate_user_ssh_keys(session: AsyncSession, user: User) -> ssh.SSHKeyPair:
    """Generate a key pair for the user and store it (private key encrypted). Caller commits."""
    pair = ssh.generate_ssh_key_pair(f"git-folder-{user.username}@{user.oauth_provider}")
    user.ssh_public_key = pair.public_key
    user.ssh_private_key = ssh.encrypt(
        pair.private_key, ssh.user_key_passphrase(user.id, user.oauth_id)
    )
    await session.flush()
    log.info("SSH keys generated for user %s (%d)", user.username, user.id)
    return pair


def set_user_ssh_keys(user: User, public_key: str, private_key: str) -> None:
    """Store a user-supplied key pair. Caller validates formats and commits."""
    user.ssh_public_key = public_key.strip()
    user.ssh_private_key = ssh.encrypt(private_key, ssh.user_key_passphrase(user.id, user.oauth_id))


def clear_user_ssh_keys(user: User) -> None:
    user.ssh_public_key = None
    user.ssh_private_key = None


def get_user_private_key(user: User) -> Optional[str]:
    """Decrypted private key, or None if the user has none or it cannot be decrypted."""
    if not user.ssh_private_key:
        return None
    try:
        return ssh.decrypt(user.ssh_private_key, ssh.user_key_passphrase(user.id, user.oauth_id))
    except ValueError as e:
        log.error("Error decrypting private key for user %d: %s", user.id, e)
        return None


async def find_or_create_oauth_user(
    session: AsyncSession,
    profile: OAuthProfile,
    generate_keys: bool = True,
) -> User:
    """
    Return the user for an OAuth identity, creating it on first login.
    New users get an SSH key pair; returning users get display name/avatar refreshed.
    """
    user = await get_user_by_oauth(session, profile.provider, profile.id)
    if user is None:
        username = _username_from_profile(profile)
        user = User(
            oauth_provider=profile.provider,
            oauth_id=profile.id,
            email=profile.email or f"{profile.id}@{profile.provider}.local",
            username=username,
            display_name=profile.display_name or username,
            avatar_url=profile.avatar_url,
        )
        session.add(user)
        await session.flush()
        await session.refresh(user)
        log.info("New user created: %s (%s)", user.username, profile.provider)
        if generate_keys:
            await generate_user_ssh_keys(session, user)
    else:
        user.display_name = profile.display_name or user.display_name
        user.avatar_url = profile.avatar_url or user.avatar_url
        await session.flush()
    return user


async def ensure_dev_user(session: AsyncSession) -> User:
    """Return the fixed local user used in dev auth mode, creating it if needed."""
    user = await get_user_by_oauth(session, DEV_PROVIDER, DEV_OAUTH_ID)
    if user:
        return user
    user = User(
        oauth_provider=DEV_PROVIDER,
        oauth_id=DEV_OAUTH_ID,
        email="dev@localhost",
        username="devuser",
        display_name="Development User",
    )
    session.add(user)
    await session.flush()
    await session.refresh(user)
    log.info("Created dev user id=%d", user.id)
    return user


def update_preferences(user: User, changes: dict[str, Any]) -> dict[str, Any]:
    """Merge non-None changes into the user's stored preferences. Caller commits."""
    merged = dict(user.effective_preferences)
    for key, value in changes.items():
        if key in DEFAULT_PREFERENCES and value is not None:
            merged[key] = value
    # Reassign so SQLAlchemy sees the JSON column change
    user.preferences = merged
    return merged
