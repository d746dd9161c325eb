"""OAuth 2 authorization-code flow against GitHub, Google and Discord."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from gitfolder.config import Settings
from gitfolder.errors import AuthenticationError, NotFoundError

log = logging.getLogger(__name__)

_HTTP_TIMEOUT = 15.0


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    display_name: str
    authorize_url: str
    token_url: str
    profile_url: str
    scopes: tuple[str, ...]


PROVIDERS: Dict[str, OAuthProvider] = {
    "github": OAuthProvider(
        name="github",
        display_name="GitHub",
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        profile_url="https://api.github.com/user",
        scopes=("user:email",),
    ),
    "google": OAuthProvider(
        name="google",
        display_name="Google",
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        profile_url="https://openidconnect.googleapis.com/v1/userinfo",
        scopes=("openid", "profile", "email"),
    ),
    "discord": OAuthProvider(
        name="discord",
        display_name="Discord",
        authorize_url="https://discord.com/oauth2/authorize",
        token_url="https://discord.com/api/oauth2/token",
        profile_url="https://discord.com/api/users/@me",
        scopes=("identify", "email"),
    ),
}


@dataclass
class OAuthProfile:
    """Provider-independent identity returned after a successful login."""

    provider: str
    id: str
    email: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


def configured_providers(settings: Settings) -> List[OAuthProvider]:
    """Providers with both client id and secret set."""
    return [p for name, p in PROVIDERS.items() if settings.oauth_credentials(name)]


def get_provider(settings: Settings, name: str) -> OAuthProvider:
    provider = PROVIDERS.get(name)
    if provider is None or not settings.oauth_credentials(name):
        raise NotFoundError(f"OAuth provider not available: {name}", "PROVIDER_NOT_FOUND")
    return provider


def callback_url(settings: Settings, provider: OAuthProvider) -> str:
    return f"{settings.app_url.rstrip('/')}/api/auth/{provider.name}/callback"


def authorization_url(settings: Settings, provider: OAuthProvider, state: str) -> str:
    """URL the browser is redirected to for consent."""
    client_id, _ = settings.oauth_credentials(provider.name)  # type: ignore[misc]
    params = {
        "client_id": client_id,
        "redirect_uri": callback_url(settings, provider),
        "response_type": "code",
        "scope": " ".join(provider.scopes),
        "state": state,
    }
    return f"{provider.authorize_url}?{urlencode(params)}"


def profile_from_payload(provider: str, data: Dict[str, Any], email: Optional[str] = None) -> OAuthProfile:
    """Map a provider's user payload to an OAuthProfile."""
    if provider == "github":
        return OAuthProfile(
            provider=provider,
            id=str(data["id"]),
            email=data.get("email") or email,
            username=data.get("login"),
            display_name=data.get("name") or data.get("login"),
            avatar_url=data.get("avatar_url"),
        )
    if provider == "google":
        return OAuthProfile(
            provider=provider,
            id=str(data["sub"]),
            email=data.get("email"),
            username=(data.get("email") or "").split("@")[0] or None,
            display_name=data.get("name"),
            avatar_url=data.get("picture"),
        )
    if provider == "discord":
        avatar = data.get("avatar")
        return OAuthProfile(
            provider=provider,
            id=str(data["id"]),
            email=data.get("email"),
            username=data.get("username"),
            display_name=data.get("global_name") or data.get("username"),
            avatar_url=f"https://cdn.discordapp.com/avatars/{data['id']}/{avatar}.png" if avatar else None,
        )
    raise NotFoundError(f"OAuth provider not available: {provider}", "PROVIDER_NOT_FOUND")


async def _github_primary_email(client: httpx.AsyncClient, headers: Dict[str, str]) -> Optional[str]:
    """GitHub hides private emails from /user; ask /user/emails for the primary one."""
    r = await client.get("https://api.github.com/user/emails", headers=headers)
    if r.status_code != 200:
        return None
    for entry in r.json():
        if entry.get("primary") and entry.get("verified"):
            return entry.get("email")
    return None


async def fetch_profile(
    settings: Settings,
    provider: OAuthProvider,
    code: str,
    client: Optional[httpx.AsyncClient] = None,
) -> OAuthProfile:
    """Exchange the authorization code for a token and load the user's profile."""
    client_id, client_secret = settings.oauth_credentials(provider.name)  # type: ignore[misc]
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=_HTTP_TIMEOUT)
    try:
        token_r = await client.post(
            provider.token_url,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": callback_url(settings, provider),
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        if token_r.status_code != 200:
            log.warning("OAuth token exchange failed provider=%s status=%d", provider.name, token_r.status_code)
            raise AuthenticationError("OAuth token exchange failed", "OAUTH_FAILED")
        access_token = token_r.json().get("access_token")
        if not access_token:
            raise AuthenticationError("OAuth provider returned no access token", "OAUTH_FAILED")
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        profile_r = await client.get(provider.profile_url, headers=headers)
        if profile_r.status_code != 200:
            log.warning("OAuth profile fetch failed provider=%s status=%d", provider.name, profile_r.status_code)
            raise AuthenticationError("Could not load OAuth profile", "OAUTH_FAILED")
        data = profile_r.json()
        email = None
        if provider.name == "github" and not data.get("email"):
            email = await _github_primary_email(client, headers)
        return profile_from_payload(provider.name, data, email=email)
    except httpx.HTTPError as e:
        log.warning("OAuth request to %s failed: %s", provider.name, e)
        raise AuthenticationError("OAuth provider unreachable", "OAUTH_FAILED") from e
    finally:
        if own_client:
            await client.aclose()
