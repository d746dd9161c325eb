"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Backend settings from env."""

    model_config = SettingsConfigDict(env_prefix="GITFOLDER_", extra="ignore")

    # Auth: "oauth" (real providers) or "dev" (auto-provisioned local user, no login)
    auth_mode: str = "oauth"
    environment: str = "production"
    debug: bool = False

    # Storage
    repos_base_path: Path = Path("/app/repos")
    upload_temp_path: Path = Path("/app/temp/uploads")
    ssh_key_path: Path = Path("/app/ssh")
    db_path: Path = Path("/app/data/git-folder.db")
    # Full SQLAlchemy async URL; empty = SQLite at db_path
    database_url: str = ""

    # JWT and SSH key encryption
    secret_key: str = ""
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7
    oauth_state_expire_minutes: int = 10

    # OAuth providers (a provider is enabled when both id and secret are set)
    oauth_github_client_id: str = ""
    oauth_github_client_secret: str = ""
    oauth_google_client_id: str = ""
    oauth_google_client_secret: str = ""
    oauth_discord_client_id: str = ""
    oauth_discord_client_secret: str = ""
    app_url: str = "http://localhost:8080"
    frontend_url: str = "/"

    # Uploads and LFS
    max_upload_size_mb: int = 1024
    max_chunk_size_mb: int = 10
    lfs_threshold_mb: int = 50
    upload_expiry_seconds: int = 3600
    upload_sweep_interval_seconds: int = 3600

    # Commit message dialog
    require_commit_message: bool = False
    default_commit_message: str = "Updated files"

    # Git
    git_timeout_ms: int = 30_000
    git_clone_timeout_ms: int = 300_000
    git_max_buffer_bytes: int = 10 * 1024 * 1024
    git_committer_name: str = "git-folder"
    git_committer_email: str = "noreply@git-folder.local"
    git_default_branch: str = "main"

    # SMTP (share notifications)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    email_notifications: bool = True

    # CORS: comma-separated string so pydantic-settings does not try to JSON-decode it
    cors_origins: str = "http://localhost:8080"

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list (split on comma)."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()] or [
            "http://localhost:8080"
        ]

    @property
    def is_dev_auth(self) -> bool:
        return self.auth_mode.strip().lower() == "dev"

    @property
    def sqlalchemy_url(self) -> str:
        """Async database URL; SQLite file at db_path unless database_url is set."""
        if self.database_url.strip():
            return self.database_url.strip()
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def max_chunk_bytes(self) -> int:
        return self.max_chunk_size_mb * 1024 * 1024

    @property
    def lfs_threshold_bytes(self) -> int:
        return self.lfs_threshold_mb * 1024 * 1024

    def oauth_credentials(self, provider: str) -> Optional[tuple[str, str]]:
        """Return (client_id, client_secret) for a provider, or None if not configured."""
        client_id = getattr(self, f"oauth_{provider}_client_id", "")
        client_secret = getattr(self, f"oauth_{provider}_client_secret", "")
        if not client_id or not client_secret:
            return None
        return client_id, client_secret

    # Server
    port: int = 8080

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
