"""User SQLAlchemy model and Pydantic schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import JSON, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitfolder.db.session import Base

DEFAULT_PREFERENCES: dict[str, Any] = {
    "theme": "dark",
    "commit_message_required": False,
    "default_commit_message": "Updated files",
    "email_notifications": True,
}


class User(Base):
    """User table: one row per OAuth identity (provider + provider user id)."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("oauth_provider", "oauth_id", name="uq_users_oauth"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    oauth_provider: Mapped[str] = mapped_column(String(20), nullable=False)
    oauth_id: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ssh_public_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Encrypted JSON blob, see gitfolder.users.ssh.encrypt
    ssh_private_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preferences: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    repositories = relationship("Repository", back_populates="owner")
    folder_permissions = relationship(
        "FolderPermission", back_populates="user", foreign_keys="FolderPermission.user_id"
    )

    @property
    def author(self) -> str:
        """Git author string for commits made on this user's behalf."""
        return f"{self.display_name or self.username} <{self.email}>"

    @property
    def has_ssh_key(self) -> bool:
        return bool(self.ssh_public_key)

    @property
    def effective_preferences(self) -> dict[str, Any]:
        return {**DEFAULT_PREFERENCES, **(self.preferences or {})}


# Pydantic schemas for API
class UserSummary(BaseModel):
    """Public user fields embedded in other responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    display_name: Optional[str] = None


class UserResponse(BaseModel):
    """User as returned by auth status."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    provider: str


class ProfileResponse(BaseModel):
    """Full profile of the current user (never includes the private key)."""

    id: int
    username: str
    email: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    provider: str
    has_ssh_key: bool
    ssh_public_key: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None


class Preferences(BaseModel):
    theme: str = "dark"
    commit_message_required: bool = False
    default_commit_message: str = "Updated files"
    email_notifications: bool = True


class PreferencesUpdate(BaseModel):
    theme: Optional[str] = None
    commit_message_required: Optional[bool] = None
    default_commit_message: Optional[str] = None
    email_notifications: Optional[bool] = None


class SSHKeyUpload(BaseModel):
    public_key: str
    private_key: str


class SSHKeyResponse(BaseModel):
    success: bool = True
    public_key: Optional[str] = None
    fingerprint: Optional[str] = None


class TokenPair(BaseModel):
    """Access and refresh token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class RefreshRequest(BaseModel):
    """Refresh token request body."""

    refresh_token: str
