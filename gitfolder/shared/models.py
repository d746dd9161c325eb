"""Shared folders, per-user folder permissions and the file operation audit log."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitfolder.db.session import Base
from gitfolder.users.models import UserSummary


class PermissionLevel(str, Enum):
    viewer = "viewer"
    contributor = "contributor"
    admin = "admin"


class OperationType(str, Enum):
    upload = "upload"
    download = "download"
    delete = "delete"
    rename = "rename"


class SharedFolder(Base):
    __tablename__ = "shared_folders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    folder_path: Mapped[str] = mapped_column(String(500), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    public_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    commit_message_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    repository = relationship("Repository", back_populates="shared_folders")
    permissions = relationship(
        "FolderPermission", back_populates="shared_folder", cascade="all, delete-orphan"
    )
    file_operations = relationship(
        "FileOperation", back_populates="shared_folder", cascade="all, delete-orphan"
    )


class FolderPermission(Base):
    __tablename__ = "folder_permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shared_folder_id: Mapped[int] = mapped_column(
        ForeignKey("shared_folders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_level: Mapped[str] = mapped_column(String(20), nullable=False)
    granted_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    shared_folder = relationship("SharedFolder", back_populates="permissions")
    user = relationship("User", back_populates="folder_permissions", foreign_keys=[user_id])
    granted_by_user = relationship("User", foreign_keys=[granted_by])


class FileOperation(Base):
    """Audit record of one file operation inside a shared folder's repository."""

    __tablename__ = "file_operations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shared_folder_id: Mapped[int] = mapped_column(
        ForeignKey("shared_folders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    operation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    commit_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    commit_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    shared_folder = relationship("SharedFolder", back_populates="file_operations")
    user = relationship("User")


# Pydantic schemas for API
class RepositoryRef(BaseModel):
    id: int
    name: str


class SharedFolderCreate(BaseModel):
    repository_id: int
    folder_path: str
    name: str
    description: Optional[str] = None
    is_public: bool = False
    commit_message_required: bool = False


class SharedFolderUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None
    commit_message_required: Optional[bool] = None


class SharedFolderResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    folder_path: str
    is_public: bool
    public_token: Optional[str] = None
    commit_message_required: bool = False
    repository: Optional[RepositoryRef] = None
    created_at: Optional[datetime] = None


class PermissionEntry(BaseModel):
    user: UserSummary
    permission_level: PermissionLevel
    created_at: datetime


class SharedFolderDetail(SharedFolderResponse):
    permissions: List[PermissionEntry] = []
    user_permission: PermissionLevel


class PermissionGrant(BaseModel):
    user_id: int
    permission_level: PermissionLevel


class PublicFolderResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    folder_path: str
    repository: RepositoryRef
    is_authenticated: bool
    commit_message_required: bool
