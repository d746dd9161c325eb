"""Repository SQLAlchemy model and Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitfolder.db.session import Base


class Repository(Base):
    """A git working tree owned by one user. Deletion is soft (is_active=False)."""

    __tablename__ = "repositories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    git_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    local_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    owner = relationship("User", back_populates="repositories")
    shared_folders = relationship(
        "SharedFolder", back_populates="repository", cascade="all, delete-orphan"
    )


class RepositoryCreate(BaseModel):
    name: str
    description: Optional[str] = None
    git_url: Optional[str] = None


class RepositoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    git_url: str = ""
    is_active: bool = True
    created_at: datetime
    updated_at: Optional[datetime] = None


class RepositoryInfo(RepositoryResponse):
    current_branch: Optional[str] = None
    branches: List[str] = []
    lfs_enabled: bool = False


class SyncRequest(BaseModel):
    """Body for push/pull against the repository's remote."""

    remote: str = "origin"
    branch: Optional[str] = None
    force: bool = False
