"""Long-lived service objects shared by every request (stored on app.state)."""

from dataclasses import dataclass

from gitfolder.config import Settings
from gitfolder.git.branches import BranchService
from gitfolder.git.command import GitCommand
from gitfolder.git.files import FileOperationsService
from gitfolder.git.repositories import RepositoryService
from gitfolder.uploads.tracker import ChunkedUploadTracker


@dataclass
class Services:
    settings: Settings
    git: GitCommand
    repositories: RepositoryService
    files: FileOperationsService
    branches: BranchService
    uploads: ChunkedUploadTracker


def build_services(settings: Settings) -> Services:
    git = GitCommand(settings)
    return Services(
        settings=settings,
        git=git,
        repositories=RepositoryService(git, settings),
        files=FileOperationsService(git, settings),
        branches=BranchService(git),
        uploads=ChunkedUploadTracker(
            settings.upload_temp_path,
            settings.upload_expiry_seconds,
            max_upload_bytes=settings.max_upload_bytes,
        ),
    )
