"""File API routes: list, upload, download, delete, move, history and chunked uploads."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import FileResponse, Response
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gitfolder.auth.dependencies import AppServices, CurrentUser, DbSession
from gitfolder.errors import InvalidInputError, PayloadTooLargeError
from gitfolder.files.paths import join_relative, normalize_relative_path
from gitfolder.limiter import limiter
from gitfolder.repositories.models import Repository
from gitfolder.services import Services
from gitfolder.shared.models import OperationType
from gitfolder.users.models import User

router = APIRouter(prefix="/api/repositories/{repository_id}", tags=["files"])
log = logging.getLogger(__name__)


class FileDelete(BaseModel):
    path: str
    message: Optional[str] = None


class FileMove(BaseModel):
    source: str
    destination: str
    message: Optional[str] = None


class ChunkUploadInit(BaseModel):
    filename: str
    total_size: int = Field(validation_alias=AliasChoices("total_size", "totalSize"))
    total_chunks: int = Field(validation_alias=AliasChoices("total_chunks", "totalChunks"))


class ChunkUploadFinalize(BaseModel):
    path: str = "/"
    message: Optional[str] = None


def _safe_join(folder: str, filename: str) -> str:
    try:
        return join_relative(folder, filename)
    except ValueError as e:
        raise InvalidInputError(str(e), "INVALID_PATH") from e


def _canonical(path: str) -> str:
    try:
        return normalize_relative_path(path)
    except ValueError as e:
        raise InvalidInputError(str(e), "INVALID_PATH") from e


def _content_disposition(filename: str) -> str:
    return f'attachment; filename="{filename}"'


async def _commit_message(
    session: AsyncSession, services: Services, repository: Repository, message: Optional[str]
) -> Optional[str]:
    """Blank message -> None (service default); 400 when a message is required but missing."""
    message = (message or "").strip() or None
    if message:
        return message
    if services.settings.require_commit_message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Commit message is required")
    folder = await services.files.find_shared_folder(session, repository.id)
    if folder is not None and folder.commit_message_required:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Commit message is required")
    return None


async def _audit(
    request: Request,
    session: AsyncSession,
    services: Services,
    repository: Repository,
    user: User,
    operation: OperationType,
    file_path: str,
    file_size: Optional[int] = None,
    commit_hash: Optional[str] = None,
    commit_message: Optional[str] = None,
) -> None:
    """Record the operation when the repository has a shared folder."""
    folder = await services.files.find_shared_folder(session, repository.id)
    if folder is None:
        return
    await services.files.log_operation(
        session,
        folder.id,
        user.id,
        operation,
        file_path,
        file_size=file_size,
        commit_hash=commit_hash,
        commit_message=commit_message,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.get("/files")
async def list_files(
    repository_id: int,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
    path: str = "/",
) -> dict:
    """List one folder of the working tree (directories first)."""
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    files = services.files.list_files(repository, path)
    return {"files": files, "path": path}


@router.post("/upload")
@limiter.limit("600/minute")
async def upload_file(
    request: Request,
    repository_id: int,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
    file: Annotated[UploadFile, File()],
    path: Annotated[str, Form()] = "/",
    message: Annotated[Optional[str], Form()] = None,
) -> dict:
    """Upload one file into folder `path` and commit it."""
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    max_bytes = services.settings.max_upload_bytes
    if file.size is not None and file.size > max_bytes:
        raise PayloadTooLargeError(f"File exceeds {services.settings.max_upload_size_mb} MB limit", "FILE_TOO_LARGE")
    full_path = _safe_join(path, file.filename or "")
    commit_message = await _commit_message(session, services, repository, message)
    data = await file.read()
    if len(data) > max_bytes:
        raise PayloadTooLargeError(f"File exceeds {services.settings.max_upload_size_mb} MB limit", "FILE_TOO_LARGE")
    commit_hash = await services.files.upload_file(
        repository, full_path, data, current_user, message=commit_message
    )
    await _audit(
        request, session, services, repository, current_user, OperationType.upload,
        full_path, file_size=len(data), commit_hash=commit_hash, commit_message=commit_message,
    )
    log.info("upload_file user=%s repo=%d path=%s size=%d", current_user.username, repository.id, full_path, len(data))
    return {"success": True, "path": full_path, "size": len(data), "commit": commit_hash}


@router.get("/download")
@limiter.limit("600/minute")
async def download_file(
    request: Request,
    repository_id: int,
    path: Annotated[str, Query(min_length=1)],
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> FileResponse:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    rel, target, size = services.files.download_file(repository, path)
    await _audit(
        request, session, services, repository, current_user, OperationType.download, rel, file_size=size
    )
    return FileResponse(target, filename=target.name, media_type="application/octet-stream")


@router.delete("/files")
async def delete_file(
    request: Request,
    repository_id: int,
    body: FileDelete,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    commit_message = await _commit_message(session, services, repository, body.message)
    commit_hash = await services.files.delete_file(repository, body.path, current_user, message=commit_message)
    await _audit(
        request, session, services, repository, current_user, OperationType.delete,
        _canonical(body.path), commit_hash=commit_hash, commit_message=commit_message,
    )
    return {"success": True, "commit": commit_hash}


@router.post("/move")
async def move_file(
    request: Request,
    repository_id: int,
    body: FileMove,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    """Move or rename a file or folder (git mv)."""
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    commit_message = await _commit_message(session, services, repository, body.message)
    commit_hash = await services.files.move_file(
        repository, body.source, body.destination, current_user, message=commit_message
    )
    await _audit(
        request, session, services, repository, current_user, OperationType.rename,
        f"{_canonical(body.source)} -> {_canonical(body.destination)}",
        commit_hash=commit_hash, commit_message=commit_message,
    )
    return {"success": True, "commit": commit_hash}


@router.get("/history")
async def file_history(
    repository_id: int,
    path: Annotated[str, Query(min_length=1)],
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
    limit: Annotated[int, Query(ge=1, le=500)] = 20,
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    history = await services.files.get_file_history(repository, path, limit)
    return {"history": history, "file": path}


@router.get("/version/{commit_hash}")
async def file_at_version(
    repository_id: int,
    commit_hash: str,
    path: Annotated[str, Query(min_length=1)],
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> Response:
    """Raw content of a file as of a commit."""
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    content = await services.files.get_file_at_version(repository, path, commit_hash)
    filename = path.replace("\\", "/").rstrip("/").split("/")[-1]
    return Response(
        content,
        media_type="application/octet-stream",
        headers={"Content-Disposition": _content_disposition(filename)},
    )


@router.post("/chunk-upload/init")
@limiter.limit("600/minute")
async def init_chunked_upload(
    request: Request,
    repository_id: int,
    body: ChunkUploadInit,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    upload_id = services.uploads.initialize(
        body.filename,
        body.total_size,
        body.total_chunks,
        owner_id=current_user.id,
        repository_id=repository.id,
    )
    return {"uploadId": upload_id, "message": "Chunked upload initialized"}


@router.post("/chunk-upload/{upload_id}/chunk/{chunk_number}")
@limiter.limit("600/minute")
async def upload_chunk(
    request: Request,
    repository_id: int,
    upload_id: str,
    chunk_number: int,
    chunk: Annotated[UploadFile, File()],
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    services.uploads.require_owned(upload_id, current_user.id, repository.id)
    data = await chunk.read()
    if len(data) > services.settings.max_chunk_bytes:
        raise PayloadTooLargeError(
            f"Chunk exceeds {services.settings.max_chunk_size_mb} MB limit", "CHUNK_TOO_LARGE"
        )
    receipt = services.uploads.receive_chunk(upload_id, chunk_number, data)
    return {"success": True, "completed": receipt.completed, "missingChunks": receipt.missing_chunks}


@router.post("/chunk-upload/{upload_id}/finalize")
@limiter.limit("600/minute")
async def finalize_chunked_upload(
    request: Request,
    repository_id: int,
    upload_id: str,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
    body: Optional[ChunkUploadFinalize] = None,
) -> dict:
    """Assemble the chunks and commit the file into folder `path`."""
    body = body or ChunkUploadFinalize()
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    upload = services.uploads.require_owned(upload_id, current_user.id, repository.id)
    full_path = _safe_join(body.path, upload.filename)
    commit_message = await _commit_message(session, services, repository, body.message)
    data = services.uploads.assemble(upload_id)
    commit_hash = await services.files.upload_file(
        repository, full_path, data, current_user, message=commit_message
    )
    await _audit(
        request, session, services, repository, current_user, OperationType.upload,
        full_path, file_size=len(data), commit_hash=commit_hash, commit_message=commit_message,
    )
    return {
        "success": True,
        "message": "File uploaded successfully",
        "path": full_path,
        "size": len(data),
        "commit": commit_hash,
    }


@router.get("/upload-progress/{upload_id}")
async def upload_progress(
    repository_id: int,
    upload_id: str,
    current_user: CurrentUser,
    session: DbSession,
    services: AppServices,
) -> dict:
    repository = await services.repositories.require_repository(session, repository_id, current_user.id)
    upload = services.uploads.require_owned(upload_id, current_user.id, repository.id)
    return {
        "uploadId": upload.upload_id,
        "filename": upload.filename,
        "totalSize": upload.total_size,
        "uploadedSize": upload.received_bytes,
        "percentage": upload.percentage(),
        "completed": upload.completed,
        "chunksReceived": len(upload.chunks),
    }
