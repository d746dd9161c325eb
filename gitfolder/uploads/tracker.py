"""In-memory registry of chunked uploads, with chunks stored in per-upload temp directories.

An upload is initialized, receives chunks in any order, and is consumed exactly once
by assemble(). Incomplete uploads older than the expiry window are swept.
"""

import asyncio
import logging
import secrets
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from gitfolder.errors import (
    InvalidInputError,
    PayloadTooLargeError,
    UploadNotCompletedError,
    UploadNotFoundError,
)
from gitfolder.files.paths import sanitize_segment

log = logging.getLogger(__name__)

DEFAULT_EXPIRY_SECONDS = 60 * 60


@dataclass
class UploadSession:
    upload_id: str
    filename: str
    total_size: int
    total_chunks: int
    owner_id: Optional[int] = None
    repository_id: Optional[int] = None
    # chunk index -> stored byte count; keys are the received indices
    chunk_sizes: Dict[int, int] = field(default_factory=dict)
    received_bytes: int = 0
    completed: bool = False
    created_at: float = field(default_factory=time.time)

    @property
    def chunks(self) -> List[int]:
        return sorted(self.chunk_sizes)

    def missing_chunks(self) -> List[int]:
        return [i for i in range(self.total_chunks) if i not in self.chunk_sizes]

    def percentage(self) -> int:
        if self.total_size <= 0:
            return 100 if self.completed else 0
        return min(100, round(self.received_bytes * 100 / self.total_size))


@dataclass
class ChunkReceipt:
    completed: bool
    missing_chunks: List[int]


class ChunkedUploadTracker:
    """Owns every UploadSession and its temp directory for the process lifetime."""

    def __init__(
        self,
        temp_root: Path,
        expiry_seconds: int = DEFAULT_EXPIRY_SECONDS,
        max_upload_bytes: Optional[int] = None,
    ) -> None:
        self.temp_root = Path(temp_root)
        self.expiry_seconds = expiry_seconds
        self.max_upload_bytes = max_upload_bytes
        self._sessions: Dict[str, UploadSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _dir(self, upload_id: str) -> Path:
        return self.temp_root / upload_id

    def _chunk_path(self, upload_id: str, index: int) -> Path:
        return self._dir(upload_id) / f"chunk-{index}"

    def initialize(
        self,
        filename: str,
        total_size: int,
        total_chunks: int,
        owner_id: Optional[int] = None,
        repository_id: Optional[int] = None,
    ) -> str:
        """Register a new upload and create its chunk directory. Returns the upload id."""
        safe_name = sanitize_segment(filename or "")
        if not safe_name:
            raise InvalidInputError(f"Invalid filename: {filename!r}")
        if total_chunks < 1:
            raise InvalidInputError("totalChunks must be at least 1")
        if total_size < 0:
            raise InvalidInputError("totalSize must not be negative")
        if self.max_upload_bytes is not None and total_size > self.max_upload_bytes:
            raise PayloadTooLargeError(
                f"File exceeds the {self.max_upload_bytes} byte upload limit", "FILE_TOO_LARGE"
            )
        upload_id = secrets.token_hex(16)
        self._dir(upload_id).mkdir(parents=True, exist_ok=True)
        self._sessions[upload_id] = UploadSession(
            upload_id=upload_id,
            filename=safe_name,
            total_size=total_size,
            total_chunks=total_chunks,
            owner_id=owner_id,
            repository_id=repository_id,
        )
        log.info(
            "Initialized chunked upload %s for %s (%d bytes, %d chunks)",
            upload_id, safe_name, total_size, total_chunks,
        )
        return upload_id

    def get(self, upload_id: str) -> Optional[UploadSession]:
        return self._sessions.get(upload_id)

    def require(self, upload_id: str) -> UploadSession:
        session = self._sessions.get(upload_id)
        if session is None:
            raise UploadNotFoundError(upload_id)
        return session

    def require_owned(self, upload_id: str, owner_id: int, repository_id: int) -> UploadSession:
        """Like require(), but an upload started by another user or for another repository is not found."""
        session = self.require(upload_id)
        if session.owner_id != owner_id or session.repository_id != repository_id:
            raise UploadNotFoundError(upload_id)
        return session

    def receive_chunk(self, upload_id: str, index: int, data: bytes) -> ChunkReceipt:
        """
        Store one chunk. Re-sending an index overwrites its bytes (resumable uploads);
        the byte count of the previous copy is replaced, not added to. The running
        total may not exceed the declared total size.
        """
        session = self.require(upload_id)
        if index < 0 or index >= session.total_chunks:
            raise InvalidInputError(
                f"Chunk index {index} out of range [0, {session.total_chunks})"
            )
        received = session.received_bytes - session.chunk_sizes.get(index, 0) + len(data)
        if received > session.total_size:
            raise PayloadTooLargeError(
                f"Upload {upload_id} would exceed its declared size of {session.total_size} bytes",
                "UPLOAD_SIZE_EXCEEDED",
            )
        self._chunk_path(upload_id, index).write_bytes(data)
        session.chunk_sizes[index] = len(data)
        session.received_bytes = received
        missing = session.missing_chunks()
        session.completed = not missing
        log.debug(
            "Upload %s chunk %d (%d bytes), %d missing", upload_id, index, len(data), len(missing)
        )
        return ChunkReceipt(completed=session.completed, missing_chunks=missing)

    def assemble(self, upload_id: str) -> bytes:
        """Concatenate chunks by ascending index, then drop the session and its temp files."""
        session = self.require(upload_id)
        missing = session.missing_chunks()
        if missing:
            raise UploadNotCompletedError(upload_id, missing)
        data = b"".join(self._chunk_path(upload_id, i).read_bytes() for i in session.chunks)
        self.discard(upload_id)
        log.info("Assembled upload %s (%s, %d bytes)", upload_id, session.filename, len(data))
        return data

    def discard(self, upload_id: str) -> None:
        self._sessions.pop(upload_id, None)
        shutil.rmtree(self._dir(upload_id), ignore_errors=True)

    def sweep_expired(self, now: Optional[float] = None) -> List[str]:
        """Remove incomplete uploads created more than expiry_seconds ago."""
        now = time.time() if now is None else now
        cutoff = now - self.expiry_seconds
        expired = [
            upload_id
            for upload_id, s in self._sessions.items()
            if not s.completed and s.created_at < cutoff
        ]
        for upload_id in expired:
            self.discard(upload_id)
            log.info("Cleaned up expired upload: %s", upload_id)
        return expired

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Sweep forever; meant to run as a background task cancelled at shutdown."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep_expired()
            except OSError as e:
                log.warning("Upload sweep failed: %s", e)
