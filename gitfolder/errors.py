"""Application error types. Each carries the HTTP status the API maps it to."""

from typing import Optional


class GitFolderError(Exception):
    """Base error for service-layer failures surfaced to API clients."""

    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class InvalidInputError(GitFolderError):
    status_code = 400


class AuthenticationError(GitFolderError):
    status_code = 401


class PermissionDeniedError(GitFolderError):
    status_code = 403


class NotFoundError(GitFolderError):
    status_code = 404


class ConflictError(GitFolderError):
    status_code = 409


class PayloadTooLargeError(GitFolderError):
    status_code = 413


class ServiceUnavailableError(GitFolderError):
    status_code = 503


class CommandError(GitFolderError):
    """Subprocess failure: SPAWN_ERROR, TIMEOUT or BUFFER_EXCEEDED. Keeps raw stderr."""

    def __init__(self, message: str, code: str, stderr: str = "") -> None:
        super().__init__(message, code)
        self.stderr = stderr


class GitError(CommandError):
    """A git invocation exited non-zero in a way no typed error covers."""


class UploadNotFoundError(NotFoundError):
    def __init__(self, upload_id: str) -> None:
        super().__init__(f"Upload not found: {upload_id}", "UPLOAD_NOT_FOUND")
        self.upload_id = upload_id


class UploadNotCompletedError(InvalidInputError):
    def __init__(self, upload_id: str, missing: list[int]) -> None:
        super().__init__("Upload not completed", "UPLOAD_NOT_COMPLETED")
        self.upload_id = upload_id
        self.missing = missing
