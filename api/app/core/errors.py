class JobBoardError(Exception):
    """Base error rendered as a failed response envelope."""

    error_kind = "internal"
    status_code = 500

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class UnauthenticatedError(JobBoardError):
    """Raised when the credential is missing or invalid."""

    error_kind = "unauthenticated"
    status_code = 401


class ForbiddenError(JobBoardError):
    """Raised for role, ownership or toggle denials."""

    error_kind = "forbidden"
    status_code = 403


class NotFoundError(JobBoardError):
    """Raised when a referenced posting, application or user is absent."""

    error_kind = "not_found"
    status_code = 404


class ConflictError(JobBoardError):
    """Raised for duplicate applications and double deletions."""

    error_kind = "conflict"
    status_code = 409


class InvalidInputError(JobBoardError):
    """Raised when a payload fails validation before any write."""

    error_kind = "invalid_input"
    status_code = 422


class UpstreamError(JobBoardError):
    """Raised when the directory or the store is unavailable."""

    error_kind = "upstream"
    status_code = 503
