"""
Access Applications Errors

Typed error taxonomy raised by the lifecycle core and the service layer.
Each error kind carries a stable error code and exactly one HTTP status code
so the routers can translate failures deterministically.
"""

from collections.abc import Iterable

from app.modules.access_applications.domain import FieldError


class ApplicationServiceError(Exception):
    """Base exception for application service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class ApplicationValidationError(ApplicationServiceError):
    """Raised when submitted content is invalid. Carries field-level errors."""

    def __init__(self, message: str, errors: Iterable[FieldError] = ()):
        self.errors = tuple(errors)
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
        )


class CollaboratorConflictError(ApplicationServiceError):
    """Raised when a collaborator duplicates another collaborator or the applicant."""

    COLLABORATOR_EXISTS = "COLLABORATOR_EXISTS"
    COLLABORATOR_SAME_AS_APPLICANT = "COLLABORATOR_SAME_AS_APPLICANT"

    def __init__(self, code: str, message: str):
        super().__init__(
            message=message,
            error_code=code,
            status_code=409,
        )


class ApplicationNotFoundError(ApplicationServiceError):
    """Raised when an application is not found."""

    def __init__(self, app_id: str | None = None):
        message = f"Application {app_id} not found" if app_id else "Application not found"
        super().__init__(
            message=message,
            error_code="APPLICATION_NOT_FOUND",
            status_code=404,
        )


class CollaboratorNotFoundError(ApplicationServiceError):
    def __init__(self, collaborator_id: str):
        super().__init__(
            message=f"No collaborator with id {collaborator_id}",
            error_code="COLLABORATOR_NOT_FOUND",
            status_code=404,
        )


class DocumentNotFoundError(ApplicationServiceError):
    def __init__(self, object_id: str):
        super().__init__(
            message=f"No document with id {object_id}",
            error_code="DOCUMENT_NOT_FOUND",
            status_code=404,
        )


class ForbiddenActionError(ApplicationServiceError):
    """Raised when the caller's role does not permit the requested action."""

    def __init__(self, message: str = "Not allowed"):
        super().__init__(
            message=message,
            error_code="FORBIDDEN",
            status_code=403,
        )


class InvalidApplicationStateError(ApplicationServiceError):
    """Raised when an application is not in a state that permits the operation."""

    def __init__(self, message: str, error_code: str = "INVALID_APPLICATION_STATE"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
        )


class ApplicationClosedError(InvalidApplicationStateError):
    """Raised for any attempted mutation of a CLOSED application."""

    def __init__(self, app_id: str | None = None):
        subject = f"Application {app_id}" if app_id else "Application"
        super().__init__(
            message=f"{subject} is CLOSED and cannot be modified",
            error_code="APPLICATION_CLOSED",
        )


class VersionConflictError(ApplicationServiceError):
    """Raised when a compare-and-set write finds a newer version in storage."""

    def __init__(self, app_id: str, expected_version: int):
        self.app_id = app_id
        self.expected_version = expected_version
        super().__init__(
            message=(
                f"Application {app_id} was modified concurrently "
                f"(expected version {expected_version}). Reload and retry."
            ),
            error_code="VERSION_CONFLICT",
            status_code=409,
        )


class TransactionFailureError(ApplicationServiceError):
    """Raised when a multi-record write was rolled back."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="TRANSACTION_FAILED",
            status_code=500,
        )


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""
