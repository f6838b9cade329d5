"""Domain errors raised by the submission lifecycle and originality pipeline."""

from __future__ import annotations


class CapstoneError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 400
    code = "ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class SubmissionNotFound(CapstoneError):
    status_code = 404
    code = "SUBMISSION_NOT_FOUND"

    def __init__(self, submission_id: int) -> None:
        super().__init__(f"Submission {submission_id} not found")
        self.submission_id = submission_id


class ProjectNotFound(CapstoneError):
    status_code = 404
    code = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: int) -> None:
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class AnnotationNotFound(CapstoneError):
    status_code = 404
    code = "ANNOTATION_NOT_FOUND"


class Forbidden(CapstoneError):
    status_code = 403
    code = "FORBIDDEN"


class LineageLocked(CapstoneError):
    status_code = 409
    code = "LINEAGE_LOCKED"


class LineageRejected(CapstoneError):
    status_code = 409
    code = "LINEAGE_REJECTED"


class NotReviewable(CapstoneError):
    status_code = 409
    code = "NOT_REVIEWABLE"


class NotApproved(CapstoneError):
    status_code = 409
    code = "NOT_APPROVED"


class NotLocked(CapstoneError):
    status_code = 409
    code = "NOT_LOCKED"


class ChaptersNotLocked(CapstoneError):
    status_code = 409
    code = "CHAPTERS_NOT_LOCKED"


class RecheckNotAllowed(CapstoneError):
    status_code = 409
    code = "RECHECK_NOT_ALLOWED"


class ValidationFailed(CapstoneError):
    code = "VALIDATION_ERROR"


class LateRemarksRequired(ValidationFailed):
    code = "LATE_REMARKS_REQUIRED"


class InvalidUpload(ValidationFailed):
    code = "INVALID_UPLOAD"


class UnrecognizedFormat(ValidationFailed):
    code = "UNRECOGNIZED_FORMAT"


class UploadTooLarge(CapstoneError):
    status_code = 413
    code = "FILE_TOO_LARGE"


class QueueUnavailable(CapstoneError):
    status_code = 503
    code = "QUEUE_UNAVAILABLE"


class StorageError(CapstoneError):
    status_code = 502
    code = "STORAGE_ERROR"


class ExtractionError(CapstoneError):
    status_code = 422
    code = "EXTRACTION_FAILED"
