"""
Error codes for the pagelens command surface.

Error codes follow the pattern:
- INVALID_*: Input validation errors (client-side fix needed)
- *_NOT_FOUND: Resource not found errors
- *_LIMIT: Capacity limits reached
- *_ERROR: Processing/internal errors
"""

import uuid
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Command error codes, each with its HTTP status."""

    INVALID_PARAMS = "INVALID_PARAMS"
    """Request parameters are invalid or malformed.
    Action: Fix the parameters and retry."""

    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    """The job id is unknown or the job has been evicted from the registry.
    Action: Verify the job id; finished jobs remain readable through status."""

    INVALID_STATE = "INVALID_STATE"
    """The command does not apply to the job's current state
    (e.g. resume on a running job).
    Action: Check job status before retrying."""

    ARTIFACT_NOT_FOUND = "ARTIFACT_NOT_FOUND"
    """The job has no such screenshot.
    Action: Wait for the first capture or check the artifact id."""

    RECOGNITION_NOT_FOUND = "RECOGNITION_NOT_FOUND"
    """The job has no OCR result with that id.
    Action: List the job's OCR results for valid ids."""

    ADMISSION_LIMIT = "ADMISSION_LIMIT"
    """The maximum number of concurrently active jobs is reached.
    Action: Stop a job or retry later."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    """Unexpected internal error.
    Action: Check error_id in logs."""

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorCode.INVALID_PARAMS: 422,
    ErrorCode.JOB_NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.ARTIFACT_NOT_FOUND: 404,
    ErrorCode.RECOGNITION_NOT_FOUND: 404,
    ErrorCode.ADMISSION_LIMIT: 429,
    ErrorCode.INTERNAL_ERROR: 500,
}


class PageLensError(Exception):
    """Base exception for command errors, convertible to a response body."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        error_id: str | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.error_id = error_id

    def to_dict(self) -> dict[str, Any]:
        """Response body for this error."""
        result: dict[str, Any] = {
            "ok": False,
            "success": False,
            "error_code": self.code.value,
            "error": self.message,
        }
        if self.error_id:
            result["error_id"] = self.error_id
        if self.details:
            result["details"] = self.details
        return result


class InvalidParamsError(PageLensError):
    """Raised when request parameters are invalid."""

    def __init__(
        self,
        message: str,
        *,
        param_name: str | None = None,
        expected: str | None = None,
        received: Any = None,
    ):
        details = {}
        if param_name:
            details["param_name"] = param_name
        if expected:
            details["expected"] = expected
        if received is not None:
            details["received"] = str(received)

        super().__init__(ErrorCode.INVALID_PARAMS, message, details=details or None)


class JobNotFoundError(PageLensError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: str):
        super().__init__(
            ErrorCode.JOB_NOT_FOUND,
            f"Job not found: {job_id}",
            details={"job_id": job_id},
        )


class InvalidStateError(PageLensError):
    """Raised when a command does not apply to the job's current state."""

    def __init__(self, job_id: str, command: str, status: str):
        super().__init__(
            ErrorCode.INVALID_STATE,
            f"Cannot {command} job in state {status}",
            details={"job_id": job_id, "command": command, "status": status},
        )


class ArtifactNotFoundError(PageLensError):
    """Raised when a job has no matching screenshot."""

    def __init__(self, job_id: str, artifact_id: str | None = None):
        details = {"job_id": job_id}
        if artifact_id:
            details["artifact_id"] = artifact_id
        super().__init__(
            ErrorCode.ARTIFACT_NOT_FOUND,
            f"Screenshot not found for job {job_id}",
            details=details,
        )


class RecognitionNotFoundError(PageLensError):
    """Raised when a job has no OCR result with the given id."""

    def __init__(self, job_id: str, recognition_id: str):
        super().__init__(
            ErrorCode.RECOGNITION_NOT_FOUND,
            f"OCR result not found: {recognition_id}",
            details={"job_id": job_id, "recognition_id": recognition_id},
        )


class AdmissionLimitError(PageLensError):
    """Raised when starting a job would exceed the active-job limit."""

    def __init__(self, limit: int):
        super().__init__(
            ErrorCode.ADMISSION_LIMIT,
            f"Active job limit reached ({limit})",
            details={"max_active_jobs": limit},
        )


def generate_error_id() -> str:
    """Unique error id for log correlation."""
    return f"err_{uuid.uuid4().hex[:12]}"
