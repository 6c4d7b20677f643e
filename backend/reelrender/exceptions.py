"""Custom exceptions for the render service.

Every error raised inside the render pipeline derives from ReelRenderError,
which carries a machine-readable code (see constants/error_codes.py) and the
HTTP status used when the error reaches the API layer.

Propagation policy:
- AssetUnavailableError and EncodingError are fatal to a job.
- EngineUnavailableError and EngineRenderError are recovered by the
  fallback encoder and never surface as a job failure on their own.
"""

from reelrender.constants.error_codes import get_error_spec, is_retryable
from reelrender.schemas.envelope import ErrorInfo


class ReelRenderError(Exception):
    """Base exception for all render service errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            retryable=is_retryable(self.code),
            suggested_fix=spec.get("suggested_fix"),
        )


# =============================================================================
# Asset Errors
# =============================================================================


class AssetUnavailableError(ReelRenderError):
    """A referenced image/audio could not be resolved locally or over the network."""

    code = "ASSET_UNAVAILABLE"
    status_code = 422
    message = "Asset unavailable"

    def __init__(self, reference: str, reason: str | None = None):
        self.reference = reference
        message = f"Asset unavailable: {reference}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


# =============================================================================
# Primary Engine Errors (recovered by fallback)
# =============================================================================


class EngineUnavailableError(ReelRenderError):
    """Primary engine is missing or its entry artifact is absent."""

    code = "ENGINE_UNAVAILABLE"
    status_code = 503
    message = "Primary render engine unavailable"


class EngineRenderError(ReelRenderError):
    """Primary engine started but failed during bundling, selection or rendering."""

    code = "ENGINE_RENDER_FAILED"
    message = "Primary render engine failed"


# =============================================================================
# Fallback Encoder Errors
# =============================================================================


class EncodingError(ReelRenderError):
    """Fallback encoder exited non-zero or timed out."""

    code = "ENCODING_FAILED"
    message = "Fallback encoding failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        returncode: int | None = None,
        output_tail: str | None = None,
    ):
        self.returncode = returncode
        self.output_tail = output_tail
        msg = message or self.message
        if output_tail:
            msg = f"{msg}: {output_tail.strip()[-500:]}"
        super().__init__(msg)


# =============================================================================
# Request / Job Errors
# =============================================================================


class ValidationError(ReelRenderError):
    """Malformed render request."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid render request"


class JobNotFoundError(ReelRenderError):
    """Render job not found."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Render job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Render job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class InvalidJobTransitionError(ReelRenderError):
    """A job record was asked to move backwards in its lifecycle."""

    code = "INVALID_JOB_TRANSITION"
    message = "Invalid job status transition"

    def __init__(self, job_id: str, current: str, requested: str):
        super().__init__(f"Job {job_id}: cannot move from {current} to {requested}")
