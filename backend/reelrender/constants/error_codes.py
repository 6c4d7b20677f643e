"""Error codes dictionary for the render service.

Single source of truth for every error code, whether it is retryable, and
whether the render pipeline recovers from it by switching to the fallback
encoder. Used by exception handlers to build machine-readable responses.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    recovered_by_fallback: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Asset errors (fatal to the job)
    # ==========================================================================
    "ASSET_UNAVAILABLE": {
        "retryable": False,
        "suggested_fix": "Check that the image/audio reference exists and is reachable",
    },
    # ==========================================================================
    # Primary engine errors (recovered locally)
    # ==========================================================================
    "ENGINE_UNAVAILABLE": {
        "retryable": False,
        "recovered_by_fallback": True,
        "suggested_fix": "Install the Remotion toolchain and check the entry point path",
    },
    "ENGINE_RENDER_FAILED": {
        "retryable": False,
        "recovered_by_fallback": True,
    },
    # ==========================================================================
    # Fallback encoder errors (fatal, no further recovery)
    # ==========================================================================
    "ENCODING_FAILED": {
        "retryable": False,
        "suggested_fix": "Inspect the ffmpeg output tail in the error detail",
    },
    # ==========================================================================
    # Request and job errors
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Provide at least one image with a positive duration",
    },
    "JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Submit a new render job; job ids are not persisted across restarts",
    },
    "INVALID_JOB_TRANSITION": {
        "retryable": False,
    },
    "INTERNAL_ERROR": {
        "retryable": True,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Return the spec for an error code, or an empty spec when unknown."""
    return ERROR_CODES.get(code, {})


def is_retryable(code: str) -> bool:
    return get_error_spec(code).get("retryable", False)


def is_recovered_by_fallback(code: str) -> bool:
    return get_error_spec(code).get("recovered_by_fallback", False)
