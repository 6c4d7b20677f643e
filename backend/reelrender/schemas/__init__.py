from reelrender.schemas.envelope import ErrorInfo, ErrorResponse
from reelrender.schemas.render import (
    ActiveJobResponse,
    CaptionInput,
    ImageInput,
    RenderRequest,
    RenderStatusResponse,
    RenderSubmitResponse,
)

__all__ = [
    "ErrorInfo",
    "ErrorResponse",
    "ImageInput",
    "CaptionInput",
    "RenderRequest",
    "RenderSubmitResponse",
    "RenderStatusResponse",
    "ActiveJobResponse",
]
