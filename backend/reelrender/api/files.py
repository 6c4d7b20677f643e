"""Serve staged job assets and finished renders from local disk.

The primary engine loads staged assets back over HTTP, so /api/scratch must
be reachable from the renderer.
"""

from pathlib import Path

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from reelrender.config import get_settings

router = APIRouter()

_MEDIA_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".mp4": "video/mp4",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
}


def resolve_under(root: str, relative: str) -> Path:
    """Resolve a request path below root; anything escaping it is a 404."""
    base = Path(root).resolve()
    file_path = (base / relative).resolve()
    if not file_path.is_relative_to(base) or not file_path.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )
    return file_path


def _file_response(file_path: Path) -> FileResponse:
    media_type = _MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream")
    return FileResponse(path=str(file_path), media_type=media_type, filename=file_path.name)


@router.get("/api/scratch/{asset_path:path}")
async def serve_scratch_asset(asset_path: str) -> FileResponse:
    """Serve a staged asset of an in-flight job."""
    return _file_response(resolve_under(get_settings().scratch_dir, asset_path))


@router.get(get_settings().render_output_url_prefix.rstrip("/") + "/{file_name}")
async def serve_render_output(file_name: str) -> FileResponse:
    """Serve a finished render."""
    return _file_response(resolve_under(get_settings().render_output_dir, file_name))
