"""Media file information utilities using FFprobe."""

import json
import logging
import subprocess
from typing import Optional

from reelrender.config import get_settings

logger = logging.getLogger(__name__)

_FFPROBE_TIMEOUT_SECONDS = 30


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=_FFPROBE_TIMEOUT_SECONDS)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise RuntimeError(f"ffprobe could not run: {e}") from e
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}") from e


def get_media_duration(file_path: str) -> int:
    """
    Get media file duration in milliseconds.

    Raises:
        RuntimeError: If ffprobe fails or duration not found
    """
    data = _run_ffprobe(file_path, "-show_format")
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise RuntimeError(f"Duration not found in: {file_path}")

    return int(float(format_info["duration"]) * 1000)


def probe_duration_seconds(file_path: str) -> Optional[float]:
    """Duration in seconds, or None when the file cannot be probed."""
    try:
        return get_media_duration(file_path) / 1000
    except RuntimeError as e:
        logger.warning(f"[RENDER] Could not probe duration of {file_path}: {e}")
        return None
