"""
Primary renderer selection.

Runs once at startup. `render_engine` picks the behaviour:

- auto: probe Remotion and use it only if the probe passes
- remotion: always use Remotion; failures at render time still fall back
- ffmpeg: no primary engine, every job uses the fallback encoder
"""

import logging
from typing import Optional

from reelrender.config import Settings, get_settings
from reelrender.render.base import PrimaryRenderer
from reelrender.render.remotion_renderer import RemotionRenderer

logger = logging.getLogger(__name__)


def select_primary_renderer(settings: Settings | None = None) -> tuple[Optional[PrimaryRenderer], Optional[str]]:
    """
    Choose the primary renderer for this process.

    Returns:
        (renderer or None, reason it is not used)
    """
    settings = settings or get_settings()
    engine = settings.render_engine

    if engine == "ffmpeg":
        logger.info("[Factory] Primary engine disabled (render_engine=ffmpeg)")
        return None, "disabled by configuration"

    renderer = RemotionRenderer(
        project_dir=settings.remotion_project_dir,
        entry_point=settings.remotion_entry_point,
        npx_path=settings.remotion_npx_path,
    )
    available, reason = renderer.probe()

    if engine == "remotion":
        if not available:
            logger.warning(f"[Factory] Remotion forced but probe failed: {reason}")
        else:
            logger.info("[Factory] Using Remotion (forced)")
        return renderer, None

    if not available:
        logger.warning(f"[Factory] Remotion unavailable, jobs will use the ffmpeg fallback: {reason}")
        return None, reason

    logger.info("[Factory] Using Remotion")
    return renderer, None
