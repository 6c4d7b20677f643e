"""
Render pipeline for one job.

Stages and the progress band each one reports into:

     0-10  staging assets, bundling the template
    10-30  caption timing, composition, composition selection
    30-95  frame rendering (primary) or encoding (fallback)
    95-100 moving the output into place

The primary engine is tried first. Any failure in it switches the job to the
ffmpeg fallback; fallback failures and unavailable assets are fatal.
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import httpx

from reelrender.config import get_settings
from reelrender.constants.error_codes import is_recovered_by_fallback
from reelrender.exceptions import EngineRenderError, EngineUnavailableError, ReelRenderError
from reelrender.models.render_job import RenderMode
from reelrender.render.asset_materializer import AssetMaterializer, AudioAsset
from reelrender.render.base import EngineStage, PrimaryRenderer
from reelrender.render.captions import (
    CaptionSegment,
    build_caption_segments,
    estimate_narration_seconds,
)
from reelrender.render.composition import Composition, build_composition
from reelrender.render.fallback_encoder import FallbackEncoder
from reelrender.services.storage_service import LocalStorageService
from reelrender.utils.media_info import probe_duration_seconds

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

PRIMARY_RENDER_START = 30
RENDER_END = 95


@dataclass
class RenderInput:
    """Validated job input, independent of the HTTP schema."""

    images: list[tuple[str, int]]
    narration_audio_url: Optional[str] = None
    narration_duration_seconds: Optional[float] = None
    music_url: Optional[str] = None
    captions: list[CaptionSegment] = field(default_factory=list)
    narration_text: Optional[str] = None
    quality: str = "medium"

    @property
    def audio_declared(self) -> bool:
        return bool(self.narration_audio_url or self.music_url)


@dataclass
class RenderOutcome:
    """Where the finished video ended up and which path produced it."""

    output_path: str
    output_location: str
    output_size: int
    mode: RenderMode


class RenderPipeline:
    """Runs one job from staging to a finished MP4."""

    def __init__(
        self,
        job_id: str,
        primary: PrimaryRenderer | None = None,
        fallback: FallbackEncoder | None = None,
        storage: LocalStorageService | None = None,
        scratch_root: str | None = None,
        output_dir: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.job_id = job_id
        self.primary = primary
        self.fallback = fallback if fallback is not None else FallbackEncoder()
        self.storage = storage
        self.scratch_root = scratch_root
        self.output_dir = Path(output_dir or settings.render_output_dir)
        self.output_url_prefix = settings.render_output_url_prefix.rstrip("/")
        self.composition_id = settings.remotion_composition_id
        self.fps = settings.render_fps
        self.width = settings.render_output_width
        self.height = settings.render_output_height
        self.margin_ms = settings.composition_margin_ms
        self._transport = transport
        self._progress = 0
        self._progress_callback: Optional[ProgressCallback] = None
        self.engine_stage = EngineStage.NOT_BUNDLED

    def set_progress_callback(self, callback: ProgressCallback) -> None:
        """Set callback for progress updates."""
        self._progress_callback = callback

    def _update_progress(self, progress: int, stage: str) -> None:
        """Report progress; values below the last reported one are raised to it."""
        self._progress = max(self._progress, min(100, int(progress)))
        if self._progress_callback:
            self._progress_callback(self._progress, stage)

    def _band_reporter(self, start: int, end: int, stage: str) -> Callable[[float], None]:
        """Map an engine's [0, 1] fraction onto a progress band."""
        span = max(end - start, 0)

        def report(fraction: float) -> None:
            fraction = max(0.0, min(1.0, fraction))
            self._update_progress(start + int(span * fraction), stage)

        return report

    async def run(self, render_input: RenderInput) -> RenderOutcome:
        """
        Execute the full pipeline.

        Raises:
            AssetUnavailableError: If an image or the narration cannot be staged
            EncodingError: If the fallback encoder fails
        """
        materializer = AssetMaterializer(
            self.job_id,
            storage=self.storage,
            scratch_root=self.scratch_root,
            transport=self._transport,
        )
        try:
            composition = await self._prepare(render_input, materializer)
            work_dir = str(materializer.work_dir)
            rendered = os.path.join(work_dir, "output.mp4")

            mode = RenderMode.PRIMARY
            try:
                await self._render_primary(composition, rendered, work_dir)
            except ReelRenderError as e:
                if not is_recovered_by_fallback(e.code):
                    raise
                logger.warning(f"[RENDER] job={self.job_id} primary engine failed, using fallback: {e.message}")
                mode = RenderMode.FALLBACK
                if os.path.exists(rendered):
                    os.remove(rendered)
                await self._render_fallback(composition, rendered, render_input.audio_declared)

            self._update_progress(RENDER_END, "Finalizing")
            outcome = self._finalize(rendered, mode)
            logger.info(
                f"[RENDER] job={self.job_id} completed via {mode.value}: "
                f"{outcome.output_location} ({outcome.output_size} bytes)"
            )
            return outcome
        finally:
            materializer.cleanup()

    async def _prepare(self, render_input: RenderInput, materializer: AssetMaterializer) -> Composition:
        self._update_progress(1, "Staging assets")
        images = await materializer.materialize_images(render_input.images)
        self._update_progress(4, "Staging audio")

        narration: AudioAsset | None = None
        if render_input.narration_audio_url:
            narration = await materializer.materialize_audio(render_input.narration_audio_url, "narration")
        music = await materializer.materialize_optional_audio(render_input.music_url, "music")
        self._update_progress(6, "Timing captions")

        captions = render_input.captions
        if not captions and render_input.narration_text:
            captions = build_caption_segments(render_input.narration_text)

        narration_seconds = await self._narration_seconds(render_input, narration)
        composition = build_composition(
            images,
            captions,
            narration=narration,
            narration_duration_seconds=narration_seconds,
            music=music,
            quality=render_input.quality,
            fps=self.fps,
            width=self.width,
            height=self.height,
            margin_ms=self.margin_ms,
            url_for=materializer.public_url,
        )
        logger.info(
            f"[RENDER] job={self.job_id} composition: {len(composition.slides)} slides, "
            f"{len(composition.captions)} captions, {composition.timing.total_duration_ms}ms "
            f"({composition.timing.total_duration_frames} frames)"
        )
        return composition

    async def _narration_seconds(self, render_input: RenderInput, narration: AudioAsset | None) -> float | None:
        """Request hint first, then the staged file, then a words-per-minute estimate."""
        if render_input.narration_duration_seconds:
            return render_input.narration_duration_seconds
        if narration is None:
            return None
        probed = await asyncio.to_thread(probe_duration_seconds, narration.local_reference)
        if probed:
            return probed
        if render_input.narration_text:
            return estimate_narration_seconds(render_input.narration_text)
        return None

    async def _render_primary(self, composition: Composition, output_path: str, work_dir: str) -> None:
        if self.primary is None:
            raise EngineUnavailableError("No primary render engine available")

        engine = self.primary
        self.engine_stage = EngineStage.NOT_BUNDLED
        try:
            self._update_progress(8, "Bundling template")
            bundle_location = await engine.bundle()
            self.engine_stage = EngineStage.BUNDLED
            self._update_progress(10, "Selecting composition")

            selected = await engine.select_composition(
                bundle_location, self.composition_id, composition.input_props, work_dir
            )
            required = composition.timing.total_duration_frames
            if selected.duration_in_frames < required:
                raise EngineRenderError(
                    f"Composition '{selected.id}' is {selected.duration_in_frames} frames, "
                    f"timeline needs {required}"
                )
            self.engine_stage = EngineStage.COMPOSITION_SELECTED
            self._update_progress(PRIMARY_RENDER_START, "Rendering frames")

            self.engine_stage = EngineStage.RENDERING
            await engine.render(
                bundle_location,
                selected,
                composition.input_props,
                output_path,
                composition.quality,
                work_dir,
                on_progress=self._band_reporter(PRIMARY_RENDER_START, RENDER_END, "Rendering frames"),
            )
            self.engine_stage = EngineStage.DONE
        except ReelRenderError:
            raise
        except Exception as e:
            logger.exception(f"[RENDER] job={self.job_id} unexpected primary engine error")
            raise EngineRenderError(f"{type(e).__name__}: {e}") from e

    async def _render_fallback(self, composition: Composition, output_path: str, audio_declared: bool) -> None:
        start = max(self._progress, PRIMARY_RENDER_START)
        self._update_progress(start, "Encoding slideshow")
        await self.fallback.encode(
            self.job_id,
            composition,
            output_path,
            audio_declared=audio_declared,
            on_progress=self._band_reporter(start, RENDER_END, "Encoding slideshow"),
        )

    def _finalize(self, rendered: str, mode: RenderMode) -> RenderOutcome:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.output_dir / f"{self.job_id}.mp4"
        shutil.move(rendered, final_path)
        return RenderOutcome(
            output_path=str(final_path),
            output_location=f"{self.output_url_prefix}/{self.job_id}.mp4",
            output_size=final_path.stat().st_size,
            mode=mode,
        )
