"""
Render job orchestration.

submit() records a pending job and returns at once; the pipeline runs as a
background asyncio task. Every state change goes through the job store, so
pollers always see the latest progress. A task never raises: whatever goes
wrong is recorded on the job as `failed`.
"""

import asyncio
import contextlib
import logging
import uuid
from typing import Optional

import httpx

from reelrender.config import get_settings
from reelrender.exceptions import InvalidJobTransitionError, ReelRenderError
from reelrender.models.render_job import RenderJob, RenderMode, RenderStatus
from reelrender.render.base import PrimaryRenderer
from reelrender.render.captions import CaptionSegment
from reelrender.render.factory import select_primary_renderer
from reelrender.render.fallback_encoder import FallbackEncoder
from reelrender.render.pipeline import RenderInput, RenderPipeline
from reelrender.schemas.render import RenderRequest
from reelrender.services.job_store import InMemoryJobStore, JobStore
from reelrender.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)


def to_render_input(request: RenderRequest) -> RenderInput:
    """Convert the HTTP request body into pipeline input."""
    captions = [
        CaptionSegment(text=c.text, start_time_seconds=c.start_time, duration_seconds=c.duration)
        for c in request.captions or []
    ]
    return RenderInput(
        images=[(img.url, img.duration_ms) for img in request.images],
        narration_audio_url=request.narration_audio_url,
        narration_duration_seconds=request.narration_duration_seconds,
        music_url=request.music_url,
        captions=captions,
        narration_text=request.narration_text,
        quality=request.quality,
    )


class RenderService:
    """Creates render jobs and runs them in the background."""

    def __init__(
        self,
        store: JobStore | None = None,
        primary: PrimaryRenderer | None = None,
        primary_unavailable_reason: str | None = None,
        fallback: FallbackEncoder | None = None,
        storage: LocalStorageService | None = None,
        scratch_root: str | None = None,
        output_dir: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_concurrent_jobs: int | None = None,
    ):
        settings = get_settings()
        self.store = store if store is not None else InMemoryJobStore()
        self.primary = primary
        self.primary_unavailable_reason = primary_unavailable_reason
        self.fallback = fallback
        self.storage = storage
        self.scratch_root = scratch_root
        self.output_dir = output_dir
        self._transport = transport
        self._tasks: dict[str, asyncio.Task] = {}

        limit = settings.render_max_concurrent_jobs if max_concurrent_jobs is None else max_concurrent_jobs
        self._semaphore: Optional[asyncio.Semaphore] = asyncio.Semaphore(limit) if limit > 0 else None

    @property
    def mode(self) -> RenderMode:
        """Execution path new jobs will start on."""
        return RenderMode.PRIMARY if self.primary is not None else RenderMode.FALLBACK

    def submit(self, request: RenderRequest) -> str:
        """
        Create a pending job and start its pipeline.

        Must be called from a running event loop.

        Returns:
            The new job id
        """
        job_id = str(uuid.uuid4())
        self.store.create(RenderJob(id=job_id))
        render_input = to_render_input(request)

        task = asyncio.create_task(self._run_job(job_id, render_input), name=f"render-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._on_task_done(job_id, t))

        logger.info(f"[JOBS] job={job_id} submitted ({len(render_input.images)} images, mode={self.mode.value})")
        return job_id

    def get_status(self, job_id: str) -> RenderJob | None:
        return self.store.get(job_id)

    def list_active(self) -> list[RenderJob]:
        return self.store.list_by_status([RenderStatus.PENDING, RenderStatus.RENDERING])

    async def wait_for(self, job_id: str) -> RenderJob | None:
        """Wait for a job's pipeline to finish and return its final record."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get_status(job_id)

    async def shutdown(self) -> None:
        """Wait for every in-flight job."""
        tasks = list(self._tasks.values())
        if tasks:
            logger.info(f"[JOBS] Waiting for {len(tasks)} in-flight jobs")
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_task_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            logger.warning(f"[JOBS] job={job_id} task cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[JOBS] job={job_id} task raised: {exc!r}", exc_info=exc)

    def _report_progress(self, job_id: str, percent: int, stage: str) -> None:
        self.store.update(job_id, lambda job: job.advance(percent, stage))

    def _fail(self, job_id: str, detail: str) -> None:
        try:
            self.store.update(job_id, lambda job: job.fail(detail))
        except InvalidJobTransitionError as e:
            logger.error(f"[JOBS] job={job_id} could not record failure: {e.message}")

    async def _run_job(self, job_id: str, render_input: RenderInput) -> None:
        limiter = self._semaphore if self._semaphore is not None else contextlib.nullcontext()
        async with limiter:
            try:
                self.store.update(job_id, lambda job: job.mark_rendering("Starting"))
                pipeline = RenderPipeline(
                    job_id,
                    primary=self.primary,
                    fallback=self.fallback,
                    storage=self.storage,
                    scratch_root=self.scratch_root,
                    output_dir=self.output_dir,
                    transport=self._transport,
                )
                pipeline.set_progress_callback(lambda percent, stage: self._report_progress(job_id, percent, stage))
                outcome = await pipeline.run(render_input)
                self.store.update(
                    job_id,
                    lambda job: job.complete(outcome.output_location, outcome.output_size, outcome.mode),
                )
            except ReelRenderError as e:
                logger.error(f"[JOBS] job={job_id} failed: [{e.code}] {e.message}")
                self._fail(job_id, e.message)
            except Exception as e:
                logger.exception(f"[JOBS] job={job_id} failed with unexpected error")
                self._fail(job_id, f"Internal error: {e}")


_render_service: RenderService | None = None


def get_render_service() -> RenderService:
    """Process-wide service; the primary renderer is chosen on first use."""
    global _render_service
    if _render_service is None:
        primary, reason = select_primary_renderer()
        _render_service = RenderService(primary=primary, primary_unavailable_reason=reason)
    return _render_service
