"""Tests for the per-job render pipeline.

Features:
- Primary engine path with banded progress
- Fallback on any primary engine failure
- Fatal asset and encoding errors
- Caption and narration duration sources
"""

from pathlib import Path
from typing import Any, Optional
from unittest.mock import patch

import httpx
import pytest

from conftest import FakeFFmpegRunner
from reelrender.exceptions import AssetUnavailableError, EncodingError, EngineRenderError, EngineUnavailableError
from reelrender.models.render_job import RenderMode
from reelrender.render.base import EngineStage, PrimaryRenderer, SelectedComposition
from reelrender.render.captions import CaptionSegment
from reelrender.render.fallback_encoder import FallbackEncoder
from reelrender.render.pipeline import RenderInput, RenderPipeline


class FakePrimary(PrimaryRenderer):
    """In-process primary engine; fail_at names the step that raises."""

    name = "fake"

    def __init__(self, fail_at: Optional[str] = None, error: Optional[Exception] = None, frames: Optional[int] = None):
        self.fail_at = fail_at
        self.error = error or EngineRenderError("boom")
        self.frames = frames
        self.props: dict[str, Any] = {}

    def _maybe_fail(self, step: str) -> None:
        if self.fail_at == step:
            raise self.error

    def probe(self):
        return True, None

    async def bundle(self) -> str:
        self._maybe_fail("bundle")
        return "/tmp/fake-bundle"

    async def select_composition(self, bundle_location, composition_id, input_props, work_dir):
        self._maybe_fail("select")
        self.props = input_props
        frames = self.frames if self.frames is not None else input_props["durationInFrames"]
        return SelectedComposition(composition_id, 1080, 1920, 30, frames)

    async def render(self, bundle_location, composition, input_props, output_path, quality, work_dir, on_progress=None):
        self._maybe_fail("render")
        on_progress(0.5)
        on_progress(0.25)
        on_progress(1.0)
        Path(output_path).write_bytes(b"primary-mp4")
        return output_path


@pytest.fixture
def photos(make_image) -> list[tuple[str, int]]:
    return [(str(make_image("front.png")), 3000), (str(make_image("kitchen.png", color="orange")), 3000)]


def _pipeline(primary=None, runner=None, transport=None, job_id="job1") -> RenderPipeline:
    return RenderPipeline(
        job_id,
        primary=primary,
        fallback=FallbackEncoder(runner=runner or FakeFFmpegRunner()),
        transport=transport,
    )


class TestPrimaryPath:
    @pytest.mark.asyncio
    async def test_completes_with_primary(self, photos, output_dir, scratch_dir):
        primary = FakePrimary()
        runner = FakeFFmpegRunner()
        pipeline = _pipeline(primary, runner)

        outcome = await pipeline.run(RenderInput(images=photos, narration_text="Welcome home."))

        assert outcome.mode == RenderMode.PRIMARY
        assert outcome.output_location == "/renders/job1.mp4"
        assert Path(outcome.output_path) == output_dir / "job1.mp4"
        assert (output_dir / "job1.mp4").read_bytes() == b"primary-mp4"
        assert outcome.output_size == len(b"primary-mp4")
        assert runner.calls == []
        assert pipeline.engine_stage == EngineStage.DONE
        assert not (scratch_dir / "job1").exists()

    @pytest.mark.asyncio
    async def test_props_point_at_scratch_urls(self, photos):
        primary = FakePrimary()
        await _pipeline(primary).run(RenderInput(images=photos))

        urls = [img["url"] for img in primary.props["images"]]
        assert urls == [
            "http://localhost:8000/api/scratch/job1/img_000.png",
            "http://localhost:8000/api/scratch/job1/img_001.png",
        ]

    @pytest.mark.asyncio
    async def test_progress_bands(self, photos):
        seen: list[tuple[int, str]] = []
        pipeline = _pipeline(FakePrimary())
        pipeline.set_progress_callback(lambda percent, stage: seen.append((percent, stage)))

        await pipeline.run(RenderInput(images=photos))

        percents = [p for p, _ in seen]
        assert percents == sorted(percents)
        assert (10, "Selecting composition") in seen
        assert (30, "Rendering frames") in seen
        assert (62, "Rendering frames") in seen  # 30 + 65 * 0.5
        assert seen[-1] == (95, "Finalizing")


class TestFallback:
    @pytest.mark.parametrize("fail_at", ["bundle", "select", "render"])
    @pytest.mark.asyncio
    async def test_engine_error_falls_back(self, photos, output_dir, fail_at):
        runner = FakeFFmpegRunner()
        pipeline = _pipeline(FakePrimary(fail_at=fail_at), runner)

        outcome = await pipeline.run(RenderInput(images=photos))

        assert outcome.mode == RenderMode.FALLBACK
        assert len(runner.calls) == 1
        assert (output_dir / "job1.mp4").exists()

    @pytest.mark.asyncio
    async def test_unexpected_error_falls_back(self, photos):
        runner = FakeFFmpegRunner()
        primary = FakePrimary(fail_at="render", error=RuntimeError("chromium crashed"))

        outcome = await _pipeline(primary, runner).run(RenderInput(images=photos))

        assert outcome.mode == RenderMode.FALLBACK

    @pytest.mark.asyncio
    async def test_unavailable_engine_falls_back(self, photos):
        primary = FakePrimary(fail_at="bundle", error=EngineUnavailableError("entry point missing"))
        outcome = await _pipeline(primary).run(RenderInput(images=photos))
        assert outcome.mode == RenderMode.FALLBACK

    @pytest.mark.asyncio
    async def test_short_composition_falls_back(self, photos):
        outcome = await _pipeline(FakePrimary(frames=10)).run(RenderInput(images=photos))
        assert outcome.mode == RenderMode.FALLBACK

    @pytest.mark.asyncio
    async def test_no_primary(self, photos):
        seen: list[int] = []
        pipeline = _pipeline(None)
        pipeline.set_progress_callback(lambda percent, stage: seen.append(percent))

        outcome = await pipeline.run(RenderInput(images=photos))

        assert outcome.mode == RenderMode.FALLBACK
        assert seen == sorted(seen)
        assert 30 in seen
        assert seen[-1] == 95

    @pytest.mark.asyncio
    async def test_fallback_failure_is_fatal(self, photos, scratch_dir):
        pipeline = _pipeline(FakePrimary(fail_at="render"), FakeFFmpegRunner(returncode=1))

        with pytest.raises(EncodingError):
            await pipeline.run(RenderInput(images=photos))
        assert not (scratch_dir / "job1").exists()


class TestAssets:
    @pytest.mark.asyncio
    async def test_unreachable_image_is_fatal(self, photos):
        runner = FakeFFmpegRunner()
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        images = photos + [("https://listings.example.com/missing.jpg", 3000)]

        with pytest.raises(AssetUnavailableError, match="missing.jpg"):
            await _pipeline(FakePrimary(), runner, transport).run(RenderInput(images=images))
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_missing_music_is_skipped(self, photos):
        primary = FakePrimary()
        transport = httpx.MockTransport(lambda request: httpx.Response(404))

        outcome = await _pipeline(primary, transport=transport).run(
            RenderInput(images=photos, music_url="https://cdn.example.com/music.mp3")
        )

        assert outcome.mode == RenderMode.PRIMARY
        assert "musicUrl" not in primary.props

    @pytest.mark.asyncio
    async def test_missing_narration_is_fatal(self, photos):
        with pytest.raises(AssetUnavailableError):
            await _pipeline(FakePrimary()).run(
                RenderInput(images=photos, narration_audio_url="/nowhere/voice.mp3")
            )


class TestCaptionsAndNarration:
    @pytest.mark.asyncio
    async def test_captions_from_narration_text(self, photos):
        primary = FakePrimary()
        await _pipeline(primary).run(
            RenderInput(images=photos, narration_text="Welcome home. Three bedrooms with a view.")
        )

        assert [c["startTime"] for c in primary.props["captions"]] == [500, 1800]

    @pytest.mark.asyncio
    async def test_precomputed_captions_win(self, photos):
        primary = FakePrimary()
        captions = [CaptionSegment(text="Just listed", start_time_seconds=0.0, duration_seconds=2.0)]

        await _pipeline(primary).run(RenderInput(images=photos, captions=captions, narration_text="Ignored."))

        assert primary.props["captions"] == [{"text": "Just listed", "startTime": 0, "endTime": 2000}]

    @pytest.mark.asyncio
    async def test_narration_hint(self, photos, make_audio):
        primary = FakePrimary()
        narration = make_audio("voice.mp3")

        await _pipeline(primary).run(
            RenderInput(images=photos, narration_audio_url=str(narration), narration_duration_seconds=12.0)
        )

        # (12000 + 500) ms at 30 fps
        assert primary.props["durationInFrames"] == 375
        assert primary.props["narrationAudio"].endswith("/api/scratch/job1/narration.mp3")

    @pytest.mark.asyncio
    async def test_narration_probed(self, photos, make_audio):
        primary = FakePrimary()
        narration = make_audio("voice.mp3")

        with patch("reelrender.render.pipeline.probe_duration_seconds", return_value=9.5):
            await _pipeline(primary).run(RenderInput(images=photos, narration_audio_url=str(narration)))

        assert primary.props["durationInFrames"] == 300

    @pytest.mark.asyncio
    async def test_narration_estimated_from_text(self, photos, make_audio):
        primary = FakePrimary()
        narration = make_audio("voice.mp3")
        text = " ".join(["word"] * 25) + "."

        with patch("reelrender.render.pipeline.probe_duration_seconds", return_value=None):
            await _pipeline(primary).run(
                RenderInput(images=photos, narration_audio_url=str(narration), narration_text=text)
            )

        # 25 words at 150 wpm = 10 s, + 0.5 s margin
        assert primary.props["durationInFrames"] == 315
