"""
FFmpeg fallback encoder.

Used when the primary engine is unavailable or fails. Produces a plain
slideshow: every image scaled/padded to the vertical frame and held for its
display duration, concatenated, with at most one background audio track.
Captions are not burned in.

The last slide is held until the end of the composition timeline so a long
narration is never cut off.
"""

import logging
import os
import re
from pathlib import Path
from typing import Awaitable, Callable, Optional

from reelrender.config import get_settings
from reelrender.exceptions import EncodingError
from reelrender.render.composition import Composition
from reelrender.utils.process import ProcessResult, run_process

logger = logging.getLogger(__name__)

ProcessRunner = Callable[..., Awaitable[ProcessResult]]

_OUT_TIME_RE = re.compile(r"^out_time_(?:us|ms)=(\d+)$")


def parse_progress_line(line: str, total_duration_ms: int) -> Optional[float]:
    """Fraction [0, 1] from an ffmpeg `-progress` line, or None if not a progress line."""
    if line == "progress=end":
        return 1.0
    match = _OUT_TIME_RE.match(line)
    if not match or total_duration_ms <= 0:
        return None
    # ffmpeg reports both keys in microseconds
    return min(int(match.group(1)) / (total_duration_ms * 1000), 1.0)


class FallbackEncoder:
    """Caption-free slideshow renderer built on a single ffmpeg invocation."""

    def __init__(
        self,
        ffmpeg_path: str | None = None,
        timeout_seconds: float | None = None,
        max_output_bytes: int | None = None,
        runner: ProcessRunner | None = None,
    ):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.timeout_seconds = timeout_seconds or settings.fallback_timeout_seconds
        self.max_output_bytes = max_output_bytes or settings.fallback_max_output_bytes
        self.preset = settings.fallback_preset
        self.audio_bitrate = settings.render_audio_bitrate
        self.sample_rate = settings.render_audio_sample_rate
        self._runner = runner or run_process

    def slide_hold_seconds(self, composition: Composition) -> list[float]:
        """Per-slide hold times; the last slide absorbs any extra timeline length."""
        holds_ms = [slide.duration_ms for slide in composition.slides]
        extra = composition.timing.total_duration_ms - composition.timing.image_track_ms
        if holds_ms and extra > 0:
            holds_ms[-1] += extra
        return [ms / 1000 for ms in holds_ms]

    def select_audio(self, composition: Composition, audio_declared: bool) -> tuple[Optional[str], bool]:
        """
        Pick the single background track.

        Returns:
            (audio_path, synthesize_silence). Music wins over narration. A
            declared track whose file is missing becomes generated silence.
        """
        track = composition.music or composition.narration
        if track is not None and os.path.isfile(track.local_reference):
            return track.local_reference, False
        if track is not None or audio_declared:
            return None, True
        return None, False

    def build_command(
        self,
        composition: Composition,
        output_path: str,
        audio_declared: bool = False,
    ) -> list[str]:
        """Build the ffmpeg command without executing it.

        Args:
            composition: Timeline to encode
            output_path: Output MP4 path
            audio_declared: Whether the request named any audio at all

        Returns:
            FFmpeg command as list[str]
        """
        width, height = composition.width, composition.height
        fps = composition.timing.fps
        total_s = composition.timing.total_duration_ms / 1000
        holds = self.slide_hold_seconds(composition)
        count = len(composition.slides)

        cmd = [self.ffmpeg_path, "-y", "-nostdin"]
        for slide, hold in zip(composition.slides, holds):
            cmd += ["-loop", "1", "-t", f"{hold:.3f}", "-i", slide.local_reference]

        audio_path, silence = self.select_audio(composition, audio_declared)
        has_audio = audio_path is not None or silence
        if audio_path is not None:
            # Loop short music; -t below cuts it to the video length
            cmd += ["-stream_loop", "-1", "-i", audio_path]
        elif silence:
            cmd += [
                "-f", "lavfi",
                "-t", f"{total_s:.3f}",
                "-i", f"anullsrc=r={self.sample_rate}:cl=stereo",
            ]

        filters = []
        for i in range(count):
            filters.append(
                f"[{i}:v]scale={width}:{height}:force_original_aspect_ratio=decrease,"
                f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps},format=yuv420p[v{i}]"
            )
        concat_inputs = "".join(f"[v{i}]" for i in range(count))
        filters.append(f"{concat_inputs}concat=n={count}:v=1:a=0[outv]")

        cmd += ["-filter_complex", ";".join(filters), "-map", "[outv]"]
        if has_audio:
            cmd += ["-map", f"{count}:a:0"]

        cmd += [
            "-c:v", "libx264",
            "-preset", self.preset,
            "-crf", str(composition.quality.crf),
            "-pix_fmt", "yuv420p",
            "-r", str(fps),
        ]
        if has_audio:
            cmd += ["-c:a", "aac", "-b:a", self.audio_bitrate, "-ar", str(self.sample_rate)]
        cmd += [
            "-t", f"{total_s:.3f}",
            "-movflags", "+faststart",
            "-progress", "pipe:1",
            "-nostats",
            output_path,
        ]
        return cmd

    async def encode(
        self,
        job_id: str,
        composition: Composition,
        output_path: str,
        audio_declared: bool = False,
        on_progress: Callable[[float], None] | None = None,
    ) -> str:
        """
        Encode the composition to an MP4.

        Returns:
            output_path

        Raises:
            EncodingError: If ffmpeg is missing, exits non-zero, times out or writes nothing
        """
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(composition, output_path, audio_declared)
        total_ms = composition.timing.total_duration_ms
        logger.info(
            f"[FALLBACK] job={job_id} encoding {len(composition.slides)} slides, "
            f"{total_ms}ms, crf={composition.quality.crf}"
        )
        logger.debug(f"[FALLBACK] job={job_id} command: {' '.join(cmd)}")

        def handle_line(line: str) -> None:
            fraction = parse_progress_line(line, total_ms)
            if fraction is not None and on_progress:
                on_progress(fraction)

        try:
            result = await self._runner(
                cmd,
                timeout=self.timeout_seconds,
                max_output_bytes=self.max_output_bytes,
                on_line=handle_line,
            )
        except FileNotFoundError as e:
            raise EncodingError(f"ffmpeg not found at {self.ffmpeg_path}") from e

        if result.timed_out:
            raise EncodingError(
                f"ffmpeg timed out after {self.timeout_seconds:.0f}s", output_tail=result.output_tail
            )
        if result.returncode != 0:
            raise EncodingError(
                f"ffmpeg exited with code {result.returncode}",
                returncode=result.returncode,
                output_tail=result.output_tail,
            )
        if not os.path.isfile(output_path) or os.path.getsize(output_path) == 0:
            raise EncodingError("ffmpeg produced no output file")

        logger.info(f"[FALLBACK] job={job_id} encoded {output_path}")
        return output_path
