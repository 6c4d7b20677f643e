"""
Composition timing and render input properties.

Pure computation: given staged images, caption segments and optional audio,
work out how long the video is and where every slide and caption sits on the
timeline. The timeline always covers the longest of the image, caption and
narration tracks, plus a closing margin.

Inputs are assumed valid (non-empty image list, positive durations); the
request layer rejects anything else before a job starts.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from reelrender.render.asset_materializer import AudioAsset, ImageAsset
from reelrender.render.captions import CaptionSegment


@dataclass(frozen=True)
class QualityPreset:
    """Encoder settings for a quality tier."""

    name: str
    crf: int
    video_bitrate: str


QUALITY_PRESETS: dict[str, QualityPreset] = {
    "low": QualityPreset(name="low", crf=28, video_bitrate="2M"),
    "medium": QualityPreset(name="medium", crf=22, video_bitrate="4M"),
    "high": QualityPreset(name="high", crf=18, video_bitrate="8M"),
}

DEFAULT_CAPTION_STYLE: dict[str, Any] = {
    "font": "Inter, system-ui, sans-serif",
    "fontSize": 56,
    "color": "#FFFFFF",
    "backgroundColor": "rgba(0,0,0,0.7)",
    "position": "bottom",
    "animation": "fade",
    "transition": "fade",
}


def get_quality_preset(quality: str) -> QualityPreset:
    return QUALITY_PRESETS[quality]


def _ms(seconds: float) -> int:
    # Round to the nearest ms first so 1.8 s does not become 1801 ms
    return int(round(seconds * 1000))


def frames_for(duration_ms: int, fps: int) -> int:
    """ceil(duration_ms / 1000 * fps) without float error."""
    return -(-duration_ms * fps // 1000)


@dataclass(frozen=True)
class CompositionTiming:
    """Derived timeline length."""

    total_duration_ms: int
    total_duration_frames: int
    fps: int
    image_track_ms: int
    caption_track_ms: int
    audio_track_ms: int
    margin_ms: int


@dataclass(frozen=True)
class SlideWindow:
    sequence_index: int
    local_reference: str
    start_ms: int
    end_ms: int

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


@dataclass(frozen=True)
class CaptionWindow:
    text: str
    start_ms: int
    end_ms: int


@dataclass(frozen=True)
class AudioTrack:
    role: str  # narration, music
    local_reference: str
    duration_ms: Optional[int] = None


@dataclass(frozen=True)
class Composition:
    """Everything a renderer needs for one job."""

    timing: CompositionTiming
    slides: list[SlideWindow]
    captions: list[CaptionWindow]
    audio_tracks: list[AudioTrack]
    quality: QualityPreset
    width: int
    height: int
    input_props: dict[str, Any] = field(default_factory=dict)

    @property
    def music(self) -> AudioTrack | None:
        return next((t for t in self.audio_tracks if t.role == "music"), None)

    @property
    def narration(self) -> AudioTrack | None:
        return next((t for t in self.audio_tracks if t.role == "narration"), None)


def build_composition(
    images: Sequence[ImageAsset],
    captions: Sequence[CaptionSegment],
    *,
    narration: AudioAsset | None = None,
    narration_duration_seconds: float | None = None,
    music: AudioAsset | None = None,
    quality: str = "medium",
    fps: int = 30,
    width: int = 1080,
    height: int = 1920,
    margin_ms: int = 500,
    url_for: Callable[[str], str] | None = None,
) -> Composition:
    """
    Compute timeline and renderer input properties.

    Args:
        images: Staged images; ordered by sequence_index here regardless of input order
        captions: Caption segments (possibly empty)
        narration: Staged narration audio, if any
        narration_duration_seconds: Narration length hint
        music: Staged background music, if any
        quality: Quality tier (low, medium, high)
        fps: Frames per second
        width: Output width
        height: Output height
        margin_ms: Tail added after the longest track
        url_for: Maps a staged local path to the URL the primary engine loads

    Returns:
        Composition (equal inputs give an equal Composition)
    """
    url_for = url_for or (lambda ref: ref)
    ordered = sorted(images, key=lambda img: img.sequence_index)

    slides: list[SlideWindow] = []
    cursor = 0
    for img in ordered:
        local = img.local_reference or img.source_reference
        slides.append(
            SlideWindow(
                sequence_index=img.sequence_index,
                local_reference=local,
                start_ms=cursor,
                end_ms=cursor + img.display_duration_ms,
            )
        )
        cursor += img.display_duration_ms
    image_track_ms = cursor

    caption_windows = [
        CaptionWindow(
            text=seg.text,
            start_ms=_ms(seg.start_time_seconds),
            end_ms=_ms(seg.end_time_seconds),
        )
        for seg in captions
    ]
    caption_track_ms = max((c.end_ms for c in caption_windows), default=0)

    # Background music never stretches the timeline; it is looped or cut to fit
    narration_ms = _ms(narration_duration_seconds) if narration_duration_seconds else 0
    audio_track_ms = narration_ms

    total_ms = max(image_track_ms, caption_track_ms, audio_track_ms) + margin_ms
    timing = CompositionTiming(
        total_duration_ms=total_ms,
        total_duration_frames=frames_for(total_ms, fps),
        fps=fps,
        image_track_ms=image_track_ms,
        caption_track_ms=caption_track_ms,
        audio_track_ms=audio_track_ms,
        margin_ms=margin_ms,
    )

    audio_tracks: list[AudioTrack] = []
    if narration is not None:
        audio_tracks.append(
            AudioTrack(role="narration", local_reference=narration.local_reference, duration_ms=narration_ms or None)
        )
    if music is not None:
        audio_tracks.append(AudioTrack(role="music", local_reference=music.local_reference))

    input_props: dict[str, Any] = {
        "images": [{"url": url_for(s.local_reference), "duration": s.duration_ms} for s in slides],
        "captions": [{"text": c.text, "startTime": c.start_ms, "endTime": c.end_ms} for c in caption_windows],
        "style": dict(DEFAULT_CAPTION_STYLE),
        "durationInFrames": timing.total_duration_frames,
    }
    if music is not None:
        input_props["musicUrl"] = url_for(music.local_reference)
    if narration is not None:
        input_props["narrationAudio"] = url_for(narration.local_reference)

    return Composition(
        timing=timing,
        slides=slides,
        captions=caption_windows,
        audio_tracks=audio_tracks,
        quality=get_quality_preset(quality),
        width=width,
        height=height,
        input_props=input_props,
    )
