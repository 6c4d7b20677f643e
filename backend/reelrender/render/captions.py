"""
Caption timing from free-form narration text.

Timing is a pacing heuristic, not TTS alignment: durations are estimated from
word counts, so captions drift from the actual narration audio for unusually
fast or slow voices. Callers that have real alignment data should pass
precomputed captions instead.

Pacing:
- each fragment lasts max(words * 0.17 + 0.5, 1.0) seconds
- the first fragment starts at 0.5s
- fragments are separated by a 0.3s pause
"""

import re
from dataclasses import dataclass

SECONDS_PER_WORD = 0.17
FRAGMENT_BASE_SECONDS = 0.5
LEADING_PAUSE_SECONDS = 0.5
SENTENCE_PAUSE_SECONDS = 0.3
MIN_SEGMENT_SECONDS = 1.0

# Spoken narration pace used by the TTS providers (words per minute)
NARRATION_WORDS_PER_MINUTE = 150

# A run of non-terminal characters followed by its terminal punctuation, or a
# trailing run without punctuation.
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


@dataclass(frozen=True)
class CaptionSegment:
    """A timed caption fragment."""

    text: str
    start_time_seconds: float
    duration_seconds: float

    @property
    def end_time_seconds(self) -> float:
        return self.start_time_seconds + self.duration_seconds


def split_sentences(text: str) -> list[str]:
    """Split text on . ! ? keeping the punctuation with the preceding fragment."""
    if not text or not text.strip():
        return []
    fragments = (m.group(0).strip() for m in _SENTENCE_RE.finditer(text))
    # Bare punctuation ("..." between sentences) is not a fragment
    return [f for f in fragments if f.strip(".!? ")]


def count_words(fragment: str) -> int:
    return len(fragment.split())


def estimate_duration(fragment: str) -> float:
    """Estimated on-screen seconds for a fragment (heuristic, see module docstring)."""
    return max(count_words(fragment) * SECONDS_PER_WORD + FRAGMENT_BASE_SECONDS, MIN_SEGMENT_SECONDS)


def build_caption_segments(text: str) -> list[CaptionSegment]:
    """
    Convert narration text into sequential, non-overlapping caption segments.

    Args:
        text: Free-form narration script

    Returns:
        Ordered segments. Empty or whitespace-only input gives an empty list.
    """
    segments: list[CaptionSegment] = []
    start = LEADING_PAUSE_SECONDS
    for fragment in split_sentences(text):
        duration = estimate_duration(fragment)
        segments.append(CaptionSegment(text=fragment, start_time_seconds=start, duration_seconds=duration))
        start = start + duration + SENTENCE_PAUSE_SECONDS
    return segments


def estimate_narration_seconds(text: str) -> float:
    """Rough spoken length of a narration script at the TTS pace."""
    if not text or not text.strip():
        return 0.0
    return count_words(text) / NARRATION_WORDS_PER_MINUTE * 60
