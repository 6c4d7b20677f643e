"""
Primary renderer base classes.

A primary renderer composites captions and transitions on top of the slide
sequence. It is optional: availability is probed once at startup and jobs
fall back to the ffmpeg encoder whenever it is missing or fails.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from reelrender.render.composition import QualityPreset

ProgressCallback = Callable[[float], None]


class EngineStage(str, Enum):
    """Per-job state of the primary engine."""

    NOT_BUNDLED = "not-bundled"
    BUNDLED = "bundled"
    COMPOSITION_SELECTED = "composition-selected"
    RENDERING = "rendering"
    DONE = "done"


@dataclass(frozen=True)
class SelectedComposition:
    """A named composition resolved against a bundle."""

    id: str
    width: int
    height: int
    fps: int
    duration_in_frames: int


class PrimaryRenderer(ABC):
    """Interface for the primary compositing engine."""

    name: str = "primary"

    @abstractmethod
    def probe(self) -> tuple[bool, Optional[str]]:
        """
        Check whether the engine can run in this process.

        Returns:
            (available, reason). reason explains why it is unavailable.
        """

    @abstractmethod
    async def bundle(self) -> str:
        """Return the location of the compiled template bundle (built at most once)."""

    @abstractmethod
    async def select_composition(
        self,
        bundle_location: str,
        composition_id: str,
        input_props: dict[str, Any],
        work_dir: str,
    ) -> SelectedComposition:
        """Resolve a named composition and its concrete duration for these props."""

    @abstractmethod
    async def render(
        self,
        bundle_location: str,
        composition: SelectedComposition,
        input_props: dict[str, Any],
        output_path: str,
        quality: QualityPreset,
        work_dir: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Render every frame to output_path, reporting progress in [0, 1]."""


class BundleCache:
    """Process-wide, lazily built bundle with a single-flight guard.

    Concurrent first callers wait on the same build instead of starting their
    own. A failed build is not cached, so the next caller retries. There is
    no invalidation: a changed template needs a process restart.
    """

    def __init__(self, builder: Callable[[], Awaitable[str]]):
        self._builder = builder
        self._value: Optional[str] = None
        self._lock = asyncio.Lock()
        self.build_count = 0

    @property
    def is_built(self) -> bool:
        return self._value is not None

    async def get(self) -> str:
        if self._value is not None:
            return self._value
        async with self._lock:
            if self._value is None:
                self.build_count += 1
                self._value = await self._builder()
        return self._value
