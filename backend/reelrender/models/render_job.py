"""Render job record and its lifecycle rules.

A job only ever moves forward:

    pending -> rendering -> completed
                         -> failed
    pending -> failed

progress_percent never decreases, output_location is only set on completion
and error_detail only on failure.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from reelrender.exceptions import InvalidJobTransitionError


class RenderStatus(str, Enum):
    """Render job status."""

    PENDING = "pending"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RenderStatus.COMPLETED, RenderStatus.FAILED)


class RenderMode(str, Enum):
    """Which execution path produced (or will produce) the output."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


_ALLOWED_TRANSITIONS: dict[RenderStatus, set[RenderStatus]] = {
    RenderStatus.PENDING: {RenderStatus.RENDERING, RenderStatus.FAILED},
    RenderStatus.RENDERING: {RenderStatus.COMPLETED, RenderStatus.FAILED},
    RenderStatus.COMPLETED: set(),
    RenderStatus.FAILED: set(),
}


@dataclass
class RenderJob:
    """Render job information."""

    id: str
    status: RenderStatus = RenderStatus.PENDING
    progress_percent: int = 0
    current_stage: Optional[str] = None
    render_mode: Optional[RenderMode] = None
    output_location: Optional[str] = None
    output_size: Optional[int] = None
    error_detail: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def _transition(self, target: RenderStatus) -> None:
        if target == self.status:
            return
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransitionError(self.id, self.status.value, target.value)
        self.status = target

    def mark_rendering(self, stage: str | None = None) -> None:
        self._transition(RenderStatus.RENDERING)
        if self.started_at is None:
            self.started_at = datetime.now(timezone.utc)
        if stage:
            self.current_stage = stage

    def advance(self, percent: int, stage: str | None = None) -> None:
        """Raise progress; lower values are ignored so pollers never see it go back."""
        if self.status.is_terminal:
            raise InvalidJobTransitionError(self.id, self.status.value, "progress update")
        percent = max(0, min(100, int(percent)))
        if percent > self.progress_percent:
            self.progress_percent = percent
        if stage:
            self.current_stage = stage

    def complete(self, output_location: str, output_size: int | None, mode: RenderMode) -> None:
        self._transition(RenderStatus.COMPLETED)
        self.progress_percent = 100
        self.current_stage = "Complete"
        self.output_location = output_location
        self.output_size = output_size
        self.render_mode = mode
        self.completed_at = datetime.now(timezone.utc)

    def fail(self, error_detail: str) -> None:
        self._transition(RenderStatus.FAILED)
        self.error_detail = error_detail
        self.current_stage = "Failed"
        self.completed_at = datetime.now(timezone.utc)

    def snapshot(self) -> "RenderJob":
        """Detached copy for readers."""
        return copy.copy(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "current_stage": self.current_stage,
            "render_mode": self.render_mode.value if self.render_mode else None,
            "output_location": self.output_location,
            "output_size": self.output_size,
            "error_detail": self.error_detail,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self) -> str:
        return f"<RenderJob {self.id} ({self.status.value} {self.progress_percent}%)>"
