from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from reelrender.config import get_settings


class ImageInput(BaseModel):
    url: str = Field(min_length=1)
    # How long the slide is on screen
    duration_ms: int = Field(default_factory=lambda: get_settings().default_image_duration_ms, gt=0)


class CaptionInput(BaseModel):
    text: str
    start_time: float = Field(ge=0)  # seconds
    duration: float = Field(gt=0)  # seconds


class RenderRequest(BaseModel):
    images: list[ImageInput] = Field(min_length=1)
    narration_audio_url: str | None = None
    narration_duration_seconds: float | None = Field(default=None, gt=0)
    music_url: str | None = None
    captions: list[CaptionInput] | None = None  # Precomputed; wins over narration_text
    narration_text: str | None = None
    quality: Literal["low", "medium", "high"] = "medium"

    @model_validator(mode="after")
    def blank_references_are_absent(self) -> "RenderRequest":
        if self.narration_audio_url is not None and not self.narration_audio_url.strip():
            self.narration_audio_url = None
        if self.music_url is not None and not self.music_url.strip():
            self.music_url = None
        return self


class RenderSubmitResponse(BaseModel):
    job_id: str
    status: str
    mode: Literal["primary", "fallback"]


class RenderStatusResponse(BaseModel):
    job_id: str
    status: str
    progress_percent: int
    current_stage: str | None = None
    render_mode: str | None = None
    output_location: str | None = None
    output_size: int | None = None
    error_detail: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ActiveJobResponse(BaseModel):
    job_id: str
    status: str
    progress_percent: int
