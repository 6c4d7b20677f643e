import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Listing Reel Render Service"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Public address of this service. The primary engine loads staged assets
    # through it, so it must be reachable from the renderer's browser.
    public_base_url: str = "http://localhost:8000"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # Asset resolution
    # Local roots searched before any network fetch (uploads, public music, ...)
    asset_search_roots: list[str] = ["./uploads", "./public"]
    # Base URL used to fetch relative references that are not on local disk
    asset_base_url: str = ""
    asset_fetch_timeout_seconds: float = 60.0

    # Scratch area for staged assets (one sub-directory per job)
    scratch_dir: str = "/tmp/reelrender-scratch"

    # Output
    render_output_dir: str = "./renders"
    render_output_url_prefix: str = "/renders"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render settings
    render_output_width: int = 1080
    render_output_height: int = 1920
    render_fps: int = 30
    render_audio_bitrate: str = "192k"
    render_audio_sample_rate: int = 44100
    default_image_duration_ms: int = 3000
    # Tail added after the longest track
    composition_margin_ms: int = 500

    # Engine selection: auto probes Remotion at startup, ffmpeg forces the fallback
    render_engine: Literal["auto", "remotion", "ffmpeg"] = "auto"

    # Remotion (primary engine)
    remotion_project_dir: str = "./remotion-templates"
    remotion_entry_point: str = "src/index.tsx"
    remotion_npx_path: str = "npx"
    remotion_composition_id: str = "DynamicVideo"
    remotion_concurrency: int = 4
    remotion_frame_timeout_ms: int = 300000
    remotion_bundle_timeout_seconds: float = 600.0
    remotion_render_timeout_seconds: float = 1800.0

    # Fallback encoder limits
    fallback_timeout_seconds: float = 300.0
    fallback_max_output_bytes: int = 1024 * 1024
    fallback_preset: str = "ultrafast"

    # Job orchestration. 0 = no cap on concurrently running pipelines.
    render_max_concurrent_jobs: int = 0


@lru_cache
def get_settings() -> Settings:
    return Settings()
