"""
Pytest fixtures for reelrender backend tests.

CI/CD Note:
Tests that run the real ffmpeg binary are marked with requires_ffmpeg and
skipped when it is not on PATH. Everything else uses fake process runners.
"""

import io
import json
import shutil
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from reelrender.config import get_settings
from reelrender.utils.process import ProcessResult


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring the ffmpeg binary (skipped when missing)"
    )


def pytest_collection_modifyitems(config, items):
    if shutil.which("ffmpeg") is not None:
        return
    skip_ffmpeg = pytest.mark.skip(reason="ffmpeg not available on PATH")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip_ffmpeg)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch):
    """Point scratch, output and asset roots into the test's tmp dir."""
    scratch = tmp_path / "scratch"
    output = tmp_path / "renders"
    assets = tmp_path / "assets"
    for directory in (scratch, output, assets):
        directory.mkdir()

    monkeypatch.setenv("SCRATCH_DIR", str(scratch))
    monkeypatch.setenv("RENDER_OUTPUT_DIR", str(output))
    monkeypatch.setenv("ASSET_SEARCH_ROOTS", json.dumps([str(assets)]))
    monkeypatch.setenv("ASSET_BASE_URL", "")
    monkeypatch.setenv("RENDER_ENGINE", "ffmpeg")
    monkeypatch.setenv("RENDER_MAX_CONCURRENT_JOBS", "0")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def scratch_dir(isolated_settings) -> Path:
    return Path(isolated_settings.scratch_dir)


@pytest.fixture
def output_dir(isolated_settings) -> Path:
    return Path(isolated_settings.render_output_dir)


@pytest.fixture
def asset_root(isolated_settings) -> Path:
    return Path(isolated_settings.asset_search_roots[0])


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (64, 48), color: str = "steelblue") -> bytes:
    """Encode a solid-colour test image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def make_image(asset_root: Path) -> Callable[..., Path]:
    """Write a listing photo under the asset root and return its path."""

    def _make(name: str = "photo.png", fmt: str = "PNG", color: str = "steelblue") -> Path:
        path = asset_root / name
        path.write_bytes(image_bytes(fmt=fmt, color=color))
        return path

    return _make


@pytest.fixture
def make_audio(asset_root: Path) -> Callable[..., Path]:
    """Write a placeholder audio file (content is never decoded by fakes)."""

    def _make(name: str = "narration.mp3") -> Path:
        path = asset_root / name
        path.write_bytes(b"ID3\x03\x00\x00\x00fake-audio-payload")
        return path

    return _make


class FakeFFmpegRunner:
    """Stands in for run_process when driving the fallback encoder.

    Writes a small file at the output path (last argument) and emits
    -progress lines, unless told to fail.
    """

    def __init__(self, returncode: int = 0, timed_out: bool = False, write_output: bool = True):
        self.returncode = returncode
        self.timed_out = timed_out
        self.write_output = write_output
        self.calls: list[list[str]] = []

    async def __call__(self, cmd, *, timeout, max_output_bytes, on_line=None, cwd=None) -> ProcessResult:
        self.calls.append(list(cmd))
        if on_line:
            for line in ("frame=1", "out_time_us=1000000", "out_time_us=2500000", "progress=end"):
                on_line(line)
        if self.returncode == 0 and not self.timed_out and self.write_output:
            Path(cmd[-1]).write_bytes(b"\x00\x00\x00\x18ftypmp42fake-video")
        tail = "" if self.returncode == 0 else "Error opening input: No such file or directory"
        return ProcessResult(returncode=self.returncode, output_tail=tail, timed_out=self.timed_out)


@pytest.fixture
def fake_ffmpeg() -> FakeFFmpegRunner:
    return FakeFFmpegRunner()
