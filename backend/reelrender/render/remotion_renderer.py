"""
Remotion adapter (primary engine).

Drives the Remotion CLI of the template project:

    npx remotion bundle <entry> --out-dir <dir>        (once per process)
    npx remotion compositions <bundle> --props=<json>  (per job)
    npx remotion render <bundle> <id> <out> ...        (per job)

Remotion needs Node and the template's node_modules; when either is missing
the probe reports the engine unavailable and jobs go straight to the ffmpeg
fallback.
"""

import json
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from reelrender.config import get_settings
from reelrender.exceptions import EngineRenderError, EngineUnavailableError, ReelRenderError
from reelrender.render.base import (
    BundleCache,
    PrimaryRenderer,
    ProgressCallback,
    SelectedComposition,
)
from reelrender.render.composition import QualityPreset
from reelrender.utils.process import ProcessResult, run_process

logger = logging.getLogger(__name__)

ProcessRunner = Callable[..., Awaitable[ProcessResult]]

# "DynamicVideo    30    1080x1920    900 (30.00 sec)"
_COMPOSITION_ROW_RE = re.compile(r"^\s*(\S+)\s+(\d+)\s+(\d+)x(\d+)\s+(\d+)\b")
# "Rendered 120/900", "Rendering frames ━━━━ 120/900", "Encoded 120/900"
_FRAME_PROGRESS_RE = re.compile(r"(Render\w*|Encod\w*|Stitch\w*)\D*?(\d+)\s*/\s*(\d+)")

# Share of the render progress given to frame rendering; encoding takes the rest
_RENDER_WEIGHT = 0.9


def parse_compositions(output: str) -> dict[str, SelectedComposition]:
    """Parse the table printed by `remotion compositions`."""
    found: dict[str, SelectedComposition] = {}
    for line in output.splitlines():
        match = _COMPOSITION_ROW_RE.match(line)
        if not match:
            continue
        comp_id, fps, width, height, frames = match.groups()
        found[comp_id] = SelectedComposition(
            id=comp_id,
            fps=int(fps),
            width=int(width),
            height=int(height),
            duration_in_frames=int(frames),
        )
    return found


def parse_render_progress(line: str) -> Optional[float]:
    """Fraction [0, 1] from a Remotion render progress line, or None."""
    match = _FRAME_PROGRESS_RE.search(line)
    if not match:
        return None
    phase, done, total = match.group(1), int(match.group(2)), int(match.group(3))
    if total <= 0:
        return None
    ratio = min(done / total, 1.0)
    if phase.startswith("Render"):
        return ratio * _RENDER_WEIGHT
    return _RENDER_WEIGHT + ratio * (1 - _RENDER_WEIGHT)


class RemotionRenderer(PrimaryRenderer):
    """Primary renderer backed by the Remotion CLI."""

    name = "remotion"

    def __init__(
        self,
        project_dir: str | None = None,
        entry_point: str | None = None,
        npx_path: str | None = None,
        runner: ProcessRunner | None = None,
    ):
        settings = get_settings()
        self.project_dir = Path(project_dir or settings.remotion_project_dir)
        self.entry_point = self.project_dir / (entry_point or settings.remotion_entry_point)
        self.npx_path = npx_path or settings.remotion_npx_path
        self.concurrency = settings.remotion_concurrency
        self.frame_timeout_ms = settings.remotion_frame_timeout_ms
        self.bundle_timeout = settings.remotion_bundle_timeout_seconds
        self.render_timeout = settings.remotion_render_timeout_seconds
        self.max_output_bytes = settings.fallback_max_output_bytes
        self._runner = runner or run_process
        self._bundle_cache = BundleCache(self._build_bundle)
        logger.info(f"[REMOTION] Initialized with project dir: {self.project_dir}")

    @property
    def bundle_cache(self) -> BundleCache:
        return self._bundle_cache

    def probe(self) -> tuple[bool, Optional[str]]:
        if shutil.which(self.npx_path) is None:
            return False, f"{self.npx_path} not found on PATH"
        if not self.entry_point.is_file():
            return False, f"Remotion entry point not found: {self.entry_point}"
        if not (self.project_dir / "node_modules" / "@remotion" / "renderer").is_dir():
            return False, "@remotion/renderer is not installed in the template project"
        return True, None

    async def _run(self, args: list[str], timeout: float, on_line=None) -> ProcessResult:
        cmd = [self.npx_path, "remotion", *args]
        logger.info(f"[REMOTION] Running: {' '.join(cmd)}")
        try:
            return await self._runner(
                cmd,
                timeout=timeout,
                max_output_bytes=self.max_output_bytes,
                on_line=on_line,
                cwd=str(self.project_dir),
            )
        except FileNotFoundError as e:
            raise EngineUnavailableError(f"{self.npx_path} not found") from e

    @staticmethod
    def _check(result: ProcessResult, step: str) -> None:
        if result.timed_out:
            raise EngineRenderError(f"Remotion {step} timed out")
        if result.returncode != 0:
            tail = result.output_tail.strip()[-500:]
            raise EngineRenderError(f"Remotion {step} failed (exit {result.returncode}): {tail}")

    async def _build_bundle(self) -> str:
        if not self.entry_point.is_file():
            raise EngineUnavailableError(f"Remotion entry point not found: {self.entry_point}")
        out_dir = tempfile.mkdtemp(prefix="reelrender_bundle_")
        logger.info(f"[REMOTION] Bundling {self.entry_point} -> {out_dir}")
        try:
            result = await self._run(
                ["bundle", str(self.entry_point), "--out-dir", out_dir],
                timeout=self.bundle_timeout,
            )
            self._check(result, "bundle")
        except ReelRenderError:
            shutil.rmtree(out_dir, ignore_errors=True)
            raise
        return out_dir

    async def bundle(self) -> str:
        return await self._bundle_cache.get()

    @staticmethod
    def _write_props(input_props: dict[str, Any], work_dir: str) -> str:
        path = Path(work_dir) / "input_props.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(input_props), encoding="utf-8")
        return str(path)

    async def select_composition(
        self,
        bundle_location: str,
        composition_id: str,
        input_props: dict[str, Any],
        work_dir: str,
    ) -> SelectedComposition:
        props_path = self._write_props(input_props, work_dir)
        result = await self._run(
            ["compositions", bundle_location, f"--props={props_path}"],
            timeout=self.bundle_timeout,
        )
        self._check(result, "compositions")

        compositions = parse_compositions(result.output_tail)
        if composition_id not in compositions:
            raise EngineRenderError(
                f"Composition '{composition_id}' not found. Available: {sorted(compositions)}"
            )
        return compositions[composition_id]

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
        props_path = self._write_props(input_props, work_dir)
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        def handle_line(line: str) -> None:
            fraction = parse_render_progress(line)
            if fraction is not None and on_progress:
                on_progress(fraction)

        result = await self._run(
            [
                "render",
                bundle_location,
                composition.id,
                output_path,
                f"--props={props_path}",
                "--codec=h264",
                f"--crf={quality.crf}",
                "--image-format=jpeg",
                f"--concurrency={self.concurrency}",
                f"--timeout={self.frame_timeout_ms}",
            ],
            timeout=self.render_timeout,
            on_line=handle_line,
        )
        self._check(result, "render")

        if not Path(output_path).is_file():
            raise EngineRenderError(f"Remotion reported success but wrote no file: {output_path}")
        if on_progress:
            on_progress(1.0)
        return output_path
