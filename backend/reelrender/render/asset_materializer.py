"""
Asset staging for render jobs.

Every image/audio reference is copied byte-for-byte into a per-job scratch
directory so both renderers read from local disk (the primary engine loads
them back over HTTP from /api/scratch, which is same-origin for it).

Resolution order per reference:
1. Local filesystem (absolute path, file:// URI, or under an asset root)
2. Network fetch (http(s) URL, or relative reference joined to asset_base_url)

If neither works the asset is unavailable and the job fails.
"""

import asyncio
import io
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional
from urllib.parse import quote, urljoin, urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from reelrender.config import get_settings
from reelrender.exceptions import AssetUnavailableError
from reelrender.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)

_IMAGE_EXTENSIONS = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "WEBP": ".webp",
    "GIF": ".gif",
    "BMP": ".bmp",
    "TIFF": ".tiff",
}


@dataclass
class ImageAsset:
    """An image in the slide sequence, before and after staging."""

    source_reference: str
    display_duration_ms: int
    sequence_index: int
    local_reference: Optional[str] = None


@dataclass
class AudioAsset:
    """A staged audio file (narration or background music)."""

    source_reference: str
    role: str  # narration, music
    local_reference: str


def image_extension(data: bytes) -> str:
    """File extension for image bytes, detected by decoding the header."""
    with Image.open(io.BytesIO(data)) as img:
        fmt = img.format or ""
    return _IMAGE_EXTENSIONS.get(fmt.upper(), ".img")


class AssetMaterializer:
    """Stages the assets of one render job into its scratch directory."""

    def __init__(
        self,
        job_id: str,
        storage: LocalStorageService | None = None,
        scratch_root: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.job_id = job_id
        self.storage = storage if storage is not None else LocalStorageService()
        self.scratch_root = Path(scratch_root or settings.scratch_dir)
        self.work_dir = self.scratch_root / job_id
        self.asset_base_url = settings.asset_base_url
        self.public_base_url = settings.public_base_url.rstrip("/")
        self.fetch_timeout = settings.asset_fetch_timeout_seconds
        self._transport = transport

    def _ensure_work_dir(self) -> Path:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        return self.work_dir

    def _network_url(self, reference: str) -> str | None:
        scheme = urlparse(reference).scheme
        if scheme in ("http", "https"):
            return reference
        if not scheme and self.asset_base_url:
            return urljoin(self.asset_base_url.rstrip("/") + "/", reference.lstrip("/"))
        return None

    async def _fetch_remote(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self.fetch_timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content

    async def fetch(self, reference: str) -> bytes:
        """Read a reference from local disk, falling back to the network.

        Raises:
            AssetUnavailableError: If neither path yields the bytes
        """
        try:
            local_path = self.storage.resolve_path(reference)
            url = self._network_url(reference)
        except ValueError as e:
            raise AssetUnavailableError(reference, f"malformed reference: {e}") from e

        if local_path is not None:
            try:
                return await asyncio.to_thread(local_path.read_bytes)
            except OSError as e:
                logger.warning(f"[ASSETS] job={self.job_id} local read failed for {reference}: {e}")

        if url is None:
            raise AssetUnavailableError(reference, "not found locally and not fetchable")

        try:
            return await self._fetch_remote(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise AssetUnavailableError(reference, f"fetch failed: {e}") from e

    async def materialize_images(self, images: Iterable[tuple[str, int]]) -> list[ImageAsset]:
        """
        Stage images in caller order.

        Args:
            images: (reference, display_duration_ms) pairs in slide order

        Returns:
            ImageAsset list with local_reference set, sequence_index matching input order
        """
        work_dir = self._ensure_work_dir()
        staged: list[ImageAsset] = []

        for index, (reference, duration_ms) in enumerate(images):
            data = await self.fetch(reference)
            try:
                ext = image_extension(data)
            except (UnidentifiedImageError, OSError) as e:
                raise AssetUnavailableError(reference, "not a decodable image") from e

            local_path = work_dir / f"img_{index:03d}{ext}"
            await asyncio.to_thread(local_path.write_bytes, data)
            staged.append(
                ImageAsset(
                    source_reference=reference,
                    display_duration_ms=duration_ms,
                    sequence_index=index,
                    local_reference=str(local_path),
                )
            )
            logger.info(f"[ASSETS] job={self.job_id} staged image {index}: {reference} ({len(data)} bytes)")

        return staged

    async def materialize_audio(self, reference: str, role: str) -> AudioAsset:
        """Stage a single audio file."""
        work_dir = self._ensure_work_dir()
        data = await self.fetch(reference)
        ext = PurePosixPath(urlparse(reference).path).suffix or ".mp3"
        local_path = work_dir / f"{role}{ext}"
        await asyncio.to_thread(local_path.write_bytes, data)
        logger.info(f"[ASSETS] job={self.job_id} staged {role}: {reference} ({len(data)} bytes)")
        return AudioAsset(source_reference=reference, role=role, local_reference=str(local_path))

    async def materialize_optional_audio(self, reference: str | None, role: str) -> AudioAsset | None:
        """Stage audio that the job can do without (background music)."""
        if not reference:
            return None
        try:
            return await self.materialize_audio(reference, role)
        except AssetUnavailableError as e:
            logger.warning(f"[ASSETS] job={self.job_id} continuing without {role}: {e.message}")
            return None

    def public_url(self, local_reference: str) -> str:
        """HTTP URL under which /api/scratch serves a staged file."""
        relative = Path(local_reference).resolve().relative_to(self.scratch_root.resolve())
        return f"{self.public_base_url}/api/scratch/{quote(relative.as_posix())}"

    def cleanup(self) -> None:
        """Remove the job's scratch directory. Failures are logged, not raised."""
        if not self.work_dir.exists():
            return
        try:
            shutil.rmtree(self.work_dir)
        except OSError as e:
            logger.warning(f"[ASSETS] job={self.job_id} scratch cleanup failed: {e}")
