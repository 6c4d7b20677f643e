"""Tests for asset resolution and staging."""

import httpx
import pytest

from conftest import image_bytes
from reelrender.exceptions import AssetUnavailableError
from reelrender.render.asset_materializer import AssetMaterializer, image_extension
from reelrender.services.storage_service import LocalStorageService


def _transport(routes: dict[str, bytes]) -> httpx.MockTransport:
    """Serve fixed bodies by URL; everything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    return httpx.MockTransport(handler)


class TestLocalStorageService:
    def test_absolute_path(self, make_image):
        path = make_image("kitchen.png")
        storage = LocalStorageService()
        assert storage.resolve_path(str(path)) == path

    def test_file_uri(self, make_image):
        path = make_image("kitchen.png")
        storage = LocalStorageService()
        assert storage.resolve_path(path.as_uri()) == path

    def test_relative_under_root(self, make_image):
        make_image("kitchen.png")
        storage = LocalStorageService()
        assert storage.resolve_path("/uploads/kitchen.png") is not None

    def test_http_never_local(self, make_image):
        make_image("kitchen.png")
        storage = LocalStorageService()
        assert storage.resolve_path("https://cdn.example.com/kitchen.png") is None

    def test_missing_file(self):
        assert LocalStorageService().resolve_path("/nowhere/ghost.png") is None


class TestImageExtension:
    @pytest.mark.parametrize("fmt,ext", [("PNG", ".png"), ("JPEG", ".jpg"), ("WEBP", ".webp")])
    def test_detected_from_bytes(self, fmt, ext):
        assert image_extension(image_bytes(fmt=fmt)) == ext


class TestAssetMaterializer:
    @pytest.mark.asyncio
    async def test_local_images_staged_in_order(self, make_image, scratch_dir):
        first = make_image("a.png", color="red")
        second = make_image("b.jpg", fmt="JPEG", color="green")
        materializer = AssetMaterializer("job1")

        staged = await materializer.materialize_images([(str(first), 3000), (str(second), 1500)])

        assert [a.sequence_index for a in staged] == [0, 1]
        assert [a.display_duration_ms for a in staged] == [3000, 1500]
        assert staged[0].local_reference.endswith("img_000.png")
        assert staged[1].local_reference.endswith("img_001.jpg")
        assert (scratch_dir / "job1" / "img_000.png").read_bytes() == first.read_bytes()

    @pytest.mark.asyncio
    async def test_network_fetch(self, scratch_dir):
        url = "https://cdn.example.com/listing/front.png"
        data = image_bytes()
        materializer = AssetMaterializer("job1", transport=_transport({url: data}))

        staged = await materializer.materialize_images([(url, 3000)])

        assert (scratch_dir / "job1" / "img_000.png").read_bytes() == data
        assert staged[0].source_reference == url

    @pytest.mark.asyncio
    async def test_relative_reference_uses_base_url(self, isolated_settings, monkeypatch):
        monkeypatch.setattr(isolated_settings, "asset_base_url", "https://assets.example.com/media")
        data = image_bytes()
        materializer = AssetMaterializer(
            "job1",
            transport=_transport({"https://assets.example.com/media/uploads/pool.png": data}),
        )

        staged = await materializer.materialize_images([("/uploads/pool.png", 2000)])

        assert staged[0].local_reference.endswith(".png")

    @pytest.mark.asyncio
    async def test_unreachable_image(self):
        url = "https://cdn.example.com/missing.jpg"
        materializer = AssetMaterializer("job1", transport=_transport({}))

        with pytest.raises(AssetUnavailableError) as exc_info:
            await materializer.materialize_images([(url, 3000)])

        assert exc_info.value.reference == url
        assert url in exc_info.value.message

    @pytest.mark.asyncio
    async def test_not_fetchable_without_base_url(self):
        materializer = AssetMaterializer("job1")
        with pytest.raises(AssetUnavailableError):
            await materializer.materialize_images([("uploads/ghost.png", 3000)])

    @pytest.mark.asyncio
    async def test_malformed_url(self):
        url = "http://[bad/x.jpg"
        materializer = AssetMaterializer("job1", transport=_transport({}))

        with pytest.raises(AssetUnavailableError) as exc_info:
            await materializer.materialize_images([(url, 3000)])

        assert exc_info.value.reference == url

    @pytest.mark.asyncio
    async def test_undecodable_image(self, asset_root):
        bogus = asset_root / "notes.png"
        bogus.write_text("not an image")
        materializer = AssetMaterializer("job1")

        with pytest.raises(AssetUnavailableError, match="not a decodable image"):
            await materializer.materialize_images([(str(bogus), 3000)])

    @pytest.mark.asyncio
    async def test_audio(self, make_audio, scratch_dir):
        narration = make_audio("voice.mp3")
        materializer = AssetMaterializer("job1")

        asset = await materializer.materialize_audio(str(narration), "narration")

        assert asset.role == "narration"
        assert asset.local_reference == str(scratch_dir / "job1" / "narration.mp3")

    @pytest.mark.asyncio
    async def test_optional_audio_missing(self):
        materializer = AssetMaterializer("job1", transport=_transport({}))

        assert await materializer.materialize_optional_audio("https://cdn.example.com/m.mp3", "music") is None
        assert await materializer.materialize_optional_audio(None, "music") is None

    @pytest.mark.asyncio
    async def test_public_url(self, make_image, isolated_settings):
        materializer = AssetMaterializer("job1")
        staged = await materializer.materialize_images([(str(make_image()), 3000)])

        url = materializer.public_url(staged[0].local_reference)
        assert url == f"{isolated_settings.public_base_url}/api/scratch/job1/img_000.png"

    @pytest.mark.asyncio
    async def test_cleanup(self, make_image, scratch_dir):
        materializer = AssetMaterializer("job1")
        await materializer.materialize_images([(str(make_image()), 3000)])
        assert (scratch_dir / "job1").exists()

        materializer.cleanup()
        materializer.cleanup()

        assert not (scratch_dir / "job1").exists()
