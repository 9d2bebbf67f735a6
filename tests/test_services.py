"""Tests for gallery_ingest services."""
import re
import pytest
from unittest.mock import AsyncMock, Mock

import httpx
from PIL import Image

from gallery_ingest.errors import StorageUnavailableError, UploadTransientError
from gallery_ingest.models import FileHandle, IngestConfig
from gallery_ingest.services import (
    CompressionService,
    HTTPObjectStorage,
    StorageService,
    sanitize_name,
    unique_token,
)

from conftest import FakeObjectStorage, handle


class TestNaming:
    def test_sanitize_name(self):
        assert sanitize_name("Foto #1 $.jpg") == "Foto _1 _.jpg"
        assert sanitize_name("a[1]*?.jpg") == "a_1___.jpg"
        assert sanitize_name("tab\there.jpg") == "tab_here.jpg"
        assert sanitize_name("Sposo - 01.jpg") == "Sposo - 01.jpg"

    def test_unique_token(self):
        assert re.fullmatch(r"\d{13}-\d{1,3}", unique_token())


class TestStorageService:
    @pytest.fixture
    def service(self):
        return StorageService(FakeObjectStorage(), token_factory=lambda: "1700000000000-7")

    def test_build_path(self, service):
        assert service.build_path("g-1", "Foto #1.jpg") == "galleries/g-1/1700000000000-7-Foto _1.jpg"

    def test_build_path_without_prefix(self):
        service = StorageService(FakeObjectStorage(), IngestConfig(path_prefix=""), token_factory=lambda: "t")
        assert service.build_path("g-1", "a.jpg") == "g-1/t-a.jpg"

    @pytest.mark.asyncio
    async def test_upload_file(self, service):
        progress = []
        obj = await service.upload_file("g-1", handle("a.jpg", size=10), 1, lambda s, t: progress.append((s, t)))

        assert obj.stored_name == "a.jpg"
        assert obj.url == "https://cdn.test/galleries/g-1/1700000000000-7-a.jpg"
        assert obj.mime_type == "image/jpeg"
        assert progress[-1] == (10, 10)

    @pytest.mark.asyncio
    async def test_client_error_becomes_transient(self):
        client = Mock()
        client.put_object = AsyncMock(side_effect=TimeoutError())
        service = StorageService(client)

        with pytest.raises(UploadTransientError) as exc_info:
            await service.upload_file("g-1", handle("a.jpg"), attempt=2)

        assert exc_info.value.attempt == 2
        assert exc_info.value.reason == "TimeoutError"

    @pytest.mark.asyncio
    async def test_empty_url_is_transient(self):
        client = Mock()
        client.put_object = AsyncMock(return_value="")

        with pytest.raises(UploadTransientError, match="no URL"):
            await StorageService(client).upload_file("g-1", handle("a.jpg"))

    @pytest.mark.asyncio
    async def test_storage_unavailable_propagates(self):
        client = Mock()
        client.put_object = AsyncMock(side_effect=StorageUnavailableError("down"))

        with pytest.raises(StorageUnavailableError):
            await StorageService(client).upload_file("g-1", handle("a.jpg"))

    @pytest.mark.asyncio
    async def test_check_available(self):
        client = FakeObjectStorage()
        await StorageService(client).check_available()
        assert client.pings == 1

    @pytest.mark.asyncio
    async def test_check_available_wraps_errors(self):
        client = FakeObjectStorage(ping_error=ConnectionRefusedError("refused"))
        with pytest.raises(StorageUnavailableError, match="refused"):
            await StorageService(client).check_available()

    @pytest.mark.asyncio
    async def test_check_available_without_ping(self):
        client = Mock(spec=["put_object"])
        await StorageService(client).check_available()


class TestHTTPObjectStorage:
    @pytest.fixture
    def photo(self, tmp_path):
        path = tmp_path / "IMG_1.jpg"
        path.write_bytes(b"\xff\xd8" + b"x" * 300_000)
        return FileHandle.from_path(path)

    @pytest.mark.asyncio
    async def test_put_object_streams_body(self, photo):
        seen = {}

        async def handler(request: httpx.Request):
            body = await request.aread()
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            seen["type"] = request.headers.get("content-type")
            seen["size"] = len(body)
            return httpx.Response(200, json={"url": "https://cdn.test/obj/IMG_1.jpg"})

        progress = []
        async with HTTPObjectStorage("https://storage.test", token="secret", transport=httpx.MockTransport(handler)) as client:
            url = await client.put_object("galleries/g-1/1-IMG_1.jpg", photo, lambda s, t: progress.append((s, t)))

        assert url == "https://cdn.test/obj/IMG_1.jpg"
        assert seen == {
            "method": "PUT",
            "path": "/galleries/g-1/1-IMG_1.jpg",
            "auth": "Bearer secret",
            "type": "image/jpeg",
            "size": photo.size_bytes,
        }
        assert len(progress) == 2
        assert progress[-1] == (photo.size_bytes, photo.size_bytes)

    @pytest.mark.asyncio
    async def test_url_falls_back_to_request_url(self, photo):
        async def handler(request: httpx.Request):
            await request.aread()
            return httpx.Response(201, text="created")

        async with HTTPObjectStorage("https://storage.test", transport=httpx.MockTransport(handler)) as client:
            url = await client.put_object("g-1/IMG_1.jpg", photo)

        assert url == "https://storage.test/g-1/IMG_1.jpg"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, photo):
        async def handler(request: httpx.Request):
            await request.aread()
            return httpx.Response(507, json={"error": "quota"})

        async with HTTPObjectStorage("https://storage.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(RuntimeError, match="507"):
                await client.put_object("g-1/IMG_1.jpg", photo)

    @pytest.mark.asyncio
    async def test_ping(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        async with HTTPObjectStorage("https://storage.test", transport=transport) as client:
            await client.ping()

    @pytest.mark.asyncio
    async def test_ping_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with HTTPObjectStorage("https://storage.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StorageUnavailableError):
                await client.ping()

    @pytest.mark.asyncio
    async def test_ping_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with HTTPObjectStorage("https://storage.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StorageUnavailableError, match="timed out"):
                await client.ping()

    @pytest.mark.asyncio
    async def test_ping_server_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with HTTPObjectStorage("https://storage.test", transport=transport) as client:
            with pytest.raises(StorageUnavailableError, match="503"):
                await client.ping()

    @pytest.mark.asyncio
    async def test_requires_context(self, photo):
        with pytest.raises(RuntimeError, match="async with"):
            await HTTPObjectStorage("https://storage.test").put_object("a", photo)


class TestCompressionService:
    @pytest.fixture
    def large_photo(self, tmp_path):
        path = tmp_path / "Sposo" / "IMG_big.jpg"
        path.parent.mkdir()
        Image.effect_noise((900, 600), 120).convert("RGB").save(path, format="JPEG", quality=100)
        return FileHandle.from_path(path, "Sposo/IMG_big.jpg")

    @pytest.fixture
    def config(self):
        return IngestConfig(compress=True, max_size_mb=0.05, max_width_or_height=300)

    @pytest.mark.asyncio
    async def test_compresses_large_image(self, large_photo, config, tmp_path):
        service = CompressionService(config, output_dir=tmp_path / "out")

        compressed = await service.compress(large_photo)

        assert compressed is not large_photo
        assert compressed.name == "IMG_big.jpg"
        assert compressed.relative_path == "Sposo/IMG_big.jpg"
        assert compressed.size_bytes < large_photo.size_bytes
        assert compressed.path.parent.parent == tmp_path / "out"
        with Image.open(compressed.path) as img:
            assert max(img.size) <= 300

    @pytest.mark.asyncio
    async def test_skips_small_files(self, tmp_path, config):
        path = tmp_path / "tiny.png"
        Image.new("RGB", (10, 10), "red").save(path)
        tiny = FileHandle.from_path(path)

        assert await CompressionService(config).compress(tiny) is tiny

    @pytest.mark.asyncio
    async def test_skips_non_images(self, config):
        video = handle("clip.mp4", size=50_000_000, mime="video/mp4")
        assert await CompressionService(config).compress(video) is video

    @pytest.mark.asyncio
    async def test_falls_back_on_broken_image(self, tmp_path, config):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"not really a jpeg" * 10_000)
        broken = FileHandle.from_path(path)

        assert await CompressionService(config).compress(broken) is broken

    @pytest.mark.asyncio
    async def test_broken_image_leaves_no_copy_behind(self, tmp_path, config):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"not really a jpeg" * 10_000)
        out = tmp_path / "out"

        await CompressionService(config, output_dir=out).compress(FileHandle.from_path(path))

        assert list(out.iterdir()) == []

    @pytest.mark.asyncio
    async def test_temp_dir_removed_on_close(self, large_photo, config):
        async with CompressionService(config) as service:
            compressed = await service.compress(large_photo)
            work_dir = service.work_dir
            assert compressed.path.exists()
            assert compressed.path.parent.parent == work_dir

        assert not compressed.path.exists()
        assert not work_dir.exists()
        assert service.work_dir is None

    @pytest.mark.asyncio
    async def test_discard_removes_only_own_copies(self, large_photo, config):
        service = CompressionService(config)
        compressed = await service.compress(large_photo)

        await service.discard(large_photo)
        assert large_photo.path.exists()

        await service.discard(compressed)
        assert not compressed.path.exists()
        assert list(service.work_dir.iterdir()) == []
        await service.aclose()

    @pytest.mark.asyncio
    async def test_output_dir_is_kept(self, large_photo, config, tmp_path):
        service = CompressionService(config, output_dir=tmp_path / "out")
        compressed = await service.compress(large_photo)

        await service.discard(compressed)
        await service.aclose()

        assert compressed.path.exists()
