"""Tests for storage naming and storage clients.

Tests cover:
- Object naming (timestamp + suffix, voice clips, test prefix)
- File extension and content-type helpers
- FakeStorageClient uploads, duplicates and injected failures
- StorageClient request shape and error mapping (mocked with respx)
"""

import re

import httpx
import pytest
import respx

from kvrp.storage.client import FakeStorageClient, StorageClient, StorageError
from kvrp.storage.paths import (
    TEST_PREFIX_ENV_VAR,
    build_object_name,
    get_file_extension,
    guess_content_type,
)

SUPABASE_URL = "https://proj.supabase.co"


class TestBuildObjectName:
    """Tests for build_object_name function."""

    def test_image_name_format(self):
        """Image names are {millis}_{8 hex}.{ext}."""
        name = build_object_name("PNG", now_ms=1718000000000)

        assert re.fullmatch(r"1718000000000_[0-9a-f]{8}\.png", name)

    def test_voice_name_format(self):
        """Voice names get the voice_ prefix and a webm extension."""
        name = build_object_name("ignored", voice=True, now_ms=1718000000001)

        assert re.fullmatch(r"voice_1718000000001_[0-9a-f]{8}\.webm", name)

    def test_names_are_unique_within_a_millisecond(self):
        assert build_object_name("png", now_ms=1) != build_object_name("png", now_ms=1)

    def test_leading_dot_stripped(self):
        assert build_object_name(".jpg", now_ms=5).endswith(".jpg")

    def test_test_prefix_applied(self, monkeypatch):
        """Test runs are namespaced under the configured prefix."""
        monkeypatch.setenv(TEST_PREFIX_ENV_VAR, "test_runs/abc")

        name = build_object_name("png", now_ms=1)

        assert name.startswith("test_runs/abc/1_")

    def test_no_leading_slash(self):
        assert not build_object_name("png").startswith("/")


class TestExtensions:
    def test_extension_lowercased(self):
        assert get_file_extension("Screenshot.JPEG") == "jpeg"

    def test_last_extension_wins(self):
        assert get_file_extension("archive.tar.gz") == "gz"

    def test_missing_extension_raises(self):
        with pytest.raises(ValueError, match="has no extension"):
            get_file_extension("README")

    def test_trailing_dot_raises(self):
        with pytest.raises(ValueError):
            get_file_extension("photo.")

    def test_content_types(self):
        assert guess_content_type("jpg") == "image/jpeg"
        assert guess_content_type("PNG") == "image/png"
        assert guess_content_type("webm") == "audio/webm"
        assert guess_content_type("bin") == "application/octet-stream"


class TestFakeStorageClient:
    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self):
        storage = FakeStorageClient()

        url = await storage.upload_blob("post-images", "1_abc.png", b"data", "image/png")

        assert url == "https://fake-storage.test/storage/v1/object/public/post-images/1_abc.png"
        stored = storage.get_object("post-images", "1_abc.png")
        assert stored.content == b"data"
        assert stored.content_type == "image/png"
        assert storage.object_names("post-images") == ["1_abc.png"]

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self):
        storage = FakeStorageClient()
        await storage.upload_blob("b", "x.png", b"1", "image/png")

        with pytest.raises(StorageError):
            await storage.upload_blob("b", "x.png", b"2", "image/png")

    @pytest.mark.asyncio
    async def test_fail_uploads(self):
        storage = FakeStorageClient()
        storage.fail_uploads = True

        with pytest.raises(StorageError) as exc_info:
            await storage.upload_blob("b", "x.png", b"1", "image/png")

        assert exc_info.value.code == "E_UPLOAD_REJECTED"
        assert storage.object_names("b") == []


class TestStorageClient:
    @pytest.mark.asyncio
    @respx.mock
    async def test_upload_posts_object(self):
        route = respx.post(f"{SUPABASE_URL}/storage/v1/object/post-images/1_abc.png").mock(
            return_value=httpx.Response(200, json={"Key": "post-images/1_abc.png"})
        )

        async with httpx.AsyncClient() as http:
            storage = StorageClient(http, SUPABASE_URL, "anon-key")
            url = await storage.upload_blob("post-images", "1_abc.png", b"png-bytes", "image/png")

        assert url == f"{SUPABASE_URL}/storage/v1/object/public/post-images/1_abc.png"
        request = route.calls.last.request
        assert request.content == b"png-bytes"
        assert request.headers["Content-Type"] == "image/png"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["x-upsert"] == "false"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejected_upload(self):
        respx.post(f"{SUPABASE_URL}/storage/v1/object/screenshots/1_abc.png").mock(
            return_value=httpx.Response(413, json={"error": "Payload too large"})
        )

        async with httpx.AsyncClient() as http:
            storage = StorageClient(http, SUPABASE_URL, "anon-key")
            with pytest.raises(StorageError) as exc_info:
                await storage.upload_blob("screenshots", "1_abc.png", b"x", "image/png")

        assert exc_info.value.code == "E_UPLOAD_REJECTED"

    @pytest.mark.asyncio
    @respx.mock
    async def test_upload_timeout(self):
        respx.post(f"{SUPABASE_URL}/storage/v1/object/screenshots/1_abc.png").mock(
            side_effect=httpx.ReadTimeout("slow")
        )

        async with httpx.AsyncClient() as http:
            storage = StorageClient(http, SUPABASE_URL, "anon-key")
            with pytest.raises(StorageError) as exc_info:
                await storage.upload_blob("screenshots", "1_abc.png", b"x", "image/png")

        assert exc_info.value.code == "E_STORAGE_TIMEOUT"

    @pytest.mark.asyncio
    @respx.mock
    async def test_upload_unavailable(self):
        respx.post(f"{SUPABASE_URL}/storage/v1/object/screenshots/1_abc.png").mock(
            side_effect=httpx.ConnectError("refused")
        )

        async with httpx.AsyncClient() as http:
            storage = StorageClient(http, SUPABASE_URL, "anon-key")
            with pytest.raises(StorageError) as exc_info:
                await storage.upload_blob("screenshots", "1_abc.png", b"x", "image/png")

        assert exc_info.value.code == "E_STORAGE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_public_url(self):
        async with httpx.AsyncClient() as http:
            storage = StorageClient(http, SUPABASE_URL + "/", "anon-key")

        expected = f"{SUPABASE_URL}/storage/v1/object/public/b/n.png"
        assert storage.public_url("b", "n.png") == expected
