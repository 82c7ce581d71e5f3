"""Tests for ArtifactStore local and remote handles."""

import httpx
import pytest

from autopost.errors import GenerationErrorCode, GenerationFailure
from autopost.services.file_manager import ArtifactStore


@pytest.fixture
def store(tmp_path) -> ArtifactStore:
    return ArtifactStore(base_dir=tmp_path / "artifacts")


@pytest.mark.asyncio
async def test_save_then_load_local_handle(store, tmp_path):
    handle = store.save(b"\x89PNG fake", mime_type="image/png", owner_id="session-1")

    assert handle.startswith(str((tmp_path / "artifacts" / "session-1").resolve()))
    assert handle.endswith(".png")
    assert await store.load(handle) == (b"\x89PNG fake", "image/png")


def test_save_uses_extension_for_mime_type(store):
    assert store.save(b"jpeg", mime_type="image/jpeg").endswith(".jpg")


def test_owner_dir_rejects_traversal(store):
    with pytest.raises(ValueError):
        store.get_owner_dir("../../etc")


@pytest.mark.asyncio
async def test_load_missing_local_handle(store, tmp_path):
    with pytest.raises(GenerationFailure) as exc_info:
        await store.load(str(tmp_path / "missing.png"))
    assert exc_info.value.code is GenerationErrorCode.CONFIG_ERROR


@pytest.mark.asyncio
async def test_load_remote_handle(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/uploads/mug.png"
        return httpx.Response(200, content=b"remote", headers={"content-type": "image/webp"})

    store = ArtifactStore(base_dir=tmp_path, transport=httpx.MockTransport(handler))

    assert await store.load("https://cdn.example.com/uploads/mug.png") == (b"remote", "image/webp")


@pytest.mark.asyncio
async def test_load_remote_handle_http_error(tmp_path):
    store = ArtifactStore(
        base_dir=tmp_path,
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
    )

    with pytest.raises(GenerationFailure) as exc_info:
        await store.load("https://cdn.example.com/missing.png")
    assert exc_info.value.code is GenerationErrorCode.NETWORK_ERROR
    assert exc_info.value.status_code == 404
