from __future__ import annotations

import base64
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import allure
import httpx
import pytest

from layer_bridge.errors import BackendFailure, TransientBackendError
from layer_bridge.media import MediaStore

pytestmark = [
    allure.epic("Media Generation"),
    allure.feature("Media Storage"),
]

_FIXED_NOW = datetime(2025, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)


Handler = Callable[[httpx.Request], httpx.Response]


def _store(root: Path, handler: Handler | None = None) -> MediaStore:
    transport = httpx.MockTransport(handler) if handler is not None else None
    return MediaStore(root, transport=transport, now=lambda: _FIXED_NOW)


@pytest.mark.asyncio
async def test_build_path_uses_type_folder_and_avoids_collisions(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        first = store.build_path("image")
        assert first == tmp_path / "image" / "generated-image-2025-01-02T03-04-05-678000Z.png"

        first.parent.mkdir(parents=True)
        first.write_bytes(b"taken")
        second = store.build_path("image")
        assert second.name == "generated-image-2025-01-02T03-04-05-678000Z-1.png"
        assert store.build_path("audio").suffix == ".mp3"
        assert store.build_path("video").suffix == ".mp4"
    finally:
        await store.aclose()


@pytest.mark.asyncio
async def test_save_base64_picks_extension_from_mime_type(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        encoded = base64.b64encode(b"\xff\xd8jpeg").decode("ascii")
        path = store.save_base64("image", encoded, mime_type="image/jpeg")
        assert path.suffix == ".jpg"
        assert path.read_bytes() == b"\xff\xd8jpeg"

        with pytest.raises(BackendFailure, match="invalid base64"):
            store.save_base64("image", "not base64!!")
    finally:
        await store.aclose()


@pytest.mark.asyncio
async def test_adopt_file_copies_external_files_only(tmp_path: Path) -> None:
    root = tmp_path / "media"
    store = _store(root)
    try:
        external = tmp_path / "backend-output" / "speech.wav"
        external.parent.mkdir()
        external.write_bytes(b"RIFF")

        adopted = store.adopt_file("audio", external)
        assert adopted.parent == root / "audio"
        assert adopted.suffix == ".wav"
        assert adopted.read_bytes() == b"RIFF"
        assert external.exists()

        assert store.adopt_file("audio", adopted) == adopted
    finally:
        await store.aclose()


@pytest.mark.asyncio
async def test_download_saves_response_body(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/missing.mp4":
            return httpx.Response(404)
        return httpx.Response(200, content=b"mp4data", headers={"content-type": "video/mp4"})

    store = _store(tmp_path, handler)
    try:
        path = await store.download("video", "https://cdn.example.com/clip")
        assert path.parent == tmp_path / "video"
        assert path.read_bytes() == b"mp4data"

        with pytest.raises(BackendFailure, match="HTTP 404"):
            await store.download("video", "https://cdn.example.com/missing.mp4")
    finally:
        await store.aclose()


@pytest.mark.asyncio
async def test_download_timeouts_are_transient(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    store = _store(tmp_path, handler)
    try:
        with pytest.raises(TransientBackendError) as error:
            await store.download("image", "https://cdn.example.com/img.png")
        assert error.value.timed_out is True
    finally:
        await store.aclose()
