"""Durable storage for generated images, audio and video."""

from __future__ import annotations

import base64
import binascii
import logging
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import httpx

from layer_bridge.errors import BackendFailure, TransientBackendError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: dict[str, str] = {"image": "png", "video": "mp4", "audio": "mp3"}
_MIME_EXTENSIONS: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}


class MediaStore:
    """Writes media under `<root>/<type>/generated-<type>-<timestamp>.<ext>`."""

    def __init__(
        self,
        root: Path,
        *,
        download_timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.root = root
        self._now = now
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(download_timeout_seconds, connect=10.0),
            transport=transport,
            follow_redirects=True,
        )

    def build_path(self, media_type: str, *, extension: str | None = None) -> Path:
        ext = (extension or DEFAULT_EXTENSIONS.get(media_type, "bin")).lstrip(".")
        stamp = self._now().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        directory = self.root / media_type
        candidate = directory / f"generated-{media_type}-{stamp}.{ext}"
        counter = 1
        while candidate.exists():
            candidate = directory / f"generated-{media_type}-{stamp}-{counter}.{ext}"
            counter += 1
        return candidate

    def save_bytes(self, media_type: str, payload: bytes, *, mime_type: str | None = None) -> Path:
        path = self.build_path(media_type, extension=_MIME_EXTENSIONS.get(mime_type or ""))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        logger.info("Saved generated %s to %s", media_type, path)
        return path

    def save_base64(self, media_type: str, data: str, *, mime_type: str | None = None) -> Path:
        try:
            payload = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as error:
            raise BackendFailure(f"Backend returned invalid base64 {media_type} data.") from error
        return self.save_bytes(media_type, payload, mime_type=mime_type)

    def adopt_file(self, media_type: str, source: Path) -> Path:
        """Copy a backend-written file into the store unless it already lives there."""

        if source.resolve().is_relative_to(self.root.resolve()):
            return source
        path = self.build_path(media_type, extension=source.suffix or None)
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, path)
        return path

    async def download(self, media_type: str, url: str) -> Path:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException as error:
            raise TransientBackendError(
                f"Timed out downloading {media_type}", timed_out=True
            ) from error
        except httpx.HTTPStatusError as error:
            raise BackendFailure(
                f"Download of {media_type} failed: HTTP {error.response.status_code}",
            ) from error
        except httpx.HTTPError as error:
            raise TransientBackendError(f"Download of {media_type} failed: {error}") from error
        mime_type = response.headers.get("content-type", "").split(";")[0].strip()
        return self.save_bytes(media_type, response.content, mime_type=mime_type)

    async def aclose(self) -> None:
        await self._client.aclose()
