"""Multimodal file and media-generation backend over a JSON-lines server."""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import replace
from pathlib import Path
from typing import Any

from layer_bridge import __version__
from layer_bridge.auth import AuthVerifier
from layer_bridge.backend.jsonl_backend import (
    DEFAULT_POOL_TTL_SECONDS,
    JsonLinesProcessPool,
    JsonLinesSession,
)
from layer_bridge.cache.auth_cache import AuthStatusCache
from layer_bridge.config import LayerSettings
from layer_bridge.errors import BackendFailure, ValidationError
from layer_bridge.failure_classifier import classify_backend_failure, error_from_classification
from layer_bridge.intent import IntentClassifier
from layer_bridge.layers.base import InvocationOutput, LayerAdapter
from layer_bridge.media import MediaStore
from layer_bridge.models import LayerType, Task, TaskKind
from layer_bridge.pricing import estimate_cost_usd
from layer_bridge.timeouts import compute_timeout

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
_MEDIA_TYPES: dict[TaskKind, str] = {
    TaskKind.GENERATE_IMAGE: "image",
    TaskKind.GENERATE_VIDEO: "video",
    TaskKind.GENERATE_AUDIO: "audio",
}
_GENERATION_SECONDS: dict[TaskKind, float] = {
    TaskKind.GENERATE_IMAGE: 30.0,
    TaskKind.GENERATE_VIDEO: 120.0,
    TaskKind.GENERATE_AUDIO: 20.0,
}
_LOCAL_MEDIA_PATH = re.compile(
    r"(/[^\s\"'<>]+\.(?:png|jpe?g|webp|gif|mp4|mov|webm|mp3|wav|ogg|m4a))",
    re.IGNORECASE,
)


class AIStudioLayer(LayerAdapter):
    """Multimodal analysis, file conversion and image/video/audio generation."""

    layer = LayerType.AISTUDIO
    max_files = 10
    max_file_bytes = 50 * 1024 * 1024

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: LayerSettings,
        auth_cache: AuthStatusCache,
        verifier: AuthVerifier,
        media_store: MediaStore,
        classifier: IntentClassifier | None = None,
        pool: JsonLinesProcessPool | None = None,
        pool_ttl_seconds: float = DEFAULT_POOL_TTL_SECONDS,
    ) -> None:
        super().__init__(
            settings=settings,
            auth_cache=auth_cache,
            verifier=verifier,
            classifier=classifier,
        )
        self._media = media_store
        if pool is None:
            argv = shlex.split(settings.command)
            pool = JsonLinesProcessPool(
                lambda: JsonLinesSession.spawn(argv, layer=LayerType.AISTUDIO),
                ttl_seconds=pool_ttl_seconds,
            )
        self._pool = pool

    async def aclose(self) -> None:
        await self._pool.close()

    def can_handle(self, task: Task) -> bool:
        match task.kind:
            case (
                TaskKind.MULTIMODAL
                | TaskKind.DOCUMENT_ANALYSIS
                | TaskKind.IMAGE_ANALYSIS
                | TaskKind.AUDIO_ANALYSIS
                | TaskKind.CONVERT_FILE
                | TaskKind.GENERATE_IMAGE
                | TaskKind.GENERATE_VIDEO
                | TaskKind.GENERATE_AUDIO
                | TaskKind.GENERATE_CONTENT
            ):
                return True
            case TaskKind.TEXT_PROMPT:
                return bool(task.files) or self._classifier.media_kind(task.prompt) is not None
            case TaskKind.COMPLEX_REASONING | TaskKind.SYNTHESIZE | TaskKind.GROUNDED_SEARCH:
                return False

    def effective_kind(self, task: Task) -> TaskKind:
        """Resolve free-text prompts to the concrete operation they ask for."""

        if task.kind is not TaskKind.TEXT_PROMPT:
            return task.kind
        media_kind = self._classifier.media_kind(task.prompt)
        if media_kind is not None:
            return media_kind
        return TaskKind.MULTIMODAL if task.files else TaskKind.GENERATE_CONTENT

    def get_capabilities(self) -> list[str]:
        return [
            "multimodal_processing",
            "document_analysis",
            "image_analysis",
            "audio_analysis",
            "file_conversion",
            "image_generation",
            "video_generation",
            "audio_generation",
        ]

    def get_cost(self, task: Task) -> float:
        return estimate_cost_usd(
            layer=self.layer,
            kind=self.effective_kind(task),
            file_count=len(task.files),
            quality=task.options.quality_level,
        )

    def get_estimated_duration(self, task: Task) -> float:
        generation = _GENERATION_SECONDS.get(self.effective_kind(task))
        if generation is not None:
            return generation
        return 10.0 + 5.0 * len(task.files)

    def timeout_for(self, task: Task) -> float:
        effective = replace(task, kind=self.effective_kind(task))
        return compute_timeout(effective, base_seconds=self.settings.base_timeout_seconds)

    async def _invoke(self, task: Task, timeout: float) -> InvocationOutput:
        kind = self.effective_kind(task)
        tool, arguments = self._build_call(kind, task)
        async with self._pool.session() as session:
            if not session.initialized:
                await self._handshake(session, timeout)
            reply = await session.call(
                "tools/call",
                {"name": tool, "arguments": arguments},
                timeout_seconds=timeout,
            )
        if not reply.ok:
            raise self._failure(f"{tool} failed: {reply.error_message}")

        result = reply.result if isinstance(reply.result, dict) else {}
        content = result.get("content") or []
        text = "\n".join(
            str(part.get("text", ""))
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        ).strip()
        if result.get("isError"):
            raise self._failure(f"{tool} failed: {text or 'unknown error'}")

        media_type = _MEDIA_TYPES.get(kind)
        if media_type is None:
            return InvocationOutput(data=text)

        paths = await self._store_media(media_type, content, text)
        if not paths:
            raise BackendFailure(
                f"{tool} returned no {media_type} output.",
                layer=self.layer,
            )
        return InvocationOutput(
            data={"text": text, "media_paths": [str(path) for path in paths]},
            media_paths=tuple(str(path) for path in paths),
        )

    def _build_call(self, kind: TaskKind, task: Task) -> tuple[str, dict[str, Any]]:
        files = [{"path": file.path} for file in task.files]
        match kind:
            case TaskKind.GENERATE_IMAGE:
                return "generate_image", {
                    "prompt": task.prompt,
                    "numberOfImages": int(task.params.get("count", 1)),
                }
            case TaskKind.GENERATE_VIDEO:
                return "generate_video", {
                    "prompt": task.prompt,
                    "durationSeconds": int(task.params.get("duration", 5)),
                }
            case TaskKind.GENERATE_AUDIO:
                return "generate_audio", {
                    "text": task.prompt,
                    "voice": task.params.get("voice", "default"),
                }
            case TaskKind.CONVERT_FILE:
                target = task.params.get("target_format")
                if not target:
                    raise ValidationError(
                        "convert_file requires params.target_format.",
                        layer=self.layer,
                    )
                if not files:
                    raise ValidationError("convert_file requires files.", layer=self.layer)
                return "convert_file", {
                    "files": files,
                    "target_format": str(target),
                    "instructions": task.prompt,
                }
            case (
                TaskKind.MULTIMODAL
                | TaskKind.DOCUMENT_ANALYSIS
                | TaskKind.IMAGE_ANALYSIS
                | TaskKind.AUDIO_ANALYSIS
                | TaskKind.GENERATE_CONTENT
            ):
                arguments: dict[str, Any] = {
                    "user_prompt": task.prompt,
                    "files": files,
                    "model": self.settings.model,
                }
                if task.options.temperature is not None:
                    arguments["temperature"] = task.options.temperature
                return "generate_content", arguments
            case (
                TaskKind.TEXT_PROMPT
                | TaskKind.COMPLEX_REASONING
                | TaskKind.SYNTHESIZE
                | TaskKind.GROUNDED_SEARCH
            ):
                raise ValidationError(
                    f"aistudio cannot execute {kind.value} tasks.",
                    layer=self.layer,
                )

    async def _handshake(self, session: JsonLinesSession, timeout: float) -> None:
        reply = await session.call(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "layer-bridge", "version": __version__},
            },
            timeout_seconds=timeout,
        )
        if not reply.ok:
            raise self._failure(f"server initialization failed: {reply.error_message}")
        await session.notify("notifications/initialized")
        session.initialized = True
        logger.debug("AI Studio session initialized")

    async def _store_media(
        self,
        media_type: str,
        content: list[Any],
        text: str,
    ) -> list[Path]:
        paths: list[Path] = []
        for part in content:
            if not isinstance(part, dict):
                continue
            part_type = part.get("type")
            if part_type in {"image", "audio", "video"} and part.get("data"):
                paths.append(
                    self._media.save_base64(
                        str(part_type),
                        str(part["data"]),
                        mime_type=part.get("mimeType"),
                    ),
                )
            elif part_type == "resource":
                uri = str((part.get("resource") or {}).get("uri", ""))
                if uri.startswith(("http://", "https://")):
                    paths.append(await self._media.download(media_type, uri))
                elif uri.startswith("file://"):
                    paths.append(self._media.adopt_file(media_type, Path(uri[len("file://") :])))
        if not paths:
            for candidate in _LOCAL_MEDIA_PATH.findall(text):
                path = Path(candidate)
                if path.is_file():
                    paths.append(self._media.adopt_file(media_type, path))
        return paths

    def _failure(self, message: str) -> Exception:
        classification = classify_backend_failure(
            layer=self.layer,
            exit_code=1,
            stdout="",
            stderr=message,
        )
        return error_from_classification(classification, layer=self.layer, message=message)
