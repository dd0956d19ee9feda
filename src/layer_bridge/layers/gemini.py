"""Search and grounding backend driven through the Gemini CLI."""

from __future__ import annotations

import re

from layer_bridge.auth import AuthVerifier
from layer_bridge.backend.base import ProcessRunner
from layer_bridge.cache.auth_cache import AuthStatusCache
from layer_bridge.config import LayerSettings
from layer_bridge.errors import QuotaExceededError, ValidationError, remediation_for_quota
from layer_bridge.intent import IntentClassifier
from layer_bridge.layers.base import CliLayerAdapter, InvocationOutput
from layer_bridge.models import FileType, LayerType, Task, TaskKind
from layer_bridge.quota import QuotaMonitor

_URL_PATTERN = re.compile(r"https?://[^\s<>\"')\]]+")
_SOURCE_LINE_PATTERN = re.compile(r"^\s*(?:sources?|references?)\s*:\s*(.+)$", re.IGNORECASE)
_SUPPORTED_FILE_TYPES = frozenset({FileType.TEXT, FileType.PDF, FileType.DOCUMENT, FileType.IMAGE})
_LONG_PROMPT_CHARS = 500


class GeminiLayer(CliLayerAdapter):
    """Grounded search, current information and general text tasks."""

    layer = LayerType.GEMINI

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: LayerSettings,
        auth_cache: AuthStatusCache,
        verifier: AuthVerifier,
        classifier: IntentClassifier | None = None,
        runner: ProcessRunner | None = None,
        quota: QuotaMonitor | None = None,
    ) -> None:
        super().__init__(
            settings=settings,
            auth_cache=auth_cache,
            verifier=verifier,
            classifier=classifier,
            runner=runner,
        )
        self.quota = quota

    def can_handle(self, task: Task) -> bool:
        if any(file.type not in _SUPPORTED_FILE_TYPES for file in task.files):
            return False
        match task.kind:
            case (
                TaskKind.GROUNDED_SEARCH
                | TaskKind.GENERATE_CONTENT
                | TaskKind.DOCUMENT_ANALYSIS
                | TaskKind.IMAGE_ANALYSIS
            ):
                return True
            case TaskKind.TEXT_PROMPT:
                return self._classifier.media_kind(task.prompt) is None
            case (
                TaskKind.COMPLEX_REASONING
                | TaskKind.SYNTHESIZE
                | TaskKind.MULTIMODAL
                | TaskKind.AUDIO_ANALYSIS
                | TaskKind.CONVERT_FILE
                | TaskKind.GENERATE_IMAGE
                | TaskKind.GENERATE_VIDEO
                | TaskKind.GENERATE_AUDIO
            ):
                return False

    def get_capabilities(self) -> list[str]:
        return [
            "grounded_search",
            "current_information",
            "contextual_analysis",
            "document_analysis",
            "image_understanding",
        ]

    def get_estimated_duration(self, task: Task) -> float:
        duration = 3.0 + 2.0 * len(task.files)
        if self.wants_search(task):
            duration += 5.0
        if len(task.prompt) > _LONG_PROMPT_CHARS:
            duration += 2.0
        return duration

    def wants_search(self, task: Task) -> bool:
        match task.kind:
            case TaskKind.GROUNDED_SEARCH:
                return True
            case TaskKind.TEXT_PROMPT:
                return task.options.use_search or self._classifier.needs_current_info(task.prompt)
            case (
                TaskKind.GENERATE_CONTENT
                | TaskKind.DOCUMENT_ANALYSIS
                | TaskKind.IMAGE_ANALYSIS
                | TaskKind.COMPLEX_REASONING
                | TaskKind.SYNTHESIZE
                | TaskKind.MULTIMODAL
                | TaskKind.AUDIO_ANALYSIS
                | TaskKind.CONVERT_FILE
                | TaskKind.GENERATE_IMAGE
                | TaskKind.GENERATE_VIDEO
                | TaskKind.GENERATE_AUDIO
            ):
                return task.options.use_search

    async def _invoke(self, task: Task, timeout: float) -> InvocationOutput:
        if not self.can_handle(task):
            raise ValidationError(
                f"gemini cannot execute {task.kind.value} tasks.",
                layer=self.layer,
            )
        self._reserve_quota()
        search = self.wants_search(task)
        flags = ["--search"] if search else []
        output = await self._run_cli(prompt=_with_file_refs(task), flags=flags, timeout=timeout)
        return InvocationOutput(data=output, sources=extract_sources(output), grounded=search)

    def _reserve_quota(self) -> None:
        if self.quota is None:
            return
        decision = self.quota.can_make_request()
        if not decision.allowed:
            raise QuotaExceededError(
                f"gemini {decision.reason}; retry in {decision.wait_seconds:.0f}s",
                layer=self.layer,
                remediation=remediation_for_quota(self.layer),
            )
        self.quota.track_request()


def extract_sources(text: str) -> tuple[str, ...]:
    """Collect cited URLs and `Source:` lines in first-seen order."""

    found: list[str] = []
    for line in text.splitlines():
        match = _SOURCE_LINE_PATTERN.match(line)
        if match is not None and not _URL_PATTERN.search(line):
            found.append(match.group(1).strip())
        found.extend(url.rstrip(".,;") for url in _URL_PATTERN.findall(line))
    return tuple(dict.fromkeys(found))


def _with_file_refs(task: Task) -> str:
    if not task.files:
        return task.prompt
    refs = " ".join(f"@{file.path}" for file in task.files)
    return f"{refs}\n{task.prompt}"
