"""Backend selection, retry and fallback for single tasks."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace

from layer_bridge.cache.result_cache import ResultCache
from layer_bridge.errors import (
    AuthenticationError,
    BackendFailure,
    BridgeError,
    TransientBackendError,
    ValidationError,
)
from layer_bridge.intent import IntentClassifier, KeywordIntentClassifier
from layer_bridge.layers.base import LayerAdapter
from layer_bridge.models import (
    Complexity,
    FileType,
    LayerResult,
    LayerType,
    ResultMetadata,
    Task,
    TaskKind,
)

logger = logging.getLogger(__name__)

CACHEABLE_KINDS = frozenset(
    {TaskKind.TEXT_PROMPT, TaskKind.GROUNDED_SEARCH, TaskKind.COMPLEX_REASONING},
)
_PREFERRED_SCORE = 10
_SECONDARY_SCORE = 3


@dataclass(slots=True)
class TaskAnalysis:
    """Routing signals extracted from one task."""

    complexity: Complexity
    has_files: bool
    file_types: tuple[FileType, ...]
    needs_current_info: bool
    is_generation: bool
    media_kind: TaskKind | None
    is_code_related: bool
    estimated_tokens: int
    preferred_layer: LayerType
    reasoning: str


class LayerManager:
    """Owns the adapters and turns a task into exactly one LayerResult."""

    def __init__(
        self,
        adapters: Iterable[LayerAdapter],
        *,
        result_cache: ResultCache | None = None,
        classifier: IntentClassifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._adapters: dict[LayerType, LayerAdapter] = {}
        for adapter in adapters:
            self._adapters[adapter.layer] = adapter
        self._result_cache = result_cache
        self._classifier = classifier or KeywordIntentClassifier()
        self._sleep = sleep

    @property
    def layers(self) -> tuple[LayerType, ...]:
        return tuple(self._adapters)

    def get_adapter(self, layer: LayerType) -> LayerAdapter:
        try:
            return self._adapters[layer]
        except KeyError:
            raise ValidationError(f"Layer {layer.value} is not configured.") from None

    def analyze_task(self, task: Task) -> TaskAnalysis:
        prompt = task.prompt
        file_types = tuple(dict.fromkeys(file.type for file in task.files))
        needs_current_info = task.kind is TaskKind.GROUNDED_SEARCH or (
            self._classifier.needs_current_info(prompt)
        )
        media_kind = task.kind if task.kind.is_media_generation else None
        if media_kind is None and task.kind is TaskKind.TEXT_PROMPT:
            media_kind = self._classifier.media_kind(prompt)

        if task.files or media_kind is not None:
            preferred = LayerType.AISTUDIO
            reasoning = (
                "Files attached; multimodal processing required."
                if task.files
                else f"Media generation ({media_kind.value}) requested."
            )
        elif needs_current_info:
            preferred = LayerType.GEMINI
            reasoning = "Current information needed; grounded search preferred."
        else:
            preferred = LayerType.CLAUDE
            reasoning = "Pure reasoning task without files."

        if len(task.files) > 3 or len(prompt) > 4_000:
            complexity = Complexity.HIGH
        elif task.files or len(prompt) > 1_000:
            complexity = Complexity.MEDIUM
        else:
            complexity = Complexity.LOW

        return TaskAnalysis(
            complexity=complexity,
            has_files=bool(task.files),
            file_types=file_types,
            needs_current_info=needs_current_info,
            is_generation=self._classifier.is_generation(prompt),
            media_kind=media_kind,
            is_code_related=self._classifier.is_code_related(prompt),
            estimated_tokens=len(prompt) // 4 + 100 * len(task.files),
            preferred_layer=preferred,
            reasoning=reasoning,
        )

    def rank_layers(self, task: Task) -> list[LayerAdapter]:
        """Return capable adapters, best first; an explicit layer is exclusive."""

        explicit = task.explicit_layer
        if explicit is not None:
            adapter = self.get_adapter(explicit)
            if not adapter.can_handle(task):
                raise ValidationError(
                    f"Layer {explicit.value} cannot handle {task.kind.value} tasks.",
                    layer=explicit,
                )
            return [adapter]

        candidates = [adapter for adapter in self._adapters.values() if adapter.can_handle(task)]
        if not candidates:
            raise ValidationError(f"No configured layer can handle {task.kind.value} tasks.")

        analysis = self.analyze_task(task)
        return sorted(
            candidates,
            key=lambda adapter: (
                -self._priority(adapter.layer, analysis),
                adapter.get_cost(task),
                adapter.get_estimated_duration(task),
            ),
        )

    def select_layer(self, task: Task) -> LayerType:
        return self.rank_layers(task)[0].layer

    async def execute(self, task: Task) -> LayerResult:
        """Run `task` with retry and fallback; never raises."""

        started = time.monotonic()
        try:
            chain = self.rank_layers(task)
        except ValidationError as error:
            return _failure_result(
                error=str(error),
                remediation=error.remediation,
                layer=task.explicit_layer,
                duration=time.monotonic() - started,
            )

        cached = self._cached_result(task, chain[0].layer, started)
        if cached is not None:
            return cached

        errors: list[BridgeError] = []
        tried: list[LayerType] = []
        attempts_total = 0
        for index, adapter in enumerate(chain):
            tried.append(adapter.layer)
            if index == 0:
                logger.info("Executing %s on %s", task.kind.value, adapter.layer.value)
            try:
                result, attempts = await self._execute_with_retry(adapter, task)
            except ValidationError as error:
                return _failure_result(
                    error=str(error),
                    remediation=error.remediation,
                    layer=adapter.layer,
                    duration=time.monotonic() - started,
                    attempts=attempts_total + 1,
                    tried=tuple(tried),
                )
            except BridgeError as error:
                if error.layer is None:
                    error.layer = adapter.layer
                attempts_total += error.attempts
                errors.append(error)
                if index + 1 < len(chain):
                    logger.info(
                        "Layer %s failed (%s); falling back to %s",
                        adapter.layer.value,
                        type(error).__name__,
                        chain[index + 1].layer.value,
                    )
                continue
            except Exception as error:  # noqa: BLE001
                logger.exception("Layer %s raised an unexpected error", adapter.layer.value)
                attempts_total += 1
                errors.append(
                    BackendFailure(str(error) or type(error).__name__, layer=adapter.layer),
                )
                continue

            attempts_total += attempts
            self._store_result(task, result)
            return replace(
                result,
                metadata=replace(
                    result.metadata,
                    duration=time.monotonic() - started,
                    attempts=attempts_total,
                    layers_tried=tuple(tried),
                ),
            )

        return _failure_result(
            error="; ".join(f"{err.layer.value}: {err}" for err in errors),
            remediation=next(
                (err.remediation for err in reversed(errors) if err.remediation),
                None,
            ),
            layer=tried[-1],
            duration=time.monotonic() - started,
            attempts=attempts_total,
            tried=tuple(tried),
        )

    async def health(self) -> dict[LayerType, bool]:
        layers = list(self._adapters)
        statuses = await asyncio.gather(
            *(self._adapters[layer].is_available() for layer in layers),
        )
        return dict(zip(layers, statuses, strict=True))

    async def _execute_with_retry(
        self,
        adapter: LayerAdapter,
        task: Task,
    ) -> tuple[LayerResult, int]:
        max_attempts = task.max_attempts or adapter.max_attempts
        attempt = 0
        while True:
            attempt += 1
            try:
                return await adapter.execute(task), attempt
            except AuthenticationError as error:
                adapter.on_authentication_error()
                error.attempts = attempt
                raise
            except TransientBackendError as error:
                if attempt >= max_attempts:
                    error.attempts = attempt
                    raise
                logger.warning(
                    "Layer %s attempt %d/%d failed: %s; retrying",
                    adapter.layer.value,
                    attempt,
                    max_attempts,
                    error,
                )
                await self._sleep(adapter.retry_delay_seconds)
            except BridgeError as error:
                error.attempts = attempt
                raise

    def _priority(self, layer: LayerType, analysis: TaskAnalysis) -> int:
        score = _PREFERRED_SCORE if layer is analysis.preferred_layer else 0
        match layer:
            case LayerType.AISTUDIO:
                if analysis.has_files or analysis.media_kind is not None:
                    score += _SECONDARY_SCORE
            case LayerType.GEMINI:
                if analysis.needs_current_info:
                    score += _SECONDARY_SCORE
            case LayerType.CLAUDE:
                if not analysis.has_files and not analysis.needs_current_info:
                    score += _SECONDARY_SCORE
        return score

    def _is_cacheable(self, task: Task) -> bool:
        return (
            self._result_cache is not None
            and task.options.use_cache
            and not task.files
            and task.kind in CACHEABLE_KINDS
        )

    def _cached_result(self, task: Task, layer: LayerType, started: float) -> LayerResult | None:
        if self._result_cache is None or not self._is_cacheable(task):
            return None
        lookup = self._result_cache.get(task.prompt, _cache_backend(layer, task))
        if lookup is None:
            return None
        entry = lookup.entry
        return LayerResult(
            success=True,
            data=entry.content,
            metadata=ResultMetadata(
                layer=layer,
                duration=time.monotonic() - started,
                cost=0.0,
                cache_hit=True,
                cache_soft_hit=lookup.soft_hit,
                cache_similarity=lookup.similarity,
                attempts=0,
                sources=entry.sources,
                grounded=entry.grounded,
            ),
        )

    def _store_result(self, task: Task, result: LayerResult) -> None:
        if self._result_cache is None or not self._is_cacheable(task):
            return
        layer = result.metadata.layer
        if layer is None:
            return
        self._result_cache.set(
            task.prompt,
            _cache_backend(layer, task),
            result.data,
            sources=result.metadata.sources,
            grounded=result.metadata.grounded,
        )


def _cache_backend(layer: LayerType, task: Task) -> str:
    return f"{layer.value}:{task.kind.value}"


def _failure_result(  # noqa: PLR0913
    *,
    error: str,
    remediation: str | None,
    layer: LayerType | None,
    duration: float,
    attempts: int = 0,
    tried: tuple[LayerType, ...] = (),
) -> LayerResult:
    return LayerResult(
        success=False,
        data=None,
        metadata=ResultMetadata(
            layer=layer,
            duration=duration,
            attempts=attempts,
            layers_tried=tried,
        ),
        error=error,
        remediation=remediation,
    )
