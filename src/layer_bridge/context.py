"""Application context owning caches, adapters and the workflow engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType

from layer_bridge.auth import AuthVerifier, EnvironmentAuthVerifier
from layer_bridge.backend.base import ProcessRunner
from layer_bridge.cache.auth_cache import AuthStatusCache
from layer_bridge.cache.result_cache import ResultCache
from layer_bridge.config import Settings
from layer_bridge.intent import KeywordIntentClassifier
from layer_bridge.layer_manager import LayerManager
from layer_bridge.layers.aistudio import AIStudioLayer
from layer_bridge.layers.claude import ClaudeLayer
from layer_bridge.layers.gemini import GeminiLayer
from layer_bridge.media import MediaStore
from layer_bridge.models import LayerType
from layer_bridge.quota import QuotaMonitor
from layer_bridge.workflow.orchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AppContext:
    """Explicitly constructed process-wide collaborators."""

    settings: Settings
    result_cache: ResultCache
    auth_cache: AuthStatusCache
    media_store: MediaStore
    layer_manager: LayerManager
    orchestrator: WorkflowOrchestrator
    aistudio: AIStudioLayer
    quota_monitor: QuotaMonitor

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        verifier: AuthVerifier | None = None,
        runner: ProcessRunner | None = None,
    ) -> AppContext:
        settings.validate()
        result_cache = ResultCache(
            ttl_seconds=settings.result_cache.ttl_seconds,
            max_entries=settings.result_cache.max_entries,
            similarity_threshold=settings.result_cache.similarity_threshold,
            enable_metrics=settings.result_cache.enable_metrics,
        )
        auth_cache = AuthStatusCache(
            ttl_seconds=settings.auth_cache.ttl_seconds,
            failure_backoff_seconds=settings.auth_cache.failure_backoff_seconds,
            failure_reset_seconds=settings.auth_cache.failure_reset_seconds,
            jitter_ratio=settings.auth_cache.jitter_ratio,
        )
        verifier = verifier or EnvironmentAuthVerifier(
            commands={
                LayerType(name): layer.command
                for name, layer in settings.layers.items()
                if name in {"claude", "gemini"}
            },
        )
        media_store = MediaStore(
            settings.media.output_dir,
            download_timeout_seconds=settings.media.download_timeout_seconds,
        )
        classifier = KeywordIntentClassifier()
        quota_monitor = QuotaMonitor(
            requests_per_minute=settings.quota.requests_per_minute,
            requests_per_day=settings.quota.requests_per_day,
        )
        aistudio = AIStudioLayer(
            settings=settings.layers["aistudio"],
            auth_cache=auth_cache,
            verifier=verifier,
            media_store=media_store,
            classifier=classifier,
        )
        adapters = [
            ClaudeLayer(
                settings=settings.layers["claude"],
                auth_cache=auth_cache,
                verifier=verifier,
                classifier=classifier,
                runner=runner,
            ),
            GeminiLayer(
                settings=settings.layers["gemini"],
                auth_cache=auth_cache,
                verifier=verifier,
                classifier=classifier,
                runner=runner,
                quota=quota_monitor,
            ),
            aistudio,
        ]
        layer_manager = LayerManager(adapters, result_cache=result_cache, classifier=classifier)
        orchestrator = WorkflowOrchestrator(
            layer_manager,
            max_concurrent_steps=settings.workflow.max_concurrent_steps,
            max_steps=settings.workflow.max_steps,
            default_timeout_seconds=settings.workflow.default_timeout_seconds,
        )
        logger.debug("Application context built with layers %s", list(settings.layers))
        return cls(
            settings=settings,
            result_cache=result_cache,
            auth_cache=auth_cache,
            media_store=media_store,
            layer_manager=layer_manager,
            orchestrator=orchestrator,
            aistudio=aistudio,
            quota_monitor=quota_monitor,
        )

    async def aclose(self) -> None:
        await self.aistudio.aclose()
        await self.media_store.aclose()

    async def __aenter__(self) -> AppContext:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()
