"""Adapter contract shared by every backend layer."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from layer_bridge.auth import AuthVerifier
from layer_bridge.backend.base import ProcessRunner, ProcessRunRequest
from layer_bridge.backend.cli_backend import CliProcessRunner, build_run_args
from layer_bridge.cache.auth_cache import AuthStatus, AuthStatusCache
from layer_bridge.config import LayerSettings
from layer_bridge.errors import AuthenticationError, TransientBackendError, ValidationError
from layer_bridge.failure_classifier import classify_backend_failure, error_from_classification
from layer_bridge.intent import IntentClassifier, KeywordIntentClassifier
from layer_bridge.models import LayerResult, LayerType, ResultMetadata, Task
from layer_bridge.pricing import estimate_cost_usd
from layer_bridge.timeouts import compute_timeout

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InvocationOutput:
    """Raw adapter output before metadata normalization."""

    data: Any
    sources: tuple[str, ...] = ()
    grounded: bool = False
    media_paths: tuple[str, ...] = ()
    tokens_used: int | None = None


class LayerAdapter(ABC):
    """Uniform probe and execute wrapper around one external backend."""

    layer: ClassVar[LayerType]
    max_files: ClassVar[int] = 10
    max_file_bytes: ClassVar[int] = 100 * 1024 * 1024

    def __init__(
        self,
        *,
        settings: LayerSettings,
        auth_cache: AuthStatusCache,
        verifier: AuthVerifier,
        classifier: IntentClassifier | None = None,
    ) -> None:
        self.settings = settings
        self._auth_cache = auth_cache
        self._verifier = verifier
        self._classifier = classifier or KeywordIntentClassifier()
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def max_attempts(self) -> int:
        return self.settings.max_retries

    @property
    def retry_delay_seconds(self) -> float:
        return self.settings.retry_delay_seconds

    async def initialize(self) -> None:
        """Verify credentials and reachability; no-op after the first success."""

        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            status = await self._credential_status()
            if not status.success:
                raise AuthenticationError(
                    status.error or f"{self.layer.value} is not authenticated.",
                    service=self.layer,
                    remediation=status.action_instructions,
                )
            await self._probe()
            self._initialized = True
            logger.debug("Layer %s initialized (%s)", self.layer.value, status.method)

    async def is_available(self) -> bool:
        try:
            await self.initialize()
        except Exception:  # noqa: BLE001
            logger.debug("Layer %s unavailable", self.layer.value, exc_info=True)
            return False
        return True

    def on_authentication_error(self) -> None:
        """Forget trusted credentials after a live call was rejected."""

        self._initialized = False
        cached = self._auth_cache.get(self.layer)
        if cached is not None and cached.success:
            self._auth_cache.invalidate(self.layer)

    async def execute(self, task: Task) -> LayerResult:
        await self.initialize()
        self.validate_files(task)
        timeout = self.timeout_for(task)
        started = time.monotonic()
        output = await self._invoke(task, timeout)
        return LayerResult(
            success=True,
            data=output.data,
            metadata=ResultMetadata(
                layer=self.layer,
                duration=time.monotonic() - started,
                tokens_used=output.tokens_used,
                cost=self.get_cost(task),
                model=self.settings.model,
                sources=output.sources,
                grounded=output.grounded,
                media_paths=output.media_paths,
            ),
        )

    def timeout_for(self, task: Task) -> float:
        return compute_timeout(task, base_seconds=self.settings.base_timeout_seconds)

    def get_cost(self, task: Task) -> float:
        return estimate_cost_usd(
            layer=self.layer,
            kind=task.kind,
            file_count=len(task.files),
            quality=task.options.quality_level,
        )

    def validate_files(self, task: Task) -> None:
        if len(task.files) > self.max_files:
            raise ValidationError(
                f"{self.layer.value} accepts at most {self.max_files} files, "
                f"got {len(task.files)}.",
                layer=self.layer,
            )
        for file in task.files:
            if file.size is not None and file.size > self.max_file_bytes:
                raise ValidationError(
                    f"File {file.path} exceeds the {self.max_file_bytes // (1024 * 1024)}MB limit.",
                    layer=self.layer,
                )

    @abstractmethod
    def can_handle(self, task: Task) -> bool:
        """Pure predicate over task shape."""

    @abstractmethod
    def get_capabilities(self) -> list[str]:
        """Capability names advertised for status output."""

    @abstractmethod
    def get_estimated_duration(self, task: Task) -> float:
        """Expected wall-clock seconds for one invocation."""

    @abstractmethod
    async def _invoke(self, task: Task, timeout: float) -> InvocationOutput:
        """Call the backend and return its output or raise a typed error."""

    async def _probe(self) -> None:
        """Reachability check run once during initialization."""

    async def _credential_status(self) -> AuthStatus:
        cached = self._auth_cache.get(self.layer)
        if cached is not None:
            return cached
        status = await self._verifier.verify(self.layer)
        return self._auth_cache.set(status)


class CliLayerAdapter(LayerAdapter):
    """Adapter that runs the backend CLI once per invocation."""

    def __init__(
        self,
        *,
        settings: LayerSettings,
        auth_cache: AuthStatusCache,
        verifier: AuthVerifier,
        classifier: IntentClassifier | None = None,
        runner: ProcessRunner | None = None,
    ) -> None:
        super().__init__(
            settings=settings,
            auth_cache=auth_cache,
            verifier=verifier,
            classifier=classifier,
        )
        self._runner = runner or CliProcessRunner()

    async def _run_cli(self, *, prompt: str, flags: list[str], timeout: float) -> str:
        argv = build_run_args(
            command_template=self.settings.command,
            model=self.settings.model,
            prompt=prompt,
            flags=flags,
        )
        result = await self._runner.run(
            ProcessRunRequest(argv=argv, timeout_seconds=timeout, layer=self.layer),
        )
        if result.timed_out:
            raise TransientBackendError(
                f"{self.layer.value} timed out after {timeout:.0f}s",
                timed_out=True,
                layer=self.layer,
            )
        if result.exit_code != 0:
            classification = classify_backend_failure(
                layer=self.layer,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
            detail = (result.stderr or result.stdout).strip()[:500] or "no output"
            raise error_from_classification(
                classification,
                layer=self.layer,
                message=f"{self.layer.value} exited with code {result.exit_code}: {detail}",
                exit_code=result.exit_code,
            )
        return result.stdout.strip()
