"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping

import pytest

from layer_bridge.backend.base import ProcessRunRequest, ProcessRunResult
from layer_bridge.cache.auth_cache import AuthStatus, AuthStatusCache
from layer_bridge.config import LayerSettings
from layer_bridge.layers.base import InvocationOutput, LayerAdapter
from layer_bridge.models import LayerType, Task, TaskKind


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticVerifier:
    """Verifier returning a fixed outcome and counting calls per service."""

    def __init__(self, *, success: bool = True, failing: Iterable[LayerType] = ()) -> None:
        self._success = success
        self._failing = set(failing)
        self.calls: list[LayerType] = []

    async def verify(self, service: LayerType) -> AuthStatus:
        self.calls.append(service)
        if not self._success or service in self._failing:
            return AuthStatus(
                service=service,
                success=False,
                method="test",
                error=f"{service.value} credentials missing",
                action_instructions=f"log in to {service.value}",
            )
        return AuthStatus(service=service, success=True, method="test")


class FakeRunner:
    """Process runner that records requests and replays canned results."""

    def __init__(self, *results: ProcessRunResult) -> None:
        self._results = list(results)
        self.requests: list[ProcessRunRequest] = []

    async def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        self.requests.append(request)
        if self._results:
            return self._results.pop(0)
        return ProcessRunResult(exit_code=0, timed_out=False, stdout="ok", stderr="")


def completed(stdout: str = "ok", *, exit_code: int = 0, stderr: str = "") -> ProcessRunResult:
    return ProcessRunResult(exit_code=exit_code, timed_out=False, stdout=stdout, stderr=stderr)


def layer_settings(
    command: str = "fake --model {model} {flags} {prompt}",
    *,
    model: str = "fake-model",
    max_retries: int = 1,
    retry_delay_seconds: float = 0.0,
) -> LayerSettings:
    return LayerSettings(
        command=command,
        model=model,
        max_retries=max_retries,
        base_timeout_seconds=30.0,
        retry_delay_seconds=retry_delay_seconds,
    )


Responder = Callable[[Task], str]


def echo_prompt(task: Task) -> str:
    return task.prompt


class FakeAdapter(LayerAdapter):
    """In-process adapter with scripted outcomes.

    `outcomes` are consumed one per invocation: an exception instance is
    raised, a string is returned as output. Once exhausted, `respond`
    produces the output. `delays` maps prompts to simulated latency.
    """

    def __init__(  # noqa: PLR0913
        self,
        layer: LayerType,
        *,
        outcomes: Iterable[str | Exception] = (),
        respond: Responder = echo_prompt,
        delays: Mapping[str, float] | None = None,
        kinds: Iterable[TaskKind] | None = None,
        cost: float = 0.0,
        duration: float = 1.0,
        max_retries: int = 1,
        retry_delay_seconds: float = 0.0,
        auth_cache: AuthStatusCache | None = None,
        verifier: StaticVerifier | None = None,
    ) -> None:
        super().__init__(
            settings=layer_settings(
                max_retries=max_retries,
                retry_delay_seconds=retry_delay_seconds,
            ),
            auth_cache=auth_cache or AuthStatusCache(jitter_ratio=0.0),
            verifier=verifier or StaticVerifier(),
        )
        self.layer = layer
        self._outcomes = list(outcomes)
        self._respond = respond
        self._delays = dict(delays or {})
        self._kinds = set(kinds) if kinds is not None else None
        self._cost = cost
        self._duration = duration
        self.calls: list[Task] = []

    def can_handle(self, task: Task) -> bool:
        return self._kinds is None or task.kind in self._kinds

    def get_capabilities(self) -> list[str]:
        return ["fake"]

    def get_cost(self, task: Task) -> float:
        return self._cost

    def get_estimated_duration(self, task: Task) -> float:
        return self._duration

    async def _invoke(self, task: Task, timeout: float) -> InvocationOutput:
        self.calls.append(task)
        delay = self._delays.get(task.prompt, 0.0)
        if delay:
            await asyncio.sleep(delay)
        if self._outcomes:
            outcome = self._outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return InvocationOutput(data=outcome)
        return InvocationOutput(data=self._respond(task))


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def auth_cache() -> AuthStatusCache:
    return AuthStatusCache(jitter_ratio=0.0)


@pytest.fixture()
def verifier() -> StaticVerifier:
    return StaticVerifier()


@pytest.fixture(autouse=True)
def _isolate_pricing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LAYER_BRIDGE_PRICING", raising=False)
