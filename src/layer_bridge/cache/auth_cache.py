"""Credential status cache with per-service TTL and failure backoff."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from layer_bridge.models import LayerType

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_TTL_SECONDS: dict[LayerType, float] = {
    LayerType.GEMINI: 6 * 3_600.0,
    LayerType.AISTUDIO: 24 * 3_600.0,
    LayerType.CLAUDE: 12 * 3_600.0,
}
DEFAULT_FAILURE_BACKOFF_SECONDS: tuple[float, ...] = (30.0, 60.0, 300.0)
DEFAULT_FAILURE_RESET_SECONDS = 24 * 3_600.0


@dataclass(frozen=True, slots=True)
class AuthStatus:
    """Outcome of one credential verification."""

    service: LayerType
    success: bool
    method: str
    user_info: dict[str, Any] | None = None
    error: str | None = None
    action_instructions: str | None = None
    cached_at: float | None = None


@dataclass(slots=True)
class FailureInfo:
    """Consecutive verification failures for one service."""

    count: int
    last_failure_at: float
    retry_after: float


@dataclass(slots=True)
class _Entry:
    status: AuthStatus
    expires_at: float


@dataclass(slots=True)
class _FailureState:
    count: int = 0
    last_failure_at: float = 0.0
    retry_after: float = 0.0


class AuthStatusCache:
    """Cache of per-service authentication outcomes.

    Successful results live for the service TTL. Failed results are kept
    only for an escalating backoff window (30s, 1m, 5m with jitter) so a
    broken credential is not re-verified on every call.
    """

    def __init__(
        self,
        *,
        ttl_seconds: Mapping[LayerType | str, float] | None = None,
        failure_backoff_seconds: tuple[float, ...] = DEFAULT_FAILURE_BACKOFF_SECONDS,
        failure_reset_seconds: float = DEFAULT_FAILURE_RESET_SECONDS,
        jitter_ratio: float = 0.1,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._ttl_seconds = dict(DEFAULT_SERVICE_TTL_SECONDS)
        for service, ttl in (ttl_seconds or {}).items():
            self._ttl_seconds[LayerType(service)] = ttl
        self._backoff = failure_backoff_seconds
        self._failure_reset_seconds = failure_reset_seconds
        self._jitter_ratio = jitter_ratio
        self._clock = clock
        self._random = rng or random.Random()  # noqa: S311
        self._entries: dict[LayerType, _Entry] = {}
        self._failures: dict[LayerType, _FailureState] = {}

    def ttl_for(self, service: LayerType) -> float:
        return self._ttl_seconds[service]

    def get(self, service: LayerType) -> AuthStatus | None:
        entry = self._entries.get(service)
        if entry is None or self._clock() >= entry.expires_at:
            return None
        return entry.status

    def is_cached(self, service: LayerType) -> bool:
        return self.get(service) is not None

    def set(self, status: AuthStatus) -> AuthStatus:
        now = self._clock()
        stored = replace(status, cached_at=now)
        if status.success:
            self._failures.pop(status.service, None)
            expires_at = now + self._ttl_seconds[status.service]
        else:
            expires_at = now + self._register_failure(status.service, now)
        self._entries[status.service] = _Entry(status=stored, expires_at=expires_at)
        return stored

    def invalidate(self, service: LayerType) -> bool:
        """Drop one service entry; returns whether anything was cached."""

        removed = self._entries.pop(service, None) is not None
        if removed:
            logger.warning("Invalidated cached credential status for %s", service.value)
        return removed

    def force_refresh(self, service: LayerType | None = None) -> None:
        if service is None:
            self._entries.clear()
            return
        self.invalidate(service)

    def clear(self) -> None:
        self._entries.clear()
        self._failures.clear()

    def cleanup(self) -> int:
        now = self._clock()
        expired = [service for service, entry in self._entries.items() if now >= entry.expires_at]
        for service in expired:
            del self._entries[service]
        stale_failures = [
            service
            for service, state in self._failures.items()
            if now - state.last_failure_at > self._failure_reset_seconds
        ]
        for service in stale_failures:
            del self._failures[service]
        return len(expired)

    def failure_info(self, service: LayerType) -> FailureInfo | None:
        state = self._failures.get(service)
        if state is None or state.count == 0:
            return None
        return FailureInfo(
            count=state.count,
            last_failure_at=state.last_failure_at,
            retry_after=state.retry_after,
        )

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        services: dict[str, dict[str, Any]] = {}
        for service, entry in self._entries.items():
            services[service.value] = {
                "success": entry.status.success,
                "method": entry.status.method,
                "expired": now >= entry.expires_at,
                "expires_in": max(0.0, entry.expires_at - now),
            }
        valid = sum(1 for details in services.values() if not details["expired"])
        return {
            "total": len(self._entries),
            "valid": valid,
            "expired": len(self._entries) - valid,
            "services": services,
            "failures": {service.value: state.count for service, state in self._failures.items()},
        }

    def _register_failure(self, service: LayerType, now: float) -> float:
        state = self._failures.get(service)
        if state is None or now - state.last_failure_at > self._failure_reset_seconds:
            state = _FailureState()
            self._failures[service] = state
        state.count += 1
        state.last_failure_at = now
        base = self._backoff[min(state.count, len(self._backoff)) - 1]
        jitter = base * self._jitter_ratio * self._random.uniform(-1.0, 1.0)
        backoff = max(0.0, base + jitter)
        state.retry_after = now + backoff
        logger.debug(
            "Credential check for %s failed %d time(s); retry in %.0fs",
            service.value,
            state.count,
            backoff,
        )
        return backoff
