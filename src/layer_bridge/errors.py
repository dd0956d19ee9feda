"""Typed error taxonomy shared by adapters, layer manager and workflows."""

from __future__ import annotations

from typing import Any

from layer_bridge.models import LayerType


class BridgeError(RuntimeError):
    """Base error with optional layer, details and remediation hint."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        layer: LayerType | None = None,
        details: dict[str, Any] | None = None,
        remediation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.attempts = 1
        self.layer = layer
        self.details = details or {}
        self.remediation = remediation


class ValidationError(BridgeError):
    """Malformed task, unsupported format pair or invalid workflow graph."""


class TransientBackendError(BridgeError):
    """Timeout, network blip or spawn failure; safe to retry."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        timed_out: bool = False,
        layer: LayerType | None = None,
        details: dict[str, Any] | None = None,
        remediation: str | None = None,
    ) -> None:
        super().__init__(message, layer=layer, details=details, remediation=remediation)
        self.timed_out = timed_out


class QuotaExceededError(BridgeError):
    """Backend reported quota or billing exhaustion; do not retry it."""


class AuthenticationError(BridgeError):
    """Credentials rejected by the backend."""

    def __init__(
        self,
        message: str,
        *,
        service: LayerType,
        details: dict[str, Any] | None = None,
        remediation: str | None = None,
    ) -> None:
        super().__init__(
            message,
            layer=service,
            details=details,
            remediation=remediation or remediation_for_auth(service),
        )
        self.service = service


class BackendFailure(BridgeError):
    """Non-retryable backend failure that another layer may still serve."""


_AUTH_REMEDIATION: dict[LayerType, str] = {
    LayerType.CLAUDE: "Run: claude login",
    LayerType.GEMINI: "Run: gemini auth",
    LayerType.AISTUDIO: "Set GEMINI_API_KEY (get a key at https://aistudio.google.com/app/apikey)",
}

_QUOTA_REMEDIATION: dict[LayerType, str] = {
    LayerType.CLAUDE: "Wait for the usage window to reset or switch to another layer.",
    LayerType.GEMINI: "Free tier allows 60 requests/min and 1000/day; wait or switch layer.",
    LayerType.AISTUDIO: "Check AI Studio quota and billing, or retry later.",
}


def remediation_for_auth(service: LayerType) -> str:
    return _AUTH_REMEDIATION[service]


def remediation_for_quota(service: LayerType) -> str:
    return _QUOTA_REMEDIATION[service]
