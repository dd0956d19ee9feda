"""Deterministic backend failure classification for retry and fallback policy."""

from __future__ import annotations

import re
from dataclasses import dataclass

from layer_bridge.errors import (
    AuthenticationError,
    BackendFailure,
    BridgeError,
    QuotaExceededError,
    TransientBackendError,
    remediation_for_quota,
)
from layer_bridge.models import FailureClass, LayerType

FAILURE_CLASSIFIER_VERSION = 1
DEFAULT_TRANSIENT_EXIT_CODES: tuple[int, ...] = (124, 137, 143)

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
    "exceeded",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "api key not valid",
    "authentication",
    "not logged in",
    "login",
    "auth",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
    "not available in your region",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "rate-limit",
    "429",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "could not resolve host",
    "etimedout",
    "econnreset",
    "please retry",
    "try again later",
    "503",
    "dns",
)

# Short tokens that also occur inside ordinary words.
_WHOLE_WORD_PATTERNS = frozenset({"auth"})


@dataclass(slots=True)
class BackendFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_details(self, *, layer: LayerType, exit_code: int | None) -> dict[str, object]:
        """Serialize classifier diagnostics for result metadata."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "layer": layer.value,
            "exit_code": exit_code,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_backend_failure(
    *,
    layer: LayerType,
    exit_code: int,
    stdout: str,
    stderr: str,
    transient_exit_codes: tuple[int, ...] = DEFAULT_TRANSIENT_EXIT_CODES,
) -> BackendFailureClassification:
    """Classify a failed backend invocation by ordered pattern rules."""

    name = layer.value
    haystack = _normalize_text(stdout=stdout, stderr=stderr)

    pattern = _first_match(haystack, _BILLING_OR_QUOTA_PATTERNS)
    if pattern is not None:
        return BackendFailureClassification(
            failure_class=FailureClass.BILLING_OR_QUOTA,
            reason_code=f"{name}_billing_or_quota",
            matched_rule="billing_or_quota",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _ACCESS_OR_AUTH_PATTERNS)
    if pattern is not None:
        return BackendFailureClassification(
            failure_class=FailureClass.ACCESS_OR_AUTH,
            reason_code=f"{name}_access_or_auth",
            matched_rule="access_or_auth",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _MODEL_NOT_AVAILABLE_PATTERNS)
    if pattern is not None:
        return BackendFailureClassification(
            failure_class=FailureClass.MODEL_NOT_AVAILABLE,
            reason_code=f"{name}_model_not_available",
            matched_rule="model_not_available",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return BackendFailureClassification(
            failure_class=FailureClass.RATE_LIMITED,
            reason_code=f"{name}_rate_limited",
            matched_rule="rate_limit",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    if pattern is not None or exit_code in transient_exit_codes:
        return BackendFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{name}_backend_transient",
            matched_rule=(
                "transient_exit_code"
                if exit_code in transient_exit_codes and pattern is None
                else "generic_transient"
            ),
            matched_pattern=pattern,
        )

    return BackendFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code=f"{name}_backend_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def error_from_classification(
    classification: BackendFailureClassification,
    *,
    layer: LayerType,
    message: str,
    exit_code: int | None = None,
) -> BridgeError:
    """Build the typed error the layer manager reacts to."""

    details = classification.to_details(layer=layer, exit_code=exit_code)
    match classification.failure_class:
        case FailureClass.BILLING_OR_QUOTA | FailureClass.RATE_LIMITED:
            return QuotaExceededError(
                message,
                layer=layer,
                details=details,
                remediation=remediation_for_quota(layer),
            )
        case FailureClass.ACCESS_OR_AUTH:
            return AuthenticationError(message, service=layer, details=details)
        case FailureClass.BACKEND_TRANSIENT:
            return TransientBackendError(message, layer=layer, details=details)
        case FailureClass.TIMEOUT:
            return TransientBackendError(message, timed_out=True, layer=layer, details=details)
        case (
            FailureClass.MODEL_NOT_AVAILABLE
            | FailureClass.BACKEND_NON_RETRYABLE
            | FailureClass.INVALID_INPUT
        ):
            return BackendFailure(message, layer=layer, details=details)


def _normalize_text(*, stdout: str, stderr: str) -> str:
    return f"{stderr}\n{stdout}".lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in _WHOLE_WORD_PATTERNS:
            if re.search(rf"\b{re.escape(pattern)}\b", haystack):
                return pattern
        elif pattern in haystack:
            return pattern
    return None
