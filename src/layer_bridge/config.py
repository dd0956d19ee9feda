"""Runtime configuration for backends, caches and workflows."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class LayerSettings:
    """Per-backend invocation settings."""

    command: str
    model: str
    max_retries: int
    base_timeout_seconds: float
    retry_delay_seconds: float = 1.0


@dataclass(slots=True)
class ResultCacheSettings:
    """Query-result cache settings."""

    ttl_seconds: float = 1_800.0
    max_entries: int = 1_000
    similarity_threshold: float = 0.8
    enable_metrics: bool = False


@dataclass(slots=True)
class AuthCacheSettings:
    """Credential status cache settings."""

    ttl_seconds: dict[str, float] = field(
        default_factory=lambda: {
            "gemini": 6 * 3_600.0,
            "aistudio": 24 * 3_600.0,
            "claude": 12 * 3_600.0,
        },
    )
    failure_backoff_seconds: tuple[float, ...] = (30.0, 60.0, 300.0)
    failure_reset_seconds: float = 24 * 3_600.0
    jitter_ratio: float = 0.1


@dataclass(slots=True)
class WorkflowSettings:
    """Workflow execution limits."""

    max_steps: int = 50
    max_concurrent_steps: int = 5
    default_timeout_seconds: float = 1_800.0
    max_retry_attempts: int = 3


@dataclass(slots=True)
class QuotaSettings:
    """Client-side request limits for the search backend."""

    requests_per_minute: int = 60
    requests_per_day: int = 1_000


@dataclass(slots=True)
class MediaSettings:
    """Generated media storage."""

    output_dir: Path = Path("generated-media")
    download_timeout_seconds: float = 60.0


def _default_layers() -> dict[str, LayerSettings]:
    return {
        "claude": LayerSettings(
            command="claude -p --model {model} {flags} -- {prompt}",
            model="sonnet",
            max_retries=3,
            base_timeout_seconds=300.0,
        ),
        "gemini": LayerSettings(
            command="gemini --model {model} {flags} --prompt {prompt}",
            model="gemini-2.5-pro",
            max_retries=2,
            base_timeout_seconds=60.0,
        ),
        "aistudio": LayerSettings(
            command="npx -y aistudio-mcp-server",
            model="gemini-2.5-flash",
            max_retries=2,
            base_timeout_seconds=180.0,
        ),
    }


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    layers: dict[str, LayerSettings] = field(default_factory=_default_layers)
    result_cache: ResultCacheSettings = field(default_factory=ResultCacheSettings)
    auth_cache: AuthCacheSettings = field(default_factory=AuthCacheSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    media: MediaSettings = field(default_factory=MediaSettings)
    quota: QuotaSettings = field(default_factory=QuotaSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local use."""

        layers = _default_layers()
        for name, layer in layers.items():
            prefix = f"LAYER_BRIDGE_{name.upper()}"
            layer.command = os.getenv(f"{prefix}_COMMAND", layer.command)
            layer.model = os.getenv(f"{prefix}_MODEL", layer.model)
            layer.max_retries = _env_int(f"{prefix}_MAX_RETRIES", layer.max_retries)
            layer.base_timeout_seconds = _env_float(
                f"{prefix}_TIMEOUT_SECONDS",
                layer.base_timeout_seconds,
            )
            layer.retry_delay_seconds = _env_float(
                f"{prefix}_RETRY_DELAY_SECONDS",
                layer.retry_delay_seconds,
            )

        auth_defaults = AuthCacheSettings()
        auth_ttls = {
            service: _env_float(f"LAYER_BRIDGE_AUTH_TTL_{service.upper()}", ttl)
            for service, ttl in auth_defaults.ttl_seconds.items()
        }

        return cls(
            layers=layers,
            result_cache=ResultCacheSettings(
                ttl_seconds=_env_float("LAYER_BRIDGE_CACHE_TTL_SECONDS", 1_800.0),
                max_entries=_env_int("LAYER_BRIDGE_CACHE_MAX_ENTRIES", 1_000),
                similarity_threshold=_env_float("LAYER_BRIDGE_CACHE_SIMILARITY", 0.8),
                enable_metrics=_env_bool("LAYER_BRIDGE_CACHE_METRICS", False),
            ),
            auth_cache=AuthCacheSettings(ttl_seconds=auth_ttls),
            workflow=WorkflowSettings(
                max_steps=_env_int("LAYER_BRIDGE_WORKFLOW_MAX_STEPS", 50),
                max_concurrent_steps=_env_int("LAYER_BRIDGE_WORKFLOW_MAX_CONCURRENT", 5),
                default_timeout_seconds=_env_float(
                    "LAYER_BRIDGE_WORKFLOW_TIMEOUT_SECONDS",
                    1_800.0,
                ),
            ),
            media=MediaSettings(
                output_dir=Path(os.getenv("LAYER_BRIDGE_MEDIA_DIR", "generated-media")),
            ),
            quota=QuotaSettings(
                requests_per_minute=_env_int("LAYER_BRIDGE_GEMINI_REQUESTS_PER_MINUTE", 60),
                requests_per_day=_env_int("LAYER_BRIDGE_GEMINI_REQUESTS_PER_DAY", 1_000),
            ),
        )

    def validate(self) -> None:
        """Reject settings that would make the runtime misbehave."""

        cache = self.result_cache
        if cache.ttl_seconds <= 0:
            raise ValueError("LAYER_BRIDGE_CACHE_TTL_SECONDS must be positive.")
        if cache.max_entries < 1:
            raise ValueError("LAYER_BRIDGE_CACHE_MAX_ENTRIES must be at least 1.")
        if not 0 < cache.similarity_threshold <= 1:
            raise ValueError("LAYER_BRIDGE_CACHE_SIMILARITY must be in (0, 1].")
        for service, ttl in self.auth_cache.ttl_seconds.items():
            if ttl <= 0:
                raise ValueError(f"Credential cache TTL for {service} must be positive.")
        if self.workflow.max_steps < 1:
            raise ValueError("LAYER_BRIDGE_WORKFLOW_MAX_STEPS must be at least 1.")
        if self.workflow.max_concurrent_steps < 1:
            raise ValueError("LAYER_BRIDGE_WORKFLOW_MAX_CONCURRENT must be at least 1.")
        if self.quota.requests_per_minute < 1 or self.quota.requests_per_day < 1:
            raise ValueError("Gemini request limits must be at least 1.")
        for name, layer in self.layers.items():
            if not layer.command.strip():
                raise ValueError(f"Command for layer {name} is empty.")
            if not 1 <= layer.max_retries <= self.workflow.max_retry_attempts:
                raise ValueError(
                    f"Retries for layer {name} must be between 1 and "
                    f"{self.workflow.max_retry_attempts}, got {layer.max_retries}.",
                )


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return parse_bool(value)
    except ValueError:
        raise ValueError(f"Invalid boolean value for {name}: {value!r}") from None


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error
