from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest

from layer_bridge.config import QuotaSettings, Settings, WorkflowSettings, parse_bool

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_from_env_defaults_are_valid(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LAYER_BRIDGE_CACHE_TTL_SECONDS", raising=False)
    settings = Settings.from_env()

    settings.validate()
    assert set(settings.layers) == {"claude", "gemini", "aistudio"}
    assert settings.result_cache.ttl_seconds == 1_800.0
    assert settings.result_cache.similarity_threshold == 0.8
    assert settings.auth_cache.ttl_seconds["gemini"] == 6 * 3_600.0
    assert settings.workflow.max_steps == 50


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LAYER_BRIDGE_CLAUDE_MODEL", "opus")
    monkeypatch.setenv("LAYER_BRIDGE_GEMINI_MAX_RETRIES", "1")
    monkeypatch.setenv("LAYER_BRIDGE_CACHE_METRICS", "yes")
    monkeypatch.setenv("LAYER_BRIDGE_CACHE_MAX_ENTRIES", "10")
    monkeypatch.setenv("LAYER_BRIDGE_AUTH_TTL_AISTUDIO", "60")
    monkeypatch.setenv("LAYER_BRIDGE_WORKFLOW_MAX_CONCURRENT", "2")
    monkeypatch.setenv("LAYER_BRIDGE_MEDIA_DIR", str(tmp_path))

    settings = Settings.from_env()

    assert settings.layers["claude"].model == "opus"
    assert settings.layers["gemini"].max_retries == 1
    assert settings.result_cache.enable_metrics is True
    assert settings.result_cache.max_entries == 10
    assert settings.auth_cache.ttl_seconds["aistudio"] == 60.0
    assert settings.workflow.max_concurrent_steps == 2
    assert settings.media.output_dir == tmp_path


def test_from_env_rejects_invalid_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAYER_BRIDGE_CACHE_METRICS", "sometimes")
    with pytest.raises(ValueError, match="Invalid boolean value for LAYER_BRIDGE_CACHE_METRICS"):
        Settings.from_env()

    monkeypatch.setenv("LAYER_BRIDGE_CACHE_METRICS", "off")
    monkeypatch.setenv("LAYER_BRIDGE_CACHE_TTL_SECONDS", "soon")
    with pytest.raises(ValueError, match="Invalid number value"):
        Settings.from_env()


def test_validate_rejects_out_of_range_settings() -> None:
    settings = Settings()
    settings.layers["claude"].max_retries = 5
    with pytest.raises(ValueError, match="Retries for layer claude"):
        settings.validate()

    settings = Settings(workflow=WorkflowSettings(max_concurrent_steps=0))
    with pytest.raises(ValueError, match="MAX_CONCURRENT"):
        settings.validate()

    settings = Settings()
    settings.result_cache = replace(settings.result_cache, similarity_threshold=1.5)
    with pytest.raises(ValueError, match="SIMILARITY"):
        settings.validate()


def test_gemini_request_limits_come_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAYER_BRIDGE_GEMINI_REQUESTS_PER_MINUTE", "15")
    monkeypatch.setenv("LAYER_BRIDGE_GEMINI_REQUESTS_PER_DAY", "1500")

    settings = Settings.from_env()

    assert settings.quota == QuotaSettings(requests_per_minute=15, requests_per_day=1_500)

    settings = Settings(quota=QuotaSettings(requests_per_minute=0))
    with pytest.raises(ValueError, match="Gemini request limits"):
        settings.validate()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(True, True), ("YES", True), (" on ", True), ("0", False), ("false", False)],
)
def test_parse_bool_accepts_common_spellings(raw: object, expected: bool) -> None:
    assert parse_bool(raw) is expected


@pytest.mark.parametrize("raw", ["maybe", 2, None])
def test_parse_bool_rejects_other_values(raw: object) -> None:
    with pytest.raises(ValueError):
        parse_bool(raw)
