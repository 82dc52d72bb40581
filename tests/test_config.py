"""Tests for configuration validation."""

import pytest

from health_fusion.config import (
    VALID_LOG_LEVELS,
    AISettings,
    AppSettings,
    EnvironmentSettings,
    MetricsSettings,
    PipelineSettings,
    Settings,
    UsageSettings,
)


def test_app_settings_normalize_log_fields():
    """App settings normalize log format and log level."""
    settings = AppSettings(log_level="debug", log_format="Console")

    assert settings.log_level == "DEBUG"
    assert settings.log_format == "console"
    assert settings.log_level in VALID_LOG_LEVELS


def test_app_settings_reject_bad_values():
    with pytest.raises(ValueError, match="Invalid log level"):
        AppSettings(log_level="verbose")

    with pytest.raises(ValueError, match="Invalid log format"):
        AppSettings(log_format="xml")

    with pytest.raises(ValueError, match="Port must be between"):
        AppSettings(prometheus_port=0)


def test_pipeline_settings_validation():
    """Pipeline windows and intervals must be sensible."""
    with pytest.raises(ValueError, match="Lookback must be at least 1 hour"):
        PipelineSettings(lookback_hours=0)

    with pytest.raises(ValueError, match="Cycle interval cannot be negative"):
        PipelineSettings(cycle_interval_seconds=-1)

    with pytest.raises(ValueError, match="Max cycles cannot be negative"):
        PipelineSettings(max_cycles=-3)


def test_environment_retries_validation():
    with pytest.raises(ValueError, match="Max retries must be at least 1"):
        EnvironmentSettings(max_retries=0)


def test_usage_settings_validation():
    with pytest.raises(ValueError, match="Quota window must be at least 1 hour"):
        UsageSettings(window_hours=0)

    with pytest.raises(ValueError, match="Sync interval must be at least 1 second"):
        UsageSettings(sync_interval_seconds=0.5)


def test_metrics_buffer_limit_validation():
    """Metrics buffer limit must be within allowed range."""
    with pytest.raises(ValueError, match="Buffer limit must be at least 1"):
        MetricsSettings(buffer_limit=0)

    with pytest.raises(ValueError, match="Buffer limit too large"):
        MetricsSettings(buffer_limit=200_000)

    with pytest.raises(ValueError, match="Interval must be at least 0.1 seconds"):
        MetricsSettings(flush_interval_seconds=0.01)


def test_ai_temperature_validation():
    with pytest.raises(ValueError, match="Temperature must be between 0 and 2"):
        AISettings(temperature=2.5)


def test_settings_read_environment(monkeypatch):
    """Each settings group reads its own prefixed variables."""
    monkeypatch.setenv("AI_ENABLED", "true")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    monkeypatch.setenv("USAGE_WINDOW_HOURS", "12")

    settings = Settings.load()

    assert settings.ai.enabled is True
    assert settings.openai.model == "gpt-4o"
    assert settings.usage.window_hours == 12
    assert settings.anthropic.enabled is False


def test_defaults_keep_ai_off():
    settings = Settings()

    assert settings.ai.enabled is False
    assert settings.openai.enabled is False
    assert settings.anthropic.enabled is False
    assert settings.secure_store.encryption_key is None
