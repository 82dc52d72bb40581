"""Tests for tracing utilities."""

from health_fusion.config import TracingSettings
from health_fusion.tracing import setup_tracing, shutdown_tracing, trace_headers


def test_setup_tracing_disabled():
    """Tracing should be disabled when setting is false."""
    assert setup_tracing(TracingSettings(enabled=False)) is False


def test_setup_tracing_exporter_disabled(monkeypatch):
    """Tracing should be disabled when exporter env var is none."""
    monkeypatch.setenv("OTEL_TRACES_EXPORTER", "none")

    settings = TracingSettings(enabled=True, service_name="health-fusion")
    assert setup_tracing(settings) is False


def test_shutdown_without_setup_is_noop():
    shutdown_tracing()


def test_trace_headers_is_a_plain_dict():
    """Outside any span there is nothing to propagate."""
    headers = trace_headers()

    assert isinstance(headers, dict)
    assert all(isinstance(k, str) and isinstance(v, str) for k, v in headers.items())
