"""Configuration management using pydantic-settings."""

import threading

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Valid log levels
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class AppSettings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_prefix="APP_")

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or console")
    prometheus_enabled: bool = Field(default=False, description="Expose Prometheus endpoint")
    prometheus_port: int = Field(default=9108, description="Prometheus metrics port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        normalized = v.upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
            )
        return normalized

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is valid."""
        normalized = v.lower()
        if normalized not in ("json", "console"):
            raise ValueError(f"Invalid log format '{v}'. Must be 'json' or 'console'")
        return normalized

    @field_validator("prometheus_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {v}")
        return v


class PipelineSettings(BaseSettings):
    """Data fusion pipeline settings."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    lookback_hours: int = Field(default=24, description="Health store query window in hours")
    cycle_interval_seconds: float = Field(
        default=300.0, description="Delay between fusion cycles"
    )
    max_cycles: int = Field(default=0, description="Stop after N cycles (0 = unbounded)")
    samples_path: str | None = Field(
        default=None, description="JSON file of exported health samples"
    )
    latitude: float | None = Field(default=None, description="Fixed location latitude")
    longitude: float | None = Field(default=None, description="Fixed location longitude")

    @field_validator("lookback_hours")
    @classmethod
    def validate_lookback(cls, v: int) -> int:
        """Validate lookback window is positive."""
        if v < 1:
            raise ValueError(f"Lookback must be at least 1 hour, got {v}")
        return v

    @field_validator("cycle_interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Validate cycle interval is not negative."""
        if v < 0:
            raise ValueError(f"Cycle interval cannot be negative, got {v}")
        return v

    @field_validator("max_cycles")
    @classmethod
    def validate_max_cycles(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Max cycles cannot be negative, got {v}")
        return v


class EnvironmentSettings(BaseSettings):
    """Environmental data service settings."""

    model_config = SettingsConfigDict(env_prefix="ENVIRONMENT_")

    base_url: str = Field(
        default="http://localhost:8080/environment",
        description="Environmental readings endpoint",
    )
    api_key: str | None = Field(default=None, description="Environmental API key")
    timeout_seconds: float = Field(default=10.0, description="Request timeout")
    max_retries: int = Field(default=2, description="Attempts per fetch")
    retry_delay_seconds: float = Field(default=0.5, description="Base retry backoff")

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Max retries must be at least 1, got {v}")
        return v


class UsageSettings(BaseSettings):
    """Usage tracking and quota settings."""

    model_config = SettingsConfigDict(env_prefix="USAGE_")

    db_path: str = Field(default="/data/usage/usage.db", description="SQLite usage store path")
    window_hours: int = Field(default=24, description="Quota window in hours")
    sync_url: str | None = Field(default=None, description="Remote usage store endpoint")
    sync_token: str | None = Field(default=None, description="Remote usage store token")
    sync_interval_seconds: float = Field(
        default=3600.0, description="Periodic usage totals sync interval"
    )
    sync_timeout_seconds: float = Field(default=10.0, description="Remote sync timeout")

    @field_validator("window_hours")
    @classmethod
    def validate_window(cls, v: int) -> int:
        """Validate quota window is positive."""
        if v < 1:
            raise ValueError(f"Quota window must be at least 1 hour, got {v}")
        return v

    @field_validator("sync_interval_seconds")
    @classmethod
    def validate_sync_interval(cls, v: float) -> float:
        if v < 1:
            raise ValueError(f"Sync interval must be at least 1 second, got {v}")
        return v


class SubscriptionSettings(BaseSettings):
    """Payment collaborator settings."""

    model_config = SettingsConfigDict(env_prefix="SUBSCRIPTION_")

    app_store_url: str | None = Field(
        default=None, description="Billing endpoint for individual tiers"
    )
    hosted_checkout_url: str | None = Field(
        default=None, description="Hosted checkout endpoint for research/enterprise tiers"
    )
    api_token: str | None = Field(default=None, description="Billing API token")
    timeout_seconds: float = Field(default=15.0, description="Billing request timeout")


class MetricsSettings(BaseSettings):
    """Telemetry sink settings."""

    model_config = SettingsConfigDict(env_prefix="METRICS_")

    buffer_limit: int = Field(default=100, description="Flush when buffer reaches this size")
    flush_interval_seconds: float = Field(default=60.0, description="Periodic flush interval")
    memory_sample_interval_seconds: float = Field(
        default=30.0, description="Memory sampling interval"
    )

    @field_validator("buffer_limit")
    @classmethod
    def validate_buffer_limit(cls, v: int) -> int:
        """Validate buffer limit is reasonable."""
        if v < 1:
            raise ValueError(f"Buffer limit must be at least 1, got {v}")
        if v > 100_000:
            raise ValueError(f"Buffer limit too large (max 100000), got {v}")
        return v

    @field_validator("flush_interval_seconds", "memory_sample_interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Validate timer intervals."""
        if v < 0.1:
            raise ValueError(f"Interval must be at least 0.1 seconds, got {v}")
        return v


class AISettings(BaseSettings):
    """AI insight generation settings."""

    model_config = SettingsConfigDict(env_prefix="AI_")

    enabled: bool = Field(default=False, description="Enable AI-generated insights")
    timeout_seconds: float = Field(default=30.0, description="Provider request timeout")
    max_tokens: int = Field(default=2000, description="Maximum completion tokens")
    temperature: float = Field(default=0.7, description="Sampling temperature")

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError(f"Temperature must be between 0 and 2, got {v}")
        return v


class OpenAISettings(BaseSettings):
    """OpenAI-compatible provider settings. API keys live in the secure store."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    enabled: bool = Field(default=False, description="Enable the OpenAI provider")
    model: str | None = Field(default=None, description="Model override")
    base_url: str | None = Field(default=None, description="Base URL override")


class AnthropicSettings(BaseSettings):
    """Anthropic provider settings. API keys live in the secure store."""

    model_config = SettingsConfigDict(env_prefix="ANTHROPIC_")

    enabled: bool = Field(default=False, description="Enable the Claude provider")
    model: str | None = Field(default=None, description="Model override")
    base_url: str | None = Field(default=None, description="Base URL override")


class SecureStoreSettings(BaseSettings):
    """Encrypted credential store settings."""

    model_config = SettingsConfigDict(env_prefix="SECURE_STORE_")

    path: str = Field(default="/data/secure/credentials.enc", description="Store file path")
    encryption_key: str | None = Field(default=None, description="Fernet key")


class TracingSettings(BaseSettings):
    """OpenTelemetry tracing settings."""

    model_config = SettingsConfigDict(env_prefix="TRACING_")

    enabled: bool = Field(default=False, description="Enable OpenTelemetry tracing")
    service_name: str = Field(default="health-fusion", description="Service name")
    endpoint: str | None = Field(
        default=None, description="OTLP traces endpoint (defaults to the exporter's own)"
    )


class Settings(BaseSettings):
    """Combined application settings."""

    app: AppSettings = Field(default_factory=AppSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    environment: EnvironmentSettings = Field(default_factory=EnvironmentSettings)
    usage: UsageSettings = Field(default_factory=UsageSettings)
    subscription: SubscriptionSettings = Field(default_factory=SubscriptionSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    ai: AISettings = Field(default_factory=AISettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    secure_store: SecureStoreSettings = Field(default_factory=SecureStoreSettings)
    tracing: TracingSettings = Field(default_factory=TracingSettings)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            app=AppSettings(),
            pipeline=PipelineSettings(),
            environment=EnvironmentSettings(),
            usage=UsageSettings(),
            subscription=SubscriptionSettings(),
            metrics=MetricsSettings(),
            ai=AISettings(),
            openai=OpenAISettings(),
            anthropic=AnthropicSettings(),
            secure_store=SecureStoreSettings(),
            tracing=TracingSettings(),
        )


# Global settings instance with thread-safe initialization
_settings: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get or create the global settings instance.

    Thread-safe singleton pattern using double-checked locking.
    """
    global _settings
    if _settings is None:
        with _settings_lock:
            if _settings is None:
                _settings = Settings.load()
    return _settings
