"""Health and environment data fusion service.

Joins samples from a health data store with environmental readings at the
user's location into scored records, gates analytics behind subscription
tiers with daily quotas, and enriches records with optional AI insights
backed by a local heuristic fallback.

Modules:
    config: Configuration management using pydantic-settings
    pipeline: Concurrent source fetch, transform, score and validate
    subscription: Tier table, entitlements and payment routing
    usage: Quota-checked usage tracking with durable storage and sync
    ai: AI insights adapter with heuristic fallback
    metrics: Prometheus metrics and the buffered telemetry sink

Example:
    Run three fusion cycles from an exported samples file::

        $ health-fusion collect --samples samples.json --lat 52.52 --lon 13.40 --cycles 3
"""

__version__ = "0.1.0"

from .config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
