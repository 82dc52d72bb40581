"""Service shell wiring the pipeline, subscription, usage and AI components."""

import asyncio
import signal
from collections.abc import AsyncIterator, Sequence
from enum import Enum
from pathlib import Path
from typing import Protocol

import structlog
from prometheus_client import start_http_server as start_metrics_server

from . import __version__
from .ai import (
    AIInsightsAdapter,
    AnalysisContext,
    HealthFactor,
    HealthInsights,
    HealthPredictions,
    HealthRecommendation,
    RecommendationContext,
    SecureStore,
)
from .config import Settings, get_settings
from .logging import setup_logging
from .metrics import SERVICE_INFO, MetricsSink
from .models import HealthEnvironmentRecord
from .pipeline import (
    HealthDataPipeline,
    HTTPEnvironmentalSource,
    JSONFileHealthSource,
    StaticLocationSource,
)
from .subscription import (
    Feature,
    FeatureNotAvailableError,
    HTTPPaymentBackend,
    PaymentRouter,
    SubscriptionManager,
)
from .tracing import setup_tracing, shutdown_tracing
from .types import ServiceStatus
from .usage import RemoteUsageSync, UsageCategory, UsageStore, UsageTracker
from .visualization import VisualizationContext, VisualizationDataType

logger = structlog.get_logger(__name__)


class Closeable(Protocol):
    async def close(self) -> None: ...


class AnalysisKind(str, Enum):
    TRENDS = "trends"
    PREDICTIONS = "predictions"
    RECOMMENDATIONS = "recommendations"


# A tier may run an analysis if it has any one of these features
ANALYSIS_FEATURES: dict[AnalysisKind, frozenset[Feature]] = {
    AnalysisKind.TRENDS: frozenset(
        {
            Feature.STANDARD_ANALYTICS,
            Feature.PERSONAL_ANALYTICS,
            Feature.ADVANCED_ANALYTICS,
            Feature.RESEARCH_ANALYTICS,
        }
    ),
    AnalysisKind.PREDICTIONS: frozenset(
        {
            Feature.PERSONAL_ANALYTICS,
            Feature.ADVANCED_ANALYTICS,
            Feature.RESEARCH_ANALYTICS,
        }
    ),
    AnalysisKind.RECOMMENDATIONS: frozenset({Feature.CUSTOM_INSIGHTS}),
}


class HealthFusionService:
    """Owns every long-lived component and their background tasks.

    Components are passed in; ``from_settings`` builds the default set.
    """

    def __init__(
        self,
        settings: Settings,
        metrics: MetricsSink,
        subscription: SubscriptionManager,
        usage: UsageTracker,
        insights: AIInsightsAdapter,
        pipeline: HealthDataPipeline | None = None,
        closeables: Sequence[Closeable] = (),
    ) -> None:
        self._settings = settings
        self._metrics = metrics
        self._subscription = subscription
        self._usage = usage
        self._insights = insights
        self._pipeline = pipeline
        self._closeables = list(closeables)
        self._shutdown_event = asyncio.Event()
        self._started = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "HealthFusionService":
        settings = settings or get_settings()
        metrics = MetricsSink(settings.metrics)

        sub = settings.subscription
        app_store = HTTPPaymentBackend(
            "app_store", sub.app_store_url, sub.api_token, sub.timeout_seconds
        )
        hosted = HTTPPaymentBackend(
            "hosted_checkout", sub.hosted_checkout_url, sub.api_token, sub.timeout_seconds
        )
        subscription = SubscriptionManager(
            PaymentRouter(app_store, hosted), window_hours=settings.usage.window_hours
        )

        remote = None
        if settings.usage.sync_url:
            remote = RemoteUsageSync(
                settings.usage.sync_url,
                settings.usage.sync_token,
                timeout=settings.usage.sync_timeout_seconds,
            )
        usage = UsageTracker(
            subscription,
            UsageStore(Path(settings.usage.db_path)),
            remote_sync=remote,
            sync_interval_seconds=settings.usage.sync_interval_seconds,
        )

        insights = AIInsightsAdapter(
            settings, SecureStore.from_settings(settings.secure_store), metrics
        )

        closeables: list[Closeable] = [app_store, hosted]
        if remote is not None:
            closeables.append(remote)

        pipeline = None
        pipe = settings.pipeline
        if pipe.samples_path and pipe.latitude is not None and pipe.longitude is not None:
            environment = HTTPEnvironmentalSource(settings.environment)
            closeables.append(environment)
            pipeline = HealthDataPipeline(
                JSONFileHealthSource(pipe.samples_path),
                environment,
                StaticLocationSource(pipe.latitude, pipe.longitude),
                metrics=metrics,
                settings=pipe,
            )

        return cls(
            settings,
            metrics,
            subscription,
            usage,
            insights,
            pipeline=pipeline,
            closeables=closeables,
        )

    @property
    def subscription(self) -> SubscriptionManager:
        return self._subscription

    @property
    def usage(self) -> UsageTracker:
        return self._usage

    @property
    def insights(self) -> AIInsightsAdapter:
        return self._insights

    @property
    def pipeline(self) -> HealthDataPipeline | None:
        return self._pipeline

    async def start(self) -> None:
        """Start background work and restore persisted state."""
        setup_tracing(self._settings.tracing)
        logger.info("service_starting", version=__version__)
        SERVICE_INFO.info({"version": __version__})

        if self._settings.app.prometheus_enabled:
            start_metrics_server(port=self._settings.app.prometheus_port)
            logger.info("prometheus_metrics_started", port=self._settings.app.prometheus_port)

        await self._metrics.start()
        tier = await self._subscription.validate_subscription()
        restored = await self._usage.restore()
        await self._usage.start()
        self._started = True
        logger.info("service_started", tier=tier.value, restored_usage=restored)

    async def stop(self) -> None:
        """Stop timers, drain replication, flush metrics, close clients."""
        logger.info("service_stopping")
        await self._usage.stop()
        await self._metrics.stop()
        for closeable in self._closeables:
            try:
                await closeable.close()
            except Exception as e:
                logger.warning("close_failed", component=type(closeable).__name__, error=str(e))
        shutdown_tracing()
        self._started = False
        logger.info("service_stopped", records_emitted=self.records_emitted)

    @property
    def records_emitted(self) -> int:
        return self._pipeline.records_emitted if self._pipeline else 0

    def _require(self, kind: AnalysisKind) -> None:
        allowed = ANALYSIS_FEATURES[kind]
        if not any(self._subscription.can_access(f) for f in allowed):
            tier = self._subscription.current_tier
            logger.info("analysis_not_entitled", analysis=kind.value, tier=tier.value)
            raise FeatureNotAvailableError(kind.value, tier)

    async def _gate(self, kind: AnalysisKind) -> bool:
        """Check entitlement and count one analytics operation.

        Returns whether the tier may use an AI provider.

        Raises:
            FeatureNotAvailableError: The tier lacks every feature the analysis needs.
            QuotaExceededError: The analytics quota is exhausted.
        """
        self._require(kind)
        await self._usage.track_usage(
            UsageCategory.ANALYTICS,
            f"ai_{kind.value}",
            {"tier": self._subscription.current_tier.value},
        )
        return self._subscription.can_access(Feature.AI_POWERED_INSIGHTS)

    async def analyze(
        self,
        records: Sequence[HealthEnvironmentRecord],
        context: AnalysisContext | None = None,
    ) -> HealthInsights:
        use_ai = await self._gate(AnalysisKind.TRENDS)
        return await self._insights.analyze_health_trends(records, context, use_ai=use_ai)

    async def predict(
        self,
        record: HealthEnvironmentRecord,
        factors: Sequence[HealthFactor] = (),
        history: Sequence[HealthEnvironmentRecord] = (),
    ) -> HealthPredictions:
        use_ai = await self._gate(AnalysisKind.PREDICTIONS)
        return await self._insights.predict_health_outcomes(
            record, factors, history, use_ai=use_ai
        )

    async def recommend(
        self,
        record: HealthEnvironmentRecord,
        context: RecommendationContext | None = None,
    ) -> list[HealthRecommendation]:
        use_ai = await self._gate(AnalysisKind.RECOMMENDATIONS)
        return await self._insights.generate_recommendations(record, context, use_ai=use_ai)

    async def render(
        self,
        records: Sequence[HealthEnvironmentRecord],
        data_type: VisualizationDataType,
        context: VisualizationContext | None = None,
    ) -> str:
        """Render an SVG chart with the context clamped to the current tier."""
        visualizer, limited = self._subscription.visualization_for(
            data_type, context or VisualizationContext()
        )
        await self._usage.track_usage(
            UsageCategory.VISUALIZATION,
            f"render_{visualizer.name}",
            {"data_type": data_type.value, "industry": limited.industry.value},
        )
        return visualizer.render(records, limited, self._metrics)

    async def collect(
        self, max_cycles: int | None = None
    ) -> AsyncIterator[HealthEnvironmentRecord]:
        """Stream fused records from the configured pipeline."""
        if self._pipeline is None:
            raise RuntimeError("No pipeline configured: set PIPELINE_SAMPLES_PATH and location")
        async for record in self._pipeline.collect(max_cycles=max_cycles):
            yield record

    def status(self) -> ServiceStatus:
        definition = self._subscription.definition()
        circuits = {self._insights.breaker.name: self._insights.breaker.get_stats()}
        return {
            "service": "running" if self._started else "stopped",
            "tier": definition.tier.value,
            "records_emitted": self.records_emitted,
            "analytics_used": self._subscription.analytics_usage(),
            "analytics_limit": definition.analytics_limit,
            "pending_syncs": self._usage.pending_syncs,
            "ai_provider": self._insights.provider_name if self._insights.enabled else None,
            "circuits": circuits,
        }

    async def run_until_shutdown(self) -> None:
        """Emit pipeline records until shutdown is requested."""
        if self._pipeline is None:
            await self._shutdown_event.wait()
            return

        async def consume() -> None:
            async for record in self.collect():
                logger.info("record_collected", record_id=record.id, steps=record.steps)

        consumer = asyncio.create_task(consume())
        waiter = asyncio.create_task(self._shutdown_event.wait())
        done, pending = await asyncio.wait(
            {consumer, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()


async def main() -> None:
    """Run the service until SIGINT or SIGTERM."""
    settings = get_settings()
    setup_logging(settings.app)

    service = HealthFusionService.from_settings(settings)
    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("shutdown_signal_received")
        service.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await service.start()
        await service.run_until_shutdown()
    except Exception as e:
        logger.exception("service_error", error=str(e))
        raise
    finally:
        await service.stop()


def run() -> None:
    """Entry point for the service."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
