"""AI insight generation with local heuristic fallback."""

import json
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

import structlog
from opentelemetry import trace

from ..circuit_breaker import CircuitBreaker
from ..config import Settings
from ..metrics import AI_REQUESTS, MetricName, MetricsSink
from ..models import HealthEnvironmentRecord
from . import heuristics
from .errors import InvalidResponseError, NoServiceEnabledError, ProviderRequestError
from .models import (
    AnalysisContext,
    HealthFactor,
    HealthInsights,
    HealthPredictions,
    HealthRecommendation,
    PrivacyLevel,
    RecommendationCategory,
    RecommendationContext,
)
from .providers import AIProvider, AnthropicProvider, OpenAIProvider
from .secure_store import ANTHROPIC, OPENAI, SecureStore

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

# Records sent to a provider per prompt
MAX_PROMPT_RECORDS = 14

TRENDS_PROMPT = """Analyze these health and environment records covering {timeframe_days:.0f} days.
Focus factors: {factors}. Include environmental correlations: {environmental}.

{records_text}

Respond with a JSON object only:
{{"trends": [{{"metric": one of {metrics}, "direction": "increasing|decreasing|stable|fluctuating",
"magnitude": relative change as a fraction, "period_days": number}}],
"correlations": [{{"factor_a": one of {factor_names}, "factor_b": one of {factor_names},
"strength": 0-1, "type": "positive|negative|none"}}],
"anomalies": [{{"metric": one of {metrics}, "value": number, "expected_min": number,
"expected_max": number, "timestamp": ISO-8601}}]}}"""

PREDICTION_PROMPT = """Predict short-term (1 day) and long-term (30 day) outcomes from this record.
Factors to consider: {factors}.

{records_text}

Respond with a JSON object only:
{{"short_term": [{{"metric": one of {metrics}, "value": number, "confidence": 0-1,
"timeframe_days": number}}], "long_term": [same shape], "confidence": 0-1}}"""

RECOMMENDATION_PROMPT = """Suggest up to {max_recommendations} recommendations for this record.
Goal: {goal}. Constraints: {constraints}.
Preferred exercise: {exercise}. Dietary restrictions: {diet}. Preferred times: {times}.

{records_text}

Respond with a JSON array only:
[{{"title": short title, "description": one or two sentences,
"priority": "high|medium|low", "category": one of {categories},
"impact": 0-1, "timeframe_days": number}}]"""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines[1:])
    return text.strip()


def parse_json(text: str) -> Any:
    try:
        return json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise InvalidResponseError(f"Response is not JSON: {e}") from e


def _records_text(
    records: Sequence[HealthEnvironmentRecord], privacy: PrivacyLevel = PrivacyLevel.INDIVIDUAL
) -> str:
    recent = sorted(records, key=lambda r: r.timestamp)[-MAX_PROMPT_RECORDS:]
    if privacy != PrivacyLevel.INDIVIDUAL:
        lines = [f"{len(recent)} records, averages only:"]
        for name in ("steps", "heart_rate", "air_quality_index", "noise_level", "uv_index"):
            values = [float(getattr(r, name)) for r in recent]
            average = f"{sum(values) / len(values):.1f}" if values else "n/a"
            lines.append(f"  {name}: {average}")
        return "\n".join(lines)
    blocks = []
    for record in recent:
        blocks.append(f"RECORD {record.timestamp.isoformat()}\n{record.to_summary_text()}")
    return "\n\n".join(blocks)


class AIInsightsAdapter:
    """Trends, predictions and recommendations, AI first with heuristic fallback.

    The provider is chosen once, when the adapter is built: OpenAI if it is
    enabled, otherwise Claude. A failing provider falls back to the local
    heuristics, never to the other provider.
    """

    def __init__(
        self,
        settings: Settings,
        secure_store: SecureStore | None,
        metrics: MetricsSink | None = None,
        providers: Mapping[str, AIProvider] | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._settings = settings
        self._secure_store = secure_store
        self._metrics = metrics
        self._providers = dict(providers) if providers is not None else None
        self._breaker = breaker or CircuitBreaker(
            name="ai_insights", failure_threshold=5, recovery_timeout=60.0
        )
        self._provider_name = self._select_provider_name()
        self._provider: AIProvider | None = None

    @property
    def enabled(self) -> bool:
        return self._settings.ai.enabled

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def _select_provider_name(self) -> str | None:
        if self._settings.openai.enabled:
            return OPENAI
        if self._settings.anthropic.enabled:
            return ANTHROPIC
        return None

    def _get_provider(self) -> AIProvider:
        if self._provider is not None:
            return self._provider
        if self._provider_name is None:
            raise NoServiceEnabledError()

        if self._providers is not None and self._provider_name in self._providers:
            self._provider = self._providers[self._provider_name]
        elif self._provider_name == OPENAI:
            self._provider = OpenAIProvider(
                self._settings.openai, self._settings.ai, self._secure_store, self._metrics
            )
        else:
            self._provider = AnthropicProvider(
                self._settings.anthropic, self._settings.ai, self._secure_store, self._metrics
            )
        logger.info("ai_provider_selected", provider=self._provider_name)
        return self._provider

    async def analyze_health_trends(
        self,
        data: Sequence[HealthEnvironmentRecord],
        context: AnalysisContext | None = None,
        use_ai: bool = True,
    ) -> HealthInsights:
        """Trends, correlations and anomalies across a series of records."""
        context = context or AnalysisContext()

        def build_prompt() -> str:
            return TRENDS_PROMPT.format(
                timeframe_days=context.timeframe.total_seconds() / 86400,
                factors=", ".join(f.value for f in context.factors) or "all",
                environmental="yes" if context.include_environmental else "no",
                records_text=_records_text(data, context.privacy_level),
                metrics=sorted(m.value for m in heuristics.METRIC_EXTRACTORS),
                factor_names=sorted(f.value for f in HealthFactor),
            )

        def parse(text: str) -> HealthInsights:
            payload = parse_json(text)
            if not isinstance(payload, dict):
                raise InvalidResponseError("Expected a JSON object of insights")
            return HealthInsights.from_payload(payload, source="ai")

        return await self._run(
            "trends",
            build_prompt,
            parse,
            lambda: heuristics.basic_insights(data, context),
            use_ai,
        )

    async def predict_health_outcomes(
        self,
        data: HealthEnvironmentRecord,
        factors: Sequence[HealthFactor] = (),
        history: Sequence[HealthEnvironmentRecord] = (),
        use_ai: bool = True,
    ) -> HealthPredictions:
        """Short- and long-term predictions for one record, optionally with history."""

        def build_prompt() -> str:
            return PREDICTION_PROMPT.format(
                factors=", ".join(f.value for f in factors) or "all",
                records_text=_records_text([*history, data]),
                metrics=sorted(m.value for m in heuristics.METRIC_EXTRACTORS),
            )

        def parse(text: str) -> HealthPredictions:
            payload = parse_json(text)
            if not isinstance(payload, dict):
                raise InvalidResponseError("Expected a JSON object of predictions")
            return HealthPredictions.from_payload(payload, source="ai")

        return await self._run(
            "predictions",
            build_prompt,
            parse,
            lambda: heuristics.basic_predictions(data, factors, history),
            use_ai,
        )

    async def generate_recommendations(
        self,
        data: HealthEnvironmentRecord,
        context: RecommendationContext | None = None,
        max_recommendations: int = 5,
        use_ai: bool = True,
    ) -> list[HealthRecommendation]:
        context = context or RecommendationContext()

        def build_prompt() -> str:
            prefs = context.preferences
            return RECOMMENDATION_PROMPT.format(
                max_recommendations=max_recommendations,
                goal=context.goal.value,
                constraints=", ".join(c.value for c in context.constraints) or "none",
                exercise=", ".join(prefs.exercise_types) or "any",
                diet=", ".join(prefs.dietary_restrictions) or "none",
                times=", ".join(prefs.time_preferences) or "any",
                records_text=_records_text([data]),
                categories=sorted(c.value for c in RecommendationCategory),
            )

        def parse(text: str) -> list[HealthRecommendation]:
            payload = parse_json(text)
            if isinstance(payload, dict):
                payload = payload.get("recommendations")
            if not isinstance(payload, list):
                raise InvalidResponseError("Expected a JSON array of recommendations")
            return [
                HealthRecommendation.from_payload(item, source="ai")
                for item in payload[:max_recommendations]
            ]

        return await self._run(
            "recommendations",
            build_prompt,
            parse,
            lambda: heuristics.basic_recommendations(data, context, max_recommendations),
            use_ai,
        )

    async def _run(
        self,
        operation: str,
        build_prompt: Callable[[], str],
        parse: Callable[[str], T],
        fallback: Callable[[], T],
        use_ai: bool = True,
    ) -> T:
        """Provider call with parse, falling back to heuristics on any failure.

        ``use_ai=False`` forces the heuristic path, e.g. for tiers without
        AI-powered insights.

        Raises:
            NoServiceEnabledError: AI is enabled but no provider is.
        """
        if not self.enabled or not use_ai:
            AI_REQUESTS.labels(
                operation=operation,
                provider="none",
                source="heuristic",
                status="disabled" if not self.enabled else "not_entitled",
            ).inc()
            return fallback()

        provider = self._get_provider()
        if self._breaker.is_open:
            logger.warning("ai_circuit_open_fallback", operation=operation)
            AI_REQUESTS.labels(
                operation=operation,
                provider=provider.name,
                source="heuristic",
                status="circuit_open",
            ).inc()
            return fallback()

        with tracer.start_as_current_span(f"ai.{operation}") as span:
            span.set_attribute("ai.provider", provider.name)
            try:
                text = await provider.analyze(build_prompt())
                result = parse(text)
            except ProviderRequestError as e:
                if e.retryable:
                    self._breaker.record_failure()
                span.set_attribute("ai.fallback", True)
                return self._fall_back(operation, provider.name, e, fallback)
            except (InvalidResponseError, KeyError, TypeError, ValueError) as e:
                span.set_attribute("ai.fallback", True)
                return self._fall_back(operation, provider.name, e, fallback)
            except Exception as e:
                self._breaker.record_failure()
                span.set_attribute("ai.fallback", True)
                return self._fall_back(operation, provider.name, e, fallback)

            span.set_attribute("ai.fallback", False)

        self._breaker.record_success()
        AI_REQUESTS.labels(
            operation=operation, provider=provider.name, source="ai", status="success"
        ).inc()
        logger.info("ai_insights_generated", operation=operation, provider=provider.name)
        return result

    def _fall_back(
        self,
        operation: str,
        provider: str,
        error: Exception,
        fallback: Callable[[], T],
    ) -> T:
        logger.warning(
            "ai_request_failed",
            operation=operation,
            provider=provider,
            error=str(error),
            error_type=type(error).__name__,
        )
        if self._metrics is not None:
            self._metrics.record(
                MetricName.HEALTH_DATA_ERROR,
                1,
                metadata={"error": f"ai_{operation}_failed", "provider": provider},
            )
        AI_REQUESTS.labels(
            operation=operation, provider=provider, source="heuristic", status="failed"
        ).inc()
        return fallback()
