"""Deterministic local insights used when AI is off or fails."""

import math
import statistics
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import timedelta

import structlog

from ..models import HealthEnvironmentRecord
from .models import (
    AnalysisContext,
    CorrelationType,
    HealthAnomaly,
    HealthConstraint,
    HealthCorrelation,
    HealthFactor,
    HealthGoal,
    HealthInsights,
    HealthMetric,
    HealthPrediction,
    HealthPredictions,
    HealthRecommendation,
    HealthTrend,
    RecommendationCategory,
    RecommendationContext,
    RecommendationPriority,
    TrendDirection,
)

logger = structlog.get_logger(__name__)

TREND_THRESHOLD = 0.05
FLUCTUATION_CV = 0.25
ANOMALY_SIGMA = 2.0
CORRELATION_THRESHOLD = 0.3
SHORT_TERM = timedelta(days=1)
LONG_TERM = timedelta(days=30)

Extractor = Callable[[HealthEnvironmentRecord], float | None]


def _nonzero(value: float) -> float | None:
    return value if value > 0 else None


METRIC_EXTRACTORS: dict[HealthMetric, Extractor] = {
    HealthMetric.STEPS: lambda r: float(r.steps),
    HealthMetric.HEART_RATE: lambda r: _nonzero(r.heart_rate),
    HealthMetric.SLEEP: lambda r: _nonzero(r.sleep.duration_hours),
    HealthMetric.ACTIVITY: lambda r: r.physical_activity_score,
}

# Metrics whose value is a 0-100 score
SCORE_METRICS = {HealthMetric.ACTIVITY}

FACTOR_METRICS: dict[HealthFactor, tuple[HealthMetric, ...]] = {
    HealthFactor.EXERCISE: (HealthMetric.STEPS, HealthMetric.ACTIVITY),
    HealthFactor.SLEEP: (HealthMetric.SLEEP,),
    HealthFactor.STRESS: (HealthMetric.HEART_RATE,),
    HealthFactor.ENVIRONMENT: (HealthMetric.HEART_RATE, HealthMetric.ACTIVITY),
}


@dataclass(frozen=True)
class SeriesPair:
    """Two record series whose correlation is worth checking."""

    name_a: str
    factor_a: HealthFactor
    extract_a: Extractor
    name_b: str
    factor_b: HealthFactor
    extract_b: Extractor
    environmental: bool = False


CORRELATION_PAIRS: tuple[SeriesPair, ...] = (
    SeriesPair(
        "exercise_minutes", HealthFactor.EXERCISE, lambda r: r.exercise.duration_minutes,
        "sleep_hours", HealthFactor.SLEEP, lambda r: r.sleep.duration_hours,
    ),
    SeriesPair(
        "sleep_hours", HealthFactor.SLEEP, lambda r: r.sleep.duration_hours,
        "heart_rate", HealthFactor.STRESS, lambda r: r.heart_rate,
    ),
    SeriesPair(
        "air_quality_index", HealthFactor.ENVIRONMENT, lambda r: r.air_quality_index,
        "exercise_minutes", HealthFactor.EXERCISE, lambda r: r.exercise.duration_minutes,
        environmental=True,
    ),
    SeriesPair(
        "air_quality_index", HealthFactor.ENVIRONMENT, lambda r: r.air_quality_index,
        "respiratory_score", HealthFactor.STRESS, lambda r: r.respiratory_health_score,
        environmental=True,
    ),
    SeriesPair(
        "noise_level", HealthFactor.ENVIRONMENT, lambda r: r.noise_level,
        "sleep_hours", HealthFactor.SLEEP, lambda r: r.sleep.duration_hours,
        environmental=True,
    ),
    SeriesPair(
        "uv_index", HealthFactor.ENVIRONMENT, lambda r: r.uv_index,
        "steps", HealthFactor.EXERCISE, lambda r: float(r.steps),
        environmental=True,
    ),
)


def _series(
    records: Sequence[HealthEnvironmentRecord], extract: Extractor
) -> list[tuple[HealthEnvironmentRecord, float]]:
    points = []
    for record in records:
        value = extract(record)
        if value is not None and math.isfinite(value):
            points.append((record, value))
    return points


def _window(
    records: Sequence[HealthEnvironmentRecord], timeframe: timedelta
) -> list[HealthEnvironmentRecord]:
    ordered = sorted(records, key=lambda r: r.timestamp)
    if not ordered:
        return []
    cutoff = ordered[-1].timestamp - timeframe
    return [r for r in ordered if r.timestamp >= cutoff]


def pearson(xs: Sequence[float], ys: Sequence[float]) -> float | None:
    """Pearson correlation coefficient, or None when either series is constant."""
    if len(xs) != len(ys) or len(xs) < 2:
        return None
    mean_x = statistics.fmean(xs)
    mean_y = statistics.fmean(ys)
    cov = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys, strict=True))
    var_x = sum((x - mean_x) ** 2 for x in xs)
    var_y = sum((y - mean_y) ** 2 for y in ys)
    if var_x == 0 or var_y == 0:
        return None
    return max(-1.0, min(cov / math.sqrt(var_x * var_y), 1.0))


def trend_for(values: Sequence[float]) -> tuple[TrendDirection, float]:
    """Compare the mean of the first half with the mean of the second half.

    Returns the direction and the relative change. A relative change under
    5% is stable unless the series' coefficient of variation exceeds 0.25,
    in which case it is fluctuating.
    """
    half = len(values) // 2
    first = statistics.fmean(values[:half])
    second = statistics.fmean(values[len(values) - half:])
    change = (second - first) / abs(first) if first else (1.0 if second else 0.0)

    if change > TREND_THRESHOLD:
        return TrendDirection.INCREASING, abs(change)
    if change < -TREND_THRESHOLD:
        return TrendDirection.DECREASING, abs(change)

    mean = statistics.fmean(values)
    if mean and statistics.pstdev(values) / abs(mean) > FLUCTUATION_CV:
        return TrendDirection.FLUCTUATING, abs(change)
    return TrendDirection.STABLE, abs(change)


def detect_trends(
    records: Sequence[HealthEnvironmentRecord], context: AnalysisContext
) -> list[HealthTrend]:
    trends = []
    for metric in _metrics_for(context.factors):
        points = _series(records, METRIC_EXTRACTORS[metric])
        if len(points) < 2:
            continue
        direction, magnitude = trend_for([v for _, v in points])
        period = points[-1][0].timestamp - points[0][0].timestamp
        trends.append(
            HealthTrend(
                metric=metric,
                direction=direction,
                magnitude=magnitude,
                period=period or context.timeframe,
            )
        )
    return trends


def detect_correlations(
    records: Sequence[HealthEnvironmentRecord], context: AnalysisContext
) -> list[HealthCorrelation]:
    correlations = []
    for pair in CORRELATION_PAIRS:
        if pair.environmental and not context.include_environmental:
            continue
        if context.factors and not (
            pair.factor_a in context.factors or pair.factor_b in context.factors
        ):
            continue
        if len(records) < 3:
            continue
        xs = [pair.extract_a(r) for r in records]
        ys = [pair.extract_b(r) for r in records]
        r = pearson(xs, ys)
        if r is None:
            continue
        if r >= CORRELATION_THRESHOLD:
            kind = CorrelationType.POSITIVE
        elif r <= -CORRELATION_THRESHOLD:
            kind = CorrelationType.NEGATIVE
        else:
            kind = CorrelationType.NONE
        correlations.append(
            HealthCorrelation(
                factor_a=pair.factor_a,
                factor_b=pair.factor_b,
                strength=abs(r),
                type=kind,
                series=(pair.name_a, pair.name_b),
            )
        )
    return correlations


def detect_anomalies(
    records: Sequence[HealthEnvironmentRecord], context: AnalysisContext
) -> list[HealthAnomaly]:
    anomalies = []
    for metric in _metrics_for(context.factors):
        points = _series(records, METRIC_EXTRACTORS[metric])
        if len(points) < 3:
            continue
        values = [v for _, v in points]
        mean = statistics.fmean(values)
        sigma = statistics.pstdev(values)
        if sigma == 0:
            continue
        low, high = mean - ANOMALY_SIGMA * sigma, mean + ANOMALY_SIGMA * sigma
        for record, value in points:
            if value < low or value > high:
                anomalies.append(
                    HealthAnomaly(
                        metric=metric,
                        value=value,
                        expected_range=(low, high),
                        timestamp=record.timestamp,
                    )
                )
    return anomalies


def _metrics_for(factors: Sequence[HealthFactor]) -> list[HealthMetric]:
    if not factors:
        return list(METRIC_EXTRACTORS)
    selected: list[HealthMetric] = []
    for factor in factors:
        for metric in FACTOR_METRICS.get(factor, ()):
            if metric not in selected:
                selected.append(metric)
    return selected


def basic_insights(
    records: Sequence[HealthEnvironmentRecord], context: AnalysisContext | None = None
) -> HealthInsights:
    """Trends, correlations and anomalies over the context's trailing timeframe."""
    context = context or AnalysisContext()
    window = _window(records, context.timeframe)
    return HealthInsights(
        trends=detect_trends(window, context),
        correlations=detect_correlations(window, context),
        anomalies=detect_anomalies(window, context),
        source="heuristic",
    )


def _confidence(samples: int) -> float:
    """Grows with sample size, capped at 0.9."""
    return min(0.9, samples / (samples + 5))


def _slope_per_day(points: Sequence[tuple[HealthEnvironmentRecord, float]]) -> float:
    origin = points[0][0].timestamp
    xs = [(r.timestamp - origin).total_seconds() / 86400 for r, _ in points]
    ys = [v for _, v in points]
    mean_x = statistics.fmean(xs)
    mean_y = statistics.fmean(ys)
    denominator = sum((x - mean_x) ** 2 for x in xs)
    if denominator == 0:
        return 0.0
    return sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys, strict=True)) / denominator


def _bounded(metric: HealthMetric, value: float) -> float:
    value = max(0.0, value)
    if metric in SCORE_METRICS:
        return min(value, 100.0)
    if metric == HealthMetric.SLEEP:
        return min(value, 24.0)
    return value


def basic_predictions(
    data: HealthEnvironmentRecord,
    factors: Sequence[HealthFactor] = (),
    history: Sequence[HealthEnvironmentRecord] = (),
) -> HealthPredictions:
    """Linear extrapolation of each metric one day and thirty days ahead.

    With no history the current value is carried forward. Confidence grows
    with the number of points and is halved for the long-term horizon.
    """
    series = sorted({r.id: r for r in (*history, data)}.values(), key=lambda r: r.timestamp)
    short_term: list[HealthPrediction] = []
    long_term: list[HealthPrediction] = []

    for metric in _metrics_for(factors):
        points = _series(series, METRIC_EXTRACTORS[metric])
        if not points:
            continue
        slope = _slope_per_day(points) if len(points) >= 2 else 0.0
        latest = points[-1][1]
        confidence = _confidence(len(points))
        for horizon, bucket, scale in ((SHORT_TERM, short_term, 1.0), (LONG_TERM, long_term, 0.5)):
            bucket.append(
                HealthPrediction(
                    metric=metric,
                    value=_bounded(metric, latest + slope * horizon.total_seconds() / 86400),
                    confidence=confidence * scale,
                    timeframe=horizon,
                )
            )

    overall = statistics.fmean(p.confidence for p in short_term) if short_term else 0.0
    return HealthPredictions(
        short_term=short_term,
        long_term=long_term,
        confidence=overall,
        source="heuristic",
    )


@dataclass
class RecommendationRule:
    """One condition on a record and the recommendation it produces."""

    name: str
    category: RecommendationCategory
    condition: Callable[[HealthEnvironmentRecord, RecommendationContext], bool]
    generate: Callable[[HealthEnvironmentRecord, RecommendationContext], HealthRecommendation]
    priority: int = 50  # Higher = more important


def _exercise_suggestion(context: RecommendationContext) -> str:
    preferred = context.preferences.exercise_types
    activity = preferred[0] if preferred else "a brisk walk"
    if HealthConstraint.TIME in context.constraints:
        return f"Split it into three 10-minute sessions of {activity}."
    return f"Try adding 30 minutes of {activity}."


def _recommendation(
    title: str,
    description: str,
    priority: RecommendationPriority,
    category: RecommendationCategory,
    impact: float,
    days: float,
) -> HealthRecommendation:
    return HealthRecommendation(
        title=title,
        description=description,
        priority=priority,
        category=category,
        impact=impact,
        timeframe=timedelta(days=days),
    )


def _build_rules() -> list[RecommendationRule]:
    return [
        RecommendationRule(
            name="poor_air_quality",
            category=RecommendationCategory.ENVIRONMENT,
            condition=lambda r, c: r.air_quality_index >= 100,
            generate=lambda r, c: _recommendation(
                "Limit outdoor exertion",
                f"Air quality index is {r.air_quality_index:.0f} "
                f"({r.air_quality_description}). Move workouts indoors today.",
                RecommendationPriority.HIGH,
                RecommendationCategory.ENVIRONMENT,
                0.8,
                1,
            ),
            priority=95,
        ),
        RecommendationRule(
            name="elevated_heart_rate",
            category=RecommendationCategory.STRESS,
            condition=lambda r, c: r.heart_rate > 100,
            generate=lambda r, c: _recommendation(
                "Take time to recover",
                f"Average heart rate of {r.heart_rate:.0f} bpm is above the resting range. "
                "Schedule rest and breathing exercises.",
                RecommendationPriority.HIGH,
                RecommendationCategory.STRESS,
                0.7,
                3,
            ),
            priority=90,
        ),
        RecommendationRule(
            name="elevated_blood_pressure",
            category=RecommendationCategory.LIFESTYLE,
            condition=lambda r, c: r.blood_pressure.systolic >= 130
            or r.blood_pressure.diastolic >= 85,
            generate=lambda r, c: _recommendation(
                "Watch your blood pressure",
                f"Latest reading {r.blood_pressure.systolic:.0f}/"
                f"{r.blood_pressure.diastolic:.0f} mmHg is elevated. Reduce salt "
                "and keep tracking.",
                RecommendationPriority.HIGH,
                RecommendationCategory.LIFESTYLE,
                0.7,
                14,
            ),
            priority=85,
        ),
        RecommendationRule(
            name="short_sleep",
            category=RecommendationCategory.SLEEP,
            condition=lambda r, c: 0 < r.sleep.duration_hours < 7,
            generate=lambda r, c: _recommendation(
                "Extend your sleep",
                f"You slept {r.sleep.duration_hours:.1f} hours. Aim for 7-9 hours "
                "with a consistent bedtime.",
                RecommendationPriority.HIGH
                if c.goal == HealthGoal.SLEEP or r.sleep.duration_hours < 6
                else RecommendationPriority.MEDIUM,
                RecommendationCategory.SLEEP,
                0.6,
                7,
            ),
            priority=80,
        ),
        RecommendationRule(
            name="low_activity",
            category=RecommendationCategory.EXERCISE,
            condition=lambda r, c: r.steps < 5000,
            generate=lambda r, c: _recommendation(
                "Move more during the day",
                f"{r.steps:,} steps is {r.activity_level.value}. " + _exercise_suggestion(c),
                RecommendationPriority.HIGH,
                RecommendationCategory.EXERCISE,
                0.7,
                7,
            ),
            priority=75,
        ),
        RecommendationRule(
            name="short_workouts",
            category=RecommendationCategory.EXERCISE,
            condition=lambda r, c: r.steps >= 5000 and r.exercise.duration_minutes < 30,
            generate=lambda r, c: _recommendation(
                "Add focused exercise",
                f"Only {r.exercise.duration_minutes:.0f} minutes of exercise recorded. "
                + _exercise_suggestion(c),
                RecommendationPriority.HIGH
                if c.goal in (HealthGoal.WEIGHT_LOSS, HealthGoal.ENDURANCE)
                else RecommendationPriority.MEDIUM,
                RecommendationCategory.EXERCISE,
                0.5,
                14,
            ),
            priority=60,
        ),
        RecommendationRule(
            name="high_uv",
            category=RecommendationCategory.ENVIRONMENT,
            condition=lambda r, c: r.uv_index >= 6,
            generate=lambda r, c: _recommendation(
                "Protect against UV",
                f"UV index is {r.uv_index:.0f}. Use sunscreen and avoid midday sun.",
                RecommendationPriority.MEDIUM,
                RecommendationCategory.ENVIRONMENT,
                0.4,
                1,
            ),
            priority=50,
        ),
        RecommendationRule(
            name="noisy_environment",
            category=RecommendationCategory.ENVIRONMENT,
            condition=lambda r, c: r.noise_level >= 70,
            generate=lambda r, c: _recommendation(
                "Reduce noise exposure",
                f"Ambient noise of {r.noise_level:.0f} dB can raise stress. "
                "Consider ear protection or quieter routes.",
                RecommendationPriority.LOW,
                RecommendationCategory.ENVIRONMENT,
                0.3,
                7,
            ),
            priority=40,
        ),
        RecommendationRule(
            name="keep_it_up",
            category=RecommendationCategory.GENERAL,
            condition=lambda r, c: r.steps >= 10000 and r.sleep.duration_hours >= 7,
            generate=lambda r, c: _recommendation(
                "Keep up the routine",
                "Activity and sleep are both on target. Maintain your current habits.",
                RecommendationPriority.LOW,
                RecommendationCategory.GENERAL,
                0.2,
                30,
            ),
            priority=10,
        ),
    ]


RECOMMENDATION_RULES = _build_rules()


def basic_recommendations(
    data: HealthEnvironmentRecord,
    context: RecommendationContext | None = None,
    max_recommendations: int = 5,
) -> list[HealthRecommendation]:
    """Evaluate the rule table and return the highest-priority matches."""
    context = context or RecommendationContext()
    matched: list[tuple[int, HealthRecommendation]] = []
    for rule in RECOMMENDATION_RULES:
        try:
            if rule.condition(data, context):
                matched.append((rule.priority, rule.generate(data, context)))
                logger.debug("rule_matched", rule=rule.name, category=rule.category.value)
        except Exception as e:
            logger.warning("rule_evaluation_failed", rule=rule.name, error=str(e))

    matched.sort(key=lambda x: x[0], reverse=True)
    return [recommendation for _, recommendation in matched[:max_recommendations]]
