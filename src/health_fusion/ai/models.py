"""Insight, prediction and recommendation models."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from ..models import PrivacyLevel

__all__ = [
    "AnalysisContext",
    "CorrelationType",
    "HealthAnomaly",
    "HealthConstraint",
    "HealthCorrelation",
    "HealthFactor",
    "HealthGoal",
    "HealthInsights",
    "HealthMetric",
    "HealthPrediction",
    "HealthPredictions",
    "HealthRecommendation",
    "HealthTrend",
    "PrivacyLevel",
    "RecommendationCategory",
    "RecommendationContext",
    "RecommendationPriority",
    "TrendDirection",
    "UserPreferences",
]


class HealthMetric(str, Enum):
    STEPS = "steps"
    HEART_RATE = "heart_rate"
    WEIGHT = "weight"
    SLEEP = "sleep"
    ACTIVITY = "activity"
    STRESS = "stress"
    NUTRITION = "nutrition"


class HealthFactor(str, Enum):
    EXERCISE = "exercise"
    DIET = "diet"
    SLEEP = "sleep"
    STRESS = "stress"
    ENVIRONMENT = "environment"
    SOCIAL = "social"
    WORK = "work"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    FLUCTUATING = "fluctuating"


class CorrelationType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NONE = "none"


class RecommendationPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RecommendationCategory(str, Enum):
    EXERCISE = "exercise"
    NUTRITION = "nutrition"
    SLEEP = "sleep"
    STRESS = "stress"
    LIFESTYLE = "lifestyle"
    ENVIRONMENT = "environment"
    GENERAL = "general"


class HealthGoal(str, Enum):
    WEIGHT_LOSS = "weight_loss"
    MUSCLE_GAIN = "muscle_gain"
    ENDURANCE = "endurance"
    STRESS = "stress"
    SLEEP = "sleep"
    GENERAL = "general"


class HealthConstraint(str, Enum):
    TIME = "time"
    LOCATION = "location"
    EQUIPMENT = "equipment"
    MEDICAL = "medical"
    DIETARY = "dietary"


def _days(value: Any) -> timedelta:
    return timedelta(days=float(value))


def _as_days(delta: timedelta) -> float:
    return round(delta.total_seconds() / 86400, 4)


@dataclass(frozen=True)
class HealthTrend:
    metric: HealthMetric
    direction: TrendDirection
    magnitude: float
    period: timedelta

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "HealthTrend":
        return cls(
            metric=HealthMetric(data["metric"]),
            direction=TrendDirection(data["direction"]),
            magnitude=float(data.get("magnitude", 0.0)),
            period=_days(data.get("period_days", 7)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "direction": self.direction.value,
            "magnitude": round(self.magnitude, 4),
            "period_days": _as_days(self.period),
        }


@dataclass(frozen=True)
class HealthCorrelation:
    factor_a: HealthFactor
    factor_b: HealthFactor
    strength: float
    type: CorrelationType
    series: tuple[str, str] = ("", "")

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "HealthCorrelation":
        strength = float(data["strength"])
        if not 0.0 <= strength <= 1.0:
            raise ValueError(f"Correlation strength out of range: {strength}")
        return cls(
            factor_a=HealthFactor(data["factor_a"]),
            factor_b=HealthFactor(data["factor_b"]),
            strength=strength,
            type=CorrelationType(data.get("type", "none")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "factor_a": self.factor_a.value,
            "factor_b": self.factor_b.value,
            "strength": round(self.strength, 4),
            "type": self.type.value,
            "series": list(self.series),
        }


@dataclass(frozen=True)
class HealthAnomaly:
    metric: HealthMetric
    value: float
    expected_range: tuple[float, float]
    timestamp: datetime

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "HealthAnomaly":
        timestamp = datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return cls(
            metric=HealthMetric(data["metric"]),
            value=float(data["value"]),
            expected_range=(float(data["expected_min"]), float(data["expected_max"])),
            timestamp=timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        low, high = self.expected_range
        return {
            "metric": self.metric.value,
            "value": self.value,
            "expected_min": round(low, 4),
            "expected_max": round(high, 4),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class HealthInsights:
    """Trends, correlations and anomalies found in a series of records."""

    trends: list[HealthTrend] = field(default_factory=list)
    correlations: list[HealthCorrelation] = field(default_factory=list)
    anomalies: list[HealthAnomaly] = field(default_factory=list)
    source: str = "heuristic"

    @classmethod
    def from_payload(cls, data: dict[str, Any], source: str = "ai") -> "HealthInsights":
        return cls(
            trends=[HealthTrend.from_payload(t) for t in data.get("trends", [])],
            correlations=[HealthCorrelation.from_payload(c) for c in data.get("correlations", [])],
            anomalies=[HealthAnomaly.from_payload(a) for a in data.get("anomalies", [])],
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "trends": [t.to_dict() for t in self.trends],
            "correlations": [c.to_dict() for c in self.correlations],
            "anomalies": [a.to_dict() for a in self.anomalies],
        }


@dataclass(frozen=True)
class HealthPrediction:
    metric: HealthMetric
    value: float
    confidence: float
    timeframe: timedelta

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "HealthPrediction":
        confidence = float(data.get("confidence", 0.0))
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Prediction confidence out of range: {confidence}")
        return cls(
            metric=HealthMetric(data["metric"]),
            value=float(data["value"]),
            confidence=confidence,
            timeframe=_days(data.get("timeframe_days", 1)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "value": round(self.value, 4),
            "confidence": round(self.confidence, 4),
            "timeframe_days": _as_days(self.timeframe),
        }


@dataclass
class HealthPredictions:
    short_term: list[HealthPrediction] = field(default_factory=list)
    long_term: list[HealthPrediction] = field(default_factory=list)
    confidence: float = 0.0
    source: str = "heuristic"

    @classmethod
    def from_payload(cls, data: dict[str, Any], source: str = "ai") -> "HealthPredictions":
        confidence = float(data.get("confidence", 0.0))
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Prediction confidence out of range: {confidence}")
        return cls(
            short_term=[HealthPrediction.from_payload(p) for p in data.get("short_term", [])],
            long_term=[HealthPrediction.from_payload(p) for p in data.get("long_term", [])],
            confidence=confidence,
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "confidence": round(self.confidence, 4),
            "short_term": [p.to_dict() for p in self.short_term],
            "long_term": [p.to_dict() for p in self.long_term],
        }


@dataclass(frozen=True)
class HealthRecommendation:
    title: str
    description: str
    priority: RecommendationPriority
    category: RecommendationCategory
    impact: float
    timeframe: timedelta
    source: str = "heuristic"

    @classmethod
    def from_payload(cls, data: dict[str, Any], source: str = "ai") -> "HealthRecommendation":
        title = str(data["title"]).strip()
        if not title:
            raise ValueError("Recommendation title is empty")
        return cls(
            title=title[:80],
            description=str(data.get("description", "")),
            priority=RecommendationPriority(data.get("priority", "medium")),
            category=RecommendationCategory(data.get("category", "general")),
            impact=max(0.0, min(float(data.get("impact", 0.5)), 1.0)),
            timeframe=_days(data.get("timeframe_days", 7)),
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "category": self.category.value,
            "impact": round(self.impact, 4),
            "timeframe_days": _as_days(self.timeframe),
            "source": self.source,
        }


@dataclass
class UserPreferences:
    exercise_types: list[str] = field(default_factory=list)
    dietary_restrictions: list[str] = field(default_factory=list)
    time_preferences: list[str] = field(default_factory=list)


@dataclass
class AnalysisContext:
    """What to look at when analyzing a series of records."""

    timeframe: timedelta = timedelta(days=7)
    factors: list[HealthFactor] = field(default_factory=list)
    include_location: bool = False
    include_environmental: bool = False
    privacy_level: PrivacyLevel = PrivacyLevel.INDIVIDUAL


@dataclass
class RecommendationContext:
    goal: HealthGoal = HealthGoal.GENERAL
    constraints: list[HealthConstraint] = field(default_factory=list)
    preferences: UserPreferences = field(default_factory=UserPreferences)
