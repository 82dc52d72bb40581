"""AI-assisted insights with deterministic local fallback."""

from .engine import AIInsightsAdapter
from .errors import AIError, InvalidResponseError, NoServiceEnabledError, ProviderRequestError
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
    PrivacyLevel,
    RecommendationCategory,
    RecommendationContext,
    RecommendationPriority,
    TrendDirection,
    UserPreferences,
)
from .providers import AIProvider, AnthropicProvider, OpenAIProvider
from .secure_store import (
    DecryptionError,
    EndpointNotFoundError,
    KeyNotFoundError,
    SecureStore,
    SecureStoreError,
)

__all__ = [
    "AIError",
    "AIInsightsAdapter",
    "AIProvider",
    "AnalysisContext",
    "AnthropicProvider",
    "CorrelationType",
    "DecryptionError",
    "EndpointNotFoundError",
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
    "InvalidResponseError",
    "KeyNotFoundError",
    "NoServiceEnabledError",
    "OpenAIProvider",
    "PrivacyLevel",
    "ProviderRequestError",
    "RecommendationCategory",
    "RecommendationContext",
    "RecommendationPriority",
    "SecureStore",
    "SecureStoreError",
    "TrendDirection",
    "UserPreferences",
]
