"""SVG chart rendering for fused records, dispatched by data type and industry."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from html import escape
from pathlib import Path
from statistics import fmean

from .metrics import MetricsSink
from .models import HealthEnvironmentRecord, PrivacyLevel

FONT = "Avenir Next, Helvetica Neue, Segoe UI, sans-serif"
_PALETTE = ("#66D1FF", "#2DE2B7", "#FFB85C", "#FF6F91")
# Okabe-Ito subset, distinguishable under common color-vision deficiencies
_COLOR_BLIND_PALETTE = ("#0072B2", "#E69F00", "#009E73", "#CC79A7")


class VisualizationDataType(str, Enum):
    HEALTH_METRICS = "health_metrics"
    ENVIRONMENTAL_DATA = "environmental_data"
    GEOSPATIAL_HEALTH = "geospatial_health"
    PERSONAL_HEALTH = "personal_health"
    COMBINED_DATA = "combined_data"


class Industry(str, Enum):
    GENERAL = "general"
    INSURANCE = "insurance"
    URBAN_PLANNING = "urban_planning"
    SMART_CITY = "smart_city"
    CORPORATE_WELLNESS = "corporate_wellness"
    REAL_ESTATE = "real_estate"
    RESEARCH = "research"


class UserType(str, Enum):
    INDIVIDUAL = "individual"
    ENTERPRISE = "enterprise"
    RESEARCHER = "researcher"
    ADMINISTRATOR = "administrator"


class InteractionLevel(str, Enum):
    STATIC = "static"
    BASIC = "basic"
    ADVANCED = "advanced"
    FULL_CONTROL = "full_control"


class RenderingPreference(Flag):
    NONE = 0
    PERFORMANCE = auto()
    QUALITY = auto()
    MOBILE_OPTIMIZED = auto()
    DESKTOP_OPTIMIZED = auto()
    ACCESSIBILITY = auto()


class AccessibilityNeeds(Flag):
    NONE = 0
    COLOR_BLIND = auto()
    REDUCED_MOTION = auto()
    SCREEN_READER = auto()
    LARGE_TEXT = auto()


@dataclass(frozen=True)
class VisualizationContext:
    user_type: UserType = UserType.INDIVIDUAL
    industry: Industry = Industry.GENERAL
    privacy_level: PrivacyLevel = PrivacyLevel.INDIVIDUAL
    interaction_level: InteractionLevel = InteractionLevel.ADVANCED
    rendering_preference: RenderingPreference = RenderingPreference.QUALITY
    accessibility_needs: AccessibilityNeeds = AccessibilityNeeds.NONE

    @property
    def should_optimize_for_mobile(self) -> bool:
        return bool(self.rendering_preference & RenderingPreference.MOBILE_OPTIMIZED)

    @property
    def allows_interaction(self) -> bool:
        return self.interaction_level != InteractionLevel.STATIC


@dataclass(frozen=True)
class Series:
    label: str
    accessor: Callable[[HealthEnvironmentRecord], float]
    # Scores are already anonymous and survive MINIMAL privacy
    is_score: bool = False


def _score(label: str, attr: str) -> Series:
    return Series(label, lambda r: getattr(r, attr), is_score=True)


@dataclass(frozen=True)
class Visualizer:
    """Renders a line chart of selected record series as SVG.

    The context controls layout (mobile or desktop width), palette,
    per-point markers for interactive charts, and how much detail the
    privacy level lets through.
    """

    name: str
    title: str
    series: tuple[Series, ...] = field(default_factory=tuple)

    def render(
        self,
        records: Sequence[HealthEnvironmentRecord],
        context: VisualizationContext,
        metrics: MetricsSink | None = None,
    ) -> str:
        width = 480 if context.should_optimize_for_mobile else 960
        height = 320 if context.should_optimize_for_mobile else 480
        font_size = 22 if context.accessibility_needs & AccessibilityNeeds.LARGE_TEXT else 16
        palette = (
            _COLOR_BLIND_PALETTE
            if context.accessibility_needs & AccessibilityNeeds.COLOR_BLIND
            or context.rendering_preference & RenderingPreference.ACCESSIBILITY
            else _PALETTE
        )

        lines = [
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" '
            f'viewBox="0 0 {width} {height}" role="img" aria-label="{escape(self.title)}">',
            f'  <rect x="0" y="0" width="{width}" height="{height}" fill="#0B1B2B"/>',
            f'  <text x="24" y="{24 + font_size}" fill="#FFFFFF" font-family="{FONT}" '
            f'font-size="{font_size + 6}" font-weight="700">{escape(self.title)}</text>',
        ]

        plotted = self._visible_series(context.privacy_level)
        values = [self._values(s, records, context.privacy_level) for s in plotted]
        top = max([100.0, *(v for vs in values for v in vs)])
        plot_left, plot_top = 24, 72
        plot_w, plot_h = width - 48, height - 120
        points_drawn = 0

        for index, (series, series_values) in enumerate(zip(plotted, values, strict=True)):
            color = palette[index % len(palette)]
            if not series_values:
                continue
            step = plot_w / max(len(series_values) - 1, 1)
            coords = [
                (plot_left + i * step, plot_top + plot_h - (v / top) * plot_h)
                for i, v in enumerate(series_values)
            ]
            path = " ".join(f"{x:.1f},{y:.1f}" for x, y in coords)
            lines.append(
                f'  <polyline points="{path}" fill="none" stroke="{color}" stroke-width="3"/>'
            )
            if context.allows_interaction:
                for x, y in coords:
                    lines.append(f'  <circle cx="{x:.1f}" cy="{y:.1f}" r="4" fill="{color}"/>')
            legend_y = height - 24 - index * (font_size + 4)
            lines.append(
                f'  <text x="24" y="{legend_y}" fill="{color}" font-family="{FONT}" '
                f'font-size="{font_size}">{escape(series.label)}</text>'
            )
            points_drawn += len(series_values)

        lines.append("</svg>")
        if metrics:
            metrics.record_data_points(points_drawn, self.name)
        return "\n".join(lines)

    def write_svg(self, svg_text: str, output_path: str | Path) -> Path:
        """Persist SVG to disk and return final path."""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(svg_text, encoding="utf-8")
        return path

    def _visible_series(self, privacy: PrivacyLevel) -> list[Series]:
        if privacy == PrivacyLevel.MINIMAL:
            return [s for s in self.series if s.is_score]
        return list(self.series)

    @staticmethod
    def _values(
        series: Series,
        records: Sequence[HealthEnvironmentRecord],
        privacy: PrivacyLevel,
    ) -> list[float]:
        values = [float(series.accessor(r)) for r in records]
        if privacy == PrivacyLevel.AGGREGATED and values:
            mean = fmean(values)
            return [mean, mean]
        return values


INSURANCE_HEALTH = Visualizer(
    name="insurance_health",
    title="Health Risk Indicators",
    series=(
        _score("Cardio", "cardio_health_score"),
        _score("Respiratory", "respiratory_health_score"),
        _score("Activity", "physical_activity_score"),
    ),
)

URBAN_ENVIRONMENT = Visualizer(
    name="urban_environment",
    title="Urban Environment",
    series=(
        Series("Air quality index", lambda r: r.air_quality_index),
        Series("Noise (dB)", lambda r: r.noise_level),
        _score("Environmental impact", "environmental_impact_score"),
    ),
)

SMART_CITY = Visualizer(
    name="smart_city",
    title="Exposure Along Route",
    series=(
        _score("Environmental impact", "environmental_impact_score"),
        Series("UV index x10", lambda r: r.uv_index * 10),
        Series("Humidity (%)", lambda r: r.humidity),
    ),
)

PERSONAL_HEALTH = Visualizer(
    name="personal_health",
    title="Personal Health",
    series=(
        _score("Activity", "physical_activity_score"),
        _score("Cardio", "cardio_health_score"),
        Series("Sleep quality (%)", lambda r: r.sleep.quality),
        Series("Heart rate (bpm)", lambda r: r.heart_rate),
    ),
)

GENERIC = Visualizer(
    name="generic",
    title="Health and Environment Scores",
    series=(
        _score("Cardio", "cardio_health_score"),
        _score("Respiratory", "respiratory_health_score"),
        _score("Activity", "physical_activity_score"),
        _score("Environmental impact", "environmental_impact_score"),
    ),
)

# None matches any industry
_DISPATCH: dict[tuple[VisualizationDataType, Industry | None], Visualizer] = {
    (VisualizationDataType.HEALTH_METRICS, Industry.INSURANCE): INSURANCE_HEALTH,
    (VisualizationDataType.ENVIRONMENTAL_DATA, Industry.URBAN_PLANNING): URBAN_ENVIRONMENT,
    (VisualizationDataType.GEOSPATIAL_HEALTH, Industry.SMART_CITY): SMART_CITY,
    (VisualizationDataType.PERSONAL_HEALTH, None): PERSONAL_HEALTH,
}


def create_visualizer(
    data_type: VisualizationDataType, context: VisualizationContext
) -> Visualizer:
    """Pick the visualizer for a data type in the context's industry."""
    return (
        _DISPATCH.get((data_type, context.industry))
        or _DISPATCH.get((data_type, None))
        or GENERIC
    )
