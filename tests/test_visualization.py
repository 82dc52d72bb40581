"""Tests for SVG chart rendering."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME
from health_fusion.metrics import MetricName, MetricsSink
from health_fusion.models import PrivacyLevel
from health_fusion.visualization import (
    AccessibilityNeeds,
    Industry,
    InteractionLevel,
    RenderingPreference,
    VisualizationContext,
    VisualizationDataType,
    create_visualizer,
)


@pytest.fixture
def records(make_record):
    return [
        make_record(timestamp=BASE_TIME + timedelta(days=i), heart_rate=70.0 + i)
        for i in range(3)
    ]


@pytest.mark.parametrize(
    ("data_type", "industry", "name"),
    [
        (VisualizationDataType.HEALTH_METRICS, Industry.INSURANCE, "insurance_health"),
        (VisualizationDataType.HEALTH_METRICS, Industry.GENERAL, "generic"),
        (VisualizationDataType.ENVIRONMENTAL_DATA, Industry.URBAN_PLANNING, "urban_environment"),
        (VisualizationDataType.ENVIRONMENTAL_DATA, Industry.INSURANCE, "generic"),
        (VisualizationDataType.GEOSPATIAL_HEALTH, Industry.SMART_CITY, "smart_city"),
        (VisualizationDataType.PERSONAL_HEALTH, Industry.RESEARCH, "personal_health"),
        (VisualizationDataType.COMBINED_DATA, Industry.GENERAL, "generic"),
    ],
)
def test_dispatch_by_type_and_industry(data_type, industry, name):
    visualizer = create_visualizer(data_type, VisualizationContext(industry=industry))

    assert visualizer.name == name


def test_render_desktop_interactive_chart(records):
    metrics = MetricsSink()
    context = VisualizationContext()
    visualizer = create_visualizer(VisualizationDataType.PERSONAL_HEALTH, context)

    svg = visualizer.render(records, context, metrics)

    assert svg.startswith("<svg")
    assert svg.endswith("</svg>")
    assert 'width="960"' in svg
    assert 'aria-label="Personal Health"' in svg
    assert svg.count("<polyline") == 4
    assert svg.count("<circle") == 12
    assert "Heart rate (bpm)" in svg

    (rendered,) = [m for m in metrics.flush() if m.name == MetricName.DATA_POINTS_RENDERED]
    assert rendered.value == 12
    assert rendered.metadata == {"context": "personal_health"}


def test_mobile_static_chart(records):
    context = VisualizationContext(
        interaction_level=InteractionLevel.STATIC,
        rendering_preference=RenderingPreference.MOBILE_OPTIMIZED,
    )
    visualizer = create_visualizer(VisualizationDataType.COMBINED_DATA, context)

    svg = visualizer.render(records, context)

    assert 'width="480"' in svg
    assert "<circle" not in svg


def test_minimal_privacy_only_plots_scores(records):
    context = VisualizationContext(privacy_level=PrivacyLevel.MINIMAL)
    visualizer = create_visualizer(VisualizationDataType.PERSONAL_HEALTH, context)

    svg = visualizer.render(records, context)

    assert svg.count("<polyline") == 2
    assert "Heart rate" not in svg
    assert "Sleep quality" not in svg


def test_aggregated_privacy_flattens_series(records):
    context = VisualizationContext(
        privacy_level=PrivacyLevel.AGGREGATED, interaction_level=InteractionLevel.STATIC
    )
    visualizer = create_visualizer(VisualizationDataType.PERSONAL_HEALTH, context)
    metrics = MetricsSink()

    visualizer.render(records, context, metrics)

    (rendered,) = [m for m in metrics.flush() if m.name == MetricName.DATA_POINTS_RENDERED]
    assert rendered.value == 8


def test_accessibility_options(records):
    context = VisualizationContext(
        accessibility_needs=AccessibilityNeeds.COLOR_BLIND | AccessibilityNeeds.LARGE_TEXT
    )
    visualizer = create_visualizer(VisualizationDataType.HEALTH_METRICS, context)

    svg = visualizer.render(records, context)

    assert "#0072B2" in svg
    assert "#66D1FF" not in svg
    assert 'font-size="22"' in svg


def test_empty_records_render_frame_only():
    context = VisualizationContext()
    svg = create_visualizer(VisualizationDataType.COMBINED_DATA, context).render([], context)

    assert "<polyline" not in svg
    assert "Health and Environment Scores" in svg


def test_write_svg(tmp_path, records):
    context = VisualizationContext()
    visualizer = create_visualizer(VisualizationDataType.COMBINED_DATA, context)

    path = visualizer.write_svg(visualizer.render(records, context), tmp_path / "out" / "c.svg")

    assert path.exists()
    assert path.read_text(encoding="utf-8").startswith("<svg")
