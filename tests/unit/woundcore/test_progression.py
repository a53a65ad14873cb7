"""
Tests for depth/volume progression and the safety override evaluator.

Covers:
- Velocity and trend classification
- Full-thickness classification and its confidence
- Windowed increase helpers
- Safety override decision matrix and escalation windows
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from woundcore.domain.models import (
    ClinicalContextProfile,
    DepthTrend,
    InfectionIndicator,
    NormalizedMeasurement,
    OverrideSeverity,
    ThicknessClass,
    VolumeTrend,
)
from woundcore.services.progression import (
    analyze_progression,
    classify_thickness,
    max_increase_within,
    trailing_velocity,
    velocity,
)
from woundcore.services.quality import assess_quality
from woundcore.services.safety_override import build_override_alert, evaluate_safety_override

NormalizedFactory = Callable[..., NormalizedMeasurement]


def _weekly(make: NormalizedFactory, depths: tuple[float, ...]) -> list[NormalizedMeasurement]:
    return [make(week * 7, depth) for week, depth in enumerate(depths)]


class TestProgression:
    def test_deepening_foot_wound(self, make_normalized: NormalizedFactory) -> None:
        series = _weekly(make_normalized, (3.0, 5.0, 8.0, 12.0, 18.0))
        metrics = analyze_progression(series, "foot", assess_quality(series, "depth"))

        assert metrics.depth_velocity == pytest.approx(3.75)
        assert metrics.depth_trend == DepthTrend.DEEPENING
        assert metrics.volume_trend == VolumeTrend.EXPANDING
        assert metrics.depth_change_mm == pytest.approx(15.0)
        assert metrics.weeks_elapsed == pytest.approx(4.0)
        assert metrics.thickness is not None
        assert metrics.thickness.classification == ThicknessClass.PARTIAL_THICKNESS
        assert "Approaching full thickness" in metrics.thickness.flags

    def test_thickness_confidence_rises_with_more_measurements(
        self, make_normalized: NormalizedFactory
    ) -> None:
        early = _weekly(make_normalized, (3.0, 5.0, 8.0))
        full = _weekly(make_normalized, (3.0, 5.0, 8.0, 12.0, 18.0))

        early_metrics = analyze_progression(early, "foot", assess_quality(early, "depth"))
        full_metrics = analyze_progression(full, "foot", assess_quality(full, "depth"))

        assert early_metrics.thickness is not None and full_metrics.thickness is not None
        assert early_metrics.thickness.confidence == pytest.approx(0.78)
        assert full_metrics.thickness.confidence == pytest.approx(0.94)

    def test_healing_and_stable_trends(self, make_normalized: NormalizedFactory) -> None:
        healing = _weekly(make_normalized, (10.0, 8.0, 6.0, 4.0))
        stable = _weekly(make_normalized, (5.0, 5.5))

        assert (
            analyze_progression(healing, "foot", assess_quality(healing)).depth_trend
            == DepthTrend.HEALING
        )
        assert (
            analyze_progression(stable, "foot", assess_quality(stable)).depth_trend
            == DepthTrend.STABLE
        )

    def test_single_measurement_is_insufficient(self, make_normalized: NormalizedFactory) -> None:
        series = [make_normalized(0, 4.0)]
        metrics = analyze_progression(series, "foot", assess_quality(series))
        assert metrics.depth_velocity is None
        assert metrics.depth_trend == DepthTrend.INSUFFICIENT_DATA

    @pytest.mark.parametrize(
        ("depth", "expected"),
        [
            (5.0, ThicknessClass.SUPERFICIAL),
            (10.0, ThicknessClass.PARTIAL_THICKNESS),
            (25.0, ThicknessClass.FULL_THICKNESS),
            (26.0, ThicknessClass.DEEP_FULL_THICKNESS),
        ],
    )
    def test_thickness_bands_for_foot(self, depth: float, expected: ThicknessClass) -> None:
        assert classify_thickness(depth, "foot", 5, depth).classification == expected

    def test_window_helpers(self, start: datetime) -> None:
        points = [
            (start + timedelta(days=7 * i), d) for i, d in enumerate((3.0, 5.0, 8.0, 12.0, 18.0))
        ]
        assert max_increase_within(points, 7) == pytest.approx(6.0)
        assert trailing_velocity(points, 14) == pytest.approx(5.0)
        assert velocity(points[:1]) is None


class TestSafetyOverride:
    def test_rapid_depth_increase_is_critical(self, make_normalized: NormalizedFactory) -> None:
        series = _weekly(make_normalized, (3.0, 5.0, 8.0, 12.0, 18.0))
        decision = evaluate_safety_override(series, ClinicalContextProfile())

        assert decision.severity == OverrideSeverity.CRITICAL
        assert decision.authorizes_bypass
        assert decision.escalation_hours == 4
        assert decision.max_depth_increase_mm == pytest.approx(6.0)

    def test_rapid_depth_with_infection_is_emergency(
        self, make_normalized: NormalizedFactory
    ) -> None:
        series = _weekly(make_normalized, (3.0, 9.0))
        context = ClinicalContextProfile(
            infection_indicators=frozenset(
                {InfectionIndicator.PURULENT_DRAINAGE, InfectionIndicator.CELLULITIS}
            )
        )
        decision = evaluate_safety_override(series, context)
        assert decision.severity == OverrideSeverity.EMERGENCY
        assert decision.escalation_hours == 1

    def test_moderate_depth_change_is_severe_without_bypass(
        self, make_normalized: NormalizedFactory
    ) -> None:
        decision = evaluate_safety_override(
            _weekly(make_normalized, (3.0, 6.5)), ClinicalContextProfile()
        )
        assert decision.severity == OverrideSeverity.SEVERE
        assert not decision.authorizes_bypass
        assert decision.escalation_hours == 24

    def test_infection_with_systemic_signs_is_severe(
        self, make_normalized: NormalizedFactory
    ) -> None:
        context = ClinicalContextProfile(
            systemic_signs=True,
            infection_indicators=frozenset({InfectionIndicator.MALODOR, InfectionIndicator.FEVER}),
        )
        decision = evaluate_safety_override(_weekly(make_normalized, (4.0, 4.0)), context)
        assert decision.severity == OverrideSeverity.SEVERE

    def test_recorded_volume_expansion_with_high_pain_is_critical(
        self, make_normalized: NormalizedFactory
    ) -> None:
        series = [make_normalized(0, 3.0, volume=2.0), make_normalized(7, 3.5, volume=3.2)]
        decision = evaluate_safety_override(series, ClinicalContextProfile(pain_score=9))
        assert decision.severity == OverrideSeverity.CRITICAL
        assert "severe_volume_expansion" in decision.signatures

    def test_estimated_volume_is_not_an_independent_signature(
        self, make_normalized: NormalizedFactory
    ) -> None:
        # Depth 2 -> 4 mm doubles the estimated volume but is neither rapid nor severe
        decision = evaluate_safety_override(
            _weekly(make_normalized, (2.0, 4.0)), ClinicalContextProfile()
        )
        assert decision.severity is None
        assert decision.max_volume_expansion_pct is None

    def test_no_signature_cannot_issue_alert(self, make_normalized: NormalizedFactory) -> None:
        series = _weekly(make_normalized, (4.0, 4.5))
        decision = evaluate_safety_override(series, ClinicalContextProfile())
        with pytest.raises(ValueError):
            decision.to_record()
        with pytest.raises(ValueError, match="bypass-authorizing"):
            build_override_alert(decision, "ep-1", assess_quality(series))
