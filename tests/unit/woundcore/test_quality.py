"""
Tests for measurement quality scoring and alert gates.

Covers:
- Composite quality score and grade for a regular weekly series
- Robust outlier detection (MAD for small samples, z-score above)
- Trend consistency
- Consecutive-interval confirmation resets
- Tier gate boundaries
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from woundcore.domain.models import (
    NormalizedMeasurement,
    QualityGrade,
    UrgencyTier,
    ValidationStatus,
)
from woundcore.services.quality import (
    assess_quality,
    check_alert_gate,
    count_consecutive_confirmations,
    detect_outliers,
    grade_for,
    trend_consistency,
)


@pytest.fixture
def weekly_depths(
    make_normalized: Callable[..., NormalizedMeasurement],
) -> list[NormalizedMeasurement]:
    return [
        make_normalized(week * 7, depth)
        for week, depth in enumerate((3.0, 5.0, 8.0, 12.0, 18.0))
    ]


class TestAssessQuality:
    def test_regular_weekly_series_scores_high(
        self, weekly_depths: list[NormalizedMeasurement]
    ) -> None:
        quality = assess_quality(weekly_depths, "depth")

        assert quality.measurement_count == 5
        assert quality.components.frequency == 1.0
        assert quality.components.trend_consistency == 1.0
        assert quality.components.validation_rate == 0.0
        assert quality.confidence == pytest.approx(0.9)
        assert quality.grade == QualityGrade.A
        assert quality.allow_high_urgency_alerts

    def test_validated_measurements_raise_confidence(
        self, make_normalized: Callable[..., NormalizedMeasurement]
    ) -> None:
        series = [
            make_normalized(week * 7, depth, validation_status=ValidationStatus.VALIDATED)
            for week, depth in enumerate((3.0, 5.0, 8.0))
        ]
        assert assess_quality(series, "depth").confidence == pytest.approx(1.0)

    def test_no_points_for_metric_grades_f(
        self, make_normalized: Callable[..., NormalizedMeasurement]
    ) -> None:
        quality = assess_quality([make_normalized(0)], "depth")
        assert quality.grade == QualityGrade.F
        assert quality.measurement_count == 0
        assert not quality.allow_high_urgency_alerts

    def test_sparse_and_short_series_is_flagged(
        self, make_normalized: Callable[..., NormalizedMeasurement]
    ) -> None:
        quality = assess_quality([make_normalized(0, 3.0), make_normalized(7, 4.0)], "depth")
        assert any("Sparse data" in f for f in quality.flags)
        assert any("below 14-day minimum" in f for f in quality.flags)

    def test_long_gap_reduces_temporal_stability(
        self, make_normalized: Callable[..., NormalizedMeasurement]
    ) -> None:
        series = [make_normalized(0, 3.0), make_normalized(7, 4.0), make_normalized(28, 5.0)]
        quality = assess_quality(series, "depth")
        assert quality.components.temporal_stability == pytest.approx(0.85)


class TestOutliers:
    def test_small_sample_uses_mad(self) -> None:
        assert detect_outliers([1.0, 1.0, 1.0, 1.0, 10.0]) == (4,)

    def test_larger_sample_uses_z_score(self) -> None:
        assert detect_outliers([5.0] * 7 + [50.0]) == (7,)

    def test_fewer_than_three_points_never_outlie(self) -> None:
        assert detect_outliers([1.0, 100.0]) == ()

    def test_trend_consistency_counts_dominant_direction(self) -> None:
        assert trend_consistency([1.0, 2.0, 3.0, 2.0]) == pytest.approx(2 / 3)
        assert trend_consistency([4.0, 4.0, 4.0]) == 1.0


class TestConsecutiveConfirmation:
    def test_decrease_resets_run(self, start: datetime) -> None:
        values = (3.0, 5.0, 8.0, 7.0, 10.0)
        points = [(start + timedelta(days=7 * i), v) for i, v in enumerate(values)]

        result = count_consecutive_confirmations(points, 1.0)

        assert result.consecutive_intervals == 1
        assert result.longest_run == 2
        assert any("Trend break" in b for b in result.breaks)

    def test_unbroken_run_counts_every_interval(self, start: datetime) -> None:
        points = [(start + timedelta(days=7 * i), 2.0 * i) for i in range(4)]
        assert count_consecutive_confirmations(points, 2.0).consecutive_intervals == 3


class TestAlertGate:
    @pytest.mark.parametrize(("confidence", "passed"), [(0.59, False), (0.60, True)])
    def test_urgent_confidence_boundary(self, confidence: float, passed: bool) -> None:
        gate = check_alert_gate(UrgencyTier.URGENT_CLINICAL_REVIEW, 0.9, confidence, 5)
        assert gate.passed is passed
        assert gate.meets_confidence_threshold is passed

    def test_failed_gate_reports_every_reason(self) -> None:
        gate = check_alert_gate(UrgencyTier.CRITICAL_INTERVENTION, 0.5, 0.5, 2, 0)
        assert not gate.passed
        assert set(gate.failed_gates) == {
            "minimum_measurements",
            "confidence_threshold",
            "quality_threshold",
            "consecutive_confirmation",
        }
        assert len(gate.prevention_reasons) == 4

    def test_minor_gate_is_lenient(self) -> None:
        assert check_alert_gate(UrgencyTier.MINOR_CONCERN, 0.5, 0.4, 2).passed

    @pytest.mark.parametrize(
        ("score", "grade"),
        [(0.95, QualityGrade.A), (0.85, QualityGrade.B), (0.7, QualityGrade.C), (0.2, QualityGrade.F)],
    )
    def test_grade_floors(self, score: float, grade: QualityGrade) -> None:
        assert grade_for(score) == grade
