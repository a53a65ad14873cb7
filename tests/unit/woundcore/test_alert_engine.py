"""
Tests for the graduated alert engine.

Covers:
- Context multipliers and their floor
- Cross-validation weights and treatment-response discrepancy
- Highest-tier emission with full audit trail
- Gate step-down when confidence is below the urgent threshold
- Safety-override gate bypass and override-only alerts
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from woundcore.domain.models import (
    AlertType,
    ClinicalContextProfile,
    DiabeticStatus,
    NormalizedMeasurement,
    OverrideSeverity,
    QualityAssessment,
    QualityComponents,
    QualityGrade,
    TreatmentResponse,
    UrgencyTier,
    WoundCategory,
)
from woundcore.services.alert_engine import (
    CONCORDANT_WEIGHT,
    DISCORDANT_WEIGHT,
    GraduatedAlertEngine,
    adjusted_thresholds,
    context_multiplier,
    cross_validate,
)
from woundcore.services.safety_override import SafetyOverrideDecision, evaluate_safety_override

NormalizedFactory = Callable[..., NormalizedMeasurement]

DIABETIC_DFU = ClinicalContextProfile(
    diabetic_status=DiabeticStatus.DIABETIC,
    wound_category=WoundCategory.DFU,
    anatomical_location="foot",
)

CRITICAL_OVERRIDE = SafetyOverrideDecision(
    severity=OverrideSeverity.CRITICAL,
    signatures=("rapid_depth_increase",),
    authorizes_bypass=True,
    escalation_hours=4,
    rationale="Critical deterioration: depth increase 6.0mm within 7 days",
    max_depth_increase_mm=6.0,
)


def _quality(confidence: float, quality_score: float = 0.9, count: int = 5) -> QualityAssessment:
    return QualityAssessment(
        confidence=confidence,
        quality_score=quality_score,
        grade=QualityGrade.A,
        components=QualityComponents(
            frequency=1.0,
            temporal_stability=1.0,
            trend_consistency=1.0,
            outlier_rate=0.0,
            time_span=1.0,
            validation_rate=0.0,
        ),
        measurement_count=count,
    )


@pytest.fixture
def deepening(make_normalized: NormalizedFactory) -> list[NormalizedMeasurement]:
    return [
        make_normalized(week * 7, depth) for week, depth in enumerate((3.0, 5.0, 8.0, 12.0, 18.0))
    ]


class TestContextModifiers:
    def test_unmodified_context(self) -> None:
        adjustment = context_multiplier(UrgencyTier.CRITICAL_INTERVENTION, ClinicalContextProfile())
        assert adjustment.multiplier == 1.0
        assert adjustment.reasons == ()

    def test_diabetic_dfu_tightens_critical_thresholds(self) -> None:
        thresholds = adjusted_thresholds(UrgencyTier.CRITICAL_INTERVENTION, DIABETIC_DFU)
        assert thresholds.depth_rate_mm_per_week == pytest.approx(2.0 * 0.63)
        assert thresholds.absolute_depth_mm == pytest.approx(5.0 * 0.63)

    def test_age_and_comorbidities_stack(self) -> None:
        context = DIABETIC_DFU.model_copy(
            update={"age": 80, "significant_comorbidities": ("ckd", "chf", "pad")}
        )
        adjustment = context_multiplier(UrgencyTier.CRITICAL_INTERVENTION, context)
        assert adjustment.multiplier == pytest.approx(0.7 * 0.9 * 0.9 * 0.9, abs=1e-4)
        assert len(adjustment.reasons) == 4

    def test_multiplier_floor(self) -> None:
        context = DIABETIC_DFU.model_copy(
            update={"age": 90, "significant_comorbidities": ("ckd", "chf", "pad")}
        )
        assert context_multiplier(UrgencyTier.CRITICAL_INTERVENTION, context).multiplier == 0.5


class TestCrossValidation:
    def test_depth_up_area_down_is_discordant(self, make_normalized: NormalizedFactory) -> None:
        series = [
            make_normalized(0, 3.0, length=4.0, width=3.0),
            make_normalized(7, 6.0, length=3.0, width=2.0),
        ]
        result = cross_validate(series, TreatmentResponse.UNKNOWN)
        assert result.weight == DISCORDANT_WEIGHT
        assert any("possible_measurement_error" in f for f in result.flags)

    def test_depth_and_area_up_is_concordant(self, make_normalized: NormalizedFactory) -> None:
        series = [
            make_normalized(0, 3.0, length=3.0, width=2.0),
            make_normalized(7, 6.0, length=4.0, width=3.0),
        ]
        assert cross_validate(series, TreatmentResponse.UNKNOWN).weight == CONCORDANT_WEIGHT

    def test_good_response_with_deepening_requires_reassessment(
        self, deepening: list[NormalizedMeasurement]
    ) -> None:
        result = cross_validate(deepening, TreatmentResponse.GOOD)
        assert result.requires_reassessment
        assert result.weight == 1.0

    def test_healing_depth_is_not_weighted(self, make_normalized: NormalizedFactory) -> None:
        series = [make_normalized(0, 6.0), make_normalized(7, 3.0)]
        assert cross_validate(series, TreatmentResponse.GOOD).flags == ()


class TestGraduatedAlertEngine:
    def test_deepening_wound_emits_critical_alert(
        self, deepening: list[NormalizedMeasurement], start: datetime
    ) -> None:
        now = start + timedelta(days=28)
        result = GraduatedAlertEngine().evaluate("ep-1", deepening, DIABETIC_DFU, now=now)

        assert result.alert is not None
        alert = result.alert
        assert alert.urgency_tier == UrgencyTier.CRITICAL_INTERVENTION
        assert alert.alert_type == AlertType.DEPTH_INCREASE
        assert alert.created_at == now
        assert alert.advisory_label.is_advisory_only is True
        assert alert.confidence_metrics.consecutive_intervals == 4
        assert UrgencyTier.URGENT_CLINICAL_REVIEW in result.breached_tiers
        codes = [e.code for e in alert.audit_trail]
        assert codes[:2] == ["tier_breached", "context_modifiers_applied"]
        assert "quality_gate_passed" in codes

    def test_confidence_below_urgent_gate_steps_down(
        self, deepening: list[NormalizedMeasurement]
    ) -> None:
        result = GraduatedAlertEngine().evaluate(
            "ep-1", deepening, ClinicalContextProfile(), depth_quality=_quality(0.59)
        )

        assert result.alert is not None
        assert result.alert.urgency_tier.rank < UrgencyTier.URGENT_CLINICAL_REVIEW.rank
        blocked = [e for e in result.audit_trail if e.code == "quality_gate_blocked"]
        assert len(blocked) == 2
        assert not result.gate_results[1].meets_confidence_threshold

    def test_severe_override_does_not_bypass_gate(
        self, deepening: list[NormalizedMeasurement]
    ) -> None:
        severe = CRITICAL_OVERRIDE.model_copy(
            update={
                "severity": OverrideSeverity.SEVERE,
                "authorizes_bypass": False,
                "escalation_hours": 24,
            }
        )
        result = GraduatedAlertEngine().evaluate(
            "ep-1", deepening, ClinicalContextProfile(), override=severe, depth_quality=_quality(0.59)
        )
        assert result.alert is not None
        assert result.alert.urgency_tier == UrgencyTier.MODERATE_CONCERN

    def test_critical_override_bypasses_failed_gate(
        self, deepening: list[NormalizedMeasurement]
    ) -> None:
        result = GraduatedAlertEngine().evaluate(
            "ep-1",
            deepening,
            ClinicalContextProfile(),
            override=CRITICAL_OVERRIDE,
            depth_quality=_quality(0.59),
        )

        assert result.alert is not None
        alert = result.alert
        assert alert.urgency_tier == UrgencyTier.CRITICAL_INTERVENTION
        assert alert.override is not None
        assert "confidence_threshold" in alert.override.bypassed_gates
        assert alert.is_safety_critical
        assert "quality_gate_bypassed" in [e.code for e in alert.audit_trail]

    def test_override_alone_issues_acute_deterioration_alert(
        self, make_normalized: NormalizedFactory
    ) -> None:
        series = [make_normalized(0, 4.0), make_normalized(7, 4.1)]
        result = GraduatedAlertEngine().evaluate(
            "ep-1", series, ClinicalContextProfile(), override=CRITICAL_OVERRIDE
        )

        assert result.breached_tiers == ()
        assert result.alert is not None
        assert result.alert.alert_type == AlertType.ACUTE_DETERIORATION
        assert result.alert.urgency_tier == UrgencyTier.CRITICAL_INTERVENTION

    def test_stable_wound_emits_nothing(self, make_normalized: NormalizedFactory) -> None:
        series = [make_normalized(0, 4.0), make_normalized(7, 4.1), make_normalized(14, 4.1)]
        context = ClinicalContextProfile()
        result = GraduatedAlertEngine().evaluate(
            "ep-1", series, context, override=evaluate_safety_override(series, context)
        )
        assert result.alert is None
        assert result.breached_tiers == ()

    def test_discordant_area_lowers_adjusted_confidence(
        self, make_normalized: NormalizedFactory
    ) -> None:
        series = [
            make_normalized(week * 7, depth, length=length, width=length)
            for week, (depth, length) in enumerate(((3.0, 4.0), (5.0, 3.8), (8.0, 3.5), (12.0, 3.0)))
        ]
        result = GraduatedAlertEngine().evaluate("ep-1", series, ClinicalContextProfile())

        assert result.alert is not None
        metrics = result.alert.confidence_metrics
        assert metrics.cross_validation_weight == DISCORDANT_WEIGHT
        assert metrics.adjusted_confidence == pytest.approx(metrics.confidence * DISCORDANT_WEIGHT, abs=1e-4)
        assert result.alert.cross_validation_flags
