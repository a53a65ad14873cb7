"""
Graduated clinical alert engine.

Maps progression findings to one of four urgency tiers using evidence-derived
thresholds, tightened multiplicatively by clinical context, and cross-validates
depth findings against area and treatment-response before emission.

Key patterns:
- Highest breached tier is tried first; a tier failing its quality gate steps down
- A bypass-authorizing safety override emits the highest breached tier regardless of gates
- Cross-validation down-weights discordant findings, never concordant ones
- Every alert is advisory-only and carries its own audit trail
"""

import math
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict

from woundcore.domain.models import (
    Alert,
    AlertType,
    AuditEntry,
    AuditKind,
    ClinicalContextProfile,
    ConfidenceMetrics,
    DiabeticStatus,
    GateResult,
    NormalizedMeasurement,
    QualityAssessment,
    TreatmentResponse,
    TriggerEvidence,
    UrgencyTier,
    WoundCategory,
)
from woundcore.domain.reference import TIER_THRESHOLDS, TierThresholds
from woundcore.services.progression import (
    max_increase_within,
    max_pct_increase_within,
    trailing_velocity,
)
from woundcore.services.quality import (
    assess_quality,
    check_alert_gate,
    count_consecutive_confirmations,
)
from woundcore.services.safety_override import SafetyOverrideDecision, build_override_alert

logger = structlog.get_logger(__name__)

DIABETIC_TIGHTENING = {
    UrgencyTier.MINOR_CONCERN: 0.90,
    UrgencyTier.MODERATE_CONCERN: 0.85,
    UrgencyTier.URGENT_CLINICAL_REVIEW: 0.80,
    UrgencyTier.CRITICAL_INTERVENTION: 0.70,
}
AGE_THRESHOLD_YEARS = 65
AGE_TIGHTENING_PER_DECADE = 0.05
AGE_TIGHTENING_FLOOR = 0.85
COMORBIDITY_COUNT_TRIGGER = 3
COMORBIDITY_TIGHTENING = 0.90
DFU_TIGHTENING = 0.90
MIN_CONTEXT_MULTIPLIER = 0.5

AREA_CHANGE_TOLERANCE_PCT = 5.0
DISCORDANT_WEIGHT = 0.7
CONCORDANT_WEIGHT = 1.15

_TIERS_HIGH_TO_LOW = tuple(sorted(UrgencyTier, key=lambda t: t.rank, reverse=True))


class ContextAdjustment(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: UrgencyTier
    multiplier: float
    reasons: tuple[str, ...] = ()


class CrossValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    weight: float = 1.0
    flags: tuple[str, ...] = ()
    requires_reassessment: bool = False
    area_change_pct: float | None = None


class AlertEvaluation(BaseModel):
    """Engine outcome: at most one alert plus the reasoning behind it."""

    model_config = ConfigDict(frozen=True)

    alert: Alert | None = None
    breached_tiers: tuple[UrgencyTier, ...] = ()
    gate_results: tuple[GateResult, ...] = ()
    audit_trail: tuple[AuditEntry, ...] = ()


def context_multiplier(tier: UrgencyTier, context: ClinicalContextProfile) -> ContextAdjustment:
    """Combined multiplicative tightening for a tier; 1.0 means unmodified."""
    multiplier = 1.0
    reasons: list[str] = []

    if context.diabetic_status == DiabeticStatus.DIABETIC:
        multiplier *= DIABETIC_TIGHTENING[tier]
        reasons.append(f"diabetic status x{DIABETIC_TIGHTENING[tier]:.2f}")

    if context.age is not None and context.age > AGE_THRESHOLD_YEARS:
        decades = math.ceil((context.age - AGE_THRESHOLD_YEARS) / 10)
        factor = max(AGE_TIGHTENING_FLOOR, 1.0 - AGE_TIGHTENING_PER_DECADE * decades)
        multiplier *= factor
        reasons.append(f"age {context.age} x{factor:.2f}")

    if context.comorbidity_count >= COMORBIDITY_COUNT_TRIGGER:
        multiplier *= COMORBIDITY_TIGHTENING
        reasons.append(f"{context.comorbidity_count} comorbidities x{COMORBIDITY_TIGHTENING:.2f}")

    if context.wound_category == WoundCategory.DFU:
        multiplier *= DFU_TIGHTENING
        reasons.append(f"diabetic foot ulcer x{DFU_TIGHTENING:.2f}")

    return ContextAdjustment(
        tier=tier, multiplier=round(max(MIN_CONTEXT_MULTIPLIER, multiplier), 4), reasons=tuple(reasons)
    )


def adjusted_thresholds(tier: UrgencyTier, context: ClinicalContextProfile) -> TierThresholds:
    base = TIER_THRESHOLDS[tier]
    factor = context_multiplier(tier, context).multiplier
    return base.model_copy(
        update={
            "depth_rate_mm_per_week": base.depth_rate_mm_per_week * factor,
            "absolute_depth_mm": base.absolute_depth_mm * factor,
            "volume_increase_pct": base.volume_increase_pct * factor,
        }
    )


def cross_validate(
    measurements: Sequence[NormalizedMeasurement],
    treatment_response: TreatmentResponse,
) -> CrossValidation:
    """Compare the depth direction with area and clinician-reported treatment response."""
    with_depth = [m for m in measurements if m.depth_mm is not None]
    if len(with_depth) < 2:
        return CrossValidation()

    first, last = with_depth[0], with_depth[-1]
    depth_increasing = (last.depth_mm or 0.0) > (first.depth_mm or 0.0)
    area_change = (
        (last.area_cm2 - first.area_cm2) * 100.0 / first.area_cm2 if first.area_cm2 > 0 else None
    )

    if not depth_increasing:
        return CrossValidation(area_change_pct=area_change)

    weight = 1.0
    flags: list[str] = []
    reassess = False

    if area_change is not None and area_change < -AREA_CHANGE_TOLERANCE_PCT:
        weight = DISCORDANT_WEIGHT
        flags.append("possible_measurement_error: depth increased while area decreased")
    elif area_change is not None and area_change > AREA_CHANGE_TOLERANCE_PCT:
        weight = CONCORDANT_WEIGHT
        flags.append("concordant_deterioration: depth and area both increased")

    if treatment_response == TreatmentResponse.GOOD:
        reassess = True
        flags.append("treatment_response_discrepancy: depth worsening despite reported good response")

    return CrossValidation(
        weight=weight, flags=tuple(flags), requires_reassessment=reassess, area_change_pct=area_change
    )


def breach_evidence(
    thresholds: TierThresholds,
    depth_points: Sequence[tuple[datetime, float]],
    volume_points: Sequence[tuple[datetime, float]],
) -> list[TriggerEvidence]:
    """Threshold checks a series breaches for one tier; empty when none."""
    evidence: list[TriggerEvidence] = []
    window = thresholds.timeframe_days

    rate = trailing_velocity(depth_points, window)
    if rate is not None and rate >= thresholds.depth_rate_mm_per_week:
        evidence.append(
            TriggerEvidence(
                metric="depth_rate_mm_per_week",
                observed_value=round(rate, 4),
                threshold=round(thresholds.depth_rate_mm_per_week, 4),
                timeframe_days=window,
                evidence_keys=thresholds.evidence_keys,
            )
        )

    rise = max_increase_within(depth_points, window)
    if rise >= thresholds.absolute_depth_mm:
        evidence.append(
            TriggerEvidence(
                metric="absolute_depth_increase_mm",
                observed_value=round(rise, 4),
                threshold=round(thresholds.absolute_depth_mm, 4),
                timeframe_days=window,
                evidence_keys=thresholds.evidence_keys,
            )
        )

    expansion = max_pct_increase_within(volume_points, window)
    if expansion is not None and expansion >= thresholds.volume_increase_pct:
        evidence.append(
            TriggerEvidence(
                metric="volume_expansion_pct",
                observed_value=round(expansion, 4),
                threshold=round(thresholds.volume_increase_pct, 4),
                timeframe_days=window,
                evidence_keys=thresholds.evidence_keys + ("volume_outcomes",),
            )
        )

    return evidence


def authorize_emission(
    gate: GateResult, override: SafetyOverrideDecision | None
) -> tuple[bool, tuple[str, ...]]:
    """(emit, bypassed gates). Only critical/emergency overrides bypass a failed gate."""
    if gate.passed:
        return True, ()
    if override is not None and override.authorizes_bypass:
        return True, gate.failed_gates
    return False, ()


class GraduatedAlertEngine:
    """
    Evaluates one episode's normalized series and emits at most one alert.

    Design: stateless apart from configuration, so evaluations for different
    episodes can run in parallel.
    """

    def __init__(
        self, expected_interval_days: float = 7.0, minimum_observation_days: float = 14.0
    ) -> None:
        self.expected_interval_days = expected_interval_days
        self.minimum_observation_days = minimum_observation_days
        self.logger = logger.bind(component="alert_engine")

    def evaluate(
        self,
        episode_id: str,
        measurements: Sequence[NormalizedMeasurement],
        context: ClinicalContextProfile,
        override: SafetyOverrideDecision | None = None,
        depth_quality: QualityAssessment | None = None,
        now: datetime | None = None,
    ) -> AlertEvaluation:
        created_at = now or datetime.now(UTC)
        depth_points = [(m.timestamp, m.depth_mm) for m in measurements if m.depth_mm is not None]
        volume_points = [
            (m.timestamp, m.volume_cm3) for m in measurements if m.volume_cm3 is not None
        ]

        depth_quality = depth_quality or assess_quality(
            measurements, "depth", self.expected_interval_days, self.minimum_observation_days
        )
        cross = cross_validate(measurements, context.treatment_response)
        audit: list[AuditEntry] = []
        gates: list[GateResult] = []

        breached: list[tuple[UrgencyTier, TierThresholds, list[TriggerEvidence]]] = []
        for tier in _TIERS_HIGH_TO_LOW:
            thresholds = adjusted_thresholds(tier, context)
            evidence = breach_evidence(thresholds, depth_points, volume_points)  # type: ignore[arg-type]
            if evidence:
                breached.append((tier, thresholds, evidence))

        breached_tiers = tuple(t for t, _, _ in breached)

        for tier, thresholds, evidence in breached:
            depth_based = any(e.metric != "volume_expansion_pct" for e in evidence)
            if depth_based:
                quality = depth_quality
                confirmation = count_consecutive_confirmations(
                    depth_points, thresholds.depth_rate_mm_per_week  # type: ignore[arg-type]
                )
            else:
                quality = assess_quality(
                    measurements,
                    "volume",
                    self.expected_interval_days,
                    self.minimum_observation_days,
                )
                confirmation = count_consecutive_confirmations(
                    _as_pct_of_first(volume_points),  # type: ignore[arg-type]
                    thresholds.volume_increase_pct / (thresholds.timeframe_days / 7.0),
                    label="volume",
                )

            adjusted_confidence = min(1.0, quality.confidence * cross.weight)
            gate = check_alert_gate(
                tier,
                quality.quality_score,
                adjusted_confidence,
                quality.measurement_count,
                confirmation.consecutive_intervals,
            )
            gates.append(gate)
            emit, bypassed = authorize_emission(gate, override)

            if not emit:
                audit.append(
                    AuditEntry(
                        code="quality_gate_blocked",
                        detail="; ".join(gate.prevention_reasons),
                        kind=AuditKind.INFO,
                    )
                )
                continue

            alert = self._build_alert(
                episode_id=episode_id,
                tier=tier,
                alert_type=AlertType.DEPTH_INCREASE if depth_based else AlertType.VOLUME_EXPANSION,
                evidence=evidence,
                quality=quality,
                adjusted_confidence=adjusted_confidence,
                consecutive=confirmation.consecutive_intervals,
                cross=cross,
                context=context,
                override=override,
                bypassed=bypassed,
                created_at=created_at,
            )
            self.logger.info(
                "alert_emitted",
                episode_id=episode_id,
                alert_id=alert.id,
                tier=tier.value,
                alert_type=alert.alert_type.value,
                bypassed_gates=list(bypassed),
            )
            return AlertEvaluation(
                alert=alert,
                breached_tiers=breached_tiers,
                gate_results=tuple(gates),
                audit_trail=tuple(audit),
            )

        if override is not None and override.authorizes_bypass:
            gate = check_alert_gate(
                UrgencyTier.CRITICAL_INTERVENTION,
                depth_quality.quality_score,
                depth_quality.confidence,
                depth_quality.measurement_count,
            )
            gates.append(gate)
            alert = build_override_alert(
                override, episode_id, depth_quality, gate.failed_gates, created_at
            )
            self.logger.warning(
                "override_alert_emitted",
                episode_id=episode_id,
                alert_id=alert.id,
                severity=override.severity.value if override.severity else None,
            )
            return AlertEvaluation(
                alert=alert,
                breached_tiers=breached_tiers,
                gate_results=tuple(gates),
                audit_trail=tuple(audit),
            )

        self.logger.info(
            "no_alert_emitted",
            episode_id=episode_id,
            breached_tiers=[t.value for t in breached_tiers],
        )
        return AlertEvaluation(
            breached_tiers=breached_tiers, gate_results=tuple(gates), audit_trail=tuple(audit)
        )

    def _build_alert(
        self,
        *,
        episode_id: str,
        tier: UrgencyTier,
        alert_type: AlertType,
        evidence: list[TriggerEvidence],
        quality: QualityAssessment,
        adjusted_confidence: float,
        consecutive: int,
        cross: CrossValidation,
        context: ClinicalContextProfile,
        override: SafetyOverrideDecision | None,
        bypassed: tuple[str, ...],
        created_at: datetime,
    ) -> Alert:
        adjustment = context_multiplier(tier, context)
        trail = [
            AuditEntry(
                code="tier_breached",
                detail=", ".join(
                    f"{e.metric} {e.observed_value:.2f} >= {e.threshold:.2f}" for e in evidence
                ),
            ),
            AuditEntry(
                code="context_modifiers_applied",
                detail=(
                    f"threshold multiplier {adjustment.multiplier:.2f}"
                    + (f" ({'; '.join(adjustment.reasons)})" if adjustment.reasons else "")
                ),
            ),
        ]
        trail.extend(AuditEntry(code="cross_validation", detail=flag) for flag in cross.flags)
        if bypassed:
            trail.append(
                AuditEntry(code="quality_gate_bypassed", detail="Bypassed gates: " + ", ".join(bypassed))
            )
        else:
            trail.append(AuditEntry(code="quality_gate_passed", detail=f"{tier.value} gate passed"))
        if not quality.allow_high_urgency_alerts:
            trail.append(
                AuditEntry(code="quality_advisory", detail="; ".join(quality.flags) or "low quality")
            )
        if override is not None and override.severity is not None:
            trail.extend(override.audit_trail)

        return Alert(
            id=f"alert-{uuid.uuid4().hex[:12]}",
            episode_id=episode_id,
            alert_type=alert_type,
            urgency_tier=tier,
            trigger_evidence=tuple(evidence),
            confidence_metrics=ConfidenceMetrics(
                confidence=quality.confidence,
                adjusted_confidence=round(adjusted_confidence, 4),
                quality_score=quality.quality_score,
                quality_grade=quality.grade,
                measurement_count=quality.measurement_count,
                consecutive_intervals=consecutive,
                cross_validation_weight=cross.weight,
            ),
            audit_trail=tuple(trail),
            created_at=created_at,
            override=override.to_record(bypassed) if override and override.severity else None,
            cross_validation_flags=cross.flags,
            requires_reassessment=cross.requires_reassessment,
        )


def _as_pct_of_first(points: Sequence[tuple[datetime, float]]) -> list[tuple[datetime, float]]:
    if not points or points[0][1] <= 0:
        return []
    base = points[0][1]
    return [(t, v * 100.0 / base) for t, v in points]
