"""
Safety override evaluation for acute wound deterioration.

Scans the series independently of the graduated thresholds for acute signatures:
- rapid depth increase (>=5 mm within 7 days)
- severe volume expansion (>=50% within 14 days)
- >=2 concurrent severe-infection indicators
- high pain (>=8/10) or systemic signs

Decision matrix, checked in priority order:
- any two of {rapid depth, severe volume, infection} -> emergency, 1h, gate bypass
- rapid depth alone, or severe volume with infection/systemic -> critical, 4h, gate bypass
- depth change >=3 mm, or two of {volume, infection, systemic} -> severe, 24h, no bypass

An override only changes when an alert fires. Every alert it touches stays advisory-only.
"""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict

from woundcore.domain.models import (
    Alert,
    AlertType,
    AuditEntry,
    ClinicalContextProfile,
    ConfidenceMetrics,
    NormalizedMeasurement,
    OverrideRecord,
    OverrideSeverity,
    QualityAssessment,
    TriggerEvidence,
    UrgencyTier,
)
from woundcore.domain.reference import (
    HIGH_PAIN_SCORE,
    MIN_CONCURRENT_INFECTION_INDICATORS,
    RAPID_DEPTH_INCREASE_MM,
    RAPID_DEPTH_WINDOW_DAYS,
    SEVERE_DEPTH_CHANGE_MM,
    SEVERE_VOLUME_EXPANSION_PCT,
    SEVERE_VOLUME_WINDOW_DAYS,
)
from woundcore.services.progression import max_increase_within, max_pct_increase_within

logger = structlog.get_logger(__name__)

ESCALATION_HOURS = {
    OverrideSeverity.EMERGENCY: 1,
    OverrideSeverity.CRITICAL: 4,
    OverrideSeverity.SEVERE: 24,
}

RAPID_DEPTH = "rapid_depth_increase"
SEVERE_VOLUME = "severe_volume_expansion"
INFECTION = "severe_infection"
SYSTEMIC = "systemic_or_high_pain"


class SafetyOverrideDecision(BaseModel):
    """Outcome of the acute-deterioration scan."""

    model_config = ConfigDict(frozen=True)

    severity: OverrideSeverity | None = None
    signatures: tuple[str, ...] = ()
    authorizes_bypass: bool = False
    escalation_hours: int | None = None
    rationale: str = "No acute deterioration signature detected"
    max_depth_increase_mm: float = 0.0
    max_volume_expansion_pct: float | None = None
    audit_trail: tuple[AuditEntry, ...] = ()

    def to_record(self, bypassed_gates: Sequence[str] = ()) -> OverrideRecord:
        if self.severity is None or self.escalation_hours is None:
            raise ValueError("no override severity to record")
        return OverrideRecord(
            severity=self.severity,
            escalation_hours=self.escalation_hours,
            signatures=self.signatures,
            bypassed_gates=tuple(bypassed_gates) if self.authorizes_bypass else (),
            rationale=self.rationale,
        )


def evaluate_safety_override(
    measurements: Sequence[NormalizedMeasurement],
    context: ClinicalContextProfile,
) -> SafetyOverrideDecision:
    """Classify acute deterioration and decide whether quality gates may be bypassed."""
    depth_points = [(m.timestamp, m.depth_mm) for m in measurements if m.depth_mm is not None]
    # Estimated volumes derive from depth; only recorded volumes count as an independent signature
    volume_points = [
        (m.timestamp, m.volume_cm3)
        for m in measurements
        if m.volume_cm3 is not None and m.volume_source == "recorded"
    ]

    depth_rise = max_increase_within(depth_points, RAPID_DEPTH_WINDOW_DAYS)  # type: ignore[arg-type]
    volume_rise = max_pct_increase_within(volume_points, SEVERE_VOLUME_WINDOW_DAYS)  # type: ignore[arg-type]

    rapid_depth = depth_rise >= RAPID_DEPTH_INCREASE_MM
    severe_volume = volume_rise is not None and volume_rise >= SEVERE_VOLUME_EXPANSION_PCT
    infection = len(context.infection_indicators) >= MIN_CONCURRENT_INFECTION_INDICATORS
    systemic = context.systemic_signs or (
        context.pain_score is not None and context.pain_score >= HIGH_PAIN_SCORE
    )

    present = [
        name
        for name, hit in (
            (RAPID_DEPTH, rapid_depth),
            (SEVERE_VOLUME, severe_volume),
            (INFECTION, infection),
            (SYSTEMIC, systemic),
        )
        if hit
    ]

    details: list[str] = []
    if rapid_depth:
        details.append(f"depth increase {depth_rise:.1f}mm within {RAPID_DEPTH_WINDOW_DAYS} days")
    if severe_volume:
        details.append(
            f"volume expansion {volume_rise:.0f}% within {SEVERE_VOLUME_WINDOW_DAYS} days"
        )
    if infection:
        indicators = ", ".join(sorted(i.value for i in context.infection_indicators))
        details.append(f"concurrent infection indicators ({indicators})")
    if systemic:
        details.append("systemic signs or pain >= 8/10")

    severity: OverrideSeverity | None
    if sum((rapid_depth, severe_volume, infection)) >= 2:
        severity = OverrideSeverity.EMERGENCY
    elif rapid_depth or (severe_volume and (infection or systemic)):
        severity = OverrideSeverity.CRITICAL
    elif depth_rise >= SEVERE_DEPTH_CHANGE_MM or sum((severe_volume, infection, systemic)) >= 2:
        severity = OverrideSeverity.SEVERE
        if depth_rise >= SEVERE_DEPTH_CHANGE_MM and not rapid_depth:
            details.append(
                f"depth change {depth_rise:.1f}mm within {RAPID_DEPTH_WINDOW_DAYS} days"
            )
    else:
        severity = None

    if severity is None:
        return SafetyOverrideDecision(
            signatures=tuple(present),
            max_depth_increase_mm=round(depth_rise, 4),
            max_volume_expansion_pct=volume_rise,
        )

    bypass = severity in (OverrideSeverity.EMERGENCY, OverrideSeverity.CRITICAL)
    rationale = f"{severity.value.capitalize()} deterioration: " + "; ".join(details)
    decision = SafetyOverrideDecision(
        severity=severity,
        signatures=tuple(present),
        authorizes_bypass=bypass,
        escalation_hours=ESCALATION_HOURS[severity],
        rationale=rationale,
        max_depth_increase_mm=round(depth_rise, 4),
        max_volume_expansion_pct=volume_rise,
        audit_trail=(
            AuditEntry(code=f"safety_override_{severity.value}", detail=rationale),
            AuditEntry(
                code="safety_override_scope",
                detail=(
                    "Quality gates bypassed for alert timing only"
                    if bypass
                    else "Standard quality gates still apply"
                ),
            ),
        ),
    )

    logger.warning(
        "safety_override_detected",
        severity=severity.value,
        signatures=list(present),
        authorizes_bypass=bypass,
        escalation_hours=ESCALATION_HOURS[severity],
    )
    return decision


def build_override_alert(
    decision: SafetyOverrideDecision,
    episode_id: str,
    quality: QualityAssessment,
    bypassed_gates: Sequence[str],
    now: datetime | None = None,
) -> Alert:
    """Acute-deterioration alert issued directly by an authorizing override."""
    if not decision.authorizes_bypass:
        raise ValueError("only bypass-authorizing overrides issue their own alerts")

    evidence = [
        TriggerEvidence(
            metric="max_depth_increase_mm_7d",
            observed_value=decision.max_depth_increase_mm,
            threshold=RAPID_DEPTH_INCREASE_MM,
            timeframe_days=RAPID_DEPTH_WINDOW_DAYS,
            evidence_keys=("iwgdf_2023", "depth_outcomes"),
        )
    ]
    if decision.max_volume_expansion_pct is not None:
        evidence.append(
            TriggerEvidence(
                metric="max_volume_expansion_pct_14d",
                observed_value=round(decision.max_volume_expansion_pct, 4),
                threshold=SEVERE_VOLUME_EXPANSION_PCT,
                timeframe_days=SEVERE_VOLUME_WINDOW_DAYS,
                evidence_keys=("volume_outcomes",),
            )
        )

    record = decision.to_record(bypassed_gates)
    return Alert(
        id=f"alert-{uuid.uuid4().hex[:12]}",
        episode_id=episode_id,
        alert_type=AlertType.ACUTE_DETERIORATION,
        urgency_tier=UrgencyTier.CRITICAL_INTERVENTION,
        trigger_evidence=tuple(evidence),
        confidence_metrics=ConfidenceMetrics(
            confidence=quality.confidence,
            adjusted_confidence=quality.confidence,
            quality_score=quality.quality_score,
            quality_grade=quality.grade,
            measurement_count=quality.measurement_count,
            consecutive_intervals=0,
        ),
        audit_trail=decision.audit_trail
        + (
            AuditEntry(
                code="quality_gate_bypassed",
                detail="Bypassed gates: " + (", ".join(record.bypassed_gates) or "none"),
            ),
        ),
        created_at=now or datetime.now(UTC),
        override=record,
    )
