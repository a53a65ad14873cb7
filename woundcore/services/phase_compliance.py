"""
Coverage phase-compliance engine for the payer's two-phase area-reduction rule.

Design principles:
- Pure function of area-only observations and an immutable phase baseline
- Never reads depth, volume, alert, progression or safety-override state
- Non-area input is a programming error and fails fast
- Non-compliance is an ordinary outcome, reported with regulatory notes

Phase rules (LCD L39806 defaults):
- pre-product: reduction from baseline must stay below 50% after >=28 days of standard care
- post-product: each 4-week window must reach >=20% reduction from the product-start baseline
"""

from collections.abc import Sequence
from datetime import datetime, timedelta

import structlog

from woundcore.domain.errors import PhaseSeparationViolation
from woundcore.domain.models import (
    AreaObservation,
    AuditEntry,
    AuditKind,
    ComplianceAssessment,
    ComplianceStatus,
    CoveragePolicy,
    PeriodWindow,
    PhaseBaseline,
    TreatmentPhase,
)
from woundcore.domain.reference import DEFAULT_COVERAGE_POLICY

logger = structlog.get_logger(__name__)


def elapsed_days(start: datetime, end: datetime) -> int:
    """Whole days between two instants, rounded so DST shifts never move a day boundary."""
    return round((end - start).total_seconds() / 86400.0)


def _require_area_observations(observations: Sequence[object]) -> list[AreaObservation]:
    checked: list[AreaObservation] = []
    for obs in observations:
        if not isinstance(obs, AreaObservation):
            raise PhaseSeparationViolation(
                "non_area_input",
                "phase-compliance engine accepts only {timestamp, area} observations, "
                f"got {type(obs).__name__}",
            )
        checked.append(obs)
    return checked


def _deduplicate(observations: list[AreaObservation]) -> list[AreaObservation]:
    """Sort by time keeping the first observation supplied for any instant."""
    seen: set[datetime] = set()
    unique: list[AreaObservation] = []
    for obs in sorted(observations, key=lambda o: o.timestamp):
        if obs.timestamp in seen:
            continue
        seen.add(obs.timestamp)
        unique.append(obs)
    return unique


def anchor_baseline(
    observations: Sequence[AreaObservation],
    phase: TreatmentPhase,
    product_start_date: datetime | None = None,
) -> AreaObservation | None:
    """
    Observation that anchors the phase baseline.

    Pre-product: first observation. Post-product: observation nearest the product
    start date, preferring the earlier one on a tie.
    """
    ordered = _deduplicate(_require_area_observations(observations))
    if not ordered:
        return None
    if phase == TreatmentPhase.PRE_PRODUCT:
        return ordered[0]
    if product_start_date is None:
        return None
    return min(
        ordered,
        key=lambda o: (abs((o.timestamp - product_start_date).total_seconds()), o.timestamp),
    )


def _select_for_target(
    candidates: list[tuple[AreaObservation, int]], target_day: int, policy: CoveragePolicy
) -> tuple[AreaObservation, int, str] | None:
    """Closest observation to the target day; equidistant candidates prefer the later one."""
    tiers = (
        ("preferred", policy.preferred_tolerance_days),
        ("extended", policy.preferred_tolerance_days + policy.extended_tolerance_days),
    )
    for label, tolerance in tiers:
        in_window = [(obs, day) for obs, day in candidates if abs(day - target_day) <= tolerance]
        if in_window:
            obs, day = min(in_window, key=lambda c: (abs(c[1] - target_day), -c[1]))
            return obs, day, label
    return None


def reduction_pct(baseline_area: float, area: float) -> float:
    return round((baseline_area - area) * 100.0 / baseline_area, 6)


def _meets(phase: TreatmentPhase, pct: float, policy: CoveragePolicy) -> bool:
    if phase == TreatmentPhase.PRE_PRODUCT:
        return pct < policy.pre_product_threshold_pct
    return pct >= policy.post_product_threshold_pct


def _regulatory_note(phase: TreatmentPhase, pct: float, meets: bool, policy: CoveragePolicy) -> str:
    if phase == TreatmentPhase.PRE_PRODUCT:
        threshold = policy.pre_product_threshold_pct
        if meets:
            return (
                f"Pre-CTP phase: {pct:.1f}% area reduction (<{threshold:.0f}%) - "
                "conservative care insufficient, CTP indicated"
            )
        return (
            f"Pre-CTP phase: {pct:.1f}% area reduction (>={threshold:.0f}%) - "
            "conservative care was effective - CTP not medically necessary"
        )
    threshold = policy.post_product_threshold_pct
    if meets:
        return (
            f"Post-CTP phase: {pct:.1f}% area reduction (>={threshold:.0f}%) - "
            "continued CTP therapy justified"
        )
    return (
        f"Post-CTP phase: {pct:.1f}% area reduction (<{threshold:.0f}%) - "
        "CTP therapy not effective - discontinue treatment"
    )


def _threshold(phase: TreatmentPhase, policy: CoveragePolicy) -> float:
    if phase == TreatmentPhase.PRE_PRODUCT:
        return policy.pre_product_threshold_pct
    return policy.post_product_threshold_pct


def _insufficient(
    phase: TreatmentPhase,
    policy: CoveragePolicy,
    episode_id: str | None,
    note: str,
    audit: list[AuditEntry],
    **fields: object,
) -> ComplianceAssessment:
    audit.append(AuditEntry(code="insufficient_data", detail=note, kind=AuditKind.INPUT_ERROR))
    logger.info(
        "phase_compliance_evaluated",
        episode_id=episode_id,
        phase=phase.value,
        status=ComplianceStatus.INSUFFICIENT_DATA.value,
    )
    return ComplianceAssessment(
        episode_id=episode_id,
        phase=phase,
        overall_compliance=ComplianceStatus.INSUFFICIENT_DATA,
        meets_phase_requirement=False,
        phase_threshold_pct=_threshold(phase, policy),
        regulatory_notes=(note,),
        policy_metadata=policy.metadata,
        audit_trail=tuple(audit),
        **fields,  # type: ignore[arg-type]
    )


def evaluate_phase_compliance(
    observations: Sequence[AreaObservation],
    phase: TreatmentPhase,
    *,
    product_start_date: datetime | None = None,
    baseline: PhaseBaseline | None = None,
    policy: CoveragePolicy = DEFAULT_COVERAGE_POLICY,
    episode_id: str | None = None,
) -> ComplianceAssessment:
    """
    Evaluate the phase's area-reduction requirement over rolling 4-week windows.

    Args:
        observations: area-only pairs; anything else raises PhaseSeparationViolation
        phase: treatment phase being evaluated
        product_start_date: first product application (required post-product
            unless `baseline` is given)
        baseline: previously anchored baseline; reused verbatim when supplied
        policy: payer rule parameters
        episode_id: carried into the assessment and audit trail

    Returns:
        ComplianceAssessment with one PeriodWindow per evaluated 28-day period.
    """
    ordered = _deduplicate(_require_area_observations(observations))
    audit: list[AuditEntry] = [
        AuditEntry(
            code="policy_reference",
            detail=(
                f"Evaluated under {policy.metadata.policy_id} "
                f"({policy.metadata.jurisdiction})"
            ),
        )
    ]

    if baseline is not None and baseline.phase != phase:
        raise PhaseSeparationViolation(
            "baseline_phase_mismatch",
            f"{baseline.phase.value} baseline supplied for {phase.value} evaluation",
        )

    if not ordered:
        return _insufficient(
            phase, policy, episode_id, "No area measurements available for evaluation", audit
        )

    if baseline is None:
        if phase == TreatmentPhase.POST_PRODUCT and product_start_date is None:
            return _insufficient(
                phase, policy, episode_id, "Post-CTP phase validation requires CTP start date", audit
            )
        anchor = anchor_baseline(ordered, phase, product_start_date)
        if anchor is None or anchor.area <= 0:
            return _insufficient(
                phase,
                policy,
                episode_id,
                "Baseline area must be positive to compute area reduction",
                audit,
            )
        baseline = PhaseBaseline(
            phase=phase, anchor_timestamp=anchor.timestamp, anchor_area=anchor.area
        )

    audit.append(
        AuditEntry(
            code="phase_baseline_anchored",
            detail=(
                f"{phase.value} baseline {baseline.anchor_area:.2f} cm² at "
                f"{baseline.anchor_timestamp.date().isoformat()}"
            ),
        )
    )

    following = [o for o in ordered if o.timestamp >= baseline.anchor_timestamp]
    candidates = [
        (o, elapsed_days(baseline.anchor_timestamp, o.timestamp))
        for o in following
        if o.timestamp != baseline.anchor_timestamp
    ]
    elapsed = candidates[-1][1] if candidates else 0
    current_pct = (
        reduction_pct(baseline.anchor_area, candidates[-1][0].area) if candidates else None
    )

    windows: list[PeriodWindow] = []
    period_start = 0
    while period_start + policy.window_days <= elapsed + policy.preferred_tolerance_days:
        target = period_start + policy.window_days
        selected = _select_for_target(candidates, target, policy)
        if selected is None:
            windows.append(PeriodWindow(period_start_day=period_start, target_day=target))
            audit.append(
                AuditEntry(
                    code="period_window_empty",
                    detail=f"No measurement within tolerance of day {target}",
                    kind=AuditKind.INPUT_ERROR,
                )
            )
        else:
            obs, day, label = selected
            pct = reduction_pct(baseline.anchor_area, obs.area)
            meets = _meets(phase, pct, policy)
            windows.append(
                PeriodWindow(
                    period_start_day=period_start,
                    target_day=target,
                    selected_timestamp=obs.timestamp,
                    selected_day=day,
                    period_area=obs.area,
                    reduction_pct=pct,
                    meets_requirement=meets,
                    selection=label,  # type: ignore[arg-type]
                )
            )
            audit.append(
                AuditEntry(
                    code="period_window_selected",
                    detail=(
                        f"Day {day} selected for target day {target} ({label} window): "
                        f"{pct:.1f}% reduction"
                    ),
                )
            )
        period_start += policy.window_days

    next_evaluation = baseline.anchor_timestamp + timedelta(
        days=(elapsed // policy.window_days + 1) * policy.window_days
    )
    context = {
        "baseline": baseline,
        "current_reduction_pct": current_pct,
        "days_from_baseline": elapsed,
        "period_windows": tuple(windows),
        "next_evaluation_date": next_evaluation,
    }

    if elapsed < policy.minimum_elapsed_days:
        return _insufficient(
            phase,
            policy,
            episode_id,
            f"Only {elapsed} days from baseline; {policy.minimum_elapsed_days} days required",
            audit,
            **context,
        )

    evaluated = [w for w in windows if w.meets_requirement is not None]
    if not evaluated:
        return _insufficient(
            phase,
            policy,
            episode_id,
            "No measurement falls within any evaluation window",
            audit,
            **context,
        )

    current = evaluated[-1]
    meets = bool(current.meets_requirement)
    pct = current.reduction_pct or 0.0
    note = _regulatory_note(phase, pct, meets, policy)
    status = ComplianceStatus.COMPLIANT if meets else ComplianceStatus.NON_COMPLIANT
    audit.append(
        AuditEntry(
            code="phase_requirement_met" if meets else "phase_requirement_not_met",
            detail=note,
            kind=AuditKind.BUSINESS_OUTCOME,
        )
    )

    logger.info(
        "phase_compliance_evaluated",
        episode_id=episode_id,
        phase=phase.value,
        status=status.value,
        reduction_pct=round(pct, 2),
        days_from_baseline=elapsed,
        windows=len(windows),
    )

    return ComplianceAssessment(
        episode_id=episode_id,
        phase=phase,
        meets_phase_requirement=meets,
        overall_compliance=status,
        phase_threshold_pct=_threshold(phase, policy),
        regulatory_notes=(note,),
        policy_metadata=policy.metadata,
        audit_trail=tuple(audit),
        **context,  # type: ignore[arg-type]
    )
