"""
Measurement quality and statistical-confidence scoring.

Key patterns:
- Weighted composite: frequency 25%, trend consistency 30%, outlier penalty 20%,
  time-span adequacy 15%, validation ratio 10%
- Robust outlier detection: MAD x 1.4826 (2.5 cut-off) for <=5 points, z-score (2.0) above
- Tier-specific gate rule deciding whether an alert may be emitted
- Consecutive-interval confirmation that resets on the first non-breaching interval
"""

import statistics
from collections.abc import Sequence
from datetime import datetime
from typing import Literal

import structlog

from woundcore.domain.models import (
    ConsecutiveConfirmation,
    GateResult,
    NormalizedMeasurement,
    QualityAssessment,
    QualityComponents,
    QualityGrade,
    UrgencyTier,
    ValidationStatus,
)
from woundcore.domain.reference import GATE_REQUIREMENTS

logger = structlog.get_logger(__name__)

WEIGHTS = {
    "frequency": 0.25,
    "trend_consistency": 0.30,
    "outliers": 0.20,
    "time_span": 0.15,
    "validation": 0.10,
}

MAD_SCALE = 1.4826
MAD_THRESHOLD = 2.5
Z_SCORE_THRESHOLD = 2.0
SMALL_SAMPLE_MAX = 5
HIGH_OUTLIER_RATE = 0.2
GAP_PENALTY = 0.15

_GRADE_FLOORS = (
    (0.9, QualityGrade.A),
    (0.8, QualityGrade.B),
    (0.7, QualityGrade.C),
    (0.6, QualityGrade.D),
)

Metric = Literal["depth", "area", "volume"]


def grade_for(score: float) -> QualityGrade:
    for floor, grade in _GRADE_FLOORS:
        if score >= floor:
            return grade
    return QualityGrade.F


def detect_outliers(values: Sequence[float]) -> tuple[int, ...]:
    """Indices of outlying values. Fewer than 3 points cannot define an outlier."""
    n = len(values)
    if n < 3:
        return ()

    if n <= SMALL_SAMPLE_MAX:
        center = statistics.median(values)
        deviations = [abs(v - center) for v in values]
        spread = MAD_SCALE * statistics.median(deviations)
        if spread == 0:
            # Mean absolute deviation, rescaled to a normal-consistent estimate
            spread = 1.2533 * statistics.fmean(deviations)
        if spread == 0:
            return ()
        return tuple(i for i, d in enumerate(deviations) if d / spread > MAD_THRESHOLD)

    mean = statistics.fmean(values)
    stdev = statistics.pstdev(values)
    if stdev == 0:
        return ()
    return tuple(i for i, v in enumerate(values) if abs(v - mean) / stdev > Z_SCORE_THRESHOLD)


def trend_consistency(values: Sequence[float]) -> float:
    """Share of non-flat consecutive changes that agree with the dominant direction."""
    if len(values) < 2:
        return 0.0
    if len(values) == 2:
        return 0.5

    deltas = [b - a for a, b in zip(values, values[1:])]
    rising = sum(1 for d in deltas if d > 1e-9)
    falling = sum(1 for d in deltas if d < -1e-9)
    moving = rising + falling
    if moving == 0:
        return 1.0
    return max(rising, falling) / moving


def _metric_value(measurement: NormalizedMeasurement, metric: Metric) -> float | None:
    if metric == "depth":
        return measurement.depth_mm
    if metric == "volume":
        return measurement.volume_cm3
    return measurement.area_cm2


def _days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 86400.0


def assess_quality(
    measurements: Sequence[NormalizedMeasurement],
    metric: Metric = "depth",
    expected_interval_days: float = 7.0,
    minimum_observation_days: float = 14.0,
) -> QualityAssessment:
    """Score the quality and statistical confidence of one metric's series."""
    points = [m for m in measurements if _metric_value(m, metric) is not None]
    n = len(points)

    if n == 0:
        return QualityAssessment(
            confidence=0.0,
            quality_score=0.0,
            grade=QualityGrade.F,
            components=QualityComponents(
                frequency=0.0,
                temporal_stability=0.0,
                trend_consistency=0.0,
                outlier_rate=0.0,
                time_span=0.0,
                validation_rate=0.0,
            ),
            measurement_count=0,
            flags=(f"No {metric} measurements available",),
            allow_high_urgency_alerts=False,
        )

    values = [_metric_value(m, metric) or 0.0 for m in points]
    span_days = _days_between(points[0].timestamp, points[-1].timestamp)
    flags: list[str] = []

    expected_count = span_days / expected_interval_days + 1.0
    frequency = min(1.0, n / expected_count)

    gaps = [
        _days_between(a.timestamp, b.timestamp)
        for a, b in zip(points, points[1:])
        if _days_between(a.timestamp, b.timestamp) > 2 * expected_interval_days
    ]
    temporal_stability = max(0.0, 1.0 - GAP_PENALTY * len(gaps))
    for gap in gaps:
        flags.append(f"Measurement gap of {gap:.0f} days exceeds expected interval")

    consistency = trend_consistency(values)
    outliers = detect_outliers(values)
    outlier_rate = len(outliers) / n
    time_span = min(1.0, span_days / minimum_observation_days)
    validated = sum(1 for m in points if m.validation_status == ValidationStatus.VALIDATED)
    validation_rate = validated / n

    composite = (
        WEIGHTS["frequency"] * frequency * temporal_stability
        + WEIGHTS["trend_consistency"] * consistency
        + WEIGHTS["outliers"] * (1.0 - outlier_rate)
        + WEIGHTS["time_span"] * time_span
        + WEIGHTS["validation"] * validation_rate
    )
    composite = round(min(1.0, max(0.0, composite)), 4)

    plausibility = statistics.fmean(m.plausibility_score for m in points)
    quality_score = round(composite * plausibility, 4)
    grade = grade_for(quality_score)

    if n < 3:
        flags.append(f"Sparse data: {n} {metric} measurements")
    if outlier_rate > HIGH_OUTLIER_RATE:
        flags.append(f"High outlier rate: {outlier_rate:.0%} of measurements")
    if validation_rate < 0.5:
        flags.append(f"Low validation rate: {validated}/{n} measurements validated")
    if span_days < minimum_observation_days:
        flags.append(
            f"Observation span {span_days:.0f} days below {minimum_observation_days:.0f}-day minimum"
        )

    assessment = QualityAssessment(
        confidence=composite,
        quality_score=quality_score,
        grade=grade,
        components=QualityComponents(
            frequency=round(frequency, 4),
            temporal_stability=round(temporal_stability, 4),
            trend_consistency=round(consistency, 4),
            outlier_rate=round(outlier_rate, 4),
            time_span=round(time_span, 4),
            validation_rate=round(validation_rate, 4),
        ),
        measurement_count=n,
        outlier_indices=outliers,
        flags=tuple(flags),
        allow_high_urgency_alerts=(
            outlier_rate <= HIGH_OUTLIER_RATE and grade not in (QualityGrade.D, QualityGrade.F)
        ),
    )

    logger.debug(
        "quality_assessed",
        metric=metric,
        measurement_count=n,
        confidence=composite,
        grade=grade.value,
        outliers=len(outliers),
    )
    return assessment


def count_consecutive_confirmations(
    points: Sequence[tuple[datetime, float]],
    rate_threshold_per_week: float,
    label: str = "depth",
) -> ConsecutiveConfirmation:
    """
    Count trailing adjacent intervals whose weekly rate of increase breaches the threshold.

    The running count resets to zero on any interval that fails to breach.
    """
    current = 0
    longest = 0
    breaks: list[str] = []

    for (t0, v0), (t1, v1) in zip(points, points[1:]):
        days = _days_between(t0, t1)
        if days <= 0:
            breaks.append("Zero-length interval skipped")
            continue

        rate = (v1 - v0) / (days / 7.0)
        if rate >= rate_threshold_per_week:
            current += 1
            longest = max(longest, current)
            continue

        if v1 < v0:
            breaks.append(f"Trend break - {label} decreased by {v0 - v1:.1f}")
        else:
            breaks.append(
                f"Below threshold: {rate:.2f}/week < {rate_threshold_per_week:.2f}/week"
            )
        current = 0

    return ConsecutiveConfirmation(
        consecutive_intervals=current, longest_run=longest, breaks=tuple(breaks)
    )


def check_alert_gate(
    tier: UrgencyTier,
    quality_score: float,
    confidence: float,
    measurement_count: int,
    consecutive_intervals: int = 0,
) -> GateResult:
    """Apply the tier's quality gate. Reasons are reported for every failed check."""
    requirement = GATE_REQUIREMENTS[tier]
    reasons: list[str] = []

    meets_count = measurement_count >= requirement.min_measurements
    if not meets_count:
        reasons.append(
            f"Insufficient measurements: {measurement_count} < "
            f"{requirement.min_measurements} required for {tier.value} alert"
        )

    meets_confidence = confidence >= requirement.min_confidence
    if not meets_confidence:
        reasons.append(
            f"Low statistical confidence: {confidence:.1%} < "
            f"{requirement.min_confidence:.1%} required for {tier.value} alert"
        )

    meets_quality = quality_score >= requirement.min_quality
    if not meets_quality:
        reasons.append(
            f"Poor data quality: {quality_score:.1%} < "
            f"{requirement.min_quality:.1%} required for {tier.value} alert"
        )

    meets_consecutive = consecutive_intervals >= requirement.min_consecutive_intervals
    if not meets_consecutive:
        reasons.append(
            f"Insufficient consecutive confirmations: {consecutive_intervals} < "
            f"{requirement.min_consecutive_intervals} required for {tier.value} alert"
        )

    return GateResult(
        tier=tier,
        passed=not reasons,
        meets_minimum_measurements=meets_count,
        meets_confidence_threshold=meets_confidence,
        meets_quality_threshold=meets_quality,
        meets_consecutive_confirmation=meets_consecutive,
        prevention_reasons=tuple(reasons),
    )
