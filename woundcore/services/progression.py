"""
Depth and volume progression analysis.

Velocities are end-to-end rates over the observed span; trend bands are
±1 mm/week for depth and ±0.5 cm³/week for volume. Full-thickness classification
compares current depth against the location's tissue-thickness reference.
"""

from collections.abc import Sequence
from datetime import datetime

import structlog

from woundcore.domain.models import (
    DepthTrend,
    NormalizedMeasurement,
    ProgressionMetrics,
    QualityAssessment,
    ThicknessClass,
    ThicknessClassification,
    VolumeTrend,
)
from woundcore.domain.reference import resolve_location, tissue_reference

logger = structlog.get_logger(__name__)

DEPTH_STABLE_BAND_MM_PER_WEEK = 1.0
VOLUME_STABLE_BAND_CM3_PER_WEEK = 0.5
ANATOMICAL_REFERENCE_CERTAINTY = 0.8
SUPERFICIAL_RATIO = 0.3
APPROACHING_FULL_THICKNESS_RATIO = 0.8


def _weeks_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / (7 * 86400.0)


def velocity(points: Sequence[tuple[datetime, float]]) -> float | None:
    """(latest - earliest) / weeks elapsed; None without two distinct instants."""
    if len(points) < 2:
        return None
    weeks = _weeks_between(points[0][0], points[-1][0])
    if weeks <= 0:
        return None
    return (points[-1][1] - points[0][1]) / weeks


def max_increase_within(points: Sequence[tuple[datetime, float]], window_days: float) -> float:
    """Largest rise between any two points no more than `window_days` apart."""
    best = 0.0
    for i, (t0, v0) in enumerate(points):
        for t1, v1 in points[i + 1 :]:
            if (t1 - t0).total_seconds() > window_days * 86400.0:
                break
            best = max(best, v1 - v0)
    return best


def max_pct_increase_within(
    points: Sequence[tuple[datetime, float]], window_days: float
) -> float | None:
    """Largest relative rise (%) within the window; None when no positive starting value."""
    best: float | None = None
    for i, (t0, v0) in enumerate(points):
        if v0 <= 0:
            continue
        for t1, v1 in points[i + 1 :]:
            if (t1 - t0).total_seconds() > window_days * 86400.0:
                break
            pct = (v1 - v0) * 100.0 / v0
            best = pct if best is None else max(best, pct)
    return best


def trailing_velocity(points: Sequence[tuple[datetime, float]], window_days: float) -> float | None:
    """Velocity over points inside the trailing window, falling back to the last interval."""
    if len(points) < 2:
        return None
    cutoff = points[-1][0].timestamp() - window_days * 86400.0
    recent = [p for p in points if p[0].timestamp() >= cutoff]
    if len(recent) < 2:
        recent = list(points[-2:])
    return velocity(recent)


def depth_trend(depth_velocity: float | None) -> DepthTrend:
    if depth_velocity is None:
        return DepthTrend.INSUFFICIENT_DATA
    if depth_velocity > DEPTH_STABLE_BAND_MM_PER_WEEK:
        return DepthTrend.DEEPENING
    if depth_velocity < -DEPTH_STABLE_BAND_MM_PER_WEEK:
        return DepthTrend.HEALING
    return DepthTrend.STABLE


def volume_trend(volume_velocity: float | None) -> VolumeTrend:
    if volume_velocity is None:
        return VolumeTrend.INSUFFICIENT_DATA
    if volume_velocity > VOLUME_STABLE_BAND_CM3_PER_WEEK:
        return VolumeTrend.EXPANDING
    if volume_velocity < -VOLUME_STABLE_BAND_CM3_PER_WEEK:
        return VolumeTrend.HEALING
    return VolumeTrend.STABLE


def classify_thickness(
    depth_mm: float,
    location: str | None,
    measurement_count: int,
    max_recorded_depth_mm: float,
) -> ThicknessClassification:
    """
    Classify tissue involvement against the location's typical thickness.

    Confidence blends measurement count (40%), the fixed anatomical-reference
    certainty (30%) and current/maximum recorded depth consistency (30%).
    """
    reference = tissue_reference(location)
    ratio = depth_mm / reference.typical_mm
    flags: list[str] = []

    if ratio < SUPERFICIAL_RATIO:
        classification = ThicknessClass.SUPERFICIAL
    elif ratio < 1.0:
        classification = ThicknessClass.PARTIAL_THICKNESS
        if ratio >= APPROACHING_FULL_THICKNESS_RATIO:
            flags.append("Approaching full thickness")
    elif depth_mm > reference.max_mm:
        classification = ThicknessClass.DEEP_FULL_THICKNESS
        flags.append("Depth exceeds location maximum: assess bone/tendon involvement")
    else:
        classification = ThicknessClass.FULL_THICKNESS

    count_factor = min(1.0, measurement_count / 5.0)
    consistency = depth_mm / max_recorded_depth_mm if max_recorded_depth_mm > 0 else 0.0
    confidence = (
        0.4 * count_factor + 0.3 * ANATOMICAL_REFERENCE_CERTAINTY + 0.3 * min(1.0, consistency)
    )

    return ThicknessClassification(
        classification=classification,
        depth_mm=depth_mm,
        typical_thickness_mm=reference.typical_mm,
        max_thickness_mm=reference.max_mm,
        thickness_ratio=round(ratio, 4),
        confidence=round(confidence, 4),
        location_key=resolve_location(location),
        flags=tuple(flags),
    )


def analyze_progression(
    measurements: Sequence[NormalizedMeasurement],
    location: str | None,
    quality: QualityAssessment,
) -> ProgressionMetrics:
    """Compute velocities, trend directions and thickness classification for a series."""
    depth_points = [(m.timestamp, m.depth_mm) for m in measurements if m.depth_mm is not None]
    volume_points = [
        (m.timestamp, m.volume_cm3) for m in measurements if m.volume_cm3 is not None
    ]

    d_velocity = velocity(depth_points)  # type: ignore[arg-type]
    v_velocity = velocity(volume_points)  # type: ignore[arg-type]

    thickness = None
    depth_change = None
    if depth_points:
        current_depth = depth_points[-1][1]
        thickness = classify_thickness(
            current_depth,
            location,
            measurement_count=len(depth_points),
            max_recorded_depth_mm=max(d for _, d in depth_points),
        )
        depth_change = round(current_depth - depth_points[0][1], 4)

    volume_change_pct = None
    if len(volume_points) >= 2 and volume_points[0][1] > 0:
        volume_change_pct = round(
            (volume_points[-1][1] - volume_points[0][1]) * 100.0 / volume_points[0][1], 4
        )

    span_points = depth_points or volume_points
    weeks = _weeks_between(span_points[0][0], span_points[-1][0]) if span_points else 0.0

    metrics = ProgressionMetrics(
        depth_velocity=round(d_velocity, 4) if d_velocity is not None else None,
        volume_velocity=round(v_velocity, 4) if v_velocity is not None else None,
        depth_trend=depth_trend(d_velocity),
        volume_trend=volume_trend(v_velocity),
        confidence=quality.confidence,
        quality_grade=quality.grade,
        thickness=thickness,
        depth_measurement_count=len(depth_points),
        volume_measurement_count=len(volume_points),
        weeks_elapsed=round(weeks, 4),
        depth_change_mm=depth_change,
        volume_change_pct=volume_change_pct,
    )

    logger.info(
        "progression_analyzed",
        depth_trend=metrics.depth_trend.value,
        volume_trend=metrics.volume_trend.value,
        depth_velocity=metrics.depth_velocity,
        thickness=thickness.classification.value if thickness else None,
    )
    return metrics
