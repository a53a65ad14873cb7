"""
Unit and anatomical normalization for raw wound measurements.

Design principles:
- Pure functions, no side effects
- Fixed conversion table first, substring fallback second, typed failure last
- Implausible values are flagged and scored, never discarded
- Correction suggestions are advisory and never modify the data

Standard units: cm for length/width, mm for depth, cm² for area, cm³ for volume.
"""

import re

import structlog

from woundcore.domain.errors import UnsupportedUnitError
from woundcore.domain.models import CorrectionSuggestion, MeasurementKind, NormalizationResult
from woundcore.domain.reference import (
    EXTREME_ASPECT_RATIO,
    IMPLAUSIBLE_DEPTH_FACTOR,
    MAX_AREA_CM2,
    MAX_LINEAR_CM,
    MAX_VOLUME_CM3,
    MIN_MEASURABLE_DEPTH_MM,
    tissue_reference,
)

logger = structlog.get_logger(__name__)

# Canonical unit -> millimetres
_LINEAR_TO_MM: dict[str, float] = {"mm": 1.0, "cm": 10.0, "m": 1000.0, "in": 25.4}
# Canonical unit -> cm² (linear units are read as their square)
_AREA_TO_CM2: dict[str, float] = {"mm": 0.01, "cm": 1.0, "m": 10000.0, "in": 6.4516}
# Canonical unit -> cm³ (linear units are read as their cube)
_VOLUME_TO_CM3: dict[str, float] = {"mm": 0.001, "cm": 1.0, "ml": 1.0, "in": 16.387064}

_ALIASES: dict[str, str] = {
    "mm": "mm",
    "millimeter": "mm",
    "millimeters": "mm",
    "millimetre": "mm",
    "millimetres": "mm",
    "cm": "cm",
    "centimeter": "cm",
    "centimeters": "cm",
    "centimetre": "cm",
    "centimetres": "cm",
    "m": "m",
    "meter": "m",
    "meters": "m",
    "in": "in",
    "inch": "in",
    "inches": "in",
    '"': "in",
    "ml": "ml",
    "cc": "ml",
}

_TARGET_UNITS = {
    MeasurementKind.LENGTH: "cm",
    MeasurementKind.WIDTH: "cm",
    MeasurementKind.DEPTH: "mm",
    MeasurementKind.AREA: "cm2",
    MeasurementKind.VOLUME: "cm3",
}


def _canonical_unit(unit: str, kind: MeasurementKind) -> str:
    """Resolve a unit string to a canonical linear unit, or raise UnsupportedUnitError."""
    text = unit.strip().lower().replace("²", "2").replace("³", "3")
    text = re.sub(r"^(sq\.?|square|cu\.?|cubic)\s*", "", text)
    text = re.sub(r"(\^?[23])$", "", text).strip()

    if text in _ALIASES:
        return _ALIASES[text]

    # Substring fallback, most specific first
    for token, canonical in (("mm", "mm"), ("cm", "cm"), ("in", "in")):
        if token in text:
            logger.debug("unit_fallback_applied", unit=unit, resolved=canonical, kind=kind.value)
            return canonical

    raise UnsupportedUnitError(unit, kind.value)


def convert_unit(value: float, unit: str, kind: MeasurementKind) -> float:
    """Convert `value` in `unit` to the standard unit for `kind`."""
    canonical = _canonical_unit(unit, kind)

    if kind in (MeasurementKind.LENGTH, MeasurementKind.WIDTH, MeasurementKind.DEPTH):
        if canonical not in _LINEAR_TO_MM:
            raise UnsupportedUnitError(unit, kind.value)
        mm = value * _LINEAR_TO_MM[canonical]
        return mm if kind == MeasurementKind.DEPTH else mm / 10.0

    if kind == MeasurementKind.AREA:
        if canonical not in _AREA_TO_CM2:
            raise UnsupportedUnitError(unit, kind.value)
        return value * _AREA_TO_CM2[canonical]

    if canonical not in _VOLUME_TO_CM3:
        raise UnsupportedUnitError(unit, kind.value)
    return value * _VOLUME_TO_CM3[canonical]


def _score_depth(depth_mm: float, location: str | None) -> tuple[float, bool, list[str]]:
    reference = tissue_reference(location)
    flags: list[str] = []

    if depth_mm <= 0.0:
        return 0.0, False, ["Non-positive depth value"]

    if depth_mm < MIN_MEASURABLE_DEPTH_MM:
        flags.append(
            f"Very shallow depth measurement ({depth_mm:.1f}mm): verify probe technique"
        )
        return 0.5, True, flags

    if depth_mm <= reference.typical_mm:
        return 1.0, True, flags

    if depth_mm <= reference.max_mm:
        span = reference.max_mm - reference.typical_mm
        return 1.0 - 0.2 * (depth_mm - reference.typical_mm) / span, True, flags

    implausible_limit = reference.max_mm * IMPLAUSIBLE_DEPTH_FACTOR
    if depth_mm <= implausible_limit:
        flags.append(
            f"Depth {depth_mm:.1f}mm beyond location maximum {reference.max_mm:.0f}mm: "
            "verify deep tissue involvement"
        )
        return 0.5, True, flags

    flags.append(
        f"Depth {depth_mm:.1f}mm exceeds expected anatomical limit "
        f"({implausible_limit:.1f}mm) for this location"
    )
    return 0.1, False, flags


def _score_against_bound(value: float, bound: float, label: str) -> tuple[float, bool, list[str]]:
    if value <= 0.0:
        return 0.0, False, [f"Non-positive {label} value"]
    if value > bound:
        return 0.2, False, [f"{label.capitalize()} {value:.2f} exceeds absolute maximum {bound:.0f}"]
    return 1.0, True, []


def normalize_value(
    value: float, unit: str, kind: MeasurementKind, location: str | None = None
) -> NormalizationResult:
    """
    Convert a raw value to standard units and screen it for plausibility.

    Raises:
        UnsupportedUnitError: unit unknown even after substring fallback.
    """
    normalized = convert_unit(value, unit, kind)

    if kind == MeasurementKind.DEPTH:
        score, valid, flags = _score_depth(normalized, location)
    elif kind == MeasurementKind.AREA:
        score, valid, flags = _score_against_bound(normalized, MAX_AREA_CM2, "area")
    elif kind == MeasurementKind.VOLUME:
        score, valid, flags = _score_against_bound(normalized, MAX_VOLUME_CM3, "volume")
    else:
        score, valid, flags = _score_against_bound(normalized, MAX_LINEAR_CM, kind.value)

    return NormalizationResult(
        normalized_value=normalized,
        unit=_TARGET_UNITS[kind],
        is_valid=valid,
        plausibility_score=round(score, 4),
        flags=tuple(flags),
    )


def linear_factor_to_cm(unit: str) -> float:
    """Multiplier taking a coordinate in `unit` to centimetres."""
    return convert_unit(1.0, unit, MeasurementKind.LENGTH)


def suggest_corrections(
    length_cm: float,
    width_cm: float,
    area_cm2: float | None,
    depth_mm: float | None,
    location: str | None = None,
) -> tuple[CorrectionSuggestion, ...]:
    """Advisory fixes for suspicious measurement combinations. Data is never modified."""
    suggestions: list[CorrectionSuggestion] = []

    short, long_ = sorted((length_cm, width_cm))
    if short > 0 and long_ / short > EXTREME_ASPECT_RATIO:
        suggestions.append(
            CorrectionSuggestion(
                field="width" if width_cm < length_cm else "length",
                issue=f"Extreme aspect ratio {long_ / short:.1f}:1",
                suggestion="Verify dimension entry; a decimal or unit may have been mis-keyed",
                confidence=0.4,
            )
        )

    if area_cm2 is not None and length_cm > 0 and width_cm > 0:
        rectangle = length_cm * width_cm
        if area_cm2 > rectangle * 1.05:
            suggestions.append(
                CorrectionSuggestion(
                    field="area",
                    issue=f"Stored area {area_cm2:.2f}cm² exceeds length x width {rectangle:.2f}cm²",
                    suggestion="Recompute area from dimensions or tracing",
                    confidence=0.7,
                )
            )

    if depth_mm is not None:
        limit = tissue_reference(location).max_mm * IMPLAUSIBLE_DEPTH_FACTOR
        if depth_mm > limit and depth_mm / 10.0 <= limit:
            suggestions.append(
                CorrectionSuggestion(
                    field="depth",
                    issue=f"Depth {depth_mm:.1f}mm implausible for location",
                    suggestion="Depth may have been recorded in mm while unit is cm",
                    confidence=0.45,
                )
            )

    return tuple(suggestions)
