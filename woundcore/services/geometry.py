"""
Wound surface-area and volume geometry.

Areas feed coverage math; volumes are informational only and always carry a
non-authoritative label so they can never be mistaken for a coverage input.
"""

import math
from collections.abc import Sequence
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from woundcore.domain.models import AreaSource, MeasurementMethod

VOLUME_LABEL = "Informational estimate only; not authoritative for coverage determination"
TRUNCATED_ELLIPSOID_FACTOR = 0.524

Point = tuple[float, float]


class PolygonArea(BaseModel):
    model_config = ConfigDict(frozen=True)

    area: float = Field(ge=0.0)
    signed_area: float
    orientation: Literal["clockwise", "counter_clockwise", "degenerate"]
    is_valid: bool
    self_intersecting: bool = False
    recommendations: tuple[str, ...] = ()


class VolumeEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    volume_cm3: float = Field(ge=0.0)
    method: Literal["ellipsoid", "truncated_ellipsoid"]
    label: str = VOLUME_LABEL
    is_coverage_authoritative: Literal[False] = False


class AreaSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    area_cm2: float = Field(ge=0.0)
    source: AreaSource
    flags: tuple[str, ...] = ()


def rectangular_area(length: float, width: float) -> float:
    return length * width


def elliptical_area(length: float, width: float) -> float:
    """Ellipse with axes length and width: π·(L/2)·(W/2)."""
    return math.pi * (length / 2.0) * (width / 2.0)


def _cross(o: Point, a: Point, b: Point) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def _on_segment(p: Point, q: Point, r: Point) -> bool:
    return min(p[0], r[0]) <= q[0] <= max(p[0], r[0]) and min(p[1], r[1]) <= q[1] <= max(
        p[1], r[1]
    )


def _segments_intersect(p1: Point, p2: Point, q1: Point, q2: Point) -> bool:
    d1 = _cross(q1, q2, p1)
    d2 = _cross(q1, q2, p2)
    d3 = _cross(p1, p2, q1)
    d4 = _cross(p1, p2, q2)

    if ((d1 > 0 and d2 < 0) or (d1 < 0 and d2 > 0)) and (
        (d3 > 0 and d4 < 0) or (d3 < 0 and d4 > 0)
    ):
        return True

    # Collinear touching cases
    if d1 == 0 and _on_segment(q1, p1, q2):
        return True
    if d2 == 0 and _on_segment(q1, p2, q2):
        return True
    if d3 == 0 and _on_segment(p1, q1, p2):
        return True
    if d4 == 0 and _on_segment(p1, q2, p2):
        return True
    return False


def is_self_intersecting(vertices: Sequence[Point]) -> bool:
    """Pairwise test of non-adjacent polygon edges."""
    n = len(vertices)
    if n < 4:
        return False
    edges = [(vertices[i], vertices[(i + 1) % n]) for i in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            # Adjacent edges share a vertex by construction
            if j == i + 1 or (i == 0 and j == n - 1):
                continue
            if _segments_intersect(*edges[i], *edges[j]):
                return True
    return False


def polygon_area(vertices: Sequence[Point]) -> PolygonArea:
    """Shoelace area over ordered vertices; the absolute value makes orientation irrelevant."""
    if len(vertices) < 3:
        return PolygonArea(
            area=0.0,
            signed_area=0.0,
            orientation="degenerate",
            is_valid=False,
            recommendations=("Polygon requires at least 3 vertices",),
        )

    n = len(vertices)
    twice_area = sum(
        vertices[i][0] * vertices[(i + 1) % n][1] - vertices[(i + 1) % n][0] * vertices[i][1]
        for i in range(n)
    )
    signed = twice_area / 2.0

    if signed > 0:
        orientation: Literal["clockwise", "counter_clockwise", "degenerate"] = "counter_clockwise"
    elif signed < 0:
        orientation = "clockwise"
    else:
        orientation = "degenerate"

    recommendations: list[str] = []
    intersecting = is_self_intersecting(vertices)
    if intersecting:
        recommendations.append(
            "Polygon has self-intersections: retrace the wound boundary in a single direction"
        )
    if orientation == "degenerate":
        recommendations.append("Polygon vertices are collinear: area cannot be computed")

    return PolygonArea(
        area=abs(signed),
        signed_area=signed,
        orientation=orientation,
        is_valid=not intersecting and orientation != "degenerate",
        self_intersecting=intersecting,
        recommendations=tuple(recommendations),
    )


def ellipsoid_volume(length_cm: float, width_cm: float, depth_mm: float) -> VolumeEstimate:
    depth_cm = depth_mm / 10.0
    volume = (4.0 / 3.0) * math.pi * (length_cm / 2.0) * (width_cm / 2.0) * (depth_cm / 2.0)
    return VolumeEstimate(volume_cm3=volume, method="ellipsoid")


def truncated_ellipsoid_volume(length_cm: float, width_cm: float, depth_mm: float) -> VolumeEstimate:
    """Elliptical area x depth x 0.524 empirical correction for a wound cavity."""
    volume = elliptical_area(length_cm, width_cm) * (depth_mm / 10.0) * TRUNCATED_ELLIPSOID_FACTOR
    return VolumeEstimate(volume_cm3=volume, method="truncated_ellipsoid")


def select_area(
    length_cm: float,
    width_cm: float,
    method: MeasurementMethod,
    stored_area_cm2: float | None = None,
    vertices_cm: Sequence[Point] | None = None,
) -> AreaSelection:
    """
    Choose the area used downstream.

    Precedence: explicit stored area > valid polygon tracing (>=3 points) >
    elliptical (default or declared) > rectangular (declared rectangular method).
    """
    flags: list[str] = []

    if stored_area_cm2 is not None and stored_area_cm2 > 0:
        return AreaSelection(area_cm2=stored_area_cm2, source=AreaSource.STORED)

    if vertices_cm is not None and len(vertices_cm) >= 3:
        polygon = polygon_area(vertices_cm)
        if polygon.is_valid:
            return AreaSelection(area_cm2=polygon.area, source=AreaSource.POLYGON)
        flags.extend(polygon.recommendations)
        flags.append("Invalid tracing ignored; area derived from dimensions")

    if method == MeasurementMethod.RECTANGULAR:
        return AreaSelection(
            area_cm2=rectangular_area(length_cm, width_cm),
            source=AreaSource.RECTANGULAR,
            flags=tuple(flags),
        )

    return AreaSelection(
        area_cm2=elliptical_area(length_cm, width_cm),
        source=AreaSource.ELLIPTICAL,
        flags=tuple(flags),
    )
