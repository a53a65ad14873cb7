"""
Tests for unit normalization and wound geometry.

Covers:
- Unit conversion table, substring fallback and unsupported units
- Depth plausibility against anatomical references
- Shoelace polygon area, orientation invariance and self-intersection
- Smart area precedence
- Truncated ellipsoid volume identity
- Advisory correction suggestions
"""

from __future__ import annotations

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from woundcore.domain.errors import UnsupportedUnitError
from woundcore.domain.models import AreaSource, MeasurementKind, MeasurementMethod
from woundcore.services.geometry import (
    TRUNCATED_ELLIPSOID_FACTOR,
    elliptical_area,
    polygon_area,
    select_area,
    truncated_ellipsoid_volume,
)
from woundcore.services.normalizer import convert_unit, normalize_value, suggest_corrections


class TestUnitConversion:
    @pytest.mark.parametrize(
        ("value", "unit", "kind", "expected"),
        [
            (25.0, "mm", MeasurementKind.LENGTH, 2.5),
            (1.0, "inch", MeasurementKind.WIDTH, 2.54),
            (0.5, "cm", MeasurementKind.DEPTH, 5.0),
            (200.0, "mm²", MeasurementKind.AREA, 2.0),
            (3.0, "sq cm", MeasurementKind.AREA, 3.0),
            (4.0, "cc", MeasurementKind.VOLUME, 4.0),
        ],
    )
    def test_converts_to_standard_units(
        self, value: float, unit: str, kind: MeasurementKind, expected: float
    ) -> None:
        assert convert_unit(value, unit, kind) == pytest.approx(expected)

    def test_substring_fallback_resolves_decorated_units(self) -> None:
        assert convert_unit(12.0, "mm (probe)", MeasurementKind.DEPTH) == pytest.approx(12.0)

    def test_unknown_unit_raises_typed_error(self) -> None:
        with pytest.raises(UnsupportedUnitError, match="furlong"):
            convert_unit(1.0, "furlong", MeasurementKind.LENGTH)


class TestDepthPlausibility:
    def test_typical_depth_scores_full_plausibility(self) -> None:
        result = normalize_value(10.0, "mm", MeasurementKind.DEPTH, "plantar foot")
        assert result.is_valid
        assert result.plausibility_score == 1.0

    def test_depth_beyond_implausible_limit_is_flagged_not_dropped(self) -> None:
        # Foot max 25 mm x 1.5 = 37.5 mm
        result = normalize_value(40.0, "mm", MeasurementKind.DEPTH, "foot")
        assert not result.is_valid
        assert result.normalized_value == 40.0
        assert any("anatomical limit" in f for f in result.flags)

    def test_zero_depth_is_invalid(self) -> None:
        assert not normalize_value(0.0, "mm", MeasurementKind.DEPTH).is_valid


class TestPolygonArea:
    def test_unit_square_area(self) -> None:
        result = polygon_area([(0, 0), (2, 0), (2, 2), (0, 2)])
        assert result.area == pytest.approx(4.0)
        assert result.orientation == "counter_clockwise"
        assert result.is_valid

    @given(
        st.lists(
            st.tuples(
                st.floats(min_value=-50, max_value=50, allow_nan=False),
                st.floats(min_value=-50, max_value=50, allow_nan=False),
            ),
            min_size=3,
            max_size=12,
        )
    )
    def test_area_is_orientation_invariant(self, vertices: list[tuple[float, float]]) -> None:
        forward = polygon_area(vertices)
        backward = polygon_area(list(reversed(vertices)))
        assert forward.area == pytest.approx(backward.area, abs=1e-6)
        assert forward.signed_area == pytest.approx(-backward.signed_area, abs=1e-6)

    def test_bowtie_is_self_intersecting(self) -> None:
        result = polygon_area([(0, 0), (2, 2), (2, 0), (0, 2)])
        assert result.self_intersecting
        assert not result.is_valid
        assert result.recommendations

    def test_fewer_than_three_vertices_is_degenerate(self) -> None:
        result = polygon_area([(0, 0), (1, 1)])
        assert result.area == 0.0
        assert not result.is_valid


class TestAreaSelection:
    def test_stored_area_wins(self) -> None:
        selection = select_area(4.0, 3.0, MeasurementMethod.RECTANGULAR, stored_area_cm2=7.5)
        assert selection.source == AreaSource.STORED
        assert selection.area_cm2 == 7.5

    def test_valid_tracing_beats_dimensions(self) -> None:
        selection = select_area(
            4.0, 3.0, MeasurementMethod.ELLIPTICAL, vertices_cm=[(0, 0), (3, 0), (3, 3), (0, 3)]
        )
        assert selection.source == AreaSource.POLYGON
        assert selection.area_cm2 == pytest.approx(9.0)

    def test_invalid_tracing_falls_back_with_flag(self) -> None:
        selection = select_area(
            4.0, 2.0, MeasurementMethod.ELLIPTICAL, vertices_cm=[(0, 0), (2, 2), (2, 0), (0, 2)]
        )
        assert selection.source == AreaSource.ELLIPTICAL
        assert selection.flags

    def test_rectangular_only_when_declared(self) -> None:
        assert select_area(4.0, 3.0, MeasurementMethod.RECTANGULAR).area_cm2 == 12.0
        assert select_area(4.0, 3.0, MeasurementMethod.IRREGULAR).area_cm2 == pytest.approx(
            math.pi * 3.0
        )


class TestVolume:
    @given(
        length=st.floats(min_value=0.1, max_value=30),
        width=st.floats(min_value=0.1, max_value=30),
        depth=st.floats(min_value=0.1, max_value=50),
    )
    def test_truncated_ellipsoid_identity(self, length: float, width: float, depth: float) -> None:
        estimate = truncated_ellipsoid_volume(length, width, depth)
        expected = elliptical_area(length, width) * (depth / 10.0) * TRUNCATED_ELLIPSOID_FACTOR
        assert estimate.volume_cm3 == pytest.approx(expected)
        assert estimate.is_coverage_authoritative is False


class TestCorrectionSuggestions:
    def test_extreme_aspect_ratio_suggests_check(self) -> None:
        suggestions = suggest_corrections(12.0, 1.0, None, None)
        assert [s.field for s in suggestions] == ["width"]

    def test_stored_area_larger_than_rectangle(self) -> None:
        suggestions = suggest_corrections(2.0, 2.0, 10.0, None)
        assert any(s.field == "area" for s in suggestions)

    def test_depth_recorded_in_wrong_unit(self) -> None:
        suggestions = suggest_corrections(2.0, 2.0, None, 120.0, "foot")
        assert any(s.field == "depth" for s in suggestions)
