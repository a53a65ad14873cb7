"""Shared fixtures: measurement and encounter factories anchored at a fixed start instant."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from woundcore.domain.models import (
    ConservativeCare,
    DiabeticStatus,
    EncounterRecord,
    EpisodeRecord,
    Measurement,
    NormalizedMeasurement,
    ProcedureCode,
    WoundDetails,
)
from woundcore.services.measurement_intake import prepare_measurement

START = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)


@pytest.fixture
def start() -> datetime:
    return START


@pytest.fixture
def make_normalized() -> Callable[..., NormalizedMeasurement]:
    """Build a normalized measurement `day` days after START (depth in mm)."""

    def _make(
        day: float,
        depth_mm: float | None = None,
        length: float = 3.0,
        width: float = 2.0,
        area: float | None = None,
        location: str = "foot",
        **fields: Any,
    ) -> NormalizedMeasurement:
        measurement = Measurement(
            id=fields.pop("id", f"m-{day}"),
            length=length,
            width=width,
            depth=depth_mm,
            depth_unit="mm",
            area=area,
            unit="cm",
            timestamp=START + timedelta(days=day),
            **fields,
        )
        return prepare_measurement(measurement, location).unwrap()

    return _make


@pytest.fixture
def make_encounter() -> Callable[..., EncounterRecord]:
    """Build an encounter `day` days after START with embedded wound measurements."""

    def _make(
        day: int,
        measurements: dict[str, Any] | None = None,
        diabetic_status: DiabeticStatus | None = DiabeticStatus.DIABETIC,
        procedure_codes: tuple[str, ...] = (),
        conservative_care: ConservativeCare | None = None,
        **details: Any,
    ) -> EncounterRecord:
        return EncounterRecord(
            encounter_id=f"enc-{day:03d}",
            date=START + timedelta(days=day),
            wound_details=WoundDetails(measurements=measurements, **details),
            conservative_care=conservative_care
            or ConservativeCare(offloading=True, debridement=True, moisture_management=True),
            diabetic_status=diabetic_status,
            procedure_codes=tuple(ProcedureCode(code=c) for c in procedure_codes),
        )

    return _make


@pytest.fixture
def dfu_episode() -> EpisodeRecord:
    return EpisodeRecord(
        id="ep-dfu",
        wound_type="DFU",
        wound_location="plantar foot",
        primary_diagnosis="E11.621 Type 2 diabetes mellitus with foot ulcer",
        episode_start_date=START,
    )


@pytest.fixture
def deepening_encounters(make_encounter: Callable[..., EncounterRecord]) -> list[EncounterRecord]:
    """Depth 3 -> 5 -> 8 -> 12 -> 18 mm in weekly visits, constant 3 x 2 cm surface."""
    return [
        make_encounter(
            week * 7,
            {"length": 3.0, "width": 2.0, "depth": depth, "depthUnit": "mm", "unit": "cm"},
        )
        for week, depth in enumerate((3.0, 5.0, 8.0, 12.0, 18.0))
    ]


@pytest.fixture
def healing_encounters(make_encounter: Callable[..., EncounterRecord]) -> list[EncounterRecord]:
    """Stored area 12 -> 11 -> 9.8 cm² over 29 days of standard care."""
    return [
        make_encounter(day, {"length": 4.0, "width": 3.0, "area": area, "unit": "cm"})
        for day, area in ((0, 12.0), (14, 11.0), (29, 9.8))
    ]
