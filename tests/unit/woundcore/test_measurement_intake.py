"""
Tests for measurement intake from encounter records.

Covers:
- Result-based failure for empty episodes
- Record-level problems audited as input errors
- camelCase storage keys and separate depth units
- Unsupported units rejecting a single record
- Bad depth or volume data dropped without losing the area
- Projection to {timestamp, area} observations
- Clinical context assembly from the latest encounter
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import pytest

from woundcore.domain.models import (
    AuditKind,
    DiabeticStatus,
    EncounterRecord,
    EpisodeRecord,
    InfectionIndicator,
    Measurement,
    MeasurementSeries,
    NormalizedMeasurement,
    TreatmentResponse,
    WoundCategory,
)
from woundcore.services.measurement_intake import (
    EncounterMeasurementSource,
    area_observations,
    build_context_profile,
    prepare_series,
)

EncounterFactory = Callable[..., EncounterRecord]
NormalizedFactory = Callable[..., NormalizedMeasurement]


class TestEncounterMeasurementSource:
    def test_episode_without_encounters_is_an_error(self, dfu_episode: EpisodeRecord) -> None:
        result = EncounterMeasurementSource(dfu_episode, []).collect_measurements()
        assert result.is_err()
        assert "ep-dfu" in str(result.unwrap_err())

    def test_missing_and_invalid_records_are_audited(
        self, dfu_episode: EpisodeRecord, make_encounter: EncounterFactory
    ) -> None:
        encounters = [
            make_encounter(0, {"length": 3.0, "width": 2.0, "unit": "cm"}),
            make_encounter(7, None),
            make_encounter(14, {"length": "not-a-number", "width": 2.0}),
        ]
        batch = EncounterMeasurementSource(dfu_episode, encounters).collect_measurements().unwrap()

        assert len(batch.series.measurements) == 1
        codes = [entry.code for entry in batch.audit_trail]
        assert codes == ["encounter_missing_measurements", "invalid_measurement_record"]
        assert all(entry.kind == AuditKind.INPUT_ERROR for entry in batch.audit_trail)
        assert "length" in batch.audit_trail[1].detail

    def test_camel_case_depth_unit_is_honoured(
        self, dfu_episode: EpisodeRecord, make_encounter: EncounterFactory
    ) -> None:
        encounters = [
            make_encounter(0, {"length": 3.0, "width": 2.0, "depth": 0.4, "depthUnit": "cm"}),
            make_encounter(7, {"length": 3.0, "width": 2.0, "depth": "0"}),
        ]
        batch = EncounterMeasurementSource(dfu_episode, encounters).collect_measurements().unwrap()
        prepared = prepare_series(batch.series, dfu_episode.wound_location)

        assert prepared.measurements[0].depth_mm == pytest.approx(4.0)
        assert prepared.measurements[1].depth_mm is None
        assert prepared.measurements[0].measurement_id == "enc-000"

    @pytest.mark.parametrize(
        "bad_fields",
        [
            {"depth": -1.0},
            {"depth": "deep"},
            {"volume": -3.0},
            {"depth": 2.0, "depthUnit": 7},
        ],
    )
    def test_invalid_depth_fields_keep_the_area(
        self,
        dfu_episode: EpisodeRecord,
        make_encounter: EncounterFactory,
        bad_fields: dict[str, object],
    ) -> None:
        encounters = [
            make_encounter(0, {"length": 4.0, "width": 3.0, "area": 9.8, "unit": "cm", **bad_fields})
        ]
        batch = EncounterMeasurementSource(dfu_episode, encounters).collect_measurements().unwrap()

        [measurement] = batch.series.measurements
        assert measurement.area == 9.8
        assert measurement.depth is None
        assert measurement.volume is None
        assert [e.code for e in batch.audit_trail] == ["depth_fields_discarded"]
        assert batch.audit_trail[0].kind == AuditKind.INPUT_ERROR

    def test_invalid_depth_with_invalid_width_still_rejects(
        self, dfu_episode: EpisodeRecord, make_encounter: EncounterFactory
    ) -> None:
        encounters = [make_encounter(0, {"length": 4.0, "width": -3.0, "depth": -1.0})]
        batch = EncounterMeasurementSource(dfu_episode, encounters).collect_measurements().unwrap()

        assert batch.series.measurements == ()
        assert batch.audit_trail[0].code == "invalid_measurement_record"

    def test_encounters_are_read_in_date_order(
        self, dfu_episode: EpisodeRecord, make_encounter: EncounterFactory
    ) -> None:
        encounters = [
            make_encounter(14, {"length": 2.0, "width": 2.0}),
            make_encounter(0, {"length": 3.0, "width": 2.0}),
        ]
        batch = EncounterMeasurementSource(dfu_episode, encounters).collect_measurements().unwrap()
        assert [m.id for m in batch.series.measurements] == ["enc-000", "enc-014"]


class TestPrepareSeries:
    def test_unsupported_unit_rejects_only_that_record(self, start: datetime) -> None:
        series = MeasurementSeries.from_measurements(
            "ep-1",
            [
                Measurement(id="ok", length=3.0, width=2.0, unit="cm", timestamp=start),
                Measurement(id="bad", length=3.0, width=2.0, unit="furlong", timestamp=start),
            ],
        )
        prepared = prepare_series(series)

        assert prepared.rejected_count == 1
        assert [m.measurement_id for m in prepared.measurements] == ["ok"]
        assert prepared.audit_trail[0].code == "unsupported_unit"
        assert "furlong" in prepared.audit_trail[0].detail

    def test_unsupported_depth_unit_drops_only_depth(self, start: datetime) -> None:
        series = MeasurementSeries.from_measurements(
            "ep-1",
            [
                Measurement(
                    id="m1",
                    length=4.0,
                    width=3.0,
                    area=9.8,
                    depth=2.0,
                    depth_unit="furlongs",
                    volume=5.0,
                    unit="cm",
                    timestamp=start,
                )
            ],
        )
        prepared = prepare_series(series)

        assert prepared.rejected_count == 0
        [measurement] = prepared.measurements
        assert measurement.area_cm2 == 9.8
        assert measurement.depth_mm is None
        assert measurement.volume_cm3 is None
        assert measurement.depth_error is not None and "furlongs" in measurement.depth_error
        assert prepared.audit_trail[0].code == "depth_discarded"

    def test_implausible_record_is_kept_and_audited(self, start: datetime) -> None:
        series = MeasurementSeries.from_measurements(
            "ep-1", [Measurement(id="huge", length=55.0, width=2.0, unit="cm", timestamp=start)]
        )
        prepared = prepare_series(series)

        assert prepared.rejected_count == 0
        assert not prepared.measurements[0].is_valid
        assert prepared.audit_trail[0].code == "implausible_measurement"


class TestAreaObservations:
    def test_zero_areas_and_repeated_instants_are_dropped(
        self, make_normalized: NormalizedFactory
    ) -> None:
        measurements = [
            make_normalized(0, area=12.0, id="first"),
            make_normalized(0, area=11.0, id="second"),
            make_normalized(7, length=0.0, width=0.0),
            make_normalized(14, area=9.0),
        ]
        observations = area_observations(measurements)

        assert [o.area for o in observations] == [12.0, 9.0]


class TestBuildContextProfile:
    def test_latest_documented_values_win(
        self, dfu_episode: EpisodeRecord, make_encounter: EncounterFactory
    ) -> None:
        encounters = [
            make_encounter(0, pain_score=2),
            make_encounter(7, diabetic_status=None, abscess=True, pain_score=7),
        ]
        encounters[1] = encounters[1].model_copy(
            update={"systemic_signs": True, "treatment_response": TreatmentResponse.POOR}
        )

        context = build_context_profile(dfu_episode, encounters, age=72, comorbidities=("ckd",))

        assert context.diabetic_status == DiabeticStatus.DIABETIC
        assert context.wound_category == WoundCategory.DFU
        assert context.pain_score == 7
        assert context.systemic_signs
        assert InfectionIndicator.ABSCESS in context.infection_indicators
        assert context.treatment_response == TreatmentResponse.POOR
        assert context.anatomical_location == "plantar foot"
        assert context.age == 72
