"""
Measurement intake: from storage records to a normalized, time-ordered series.

Key patterns demonstrated:
- Protocol-based measurement sources (storage records, fixtures, test doubles)
- Generic Result type for expected failures (unsupported units, empty episodes)
- Record-level problems become input-error audit entries instead of exceptions
- Coverage projection to {timestamp, area} pairs happens here and nowhere else
"""

import logging
import sys
from collections.abc import Iterable, Sequence
from typing import Any, Generic, Protocol, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from woundcore.config import LoggingConfig
from woundcore.domain.errors import UnsupportedUnitError
from woundcore.domain.models import (
    AreaObservation,
    AuditEntry,
    AuditKind,
    ClinicalContextProfile,
    DiabeticStatus,
    EncounterRecord,
    EpisodeRecord,
    InfectionIndicator,
    Measurement,
    MeasurementKind,
    MeasurementSeries,
    NormalizedMeasurement,
    TreatmentResponse,
)
from woundcore.services.classification import classify_wound
from woundcore.services.geometry import select_area, truncated_ellipsoid_volume
from woundcore.services.normalizer import (
    convert_unit,
    linear_factor_to_cm,
    normalize_value,
    suggest_corrections,
)


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure structlog with a JSON or console renderer."""
    config = config or LoggingConfig()
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=config.level)
    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if config.format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """Value-or-error container for expected intake failures (empty episodes, bad units)."""

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class IntakeBatch(BaseModel):
    """Raw measurements collected for one episode plus record-level problems."""

    model_config = ConfigDict(frozen=True)

    episode_id: str
    series: MeasurementSeries
    audit_trail: tuple[AuditEntry, ...] = ()


class PreparedSeries(BaseModel):
    """Normalized series ready for scoring, with rejected records audited."""

    model_config = ConfigDict(frozen=True)

    episode_id: str
    measurements: tuple[NormalizedMeasurement, ...] = ()
    audit_trail: tuple[AuditEntry, ...] = ()
    rejected_count: int = 0


class MeasurementSource(Protocol):
    """Anything that can produce the raw measurement batch for one episode."""

    source_name: str

    def collect_measurements(self) -> Result[IntakeBatch, ValueError]:
        """
        Collect the episode's raw measurements.

        Returns:
            Result[IntakeBatch, ValueError]: the batch, or an error when the
            episode has nothing to collect from.
        """
        ...


# camelCase storage keys -> Measurement fields
_KEY_ALIASES = {
    "depthUnit": "depth_unit",
    "recordedBy": "recorded_by",
    "validationStatus": "validation_status",
    "measurementMethod": "method",
    "measurementTimestamp": "timestamp",
    "measuredAt": "timestamp",
    "tracing": "vertices",
}
_MEASUREMENT_FIELDS = frozenset(Measurement.model_fields)
# Fields that never feed the area, so a bad value drops only these
_DEPTH_FIELDS = frozenset({"depth", "depth_unit", "volume"})


def _measurement_payload(raw: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key, value in raw.items():
        field = _KEY_ALIASES.get(key, key)
        if field not in _MEASUREMENT_FIELDS:
            continue
        if isinstance(value, str) and value.strip() in {"", "0"} and field in {
            "depth",
            "area",
            "volume",
        }:
            continue
        payload[field] = value
    return payload


class EncounterMeasurementSource:
    """Measurements embedded in encounter wound details, one per encounter."""

    def __init__(self, episode: EpisodeRecord, encounters: Sequence[EncounterRecord]) -> None:
        self.episode = episode
        self.encounters = list(encounters)
        self.source_name = f"encounters:{episode.id}"
        self.logger = logger.bind(source=self.source_name)

    def collect_measurements(self) -> Result[IntakeBatch, ValueError]:
        if not self.encounters:
            return Result.err(ValueError(f"No encounters recorded for episode {self.episode.id}"))

        measurements: list[Measurement] = []
        audit: list[AuditEntry] = []

        for index, encounter in enumerate(sorted(self.encounters, key=lambda e: e.date)):
            raw = encounter.wound_details.measurements
            label = encounter.encounter_id or f"encounter {index + 1}"
            if not raw:
                audit.append(
                    AuditEntry(
                        code="encounter_missing_measurements",
                        detail=f"{label} has no wound measurements",
                        kind=AuditKind.INPUT_ERROR,
                    )
                )
                continue

            payload = _measurement_payload(raw)
            payload.setdefault("id", encounter.encounter_id or f"{self.episode.id}-m{index + 1}")
            payload.setdefault("timestamp", encounter.date)
            if any(m.id == str(payload["id"]) for m in measurements):
                audit.append(
                    AuditEntry(
                        code="duplicate_measurement_id",
                        detail=f"{label} rejected: measurement id already recorded",
                        kind=AuditKind.INPUT_ERROR,
                    )
                )
                continue
            try:
                measurements.append(Measurement.model_validate(payload))
                continue
            except ValidationError as e:
                fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})

            if fields and set(fields) <= _DEPTH_FIELDS:
                stripped = {k: v for k, v in payload.items() if k not in _DEPTH_FIELDS}
                try:
                    measurements.append(Measurement.model_validate(stripped))
                    audit.append(
                        AuditEntry(
                            code="depth_fields_discarded",
                            detail=f"{label}: invalid {', '.join(fields)} discarded, area kept",
                            kind=AuditKind.INPUT_ERROR,
                        )
                    )
                    continue
                except ValidationError as e:
                    fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})

            audit.append(
                AuditEntry(
                    code="invalid_measurement_record",
                    detail=f"{label} rejected: invalid {', '.join(fields) or 'record'}",
                    kind=AuditKind.INPUT_ERROR,
                )
            )

        self.logger.info(
            "measurements_collected",
            episode_id=self.episode.id,
            encounters=len(self.encounters),
            measurements=len(measurements),
            rejected=len(self.encounters) - len(measurements),
        )
        return Result.ok(
            IntakeBatch(
                episode_id=self.episode.id,
                series=MeasurementSeries.from_measurements(self.episode.id, measurements),
                audit_trail=tuple(audit),
            )
        )


def prepare_measurement(
    measurement: Measurement, location: str | None = None
) -> Result[NormalizedMeasurement, UnsupportedUnitError]:
    """
    Normalize one measurement, select its area and estimate its volume.

    Only a unit problem on the surface dimensions is an error. Depth and volume
    are normalized separately; when they cannot be, they are dropped and
    `depth_error` says why, so the area is never lost to a depth problem.
    """
    try:
        length = normalize_value(measurement.length, measurement.unit, MeasurementKind.LENGTH)
        width = normalize_value(measurement.width, measurement.unit, MeasurementKind.WIDTH)
        checks = [length, width]

        stored_area = None
        if measurement.area is not None:
            stored = normalize_value(measurement.area, measurement.unit, MeasurementKind.AREA)
            checks.append(stored)
            stored_area = stored.normalized_value

        vertices = None
        if measurement.vertices:
            factor = linear_factor_to_cm(measurement.unit)
            vertices = [(x * factor, y * factor) for x, y in measurement.vertices]
    except UnsupportedUnitError as e:
        return Result.err(e)

    depth = None
    recorded_volume = None
    depth_error = None
    try:
        if measurement.depth is not None:
            depth = normalize_value(
                measurement.depth,
                measurement.depth_unit or measurement.unit,
                MeasurementKind.DEPTH,
                location,
            )
        if measurement.volume is not None:
            recorded_volume = convert_unit(
                measurement.volume, measurement.unit, MeasurementKind.VOLUME
            )
    except UnsupportedUnitError as e:
        depth, recorded_volume, depth_error = None, None, str(e)
    if depth is not None:
        checks.append(depth)

    selection = select_area(
        length.normalized_value,
        width.normalized_value,
        measurement.method,
        stored_area_cm2=stored_area,
        vertices_cm=vertices,
    )

    volume_source = None
    volume = None
    if recorded_volume is not None:
        volume, volume_source = recorded_volume, "recorded"
    elif depth is not None and depth.normalized_value > 0:
        estimate = truncated_ellipsoid_volume(
            length.normalized_value, width.normalized_value, depth.normalized_value
        )
        volume, volume_source = estimate.volume_cm3, "truncated_ellipsoid"

    flags = [flag for check in checks for flag in check.flags] + list(selection.flags)
    return Result.ok(
        NormalizedMeasurement(
            measurement_id=measurement.id,
            timestamp=measurement.timestamp,
            method=measurement.method,
            validation_status=measurement.validation_status,
            length_cm=length.normalized_value,
            width_cm=width.normalized_value,
            depth_mm=depth.normalized_value if depth is not None else None,
            area_cm2=selection.area_cm2,
            area_source=selection.source,
            volume_cm3=volume,
            volume_source=volume_source,  # type: ignore[arg-type]
            plausibility_score=min(check.plausibility_score for check in checks),
            is_valid=all(check.is_valid for check in checks),
            flags=tuple(flags),
            correction_suggestions=suggest_corrections(
                length.normalized_value,
                width.normalized_value,
                stored_area,
                depth.normalized_value if depth is not None else None,
                location,
            ),
            depth_error=depth_error,
        )
    )


def prepare_series(series: MeasurementSeries, location: str | None = None) -> PreparedSeries:
    """Normalize a whole series; unsupported units reject that record only."""
    prepared: list[NormalizedMeasurement] = []
    audit: list[AuditEntry] = []

    for measurement in series.measurements:
        result = prepare_measurement(measurement, location)
        if result.is_err():
            audit.append(
                AuditEntry(
                    code="unsupported_unit",
                    detail=f"Measurement {measurement.id}: {result.unwrap_err()}",
                    kind=AuditKind.INPUT_ERROR,
                )
            )
            continue
        normalized = result.unwrap()
        if normalized.depth_error is not None:
            audit.append(
                AuditEntry(
                    code="depth_discarded",
                    detail=f"Measurement {measurement.id}: {normalized.depth_error}; area kept",
                    kind=AuditKind.INPUT_ERROR,
                )
            )
        if not normalized.is_valid:
            audit.append(
                AuditEntry(
                    code="implausible_measurement",
                    detail=f"Measurement {measurement.id}: {'; '.join(normalized.flags)}",
                    kind=AuditKind.INPUT_ERROR,
                )
            )
        prepared.append(normalized)

    logger.debug(
        "series_prepared",
        episode_id=series.episode_id,
        prepared=len(prepared),
        rejected=len(series.measurements) - len(prepared),
    )
    return PreparedSeries(
        episode_id=series.episode_id,
        measurements=tuple(prepared),
        audit_trail=tuple(audit),
        rejected_count=len(series.measurements) - len(prepared),
    )


def area_observations(measurements: Iterable[NormalizedMeasurement]) -> list[AreaObservation]:
    """
    Project a normalized series onto the {timestamp, area} pairs coverage math accepts.

    Only the area and timestamp cross this boundary. The series is already in
    tie-break order, so the first record seen for an instant wins.
    """
    seen = set()
    observations: list[AreaObservation] = []
    for m in measurements:
        if m.area_cm2 <= 0 or m.timestamp in seen:
            continue
        seen.add(m.timestamp)
        observations.append(AreaObservation(timestamp=m.timestamp, area=m.area_cm2))
    return observations


_INDICATOR_FLAGS = {
    "abscess": InfectionIndicator.ABSCESS,
    "osteomyelitis": InfectionIndicator.OSTEOMYELITIS,
}


def build_context_profile(
    episode: EpisodeRecord,
    encounters: Sequence[EncounterRecord],
    age: int | None = None,
    comorbidities: Sequence[str] = (),
) -> ClinicalContextProfile:
    """Assemble the clinical context once, from the most recent documented values."""
    ordered = sorted(encounters, key=lambda e: e.date)

    diabetic_status = next(
        (e.diabetic_status for e in reversed(ordered) if e.diabetic_status is not None),
        DiabeticStatus.UNKNOWN,
    )
    response = next(
        (e.treatment_response for e in reversed(ordered) if e.treatment_response is not None),
        TreatmentResponse.UNKNOWN,
    )

    latest = ordered[-1] if ordered else None
    indicators: set[InfectionIndicator] = set()
    pain_score = None
    systemic = False
    if latest is not None:
        details = latest.wound_details
        indicators.update(details.infection_indicators)
        for attr, indicator in _INDICATOR_FLAGS.items():
            if getattr(details, attr):
                indicators.add(indicator)
        pain_score = details.pain_score
        systemic = latest.systemic_signs

    classification = classify_wound(
        episode.wound_type, episode.primary_diagnosis, episode.wound_location, diabetic_status
    )

    return ClinicalContextProfile(
        diabetic_status=diabetic_status,
        age=age,
        significant_comorbidities=tuple(comorbidities),
        wound_category=classification.category,
        anatomical_location=episode.wound_location or "default",
        treatment_response=response,
        pain_score=pain_score,
        systemic_signs=systemic,
        infection_indicators=frozenset(indicators),
    )
