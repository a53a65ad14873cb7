"""
Domain models for wound measurement analytics and CTP coverage evaluation.

These models represent the core clinical and coverage concepts and are framework-agnostic.
They use Pydantic for validation at the boundary; measurement-derived records are frozen
so a correction always produces a new record instead of an in-place edit.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

COVERAGE_DISCLAIMER = (
    "Advisory only: depth, volume and clinical-alert findings do not affect the coverage "
    "determination, which is based solely on wound area reduction."
)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ValidationStatus(str, Enum):
    """Clinical validation state of a recorded measurement."""

    PENDING = "pending"
    VALIDATED = "validated"
    FLAGGED = "flagged"


class MeasurementMethod(str, Enum):
    """Declared measurement technique."""

    RECTANGULAR = "rectangular"
    ELLIPTICAL = "elliptical"
    IRREGULAR = "irregular"


class MeasurementKind(str, Enum):
    LENGTH = "length"
    WIDTH = "width"
    DEPTH = "depth"
    AREA = "area"
    VOLUME = "volume"


class AreaSource(str, Enum):
    """Where the area used downstream came from (smart-area precedence order)."""

    STORED = "stored"
    POLYGON = "polygon"
    ELLIPTICAL = "elliptical"
    RECTANGULAR = "rectangular"


class TreatmentPhase(str, Enum):
    PRE_PRODUCT = "pre-product"
    POST_PRODUCT = "post-product"


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"
    INSUFFICIENT_DATA = "insufficient_data"


class DepthTrend(str, Enum):
    DEEPENING = "deepening"
    STABLE = "stable"
    HEALING = "healing"
    INSUFFICIENT_DATA = "insufficient_data"


class VolumeTrend(str, Enum):
    EXPANDING = "expanding"
    STABLE = "stable"
    HEALING = "healing"
    INSUFFICIENT_DATA = "insufficient_data"


class ThicknessClass(str, Enum):
    SUPERFICIAL = "superficial"
    PARTIAL_THICKNESS = "partial_thickness"
    FULL_THICKNESS = "full_thickness"
    DEEP_FULL_THICKNESS = "deep_full_thickness"


class QualityGrade(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class UrgencyTier(str, Enum):
    """Graduated clinical urgency, lowest to highest."""

    MINOR_CONCERN = "minor_concern"
    MODERATE_CONCERN = "moderate_concern"
    URGENT_CLINICAL_REVIEW = "urgent_clinical_review"
    CRITICAL_INTERVENTION = "critical_intervention"

    @property
    def rank(self) -> int:
        return _URGENCY_ORDER.index(self)


_URGENCY_ORDER = (
    UrgencyTier.MINOR_CONCERN,
    UrgencyTier.MODERATE_CONCERN,
    UrgencyTier.URGENT_CLINICAL_REVIEW,
    UrgencyTier.CRITICAL_INTERVENTION,
)


class OverrideSeverity(str, Enum):
    """Acute-deterioration severity assigned by the safety override evaluator."""

    SEVERE = "severe"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


class AlertType(str, Enum):
    DEPTH_INCREASE = "depth_increase"
    VOLUME_EXPANSION = "volume_expansion"
    ACUTE_DETERIORATION = "acute_deterioration"


class ReviewStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    UNDER_REVIEW = "under_review"
    ACKNOWLEDGED = "acknowledged"
    ACTION_TAKEN = "action_taken"
    NO_ACTION_NEEDED = "no_action_needed"
    ESCALATED = "escalated"
    DISMISSED = "dismissed"


class ReviewDecision(str, Enum):
    ACTION_TAKEN = "action_taken"
    NO_ACTION_NEEDED = "no_action_needed"


class WoundCategory(str, Enum):
    """Closed set of wound etiologies the core reasons about."""

    DFU = "dfu"
    VLU = "vlu"
    TRAUMATIC = "traumatic"
    SURGICAL = "surgical"
    PRESSURE = "pressure"
    ARTERIAL = "arterial"


class DiabeticStatus(str, Enum):
    DIABETIC = "diabetic"
    PREDIABETIC = "prediabetic"
    NON_DIABETIC = "non_diabetic"
    UNKNOWN = "unknown"


class TreatmentResponse(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNKNOWN = "unknown"


class InfectionIndicator(str, Enum):
    PURULENT_DRAINAGE = "purulent_drainage"
    MALODOR = "malodor"
    SPREADING_ERYTHEMA = "spreading_erythema"
    CELLULITIS = "cellulitis"
    ABSCESS = "abscess"
    CREPITUS = "crepitus"
    OSTEOMYELITIS = "osteomyelitis"
    FEVER = "fever"


class AuditKind(str, Enum):
    INFO = "info"
    INPUT_ERROR = "input_error"
    BUSINESS_OUTCOME = "business_outcome"
    INVARIANT_VIOLATION = "invariant_violation"


class AuditEntry(BaseModel):
    """Structured audit-trail entry."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(min_length=1)
    detail: str
    kind: AuditKind = AuditKind.INFO


# Measurements and series

_STATUS_PREFERENCE = {
    ValidationStatus.VALIDATED: 0,
    ValidationStatus.PENDING: 1,
    ValidationStatus.FLAGGED: 2,
}


class Measurement(BaseModel):
    """Raw wound measurement as recorded at an encounter."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    length: float = Field(ge=0.0)
    width: float = Field(ge=0.0)
    depth: float | None = Field(None, ge=0.0)
    area: float | None = Field(None, ge=0.0, description="Explicit stored area in unit²")
    volume: float | None = Field(None, ge=0.0, description="Explicit stored volume in unit³")
    unit: str = Field(default="cm", min_length=1)
    depth_unit: str | None = Field(None, description="Overrides `unit` for depth only")
    timestamp: datetime
    method: MeasurementMethod = MeasurementMethod.ELLIPTICAL
    recorded_by: str | None = None
    validation_status: ValidationStatus = ValidationStatus.PENDING
    vertices: tuple[tuple[float, float], ...] | None = Field(
        None, description="Ordered tracing vertices in `unit` coordinates"
    )

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


def series_sort_key(measurement: Measurement) -> tuple[datetime, int, str]:
    """Chronological order; same-instant ties prefer validated records, then id."""
    return (
        measurement.timestamp,
        _STATUS_PREFERENCE[measurement.validation_status],
        measurement.id,
    )


class MeasurementSeries(BaseModel):
    """Append-only, time-ordered measurements for one episode."""

    model_config = ConfigDict(frozen=True)

    episode_id: str
    measurements: tuple[Measurement, ...] = ()

    @model_validator(mode="after")
    def ordered_by_time(self) -> "MeasurementSeries":
        keys = [series_sort_key(m) for m in self.measurements]
        if keys != sorted(keys):
            raise ValueError("measurements must be in non-decreasing timestamp order")
        ids = [m.id for m in self.measurements]
        if len(set(ids)) != len(ids):
            raise ValueError("measurement ids must be unique within a series")
        return self

    @classmethod
    def from_measurements(
        cls, episode_id: str, measurements: list[Measurement] | tuple[Measurement, ...]
    ) -> "MeasurementSeries":
        return cls(episode_id=episode_id, measurements=tuple(sorted(measurements, key=series_sort_key)))

    def append(self, measurement: Measurement) -> "MeasurementSeries":
        """Return a new series including `measurement`; corrections are appended, never edited."""
        return MeasurementSeries.from_measurements(
            self.episode_id, self.measurements + (measurement,)
        )


class CorrectionSuggestion(BaseModel):
    """Suggested data fix. Never applied automatically."""

    model_config = ConfigDict(frozen=True)

    field: str
    issue: str
    suggestion: str
    confidence: float = Field(ge=0.0, le=1.0)


class NormalizationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    normalized_value: float
    unit: str
    is_valid: bool
    plausibility_score: float = Field(ge=0.0, le=1.0)
    flags: tuple[str, ...] = ()


class NormalizedMeasurement(BaseModel):
    """Measurement converted to standard units (cm, mm depth, cm², cm³)."""

    model_config = ConfigDict(frozen=True)

    measurement_id: str
    timestamp: datetime
    method: MeasurementMethod
    validation_status: ValidationStatus
    length_cm: float
    width_cm: float
    depth_mm: float | None = None
    area_cm2: float
    area_source: AreaSource
    volume_cm3: float | None = None
    volume_source: Literal["recorded", "truncated_ellipsoid"] | None = None
    plausibility_score: float = Field(ge=0.0, le=1.0)
    is_valid: bool
    flags: tuple[str, ...] = ()
    correction_suggestions: tuple[CorrectionSuggestion, ...] = ()
    depth_error: str | None = Field(None, description="Why depth and volume were dropped")


class AreaObservation(BaseModel):
    """The only input shape accepted by the coverage phase-compliance engine."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: datetime
    area: float = Field(ge=0.0, description="Wound area in cm²")

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


# Coverage

class PolicyMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    policy_id: str
    title: str
    jurisdiction: str
    effective_date: date
    last_updated: date


class CoveragePolicy(BaseModel):
    """Area-reduction rule parameters for a payer coverage policy."""

    model_config = ConfigDict(frozen=True)

    metadata: PolicyMetadata
    pre_product_threshold_pct: float = Field(default=50.0, gt=0.0, lt=100.0)
    post_product_threshold_pct: float = Field(default=20.0, gt=0.0, lt=100.0)
    window_days: int = Field(default=28, gt=0)
    preferred_tolerance_days: int = Field(default=7, ge=0)
    extended_tolerance_days: int = Field(default=7, ge=0)
    minimum_elapsed_days: int = Field(default=28, gt=0)


class PhaseBaseline(BaseModel):
    """Immutable per-phase anchor for reduction calculations."""

    model_config = ConfigDict(frozen=True)

    phase: TreatmentPhase
    anchor_timestamp: datetime
    anchor_area: float = Field(gt=0.0)


class PeriodWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    period_start_day: int
    target_day: int
    selected_timestamp: datetime | None = None
    selected_day: int | None = None
    period_area: float | None = None
    reduction_pct: float | None = None
    meets_requirement: bool | None = None
    selection: Literal["preferred", "extended", "none"] = "none"


class ComplianceAssessment(BaseModel):
    """Derived per evaluation; never the source of truth."""

    model_config = ConfigDict(frozen=True)

    episode_id: str | None = None
    phase: TreatmentPhase
    baseline: PhaseBaseline | None = None
    current_reduction_pct: float | None = None
    days_from_baseline: int = 0
    period_windows: tuple[PeriodWindow, ...] = ()
    meets_phase_requirement: bool = False
    overall_compliance: ComplianceStatus
    phase_threshold_pct: float
    regulatory_notes: tuple[str, ...] = ()
    next_evaluation_date: datetime | None = None
    policy_metadata: PolicyMetadata
    audit_trail: tuple[AuditEntry, ...] = ()


# Quality and progression

class QualityComponents(BaseModel):
    model_config = ConfigDict(frozen=True)

    frequency: float = Field(ge=0.0, le=1.0)
    temporal_stability: float = Field(ge=0.0, le=1.0)
    trend_consistency: float = Field(ge=0.0, le=1.0)
    outlier_rate: float = Field(ge=0.0, le=1.0)
    time_span: float = Field(ge=0.0, le=1.0)
    validation_rate: float = Field(ge=0.0, le=1.0)


class QualityAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    confidence: float = Field(ge=0.0, le=1.0)
    quality_score: float = Field(ge=0.0, le=1.0)
    grade: QualityGrade
    components: QualityComponents
    measurement_count: int = Field(ge=0)
    outlier_indices: tuple[int, ...] = ()
    flags: tuple[str, ...] = ()
    allow_high_urgency_alerts: bool = True


class ConsecutiveConfirmation(BaseModel):
    model_config = ConfigDict(frozen=True)

    consecutive_intervals: int = Field(ge=0)
    longest_run: int = Field(ge=0)
    breaks: tuple[str, ...] = ()


class GateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: UrgencyTier
    passed: bool
    meets_minimum_measurements: bool
    meets_confidence_threshold: bool
    meets_quality_threshold: bool
    meets_consecutive_confirmation: bool
    prevention_reasons: tuple[str, ...] = ()

    @property
    def failed_gates(self) -> tuple[str, ...]:
        checks = {
            "minimum_measurements": self.meets_minimum_measurements,
            "confidence_threshold": self.meets_confidence_threshold,
            "quality_threshold": self.meets_quality_threshold,
            "consecutive_confirmation": self.meets_consecutive_confirmation,
        }
        return tuple(name for name, ok in checks.items() if not ok)


class ThicknessClassification(BaseModel):
    model_config = ConfigDict(frozen=True)

    classification: ThicknessClass
    depth_mm: float
    typical_thickness_mm: float
    max_thickness_mm: float
    thickness_ratio: float
    confidence: float = Field(ge=0.0, le=1.0)
    location_key: str
    flags: tuple[str, ...] = ()


class ProgressionMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    depth_velocity: float | None = Field(None, description="mm/week")
    volume_velocity: float | None = Field(None, description="cm³/week")
    depth_trend: DepthTrend
    volume_trend: VolumeTrend
    confidence: float = Field(ge=0.0, le=1.0)
    quality_grade: QualityGrade
    thickness: ThicknessClassification | None = None
    depth_measurement_count: int = 0
    volume_measurement_count: int = 0
    weeks_elapsed: float = 0.0
    depth_change_mm: float | None = None
    volume_change_pct: float | None = None


# Clinical context

class ClinicalContextProfile(BaseModel):
    """Validated once at the boundary, then passed by value through the pipeline."""

    model_config = ConfigDict(frozen=True)

    diabetic_status: DiabeticStatus = DiabeticStatus.UNKNOWN
    age: int | None = Field(None, ge=0, le=130)
    significant_comorbidities: tuple[str, ...] = ()
    wound_category: WoundCategory | None = None
    anatomical_location: str = "default"
    treatment_response: TreatmentResponse = TreatmentResponse.UNKNOWN
    pain_score: int | None = Field(None, ge=0, le=10)
    systemic_signs: bool = False
    infection_indicators: frozenset[InfectionIndicator] = frozenset()

    @property
    def comorbidity_count(self) -> int:
        return len(set(self.significant_comorbidities))


class EvidenceReference(BaseModel):
    """Citation backing a threshold choice. Never mutated at runtime."""

    model_config = ConfigDict(frozen=True)

    key: str
    source: str
    finding: str
    evidence_grade: str
    year: int
    pmid: str | None = Field(None, pattern=r"^PMID: \d{8}$")
    recommendation: str | None = None


# Alerts and reviews

class TriggerEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str
    observed_value: float
    threshold: float
    timeframe_days: int | None = None
    evidence_keys: tuple[str, ...] = ()


class ConfidenceMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    confidence: float = Field(ge=0.0, le=1.0)
    adjusted_confidence: float = Field(ge=0.0, le=1.0)
    quality_score: float = Field(ge=0.0, le=1.0)
    quality_grade: QualityGrade
    measurement_count: int = Field(ge=0)
    consecutive_intervals: int = Field(ge=0)
    cross_validation_weight: float = Field(default=1.0, gt=0.0)


class AdvisoryLabel(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_advisory_only: Literal[True] = True
    coverage_disclaimer: str = COVERAGE_DISCLAIMER


class OverrideRecord(BaseModel):
    """What a safety override bypassed and why."""

    model_config = ConfigDict(frozen=True)

    severity: OverrideSeverity
    escalation_hours: int
    signatures: tuple[str, ...]
    bypassed_gates: tuple[str, ...] = ()
    rationale: str


class Alert(BaseModel):
    """Clinical alert record. Immutable; lifecycle continues via ClinicalReview."""

    model_config = ConfigDict(frozen=True)

    id: str
    episode_id: str
    alert_type: AlertType
    urgency_tier: UrgencyTier
    trigger_evidence: tuple[TriggerEvidence, ...] = ()
    confidence_metrics: ConfidenceMetrics
    advisory_label: AdvisoryLabel = Field(default_factory=AdvisoryLabel)
    audit_trail: tuple[AuditEntry, ...] = ()
    created_at: datetime
    override: OverrideRecord | None = None
    cross_validation_flags: tuple[str, ...] = ()
    requires_reassessment: bool = False

    @property
    def is_safety_critical(self) -> bool:
        if self.urgency_tier == UrgencyTier.CRITICAL_INTERVENTION:
            return True
        return self.override is not None and self.override.severity in (
            OverrideSeverity.CRITICAL,
            OverrideSeverity.EMERGENCY,
        )


class ReviewTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_status: ReviewStatus | None
    to_status: ReviewStatus
    at: datetime
    actor: str | None = None
    note: str = ""


class ReviewComplianceFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeline_met: bool = True
    documentation_complete: bool = False
    appropriate_oversight: bool = False


class ClinicalReview(BaseModel):
    """State-machine record tracking clinician handling of one alert."""

    model_config = ConfigDict(frozen=True)

    review_id: str
    alert_id: str
    episode_id: str
    urgency_tier: UrgencyTier
    override_severity: OverrideSeverity | None = None
    status: ReviewStatus
    assigned_clinician: str | None = None
    decision: ReviewDecision | None = None
    decision_rationale: str | None = None
    escalation_history: tuple[ReviewTransition, ...] = ()
    transitions: tuple[ReviewTransition, ...] = ()
    audit_trail: tuple[AuditEntry, ...] = ()
    compliance_flags: ReviewComplianceFlags = Field(default_factory=ReviewComplianceFlags)
    created_at: datetime
    response_due_at: datetime
    acknowledged_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            ReviewStatus.ACTION_TAKEN,
            ReviewStatus.NO_ACTION_NEEDED,
            ReviewStatus.DISMISSED,
        )


# Storage-collaborator input records

class WoundDetails(BaseModel):
    location: str | None = None
    measurements: dict[str, Any] | None = None
    exposed_structures: tuple[str, ...] = ()
    abscess: bool = False
    osteomyelitis: bool = False
    gangrene_extent: Literal["none", "localized", "extensive"] = "none"
    infection_indicators: tuple[InfectionIndicator, ...] = ()
    pain_score: int | None = Field(None, ge=0, le=10)


class ConservativeCare(BaseModel):
    offloading: bool = False
    compression: bool = False
    debridement: bool = False
    moisture_management: bool = False
    infection_control: bool = False


class VascularAssessment(BaseModel):
    ankle_brachial_index: float | None = Field(None, ge=0.0)
    venous_reflux: bool | None = None


class ProcedureCode(BaseModel):
    code: str = Field(min_length=1)
    description: str | None = None


class EncounterRecord(BaseModel):
    encounter_id: str | None = None
    date: datetime
    wound_details: WoundDetails = Field(default_factory=WoundDetails)
    conservative_care: ConservativeCare | None = None
    vascular_assessment: VascularAssessment | None = None
    diabetic_status: DiabeticStatus | None = None
    procedure_codes: tuple[ProcedureCode, ...] = ()
    notes: tuple[str, ...] = ()
    treatment_response: TreatmentResponse | None = None
    systemic_signs: bool = False

    @field_validator("date")
    @classmethod
    def date_to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class EpisodeRecord(BaseModel):
    id: str = Field(min_length=1)
    wound_type: str
    wound_location: str
    primary_diagnosis: str | None = None
    episode_start_date: datetime
    product_start_date: datetime | None = None

    @field_validator("episode_start_date", "product_start_date")
    @classmethod
    def dates_to_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None
