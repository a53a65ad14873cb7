"""
LCD L39806 pre-eligibility checks for CTP coverage.

Combines the payer-specific gates (covered wound type, conservative-care
timeline, measurement availability, pre-product area reduction) into one
itemized result. Area reduction is delegated to the core phase-compliance
engine on the area-only projection; Wagner grading is reported for clinical
necessity review and never changes the determination.
"""

from collections.abc import Sequence

import structlog

from adapters.medicare_lcd.domain import (
    COVERED_CATEGORIES,
    CRITICAL_STANDARD_OF_CARE,
    DEEP_ULCER_DEPTH_MM,
    LCD_SCOPE_VIOLATION,
    MINIMUM_CONSERVATIVE_CARE_DAYS,
    REQUIRED_STANDARD_OF_CARE,
    ConservativeCareCheck,
    MeasurementCheck,
    PreEligibilityResult,
    StandardOfCareCheck,
    WagnerAssessment,
    WagnerGrade,
    WoundTypeCheck,
    first_ctp_application,
)
from woundcore.domain.models import (
    AuditEntry,
    AuditKind,
    ComplianceStatus,
    CoveragePolicy,
    DiabeticStatus,
    EncounterRecord,
    EpisodeRecord,
    NormalizedMeasurement,
    TreatmentPhase,
    WoundCategory,
    WoundDetails,
)
from woundcore.domain.reference import DEFAULT_COVERAGE_POLICY
from woundcore.services.classification import classify_from_free_text, classify_wound
from woundcore.services.measurement_intake import (
    EncounterMeasurementSource,
    area_observations,
    prepare_series,
)
from woundcore.services.phase_compliance import elapsed_days, evaluate_phase_compliance
from woundcore.services.sanitizer import sanitize_assessment, sanitize_audit_trail, sanitize_text

logger = structlog.get_logger(__name__)

DEEP_STRUCTURES = frozenset({"tendon", "bone", "joint", "capsule", "fascia", "ligament"})


def validate_wound_type_for_coverage(
    wound_type: str | None,
    primary_diagnosis: str | None,
    notes: Sequence[str] = (),
    diabetic_status: DiabeticStatus = DiabeticStatus.UNKNOWN,
    location: str | None = None,
) -> WoundTypeCheck:
    """Only DFU and VLU are covered indications; DFU additionally needs a diabetic patient."""
    classification = classify_wound(wound_type, primary_diagnosis, location, diabetic_status)
    if classification.category is None and notes:
        classification = classify_from_free_text(" ".join(notes)) or classification

    category = classification.category
    if category is None:
        return WoundTypeCheck(
            is_valid=False,
            reason="Unable to determine wound type from diagnosis, wound type or notes",
            policy_violation="Wound type must be documented as DFU or VLU",
            classification=classification,
        )

    if category not in COVERED_CATEGORIES:
        return WoundTypeCheck(
            is_valid=False,
            category=category,
            reason=f"Wound classified as {category.value} ({_describe(category)}) - not a covered indication",
            policy_violation=LCD_SCOPE_VIOLATION,
            classification=classification,
        )

    if category == WoundCategory.DFU and diabetic_status == DiabeticStatus.NON_DIABETIC:
        return WoundTypeCheck(
            is_valid=False,
            category=category,
            reason="DFU diagnosis recorded for a confirmed non-diabetic patient",
            policy_violation="DFU diagnosis requires diabetic patient",
            classification=classification,
        )

    reason = f"{category.value.upper()} meets Medicare LCD covered indication"
    if classification.is_advisory:
        reason += " (advisory free-text match; confirm diagnosis coding)"
    return WoundTypeCheck(
        is_valid=True, category=category, reason=reason, classification=classification
    )


def _describe(category: WoundCategory) -> str:
    return {
        WoundCategory.TRAUMATIC: "traumatic wound",
        WoundCategory.SURGICAL: "surgical wound",
        WoundCategory.PRESSURE: "pressure ulcer",
        WoundCategory.ARTERIAL: "arterial ulcer",
        WoundCategory.DFU: "diabetic foot ulcer",
        WoundCategory.VLU: "venous leg ulcer",
    }[category]


def validate_conservative_care_timeline(
    encounters: Sequence[EncounterRecord],
) -> ConservativeCareCheck:
    """Days from the first encounter to the first CTP application (or the latest encounter)."""
    if not encounters:
        return ConservativeCareCheck(
            is_valid=False,
            days_of_care=0,
            reason="No encounters documented",
            policy_violation=f"LCD requires minimum {MINIMUM_CONSERVATIVE_CARE_DAYS} days of conservative care",
        )

    ordered = sorted(encounters, key=lambda e: e.date)
    application = first_ctp_application(ordered)
    end = application or ordered[-1].date
    days = max(0, elapsed_days(ordered[0].date, end))

    if days < MINIMUM_CONSERVATIVE_CARE_DAYS:
        return ConservativeCareCheck(
            is_valid=False,
            days_of_care=days,
            reason=f"Conservative care documented for only {days} days before CTP consideration",
            policy_violation=(
                f"LCD requires minimum {MINIMUM_CONSERVATIVE_CARE_DAYS} days of conservative care"
            ),
            first_application_date=application,
        )

    return ConservativeCareCheck(
        is_valid=True,
        days_of_care=days,
        reason=f"Conservative care timeline meets requirements ({days} days)",
        first_application_date=application,
    )


def validate_standard_of_care(
    category: WoundCategory | None, encounters: Sequence[EncounterRecord]
) -> StandardOfCareCheck | None:
    """Advisory check that the wound type's standard-of-care elements were documented."""
    if category is None or category not in REQUIRED_STANDARD_OF_CARE:
        return None

    required = REQUIRED_STANDARD_OF_CARE[category]
    documented = {
        element
        for encounter in encounters
        if encounter.conservative_care is not None
        for element in required
        if getattr(encounter.conservative_care, element)
    }
    missing = tuple(e for e in required if e not in documented)
    critical = CRITICAL_STANDARD_OF_CARE[category]

    if critical in missing:
        reason = f"{critical.replace('_', ' ').capitalize()} not documented for {category.value.upper()}"
    elif missing:
        reason = "Incomplete standard of care documentation: " + ", ".join(missing)
    else:
        reason = "Standard of care documented"

    return StandardOfCareCheck(
        is_documented=critical not in missing,
        documented=tuple(e for e in required if e in documented),
        missing=missing,
        reason=reason,
    )


def assess_wagner_grade(details: WoundDetails, depth_mm: float | None = None) -> WagnerAssessment:
    """Wagner 0-5 from gangrene extent, deep infection, exposed structures and depth."""
    exposed = {s.strip().lower() for s in details.exposed_structures}
    risk_factors: list[str] = []

    if details.gangrene_extent == "extensive":
        grade = WagnerGrade.GRADE_5
        risk_factors.append("Gangrene present")
    elif details.gangrene_extent == "localized":
        grade = WagnerGrade.GRADE_4
        risk_factors.append("Gangrene present")
    elif details.abscess or details.osteomyelitis:
        grade = WagnerGrade.GRADE_3
        risk_factors.append("Deep infection or abscess")
    elif exposed & DEEP_STRUCTURES or (depth_mm is not None and depth_mm >= DEEP_ULCER_DEPTH_MM):
        grade = WagnerGrade.GRADE_2
        risk_factors.append("Deep tissue involvement")
    elif depth_mm is not None and depth_mm > 0:
        grade = WagnerGrade.GRADE_1
        risk_factors.append("Superficial tissue involvement")
    else:
        grade = WagnerGrade.GRADE_0

    if exposed & {"bone", "tendon"}:
        risk_factors.append("Bone/tendon exposure")

    actions: tuple[str, ...] = ()
    if grade == WagnerGrade.GRADE_5:
        actions = ("Urgent surgical consultation", "Vascular assessment")
    elif grade == WagnerGrade.GRADE_4:
        actions = ("Surgical consultation", "Vascular assessment")
    elif grade == WagnerGrade.GRADE_3:
        actions = ("Infection management", "Imaging for osteomyelitis")

    return WagnerAssessment(grade=grade, risk_factors=tuple(risk_factors), immediate_actions=actions)


def perform_pre_eligibility_checks(
    episode: EpisodeRecord,
    encounters: Sequence[EncounterRecord],
    policy: CoveragePolicy = DEFAULT_COVERAGE_POLICY,
    known_identifiers: Sequence[str] = (),
) -> PreEligibilityResult:
    """
    Run every LCD pre-eligibility gate for an episode.

    Free text in the result is sanitized before it is returned; `known_identifiers`
    adds patient names or MRNs to the redaction patterns.

    Returns:
        PreEligibilityResult; `overall_eligible` requires a covered wound type,
        an adequate conservative-care timeline, at least two area measurements
        and a compliant pre-product area-reduction outcome.
    """
    log = logger.bind(component="medicare_lcd", episode_id=episode.id)
    ordered = sorted(encounters, key=lambda e: e.date)
    audit: list[AuditEntry] = [
        AuditEntry(
            code="pre_eligibility_started",
            detail=f"Pre-eligibility checks under {policy.metadata.policy_id}",
        )
    ]
    failures: list[str] = []
    violations: list[str] = []

    diabetic_status = next(
        (e.diabetic_status for e in reversed(ordered) if e.diabetic_status is not None),
        DiabeticStatus.UNKNOWN,
    )
    notes = [note for e in ordered for note in e.notes]

    wound_check = validate_wound_type_for_coverage(
        episode.wound_type, episode.primary_diagnosis, notes, diabetic_status, episode.wound_location
    )
    audit.append(AuditEntry(code="wound_type_check", detail=wound_check.reason))
    if not wound_check.is_valid:
        failures.append(wound_check.reason)
        if wound_check.policy_violation:
            violations.append(wound_check.policy_violation)

    timeline_check = validate_conservative_care_timeline(ordered)
    audit.append(AuditEntry(code="conservative_care_check", detail=timeline_check.reason))
    if not timeline_check.is_valid:
        failures.append(timeline_check.reason)
        if timeline_check.policy_violation:
            violations.append(timeline_check.policy_violation)

    care_check = validate_standard_of_care(wound_check.category, ordered)
    if care_check is not None:
        audit.append(AuditEntry(code="standard_of_care_check", detail=care_check.reason))

    # Measurements and area reduction: standard-care period only
    product_start = episode.product_start_date or timeline_check.first_application_date
    prepared_measurements: list[NormalizedMeasurement] = []
    batch = EncounterMeasurementSource(episode, ordered).collect_measurements()
    if batch.is_ok():
        prepared = prepare_series(batch.unwrap().series, episode.wound_location)
        audit.extend(batch.unwrap().audit_trail)
        audit.extend(prepared.audit_trail)
        prepared_measurements = [
            m
            for m in prepared.measurements
            if product_start is None or m.timestamp < product_start
        ]
    observations = area_observations(prepared_measurements)

    if len(observations) >= 2:
        measurement_check = MeasurementCheck(
            is_valid=True,
            area_measurement_count=len(observations),
            reason=f"{len(observations)} area measurements available",
        )
    else:
        measurement_check = MeasurementCheck(
            is_valid=False,
            area_measurement_count=len(observations),
            reason=f"Insufficient wound measurements: {len(observations)} of 2 required",
        )
        failures.append(measurement_check.reason)
    audit.append(
        AuditEntry(
            code="measurement_check",
            detail=measurement_check.reason,
            kind=AuditKind.INFO if measurement_check.is_valid else AuditKind.INPUT_ERROR,
        )
    )

    area_check = evaluate_phase_compliance(
        observations, TreatmentPhase.PRE_PRODUCT, policy=policy, episode_id=episode.id
    )
    if area_check.overall_compliance != ComplianceStatus.COMPLIANT:
        failures.extend(area_check.regulatory_notes)
        if area_check.overall_compliance == ComplianceStatus.NON_COMPLIANT:
            violations.append(
                f"Wound area reduction reached {policy.pre_product_threshold_pct:.0f}% "
                "with conservative care alone"
            )

    wagner = None
    if wound_check.category == WoundCategory.DFU and diabetic_status == DiabeticStatus.DIABETIC:
        latest_depth = next(
            (m.depth_mm for m in reversed(prepared_measurements) if m.depth_mm is not None), None
        )
        wagner = assess_wagner_grade(ordered[-1].wound_details if ordered else WoundDetails(), latest_depth)
        audit.append(
            AuditEntry(
                code="wagner_grade_assessed",
                detail=f"Wagner Grade Assessment: {wagner.grade.value} ({wagner.severity})",
            )
        )
    else:
        audit.append(
            AuditEntry(
                code="wagner_grade_skipped",
                detail="Diabetic classifications skipped - patient not diabetic or wound not DFU",
            )
        )

    eligible = (
        wound_check.is_valid
        and timeline_check.is_valid
        and measurement_check.is_valid
        and area_check.overall_compliance == ComplianceStatus.COMPLIANT
    )
    audit.append(
        AuditEntry(
            code="pre_eligibility_determined",
            detail="Eligible for CTP coverage" if eligible else f"{len(failures)} failed checks",
            kind=AuditKind.BUSINESS_OUTCOME,
        )
    )

    log.info(
        "pre_eligibility_checked",
        overall_eligible=eligible,
        failures=len(failures),
        wound_category=wound_check.category.value if wound_check.category else None,
    )

    # Sanitize at the boundary
    def clean(text: str) -> str:
        return sanitize_text(text, known_identifiers)

    classification = wound_check.classification
    wound_check = wound_check.model_copy(
        update={
            "reason": clean(wound_check.reason),
            "classification": classification.model_copy(
                update={
                    "rationale": clean(classification.rationale),
                    "matched": clean(classification.matched) if classification.matched else None,
                }
            ),
        }
    )

    return PreEligibilityResult(
        episode_id=episode.id,
        overall_eligible=eligible,
        wound_type_check=wound_check,
        conservative_care_check=timeline_check,
        standard_of_care_check=care_check,
        measurement_check=measurement_check,
        area_reduction_check=sanitize_assessment(area_check, known_identifiers),
        wagner_assessment=wagner,
        failure_reasons=tuple(clean(f) for f in failures),
        policy_violations=tuple(clean(v) for v in violations),
        audit_trail=sanitize_audit_trail(audit, known_identifiers),
    )
