"""
Medicare LCD L39806 domain models extending the core wound analytics framework.

Key LCD concepts:
- Covered indications: diabetic foot ulcers (DFU) and venous leg ulcers (VLU) only
- Conservative care: at least 28 days of documented standard of care before the
  first CTP application
- CTP application codes: HCPCS Q41xx/Q42xx products and CPT 15271-15278 procedures
- Wagner grade: DFU severity scale used as a clinical-necessity input
"""

import re
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, computed_field

from woundcore.domain.models import (
    AuditEntry,
    ComplianceAssessment,
    EncounterRecord,
    WoundCategory,
)
from woundcore.services.classification import WoundClassification

COVERED_CATEGORIES = frozenset({WoundCategory.DFU, WoundCategory.VLU})
MINIMUM_CONSERVATIVE_CARE_DAYS = 28
DEEP_ULCER_DEPTH_MM = 5.0
LCD_SCOPE_VIOLATION = "Medicare LCD L39806 covers only DFU and VLU"

_HCPCS_CTP = re.compile(r"^Q4[12]\d{2}$")
_CPT_CTP = range(15271, 15279)

# Standard-of-care element each covered wound type must document
REQUIRED_STANDARD_OF_CARE: MappingProxyType[WoundCategory, tuple[str, ...]] = MappingProxyType(
    {
        WoundCategory.DFU: ("offloading", "debridement", "moisture_management"),
        WoundCategory.VLU: ("compression", "moisture_management"),
    }
)
CRITICAL_STANDARD_OF_CARE: MappingProxyType[WoundCategory, str] = MappingProxyType(
    {WoundCategory.DFU: "offloading", WoundCategory.VLU: "compression"}
)


def is_ctp_application_code(code: str) -> bool:
    normalized = code.strip().upper()
    if _HCPCS_CTP.match(normalized):
        return True
    return normalized.isdigit() and int(normalized) in _CPT_CTP


def first_ctp_application(encounters: Sequence[EncounterRecord]) -> datetime | None:
    """Date of the earliest encounter billing a CTP application code."""
    for encounter in sorted(encounters, key=lambda e: e.date):
        if any(is_ctp_application_code(p.code) for p in encounter.procedure_codes):
            return encounter.date
    return None


class WagnerGrade(str, Enum):
    GRADE_0 = "0"
    GRADE_1 = "1"
    GRADE_2 = "2"
    GRADE_3 = "3"
    GRADE_4 = "4"
    GRADE_5 = "5"


WAGNER_DESCRIPTIONS: MappingProxyType[WagnerGrade, tuple[str, str]] = MappingProxyType(
    {
        WagnerGrade.GRADE_0: ("Pre-ulcerative lesions or healed ulcer, skin intact", "minimal"),
        WagnerGrade.GRADE_1: ("Superficial ulcer without penetration to deeper layers", "mild"),
        WagnerGrade.GRADE_2: ("Deep ulcer to tendon, capsule or bone without abscess", "moderate"),
        WagnerGrade.GRADE_3: ("Deep ulcer with abscess or osteomyelitis", "severe"),
        WagnerGrade.GRADE_4: ("Partial foot gangrene", "critical"),
        WagnerGrade.GRADE_5: ("Full foot gangrene", "critical"),
    }
)


class WagnerAssessment(BaseModel):
    """DFU severity for clinical-necessity review. Never changes area-based coverage math."""

    model_config = ConfigDict(frozen=True)

    grade: WagnerGrade
    risk_factors: tuple[str, ...] = ()
    immediate_actions: tuple[str, ...] = ()

    @computed_field(return_type=str)
    def description(self) -> str:
        return WAGNER_DESCRIPTIONS[self.grade][0]

    @computed_field(return_type=str)
    def severity(self) -> str:
        return WAGNER_DESCRIPTIONS[self.grade][1]

    @computed_field(return_type=str)
    def amputation_risk(self) -> str:
        """Amputation risk band implied by the grade."""
        if self.grade == WagnerGrade.GRADE_5:
            return "very_high"
        if self.grade == WagnerGrade.GRADE_4:
            return "high"
        if self.grade == WagnerGrade.GRADE_3:
            return "moderate"
        return "low"


class WoundTypeCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    category: WoundCategory | None = None
    reason: str
    policy_violation: str | None = None
    classification: WoundClassification


class ConservativeCareCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    days_of_care: int = Field(ge=0)
    reason: str
    policy_violation: str | None = None
    first_application_date: datetime | None = None


class StandardOfCareCheck(BaseModel):
    """Documentation check for the wound type's standard-of-care elements (advisory)."""

    model_config = ConfigDict(frozen=True)

    is_documented: bool
    documented: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    reason: str


class MeasurementCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    area_measurement_count: int = Field(ge=0)
    reason: str


class PreEligibilityResult(BaseModel):
    """Itemized LCD pre-eligibility outcome. Non-eligibility is an ordinary result."""

    model_config = ConfigDict(frozen=True)

    episode_id: str
    overall_eligible: bool
    wound_type_check: WoundTypeCheck
    conservative_care_check: ConservativeCareCheck
    standard_of_care_check: StandardOfCareCheck | None = None
    measurement_check: MeasurementCheck
    area_reduction_check: ComplianceAssessment
    wagner_assessment: WagnerAssessment | None = None
    failure_reasons: tuple[str, ...] = ()
    policy_violations: tuple[str, ...] = ()
    audit_trail: tuple[AuditEntry, ...] = ()
