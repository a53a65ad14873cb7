"""
Wound etiology classification into the closed WoundCategory set.

Resolution order:
1. ICD-10 codes found in the primary diagnosis (prefix table keyed by category)
2. The episode's recorded wound type label
3. Keyword heuristics over the free-text diagnosis description (advisory only)

The free-text step is fuzzy and a known source of false negatives; its output is
always marked advisory and never feeds coverage decisions on its own.
"""

import re
from types import MappingProxyType
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field

from woundcore.domain.models import DiabeticStatus, WoundCategory
from woundcore.domain.reference import resolve_location

logger = structlog.get_logger(__name__)

ICD10_CODE = re.compile(r"\b([A-TV-Z]\d{2}(?:\.[0-9A-Z]{1,4})?)\b", re.IGNORECASE)

# Longest prefix wins; L97 is resolved separately because it depends on context.
ICD10_PREFIXES: MappingProxyType[WoundCategory, tuple[str, ...]] = MappingProxyType(
    {
        WoundCategory.DFU: (
            "E08.621",
            "E09.621",
            "E10.621",
            "E11.621",
            "E13.621",
            "E08.62",
            "E09.62",
            "E10.62",
            "E11.62",
            "E13.62",
        ),
        WoundCategory.VLU: ("I83.0", "I83.2", "I87.2", "I87.3"),
        WoundCategory.PRESSURE: ("L89",),
        WoundCategory.ARTERIAL: ("I70.23", "I70.24", "I70.25"),
        WoundCategory.SURGICAL: ("T81.3",),
        WoundCategory.TRAUMATIC: tuple(f"S{n:02d}" for n in range(100))
        + ("T00", "T01", "T07", "T14"),
    }
)

VENOUS_CODES = ("I83", "I87")
DIABETIC_CODES = ("E08", "E09", "E10", "E11", "E13")

WOUND_TYPE_LABELS: MappingProxyType[str, WoundCategory] = MappingProxyType(
    {
        "dfu": WoundCategory.DFU,
        "diabetic foot ulcer": WoundCategory.DFU,
        "diabetic_foot_ulcer": WoundCategory.DFU,
        "vlu": WoundCategory.VLU,
        "venous leg ulcer": WoundCategory.VLU,
        "venous_leg_ulcer": WoundCategory.VLU,
        "venous ulcer": WoundCategory.VLU,
        "pressure ulcer": WoundCategory.PRESSURE,
        "pressure_ulcer": WoundCategory.PRESSURE,
        "pressure injury": WoundCategory.PRESSURE,
        "arterial ulcer": WoundCategory.ARTERIAL,
        "arterial_ulcer": WoundCategory.ARTERIAL,
        "surgical wound": WoundCategory.SURGICAL,
        "surgical_wound": WoundCategory.SURGICAL,
        "surgical dehiscence": WoundCategory.SURGICAL,
        "traumatic wound": WoundCategory.TRAUMATIC,
        "traumatic_wound": WoundCategory.TRAUMATIC,
        "trauma": WoundCategory.TRAUMATIC,
    }
)

# Checked in order; more specific phrases first.
FREE_TEXT_KEYWORDS: tuple[tuple[WoundCategory, tuple[str, ...]], ...] = (
    (WoundCategory.DFU, ("diabetic foot", "diabetic ulcer", "neuropathic ulcer")),
    (WoundCategory.VLU, ("venous", "stasis ulcer", "varicose")),
    (WoundCategory.PRESSURE, ("pressure", "decubitus", "bedsore")),
    (WoundCategory.ARTERIAL, ("arterial", "ischemic", "atherosclero")),
    (WoundCategory.SURGICAL, ("surgical", "dehiscence", "incision")),
    (WoundCategory.TRAUMATIC, ("trauma", "laceration", "abrasion", "injury", "burn")),
)

Source = Literal["icd10", "wound_type", "free_text", "unresolved"]


class WoundClassification(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: WoundCategory | None = None
    source: Source = "unresolved"
    is_advisory: bool = False
    matched: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    rationale: str = ""


def extract_icd10_codes(text: str | None) -> tuple[str, ...]:
    if not text:
        return ()
    return tuple(code.upper() for code in ICD10_CODE.findall(text))


def _match_prefix(code: str) -> tuple[WoundCategory, str] | None:
    best: tuple[WoundCategory, str] | None = None
    for category, prefixes in ICD10_PREFIXES.items():
        for prefix in prefixes:
            if code.startswith(prefix) and (best is None or len(prefix) > len(best[1])):
                best = (category, prefix)
    return best


def _resolve_l97(
    codes: tuple[str, ...], location: str | None, diabetic_status: DiabeticStatus
) -> WoundCategory | None:
    """L97 (non-pressure chronic lower-limb ulcer) needs the surrounding context."""
    if diabetic_status == DiabeticStatus.DIABETIC or any(c.startswith(DIABETIC_CODES) for c in codes):
        return WoundCategory.DFU
    if resolve_location(location) in ("leg", "ankle") and any(
        c.startswith(VENOUS_CODES) for c in codes
    ):
        return WoundCategory.VLU
    return None


def classify_from_icd10(
    primary_diagnosis: str | None,
    location: str | None = None,
    diabetic_status: DiabeticStatus = DiabeticStatus.UNKNOWN,
) -> WoundClassification | None:
    codes = extract_icd10_codes(primary_diagnosis)
    for code in codes:
        hit = _match_prefix(code)
        if hit is not None:
            category, prefix = hit
            exact = code == prefix
            return WoundClassification(
                category=category,
                source="icd10",
                matched=code,
                confidence=0.95 if exact else 0.85,
                rationale=f"ICD-10 {code} maps to {category.value} via prefix {prefix}",
            )
    for code in codes:
        if code.startswith("L97"):
            category = _resolve_l97(codes, location, diabetic_status)
            if category is not None:
                return WoundClassification(
                    category=category,
                    source="icd10",
                    matched=code,
                    confidence=0.8,
                    rationale=f"ICD-10 {code} lower-limb ulcer resolved to {category.value} by context",
                )
    return None


def classify_from_free_text(text: str | None) -> WoundClassification | None:
    if not text:
        return None
    lowered = text.lower()
    for category, keywords in FREE_TEXT_KEYWORDS:
        for keyword in keywords:
            if keyword in lowered:
                return WoundClassification(
                    category=category,
                    source="free_text",
                    is_advisory=True,
                    matched=keyword,
                    confidence=0.4,
                    rationale=(
                        f"Advisory keyword match '{keyword}' in diagnosis description; "
                        "requires clinical confirmation"
                    ),
                )
    return None


def classify_wound(
    wound_type: str | None,
    primary_diagnosis: str | None,
    location: str | None = None,
    diabetic_status: DiabeticStatus = DiabeticStatus.UNKNOWN,
) -> WoundClassification:
    """Resolve the wound category, preferring coded data over free text."""
    result = classify_from_icd10(primary_diagnosis, location, diabetic_status)

    if result is None and wound_type:
        category = WOUND_TYPE_LABELS.get(wound_type.strip().lower())
        if category is not None:
            result = WoundClassification(
                category=category,
                source="wound_type",
                matched=wound_type,
                confidence=0.9,
                rationale=f"Recorded wound type '{wound_type}'",
            )

    if result is None:
        result = classify_from_free_text(primary_diagnosis) or classify_from_free_text(wound_type)

    if result is None:
        result = WoundClassification(rationale="No ICD-10 code, wound type or keyword matched")

    logger.debug(
        "wound_classified",
        category=result.category.value if result.category else None,
        source=result.source,
        is_advisory=result.is_advisory,
    )
    return result
