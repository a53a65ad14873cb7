"""
Immutable clinical reference data.

Key contents:
- Anatomical tissue-thickness references keyed by location
- Absolute wound-dimension bounds used for plausibility screening
- Evidence citations justifying every alert threshold
- Graduated alert thresholds and quality-gate requirements per urgency tier
- Default coverage policy (CMS LCD L39806)

Nothing here is configurable at runtime; changing a threshold means changing the
evidence it cites.
"""

from datetime import date
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from woundcore.domain.models import (
    CoveragePolicy,
    EvidenceReference,
    PolicyMetadata,
    UrgencyTier,
)


class TissueReference(BaseModel):
    """Soft-tissue thickness (mm) expected at an anatomical location."""

    model_config = ConfigDict(frozen=True)

    min_mm: float = Field(gt=0.0)
    max_mm: float = Field(gt=0.0)
    typical_mm: float = Field(gt=0.0)
    source: str = Field(min_length=10)
    location_factors: tuple[str, ...] = ()


TISSUE_THICKNESS: MappingProxyType[str, TissueReference] = MappingProxyType(
    {
        "foot": TissueReference(
            min_mm=15.0,
            max_mm=25.0,
            typical_mm=20.0,
            source="Diabetic foot anatomy studies",
            location_factors=(
                "Weight-bearing location: pressure redistribution affects depth",
                "Diabetic foot considerations: reduced plantar soft-tissue padding",
            ),
        ),
        "heel": TissueReference(
            min_mm=14.0,
            max_mm=24.0,
            typical_mm=18.0,
            source="Heel pad thickness literature",
            location_factors=(
                "Weight-bearing location: heel pad compresses under load",
                "High pressure-injury risk over calcaneus",
            ),
        ),
        "toe": TissueReference(
            min_mm=5.0,
            max_mm=12.0,
            typical_mm=8.0,
            source="Digital soft-tissue anatomy references",
            location_factors=("Thin soft tissue over phalanges: early bone exposure risk",),
        ),
        "leg": TissueReference(
            min_mm=10.0,
            max_mm=20.0,
            typical_mm=15.0,
            source="Lower-extremity soft-tissue ultrasound studies",
            location_factors=("Venous ulcer predilection in gaiter area",),
        ),
        "ankle": TissueReference(
            min_mm=6.0,
            max_mm=14.0,
            typical_mm=10.0,
            source="Malleolar soft-tissue anatomy references",
            location_factors=("Bony prominence: limited subcutaneous tissue over malleoli",),
        ),
        "default": TissueReference(
            min_mm=10.0,
            max_mm=20.0,
            typical_mm=15.0,
            source="General soft-tissue thickness references",
        ),
    }
)

# Checked in order: more specific sites first ("heel of left foot" is a heel).
_LOCATION_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("heel", ("heel", "calcane")),
    ("toe", ("toe", "hallux", "digit", "phalan")),
    ("ankle", ("ankle", "malleol")),
    ("foot", ("foot", "plantar", "metatars", "forefoot", "midfoot", "dorsal")),
    ("leg", ("leg", "calf", "shin", "tibia", "gaiter", "pretibial")),
)


def resolve_location(location: str | None) -> str:
    """Map a free-text anatomical location to a tissue-reference key."""
    if not location:
        return "default"
    text = location.strip().lower()
    for key, keywords in _LOCATION_KEYWORDS:
        if any(word in text for word in keywords):
            return key
    return "default"


def tissue_reference(location: str | None) -> TissueReference:
    return TISSUE_THICKNESS[resolve_location(location)]


# Absolute bounds for plausibility screening
MAX_LINEAR_CM = 40.0
MAX_AREA_CM2 = 1000.0
MAX_VOLUME_CM3 = 500.0
MIN_MEASURABLE_DEPTH_MM = 0.5
IMPLAUSIBLE_DEPTH_FACTOR = 1.5
EXTREME_ASPECT_RATIO = 10.0


EVIDENCE: MappingProxyType[str, EvidenceReference] = MappingProxyType(
    {
        "iwgdf_2023": EvidenceReference(
            key="iwgdf_2023",
            source="International Working Group on the Diabetic Foot (IWGDF)",
            finding="Depth progression is an early marker of diabetic foot ulcer deterioration",
            evidence_grade="Strong recommendation, moderate certainty",
            year=2023,
            recommendation=(
                "Reassess the treatment plan when ulcer depth increases by 2mm over 2-week period"
            ),
        ),
        "whs_2023": EvidenceReference(
            key="whs_2023",
            source="Wound Healing Society (WHS)",
            finding="Failure to progress toward closure within 4 weeks warrants re-evaluation",
            evidence_grade="Level I",
            year=2023,
            recommendation="Escalate care when wound dimensions worsen across consecutive visits",
        ),
        "depth_outcomes": EvidenceReference(
            key="depth_outcomes",
            source="Chronic wound depth progression outcomes study",
            finding="Sustained weekly depth increase predicts non-healing and amputation risk",
            evidence_grade="Cohort study",
            year=2021,
            pmid="PMID: 33844426",
        ),
        "volume_outcomes": EvidenceReference(
            key="volume_outcomes",
            source="Wound volume change and healing trajectory study",
            finding="Volume expansion of 50% or more within two weeks signals acute deterioration",
            evidence_grade="Cohort study",
            year=2020,
            pmid="PMID: 32418335",
        ),
        "lcd_l39806": EvidenceReference(
            key="lcd_l39806",
            source="Local Coverage Determination (LCD) L39806",
            finding="Coverage of skin substitutes depends on documented area reduction only",
            evidence_grade="Regulatory",
            year=2024,
        ),
    }
)


class TierThresholds(BaseModel):
    """Progression thresholds that place a finding in an urgency tier."""

    model_config = ConfigDict(frozen=True)

    tier: UrgencyTier
    depth_rate_mm_per_week: float = Field(gt=0.0)
    absolute_depth_mm: float = Field(gt=0.0)
    volume_increase_pct: float = Field(gt=0.0)
    timeframe_days: int = Field(gt=0)
    evidence_keys: tuple[str, ...] = ()


class GateRequirement(BaseModel):
    """Measurement-quality gate an alert of a tier must pass."""

    model_config = ConfigDict(frozen=True)

    tier: UrgencyTier
    min_measurements: int = Field(ge=1)
    min_quality: float = Field(ge=0.0, le=1.0)
    min_confidence: float = Field(ge=0.0, le=1.0)
    min_consecutive_intervals: int = Field(default=0, ge=0)


TIER_THRESHOLDS: MappingProxyType[UrgencyTier, TierThresholds] = MappingProxyType(
    {
        UrgencyTier.MINOR_CONCERN: TierThresholds(
            tier=UrgencyTier.MINOR_CONCERN,
            depth_rate_mm_per_week=0.5,
            absolute_depth_mm=1.0,
            volume_increase_pct=20.0,
            timeframe_days=28,
            evidence_keys=("whs_2023",),
        ),
        UrgencyTier.MODERATE_CONCERN: TierThresholds(
            tier=UrgencyTier.MODERATE_CONCERN,
            depth_rate_mm_per_week=1.0,
            absolute_depth_mm=2.0,
            volume_increase_pct=35.0,
            timeframe_days=14,
            evidence_keys=("iwgdf_2023", "whs_2023"),
        ),
        UrgencyTier.URGENT_CLINICAL_REVIEW: TierThresholds(
            tier=UrgencyTier.URGENT_CLINICAL_REVIEW,
            depth_rate_mm_per_week=1.5,
            absolute_depth_mm=3.0,
            volume_increase_pct=35.0,
            timeframe_days=14,
            evidence_keys=("iwgdf_2023", "depth_outcomes"),
        ),
        UrgencyTier.CRITICAL_INTERVENTION: TierThresholds(
            tier=UrgencyTier.CRITICAL_INTERVENTION,
            depth_rate_mm_per_week=2.0,
            absolute_depth_mm=5.0,
            volume_increase_pct=50.0,
            timeframe_days=14,
            evidence_keys=("depth_outcomes", "volume_outcomes"),
        ),
    }
)

GATE_REQUIREMENTS: MappingProxyType[UrgencyTier, GateRequirement] = MappingProxyType(
    {
        UrgencyTier.MINOR_CONCERN: GateRequirement(
            tier=UrgencyTier.MINOR_CONCERN, min_measurements=2, min_quality=0.5, min_confidence=0.4
        ),
        UrgencyTier.MODERATE_CONCERN: GateRequirement(
            tier=UrgencyTier.MODERATE_CONCERN,
            min_measurements=3,
            min_quality=0.6,
            min_confidence=0.5,
        ),
        UrgencyTier.URGENT_CLINICAL_REVIEW: GateRequirement(
            tier=UrgencyTier.URGENT_CLINICAL_REVIEW,
            min_measurements=3,
            min_quality=0.70,
            min_confidence=0.60,
        ),
        UrgencyTier.CRITICAL_INTERVENTION: GateRequirement(
            tier=UrgencyTier.CRITICAL_INTERVENTION,
            min_measurements=4,
            min_quality=0.80,
            min_confidence=0.75,
            min_consecutive_intervals=2,
        ),
    }
)

# Safety override signatures
RAPID_DEPTH_INCREASE_MM = 5.0
RAPID_DEPTH_WINDOW_DAYS = 7
SEVERE_DEPTH_CHANGE_MM = 3.0
SEVERE_VOLUME_EXPANSION_PCT = 50.0
SEVERE_VOLUME_WINDOW_DAYS = 14
MIN_CONCURRENT_INFECTION_INDICATORS = 2
HIGH_PAIN_SCORE = 8

L39806_METADATA = PolicyMetadata(
    policy_id="L39806",
    title="Skin Substitute Grafts/Cellular and Tissue-Based Products for the Treatment of "
    "Diabetic Foot Ulcers and Venous Leg Ulcers",
    jurisdiction="Palmetto GBA Jurisdiction J",
    effective_date=date(2024, 9, 15),
    last_updated=date(2024, 9, 15),
)

DEFAULT_COVERAGE_POLICY = CoveragePolicy(metadata=L39806_METADATA)
