"""
Audit/PHI sanitizer applied to every result before it leaves the core.

Strips direct identifiers from free-text audit detail, review notes and rationale:
titled names, emails, phone numbers, SSNs, MRNs, dates of birth, quoted patient
statements, plus any caller-supplied identifiers (patient names, MRNs). Record
identifiers the core generates (episode, alert and review ids) are kept.
"""

import re
from collections.abc import Iterable, Sequence
from typing import Any

import structlog

from woundcore.domain.models import (
    Alert,
    AuditEntry,
    ClinicalReview,
    ComplianceAssessment,
)

logger = structlog.get_logger(__name__)

REDACTED = "[REDACTED]"

# Field names that might contain PHI
PHI_FIELDS = frozenset(
    {
        "patient_mrn",
        "patient_name",
        "patient_id",
        "patient_location",
        "mrn",
        "name",
        "ssn",
        "dob",
        "date_of_birth",
        "address",
        "phone",
        "email",
        "ip_address",
    }
)

_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("email", re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b")),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("phone", re.compile(r"(?<!\d)(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}(?!\d)")),
    ("mrn", re.compile(r"\bMRN\s*[:#]?\s*[A-Z0-9-]{4,}\b", re.IGNORECASE)),
    (
        "dob",
        re.compile(
            r"\b(?:DOB|date of birth)\s*[:#]?\s*\d{1,4}[/-]\d{1,2}[/-]\d{1,4}\b", re.IGNORECASE
        ),
    ),
    (
        "titled_name",
        re.compile(r"\b(?:Mr|Mrs|Ms|Miss|Dr)\.?\s+[A-Z][a-zA-Z'-]+(?:\s+[A-Z][a-zA-Z'-]+)?"),
    ),
    (
        "patient_statement",
        re.compile(r"\b(?:patient|pt)\s+(?:states|reports|said)\s*[:,]?\s*\"[^\"]*\"", re.IGNORECASE),
    ),
)


def _known_identifier_pattern(identifiers: Iterable[str]) -> re.Pattern[str] | None:
    cleaned = sorted({i.strip() for i in identifiers if i and len(i.strip()) >= 2}, key=len, reverse=True)
    if not cleaned:
        return None
    return re.compile("|".join(re.escape(i) for i in cleaned), re.IGNORECASE)


def sanitize_text(text: str, known_identifiers: Sequence[str] = ()) -> str:
    """Replace direct identifiers in `text` with a redaction marker."""
    result = text
    known = _known_identifier_pattern(known_identifiers)
    if known is not None:
        result = known.sub(REDACTED, result)
    for _, pattern in _PATTERNS:
        result = pattern.sub(REDACTED, result)
    return result


def contains_identifiers(text: str, known_identifiers: Sequence[str] = ()) -> bool:
    return sanitize_text(text, known_identifiers) != text


def scrub_phi_fields(data: Any) -> None:
    """Replace PHI field values in a (nested) dict in place."""
    if isinstance(data, list):
        for item in data:
            scrub_phi_fields(item)
        return
    if not isinstance(data, dict):
        return
    for key in list(data.keys()):
        if key.lower() in PHI_FIELDS:
            data[key] = REDACTED
        else:
            scrub_phi_fields(data[key])


def sanitize_audit_trail(
    entries: Sequence[AuditEntry], known_identifiers: Sequence[str] = ()
) -> tuple[AuditEntry, ...]:
    sanitized = []
    redacted = 0
    for entry in entries:
        detail = sanitize_text(entry.detail, known_identifiers)
        if detail != entry.detail:
            redacted += 1
            entry = entry.model_copy(update={"detail": detail})
        sanitized.append(entry)
    if redacted:
        logger.info("audit_trail_sanitized", entries=len(entries), redacted=redacted)
    return tuple(sanitized)


def sanitize_alert(alert: Alert, known_identifiers: Sequence[str] = ()) -> Alert:
    update: dict[str, object] = {
        "audit_trail": sanitize_audit_trail(alert.audit_trail, known_identifiers),
        "cross_validation_flags": tuple(
            sanitize_text(f, known_identifiers) for f in alert.cross_validation_flags
        ),
    }
    if alert.override is not None:
        update["override"] = alert.override.model_copy(
            update={"rationale": sanitize_text(alert.override.rationale, known_identifiers)}
        )
    return alert.model_copy(update=update)


def sanitize_review(review: ClinicalReview, known_identifiers: Sequence[str] = ()) -> ClinicalReview:
    def _notes(transitions):  # type: ignore[no-untyped-def]
        return tuple(
            t.model_copy(update={"note": sanitize_text(t.note, known_identifiers)})
            for t in transitions
        )

    rationale = review.decision_rationale
    return review.model_copy(
        update={
            "audit_trail": sanitize_audit_trail(review.audit_trail, known_identifiers),
            "transitions": _notes(review.transitions),
            "escalation_history": _notes(review.escalation_history),
            "decision_rationale": (
                sanitize_text(rationale, known_identifiers) if rationale is not None else None
            ),
        }
    )


def sanitize_assessment(
    assessment: ComplianceAssessment, known_identifiers: Sequence[str] = ()
) -> ComplianceAssessment:
    return assessment.model_copy(
        update={
            "audit_trail": sanitize_audit_trail(assessment.audit_trail, known_identifiers),
            "regulatory_notes": tuple(
                sanitize_text(n, known_identifiers) for n in assessment.regulatory_notes
            ),
        }
    )
