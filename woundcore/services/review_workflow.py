"""
Clinical review workflow for issued alerts.

States:
    pending_review -> under_review -> acknowledged -> {action_taken | no_action_needed}
    any state -> escalated
    any non-terminal state -> dismissed

Reviews are immutable; every transition returns a new ClinicalReview with the
transition, an audit entry and refreshed compliance flags appended.
"""

import uuid
from datetime import UTC, datetime, timedelta

import structlog

from woundcore.domain.errors import InvalidTransitionError
from woundcore.domain.models import (
    Alert,
    AuditEntry,
    AuditKind,
    ClinicalReview,
    OverrideSeverity,
    ReviewComplianceFlags,
    ReviewDecision,
    ReviewStatus,
    ReviewTransition,
    UrgencyTier,
)

logger = structlog.get_logger(__name__)

RESPONSE_HOURS = {
    UrgencyTier.MINOR_CONCERN: 168,
    UrgencyTier.MODERATE_CONCERN: 72,
    UrgencyTier.URGENT_CLINICAL_REVIEW: 24,
    UrgencyTier.CRITICAL_INTERVENTION: 4,
}
OVERRIDE_RESPONSE_HOURS = {
    OverrideSeverity.SEVERE: 24,
    OverrideSeverity.CRITICAL: 4,
    OverrideSeverity.EMERGENCY: 1,
}

_NON_TERMINAL = (
    ReviewStatus.PENDING_REVIEW,
    ReviewStatus.UNDER_REVIEW,
    ReviewStatus.ACKNOWLEDGED,
    ReviewStatus.ESCALATED,
)

ALLOWED_TRANSITIONS: dict[ReviewStatus, frozenset[ReviewStatus]] = {
    ReviewStatus.PENDING_REVIEW: frozenset({ReviewStatus.UNDER_REVIEW}),
    ReviewStatus.UNDER_REVIEW: frozenset({ReviewStatus.ACKNOWLEDGED}),
    ReviewStatus.ACKNOWLEDGED: frozenset({ReviewStatus.ACTION_TAKEN, ReviewStatus.NO_ACTION_NEEDED}),
    ReviewStatus.ESCALATED: frozenset({ReviewStatus.UNDER_REVIEW, ReviewStatus.ACKNOWLEDGED}),
    ReviewStatus.ACTION_TAKEN: frozenset(),
    ReviewStatus.NO_ACTION_NEEDED: frozenset(),
    ReviewStatus.DISMISSED: frozenset(),
}


def can_transition(current: ReviewStatus, target: ReviewStatus) -> bool:
    if target == ReviewStatus.ESCALATED:
        return True
    if target == ReviewStatus.DISMISSED:
        return current in _NON_TERMINAL
    return target in ALLOWED_TRANSITIONS[current]


def response_window_hours(tier: UrgencyTier, override_severity: OverrideSeverity | None) -> int:
    hours = RESPONSE_HOURS[tier]
    if override_severity is not None:
        hours = min(hours, OVERRIDE_RESPONSE_HOURS[override_severity])
    return hours


def _requires_escalation(alert: Alert) -> bool:
    return alert.urgency_tier == UrgencyTier.CRITICAL_INTERVENTION or (
        alert.override is not None
        and alert.override.severity in (OverrideSeverity.CRITICAL, OverrideSeverity.EMERGENCY)
    )


class ReviewWorkflow:
    """Creates reviews for issued alerts and applies clinician actions to them."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="review_workflow")

    def open_review(
        self, alert: Alert, assigned_clinician: str | None = None, now: datetime | None = None
    ) -> ClinicalReview:
        created_at = now or alert.created_at
        severity = alert.override.severity if alert.override else None
        initial = ReviewStatus.UNDER_REVIEW if assigned_clinician else ReviewStatus.PENDING_REVIEW
        transitions = [
            ReviewTransition(
                from_status=None, to_status=initial, at=created_at, actor=assigned_clinician
            )
        ]
        audit = [AuditEntry(code="review_opened", detail=f"Review opened in {initial.value}")]

        review = self._refresh_flags(
            ClinicalReview(
                review_id=f"review-{uuid.uuid4().hex[:12]}",
                alert_id=alert.id,
                episode_id=alert.episode_id,
                urgency_tier=alert.urgency_tier,
                override_severity=severity,
                status=initial,
                assigned_clinician=assigned_clinician,
                transitions=tuple(transitions),
                audit_trail=tuple(audit),
                created_at=created_at,
                response_due_at=created_at
                + timedelta(hours=response_window_hours(alert.urgency_tier, severity)),
            )
        )

        if _requires_escalation(alert):
            label = severity.value if severity else alert.urgency_tier.value
            review = self._apply(
                review,
                ReviewStatus.ESCALATED,
                created_at,
                actor="system",
                note=f"Automatic escalation for {label} alert",
                audit_code="review_auto_escalated",
            )

        self.logger.info(
            "review_opened",
            review_id=review.review_id,
            alert_id=alert.id,
            status=review.status.value,
            response_due_at=review.response_due_at.isoformat(),
        )
        return review

    def start_review(
        self, review: ClinicalReview, clinician: str, now: datetime | None = None
    ) -> ClinicalReview:
        updated = self._apply(
            review, ReviewStatus.UNDER_REVIEW, now, actor=clinician, note="Clinician review started"
        )
        return self._refresh_flags(updated.model_copy(update={"assigned_clinician": clinician}))

    def acknowledge(
        self, review: ClinicalReview, clinician: str, now: datetime | None = None
    ) -> ClinicalReview:
        at = now or datetime.now(UTC)
        if review.assigned_clinician is None:
            review = review.model_copy(update={"assigned_clinician": clinician})
        updated = self._apply(
            review, ReviewStatus.ACKNOWLEDGED, at, actor=clinician, note="Alert acknowledged"
        )
        return self._refresh_flags(updated.model_copy(update={"acknowledged_at": at}))

    def record_decision(
        self,
        review: ClinicalReview,
        decision: ReviewDecision,
        rationale: str,
        clinician: str,
        now: datetime | None = None,
    ) -> ClinicalReview:
        if not rationale.strip():
            raise ValueError("a clinical decision requires a documented rationale")
        target = (
            ReviewStatus.ACTION_TAKEN
            if decision == ReviewDecision.ACTION_TAKEN
            else ReviewStatus.NO_ACTION_NEEDED
        )
        updated = self._apply(review, target, now, actor=clinician, note=f"Decision: {decision.value}")
        return self._refresh_flags(
            updated.model_copy(update={"decision": decision, "decision_rationale": rationale})
        )

    def escalate(
        self, review: ClinicalReview, reason: str, actor: str, now: datetime | None = None
    ) -> ClinicalReview:
        return self._apply(review, ReviewStatus.ESCALATED, now, actor=actor, note=reason)

    def dismiss(
        self, review: ClinicalReview, reason: str, actor: str, now: datetime | None = None
    ) -> ClinicalReview:
        updated = self._apply(review, ReviewStatus.DISMISSED, now, actor=actor, note=reason)
        return self._refresh_flags(updated.model_copy(update={"decision_rationale": reason}))

    def _apply(
        self,
        review: ClinicalReview,
        target: ReviewStatus,
        now: datetime | None,
        actor: str | None,
        note: str,
        audit_code: str | None = None,
    ) -> ClinicalReview:
        if not can_transition(review.status, target):
            raise InvalidTransitionError(
                f"cannot move review {review.review_id} from {review.status.value} to {target.value}"
            )

        at = now or datetime.now(UTC)
        transition = ReviewTransition(
            from_status=review.status, to_status=target, at=at, actor=actor, note=note
        )
        entry = AuditEntry(
            code=audit_code or f"review_{target.value}",
            detail=f"{review.status.value} -> {target.value}: {note}",
            kind=AuditKind.BUSINESS_OUTCOME if target != ReviewStatus.ESCALATED else AuditKind.INFO,
        )
        update: dict[str, object] = {
            "status": target,
            "transitions": review.transitions + (transition,),
            "audit_trail": review.audit_trail + (entry,),
        }
        if target == ReviewStatus.ESCALATED:
            update["escalation_history"] = review.escalation_history + (transition,)

        self.logger.info(
            "review_transitioned",
            review_id=review.review_id,
            from_status=review.status.value,
            to_status=target.value,
        )
        return self._refresh_flags(review.model_copy(update=update))

    def _refresh_flags(self, review: ClinicalReview) -> ClinicalReview:
        # First clinician response is acknowledgment, or closure for reviews dismissed unacknowledged
        responded_at = review.acknowledged_at
        if responded_at is None and review.is_terminal and review.transitions:
            responded_at = review.transitions[-1].at
        timeline_met = responded_at is None or responded_at <= review.response_due_at

        documented = review.is_terminal and bool(review.decision_rationale)
        needs_escalation = review.urgency_tier == UrgencyTier.CRITICAL_INTERVENTION or (
            review.override_severity in (OverrideSeverity.CRITICAL, OverrideSeverity.EMERGENCY)
        )
        oversight = review.assigned_clinician is not None and (
            not needs_escalation or bool(review.escalation_history)
        )

        flags = ReviewComplianceFlags(
            timeline_met=timeline_met,
            documentation_complete=documented,
            appropriate_oversight=oversight,
        )
        return review.model_copy(update={"compliance_flags": flags})
