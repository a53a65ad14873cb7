"""
Episode evaluation service that runs the complete wound analytics pipeline.

Pipeline for one episode:
1. Collect and normalize measurements (units, geometry, plausibility)
2. Score measurement quality and statistical confidence
3. Evaluate coverage phase compliance on the area-only projection
4. Analyze depth/volume progression
5. Scan for acute deterioration (safety override)
6. Run the graduated alert engine
7. Apply alert fatigue prevention
8. Open a clinical review for a delivered alert
9. Sanitize every audit trail before returning

Architecture pattern: each step is a pure function of the previous steps' outputs;
the only shared state is the injected alert history tracker.
"""

from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict

from woundcore.config import AppConfig, get_config
from woundcore.domain.models import (
    COVERAGE_DISCLAIMER,
    Alert,
    AuditEntry,
    AuditKind,
    ClinicalContextProfile,
    ClinicalReview,
    ComplianceAssessment,
    EncounterRecord,
    EpisodeRecord,
    NormalizedMeasurement,
    ProgressionMetrics,
    QualityAssessment,
    TreatmentPhase,
    UrgencyTier,
    ensure_utc,
)
from woundcore.services.alert_engine import GraduatedAlertEngine
from woundcore.services.fatigue import AlertHistoryTracker, FatigueDecision, FatiguePreventer
from woundcore.services.measurement_intake import (
    EncounterMeasurementSource,
    MeasurementSource,
    PreparedSeries,
    area_observations,
    build_context_profile,
    configure_logging,
    prepare_series,
)
from woundcore.services.phase_compliance import evaluate_phase_compliance
from woundcore.services.progression import analyze_progression
from woundcore.services.quality import assess_quality
from woundcore.services.review_workflow import ReviewWorkflow
from woundcore.services.safety_override import SafetyOverrideDecision, evaluate_safety_override
from woundcore.services.sanitizer import (
    sanitize_alert,
    sanitize_assessment,
    sanitize_audit_trail,
    sanitize_review,
)

logger = structlog.get_logger(__name__)


class EpisodeEvaluation(BaseModel):
    """Everything one evaluation produced, already sanitized for the boundary."""

    model_config = ConfigDict(frozen=True)

    episode_id: str
    evaluated_at: datetime
    phase: TreatmentPhase
    measurement_count: int
    compliance: ComplianceAssessment
    depth_quality: QualityAssessment
    area_quality: QualityAssessment
    progression: ProgressionMetrics
    safety_override: SafetyOverrideDecision
    breached_tiers: tuple[UrgencyTier, ...] = ()
    alert: Alert | None = None
    fatigue: FatigueDecision | None = None
    alert_delivered: bool = False
    review: ClinicalReview | None = None
    audit_trail: tuple[AuditEntry, ...] = ()
    coverage_disclaimer: str = COVERAGE_DISCLAIMER


class WoundMonitoringService:
    """
    Orchestrates per-episode evaluation.

    Evaluations for different episodes share nothing but the alert history
    tracker, which serializes its own updates per (provider, episode, type).
    """

    def __init__(
        self, config: AppConfig | None = None, tracker: AlertHistoryTracker | None = None
    ) -> None:
        self.config = config or get_config()
        self.logger = logger.bind(component="wound_monitoring")

        # Initialize subsystems
        self._init_logging()
        self._init_alerting(tracker)
        self._init_reviews()

    def _init_logging(self) -> None:
        configure_logging(self.config.logging)

    def _init_alerting(self, tracker: AlertHistoryTracker | None) -> None:
        """Initialize alert engine and fatigue prevention."""
        self.alert_engine = GraduatedAlertEngine(
            expected_interval_days=self.config.analysis.expected_measurement_interval_days,
            minimum_observation_days=self.config.analysis.minimum_observation_days,
        )
        self.tracker = tracker or AlertHistoryTracker()
        self.fatigue = FatiguePreventer(self.tracker, self.config.fatigue)
        self.logger.info("alerting_initialized", daily_cap=self.config.fatigue.daily_cap)

    def _init_reviews(self) -> None:
        self.reviews = ReviewWorkflow()
        self.logger.info("review_workflow_initialized")

    def mark_alert_resolved(self, provider_id: str, alert_id: str) -> bool:
        return self.tracker.mark_resolved(provider_id, alert_id)

    def evaluate_episode(
        self,
        episode: EpisodeRecord,
        encounters: Sequence[EncounterRecord],
        context: ClinicalContextProfile | None = None,
        provider_id: str = "unassigned",
        phase: TreatmentPhase | None = None,
        as_of: datetime | None = None,
        assigned_clinician: str | None = None,
        known_identifiers: Sequence[str] = (),
        source: MeasurementSource | None = None,
    ) -> EpisodeEvaluation:
        """
        Evaluate one episode end to end.

        Args:
            episode: episode record from storage
            encounters: the episode's encounter records
            context: pre-built clinical context; derived from the records when omitted
            provider_id: provider whose alert volume drives fatigue suppression
            phase: treatment phase to evaluate; inferred from the product start date when omitted
            as_of: evaluation instant; measurements after it are ignored
            assigned_clinician: clinician assigned to any review opened
            known_identifiers: patient names/MRNs to strip from returned text
            source: measurement source; defaults to the encounter measurements

        Returns:
            EpisodeEvaluation with sanitized audit text.
        """
        evaluated_at = ensure_utc(as_of) if as_of is not None else datetime.now(UTC)
        context = context or build_context_profile(episode, encounters)
        phase = phase or self._infer_phase(episode, evaluated_at)
        audit: list[AuditEntry] = []

        self.logger.info("episode_evaluation_starting", episode_id=episode.id, phase=phase.value)

        # Step 1: Collect and normalize
        prepared = self._collect(episode, encounters, source, audit)
        measurements = [m for m in prepared.measurements if m.timestamp <= evaluated_at]

        # Step 2: Quality
        depth_quality = assess_quality(
            measurements,
            "depth",
            self.config.analysis.expected_measurement_interval_days,
            self.config.analysis.minimum_observation_days,
        )
        area_quality = assess_quality(
            measurements,
            "area",
            self.config.analysis.expected_measurement_interval_days,
            self.config.analysis.minimum_observation_days,
        )

        # Step 3: Coverage compliance sees only {timestamp, area}
        compliance = evaluate_phase_compliance(
            area_observations(self._phase_slice(measurements, episode, phase)),
            phase,
            product_start_date=episode.product_start_date,
            policy=self.config.coverage.to_policy(),
            episode_id=episode.id,
        )

        # Steps 4-6: Progression, override, graduated alerts
        progression = analyze_progression(measurements, context.anatomical_location, depth_quality)
        override = evaluate_safety_override(measurements, context)
        evaluation = self.alert_engine.evaluate(
            episode.id,
            measurements,
            context,
            override=override,
            depth_quality=depth_quality,
            now=evaluated_at,
        )
        audit.extend(evaluation.audit_trail)

        # Steps 7-8: Fatigue and review
        alert = evaluation.alert
        fatigue = None
        review = None
        delivered = False
        if alert is not None:
            fatigue = self.fatigue.evaluate(alert, provider_id, now=evaluated_at)
            delivered = fatigue.allowed
            if delivered:
                review = self.reviews.open_review(alert, assigned_clinician, now=evaluated_at)
            else:
                audit.append(
                    AuditEntry(
                        code="alert_suppressed",
                        detail="; ".join(fatigue.suppressed_reasons),
                        kind=AuditKind.BUSINESS_OUTCOME,
                    )
                )

        # Step 9: Sanitize at the boundary
        result = EpisodeEvaluation(
            episode_id=episode.id,
            evaluated_at=evaluated_at,
            phase=phase,
            measurement_count=len(measurements),
            compliance=sanitize_assessment(compliance, known_identifiers),
            depth_quality=depth_quality,
            area_quality=area_quality,
            progression=progression,
            safety_override=override.model_copy(
                update={
                    "audit_trail": sanitize_audit_trail(override.audit_trail, known_identifiers)
                }
            ),
            breached_tiers=evaluation.breached_tiers,
            alert=sanitize_alert(alert, known_identifiers) if alert is not None else None,
            fatigue=fatigue,
            alert_delivered=delivered,
            review=sanitize_review(review, known_identifiers) if review is not None else None,
            audit_trail=sanitize_audit_trail(audit, known_identifiers),
        )

        self.logger.info(
            "episode_evaluation_completed",
            episode_id=episode.id,
            compliance=compliance.overall_compliance.value,
            depth_trend=progression.depth_trend.value,
            alert_tier=alert.urgency_tier.value if alert else None,
            alert_delivered=delivered,
        )
        return result

    def _collect(
        self,
        episode: EpisodeRecord,
        encounters: Sequence[EncounterRecord],
        source: MeasurementSource | None,
        audit: list[AuditEntry],
    ) -> PreparedSeries:
        source = source or EncounterMeasurementSource(episode, encounters)
        batch_result = source.collect_measurements()
        if batch_result.is_err():
            self.logger.warning(
                "no_measurements_collected",
                episode_id=episode.id,
                source=source.source_name,
            )
            audit.append(
                AuditEntry(
                    code="no_measurements_collected",
                    detail=str(batch_result.unwrap_err()),
                    kind=AuditKind.INPUT_ERROR,
                )
            )
            return PreparedSeries(episode_id=episode.id)

        batch = batch_result.unwrap()
        audit.extend(batch.audit_trail)
        prepared = prepare_series(batch.series, episode.wound_location)
        audit.extend(prepared.audit_trail)
        return prepared

    @staticmethod
    def _infer_phase(episode: EpisodeRecord, at: datetime) -> TreatmentPhase:
        if episode.product_start_date is not None and episode.product_start_date <= at:
            return TreatmentPhase.POST_PRODUCT
        return TreatmentPhase.PRE_PRODUCT

    @staticmethod
    def _phase_slice(
        measurements: Sequence[NormalizedMeasurement], episode: EpisodeRecord, phase: TreatmentPhase
    ) -> list[NormalizedMeasurement]:
        """Pre-product evaluation covers standard care only, before the first application."""
        if phase == TreatmentPhase.PRE_PRODUCT and episode.product_start_date is not None:
            return [m for m in measurements if m.timestamp < episode.product_start_date]
        return list(measurements)
