"""
Core services for wound analytics.

This package contains the measurement pipeline, coverage phase compliance,
progression analysis, graduated alerting and clinical review workflow.
"""

from .alert_engine import AlertEvaluation, GraduatedAlertEngine
from .fatigue import AlertHistoryTracker, FatigueDecision, FatiguePreventer
from .measurement_intake import (
    EncounterMeasurementSource,
    MeasurementSource,
    Result,
    area_observations,
    build_context_profile,
    configure_logging,
    prepare_measurement,
    prepare_series,
)
from .phase_compliance import evaluate_phase_compliance
from .review_workflow import ReviewWorkflow
from .safety_override import SafetyOverrideDecision, evaluate_safety_override
from .wound_monitoring import EpisodeEvaluation, WoundMonitoringService

__all__ = [
    "AlertEvaluation",
    "AlertHistoryTracker",
    "EncounterMeasurementSource",
    "EpisodeEvaluation",
    "FatigueDecision",
    "FatiguePreventer",
    "GraduatedAlertEngine",
    "MeasurementSource",
    "Result",
    "ReviewWorkflow",
    "SafetyOverrideDecision",
    "WoundMonitoringService",
    "area_observations",
    "build_context_profile",
    "configure_logging",
    "evaluate_phase_compliance",
    "evaluate_safety_override",
    "prepare_measurement",
    "prepare_series",
]
