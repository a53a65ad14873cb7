"""
Tests for alert fatigue prevention in `woundcore/services/fatigue.py`.

Covers:
- Same-type unresolved suppression and its reset on resolution
- Provider daily cap
- Safety-critical alerts always reaching the provider
- Bypass requests for non-critical alerts failing fast
- Concurrent evaluations against one history tracker
- Per-key locks released once no caller holds them
- Risk score volume trend against the weekly average
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from woundcore.config import FatigueConfig
from woundcore.domain.errors import FatigueBypassViolation
from woundcore.domain.models import (
    Alert,
    AlertType,
    ConfidenceMetrics,
    OverrideRecord,
    OverrideSeverity,
    QualityGrade,
    UrgencyTier,
)
from woundcore.services.fatigue import AlertHistoryEntry, AlertHistoryTracker, FatiguePreventer


def _alert(
    alert_id: str,
    at: datetime,
    tier: UrgencyTier = UrgencyTier.URGENT_CLINICAL_REVIEW,
    episode_id: str = "ep-1",
    override: OverrideRecord | None = None,
) -> Alert:
    return Alert(
        id=alert_id,
        episode_id=episode_id,
        alert_type=AlertType.DEPTH_INCREASE,
        urgency_tier=tier,
        confidence_metrics=ConfidenceMetrics(
            confidence=0.8,
            adjusted_confidence=0.8,
            quality_score=0.8,
            quality_grade=QualityGrade.B,
            measurement_count=4,
            consecutive_intervals=2,
        ),
        created_at=at,
        override=override,
    )


@pytest.fixture
def preventer() -> FatiguePreventer:
    return FatiguePreventer(AlertHistoryTracker())


class TestSameTypeSuppression:
    def test_third_unresolved_alert_is_suppressed(
        self, preventer: FatiguePreventer, start: datetime
    ) -> None:
        first = preventer.evaluate(_alert("a1", start), "prov-1", now=start)
        second = preventer.evaluate(
            _alert("a2", start), "prov-1", now=start + timedelta(hours=1)
        )
        third = preventer.evaluate(
            _alert("a3", start), "prov-1", now=start + timedelta(hours=2)
        )

        assert first.allowed and second.allowed
        assert not third.allowed
        assert any("unresolved" in r for r in third.suppressed_reasons)
        assert third.risk_score > first.risk_score

    def test_resolving_an_alert_reopens_delivery(
        self, preventer: FatiguePreventer, start: datetime
    ) -> None:
        preventer.evaluate(_alert("a1", start), "prov-1", now=start)
        preventer.evaluate(_alert("a2", start), "prov-1", now=start)

        assert preventer.tracker.mark_resolved("prov-1", "a1")
        decision = preventer.evaluate(_alert("a3", start), "prov-1", now=start)
        assert decision.allowed

    def test_unknown_alert_cannot_be_resolved(self, preventer: FatiguePreventer) -> None:
        assert not preventer.tracker.mark_resolved("prov-1", "missing")

    def test_same_type_window_expires_after_24_hours(
        self, preventer: FatiguePreventer, start: datetime
    ) -> None:
        preventer.evaluate(_alert("a1", start), "prov-1", now=start)
        preventer.evaluate(_alert("a2", start), "prov-1", now=start)
        later = start + timedelta(hours=25)
        assert preventer.evaluate(_alert("a3", later), "prov-1", now=later).allowed


class TestDailyCap:
    def test_cap_applies_across_episodes(self, start: datetime) -> None:
        preventer = FatiguePreventer(AlertHistoryTracker(), FatigueConfig(daily_cap=3))
        decisions = [
            preventer.evaluate(
                _alert(f"a{i}", start, episode_id=f"ep-{i}"), "prov-1", now=start + timedelta(minutes=i)
            )
            for i in range(4)
        ]
        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert "daily alert cap" in decisions[-1].suppressed_reasons[0]

    def test_other_providers_are_unaffected(self, start: datetime) -> None:
        preventer = FatiguePreventer(AlertHistoryTracker(), FatigueConfig(daily_cap=1))
        preventer.evaluate(_alert("a1", start), "prov-1", now=start)
        assert preventer.evaluate(_alert("a2", start), "prov-2", now=start).allowed


class TestSafetyCriticalBypass:
    def test_critical_tier_passes_suppression(
        self, preventer: FatiguePreventer, start: datetime
    ) -> None:
        for i in range(2):
            preventer.evaluate(_alert(f"a{i}", start), "prov-1", now=start)

        decision = preventer.evaluate(
            _alert("crit", start, tier=UrgencyTier.CRITICAL_INTERVENTION), "prov-1", now=start
        )
        assert decision.allowed
        assert decision.bypassed_suppression
        assert decision.suppressed_reasons

    def test_emergency_override_counts_as_safety_critical(
        self, preventer: FatiguePreventer, start: datetime
    ) -> None:
        override = OverrideRecord(
            severity=OverrideSeverity.EMERGENCY,
            escalation_hours=1,
            signatures=("rapid_depth_increase", "severe_infection"),
            rationale="Emergency deterioration",
        )
        alert = _alert("em", start, tier=UrgencyTier.MODERATE_CONCERN, override=override)
        assert preventer.evaluate(alert, "prov-1", now=start, safety_bypass=True).allowed

    def test_bypass_for_non_critical_alert_raises(
        self, preventer: FatiguePreventer, start: datetime
    ) -> None:
        with pytest.raises(FatigueBypassViolation, match="fatigue_bypass_not_authorized"):
            preventer.evaluate(_alert("a1", start), "prov-1", now=start, safety_bypass=True)


class TestAlertHistoryTracker:
    def test_entries_older_than_retention_are_dropped(self, start: datetime) -> None:
        tracker = AlertHistoryTracker()
        for offset, alert_id in ((0, "old"), (8, "new")):
            tracker.record(
                AlertHistoryEntry(
                    alert_id=alert_id,
                    provider_id="prov-1",
                    episode_id="ep-1",
                    alert_type=AlertType.DEPTH_INCREASE,
                    issued_at=start + timedelta(days=offset),
                )
            )
        assert [e.alert_id for e in tracker.snapshot("prov-1")] == ["new"]

    def test_concurrent_evaluations_never_exceed_limit(self, start: datetime) -> None:
        preventer = FatiguePreventer(AlertHistoryTracker())

        def _submit(i: int) -> bool:
            return preventer.evaluate(_alert(f"a{i}", start), "prov-1", now=start).allowed

        with ThreadPoolExecutor(max_workers=8) as pool:
            allowed = list(pool.map(_submit, range(20)))

        assert sum(allowed) == 2
        assert len(preventer.tracker.snapshot("prov-1")) == 2

    def test_lock_table_shrinks_once_keys_are_released(self, start: datetime) -> None:
        preventer = FatiguePreventer(AlertHistoryTracker())

        def _submit(i: int) -> bool:
            alert = _alert(f"a{i}", start, episode_id=f"ep-{i % 5}")
            return preventer.evaluate(alert, "prov-1", now=start).allowed

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(_submit, range(50)))

        assert preventer.tracker.active_lock_count() == 0

    def test_held_key_keeps_its_lock(self) -> None:
        tracker = AlertHistoryTracker()
        with tracker.locked("prov-1", "ep-1", AlertType.DEPTH_INCREASE):
            assert tracker.active_lock_count() == 1
        assert tracker.active_lock_count() == 0


class TestRiskScore:
    @staticmethod
    def _history(tracker: AlertHistoryTracker, issued: list[datetime]) -> None:
        for i, at in enumerate(issued):
            tracker.record(
                AlertHistoryEntry(
                    alert_id=f"h{i}",
                    provider_id="prov-1",
                    episode_id="ep-other",
                    alert_type=AlertType.VOLUME_EXPANSION,
                    issued_at=at,
                )
            )

    def test_spike_over_a_quiet_week_scores_higher_than_a_steady_busy_week(
        self, start: datetime
    ) -> None:
        now = start + timedelta(days=10)
        quiet = AlertHistoryTracker()
        self._history(quiet, [now - timedelta(hours=1)])
        busy = AlertHistoryTracker()
        self._history(
            busy,
            [now - timedelta(days=day, hours=1) for day in range(6, 0, -1) for _ in range(3)]
            + [now - timedelta(hours=1)],
        )

        quiet_score = FatiguePreventer(quiet).risk_score(
            "prov-1", "ep-1", AlertType.DEPTH_INCREASE, now
        )
        busy_score = FatiguePreventer(busy).risk_score(
            "prov-1", "ep-1", AlertType.DEPTH_INCREASE, now
        )

        # Same 24-hour volume; only the quiet provider's volume is rising
        assert busy_score == pytest.approx(0.04)
        assert quiet_score > busy_score

    def test_empty_history_scores_zero(self, start: datetime) -> None:
        preventer = FatiguePreventer(AlertHistoryTracker())
        assert preventer.risk_score("prov-1", "ep-1", AlertType.DEPTH_INCREASE, start) == 0.0
