"""
Alert fatigue prevention.

Suppression rules for a proposed alert:
(a) >= 2 unresolved alerts of the same type for the episode within 24 hours
(b) provider's total alerts in 24 hours at or above the daily cap
(c) the same (episode, type) fired twice within the prior 4 hours, both unresolved

Safety-critical alerts (critical_intervention tier, or a critical/emergency override)
always pass. The history tracker is an explicitly constructed instance injected
into the preventer; it is the only mutable state the core owns.
"""

import threading
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import BaseModel, ConfigDict, Field

from woundcore.config import FatigueConfig
from woundcore.domain.errors import FatigueBypassViolation
from woundcore.domain.models import Alert, AlertType

logger = structlog.get_logger(__name__)

HISTORY_RETENTION = timedelta(days=7)
SAME_TYPE_WINDOW = timedelta(hours=24)

RISK_WEIGHTS = {"daily_volume": 0.4, "same_type": 0.4, "volume_trend": 0.2}


@dataclass
class AlertHistoryEntry:
    """One issued alert as seen by the fatigue window."""

    alert_id: str
    provider_id: str
    episode_id: str
    alert_type: AlertType
    issued_at: datetime
    resolved: bool = False


LockKey = tuple[str, str, AlertType]


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class AlertHistoryTracker:
    """
    Rolling per-provider alert history with an exclusive lock per (provider, episode, type).

    A key's lock exists only while some caller holds or waits for it.
    """

    def __init__(self, max_entries_per_provider: int = 1000) -> None:
        self.max_entries_per_provider = max_entries_per_provider
        self._history: dict[str, deque[AlertHistoryEntry]] = {}
        self._key_locks: dict[LockKey, _KeyLock] = {}
        self._master_lock = threading.Lock()
        self.logger = logger.bind(component="alert_history")

    @contextmanager
    def locked(self, provider_id: str, episode_id: str, alert_type: AlertType) -> Iterator[None]:
        """Hold the exclusive lock for one (provider, episode, type) key."""
        key = (provider_id, episode_id, alert_type)
        with self._master_lock:
            slot = self._key_locks.get(key)
            if slot is None:
                slot = self._key_locks[key] = _KeyLock()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._master_lock:
                slot.users -= 1
                if slot.users == 0:
                    del self._key_locks[key]

    def active_lock_count(self) -> int:
        with self._master_lock:
            return len(self._key_locks)

    def _entries(self, provider_id: str) -> deque[AlertHistoryEntry]:
        with self._master_lock:
            entries = self._history.get(provider_id)
            if entries is None:
                entries = deque(maxlen=self.max_entries_per_provider)
                self._history[provider_id] = entries
            return entries

    def record(self, entry: AlertHistoryEntry) -> None:
        entries = self._entries(entry.provider_id)
        with self._master_lock:
            entries.append(entry)
            cutoff = entry.issued_at - HISTORY_RETENTION
            while entries and entries[0].issued_at < cutoff:
                entries.popleft()

    def mark_resolved(self, provider_id: str, alert_id: str) -> bool:
        """Mark an alert resolved; False when the tracker never saw it."""
        entries = self._entries(provider_id)
        with self._master_lock:
            for entry in entries:
                if entry.alert_id == alert_id:
                    entry.resolved = True
                    return True
        return False

    def snapshot(self, provider_id: str) -> list[AlertHistoryEntry]:
        entries = self._entries(provider_id)
        with self._master_lock:
            return list(entries)

    def count_since(self, provider_id: str, since: datetime) -> int:
        return sum(1 for e in self.snapshot(provider_id) if e.issued_at >= since)

    def unresolved_matching(
        self, provider_id: str, episode_id: str, alert_type: AlertType, since: datetime
    ) -> list[AlertHistoryEntry]:
        return [
            e
            for e in self.snapshot(provider_id)
            if e.episode_id == episode_id
            and e.alert_type == alert_type
            and not e.resolved
            and e.issued_at >= since
        ]


class FatigueDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    suppressed_reasons: tuple[str, ...] = ()
    bypassed_suppression: bool = False
    risk_score: float = Field(ge=0.0, le=1.0)


class FatiguePreventer:
    """Decides whether a proposed alert reaches the provider."""

    def __init__(self, tracker: AlertHistoryTracker, config: FatigueConfig | None = None) -> None:
        self.tracker = tracker
        self.config = config or FatigueConfig()
        self.logger = logger.bind(component="fatigue_preventer")

    def risk_score(self, provider_id: str, episode_id: str, alert_type: AlertType, now: datetime) -> float:
        """
        Reporting-only blend of 24h volume, same-type volume and the volume trend.

        The trend compares the last 24 hours with the provider's 7-day daily
        average: 0 when today is at or below the average, 1 once today carries
        at least twice the average (or one alert more, for quiet providers).
        """
        cap = self.config.daily_cap
        total_24h = self.tracker.count_since(provider_id, now - timedelta(hours=24))
        same_24h = len(
            [
                e
                for e in self.tracker.snapshot(provider_id)
                if e.episode_id == episode_id
                and e.alert_type == alert_type
                and e.issued_at >= now - SAME_TYPE_WINDOW
            ]
        )
        daily_average = self.tracker.count_since(provider_id, now - timedelta(days=7)) / 7
        trend = max(0.0, total_24h - daily_average) / max(daily_average, 1.0)

        score = (
            RISK_WEIGHTS["daily_volume"] * min(1.0, total_24h / cap)
            + RISK_WEIGHTS["same_type"] * min(1.0, same_24h / self.config.same_type_limit)
            + RISK_WEIGHTS["volume_trend"] * min(1.0, trend)
        )
        return round(min(1.0, score), 4)

    def _suppression_reasons(self, alert: Alert, provider_id: str, now: datetime) -> list[str]:
        reasons: list[str] = []

        same_type = self.tracker.unresolved_matching(
            provider_id, alert.episode_id, alert.alert_type, now - SAME_TYPE_WINDOW
        )
        if len(same_type) >= self.config.same_type_limit:
            reasons.append(
                f"{len(same_type)} unresolved {alert.alert_type.value} alerts for this episode "
                "within 24 hours"
            )

        total_24h = self.tracker.count_since(provider_id, now - timedelta(hours=24))
        if total_24h >= self.config.daily_cap:
            reasons.append(f"Provider daily alert cap reached: {total_24h} >= {self.config.daily_cap}")

        recent = self.tracker.unresolved_matching(
            provider_id,
            alert.episode_id,
            alert.alert_type,
            now - timedelta(hours=self.config.repeat_window_hours),
        )
        if len(recent) >= 2:
            reasons.append(
                f"Same alert fired {len(recent)} times within {self.config.repeat_window_hours} "
                "hours, all unresolved"
            )
        return reasons

    def evaluate(
        self,
        alert: Alert,
        provider_id: str,
        now: datetime | None = None,
        safety_bypass: bool = False,
    ) -> FatigueDecision:
        """
        Apply suppression rules and record the alert when it is delivered.

        Raises:
            FatigueBypassViolation: when a bypass is requested for an alert that
                is not safety-critical.
        """
        now = now or datetime.now(UTC)
        if safety_bypass and not alert.is_safety_critical:
            raise FatigueBypassViolation(
                "fatigue_bypass_not_authorized",
                f"bypass requested for {alert.urgency_tier.value} alert {alert.id}",
            )

        with self.tracker.locked(provider_id, alert.episode_id, alert.alert_type):
            risk = self.risk_score(provider_id, alert.episode_id, alert.alert_type, now)
            reasons = self._suppression_reasons(alert, provider_id, now)
            bypassed = bool(reasons) and alert.is_safety_critical
            allowed = not reasons or bypassed

            if allowed:
                self.tracker.record(
                    AlertHistoryEntry(
                        alert_id=alert.id,
                        provider_id=provider_id,
                        episode_id=alert.episode_id,
                        alert_type=alert.alert_type,
                        issued_at=now,
                    )
                )

        if bypassed:
            self.logger.warning(
                "alert_suppression_bypassed",
                alert_id=alert.id,
                tier=alert.urgency_tier.value,
                reasons=len(reasons),
            )
        elif not allowed:
            self.logger.info(
                "alert_suppressed",
                alert_id=alert.id,
                episode_id=alert.episode_id,
                alert_type=alert.alert_type.value,
                reasons=len(reasons),
            )

        return FatigueDecision(
            allowed=allowed,
            suppressed_reasons=tuple(reasons),
            bypassed_suppression=bypassed,
            risk_score=risk,
        )
