"""
Alert generation for detected flow patterns.

Turns qualifying patterns into alerts, applying severity classification,
composite risk scoring, per-address rate limits and deduplication against
alerts issued within the deduplication window.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence
from uuid import uuid4

from chainwatch.laundering import scoring
from chainwatch.laundering.types import (
    AddressRiskProfile,
    AddressRole,
    AlertAddress,
    AlertSeverity,
    FlowPattern,
    MoneyLaunderingAlert,
    PatternType,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _default_thresholds() -> dict[AlertSeverity, float]:
    return {
        AlertSeverity.LOW: 0.7,
        AlertSeverity.MEDIUM: 0.8,
        AlertSeverity.HIGH: 0.9,
        AlertSeverity.CRITICAL: 0.95,
    }


@dataclass
class AlertConfig:
    """Configuration for alert generation."""

    min_severity_score: float = 0.7
    max_alerts_per_address: int = 10
    deduplication_window: int = 24 * 60 * 60 * 1000  # millis
    notification_threshold: dict[AlertSeverity, float] = field(
        default_factory=_default_thresholds
    )

    def __post_init__(self):
        thresholds = _default_thresholds()
        for key, value in self.notification_threshold.items():
            thresholds[AlertSeverity(key)] = value
        self.notification_threshold = thresholds


# Score floors for each severity, highest first
SEVERITY_THRESHOLDS = [
    (0.95, AlertSeverity.CRITICAL),
    (0.90, AlertSeverity.HIGH),
    (0.80, AlertSeverity.MEDIUM),
]

PATTERN_LABELS = {
    PatternType.LAYERING: "layering",
    PatternType.STRUCTURING: "structuring",
    PatternType.MIXING: "mixing",
    PatternType.SMURFING: "smurfing",
    PatternType.CYCLING: "cycling",
}


class AlertGenerator:
    """
    Generate alerts from flow patterns.

    Holds the live alert set for the deduplication window. All state is
    guarded by a single lock, so concurrent callers are serialized.
    """

    def __init__(
        self,
        config: Optional[AlertConfig] = None,
        clock: Optional[Clock] = None,
        value_weight: Callable[[int], float] = scoring.value_weight,
        time_weight: Callable[[int], float] = scoring.time_weight,
    ):
        self.config = config or AlertConfig()
        self._clock = clock or _now_ms
        self._value_weight = value_weight
        self._time_weight = time_weight
        self._alerts: dict[str, MoneyLaunderingAlert] = {}
        self._last_cleanup = self._clock()
        self._lock = threading.Lock()

    def generate_alerts(
        self,
        patterns: Sequence[FlowPattern],
        profiles: Sequence[AddressRiskProfile],
    ) -> list[MoneyLaunderingAlert]:
        """
        Generate alerts for patterns, in order.

        Args:
            patterns: Patterns that passed detection
            profiles: Risk profiles of the analyzed addresses

        Returns:
            Newly accepted alerts (also added to the live set)
        """
        by_address = {p.address: p for p in profiles}
        new_alerts = []

        with self._lock:
            for pattern in patterns:
                self._cleanup_if_due()

                alert = self._evaluate(pattern, by_address)
                if alert is None:
                    continue

                new_alerts.append(alert)
                self._alerts[alert.id] = alert
                logger.info(
                    f"Generated {alert.severity.value} {pattern.type.value} alert "
                    f"{alert.id} (risk {alert.risk_score:.2f})"
                )

        return new_alerts

    def _evaluate(
        self,
        pattern: FlowPattern,
        profiles: dict[str, AddressRiskProfile],
    ) -> Optional[MoneyLaunderingAlert]:
        severity = self.calculate_severity(pattern.score)
        risk_score = self.calculate_risk_score(pattern, profiles)

        if risk_score < self.config.notification_threshold[severity]:
            logger.debug(
                f"{pattern.type.value}: risk {risk_score:.2f} below "
                f"{severity.value} threshold"
            )
            return None
        if risk_score < self.config.min_severity_score:
            logger.debug(f"{pattern.type.value}: risk {risk_score:.2f} below minimum")
            return None

        capped = [
            a for a in pattern.participants
            if self._count_address_alerts(a) >= self.config.max_alerts_per_address
        ]
        if capped:
            logger.debug(f"{pattern.type.value}: alert cap reached for {capped}")
            return None

        alert = self._create_alert(pattern, profiles, severity, risk_score)
        if self._is_duplicate(alert):
            logger.debug(f"{pattern.type.value}: duplicate of a live alert, skipping")
            return None
        return alert

    def _create_alert(
        self,
        pattern: FlowPattern,
        profiles: dict[str, AddressRiskProfile],
        severity: AlertSeverity,
        risk_score: float,
    ) -> MoneyLaunderingAlert:
        now = self._clock()
        return MoneyLaunderingAlert(
            id=self.generate_alert_id(now),
            timestamp=now,
            severity=severity,
            pattern=pattern,
            risk_score=risk_score,
            addresses=[
                AlertAddress(
                    address=address,
                    role=self.determine_role(address, pattern),
                    profile=profiles.get(address),
                )
                for address in pattern.participants
            ],
            description=self.generate_description(pattern, severity),
            metadata={
                "detection_time": now,
                "pattern_type": pattern.type.value,
                "flow_count": len(pattern.flows),
                "total_value": str(pattern.total_value),
                "time_range": {"start": pattern.start_time, "end": pattern.end_time},
            },
        )

    @staticmethod
    def calculate_severity(score: float) -> AlertSeverity:
        """Classify severity from a pattern score."""
        for floor, severity in SEVERITY_THRESHOLDS:
            if score >= floor:
                return severity
        return AlertSeverity.LOW

    def calculate_risk_score(
        self,
        pattern: FlowPattern,
        profiles: dict[str, AddressRiskProfile],
    ) -> float:
        """
        Composite risk of a pattern.

        Starts from the pattern score, averages it with the mean profile
        risk of participants with a positive risk score, then scales up by
        the value and time weights. Capped at 1.0.
        """
        score = pattern.score

        known = [
            profiles[a].risk_score for a in pattern.participants
            if a in profiles and profiles[a].risk_score > 0
        ]
        if known:
            score = (score + (sum(known) / len(known)) / 100) / 2

        score *= 1 + self._value_weight(pattern.total_value)
        score *= 1 + self._time_weight(pattern.duration)

        return min(score, 1.0)

    def _is_duplicate(self, alert: MoneyLaunderingAlert) -> bool:
        now = self._clock()
        new_addresses = alert.address_set

        for existing in self._alerts.values():
            if now - existing.timestamp > self.config.deduplication_window:
                continue
            if existing.pattern.type != alert.pattern.type:
                continue

            existing_addresses = existing.address_set
            overlap = len(existing_addresses & new_addresses)
            smaller = min(len(existing_addresses), len(new_addresses))
            if overlap >= smaller * 0.5:
                return True

        return False

    def is_duplicate(self, alert: MoneyLaunderingAlert) -> bool:
        """Check whether an alert duplicates a live alert."""
        with self._lock:
            return self._is_duplicate(alert)

    def _count_address_alerts(self, address: str) -> int:
        now = self._clock()
        return sum(
            1 for alert in self._alerts.values()
            if now - alert.timestamp <= self.config.deduplication_window
            and address in alert.address_set
        )

    def count_address_alerts(self, address: str) -> int:
        """Count live alerts involving an address within the window."""
        with self._lock:
            return self._count_address_alerts(address)

    def _cleanup_if_due(self) -> None:
        now = self._clock()
        if now - self._last_cleanup <= self.config.deduplication_window:
            return
        self._remove_expired(now)

    def _remove_expired(self, now: int) -> int:
        expired = [
            alert_id for alert_id, alert in self._alerts.items()
            if now - alert.timestamp > self.config.deduplication_window
        ]
        for alert_id in expired:
            del self._alerts[alert_id]
        self._last_cleanup = now
        if expired:
            logger.debug(f"Expired {len(expired)} alerts")
        return len(expired)

    def cleanup_expired(self) -> int:
        """Drop alerts older than the deduplication window. Returns count removed."""
        with self._lock:
            return self._remove_expired(self._clock())

    @staticmethod
    def determine_role(address: str, pattern: FlowPattern) -> AddressRole:
        """Role of an address from its in/out degree within the pattern."""
        has_in = any(f.to_address == address for f in pattern.flows)
        has_out = any(f.from_address == address for f in pattern.flows)

        if has_out and not has_in:
            return AddressRole.SOURCE
        if has_in and not has_out:
            return AddressRole.DESTINATION
        return AddressRole.INTERMEDIARY

    @staticmethod
    def generate_description(pattern: FlowPattern, severity: AlertSeverity) -> str:
        return (
            f"Detected {severity.value} risk {PATTERN_LABELS[pattern.type]} pattern "
            f"involving {len(pattern.participants)} addresses and "
            f"{len(pattern.flows)} transfers, total value {pattern.total_value}"
        )

    @staticmethod
    def generate_alert_id(now: int) -> str:
        return f"ml-{now}-{uuid4().hex[:12]}"

    def get_alert(self, alert_id: str) -> Optional[MoneyLaunderingAlert]:
        """Get a live alert by ID."""
        with self._lock:
            return self._alerts.get(alert_id)

    def get_alerts(
        self,
        pattern_type: Optional[PatternType] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 50,
    ) -> list[MoneyLaunderingAlert]:
        """Get live alerts with optional filtering, newest first."""
        with self._lock:
            alerts = list(self._alerts.values())

        if pattern_type:
            alerts = [a for a in alerts if a.pattern.type == pattern_type]

        if severity:
            alerts = [a for a in alerts if a.severity == severity]

        alerts.sort(key=lambda a: a.timestamp, reverse=True)

        return alerts[:limit]

    def get_stats(self) -> dict[str, Any]:
        """Get live alert statistics."""
        with self._lock:
            alerts = list(self._alerts.values())

        by_type: dict[str, int] = {}
        by_severity: dict[str, int] = {}

        for alert in alerts:
            by_type[alert.pattern.type.value] = by_type.get(alert.pattern.type.value, 0) + 1
            by_severity[alert.severity.value] = by_severity.get(alert.severity.value, 0) + 1

        return {
            "total": len(alerts),
            "by_type": by_type,
            "by_severity": by_severity,
        }

    def clear(self) -> None:
        """Clear all live alerts."""
        with self._lock:
            self._alerts.clear()
            self._last_cleanup = self._clock()
