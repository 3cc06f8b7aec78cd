"""
Alert Manager for the monitoring engine.

Creates alerts with deduplication to prevent alert storms, keeps a bounded
newest-first alert log, and drives the resolved/unresolved lifecycle.
"""
from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from trading_monitor.monitoring.models import Alert, AlertLevel, AlertRequest, utcnow

if TYPE_CHECKING:
    from trading_monitor.monitoring.subscriptions import SubscriptionBus

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(minutes=10)
MAX_ALERTS = 1000

_LOG_LEVELS = {
    AlertLevel.CRITICAL: logging.ERROR,
    AlertLevel.ERROR: logging.ERROR,
    AlertLevel.WARN: logging.WARNING,
    AlertLevel.INFO: logging.INFO,
}


def generate_alert_id(now: datetime) -> str:
    """Unique alert id: creation time in ms plus a random suffix."""
    return f"alert_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


class AlertManager:
    """
    Manages alerts with deduplication.

    An alert with the same (service, message) as an unresolved alert created
    within the dedup window is suppressed. A metric stuck over its threshold
    therefore yields one alert, not one per collection tick.

    Usage:
        manager = AlertManager(bus=bus)

        alert = manager.raise_alert(AlertLevel.WARN, "SYSTEM", "High CPU usage: 91.0%")
        manager.resolve(alert.id)

        open_alerts = manager.unresolved("DATABASE")
    """

    def __init__(
        self,
        bus: Optional["SubscriptionBus"] = None,
        dedup_window: timedelta = DEDUP_WINDOW,
        max_alerts: int = MAX_ALERTS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the alert manager.

        Args:
            bus: Subscription bus notified of every new alert
            dedup_window: Window in which identical unresolved alerts are suppressed
            max_alerts: Alert log capacity; oldest entries are trimmed first
            clock: Returns the current UTC time
        """
        self._bus = bus
        self._dedup_window = dedup_window
        self._max_alerts = max_alerts
        self._clock = clock

        # Newest first
        self._alerts: List[Alert] = []
        self._lock = threading.RLock()
        self._suppressed = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)

    def raise_alert(
        self,
        level: AlertLevel,
        service: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        """
        Create an alert unless it duplicates a recent unresolved one.

        Args:
            level: Alert severity
            service: Originating service tag (SYSTEM, DATABASE, ...)
            message: Human-readable message; part of the dedup key
            metadata: Optional details stored with the alert

        Returns:
            The new Alert, or None if it was suppressed as a duplicate
        """
        with self._lock:
            now = self._clock()
            if self._find_duplicate(service, message, now) is not None:
                self._suppressed += 1
                logger.debug(f"Suppressed duplicate alert [{service}]: {message}")
                return None

            alert = Alert(
                id=generate_alert_id(now),
                level=level,
                service=service,
                message=message,
                timestamp=now,
                metadata=metadata,
            )

            self._alerts.insert(0, alert)
            if len(self._alerts) > self._max_alerts:
                del self._alerts[self._max_alerts:]

        logger.log(_LOG_LEVELS[level], f"{level.value} Alert [{service}]: {message}")

        if self._bus is not None:
            self._bus.publish_alert(alert)

        return alert

    def raise_request(self, request: AlertRequest) -> Optional[Alert]:
        """Raise an alert from an evaluator request."""
        return self.raise_alert(
            request.level,
            request.service,
            request.message,
            request.metadata,
        )

    def resolve(self, alert_id: str) -> bool:
        """
        Mark an alert resolved.

        Returns:
            True if the alert exists, False for an unknown id
        """
        with self._lock:
            alert = next((a for a in self._alerts if a.id == alert_id), None)
            if alert is None:
                return False
            alert.resolved = True

        logger.info(f"Alert resolved: {alert.message}")
        return True

    def unresolved(self, service: Optional[str] = None) -> List[Alert]:
        """Unresolved alerts, newest first, optionally for one service."""
        with self._lock:
            return [
                a for a in self._alerts
                if not a.resolved and (service is None or a.service == service)
            ]

    def get_alerts(self, resolved: bool = False, limit: int = 50) -> List[Alert]:
        """Alerts with the given resolved flag, newest first."""
        with self._lock:
            matching = [a for a in self._alerts if a.resolved == resolved]
        return matching[:max(limit, 0)]

    def recent(
        self,
        window: timedelta,
        service: Optional[str] = None,
        unresolved_only: bool = False,
    ) -> List[Alert]:
        """Alerts created within ``window`` of now."""
        with self._lock:
            cutoff = self._clock() - window
            return [
                a for a in self._alerts
                if a.timestamp > cutoff
                and (service is None or a.service == service)
                and not (unresolved_only and a.resolved)
            ]

    def error_counts(self, window: timedelta = timedelta(hours=1)) -> Tuple[int, int]:
        """
        (all alerts, critical alerts) created within ``window``.

        Alerts raised by the error-rate rules themselves are not counted.
        """
        alerts = [a for a in self.recent(window) if not a.from_error_rule]
        critical = sum(1 for a in alerts if a.level == AlertLevel.CRITICAL)
        return len(alerts), critical

    def purge_resolved(self, before: datetime) -> int:
        """
        Drop resolved alerts created before ``before``.

        Unresolved alerts are kept regardless of age.

        Returns:
            Number of alerts removed
        """
        with self._lock:
            kept = [a for a in self._alerts if not a.resolved or a.timestamp > before]
            removed = len(self._alerts) - len(kept)
            self._alerts = kept
        return removed

    def get_alert_stats(self) -> Dict[str, int]:
        """Counts for diagnostics."""
        with self._lock:
            unresolved = sum(1 for a in self._alerts if not a.resolved)
            return {
                "total": len(self._alerts),
                "unresolved": unresolved,
                "resolved": len(self._alerts) - unresolved,
                "suppressed": self._suppressed,
            }

    def _find_duplicate(self, service: str, message: str, now: datetime) -> Optional[Alert]:
        cutoff = now - self._dedup_window
        for alert in self._alerts:
            if (alert.service == service
                    and alert.message == message
                    and alert.timestamp > cutoff
                    and not alert.resolved):
                return alert
        return None
