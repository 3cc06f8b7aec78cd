"""
Retention of the alert log.

Resolved alerts older than the retention window are purged. Unresolved alerts
only leave the log through the AlertManager capacity limit.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from trading_monitor.monitoring.alerting import AlertManager
from trading_monitor.monitoring.models import utcnow

logger = logging.getLogger(__name__)

RETENTION_WINDOW = timedelta(hours=24)


class RetentionManager:
    """Periodically prunes old resolved alerts."""

    def __init__(
        self,
        alert_manager: AlertManager,
        retention: timedelta = RETENTION_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._alert_manager = alert_manager
        self._retention = retention
        self._clock = clock

    @property
    def retention(self) -> timedelta:
        return self._retention

    def cleanup(self) -> int:
        """Purge resolved alerts past retention. Returns the number removed."""
        cutoff = self._clock() - self._retention
        removed = self._alert_manager.purge_resolved(before=cutoff)

        if removed:
            logger.info(f"Cleaned up monitoring data: removed {removed} resolved alerts")
        else:
            logger.debug("Cleaned up monitoring data: nothing to remove")

        return removed
