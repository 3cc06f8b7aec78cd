"""
Health checking and health aggregation.

HealthCheckRunner probes every registered adapter and escalates failures to
the AlertManager. HealthAggregator derives overall and per-service health from
the unresolved alerts, fresh on every call.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, Dict, List, Mapping, Optional

from trading_monitor.monitoring.adapters import HealthCheckable, call_adapter
from trading_monitor.monitoring.models import (
    AlertLevel,
    HealthReport,
    HealthStatus,
    SystemHealth,
    SystemMetrics,
)

if TYPE_CHECKING:
    from trading_monitor.monitoring.alerting import AlertManager

logger = logging.getLogger(__name__)

SERVICE_WINDOW = timedelta(minutes=5)

# Service name in the health snapshot -> alert service tag
SERVICES = {
    "database": "DATABASE",
    "cache": "CACHE",
    "trading": "TRADING",
    "risk": "RISK",
}

RECENT_ALERTS_IN_SNAPSHOT = 10


class HealthCheckRunner:
    """
    Runs adapter health checks and raises alerts for bad results.

    Escalation:
        unhealthy            -> ERROR "Service unhealthy: <name>"
        degraded             -> WARN  "Service degraded: <name>"
        raised or timed out  -> ERROR "Health check failed for <name>"

    Usage:
        runner = HealthCheckRunner(alert_manager, {"database": db, "system": SystemSelfCheck()})
        reports = await runner.run()
    """

    def __init__(
        self,
        alert_manager: "AlertManager",
        checks: Optional[Mapping[str, HealthCheckable]] = None,
        timeout: Optional[float] = 5.0,
    ) -> None:
        """
        Initialize the health check runner.

        Args:
            alert_manager: Receives escalated health problems
            checks: Service name -> adapter exposing health_check()
            timeout: Seconds allowed for each async check
        """
        self._alert_manager = alert_manager
        self._checks: Dict[str, HealthCheckable] = dict(checks or {})
        self._timeout = timeout

        self._last_reports: Dict[str, HealthReport] = {}
        self._lock = threading.Lock()

    @property
    def services(self) -> List[str]:
        return list(self._checks)

    def last_report(self, name: str) -> Optional[HealthReport]:
        """Result of the most recent check of ``name``, if it has run."""
        with self._lock:
            return self._last_reports.get(name.lower())

    def register(self, name: str, check: HealthCheckable) -> None:
        """Add or replace the health check for a service."""
        self._checks[name] = check

    async def run(self) -> Dict[str, HealthReport]:
        """
        Check every registered service.

        Returns:
            Service name -> HealthReport (failed checks reported as unhealthy)
        """
        reports: Dict[str, HealthReport] = {}

        for name, check in list(self._checks.items()):
            reports[name] = await self.check(name, check)

        return reports

    async def check(self, name: str, check: HealthCheckable) -> HealthReport:
        """Run one health check, escalate its result and remember it."""
        report = await self._probe(name, check)
        with self._lock:
            self._last_reports[name.lower()] = report
        return report

    async def _probe(self, name: str, check: HealthCheckable) -> HealthReport:
        service = name.upper()
        start_time = time.time()

        try:
            result = await call_adapter(check.health_check, self._timeout)
            report = HealthReport.coerce(result)
        except asyncio.TimeoutError:
            reason = f"{name} check timed out after {self._timeout}s"
            return self._check_failed(name, service, reason)
        except Exception as e:
            return self._check_failed(name, service, str(e) or type(e).__name__)

        latency_ms = (time.time() - start_time) * 1000
        logger.debug(f"Health check {name}: {report.status.value} ({latency_ms:.0f}ms)")

        if report.status == HealthStatus.UNHEALTHY:
            self._alert_manager.raise_alert(
                AlertLevel.ERROR, service, f"Service unhealthy: {name}", report.details,
            )
        elif report.status == HealthStatus.DEGRADED:
            self._alert_manager.raise_alert(
                AlertLevel.WARN, service, f"Service degraded: {name}", report.details,
            )

        return report

    def _check_failed(self, name: str, service: str, reason: str) -> HealthReport:
        logger.error(f"Health check failed for {name}: {reason}")
        self._alert_manager.raise_alert(
            AlertLevel.ERROR,
            service,
            f"Health check failed for {name}",
            {"error": reason},
        )
        return HealthReport(status=HealthStatus.UNHEALTHY, details={"error": reason})


class HealthAggregator:
    """
    Derives health categories from unresolved alerts.

    Per service: unresolved alerts for the service tag from the last 5
    minutes. Any CRITICAL -> unhealthy; any ERROR or more than 2 alerts ->
    degraded; else healthy. While such alerts are open, an unhealthy latest
    health check for the service makes it unhealthy rather than degraded.

    Overall: every unresolved alert regardless of age. Any CRITICAL ->
    unhealthy; more than 2 ERROR or more than 5 in total -> degraded; else
    healthy.
    """

    def __init__(
        self,
        alert_manager: "AlertManager",
        latest_metrics: Optional[Callable[[], Optional[SystemMetrics]]] = None,
        health_reports: Optional[Callable[[str], Optional[HealthReport]]] = None,
        service_window: timedelta = SERVICE_WINDOW,
    ) -> None:
        self._alert_manager = alert_manager
        self._latest_metrics = latest_metrics
        self._health_reports = health_reports
        self._service_window = service_window

    def overall(self) -> HealthStatus:
        active = self._alert_manager.unresolved()

        if any(a.level == AlertLevel.CRITICAL for a in active):
            return HealthStatus.UNHEALTHY

        errors = sum(1 for a in active if a.level == AlertLevel.ERROR)
        if errors > 2 or len(active) > 5:
            return HealthStatus.DEGRADED

        return HealthStatus.HEALTHY

    def per_service(self, name: str) -> HealthStatus:
        """Health of one service tag (DATABASE, CACHE, ...). Case-insensitive."""
        recent = self._alert_manager.recent(
            self._service_window,
            service=name.upper(),
            unresolved_only=True,
        )
        if not recent:
            return HealthStatus.HEALTHY

        status = HealthStatus.HEALTHY
        if any(a.level == AlertLevel.CRITICAL for a in recent):
            status = HealthStatus.UNHEALTHY
        elif any(a.level == AlertLevel.ERROR for a in recent) or len(recent) > 2:
            status = HealthStatus.DEGRADED

        report = self._health_reports(name) if self._health_reports else None
        if report is not None and report.status == HealthStatus.UNHEALTHY:
            status = HealthStatus.UNHEALTHY

        return status

    def snapshot(self) -> SystemHealth:
        """Full health snapshot for external callers."""
        latest = self._latest_metrics() if self._latest_metrics else None

        return SystemHealth(
            overall=self.overall(),
            services={name: self.per_service(tag) for name, tag in SERVICES.items()},
            metrics=latest or SystemMetrics.default(),
            alerts=self._alert_manager.unresolved()[:RECENT_ALERTS_IN_SNAPSHOT],
        )
