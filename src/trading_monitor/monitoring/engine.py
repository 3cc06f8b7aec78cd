"""
MonitoringEngine - the process-wide monitoring and alerting engine.

Wires the collector, threshold table, alert manager, health checks, retention
and subscription bus together, and drives three periodic loops:
- Metrics collection (30s)
- Health checks (2 min)
- Retention cleanup (1 hour)

The engine is constructed explicitly by the composition root and passed to
whatever exposes it (dashboard, notifiers). There is no global instance.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from trading_monitor.monitoring import exporters
from trading_monitor.monitoring.adapters import HealthCheckable, SystemSelfCheck, adapter_registry
from trading_monitor.monitoring.alerting import DEDUP_WINDOW, MAX_ALERTS, AlertManager
from trading_monitor.monitoring.health import HealthAggregator, HealthCheckRunner
from trading_monitor.monitoring.metrics import (
    CPU_MODE_CUMULATIVE,
    MAX_HISTORY,
    MONITORING_SERVICE,
    MetricsCollector,
    ProcessSampler,
)
from trading_monitor.monitoring.models import (
    Alert,
    AlertLevel,
    HealthReport,
    SystemHealth,
    SystemMetrics,
    utcnow,
)
from trading_monitor.monitoring.retention import RETENTION_WINDOW, RetentionManager
from trading_monitor.monitoring.subscriptions import Subscription, SubscriptionBus
from trading_monitor.monitoring.thresholds import Thresholds, ThresholdTable

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Configuration for the monitoring engine."""

    # Metrics collection
    metrics_interval_seconds: float = 30
    metrics_enabled: bool = True

    # Health checks
    health_check_interval_seconds: float = 120  # 2 minutes
    health_check_enabled: bool = True

    # Retention cleanup
    cleanup_interval_seconds: float = 3600  # 1 hour
    cleanup_enabled: bool = True

    # Limits
    adapter_timeout_seconds: float = 5.0
    max_history: int = MAX_HISTORY
    max_alerts: int = MAX_ALERTS
    dedup_window_seconds: float = DEDUP_WINDOW.total_seconds()
    retention_hours: float = RETENTION_WINDOW.total_seconds() / 3600

    cpu_mode: str = CPU_MODE_CUMULATIVE


class MonitoringEngine:
    """
    Monitoring and alerting engine.

    Usage:
        engine = MonitoringEngine(database=db, cache=cache, trading=trading)
        engine.on_alert(lambda alert: print(alert.message))

        await engine.start()
        health = engine.get_system_health()
        # ... process runs ...
        await engine.stop()
    """

    def __init__(
        self,
        database: Optional[Any] = None,
        cache: Optional[Any] = None,
        trading: Optional[Any] = None,
        health_checks: Optional[Mapping[str, HealthCheckable]] = None,
        config: Optional[EngineConfig] = None,
        thresholds: Optional[Thresholds] = None,
        sampler: Optional[ProcessSampler] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the engine and register adapters.

        Args:
            database: Database adapter (stats + health_check)
            cache: Cache adapter (stats + health_check)
            trading: Trading adapter (stats)
            health_checks: Health checks to run; defaults to database, cache
                           and a process self-check
            config: Engine configuration
            thresholds: Initial thresholds (defaults if None)
            sampler: Process CPU/memory sampler
            clock: Returns the current UTC time
        """
        self._config = config or EngineConfig()
        self._clock = clock

        self.bus = SubscriptionBus()
        self.thresholds = ThresholdTable(thresholds)
        self.alerts = AlertManager(
            bus=self.bus,
            dedup_window=timedelta(seconds=self._config.dedup_window_seconds),
            max_alerts=self._config.max_alerts,
            clock=clock,
        )
        self.collector = MetricsCollector(
            alert_manager=self.alerts,
            thresholds=self.thresholds,
            bus=self.bus,
            database=database,
            cache=cache,
            trading=trading,
            sampler=sampler or ProcessSampler(cpu_mode=self._config.cpu_mode),
            max_history=self._config.max_history,
            adapter_timeout=self._config.adapter_timeout_seconds,
            clock=clock,
        )

        if health_checks is None:
            health_checks = adapter_registry(
                database=database if hasattr(database, "health_check") else None,
                cache=cache if hasattr(cache, "health_check") else None,
                system=SystemSelfCheck(),
            )
        self.health_checks = HealthCheckRunner(
            self.alerts,
            health_checks,
            timeout=self._config.adapter_timeout_seconds,
        )
        self.health = HealthAggregator(
            self.alerts,
            latest_metrics=self.collector.latest,
            health_reports=self.health_checks.last_report,
        )
        self.retention = RetentionManager(
            self.alerts,
            retention=timedelta(hours=self._config.retention_hours),
            clock=clock,
        )

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        """Whether the periodic loops are running."""
        return self._running

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Run one collection and health pass, then start the periodic loops."""
        if self._running:
            logger.warning("Monitoring already running")
            return

        logger.info("Starting system monitoring...")
        self._running = True
        self._stop_event = asyncio.Event()

        await self._run_phase("metrics collection", self.collect_metrics, "Failed to collect system metrics")
        await self._run_phase("health checks", self.run_health_checks, "Health check failed")

        loops = (
            ("metrics_collect", self._config.metrics_enabled,
             self._config.metrics_interval_seconds, self._metrics_tick),
            ("health_check", self._config.health_check_enabled,
             self._config.health_check_interval_seconds, self._health_tick),
            ("retention_cleanup", self._config.cleanup_enabled,
             self._config.cleanup_interval_seconds, self._cleanup_tick),
        )
        for name, enabled, interval, tick in loops:
            if not enabled:
                continue
            task = asyncio.create_task(self._periodic(name, interval, tick), name=name)
            self._tasks.append(task)
            logger.info(f"Started {name} task (interval={interval}s)")

        logger.info(f"Monitoring started: {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """
        Stop monitoring.

        In-flight phases finish; each loop exits at its next wake-up.
        """
        if not self._running:
            return

        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        logger.info("Monitoring stopped")

    async def _periodic(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[None]],
    ) -> None:
        while self._running:
            try:
                # Wait for interval or stop
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

                if not self._running:
                    break

                await tick()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {name} loop: {e}")

    async def _metrics_tick(self) -> None:
        await self._run_phase("metrics collection", self.collect_metrics, "Failed to collect system metrics")

    async def _health_tick(self) -> None:
        await self._run_phase("health checks", self.run_health_checks, "Health check failed")

    async def _cleanup_tick(self) -> None:
        try:
            self.cleanup()
        except Exception as e:
            logger.error(f"Error cleaning up monitoring data: {e}")

    async def _run_phase(
        self,
        name: str,
        phase: Callable[[], Awaitable[Any]],
        failure_message: str,
    ) -> None:
        try:
            await phase()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error running {name}: {e}")
            self.alerts.raise_alert(
                AlertLevel.ERROR,
                MONITORING_SERVICE,
                failure_message,
                {"error": str(e) or type(e).__name__},
            )

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def collect_metrics(self) -> SystemMetrics:
        return await self.collector.collect()

    async def run_health_checks(self) -> Dict[str, HealthReport]:
        return await self.health_checks.run()

    def cleanup(self) -> int:
        return self.retention.cleanup()

    # -------------------------------------------------------------------------
    # Queries and commands
    # -------------------------------------------------------------------------

    def get_system_health(self) -> SystemHealth:
        return self.health.snapshot()

    def get_metrics(self, hours: float = 1) -> List[SystemMetrics]:
        """Snapshots with timestamp >= now - hours, newest first."""
        since = self._clock() - timedelta(hours=hours)
        return self.collector.history(since=since)

    def get_alerts(self, resolved: bool = False, limit: int = 50) -> List[Alert]:
        return self.alerts.get_alerts(resolved=resolved, limit=limit)

    def raise_alert(
        self,
        level: AlertLevel,
        service: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        return self.alerts.raise_alert(level, service, message, metadata)

    def resolve_alert(self, alert_id: str) -> bool:
        return self.alerts.resolve(alert_id)

    def update_thresholds(self, **changes: Any) -> Thresholds:
        return self.thresholds.update(**changes)

    def export_metrics(self, fmt: str = exporters.FORMAT_JSON) -> str:
        """
        Export metrics as JSON (latest 100 snapshots) or exposition format.

        Raises:
            ValueError: If the format is not supported
        """
        return exporters.export(
            self.collector.history(limit=exporters.JSON_EXPORT_LIMIT),
            fmt,
        )

    def on_alert(self, callback: Callable[[Alert], Any]) -> Subscription:
        return self.bus.on_alert(callback)

    def on_metrics(self, callback: Callable[[SystemMetrics], Any]) -> Subscription:
        return self.bus.on_metrics(callback)
