"""
Metrics Collector for system and service metrics.

Samples process CPU/memory and pulls database, cache and trading stats from
their adapters, once per collection tick. Each snapshot is kept in a bounded
history, evaluated against the current thresholds, and published to
subscribers.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Deque, List, Optional, Tuple

import psutil

from trading_monitor.monitoring.adapters import call_adapter, stat_value
from trading_monitor.monitoring.models import (
    AlertLevel,
    CacheMetrics,
    CpuMetrics,
    DatabaseMetrics,
    ErrorMetrics,
    HealthReport,
    HealthStatus,
    MemoryMetrics,
    SystemMetrics,
    TradingMetrics,
    utcnow,
)
from trading_monitor.monitoring.thresholds import ThresholdEvaluator, ThresholdTable

if TYPE_CHECKING:
    from trading_monitor.monitoring.adapters import (
        CacheStatsSource,
        DatabaseStatsSource,
        TradingStatsSource,
    )
    from trading_monitor.monitoring.alerting import AlertManager
    from trading_monitor.monitoring.subscriptions import SubscriptionBus

logger = logging.getLogger(__name__)

# 24 hours at a 30 second cadence
MAX_HISTORY = 2880

MONITORING_SERVICE = "MONITORING"

CPU_MODE_CUMULATIVE = "cumulative"
CPU_MODE_INTERVAL = "interval"


class ProcessSampler:
    """
    Process CPU and memory figures via psutil.

    CPU modes:
        cumulative: total user+system CPU seconds of the process times 100,
            clamped to 100. A coarse approximation, not a windowed rate.
        interval: psutil's percentage since the previous sample.
    """

    def __init__(
        self,
        process: Optional[psutil.Process] = None,
        cpu_mode: str = CPU_MODE_CUMULATIVE,
    ) -> None:
        if cpu_mode not in (CPU_MODE_CUMULATIVE, CPU_MODE_INTERVAL):
            raise ValueError(f"Unknown CPU sampling mode: {cpu_mode}")
        self._process = process or psutil.Process()
        self._cpu_mode = cpu_mode

    def cpu(self) -> CpuMetrics:
        if self._cpu_mode == CPU_MODE_INTERVAL:
            usage = self._process.cpu_percent(interval=None)
        else:
            times = self._process.cpu_times()
            usage = (times.user + times.system) * 100

        return CpuMetrics(usage=min(float(usage), 100.0), load=self._load_average())

    def memory(self) -> MemoryMetrics:
        used = self._process.memory_info().rss
        total = psutil.virtual_memory().total
        percentage = (used / total) * 100 if total else 0.0
        return MemoryMetrics(used=int(used), total=int(total), percentage=percentage)

    @staticmethod
    def _load_average() -> Tuple[float, float, float]:
        try:
            one, five, fifteen = psutil.getloadavg()
        except (AttributeError, OSError):
            return (0.0, 0.0, 0.0)
        return (float(one), float(five), float(fifteen))


class MetricsCollector:
    """
    Collects one SystemMetrics snapshot per tick.

    A failing adapter never aborts collection: its sub-record is replaced by
    an unhealthy/zero sentinel and an ERROR alert is raised on the MONITORING
    service, keeping "the collector broke" apart from "the service is
    unhealthy" (health checks detect the latter).

    Usage:
        collector = MetricsCollector(alert_manager, thresholds, bus, database=db)

        snapshot = await collector.collect()
        latest = collector.latest()
        last_hour = collector.history(since=now - timedelta(hours=1))
    """

    def __init__(
        self,
        alert_manager: "AlertManager",
        thresholds: ThresholdTable,
        bus: Optional["SubscriptionBus"] = None,
        database: Optional["DatabaseStatsSource"] = None,
        cache: Optional["CacheStatsSource"] = None,
        trading: Optional["TradingStatsSource"] = None,
        sampler: Optional[ProcessSampler] = None,
        evaluator: Optional[ThresholdEvaluator] = None,
        max_history: int = MAX_HISTORY,
        adapter_timeout: Optional[float] = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the metrics collector.

        Args:
            alert_manager: Receives threshold breaches and collection failures
            thresholds: Threshold table read on every tick
            bus: Subscription bus notified of every snapshot
            database: Database adapter (stats + health_check)
            cache: Cache adapter (stats)
            trading: Trading adapter (stats)
            sampler: Process CPU/memory sampler
            evaluator: Threshold evaluator
            max_history: History capacity; oldest snapshots are evicted first
            adapter_timeout: Seconds allowed for each async adapter call
            clock: Returns the current UTC time
        """
        self._alert_manager = alert_manager
        self._thresholds = thresholds
        self._bus = bus
        self._database = database
        self._cache = cache
        self._trading = trading
        self._sampler = sampler or ProcessSampler()
        self._evaluator = evaluator or ThresholdEvaluator()
        self._adapter_timeout = adapter_timeout
        self._clock = clock

        # Oldest on the left
        self._history: Deque[SystemMetrics] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    async def collect(self) -> SystemMetrics:
        """
        Collect, store, evaluate and publish one snapshot.

        Returns:
            The new SystemMetrics
        """
        timestamp = self._clock()
        cpu, memory = self._sample_process()
        database = await self._collect_database()
        cache = await self._collect_cache()
        trading = await self._collect_trading()
        count, critical = self._alert_manager.error_counts()

        snapshot = SystemMetrics(
            timestamp=timestamp,
            cpu=cpu,
            memory=memory,
            database=database,
            cache=cache,
            trading=trading,
            errors=ErrorMetrics(count=count, critical_count=critical),
        )
        self.record(snapshot)

        for request in self._evaluator.evaluate(snapshot, self._thresholds.current()):
            self._alert_manager.raise_request(request)

        if self._bus is not None:
            self._bus.publish_metrics(snapshot)

        logger.debug(
            f"Collected metrics: cpu={cpu.usage:.1f}% memory={memory.percentage:.1f}% "
            f"db={database.status} cache={cache.status}"
        )
        return snapshot

    def record(self, snapshot: SystemMetrics) -> None:
        """Append a snapshot to the history, evicting the oldest when full."""
        with self._lock:
            self._history.append(snapshot)

    def latest(self) -> Optional[SystemMetrics]:
        with self._lock:
            return self._history[-1] if self._history else None

    def history(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[SystemMetrics]:
        """
        Snapshots newest first.

        Args:
            since: Only snapshots with timestamp >= since
            limit: Maximum number of snapshots
        """
        with self._lock:
            snapshots = list(self._history)

        snapshots.reverse()
        if since is not None:
            snapshots = [m for m in snapshots if m.timestamp >= since]
        if limit is not None:
            snapshots = snapshots[:limit]
        return snapshots

    def _sample_process(self) -> Tuple[CpuMetrics, MemoryMetrics]:
        try:
            return self._sampler.cpu(), self._sampler.memory()
        except Exception as e:
            self._report_failure("process", e)
            return CpuMetrics(), MemoryMetrics()

    async def _collect_database(self) -> DatabaseMetrics:
        if self._database is None:
            return DatabaseMetrics()

        try:
            stats = await call_adapter(self._database.stats, self._adapter_timeout)
            status = HealthStatus.HEALTHY
            if hasattr(self._database, "health_check"):
                report = await call_adapter(self._database.health_check, self._adapter_timeout)
                status = HealthReport.coerce(report).status

            return DatabaseMetrics(
                status=status.value,
                avg_query_time=float(stat_value(stats, "avg_query_time", "avgQueryTime")),
                active_connections=int(stat_value(stats, "active_connections", "activeConnections")),
            )
        except Exception as e:
            self._report_failure("database", e)
            return DatabaseMetrics(status=HealthStatus.UNHEALTHY.value)

    async def _collect_cache(self) -> CacheMetrics:
        if self._cache is None:
            return CacheMetrics()

        try:
            stats = await call_adapter(self._cache.stats, self._adapter_timeout)
            connected = bool(stat_value(stats, "connected", default=False))

            return CacheMetrics(
                status=(HealthStatus.HEALTHY if connected else HealthStatus.UNHEALTHY).value,
                hit_rate=float(stat_value(stats, "hit_rate", "hitRate")),
                total_operations=int(stat_value(stats, "total_operations", "totalOperations")),
            )
        except Exception as e:
            self._report_failure("cache", e)
            return CacheMetrics(status=HealthStatus.UNHEALTHY.value)

    async def _collect_trading(self) -> TradingMetrics:
        if self._trading is None:
            return TradingMetrics()

        try:
            stats = await call_adapter(self._trading.stats, self._adapter_timeout)

            return TradingMetrics(
                active_orders=int(stat_value(stats, "active_orders", "activeOrders")),
                total_trades=int(stat_value(stats, "total_trades", "totalTrades")),
                pnl=float(stat_value(stats, "pnl", "total_pnl")),
            )
        except Exception as e:
            self._report_failure("trading", e)
            return TradingMetrics()

    def _report_failure(self, source: str, error: Any) -> None:
        reason = str(error) or type(error).__name__
        logger.error(f"Failed to collect {source} metrics: {reason}")
        self._alert_manager.raise_alert(
            AlertLevel.ERROR,
            MONITORING_SERVICE,
            f"Failed to collect {source} metrics",
            {"error": reason},
        )
