"""
Threshold table and evaluator.

The table is replaced as a whole on every update, so a reader always sees one
consistent set of limits. The evaluator is a pure function of a snapshot and
a threshold set.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from trading_monitor.monitoring.exporters import format_number
from trading_monitor.monitoring.models import (
    CRITICAL_ERRORS_RULE,
    ERROR_RATE_RULE,
    RULE_KEY,
    AlertLevel,
    AlertRequest,
    SystemMetrics,
)

logger = logging.getLogger(__name__)

# Below this many cache operations a low hit rate is not actionable
MIN_CACHE_OPERATIONS = 10


class Thresholds(BaseModel):
    """Alerting limits. Comparisons against them are strict."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    cpu: float = Field(default=80.0, ge=0)  # percent
    memory: float = Field(default=85.0, ge=0)  # percent
    query_time: float = Field(default=1000.0, ge=0, alias="queryTime")  # ms
    cache_hit_rate: float = Field(default=50.0, ge=0, le=100, alias="cacheHitRate")  # percent floor
    error_rate: int = Field(default=10, ge=0, alias="errorRate")  # alerts per hour
    critical_errors: int = Field(default=3, ge=0, alias="criticalErrors")  # per hour

    def merged(self, **changes: Any) -> "Thresholds":
        """
        Return a new validated instance with ``changes`` applied.

        Accepts field names or their camelCase aliases.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        by_alias = {
            info.alias: name for name, info in type(self).model_fields.items() if info.alias
        }
        normalized: Dict[str, Any] = {}
        for key, value in changes.items():
            name = by_alias.get(key, key)
            if name not in type(self).model_fields:
                raise ValueError(f"Unknown threshold: {key}")
            normalized[name] = value

        return type(self)(**{**self.model_dump(), **normalized})


class ThresholdTable:
    """
    Holds the current Thresholds.

    Usage:
        table = ThresholdTable()
        table.update(cpu=90)
        limits = table.current()
    """

    def __init__(self, initial: Thresholds | None = None) -> None:
        self._current = initial or Thresholds()
        self._lock = threading.Lock()

    def current(self) -> Thresholds:
        with self._lock:
            return self._current

    def update(self, **changes: Any) -> Thresholds:
        """Merge-update the table. Last writer wins."""
        with self._lock:
            self._current = self._current.merged(**changes)
            updated = self._current

        logger.info(f"Monitoring thresholds updated: {updated.model_dump()}")
        return updated


class ThresholdEvaluator:
    """
    Turns a metrics snapshot into alert requests.

    Every rule is independent; one snapshot can trigger none or all of them.
    """

    def evaluate(
        self,
        metrics: SystemMetrics,
        thresholds: Thresholds,
    ) -> List[AlertRequest]:
        requests: List[AlertRequest] = []

        if metrics.cpu.usage > thresholds.cpu:
            requests.append(self._request(
                AlertLevel.WARN,
                "SYSTEM",
                f"High CPU usage: {metrics.cpu.usage:.1f}%",
                metrics.cpu.usage,
                thresholds.cpu,
            ))

        if metrics.memory.percentage > thresholds.memory:
            requests.append(self._request(
                AlertLevel.WARN,
                "SYSTEM",
                f"High memory usage: {metrics.memory.percentage:.1f}%",
                metrics.memory.percentage,
                thresholds.memory,
            ))

        if metrics.database.avg_query_time > thresholds.query_time:
            requests.append(self._request(
                AlertLevel.WARN,
                "DATABASE",
                f"Slow database queries: {format_number(metrics.database.avg_query_time)}ms average",
                metrics.database.avg_query_time,
                thresholds.query_time,
            ))

        if (metrics.cache.hit_rate < thresholds.cache_hit_rate
                and metrics.cache.total_operations > MIN_CACHE_OPERATIONS):
            requests.append(self._request(
                AlertLevel.WARN,
                "CACHE",
                f"Low cache hit rate: {metrics.cache.hit_rate:.1f}%",
                metrics.cache.hit_rate,
                thresholds.cache_hit_rate,
            ))

        if metrics.errors.count > thresholds.error_rate:
            requests.append(self._request(
                AlertLevel.ERROR,
                "SYSTEM",
                f"High error rate: {metrics.errors.count} errors in the last hour",
                metrics.errors.count,
                thresholds.error_rate,
                rule=ERROR_RATE_RULE,
            ))

        if metrics.errors.critical_count > thresholds.critical_errors:
            requests.append(self._request(
                AlertLevel.CRITICAL,
                "SYSTEM",
                f"Multiple critical errors: {metrics.errors.critical_count} in the last hour",
                metrics.errors.critical_count,
                thresholds.critical_errors,
                rule=CRITICAL_ERRORS_RULE,
            ))

        return requests

    @staticmethod
    def _request(
        level: AlertLevel,
        service: str,
        message: str,
        current: float,
        threshold: float,
        rule: str | None = None,
    ) -> AlertRequest:
        metadata: Dict[str, Any] = {"current": current, "threshold": threshold}
        if rule is not None:
            metadata[RULE_KEY] = rule
        return AlertRequest(
            level=level,
            service=service,
            message=message,
            metadata=metadata,
        )
