"""
Monitoring data model.

Snapshots, alerts, and health results shared by every monitoring component.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


def utcnow() -> datetime:
    """Default clock for all monitoring components."""
    return datetime.now(timezone.utc)


class AlertLevel(Enum):
    """Alert severity levels."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class HealthStatus(Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


# =============================================================================
# Metrics snapshot
# =============================================================================

@dataclass(frozen=True)
class CpuMetrics:
    usage: float = 0.0
    load: Tuple[float, float, float] = (0.0, 0.0, 0.0)


@dataclass(frozen=True)
class MemoryMetrics:
    used: int = 0
    total: int = 0
    percentage: float = 0.0


@dataclass(frozen=True)
class DatabaseMetrics:
    status: str = HealthStatus.UNKNOWN.value
    avg_query_time: float = 0.0
    active_connections: int = 0


@dataclass(frozen=True)
class CacheMetrics:
    status: str = HealthStatus.UNKNOWN.value
    hit_rate: float = 0.0
    total_operations: int = 0


@dataclass(frozen=True)
class TradingMetrics:
    active_orders: int = 0
    total_trades: int = 0
    pnl: float = 0.0


@dataclass(frozen=True)
class ErrorMetrics:
    """Alerts created in the trailing hour."""

    count: int = 0
    critical_count: int = 0


@dataclass(frozen=True)
class SystemMetrics:
    """
    One immutable metrics snapshot.

    Created once per collection tick and never mutated afterwards.
    """

    timestamp: datetime = field(default_factory=utcnow)
    cpu: CpuMetrics = field(default_factory=CpuMetrics)
    memory: MemoryMetrics = field(default_factory=MemoryMetrics)
    database: DatabaseMetrics = field(default_factory=DatabaseMetrics)
    cache: CacheMetrics = field(default_factory=CacheMetrics)
    trading: TradingMetrics = field(default_factory=TradingMetrics)
    errors: ErrorMetrics = field(default_factory=ErrorMetrics)

    @classmethod
    def default(cls, timestamp: Optional[datetime] = None) -> "SystemMetrics":
        """Zeroed snapshot returned when nothing has been collected yet."""
        return cls(timestamp=timestamp or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON export shape."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "cpu": {
                "usage": self.cpu.usage,
                "load": list(self.cpu.load),
            },
            "memory": {
                "used": self.memory.used,
                "total": self.memory.total,
                "percentage": self.memory.percentage,
            },
            "database": {
                "status": self.database.status,
                "avgQueryTime": self.database.avg_query_time,
                "activeConnections": self.database.active_connections,
            },
            "cache": {
                "status": self.cache.status,
                "hitRate": self.cache.hit_rate,
                "totalOperations": self.cache.total_operations,
            },
            "trading": {
                "activeOrders": self.trading.active_orders,
                "totalTrades": self.trading.total_trades,
                "pnl": self.trading.pnl,
            },
            "errors": {
                "count": self.errors.count,
                "criticalCount": self.errors.critical_count,
            },
        }


# =============================================================================
# Alerts
# =============================================================================

# Metadata key set on alerts raised from the error counts. They are left out
# of those counts, so a sustained breach keeps one message.
RULE_KEY = "rule"
ERROR_RATE_RULE = "error_rate"
CRITICAL_ERRORS_RULE = "critical_errors"


@dataclass
class Alert:
    """
    A raised alert.

    Only ``resolved`` changes after creation.
    """

    id: str
    level: AlertLevel
    service: str
    message: str
    timestamp: datetime
    resolved: bool = False
    metadata: Optional[Dict[str, Any]] = None

    @property
    def from_error_rule(self) -> bool:
        """Raised by the error-rate or critical-errors rule."""
        if not self.metadata:
            return False
        return self.metadata.get(RULE_KEY) in (ERROR_RATE_RULE, CRITICAL_ERRORS_RULE)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "level": self.level.value,
            "service": self.service,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class AlertRequest:
    """A threshold breach waiting to pass the dedup gate."""

    level: AlertLevel
    service: str
    message: str
    metadata: Optional[Dict[str, Any]] = None


# =============================================================================
# Health
# =============================================================================

@dataclass
class HealthReport:
    """Result of a single adapter health check."""

    status: HealthStatus
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "HealthReport":
        """
        Normalize an adapter result.

        Adapters may return a HealthReport or a ``{"status", "details"}``
        mapping. Unrecognized statuses raise ValueError.
        """
        if isinstance(value, HealthReport):
            return value

        if not isinstance(value, Mapping):
            raise ValueError(f"Unsupported health check result: {value!r}")

        status = value.get("status")
        if isinstance(status, str):
            status = HealthStatus(status.lower())
        elif not isinstance(status, HealthStatus):
            raise ValueError(f"Health check result has no status: {value!r}")

        return cls(status=status, details=dict(value.get("details") or {}))


@dataclass
class SystemHealth:
    """Health snapshot returned to external callers."""

    overall: HealthStatus
    services: Dict[str, HealthStatus]
    metrics: SystemMetrics
    alerts: List[Alert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall.value,
            "services": {name: status.value for name, status in self.services.items()},
            "metrics": self.metrics.to_dict(),
            "alerts": [alert.to_dict() for alert in self.alerts],
        }
