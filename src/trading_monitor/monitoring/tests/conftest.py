"""
Monitoring layer test fixtures.

Tests metrics collection, thresholds, alerting, health and the dashboard.
"""
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock, AsyncMock

from trading_monitor.monitoring.alerting import AlertManager
from trading_monitor.monitoring.dashboard import create_app
from trading_monitor.monitoring.engine import EngineConfig, MonitoringEngine
from trading_monitor.monitoring.models import (
    CpuMetrics,
    HealthReport,
    HealthStatus,
    MemoryMetrics,
)
from trading_monitor.monitoring.subscriptions import SubscriptionBus
from trading_monitor.monitoring.thresholds import ThresholdTable


# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Controllable UTC clock for window tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


# =============================================================================
# Process Sampler
# =============================================================================

class StubSampler:
    """Process sampler returning fixed figures."""

    def __init__(self, cpu: float = 12.5, memory: float = 40.0):
        self.cpu_usage = cpu
        self.memory_percentage = memory

    def cpu(self) -> CpuMetrics:
        return CpuMetrics(usage=self.cpu_usage, load=(0.5, 0.4, 0.3))

    def memory(self) -> MemoryMetrics:
        total = 8 * 1024 ** 3
        return MemoryMetrics(
            used=int(total * self.memory_percentage / 100),
            total=total,
            percentage=self.memory_percentage,
        )


@pytest.fixture
def sampler():
    return StubSampler()


# =============================================================================
# Adapter Fixtures
# =============================================================================

@pytest.fixture
def mock_database():
    """Healthy database adapter with async health check."""
    db = MagicMock()
    db.stats = MagicMock(return_value={"avg_query_time": 12.5, "active_connections": 3})
    db.health_check = AsyncMock(
        return_value=HealthReport(status=HealthStatus.HEALTHY, details={"connected": True})
    )
    return db


@pytest.fixture
def mock_cache():
    """Connected cache adapter."""
    cache = MagicMock()
    cache.stats = MagicMock(return_value={
        "hits": 90,
        "misses": 10,
        "totalOperations": 100,
        "hitRate": 90.0,
        "connected": True,
    })
    cache.health_check = MagicMock(return_value={"status": "healthy", "details": {}})
    return cache


@pytest.fixture
def mock_trading():
    """Trading adapter with async stats and no health check."""
    trading = MagicMock(spec=["stats"])
    trading.stats = AsyncMock(return_value={"active_orders": 5, "total_trades": 42, "pnl": 12.5})
    return trading


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def bus():
    return SubscriptionBus()


@pytest.fixture
def alert_manager(bus, clock):
    """AlertManager on the fake clock."""
    return AlertManager(bus=bus, clock=clock)


@pytest.fixture
def thresholds():
    return ThresholdTable()


@pytest.fixture
def engine(mock_database, mock_cache, mock_trading, sampler, clock):
    """Engine with mock adapters, loops disabled."""
    config = EngineConfig(
        metrics_enabled=False,
        health_check_enabled=False,
        cleanup_enabled=False,
    )
    return MonitoringEngine(
        database=mock_database,
        cache=mock_cache,
        trading=mock_trading,
        config=config,
        sampler=sampler,
        clock=clock,
    )


# =============================================================================
# Dashboard Fixtures
# =============================================================================

@pytest.fixture
def app(engine):
    """Flask test app."""
    return create_app(engine, testing=True)


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()
