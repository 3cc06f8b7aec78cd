"""
Tests for health checks and health aggregation.

Bad health check results become alerts; health categories are derived from
the unresolved alerts.
"""
import asyncio
import pytest
from unittest.mock import MagicMock, AsyncMock

from trading_monitor.monitoring.adapters import SystemSelfCheck
from trading_monitor.monitoring.health import HealthAggregator, HealthCheckRunner
from trading_monitor.monitoring.models import AlertLevel, HealthReport, HealthStatus


def adapter(status="healthy", details=None):
    check = MagicMock(spec=["health_check"])
    check.health_check = AsyncMock(return_value={"status": status, "details": details or {}})
    return check


@pytest.mark.asyncio
class TestHealthCheckRunner:
    """Tests for running checks and escalating results."""

    async def test_healthy_check_raises_nothing(self, alert_manager):
        runner = HealthCheckRunner(alert_manager, {"database": adapter()})

        reports = await runner.run()

        assert reports["database"].status == HealthStatus.HEALTHY
        assert len(alert_manager) == 0

    async def test_unhealthy_raises_error(self, alert_manager):
        runner = HealthCheckRunner(
            alert_manager, {"database": adapter("unhealthy", {"connected": False})},
        )

        await runner.run()

        alerts = alert_manager.unresolved("DATABASE")
        assert len(alerts) == 1
        assert alerts[0].level == AlertLevel.ERROR
        assert alerts[0].message == "Service unhealthy: database"
        assert alerts[0].metadata == {"connected": False}

    async def test_degraded_raises_warn(self, alert_manager):
        runner = HealthCheckRunner(alert_manager, {"cache": adapter("degraded")})

        await runner.run()

        alerts = alert_manager.unresolved("CACHE")
        assert alerts[0].level == AlertLevel.WARN
        assert alerts[0].message == "Service degraded: cache"

    async def test_raising_check_is_unhealthy(self, alert_manager):
        """A check that throws must never be silently dropped."""
        broken = MagicMock(spec=["health_check"])
        broken.health_check = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        runner = HealthCheckRunner(alert_manager, {"database": broken})

        reports = await runner.run()

        assert reports["database"].status == HealthStatus.UNHEALTHY
        alerts = alert_manager.unresolved("DATABASE")
        assert alerts[0].message == "Health check failed for database"
        assert alerts[0].metadata == {"error": "refused"}

    async def test_timed_out_check_is_unhealthy(self, alert_manager):
        async def hang():
            await asyncio.sleep(1)

        slow = MagicMock(spec=["health_check"])
        slow.health_check = hang
        runner = HealthCheckRunner(alert_manager, {"cache": slow}, timeout=0.01)

        reports = await runner.run()

        assert reports["cache"].status == HealthStatus.UNHEALTHY
        assert "timed out" in alert_manager.unresolved("CACHE")[0].metadata["error"]

    async def test_invalid_result_is_unhealthy(self, alert_manager):
        odd = MagicMock(spec=["health_check"])
        odd.health_check = MagicMock(return_value={"status": "sideways"})
        runner = HealthCheckRunner(alert_manager, {"trading": odd})

        reports = await runner.run()

        assert reports["trading"].status == HealthStatus.UNHEALTHY
        assert alert_manager.unresolved("TRADING")[0].message == "Health check failed for trading"

    async def test_one_failure_does_not_stop_others(self, alert_manager):
        broken = MagicMock(spec=["health_check"])
        broken.health_check = MagicMock(side_effect=RuntimeError("boom"))
        runner = HealthCheckRunner(alert_manager, {"cache": broken, "database": adapter()})

        reports = await runner.run()

        assert reports["database"].status == HealthStatus.HEALTHY

    async def test_sync_check_and_self_check(self, alert_manager):
        runner = HealthCheckRunner(alert_manager, {"system": SystemSelfCheck()})

        reports = await runner.run()

        assert reports["system"].status == HealthStatus.HEALTHY
        assert "uptime" in reports["system"].details
        assert "pid" in reports["system"].details

    async def test_remembers_last_report(self, alert_manager):
        runner = HealthCheckRunner(alert_manager)
        runner.register("database", adapter("degraded"))

        assert runner.last_report("database") is None
        await runner.run()

        assert runner.services == ["database"]
        assert runner.last_report("DATABASE").status == HealthStatus.DEGRADED


class TestHealthAggregator:
    """Tests for overall and per-service health."""

    def test_healthy_without_alerts(self, alert_manager):
        aggregator = HealthAggregator(alert_manager)

        assert aggregator.overall() == HealthStatus.HEALTHY
        assert aggregator.per_service("DATABASE") == HealthStatus.HEALTHY

    def test_critical_is_unhealthy(self, alert_manager):
        alert_manager.raise_alert(AlertLevel.CRITICAL, "RISK", "Drawdown limit hit")
        aggregator = HealthAggregator(alert_manager)

        assert aggregator.overall() == HealthStatus.UNHEALTHY
        assert aggregator.per_service("risk") == HealthStatus.UNHEALTHY
        assert aggregator.per_service("CACHE") == HealthStatus.HEALTHY

    def test_service_error_is_degraded(self, alert_manager):
        alert_manager.raise_alert(AlertLevel.ERROR, "CACHE", "Eviction storm")
        aggregator = HealthAggregator(alert_manager)

        assert aggregator.per_service("CACHE") == HealthStatus.DEGRADED
        assert aggregator.overall() == HealthStatus.HEALTHY

    def test_more_than_two_service_warnings_is_degraded(self, alert_manager):
        aggregator = HealthAggregator(alert_manager)
        for i in range(2):
            alert_manager.raise_alert(AlertLevel.WARN, "CACHE", f"warning {i}")
        assert aggregator.per_service("CACHE") == HealthStatus.HEALTHY

        alert_manager.raise_alert(AlertLevel.WARN, "CACHE", "warning 2")
        assert aggregator.per_service("CACHE") == HealthStatus.DEGRADED

    def test_service_window_is_five_minutes(self, alert_manager, clock):
        alert_manager.raise_alert(AlertLevel.CRITICAL, "DATABASE", "Replica lag")
        aggregator = HealthAggregator(alert_manager)

        clock.advance(minutes=5, seconds=1)

        assert aggregator.per_service("DATABASE") == HealthStatus.HEALTHY
        # Overall ignores age
        assert aggregator.overall() == HealthStatus.UNHEALTHY

    def test_resolved_alerts_do_not_count(self, alert_manager):
        alert = alert_manager.raise_alert(AlertLevel.CRITICAL, "DATABASE", "Replica lag")
        alert_manager.resolve(alert.id)
        aggregator = HealthAggregator(alert_manager)

        assert aggregator.overall() == HealthStatus.HEALTHY
        assert aggregator.per_service("DATABASE") == HealthStatus.HEALTHY

    def test_overall_degraded_on_three_errors(self, alert_manager):
        aggregator = HealthAggregator(alert_manager)
        for i in range(2):
            alert_manager.raise_alert(AlertLevel.ERROR, "SYSTEM", f"error {i}")
        assert aggregator.overall() == HealthStatus.HEALTHY

        alert_manager.raise_alert(AlertLevel.ERROR, "SYSTEM", "error 2")
        assert aggregator.overall() == HealthStatus.DEGRADED

    def test_overall_degraded_on_six_alerts(self, alert_manager):
        aggregator = HealthAggregator(alert_manager)
        for i in range(5):
            alert_manager.raise_alert(AlertLevel.INFO, "SYSTEM", f"note {i}")
        assert aggregator.overall() == HealthStatus.HEALTHY

        alert_manager.raise_alert(AlertLevel.INFO, "SYSTEM", "note 5")
        assert aggregator.overall() == HealthStatus.DEGRADED

    def test_snapshot_defaults(self, alert_manager):
        snapshot = HealthAggregator(alert_manager).snapshot()

        assert snapshot.overall == HealthStatus.HEALTHY
        assert set(snapshot.services) == {"database", "cache", "trading", "risk"}
        assert snapshot.metrics.cpu.usage == 0
        assert snapshot.alerts == []

    def test_snapshot_lists_ten_newest_unresolved(self, alert_manager):
        for i in range(12):
            alert_manager.raise_alert(AlertLevel.INFO, "SYSTEM", f"note {i}")

        snapshot = HealthAggregator(alert_manager).snapshot()

        assert len(snapshot.alerts) == 10
        assert snapshot.alerts[0].message == "note 11"


@pytest.mark.asyncio
class TestUnhealthyDatabaseScenario:
    """A failed database health check shows up immediately in per-service health."""

    async def test_unhealthy_database_check(self, alert_manager):
        runner = HealthCheckRunner(alert_manager, {"database": adapter("unhealthy")})
        aggregator = HealthAggregator(alert_manager, health_reports=runner.last_report)

        await runner.run()

        alerts = alert_manager.unresolved("DATABASE")
        assert [a.level for a in alerts] == [AlertLevel.ERROR]
        assert aggregator.per_service("DATABASE") == HealthStatus.UNHEALTHY

    async def test_resolving_alert_clears_service(self, alert_manager):
        runner = HealthCheckRunner(alert_manager, {"database": adapter("unhealthy")})
        aggregator = HealthAggregator(alert_manager, health_reports=runner.last_report)
        await runner.run()

        for alert in alert_manager.unresolved("DATABASE"):
            alert_manager.resolve(alert.id)

        assert aggregator.per_service("DATABASE") == HealthStatus.HEALTHY

    async def test_degraded_check_follows_alert_rule(self, alert_manager):
        """A single WARN from a degraded health check leaves the service healthy."""
        runner = HealthCheckRunner(alert_manager, {"database": adapter("degraded")})
        aggregator = HealthAggregator(alert_manager, health_reports=runner.last_report)

        await runner.run()

        assert [a.level for a in alert_manager.unresolved("DATABASE")] == [AlertLevel.WARN]
        assert aggregator.per_service("DATABASE") == HealthStatus.HEALTHY

    async def test_unhealthy_check_outranks_warnings(self, alert_manager):
        alert_manager.raise_alert(AlertLevel.WARN, "DATABASE", "Slow database queries: 1200ms average")
        runner = HealthCheckRunner(alert_manager, {"database": adapter("unhealthy")})
        aggregator = HealthAggregator(alert_manager, health_reports=runner.last_report)

        await runner.run()

        assert aggregator.per_service("DATABASE") == HealthStatus.UNHEALTHY


class TestHealthReport:
    """Tests for adapter result normalization."""

    def test_coerce_mapping(self):
        report = HealthReport.coerce({"status": "DEGRADED", "details": {"lag": 3}})

        assert report.status == HealthStatus.DEGRADED
        assert report.details == {"lag": 3}

    def test_coerce_rejects_garbage(self):
        with pytest.raises(ValueError):
            HealthReport.coerce("fine")
        with pytest.raises(ValueError):
            HealthReport.coerce({"details": {}})
