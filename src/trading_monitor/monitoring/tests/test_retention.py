"""
Tests for alert retention.
"""
from datetime import timedelta

from trading_monitor.monitoring.models import AlertLevel
from trading_monitor.monitoring.retention import RetentionManager


class TestRetentionCleanup:
    """Resolved alerts older than 24 hours are purged."""

    def test_removes_only_expired_resolved(self, alert_manager, clock):
        old = alert_manager.raise_alert(AlertLevel.WARN, "SYSTEM", "25 hours ago")
        old_open = alert_manager.raise_alert(AlertLevel.ERROR, "SYSTEM", "25 hours ago, open")
        alert_manager.resolve(old.id)

        clock.advance(hours=24)
        recent = alert_manager.raise_alert(AlertLevel.WARN, "SYSTEM", "1 hour ago")
        alert_manager.resolve(recent.id)
        clock.advance(hours=1)

        removed = RetentionManager(alert_manager, clock=clock).cleanup()

        assert removed == 1
        assert alert_manager.get_alerts(resolved=True) == [recent]
        assert alert_manager.unresolved() == [old_open]

    def test_unresolved_survive_any_age(self, alert_manager, clock):
        alert_manager.raise_alert(AlertLevel.CRITICAL, "RISK", "Drawdown limit hit")
        clock.advance(days=30)

        assert RetentionManager(alert_manager, clock=clock).cleanup() == 0
        assert len(alert_manager) == 1

    def test_idempotent(self, alert_manager, clock):
        alert = alert_manager.raise_alert(AlertLevel.INFO, "SYSTEM", "note")
        alert_manager.resolve(alert.id)
        clock.advance(hours=25)
        retention = RetentionManager(alert_manager, clock=clock)

        assert retention.cleanup() == 1
        assert retention.cleanup() == 0

    def test_custom_window(self, alert_manager, clock):
        alert = alert_manager.raise_alert(AlertLevel.INFO, "SYSTEM", "note")
        alert_manager.resolve(alert.id)
        clock.advance(hours=2)
        retention = RetentionManager(alert_manager, retention=timedelta(hours=1), clock=clock)

        assert retention.retention == timedelta(hours=1)
        assert retention.cleanup() == 1
