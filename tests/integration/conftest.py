"""
Integration test fixtures.

These fixtures wire a real engine with fast loop intervals and verify
cross-component interactions.
"""

import pytest

from trading_monitor.monitoring import EngineConfig

# Mark all tests in this directory as integration tests
pytestmark = pytest.mark.integration


@pytest.fixture
def fast_config():
    """Engine config with loops ticking every few milliseconds."""
    return EngineConfig(
        metrics_interval_seconds=0.02,
        health_check_interval_seconds=0.02,
        cleanup_interval_seconds=0.05,
        adapter_timeout_seconds=0.5,
        cpu_mode="interval",
    )
