"""
Shared test fixtures for integration tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/trading_monitor/{component}/tests/conftest.py
"""

import pytest
from unittest.mock import MagicMock, AsyncMock


# =============================================================================
# Adapter Fixtures
# =============================================================================

@pytest.fixture
def fake_database():
    """
    Database adapter whose health can be flipped during a test.
    """
    db = MagicMock()
    db.stats = MagicMock(return_value={"avg_query_time": 20.0, "active_connections": 2})
    db.health_check = AsyncMock(return_value={"status": "healthy", "details": {}})
    return db


@pytest.fixture
def fake_cache():
    """Cache adapter in the shape of a typical cache service's stats()."""
    cache = MagicMock()
    cache.stats = AsyncMock(return_value={
        "hits": 80,
        "misses": 20,
        "totalOperations": 100,
        "hitRate": 80.0,
        "connected": True,
    })
    cache.health_check = AsyncMock(return_value={"status": "healthy", "details": {}})
    return cache


@pytest.fixture
def fake_trading():
    """Trading adapter reporting orders and PnL."""
    trading = MagicMock(spec=["stats"])
    trading.stats = MagicMock(return_value={"active_orders": 3, "total_trades": 17, "pnl": 42.5})
    return trading


@pytest.fixture
def mock_telegram_api():
    """
    Mock Telegram Bot API for alerting tests.
    """
    api = MagicMock()
    api.send_message = MagicMock(return_value={"ok": True})
    return api
