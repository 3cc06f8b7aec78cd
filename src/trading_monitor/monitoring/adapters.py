"""
Metric-source adapter contracts.

The engine only needs a health/stat-reporting capability from the database,
the cache and the trading subsystem. Any object with the right methods works;
methods may be plain functions or coroutine functions.
"""
from __future__ import annotations

import asyncio
import inspect
import os
import platform
import sys
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

from trading_monitor.monitoring.models import HealthReport, HealthStatus

MaybeAwaitable = Union[Any, Awaitable[Any]]


@runtime_checkable
class HealthCheckable(Protocol):
    """Anything that can report {status, details}."""

    def health_check(self) -> MaybeAwaitable:
        ...


@runtime_checkable
class StatsSource(Protocol):
    """Anything that can report a numeric stats snapshot."""

    def stats(self) -> MaybeAwaitable:
        ...


class DatabaseStatsSource(HealthCheckable, StatsSource, Protocol):
    """stats() -> {avg_query_time, active_connections}"""


class CacheStatsSource(HealthCheckable, StatsSource, Protocol):
    """stats() -> {connected, hit_rate, total_operations}"""


class TradingStatsSource(StatsSource, Protocol):
    """stats() -> {active_orders, total_trades, pnl}"""


async def call_adapter(
    method: Callable[[], MaybeAwaitable],
    timeout: Optional[float] = None,
) -> Any:
    """
    Call an adapter method, awaiting it if needed.

    The timeout applies to awaitable results only; synchronous adapters are
    expected to return promptly.

    Raises:
        asyncio.TimeoutError: If an awaitable result exceeds ``timeout``
    """
    result = method()
    if inspect.isawaitable(result):
        if timeout is None:
            return await result
        return await asyncio.wait_for(result, timeout=timeout)
    return result


def stat_value(stats: Any, *names: str, default: Any = 0) -> Any:
    """
    Read a stat by any of its names.

    Accepts mappings and plain objects, and both snake_case and camelCase keys
    (``avg_query_time`` / ``avgQueryTime``).
    """
    for name in names:
        if isinstance(stats, Mapping):
            if name in stats and stats[name] is not None:
                return stats[name]
        else:
            value = getattr(stats, name, None)
            if value is not None:
                return value
    return default


class SystemSelfCheck:
    """Process self-check. Reports healthy while the process is alive."""

    def __init__(self) -> None:
        self._started = time.monotonic()

    def health_check(self) -> HealthReport:
        return HealthReport(
            status=HealthStatus.HEALTHY,
            details={
                "uptime": time.monotonic() - self._started,
                "python_version": sys.version.split()[0],
                "platform": platform.system().lower(),
                "pid": os.getpid(),
            },
        )


def adapter_registry(**adapters: Optional[HealthCheckable]) -> Dict[str, HealthCheckable]:
    """Drop unset adapters, keeping registration order."""
    return {name: adapter for name, adapter in adapters.items() if adapter is not None}
