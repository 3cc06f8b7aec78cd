"""
Metrics export formats.

JSON dump of recent snapshots and the plaintext gauge exposition format read
by external scrapers. Gauge names and line shapes are a compatibility surface.
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional, Sequence, Tuple

from trading_monitor.monitoring.models import SystemMetrics

JSON_EXPORT_LIMIT = 100

FORMAT_JSON = "json"
FORMAT_PROMETHEUS = "prometheus"


class MonitoringJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime and Enum values."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def format_number(value: Any) -> str:
    """Render a number the way the exposition format expects (42.5, 5, 0)."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _gauges(metrics: SystemMetrics) -> Iterable[Tuple[str, str, Any]]:
    return (
        ("cpu_usage_percent", "Current CPU usage percentage", metrics.cpu.usage),
        ("memory_usage_percent", "Current memory usage percentage", metrics.memory.percentage),
        ("database_query_time_ms", "Average database query time in milliseconds",
         metrics.database.avg_query_time),
        ("cache_hit_rate_percent", "Cache hit rate percentage", metrics.cache.hit_rate),
        ("active_orders_count", "Current number of active orders", metrics.trading.active_orders),
        ("total_pnl", "Current total profit and loss", metrics.trading.pnl),
    )


def to_prometheus(latest: Optional[SystemMetrics]) -> str:
    """
    Render the latest snapshot as gauges.

    Returns an empty string when nothing has been collected yet.
    """
    if latest is None:
        return ""

    blocks = [
        f"# HELP {name} {help_text}\n"
        f"# TYPE {name} gauge\n"
        f"{name} {format_number(value)}"
        for name, help_text, value in _gauges(latest)
    ]
    return "\n\n".join(blocks)


def to_json(history: Sequence[SystemMetrics], limit: int = JSON_EXPORT_LIMIT) -> str:
    """Dump the most recent snapshots (newest first) as indented JSON."""
    return json.dumps(
        [metrics.to_dict() for metrics in history[:limit]],
        indent=2,
        cls=MonitoringJSONEncoder,
    )


def export(history: Sequence[SystemMetrics], fmt: str = FORMAT_JSON) -> str:
    """
    Export newest-first history in the requested format.

    Raises:
        ValueError: If the format is not supported
    """
    fmt = (fmt or FORMAT_JSON).lower()
    if fmt == FORMAT_PROMETHEUS:
        return to_prometheus(history[0] if history else None)
    if fmt == FORMAT_JSON:
        return to_json(history)
    raise ValueError(f"Unsupported export format: {fmt}")
