"""
Trading Monitor.

In-process monitoring and alerting engine for trading bots and data pipelines.
Samples system and service metrics, evaluates them against thresholds, raises
deduplicated alerts, aggregates health, and notifies subscribers.
"""

__version__ = "0.1.0"
