"""
Monitoring Layer - Metrics, thresholds, alerting, and health aggregation.

This module provides:
    - MonitoringEngine: Composes every component and drives the periodic loops
    - MetricsCollector: Bounded history of SystemMetrics snapshots
    - ThresholdTable / ThresholdEvaluator: Runtime-mutable alert limits
    - AlertManager: Alert log with deduplication and resolve lifecycle
    - HealthCheckRunner: Adapter health checks escalated to alerts
    - HealthAggregator: Overall and per-service health from open alerts
    - RetentionManager: Purges old resolved alerts
    - SubscriptionBus: Alert and metrics observers
    - TelegramNotifier: Alert forwarding to Telegram
    - create_app: Flask dashboard factory

Alert Deduplication:
    - Same (service, message) won't be stored twice within 10 minutes
      while the first alert is unresolved
"""

from .models import (
    Alert,
    AlertLevel,
    AlertRequest,
    HealthReport,
    HealthStatus,
    SystemHealth,
    SystemMetrics,
)
from .adapters import SystemSelfCheck
from .alerting import AlertManager
from .subscriptions import Subscription, SubscriptionBus
from .thresholds import ThresholdEvaluator, Thresholds, ThresholdTable
from .metrics import MetricsCollector, ProcessSampler
from .health import HealthAggregator, HealthCheckRunner
from .retention import RetentionManager
from .engine import EngineConfig, MonitoringEngine
from .notifier import TelegramNotifier
from .dashboard import Dashboard, create_app

__all__ = [
    # Engine
    "MonitoringEngine",
    "EngineConfig",
    # Model
    "Alert",
    "AlertLevel",
    "AlertRequest",
    "HealthReport",
    "HealthStatus",
    "SystemHealth",
    "SystemMetrics",
    # Components
    "AlertManager",
    "HealthAggregator",
    "HealthCheckRunner",
    "MetricsCollector",
    "ProcessSampler",
    "RetentionManager",
    "Subscription",
    "SubscriptionBus",
    "SystemSelfCheck",
    "ThresholdEvaluator",
    "ThresholdTable",
    "Thresholds",
    # Outputs
    "TelegramNotifier",
    "Dashboard",
    "create_app",
]
