"""
Subscription bus for alert and metrics observers.

Fan-out is best-effort: a failing subscriber is logged and skipped, it never
reaches the collector or the alert manager.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable, List, Optional

from trading_monitor.monitoring.models import Alert, SystemMetrics

logger = logging.getLogger(__name__)

AlertCallback = Callable[[Alert], Any]
MetricsCallback = Callable[[SystemMetrics], Any]


class Subscription:
    """
    Handle returned by SubscriptionBus.on_alert / on_metrics.

    Usage:
        sub = bus.on_alert(print)
        ...
        sub.unsubscribe()

        with bus.on_metrics(handler):
            ...
    """

    def __init__(self, bus: "SubscriptionBus", topic: str, callback: Callable) -> None:
        self._bus = bus
        self.topic = topic
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._bus._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


class SubscriptionBus:
    """Registers observers and delivers new alerts and metrics to them."""

    ALERT = "alert"
    METRICS = "metrics"

    def __init__(self) -> None:
        self._subscriptions: dict[str, List[Subscription]] = {
            self.ALERT: [],
            self.METRICS: [],
        }
        self._lock = threading.Lock()

    def on_alert(self, callback: AlertCallback) -> Subscription:
        return self._add(self.ALERT, callback)

    def on_metrics(self, callback: MetricsCallback) -> Subscription:
        return self._add(self.METRICS, callback)

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._subscriptions[topic])
            return sum(len(subs) for subs in self._subscriptions.values())

    def publish_alert(self, alert: Alert) -> int:
        """Deliver an alert. Returns the number of callbacks that succeeded."""
        return self._publish(self.ALERT, alert)

    def publish_metrics(self, metrics: SystemMetrics) -> int:
        """Deliver a metrics snapshot. Returns the number of callbacks that succeeded."""
        return self._publish(self.METRICS, metrics)

    def _add(self, topic: str, callback: Callable) -> Subscription:
        if not callable(callback):
            raise TypeError(f"{topic} callback must be callable, got {callback!r}")

        subscription = Subscription(self, topic, callback)
        with self._lock:
            self._subscriptions[topic].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions[subscription.topic]
            if subscription in subs:
                subs.remove(subscription)

    def _publish(self, topic: str, payload: Any) -> int:
        # Snapshot so callbacks can unsubscribe while we iterate
        with self._lock:
            subscriptions = list(self._subscriptions[topic])

        delivered = 0
        for subscription in subscriptions:
            try:
                result = subscription.callback(payload)
                if inspect.isawaitable(result):
                    self._schedule(topic, result)
                delivered += 1
            except Exception:
                logger.exception(f"Error in {topic} callback {subscription.callback!r}")

        return delivered

    def _schedule(self, topic: str, awaitable: Any) -> None:
        """Run a coroutine callback on the current loop without awaiting it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Dropping async {topic} callback: no running event loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(awaitable)
        task.add_done_callback(lambda t: self._log_task_error(topic, t))

    @staticmethod
    def _log_task_error(topic: str, task: "asyncio.Task") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in async {topic} callback: {error}")
