"""
Dashboard for web-based monitoring.

Provides a Flask application exposing the engine's health, metrics, alerts,
thresholds and exports over REST, plus an SSE stream of new alerts and
metrics snapshots.

Flask runs in its own thread; every engine method used here is synchronous
and guarded by the engine's locks.
"""
from __future__ import annotations

import json
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Generator, List

from flask import Flask, Response, jsonify, request

from trading_monitor.monitoring.exporters import FORMAT_JSON, FORMAT_PROMETHEUS, MonitoringJSONEncoder
from trading_monitor.monitoring.models import Alert, HealthStatus, SystemMetrics

if TYPE_CHECKING:
    from trading_monitor.monitoring.engine import MonitoringEngine

logger = logging.getLogger(__name__)

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
SSE_QUEUE_SIZE = 100
SSE_KEEPALIVE_SECONDS = 30


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Dashboard:
    """
    Dashboard web application.

    Endpoints:
        GET  /health                    - Health snapshot (503 when unhealthy)
        GET  /api/metrics               - Metrics history (?hours=1)
        GET  /api/alerts                - Alerts (?resolved=false&limit=50)
        POST /api/alerts/<id>/resolve   - Resolve an alert
        GET  /api/thresholds            - Current thresholds
        POST /api/thresholds            - Merge-update thresholds
        GET  /api/export                - Export (?format=json|prometheus)
        GET  /metrics                   - Exposition format for scrapers
        GET  /api/stream                - SSE stream of alerts and metrics

    Usage:
        dashboard = Dashboard(engine)
        app = dashboard.create_app()
        app.run(port=9050)
    """

    def __init__(self, engine: "MonitoringEngine") -> None:
        self._engine = engine

        # SSE subscribers
        self._sse_queues: List[queue.Queue] = []
        self._sse_lock = threading.Lock()

        self._subscriptions = [
            engine.on_alert(self._on_alert),
            engine.on_metrics(self._on_metrics),
        ]

    def close(self) -> None:
        """Stop listening to the engine."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()

    def create_app(self, testing: bool = False) -> Flask:
        """
        Create the Flask application.

        Args:
            testing: Whether to enable testing mode

        Returns:
            Flask application instance
        """
        app = Flask(__name__)
        app.config["TESTING"] = testing

        # Store reference for routes
        app.dashboard = self  # type: ignore

        self._register_routes(app)

        return app

    def _register_routes(self, app: Flask) -> None:
        """Register all HTTP routes."""
        engine = self._engine

        @app.route("/health")
        def health() -> Response:
            """Get overall system health."""
            snapshot = engine.get_system_health()
            status_code = 503 if snapshot.overall == HealthStatus.UNHEALTHY else 200
            return jsonify(snapshot.to_dict()), status_code

        @app.route("/api/metrics")
        def metrics() -> Response:
            """Get metrics history."""
            hours = request.args.get("hours", 1.0, type=float)
            return jsonify({"metrics": [m.to_dict() for m in engine.get_metrics(hours)]})

        @app.route("/api/alerts")
        def alerts() -> Response:
            """Get alerts."""
            resolved = _parse_bool(request.args.get("resolved"))
            limit = request.args.get("limit", 50, type=int)
            return jsonify({
                "alerts": [a.to_dict() for a in engine.get_alerts(resolved=resolved, limit=limit)],
            })

        @app.route("/api/alerts/<alert_id>/resolve", methods=["POST"])
        def resolve_alert(alert_id: str) -> Response:
            """Resolve an alert."""
            if not engine.resolve_alert(alert_id):
                return jsonify({"resolved": False, "error": f"Unknown alert: {alert_id}"}), 404
            return jsonify({"resolved": True, "id": alert_id})

        @app.route("/api/thresholds", methods=["GET", "POST"])
        def thresholds() -> Response:
            """Get or merge-update thresholds."""
            if request.method == "GET":
                return jsonify(engine.thresholds.current().model_dump())

            changes = request.get_json(silent=True)
            if not isinstance(changes, dict):
                return jsonify({"error": "Expected a JSON object"}), 400

            try:
                updated = engine.update_thresholds(**changes)
            except ValueError as e:
                return jsonify({"error": str(e)}), 400

            return jsonify(updated.model_dump())

        @app.route("/api/export")
        def export() -> Response:
            """Export metrics in JSON or exposition format."""
            fmt = request.args.get("format", FORMAT_JSON)
            try:
                body = engine.export_metrics(fmt)
            except ValueError as e:
                return jsonify({"error": str(e)}), 400

            mimetype = "application/json"
            if fmt.lower() == FORMAT_PROMETHEUS:
                mimetype = PROMETHEUS_CONTENT_TYPE
            return Response(body, mimetype=mimetype)

        @app.route("/metrics")
        def prometheus() -> Response:
            """Exposition format for external scrapers."""
            return Response(
                engine.export_metrics(FORMAT_PROMETHEUS),
                mimetype=PROMETHEUS_CONTENT_TYPE,
            )

        @app.route("/api/stream")
        def stream() -> Response:
            """SSE stream for real-time updates."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            def generate() -> Generator[str, None, None]:
                q: queue.Queue = queue.Queue(maxsize=SSE_QUEUE_SIZE)

                with dashboard._sse_lock:
                    dashboard._sse_queues.append(q)

                try:
                    # Send initial connection event
                    yield f"data: {json.dumps({'type': 'connected'})}\n\n"

                    while True:
                        try:
                            event = q.get(timeout=SSE_KEEPALIVE_SECONDS)
                            yield f"data: {json.dumps(event, cls=MonitoringJSONEncoder)}\n\n"
                        except queue.Empty:
                            yield ": keepalive\n\n"

                finally:
                    with dashboard._sse_lock:
                        if q in dashboard._sse_queues:
                            dashboard._sse_queues.remove(q)

            return Response(
                generate(),
                mimetype="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "X-Accel-Buffering": "no",
                },
            )

    def _on_alert(self, alert: Alert) -> None:
        self.broadcast_event({"type": "alert", "alert": alert.to_dict()})

    def _on_metrics(self, metrics: SystemMetrics) -> None:
        self.broadcast_event({"type": "metrics", "metrics": metrics.to_dict()})

    @property
    def subscriber_count(self) -> int:
        with self._sse_lock:
            return len(self._sse_queues)

    def broadcast_event(self, event: Dict[str, Any]) -> None:
        """Broadcast event to all SSE subscribers."""
        if "timestamp" not in event:
            event["timestamp"] = datetime.now(timezone.utc).isoformat()
        with self._sse_lock:
            for q in self._sse_queues:
                try:
                    q.put_nowait(event)
                except queue.Full:
                    logger.debug("SSE queue full, dropping event")


def create_app(engine: "MonitoringEngine", testing: bool = False) -> Flask:
    """
    Factory function to create the dashboard app.

    Args:
        engine: MonitoringEngine to expose
        testing: Enable testing mode

    Returns:
        Flask application
    """
    return Dashboard(engine).create_app(testing=testing)
