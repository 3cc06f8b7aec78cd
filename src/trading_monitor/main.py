"""
Trading Monitor - Main Entry Point

Runs the monitoring and alerting engine next to a trading bot: periodic
metrics collection, health checks and alert cleanup, with an optional web
dashboard and Telegram alert forwarding.

Usage:
    python -m trading_monitor.main                 # Engine + dashboard
    python -m trading_monitor.main --no-dashboard  # Engine only
    python -m trading_monitor.main --port 9060     # Dashboard on another port
    python -m trading_monitor.main --once          # One pass, print health, exit

Environment Variables:
    DATABASE_URL                   PostgreSQL connection string (optional)
    LOG_LEVEL                      Logging level (DEBUG/INFO/WARNING/ERROR)
    METRICS_INTERVAL_SECONDS       Metrics collection interval (default: 30)
    HEALTH_CHECK_INTERVAL_SECONDS  Health check interval (default: 120)
    CLEANUP_INTERVAL_SECONDS       Alert cleanup interval (default: 3600)
    ADAPTER_TIMEOUT_SECONDS        Timeout for each adapter call (default: 5)
    CPU_THRESHOLD                  CPU alert threshold, percent
    MEMORY_THRESHOLD               Memory alert threshold, percent
    QUERY_TIME_THRESHOLD_MS        Average query time alert threshold
    CACHE_HIT_RATE_THRESHOLD       Cache hit rate floor, percent
    ERROR_RATE_THRESHOLD           Alerts per hour before a high error rate alert
    CRITICAL_ERRORS_THRESHOLD      Critical alerts per hour before escalation
    DASHBOARD_ENABLED              Serve the dashboard (default: true)
    DASHBOARD_HOST                 Dashboard bind address (default: 127.0.0.1)
    DASHBOARD_PORT                 Dashboard port (default: 9050)
    TELEGRAM_BOT_TOKEN             Telegram bot token for alerts
    TELEGRAM_CHAT_ID               Telegram chat ID for alerts
    ALERT_MIN_LEVEL                Lowest level forwarded to Telegram (default: ERROR)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

from trading_monitor.monitoring import (  # noqa: E402
    AlertLevel,
    Dashboard,
    EngineConfig,
    MonitoringEngine,
    TelegramNotifier,
    Thresholds,
)
from trading_monitor.monitoring.exporters import MonitoringJSONEncoder  # noqa: E402
from trading_monitor.storage import Database, DatabaseConfig  # noqa: E402

# Environment variable -> Thresholds field
THRESHOLD_ENV_VARS = {
    "CPU_THRESHOLD": "cpu",
    "MEMORY_THRESHOLD": "memory",
    "QUERY_TIME_THRESHOLD_MS": "query_time",
    "CACHE_HIT_RATE_THRESHOLD": "cache_hit_rate",
    "ERROR_RATE_THRESHOLD": "error_rate",
    "CRITICAL_ERRORS_THRESHOLD": "critical_errors",
}


@dataclass
class MonitorConfig:
    """Complete monitor configuration."""

    # Database (no database adapter when empty)
    database_url: str = ""

    # Engine loops
    metrics_interval_seconds: float = 30
    health_check_interval_seconds: float = 120
    cleanup_interval_seconds: float = 3600
    adapter_timeout_seconds: float = 5

    # Threshold overrides, by Thresholds field name
    thresholds: Dict[str, float] = field(default_factory=dict)

    # Dashboard
    dashboard_enabled: bool = True
    dashboard_host: str = "127.0.0.1"  # 0.0.0.0 to expose on the network
    dashboard_port: int = 9050

    # Alerts
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    alert_min_level: AlertLevel = AlertLevel.ERROR

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        """Load configuration from environment variables."""
        thresholds = {
            name: float(os.environ[var])
            for var, name in THRESHOLD_ENV_VARS.items()
            if os.environ.get(var)
        }

        return cls(
            database_url=os.environ.get("DATABASE_URL", ""),
            metrics_interval_seconds=float(os.environ.get("METRICS_INTERVAL_SECONDS", "30")),
            health_check_interval_seconds=float(os.environ.get("HEALTH_CHECK_INTERVAL_SECONDS", "120")),
            cleanup_interval_seconds=float(os.environ.get("CLEANUP_INTERVAL_SECONDS", "3600")),
            adapter_timeout_seconds=float(os.environ.get("ADAPTER_TIMEOUT_SECONDS", "5")),
            thresholds=thresholds,
            dashboard_enabled=os.environ.get("DASHBOARD_ENABLED", "true").lower() == "true",
            dashboard_host=os.environ.get("DASHBOARD_HOST", "127.0.0.1"),
            dashboard_port=int(os.environ.get("DASHBOARD_PORT", "9050")),
            telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID"),
            alert_min_level=AlertLevel(os.environ.get("ALERT_MIN_LEVEL", "ERROR").upper()),
        )

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            metrics_interval_seconds=self.metrics_interval_seconds,
            health_check_interval_seconds=self.health_check_interval_seconds,
            cleanup_interval_seconds=self.cleanup_interval_seconds,
            adapter_timeout_seconds=self.adapter_timeout_seconds,
        )

    def initial_thresholds(self) -> Thresholds:
        """Defaults with the environment overrides applied."""
        return Thresholds().merged(**self.thresholds)


class MonitorApp:
    """
    Composition root.

    Owns the lifecycle of:
    - Database connection (when DATABASE_URL is set)
    - Monitoring engine
    - Telegram notifier
    - Dashboard (Flask in a daemon thread)
    """

    def __init__(
        self,
        config: MonitorConfig,
        cache: Optional[Any] = None,
        trading: Optional[Any] = None,
    ) -> None:
        self.config = config
        self._cache = cache
        self._trading = trading

        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized on start)
        self._db: Optional[Database] = None
        self.engine: Optional[MonitoringEngine] = None
        self._notifier: Optional[TelegramNotifier] = None
        self._dashboard: Optional[Dashboard] = None
        self._dashboard_thread: Optional[threading.Thread] = None
        self._flask_server = None

    async def initialize(self) -> MonitoringEngine:
        """Connect the database and build the engine and notifier."""
        if self.config.database_url:
            self._db = Database(DatabaseConfig(url=self.config.database_url))
            await self._db.initialize()
            logger.info("Database: Connected")
        else:
            logger.info("Database: Not configured (DATABASE_URL empty)")

        self.engine = MonitoringEngine(
            database=self._db,
            cache=self._cache,
            trading=self._trading,
            config=self.config.engine_config(),
            thresholds=self.config.initial_thresholds(),
        )

        self._notifier = TelegramNotifier(
            bot_token=self.config.telegram_bot_token,
            chat_id=self.config.telegram_chat_id,
            min_level=self.config.alert_min_level,
        )
        if self._notifier.enabled:
            self._notifier.attach(self.engine)
            logger.info(f"Telegram alerts: Enabled (min level {self.config.alert_min_level.value})")

        return self.engine

    async def run_once(self) -> Dict[str, Any]:
        """One collection and health pass. Returns the health snapshot dict."""
        engine = await self.initialize()
        try:
            await engine.collect_metrics()
            await engine.run_health_checks()
            return engine.get_system_health().to_dict()
        finally:
            await self.close()

    async def start(self) -> None:
        """Start monitoring and block until shutdown is requested."""
        logger.info("=" * 60)
        logger.info("TRADING MONITOR")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()

        # Setup signal handlers FIRST to catch early signals
        self._setup_signal_handlers()

        try:
            engine = await self.initialize()

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            await engine.start()

            if self.config.dashboard_enabled:
                self._dashboard = Dashboard(engine)
                self._start_dashboard()
            else:
                logger.info("Dashboard: Disabled via config")

            logger.info("Monitor started. Press Ctrl+C to stop")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop everything gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        if self.engine:
            try:
                await self.engine.stop()
            except Exception as e:
                logger.warning(f"Error stopping engine: {e}")

        if self._dashboard:
            try:
                self._stop_dashboard()
                self._dashboard.close()
            except Exception as e:
                logger.warning(f"Error stopping dashboard: {e}")
            self._dashboard = None

        await self.close()
        logger.info("Shutdown complete")

    async def close(self) -> None:
        if self._db:
            try:
                await self._db.close()
            except Exception as e:
                logger.warning(f"Error closing database: {e}")
            self._db = None

    def request_shutdown(self, reason: str = "manual") -> None:
        logger.info(f"Shutdown requested: {reason}")
        self._shutdown_event.set()

    def _start_dashboard(self) -> None:
        """Start the Flask dashboard in a background thread.

        Flask runs in a separate thread to avoid blocking the asyncio event loop.
        """
        from werkzeug.serving import make_server

        app = self._dashboard.create_app()
        self._flask_server = make_server(
            host=self.config.dashboard_host,
            port=self.config.dashboard_port,
            app=app,
            threaded=True,
        )

        def run_flask() -> None:
            logger.info(
                f"Dashboard: http://{self.config.dashboard_host}:{self.config.dashboard_port}"
            )
            self._flask_server.serve_forever()

        self._dashboard_thread = threading.Thread(target=run_flask, daemon=True)
        self._dashboard_thread.start()

    def _stop_dashboard(self) -> None:
        """Stop the Flask dashboard gracefully."""
        if self._flask_server:
            logger.info("Dashboard: Shutting down...")
            self._flask_server.shutdown()
            self._flask_server.server_close()
            self._flask_server = None

        if self._dashboard_thread:
            self._dashboard_thread.join(timeout=5)
            if self._dashboard_thread.is_alive():
                logger.warning("Dashboard thread did not stop cleanly")
            self._dashboard_thread = None

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Trading Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Do not serve the web dashboard",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Dashboard port (overrides DASHBOARD_PORT)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Collect once, run health checks, print health JSON and exit",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = MonitorConfig.from_env()

    # Override with command line args
    if args.no_dashboard:
        config.dashboard_enabled = False
    if args.port:
        config.dashboard_port = args.port

    app = MonitorApp(config)

    try:
        if args.once:
            health = await app.run_once()
            print(json.dumps(health, indent=2, cls=MonitoringJSONEncoder))
            return 0

        await app.start()
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
