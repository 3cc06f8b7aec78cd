"""
Telegram notifications for monitoring alerts.

Subscribes to the engine's alert stream and forwards alerts at or above a
minimum level to a Telegram chat.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

import requests

from trading_monitor.monitoring.models import Alert, AlertLevel

if TYPE_CHECKING:
    from trading_monitor.monitoring.engine import MonitoringEngine
    from trading_monitor.monitoring.subscriptions import Subscription

logger = logging.getLogger(__name__)

_SEVERITY = {
    AlertLevel.INFO: 0,
    AlertLevel.WARN: 1,
    AlertLevel.ERROR: 2,
    AlertLevel.CRITICAL: 3,
}

_MARKERS = {
    AlertLevel.CRITICAL: "🚨🚨🚨",
    AlertLevel.ERROR: "🔴",
    AlertLevel.WARN: "⚠️",
    AlertLevel.INFO: "ℹ️",
}


class TelegramNotifier:
    """
    Sends alerts via the Telegram Bot API.

    Usage:
        notifier = TelegramNotifier(bot_token="...", chat_id="...")
        notifier.attach(engine)
    """

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        min_level: AlertLevel = AlertLevel.ERROR,
        timeout: float = 10.0,
        _telegram_api: Optional[Any] = None,  # For testing
    ) -> None:
        """
        Initialize the notifier.

        Args:
            bot_token: Bot token from @BotFather
            chat_id: Chat ID to send messages to
            min_level: Lowest alert level that is forwarded
            timeout: HTTP timeout in seconds
            _telegram_api: Injected API client for testing
        """
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._min_level = min_level
        self._timeout = timeout
        self._telegram_api = _telegram_api
        self.sent_count = 0

        if not self.enabled:
            logger.warning(
                "Telegram notifier is disabled. Set TELEGRAM_BOT_TOKEN and "
                "TELEGRAM_CHAT_ID to enable."
            )

    @property
    def enabled(self) -> bool:
        return self._telegram_api is not None or bool(self._bot_token and self._chat_id)

    def attach(self, engine: "MonitoringEngine") -> "Subscription":
        """Subscribe to the engine's new alerts."""
        return engine.on_alert(self._dispatch)

    def _dispatch(self, alert: Alert) -> Any:
        # Sending blocks on HTTP; keep it off a running event loop
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return self.notify(alert)
        return asyncio.to_thread(self.notify, alert)

    def notify(self, alert: Alert) -> bool:
        """
        Forward an alert if it is severe enough.

        Returns:
            True if the message was sent
        """
        if _SEVERITY[alert.level] < _SEVERITY[self._min_level]:
            return False

        return self._send(
            self.format_message(alert),
            silent=alert.level != AlertLevel.CRITICAL,
        )

    @staticmethod
    def format_message(alert: Alert) -> str:
        """Format alert message for Telegram."""
        marker = _MARKERS.get(alert.level, "")
        header = f"{marker} *{alert.level.value} Alert [{alert.service}]*"

        lines = [
            header,
            "",
            alert.message,
            f"Time: {alert.timestamp.isoformat()}",
        ]
        if alert.metadata:
            for key, value in alert.metadata.items():
                lines.append(f"{key}: {value}")

        return "\n".join(lines)

    def _send(self, text: str, silent: bool) -> bool:
        # Use injected API for testing
        if self._telegram_api:
            try:
                self._telegram_api.send_message(
                    chat_id=self._chat_id,
                    text=text,
                    parse_mode="Markdown",
                    disable_notification=silent,
                )
                self.sent_count += 1
                return True
            except Exception as e:
                logger.error(f"Telegram API error: {e}")
                return False

        if not self.enabled:
            logger.info(f"[ALERT SKIPPED] {text.splitlines()[0]}")
            return False

        try:
            url = self.API_URL.format(token=self._bot_token)
            payload = {
                "chat_id": self._chat_id,
                "text": text,
                "parse_mode": "Markdown",
                "disable_notification": silent,
            }

            response = requests.post(url, json=payload, timeout=self._timeout)
            response.raise_for_status()

            self.sent_count += 1
            logger.info(f"Sent Telegram alert: {text[:50]}...")
            return True

        except requests.RequestException as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False
