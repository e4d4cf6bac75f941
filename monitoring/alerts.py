"""monitoring/alerts.py

Telegram Alerts.

Telegram bot client for keeper notifications:
- Crank retry exhaustion (slab left stale)

Design goals:
- Zero secrets in code (env vars only)
- Fail-safe (never crash the keeper on alert failure)
- Strict timeouts (prevent blocking)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


ALERT_CRITICAL = "CRITICAL"


@dataclass
class TelegramBot:
    """Telegram bot client for sending alerts.

    Attributes:
        token: Bot token from TELEGRAM_BOT_TOKEN env var.
        chat_id: Chat ID from TELEGRAM_CHAT_ID env var.
        timeout: Request timeout in seconds (default: 3).
    """

    token: str
    chat_id: str
    timeout: int = 3
    _session: Optional[requests.Session] = None

    @classmethod
    def from_env(cls, timeout: int = 3) -> "TelegramBot":
        """Create bot from environment variables."""
        token = os.getenv("TELEGRAM_BOT_TOKEN")
        chat_id = os.getenv("TELEGRAM_CHAT_ID")

        if not token or not chat_id:
            logger.warning("[alerts] TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID not set, alerts disabled")
            return cls(token="", chat_id="", timeout=timeout)

        return cls(token=token, chat_id=chat_id, timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)

    def _get_session(self) -> requests.Session:
        """Get or create a session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def send_message(
        self,
        text: str,
        level: str = ALERT_CRITICAL,
        disable_notification: bool = False,
    ) -> bool:
        """Send a message to the configured chat.

        Args:
            text: Message text to send.
            level: Alert level prefix.
            disable_notification: Mute the message.

        Returns:
            True if sent successfully, False otherwise.
        """
        if not self.enabled:
            logger.info(f"[alerts] Would send (disabled): {text[:50]}...")
            return False

        payload = {
            "chat_id": self.chat_id,
            "text": f"[{level}] {text}",
            "parse_mode": "Markdown",
            "disable_notification": disable_notification,
        }

        url = f"https://api.telegram.org/bot{self.token}/sendMessage"

        try:
            response = self._get_session().post(
                url,
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            logger.info(f"[alerts] Sent: {text[:50]}...")
            return True

        except requests.exceptions.Timeout:
            logger.error(f"[alerts] Timeout sending message: {text[:50]}...")
            return False
        except requests.exceptions.RequestException as e:
            logger.error(f"[alerts] Request failed: {e}")
            return False


def compose_crank_failure_alert(
    attempts: int,
    metrics: Dict[str, Any],
    last_error: str = "",
) -> str:
    """Compose the alert sent when the crank exhausts its retries.

    Args:
        attempts: Attempts made in the failed invocation.
        metrics: Metrics snapshot (CrankMetrics.to_dict()).
        last_error: Last error seen.

    Returns:
        Formatted message string.
    """
    msg = (
        f"*Crank Failed! Percolator slab stale!*\n"
        f"• Attempts: `{attempts}`\n"
        f"• Successes: `{metrics.get('success_count', 0)}`\n"
        f"• Failures: `{metrics.get('failure_count', 0)}`\n"
        f"• Last success slot: `{metrics.get('last_success_slot', 0)}`"
    )
    if last_error:
        msg += f"\n• Last error: `{last_error[:200]}`"
    return msg
