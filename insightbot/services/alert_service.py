"""Operational alerts for failed turns, posted to a Telegram chat.

Alerts are keyed by (title, service). Repeats inside the cooldown window are dropped.
"""

import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from insightbot.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = os.environ.get("ALERT_BOT_TOKEN")
ALERT_CHAT_ID = os.environ.get("ALERT_CHAT_ID")
ALERT_COOLDOWN_SECONDS = float(os.environ.get("ALERT_COOLDOWN_SECONDS", "300"))
ALERT_TIMEOUT_SECONDS = 10.0
MAX_DETAIL_CHARS = 500

ERROR = "ERROR"
WARNING = "WARNING"
LEVEL_MARKERS = {WARNING: "⚠️", ERROR: "❌"}

_last_sent: dict[tuple[str, Optional[str]], float] = {}
_last_sent_lock = threading.Lock()


def mask_phone(phone: Optional[str]) -> Optional[str]:
    """'5511999998888' -> '•••8888'."""
    if not phone:
        return None
    return f"•••{phone[-4:]}"


@dataclass
class TurnAlert:
    title: str
    level: str = ERROR
    service: Optional[str] = None
    phone: Optional[str] = None
    instance: Optional[str] = None
    detail: Optional[str] = None

    @property
    def key(self) -> tuple[str, Optional[str]]:
        return self.title, self.service

    def render(self) -> str:
        lines = [f"{LEVEL_MARKERS.get(self.level, '📢')} *InsightBot {self.level}*", "", self.title]
        facts = (("serviço", self.service), ("contato", mask_phone(self.phone)), ("instância", self.instance))
        present = [f"{label}: {value}" for label, value in facts if value]
        if present:
            lines += [""] + present
        if self.detail:
            lines += ["", "```", self.detail[:MAX_DETAIL_CHARS], "```"]
        return "\n".join(lines)


def clear_cooldowns() -> None:
    with _last_sent_lock:
        _last_sent.clear()


def _in_cooldown(alert: TurnAlert, now: float) -> bool:
    with _last_sent_lock:
        last = _last_sent.get(alert.key)
        if last is not None and now - last < ALERT_COOLDOWN_SECONDS:
            return True
        _last_sent[alert.key] = now
        return False


def send_alert(alert: TurnAlert, *, clock: Callable[[], float] = time.monotonic) -> bool:
    """Post the alert. Returns True only when Telegram accepted it."""
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning("Alert not configured", extra={"context": {"title": alert.title, "service": alert.service}})
        return False
    if _in_cooldown(alert, clock()):
        logger.info("Alert suppressed by cooldown", extra={"context": {"title": alert.title, "service": alert.service}})
        return False

    try:
        with httpx.Client(timeout=ALERT_TIMEOUT_SECONDS) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": alert.render(), "parse_mode": "Markdown"},
            )
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False
    return response.status_code == 200


def alert_error(title: str, **fields) -> bool:
    return send_alert(TurnAlert(title=title, level=ERROR, **fields))


def alert_warning(title: str, **fields) -> bool:
    return send_alert(TurnAlert(title=title, level=WARNING, **fields))
