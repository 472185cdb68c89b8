"""Structured JSON logs, one object per line on stdout.

Records emitted inside a webhook turn carry the turn fields (phone, message id,
instance, tenant, tier) as top-level keys so a turn can be followed with a
single filter. Per-call detail goes under "context".
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

TURN_FIELDS = ("phone", "message_id", "instance", "tenant_id", "tier")
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in TURN_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"insightbot.{name}")


class TurnLogger(logging.LoggerAdapter):
    """Adapter bound to one webhook turn.

    Usage: ``turn_log.info("...", context={"rows": 3})``. Fields learned later in
    the turn (tenant, tier) are added with ``bind``.
    """

    def bind(self, **fields: Any) -> "TurnLogger":
        known = {name: value for name, value in fields.items() if name in TURN_FIELDS and value is not None}
        return TurnLogger(self.logger, {**self.extra, **known})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = {name: value for name, value in self.extra.items() if value is not None}
        context = kwargs.pop("context", None)
        if context:
            extra["context"] = context
        kwargs["extra"] = {**extra, **kwargs.get("extra", {})}
        return msg, kwargs
