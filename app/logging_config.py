"""
Logging setup for the API and the Celery sweep.

Production emits one JSON object per line so reconciliation failures can be
searched by payment id or token; development keeps a readable text format.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.config import settings

# Attributes callers may attach with logger.info(..., extra={...})
CONTEXT_FIELDS = ("payment_id", "expense_id", "token", "gateway_status", "action")

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "celery.redirected")


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = str(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


def mask_token(token: Optional[str]) -> str:
    """Gateway tokens are bearer-like; only log a prefix."""
    if not token:
        return "<none>"
    return f"{token[:10]}..." if len(token) > 10 else token


def configure_logging(level: Optional[int] = None) -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    if level is None:
        level = logging.INFO if settings.is_production else logging.DEBUG
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s [%(name)s] %(message)s")
        )
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
