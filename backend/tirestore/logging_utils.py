from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys

from .config import settings


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in (
            "event",
            "incident_type",
            "severity",
            "email",
            "ip",
            "user_agent",
            "category",
            "reason",
            "attempt_count",
            "suspicion_score",
            "path",
            "status",
            "db_backend",
        ):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def configure_logging() -> None:
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.setLevel(getattr(logging, settings.log_level, logging.INFO))
    root.addHandler(handler)


def mask_email(email: str | None) -> str | None:
    """Keep enough of an address to correlate incidents without logging it verbatim."""
    if not email:
        return email
    local, sep, domain = email.partition("@")
    if len(local) <= 2:
        masked_local = "*" * len(local)
    else:
        masked_local = f"{local[:2]}***"
    return f"{masked_local}{sep}{domain}"
