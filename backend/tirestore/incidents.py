from __future__ import annotations

import logging
from typing import Any

from .logging_utils import mask_email
from .metrics import SECURITY_INCIDENTS_TOTAL

logger = logging.getLogger("tirestore.security")

WARNING = "WARNING"
CRITICAL = "CRITICAL"

_LEVELS = {WARNING: logging.WARNING, CRITICAL: logging.CRITICAL}


def log_security_incident(
    severity: str,
    incident_type: str,
    message: str,
    email: str | None = None,
    **fields: Any,
) -> None:
    SECURITY_INCIDENTS_TOTAL.labels(type=incident_type).inc()
    logger.log(
        _LEVELS.get(severity, logging.WARNING),
        message,
        extra={
            "event": "security_incident",
            "incident_type": incident_type,
            "severity": severity,
            "email": mask_email(email),
            **fields,
        },
    )
