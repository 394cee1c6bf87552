from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from .attempts import AttemptWarning
from .config import settings
from .context import SecurityContext, get_security
from .errors import RequestRejected
from .incidents import CRITICAL, WARNING, log_security_incident
from .metrics import RATE_LIMIT_HITS_TOTAL
from .request_info import ClientInfo, client_info, client_ip
from .schemas import LoginRequest
from .threat import RequestSignals, assess

logger = logging.getLogger("tirestore.guard")


def _matches(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path == prefix or path.startswith(f"{prefix}/") for prefix in prefixes)


def limiter_category(path: str) -> Optional[str]:
    """Most specific category first; ``None`` for paths outside the API."""
    if _matches(path, settings.auth_path_prefixes):
        return "auth"
    if _matches(path, settings.payment_path_prefixes):
        return "payment"
    if _matches(path, settings.upload_path_prefixes):
        return "upload"
    if _matches(path, (settings.general_path_prefix,)):
        return "general"
    return None


async def rate_limit_middleware(request: Request, call_next):
    category = limiter_category(request.url.path)
    if category is None:
        return await call_next(request)

    security: SecurityContext = request.app.state.security
    ip = client_ip(request)
    limiters = security.limiters.get_limiters()

    delay = limiters.speed.delay_for(ip)
    if delay > 0:
        await asyncio.sleep(delay)

    limiter = limiters.for_category(category)
    decision = limiter.hit(ip)
    if not decision.allowed:
        security.stats.track_hit(category, ip)
        RATE_LIMIT_HITS_TOTAL.labels(category=category).inc()
        logger.warning(
            "Rate limit exceeded",
            extra={"event": "rate_limited", "category": category, "ip": ip, "path": request.url.path},
        )
        body = limiter.rejection()
        return JSONResponse(status_code=429, content=body, headers={"Retry-After": str(body["retryAfter"])})

    response = await call_next(request)
    # Handlers that raise never get here and are not counted either way.
    if response.status_code < 400:
        security.stats.track_success(ip)

    response.headers["RateLimit-Limit"] = str(decision.limit)
    response.headers["RateLimit-Remaining"] = str(decision.remaining)
    response.headers["RateLimit-Reset"] = str(int(decision.reset_after))
    return response


@dataclass(frozen=True)
class LoginGuardResult:
    credentials: LoginRequest
    security: SecurityContext
    client: ClientInfo
    warning: Optional[AttemptWarning]


async def login_guard(
    payload: LoginRequest,
    request: Request,
    security: SecurityContext = Depends(get_security),
) -> LoginGuardResult:
    """Runs ahead of any credential check: login throttle, bot heuristic, ledger block."""
    client = client_info(request)
    email = payload.email

    decision = security.login_throttle.hit(client.ip)
    if not decision.allowed:
        log_security_incident(
            WARNING,
            "RATE_LIMIT_EXCEEDED",
            "Login throttle exceeded",
            email=email,
            ip=client.ip,
            user_agent=client.user_agent,
        )
        security.ledger.record_rate_limited(email, client)
        body = security.login_throttle.rejection()
        raise RequestRejected(429, body, headers={"Retry-After": str(body["retryAfter"])})

    assessment = assess(RequestSignals.from_request(request, email=email, password=payload.password))
    if assessment.exceeds(security.suspicion_threshold):
        security.ledger.record_malicious(email, client, assessment.score)
        log_security_incident(
            CRITICAL,
            "MALICIOUS_ACTIVITY",
            "Login request flagged as automated or malicious",
            email=email,
            ip=client.ip,
            user_agent=client.user_agent,
            suspicion_score=assessment.score,
            reason=",".join(assessment.signals),
        )
        raise RequestRejected(
            429,
            {
                "error": "Suspicious activity detected",
                "message": (
                    "Your request has been flagged as potentially malicious. "
                    "Please contact support if this is an error."
                ),
                "suspicionScore": assessment.score,
                "supportEmail": security.support_email,
            },
        )

    blocking = security.ledger.blocking_record(email, client.ip)
    if blocking is not None:
        reason = blocking.block_reason or "Security violation"
        blocked_until = security.ledger.blocked_until(email, client.ip)
        raise RequestRejected(
            429,
            {
                "error": "Account temporarily blocked",
                "message": (
                    f"This email and IP combination has been temporarily blocked due to: {reason.rstrip('.')}. "
                    "Please contact support or try again later."
                ),
                "blockReason": reason,
                "blockedUntil": blocked_until.isoformat() if blocked_until else None,
                "supportEmail": security.support_email,
            },
        )

    return LoginGuardResult(
        credentials=payload,
        security=security,
        client=client,
        warning=security.ledger.warning(email, client.ip),
    )
