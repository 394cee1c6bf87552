from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..context import SecurityContext, get_security
from ..incidents import WARNING, log_security_incident
from ..security import AuthContext, require_admin
from ..schemas import (
    ClearResultItem,
    ClearSecurityBlockRequest,
    ClearSecurityBlockResponse,
    SecurityBlockItem,
    SecurityBlocksResponse,
    SecurityStatusItem,
    SecurityStatusResponse,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger("tirestore.admin")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/security-blocks", response_model=SecurityBlocksResponse, response_model_by_alias=True)
def list_security_blocks(
    security: SecurityContext = Depends(get_security),
    _admin: AuthContext = Depends(require_admin),
) -> SecurityBlocksResponse:
    blocks = [
        SecurityBlockItem(
            email=summary.identity,
            ip_address=summary.source_address,
            failed_attempts=summary.failed_attempts,
            total_attempts=summary.total_attempts,
            is_blocked=summary.is_blocked,
            last_attempt=summary.last_attempt,
            last_attempt_type=summary.last_attempt_kind,
            block_reason=summary.block_reason,
            user_agent=summary.user_agent,
        )
        for summary in security.ledger.list_blocks()
    ]
    return SecurityBlocksResponse(blocks=blocks, total=len(blocks), timestamp=_now())


@router.get("/security-status/{email}", response_model=SecurityStatusResponse, response_model_by_alias=True)
def get_security_status(
    email: str,
    ip_address: str = Query(alias="ipAddress", min_length=1, max_length=64),
    security: SecurityContext = Depends(get_security),
    _admin: AuthContext = Depends(require_admin),
) -> SecurityStatusResponse:
    status = security.ledger.status(email, ip_address)
    return SecurityStatusResponse(
        email=email,
        ip_address=ip_address,
        security_status=SecurityStatusItem(
            failed_attempts=status.failed_attempts,
            is_blocked=status.is_blocked,
            attempts_remaining=status.attempts_remaining,
            recent_attempts=status.recent_attempts,
            next_allowed_time=status.next_allowed_time,
        ),
        timestamp=_now(),
    )


def _clear_message(mode: str, email: Optional[str], ip_address: Optional[str]) -> str:
    if mode == "specific":
        return f"Security block cleared for {email} from {ip_address}"
    if mode == "identity":
        return f"All security blocks cleared for {email}"
    if mode == "address":
        return f"All security blocks cleared for IP {ip_address}"
    return "All security blocks cleared"


@router.post("/clear-security-block", response_model=ClearSecurityBlockResponse, response_model_by_alias=True)
def clear_security_block(
    payload: ClearSecurityBlockRequest,
    security: SecurityContext = Depends(get_security),
    admin: AuthContext = Depends(require_admin),
) -> ClearSecurityBlockResponse:
    result = security.ledger.clear(identity=payload.email, source_address=payload.ip_address)
    logger.info(
        "Security blocks cleared",
        extra={
            "event": "security_blocks_cleared",
            "reason": f"mode:{result.mode}",
            "attempt_count": result.cleared,
            "ip": payload.ip_address,
        },
    )
    return ClearSecurityBlockResponse(
        message=_clear_message(result.mode, result.identity, result.source_address),
        details=ClearResultItem(
            cleared=result.cleared,
            type=result.mode,
            email=result.identity,
            ip_address=result.source_address,
        ),
        cleared_at=_now(),
    )


@router.post("/emergency-clear-blocks", response_model=ClearSecurityBlockResponse, response_model_by_alias=True)
def emergency_clear_blocks(
    security: SecurityContext = Depends(get_security),
    admin: AuthContext = Depends(require_admin),
) -> ClearSecurityBlockResponse:
    result = security.ledger.clear()
    log_security_incident(
        WARNING,
        "EMERGENCY_CLEAR",
        "All security blocks cleared by an administrator",
        reason=f"user:{admin.user_id}",
        attempt_count=result.cleared,
    )
    return ClearSecurityBlockResponse(
        message=f"Emergency clear completed. {result.cleared} security blocks removed.",
        details=ClearResultItem(cleared=result.cleared, type=result.mode),
        cleared_at=_now(),
    )
