from __future__ import annotations

from dataclasses import asdict
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from ..context import SecurityContext, get_security
from ..security import AuthContext, require_admin
from ..schemas import (
    ActionResponse,
    RateLimitSettingsResponse,
    RateLimitSettingsUpdate,
    StatsData,
    StatsResponse,
)
from ..settings_store import RATE_LIMIT_CATEGORY

router = APIRouter(prefix="/api/admin/rate-limits", tags=["admin"])
logger = logging.getLogger("tirestore.admin")


@router.get("/settings", response_model=RateLimitSettingsResponse)
def get_rate_limit_settings(
    security: SecurityContext = Depends(get_security),
    _admin: AuthContext = Depends(require_admin),
) -> RateLimitSettingsResponse:
    merged = security.store.defaults(RATE_LIMIT_CATEGORY)
    for name, value in security.store.get(RATE_LIMIT_CATEGORY).items():
        if isinstance(value, dict):
            merged[name] = {**merged.get(name, {}), **value}
    return RateLimitSettingsResponse(data=merged)


@router.put("/settings", response_model=ActionResponse)
def update_rate_limit_settings(
    payload: RateLimitSettingsUpdate,
    security: SecurityContext = Depends(get_security),
    admin: AuthContext = Depends(require_admin),
) -> ActionResponse:
    values = payload.settings.model_dump(by_alias=True, exclude_none=True)
    if not values:
        raise HTTPException(status_code=422, detail="No rate limit settings provided")

    try:
        written = security.store.set_many(values, category=RATE_LIMIT_CATEGORY, actor_id=admin.user_id)
    except SQLAlchemyError as exc:
        logger.exception(
            "Failed to update rate limit settings",
            extra={"event": "rate_limit_settings_update_failed", "path": "/api/admin/rate-limits/settings"},
        )
        raise HTTPException(status_code=500, detail="Failed to update rate limit settings") from exc

    logger.info(
        "Rate limit settings updated",
        extra={"event": "rate_limit_settings_updated", "reason": ",".join(written)},
    )
    if payload.apply_immediately:
        security.limiters.invalidate()
        return ActionResponse(message="Rate limit settings updated and applied.")
    return ActionResponse(
        message="Rate limit settings updated successfully. Changes will take effect within 5 minutes.",
    )


@router.post("/refresh", response_model=ActionResponse)
def refresh_rate_limiters(
    security: SecurityContext = Depends(get_security),
    _admin: AuthContext = Depends(require_admin),
) -> ActionResponse:
    security.limiters.invalidate()
    return ActionResponse(message="Rate limiters will be rebuilt from stored settings on the next request.")


@router.get("/stats", response_model=StatsResponse, response_model_by_alias=True)
def get_rate_limit_stats(
    security: SecurityContext = Depends(get_security),
    _admin: AuthContext = Depends(require_admin),
) -> StatsResponse:
    return StatsResponse(data=StatsData.model_validate(asdict(security.stats.snapshot())))


@router.post("/reset", response_model=ActionResponse)
def reset_rate_limit_stats(
    security: SecurityContext = Depends(get_security),
    admin: AuthContext = Depends(require_admin),
) -> ActionResponse:
    security.stats.reset()
    logger.info("Rate limit statistics reset", extra={"event": "rate_limit_stats_reset", "reason": f"user:{admin.user_id}"})
    return ActionResponse(message="Rate limit statistics reset successfully.")
