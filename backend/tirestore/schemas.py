from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- auth ----------
class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=4096)


class LoginUser(BaseModel):
    id: int
    name: str
    email: str
    role: str


class LoginResponse(CamelModel):
    token: str
    user: LoginUser
    security_warning: Optional[str] = None


# ---------- rate limit policies ----------
class RateLimitPolicyModel(CamelModel):
    model_config = ConfigDict(extra="forbid")

    window_ms: int = Field(gt=0)
    max_requests: int = Field(ge=1, alias="max")
    message: Optional[str] = Field(default=None, min_length=1, max_length=500)


class SpeedLimitPolicyModel(CamelModel):
    model_config = ConfigDict(extra="forbid")

    window_ms: int = Field(gt=0)
    delay_after: int = Field(ge=0)
    delay_ms: int = Field(ge=0)
    max_delay_ms: int = Field(ge=0)


class RateLimitSettingsPayload(CamelModel):
    model_config = ConfigDict(extra="forbid")

    general: Optional[RateLimitPolicyModel] = None
    auth: Optional[RateLimitPolicyModel] = None
    payment: Optional[RateLimitPolicyModel] = None
    upload: Optional[RateLimitPolicyModel] = None
    speed_limit: Optional[SpeedLimitPolicyModel] = None


class RateLimitSettingsUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    settings: RateLimitSettingsPayload
    apply_immediately: bool = False


class RateLimitSettingsResponse(BaseModel):
    success: bool = True
    data: dict[str, dict[str, Any]]


class ActionResponse(BaseModel):
    success: bool = True
    message: str


# ---------- statistics ----------
class BlockedAddressItem(CamelModel):
    address: str
    count: int


class WindowStatsItem(CamelModel):
    requests: int
    blocked: int
    unique_address_count: int


class StatsData(CamelModel):
    total_requests: int
    blocked_requests: int
    top_blocked_addresses: list[BlockedAddressItem]
    rate_limit_hits: dict[str, int]
    last_24_hours: WindowStatsItem = Field(alias="last24Hours")


class StatsResponse(BaseModel):
    success: bool = True
    data: StatsData


# ---------- security blocks ----------
class SecurityBlockItem(CamelModel):
    email: str
    ip_address: str
    failed_attempts: int
    total_attempts: int
    is_blocked: bool
    last_attempt: datetime
    last_attempt_type: str
    block_reason: Optional[str] = None
    user_agent: str


class SecurityBlocksResponse(CamelModel):
    blocks: list[SecurityBlockItem]
    total: int
    timestamp: datetime


class SecurityStatusItem(CamelModel):
    failed_attempts: int
    is_blocked: bool
    attempts_remaining: int
    recent_attempts: int
    next_allowed_time: Optional[datetime] = None


class SecurityStatusResponse(CamelModel):
    email: str
    ip_address: str
    security_status: SecurityStatusItem
    timestamp: datetime


class ClearSecurityBlockRequest(CamelModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = Field(default=None, min_length=1, max_length=320)
    ip_address: Optional[str] = Field(default=None, min_length=1, max_length=64)


class ClearResultItem(CamelModel):
    cleared: int
    type: str
    email: Optional[str] = None
    ip_address: Optional[str] = None


class ClearSecurityBlockResponse(CamelModel):
    success: bool = True
    message: str
    details: ClearResultItem
    cleared_at: datetime
