from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _as_prefixes(value: str | None, default: str) -> tuple[str, ...]:
    raw = value if value is not None else default
    return tuple(item.strip().rstrip("/") for item in raw.split(",") if item.strip())


def _normalize_database_url(value: str | None, fallback: str) -> str:
    raw = (value or fallback).strip() or fallback
    # Some dashboards accidentally store quoted values.
    if (raw.startswith('"') and raw.endswith('"')) or (raw.startswith("'") and raw.endswith("'")):
        raw = raw[1:-1].strip()

    if "://" not in raw:
        return raw

    scheme, suffix = raw.split("://", 1)
    scheme = scheme.lower()

    if scheme in {
        "postgres",
        "postgresql",
        "postgresql+psycopg",
        "postgresql+asyncpg",
        "postgresql+pg8000",
        "postgresql+psycopg2",
    }:
        url = f"postgresql+psycopg2://{suffix}"
        if "sslmode" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}sslmode=require"
        return url

    return raw


@dataclass(frozen=True)
class Settings:
    env: str
    secret_key: str
    jwt_algorithm: str
    jwt_exp_minutes: int
    port: int
    database_url: str
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout: int
    db_pool_recycle: int
    cors_origins: list[str]
    debug: bool
    log_level: str
    enable_prometheus_metrics: bool
    trust_proxy_headers: bool
    settings_cache_ttl_seconds: int
    limiter_update_interval_seconds: int
    attempt_window_seconds: int
    attempt_warning_threshold: int
    attempt_block_threshold: int
    attempt_sweep_interval_seconds: int
    suspicion_threshold: int
    login_throttle_max: int
    login_throttle_max_flagged: int
    login_throttle_window_seconds: int
    stats_window_hours: int
    security_support_email: str
    auth_path_prefixes: tuple[str, ...]
    payment_path_prefixes: tuple[str, ...]
    upload_path_prefixes: tuple[str, ...]
    general_path_prefix: str

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_production(self) -> bool:
        return self.env.lower() not in {"development", "dev", "test", "testing"}

    def validate(self) -> None:
        """Raise early on dangerous mis-configurations in non-dev environments."""
        if self.is_production and self.secret_key == _DEFAULT_SECRET_KEY:
            raise RuntimeError(
                "SECRET_KEY must be explicitly set in production. "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )
        if self.attempt_warning_threshold >= self.attempt_block_threshold:
            raise RuntimeError("ATTEMPT_WARNING_THRESHOLD must be lower than ATTEMPT_BLOCK_THRESHOLD")


_DEFAULT_SECRET_KEY = "change-me-in-production-min-32-bytes-key"


settings = Settings(
    env=os.getenv("ENV", "development"),
    secret_key=os.getenv("SECRET_KEY", _DEFAULT_SECRET_KEY),
    jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
    jwt_exp_minutes=_as_int(os.getenv("JWT_EXP_MINUTES"), 120),
    port=_as_int(os.getenv("PORT"), 8000),
    database_url=_normalize_database_url(
        os.getenv("DATABASE_URL"),
        "sqlite:///./tirestore.db",
    ),
    db_pool_size=max(1, _as_int(os.getenv("DB_POOL_SIZE"), 5)),
    db_max_overflow=max(0, _as_int(os.getenv("DB_MAX_OVERFLOW"), 10)),
    db_pool_timeout=max(1, _as_int(os.getenv("DB_POOL_TIMEOUT"), 30)),
    db_pool_recycle=max(60, _as_int(os.getenv("DB_POOL_RECYCLE"), 1800)),
    cors_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", os.getenv("FRONTEND_URL", "http://localhost:5173")).split(",")
        if origin.strip()
    ],
    debug=_as_bool(os.getenv("DEBUG"), False),
    log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    enable_prometheus_metrics=_as_bool(os.getenv("ENABLE_PROMETHEUS_METRICS"), True),
    trust_proxy_headers=_as_bool(os.getenv("TRUST_PROXY_HEADERS"), False),
    settings_cache_ttl_seconds=max(0, _as_int(os.getenv("SETTINGS_CACHE_TTL_SECONDS"), 5 * 60)),
    limiter_update_interval_seconds=max(0, _as_int(os.getenv("LIMITER_UPDATE_INTERVAL_SECONDS"), 5 * 60)),
    attempt_window_seconds=max(1, _as_int(os.getenv("ATTEMPT_WINDOW_SECONDS"), 60 * 60)),
    attempt_warning_threshold=max(1, _as_int(os.getenv("ATTEMPT_WARNING_THRESHOLD"), 3)),
    attempt_block_threshold=max(2, _as_int(os.getenv("ATTEMPT_BLOCK_THRESHOLD"), 6)),
    attempt_sweep_interval_seconds=max(0, _as_int(os.getenv("ATTEMPT_SWEEP_INTERVAL_SECONDS"), 0)),
    suspicion_threshold=max(1, _as_int(os.getenv("SUSPICION_THRESHOLD"), 3)),
    login_throttle_max=max(1, _as_int(os.getenv("LOGIN_THROTTLE_MAX"), 10)),
    login_throttle_max_flagged=max(1, _as_int(os.getenv("LOGIN_THROTTLE_MAX_FLAGGED"), 3)),
    login_throttle_window_seconds=max(1, _as_int(os.getenv("LOGIN_THROTTLE_WINDOW_SECONDS"), 15 * 60)),
    stats_window_hours=max(1, _as_int(os.getenv("STATS_WINDOW_HOURS"), 24)),
    security_support_email=os.getenv("SECURITY_SUPPORT_EMAIL", "security@tirestore.com").strip(),
    auth_path_prefixes=_as_prefixes(os.getenv("AUTH_PATH_PREFIXES"), "/api/auth"),
    payment_path_prefixes=_as_prefixes(os.getenv("PAYMENT_PATH_PREFIXES"), "/api/payment,/api/stripe"),
    upload_path_prefixes=_as_prefixes(os.getenv("UPLOAD_PATH_PREFIXES"), "/api/upload"),
    general_path_prefix=os.getenv("GENERAL_PATH_PREFIX", "/api").strip().rstrip("/") or "/api",
)

settings.validate()
