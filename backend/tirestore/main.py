from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy import text
from starlette.middleware.cors import CORSMiddleware

from .config import settings
from .context import SecurityContext
from .db import check_db_connection, get_db, init_db
from .errors import RequestRejected, request_rejected_handler
from .guard import rate_limit_middleware
from .logging_utils import configure_logging
from .metrics import CONTENT_TYPE_LATEST, REQUESTS_TOTAL, generate_latest
from .routers.admin_rate_limits import router as admin_rate_limits_router
from .routers.admin_security import router as admin_security_router
from .routers.auth import router as auth_router

configure_logging()
logger = logging.getLogger("tirestore.app")


def _healthcheck() -> dict[str, str]:
    with get_db() as session:
        session.execute(text("SELECT 1"))
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


def create_app(security: Optional[SecurityContext] = None) -> FastAPI:
    app = FastAPI(title="Tire Store API", version="1.0.0")
    app.state.security = security or SecurityContext.from_settings()
    api_router = APIRouter(prefix="/api")

    @app.on_event("startup")
    async def startup_event() -> None:
        check_db_connection()
        init_db()
        app.state.security.start()
        logger.info(
            "Backend startup complete",
            extra={
                "event": "startup",
                "db_backend": "sqlite" if settings.is_sqlite else "postgres",
            },
        )

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await app.state.security.dispose()

    app.add_exception_handler(RequestRejected, request_rejected_handler)

    # Registered first so it runs innermost; the request counter below sees limiter 429s too.
    app.middleware("http")(rate_limit_middleware)

    @app.middleware("http")
    async def request_metrics_middleware(request: Request, call_next):
        response = await call_next(request)
        REQUESTS_TOTAL.labels(method=request.method, path=request.url.path, status=str(response.status_code)).inc()
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @api_router.get("/health")
    async def api_healthcheck() -> dict[str, str]:
        return _healthcheck()

    @app.get("/health")
    async def healthcheck() -> dict[str, str]:
        return _healthcheck()

    @app.get("/metrics")
    async def metrics() -> Response:
        if not settings.enable_prometheus_metrics:
            raise HTTPException(status_code=404, detail="Metrics disabled")
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(auth_router)
    app.include_router(admin_rate_limits_router)
    app.include_router(admin_security_router)
    app.include_router(api_router)
    return app


app = create_app()
