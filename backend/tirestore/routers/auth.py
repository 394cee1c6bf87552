from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text

from ..attempts import FailureOutcome
from ..db import get_db
from ..errors import RequestRejected
from ..guard import LoginGuardResult, login_guard
from ..logging_utils import mask_email
from ..schemas import LoginResponse, LoginUser
from ..security import create_access_token, verify_password

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger("tirestore.auth")


def _invalid_credentials(outcome: FailureOutcome) -> RequestRejected:
    body: dict[str, object] = {"error": "Invalid credentials"}
    if outcome.is_warning:
        body["warning"] = (
            f"{outcome.failed_count} failed attempts detected. "
            f"{outcome.attempts_remaining} attempts remaining before temporary block."
        )
    if outcome.is_blocked:
        body["blocked"] = True
        body["message"] = "Account temporarily blocked due to too many failed attempts. Please try again in 1 hour."
    return RequestRejected(401, body)


@router.post(
    "/login",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    summary="Authenticate with email and password",
    responses={
        401: {"description": "Invalid credentials, possibly with a warning or block notice"},
        429: {"description": "Throttled, flagged as automated, or temporarily blocked"},
    },
)
def login(guard: LoginGuardResult = Depends(login_guard)) -> LoginResponse:
    email = guard.credentials.email
    ledger = guard.security.ledger
    with get_db() as session:
        user = session.execute(
            text("SELECT id, name, email, password_hash, role, is_active FROM users WHERE email = :email"),
            {"email": email},
        ).mappings().first()

    # Unknown emails count against the pair as well.
    if user is None or not user["is_active"]:
        raise _invalid_credentials(ledger.record_failure(email, guard.client, "Invalid credentials - user not found"))
    if not verify_password(guard.credentials.password, user["password_hash"]):
        raise _invalid_credentials(ledger.record_failure(email, guard.client, "Invalid password"))

    ledger.record_success(email, guard.client)
    logger.info(
        "User logged in",
        extra={"event": "login_succeeded", "email": mask_email(email), "ip": guard.client.ip},
    )
    return LoginResponse(
        token=create_access_token(user["id"], user["role"]),
        user=LoginUser(id=user["id"], name=user["name"], email=user["email"], role=user["role"]),
        security_warning=guard.warning.message if guard.warning else None,
    )
