from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from fastapi import Depends, Header, HTTPException
import jwt
from sqlalchemy import text

from .config import settings
from .db import get_db

_password_hasher = PasswordHasher()


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    role: str


def hash_password(password: str) -> str:
    return _password_hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def create_access_token(user_id: int, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_exp_minutes),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> AuthContext:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=401, detail="Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not role:
        raise HTTPException(status_code=401, detail="Malformed token payload")
    try:
        user_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=401, detail="Malformed token payload") from exc

    return AuthContext(user_id=user_id, role=str(role))


def get_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    return parts[1].strip()


def auth_context_from_header(authorization: Optional[str] = Header(default=None)) -> AuthContext:
    token = get_bearer_token(authorization)
    return decode_token(token)


def require_admin(auth: AuthContext = Depends(auth_context_from_header)) -> AuthContext:
    # Stored role wins over the token claim, which can outlive a demotion.
    with get_db() as session:
        row = session.execute(
            text("SELECT role, is_active FROM users WHERE id = :user_id"),
            {"user_id": auth.user_id},
        ).mappings().first()

    if not row or not row["is_active"]:
        raise HTTPException(status_code=401, detail="User not found")
    if row["role"] != "admin":
        raise HTTPException(status_code=403, detail="Forbidden: Admins only")
    return AuthContext(user_id=auth.user_id, role=row["role"])
