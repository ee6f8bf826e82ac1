from __future__ import annotations

import secrets
import string
import uuid
from datetime import datetime, timedelta, timezone

import jwt as pyjwt
from flask import current_app
from werkzeug.security import check_password_hash, generate_password_hash

from app.workhub.errors import UnauthorizedError

GENERATED_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%"
GENERATED_PASSWORD_LENGTH = 8

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    return check_password_hash(hashed, password)


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(GENERATED_PASSWORD_ALPHABET) for _ in range(length))


def _encode(user_id: str, token_type: str, ttl_seconds: int) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expires = now + timedelta(seconds=ttl_seconds)
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": expires,
    }
    token = pyjwt.encode(payload, current_app.config["JWT_SECRET"], algorithm=current_app.config["JWT_ALGORITHM"])
    return token, expires


def create_access_token(user_id: str) -> str:
    token, _ = _encode(user_id, ACCESS, int(current_app.config["ACCESS_TOKEN_TTL_SECONDS"]))
    return token


def create_refresh_token(user_id: str) -> tuple[str, int]:
    """Returns the token and its expiry as epoch seconds."""
    token, expires = _encode(user_id, REFRESH, int(current_app.config["REFRESH_TOKEN_TTL_SECONDS"]))
    return token, int(expires.timestamp())


def decode_token(token: str, expected_type: str = ACCESS) -> dict:
    label = "Access token" if expected_type == ACCESS else "Refresh token"
    try:
        payload = pyjwt.decode(
            token,
            current_app.config["JWT_SECRET"],
            algorithms=[current_app.config["JWT_ALGORITHM"]],
        )
    except pyjwt.ExpiredSignatureError as e:
        raise UnauthorizedError(f"{label} expired") from e
    except pyjwt.InvalidTokenError as e:
        raise UnauthorizedError(f"{label} invalid") from e
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise UnauthorizedError(f"{label} invalid")
    return payload
