from __future__ import annotations

import time
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request
from sqlalchemy import delete, select

from app.workhub.db import db_session
from app.workhub.errors import TooManyRequestsError, UnauthorizedError, raise_if_errors
from app.workhub.models import RefreshToken
from app.workhub.mongo import ROLES, USERS, is_object_id, mongo_db, to_object_id
from app.workhub.rbac import effective_role
from app.workhub.responses import json_body, success
from app.workhub.security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    verify_password,
)
from app.workhub.utils import clean_str, is_valid_email

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

PUBLIC_ENDPOINTS = frozenset(
    {
        "routes.index",
        "routes.health",
        "routes.healthz",
        "auth.login",
        "auth.refresh",
        "static",
    }
)


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _load_live_user(user_id: str) -> dict:
    if not is_object_id(user_id):
        raise UnauthorizedError("Access token invalid")
    user = mongo_db()[USERS].find_one({"_id": to_object_id(user_id), "deleted_at": None})
    if not user:
        raise UnauthorizedError("User not found")
    if not user.get("active", False):
        raise UnauthorizedError("Account is inactive")
    return user


def _set_current_user(user: dict) -> None:
    role_id = (user.get("organization_details") or {}).get("role")
    role_doc = mongo_db()[ROLES].find_one({"_id": role_id}) if role_id else None
    g.current_user = user
    g.current_role_doc = role_doc
    g.current_role = effective_role(user, role_doc)


def load_current_user() -> None:
    """
    Loads g.current_user from the bearer access token and assigns a per-request
    request_id. Every endpoint outside PUBLIC_ENDPOINTS requires a valid token.
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.request_started = time.perf_counter()
    g.current_user = None
    g.current_role = None
    g.current_role_doc = None

    # Unknown routes fall through to the 404 handler.
    if request.endpoint is None or request.endpoint in PUBLIC_ENDPOINTS:
        return
    if request.method == "OPTIONS":
        return

    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Access token is missing")
    payload = decode_token(token.strip())
    _set_current_user(_load_live_user(payload["sub"]))


def _issue_tokens(user: dict) -> dict:
    user_id = str(user["_id"])
    refresh_token, expires_at = create_refresh_token(user_id)
    now = datetime.utcnow()
    s = db_session()
    s.add(RefreshToken(user_id=user_id, refresh_token=refresh_token, expires_at=expires_at, created_at=now, updated_at=now))
    s.commit()
    return {
        "access_token": create_access_token(user_id),
        "refresh_token": refresh_token,
        "refresh_token_expires_at": expires_at,
    }


@bp.post("/login")
def login():
    from app.workhub.modules.users.service import user_profile

    payload = json_body()
    email = clean_str(payload.get("email")).lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        raise TooManyRequestsError("Too many login attempts. Please wait 5 minutes.")
    _record_attempt(ip)

    errors = []
    if not email or not is_valid_email(email):
        errors.append("A valid email is required")
    if not isinstance(password, str) or not password:
        errors.append("Password is required")
    raise_if_errors(errors)

    db = mongo_db()
    user = db[USERS].find_one({"email": email, "deleted_at": None})
    if not user or not verify_password(password, user.get("password")):
        current_app.logger.warning("Login failed (email=%s ip=%s request_id=%s)", email, ip, g.request_id)
        raise UnauthorizedError("Invalid credentials")
    if not user.get("active", False):
        raise UnauthorizedError("Account is inactive")

    _login_attempts[ip].clear()
    tokens = _issue_tokens(user)
    current_app.logger.info("Login ok user_id=%s request_id=%s", user["_id"], g.request_id)
    return success({**tokens, "user": user_profile(db, user)}, "Login successful")


@bp.post("/refresh")
def refresh():
    token = clean_str(json_body().get("refresh_token"))
    if not token:
        raise_if_errors(["Refresh token is required"])
    claims = decode_token(token, REFRESH)
    s = db_session()
    row = s.execute(
        select(RefreshToken).where(RefreshToken.refresh_token == token, RefreshToken.user_id == claims["sub"])
    ).scalar_one_or_none()
    if row is None or row.expires_at < int(time.time()):
        raise UnauthorizedError("Refresh token invalid")
    user = _load_live_user(claims["sub"])
    s.delete(row)
    s.commit()
    return success(_issue_tokens(user), "Token refreshed successfully")


@bp.post("/logout")
def logout():
    s = db_session()
    s.execute(delete(RefreshToken).where(RefreshToken.user_id == str(g.current_user["_id"])))
    s.commit()
    current_app.logger.info("Logout user_id=%s request_id=%s", g.current_user["_id"], g.request_id)
    return success(message="Logged out successfully")


@bp.get("/me")
def me():
    from app.workhub.modules.users.service import user_profile

    data = user_profile(mongo_db(), g.current_user)
    data["effective_role"] = g.current_role
    return success(data, "User profile fetched successfully")
