from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo.database import Database

from app.workhub.audit import CREATE, DELETE, UPDATE, record_activity
from app.workhub.errors import BadRequestError, ConflictError, NotFoundError, UnauthorizedError, raise_if_errors
from app.workhub.mongo import (
    DEPARTMENTS,
    LOCATIONS,
    ORGANIZATIONS,
    ROLES,
    USER_ACTIVITIES,
    USERS,
    serialize,
    to_object_id,
)
from app.workhub.responses import PageParams
from app.workhub.security import generate_password, hash_password, verify_password
from app.workhub.utils import MOBILE_RE, clean_str, find_live, is_valid_email, optional_str, parse_choice, user_summaries

logger = logging.getLogger(__name__)

PASSWORD_SETTINGS = ("manual", "auto-generate")
USER_STATUSES = ("active", "inactive", "all")
ORG_DETAIL_FIELDS = ("role", "department", "organization", "location", "reporting_manager")
MIN_PASSWORD_LENGTH = 8

_PROFILE_FIELDS = ("first_name", "middle_name", "last_name", "mobile_number", "gender", "designation", "profile_pic")


def validate_user_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate user create/update payload. Returns list of errors."""
    errors: list[str] = []

    def present(key: str) -> bool:
        return key in payload and payload[key] is not None

    if not partial or present("first_name"):
        first = clean_str(payload.get("first_name"))
        if len(first) < 2:
            errors.append("First name must be at least 2 characters")
    if not partial or present("last_name"):
        if not clean_str(payload.get("last_name")):
            errors.append("Last name is required")
    if not partial or present("email"):
        email = clean_str(payload.get("email"))
        if not email:
            errors.append("Email is required")
        elif not is_valid_email(email):
            errors.append("Invalid email address")
    if not partial or present("mobile_number"):
        mobile = clean_str(payload.get("mobile_number"))
        if not mobile:
            errors.append("Mobile number is required")
        elif not MOBILE_RE.match(mobile):
            errors.append("Invalid mobile number")
    if not partial or present("gender"):
        if not clean_str(payload.get("gender")):
            errors.append("Gender is required")
    if present("active") and not isinstance(payload["active"], bool):
        errors.append("Active must be a boolean")
    if present("password"):
        pw = payload["password"]
        if not isinstance(pw, str) or len(pw) < MIN_PASSWORD_LENGTH:
            errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if present("password_setting") and payload["password_setting"] not in PASSWORD_SETTINGS:
        errors.append(f"Password setting must be one of: {', '.join(PASSWORD_SETTINGS)}")
    if payload.get("password_setting") == "manual" and not payload.get("password") and not partial:
        errors.append("Password is required when password setting is manual")
    if present("organization_details") and not isinstance(payload["organization_details"], dict):
        errors.append("Organization details must be an object")
    if present("assets"):
        assets = payload["assets"]
        if not isinstance(assets, list) or not all(
            isinstance(a, dict) and clean_str(a.get("asset_name")) for a in assets
        ):
            errors.append("Assets must be a list of objects with an asset_name")
    return errors


def _parse_assets(raw: list) -> list[dict]:
    return [{"asset_id": optional_str(a.get("asset_id")), "asset_name": clean_str(a.get("asset_name"))} for a in raw]


def resolve_org_details(db: Database, raw: dict, *, user_id: ObjectId | None, actor_id: ObjectId | None) -> dict:
    """
    Validate each referenced id and return the stored shape (ObjectIds or None).
    Only keys present in `raw` are returned so partial updates can merge.
    """
    out: dict[str, ObjectId | None] = {}
    for field in ORG_DETAIL_FIELDS:
        if field not in raw:
            continue
        value = raw[field]
        if value in (None, ""):
            out[field] = None
            continue
        oid = to_object_id(value, field.replace("_", " "))
        if field == "role":
            if not db[ROLES].find_one({"_id": oid}, {"_id": 1}):
                raise NotFoundError("Role not found")
        elif field == "department":
            find_live(db, DEPARTMENTS, oid, "Department", {"_id": 1})
        elif field == "organization":
            find_live(db, ORGANIZATIONS, oid, "Organization", {"_id": 1})
        elif field == "location":
            find_live(db, LOCATIONS, oid, "Location", {"_id": 1})
        elif field == "reporting_manager":
            if (user_id is not None and oid == user_id) or (user_id is None and actor_id is not None and oid == actor_id):
                raise BadRequestError("A user cannot be their own reporting manager")
            find_live(db, USERS, oid, "Reporting manager", {"_id": 1})
        out[field] = oid
    return out


def populate_org_details(db: Database, details: dict | None) -> dict:
    details = details or {}
    out: dict[str, Any] = {k: None for k in ORG_DETAIL_FIELDS}
    if details.get("role"):
        r = db[ROLES].find_one({"_id": details["role"]}, {"name": 1})
        out["role"] = {"id": str(r["_id"]), "name": r.get("name")} if r else None
    if details.get("department"):
        d = db[DEPARTMENTS].find_one({"_id": details["department"]}, {"name": 1})
        out["department"] = {"id": str(d["_id"]), "name": d.get("name")} if d else None
    if details.get("organization"):
        o = db[ORGANIZATIONS].find_one({"_id": details["organization"]}, {"organization_name": 1, "email": 1})
        out["organization"] = (
            {"id": str(o["_id"]), "organization_name": o.get("organization_name"), "email": o.get("email")} if o else None
        )
    if details.get("location"):
        loc = db[LOCATIONS].find_one({"_id": details["location"]}, {"city": 1, "country": 1, "street_address": 1})
        out["location"] = serialize(loc) if loc else None
    if details.get("reporting_manager"):
        out["reporting_manager"] = user_summaries(db, [details["reporting_manager"]]).get(str(details["reporting_manager"]))
    return out


def user_profile(db: Database, user: dict) -> dict:
    data = serialize(user)
    data["organization_details"] = populate_org_details(db, user.get("organization_details"))
    return data


def get_user(db: Database, user_id: Any) -> dict:
    return find_live(db, USERS, user_id, "User")


def _ensure_email_available(db: Database, email: str, exclude_id: ObjectId | None = None) -> None:
    q: dict[str, Any] = {"email": email, "deleted_at": None}
    if exclude_id is not None:
        q["_id"] = {"$ne": exclude_id}
    if db[USERS].find_one(q, {"_id": 1}):
        raise ConflictError("A user with this email already exists")


def create_user(db: Database, payload: dict, actor: dict) -> tuple[dict, str | None]:
    """Create a user. Returns the stored document and the generated password, if any."""
    raise_if_errors(validate_user_payload(payload))
    email = clean_str(payload["email"]).lower()
    _ensure_email_available(db, email)

    details = resolve_org_details(db, payload.get("organization_details") or {}, user_id=None, actor_id=actor["_id"])
    setting = payload.get("password_setting") or ("manual" if payload.get("password") else "auto-generate")
    generated: str | None = None
    password = payload.get("password")
    if setting == "auto-generate":
        generated = generate_password()
        password = generated

    now = datetime.utcnow()
    doc: dict[str, Any] = {
        "first_name": clean_str(payload["first_name"]),
        "middle_name": optional_str(payload.get("middle_name")),
        "last_name": clean_str(payload["last_name"]),
        "email": email,
        "mobile_number": clean_str(payload["mobile_number"]),
        "gender": clean_str(payload["gender"]),
        "designation": optional_str(payload.get("designation")),
        "profile_pic": optional_str(payload.get("profile_pic")),
        "active": payload.get("active", True),
        "password": hash_password(password) if password else None,
        "password_setting": setting,
        "assets": _parse_assets(payload.get("assets") or []),
        "role": None,
        "organization_details": {k: details.get(k) for k in ORG_DETAIL_FIELDS},
        "created_by": actor["_id"],
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
    }
    result = db[USERS].insert_one(doc)
    doc["_id"] = result.inserted_id
    record_activity(db, USER_ACTIVITIES, entity_id=doc["_id"], action=CREATE, actor=actor, new=doc)
    logger.info("User created id=%s email=%s by=%s", doc["_id"], email, actor["_id"])
    return doc, generated


def update_user(db: Database, user_id: Any, payload: dict, actor: dict) -> dict:
    if not payload:
        raise BadRequestError("No fields provided for update")
    raise_if_errors(validate_user_payload(payload, partial=True))
    user = get_user(db, user_id)
    updates: dict[str, Any] = {}

    for field in _PROFILE_FIELDS:
        if field in payload and payload[field] is not None:
            updates[field] = clean_str(payload[field]) or None
    if "email" in payload and payload["email"] is not None:
        email = clean_str(payload["email"]).lower()
        if email != user.get("email"):
            _ensure_email_available(db, email, exclude_id=user["_id"])
        updates["email"] = email
    if "active" in payload and payload["active"] is not None:
        updates["active"] = payload["active"]
    if payload.get("password"):
        updates["password"] = hash_password(payload["password"])
    if payload.get("password_setting"):
        updates["password_setting"] = payload["password_setting"]
    if "assets" in payload and payload["assets"] is not None:
        updates["assets"] = _parse_assets(payload["assets"])
    if payload.get("organization_details") is not None:
        resolved = resolve_org_details(db, payload["organization_details"], user_id=user["_id"], actor_id=actor["_id"])
        merged = dict(user.get("organization_details") or {})
        merged.update(resolved)
        updates["organization_details"] = {k: merged.get(k) for k in ORG_DETAIL_FIELDS}

    updates["updated_at"] = datetime.utcnow()
    db[USERS].update_one({"_id": user["_id"]}, {"$set": updates})
    updated = db[USERS].find_one({"_id": user["_id"]})
    record_activity(db, USER_ACTIVITIES, entity_id=user["_id"], action=UPDATE, actor=actor, old=user, new=updated)
    return updated


def set_user_status(db: Database, user_id: Any, active: Any, actor: dict) -> dict:
    if not isinstance(active, bool):
        raise_if_errors(["Active must be a boolean"])
    return update_user(db, user_id, {"active": active}, actor)


def reset_password(db: Database, user_id: Any, actor: dict) -> str:
    user = get_user(db, user_id)
    temporary = generate_password()
    db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(temporary), "password_setting": "auto-generate", "updated_at": datetime.utcnow()}},
    )
    record_activity(
        db,
        USER_ACTIVITIES,
        entity_id=user["_id"],
        action=UPDATE,
        actor=actor,
        old=user,
        new={**user, "password_setting": "auto-generate"},
    )
    logger.info("Password reset for user id=%s by=%s", user["_id"], actor["_id"])
    return temporary


def update_own_password(db: Database, user: dict, current_password: Any, new_password: Any) -> None:
    if not isinstance(current_password, str) or not current_password:
        raise_if_errors(["Current password is required"])
    if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
        raise_if_errors([f"New password must be at least {MIN_PASSWORD_LENGTH} characters"])
    stored = db[USERS].find_one({"_id": user["_id"]}, {"password": 1}) or {}
    if not verify_password(current_password, stored.get("password")):
        raise UnauthorizedError("Current password is incorrect")
    db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(new_password), "password_setting": "manual", "updated_at": datetime.utcnow()}},
    )


def delete_user(db: Database, user_id: Any, actor: dict) -> None:
    user = get_user(db, user_id)
    if user["_id"] == actor["_id"]:
        raise BadRequestError("You cannot delete your own account")
    now = datetime.utcnow()
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"deleted_at": now, "active": False, "updated_at": now}})
    record_activity(db, USER_ACTIVITIES, entity_id=user["_id"], action=DELETE, actor=actor, old=user)


def build_user_query(filters: dict, search_regex: str | None = None) -> dict:
    q: dict[str, Any] = {"deleted_at": None}
    for param, field in (
        ("organization_id", "organization_details.organization"),
        ("department_id", "organization_details.department"),
        ("role_id", "organization_details.role"),
        ("location_id", "organization_details.location"),
    ):
        if filters.get(param):
            q[field] = to_object_id(filters[param], param.replace("_", " "))
    status = parse_choice(filters.get("status"), USER_STATUSES, "Status")
    if status == "active":
        q["active"] = True
    elif status == "inactive":
        q["active"] = False
    if search_regex:
        q["$or"] = [
            {"first_name": {"$regex": f"^{search_regex}", "$options": "i"}},
            {"last_name": {"$regex": f"^{search_regex}", "$options": "i"}},
            {"email": {"$regex": search_regex, "$options": "i"}},
        ]
    return q


def list_users(db: Database, params: PageParams, filters: dict) -> tuple[list[dict], int]:
    q = build_user_query(filters, params.search_regex)
    total = db[USERS].count_documents(q)
    cursor = db[USERS].find(q).sort("created_at", -1).skip(params.skip).limit(params.page_size)
    return [user_profile(db, u) for u in cursor], total


def all_users(db: Database) -> list[dict]:
    cursor = db[USERS].find({"deleted_at": None, "active": True}).sort([("first_name", 1), ("last_name", 1)])
    return [serialize(u) for u in cursor]


def export_user_rows(db: Database, filters: dict, search: str | None) -> list[dict]:
    q = build_user_query(filters, re.escape(search) if search else None)
    rows = []
    for u in db[USERS].find(q).sort("created_at", -1):
        details = populate_org_details(db, u.get("organization_details"))
        manager = details.get("reporting_manager") or {}
        rows.append(
            {
                "first_name": u.get("first_name"),
                "last_name": u.get("last_name"),
                "email": u.get("email"),
                "mobile_number": u.get("mobile_number"),
                "gender": u.get("gender"),
                "designation": u.get("designation"),
                "role": (details.get("role") or {}).get("name"),
                "department": (details.get("department") or {}).get("name"),
                "organization": (details.get("organization") or {}).get("organization_name"),
                "reporting_manager": " ".join(p for p in (manager.get("first_name"), manager.get("last_name")) if p) or None,
                "assets": [{"name": a.get("asset_name")} for a in u.get("assets") or []],
                "active": bool(u.get("active")),
                "created_at": u.get("created_at"),
            }
        )
    return rows
