from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from typing import Any, Iterable

from bson import ObjectId
from pymongo.database import Database

from app.workhub.errors import BadRequestError, NotFoundError, ValidationError
from app.workhub.mongo import USERS, to_object_id

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MOBILE_RE = re.compile(r"^[0-9+\-\s()]{10,}$")

USER_SUMMARY_FIELDS = {"first_name": 1, "last_name": 1, "email": 1, "profile_pic": 1, "designation": 1}


def clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def optional_str(value: Any) -> str | None:
    return clean_str(value) or None


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value or ""))


def name_key(value: str) -> str:
    """Case-insensitive uniqueness key for names."""
    return " ".join(value.strip().lower().split())


def parse_datetime(value: Any, field: str) -> datetime:
    """Accept ISO dates or datetimes; timezone-aware values are normalized to naive UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"{field} must be an ISO-8601 date", details=[f"Invalid {field}: {value}"]) from e
    else:
        raise ValidationError(f"{field} is required", details=[f"{field} is required"])
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "1", "yes"):
            return True
        if v in ("false", "0", "no"):
            return False
    return None


def is_int_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.strip().isdecimal()


def parse_choice(value: Any, choices: Iterable[str], label: str, default: str = "all") -> str:
    """Lower-cased filter value from query args or a JSON body; anything outside `choices` is a 400."""
    if value in (None, ""):
        return default
    choice = value.strip().lower() if isinstance(value, str) else None
    if choice not in choices:
        raise BadRequestError(f"{label} must be one of: {', '.join(choices)}")
    return choice


def find_live(db: Database, collection: str, doc_id: Any, label: str, projection: dict | None = None) -> dict:
    oid = to_object_id(doc_id, f"{label.lower()} id")
    doc = db[collection].find_one({"_id": oid, "deleted_at": None}, projection)
    if not doc:
        raise NotFoundError(f"{label} not found")
    return doc


def user_summaries(db: Database, user_ids: Iterable[Any]) -> dict[str, dict]:
    """Map of user id -> short profile for ids that resolve to any stored user."""
    oids = [to_object_id(u, "user id") for u in {str(u) for u in user_ids if u}]
    if not oids:
        return {}
    out: dict[str, dict] = {}
    for u in db[USERS].find({"_id": {"$in": oids}}, USER_SUMMARY_FIELDS):
        out[str(u["_id"])] = {
            "id": str(u["_id"]),
            "first_name": u.get("first_name"),
            "last_name": u.get("last_name"),
            "email": u.get("email"),
            "profile_pic": u.get("profile_pic"),
            "designation": u.get("designation"),
        }
    return out


def live_user_ids(db: Database, user_ids: Iterable[Any]) -> set[str]:
    """Subset of ids that are live, active users."""
    oids = [to_object_id(u, "user id") for u in {str(u) for u in user_ids if u}]
    if not oids:
        return set()
    cursor = db[USERS].find({"_id": {"$in": oids}, "deleted_at": None, "active": True}, {"_id": 1})
    return {str(u["_id"]) for u in cursor}


def object_ids(values: Iterable[Any], field: str) -> list[ObjectId]:
    return [to_object_id(v, field) for v in values]
