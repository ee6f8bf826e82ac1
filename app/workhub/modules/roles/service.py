from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo.database import Database

from app.workhub.errors import BadRequestError, ConflictError, NotFoundError, raise_if_errors
from app.workhub.mongo import ROLES, USERS, serialize, to_object_id
from app.workhub.rbac import PERMISSION_ACTIONS, PERMISSION_SECTIONS
from app.workhub.responses import PageParams
from app.workhub.utils import clean_str, name_key, optional_str, parse_choice, user_summaries

MIN_ROLE_NAME_LENGTH = 3
SECTION_FILTERS = (*PERMISSION_SECTIONS, "all")
_SECTION_LABELS = {"projects": "Projects", "task": "Task", "users": "Users", "settings": "Settings"}


def validate_role_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "name" in payload:
        if len(clean_str(payload.get("name"))) < MIN_ROLE_NAME_LENGTH:
            errors.append(f"Role name must be at least {MIN_ROLE_NAME_LENGTH} characters")
    if not partial or "permissions" in payload:
        perms = payload.get("permissions")
        if not isinstance(perms, dict):
            errors.append("Permissions must be an object")
        else:
            for section in PERMISSION_SECTIONS:
                actions = perms.get(section)
                if not isinstance(actions, list):
                    errors.append(f"Permissions for {section} must be a list")
                    continue
                invalid = [a for a in actions if a not in PERMISSION_ACTIONS]
                if invalid:
                    errors.append(f"Invalid {section} permissions: {', '.join(map(str, invalid))}")
            unknown = sorted(set(perms) - set(PERMISSION_SECTIONS))
            if unknown:
                errors.append(f"Unknown permission sections: {', '.join(unknown)}")
    return errors


def _normalize_permissions(perms: dict) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for section in PERMISSION_SECTIONS:
        seen: list[str] = []
        for action in perms.get(section) or []:
            if action not in seen:
                seen.append(action)
        out[section] = seen
    return out


def _ensure_name_available(db: Database, key: str, exclude_id: ObjectId | None = None) -> None:
    q: dict[str, Any] = {"name_key": key}
    if exclude_id is not None:
        q["_id"] = {"$ne": exclude_id}
    if db[ROLES].find_one(q, {"_id": 1}):
        raise ConflictError("A role with this name already exists")


def get_role(db: Database, role_id: Any) -> dict:
    role = db[ROLES].find_one({"_id": to_object_id(role_id, "role id")})
    if not role:
        raise NotFoundError("Role not found")
    return role


def user_counts(db: Database, role_ids: list[ObjectId]) -> dict[ObjectId, int]:
    pipeline = [
        {"$match": {"organization_details.role": {"$in": role_ids}, "deleted_at": None, "active": True}},
        {"$group": {"_id": "$organization_details.role", "count": {"$sum": 1}}},
    ]
    return {row["_id"]: row["count"] for row in db[USERS].aggregate(pipeline)}


def role_detail(db: Database, role: dict) -> dict:
    data = serialize(role)
    creator = role.get("created_by")
    data["created_by"] = user_summaries(db, [creator]).get(str(creator)) if creator else None
    data["user_count"] = user_counts(db, [role["_id"]]).get(role["_id"], 0)
    return data


def create_role(db: Database, payload: dict, actor: dict) -> dict:
    raise_if_errors(validate_role_payload(payload))
    name = clean_str(payload["name"])
    _ensure_name_available(db, name_key(name))
    now = datetime.utcnow()
    doc = {
        "name": name,
        "name_key": name_key(name),
        "description": optional_str(payload.get("description")),
        "permissions": _normalize_permissions(payload["permissions"]),
        "created_by": actor["_id"],
        "created_at": now,
        "updated_at": now,
    }
    doc["_id"] = db[ROLES].insert_one(doc).inserted_id
    return doc


def update_role(db: Database, role_id: Any, payload: dict, actor: dict) -> dict:
    if not payload:
        raise BadRequestError("No fields provided for update")
    raise_if_errors(validate_role_payload(payload, partial=True))
    role = get_role(db, role_id)
    updates: dict[str, Any] = {}
    if "name" in payload:
        updates["name"] = clean_str(payload["name"])
        updates["name_key"] = name_key(updates["name"])
        _ensure_name_available(db, updates["name_key"], exclude_id=role["_id"])
    if "description" in payload:
        updates["description"] = optional_str(payload["description"])
    if "permissions" in payload:
        updates["permissions"] = _normalize_permissions(payload["permissions"])
    updates["updated_at"] = datetime.utcnow()
    updates["updated_by"] = actor["_id"]
    db[ROLES].update_one({"_id": role["_id"]}, {"$set": updates})
    return db[ROLES].find_one({"_id": role["_id"]})


def delete_role(db: Database, role_id: Any) -> None:
    role = get_role(db, role_id)
    assigned = db[USERS].count_documents({"organization_details.role": role["_id"], "deleted_at": None})
    if assigned:
        raise ConflictError(f"Role is assigned to {assigned} user(s) and cannot be deleted")
    db[ROLES].delete_one({"_id": role["_id"]})


def _role_query(search_regex: str | None, section: str | None) -> dict:
    q: dict[str, Any] = {}
    if search_regex:
        q["name"] = {"$regex": search_regex, "$options": "i"}
    section = parse_choice(section, SECTION_FILTERS, "Permission section")
    if section != "all":
        q[f"permissions.{section}"] = {"$exists": True, "$ne": []}
    return q


def list_roles(db: Database, params: PageParams, section: str | None = None) -> tuple[list[dict], int]:
    q = _role_query(params.search_regex, section)
    total = db[ROLES].count_documents(q)
    roles = list(db[ROLES].find(q).sort("created_at", -1).skip(params.skip).limit(params.page_size))
    counts = user_counts(db, [r["_id"] for r in roles])
    records = []
    for role in roles:
        data = serialize(role)
        data["user_count"] = counts.get(role["_id"], 0)
        records.append(data)
    return records, total


def all_roles(db: Database) -> list[dict]:
    return [serialize(r) for r in db[ROLES].find({}, {"name": 1, "description": 1, "permissions": 1}).sort("name", 1)]


def format_permissions(perms: dict | None) -> str:
    parts = []
    for section in PERMISSION_SECTIONS:
        actions = (perms or {}).get(section) or []
        if actions:
            parts.append(f"{_SECTION_LABELS[section]}: {', '.join(actions)}")
    return " | ".join(parts) if parts else "N/A"


def export_role_rows(db: Database, search: str | None, section: str | None = None) -> list[dict]:
    q = _role_query(re.escape(search) if search else None, section)
    roles = list(db[ROLES].find(q).sort("created_at", -1))
    counts = user_counts(db, [r["_id"] for r in roles])
    return [
        {
            "role_name": r.get("name"),
            "permissions": format_permissions(r.get("permissions")),
            "assigned_users": counts.get(r["_id"], 0),
        }
        for r in roles
    ]
