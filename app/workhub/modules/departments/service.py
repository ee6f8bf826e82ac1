from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo.database import Database

from app.workhub.errors import BadRequestError, ConflictError, raise_if_errors
from app.workhub.mongo import DEPARTMENTS, ORGANIZATIONS, USERS, serialize, to_object_id
from app.workhub.responses import PageParams
from app.workhub.utils import clean_str, find_live, name_key, optional_str, user_summaries

DEPARTMENT_STATUSES = ("active", "inactive")


def validate_department_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Department name is required")
    if not partial or "organization" in payload:
        if not clean_str(payload.get("organization")):
            errors.append("Organization is required")
    status = payload.get("status")
    if status is not None and status not in DEPARTMENT_STATUSES:
        errors.append(f"Status must be one of: {', '.join(DEPARTMENT_STATUSES)}")
    return errors


def _ensure_name_available(db: Database, org_id: ObjectId, key: str, exclude_id: ObjectId | None = None) -> None:
    q: dict[str, Any] = {"organization": org_id, "name_key": key, "deleted_at": None}
    if exclude_id is not None:
        q["_id"] = {"$ne": exclude_id}
    if db[DEPARTMENTS].find_one(q, {"_id": 1}):
        raise ConflictError("A department with this name already exists in the organization")


def _resolve_head(db: Database, value: Any) -> ObjectId | None:
    if value in (None, ""):
        return None
    return find_live(db, USERS, value, "Head of department", {"_id": 1})["_id"]


def department_detail(db: Database, dept: dict) -> dict:
    data = serialize(dept)
    org = db[ORGANIZATIONS].find_one({"_id": dept.get("organization")}, {"organization_name": 1, "email": 1})
    data["organization"] = serialize(org) if org else None
    head = dept.get("head_of_department")
    data["head_of_department"] = user_summaries(db, [head]).get(str(head)) if head else None
    return data


def get_department(db: Database, dept_id: Any) -> dict:
    return find_live(db, DEPARTMENTS, dept_id, "Department")


def create_department(db: Database, payload: dict, actor: dict) -> dict:
    raise_if_errors(validate_department_payload(payload))
    org = find_live(db, ORGANIZATIONS, payload["organization"], "Organization", {"_id": 1})
    name = clean_str(payload["name"])
    _ensure_name_available(db, org["_id"], name_key(name))
    now = datetime.utcnow()
    doc = {
        "name": name,
        "name_key": name_key(name),
        "organization": org["_id"],
        "head_of_department": _resolve_head(db, payload.get("head_of_department")),
        "description": optional_str(payload.get("description")),
        "status": payload.get("status") or "active",
        "created_by": actor["_id"],
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
    }
    doc["_id"] = db[DEPARTMENTS].insert_one(doc).inserted_id
    return doc


def update_department(db: Database, dept_id: Any, payload: dict, actor: dict) -> dict:
    if not payload:
        raise BadRequestError("No fields provided for update")
    raise_if_errors(validate_department_payload(payload, partial=True))
    dept = get_department(db, dept_id)
    updates: dict[str, Any] = {}
    org_id = dept["organization"]
    if "organization" in payload:
        org_id = find_live(db, ORGANIZATIONS, payload["organization"], "Organization", {"_id": 1})["_id"]
        updates["organization"] = org_id
    key = dept.get("name_key")
    if "name" in payload:
        updates["name"] = clean_str(payload["name"])
        key = updates["name_key"] = name_key(updates["name"])
    if "name" in payload or "organization" in payload:
        _ensure_name_available(db, org_id, key, exclude_id=dept["_id"])
    if "head_of_department" in payload:
        updates["head_of_department"] = _resolve_head(db, payload["head_of_department"])
    if "description" in payload:
        updates["description"] = optional_str(payload["description"])
    if payload.get("status"):
        updates["status"] = payload["status"]
    updates["updated_at"] = datetime.utcnow()
    updates["updated_by"] = actor["_id"]
    db[DEPARTMENTS].update_one({"_id": dept["_id"]}, {"$set": updates})
    return db[DEPARTMENTS].find_one({"_id": dept["_id"]})


def delete_department(db: Database, dept_id: Any, actor: dict) -> None:
    dept = get_department(db, dept_id)
    now = datetime.utcnow()
    db[DEPARTMENTS].update_one({"_id": dept["_id"]}, {"$set": {"deleted_at": now, "updated_at": now, "updated_by": actor["_id"]}})


def _search_clauses(db: Database, search_regex: str) -> list[dict]:
    """Department name, organization name and head-of-department name all match."""
    rx = {"$regex": search_regex, "$options": "i"}
    clauses: list[dict] = [{"name": rx}]
    org_ids = [o["_id"] for o in db[ORGANIZATIONS].find({"organization_name": rx}, {"_id": 1})]
    if org_ids:
        clauses.append({"organization": {"$in": org_ids}})
    head_ids = [u["_id"] for u in db[USERS].find({"$or": [{"first_name": rx}, {"last_name": rx}]}, {"_id": 1})]
    if head_ids:
        clauses.append({"head_of_department": {"$in": head_ids}})
    return clauses


def list_departments(db: Database, params: PageParams, filters: dict) -> tuple[list[dict], int]:
    q: dict[str, Any] = {"deleted_at": None}
    if filters.get("organization_id"):
        q["organization"] = to_object_id(filters["organization_id"], "organization id")
    if filters.get("department_id"):
        q["_id"] = to_object_id(filters["department_id"], "department id")
    status = filters.get("status")
    if status:
        if status not in DEPARTMENT_STATUSES:
            raise BadRequestError(f"Status must be one of: {', '.join(DEPARTMENT_STATUSES)}")
        q["status"] = status
    if params.search_regex:
        q["$or"] = _search_clauses(db, params.search_regex)
    total = db[DEPARTMENTS].count_documents(q)
    cursor = db[DEPARTMENTS].find(q).sort("created_at", -1).skip(params.skip).limit(params.page_size)
    return [department_detail(db, d) for d in cursor], total


def all_departments(db: Database) -> list[dict]:
    cursor = db[DEPARTMENTS].find({"deleted_at": None}, {"name": 1, "organization": 1, "status": 1}).sort("name", 1)
    return [serialize(d) for d in cursor]
