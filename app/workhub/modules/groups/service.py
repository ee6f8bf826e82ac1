from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo.database import Database

from app.workhub.audit import CREATE, DELETE, UPDATE, record_activity
from app.workhub.errors import BadRequestError, ConflictError, NotFoundError, raise_if_errors
from app.workhub.mongo import DEPARTMENTS, GROUP_ACTIVITIES, GROUPS, USERS, serialize, to_object_id
from app.workhub.responses import PageParams
from app.workhub.utils import clean_str, find_live, name_key, optional_str, parse_bool, user_summaries


def validate_group_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Group name is required")
    if not partial or "department" in payload:
        if not clean_str(payload.get("department")):
            errors.append("Department is required")
    if not partial or "manager" in payload:
        if not clean_str(payload.get("manager")):
            errors.append("Manager is required")
    if not partial or "members" in payload:
        members = payload.get("members")
        if not isinstance(members, list) or not members:
            errors.append("Members must be a non-empty list of user ids")
    return errors


def _resolve_members(db: Database, raw: list) -> list[ObjectId]:
    oids: list[ObjectId] = []
    for value in raw:
        oid = to_object_id(value, "member id")
        if oid not in oids:
            oids.append(oid)
    found = db[USERS].count_documents({"_id": {"$in": oids}, "deleted_at": None})
    if found != len(oids):
        raise NotFoundError("One or more members not found")
    return oids


def _ensure_name_available(db: Database, key: str, exclude_id: ObjectId | None = None) -> None:
    q: dict[str, Any] = {"name_key": key, "deleted_at": None}
    if exclude_id is not None:
        q["_id"] = {"$ne": exclude_id}
    if db[GROUPS].find_one(q, {"_id": 1}):
        raise ConflictError("A group with this name already exists")


def group_detail(db: Database, group: dict) -> dict:
    data = serialize(group)
    dept = db[DEPARTMENTS].find_one({"_id": group.get("department")}, {"name": 1})
    data["department"] = {"id": str(dept["_id"]), "name": dept.get("name")} if dept else None
    people = user_summaries(db, [group.get("manager"), *(group.get("members") or [])])
    data["manager"] = people.get(str(group.get("manager")))
    data["members"] = [people[str(m)] for m in group.get("members") or [] if str(m) in people]
    return data


def get_group(db: Database, group_id: Any) -> dict:
    return find_live(db, GROUPS, group_id, "Group")


def create_group(db: Database, payload: dict, actor: dict) -> dict:
    raise_if_errors(validate_group_payload(payload))
    name = clean_str(payload["name"])
    _ensure_name_available(db, name_key(name))
    now = datetime.utcnow()
    doc = {
        "name": name,
        "name_key": name_key(name),
        "department": find_live(db, DEPARTMENTS, payload["department"], "Department", {"_id": 1})["_id"],
        "manager": find_live(db, USERS, payload["manager"], "Manager", {"_id": 1})["_id"],
        "members": _resolve_members(db, payload["members"]),
        "description": optional_str(payload.get("description")),
        "created_by": actor["_id"],
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
    }
    doc["_id"] = db[GROUPS].insert_one(doc).inserted_id
    record_activity(db, GROUP_ACTIVITIES, entity_id=doc["_id"], action=CREATE, actor=actor, new=doc)
    return doc


def update_group(db: Database, group_id: Any, payload: dict, actor: dict) -> dict:
    if not payload:
        raise BadRequestError("No fields provided for update")
    raise_if_errors(validate_group_payload(payload, partial=True))
    group = get_group(db, group_id)
    updates: dict[str, Any] = {}
    if "name" in payload:
        updates["name"] = clean_str(payload["name"])
        updates["name_key"] = name_key(updates["name"])
        _ensure_name_available(db, updates["name_key"], exclude_id=group["_id"])
    if "department" in payload:
        updates["department"] = find_live(db, DEPARTMENTS, payload["department"], "Department", {"_id": 1})["_id"]
    if "manager" in payload:
        updates["manager"] = find_live(db, USERS, payload["manager"], "Manager", {"_id": 1})["_id"]
    if "members" in payload:
        updates["members"] = _resolve_members(db, payload["members"])
    if "description" in payload:
        updates["description"] = optional_str(payload["description"])
    updates["updated_at"] = datetime.utcnow()
    updates["updated_by"] = actor["_id"]
    db[GROUPS].update_one({"_id": group["_id"]}, {"$set": updates})
    updated = db[GROUPS].find_one({"_id": group["_id"]})
    record_activity(db, GROUP_ACTIVITIES, entity_id=group["_id"], action=UPDATE, actor=actor, old=group, new=updated)
    return updated


def delete_group(db: Database, group_id: Any, actor: dict) -> None:
    group = get_group(db, group_id)
    now = datetime.utcnow()
    db[GROUPS].update_one({"_id": group["_id"]}, {"$set": {"deleted_at": now, "updated_at": now, "updated_by": actor["_id"]}})
    record_activity(db, GROUP_ACTIVITIES, entity_id=group["_id"], action=DELETE, actor=actor, old=group)


def list_groups(db: Database, params: PageParams, filters: dict) -> tuple[list[dict], int]:
    q: dict[str, Any] = {"deleted_at": None}
    if filters.get("department"):
        q["department"] = to_object_id(filters["department"], "department id")
    if params.search_regex:
        q["name"] = {"$regex": params.search_regex, "$options": "i"}
    total = db[GROUPS].count_documents(q)
    cursor = db[GROUPS].find(q).sort("created_at", -1).skip(params.skip).limit(params.page_size)
    return [group_detail(db, grp) for grp in cursor], total


def all_groups(db: Database) -> list[dict]:
    cursor = db[GROUPS].find({"deleted_at": None}, {"name": 1, "department": 1}).sort("name", 1)
    return [serialize(grp) for grp in cursor]


def list_group_members(db: Database, group_id: Any, params: PageParams, filters: dict) -> tuple[list[dict], int]:
    from app.workhub.modules.users.service import populate_org_details

    group = get_group(db, group_id)
    q: dict[str, Any] = {"_id": {"$in": group.get("members") or []}, "deleted_at": None}
    if filters.get("department"):
        q["organization_details.department"] = to_object_id(filters["department"], "department id")
    if filters.get("status") not in (None, ""):
        active = parse_bool(filters["status"])
        if active is None:
            raise BadRequestError("Status must be true or false")
        q["active"] = active
    if params.search_regex:
        rx = {"$regex": params.search_regex, "$options": "i"}
        q["$or"] = [{"first_name": rx}, {"last_name": rx}, {"email": rx}]
    total = db[USERS].count_documents(q)
    cursor = db[USERS].find(q).sort([("first_name", 1), ("last_name", 1)]).skip(params.skip).limit(params.page_size)
    records = []
    for u in cursor:
        member = serialize(u)
        details = populate_org_details(db, u.get("organization_details"))
        member["organization_details"] = details
        records.append(member)
    return records, total
