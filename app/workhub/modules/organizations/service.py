from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo.database import Database

from app.workhub.errors import ConflictError, NotFoundError, raise_if_errors
from app.workhub.mongo import LOCATIONS, ORGANIZATIONS, USERS, serialize, to_object_id
from app.workhub.responses import PageParams
from app.workhub.utils import clean_str, find_live, is_valid_email, optional_str, user_summaries


def validate_organization_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "organization_name" in payload:
        if not clean_str(payload.get("organization_name")):
            errors.append("Organization name is required")
    if not partial or "email" in payload:
        email = clean_str(payload.get("email"))
        if not email:
            errors.append("Organization email is required")
        elif not is_valid_email(email):
            errors.append("Invalid organization email")
    if "locations" in payload and payload["locations"] is not None and not isinstance(payload["locations"], list):
        errors.append("Locations must be a list of location ids")
    return errors


def _resolve_locations(db: Database, raw: list) -> list[ObjectId]:
    oids = []
    for value in raw:
        oid = to_object_id(value, "location id")
        if oid not in oids:
            oids.append(oid)
    if oids:
        found = db[LOCATIONS].count_documents({"_id": {"$in": oids}, "deleted_at": None})
        if found != len(oids):
            raise NotFoundError("One or more locations not found")
    return oids


def _resolve_primary_admin(db: Database, value: Any) -> ObjectId | None:
    if value in (None, ""):
        return None
    return find_live(db, USERS, value, "Primary admin", {"_id": 1})["_id"]


def _ensure_email_available(db: Database, email: str, exclude_id: ObjectId | None = None) -> None:
    q: dict[str, Any] = {"email": email, "deleted_at": None}
    if exclude_id is not None:
        q["_id"] = {"$ne": exclude_id}
    if db[ORGANIZATIONS].find_one(q, {"_id": 1}):
        raise ConflictError("An organization with this email already exists")


def organization_detail(db: Database, org: dict) -> dict:
    data = serialize(org)
    loc_ids = org.get("locations") or []
    data["locations"] = [serialize(loc) for loc in db[LOCATIONS].find({"_id": {"$in": loc_ids}, "deleted_at": None})]
    if org.get("primary_admin"):
        data["primary_admin"] = user_summaries(db, [org["primary_admin"]]).get(str(org["primary_admin"]))
    return data


def get_organization(db: Database, org_id: Any) -> dict:
    return find_live(db, ORGANIZATIONS, org_id, "Organization")


def create_organization(db: Database, payload: dict, actor: dict) -> dict:
    raise_if_errors(validate_organization_payload(payload))
    email = clean_str(payload["email"]).lower()
    _ensure_email_available(db, email)
    now = datetime.utcnow()
    doc = {
        "organization_name": clean_str(payload["organization_name"]),
        "email": email,
        "contact_number": optional_str(payload.get("contact_number")),
        "description": optional_str(payload.get("description")),
        "primary_admin": _resolve_primary_admin(db, payload.get("primary_admin")),
        "locations": _resolve_locations(db, payload.get("locations") or []),
        "created_by": actor["_id"],
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
    }
    doc["_id"] = db[ORGANIZATIONS].insert_one(doc).inserted_id
    return doc


def update_organization(db: Database, org_id: Any, payload: dict, actor: dict) -> dict:
    raise_if_errors(validate_organization_payload(payload, partial=True))
    org = get_organization(db, org_id)
    updates: dict[str, Any] = {}
    if "organization_name" in payload:
        updates["organization_name"] = clean_str(payload["organization_name"])
    if "email" in payload:
        email = clean_str(payload["email"]).lower()
        if email != org.get("email"):
            _ensure_email_available(db, email, exclude_id=org["_id"])
        updates["email"] = email
    for field in ("contact_number", "description"):
        if field in payload:
            updates[field] = optional_str(payload[field])
    if "primary_admin" in payload:
        updates["primary_admin"] = _resolve_primary_admin(db, payload["primary_admin"])
    if "locations" in payload and payload["locations"] is not None:
        updates["locations"] = _resolve_locations(db, payload["locations"])
    updates["updated_at"] = datetime.utcnow()
    updates["updated_by"] = actor["_id"]
    db[ORGANIZATIONS].update_one({"_id": org["_id"]}, {"$set": updates})
    return db[ORGANIZATIONS].find_one({"_id": org["_id"]})


def delete_organization(db: Database, org_id: Any, actor: dict) -> None:
    org = get_organization(db, org_id)
    now = datetime.utcnow()
    db[ORGANIZATIONS].update_one({"_id": org["_id"]}, {"$set": {"deleted_at": now, "updated_at": now, "updated_by": actor["_id"]}})


def _search_query(params: PageParams) -> dict:
    q: dict[str, Any] = {"deleted_at": None}
    if params.search_regex:
        rx = {"$regex": params.search_regex, "$options": "i"}
        q["$or"] = [{"organization_name": rx}, {"email": rx}, {"description": rx}]
    return q


def list_organizations(db: Database, params: PageParams, *, created_by: ObjectId | None = None) -> tuple[list[dict], int]:
    q = _search_query(params)
    if created_by is not None:
        q["created_by"] = created_by
    total = db[ORGANIZATIONS].count_documents(q)
    cursor = db[ORGANIZATIONS].find(q).sort("created_at", -1).skip(params.skip).limit(params.page_size)
    return [organization_detail(db, o) for o in cursor], total


def all_organizations(db: Database) -> list[dict]:
    cursor = db[ORGANIZATIONS].find({"deleted_at": None}, {"organization_name": 1, "email": 1}).sort("organization_name", 1)
    return [serialize(o) for o in cursor]
