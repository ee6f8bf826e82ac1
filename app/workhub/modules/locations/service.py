from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo.database import Database

from app.workhub.audit import CREATE, DELETE, UPDATE, record_activity
from app.workhub.errors import BadRequestError, ValidationError
from app.workhub.mongo import LOCATION_ACTIVITIES, LOCATIONS, ORGANIZATIONS, USERS, serialize
from app.workhub.responses import PageParams
from app.workhub.utils import clean_str, find_live, optional_str

REQUIRED_FIELDS = ("country", "city", "time_zone", "street_address", "zip")
OPTIONAL_FIELDS = ("state", "address_line")
MIN_ZIP_LENGTH = 3


def validate_address(address: Any, *, partial: bool = False) -> list[str]:
    if not isinstance(address, dict):
        return ["Address must be an object"]
    errors: list[str] = []
    for field in REQUIRED_FIELDS:
        if partial and field not in address:
            continue
        if not clean_str(address.get(field)):
            errors.append(f"{field.replace('_', ' ').capitalize()} is required")
    zip_code = clean_str(address.get("zip"))
    if zip_code and len(zip_code) < MIN_ZIP_LENGTH:
        errors.append(f"Zip must be at least {MIN_ZIP_LENGTH} characters")
    return errors


def _address_fields(address: dict, *, partial: bool = False) -> dict:
    out: dict[str, Any] = {}
    for field in REQUIRED_FIELDS:
        if not partial or field in address:
            out[field] = clean_str(address.get(field))
    for field in OPTIONAL_FIELDS:
        if not partial or field in address:
            out[field] = optional_str(address.get(field))
    return out


def get_location(db: Database, location_id: Any) -> dict:
    return find_live(db, LOCATIONS, location_id, "Location")


def create_locations(db: Database, addresses: Any, actor: dict) -> list[dict]:
    """One location per address; nothing is written unless every address is valid."""
    if not isinstance(addresses, list) or not addresses:
        raise ValidationError("Addresses must be a non-empty list", details=["Addresses must be a non-empty list"])
    for idx, address in enumerate(addresses, start=1):
        errors = validate_address(address)
        if errors:
            raise ValidationError(f"Address {idx}: {errors[0]}", details=errors)
    now = datetime.utcnow()
    docs = []
    for address in addresses:
        doc = {
            **_address_fields(address),
            "created_by": actor["_id"],
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        doc["_id"] = db[LOCATIONS].insert_one(doc).inserted_id
        record_activity(db, LOCATION_ACTIVITIES, entity_id=doc["_id"], action=CREATE, actor=actor, new=doc)
        docs.append(doc)
    return docs


def update_location(db: Database, location_id: Any, payload: dict, actor: dict) -> dict:
    address = payload.get("address")
    if address is None and isinstance(payload.get("addresses"), list) and payload["addresses"]:
        address = payload["addresses"][0]
    if not address:
        raise BadRequestError("Address is required")
    errors = validate_address(address, partial=True)
    if errors:
        raise ValidationError(errors[0], details=errors)
    location = get_location(db, location_id)
    updates = _address_fields(address, partial=True)
    updates["updated_at"] = datetime.utcnow()
    updates["updated_by"] = actor["_id"]
    db[LOCATIONS].update_one({"_id": location["_id"]}, {"$set": updates})
    updated = db[LOCATIONS].find_one({"_id": location["_id"]})
    record_activity(db, LOCATION_ACTIVITIES, entity_id=location["_id"], action=UPDATE, actor=actor, old=location, new=updated)
    return updated


def delete_location(db: Database, location_id: Any, actor: dict) -> None:
    location = get_location(db, location_id)
    now = datetime.utcnow()
    db[LOCATIONS].update_one({"_id": location["_id"]}, {"$set": {"deleted_at": now, "updated_at": now, "updated_by": actor["_id"]}})
    record_activity(db, LOCATION_ACTIVITIES, entity_id=location["_id"], action=DELETE, actor=actor, old=location)


def _organizations_by_location(db: Database, location_ids: list[ObjectId]) -> dict[ObjectId, dict]:
    out: dict[ObjectId, dict] = {}
    cursor = db[ORGANIZATIONS].find(
        {"locations": {"$in": location_ids}, "deleted_at": None},
        {"organization_name": 1, "email": 1, "locations": 1},
    )
    for org in cursor:
        summary = {"id": str(org["_id"]), "organization_name": org.get("organization_name"), "email": org.get("email")}
        for loc_id in org.get("locations") or []:
            out.setdefault(loc_id, summary)
    return out


def _user_counts(db: Database, location_ids: list[ObjectId]) -> dict[ObjectId, int]:
    pipeline = [
        {"$match": {"organization_details.location": {"$in": location_ids}, "deleted_at": None, "active": True}},
        {"$group": {"_id": "$organization_details.location", "count": {"$sum": 1}}},
    ]
    return {row["_id"]: row["count"] for row in db[USERS].aggregate(pipeline)}


def enrich_locations(db: Database, locations: list[dict]) -> list[dict]:
    ids = [loc["_id"] for loc in locations]
    orgs = _organizations_by_location(db, ids)
    counts = _user_counts(db, ids)
    out = []
    for loc in locations:
        data = serialize(loc)
        data["organization"] = orgs.get(loc["_id"])
        data["user_count"] = counts.get(loc["_id"], 0)
        out.append(data)
    return out


def _location_query(db: Database, search_regex: str | None, organization_id: Any = None) -> dict:
    q: dict[str, Any] = {"deleted_at": None}
    if organization_id:
        org = find_live(db, ORGANIZATIONS, organization_id, "Organization", {"locations": 1})
        q["_id"] = {"$in": org.get("locations") or []}
    if search_regex:
        rx = {"$regex": search_regex, "$options": "i"}
        q["$or"] = [{"country": rx}, {"city": rx}, {"street_address": rx}, {"address_line": rx}]
    return q


def list_locations(db: Database, params: PageParams, *, organization_id: Any = None, created_by: ObjectId | None = None) -> tuple[list[dict], int]:
    q = _location_query(db, params.search_regex, organization_id)
    if created_by is not None:
        q["created_by"] = created_by
    total = db[LOCATIONS].count_documents(q)
    docs = list(db[LOCATIONS].find(q).sort("created_at", -1).skip(params.skip).limit(params.page_size))
    return enrich_locations(db, docs), total


def all_locations(db: Database) -> list[dict]:
    return [serialize(loc) for loc in db[LOCATIONS].find({"deleted_at": None}).sort("created_at", -1)]


def location_detail(db: Database, location: dict) -> dict:
    return enrich_locations(db, [location])[0]


def export_location_rows(db: Database, search: str | None, organization_id: Any = None) -> list[dict]:
    q = _location_query(db, re.escape(search) if search else None, organization_id)
    docs = list(db[LOCATIONS].find(q).sort("created_at", -1))
    rows = []
    for loc in enrich_locations(db, docs):
        rows.append(
            {
                "country": loc.get("country"),
                "state": loc.get("state"),
                "city": loc.get("city"),
                "time_zone": loc.get("time_zone"),
                "street_address": loc.get("street_address"),
                "address_line": loc.get("address_line"),
                "zip": loc.get("zip"),
                "organization": (loc.get("organization") or {}).get("organization_name"),
                "assigned_users": loc.get("user_count", 0),
            }
        )
    return rows
