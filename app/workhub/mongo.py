from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from flask import Flask, current_app
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

ORGANIZATIONS = "organizations"
DEPARTMENTS = "departments"
GROUPS = "groups"
LOCATIONS = "locations"
ROLES = "roles"
USERS = "users"
USER_ACTIVITIES = "user_activities"
GROUP_ACTIVITIES = "group_activities"
LOCATION_ACTIVITIES = "location_activities"


def init_mongo(app: Flask) -> None:
    """
    Create the document-store client. pymongo connects lazily, so this never
    blocks app startup when the server is unreachable.
    """
    client = MongoClient(
        app.config["MONGO_URL"],
        tz_aware=False,
        serverSelectionTimeoutMS=5000,
        connect=False,
    )
    app.extensions["mongo_client"] = client
    app.extensions["mongo_db"] = client[app.config["MONGO_DB_NAME"]]


def mongo_db(app: Flask | None = None) -> Database:
    if app is None:
        app = current_app
    return app.extensions["mongo_db"]


def ensure_indexes(db: Database) -> None:
    """Idempotent index setup. Run from release scripts and test fixtures."""
    db[ROLES].create_index([("name_key", ASCENDING)], unique=True, name="uniq_role_name")
    db[USERS].create_index([("email", ASCENDING)], name="idx_users_email")
    db[USERS].create_index([("organization_details.role", ASCENDING)], name="idx_users_role")
    db[USERS].create_index([("organization_details.organization", ASCENDING)], name="idx_users_org")
    db[USERS].create_index([("organization_details.department", ASCENDING)], name="idx_users_department")
    db[ORGANIZATIONS].create_index([("email", ASCENDING)], name="idx_orgs_email")
    db[DEPARTMENTS].create_index([("organization", ASCENDING), ("name_key", ASCENDING)], name="idx_departments_org_name")
    db[GROUPS].create_index([("name_key", ASCENDING)], name="idx_groups_name")
    db[LOCATIONS].create_index([("created_by", ASCENDING)], name="idx_locations_created_by")
    for coll, key in (
        (USER_ACTIVITIES, "user_id"),
        (GROUP_ACTIVITIES, "group_id"),
        (LOCATION_ACTIVITIES, "location_id"),
    ):
        db[coll].create_index([(key, ASCENDING), ("created_at", DESCENDING)], name=f"idx_{coll}_{key}")
    logger.info("Document store indexes ensured on %s", db.name)


def to_object_id(value: Any, field: str = "id") -> ObjectId:
    """Parse a 24-hex id, raising a 400 for anything malformed."""
    from app.workhub.errors import BadRequestError

    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError) as e:
        raise BadRequestError(f"Invalid {field}: {value}") from e


def is_object_id(value: Any) -> bool:
    return isinstance(value, ObjectId) or (isinstance(value, str) and ObjectId.is_valid(value))


def serialize(value: Any) -> Any:
    """
    Make a document JSON-safe: `_id` becomes `id`, ObjectIds become strings,
    datetimes become ISO-8601, password hashes are dropped.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if k == "password":
                continue
            if k == "_id":
                out["id"] = serialize(v)
            elif k == "name_key":
                continue
            else:
                out[k] = serialize(v)
        return out
    return value
