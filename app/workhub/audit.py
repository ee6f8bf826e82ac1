from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from flask import g, has_request_context, request
from pymongo.database import Database
from pymongo.errors import PyMongoError

from app.workhub.mongo import GROUP_ACTIVITIES, LOCATION_ACTIVITIES, USER_ACTIVITIES, serialize

logger = logging.getLogger(__name__)

CREATE = "CREATE"
UPDATE = "UPDATE"
DELETE = "DELETE"

# activity collection -> field naming the audited entity
ENTITY_FIELDS = {
    USER_ACTIVITIES: "user_id",
    GROUP_ACTIVITIES: "group_id",
    LOCATION_ACTIVITIES: "location_id",
}

_IGNORED_FIELDS = ("password", "updated_at", "name_key")


def _snapshot(doc: dict | None) -> dict | None:
    if doc is None:
        return None
    return {k: v for k, v in serialize(doc).items() if k not in _IGNORED_FIELDS}


def diff_changes(old: dict | None, new: dict | None) -> dict[str, dict[str, Any]]:
    old_s = _snapshot(old) or {}
    new_s = _snapshot(new) or {}
    changes: dict[str, dict[str, Any]] = {}
    for key in sorted(set(old_s) | set(new_s)):
        if key == "id":
            continue
        if old_s.get(key) != new_s.get(key):
            changes[key] = {"old": old_s.get(key), "new": new_s.get(key)}
    return changes


def record_activity(
    db: Database,
    collection: str,
    *,
    entity_id: Any,
    action: str,
    actor: dict | None,
    old: dict | None = None,
    new: dict | None = None,
) -> None:
    """
    Append-only activity trail for document-store entities. A failed write is
    logged and never aborts the caller's operation.
    """
    entry = {
        ENTITY_FIELDS[collection]: entity_id,
        "action": action,
        "performed_by": actor["_id"] if actor else None,
        "old_data": _snapshot(old),
        "new_data": _snapshot(new),
        "changes": diff_changes(old, new) if action == UPDATE else {},
        "ip_address": request.remote_addr if has_request_context() else None,
        "user_agent": request.headers.get("User-Agent") if has_request_context() else None,
        "request_id": getattr(g, "request_id", None) if has_request_context() else None,
        "created_at": datetime.utcnow(),
    }
    try:
        db[collection].insert_one(entry)
    except PyMongoError:
        logger.exception("Failed to record %s activity for %s %s", action, collection, entity_id)
