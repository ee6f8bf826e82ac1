from __future__ import annotations

from pymongo.database import Database

from app.workhub.mongo import DEPARTMENTS, GROUPS, USERS


def user_statistics(db: Database) -> dict:
    live = {"deleted_at": None}
    total = db[USERS].count_documents(live)
    active = db[USERS].count_documents({**live, "active": True})
    return {
        "total_users": total,
        "active_users": active,
        "inactive_users": total - active,
        "total_groups": db[GROUPS].count_documents(live),
        "total_departments": db[DEPARTMENTS].count_documents(live),
    }
