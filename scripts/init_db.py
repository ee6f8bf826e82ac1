import os
import sys
from datetime import datetime
from pathlib import Path

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pymongo.database import Database
from werkzeug.security import generate_password_hash

from app.workhub.mongo import ROLES, USERS, ensure_indexes
from app.workhub.rbac import PERMISSION_ACTIONS, PERMISSION_SECTIONS
from app.workhub.utils import name_key

DEFAULT_ROLES = {
    "Admin": {section: list(PERMISSION_ACTIONS) for section in PERMISSION_SECTIONS},
    "HOD": {
        "projects": ["CREATE", "EDIT", "VIEW", "UPDATE", "EXPORT"],
        "task": ["CREATE", "EDIT", "VIEW", "UPDATE", "DELETE", "EXPORT"],
        "users": ["VIEW"],
        "settings": [],
    },
    "User": {
        "projects": ["VIEW"],
        "task": ["CREATE", "VIEW", "UPDATE"],
        "users": ["VIEW"],
        "settings": [],
    },
}


def seed_mongo(db: Database) -> None:
    """
    Seed default roles and the bootstrap admin in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@workhub.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me-now"
    now = datetime.utcnow()

    ensure_indexes(db)

    role_ids = {}
    for name, permissions in DEFAULT_ROLES.items():
        existing = db[ROLES].find_one({"name_key": name_key(name)})
        if existing:
            role_ids[name] = existing["_id"]
            continue
        role_ids[name] = db[ROLES].insert_one(
            {
                "name": name,
                "name_key": name_key(name),
                "description": f"Default {name} role",
                "permissions": permissions,
                "created_by": None,
                "created_at": now,
                "updated_at": now,
            }
        ).inserted_id

    if db[USERS].find_one({"email": admin_email, "deleted_at": None}):
        return
    db[USERS].insert_one(
        {
            "first_name": "System",
            "middle_name": None,
            "last_name": "Admin",
            "email": admin_email,
            "mobile_number": "0000000000",
            "gender": "unspecified",
            "designation": "Administrator",
            "profile_pic": None,
            "active": True,
            "password": generate_password_hash(admin_password),
            "password_setting": "manual",
            "assets": [],
            "role": "admin",
            "organization_details": {
                "role": role_ids["Admin"],
                "department": None,
                "organization": None,
                "location": None,
                "reporting_manager": None,
            },
            "created_by": None,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
    )


def seed_only(*, mongo_url: str | None = None, mongo_db_name: str | None = None) -> None:
    from scripts._db_utils import script_mongo

    with script_mongo(mongo_url, mongo_db_name) as db:
        seed_mongo(db)


def main() -> None:
    seed_only()
    print("Seed complete.", flush=True)


if __name__ == "__main__":
    main()
