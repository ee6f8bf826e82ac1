import mongomock
from werkzeug.security import check_password_hash

from scripts.init_db import DEFAULT_ROLES, seed_mongo


def test_seed_creates_roles_and_admin_once(monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "bootstrap-pass")
    db = mongomock.MongoClient()["seed_test"]

    seed_mongo(db)
    seed_mongo(db)

    assert db["roles"].count_documents({}) == len(DEFAULT_ROLES)
    admins = list(db["users"].find({"email": "root@example.com"}))
    assert len(admins) == 1
    assert check_password_hash(admins[0]["password"], "bootstrap-pass")
    admin_role = db["roles"].find_one({"_id": admins[0]["organization_details"]["role"]})
    assert admin_role["name"] == "Admin"
