from datetime import datetime

import mongomock
import pytest
from werkzeug.security import generate_password_hash

from app.workhub import auth as auth_module
from app.workhub import create_app
from app.workhub.models import Base
from app.workhub.mongo import ROLES, USERS, ensure_indexes
from app.workhub.rbac import PERMISSION_ACTIONS, PERMISSION_SECTIONS
from app.workhub.security import create_access_token
from app.workhub.utils import name_key

PASSWORD = "password123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "API_VERSION"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    mdb = mongomock.MongoClient()["workhub_test"]
    ensure_indexes(mdb)
    app.extensions["mongo_db"] = mdb

    auth_module._login_attempts.clear()
    yield app
    engine.dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def mdb(app):
    return app.extensions["mongo_db"]


@pytest.fixture()
def make_role(mdb):
    def _make(name: str, permissions: dict | None = None):
        now = datetime.utcnow()
        perms = {section: [] for section in PERMISSION_SECTIONS}
        perms.update(permissions or {})
        doc = {
            "name": name,
            "name_key": name_key(name),
            "description": None,
            "permissions": perms,
            "created_by": None,
            "created_at": now,
            "updated_at": now,
        }
        doc["_id"] = mdb[ROLES].insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture()
def make_user(mdb):
    def _make(email: str, *, role_doc: dict | None = None, role: str | None = None, active: bool = True, **extra):
        now = datetime.utcnow()
        doc = {
            "first_name": extra.pop("first_name", "Test"),
            "middle_name": None,
            "last_name": extra.pop("last_name", "User"),
            "email": email,
            "mobile_number": "+1 555 000 0000",
            "gender": "female",
            "designation": None,
            "profile_pic": None,
            "active": active,
            "password": generate_password_hash(PASSWORD),
            "password_setting": "manual",
            "assets": [],
            "role": role,
            "organization_details": {
                "role": role_doc["_id"] if role_doc else None,
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
        doc.update(extra)
        doc["_id"] = mdb[USERS].insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture()
def headers_for(app):
    def _headers(user: dict) -> dict:
        with app.app_context():
            token = create_access_token(str(user["_id"]))
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def admin(make_role, make_user):
    role = make_role("Admin", {section: list(PERMISSION_ACTIONS) for section in PERMISSION_SECTIONS})
    return make_user("admin@example.com", role_doc=role, role="admin", first_name="Ada", last_name="Admin")


@pytest.fixture()
def admin_headers(admin, headers_for):
    return headers_for(admin)
