from datetime import datetime

from conftest import PASSWORD

UM = "/api/v1/user-management"
USERS = f"{UM}/users"


def _user_payload(**overrides):
    payload = {
        "first_name": "Grace",
        "last_name": "Hopper",
        "email": "grace@example.com",
        "mobile_number": "+1 555 123 4567",
        "gender": "female",
        "password": "longenough1",
    }
    payload.update(overrides)
    return payload


def test_create_user_with_manual_password(client, mdb, admin, admin_headers):
    r = client.post(USERS, json=_user_payload(), headers=admin_headers)
    assert r.status_code == 201
    data = r.json["data"]
    assert data["email"] == "grace@example.com"
    assert data["password_setting"] == "manual"
    assert "password" not in data
    assert "temporary_password" not in data
    assert data["organization_details"]["role"] is None

    login = client.post("/api/v1/auth/login", json={"email": "grace@example.com", "password": "longenough1"})
    assert login.status_code == 200
    assert mdb["user_activities"].count_documents({"action": "CREATE"}) == 1


def test_create_user_auto_generates_password(client, admin_headers):
    payload = _user_payload(password_setting="auto-generate")
    del payload["password"]
    r = client.post(USERS, json=payload, headers=admin_headers)
    assert r.status_code == 201
    temporary = r.json["data"]["temporary_password"]
    assert len(temporary) == 8

    login = client.post("/api/v1/auth/login", json={"email": "grace@example.com", "password": temporary})
    assert login.status_code == 200


def test_create_user_validation(client, admin_headers):
    r = client.post(USERS, json={"first_name": "G", "email": "nope"}, headers=admin_headers)
    assert r.status_code == 422
    assert r.json["message"] == "Validation failed"
    assert "First name must be at least 2 characters" in r.json["details"]


def test_create_user_duplicate_email(client, admin_headers):
    r = client.post(USERS, json=_user_payload(email="ADMIN@example.com"), headers=admin_headers)
    assert r.status_code == 409


def test_create_user_with_org_details(client, admin, admin_headers, make_role):
    role = make_role("Engineer")
    org = client.post(
        f"{UM}/organizations", json={"organization_name": "Acme", "email": "hq@acme.test"}, headers=admin_headers
    ).json["data"]
    details = {"role": str(role["_id"]), "organization": org["id"]}
    r = client.post(USERS, json=_user_payload(organization_details=details), headers=admin_headers)
    assert r.status_code == 201
    populated = r.json["data"]["organization_details"]
    assert populated["role"]["name"] == "Engineer"
    assert populated["organization"]["organization_name"] == "Acme"

    r = client.post(
        USERS,
        json=_user_payload(email="x@example.com", organization_details={"department": "0" * 24}),
        headers=admin_headers,
    )
    assert r.status_code == 404


def test_caller_cannot_be_new_users_manager(client, admin, admin_headers):
    payload = _user_payload(organization_details={"reporting_manager": str(admin["_id"])})
    r = client.post(USERS, json=payload, headers=admin_headers)
    assert r.status_code == 400


def test_user_cannot_manage_themselves(client, admin_headers, make_user):
    bob = make_user("bob@example.com", role="user")
    r = client.patch(
        f"{USERS}/{bob['_id']}", json={"organization_details": {"reporting_manager": str(bob["_id"])}}, headers=admin_headers
    )
    assert r.status_code == 400


def test_non_admin_cannot_create_users(client, make_user, headers_for):
    bob = make_user("bob@example.com", role="user")
    r = client.post(USERS, json=_user_payload(), headers=headers_for(bob))
    assert r.status_code == 403


def test_update_user_merges_org_details(client, mdb, admin, admin_headers, make_role, make_user):
    role = make_role("Engineer")
    bob = make_user("bob@example.com", role_doc=role)
    r = client.patch(
        f"{USERS}/{bob['_id']}",
        json={"designation": "Lead", "organization_details": {"reporting_manager": str(admin["_id"])}},
        headers=admin_headers,
    )
    assert r.status_code == 200
    details = r.json["data"]["organization_details"]
    assert details["role"]["name"] == "Engineer"
    assert details["reporting_manager"]["email"] == "admin@example.com"
    assert r.json["data"]["designation"] == "Lead"

    activity = mdb["user_activities"].find_one({"action": "UPDATE", "user_id": bob["_id"]})
    assert activity["changes"]["designation"] == {"old": None, "new": "Lead"}
    assert activity["performed_by"] == admin["_id"]


def test_update_user_empty_body(client, admin_headers, make_user):
    bob = make_user("bob@example.com", role="user")
    assert client.patch(f"{USERS}/{bob['_id']}", json={}, headers=admin_headers).status_code == 400


def test_update_user_email_conflict(client, admin_headers, make_user):
    bob = make_user("bob@example.com", role="user")
    r = client.patch(f"{USERS}/{bob['_id']}", json={"email": "admin@example.com"}, headers=admin_headers)
    assert r.status_code == 409


def test_set_status_blocks_login(client, admin_headers, make_user):
    bob = make_user("bob@example.com", role="user")
    r = client.patch(f"{USERS}/{bob['_id']}/status", json={"active": False}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["active"] is False

    login = client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
    assert login.status_code == 401

    r = client.patch(f"{USERS}/{bob['_id']}/status", json={"active": "no"}, headers=admin_headers)
    assert r.status_code == 422


def test_reset_password(client, admin_headers, make_user):
    bob = make_user("bob@example.com", role="user")
    r = client.patch(f"{USERS}/{bob['_id']}/reset-password", headers=admin_headers)
    assert r.status_code == 200
    temporary = r.json["data"]["temporary_password"]

    assert client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": PASSWORD}).status_code == 401
    assert client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": temporary}).status_code == 200


def test_update_own_password(client, make_user, headers_for):
    bob = make_user("bob@example.com", role="user")
    headers = headers_for(bob)
    r = client.patch(
        f"{USERS}/update-password", json={"current_password": "wrong-one", "new_password": "newpassword1"}, headers=headers
    )
    assert r.status_code == 401

    r = client.patch(f"{USERS}/update-password", json={"current_password": PASSWORD, "new_password": "short"}, headers=headers)
    assert r.status_code == 422

    r = client.patch(
        f"{USERS}/update-password", json={"current_password": PASSWORD, "new_password": "newpassword1"}, headers=headers
    )
    assert r.status_code == 200
    login = client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": "newpassword1"})
    assert login.status_code == 200


def test_delete_user(client, admin, admin_headers, make_user):
    bob = make_user("bob@example.com", role="user")
    assert client.delete(f"{USERS}/{admin['_id']}", headers=admin_headers).status_code == 400
    assert client.delete(f"{USERS}/{bob['_id']}", headers=admin_headers).status_code == 200
    assert client.get(f"{USERS}/{bob['_id']}", headers=admin_headers).status_code == 404


def test_list_users_search_and_status(client, admin_headers, make_user):
    make_user("bob@example.com", role="user", first_name="Bob", last_name="Stone")
    make_user("zed@corp.test", role="user", first_name="Zed", last_name="Bobson", active=False)

    r = client.get(f"{USERS}?search_string=bob", headers=admin_headers)
    assert {u["email"] for u in r.json["data"]["records"]} == {"bob@example.com", "zed@corp.test"}

    r = client.get(f"{USERS}?search_string=ob", headers=admin_headers)
    assert {u["email"] for u in r.json["data"]["records"]} == {"bob@example.com"}

    r = client.get(f"{USERS}?status=inactive", headers=admin_headers)
    assert [u["email"] for u in r.json["data"]["records"]] == ["zed@corp.test"]

    r = client.get(f"{USERS}?status=sleeping", headers=admin_headers)
    assert r.status_code == 400

    r = client.get(f"{USERS}/all", headers=admin_headers)
    assert [u["first_name"] for u in r.json["data"]] == ["Ada", "Bob"]


def test_users_by_role(client, admin, admin_headers, make_role, make_user):
    role = make_role("Engineer")
    make_user("bob@example.com", role_doc=role)
    r = client.get(f"{USERS}/role/{role['_id']}", headers=admin_headers)
    assert [u["email"] for u in r.json["data"]["records"]] == ["bob@example.com"]
    assert client.get(f"{USERS}/role/{'0' * 24}", headers=admin_headers).status_code == 404


def test_my_profile(client, make_user, headers_for):
    bob = make_user("bob@example.com", role="user")
    r = client.get(f"{USERS}/my", headers=headers_for(bob))
    assert r.status_code == 200
    assert r.json["data"]["email"] == "bob@example.com"


def test_export_users_csv(client, admin_headers, make_user):
    make_user("bob@example.com", role="user", first_name="Bob", assets=[{"asset_id": "L1", "asset_name": "Laptop"}])
    r = client.post(f"{USERS}/export-csv", json={"search_string": "bob"}, headers=admin_headers)
    assert r.status_code == 200
    lines = r.get_data(as_text=True).split("\n")
    assert lines[0].startswith("First Name,Last Name,Email,Mobile Number,Gender,Designation,Role")
    assert lines[1].startswith("Bob,User,bob@example.com")
    assert ",Laptop,Yes," in lines[1]


def test_export_users_rejects_non_string_status(client, admin_headers):
    r = client.post(f"{USERS}/export-csv", json={"status": 1}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["type"] == "BAD_REQUEST"

    r = client.post(f"{USERS}/export-csv", json={"status": "inactive", "search_string": ["ada"]}, headers=admin_headers)
    assert r.status_code == 200
    assert r.get_data(as_text=True) == ""


def test_task_summary_for_user_without_tasks(client, admin, admin_headers):
    r = client.get(f"{USERS}/{admin['_id']}/task-summary", headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["total"] == 0


def test_user_statistics(client, admin_headers, make_user):
    make_user("bob@example.com", role="user", active=False)
    make_user("gone@example.com", role="user", deleted_at=datetime.utcnow())
    r = client.get(f"{UM}/statistics/users", headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"] == {
        "total_users": 2,
        "active_users": 1,
        "inactive_users": 1,
        "total_groups": 0,
        "total_departments": 0,
    }
