ROLES = "/api/v1/user-management/roles"


def _perms(**sections):
    perms = {"projects": [], "task": [], "users": [], "settings": []}
    perms.update(sections)
    return perms


def _create_role(client, headers, name="Reviewer", **sections):
    return client.post(ROLES, json={"name": name, "permissions": _perms(**sections)}, headers=headers)


def test_create_role(client, admin_headers):
    r = _create_role(client, admin_headers, projects=["VIEW", "VIEW", "EXPORT"])
    assert r.status_code == 201
    data = r.json["data"]
    assert data["permissions"]["projects"] == ["VIEW", "EXPORT"]
    assert data["created_by"]["email"] == "admin@example.com"
    assert data["user_count"] == 0
    assert "name_key" not in data


def test_create_role_rejects_unknown_section(client, admin_headers):
    payload = {"name": "Reviewer", "permissions": dict(_perms(), billing=["VIEW"])}
    r = client.post(ROLES, json=payload, headers=admin_headers)
    assert r.status_code == 422
    assert "Unknown permission sections: billing" in r.json["details"]


def test_create_role_requires_every_section(client, admin_headers):
    r = client.post(ROLES, json={"name": "Reviewer", "permissions": {"projects": ["VIEW"]}}, headers=admin_headers)
    assert r.status_code == 422
    assert "Permissions for task must be a list" in r.json["details"]


def test_duplicate_role_name(client, admin_headers):
    assert _create_role(client, admin_headers).status_code == 201
    assert _create_role(client, admin_headers, name="REVIEWER").status_code == 409


def test_non_admin_cannot_create_role(client, make_role, make_user, headers_for):
    hod = make_user("hod@example.com", role_doc=make_role("HOD"))
    r = _create_role(client, headers_for(hod))
    assert r.status_code == 403


def test_non_admin_can_read_roles(client, make_role, make_user, headers_for):
    hod = make_user("hod@example.com", role_doc=make_role("HOD"))
    r = client.get(ROLES, headers=headers_for(hod))
    assert r.status_code == 200


def test_list_roles_counts_users_and_filters_section(client, admin_headers, make_role, make_user):
    viewer = make_role("Viewer", {"task": ["VIEW"]})
    make_user("v1@example.com", role_doc=viewer)
    make_user("v2@example.com", role_doc=viewer, active=False)

    r = client.get(f"{ROLES}?permission_section=task", headers=admin_headers)
    records = {role["name"]: role for role in r.json["data"]["records"]}
    assert set(records) == {"Admin", "Viewer"}
    assert records["Viewer"]["user_count"] == 1

    r = client.get(f"{ROLES}?permission_section=settings&search_string=adm", headers=admin_headers)
    assert [role["name"] for role in r.json["data"]["records"]] == ["Admin"]

    r = client.get(f"{ROLES}?permission_section=billing", headers=admin_headers)
    assert r.status_code == 400

    r = client.post(f"{ROLES}/export-csv", json={"permission_section": 3}, headers=admin_headers)
    assert r.status_code == 400


def test_update_role(client, admin_headers):
    role_id = _create_role(client, admin_headers).json["data"]["id"]
    r = client.patch(f"{ROLES}/{role_id}", json={"permissions": _perms(task=["VIEW", "UPDATE"])}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["permissions"]["task"] == ["VIEW", "UPDATE"]
    assert r.json["data"]["name"] == "Reviewer"

    assert client.patch(f"{ROLES}/{role_id}", json={"name": "admin"}, headers=admin_headers).status_code == 409
    assert client.patch(f"{ROLES}/{role_id}", json={}, headers=admin_headers).status_code == 400


def test_delete_role_blocked_while_assigned(client, admin, admin_headers):
    admin_role_id = str(admin["organization_details"]["role"])
    r = client.delete(f"{ROLES}/{admin_role_id}", headers=admin_headers)
    assert r.status_code == 409

    role_id = _create_role(client, admin_headers).json["data"]["id"]
    assert client.delete(f"{ROLES}/{role_id}", headers=admin_headers).status_code == 200
    assert client.get(f"{ROLES}/{role_id}", headers=admin_headers).status_code == 404


def test_export_roles_csv(client, admin_headers):
    _create_role(client, admin_headers, projects=["VIEW"], task=["CREATE", "VIEW"])
    r = client.post(f"{ROLES}/export-csv", json={"search_string": "review"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    lines = r.get_data(as_text=True).split("\n")
    assert lines == [
        "Role Name,Permissions,Assigned Users",
        "Reviewer,\"Projects: VIEW | Task: CREATE, VIEW\",0",
    ]


def test_export_roles_csv_empty(client, admin_headers):
    r = client.post(f"{ROLES}/export-csv", json={"search_string": "nothing"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.get_data(as_text=True) == ""
