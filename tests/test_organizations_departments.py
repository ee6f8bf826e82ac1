ORGS = "/api/v1/user-management/organizations"
DEPTS = "/api/v1/user-management/departments"


def _create_org(client, headers, **overrides):
    payload = {"organization_name": "Acme", "email": "hello@acme.test", "description": "Widgets"}
    payload.update(overrides)
    return client.post(ORGS, json=payload, headers=headers)


def _create_dept(client, headers, org_id, **overrides):
    payload = {"name": "Engineering", "organization": org_id}
    payload.update(overrides)
    return client.post(DEPTS, json=payload, headers=headers)


def test_create_organization(client, admin, admin_headers):
    r = _create_org(client, admin_headers, primary_admin=str(admin["_id"]))
    assert r.status_code == 201
    data = r.json["data"]
    assert data["organization_name"] == "Acme"
    assert data["primary_admin"]["email"] == "admin@example.com"
    assert data["created_by"] == str(admin["_id"])
    assert data["locations"] == []


def test_create_organization_validation(client, admin_headers):
    r = client.post(ORGS, json={"email": "bad"}, headers=admin_headers)
    assert r.status_code == 422
    assert r.json["type"] == "VALIDATION_ERROR"
    assert "Organization name is required" in r.json["details"]
    assert "Invalid organization email" in r.json["details"]


def test_duplicate_organization_email_conflicts(client, admin_headers):
    assert _create_org(client, admin_headers).status_code == 201
    r = _create_org(client, admin_headers, organization_name="Other", email="HELLO@acme.test")
    assert r.status_code == 409


def test_deleted_organization_frees_email(client, admin_headers):
    org_id = _create_org(client, admin_headers).json["data"]["id"]
    assert client.delete(f"{ORGS}/{org_id}", headers=admin_headers).status_code == 200
    assert client.get(f"{ORGS}/{org_id}", headers=admin_headers).status_code == 404
    assert _create_org(client, admin_headers).status_code == 201


def test_organization_with_unknown_location(client, admin_headers):
    r = _create_org(client, admin_headers, locations=["0" * 24])
    assert r.status_code == 404


def test_organization_malformed_id(client, admin_headers):
    r = client.get(f"{ORGS}/not-an-id", headers=admin_headers)
    assert r.status_code == 400


def test_list_and_search_organizations(client, admin_headers):
    _create_org(client, admin_headers)
    _create_org(client, admin_headers, organization_name="Globex", email="info@globex.test", description=None)
    r = client.get(f"{ORGS}?page_size=1", headers=admin_headers)
    assert r.status_code == 200
    info = r.json["data"]["pagination_info"]
    assert info["total_records"] == 2
    assert info["total_pages"] == 2
    assert info["next_page"] == 2
    assert len(r.json["data"]["records"]) == 1

    r = client.get(f"{ORGS}?search_string=glob", headers=admin_headers)
    names = [o["organization_name"] for o in r.json["data"]["records"]]
    assert names == ["Globex"]


def test_short_search_rejected(client, admin_headers):
    r = client.get(f"{ORGS}?search_string=a", headers=admin_headers)
    assert r.status_code == 400


def test_my_organizations_only_lists_own(client, admin_headers, make_user, headers_for):
    other = make_user("other@example.com", role="user")
    _create_org(client, admin_headers)
    _create_org(client, headers_for(other), organization_name="Mine", email="mine@example.test")
    r = client.get(f"{ORGS}/my", headers=headers_for(other))
    assert [o["organization_name"] for o in r.json["data"]["records"]] == ["Mine"]


def test_update_organization(client, admin_headers):
    org_id = _create_org(client, admin_headers).json["data"]["id"]
    r = client.patch(f"{ORGS}/{org_id}", json={"description": "Gadgets"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["description"] == "Gadgets"
    assert r.json["data"]["email"] == "hello@acme.test"


def test_unrecognised_role_cannot_write_organizations(client, make_user, headers_for):
    guest = make_user("guest@example.com", role="guest")
    r = _create_org(client, headers_for(guest))
    assert r.status_code == 403
    assert r.json["type"] == "FORBIDDEN"


def test_all_organizations(client, admin_headers):
    _create_org(client, admin_headers)
    r = client.get(f"{ORGS}/all", headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"][0]["organization_name"] == "Acme"


def test_create_department_with_head(client, admin, admin_headers):
    org_id = _create_org(client, admin_headers).json["data"]["id"]
    r = _create_dept(client, admin_headers, org_id, head_of_department=str(admin["_id"]))
    assert r.status_code == 201
    data = r.json["data"]
    assert data["status"] == "active"
    assert data["organization"]["organization_name"] == "Acme"
    assert data["head_of_department"]["first_name"] == "Ada"


def test_department_name_unique_per_organization(client, admin_headers):
    org_a = _create_org(client, admin_headers).json["data"]["id"]
    org_b = _create_org(client, admin_headers, organization_name="B", email="b@b.test").json["data"]["id"]
    assert _create_dept(client, admin_headers, org_a).status_code == 201
    assert _create_dept(client, admin_headers, org_a, name="  engineering ").status_code == 409
    assert _create_dept(client, admin_headers, org_b).status_code == 201


def test_department_requires_existing_organization(client, admin_headers):
    r = _create_dept(client, admin_headers, "0" * 24)
    assert r.status_code == 404


def test_department_invalid_status(client, admin_headers):
    org_id = _create_org(client, admin_headers).json["data"]["id"]
    r = _create_dept(client, admin_headers, org_id, status="paused")
    assert r.status_code == 422


def test_list_departments_filters_and_search(client, admin, admin_headers):
    org_id = _create_org(client, admin_headers).json["data"]["id"]
    _create_dept(client, admin_headers, org_id)
    _create_dept(client, admin_headers, org_id, name="Sales", status="inactive", head_of_department=str(admin["_id"]))

    r = client.get(f"{DEPTS}?status=inactive", headers=admin_headers)
    assert [d["name"] for d in r.json["data"]["records"]] == ["Sales"]

    r = client.get(f"{DEPTS}?search_string=ada", headers=admin_headers)
    assert [d["name"] for d in r.json["data"]["records"]] == ["Sales"]

    r = client.get(f"{DEPTS}?search_string=acme", headers=admin_headers)
    assert r.json["data"]["pagination_info"]["total_records"] == 2

    r = client.get(f"{DEPTS}/organization/{org_id}", headers=admin_headers)
    assert r.json["data"]["pagination_info"]["total_records"] == 2

    r = client.get(f"{DEPTS}?status=paused", headers=admin_headers)
    assert r.status_code == 400


def test_update_and_delete_department(client, admin_headers):
    org_id = _create_org(client, admin_headers).json["data"]["id"]
    dept_id = _create_dept(client, admin_headers, org_id).json["data"]["id"]
    _create_dept(client, admin_headers, org_id, name="Sales")

    r = client.patch(f"{DEPTS}/{dept_id}", json={"name": "sales"}, headers=admin_headers)
    assert r.status_code == 409

    r = client.patch(f"{DEPTS}/{dept_id}", json={"status": "inactive"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["status"] == "inactive"

    r = client.patch(f"{DEPTS}/{dept_id}", json={}, headers=admin_headers)
    assert r.status_code == 400

    assert client.delete(f"{DEPTS}/{dept_id}", headers=admin_headers).status_code == 200
    assert client.get(f"{DEPTS}/{dept_id}", headers=admin_headers).status_code == 404
