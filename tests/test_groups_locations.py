import pytest
from bson import ObjectId

UM = "/api/v1/user-management"
GROUPS = f"{UM}/groups"
LOCATIONS = f"{UM}/locations"

ADDRESS = {
    "country": "Canada",
    "state": "Ontario",
    "city": "Toronto",
    "time_zone": "America/Toronto",
    "street_address": "1 King St W",
    "zip": "M5H 1A1",
}


@pytest.fixture()
def department(client, admin_headers):
    org = client.post(
        f"{UM}/organizations", json={"organization_name": "Acme", "email": "hq@acme.test"}, headers=admin_headers
    ).json["data"]
    dept = client.post(f"{UM}/departments", json={"name": "Ops", "organization": org["id"]}, headers=admin_headers)
    return dept.json["data"]


@pytest.fixture()
def members(make_user):
    return [
        make_user("bea@example.com", role="user", first_name="Bea", last_name="Brown"),
        make_user("cal@example.com", role="user", first_name="Cal", last_name="Cole", active=False),
    ]


def _group_payload(department, manager, member_docs, **overrides):
    payload = {
        "name": "Night Shift",
        "department": department["id"],
        "manager": str(manager["_id"]),
        "members": [str(m["_id"]) for m in member_docs],
    }
    payload.update(overrides)
    return payload


def test_create_group_populates_people(client, mdb, admin, admin_headers, department, members):
    r = client.post(GROUPS, json=_group_payload(department, admin, members), headers=admin_headers)
    assert r.status_code == 201
    data = r.json["data"]
    assert data["department"]["name"] == "Ops"
    assert data["manager"]["email"] == "admin@example.com"
    assert {m["email"] for m in data["members"]} == {"bea@example.com", "cal@example.com"}

    activity = mdb["group_activities"].find_one({"action": "CREATE"})
    assert str(activity["group_id"]) == data["id"]
    assert activity["performed_by"] == admin["_id"]


def test_group_requires_members(client, admin, admin_headers, department):
    r = client.post(GROUPS, json=_group_payload(department, admin, []), headers=admin_headers)
    assert r.status_code == 422


def test_group_unknown_member(client, admin, admin_headers, department):
    payload = _group_payload(department, admin, [], members=["0" * 24])
    r = client.post(GROUPS, json=payload, headers=admin_headers)
    assert r.status_code == 404


def test_group_name_unique_case_insensitive(client, admin, admin_headers, department, members):
    assert client.post(GROUPS, json=_group_payload(department, admin, members), headers=admin_headers).status_code == 201
    r = client.post(GROUPS, json=_group_payload(department, admin, members, name="night shift"), headers=admin_headers)
    assert r.status_code == 409


def test_update_group_records_changes(client, mdb, admin, admin_headers, department, members):
    group_id = client.post(GROUPS, json=_group_payload(department, admin, members), headers=admin_headers).json["data"]["id"]
    r = client.patch(f"{GROUPS}/{group_id}", json={"description": "Late crew"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["description"] == "Late crew"

    activity = mdb["group_activities"].find_one({"action": "UPDATE"})
    assert activity["changes"]["description"] == {"old": None, "new": "Late crew"}


def test_group_members_listing(client, admin, admin_headers, department, members):
    group_id = client.post(GROUPS, json=_group_payload(department, admin, members), headers=admin_headers).json["data"]["id"]

    r = client.get(f"{GROUPS}/{group_id}/members", headers=admin_headers)
    records = r.json["data"]["records"]
    assert [m["first_name"] for m in records] == ["Bea", "Cal"]
    assert "password" not in records[0]
    assert set(records[0]["organization_details"]) >= {"role", "department", "organization"}

    r = client.get(f"{GROUPS}/{group_id}/members?status=false", headers=admin_headers)
    assert [m["first_name"] for m in r.json["data"]["records"]] == ["Cal"]

    r = client.get(f"{GROUPS}/{group_id}/members?search_string=bro", headers=admin_headers)
    assert [m["first_name"] for m in r.json["data"]["records"]] == ["Bea"]

    r = client.get(f"{GROUPS}/{group_id}/members?status=maybe", headers=admin_headers)
    assert r.status_code == 400


def test_delete_group(client, mdb, admin, admin_headers, department, members):
    group_id = client.post(GROUPS, json=_group_payload(department, admin, members), headers=admin_headers).json["data"]["id"]
    assert client.delete(f"{GROUPS}/{group_id}", headers=admin_headers).status_code == 200
    assert client.get(f"{GROUPS}/{group_id}", headers=admin_headers).status_code == 404
    assert mdb["group_activities"].count_documents({"action": "DELETE"}) == 1


def test_list_groups_by_department(client, admin, admin_headers, department, members):
    client.post(GROUPS, json=_group_payload(department, admin, members), headers=admin_headers)
    r = client.get(f"{GROUPS}?department={department['id']}", headers=admin_headers)
    assert r.json["data"]["pagination_info"]["total_records"] == 1
    r = client.get(f"{GROUPS}?department={'0' * 24}", headers=admin_headers)
    assert r.json["data"]["pagination_info"]["total_records"] == 0


def test_create_locations_batch(client, mdb, admin_headers):
    second = dict(ADDRESS, city="Ottawa", zip="K1A 0A6")
    r = client.post(LOCATIONS, json={"addresses": [ADDRESS, second]}, headers=admin_headers)
    assert r.status_code == 201
    assert r.json["message"] == "2 locations created successfully"
    assert [loc["city"] for loc in r.json["data"]] == ["Toronto", "Ottawa"]
    assert r.json["data"][0]["user_count"] == 0
    assert mdb["location_activities"].count_documents({"action": "CREATE"}) == 2


def test_create_locations_all_or_nothing(client, mdb, admin_headers):
    bad = dict(ADDRESS, zip="12")
    r = client.post(LOCATIONS, json={"addresses": [ADDRESS, bad]}, headers=admin_headers)
    assert r.status_code == 422
    assert r.json["message"].startswith("Address 2:")
    assert mdb["locations"].count_documents({}) == 0


def test_create_locations_requires_list(client, admin_headers):
    r = client.post(LOCATIONS, json={"addresses": []}, headers=admin_headers)
    assert r.status_code == 422


def test_location_detail_reports_organization_and_users(client, mdb, admin_headers, make_user):
    loc = client.post(LOCATIONS, json={"addresses": [ADDRESS]}, headers=admin_headers).json["data"][0]
    client.post(
        f"{UM}/organizations",
        json={"organization_name": "Acme", "email": "hq@acme.test", "locations": [loc["id"]]},
        headers=admin_headers,
    )
    user = make_user("loc@example.com", role="user")
    mdb["users"].update_one({"_id": user["_id"]}, {"$set": {"organization_details.location": ObjectId(loc["id"])}})

    r = client.get(f"{LOCATIONS}/{loc['id']}", headers=admin_headers)
    data = r.json["data"]
    assert data["organization"]["organization_name"] == "Acme"
    assert data["user_count"] == 1


def test_update_location_partial(client, mdb, admin_headers):
    loc = client.post(LOCATIONS, json={"addresses": [ADDRESS]}, headers=admin_headers).json["data"][0]
    r = client.patch(f"{LOCATIONS}/{loc['id']}", json={"address": {"city": "Hamilton"}}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["city"] == "Hamilton"
    assert r.json["data"]["country"] == "Canada"
    activity = mdb["location_activities"].find_one({"action": "UPDATE"})
    assert activity["changes"]["city"] == {"old": "Toronto", "new": "Hamilton"}

    r = client.patch(f"{LOCATIONS}/{loc['id']}", json={"address": {"city": ""}}, headers=admin_headers)
    assert r.status_code == 422

    r = client.patch(f"{LOCATIONS}/{loc['id']}", json={}, headers=admin_headers)
    assert r.status_code == 400


def test_search_and_delete_locations(client, admin_headers):
    client.post(LOCATIONS, json={"addresses": [ADDRESS, dict(ADDRESS, country="Mexico", city="Monterrey")]}, headers=admin_headers)
    r = client.get(f"{LOCATIONS}?search_string=mex", headers=admin_headers)
    records = r.json["data"]["records"]
    assert [loc["city"] for loc in records] == ["Monterrey"]

    assert client.delete(f"{LOCATIONS}/{records[0]['id']}", headers=admin_headers).status_code == 200
    r = client.get(LOCATIONS, headers=admin_headers)
    assert r.json["data"]["pagination_info"]["total_records"] == 1


def test_export_locations_csv(client, admin_headers):
    client.post(LOCATIONS, json={"addresses": [ADDRESS]}, headers=admin_headers)
    r = client.post(f"{LOCATIONS}/export-csv", json={}, headers=admin_headers)
    assert r.status_code == 200
    assert r.headers["Content-Type"].startswith("text/csv")
    assert "attachment; filename=\"locations_" in r.headers["Content-Disposition"]
    lines = r.get_data(as_text=True).split("\n")
    assert lines[0] == "Country,State,City,Time Zone,Street Address,Address Line,Zip,Organization,Assigned Users"
    assert lines[1] == "Canada,Ontario,Toronto,America/Toronto,1 King St W,,M5H 1A1,,0"
