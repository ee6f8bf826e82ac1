from conftest import PASSWORD

LOGIN = "/api/v1/auth/login"


def _login(client, email="admin@example.com", password=PASSWORD):
    return client.post(LOGIN, json={"email": email, "password": password})


def test_login_returns_tokens_and_profile(client, admin):
    r = _login(client)
    assert r.status_code == 200
    data = r.json["data"]
    assert data["access_token"]
    assert data["refresh_token"]
    assert data["user"]["email"] == "admin@example.com"
    assert "password" not in data["user"]
    assert data["user"]["organization_details"]["role"]["name"] == "Admin"


def test_login_is_case_insensitive_on_email(client, admin):
    r = _login(client, email="ADMIN@Example.com")
    assert r.status_code == 200


def test_login_bad_password(client, admin):
    r = _login(client, password="wrong-password")
    assert r.status_code == 401
    assert r.json["message"] == "Invalid credentials"


def test_login_unknown_email(client, admin):
    r = _login(client, email="ghost@example.com")
    assert r.status_code == 401
    assert r.json["message"] == "Invalid credentials"


def test_login_inactive_account(client, make_user):
    make_user("sleepy@example.com", active=False)
    r = _login(client, email="sleepy@example.com")
    assert r.status_code == 401
    assert r.json["message"] == "Account is inactive"


def test_login_validation(client):
    r = client.post(LOGIN, json={"email": "not-an-email"})
    assert r.status_code == 422
    assert r.json["type"] == "VALIDATION_ERROR"
    assert len(r.json["details"]) == 2


def test_login_rate_limited(client, admin):
    for _ in range(5):
        assert _login(client, password="wrong-password").status_code == 401
    r = _login(client)
    assert r.status_code == 429
    assert r.json["type"] == "TOO_MANY_REQUESTS"


def test_access_token_authenticates(client, admin):
    token = _login(client).json["data"]["access_token"]
    r = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json["data"]["email"] == "admin@example.com"
    assert r.json["data"]["effective_role"] == "admin"


def test_refresh_rotates_token(client, admin):
    old = _login(client).json["data"]["refresh_token"]
    r = client.post("/api/v1/auth/refresh", json={"refresh_token": old})
    assert r.status_code == 200
    new = r.json["data"]["refresh_token"]
    assert new != old
    # the old refresh token was consumed
    r = client.post("/api/v1/auth/refresh", json={"refresh_token": old})
    assert r.status_code == 401


def test_access_token_cannot_refresh(client, admin):
    access = _login(client).json["data"]["access_token"]
    r = client.post("/api/v1/auth/refresh", json={"refresh_token": access})
    assert r.status_code == 401


def test_refresh_requires_token(client):
    r = client.post("/api/v1/auth/refresh", json={})
    assert r.status_code == 422


def test_logout_revokes_refresh_tokens(client, admin):
    data = _login(client).json["data"]
    headers = {"Authorization": f"Bearer {data['access_token']}"}
    r = client.post("/api/v1/auth/logout", headers=headers)
    assert r.status_code == 200
    r = client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert r.status_code == 401
