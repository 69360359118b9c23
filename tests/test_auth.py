from jwt_utils import extract_bearer_token

from conftest import ADMIN_TOKEN, USER_ID, bearer, make_token


def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc.def") == "abc.def"
    assert extract_bearer_token("bearer   xyz") == "xyz"
    assert extract_bearer_token("Basic abc") is None
    assert extract_bearer_token("Bearer") is None
    assert extract_bearer_token(None) is None


def test_admin_token_header_or_bearer(client):
    assert client.get("/api/posts/admin").status_code == 401
    assert client.get("/api/posts/admin", headers={"X-Admin-Token": ADMIN_TOKEN}).status_code == 200
    assert client.get("/api/posts/admin", headers=bearer(ADMIN_TOKEN)).status_code == 200

    response = client.get("/api/posts/admin", headers={"X-Admin-Token": "wrong"})
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_admin_token_not_configured(client, monkeypatch):
    monkeypatch.delenv("SERVER_ADMIN_TOKEN")
    response = client.get("/api/posts/admin", headers={"X-Admin-Token": ADMIN_TOKEN})
    assert response.status_code == 503
    assert response.json() == {"error": "Admin token not configured"}


def test_user_routes_require_a_session(client, user_headers):
    response = client.get("/api/images/")
    assert response.status_code == 401
    assert response.json() == {"error": "Missing or invalid authorization header"}

    assert client.get("/api/images/", headers=user_headers).status_code == 200


def test_expired_and_foreign_tokens_are_rejected(client, db):
    expired = make_token(USER_ID, expires_in=-60)
    response = client.get("/api/images/", headers=bearer(expired))
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid or expired token"}

    foreign = make_token(USER_ID, iss="https://other.supabase.co/auth/v1")
    assert client.get("/api/images/", headers=bearer(foreign)).status_code == 401


def test_opaque_tokens_fall_back_to_supabase_auth(client, db):
    db.auth.tokens["opaque-session-token"] = (USER_ID, "writer@example.com")
    assert client.get("/api/images/", headers=bearer("opaque-session-token")).status_code == 200
    assert client.get("/api/images/", headers=bearer("unknown-opaque-token")).status_code == 401


def test_supabase_admin_requires_admin_role(client, db, user_headers, site_admin_headers):
    response = client.post("/api/labels/", json={"name": "Poetry"}, headers=user_headers)
    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "Admin access required"
    assert "hint" in body

    assert client.post("/api/labels/", json={"name": "Poetry"}, headers=site_admin_headers).status_code == 201


def test_supabase_admin_without_profile(client):
    response = client.post("/api/labels/", json={"name": "Poetry"}, headers=bearer(make_token("no-profile-user")))
    assert response.status_code == 401
    assert response.json() == {"error": "User profile not found"}


def test_admin_token_is_not_a_supabase_admin(client):
    response = client.post("/api/labels/", json={"name": "Poetry"}, headers=bearer(ADMIN_TOKEN))
    assert response.status_code == 401
