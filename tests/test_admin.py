import pytest
from fastapi.testclient import TestClient

from admin_endpoints import format_bytes
from main import app
from runtime_config import get_coming_soon

from conftest import ADMIN_TOKEN, OTHER_USER_ID, USER_ID

ADMIN = {"X-Admin-Token": ADMIN_TOKEN}


@pytest.mark.parametrize("size,expected", [
    (0, "0 B"),
    (1023, "1023 B"),
    (2048, "2.00 KB"),
    (5 * 1024 * 1024, "5.00 MB"),
])
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected


def test_coming_soon_toggle_is_persisted(client, db):
    assert client.get("/api/admin/coming-soon", headers=ADMIN).json() == {"enabled": False}

    response = client.put("/api/admin/coming-soon", json={"enabled": True}, headers=ADMIN)
    assert response.json() == {"enabled": True}
    assert get_coming_soon() is True
    assert db.rows("system_settings", key="coming_soon_mode")[0]["value"] is True

    response = client.put("/api/admin/coming-soon", json={"enabled": False}, headers=ADMIN)
    assert response.json() == {"enabled": False}
    assert len(db.rows("system_settings", key="coming_soon_mode")) == 1


def test_coming_soon_requires_boolean(client):
    for body in ({"enabled": "yes"}, {}, {"enabled": 1}):
        response = client.put("/api/admin/coming-soon", json=body, headers=ADMIN)
        assert response.status_code == 400
        assert response.json() == {"error": "enabled must be a boolean value"}


def test_persisted_coming_soon_flag_loads_at_startup(supabase, db):
    db.seed("system_settings", key="coming_soon_mode", value=True)
    with TestClient(app) as test_client:
        assert test_client.get("/api/admin/coming-soon", headers=ADMIN).json() == {"enabled": True}


def test_admin_health(client, db):
    db.seed("posts", title="A", slug="a")
    db.seed("posts", title="B", slug="b")

    body = client.get("/api/admin/health", headers=ADMIN).json()
    assert body["api"]["status"] == "ok"
    assert body["db"] == {"status": "ok", "postsCount": 2}
    assert body["storage"] == {"driver": "local"}
    assert body["directDb"] == {"status": "ok"}


def test_admin_health_reports_database_down(client, supabase):
    supabase.disconnect()
    body = client.get("/api/admin/health", headers=ADMIN).json()
    assert body["db"]["status"] == "down"
    assert body["db"]["postsCount"] is None


def test_delete_own_account(client, db, user_headers):
    response = client.request("DELETE", "/api/admin/delete-user", json={"userId": USER_ID}, headers=user_headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Account deleted successfully"}

    assert db.rpc_calls == [("delete_user_data", {"p_user_id": USER_ID})]
    assert db.auth.admin.deleted == [USER_ID]
    log = db.rows("user_deletion_log", user_id=USER_ID)
    assert log[0]["display_name"] == "Writer"


def test_cannot_delete_someone_else(client, db, user_headers):
    response = client.request("DELETE", "/api/admin/delete-user", json={"user_id": OTHER_USER_ID},
                              headers=user_headers)
    assert response.status_code == 403
    assert response.json() == {"error": "You can only delete your own account"}
    assert db.rpc_calls == []


def test_delete_account_failures(client, db, user_headers):
    db.rpc_errors.add("delete_user_data")
    response = client.request("DELETE", "/api/admin/delete-user", json={"user_id": USER_ID}, headers=user_headers)
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to delete user data"}
    assert db.auth.admin.deleted == []

    db.rpc_errors.clear()
    db.auth.admin.fail = True
    response = client.request("DELETE", "/api/admin/delete-user", json={"user_id": USER_ID}, headers=user_headers)
    assert response.json() == {"error": "Failed to delete user account"}


def test_delete_account_survives_missing_log_table(client, db, user_headers):
    db.fail_tables.add("user_deletion_log")
    response = client.request("DELETE", "/api/admin/delete-user", json={"user_id": USER_ID}, headers=user_headers)
    assert response.status_code == 200


def test_storage_usage(client, db, site_admin_headers):
    db.rpc_results["get_database_size"] = [{"size_bytes": 3 * 1024 * 1024}]
    db.seed("images", path="a.png", file_size_bytes=1024)
    db.seed("images", path="b.png", file_size_bytes=2048)

    body = client.get("/api/admin/storage-usage", headers=site_admin_headers).json()
    assert body["ok"] is True
    assert body["stats"]["database"] == {"size_bytes": 3 * 1024 * 1024, "size_formatted": "3.00 MB"}
    assert body["stats"]["storage"] == {"size_bytes": 3072, "size_formatted": "3.00 KB", "file_count": 2}


def test_storage_usage_rpc_failure(client, db, site_admin_headers):
    db.rpc_errors.add("get_database_size")
    response = client.get("/api/admin/storage-usage", headers=site_admin_headers)
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch storage stats"}


def test_db_ping(client, db):
    body = client.post("/api/auth/db-ping").json()
    assert body["ok"] is True
    assert body["message"] == "Database connection successful"

    db.fail_tables.add("profiles")
    response = client.post("/api/auth/db-ping")
    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "Database connection failed"}


def test_legacy_admin_ping_redirects(client):
    response = client.get("/api/admin/ping", follow_redirects=False)
    assert response.status_code == 301
    assert response.headers["location"] == "/api/auth/db-ping"
