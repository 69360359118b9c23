import pytest

from runtime_config import set_coming_soon
from security_middleware import (
    DEFAULT_ALLOWED_ORIGINS,
    build_cors_options,
    is_origin_allowed,
    parse_allowed_origins,
)

from conftest import ADMIN_TOKEN


@pytest.fixture
def coming_soon(client):
    set_coming_soon(True)
    yield
    set_coming_soon(False)


def test_coming_soon_blocks_public_api(client, coming_soon):
    response = client.get("/api/posts/")
    assert response.status_code == 503
    assert response.json() == {"comingSoon": True, "message": "Coming Soon!"}


def test_coming_soon_page_for_browsers(client, coming_soon):
    response = client.get("/", headers={"Accept": "text/html,application/xhtml+xml"})
    assert response.status_code == 503
    assert response.headers["content-type"].startswith("text/html")
    assert "Coming Soon!" in response.text

    # API clients still get JSON
    assert client.get("/", headers={"Accept": "application/json"}).json()["comingSoon"] is True


def test_coming_soon_allowed_routes(client, coming_soon):
    assert client.get("/healthz").status_code == 200
    assert client.get("/api/admin/coming-soon", headers={"X-Admin-Token": ADMIN_TOKEN}).status_code == 200
    assert client.post("/api/auth/db-ping").status_code == 200
    assert client.get("/api/posts/", headers={"X-Admin-Token": ADMIN_TOKEN}).status_code == 200
    assert client.get("/api/posts/", headers={"X-Admin-Token": "wrong"}).status_code == 503

    preflight = client.options("/api/posts/", headers={
        "Origin": "http://localhost:5173",
        "Access-Control-Request-Method": "GET",
    })
    assert preflight.status_code == 200


def test_admin_can_switch_coming_soon_off(client, coming_soon):
    client.put("/api/admin/coming-soon", json={"enabled": False}, headers={"X-Admin-Token": ADMIN_TOKEN})
    assert client.get("/api/posts/").status_code == 200


def test_security_headers(client):
    response = client.get("/healthz")
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Server"] == "Storytelling-API"
    assert "Strict-Transport-Security" not in response.headers


def test_production_adds_hsts(client, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "prod")
    response = client.get("/healthz")
    assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")
    assert response.headers["Content-Security-Policy"].startswith("default-src 'none'")


@pytest.mark.parametrize("headers", [
    {"User-Agent": "sqlmap/1.7"},
    {"User-Agent": "Mozilla/5.0 Nikto"},
    {"X-Original-URL": "/api/admin"},
])
def test_suspicious_requests_rejected(client, headers):
    response = client.get("/api/posts/", headers=headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request format"}


def test_oversized_url_rejected(client):
    response = client.get("/api/posts/?search=" + "a" * 2100)
    assert response.status_code == 400


@pytest.mark.parametrize("origin,allowed", [
    ("https://preview-123.vercel.app", True),
    ("http://localhost:5173", True),
    ("https://dahligarciamarquez.com", True),
    ("https://evil.example.com", False),
    ("https://vercel.app.evil.com", False),
])
def test_cors_origins(client, origin, allowed):
    response = client.get("/healthz", headers={"Origin": origin})
    assert (response.headers.get("access-control-allow-origin") == origin) is allowed


def test_parse_allowed_origins():
    assert parse_allowed_origins(None) == DEFAULT_ALLOWED_ORIGINS
    assert parse_allowed_origins(" ") == DEFAULT_ALLOWED_ORIGINS
    assert parse_allowed_origins("https://a.com/, https://b.com") == ["https://a.com", "https://b.com"]


def test_build_cors_options():
    exact, pattern = build_cors_options(["https://a.com", "https://*.netlify.app"])
    assert exact == ["https://a.com"]
    assert pattern is not None

    assert build_cors_options(["https://a.com"]) == (["https://a.com"], None)

    origins = ["https://a.com", "https://*.netlify.app"]
    assert is_origin_allowed("https://x.netlify.app", origins)
    assert is_origin_allowed("https://a.b.netlify.app", origins)
    assert not is_origin_allowed("http://x.netlify.app", origins)
    assert not is_origin_allowed("https://netlify.app", origins)
    assert is_origin_allowed(None, origins)


def test_unknown_route(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_root_and_healthz(client):
    body = client.get("/").json()
    assert body["ok"] is True
    assert body["service"] == "storytelling-api"
    assert "GET /healthz" in body["endpoints"]

    health = client.get("/healthz").json()
    assert health["ok"] is True
    assert health["uptime"] >= 0
    assert "timestamp" in health
