"""
Security Test - Transport and Input Hardening
=============================================
Headers, CORS, session cookies, login throttling, error envelopes,
upload limits and input sanitization.
"""

import httpx
import pytest

from conftest import TEST_PASSWORD

pytestmark = pytest.mark.security

ALLOWED_ORIGIN = "https://app.ganttium.test"


class TestSecurityHeaders:

    async def test_headers_on_every_response(self, client):
        for response in (await client.get("/health"), await client.get("/api/auth/me")):
            assert response.headers["x-content-type-options"] == "nosniff"
            assert response.headers["x-frame-options"] == "DENY"
            assert response.headers["referrer-policy"] == "strict-origin-when-cross-origin"
            assert "default-src 'self'" in response.headers["content-security-policy"]
            assert "strict-transport-security" not in response.headers

    async def test_hsts_in_production(self, client, monkeypatch):
        from config import get_settings

        monkeypatch.setattr(get_settings(), "environment", "production")

        response = await client.get("/health")

        assert response.headers["strict-transport-security"].startswith("max-age=31536000")


class TestCors:

    async def test_allowed_origin(self, client):
        response = await client.get("/health", headers={"Origin": ALLOWED_ORIGIN})

        assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
        assert response.headers["access-control-allow-credentials"] == "true"

    async def test_foreign_origin_gets_no_grant(self, client):
        response = await client.get("/health", headers={"Origin": "https://evil.example"})
        assert "access-control-allow-origin" not in response.headers

    async def test_preflight(self, client):
        allowed = await client.options(
            "/api/projects",
            headers={"Origin": ALLOWED_ORIGIN, "Access-Control-Request-Method": "POST"},
        )
        foreign = await client.options(
            "/api/projects",
            headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
        )

        assert allowed.status_code == 200
        assert allowed.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
        assert "access-control-allow-origin" not in foreign.headers


class TestSessionCookie:

    async def test_cookie_flags(self, client):
        response = await client.post(
            "/api/auth/register", json={"email": "new@example.com", "password": TEST_PASSWORD}
        )

        cookie = response.headers["set-cookie"].lower()
        assert cookie.startswith("sessionid=")
        assert "httponly" in cookie
        assert "samesite=lax" in cookie
        assert "path=/" in cookie
        assert "secure" not in cookie

    async def test_secure_in_production(self, client, factory, monkeypatch):
        from config import get_settings

        await factory.user("prod@example.com")
        monkeypatch.setattr(get_settings(), "environment", "production")

        response = await client.post(
            "/api/auth/login", json={"email": "prod@example.com", "password": TEST_PASSWORD}
        )

        assert "secure" in response.headers["set-cookie"].lower()

    async def test_tampered_token_rejected(self, client, factory):
        from auth import create_session_token

        user = await factory.user()
        token = create_session_token(user.id)
        header, payload, signature = token.split(".")
        forged = ".".join([header, payload, signature[::-1]])

        response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {forged}"})

        assert response.status_code == 401


class TestLoginThrottling:

    async def test_sixth_attempt_is_throttled(self, client, factory):
        await factory.user("target@example.com")
        body = {"email": "target@example.com", "password": "wrong-Passw0rd"}

        statuses = [(await client.post("/api/auth/login", json=body)).status_code for _ in range(5)]
        blocked = await client.post("/api/auth/login", json=body)

        assert statuses == [401] * 5
        assert blocked.status_code == 429
        assert int(blocked.headers["retry-after"]) > 0
        assert blocked.json()["error"]["error_type"] == "RateLimitExceededError"

    async def test_correct_password_also_throttled(self, client, factory):
        await factory.user("target@example.com")
        for _ in range(5):
            await client.post("/api/auth/login", json={"email": "target@example.com", "password": "nope"})

        response = await client.post(
            "/api/auth/login", json={"email": "target@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 429

    async def test_budget_is_per_client(self, client, factory):
        await factory.user("target@example.com")
        body = {"email": "target@example.com", "password": "nope"}
        for _ in range(5):
            await client.post("/api/auth/login", json=body, headers={"X-Forwarded-For": "203.0.113.7"})

        other = await client.post("/api/auth/login", json=body, headers={"X-Forwarded-For": "198.51.100.2"})

        assert other.status_code == 401


class TestErrorEnvelope:

    async def test_not_found_route(self, client):
        response = await client.get("/api/nothing-here")

        body = response.json()
        assert response.status_code == 404
        assert body["path"] == "/api/nothing-here"
        assert body["error"]["request_id"] == response.headers["x-request-id"]

    async def test_validation_error_shape(self, client, workspace):
        response = await client.post(
            "/api/projects", json={"name": "No org"}, headers=workspace["headers"]["owner"]
        )

        error = response.json()["error"]
        assert response.status_code == 422
        assert error["error_type"] == "RequestValidationError"
        assert ["body", "organization_id"] in [e["loc"] for e in error["context"]["errors"]]

    async def test_unexpected_error_hides_details_in_production(self, app, workspace, monkeypatch):
        import routers.pricing
        from config import get_settings

        def explode(*args, **kwargs):
            raise RuntimeError("boom at /srv/ganttium/secret.py")

        monkeypatch.setattr(routers.pricing, "calculate_tiered_cost", explode)
        monkeypatch.setattr(get_settings(), "environment", "production")

        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as raw:
            response = await raw.post(
                "/api/pricing/calculate", json={"quantity": 1}, headers=workspace["headers"]["viewer"]
            )

        assert response.status_code == 500
        assert response.json()["error"]["error_type"] == "InternalServerError"
        assert "secret" not in response.text
        assert "Traceback" not in response.text


class TestUploadLimits:

    async def test_oversized_upload_rejected(self, client, workspace, monkeypatch):
        from config import get_settings

        monkeypatch.setattr(get_settings(), "max_upload_bytes", 16)

        response = await client.post(
            f"/api/projects/{workspace['project'].id}/documents/upload",
            files={"file": ("big.pdf", b"%PDF-" + b"0" * 64, "application/pdf")},
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 413

    async def test_script_disguised_as_text_rejected(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/documents/upload",
            files={"file": ("readme.txt", b"#!/bin/sh\nrm -rf /\n", "text/plain")},
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 415

    async def test_path_traversal_name_flattened(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/documents/upload",
            files={"file": ("../../etc/passwd.txt", b"hello", "text/plain")},
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 201
        assert response.json()["name"] == "passwd.txt"


class TestInputSanitization:

    async def test_control_characters_stripped(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/tasks",
            json={"name": "Pump\u0000 P-101\u0007 overhaul", "wbs_code": "4", "description": "line1\nline2\ttab"},
            headers=workspace["headers"]["member"],
        )

        task = response.json()
        assert task["name"] == "Pump P-101 overhaul"
        assert task["description"] == "line1\nline2\ttab"

    async def test_search_with_wildcards_is_literal(self, client, workspace, factory):
        await factory.project(workspace["org"], "ZETA-9", name="Zeta Terminal")

        response = await client.get(
            "/api/projects", params={"search": "%' OR 1=1 --"}, headers=workspace["headers"]["owner"]
        )

        assert response.status_code == 200
        assert response.json() == []
