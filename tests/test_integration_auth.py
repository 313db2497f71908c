"""Integration tests for the HTTP surface.

Covers registration, password and magic-link login, session cookies,
logout, deactivation, role gates and the CORS/error envelope behaviour
shared by every response.
"""

import pytest
from fastapi.testclient import TestClient

from suiteauth import app as app_module
from suiteauth.service import crypto
from suiteauth.service.runtime import get_runtime
from suiteauth.storage.models import Role

PASSWORD = "Abcd1234"


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app_module.app)


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def _register(client, email="alice@example.com", password=PASSWORD, **extra):
    payload = {"email": email, "firstName": "Alice", "lastName": "Smith", "password": password}
    payload.update(extra)
    return client.post("/api/auth/register", json=payload)


def _login(client, email="alice@example.com", password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def _seed_account(email, role):
    store = get_runtime().store
    settings = get_runtime().settings
    return store.create_user(
        email,
        first_name=role.value.title(),
        last_name="User",
        password_hash=crypto.hash_password(PASSWORD, iterations=settings.pbkdf2_iterations),
        role=role,
    )


def _token_for(client, email):
    response = _login(client, email)
    assert response.status_code == 200
    return response.json()["token"]


@pytest.fixture
def admin_token(client):
    _seed_account("admin@example.com", Role.ADMIN)
    return _token_for(client, "admin@example.com")


@pytest.fixture
def team_token(client):
    _seed_account("team@example.com", Role.TEAM)
    return _token_for(client, "team@example.com")


def _set_cookie_header(response):
    return response.headers.get("set-cookie", "")


class TestRegistrationAndLogin:
    def test_register_login_me(self, client):
        registered = _register(client)
        assert registered.status_code == 200
        body = registered.json()
        assert body["success"] is True
        assert body["message"] == "user registered successfully"
        assert isinstance(body["userId"], int)
        # registration never logs the caller in
        assert "auth_token" not in _set_cookie_header(registered)

        login = _login(client)
        assert login.status_code == 200
        data = login.json()
        assert data["success"] is True
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["role"] == "client"
        assert data["user"]["firstName"] == "Alice"
        assert "password" not in str(data["user"]).lower()

        me = client.get("/api/auth/me", headers=_bearer(data["token"]))
        assert me.status_code == 200
        user = me.json()["user"]
        assert user["email"] == "alice@example.com"
        assert user["role"] == "client"
        assert user["isActive"] is True
        assert user["lastLogin"] is not None

    def test_login_cookie_attributes(self, client):
        _register(client)
        login = _login(client)
        cookie = _set_cookie_header(login)
        assert cookie.startswith(f"auth_token={login.json()['token']}")
        assert "HttpOnly" in cookie
        assert "Secure" in cookie
        assert "samesite=strict" in cookie.lower()
        assert "Max-Age=2592000" in cookie
        assert "Path=/" in cookie

    def test_me_accepts_cookie(self, client):
        _register(client)
        token = _login(client).json()["token"]
        response = client.get("/api/auth/me", headers={"Cookie": f"auth_token={token}"})
        assert response.status_code == 200
        assert response.json()["user"]["email"] == "alice@example.com"

    def test_bearer_header_wins_over_cookie(self, client):
        _register(client)
        token = _login(client).json()["token"]
        response = client.get(
            "/api/auth/me",
            headers={"Authorization": f"Bearer {token}", "Cookie": "auth_token=junk"},
        )
        assert response.status_code == 200

    def test_register_validation_errors(self, client):
        missing = client.post("/api/auth/register", json={"email": "x@example.com"})
        assert missing.status_code == 400
        error = missing.json()["error"]
        assert error["code"] == "validation_error"
        assert error["message"] == "missing required fields"
        assert error["details"] == {"missing": ["firstName", "lastName"]}

        bad_email = _register(client, email="nope")
        assert bad_email.json()["error"]["message"] == "invalid email format"

        weak = _register(client, password="abc")
        assert weak.status_code == 400

    def test_duplicate_register_conflicts(self, client):
        _register(client)
        duplicate = _register(client, email="Alice@Example.com")
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["message"] == "user already exists"

    def test_wrong_password(self, client):
        _register(client)
        response = _login(client, password="Wrong1234")
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "invalid email or password"
        assert "set-cookie" not in response.headers

    def test_login_requires_both_fields(self, client):
        response = client.post("/api/auth/login", json={"email": "alice@example.com"})
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "email and password are required"

    def test_invalid_json_body(self, client):
        response = client.post(
            "/api/auth/login",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_elevated_registration_needs_admin(self, client, admin_token, team_token):
        anonymous = _register(client, email="t1@example.com", role="team")
        assert anonymous.status_code == 401

        as_team = client.post(
            "/api/auth/register",
            json={"email": "t2@example.com", "firstName": "T", "lastName": "U", "role": "admin"},
            headers=_bearer(team_token),
        )
        assert as_team.status_code == 403
        assert as_team.json()["error"]["message"] == "insufficient permissions"

        as_admin = client.post(
            "/api/auth/register",
            json={"email": "t3@example.com", "firstName": "T", "lastName": "U", "role": "team"},
            headers=_bearer(admin_token),
        )
        assert as_admin.status_code == 200
        created = get_runtime().store.get_user(as_admin.json()["userId"])
        assert created.role is Role.TEAM


class TestProtectedRoutes:
    def test_missing_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "no authentication token provided"

    def test_garbage_token(self, client):
        response = client.get("/api/auth/me", headers=_bearer("not.a.token"))
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "invalid or expired token"

    def test_logout_revokes_session(self, client):
        _register(client)
        token = _login(client).json()["token"]

        response = client.post("/api/auth/logout", headers=_bearer(token))
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "logged out successfully"}
        cookie = _set_cookie_header(response)
        assert cookie.startswith("auth_token=")
        assert "Max-Age=0" in cookie

        after = client.get("/api/auth/me", headers=_bearer(token))
        assert after.status_code == 401
        assert after.json()["error"]["message"] == "session expired"

    def test_logout_without_token_still_succeeds(self, client):
        response = client.post("/api/auth/logout")
        assert response.status_code == 200
        assert "Max-Age=0" in _set_cookie_header(response)

    def test_deactivated_account_is_rejected(self, client):
        user_id = _register(client).json()["userId"]
        token = _login(client).json()["token"]

        get_runtime().store.set_user_active(user_id, False)

        response = client.get("/api/auth/me", headers=_bearer(token))
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "user not found or inactive"

    def test_role_gates(self, client, team_token):
        _register(client)
        client_token = _login(client).json()["token"]

        assert client.get("/api/users").status_code == 401
        denied = client.get("/api/users", headers=_bearer(client_token))
        assert denied.status_code == 403
        assert denied.json()["error"]["code"] == "forbidden"

        allowed = client.get("/api/users", headers=_bearer(team_token))
        assert allowed.status_code == 200
        emails = {u["email"] for u in allowed.json()["users"]}
        assert {"alice@example.com", "team@example.com"} <= emails

        filtered = client.get("/api/users?role=team", headers=_bearer(team_token))
        assert [u["email"] for u in filtered.json()["users"]] == ["team@example.com"]

        bad_filter = client.get("/api/users?role=owner", headers=_bearer(team_token))
        assert bad_filter.status_code == 400

    def test_client_reads_only_own_record(self, client):
        alice_id = _register(client).json()["userId"]
        bob_id = _register(client, email="bob@example.com").json()["userId"]
        token = _login(client).json()["token"]

        own = client.get(f"/api/users/{alice_id}", headers=_bearer(token))
        assert own.status_code == 200
        other = client.get(f"/api/users/{bob_id}", headers=_bearer(token))
        assert other.status_code == 403

    def test_user_lookup_errors(self, client, team_token):
        assert client.get("/api/users/abc", headers=_bearer(team_token)).status_code == 400
        missing = client.get("/api/users/9999", headers=_bearer(team_token))
        assert missing.status_code == 404
        assert missing.json()["error"]["message"] == "user not found"

    def test_admin_deactivates_user(self, client, admin_token, team_token):
        user_id = _register(client).json()["userId"]
        token = _login(client).json()["token"]

        by_team = client.post(f"/api/users/{user_id}/deactivate", headers=_bearer(team_token))
        assert by_team.status_code == 403

        by_admin = client.post(f"/api/users/{user_id}/deactivate", headers=_bearer(admin_token))
        assert by_admin.status_code == 200
        assert by_admin.json()["user"]["isActive"] is False

        assert client.get("/api/auth/me", headers=_bearer(token)).status_code == 401
        assert _login(client).status_code == 401


class TestMagicLinkFlow:
    def test_request_and_verify(self, client):
        _register(client, password=None)
        response = client.post("/api/auth/magic-link", json={"email": "alice@example.com"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "if that email is registered, a sign-in link has been sent"
        dev_token = body["devToken"]

        verified = client.post("/api/auth/verify-magic-link", json={"token": dev_token})
        assert verified.status_code == 200
        token = verified.json()["token"]
        assert "auth_token=" in _set_cookie_header(verified)
        assert client.get("/api/auth/me", headers=_bearer(token)).status_code == 200

        replay = client.post("/api/auth/verify-magic-link", json={"token": dev_token})
        assert replay.status_code == 401
        assert replay.json()["error"]["message"] == "invalid or expired token"

    def test_unknown_email_looks_identical(self, client):
        response = client.post("/api/auth/magic-link", json={"email": "ghost@example.com"})
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "if that email is registered, a sign-in link has been sent",
        }
        assert get_runtime().store.count_magic_links() == 0

    def test_invalid_email(self, client):
        response = client.post("/api/auth/magic-link", json={"email": "nope"})
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "invalid email format"

    def test_verify_requires_token(self, client):
        response = client.post("/api/auth/verify-magic-link", json={})
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "token is required"


class TestEnvelopeAndCors:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert {"environment", "version", "timestamp"} <= set(body)

    def test_cors_on_success_and_error(self, client):
        for response in (client.get("/api/health"), client.get("/api/auth/me")):
            assert response.headers["access-control-allow-origin"] == "*"
            assert "OPTIONS" in response.headers["access-control-allow-methods"]
            assert "Authorization" in response.headers["access-control-allow-headers"]

    @pytest.mark.parametrize("path", ["/api/auth/login", "/api/does/not/exist", "/elsewhere"])
    def test_preflight_on_any_path(self, client, path):
        response = client.options(path)
        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"

    def test_unknown_api_route(self, client):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "not_found"
        assert body["error"]["message"] == "endpoint GET /api/nowhere not found"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_request_id_echoed(self, client):
        response = client.get("/api/auth/me", headers={"X-Request-ID": "abc-123"})
        assert response.headers["x-request-id"] == "abc-123"
        assert response.json()["request_id"] == "abc-123"

    def test_unexpected_failure_is_opaque(self, client, monkeypatch):
        async def explode(email, password):
            raise RuntimeError("database password is hunter2")

        monkeypatch.setattr(get_runtime().auth, "login", explode)
        response = _login(client)
        assert response.status_code == 500
        body = response.json()
        assert body["error"]["message"] == "internal server error"
        assert "hunter2" not in response.text
        assert response.headers["access-control-allow-origin"] == "*"
