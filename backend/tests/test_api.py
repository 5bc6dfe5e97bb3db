"""
HTTP level tests for the /api/auth endpoints.
Requests go through the full app (middleware, exception handlers, schemas)
against the in-memory database.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from placement_auth.main import app
from placement_auth.models.otp import OTPPurpose
from placement_auth.services.db import get_db
from placement_auth.services.notifier import get_email_dispatcher
from placement_auth.services.rate_limiter import InMemoryRateLimiter, get_rate_limiter

from conftest import TEST_PASSWORD

EMAIL = "student@example.com"


@pytest.fixture
def limiter(config):
    return InMemoryRateLimiter(config)


@pytest.fixture
async def client(session_factory, dispatcher, limiter):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def inbox_code(dispatcher, notifier, email, purpose):
    await dispatcher.drain()
    return notifier.last_code(email, purpose)


async def register_verified(client, dispatcher, notifier, email=EMAIL, password="secret1", role="STUDENT"):
    response = await client.post("/api/auth/send-otp", json={"email": email})
    assert response.status_code == 200
    code = await inbox_code(dispatcher, notifier, email, OTPPurpose.VERIFY_EMAIL)

    response = await client.post("/api/auth/verify-otp", json={"email": email, "otp": code})
    assert response.status_code == 200
    token = response.json()["verification_token"]

    response = await client.post("/api/auth/register", json={
        "email": email, "password": password, "role": role, "verification_token": token,
    })
    assert response.status_code == 201
    return response.json()


class TestRegistrationEndpoints:
    async def test_full_registration_flow(self, client, dispatcher, notifier):
        response = await client.post("/api/auth/send-otp", json={"email": EMAIL})
        body = response.json()
        assert body["success"] is True
        assert body["otp_status"] == "PENDING_VERIFICATION"
        assert body["expires_in"] == 300
        assert "otp_expires_at" in body
        assert "code" not in body and "otp" not in body

        code = await inbox_code(dispatcher, notifier, EMAIL, OTPPurpose.VERIFY_EMAIL)
        verified = (await client.post("/api/auth/verify-otp", json={"email": EMAIL, "otp": code})).json()
        assert verified["verified"] is True
        assert verified["email"] == EMAIL

        response = await client.post("/api/auth/register", json={
            "email": EMAIL,
            "password": "secret1",
            "role": "STUDENT",
            "verification_token": verified["verification_token"],
            "profile": {"full_name": "Asha Rao", "batch": "2026"},
        })
        assert response.status_code == 201
        body = response.json()
        assert body["user"]["email_verified"] is True
        assert body["user"]["role"] == "STUDENT"
        assert body["token_type"] == "bearer"
        assert "password_hash" not in body["user"]

    async def test_wrong_code_is_400(self, client, dispatcher, notifier):
        await client.post("/api/auth/send-otp", json={"email": EMAIL})
        code = await inbox_code(dispatcher, notifier, EMAIL, OTPPurpose.VERIFY_EMAIL)
        wrong = "000000" if code != "000000" else "111111"

        response = await client.post("/api/auth/verify-otp", json={"email": EMAIL, "otp": wrong})
        assert response.status_code == 400
        assert "error" in response.json()

    async def test_malformed_code_is_rejected_before_lookup(self, client):
        response = await client.post("/api/auth/verify-otp", json={"email": EMAIL, "otp": "12a45"})
        assert response.status_code == 422
        assert response.json()["error"] == "Invalid request format"

    async def test_send_otp_to_registered_email(self, client, test_user):
        response = await client.post("/api/auth/send-otp", json={"email": test_user.email})
        assert response.status_code == 400
        assert response.json() == {"error": "Email already registered"}

    async def test_send_otp_is_rate_limited(self, client, config):
        config.otp_send_limit_per_hour = 2
        for _ in range(2):
            assert (await client.post("/api/auth/send-otp", json={"email": EMAIL})).status_code == 200

        response = await client.post("/api/auth/send-otp", json={"email": EMAIL})
        assert response.status_code == 429
        assert "retry-after" in response.headers

    async def test_weak_password_lists_errors(self, client):
        response = await client.post("/api/auth/register", json={
            "email": EMAIL, "password": "12345", "role": "STUDENT",
        })
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["errors"]

    async def test_recruiter_registration_is_pending(self, client, dispatcher, notifier):
        body = await register_verified(client, dispatcher, notifier, email="hr@example.com", role="RECRUITER")
        assert body["user"]["status"] == "PENDING"

    async def test_unknown_role_is_422(self, client):
        response = await client.post("/api/auth/register", json={
            "email": EMAIL, "password": "secret1", "role": "JANITOR",
        })
        assert response.status_code == 422


class TestSessionEndpoints:
    async def test_login_me_refresh_logout(self, client, test_user):
        response = await client.post("/api/auth/login", json={
            "email": test_user.email, "password": TEST_PASSWORD, "selected_role": "STUDENT",
        })
        assert response.status_code == 200
        tokens = response.json()

        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert me.status_code == 200
        assert me.json()["email"] == test_user.email

        refreshed = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 200
        assert refreshed.json()["access_token"]

        response = await client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        # Logging out twice still succeeds
        response = await client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200

        refreshed = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 401

    async def test_me_requires_token(self, client):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

        response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    async def test_login_failures(self, client, test_user, blocked_user):
        response = await client.post("/api/auth/login", json={"email": test_user.email, "password": "nope-nope"})
        assert response.status_code == 401
        unknown = await client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"})
        assert unknown.status_code == 401
        assert unknown.json() == response.json()

        response = await client.post("/api/auth/login", json={
            "email": test_user.email, "password": TEST_PASSWORD, "role": "ADMIN",
        })
        assert response.status_code == 403

        response = await client.post("/api/auth/login", json={"email": blocked_user.email, "password": TEST_PASSWORD})
        assert response.status_code == 403

    async def test_repeated_failures_lock_out_client(self, client, config, test_user):
        config.account_lockout_attempts = 3
        for _ in range(3):
            response = await client.post("/api/auth/login", json={"email": test_user.email, "password": "nope-nope"})
            assert response.status_code == 401

        response = await client.post("/api/auth/login", json={"email": test_user.email, "password": TEST_PASSWORD})
        assert response.status_code == 429


class TestPasswordResetEndpoints:
    async def test_full_reset_flow(self, client, dispatcher, notifier, test_user):
        response = await client.post("/api/auth/reset-password", json={"email": test_user.email})
        assert response.status_code == 200
        assert response.json()["expires_in"] == 600

        code = await inbox_code(dispatcher, notifier, test_user.email, OTPPurpose.RESET_PASSWORD)
        response = await client.post("/api/auth/verify-reset-otp", json={"email": test_user.email, "otp": code})
        assert response.status_code == 200
        reset_token = response.json()["reset_token"]

        response = await client.post("/api/auth/update-password", json={"reset_token": reset_token, "password": "short"})
        assert response.status_code == 400

        response = await client.post("/api/auth/update-password",
                                     json={"reset_token": reset_token, "password": "brand-new-pass"})
        assert response.status_code == 200

        response = await client.post("/api/auth/login", json={"email": test_user.email, "password": "brand-new-pass"})
        assert response.status_code == 200

    async def test_reset_for_unknown_email_looks_the_same(self, client, test_user):
        known = (await client.post("/api/auth/reset-password", json={"email": test_user.email})).json()
        unknown = (await client.post("/api/auth/reset-password", json={"email": "ghost@example.com"})).json()

        assert known.keys() == unknown.keys()
        assert known["message"] == unknown["message"]

    async def test_verification_token_cannot_reset_password(self, client, dispatcher, notifier):
        await client.post("/api/auth/send-otp", json={"email": EMAIL})
        code = await inbox_code(dispatcher, notifier, EMAIL, OTPPurpose.VERIFY_EMAIL)
        token = (await client.post("/api/auth/verify-otp", json={"email": EMAIL, "otp": code})).json()["verification_token"]

        response = await client.post("/api/auth/update-password", json={"reset_token": token, "password": "brand-new-pass"})
        assert response.status_code == 400


class TestResponseHardening:
    async def test_security_headers(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["cache-control"] == "no-store"
        assert "server" not in response.headers
