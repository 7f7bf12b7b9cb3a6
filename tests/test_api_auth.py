"""
tests/test_api_auth.py -- Integration tests for the email sign-in JSON API.

Exercises POST /api/auth/email, GET /api/auth/email/verify and
GET /api/auth/me through the real ASGI stack with a MemoryMailer.

Each test registers its own user so per-user debounce state never leaks
between tests.

Coverage:
  - Request: 200 body, mail sent, 400 / 404 / 429 envelopes
  - Verify: 200 body shape, Cache-Control, single use, generic 401s
  - Me: bearer credential accepted; missing/invalid/suspended rejected
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import link_params, unique_email
from directory.models import UserStatus
from mail.sender import MemoryMailer

GENERIC_401 = "Invalid or expired authentication token."


def _register(client: TestClient, status: UserStatus = UserStatus.ACTIVE):
    return client.app.state.user_store.create_user(unique_email(), status)


def _request_and_get_token(client: TestClient, mailer: MemoryMailer, email: str) -> str:
    resp = client.post("/api/auth/email", json={"email": email})
    assert resp.status_code == 200, resp.text
    return link_params(mailer.outbox[-1].link)["token"]


# ---------------------------------------------------------------------------
# POST /api/auth/email
# ---------------------------------------------------------------------------


class TestRequestEmailAuth:
    def test_sends_link(self, api_client) -> None:
        client, mailer = api_client
        user = _register(client)

        resp = client.post("/api/auth/email", json={"email": user.email, "redirect": "/home"})
        assert resp.status_code == 200
        assert resp.json() == {"email": user.email, "message": "Authentication email sent successfully."}

        msg = mailer.outbox[-1]
        assert msg.to_email == user.email
        assert msg.link.startswith("https://auth.example.com/auth/email/verify?token=")
        params = link_params(msg.link)
        assert params["email"] == user.email
        assert params["redirect"] == "/home"

    def test_stored_hash_is_not_the_secret(self, api_client) -> None:
        client, mailer = api_client
        user = _register(client)
        token = _request_and_get_token(client, mailer, user.email)

        row = client.app.state.challenge_store.latest(user.id)
        assert row.token_hash != token
        assert token not in row.token_hash

    def test_invalid_email(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/auth/email", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"
        assert resp.json()["error"]["message"] == "Invalid email format."

    def test_missing_body_is_400_not_422(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/auth/email", json={})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_unknown_user(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/auth/email", json={"email": unique_email("ghost")})
        assert resp.status_code == 404
        assert resp.json()["error"] == {"code": "not_found", "message": "User not found.", "detail": None}

    def test_suspended_user_gets_404_and_no_mail(self, api_client) -> None:
        client, mailer = api_client
        user = _register(client, UserStatus.SUSPENDED)
        sent_before = len(mailer.outbox)

        resp = client.post("/api/auth/email", json={"email": user.email})
        assert resp.status_code == 404
        assert len(mailer.outbox) == sent_before

    def test_debounce_429(self, api_client) -> None:
        client, _ = api_client
        user = _register(client)
        assert client.post("/api/auth/email", json={"email": user.email}).status_code == 200

        resp = client.post("/api/auth/email", json={"email": user.email})
        assert resp.status_code == 429
        body = resp.json()
        assert body["error"]["code"] == "rate_limited"
        assert body["error"]["message"] == "Email authentication request too recent."
        assert 0 < body["retry_after_seconds"] <= 180
        assert resp.headers["Retry-After"] == str(body["retry_after_seconds"])


# ---------------------------------------------------------------------------
# GET /api/auth/email/verify
# ---------------------------------------------------------------------------


class TestVerifyEmailAuth:
    def test_success(self, api_client) -> None:
        client, mailer = api_client
        user = _register(client)
        token = _request_and_get_token(client, mailer, user.email)

        resp = client.get("/api/auth/email/verify", params={"token": token, "email": user.email})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        body = resp.json()
        assert body["message"] == "Email authentication successful."
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 2592000
        assert body["user"] == {"id": user.id, "email": user.email, "status": "ACTIVE"}

        claims = client.app.state.credentials.decode(body["access_token"])
        assert claims["sub"] == user.id
        assert claims["userId"] == user.id

    def test_second_use_is_400(self, api_client) -> None:
        client, mailer = api_client
        user = _register(client)
        token = _request_and_get_token(client, mailer, user.email)
        params = {"token": token, "email": user.email}

        assert client.get("/api/auth/email/verify", params=params).status_code == 200
        resp = client.get("/api/auth/email/verify", params=params)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "token_already_used"

    def test_missing_params(self, api_client) -> None:
        client, _ = api_client
        assert client.get("/api/auth/email/verify").status_code == 400
        assert client.get("/api/auth/email/verify", params={"token": "ff"}).status_code == 400
        assert client.get("/api/auth/email/verify", params={"email": unique_email()}).status_code == 400

    def test_unknown_user(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/auth/email/verify", params={"token": "00" * 32, "email": unique_email("ghost")})
        assert resp.status_code == 404

    def test_token_failures_are_indistinguishable(self, api_client) -> None:
        """No challenge, wrong secret, malformed secret and suspended all look the same."""
        client, mailer = api_client

        never_asked = _register(client)
        wrong_secret = _register(client)
        _request_and_get_token(client, mailer, wrong_secret.email)
        suspended = _register(client)
        suspended_token = _request_and_get_token(client, mailer, suspended.email)
        client.app.state.user_store.update_status(suspended.id, UserStatus.SUSPENDED)

        cases = [
            {"token": "00" * 32, "email": never_asked.email},
            {"token": "00" * 32, "email": wrong_secret.email},
            {"token": "not-hex", "email": wrong_secret.email},
            {"token": suspended_token, "email": suspended.email},
        ]
        bodies = []
        for params in cases:
            resp = client.get("/api/auth/email/verify", params=params)
            assert resp.status_code == 401, params
            bodies.append(resp.json())

        assert all(b == bodies[0] for b in bodies)
        assert bodies[0]["error"] == {"code": "unauthorized", "message": GENERIC_401, "detail": None}


# ---------------------------------------------------------------------------
# GET /api/auth/me
# ---------------------------------------------------------------------------


class TestMe:
    def _sign_in(self, client: TestClient, mailer: MemoryMailer):
        user = _register(client)
        token = _request_and_get_token(client, mailer, user.email)
        resp = client.get("/api/auth/email/verify", params={"token": token, "email": user.email})
        return user, resp.json()["access_token"]

    def test_me_with_bearer(self, api_client) -> None:
        client, mailer = api_client
        user, access_token = self._sign_in(client, mailer)

        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {access_token}"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == user.id
        assert body["email"] == user.email
        assert body["status"] == "ACTIVE"
        assert body["last_login_at"] is not None

    def test_me_without_credential(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == GENERIC_401

    def test_me_with_garbage_credential(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_me_after_suspension(self, api_client) -> None:
        client, mailer = api_client
        user, access_token = self._sign_in(client, mailer)
        client.app.state.user_store.update_status(user.id, UserStatus.SUSPENDED)

        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {access_token}"})
        assert resp.status_code == 401
