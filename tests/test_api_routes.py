"""
tests/test_api_routes.py -- Integration tests for the auth and session routes.

These tests exercise the full stack: FastAPI routing -> get_session_tx
dependency -> AuthService/SessionTransaction -> AuthStore -> response model
serialization and the AuthError exception handler.

Coverage:
  - Signin: cookie attributes, token in body, Cache-Control: no-store
  - Wrong password and unknown user: identical 401 invalid_password
  - Missing, forged and signed-out tokens: 410 session_expired
  - Session listing never leaks tokens; current session is flagged
  - Cross-user DELETE is 401 session_not_found and deletes nothing
  - Invite creation: OWNER allowed, NORMAL 403; signup consumes it once
  - Request validation errors use the shared error envelope
  - A failed commit is reported to the client and nothing is deleted

Fixtures used (from conftest.py):
  - api_client: (client, service) -- users alice, bob (NORMAL) and owner (OWNER),
    all with password PASSWORD.
"""

from __future__ import annotations

from contextlib import contextmanager

from fastapi.testclient import TestClient

from auth.errors import StoreError
from auth.tokens import COOKIE_NAME
from tests.conftest import PASSWORD


def _signin(client: TestClient, username: str, user_agent: str = "pytest") -> dict:
    resp = client.post(
        "/api/v1/signin",
        json={"username": username, "password": PASSWORD},
        headers={"User-Agent": user_agent},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestSignin:
    def test_signin_sets_cookie_and_returns_token(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/signin", json={"username": "alice", "password": PASSWORD})

        assert resp.status_code == 200
        body = resp.json()
        assert body["username"] == "alice"
        assert body["current"] is True
        assert len(body["token"]) == 43
        assert resp.headers["cache-control"] == "no-store"

        cookie = resp.headers["set-cookie"]
        assert cookie.startswith(f"{COOKIE_NAME}={body['token']}")
        assert "HttpOnly" in cookie
        assert "SameSite=lax" in cookie

    def test_cookie_authenticates_follow_up_requests(self, api_client) -> None:
        client, _ = api_client
        signed_in = _signin(client, "alice")

        resp = client.get("/api/v1/sessions/me")
        assert resp.status_code == 200
        assert resp.json()["id"] == signed_in["id"]

    def test_wrong_password_and_unknown_user_are_identical(self, api_client) -> None:
        client, _ = api_client
        wrong = client.post("/api/v1/signin", json={"username": "alice", "password": "nope-nope"})
        unknown = client.post("/api/v1/signin", json={"username": "nobody", "password": PASSWORD})

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_password"
        assert "set-cookie" not in wrong.headers

    def test_empty_body_is_validation_error(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/signin", json={"username": "alice"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestSessionResolution:
    def test_missing_token_is_session_expired(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/sessions/me")
        assert resp.status_code == 410
        assert resp.json()["error"]["code"] == "session_expired"
        assert resp.headers["cache-control"] == "no-store"

    def test_forged_token_is_session_expired(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/sessions/me", headers=_bearer("A" * 43))
        assert resp.status_code == 410
        assert resp.json()["error"]["code"] == "session_expired"

    def test_bearer_header_is_accepted(self, api_client) -> None:
        client, _ = api_client
        token = _signin(client, "alice")["token"]
        client.cookies.clear()

        resp = client.get("/api/v1/sessions/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice"

    def test_request_renews_deadline(self, api_client) -> None:
        client, _ = api_client
        first = _signin(client, "alice")
        me = client.get("/api/v1/sessions/me").json()
        assert me["deadline"] >= first["deadline"]


class TestSessionRoutes:
    def test_list_sessions_hides_tokens(self, api_client) -> None:
        client, _ = api_client
        laptop = _signin(client, "alice", "laptop")
        client.cookies.clear()
        phone = _signin(client, "alice", "phone")
        client.cookies.clear()

        resp = client.get("/api/v1/sessions", headers=_bearer(laptop["token"]))

        assert resp.status_code == 200
        sessions = resp.json()
        assert {s["id"] for s in sessions} == {laptop["id"], phone["id"]}
        assert all("token" not in s for s in sessions)
        current = [s["user_agent"] for s in sessions if s["current"]]
        assert current == ["laptop"]

    def test_delete_own_session(self, api_client) -> None:
        client, _ = api_client
        laptop = _signin(client, "alice", "laptop")
        client.cookies.clear()
        phone = _signin(client, "alice", "phone")
        client.cookies.clear()

        resp = client.delete(f"/api/v1/sessions/{phone['id']}", headers=_bearer(laptop["token"]))
        assert resp.status_code == 204

        assert client.get("/api/v1/sessions/me", headers=_bearer(phone["token"])).status_code == 410

    def test_delete_other_users_session_is_not_found(self, api_client) -> None:
        client, _ = api_client
        alice = _signin(client, "alice")
        client.cookies.clear()
        bob = _signin(client, "bob")
        client.cookies.clear()

        resp = client.delete(f"/api/v1/sessions/{bob['id']}", headers=_bearer(alice["token"]))

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "session_not_found"
        assert client.get("/api/v1/sessions/me", headers=_bearer(bob["token"])).status_code == 200

    def test_signout_then_reuse_is_session_expired(self, api_client) -> None:
        client, _ = api_client
        token = _signin(client, "alice")["token"]
        client.cookies.clear()

        resp = client.post("/api/v1/signout", headers=_bearer(token))
        assert resp.status_code == 204
        assert f'{COOKIE_NAME}=""' in resp.headers["set-cookie"]

        again = client.post("/api/v1/signout", headers=_bearer(token))
        assert again.status_code == 410


class TestInvitesAndSignup:
    def test_owner_invite_then_signup(self, api_client) -> None:
        client, _ = api_client
        owner = _signin(client, "owner")
        client.cookies.clear()

        resp = client.post("/api/v1/invites", json={"remaining": 1}, headers=_bearer(owner["token"]))
        assert resp.status_code == 201
        invite = resp.json()["token"]

        signup = client.post(
            "/api/v1/signup",
            json={"username": "carol", "password": PASSWORD, "token": invite},
        )
        assert signup.status_code == 201
        assert signup.json()["username"] == "carol"
        assert signup.headers["cache-control"] == "no-store"
        assert client.get("/api/v1/sessions/me").json()["username"] == "carol"
        client.cookies.clear()

        reused = client.post(
            "/api/v1/signup",
            json={"username": "dave", "password": PASSWORD, "token": invite},
        )
        assert reused.status_code == 401
        assert reused.json()["error"]["code"] == "invalid_token"

    def test_normal_user_cannot_create_invites(self, api_client) -> None:
        client, _ = api_client
        _signin(client, "alice")
        resp = client.post("/api/v1/invites", json={})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "permission_denied"

    def test_signup_taken_username(self, api_client) -> None:
        client, service = api_client
        invite = service.create_invite("owner").token

        resp = client.post(
            "/api/v1/signup",
            json={"username": "alice", "password": PASSWORD, "token": invite},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"

    def test_signup_short_password(self, api_client) -> None:
        client, service = api_client
        invite = service.create_invite("owner").token

        resp = client.post(
            "/api/v1/signup",
            json={"username": "carol", "password": "short", "token": invite},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_too_short"


class TestCommitFailure:
    """The request transaction ends before the response is sent."""

    @staticmethod
    def _fail_commits(service, monkeypatch) -> None:
        real = service.store.transaction

        @contextmanager
        def failing_transaction():
            with real() as conn:
                yield conn
                raise StoreError("Failed to commit transaction")

        monkeypatch.setattr(service.store, "transaction", failing_transaction)

    def test_delete_commit_failure_is_500_and_keeps_session(self, api_client, monkeypatch) -> None:
        client, service = api_client
        laptop = _signin(client, "alice", "laptop")
        client.cookies.clear()
        phone = _signin(client, "alice", "phone")
        client.cookies.clear()

        self._fail_commits(service, monkeypatch)
        resp = client.delete(f"/api/v1/sessions/{phone['id']}", headers=_bearer(laptop["token"]))

        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "store_error"
        assert resp.json()["error"]["message"] == "An unexpected error occurred."

        monkeypatch.undo()
        assert client.get("/api/v1/sessions/me", headers=_bearer(phone["token"])).status_code == 200

    def test_signout_commit_failure_is_500(self, api_client, monkeypatch) -> None:
        client, service = api_client
        token = _signin(client, "alice")["token"]
        client.cookies.clear()

        self._fail_commits(service, monkeypatch)
        resp = client.post("/api/v1/signout", headers=_bearer(token))

        assert resp.status_code == 500
        assert "set-cookie" not in resp.headers

        monkeypatch.undo()
        assert client.get("/api/v1/sessions/me", headers=_bearer(token)).status_code == 200
