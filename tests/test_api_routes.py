"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth and /api/v1/admin routes.

These tests exercise the full stack: FastAPI routing -> request validation ->
auth dependency injection -> AuthService -> RecordStore -> envelope
serialization. Unit testing individual route functions would miss middleware,
dependency injection and the exception handlers -- integration tests are the
right tool here.

Coverage:
  - Envelope: success and error shapes, per-field validation errors, no-store caching
  - Register -> verify -> login happy path; login before verification is 403
  - Credential failures are generic 401s; missing/invalid bearer token is 401
  - Refresh rotation, logout idempotency, session listing and revocation (IDOR)
  - Forgot/reset password round trip; forgot-password answers identically for unknown emails
  - Brute force: five failures block the address, the right password is then refused
  - Admin: role changes, soft delete/restore, revoke-all, block list management
  - Access-token and session expiry on the injected clock

Fixtures used (from conftest.py):
  - api: ApiHarness -- TestClient over the real app plus the components, recording
    notifier and frozen clock behind it. Module-scoped, so every test uses its
    own email addresses and client addresses.
"""

from __future__ import annotations

from conftest import PASSWORD, ApiHarness

# ---------------------------------------------------------------------------
# Envelope and validation
# ---------------------------------------------------------------------------


class TestEnvelope:
    def test_register_returns_created_envelope(self, api: ApiHarness) -> None:
        """POST /auth/register returns 201 with user, tokens and a session token."""
        resp = api.client.post(
            "/api/v1/auth/register",
            json={
                "name": "Efua Owusu",
                "email": "Efua@Example.com",
                "phone": "+233201234567",
                "password": PASSWORD,
                "password_confirmation": PASSWORD,
            },
            headers=api.headers("198.51.100.31"),
        )
        assert resp.status_code == 201, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        body = resp.json()
        assert body["status"] == "success"
        assert body["message"] == "Registration successful. Please verify your email."

        data = body["data"]
        assert data["user"]["email"] == "efua@example.com"
        assert data["user"]["verified"] is False
        assert data["user"]["phone"] == "+233201234567"
        assert data["user"]["wallet_balance"] == "0.00"
        assert data["user"]["agent_code"].startswith("AG")
        assert "password_hash" not in data["user"]
        assert "verification_code" not in data["user"]
        assert data["tokens"]["token_type"] == "bearer"
        assert data["tokens"]["expires_in"] == api.settings.access_token_expire_seconds
        assert data["session"]["token"]

    def test_validation_errors_are_per_field(self, api: ApiHarness) -> None:
        resp = api.client.post(
            "/api/v1/auth/register",
            json={"name": "E", "email": "not-an-email", "password": "short", "password_confirmation": "short"},
            headers=api.headers("198.51.100.32"),
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["status"] == "error"
        assert body["message"] == "Validation failed."
        fields = {e["field"] for e in body["errors"]}
        assert {"name", "email", "password"} <= fields
        assert "data" not in body

    def test_weak_password_rejected(self, api: ApiHarness) -> None:
        resp = api.client.post(
            "/api/v1/auth/register",
            json={"name": "Efua", "email": "weak@example.com", "password": "alllowercase1", "password_confirmation": "alllowercase1"},
            headers=api.headers("198.51.100.33"),
        )
        assert resp.status_code == 400
        assert any(e["field"] == "password" and "uppercase" in e["message"] for e in resp.json()["errors"])

    def test_password_mismatch_rejected(self, api: ApiHarness) -> None:
        resp = api.client.post(
            "/api/v1/auth/register",
            json={"name": "Efua", "email": "mismatch@example.com", "password": PASSWORD, "password_confirmation": "Secret999"},
            headers=api.headers("198.51.100.34"),
        )
        assert resp.status_code == 400
        assert any("do not match" in e["message"] for e in resp.json()["errors"])

    def test_duplicate_email(self, api: ApiHarness) -> None:
        api.register("dupe@example.com", "198.51.100.35")
        resp = api.client.post(
            "/api/v1/auth/register",
            json={"name": "Efua", "email": "DUPE@example.com", "password": PASSWORD, "password_confirmation": PASSWORD},
            headers=api.headers("198.51.100.35"),
        )
        assert resp.status_code == 400
        assert resp.json() == {"status": "error", "message": "Email already registered."}

    def test_unknown_route_uses_envelope(self, api: ApiHarness) -> None:
        resp = api.client.get("/api/v1/nope")
        assert resp.status_code == 404
        assert resp.json()["status"] == "error"


# ---------------------------------------------------------------------------
# Auth flows
# ---------------------------------------------------------------------------


class TestAuthFlow:
    def test_login_before_verification_is_forbidden(self, api: ApiHarness) -> None:
        api.register("early@example.com", "198.51.100.40")
        resp = api.login("early@example.com", address="198.51.100.40")
        assert resp.status_code == 403
        assert resp.json()["message"] == "Please verify your email before logging in."

    def test_verify_with_wrong_code(self, api: ApiHarness) -> None:
        api.register("wrongcode@example.com", "198.51.100.41")
        code = api.notifier.last("verification", "wrongcode@example.com")["code"]
        resp = api.client.post(
            "/api/v1/auth/verify-email",
            json={"email": "wrongcode@example.com", "code": "000000" if code != "000000" else "111111"},
            headers=api.headers("198.51.100.41"),
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid verification code."

    def test_verify_code_format_validated(self, api: ApiHarness) -> None:
        resp = api.client.post(
            "/api/v1/auth/verify-email", json={"email": "x@example.com", "code": "12ab"}, headers=api.headers()
        )
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "code"

    def test_signed_in_user_can_read_me(self, api: ApiHarness) -> None:
        data = api.signed_in("kwame@example.com", "198.51.100.42")
        assert data["suspicious"] is False
        assert data["user"]["verified"] is True

        resp = api.client.get("/api/v1/auth/me", headers=api.headers("198.51.100.42", data["tokens"]["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["email"] == "kwame@example.com"

    def test_me_requires_token(self, api: ApiHarness) -> None:
        resp = api.client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert resp.json() == {"status": "error", "message": "Authentication required."}

    def test_me_rejects_garbage_token(self, api: ApiHarness) -> None:
        resp = api.client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.token"})
        assert resp.status_code == 401

    def test_wrong_password_and_unknown_email_look_the_same(self, api: ApiHarness) -> None:
        api.signed_in("abena@example.com", "198.51.100.43")
        wrong = api.login("abena@example.com", "Secret999", address="198.51.100.44")
        unknown = api.login("ghost@example.com", "Secret999", address="198.51.100.44")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"status": "error", "message": "Invalid credentials."}

    def test_refresh_rotates(self, api: ApiHarness) -> None:
        data = api.signed_in("yaw@example.com", "198.51.100.45")
        old = data["tokens"]["refresh_token"]

        resp = api.client.post("/api/v1/auth/refresh-token", json={"refresh_token": old}, headers=api.headers())
        assert resp.status_code == 200
        new = resp.json()["data"]["tokens"]
        assert new["refresh_token"] != old

        replay = api.client.post("/api/v1/auth/refresh-token", json={"refresh_token": old}, headers=api.headers())
        assert replay.status_code == 401

        me = api.client.get("/api/v1/auth/me", headers=api.headers(token=new["access_token"]))
        assert me.status_code == 200

    def test_logout_is_idempotent(self, api: ApiHarness) -> None:
        data = api.signed_in("akosua@example.com", "198.51.100.46")
        access = data["tokens"]["access_token"]
        headers = api.headers("198.51.100.46", access)

        first = api.client.post("/api/v1/auth/logout", headers=headers)
        assert first.status_code == 200
        assert first.json()["message"] == "Logged out successfully."
        # The access token outlives logout until its own expiry.
        assert api.client.post("/api/v1/auth/logout", headers=headers).status_code == 200

        refresh = api.client.post(
            "/api/v1/auth/refresh-token", json={"refresh_token": data["tokens"]["refresh_token"]}, headers=headers
        )
        assert refresh.status_code == 401
        current = api.client.get("/api/v1/auth/sessions/current", headers={"X-Session-Token": data["session"]["token"]})
        assert current.status_code == 401

    def test_logout_requires_auth(self, api: ApiHarness) -> None:
        assert api.client.post("/api/v1/auth/logout").status_code == 401

    def test_current_session(self, api: ApiHarness) -> None:
        data = api.signed_in("esi@example.com", "198.51.100.47")
        resp = api.client.get("/api/v1/auth/sessions/current", headers={"X-Session-Token": data["session"]["token"]})
        assert resp.status_code == 200
        session = resp.json()["data"]["session"]
        assert session["id"] == data["session"]["id"]
        assert session["device"] == "Chrome 120 on macOS"
        assert session["active"] is True
        assert "token" not in session

    def test_sessions_list_marks_current(self, api: ApiHarness) -> None:
        data = api.signed_in("kojo@example.com", "198.51.100.48")
        resp = api.client.get("/api/v1/auth/sessions", headers=api.headers(token=data["tokens"]["access_token"]))
        assert resp.status_code == 200
        sessions = resp.json()["data"]["sessions"]
        # Registration session plus the login session.
        assert len(sessions) == 2
        current = [s for s in sessions if s["current"]]
        assert [s["id"] for s in current] == [data["session"]["id"]]

    def test_cannot_revoke_someone_elses_session(self, api: ApiHarness) -> None:
        victim = api.signed_in("victim@example.com", "198.51.100.49")
        attacker = api.signed_in("attacker@example.com", "198.51.100.50")
        resp = api.client.delete(
            f"/api/v1/auth/sessions/{victim['session']['id']}",
            headers=api.headers("198.51.100.50", attacker["tokens"]["access_token"]),
        )
        assert resp.status_code == 404
        still = api.client.get("/api/v1/auth/sessions/current", headers={"X-Session-Token": victim["session"]["token"]})
        assert still.status_code == 200

    def test_revoke_own_session(self, api: ApiHarness) -> None:
        data = api.signed_in("adjoa@example.com", "198.51.100.51")
        resp = api.client.delete(
            f"/api/v1/auth/sessions/{data['session']['id']}",
            headers=api.headers("198.51.100.51", data["tokens"]["access_token"]),
        )
        assert resp.status_code == 200
        current = api.client.get("/api/v1/auth/sessions/current", headers={"X-Session-Token": data["session"]["token"]})
        assert current.status_code == 401

    def test_activity_feed(self, api: ApiHarness) -> None:
        data = api.signed_in("nana@example.com", "198.51.100.52")
        resp = api.client.get(
            "/api/v1/auth/activity", params={"limit": 10}, headers=api.headers(token=data["tokens"]["access_token"])
        )
        assert resp.status_code == 200
        types = [a["type"] for a in resp.json()["data"]["activity"]]
        assert types[0] == "LOGIN"
        assert {"REGISTRATION", "EMAIL_VERIFIED"} <= set(types)

    def test_far_away_login_is_flagged(self, api: ApiHarness) -> None:
        api.signed_in("traveller@example.com", "198.51.100.10")
        resp = api.login("traveller@example.com", address="203.0.113.50")
        assert resp.status_code == 200
        assert resp.json()["data"]["suspicious"] is True
        assert api.notifier.last("suspicious_login", "traveller@example.com")["location"] == "London, England, GB"


class TestPasswordReset:
    def test_forgot_password_does_not_enumerate(self, api: ApiHarness) -> None:
        api.signed_in("forgetful@example.com", "198.51.100.60")
        known = api.client.post("/api/v1/auth/forgot-password", json={"email": "forgetful@example.com"}, headers=api.headers())
        unknown = api.client.post("/api/v1/auth/forgot-password", json={"email": "nobody@example.com"}, headers=api.headers())
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_reset_round_trip(self, api: ApiHarness) -> None:
        data = api.signed_in("resetme@example.com", "198.51.100.61")
        api.client.post("/api/v1/auth/forgot-password", json={"email": "resetme@example.com"}, headers=api.headers())
        token = api.notifier.last("password_reset", "resetme@example.com")["reset_link"].split("token=", 1)[1]

        resp = api.client.post(
            "/api/v1/auth/reset-password",
            json={"token": token, "password": "NewSecret456", "password_confirmation": "NewSecret456"},
            headers=api.headers("198.51.100.61"),
        )
        assert resp.status_code == 200

        old_session = api.client.get("/api/v1/auth/sessions/current", headers={"X-Session-Token": data["session"]["token"]})
        assert old_session.status_code == 401
        assert api.login("resetme@example.com", "NewSecret456", address="198.51.100.61").status_code == 200

        again = api.client.post(
            "/api/v1/auth/reset-password",
            json={"token": token, "password": "Another789", "password_confirmation": "Another789"},
            headers=api.headers("198.51.100.61"),
        )
        assert again.status_code == 400
        assert again.json()["message"] == "Invalid or expired password reset token."


# ---------------------------------------------------------------------------
# Brute force and administration
# ---------------------------------------------------------------------------


def _admin_token(api: ApiHarness, email: str, address: str) -> str:
    api.components.service.create_admin(email, PASSWORD, name="Admin")
    resp = api.login(email, address=address)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["tokens"]["access_token"]


class TestBruteForce:
    def test_block_then_unblock(self, api: ApiHarness) -> None:
        attacker = "203.0.113.66"
        api.signed_in("target@example.com", "198.51.100.70")

        for _ in range(5):
            assert api.login("target@example.com", "Wrong-pass1", address=attacker).status_code == 401

        blocked = api.login("target@example.com", address=attacker)
        assert blocked.status_code == 403
        assert blocked.json() == {"status": "error", "message": "Access denied."}

        register = api.client.post(
            "/api/v1/auth/register",
            json={"name": "Mallory", "email": "mallory@example.com", "password": PASSWORD, "password_confirmation": PASSWORD},
            headers=api.headers(attacker),
        )
        assert register.status_code == 403

        token = _admin_token(api, "guard-admin@example.com", "198.51.100.71")
        listing = api.client.get("/api/v1/admin/blocked-addresses", headers=api.headers("198.51.100.71", token))
        assert listing.status_code == 200
        assert attacker in [b["address"] for b in listing.json()["data"]["blocked"]]

        api.clock.advance(seconds=1)
        unblock = api.client.delete(f"/api/v1/admin/blocked-addresses/{attacker}", headers=api.headers("198.51.100.71", token))
        assert unblock.status_code == 200
        api.clock.advance(seconds=1)
        assert api.login("target@example.com", address=attacker).status_code == 200

    def test_unblock_unknown_address(self, api: ApiHarness) -> None:
        token = _admin_token(api, "guard-admin2@example.com", "198.51.100.72")
        resp = api.client.delete("/api/v1/admin/blocked-addresses/192.0.2.1", headers=api.headers("198.51.100.72", token))
        assert resp.status_code == 404
        assert resp.json()["message"] == "Address is not blocked."


class TestAdmin:
    def test_non_admin_forbidden(self, api: ApiHarness) -> None:
        data = api.signed_in("plain@example.com", "198.51.100.80")
        resp = api.client.get("/api/v1/admin/blocked-addresses", headers=api.headers(token=data["tokens"]["access_token"]))
        assert resp.status_code == 403
        assert resp.json()["message"] == "Admin access required."

    def test_change_role(self, api: ApiHarness) -> None:
        token = _admin_token(api, "roles-admin@example.com", "198.51.100.81")
        user = api.signed_in("promote@example.com", "198.51.100.82")["user"]

        resp = api.client.patch(f"/api/v1/admin/users/{user['id']}", json={"role": "admin"}, headers=api.headers(token=token))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["role"] == "admin"

        bad = api.client.patch(f"/api/v1/admin/users/{user['id']}", json={"role": "superuser"}, headers=api.headers(token=token))
        assert bad.status_code == 400

        missing = api.client.patch("/api/v1/admin/users/999999", json={"role": "user"}, headers=api.headers(token=token))
        assert missing.status_code == 404

    def test_delete_and_restore(self, api: ApiHarness) -> None:
        token = _admin_token(api, "delete-admin@example.com", "198.51.100.83")
        data = api.signed_in("leaving@example.com", "198.51.100.84")
        user_id = data["user"]["id"]
        user_headers = api.headers("198.51.100.84", data["tokens"]["access_token"])

        resp = api.client.delete(f"/api/v1/admin/users/{user_id}", headers=api.headers(token=token))
        assert resp.status_code == 200
        # Deleted accounts lose access immediately, even with an unexpired access token.
        assert api.client.get("/api/v1/auth/me", headers=user_headers).status_code == 401
        assert api.login("leaving@example.com", address="198.51.100.84").status_code == 401

        restored = api.client.post(f"/api/v1/admin/users/{user_id}/restore", headers=api.headers(token=token))
        assert restored.status_code == 200
        assert restored.json()["data"]["user"]["email"] == "leaving@example.com"
        assert api.login("leaving@example.com", address="198.51.100.84").status_code == 200

    def test_admin_cannot_delete_self(self, api: ApiHarness) -> None:
        token = _admin_token(api, "self-admin@example.com", "198.51.100.85")
        me = api.client.get("/api/v1/auth/me", headers=api.headers(token=token)).json()["data"]["user"]
        resp = api.client.delete(f"/api/v1/admin/users/{me['id']}", headers=api.headers(token=token))
        assert resp.status_code == 400

    def test_revoke_all_sessions(self, api: ApiHarness) -> None:
        token = _admin_token(api, "revoke-admin@example.com", "198.51.100.86")
        data = api.signed_in("revoked@example.com", "198.51.100.87")

        resp = api.client.delete(f"/api/v1/admin/users/{data['user']['id']}/sessions", headers=api.headers(token=token))
        assert resp.status_code == 200
        assert resp.json()["data"]["revoked"] == 2
        current = api.client.get("/api/v1/auth/sessions/current", headers={"X-Session-Token": data["session"]["token"]})
        assert current.status_code == 401


# ---------------------------------------------------------------------------
# Expiry on the injected clock (moves the shared clock forward -- keep last)
# ---------------------------------------------------------------------------


class TestExpiry:
    def test_access_token_expires(self, api: ApiHarness) -> None:
        data = api.signed_in("shortlived@example.com", "198.51.100.90")
        headers = api.headers(token=data["tokens"]["access_token"])
        assert api.client.get("/api/v1/auth/me", headers=headers).status_code == 200
        api.clock.advance(seconds=api.settings.access_token_expire_seconds)
        assert api.client.get("/api/v1/auth/me", headers=headers).status_code == 401

    def test_session_expires_after_ttl(self, api: ApiHarness) -> None:
        data = api.signed_in("sleepy@example.com", "198.51.100.91")
        headers = {"X-Session-Token": data["session"]["token"]}
        api.clock.advance(seconds=api.settings.session_ttl_seconds)
        assert api.client.get("/api/v1/auth/sessions/current", headers=headers).status_code == 200
        api.clock.advance(seconds=1)
        assert api.client.get("/api/v1/auth/sessions/current", headers=headers).status_code == 401
