"""
Authentication API tests.

Verifies:
- Registration, login and their error codes
- Refresh token rotation is single use
- Logout revokes the access token
- Blocked accounts are refused everywhere
- Rate limiting on login
- Profile, password reset and loyalty endpoints
"""

import pytest

from conftest import PASSWORD, auth_headers, make_user, token_for
from grabbi.extensions import db
from grabbi.models import LoyaltyHistory
from grabbi.services import auth_service


def login(client, email, password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


# =============================================================================
# REGISTRATION
# =============================================================================


class TestRegister:

    def test_register(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "email": "  New.Person@Example.com ",
            "password": "longenough",
            "name": "New Person",
        })

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["user"]["email"] == "new.person@example.com"
        assert data["user"]["role"] == "customer"
        assert data["user"]["loyalty_points"] == 0
        assert data["access_token"] and data["refresh_token"]
        assert "password_hash" not in data["user"]

    def test_duplicate_email(self, client, customer):
        resp = client.post("/api/auth/register", json={"email": "customer@example.com", "password": "longenough"})
        assert resp.status_code == 409

    @pytest.mark.parametrize("body", [
        {"email": "short@example.com", "password": "short"},
        {"email": "not-an-email", "password": "longenough"},
        {"password": "longenough"},
    ])
    def test_invalid_input(self, client, db_session, body):
        resp = client.post("/api/auth/register", json=body)
        assert resp.status_code == 400


# =============================================================================
# LOGIN / SESSIONS
# =============================================================================


class TestLogin:

    def test_login(self, client, customer):
        resp = login(client, "CUSTOMER@example.com")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["user"]["id"] == str(customer.id)
        assert data["token_type"] == "Bearer"

        profile = client.get("/api/auth/profile", headers=auth_headers(data["access_token"]))
        assert profile.status_code == 200
        assert profile.get_json()["user"]["email"] == "customer@example.com"

    def test_wrong_password(self, client, customer):
        assert login(client, "customer@example.com", "WrongPassword!").status_code == 401

    def test_unknown_email(self, client, db_session):
        assert login(client, "nobody@example.com").status_code == 401

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"email": "x@example.com"}).status_code == 400

    def test_blocked_account(self, client, db_session):
        make_user("blocked@example.com", is_blocked=True)
        assert login(client, "blocked@example.com").status_code == 403

    def test_blocked_token_is_refused(self, client, customer):
        headers = auth_headers(token_for(customer))
        customer.is_blocked = True
        db.session.commit()

        assert client.get("/api/auth/profile", headers=headers).status_code == 403

    @pytest.mark.parametrize("headers", [
        {},
        {"Authorization": "Bearer"},
        {"Authorization": "Token abc"},
        {"Authorization": "Bearer not-a-real-token"},
    ])
    def test_bad_tokens(self, client, db_session, headers):
        assert client.get("/api/auth/profile", headers=headers).status_code == 401


class TestRefreshAndLogout:

    def test_refresh_rotates(self, client, customer):
        tokens = login(client, "customer@example.com").get_json()

        resp = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        rotated = resp.get_json()
        assert rotated["refresh_token"] != tokens["refresh_token"]
        assert client.get("/api/auth/profile", headers=auth_headers(rotated["access_token"])).status_code == 200

        replay = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert replay.status_code == 401

    def test_access_token_is_not_a_refresh_token(self, client, customer):
        tokens = login(client, "customer@example.com").get_json()
        resp = client.post("/api/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert resp.status_code == 401

    def test_refresh_requires_token(self, client, db_session):
        assert client.post("/api/auth/refresh", json={}).status_code == 400

    def test_refresh_blocked(self, client, customer):
        tokens = login(client, "customer@example.com").get_json()
        customer.is_blocked = True
        db.session.commit()

        resp = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 403

    def test_logout_revokes(self, client, customer):
        tokens = login(client, "customer@example.com").get_json()
        headers = auth_headers(tokens["access_token"])

        resp = client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)
        assert resp.status_code == 200

        assert client.get("/api/auth/profile", headers=headers).status_code == 401
        assert client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401


class TestRateLimit:

    def test_login_is_limited(self, app, client, customer, monkeypatch):
        monkeypatch.setitem(app.config, "AUTH_RATE_LIMIT", 3)

        codes = [login(client, "customer@example.com", "WrongPassword!").status_code for _ in range(4)]

        assert codes == [401, 401, 401, 429]

    def test_scopes_are_separate(self, app, client, customer, monkeypatch):
        monkeypatch.setitem(app.config, "AUTH_RATE_LIMIT", 1)

        assert login(client, "customer@example.com").status_code == 200
        resp = client.post("/api/auth/forgot-password", json={"email": "customer@example.com"})
        assert resp.status_code == 200


# =============================================================================
# PROFILE AND PASSWORDS
# =============================================================================


class TestProfile:

    def test_update_profile(self, client, customer, customer_headers):
        resp = client.put("/api/auth/profile", json={"name": "  Casey C  ", "phone": "07700 900000", "role": "admin"},
                          headers=customer_headers)

        assert resp.status_code == 200
        user = resp.get_json()["user"]
        assert user["name"] == "Casey C"
        assert user["phone"] == "07700 900000"
        assert user["role"] == "customer"

    def test_change_password(self, client, customer, customer_headers):
        resp = client.post("/api/auth/change-password", json={
            "current_password": PASSWORD,
            "new_password": "BrandNewPass1",
        }, headers=customer_headers)

        assert resp.status_code == 200
        assert login(client, "customer@example.com", "BrandNewPass1").status_code == 200
        assert login(client, "customer@example.com").status_code == 401

    def test_change_password_wrong_current(self, client, customer, customer_headers):
        resp = client.post("/api/auth/change-password", json={
            "current_password": "nope-nope",
            "new_password": "BrandNewPass1",
        }, headers=customer_headers)
        assert resp.status_code == 400


class TestPasswordReset:

    def test_forgot_password_never_reveals_accounts(self, client, customer):
        known = client.post("/api/auth/forgot-password", json={"email": "customer@example.com"})
        unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.get_json() == unknown.get_json()

    def test_reset_flow(self, client, customer):
        old_headers = auth_headers(token_for(customer))
        token = auth_service.request_password_reset("customer@example.com")

        resp = client.post("/api/auth/reset-password", json={"token": token, "new_password": "ResetPass123"})

        assert resp.status_code == 200
        assert login(client, "customer@example.com", "ResetPass123").status_code == 200
        # existing sessions end with the reset
        assert client.get("/api/auth/profile", headers=old_headers).status_code == 401

        reuse = client.post("/api/auth/reset-password", json={"token": token, "new_password": "AnotherPass1"})
        assert reuse.status_code == 400

    def test_reset_unknown_token(self, client, db_session):
        resp = client.post("/api/auth/reset-password", json={"token": "bogus", "new_password": "ResetPass123"})
        assert resp.status_code == 400


# =============================================================================
# LOYALTY
# =============================================================================


class TestLoyalty:

    def test_redeem(self, client, customer, customer_headers):
        customer.loyalty_points = 30
        db.session.commit()

        resp = client.post("/api/auth/redeem-points", json={"points": 30}, headers=customer_headers)

        assert resp.status_code == 200
        assert resp.get_json()["loyalty_points"] == 0
        row = db.session.query(LoyaltyHistory).one()
        assert (row.type, row.points) == ("redeemed", 30)

    def test_redeem_insufficient(self, client, customer, customer_headers):
        customer.loyalty_points = 5
        db.session.commit()

        resp = client.post("/api/auth/redeem-points", json={"points": 6}, headers=customer_headers)

        assert resp.status_code == 400
        db.session.refresh(customer)
        assert customer.loyalty_points == 5

    @pytest.mark.parametrize("points", [0, -3, "ten", None])
    def test_redeem_rejects_bad_amounts(self, client, customer_headers, points):
        resp = client.post("/api/auth/redeem-points", json={"points": points}, headers=customer_headers)
        assert resp.status_code == 400

    def test_history_newest_first(self, client, customer, customer_headers):
        db.session.add_all([
            LoyaltyHistory(user_id=customer.id, points=12, type="earned", description="Order ORD1"),
            LoyaltyHistory(user_id=customer.id, points=5, type="redeemed", description="Redeemed 5 points"),
        ])
        db.session.commit()

        resp = client.get("/api/auth/loyalty-history?limit=1", headers=customer_headers)

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["total"] == 2
        assert len(data["history"]) == 1
