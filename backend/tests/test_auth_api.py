"""
Account and session tests.

Verifies:
- Signup (validation, duplicate email, signup bonus, location, promo check)
- Sign in / sign out and bearer token validation
- Idle and absolute session timeouts, deactivated users
- Profile updates
"""

from datetime import timedelta

import httpx
import pytest

from storefront.models import SessionToken
from storefront.services import points_service, promo_service, session_service
from storefront.services.auth_service import verify_password
from storefront.services.location_service import Geocoder
from storefront.time_utils import utcnow


def _signup_body(**overrides) -> dict:
    body = {
        "email": "Lin@Example.com",
        "password": "Password123",
        "firstName": "Lin",
        "lastName": "Chen",
        "phoneNumber": "555-0199",
    }
    body.update(overrides)
    return body


def _bearer(token) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _use_geocoder(app, monkeypatch, handler, api_key="test-key"):
    geocoder = Geocoder(api_key=api_key, client=httpx.Client(transport=httpx.MockTransport(handler)))
    monkeypatch.setitem(app.extensions, "storefront.geocoder", geocoder)


# =============================================================================
# SIGNUP
# =============================================================================


class TestSignup:

    def test_signup_returns_session(self, client, db_session):
        resp = client.post("/api/auth/signup", json=_signup_body())

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["user"]["email"] == "lin@example.com"
        assert body["user"]["isAdmin"] is False
        assert body["signupBonusPoints"] == 0
        assert body["promoApplied"] is None

        me = client.get("/api/auth/me", headers=_bearer(body["session"]["access_token"]))
        assert me.status_code == 200
        assert me.get_json()["points"]["points_balance"] == 0

    def test_duplicate_email_conflicts(self, client, db_session, customer):
        resp = client.post("/api/auth/signup", json=_signup_body(email="ADA@example.com"))
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "Email already registered"

    @pytest.mark.parametrize("overrides, error", [
        ({"password": "short1"}, "Password must be at least 8 characters long"),
        ({"password": "12345678"}, "Password must contain at least one letter"),
        ({"password": "password"}, "Password must contain at least one digit"),
        ({"firstName": ""}, "Email, password, first name, and last name are required"),
        ({"email": "not-an-email"}, "A valid email is required"),
    ])
    def test_invalid_signup(self, client, db_session, overrides, error):
        resp = client.post("/api/auth/signup", json=_signup_body(**overrides))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == error

    def test_password_is_hashed(self, client, db_session):
        client.post("/api/auth/signup", json=_signup_body())

        from storefront.models import User
        user = db_session.query(User).filter_by(email="lin@example.com").one()
        assert user.password_hash != "Password123"
        assert verify_password("Password123", user.password_hash)

    def test_signup_bonus_credited(self, client, db_session):
        points_service.update_points_config({"signup_bonus_points": 50})

        body = client.post("/api/auth/signup", json=_signup_body()).get_json()

        assert body["signupBonusPoints"] == 50
        assert points_service.get_user_points(body["user"]["id"])["points_balance"] == 50

    def test_coordinates_resolved_to_city(self, client, db_session):
        coords = {"latitude": 41.88, "longitude": -87.63}

        body = client.post("/api/auth/signup", json=_signup_body(coordinates=coords)).get_json()

        location = body["profile"]["location_data"]
        assert location["city"] == "Chicago"
        assert location["state"] == "IL"
        assert location["mock"] is True

    def test_failed_geocoding_stores_no_location(self, app, client, db_session, monkeypatch):
        _use_geocoder(app, monkeypatch, lambda request: httpx.Response(500, json={}))
        promo_service.create_promo_code({
            "code": "NYC", "discount_type": "fixed", "discount_value": 2,
            "location_restriction": {"cities": ["New York"]},
        })
        coords = {"latitude": 41.88, "longitude": -87.63}

        body = client.post("/api/auth/signup", json=_signup_body(coordinates=coords, promoCode="NYC")).get_json()

        assert body["profile"]["location_data"] is None
        assert body["promoApplied"]["valid"] is True

    def test_ip_location_used_without_coordinates(self, app, client, db_session, monkeypatch):
        seen = []

        def handler(request):
            seen.append(request.url.host)
            return httpx.Response(200, json={
                "status": "success", "city": "Denver", "regionName": "Colorado",
                "country": "United States", "countryCode": "US", "lat": 39.74, "lon": -104.99,
                "query": "127.0.0.1",
            })

        _use_geocoder(app, monkeypatch, handler, api_key="")

        body = client.post("/api/auth/signup", json=_signup_body()).get_json()

        assert seen == ["ip-api.com"]
        assert body["profile"]["location_data"]["city"] == "Denver"
        assert body["profile"]["location_data"]["method"] == "ip_geolocation"

    def test_ip_fallback_is_not_stored(self, client, db_session):
        body = client.post("/api/auth/signup", json=_signup_body()).get_json()
        assert body["profile"]["location_data"] is None

    def test_bad_coordinates_rejected(self, client, db_session):
        coords = {"latitude": 91, "longitude": 0}
        resp = client.post("/api/auth/signup", json=_signup_body(coordinates=coords))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Latitude must be between -90 and 90"

    def test_promo_code_checked_as_new_user(self, client, db_session):
        promo_service.create_promo_code({
            "code": "WELCOME10",
            "discount_type": "percentage",
            "discount_value": 10,
            "user_restriction": "new_users_only",
        })

        body = client.post("/api/auth/signup", json=_signup_body(promoCode="welcome10")).get_json()

        assert body["promoApplied"]["valid"] is True
        assert body["promoApplied"]["code"] == "WELCOME10"

    def test_bad_promo_code_does_not_block_signup(self, client, db_session):
        resp = client.post("/api/auth/signup", json=_signup_body(promoCode="nope"))

        assert resp.status_code == 201
        assert resp.get_json()["promoApplied"] == {
            "valid": False,
            "code": "NOPE",
            "error": "Invalid or expired promo code",
        }


# =============================================================================
# SIGN IN / OUT
# =============================================================================


class TestSignin:

    def test_signin(self, client, db_session, customer):
        resp = client.post("/api/auth/signin", json={"email": " ADA@example.com ", "password": "Password123"})

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["user"]["id"] == customer.id
        assert body["profile"]["last_login_at"] is not None
        assert body["session"]["access_token"]

    def test_wrong_password(self, client, db_session, customer):
        resp = client.post("/api/auth/signin", json={"email": "ada@example.com", "password": "Wrong1234"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password"

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/signin", json={"email": "ada@example.com"}).status_code == 400

    def test_inactive_user_cannot_sign_in(self, client, db_session, customer):
        customer.is_active = False
        db_session.commit()

        resp = client.post("/api/auth/signin", json={"email": "ada@example.com", "password": "Password123"})
        assert resp.status_code == 401

    def test_signout_revokes_token(self, client, db_session, customer_headers):
        assert client.post("/api/auth/signout", headers=customer_headers).status_code == 200
        assert client.get("/api/auth/me", headers=customer_headers).status_code == 401

    def test_me_requires_token(self, client, db_session):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Authentication required"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/auth/me", headers=_bearer("garbage"))
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"


# =============================================================================
# SESSIONS
# =============================================================================


class TestSessions:

    def test_only_hash_is_stored(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        assert session.token_hash == session_service.hash_token(token)
        assert db_session.query(SessionToken).filter_by(token_hash=token).first() is None

    def test_idle_session_is_revoked(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.last_used_at = utcnow() - timedelta(hours=3)
        db_session.commit()

        assert session_service.validate_session(token) is None
        assert db_session.get(SessionToken, session.id).revoked_reason == "Idle timeout"

    def test_expired_session_rejected(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_deactivated_user_session_revoked(self, db_session, customer):
        _session, token = session_service.create_session(customer.id)
        customer.is_active = False
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_revoke_all(self, db_session, customer):
        tokens = [session_service.create_session(customer.id)[1] for _ in range(3)]

        assert session_service.revoke_all_user_sessions(customer.id) == 3
        assert all(session_service.validate_session(t) is None for t in tokens)

    def test_cleanup_removes_old_dead_sessions(self, db_session, customer):
        old, _token = session_service.create_session(customer.id)
        old.created_at = utcnow() - timedelta(days=40)
        old.expires_at = utcnow() - timedelta(days=39)
        session_service.create_session(customer.id)
        db_session.commit()

        assert session_service.cleanup_expired_sessions() == 1
        assert db_session.query(SessionToken).count() == 1


# =============================================================================
# PROFILE + PROMO CHECKS
# =============================================================================


class TestProfile:

    def test_update_profile(self, client, db_session, customer_headers):
        resp = client.put(
            "/api/auth/profile",
            json={"firstName": " Augusta ", "phoneNumber": "", "marketingConsent": True, "email": "x@y.z"},
            headers=customer_headers,
        )

        profile = resp.get_json()["profile"]
        assert profile["first_name"] == "Augusta"
        assert profile["phone"] is None
        assert profile["marketing_consent"] is True
        assert profile["email"] == "ada@example.com"

    def test_empty_name_rejected(self, client, db_session, customer_headers):
        resp = client.put("/api/auth/profile", json={"lastName": "  "}, headers=customer_headers)
        assert resp.status_code == 400

    def test_coordinates_update_location(self, client, db_session, customer_headers):
        resp = client.put(
            "/api/auth/profile",
            json={"coordinates": {"latitude": 29.76, "longitude": -95.37}},
            headers=customer_headers,
        )
        assert resp.get_json()["profile"]["location_data"]["city"] == "Houston"

    def test_failed_lookup_keeps_saved_location(self, app, client, db_session, customer, customer_headers, monkeypatch):
        customer.location_data = {"city": "Chicago", "state": "IL"}
        db_session.commit()
        _use_geocoder(app, monkeypatch, lambda request: httpx.Response(500, json={}))

        resp = client.put(
            "/api/auth/profile",
            json={"coordinates": {"latitude": 29.76, "longitude": -95.37}},
            headers=customer_headers,
        )

        assert resp.status_code == 200
        assert resp.get_json()["profile"]["location_data"]["city"] == "Chicago"

    def test_public_promo_check(self, client, db_session):
        promo_service.create_promo_code({"code": "SAVE10", "discount_type": "percentage", "discount_value": 10})

        ok = client.post("/api/auth/validate-promo-public", json={"promoCode": "save10"})
        bad = client.post("/api/auth/validate-promo-public", json={"promoCode": "nope"})

        assert ok.get_json()["promo"]["code"] == "SAVE10"
        assert bad.status_code == 400
        assert bad.get_json()["reason"] == "invalid_code"

    def test_signed_in_promo_check(self, client, db_session, customer_headers):
        promo_service.create_promo_code({
            "code": "AUSTIN", "discount_type": "fixed", "discount_value": 3,
            "location_restriction": {"cities": ["Austin"]},
        })

        resp = client.post("/api/auth/validate-promo", json={"promoCode": "AUSTIN"}, headers=customer_headers)

        # No saved location, so the city rule does not apply
        assert resp.status_code == 200
        assert resp.get_json()["promo"]["discountValue"] == 3.0
