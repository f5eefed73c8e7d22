# Overview: Flask API routes for auth; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service, session_service, promo_service, points_service
from ..services.promo_service import PromoValidationError
from ..decorators import require_auth
from storefront.validation import ValidationError, ConflictError


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _user_payload(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "isAdmin": user.is_admin,
    }


def _session_payload(session, token: str) -> dict:
    return {"access_token": token, "expires_at": session.to_dict()["expires_at"]}


@auth_bp.post("/signup")
def signup_route():
    """
    Register a customer and sign them in.

    Request body:
    {
        "email": "...", "password": "...", "firstName": "...", "lastName": "...",
        "phoneNumber": "...",                              (optional)
        "coordinates": {"latitude": 40.7, "longitude": -74.0},  (optional)
        "address": "...",                                  (optional)
        "marketingConsent": true,                          (optional)
        "promoCode": "WELCOME10"                           (optional)
    }

    Returns:
        201: Account created, with session token
        400: Missing fields or weak password
        409: Email already registered
    """
    try:
        data = request.get_json(silent=True) or {}
        result = auth_service.signup(data, ip_address=request.remote_addr)
        session, token = session_service.create_session(
            result.user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "success": True,
            "message": "User created successfully",
            "user": _user_payload(result.user),
            "profile": result.user.to_dict(),
            "promoApplied": result.promo_applied,
            "signupBonusPoints": result.signup_bonus_points,
            "session": _session_payload(session, token),
        }), 201

    except ConflictError as e:
        return jsonify({"success": False, "error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to sign up user")
        return jsonify({"success": False, "error": "Registration failed"}), 500


@auth_bp.post("/signin")
def signin_route():
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")
        if not email or not password:
            return jsonify({"success": False, "error": "Email and password are required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"success": False, "error": "Invalid email or password"}), 401

        session, token = session_service.create_session(
            user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "success": True,
            "message": "Signed in successfully",
            "user": _user_payload(user),
            "profile": user.to_dict(),
            "session": _session_payload(session, token),
        })

    except Exception:
        current_app.logger.exception("Failed to sign in user")
        return jsonify({"success": False, "error": "Sign in failed"}), 500


@auth_bp.post("/signout")
@require_auth
def signout_route():
    try:
        session_service.revoke_session(g.session_token)
        return jsonify({"success": True, "message": "Signed out successfully"})
    except Exception:
        current_app.logger.exception("Failed to sign out user")
        return jsonify({"success": False, "error": "Sign out failed"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    try:
        user = g.current_user
        return jsonify({
            "success": True,
            "user": _user_payload(user),
            "profile": user.to_dict(),
            "points": points_service.get_user_points(user.id),
        })
    except Exception:
        current_app.logger.exception("Failed to get current user")
        return jsonify({"success": False, "error": "Failed to get user data"}), 500


@auth_bp.put("/profile")
@require_auth
def update_profile_route():
    """
    Update the signed-in user's profile.

    Accepts firstName, lastName, phoneNumber, marketingConsent and
    coordinates (reverse geocoded into location_data).
    """
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.update_profile(g.current_user, data)
        return jsonify({
            "success": True,
            "message": "Profile updated successfully",
            "profile": user.to_dict(),
        })

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"success": False, "error": "Profile update failed"}), 500


@auth_bp.post("/validate-promo-public")
def validate_promo_public_route():
    """Pre-signup promo check (existence, expiry, usage limit)."""
    try:
        data = request.get_json(silent=True) or {}
        code = data.get("promoCode")
        if not code:
            return jsonify({"success": False, "error": "Promo code is required"}), 400

        validation = promo_service.validate_public(code)
        return jsonify({
            "success": True,
            "message": "Promo code is valid",
            "promo": validation.promo.public_dict(),
        })

    except PromoValidationError as e:
        return jsonify({"success": False, "error": e.message, "reason": e.reason}), 400
    except Exception:
        current_app.logger.exception("Failed to validate promo code")
        return jsonify({"success": False, "error": "Failed to validate promo code"}), 500


@auth_bp.post("/validate-promo")
@require_auth
def validate_promo_route():
    """Full promo check for the signed-in user (does not redeem)."""
    try:
        data = request.get_json(silent=True) or {}
        code = data.get("promoCode")
        if not code:
            return jsonify({"success": False, "error": "Promo code is required"}), 400

        user = g.current_user
        validation = promo_service.validate_promo(user.id, code, auth_service.is_new_user(user))
        return jsonify({
            "success": True,
            "message": "Promo code is valid",
            "promo": validation.promo.public_dict(),
        })

    except PromoValidationError as e:
        return jsonify({"success": False, "error": e.message, "reason": e.reason}), 400
    except Exception:
        current_app.logger.exception("Failed to validate promo code")
        return jsonify({"success": False, "error": "Failed to validate promo code"}), 500
