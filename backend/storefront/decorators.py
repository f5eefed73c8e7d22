# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .models import User
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def optional_user() -> User | None:
    """The signed-in user when a valid bearer token is sent, else None."""
    token = _bearer_token()
    if not token:
        return None
    return session_service.validate_session(token)


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"success": False, "error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"success": False, "error": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require a staff account. Must be applied after @require_auth.

    Returns 403 for signed-in customers.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return jsonify({"success": False, "error": "Authentication required"}), 401
        if not user.is_admin:
            return jsonify({"success": False, "error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function


def is_self_or_admin(user_id: int) -> bool:
    """For routes keyed by a user id: the caller is that user or staff."""
    user = g.current_user
    return user.is_admin or user.id == user_id
