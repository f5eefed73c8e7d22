# Overview: Flask API routes for loyalty points; parses input and returns JSON responses.

"""
Loyalty Points API Routes

SECURITY:
- Earning rules and the points calculator are public
- Balance, history and spending are limited to the account owner or staff
- Manual award/refund and rule changes are staff-only
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import points_service
from ..services.points_service import PointsError
from ..decorators import require_auth, require_admin, is_self_or_admin
from storefront.validation import ValidationError, to_cents, parse_int, parse_optional_int


points_bp = Blueprint("points", __name__, url_prefix="/api/points")


@points_bp.get("/config")
def get_config_route():
    try:
        return jsonify({"success": True, "config": points_service.get_points_config().to_dict()})
    except Exception:
        current_app.logger.exception("Failed to get points configuration")
        return jsonify({"success": False, "error": "Failed to get points configuration"}), 500


@points_bp.put("/config")
@require_auth
@require_admin
def update_config_route():
    """
    Update earning rules.

    Request body (all optional):
    {
        "points_per_dollar": 1.5,
        "min_order_for_points": 10.00,
        "signup_bonus_points": 50,
        "referral_bonus_points": 0,
        "points_expiry_months": 12   (null disables expiry)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        config = points_service.update_points_config(data)
        return jsonify({
            "success": True,
            "message": "Points configuration updated",
            "config": config.to_dict(),
        })

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update points configuration")
        return jsonify({"success": False, "error": "Failed to update points configuration"}), 500


@points_bp.get("/calculate")
def calculate_route():
    """Points an order of ?amount= dollars would earn."""
    try:
        raw = request.args.get("amount")
        if raw is None:
            return jsonify({"success": False, "error": "Valid amount parameter is required"}), 400
        try:
            amount_cents = to_cents(raw, "amount", allow_zero=True)
        except ValidationError:
            return jsonify({"success": False, "error": "Valid amount parameter is required"}), 400

        rules = points_service.get_points_config()
        return jsonify({
            "success": True,
            "order_amount": amount_cents / 100,
            "points_earned": points_service.calculate_points(amount_cents, rules),
            "points_rate": float(rules.points_per_dollar),
        })

    except Exception:
        current_app.logger.exception("Failed to calculate points")
        return jsonify({"success": False, "error": "Failed to calculate points"}), 500


@points_bp.get("/user/<int:user_id>")
@require_auth
def get_user_points_route(user_id: int):
    try:
        if not is_self_or_admin(user_id):
            return jsonify({"success": False, "error": "Access denied"}), 403
        return jsonify({"success": True, "user_points": points_service.get_user_points(user_id)})

    except Exception:
        current_app.logger.exception("Failed to get user points")
        return jsonify({"success": False, "error": "Failed to get user points"}), 500


@points_bp.get("/user/<int:user_id>/history")
@require_auth
def get_history_route(user_id: int):
    try:
        if not is_self_or_admin(user_id):
            return jsonify({"success": False, "error": "Access denied"}), 403
        limit = parse_optional_int(request.args.get("limit"), "limit", minimum=1) or 50
        history = points_service.get_points_history(user_id, limit=limit)
        return jsonify({"success": True, "history": [t.to_dict() for t in history]})

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to get points history")
        return jsonify({"success": False, "error": "Failed to get points history"}), 500


@points_bp.post("/award")
@require_auth
@require_admin
def award_route():
    """
    Manually award points for an order.

    Request body: {"userId": 1, "orderId": 42, "orderAmount": 23.40}

    An order that earns nothing returns success=false with a message (200).
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("userId") or not data.get("orderId") or data.get("orderAmount") in (None, ""):
            return jsonify({"success": False, "error": "userId, orderId, and orderAmount are required"}), 400

        user_id = parse_int(data["userId"], "userId", minimum=1)
        order_id = parse_int(data["orderId"], "orderId", minimum=1)
        amount_cents = to_cents(data["orderAmount"], "orderAmount", allow_zero=True)

        result = points_service.award_points(user_id, order_id, amount_cents)
        return jsonify(result.to_dict())

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to award points")
        return jsonify({"success": False, "error": "Failed to award points"}), 500


@points_bp.post("/spend")
@require_auth
def spend_route():
    """
    Spend points.

    Request body: {"userId": 1, "pointsToSpend": 80, "orderId": 42, "description": "..."}

    Returns 400 with current_balance and requested_amount when the balance
    is too low.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("userId") or data.get("pointsToSpend") in (None, ""):
            return jsonify({"success": False, "error": "userId and valid pointsToSpend are required"}), 400

        user_id = parse_int(data["userId"], "userId", minimum=1)
        points = parse_int(data["pointsToSpend"], "pointsToSpend", minimum=1)
        order_id = parse_optional_int(data.get("orderId"), "orderId", minimum=1)

        if not is_self_or_admin(user_id):
            return jsonify({"success": False, "error": "Access denied"}), 403

        result = points_service.spend_points(
            user_id,
            points,
            order_id=order_id,
            description=data.get("description") or "Points spent",
        )
        if not result.success:
            return jsonify(result.to_dict()), 400
        return jsonify(result.to_dict())

    except (ValidationError, PointsError) as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to spend points")
        return jsonify({"success": False, "error": "Failed to spend points"}), 500


@points_bp.post("/refund")
@require_auth
@require_admin
def refund_route():
    """Request body: {"userId": 1, "orderId": 42}"""
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("userId") or not data.get("orderId"):
            return jsonify({"success": False, "error": "userId and orderId are required"}), 400

        user_id = parse_int(data["userId"], "userId", minimum=1)
        order_id = parse_int(data["orderId"], "orderId", minimum=1)

        result = points_service.refund_points(user_id, order_id)
        return jsonify(result.to_dict())

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to refund points")
        return jsonify({"success": False, "error": "Failed to refund points"}), 500
