# Overview: Flask API routes for promo codes; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import promo_service
from ..services.promo_service import PromoValidationError
from ..decorators import require_auth, require_admin
from storefront.validation import ValidationError, ConflictError, to_cents, parse_optional_int


promos_bp = Blueprint("promos", __name__, url_prefix="/api/promos")


@promos_bp.get("")
@require_auth
@require_admin
def list_promos_route():
    try:
        active_only = request.args.get("active") == "true"
        return jsonify({"success": True, "promos": promo_service.list_promo_codes(active_only=active_only)})
    except Exception:
        current_app.logger.exception("Failed to list promo codes")
        return jsonify({"success": False, "error": "Failed to list promo codes"}), 500


@promos_bp.post("")
@require_auth
@require_admin
def create_promo_route():
    """
    Create a promo code.

    Request body:
    {
        "code": "SAVE10",
        "discount_type": "percentage",       (percentage or fixed)
        "discount_value": 10,                (percent, or dollars for fixed)
        "min_order_amount": 20.00,           (optional)
        "usage_limit": 100,                  (optional, null = unlimited)
        "valid_from": "2024-06-01T00:00:00Z",  (optional)
        "valid_until": "2024-07-01T00:00:00Z", (optional)
        "user_restriction": "new_users_only",  (optional)
        "location_restriction": {"cities": ["Chicago"], "states": ["IL"]}  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        promo = promo_service.create_promo_code(data)
        return jsonify({"success": True, "promo": promo}), 201

    except ConflictError as e:
        return jsonify({"success": False, "error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create promo code")
        return jsonify({"success": False, "error": "Failed to create promo code"}), 500


@promos_bp.patch("/<int:promo_id>")
@require_auth
@require_admin
def update_promo_route(promo_id: int):
    try:
        data = request.get_json(silent=True) or {}
        promo = promo_service.update_promo_code(promo_id, data)
        if promo is None:
            return jsonify({"success": False, "error": "Promo code not found"}), 404
        return jsonify({"success": True, "promo": promo})

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update promo code")
        return jsonify({"success": False, "error": "Failed to update promo code"}), 500


@promos_bp.post("/redeem")
@require_auth
def redeem_promo_route():
    """
    Redeem a promo code for the signed-in user.

    Request body: {"promoCode": "SAVE10", "subtotal": 42.00, "orderId": 7}

    Returns the discount; 409 when the code was already used or its usage
    limit was reached, 400 for any other validation failure.
    """
    try:
        data = request.get_json(silent=True) or {}
        code = data.get("promoCode")
        if not code:
            return jsonify({"success": False, "error": "Promo code is required"}), 400

        subtotal_cents = to_cents(data.get("subtotal"), "subtotal", allow_zero=True)
        order_id = parse_optional_int(data.get("orderId"), "orderId", minimum=1)

        redemption = promo_service.redeem_promo(g.current_user, code, subtotal_cents, order_id=order_id)
        return jsonify({"success": True, "message": "Promo code applied", **redemption})

    except PromoValidationError as e:
        status = 409 if e.reason in (promo_service.ALREADY_USED, promo_service.USAGE_LIMIT_REACHED) else 400
        return jsonify({"success": False, "error": e.message, "reason": e.reason}), status
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to redeem promo code")
        return jsonify({"success": False, "error": "Failed to redeem promo code"}), 500
