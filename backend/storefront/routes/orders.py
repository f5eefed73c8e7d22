# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Anyone may place an order; a bearer token, when sent, links it to the account
- Customers see their own orders; staff see and manage all of them
- Status changes run the lifecycle side effects (points, email)

SECURITY:
- Status changes, deletes and reminders are staff-only
- The owning user comes from the session, never from the request body
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service
from ..services.time_slot_service import TimeSlotError
from ..decorators import require_auth, require_admin, optional_user
from storefront.time_utils import parse_iso_date
from storefront.validation import ValidationError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _can_view(order) -> bool:
    user = g.current_user
    return user.is_admin or (order.user_id is not None and order.user_id == user.id)


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    List orders, newest first.

    Staff see every order (optional ?status=, ?userId=, ?pickupDate=).
    Customers only ever see their own orders.
    """
    try:
        user = g.current_user
        status = request.args.get("status")
        pickup_date = parse_iso_date(request.args.get("pickupDate"))

        if user.is_admin:
            user_id = request.args.get("userId", type=int)
        else:
            user_id = user.id

        orders = order_service.list_orders(user_id=user_id, status=status, pickup_date=pickup_date)
        return jsonify({"success": True, "orders": [o.to_dict() for o in orders]})

    except (ValidationError, ValueError) as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to fetch orders")
        return jsonify({"success": False, "error": "Failed to fetch orders"}), 500


@orders_bp.post("")
def create_order_route():
    """
    Place an order.

    Request body:
    {
        "customer": {"name": "...", "email": "...", "phone": "..."},
        "items": [{"name": "Lentil Bowl", "price": 12.5, "quantity": 2, "note": "..."}],
        "pickup": {"date": "2024-06-01", "time": "12:00"},
        "total": 25.0,
        "specialInstructions": "...",   (optional)
        "paymentMethod": "card"          (optional: card, venmo, cash)
    }

    Returns:
        201: Order created (with paymentIntent for card orders)
        400: Invalid input
        409: Pickup slot fully booked
    """
    try:
        data = request.get_json(silent=True) or {}
        user = optional_user()

        result = order_service.create_order(data, user_id=user.id if user else None)

        return jsonify({
            "success": True,
            "message": "Order created successfully",
            "order": result.order.to_dict(),
            "paymentIntent": result.payment_intent,
            "pointsToEarn": result.points_to_earn,
        }), 201

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except TimeSlotError as e:
        return jsonify({"success": False, "error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"success": False, "error": "Failed to create order"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        if not order or not _can_view(order):
            return jsonify({"success": False, "error": "Order not found"}), 404
        return jsonify({"success": True, "order": order.to_dict()})

    except Exception:
        current_app.logger.exception("Failed to fetch order")
        return jsonify({"success": False, "error": "Failed to fetch order"}), 500


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_admin
def update_status_route(order_id: int):
    """
    Change an order's status.

    Request body: {"status": "completed"}

    Moving into completed awards the owner's points; completed -> cancelled
    refunds them. The response carries the points result when one applies.
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"success": False, "error": "Status is required"}), 400

        result = order_service.update_status(order_id, status)
        if result is None:
            return jsonify({"success": False, "error": "Order not found"}), 404

        response = {
            "success": True,
            "message": "Order status updated successfully",
            "order": result.order.to_dict(),
        }
        if result.points and result.points.get("success"):
            response["points"] = result.points
        return jsonify(response)

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"success": False, "error": "Failed to update order status"}), 500


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_admin
def delete_order_route(order_id: int):
    try:
        if not order_service.delete_order(order_id):
            return jsonify({"success": False, "error": "Order not found"}), 404
        return jsonify({"success": True, "message": "Order deleted successfully"})

    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"success": False, "error": "Failed to delete order"}), 500


@orders_bp.post("/<int:order_id>/reminder")
@require_auth
@require_admin
def send_reminder_route(order_id: int):
    try:
        result = order_service.send_reminder(order_id)
        if result is None:
            return jsonify({"success": False, "error": "Order not found"}), 404
        if not result.success:
            return jsonify({"success": False, "error": result.error or "Failed to send pickup reminder"}), 500
        return jsonify({"success": True, "message": "Pickup reminder sent successfully"})

    except order_service.OrderError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to send pickup reminder")
        return jsonify({"success": False, "error": "Failed to send pickup reminder"}), 500


@orders_bp.get("/<int:order_id>/receipt")
@require_auth
def get_receipt_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        if not order or not _can_view(order):
            return jsonify({"success": False, "error": "Order not found"}), 404
        return jsonify({"success": True, "receipt": order_service.build_receipt(order)})

    except Exception:
        current_app.logger.exception("Failed to generate receipt")
        return jsonify({"success": False, "error": "Failed to generate receipt"}), 500
