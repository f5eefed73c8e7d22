# Overview: Flask API routes for card payments; parses input and returns JSON responses.

"""
Payment API Routes

SECURITY:
- The webhook is authenticated by its Stripe-Signature header, not a session
- Refunds are staff-only
- Intents are opened for existing orders only; metadata comes from the order
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import payment_service, order_service
from ..services.payment_service import (
    PaymentGatewayError,
    PaymentMismatchError,
    PaymentNotCompletedError,
    WebhookSignatureError,
)
from ..decorators import require_auth, require_admin
from storefront.validation import ValidationError, to_cents, cents_to_dollars, parse_int


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payment")


@payments_bp.get("/config")
def get_config_route():
    try:
        return jsonify({"success": True, "config": payment_service.public_config()})
    except Exception:
        current_app.logger.exception("Failed to get payment configuration")
        return jsonify({"success": False, "error": "Failed to get payment configuration"}), 500


@payments_bp.post("/create-intent")
def create_intent_route():
    """
    Open a payment intent for an order.

    Request body:
    {
        "amount": 25.00,
        "orderId": 42,
        "customerInfo": {"email": "...", "name": "..."}   (optional)
    }

    Returns:
        200: clientSecret, paymentIntentId, amount (cents)
        400: Invalid amount or missing orderId
        404: Order not found
        502: Gateway rejected the request
    """
    try:
        data = request.get_json(silent=True) or {}
        try:
            amount_cents = to_cents(data.get("amount"), "amount")
        except ValidationError:
            return jsonify({"success": False, "error": "Valid amount is required"}), 400
        if not data.get("orderId"):
            return jsonify({"success": False, "error": "Order ID is required"}), 400

        order_id = parse_int(data["orderId"], "orderId", minimum=1)
        order = order_service.get_order(order_id)
        if order is None:
            return jsonify({"success": False, "error": "Order not found"}), 404

        customer = data.get("customerInfo") if isinstance(data.get("customerInfo"), dict) else None
        intent = payment_service.create_intent_for_order(order, customer, amount_cents=amount_cents)
        db.session.commit()

        return jsonify({
            "success": True,
            "clientSecret": intent["client_secret"],
            "paymentIntentId": intent["id"],
            "amount": intent["amount"],
        })

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except PaymentGatewayError as e:
        db.session.rollback()
        current_app.logger.warning("Payment intent creation failed: %s", e)
        return jsonify({"success": False, "error": str(e)}), 502
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create payment intent")
        return jsonify({"success": False, "error": "Failed to create payment intent"}), 500


@payments_bp.post("/confirm")
def confirm_route():
    """Request body: {"paymentIntentId": "pi_...", "orderId": 42}"""
    try:
        data = request.get_json(silent=True) or {}
        intent_id = data.get("paymentIntentId")
        if not intent_id or not data.get("orderId"):
            return jsonify({"success": False, "error": "Payment intent ID and order ID are required"}), 400

        order_id = parse_int(data["orderId"], "orderId", minimum=1)
        intent, update = payment_service.confirm_payment(intent_id, order_id)
        if update is None:
            return jsonify({"success": False, "error": "Order not found"}), 404

        return jsonify({
            "success": True,
            "message": "Payment confirmed and order updated",
            "paymentStatus": intent["status"],
            "orderStatus": update.order.status,
        })

    except PaymentNotCompletedError as e:
        return jsonify({"success": False, "error": str(e), "paymentStatus": e.payment_status}), 400
    except PaymentMismatchError as e:
        current_app.logger.warning("Rejected payment confirmation for order %s: %s", data.get("orderId"), e)
        return jsonify({"success": False, "error": str(e)}), 400
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except PaymentGatewayError as e:
        current_app.logger.warning("Payment confirmation failed: %s", e)
        return jsonify({"success": False, "error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"success": False, "error": "Failed to confirm payment"}), 500


@payments_bp.post("/webhook")
def webhook_route():
    """
    Stripe webhook receiver.

    The raw request body is verified against the Stripe-Signature header
    before any event is applied.
    """
    try:
        payload = request.get_data()
        signature = request.headers.get("Stripe-Signature")
        event = payment_service.get_gateway().construct_event(payload, signature)

        result = payment_service.handle_webhook_event(event)
        return jsonify({"success": True, "received": True, "action": result["action"]})

    except WebhookSignatureError as e:
        current_app.logger.warning("Rejected webhook: %s", e)
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Webhook processing failed")
        return jsonify({"success": False, "error": "Webhook processing failed"}), 500


@payments_bp.post("/refund")
@require_auth
@require_admin
def refund_route():
    """
    Refund a payment, fully unless an amount is given.

    The order is marked refunded only when the refund covers its total.

    Request body: {"paymentIntentId": "pi_...", "amount": 5.00, "orderId": 42}
    """
    try:
        data = request.get_json(silent=True) or {}
        intent_id = data.get("paymentIntentId")
        if not intent_id:
            return jsonify({"success": False, "error": "Payment intent ID is required"}), 400

        amount_cents = None
        if data.get("amount") not in (None, ""):
            amount_cents = to_cents(data["amount"], "amount")
        order_id = None
        if data.get("orderId"):
            order_id = parse_int(data["orderId"], "orderId", minimum=1)

        refund, _update = payment_service.refund_payment(intent_id, amount_cents, order_id)
        return jsonify({
            "success": True,
            "refund": refund,
            "message": "Refund processed successfully",
        })

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except PaymentGatewayError as e:
        current_app.logger.warning("Refund failed for %s: %s", data.get("paymentIntentId"), e)
        return jsonify({"success": False, "error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Failed to process refund")
        return jsonify({"success": False, "error": "Failed to process refund"}), 500


@payments_bp.get("/status/<intent_id>")
def status_route(intent_id: str):
    try:
        intent = payment_service.get_gateway().retrieve_intent(intent_id)
        return jsonify({
            "success": True,
            "payment": {
                "id": intent["id"],
                "status": intent["status"],
                "amount": intent["amount"],
                "metadata": intent["metadata"],
            },
        })

    except PaymentGatewayError as e:
        return jsonify({"success": False, "error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get payment status")
        return jsonify({"success": False, "error": "Failed to get payment status"}), 500


@payments_bp.post("/calculate-fee")
def calculate_fee_route():
    """Request body: {"amount": 25.00}. Amounts in the response are dollars."""
    try:
        data = request.get_json(silent=True) or {}
        try:
            amount_cents = to_cents(data.get("amount"), "amount")
        except ValidationError:
            return jsonify({"success": False, "error": "Valid amount is required"}), 400

        fee_cents = payment_service.calculate_processing_fee(amount_cents)
        return jsonify({
            "success": True,
            "calculation": {
                "subtotal": cents_to_dollars(amount_cents),
                "processingFee": cents_to_dollars(fee_cents),
                "total": cents_to_dollars(amount_cents + fee_cents),
            },
        })

    except Exception:
        current_app.logger.exception("Failed to calculate processing fee")
        return jsonify({"success": False, "error": "Failed to calculate processing fee"}), 500
