"""
Card payment tests.

Verifies:
- Webhooks are rejected without a valid signature
- Verified events move the order to the mapped status; unmapped events are ignored
- Confirm only succeeds for succeeded intents opened for that order and covering its total
- Full refunds mark the order refunded; partial refunds leave it alone
- Processing fee calculation
"""

import json

import pytest

from storefront.services import order_service, payment_service
from storefront.services.payment_service import PaymentGatewayError, StripeGateway

from conftest import order_payload


def _card_order():
    result = order_service.create_order(order_payload(paymentMethod="card"))
    return result.order, result.payment_intent["paymentIntentId"]


def _event(event_type, order_id, intent_id="pi_test_1"):
    return {
        "id": "evt_test_1",
        "type": event_type,
        "data": {"object": {"id": intent_id, "metadata": {"orderId": str(order_id)}}},
    }


def _post_webhook(client, event, signature="valid"):
    return client.post(
        "/api/payment/webhook",
        data=json.dumps(event),
        content_type="application/json",
        headers={"Stripe-Signature": signature},
    )


# =============================================================================
# WEBHOOK
# =============================================================================


class TestWebhook:

    def test_bad_signature_rejected(self, client, db_session, slots):
        order, _intent_id = _card_order()

        resp = _post_webhook(client, _event("payment_intent.succeeded", order.id), signature="forged")

        assert resp.status_code == 400
        assert order_service.get_order(order.id).status == "pending_payment"

    def test_missing_signature_rejected(self, client, db_session):
        resp = client.post("/api/payment/webhook", data="{}", content_type="application/json")
        assert resp.status_code == 400

    @pytest.mark.parametrize("event_type, status, action", [
        ("payment_intent.succeeded", "paid", "payment_succeeded"),
        ("payment_intent.payment_failed", "payment_failed", "payment_failed"),
        ("payment_intent.canceled", "cancelled", "payment_canceled"),
    ])
    def test_mapped_events_update_order(self, client, db_session, slots, event_type, status, action):
        order, intent_id = _card_order()

        resp = _post_webhook(client, _event(event_type, order.id, intent_id))

        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "received": True, "action": action}
        assert order_service.get_order(order.id).status == status

    def test_unmapped_event_ignored(self, client, db_session, slots):
        order, intent_id = _card_order()

        resp = _post_webhook(client, _event("charge.refunded", order.id, intent_id))

        assert resp.get_json()["action"] == "ignored"
        assert order_service.get_order(order.id).status == "pending_payment"

    def test_event_without_order_is_acknowledged(self, client, db_session):
        event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x", "metadata": {}}}}

        resp = _post_webhook(client, event)

        assert resp.status_code == 200
        assert resp.get_json()["action"] == "payment_succeeded"

    def test_unknown_order_is_acknowledged(self, db_session):
        result = payment_service.handle_webhook_event(_event("payment_intent.succeeded", 999))
        assert result == {"action": "payment_succeeded", "order_id": 999, "status": None}


# =============================================================================
# INTENTS
# =============================================================================


class TestIntents:

    def test_create_intent_for_existing_order(self, client, db_session, slots, gateway):
        order = order_service.create_order(order_payload()).order

        resp = client.post("/api/payment/create-intent", json={"amount": 23.40, "orderId": order.id})

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["amount"] == 2340
        assert order_service.get_order(order.id).payment_intent_id == body["paymentIntentId"]
        assert gateway.intents[body["paymentIntentId"]]["metadata"]["customerEmail"] == "ada@example.com"

    @pytest.mark.parametrize("body, status, error", [
        ({"amount": 0, "orderId": 1}, 400, "Valid amount is required"),
        ({"amount": 10}, 400, "Order ID is required"),
        ({"amount": 10, "orderId": 999}, 404, "Order not found"),
    ])
    def test_create_intent_validation(self, client, db_session, body, status, error):
        resp = client.post("/api/payment/create-intent", json=body)
        assert resp.status_code == status
        assert resp.get_json()["error"] == error

    def test_confirm_before_success(self, client, db_session, slots):
        order, intent_id = _card_order()

        resp = client.post("/api/payment/confirm", json={"paymentIntentId": intent_id, "orderId": order.id})

        assert resp.status_code == 400
        assert resp.get_json()["paymentStatus"] == "requires_payment_method"
        assert order_service.get_order(order.id).status == "pending_payment"

    def test_confirm_after_success(self, client, db_session, slots, gateway):
        order, intent_id = _card_order()
        gateway.mark(intent_id, "succeeded")

        resp = client.post("/api/payment/confirm", json={"paymentIntentId": intent_id, "orderId": order.id})

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["paymentStatus"] == "succeeded"
        assert body["orderStatus"] == "paid"

    def test_confirm_rejects_intent_for_another_order(self, client, db_session, slots, gateway):
        paid_order, intent_id = _card_order()
        other_order, _other_intent = _card_order()
        gateway.mark(intent_id, "succeeded")

        resp = client.post("/api/payment/confirm", json={"paymentIntentId": intent_id, "orderId": other_order.id})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Payment intent does not belong to this order"
        assert order_service.get_order(other_order.id).status == "pending_payment"
        assert order_service.get_order(paid_order.id).status == "pending_payment"

    def test_confirm_rejects_underpaid_intent(self, client, db_session, slots, gateway):
        order = order_service.create_order(order_payload()).order
        intent = payment_service.create_intent_for_order(order, amount_cents=100)
        db_session.commit()
        gateway.mark(intent["id"], "succeeded")

        resp = client.post("/api/payment/confirm", json={"paymentIntentId": intent["id"], "orderId": order.id})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Payment amount does not cover the order total"
        assert order_service.get_order(order.id).status == "pending_cash_payment"

    def test_confirm_unknown_order(self, client, db_session, slots, gateway):
        _order, intent_id = _card_order()
        gateway.mark(intent_id, "succeeded")

        resp = client.post("/api/payment/confirm", json={"paymentIntentId": intent_id, "orderId": 999})

        assert resp.status_code == 404

    def test_status_of_unknown_intent(self, client, db_session):
        assert client.get("/api/payment/status/pi_missing").status_code == 404

    def test_status(self, client, db_session, slots):
        _order, intent_id = _card_order()

        payment = client.get(f"/api/payment/status/{intent_id}").get_json()["payment"]

        assert payment["status"] == "requires_payment_method"
        assert payment["amount"] == 2340


# =============================================================================
# REFUNDS
# =============================================================================


class TestRefunds:

    def test_refund_marks_order_refunded(self, client, db_session, slots, gateway, admin_headers):
        order, intent_id = _card_order()
        gateway.mark(intent_id, "succeeded")

        resp = client.post(
            "/api/payment/refund",
            json={"paymentIntentId": intent_id, "orderId": order.id},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        assert resp.get_json()["refund"]["amount"] == 2340
        assert order_service.get_order(order.id).status == "refunded"

    def test_partial_refund_keeps_order_status(self, client, db_session, slots, gateway, admin_headers):
        order, intent_id = _card_order()
        gateway.mark(intent_id, "succeeded")
        order_service.update_status(order.id, "paid")

        resp = client.post(
            "/api/payment/refund",
            json={"paymentIntentId": intent_id, "amount": 5, "orderId": order.id},
            headers=admin_headers,
        )

        assert resp.get_json()["refund"]["amount"] == 500
        assert order_service.get_order(order.id).status == "paid"

    def test_refund_gateway_error(self, client, db_session, admin_headers):
        resp = client.post("/api/payment/refund", json={"paymentIntentId": "pi_missing"}, headers=admin_headers)
        assert resp.status_code == 502

    def test_refund_requires_admin(self, client, db_session, customer_headers):
        resp = client.post("/api/payment/refund", json={"paymentIntentId": "pi_test_1"}, headers=customer_headers)
        assert resp.status_code == 403


# =============================================================================
# CONFIG + FEES
# =============================================================================


class TestFeesAndConfig:

    def test_calculate_fee(self, client):
        resp = client.post("/api/payment/calculate-fee", json={"amount": 10.00})

        assert resp.get_json()["calculation"] == {"subtotal": 10.0, "processingFee": 0.59, "total": 10.59}

    def test_fee_rounds_half_up(self):
        # 2.9% of $5.00 is 14.5c
        assert payment_service.calculate_processing_fee(500) == 45

    def test_calculate_fee_requires_amount(self, client):
        assert client.post("/api/payment/calculate-fee", json={}).status_code == 400

    def test_public_config(self, client):
        config = client.get("/api/payment/config").get_json()["config"]
        assert config["stripePublishableKey"] == "pk_test_storefront"
        assert config["supportedPaymentMethods"] == ["card", "venmo", "cash"]

    def test_unconfigured_gateway_raises(self):
        gateway = StripeGateway(secret_key="")
        assert gateway.is_configured is False
        with pytest.raises(PaymentGatewayError):
            gateway.create_intent(1000, "usd", {})
