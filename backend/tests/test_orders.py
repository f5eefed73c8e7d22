"""
Order lifecycle tests.

Verifies:
- Creation: initial status from payment method, owner from the session only
- Card orders get a payment intent
- Status changes drive points (award on completed, refund on completed -> cancelled)
- Setting the same status again has no side effects
- Customers only see their own orders; staff manage all of them
"""

import pytest

from storefront.models import Order, PointsTransaction
from storefront.services import order_service, points_service
from storefront.services.notification_service import Mailer
from storefront.validation import ValidationError

from conftest import order_payload, PICKUP_DATE


def _create(user=None, **overrides):
    return order_service.create_order(order_payload(**overrides), user_id=user.id if user else None).order


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:

    def test_cash_order(self, client, db_session, slots, outbox):
        resp = client.post("/api/orders", json=order_payload())

        assert resp.status_code == 201
        body = resp.get_json()
        order = body["order"]
        assert order["status"] == "pending_cash_payment"
        assert order["status_label"] == "Pending Cash Payment"
        assert order["total_cents"] == 2340
        assert order["user_id"] is None
        assert body["pointsToEarn"] == 23
        assert body["paymentIntent"] is None

        assert len(outbox) == 1
        assert outbox[0]["Subject"] == f"Order Confirmation #{order['id']} - Lentil Life"
        assert outbox[0]["To"] == "ada@example.com"

    @pytest.mark.parametrize("method, status", [
        ("venmo", "pending_venmo_payment"),
        ("card", "pending_payment"),
    ])
    def test_initial_status_follows_payment_method(self, db_session, slots, method, status):
        order = _create(paymentMethod=method)
        assert order.status == status

    def test_requested_status_used_without_payment_method(self, db_session, slots):
        payload = order_payload(orderStatus="Paid")
        del payload["paymentMethod"]
        order = order_service.create_order(payload).order
        assert order.status == "paid"

    def test_card_order_gets_intent(self, client, db_session, slots, gateway):
        resp = client.post("/api/orders", json=order_payload(paymentMethod="card"))

        body = resp.get_json()
        assert body["paymentIntent"]["paymentIntentId"] == "pi_test_1"
        assert body["paymentIntent"]["clientSecret"] == "pi_test_1_secret"
        assert body["order"]["payment_intent_id"] == "pi_test_1"
        intent = gateway.intents["pi_test_1"]
        assert intent["amount"] == 2340
        assert intent["metadata"]["orderId"] == str(body["order"]["id"])

    def test_owner_comes_from_token_not_body(self, client, db_session, slots, customer, other_customer, customer_headers):
        payload = order_payload(userId=other_customer.id)

        resp = client.post("/api/orders", json=payload, headers=customer_headers)

        assert resp.get_json()["order"]["user_id"] == customer.id

    def test_invalid_token_places_anonymous_order(self, client, db_session, slots):
        resp = client.post("/api/orders", json=order_payload(), headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 201
        assert resp.get_json()["order"]["user_id"] is None

    @pytest.mark.parametrize("overrides, error", [
        ({"items": []}, "Items are required"),
        ({"customer": {"name": "Ada"}}, "Customer information (name, email, phone) is required"),
        ({"total": 0}, "Valid total amount is required"),
        ({"total": "abc"}, "Valid total amount is required"),
        ({"pickup": {"date": PICKUP_DATE.isoformat()}}, "Pickup date and time are required"),
        ({"pickup": {"date": "06/05/2030", "time": "12:00"}}, "Pickup date must be YYYY-MM-DD"),
        ({"paymentMethod": "bitcoin"}, "paymentMethod must be one of: card, venmo, cash"),
    ])
    def test_invalid_input(self, client, db_session, slots, overrides, error):
        resp = client.post("/api/orders", json=order_payload(**overrides))

        assert resp.status_code == 400
        assert resp.get_json()["error"] == error
        assert db_session.query(Order).count() == 0

    def test_email_failure_does_not_fail_order(self, client, app, db_session, slots):
        app.extensions["storefront.mailer"] = Mailer()

        resp = client.post("/api/orders", json=order_payload())

        assert resp.status_code == 201

    def test_item_snapshot(self, db_session, slots):
        order = _create(items=[{"name": "Dal", "price": "4.50", "quantity": 3, "note": "extra spicy"}], total=13.50)
        item = order.items_for_display()[0]
        assert item["price_cents"] == 450
        assert item["line_total_cents"] == 1350
        assert item["note"] == "extra spicy"


# =============================================================================
# STATUS + POINTS
# =============================================================================


class TestStatusLifecycle:

    def test_completed_awards_points(self, db_session, slots, customer):
        order = _create(customer)

        result = order_service.update_status(order.id, "completed")

        assert result.points["status"] == "awarded"
        assert result.points["points_earned"] == 23
        assert points_service.get_user_points(customer.id)["points_balance"] == 23

    def test_completed_then_cancelled_refunds_points(self, db_session, slots, customer):
        order = _create(customer)
        order_service.update_status(order.id, "completed")

        result = order_service.update_status(order.id, "cancelled")

        assert result.points["status"] == "refunded"
        assert points_service.get_user_points(customer.id)["points_balance"] == 0

    def test_paid_then_cancelled_touches_no_points(self, db_session, slots, customer):
        order = _create(customer, paymentMethod="card")
        order_service.update_status(order.id, "paid")

        result = order_service.update_status(order.id, "cancelled")

        assert result.points is None
        assert db_session.query(PointsTransaction).count() == 0

    def test_anonymous_order_earns_nothing(self, db_session, slots):
        order = _create()
        result = order_service.update_status(order.id, "completed")
        assert result.points is None
        assert db_session.query(PointsTransaction).count() == 0

    def test_recompleting_does_not_double_award(self, db_session, slots, customer):
        order = _create(customer)
        order_service.update_status(order.id, "completed")
        order_service.update_status(order.id, "ready")

        result = order_service.update_status(order.id, "completed")

        assert result.points["status"] == "already_awarded"
        assert points_service.get_user_points(customer.id)["points_balance"] == 23

    def test_same_status_is_noop(self, db_session, slots, customer, outbox):
        order = _create(customer)
        order_service.update_status(order.id, "completed")
        sent = len(outbox)

        result = order_service.update_status(order.id, "completed")

        assert result.changed is False
        assert result.points is None
        assert len(outbox) == sent
        assert db_session.query(PointsTransaction).count() == 1

    def test_status_email_subject(self, db_session, slots, outbox):
        order = _create()

        order_service.update_status(order.id, "ready_for_pickup")

        assert outbox[-1]["Subject"] == f"Order Update #{order.id} - Ready for Pickup - Lentil Life"

    @pytest.mark.parametrize("raw, expected", [
        ("Pending Cash Payment", "pending_cash_payment"),
        ("pending-cash-payment", "pending_cash_payment"),
        ("canceled", "cancelled"),
        ("READY", "ready"),
    ])
    def test_status_spellings(self, raw, expected):
        assert order_service.normalize_status(raw) == expected

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            order_service.normalize_status("lost")

    def test_missing_order(self, db_session):
        assert order_service.update_status(999, "paid") is None


# =============================================================================
# API ACCESS
# =============================================================================


class TestOrderApi:

    def test_admin_status_update_reports_points(self, client, db_session, slots, customer, admin_headers):
        order = _create(customer)

        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "completed"}, headers=admin_headers)

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["order"]["status"] == "completed"
        assert body["points"]["points_earned"] == 23

    def test_status_update_validation(self, client, db_session, slots, admin_headers):
        order = _create()

        assert client.put(f"/api/orders/{order.id}/status", json={}, headers=admin_headers).status_code == 400
        bad = client.put(f"/api/orders/{order.id}/status", json={"status": "lost"}, headers=admin_headers)
        assert bad.status_code == 400
        missing = client.put("/api/orders/999/status", json={"status": "paid"}, headers=admin_headers)
        assert missing.status_code == 404

    def test_customer_cannot_change_status(self, client, db_session, slots, customer, customer_headers):
        order = _create(customer)
        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "completed"}, headers=customer_headers)
        assert resp.status_code == 403

    def test_anonymous_cannot_list(self, client, db_session):
        assert client.get("/api/orders").status_code == 401

    def test_customers_see_only_their_orders(
        self, client, db_session, slots, customer, other_customer, customer_headers, admin_headers
    ):
        mine = _create(customer)
        theirs = _create(other_customer)

        listed = client.get("/api/orders", headers=customer_headers).get_json()["orders"]
        assert [o["id"] for o in listed] == [mine.id]

        assert client.get(f"/api/orders/{theirs.id}", headers=customer_headers).status_code == 404
        assert client.get(f"/api/orders/{mine.id}", headers=customer_headers).status_code == 200

        everything = client.get("/api/orders", headers=admin_headers).get_json()["orders"]
        assert {o["id"] for o in everything} == {mine.id, theirs.id}

    def test_admin_filters_by_status(self, client, db_session, slots, admin_headers):
        cash = _create()
        _create(paymentMethod="venmo")

        listed = client.get("/api/orders", query_string={"status": "Pending Cash Payment"}, headers=admin_headers).get_json()["orders"]

        assert [o["id"] for o in listed] == [cash.id]

    def test_receipt(self, client, db_session, slots, customer, customer_headers):
        order = _create(customer)

        resp = client.get(f"/api/orders/{order.id}/receipt", headers=customer_headers)

        receipt = resp.get_json()["receipt"]
        assert receipt["orderId"] == order.id
        assert receipt["pricing"] == {"subtotal": 23.4, "tax": 0.0, "total": 23.4}
        assert receipt["statusLabel"] == "Pending Cash Payment"
        assert receipt["pickup"] == {"date": PICKUP_DATE.isoformat(), "time": "12:00"}

    def test_receipt_hidden_from_other_customers(self, client, db_session, slots, customer, other_headers):
        order = _create(customer)
        assert client.get(f"/api/orders/{order.id}/receipt", headers=other_headers).status_code == 404

    def test_reminder(self, client, db_session, slots, admin_headers, outbox):
        order = _create()

        resp = client.post(f"/api/orders/{order.id}/reminder", headers=admin_headers)

        assert resp.status_code == 200
        assert outbox[-1]["Subject"] == f"Pickup Reminder #{order.id} - Lentil Life"

    def test_delete(self, client, db_session, slots, admin_headers):
        order = _create()

        assert client.delete(f"/api/orders/{order.id}", headers=admin_headers).status_code == 200
        assert client.delete(f"/api/orders/{order.id}", headers=admin_headers).status_code == 404
