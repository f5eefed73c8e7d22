# Overview: Service-layer operations for card payments; wraps the Stripe API and maps its events to order statuses.

"""
Stripe Payment Intents

WHY: Card orders are paid through Stripe payment intents opened by the
server and completed by the storefront. Stripe reports the outcome through
signed webhooks; this module maps those events onto order statuses.

The gateway is built once per app (see create_app) and read through
get_gateway(). It passes the secret key on every call instead of setting
stripe.api_key, so nothing global is configured at import time.
"""

from __future__ import annotations

import json
from decimal import Decimal, ROUND_HALF_UP

import stripe
from flask import current_app

from ..models.orders import STATUS_CANCELLED, STATUS_PAID, STATUS_PAYMENT_FAILED, STATUS_REFUNDED


# Gateway event type -> local order status
EVENT_STATUS_MAP = {
    "payment_intent.succeeded": STATUS_PAID,
    "payment_intent.payment_failed": STATUS_PAYMENT_FAILED,
    "payment_intent.canceled": STATUS_CANCELLED,
}

EVENT_ACTIONS = {
    "payment_intent.succeeded": "payment_succeeded",
    "payment_intent.payment_failed": "payment_failed",
    "payment_intent.canceled": "payment_canceled",
}

SUPPORTED_PAYMENT_METHODS = ["card", "venmo", "cash"]

# Stripe standard pricing: 2.9% + 30c
PROCESSING_FEE_RATE = Decimal("0.029")
PROCESSING_FEE_FIXED_CENTS = 30


class PaymentGatewayError(Exception):
    """Raised when Stripe rejects a request or cannot be reached."""
    pass


class WebhookSignatureError(Exception):
    """Raised when a webhook payload fails signature verification."""
    pass


class PaymentNotCompletedError(Exception):
    """Raised when confirming an intent that has not succeeded."""

    def __init__(self, payment_status: str):
        self.payment_status = payment_status
        super().__init__("Payment not yet successful")


class PaymentMismatchError(Exception):
    """Raised when an intent does not belong to, or does not cover, the order being confirmed."""
    pass


def _plain(obj) -> dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _intent_dict(intent) -> dict:
    return {
        "id": intent["id"],
        "client_secret": intent.get("client_secret"),
        "status": intent["status"],
        "amount": intent["amount"],
        "currency": intent.get("currency"),
        "metadata": _plain(intent.get("metadata")),
    }


class StripeGateway:
    """Thin Stripe client. All failures surface as PaymentGatewayError."""

    def __init__(self, secret_key: str, webhook_secret: str = "", publishable_key: str = ""):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.publishable_key = publishable_key

    @classmethod
    def from_config(cls, config) -> "StripeGateway":
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY", ""),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET", ""),
            publishable_key=config.get("STRIPE_PUBLISHABLE_KEY", ""),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _require_key(self) -> None:
        if not self.secret_key:
            raise PaymentGatewayError("Payment gateway is not configured")

    def create_intent(self, amount_cents: int, currency: str, metadata: dict) -> dict:
        self._require_key()
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.secret_key,
                amount=amount_cents,
                currency=currency.lower(),
                metadata={k: "" if v is None else str(v) for k, v in metadata.items()},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(e.user_message or str(e)) from e
        return _intent_dict(intent)

    def retrieve_intent(self, intent_id: str) -> dict:
        self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise PaymentGatewayError(e.user_message or str(e)) from e
        return _intent_dict(intent)

    def confirm_intent(self, intent_id: str) -> dict:
        self._require_key()
        try:
            intent = stripe.PaymentIntent.confirm(intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise PaymentGatewayError(e.user_message or str(e)) from e
        return _intent_dict(intent)

    def create_refund(self, intent_id: str, amount_cents: int | None = None) -> dict:
        self._require_key()
        params = {"payment_intent": intent_id}
        if amount_cents:
            params["amount"] = amount_cents
        try:
            refund = stripe.Refund.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise PaymentGatewayError(e.user_message or str(e)) from e
        return {"id": refund["id"], "amount": refund["amount"], "status": refund["status"]}

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        """Verify a webhook body and return the event as a plain dict."""
        if not self.webhook_secret or not signature:
            raise WebhookSignatureError("Webhook signature verification failed")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError("Webhook signature verification failed") from e
        return json.loads(payload)


def get_gateway() -> StripeGateway:
    return current_app.extensions["storefront.payments"]


def public_config() -> dict:
    return {
        "stripePublishableKey": get_gateway().publishable_key,
        "supportedPaymentMethods": list(SUPPORTED_PAYMENT_METHODS),
    }


def calculate_processing_fee(amount_cents: int) -> int:
    """Card processing fee in cents, rounded half-up."""
    fee = (Decimal(amount_cents) * PROCESSING_FEE_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(fee) + PROCESSING_FEE_FIXED_CENTS


def create_intent_for_order(order, customer: dict | None = None, amount_cents: int | None = None) -> dict:
    """
    Open a payment intent for an order and remember its id on the order.

    amount_cents defaults to the order total. The caller owns the commit.
    """
    customer = customer or order.customer
    metadata = {
        "orderId": order.id,
        "customerEmail": customer.get("email") or "",
        "customerName": customer.get("name") or "",
        "userId": order.user_id or "",
    }
    intent = get_gateway().create_intent(
        order.total_cents if amount_cents is None else amount_cents,
        current_app.config.get("PAYMENT_CURRENCY", "usd"),
        metadata,
    )
    order.payment_intent_id = intent["id"]
    return intent


def _order_id_from_metadata(metadata: dict) -> int | None:
    raw = (metadata or {}).get("orderId")
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def handle_webhook_event(event: dict) -> dict:
    """
    Apply a verified webhook event to its order.

    Returns {"action", "order_id", "status"}. Unmapped events, and events
    with no orderId in the intent metadata, are acknowledged as ignored.
    """
    from . import order_service

    event_type = event.get("type")
    if event_type not in EVENT_STATUS_MAP:
        current_app.logger.info("Ignoring webhook event %s", event_type)
        return {"action": "ignored", "order_id": None, "status": None}

    intent = (event.get("data") or {}).get("object") or {}
    order_id = _order_id_from_metadata(intent.get("metadata"))
    new_status = EVENT_STATUS_MAP[event_type]
    action = EVENT_ACTIONS[event_type]

    if order_id is None:
        current_app.logger.warning("Webhook %s for intent %s has no orderId", event_type, intent.get("id"))
        return {"action": action, "order_id": None, "status": None}

    result = order_service.update_status(order_id, new_status)
    if result is None:
        current_app.logger.warning("Webhook %s references unknown order %s", event_type, order_id)
        return {"action": action, "order_id": order_id, "status": None}

    return {"action": action, "order_id": order_id, "status": result.order.status}


def confirm_payment(intent_id: str, order_id: int):
    """
    Mark an order paid once its intent has succeeded.

    Returns (intent, StatusUpdate | None); None means the order does not
    exist. Raises PaymentNotCompletedError when the intent is in any other
    state, and PaymentMismatchError when the intent metadata names another
    order or the intent amount is below the order total.
    """
    from . import order_service

    intent = get_gateway().retrieve_intent(intent_id)
    if intent["status"] != "succeeded":
        raise PaymentNotCompletedError(intent["status"])

    order = order_service.get_order(order_id)
    if order is None:
        return intent, None
    if _order_id_from_metadata(intent.get("metadata")) != order.id:
        raise PaymentMismatchError("Payment intent does not belong to this order")
    if (intent.get("amount") or 0) < order.total_cents:
        raise PaymentMismatchError("Payment amount does not cover the order total")
    return intent, order_service.update_status(order.id, STATUS_PAID)


def refund_payment(intent_id: str, amount_cents: int | None = None, order_id: int | None = None):
    """
    Refund an intent, fully when amount_cents is None.

    The order moves to refunded only when the refund covers its total; a
    partial refund leaves the order status alone.
    """
    from . import order_service

    refund = get_gateway().create_refund(intent_id, amount_cents)
    update = None
    if order_id is not None:
        order = order_service.get_order(order_id)
        if order is not None and (amount_cents is None or amount_cents >= order.total_cents):
            update = order_service.update_status(order.id, STATUS_REFUNDED)
    return refund, update
