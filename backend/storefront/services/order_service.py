# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Lifecycle

WHY: An order is the unit the kitchen works from and the unit loyalty points
are earned on. Creation validates and persists the order (taking a pickup
slot in the same transaction); status changes drive the side effects.

SIDE EFFECTS (best-effort, never fail the primary operation):
- create: confirmation email; payment intent for card orders
- status -> completed (from anything else), owner set: award points
- completed -> cancelled, owner set: refund points
- any status change: status email

There is no transition table: any status may be set from any other.
Award and refund are idempotent at the ledger level, so a replayed
transition cannot double-count points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Order
from ..models.orders import (
    INACTIVE_ORDER_STATUSES,
    ORDER_STATUS_LABELS,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_PENDING_CASH_PAYMENT,
    STATUS_PENDING_PAYMENT,
    STATUS_PENDING_VENMO_PAYMENT,
    STATUS_READY,
    VALID_ORDER_STATUSES,
)
from storefront.time_utils import parse_hhmm, parse_iso_date
from storefront.validation import ValidationError, to_cents, parse_int
from . import notification_service, payment_service, points_service, time_slot_service
from .concurrency import run_with_retry
from .notification_service import NotificationResult
from .payment_service import PaymentGatewayError
from .points_service import PointsError


class OrderError(Exception):
    """Raised for invalid order operations."""
    pass


PAYMENT_METHODS = {"card", "venmo", "cash"}

INITIAL_STATUS_BY_METHOD = {
    "card": STATUS_PENDING_PAYMENT,
    "venmo": STATUS_PENDING_VENMO_PAYMENT,
    "cash": STATUS_PENDING_CASH_PAYMENT,
}

# Legacy spellings still sent by older clients
STATUS_ALIASES = {
    "canceled": STATUS_CANCELLED,
    "ready_for_pickup": STATUS_READY,
}

_LABEL_TO_STATUS = {label.lower(): status for status, label in ORDER_STATUS_LABELS.items()}


def normalize_status(value) -> str:
    """
    Map any accepted spelling onto the closed status set.

    "Pending Cash Payment", "pending-cash-payment" and "pending_cash_payment"
    all normalize to pending_cash_payment. Raises ValidationError otherwise.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Status is required")
    raw = value.strip().lower()
    if raw in _LABEL_TO_STATUS:
        return _LABEL_TO_STATUS[raw]
    key = raw.replace("-", "_").replace(" ", "_")
    key = STATUS_ALIASES.get(key, key)
    if key not in VALID_ORDER_STATUSES:
        raise ValidationError(f"Unknown order status '{value}'")
    return key


def initial_status_for(payment_method: str | None, requested: str | None = None) -> str:
    """Payment method wins; otherwise the requested status, otherwise pending."""
    if payment_method in INITIAL_STATUS_BY_METHOD:
        return INITIAL_STATUS_BY_METHOD[payment_method]
    if requested:
        return normalize_status(requested)
    return STATUS_PENDING


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class OrderCreation:
    order: Order
    points_to_earn: int = 0
    payment_intent: dict | None = None
    notification: NotificationResult | None = None


@dataclass
class StatusUpdate:
    order: Order
    previous_status: str
    points: dict | None = None
    notification: NotificationResult | None = None
    changed: bool = field(default=True)


# =============================================================================
# CREATE
# =============================================================================

def _parse_items(raw_items) -> list[dict]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Items are required")

    items = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        name = (raw.get("name") or "").strip() if isinstance(raw.get("name"), str) else ""
        if not name:
            raise ValidationError(f"items[{idx}].name is required")
        item = {
            "name": name,
            "price_cents": to_cents(raw.get("price"), f"items[{idx}].price", allow_zero=True),
            "quantity": parse_int(raw.get("quantity", 1), f"items[{idx}].quantity", minimum=1),
        }
        if raw.get("note"):
            item["note"] = str(raw["note"])
        menu_item_id = raw.get("menuItemId", raw.get("menu_item_id"))
        if menu_item_id is not None:
            item["menu_item_id"] = parse_int(menu_item_id, f"items[{idx}].menuItemId", minimum=1)
        items.append(item)
    return items


def _parse_pickup(pickup) -> tuple[date, str]:
    if not isinstance(pickup, dict) or not pickup.get("date") or not pickup.get("time"):
        raise ValidationError("Pickup date and time are required")
    try:
        pickup_date = parse_iso_date(pickup["date"])
    except (TypeError, ValueError):
        raise ValidationError("Pickup date must be YYYY-MM-DD")
    try:
        pickup_time = parse_hhmm(pickup["time"])
    except ValueError:
        raise ValidationError("Pickup time must be HH:MM")
    return pickup_date, pickup_time


def _parse_total(value) -> int:
    try:
        return to_cents(value, "total")
    except ValidationError:
        raise ValidationError("Valid total amount is required")


def create_order(payload: dict, user_id: int | None = None) -> OrderCreation:
    """
    Validate and persist a new order.

    payload uses the storefront's keys: customer {name, email, phone},
    items [{name, price, quantity, note?, menuItemId?}], pickup {date, time},
    total, specialInstructions, paymentMethod, orderStatus.

    Raises ValidationError for bad input and TimeSlotError when the pickup
    slot is full. Email and payment-intent failures are logged and reported
    on the result instead.
    """
    customer = payload.get("customer")
    if (
        not isinstance(customer, dict)
        or not customer.get("name")
        or not customer.get("email")
        or not customer.get("phone")
    ):
        raise ValidationError("Customer information (name, email, phone) is required")

    items = _parse_items(payload.get("items"))
    pickup_date, pickup_time = _parse_pickup(payload.get("pickup"))
    total_cents = _parse_total(payload.get("total"))

    payment_method = payload.get("paymentMethod")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError("paymentMethod must be one of: card, venmo, cash")
    status = initial_status_for(payment_method, payload.get("orderStatus"))

    special_instructions = payload.get("specialInstructions") or None

    def _op():
        try:
            time_slot_service.reserve_capacity(pickup_date, pickup_time)
        except time_slot_service.TimeSlotError:
            db.session.rollback()
            raise
        order = Order(
            customer_name=str(customer["name"]).strip(),
            customer_email=str(customer["email"]).strip(),
            customer_phone=str(customer["phone"]).strip(),
            items=items,
            pickup_date=pickup_date,
            pickup_time=pickup_time,
            total_cents=total_cents,
            status=status,
            payment_method=payment_method,
            special_instructions=special_instructions,
            user_id=user_id,
        )
        db.session.add(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Created order %s (%s)", order.id, order.status)

    points_to_earn = points_service.calculate_points(total_cents)

    notification = notification_service.send_order_confirmation(order, order.customer, points_to_earn)
    if not notification.success:
        current_app.logger.warning("Order %s confirmation email not sent: %s", order.id, notification.error)

    payment_intent = None
    if payment_method == "card":
        try:
            intent = payment_service.create_intent_for_order(order)
            db.session.commit()
            payment_intent = {
                "clientSecret": intent["client_secret"],
                "paymentIntentId": intent["id"],
            }
        except PaymentGatewayError as e:
            db.session.rollback()
            current_app.logger.warning("Failed to create payment intent for order %s: %s", order.id, e)

    return OrderCreation(
        order=order,
        points_to_earn=points_to_earn,
        payment_intent=payment_intent,
        notification=notification,
    )


# =============================================================================
# READ / DELETE
# =============================================================================

def get_order(order_id: int) -> Order | None:
    return db.session.get(Order, order_id)


def list_orders(
    user_id: int | None = None,
    status: str | None = None,
    pickup_date: date | None = None,
) -> list[Order]:
    q = db.session.query(Order)
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    if status:
        q = q.filter(Order.status == normalize_status(status))
    if pickup_date is not None:
        q = q.filter(Order.pickup_date == pickup_date)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def delete_order(order_id: int) -> bool:
    """Hard delete. Points and payments are left as they are."""
    order = db.session.get(Order, order_id)
    if order is None:
        return False
    db.session.delete(order)
    db.session.commit()
    current_app.logger.info("Deleted order %s", order_id)
    return True


# =============================================================================
# STATUS
# =============================================================================

def _apply_points(order: Order, previous: str, new_status: str) -> dict | None:
    """Award on entry into completed, refund on completed -> cancelled."""
    if not order.user_id:
        return None
    try:
        if new_status == STATUS_COMPLETED and previous != STATUS_COMPLETED:
            result = points_service.award_points(order.user_id, order.id, order.total_cents)
            if result.status == "awarded":
                current_app.logger.info(
                    "Awarded %s points to user %s for order %s", result.points_earned, order.user_id, order.id
                )
            return result.to_dict()
        if previous == STATUS_COMPLETED and new_status == STATUS_CANCELLED:
            result = points_service.refund_points(order.user_id, order.id)
            if result.status == "refunded":
                current_app.logger.info(
                    "Refunded %s points for user %s for cancelled order %s",
                    result.points_refunded, order.user_id, order.id,
                )
            return result.to_dict()
    except (PointsError, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Failed to apply points for order %s", order.id)
    return None


def update_status(order_id: int, new_status: str) -> StatusUpdate | None:
    """
    Set an order's status and run the transition's side effects.

    Returns None when the order does not exist. Raises ValidationError for
    an unknown status. Setting the current status again is a no-op.
    """
    status = normalize_status(new_status)

    def _op():
        order = db.session.get(Order, order_id)
        if order is None:
            return None, None
        previous = order.status
        if previous != status:
            order.status = status
            db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    if order is None:
        return None

    if previous == status:
        return StatusUpdate(order=order, previous_status=previous, changed=False)

    current_app.logger.info("Order %s status %s -> %s", order.id, previous, status)
    points = _apply_points(order, previous, status)

    notification = notification_service.send_status_update(order, order.customer, status, points)
    if not notification.success:
        current_app.logger.warning("Order %s status email not sent: %s", order.id, notification.error)

    return StatusUpdate(order=order, previous_status=previous, points=points, notification=notification)


# =============================================================================
# RECEIPT / REMINDERS
# =============================================================================

def build_receipt(order: Order) -> dict:
    items = order.items_for_display()
    subtotal_cents = sum(item["line_total_cents"] for item in items)
    tax_cents = 0
    return {
        "orderId": order.id,
        "orderDate": order.to_dict()["created_at"],
        "customer": order.customer,
        "items": items,
        "pickup": {"date": order.pickup_date.isoformat(), "time": order.pickup_time},
        "specialInstructions": order.special_instructions,
        "pricing": {
            "subtotal": subtotal_cents / 100,
            "tax": tax_cents / 100,
            "total": order.total_cents / 100,
        },
        "status": order.status,
        "statusLabel": order.status_label,
    }


def send_reminder(order_id: int) -> NotificationResult | None:
    """Pickup reminder for one order. None when the order does not exist."""
    order = db.session.get(Order, order_id)
    if order is None:
        return None
    if not order.customer_email:
        raise OrderError("No customer email found for this order")
    return notification_service.send_pickup_reminder(order, order.customer)


def send_reminders_for_date(pickup_date: date) -> tuple[int, int]:
    """Reminders for every live order picked up on a date. Returns (sent, failed)."""
    orders = (
        db.session.query(Order)
        .filter(Order.pickup_date == pickup_date, Order.status.notin_(INACTIVE_ORDER_STATUSES | {STATUS_COMPLETED}))
        .order_by(Order.pickup_time, Order.id)
        .all()
    )
    sent = failed = 0
    for order in orders:
        result = notification_service.send_pickup_reminder(order, order.customer)
        if result.success:
            sent += 1
        else:
            failed += 1
    return sent, failed
