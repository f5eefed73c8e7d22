from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z
from storefront.validation import cents_to_dollars


# =============================================================================
# ORDER STATUS (closed set, normalized snake_case)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_PENDING_PAYMENT = "pending_payment"
STATUS_PENDING_VENMO_PAYMENT = "pending_venmo_payment"
STATUS_PENDING_CASH_PAYMENT = "pending_cash_payment"
STATUS_PAID = "paid"
STATUS_PREPARING = "preparing"
STATUS_READY = "ready"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_PAYMENT_FAILED = "payment_failed"
STATUS_REFUNDED = "refunded"

# Display labels shown to customers (storefront and email)
ORDER_STATUS_LABELS = {
    STATUS_PENDING: "Pending",
    STATUS_PENDING_PAYMENT: "Pending Payment",
    STATUS_PENDING_VENMO_PAYMENT: "Pending Venmo Payment",
    STATUS_PENDING_CASH_PAYMENT: "Pending Cash Payment",
    STATUS_PAID: "Paid",
    STATUS_PREPARING: "Preparing",
    STATUS_READY: "Ready for Pickup",
    STATUS_COMPLETED: "Completed",
    STATUS_CANCELLED: "Cancelled",
    STATUS_PAYMENT_FAILED: "Payment Failed",
    STATUS_REFUNDED: "Refunded",
}

VALID_ORDER_STATUSES = frozenset(ORDER_STATUS_LABELS)

# Orders in these states no longer hold a pickup slot
INACTIVE_ORDER_STATUSES = frozenset({STATUS_CANCELLED, STATUS_PAYMENT_FAILED, STATUS_REFUNDED})


class Order(db.Model):
    """
    Pickup order placed through the storefront.

    The customer contact fields and line items are snapshots taken at order
    time; later profile or menu edits do not rewrite them. Status changes go
    through order_service.update_status so loyalty points and notifications
    stay in step with the status history.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_pickup_slot", "pickup_date", "pickup_time"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)

    # [{name, price_cents, quantity, note?, menu_item_id?}, ...]
    items = db.Column(db.JSON, nullable=False)

    pickup_date = db.Column(db.Date, nullable=False)
    pickup_time = db.Column(db.String(5), nullable=False)  # HH:MM

    total_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(32), nullable=False, default=STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=True)  # card, venmo, cash
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)

    special_instructions = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def customer(self) -> dict:
        return {
            "name": self.customer_name,
            "email": self.customer_email,
            "phone": self.customer_phone,
        }

    @property
    def status_label(self) -> str:
        return ORDER_STATUS_LABELS.get(self.status, self.status)

    def items_for_display(self) -> list[dict]:
        return [
            {
                "name": item.get("name"),
                "price": cents_to_dollars(item.get("price_cents", 0)),
                "price_cents": item.get("price_cents", 0),
                "quantity": item.get("quantity", 0),
                "note": item.get("note"),
                "menu_item_id": item.get("menu_item_id"),
                "line_total_cents": item.get("price_cents", 0) * item.get("quantity", 0),
            }
            for item in (self.items or [])
        ]

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer": self.customer,
            "items": self.items_for_display(),
            "pickup": {
                "date": self.pickup_date.isoformat() if self.pickup_date else None,
                "time": self.pickup_time,
            },
            "total": cents_to_dollars(self.total_cents),
            "total_cents": self.total_cents,
            "status": self.status,
            "status_label": self.status_label,
            "payment_method": self.payment_method,
            "payment_intent_id": self.payment_intent_id,
            "special_instructions": self.special_instructions,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
