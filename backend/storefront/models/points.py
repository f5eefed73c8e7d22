from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class PointsConfig(db.Model):
    """
    Loyalty earning rules. Only the newest active row is used.

    points_per_dollar is a decimal rate applied to the order total in dollars.
    """
    __tablename__ = "points_config"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    points_per_dollar = db.Column(db.Numeric(10, 2), nullable=False, default=1)
    min_order_cents = db.Column(db.Integer, nullable=False, default=0)
    signup_bonus_points = db.Column(db.Integer, nullable=False, default=0)
    referral_bonus_points = db.Column(db.Integer, nullable=False, default=0)
    points_expiry_months = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class PointsAccount(db.Model):
    """
    Cached loyalty balance for a user.

    INVARIANT: points_balance == SUM(points_transactions.points_amount) for
    the user. Updated in the same DB transaction as every ledger append.
    """
    __tablename__ = "points_accounts"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_points_accounts_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_spent = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("points_account", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "points_balance": self.points_balance,
            "lifetime_points_earned": self.lifetime_points_earned,
            "lifetime_points_spent": self.lifetime_points_spent,
            "updated_at": to_utc_z(self.updated_at),
        }


class PointsTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    TRANSACTION TYPES:
    - earned: Points earned from a completed order (or signup bonus)
    - spent: Points redeemed by the customer (negative)
    - refunded: Reversal of an order's earned points (negative)
    - expired: Earned points that passed expires_at (negative)

    IMMUTABLE: Records are never updated or deleted.
    order_id is a reference, not a foreign key, so hard-deleting an order
    leaves the ledger intact. At most one earned and one refunded row may
    exist per order.
    """
    __tablename__ = "points_transactions"
    __table_args__ = (
        db.Index("ix_points_txns_user_created", "user_id", "created_at"),
        db.Index(
            "uq_points_txns_order_type",
            "order_id",
            "transaction_type",
            unique=True,
            sqlite_where=db.text("transaction_type IN ('earned', 'refunded')"),
            postgresql_where=db.text("transaction_type IN ('earned', 'refunded')"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, nullable=True, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # earned, spent, refunded, expired
    points_amount = db.Column(db.Integer, nullable=False)  # Positive for earned, negative otherwise

    points_rate = db.Column(db.Numeric(10, 2), nullable=True)
    order_amount_cents = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=True)

    # Earned row this row reverses (refunded / expired)
    reverses_transaction_id = db.Column(db.Integer, db.ForeignKey("points_transactions.id"), nullable=True, index=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "transaction_type": self.transaction_type,
            "points_amount": self.points_amount,
            "points_rate": float(self.points_rate) if self.points_rate is not None else None,
            "order_amount_cents": self.order_amount_cents,
            "description": self.description,
            "reverses_transaction_id": self.reverses_transaction_id,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "created_at": to_utc_z(self.created_at),
        }
