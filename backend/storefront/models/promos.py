from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from storefront.time_utils import to_utc_z
from storefront.validation import cents_to_dollars


class PromoCode(db.Model):
    """
    Customer-facing promo codes.

    Codes are case-insensitive and stored upper-cased. used_count is only
    changed by promo_service.record_usage through a conditional UPDATE, so
    the ORM does not version this row.

    DISCOUNT TYPES:
    - percentage: discount_value in basis points (1000 = 10%)
    - fixed: discount_value in cents
    """
    __tablename__ = "promo_codes"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_promo_codes_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    min_order_cents = db.Column(db.Integer, nullable=False, default=0)

    usage_limit = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    used_count = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    user_restriction = db.Column(db.String(32), nullable=True)  # new_users_only
    location_restriction = db.Column(db.JSON, nullable=True)  # {"cities": [...], "states": [...]}

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def display_value(self) -> float:
        """Percent for percentage codes, dollars for fixed codes."""
        return float(Decimal(self.discount_value or 0) / 100)

    def public_dict(self) -> dict:
        """Subset safe to show before sign-in."""
        return {
            "code": self.code,
            "description": self.description,
            "discountType": self.discount_type,
            "discountValue": self.display_value,
            "minOrderAmount": cents_to_dollars(self.min_order_cents),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.display_value,
            "min_order_amount": cents_to_dollars(self.min_order_cents),
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "valid_from": to_utc_z(self.valid_from) if self.valid_from else None,
            "valid_until": to_utc_z(self.valid_until) if self.valid_until else None,
            "user_restriction": self.user_restriction,
            "location_restriction": self.location_restriction,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PromoUsage(db.Model):
    """One row per (user, promo): a user may redeem a given code once."""
    __tablename__ = "promo_usages"
    __table_args__ = (
        db.UniqueConstraint("user_id", "promo_code_id", name="uq_promo_usages_user_promo"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    promo_code_id = db.Column(db.Integer, db.ForeignKey("promo_codes.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    promo_code = db.relationship("PromoCode", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "promo_code_id": self.promo_code_id,
            "order_id": self.order_id,
            "discount_cents": self.discount_cents,
            "created_at": to_utc_z(self.created_at),
        }
