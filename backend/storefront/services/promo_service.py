# Overview: Service-layer operations for promo codes; encapsulates business logic and database work.

"""
Promo Code Validation and Redemption

Checks run in a fixed order and stop at the first failure, so the caller can
show a specific message:

1. code exists, is active and has started
2. not past valid_until
3. usage counter below usage_limit
4. new-users-only restriction
5. no prior usage by this user
6. city/state allow-lists (skipped when the user has no location)

Redemption inserts the usage row and bumps used_count with a conditional
UPDATE in one transaction, so the counter can never pass the limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import PromoCode, PromoUsage, User
from storefront.time_utils import parse_iso_datetime, utcnow
from storefront.validation import ValidationError, ConflictError, parse_optional_int, to_cents


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
VALID_DISCOUNT_TYPES = {DISCOUNT_PERCENTAGE, DISCOUNT_FIXED}

RESTRICTION_NEW_USERS_ONLY = "new_users_only"

# Failure reasons
INVALID_CODE = "invalid_code"
EXPIRED = "expired"
USAGE_LIMIT_REACHED = "usage_limit_reached"
NEW_USERS_ONLY = "new_users_only"
ALREADY_USED = "already_used"
LOCATION_RESTRICTED = "location_restricted"

FAILURE_MESSAGES = {
    INVALID_CODE: "Invalid or expired promo code",
    EXPIRED: "Promo code has expired",
    USAGE_LIMIT_REACHED: "Promo code usage limit reached",
    NEW_USERS_ONLY: "This promo code is only for new users",
    ALREADY_USED: "You have already used this promo code",
    LOCATION_RESTRICTED: "This promo code is not available in your location",
}


class PromoValidationError(Exception):
    """Raised when a promo code cannot be applied. reason is one of the failure constants."""

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        self.message = message or FAILURE_MESSAGES[reason]
        super().__init__(self.message)


@dataclass
class PromoValidation:
    promo: PromoCode
    valid: bool = True

    def to_dict(self) -> dict:
        return {"valid": self.valid, "promo": self.promo.public_dict()}


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


# =============================================================================
# VALIDATION
# =============================================================================

def _check_code(code: str, now: datetime) -> PromoCode:
    """Checks 1-3: existence/active/started, expiry, usage limit."""
    normalized = normalize_code(code)
    if not normalized:
        raise PromoValidationError(INVALID_CODE)

    promo = db.session.query(PromoCode).filter_by(code=normalized, is_active=True).first()
    if promo is None:
        raise PromoValidationError(INVALID_CODE)
    if promo.valid_from and promo.valid_from > now:
        raise PromoValidationError(INVALID_CODE)

    if promo.valid_until and promo.valid_until < now:
        raise PromoValidationError(EXPIRED)

    if promo.usage_limit is not None and promo.used_count >= promo.usage_limit:
        raise PromoValidationError(USAGE_LIMIT_REACHED)

    return promo


def _known(value) -> str | None:
    if not isinstance(value, str) or not value.strip() or value.strip().lower() == "unknown":
        return None
    return value.strip()


def _in_allow_list(value: str, allowed: list[str]) -> bool:
    wanted = value.lower()
    return any(wanted == (entry or "").strip().lower() for entry in allowed)


def _check_location(promo: PromoCode, location: dict | None) -> None:
    # Rules only apply to a location that was actually resolved
    restriction = promo.location_restriction or {}
    if not restriction or not location or location.get("error"):
        return

    city = _known(location.get("city"))
    cities = restriction.get("cities") or []
    if cities and city and not _in_allow_list(city, cities):
        raise PromoValidationError(LOCATION_RESTRICTED)

    state = _known(location.get("state"))
    states = restriction.get("states") or []
    if states and state and not _in_allow_list(state, states):
        raise PromoValidationError(LOCATION_RESTRICTED, "This promo code is not available in your state")


def validate_promo(
    user_id: int | None,
    code: str,
    is_new_user: bool,
    *,
    location: dict | None = None,
    now: datetime | None = None,
) -> PromoValidation:
    """
    Full validation for a signed-in user (or a user being created).

    location defaults to the user's saved location_data. Raises
    PromoValidationError on the first failed check.
    """
    now = now or utcnow()
    promo = _check_code(code, now)

    if promo.user_restriction == RESTRICTION_NEW_USERS_ONLY and not is_new_user:
        raise PromoValidationError(NEW_USERS_ONLY)

    if user_id is not None:
        prior = db.session.query(PromoUsage).filter_by(user_id=user_id, promo_code_id=promo.id).first()
        if prior:
            raise PromoValidationError(ALREADY_USED)

        if location is None:
            user = db.session.get(User, user_id)
            location = user.location_data if user else None

    _check_location(promo, location)
    return PromoValidation(promo=promo)


def validate_public(code: str, *, now: datetime | None = None) -> PromoValidation:
    """Pre-signup check: existence, expiry and usage limit only."""
    return PromoValidation(promo=_check_code(code, now or utcnow()))


# =============================================================================
# DISCOUNT + REDEMPTION
# =============================================================================

def calculate_discount(promo: PromoCode, subtotal_cents: int) -> int:
    """Discount in cents; 0 below the promo minimum, never more than the subtotal."""
    if subtotal_cents <= 0 or subtotal_cents < (promo.min_order_cents or 0):
        return 0
    if promo.discount_type == DISCOUNT_PERCENTAGE:
        # discount_value is in basis points
        discount = (Decimal(subtotal_cents) * promo.discount_value / 10000).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        discount = int(discount)
    else:
        discount = promo.discount_value
    return max(0, min(discount, subtotal_cents))


def record_usage(user_id: int, promo_code_id: int, order_id: int | None, discount_cents: int) -> PromoUsage:
    """
    Record a redemption and bump used_count atomically.

    Raises PromoValidationError(already_used) when the user already redeemed
    this code and PromoValidationError(usage_limit_reached) when the counter
    is at its limit. Nothing is written in either case.
    """
    usage = PromoUsage(
        user_id=user_id,
        promo_code_id=promo_code_id,
        order_id=order_id,
        discount_cents=discount_cents,
    )
    db.session.add(usage)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise PromoValidationError(ALREADY_USED)

    result = db.session.execute(
        update(PromoCode)
        .where(
            PromoCode.id == promo_code_id,
            or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit),
        )
        .values(used_count=PromoCode.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise PromoValidationError(USAGE_LIMIT_REACHED)

    db.session.commit()
    return usage


def redeem_promo(user: User, code: str, subtotal_cents: int, order_id: int | None = None) -> dict:
    """Validate, price and record a redemption for a signed-in user."""
    from . import auth_service

    validation = validate_promo(user.id, code, auth_service.is_new_user(user))
    promo = validation.promo
    discount_cents = calculate_discount(promo, subtotal_cents)
    usage = record_usage(user.id, promo.id, order_id, discount_cents)
    return {
        "promo": promo.public_dict(),
        "usage": usage.to_dict(),
        "subtotal": float(Decimal(subtotal_cents) / 100),
        "discount": float(Decimal(discount_cents) / 100),
        "total": float(Decimal(subtotal_cents - discount_cents) / 100),
    }


# =============================================================================
# ADMIN
# =============================================================================

def _parse_discount_value(discount_type: str, value) -> int:
    """Percent (e.g. 12.5) becomes basis points; dollars become cents."""
    if discount_type == DISCOUNT_FIXED:
        return to_cents(value, "discount_value")
    if value is None or isinstance(value, bool):
        raise ValidationError("discount_value must be a number")
    try:
        percent = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("discount_value must be a number")
    if not percent.is_finite() or percent <= 0 or percent > 100:
        raise ValidationError("discount_value must be between 0 and 100 for percentage codes")
    return int((percent * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _parse_location_restriction(value) -> dict | None:
    if value in (None, {}):
        return None
    if not isinstance(value, dict):
        raise ValidationError("location_restriction must be an object")
    cleaned = {}
    for key in ("cities", "states"):
        entries = value.get(key) or []
        if not isinstance(entries, list) or not all(isinstance(e, str) for e in entries):
            raise ValidationError(f"location_restriction.{key} must be a list of strings")
        if entries:
            cleaned[key] = [e.strip() for e in entries if e.strip()]
    return cleaned or None


def _parse_window(data: dict, key: str) -> datetime | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


def list_promo_codes(active_only: bool = False) -> list[dict]:
    q = db.session.query(PromoCode)
    if active_only:
        q = q.filter_by(is_active=True)
    return [p.to_dict() for p in q.order_by(PromoCode.created_at.desc(), PromoCode.id.desc()).all()]


def create_promo_code(data: dict) -> dict:
    code = normalize_code(data.get("code"))
    if not code:
        raise ValidationError("code is required")

    discount_type = data.get("discount_type")
    if discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError("discount_type must be 'percentage' or 'fixed'")

    restriction = data.get("user_restriction")
    if restriction not in (None, RESTRICTION_NEW_USERS_ONLY):
        raise ValidationError("user_restriction must be 'new_users_only' or null")

    if db.session.query(PromoCode).filter_by(code=code).first():
        raise ConflictError(f"Promo code {code} already exists")

    promo = PromoCode(
        code=code,
        description=data.get("description"),
        discount_type=discount_type,
        discount_value=_parse_discount_value(discount_type, data.get("discount_value")),
        min_order_cents=to_cents(data.get("min_order_amount", 0), "min_order_amount", allow_zero=True),
        usage_limit=parse_optional_int(data.get("usage_limit"), "usage_limit", minimum=0),
        used_count=0,
        valid_from=_parse_window(data, "valid_from"),
        valid_until=_parse_window(data, "valid_until"),
        user_restriction=restriction,
        location_restriction=_parse_location_restriction(data.get("location_restriction")),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(promo)
    db.session.commit()
    return promo.to_dict()


def update_promo_code(promo_id: int, data: dict) -> dict | None:
    promo = db.session.get(PromoCode, promo_id)
    if not promo:
        return None

    if "description" in data:
        promo.description = data["description"]
    if "discount_type" in data or "discount_value" in data:
        discount_type = data.get("discount_type", promo.discount_type)
        if discount_type not in VALID_DISCOUNT_TYPES:
            raise ValidationError("discount_type must be 'percentage' or 'fixed'")
        if "discount_value" not in data:
            raise ValidationError("discount_value is required when changing discount_type")
        promo.discount_type = discount_type
        promo.discount_value = _parse_discount_value(discount_type, data["discount_value"])
    if "min_order_amount" in data:
        promo.min_order_cents = to_cents(data["min_order_amount"], "min_order_amount", allow_zero=True)
    if "usage_limit" in data:
        promo.usage_limit = parse_optional_int(data["usage_limit"], "usage_limit", minimum=0)
    if "valid_from" in data:
        promo.valid_from = _parse_window(data, "valid_from")
    if "valid_until" in data:
        promo.valid_until = _parse_window(data, "valid_until")
    if "user_restriction" in data:
        if data["user_restriction"] not in (None, RESTRICTION_NEW_USERS_ONLY):
            raise ValidationError("user_restriction must be 'new_users_only' or null")
        promo.user_restriction = data["user_restriction"]
    if "location_restriction" in data:
        promo.location_restriction = _parse_location_restriction(data["location_restriction"])
    if "is_active" in data:
        promo.is_active = bool(data["is_active"])

    db.session.commit()
    return promo.to_dict()
