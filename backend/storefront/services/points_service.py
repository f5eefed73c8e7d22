# Overview: Service-layer operations for loyalty points; encapsulates business logic and database work.

"""
Loyalty Points Ledger

WHY: Customers earn points on completed orders and may spend them later.
The balance is derived from an append-only transaction log.

LEDGER INVARIANTS:
- points_transactions rows are never updated or deleted.
- points_accounts.points_balance equals the sum of the user's transaction
  amounts. Every append updates the cached account in the same DB
  transaction, under a row lock on the account.
- At most one earned and one refunded row per order (unique index), so
  award/refund replays are no-ops instead of double-counting.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_FLOOR

from dateutil.relativedelta import relativedelta
from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import PointsAccount, PointsConfig, PointsTransaction
from storefront.time_utils import utcnow
from storefront.validation import ValidationError, parse_int, parse_optional_int, to_cents
from .concurrency import lock_for_update, run_with_retry


class PointsError(Exception):
    """Raised for invalid points operations."""
    pass


# =============================================================================
# TRANSACTION TYPES (CONSTANTS)
# =============================================================================

TXN_EARNED = "earned"
TXN_SPENT = "spent"
TXN_REFUNDED = "refunded"
TXN_EXPIRED = "expired"

VALID_TRANSACTION_TYPES = [TXN_EARNED, TXN_SPENT, TXN_REFUNDED, TXN_EXPIRED]

MAX_HISTORY_LIMIT = 200


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class PointsRules:
    points_per_dollar: Decimal
    min_order_cents: int
    signup_bonus_points: int = 0
    referral_bonus_points: int = 0
    points_expiry_months: int | None = None

    def to_dict(self) -> dict:
        return {
            "points_per_dollar": float(self.points_per_dollar),
            "min_order_for_points": float(Decimal(self.min_order_cents) / 100),
            "min_order_cents": self.min_order_cents,
            "signup_bonus_points": self.signup_bonus_points,
            "referral_bonus_points": self.referral_bonus_points,
            "points_expiry_months": self.points_expiry_months,
        }


@dataclass
class AwardResult:
    status: str  # awarded, not_qualified, already_awarded
    points_earned: int = 0
    transaction: PointsTransaction | None = None
    points_rate: Decimal | None = None

    @property
    def success(self) -> bool:
        return self.status == "awarded"

    def to_dict(self) -> dict:
        messages = {
            "awarded": "Points awarded",
            "not_qualified": "Order does not qualify for points",
            "already_awarded": "Points were already awarded for this order",
        }
        return {
            "success": self.success,
            "status": self.status,
            "message": messages[self.status],
            "points_earned": self.points_earned,
            "points_rate": float(self.points_rate) if self.points_rate is not None else None,
            "transaction": self.transaction.to_dict() if self.transaction else None,
        }


@dataclass
class SpendResult:
    status: str  # spent, insufficient_balance
    points_requested: int
    current_balance: int
    new_balance: int | None = None
    transaction: PointsTransaction | None = None

    @property
    def success(self) -> bool:
        return self.status == "spent"

    def to_dict(self) -> dict:
        if not self.success:
            return {
                "success": False,
                "status": self.status,
                "error": "Insufficient points balance",
                "current_balance": self.current_balance,
                "requested_amount": self.points_requested,
            }
        return {
            "success": True,
            "status": self.status,
            "points_spent": self.points_requested,
            "new_balance": self.new_balance,
            "transaction": self.transaction.to_dict() if self.transaction else None,
        }


@dataclass
class RefundResult:
    status: str  # refunded, not_found, already_refunded
    points_refunded: int = 0
    transaction: PointsTransaction | None = None

    @property
    def success(self) -> bool:
        return self.status == "refunded"

    def to_dict(self) -> dict:
        messages = {
            "refunded": "Points refunded",
            "not_found": "No points found for this order to refund",
            "already_refunded": "Points were already refunded for this order",
        }
        return {
            "success": self.success,
            "status": self.status,
            "message": messages[self.status],
            "points_refunded": self.points_refunded,
            "transaction": self.transaction.to_dict() if self.transaction else None,
        }


# =============================================================================
# CONFIGURATION
# =============================================================================

def _default_rules() -> PointsRules:
    cfg = current_app.config
    return PointsRules(
        points_per_dollar=Decimal(str(cfg.get("POINTS_PER_DOLLAR", "1.00"))),
        min_order_cents=int(cfg.get("MIN_ORDER_FOR_POINTS_CENTS", 0)),
        signup_bonus_points=int(cfg.get("SIGNUP_BONUS_POINTS", 0)),
        referral_bonus_points=0,
        points_expiry_months=cfg.get("POINTS_EXPIRY_MONTHS"),
    )


def _active_config_row() -> PointsConfig | None:
    return (
        db.session.query(PointsConfig)
        .filter_by(is_active=True)
        .order_by(PointsConfig.id.desc())
        .first()
    )


def get_points_config() -> PointsRules:
    """Active earning rules; falls back to app config defaults when none saved."""
    row = _active_config_row()
    if row is None:
        return _default_rules()
    return PointsRules(
        points_per_dollar=Decimal(row.points_per_dollar),
        min_order_cents=row.min_order_cents,
        signup_bonus_points=row.signup_bonus_points,
        referral_bonus_points=row.referral_bonus_points,
        points_expiry_months=row.points_expiry_months,
    )


def update_points_config(data: dict) -> PointsRules:
    """
    Save new earning rules. Only keys present in data are changed.

    Accepts: points_per_dollar, min_order_for_points (dollars),
    signup_bonus_points, referral_bonus_points, points_expiry_months (null
    disables expiry).
    """
    current = get_points_config()
    row = _active_config_row()
    if row is None:
        row = PointsConfig(
            points_per_dollar=current.points_per_dollar,
            min_order_cents=current.min_order_cents,
            signup_bonus_points=current.signup_bonus_points,
            referral_bonus_points=current.referral_bonus_points,
            points_expiry_months=current.points_expiry_months,
            is_active=True,
        )

    if "points_per_dollar" in data:
        try:
            rate = Decimal(str(data["points_per_dollar"]))
        except (InvalidOperation, ValueError):
            raise ValidationError("points_per_dollar must be a number")
        if not rate.is_finite() or rate < 0:
            raise ValidationError("points_per_dollar must be zero or positive")
        row.points_per_dollar = rate
    if "min_order_for_points" in data:
        row.min_order_cents = to_cents(data["min_order_for_points"], "min_order_for_points", allow_zero=True)
    if "signup_bonus_points" in data:
        row.signup_bonus_points = parse_int(data["signup_bonus_points"], "signup_bonus_points", minimum=0)
    if "referral_bonus_points" in data:
        row.referral_bonus_points = parse_int(data["referral_bonus_points"], "referral_bonus_points", minimum=0)
    if "points_expiry_months" in data:
        row.points_expiry_months = parse_optional_int(data["points_expiry_months"], "points_expiry_months", minimum=1)

    db.session.add(row)
    db.session.commit()
    return get_points_config()


# =============================================================================
# CALCULATION
# =============================================================================

def calculate_points(order_amount_cents: int, rules: PointsRules | None = None) -> int:
    """
    Points earned for an order total.

    0 below the minimum order; otherwise floor(dollars * points_per_dollar),
    never negative.
    """
    rules = rules or get_points_config()
    if order_amount_cents < rules.min_order_cents:
        return 0
    points = (Decimal(order_amount_cents) * rules.points_per_dollar / 100).to_integral_value(rounding=ROUND_FLOOR)
    return max(0, int(points))


# =============================================================================
# LEDGER WRITES
# =============================================================================

def _locked_account(user_id: int) -> PointsAccount:
    """Fetch the user's account with a row lock, creating it on first use."""
    account = lock_for_update(db.session.query(PointsAccount).filter_by(user_id=user_id)).first()
    if account is None:
        account = PointsAccount(
            user_id=user_id,
            points_balance=0,
            lifetime_points_earned=0,
            lifetime_points_spent=0,
        )
        db.session.add(account)
        db.session.flush()
    return account


def _append(
    account: PointsAccount,
    *,
    transaction_type: str,
    points_amount: int,
    order_id: int | None = None,
    description: str | None = None,
    points_rate: Decimal | None = None,
    order_amount_cents: int | None = None,
    expires_at: datetime | None = None,
    reverses_transaction_id: int | None = None,
) -> PointsTransaction:
    """Append a ledger row and apply it to the cached account. Caller commits."""
    txn = PointsTransaction(
        user_id=account.user_id,
        order_id=order_id,
        transaction_type=transaction_type,
        points_amount=points_amount,
        points_rate=points_rate,
        order_amount_cents=order_amount_cents,
        description=description,
        expires_at=expires_at,
        reverses_transaction_id=reverses_transaction_id,
    )
    db.session.add(txn)

    account.points_balance += points_amount
    if transaction_type == TXN_EARNED:
        account.lifetime_points_earned += points_amount
    elif transaction_type == TXN_REFUNDED:
        # A refund reverses an award, so it also comes off lifetime earnings
        account.lifetime_points_earned += points_amount
    elif transaction_type == TXN_SPENT:
        account.lifetime_points_spent += -points_amount

    db.session.flush()
    return txn


def _order_transaction(order_id: int, transaction_type: str) -> PointsTransaction | None:
    return (
        db.session.query(PointsTransaction)
        .filter_by(order_id=order_id, transaction_type=transaction_type)
        .first()
    )


def award_points(
    user_id: int,
    order_id: int,
    order_amount_cents: int,
    *,
    now: datetime | None = None,
) -> AwardResult:
    """
    Award points for an order.

    Returns not_qualified (not an error) when the order earns nothing, and
    already_awarded without writing when the order already has an earned row.
    Stamps expires_at when the rules set points_expiry_months.
    """
    rules = get_points_config()
    points = calculate_points(order_amount_cents, rules)
    if points <= 0:
        return AwardResult(status="not_qualified", points_rate=rules.points_per_dollar)

    def _op():
        existing = _order_transaction(order_id, TXN_EARNED)
        if existing:
            return AwardResult(
                status="already_awarded",
                points_earned=existing.points_amount,
                transaction=existing,
                points_rate=existing.points_rate,
            )

        expires_at = None
        if rules.points_expiry_months:
            expires_at = (now or utcnow()) + relativedelta(months=rules.points_expiry_months)

        account = _locked_account(user_id)
        txn = _append(
            account,
            transaction_type=TXN_EARNED,
            points_amount=points,
            order_id=order_id,
            description=f"Points earned from order {order_id}",
            points_rate=rules.points_per_dollar,
            order_amount_cents=order_amount_cents,
            expires_at=expires_at,
        )
        db.session.commit()
        return AwardResult(status="awarded", points_earned=points, transaction=txn, points_rate=rules.points_per_dollar)

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # Lost a race with a concurrent award for the same order
        db.session.rollback()
        existing = _order_transaction(order_id, TXN_EARNED)
        if existing is None:
            raise
        return AwardResult(
            status="already_awarded",
            points_earned=existing.points_amount,
            transaction=existing,
            points_rate=existing.points_rate,
        )


def award_signup_bonus(user_id: int) -> PointsTransaction | None:
    """Credit the configured signup bonus. Returns None when the bonus is 0."""
    rules = get_points_config()
    if rules.signup_bonus_points <= 0:
        return None

    def _op():
        account = _locked_account(user_id)
        txn = _append(
            account,
            transaction_type=TXN_EARNED,
            points_amount=rules.signup_bonus_points,
            description="Signup bonus",
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)


def spend_points(
    user_id: int,
    points_to_spend: int,
    order_id: int | None = None,
    description: str = "Points spent",
) -> SpendResult:
    """
    Spend points from a user's balance.

    Returns insufficient_balance (no ledger change) when the balance is too
    low. The balance check and the append run under the same account lock.
    """
    if isinstance(points_to_spend, bool) or not isinstance(points_to_spend, int) or points_to_spend <= 0:
        raise PointsError("Points to spend must be a positive integer")

    def _op():
        account = lock_for_update(db.session.query(PointsAccount).filter_by(user_id=user_id)).first()
        balance = account.points_balance if account else 0
        if balance < points_to_spend:
            db.session.rollback()
            return SpendResult(
                status="insufficient_balance",
                points_requested=points_to_spend,
                current_balance=balance,
            )

        txn = _append(
            account,
            transaction_type=TXN_SPENT,
            points_amount=-points_to_spend,
            order_id=order_id,
            description=description,
        )
        db.session.commit()
        return SpendResult(
            status="spent",
            points_requested=points_to_spend,
            current_balance=balance,
            new_balance=account.points_balance,
            transaction=txn,
        )

    return run_with_retry(_op)


def refund_points(user_id: int, order_id: int) -> RefundResult:
    """
    Reverse the points earned by an order.

    Appends a refunded row with the exact negation of the earned row, so an
    award followed by a refund leaves the balance where it started.
    """
    def _op():
        earned = (
            db.session.query(PointsTransaction)
            .filter_by(user_id=user_id, order_id=order_id, transaction_type=TXN_EARNED)
            .first()
        )
        if earned is None:
            return RefundResult(status="not_found")

        prior = _order_transaction(order_id, TXN_REFUNDED)
        if prior:
            return RefundResult(status="already_refunded", points_refunded=-prior.points_amount, transaction=prior)

        account = _locked_account(user_id)
        txn = _append(
            account,
            transaction_type=TXN_REFUNDED,
            points_amount=-earned.points_amount,
            order_id=order_id,
            description=f"Points refunded for cancelled order {order_id}",
            reverses_transaction_id=earned.id,
        )
        db.session.commit()
        return RefundResult(status="refunded", points_refunded=earned.points_amount, transaction=txn)

    try:
        return run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        prior = _order_transaction(order_id, TXN_REFUNDED)
        if prior is None:
            raise
        return RefundResult(status="already_refunded", points_refunded=-prior.points_amount, transaction=prior)


def expire_points(now: datetime | None = None) -> int:
    """
    Expire earned rows whose expires_at has passed.

    Each expired row reverses at most the points still on the balance, so a
    balance never goes negative through expiry. Earned rows that were already
    refunded or expired are skipped. Returns the number of rows written.
    """
    now = now or utcnow()
    reversed_ids = select(PointsTransaction.reverses_transaction_id).where(
        PointsTransaction.reverses_transaction_id.isnot(None)
    )
    due = (
        db.session.query(PointsTransaction)
        .filter(
            PointsTransaction.transaction_type == TXN_EARNED,
            PointsTransaction.expires_at.isnot(None),
            PointsTransaction.expires_at <= now,
            PointsTransaction.id.notin_(reversed_ids),
        )
        .order_by(PointsTransaction.expires_at, PointsTransaction.id)
        .all()
    )

    written = 0
    for earned in due:
        def _op(earned=earned):
            account = _locked_account(earned.user_id)
            amount = min(earned.points_amount, max(account.points_balance, 0))
            if amount <= 0:
                db.session.rollback()
                return False
            _append(
                account,
                transaction_type=TXN_EXPIRED,
                points_amount=-amount,
                order_id=earned.order_id,
                description="Points expired",
                reverses_transaction_id=earned.id,
            )
            db.session.commit()
            return True

        if run_with_retry(_op):
            written += 1
    return written


# =============================================================================
# QUERIES
# =============================================================================

def get_user_points(user_id: int) -> dict:
    """Current balance; a user with no ledger activity gets a zero record."""
    account = db.session.query(PointsAccount).filter_by(user_id=user_id).first()
    if account is None:
        return {
            "user_id": user_id,
            "points_balance": 0,
            "lifetime_points_earned": 0,
            "lifetime_points_spent": 0,
        }
    return {
        "user_id": user_id,
        "points_balance": account.points_balance,
        "lifetime_points_earned": account.lifetime_points_earned,
        "lifetime_points_spent": account.lifetime_points_spent,
    }


def get_points_history(user_id: int, limit: int = 50) -> list[PointsTransaction]:
    """Most recent transactions first."""
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    return (
        db.session.query(PointsTransaction)
        .filter_by(user_id=user_id)
        .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
        .limit(limit)
        .all()
    )


def recompute_balance(user_id: int) -> int:
    """Sum of the ledger for a user (source of truth for the cached balance)."""
    total = (
        db.session.query(func.coalesce(func.sum(PointsTransaction.points_amount), 0))
        .filter(PointsTransaction.user_id == user_id)
        .scalar()
    )
    return int(total)


def audit_balances() -> list[dict]:
    """Accounts whose cached balance disagrees with the ledger sum."""
    mismatches = []
    for account in db.session.query(PointsAccount).order_by(PointsAccount.user_id).all():
        ledger_total = recompute_balance(account.user_id)
        if ledger_total != account.points_balance:
            mismatches.append({
                "user_id": account.user_id,
                "cached_balance": account.points_balance,
                "ledger_balance": ledger_total,
            })
    return mismatches
