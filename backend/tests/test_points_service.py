"""
Loyalty points ledger tests.

Verifies:
- Points calculation (floor, minimum order)
- Award / spend / refund keep the cached balance equal to the ledger sum
- Award and refund replays write no rows
- Expiry never takes a balance below zero
"""

from datetime import datetime

import pytest

from storefront.models import PointsAccount, PointsTransaction
from storefront.services import points_service
from storefront.services.points_service import PointsError


def _rows(db_session, user_id):
    return db_session.query(PointsTransaction).filter_by(user_id=user_id).count()


def _set_rules(**data):
    return points_service.update_points_config(data)


# =============================================================================
# CALCULATION
# =============================================================================


class TestCalculatePoints:

    def test_floor_of_dollars_times_rate(self, db_session):
        rules = _set_rules(points_per_dollar=1, min_order_for_points=10)
        assert points_service.calculate_points(2340, rules) == 23

    def test_fractional_rate(self, db_session):
        rules = _set_rules(points_per_dollar=1.5, min_order_for_points=0)
        assert points_service.calculate_points(999, rules) == 14

    def test_below_minimum_earns_nothing(self, db_session):
        rules = _set_rules(points_per_dollar=1, min_order_for_points=10)
        assert points_service.calculate_points(999, rules) == 0

    def test_minimum_is_inclusive(self, db_session):
        rules = _set_rules(points_per_dollar=2, min_order_for_points=10)
        assert points_service.calculate_points(1000, rules) == 20

    def test_defaults_come_from_app_config(self, db_session):
        rules = points_service.get_points_config()
        assert float(rules.points_per_dollar) == 1.0
        assert rules.min_order_cents == 0
        assert rules.points_expiry_months is None


class TestPointsConfig:

    def test_update_only_touches_given_keys(self, db_session):
        _set_rules(points_per_dollar=2, signup_bonus_points=25)
        rules = _set_rules(min_order_for_points=5)
        assert float(rules.points_per_dollar) == 2.0
        assert rules.signup_bonus_points == 25
        assert rules.min_order_cents == 500

    def test_negative_rate_rejected(self, db_session):
        from storefront.validation import ValidationError
        with pytest.raises(ValidationError):
            _set_rules(points_per_dollar=-1)


# =============================================================================
# AWARD / REFUND
# =============================================================================


class TestAwardAndRefund:

    def test_award_credits_balance(self, db_session, customer):
        _set_rules(points_per_dollar=1, min_order_for_points=10)

        result = points_service.award_points(customer.id, 101, 2340)

        assert result.status == "awarded"
        assert result.points_earned == 23
        balance = points_service.get_user_points(customer.id)
        assert balance["points_balance"] == 23
        assert balance["lifetime_points_earned"] == 23
        assert result.transaction.description == "Points earned from order 101"

    def test_order_below_minimum_is_not_qualified(self, db_session, customer):
        _set_rules(points_per_dollar=1, min_order_for_points=10)

        result = points_service.award_points(customer.id, 102, 500)

        assert result.status == "not_qualified"
        assert result.to_dict()["success"] is False
        assert result.to_dict()["message"] == "Order does not qualify for points"
        assert _rows(db_session, customer.id) == 0

    def test_award_replay_writes_nothing(self, db_session, customer):
        points_service.award_points(customer.id, 103, 5000)
        again = points_service.award_points(customer.id, 103, 5000)

        assert again.status == "already_awarded"
        assert _rows(db_session, customer.id) == 1
        assert points_service.get_user_points(customer.id)["points_balance"] == 50

    def test_award_then_refund_restores_balance(self, db_session, customer):
        points_service.award_points(customer.id, 104, 4000)
        assert points_service.get_user_points(customer.id)["points_balance"] == 40

        result = points_service.refund_points(customer.id, 104)

        assert result.status == "refunded"
        assert result.points_refunded == 40
        assert points_service.get_user_points(customer.id)["points_balance"] == 0
        refund_row = result.transaction
        assert refund_row.points_amount == -40
        assert refund_row.reverses_transaction_id is not None

    def test_refund_replay_writes_nothing(self, db_session, customer):
        points_service.award_points(customer.id, 105, 4000)
        points_service.refund_points(customer.id, 105)

        again = points_service.refund_points(customer.id, 105)

        assert again.status == "already_refunded"
        assert _rows(db_session, customer.id) == 2
        assert points_service.get_user_points(customer.id)["points_balance"] == 0

    def test_refund_without_award_is_not_found(self, db_session, customer):
        result = points_service.refund_points(customer.id, 999)
        assert result.status == "not_found"
        assert result.to_dict()["message"] == "No points found for this order to refund"
        assert _rows(db_session, customer.id) == 0

    def test_award_stamps_expiry_when_configured(self, db_session, customer):
        _set_rules(points_expiry_months=1)
        now = datetime(2030, 1, 31, 12, 0, 0)

        result = points_service.award_points(customer.id, 106, 1000, now=now)

        # Calendar months: Jan 31 + 1 month lands on Feb 28
        assert result.transaction.expires_at.replace(tzinfo=None) == datetime(2030, 2, 28, 12, 0, 0)


# =============================================================================
# SPEND
# =============================================================================


class TestSpend:

    def test_insufficient_balance_changes_nothing(self, db_session, customer):
        points_service.award_points(customer.id, 201, 5000)

        result = points_service.spend_points(customer.id, 80)

        assert result.status == "insufficient_balance"
        body = result.to_dict()
        assert body["error"] == "Insufficient points balance"
        assert body["current_balance"] == 50
        assert body["requested_amount"] == 80
        assert points_service.get_user_points(customer.id)["points_balance"] == 50
        assert _rows(db_session, customer.id) == 1

    def test_spend_appends_negative_row(self, db_session, customer):
        points_service.award_points(customer.id, 202, 5000)

        result = points_service.spend_points(customer.id, 30, order_id=203, description="Free drink")

        assert result.success
        assert result.new_balance == 20
        assert result.transaction.points_amount == -30
        account = db_session.query(PointsAccount).filter_by(user_id=customer.id).one()
        assert account.lifetime_points_spent == 30

    def test_user_without_account_has_zero_balance(self, db_session, customer):
        result = points_service.spend_points(customer.id, 1)
        assert result.status == "insufficient_balance"
        assert result.current_balance == 0

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    def test_non_positive_or_non_integer_rejected(self, db_session, customer, amount):
        with pytest.raises(PointsError):
            points_service.spend_points(customer.id, amount)


# =============================================================================
# LEDGER CONSISTENCY
# =============================================================================


class TestLedgerConsistency:

    def test_cached_balance_matches_ledger_after_mixed_activity(self, db_session, customer):
        points_service.award_points(customer.id, 301, 10000)
        points_service.spend_points(customer.id, 25)
        points_service.award_points(customer.id, 302, 3300)
        points_service.refund_points(customer.id, 301)

        cached = points_service.get_user_points(customer.id)["points_balance"]
        assert cached == points_service.recompute_balance(customer.id)
        assert points_service.audit_balances() == []

    def test_audit_reports_drift(self, db_session, customer):
        points_service.award_points(customer.id, 303, 1000)
        account = db_session.query(PointsAccount).filter_by(user_id=customer.id).one()
        account.points_balance = 999
        db_session.commit()

        mismatches = points_service.audit_balances()

        assert mismatches == [{"user_id": customer.id, "cached_balance": 999, "ledger_balance": 10}]

    def test_history_newest_first_and_limited(self, db_session, customer):
        for order_id in (401, 402, 403):
            points_service.award_points(customer.id, order_id, 1000)

        history = points_service.get_points_history(customer.id, limit=2)

        assert [t.order_id for t in history] == [403, 402]

    def test_signup_bonus(self, db_session, customer):
        assert points_service.award_signup_bonus(customer.id) is None

        _set_rules(signup_bonus_points=50)
        txn = points_service.award_signup_bonus(customer.id)

        assert txn.points_amount == 50
        assert txn.order_id is None
        assert points_service.get_user_points(customer.id)["points_balance"] == 50


# =============================================================================
# EXPIRY
# =============================================================================


class TestExpiry:

    def test_expired_points_are_reversed_once(self, db_session, customer):
        _set_rules(points_expiry_months=1)
        points_service.award_points(customer.id, 501, 2000, now=datetime(2030, 1, 1))

        written = points_service.expire_points(now=datetime(2030, 3, 1))
        again = points_service.expire_points(now=datetime(2030, 3, 1))

        assert written == 1
        assert again == 0
        assert points_service.get_user_points(customer.id)["points_balance"] == 0

    def test_expiry_bounded_by_balance(self, db_session, customer):
        _set_rules(points_expiry_months=1)
        points_service.award_points(customer.id, 502, 2000, now=datetime(2030, 1, 1))
        points_service.spend_points(customer.id, 15)

        points_service.expire_points(now=datetime(2030, 3, 1))

        expired = db_session.query(PointsTransaction).filter_by(
            user_id=customer.id, transaction_type="expired"
        ).one()
        assert expired.points_amount == -5
        assert points_service.get_user_points(customer.id)["points_balance"] == 0

    def test_unexpired_points_untouched(self, db_session, customer):
        _set_rules(points_expiry_months=6)
        points_service.award_points(customer.id, 503, 2000, now=datetime(2030, 1, 1))

        assert points_service.expire_points(now=datetime(2030, 3, 1)) == 0
        assert points_service.get_user_points(customer.id)["points_balance"] == 20
