"""
Transaction kinds and their balance effects.

Verifies:
- Purchases credit the customer, or hold the credit for a flagged cashier
- Suspicious toggling reverses and reapplies a record's points
- Redemptions are two-phase and processed exactly once
- Transfers move exactly +/- amount, atomically
- Adjustments cite an existing record and may consume one-time promotions
- No operation leaves a balance below zero
"""

import logging

import pytest

from loyalty.errors import (
    ConflictError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidRequestError,
    NotFoundError,
)
from loyalty.models.promotions import PROMOTION_TYPE_AUTOMATIC
from loyalty.services import promotions_service, transactions_service


# =============================================================================
# PURCHASES
# =============================================================================


class TestPurchase:

    def test_credits_customer(self, regular, cashier):
        txn = transactions_service.create_purchase(cashier, regular.utorid, 19.99, remark="coffee")

        assert txn.points == 80
        assert txn.created_by == cashier.utorid
        assert txn.remark == "coffee"
        assert txn.suspicious is False
        assert regular.points == 180

    def test_flagged_cashier_purchase_is_held(self, regular, make_user, manager):
        shady = make_user("shady001", role="cashier", suspicious=True)

        txn = transactions_service.create_purchase(shady, regular.utorid, 19.99)

        assert txn.points == 80
        assert txn.suspicious is True
        assert regular.points == 100

        transactions_service.set_suspicious(manager, txn.id, False)
        assert regular.points == 180

    def test_regular_user_cannot_ring_up(self, regular, other_regular):
        with pytest.raises(ForbiddenError):
            transactions_service.create_purchase(regular, other_regular.utorid, 5)

    def test_unknown_customer(self, cashier):
        with pytest.raises(NotFoundError):
            transactions_service.create_purchase(cashier, "nobody12", 5)


# =============================================================================
# SUSPICIOUS FLAG
# =============================================================================


class TestSuspiciousToggle:

    def test_flag_reverses_and_clear_restores(self, make_user, cashier, manager):
        customer = make_user("customer")
        txn = transactions_service.create_purchase(cashier, customer.utorid, 19.99)
        assert customer.points == 80

        transactions_service.set_suspicious(manager, txn.id, True)
        assert customer.points == 0

        transactions_service.set_suspicious(manager, txn.id, False)
        assert customer.points == 80

    def test_setting_current_value_is_a_no_op(self, regular, cashier, manager):
        txn = transactions_service.create_purchase(cashier, regular.utorid, 10)
        transactions_service.set_suspicious(manager, txn.id, False)
        assert regular.points == 140

    def test_transfer_cannot_be_flagged(self, regular, other_regular, manager):
        txn = transactions_service.create_transfer(regular, other_regular.utorid, 10)
        with pytest.raises(InvalidRequestError):
            transactions_service.set_suspicious(manager, txn.id, True)

    def test_cashier_cannot_flag(self, regular, cashier):
        txn = transactions_service.create_purchase(cashier, regular.utorid, 10)
        with pytest.raises(ForbiddenError):
            transactions_service.set_suspicious(cashier, txn.id, True)

    def test_reversal_cannot_overdraw(self, make_user, other_regular, cashier, manager):
        customer = make_user("customer")
        txn = transactions_service.create_purchase(cashier, customer.utorid, 10)
        transactions_service.create_transfer(customer, other_regular.utorid, 40)
        assert customer.points == 0

        with pytest.raises(InsufficientBalanceError):
            transactions_service.set_suspicious(manager, txn.id, True)
        assert customer.points == 0
        assert txn.suspicious is False


# =============================================================================
# REDEMPTIONS
# =============================================================================


class TestRedemption:

    def test_two_phase_and_exactly_once(self, regular, cashier):
        txn = transactions_service.request_redemption(regular, 100)
        assert txn.points == -100
        assert txn.related_id is None
        assert regular.points == 100

        processed = transactions_service.process_redemption(cashier, txn.id)
        assert processed.related_id == cashier.id
        assert processed.to_dict()["processedBy"] == cashier.utorid
        assert regular.points == 0

        with pytest.raises(ConflictError):
            transactions_service.process_redemption(cashier, txn.id)
        assert regular.points == 0

    def test_request_above_balance(self, regular):
        with pytest.raises(InsufficientBalanceError):
            transactions_service.request_redemption(regular, 101)

    def test_unverified_user_cannot_redeem(self, make_user):
        user = make_user("unverif1", points=50, verified=False)
        with pytest.raises(ForbiddenError):
            transactions_service.request_redemption(user, 10)

    def test_processing_non_redemption(self, regular, cashier):
        txn = transactions_service.create_purchase(cashier, regular.utorid, 10)
        with pytest.raises(InvalidRequestError):
            transactions_service.process_redemption(cashier, txn.id)


# =============================================================================
# TRANSFERS
# =============================================================================


class TestTransfer:

    def test_moves_exact_amount(self, regular, other_regular):
        txn = transactions_service.create_transfer(regular, other_regular.utorid, 30, "lunch")

        assert regular.points == 70
        assert other_regular.points == 30
        assert txn.utorid == regular.utorid
        assert txn.points == -30
        assert txn.related_id == other_regular.id
        assert txn.to_dict()["recipient"] == other_regular.utorid

    def test_insufficient_balance_changes_nothing(self, regular, other_regular):
        with pytest.raises(InsufficientBalanceError):
            transactions_service.create_transfer(regular, other_regular.utorid, 101)
        assert regular.points == 100
        assert other_regular.points == 0

    def test_refusal_is_logged(self, regular, other_regular, caplog):
        caplog.set_level(logging.INFO, logger="loyalty")
        with pytest.raises(InsufficientBalanceError):
            transactions_service.create_transfer(regular, other_regular.utorid, 101)
        assert any("InsufficientBalance" in r.getMessage() for r in caplog.records)

    def test_unverified_sender(self, make_user, other_regular):
        sender = make_user("unverif1", points=50, verified=False)
        with pytest.raises(ForbiddenError):
            transactions_service.create_transfer(sender, other_regular.utorid, 10)

    def test_self_transfer(self, regular):
        with pytest.raises(InvalidRequestError):
            transactions_service.create_transfer(regular, regular.utorid, 10)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_amount_must_be_positive(self, regular, other_regular, amount):
        with pytest.raises(InvalidRequestError):
            transactions_service.create_transfer(regular, other_regular.utorid, amount)

    def test_recipient_sees_received_transfer(self, regular, other_regular):
        transactions_service.create_transfer(regular, other_regular.utorid, 30)
        count, txns = transactions_service.list_user_transactions(other_regular, {})
        assert count == 1
        assert txns[0].type == "transfer"


# =============================================================================
# ADJUSTMENTS
# =============================================================================


class TestAdjustment:

    def test_debit_adjustment(self, regular, cashier, manager):
        purchase = transactions_service.create_purchase(cashier, regular.utorid, 10)
        adj = transactions_service.create_adjustment(manager, regular.utorid, -30, purchase.id, remark="refund")

        assert adj.related_id == purchase.id
        assert adj.points == -30
        assert regular.points == 110

    def test_related_transaction_must_exist(self, regular, manager):
        with pytest.raises(NotFoundError):
            transactions_service.create_adjustment(manager, regular.utorid, 10, 999)

    def test_cashier_cannot_adjust(self, regular, cashier):
        purchase = transactions_service.create_purchase(cashier, regular.utorid, 10)
        with pytest.raises(ForbiddenError):
            transactions_service.create_adjustment(cashier, regular.utorid, 10, purchase.id)

    def test_zero_amount(self, regular, cashier, manager):
        purchase = transactions_service.create_purchase(cashier, regular.utorid, 10)
        with pytest.raises(InvalidRequestError):
            transactions_service.create_adjustment(manager, regular.utorid, 0, purchase.id)

    def test_debit_cannot_overdraw(self, regular, cashier, manager):
        purchase = transactions_service.create_purchase(cashier, regular.utorid, 10)
        with pytest.raises(InsufficientBalanceError):
            transactions_service.create_adjustment(manager, regular.utorid, -141, purchase.id)

        assert regular.points == 140
        count, _ = transactions_service.list_transactions(manager, {"type": "adjustment"})
        assert count == 0

    def test_cited_promotions_are_consumed(self, regular, cashier, manager, make_promotion):
        promo = make_promotion(points=10)
        purchase = transactions_service.create_purchase(cashier, regular.utorid, 10)

        adj = transactions_service.create_adjustment(
            manager, regular.utorid, 20, purchase.id, promotion_ids=[promo.id]
        )
        assert adj.promotion_ids == [promo.id]
        assert regular.points == 160
        assert promotions_service.used_promotion_ids(regular.id) == {promo.id}

        with pytest.raises(InvalidRequestError):
            transactions_service.create_adjustment(
                manager, regular.utorid, 5, purchase.id, promotion_ids=[promo.id]
            )
        assert regular.points == 160

    def test_automatic_promotion_cannot_be_cited(self, regular, cashier, manager, make_promotion):
        promo = make_promotion(type=PROMOTION_TYPE_AUTOMATIC, points=10)
        purchase = transactions_service.create_purchase(cashier, regular.utorid, 10)
        with pytest.raises(InvalidRequestError):
            transactions_service.create_adjustment(
                manager, regular.utorid, 5, purchase.id, promotion_ids=[promo.id]
            )


# =============================================================================
# LISTING
# =============================================================================


class TestListing:

    def test_filters(self, regular, other_regular, cashier, manager):
        transactions_service.create_purchase(cashier, regular.utorid, 10)
        transactions_service.create_purchase(cashier, other_regular.utorid, 100)
        transactions_service.create_transfer(regular, other_regular.utorid, 5)

        count, _ = transactions_service.list_transactions(manager, {"type": "purchase"})
        assert count == 2

        count, txns = transactions_service.list_transactions(manager, {"amount": "100", "operator": "gte"})
        assert [t.points for t in txns] == [400]

        count, _ = transactions_service.list_transactions(manager, {"createdBy": cashier.utorid})
        assert count == 2

    def test_related_id_needs_non_purchase_type(self, manager):
        with pytest.raises(InvalidRequestError):
            transactions_service.list_transactions(manager, {"relatedId": "1"})

    def test_pagination(self, regular, cashier, manager):
        for _ in range(3):
            transactions_service.create_purchase(cashier, regular.utorid, 1)
        count, txns = transactions_service.list_transactions(manager, {"page": "2", "limit": "2"})
        assert count == 3
        assert len(txns) == 1

    def test_regular_cannot_list_all(self, regular):
        with pytest.raises(ForbiddenError):
            transactions_service.list_transactions(regular, {})
