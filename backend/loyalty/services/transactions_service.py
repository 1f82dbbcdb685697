# Overview: Service-layer operations for transactions; the five ledger kinds and their reversal rules.

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..errors import (
    ConflictError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidRequestError,
    NotFoundError,
)
from ..extensions import db
from ..models import Event, Promotion, Transaction, User
from ..models.transactions import (
    SUSPICIOUS_TYPES,
    TXN_ADJUSTMENT,
    TXN_EVENT,
    TXN_PURCHASE,
    TXN_REDEMPTION,
    TXN_TRANSFER,
    TXN_TYPES,
)
from ..permissions import policy
from ..validation import (
    UTORID_RE,
    parse_bool_arg,
    parse_int,
    parse_number,
    parse_pagination,
    parse_str,
)
from . import ledger_service, promotions_service
from .concurrency import lock_for_update, run_atomic
"""
Transaction State Machine

KINDS (each creation is one store transaction):
- purchase:   credit U by the evaluated total; withheld if the cashier is flagged
- adjustment: signed credit/debit of U, cites an existing transaction
- transfer:   debit sender, credit recipient; one record, sender's view
- redemption: two-phase; request records intent only, processing debits
- event:      credit each recipient from the event's budget

REVERSAL:
- the suspicious flag on purchase/adjustment/event withholds or reverses the
  record's point delta; transfer and redemption ignore it.

Every operation re-checks the actor's role as passed in (re-read per request).
"""


logger = logging.getLogger(__name__)


def _load_actor(actor: User) -> User:
    """The actor row as currently stored; the role is never taken from a cache."""
    fresh = db.session.get(User, actor.id, populate_existing=True)
    if fresh is None:
        raise ForbiddenError("Actor no longer exists")
    return fresh


def _remark(value) -> Optional[str]:
    return parse_str(value, "remark", allow_none=True)


# =============================================================================
# CREATION
# =============================================================================


def create_purchase(
    actor: User,
    utorid: str,
    spent,
    promotion_ids: Sequence[int] = (),
    remark: Optional[str] = None,
) -> Transaction:
    """
    Ring up a purchase for `utorid`.

    A purchase made by a cashier flagged suspicious is recorded with its
    computed points and marked suspicious; the credit is withheld until a
    manager clears the flag. Claimed one-time promotions are consumed either way.
    """
    spent = parse_number(spent, "spent")
    remark = _remark(remark)

    def _op():
        cashier = _load_actor(actor)
        policy.require_permission(cashier.role, "CREATE_PURCHASE")

        user = ledger_service.get_user_for_update(utorid)
        evaluation = promotions_service.evaluate_purchase(user, spent, promotion_ids)

        held = bool(cashier.suspicious)
        txn = ledger_service.create_transaction_record(
            kind=TXN_PURCHASE,
            utorid=user.utorid,
            points=evaluation.total,
            created_by=cashier.utorid,
            spent=evaluation.spent,
            remark=remark,
            suspicious=held,
            promotions=evaluation.consumed,
        )
        promotions_service.mark_promotions_used(user, evaluation.consumed)
        if not held:
            ledger_service.credit(user, evaluation.total)
        return txn

    return run_atomic(_op)


def create_adjustment(
    actor: User,
    utorid: str,
    amount: int,
    related_id: int,
    promotion_ids: Sequence[int] = (),
    remark: Optional[str] = None,
) -> Transaction:
    """Manager correction of `utorid`'s balance, citing an earlier transaction."""
    amount = parse_int(amount, "amount")
    if amount == 0:
        raise InvalidRequestError("amount must be non-zero")
    related_id = parse_int(related_id, "relatedId", minimum=0)
    remark = _remark(remark)

    def _op():
        manager = _load_actor(actor)
        policy.require_permission(manager.role, "CREATE_ADJUSTMENT")

        if db.session.get(Transaction, related_id) is None:
            raise NotFoundError(f"Transaction {related_id} not found")

        user = ledger_service.get_user_for_update(utorid)
        promotions = promotions_service.validate_one_time_promotions(user, promotion_ids)

        txn = ledger_service.create_transaction_record(
            kind=TXN_ADJUSTMENT,
            utorid=user.utorid,
            points=amount,
            created_by=manager.utorid,
            related_id=related_id,
            remark=remark,
            promotions=promotions,
        )
        promotions_service.mark_promotions_used(user, promotions)
        ledger_service.apply_delta(user, amount)
        return txn

    return run_atomic(_op)


def create_transfer(
    actor: User,
    recipient_utorid: str,
    amount: int,
    remark: Optional[str] = None,
) -> Transaction:
    """
    Move points from the actor to `recipient_utorid`.

    One record is written, owned by the sender with points = -amount and
    related_id = recipient id.
    """
    amount = parse_int(amount, "amount")
    if amount <= 0:
        raise InvalidRequestError("amount must be positive")
    remark = _remark(remark)

    def _op():
        sender_row = _load_actor(actor)
        policy.require_permission(sender_row.role, "TRANSFER_POINTS")
        if not sender_row.verified:
            raise ForbiddenError("Only verified users may transfer points")
        if sender_row.utorid == recipient_utorid:
            raise InvalidRequestError("Cannot transfer points to yourself")

        # Lock both rows in a stable order to avoid deadlocks between
        # opposite-direction transfers.
        first, second = sorted([sender_row.utorid, recipient_utorid])
        locked = {first: ledger_service.get_user_for_update(first)}
        locked[second] = ledger_service.get_user_for_update(second)
        sender = locked[sender_row.utorid]
        recipient = locked[recipient_utorid]

        ledger_service.debit(sender, amount)
        ledger_service.credit(recipient, amount)

        return ledger_service.create_transaction_record(
            kind=TXN_TRANSFER,
            utorid=sender.utorid,
            points=-amount,
            created_by=sender.utorid,
            related_id=recipient.id,
            remark=remark,
        )

    return run_atomic(_op)


def request_redemption(actor: User, amount: int, remark: Optional[str] = None) -> Transaction:
    """Record intent to redeem `amount`; the balance is untouched until processed."""
    amount = parse_int(amount, "amount", minimum=0)
    remark = _remark(remark)

    def _op():
        user = ledger_service.get_user_for_update(_load_actor(actor).utorid)
        policy.require_permission(user.role, "REQUEST_REDEMPTION")
        if not user.verified:
            raise ForbiddenError("Only verified users may redeem points")
        if amount > user.points:
            raise InsufficientBalanceError(
                "Redemption exceeds current balance",
                details={"balance": user.points, "requested": amount},
            )
        return ledger_service.create_transaction_record(
            kind=TXN_REDEMPTION,
            utorid=user.utorid,
            points=-amount,
            created_by=user.utorid,
            remark=remark,
        )

    return run_atomic(_op)


def process_redemption(actor: User, transaction_id: int) -> Transaction:
    """
    Finalize a pending redemption: debit the owner and stamp the processor.

    Processing is exactly-once; a second attempt raises ConflictError and
    leaves the balance alone.
    """
    def _op():
        cashier = _load_actor(actor)
        policy.require_permission(cashier.role, "PROCESS_REDEMPTION")

        txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if txn.type != TXN_REDEMPTION:
            raise InvalidRequestError(f"Transaction {transaction_id} is not a redemption")
        if txn.is_processed:
            raise ConflictError(f"Redemption {transaction_id} has already been processed")

        owner = ledger_service.get_user_for_update(txn.utorid)
        ledger_service.apply_delta(owner, txn.points)
        txn.related_id = cashier.id
        db.session.flush()

        logger.info("redemption #%s processed by %s (%d points)", txn.id, cashier.utorid, -txn.points)
        return txn

    return run_atomic(_op)


def award_event_points(
    actor: User,
    event_id: int,
    amount: int,
    target_utorid: Optional[str] = None,
    remark: Optional[str] = None,
) -> list[Transaction]:
    """
    Award `amount` to one named guest, or to every current guest.

    The budget check covers the whole recipient set; either every recipient
    is credited or none is.
    """
    amount = parse_int(amount, "amount")
    if amount <= 0:
        raise InvalidRequestError("amount must be positive")
    remark = _remark(remark)

    def _op():
        awarder = _load_actor(actor)
        event = lock_for_update(db.session.query(Event).filter_by(id=event_id)).first()
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        policy.require_event_manager(awarder.role, awarder.id, [o.id for o in event.organizers])

        if target_utorid:
            recipients = [g for g in event.guests if g.utorid == target_utorid]
            if not recipients:
                raise InvalidRequestError(f"{target_utorid} is not a guest of this event")
        else:
            recipients = list(event.guests)
        if not recipients:
            raise InvalidRequestError("Event has no guests to award")

        total = amount * len(recipients)
        if event.points_remain < total:
            raise InsufficientBalanceError(
                "Event does not have enough points remaining",
                details={"pointsRemain": event.points_remain, "requested": total},
            )

        txns = []
        for guest in recipients:
            user = ledger_service.get_user_for_update(guest.utorid)
            ledger_service.credit(user, amount)
            txns.append(ledger_service.create_transaction_record(
                kind=TXN_EVENT,
                utorid=user.utorid,
                points=amount,
                created_by=awarder.utorid,
                related_id=event.id,
                remark=remark,
            ))

        event.points_remain -= total
        event.points_awarded += total
        db.session.flush()
        return txns

    return run_atomic(_op)


# =============================================================================
# REVIEW
# =============================================================================


def set_suspicious(actor: User, transaction_id: int, suspicious: bool) -> Transaction:
    """
    Toggle review state on a purchase, adjustment or event record.

    false -> true reverses the record's points; true -> false applies them.
    Setting the current value changes nothing.
    """
    if not isinstance(suspicious, bool):
        raise InvalidRequestError("suspicious must be a boolean")

    def _op():
        manager = _load_actor(actor)
        policy.require_permission(manager.role, "FLAG_TRANSACTIONS")

        txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if txn.type not in SUSPICIOUS_TYPES:
            raise InvalidRequestError(f"{txn.type} transactions cannot be flagged")
        if txn.suspicious == suspicious:
            return txn

        owner = ledger_service.get_user_for_update(txn.utorid)
        ledger_service.apply_delta(owner, -txn.points if suspicious else txn.points)
        txn.suspicious = suspicious
        db.session.flush()

        logger.info(
            "transaction #%s marked %s by %s",
            txn.id, "suspicious" if suspicious else "cleared", manager.utorid,
        )
        return txn

    return run_atomic(_op)


# =============================================================================
# READS
# =============================================================================


def _apply_common_filters(query, args):
    """type / relatedId / promotionId / amount+operator, shared by both listings."""
    txn_type = args.get("type")
    if txn_type:
        if txn_type not in TXN_TYPES:
            raise InvalidRequestError(f"Unknown transaction type: {txn_type}")
        query = query.filter(Transaction.type == txn_type)

    related_id = args.get("relatedId")
    if related_id not in (None, ""):
        related_id = parse_int(related_id, "relatedId", minimum=0)
        if not txn_type or txn_type == TXN_PURCHASE:
            raise InvalidRequestError("relatedId requires a type other than purchase")
        query = query.filter(Transaction.related_id == related_id)

    promotion_id = args.get("promotionId")
    if promotion_id not in (None, ""):
        promotion_id = parse_int(promotion_id, "promotionId", minimum=0)
        query = query.filter(Transaction.promotions.any(Promotion.id == promotion_id))

    amount = args.get("amount")
    operator = args.get("operator")
    if (amount is None) != (operator is None):
        raise InvalidRequestError("amount and operator must be given together")
    if operator is not None:
        amount = parse_int(amount, "amount")
        if operator == "gte":
            query = query.filter(Transaction.points >= amount)
        elif operator == "lte":
            query = query.filter(Transaction.points <= amount)
        else:
            raise InvalidRequestError("operator must be 'gte' or 'lte'")
    return query


def _page(query, args) -> tuple[int, list[Transaction]]:
    page, limit = parse_pagination(args)
    count = query.count()
    results = query.order_by(Transaction.id).offset((page - 1) * limit).limit(limit).all()
    return count, results


def list_transactions(actor: User, args) -> tuple[int, list[Transaction]]:
    """Manager listing across all users."""
    policy.require_permission(actor.role, "VIEW_TRANSACTIONS")
    query = db.session.query(Transaction)

    name = args.get("name")
    if name:
        query = query.join(User, Transaction.utorid == User.utorid).filter(
            db.or_(User.utorid.contains(name), User.name.contains(name))
        )

    created_by = args.get("createdBy")
    if created_by:
        parse_str(created_by, "createdBy", pattern=UTORID_RE)
        query = query.filter(Transaction.created_by == created_by)

    suspicious = parse_bool_arg(args.get("suspicious"), "suspicious")
    if suspicious is not None:
        query = query.filter(Transaction.suspicious.is_(suspicious))

    query = _apply_common_filters(query, args)
    return _page(query, args)


def list_user_transactions(user: User, args) -> tuple[int, list[Transaction]]:
    """
    A user's own history: records they own plus transfers they received.
    """
    query = db.session.query(Transaction).filter(
        db.or_(
            Transaction.utorid == user.utorid,
            db.and_(Transaction.type == TXN_TRANSFER, Transaction.related_id == user.id),
        )
    )
    query = _apply_common_filters(query, args)
    return _page(query, args)


def get_transaction(actor: User, transaction_id: int) -> Transaction:
    policy.require_permission(actor.role, "VIEW_TRANSACTIONS")
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn

