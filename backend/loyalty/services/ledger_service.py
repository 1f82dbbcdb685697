# Overview: Service-layer operations for the points ledger; balance mutation and record creation.

from __future__ import annotations

import logging
from decimal import Decimal
from functools import partial
from typing import Iterable, Optional

from ..errors import InsufficientBalanceError, InvalidRequestError, NotFoundError
from ..extensions import db
from ..models import Promotion, Transaction, User
from ..models.transactions import TXN_TYPES
from .concurrency import after_commit, lock_for_update
"""
Ledger Invariants (authoritative)

- A user's points never go below zero; debit() refuses before the store's
  check constraint would.
- Balance changes happen only inside the store transaction that also inserts
  the Transaction record causing them. Nothing here commits; callers wrap
  their whole operation in run_atomic().
- Records are returned bare. Derived presentation fields (sent, received,
  redeemed...) are added by callers.
"""


logger = logging.getLogger(__name__)


def get_user_for_update(utorid: str) -> User:
    """Load and row-lock a user by utorid, or raise NotFoundError."""
    user = lock_for_update(db.session.query(User).filter_by(utorid=utorid)).first()
    if not user:
        raise NotFoundError(f"User {utorid} not found")
    return user


def credit(user: User, amount: int) -> User:
    """Increase `user`'s balance by a non-negative amount."""
    if amount < 0:
        raise InvalidRequestError("Credit amount must be non-negative")
    user.points = user.points + amount
    db.session.flush()
    return user


def debit(user: User, amount: int) -> User:
    """
    Decrease `user`'s balance by a non-negative amount.

    Raises InsufficientBalanceError when the balance would go negative.
    """
    if amount < 0:
        raise InvalidRequestError("Debit amount must be non-negative")
    if user.points < amount:
        raise InsufficientBalanceError(
            f"User {user.utorid} has insufficient points",
            details={"balance": user.points, "requested": amount},
        )
    user.points = user.points - amount
    db.session.flush()
    return user


def apply_delta(user: User, delta: int) -> User:
    """Signed convenience: positive credits, negative debits."""
    if delta >= 0:
        return credit(user, delta)
    return debit(user, -delta)


def create_transaction_record(
    *,
    kind: str,
    utorid: str,
    points: int,
    created_by: str,
    spent: Optional[Decimal] = None,
    related_id: Optional[int] = None,
    remark: Optional[str] = None,
    suspicious: bool = False,
    promotions: Iterable[Promotion] = (),
) -> Transaction:
    """
    Insert an immutable ledger record (flushed, not committed).

    The id is assigned on return so callers can reference it in the same
    store transaction.
    """
    if kind not in TXN_TYPES:
        raise InvalidRequestError(f"Unknown transaction type: {kind}")

    txn = Transaction(
        type=kind,
        utorid=utorid,
        points=points,
        spent=spent,
        related_id=related_id,
        remark=remark or "",
        created_by=created_by,
        suspicious=suspicious,
    )
    txn.promotions = list(promotions)

    db.session.add(txn)
    db.session.flush()  # ensures txn.id is assigned without committing

    after_commit(partial(
        logger.info,
        "ledger: %s #%s utorid=%s points=%+d by=%s%s",
        kind, txn.id, utorid, points, created_by, " [suspicious]" if suspicious else "",
    ))
    return txn
