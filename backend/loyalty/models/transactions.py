from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z


TXN_PURCHASE = "purchase"
TXN_ADJUSTMENT = "adjustment"
TXN_TRANSFER = "transfer"
TXN_REDEMPTION = "redemption"
TXN_EVENT = "event"
TXN_TYPES = (TXN_PURCHASE, TXN_ADJUSTMENT, TXN_TRANSFER, TXN_REDEMPTION, TXN_EVENT)

# Kinds whose point effect is withheld/reversed by the suspicious flag
SUSPICIOUS_TYPES = frozenset({TXN_PURCHASE, TXN_ADJUSTMENT, TXN_EVENT})


transaction_promotions = db.Table(
    "transaction_promotions",
    db.Column("transaction_id", db.Integer, db.ForeignKey("transactions.id", ondelete="CASCADE"), primary_key=True),
    db.Column("promotion_id", db.Integer, db.ForeignKey("promotions.id", ondelete="CASCADE"), primary_key=True),
)


class Transaction(db.Model):
    """
    Immutable point ledger record.

    points is the signed delta for `utorid` (positive = credit).

    related_id by type:
    - adjustment: id of the transaction being adjusted
    - transfer: recipient user id
    - redemption: null until processed, then the processing cashier's id
    - event: event id

    MUTABLE FIELDS (only):
    - suspicious (manager toggle; the ledger reverses/reapplies points)
    - related_id on a redemption, set exactly once by processing
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_utorid_type", "utorid", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)

    utorid = db.Column(db.String(8), db.ForeignKey("users.utorid"), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)

    spent = db.Column(db.Numeric(12, 2), nullable=True)  # purchase only, dollars
    related_id = db.Column(db.Integer, nullable=True, index=True)

    remark = db.Column(db.Text, nullable=False, default="")
    created_by = db.Column(db.String(8), db.ForeignKey("users.utorid"), nullable=False, index=True)

    suspicious = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    promotions = db.relationship(
        "Promotion",
        secondary=transaction_promotions,
        lazy="selectin",
        order_by="Promotion.id",
    )

    @property
    def promotion_ids(self) -> list[int]:
        return [p.id for p in self.promotions]

    @property
    def is_processed(self) -> bool:
        """Redemptions only: processing stamps related_id."""
        return self.related_id is not None

    def _utorid_for(self, user_id: int | None) -> str | None:
        if user_id is None:
            return None
        from .auth import User
        user = db.session.get(User, user_id)
        return user.utorid if user else None

    def to_dict(self) -> dict:
        """
        Type-shaped view.

        The derived fields (sent, redeemed, awarded...) are presentation only;
        the stored record is always (utorid, points, related_id).
        """
        data = {
            "id": self.id,
            "utorid": self.utorid,
            "type": self.type,
            "amount": self.points,
            "remark": self.remark,
            "createdBy": self.created_by,
            "createdAt": to_utc_z(self.created_at),
        }
        if self.type in SUSPICIOUS_TYPES:
            data["suspicious"] = self.suspicious

        if self.type == TXN_PURCHASE:
            data["spent"] = float(self.spent) if self.spent is not None else None
            data["promotionIds"] = self.promotion_ids
        elif self.type == TXN_ADJUSTMENT:
            data["relatedId"] = self.related_id
            data["promotionIds"] = self.promotion_ids
        elif self.type == TXN_REDEMPTION:
            data["relatedId"] = self.related_id
            data["redeemed"] = -self.points
            data["processedBy"] = self._utorid_for(self.related_id)
        elif self.type == TXN_EVENT:
            data["recipient"] = self.utorid
            data["awarded"] = self.points
            data["eventId"] = self.related_id
            data["relatedId"] = self.related_id
        elif self.type == TXN_TRANSFER:
            data["sender"] = self.utorid
            data["recipient"] = self._utorid_for(self.related_id)
            data["sent"] = -self.points
            data["relatedId"] = self.related_id
        return data

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.type} {self.utorid} {self.points:+d}>"
