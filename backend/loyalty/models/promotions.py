from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from loyalty.time_utils import to_utc_z


PROMOTION_TYPE_AUTOMATIC = "automatic"
PROMOTION_TYPE_ONE_TIME = "one-time"
PROMOTION_TYPES = (PROMOTION_TYPE_AUTOMATIC, PROMOTION_TYPE_ONE_TIME)

# Clients send rate as "extra points per dollar x 100"
RATE_WIRE_SCALE = Decimal(100)


class Promotion(db.Model):
    """
    Purchase bonus rule.

    - automatic: applies to every qualifying purchase, never tracked per user
    - one-time: claimed explicitly, at most once per user (promotion_usages)

    rate is stored already divided by RATE_WIRE_SCALE, i.e. as bonus points
    per dollar spent. points is a flat bonus. Both may be set.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_promotions_window"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")

    type = db.Column(db.String(16), nullable=False, index=True)

    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False, index=True)

    min_spending = db.Column(db.Numeric(12, 2), nullable=True)
    rate = db.Column(db.Numeric(12, 6), nullable=True)
    points = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    def is_active(self, at) -> bool:
        return self.start_time <= at <= self.end_time

    def wire_rate(self) -> float | None:
        if self.rate is None:
            return None
        return float(Decimal(self.rate) * RATE_WIRE_SCALE)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "startTime": to_utc_z(self.start_time),
            "endTime": to_utc_z(self.end_time),
            "minSpending": float(self.min_spending) if self.min_spending is not None else None,
            "rate": self.wire_rate(),
            "points": self.points,
        }


class PromotionUsage(db.Model):
    """
    Single owned association: user U has consumed one-time promotion P.

    WHY: The composite primary key makes a second claim of the same
    promotion by the same user fail at the store, even under concurrent
    purchases. used_promotion_ids() reads it fresh for every claim check.
    """
    __tablename__ = "promotion_usages"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id", ondelete="CASCADE"), primary_key=True)
    used_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
