# Overview: Service-layer operations for promotions; purchase bonus evaluation and promotion lifecycle.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from ..errors import ForbiddenError, InvalidRequestError, NotFoundError
from ..extensions import db
from ..models import Promotion, PromotionUsage, User
from ..models.promotions import (
    PROMOTION_TYPE_AUTOMATIC,
    PROMOTION_TYPE_ONE_TIME,
    PROMOTION_TYPES,
    RATE_WIRE_SCALE,
)
from ..permissions import policy
from ..time_utils import utcnow
from ..validation import (
    parse_bool_arg,
    parse_datetime,
    parse_int,
    parse_number,
    parse_pagination,
    parse_str,
    require_fields,
)
from .concurrency import run_atomic


logger = logging.getLogger(__name__)

# 1 point per $0.25 spent
CENTS_PER_POINT = Decimal(25)


def to_decimal(value) -> Decimal:
    """Money and rates are computed in Decimal; floats go through str() first."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_points(value: Decimal) -> int:
    """Arithmetic rounding, halves away from zero for positive amounts."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def base_points(spent) -> int:
    return round_points(to_decimal(spent) * 100 / CENTS_PER_POINT)


def promotion_bonus(promotion: Promotion, spent) -> int:
    """
    Bonus a single promotion contributes to a purchase of `spent` dollars.

    Flat points and the per-dollar rate both apply when both are set; each
    part is rounded on its own before summing.
    """
    bonus = 0
    if promotion.points:
        bonus += promotion.points
    if promotion.rate:
        bonus += round_points(to_decimal(spent) * to_decimal(promotion.rate))
    return bonus


@dataclass
class PurchaseEvaluation:
    """Outcome of evaluating a purchase against promotions."""
    spent: Decimal
    base: int
    consumed: list[Promotion] = field(default_factory=list)
    automatic: list[Promotion] = field(default_factory=list)
    bonus: int = 0

    @property
    def total(self) -> int:
        return self.base + self.bonus

    @property
    def consumed_ids(self) -> list[int]:
        return [p.id for p in self.consumed]


def used_promotion_ids(user_id: int) -> set[int]:
    """Fresh read of the usage table, never the cached relationship."""
    rows = db.session.query(PromotionUsage.promotion_id).filter_by(user_id=user_id).all()
    return {row[0] for row in rows}


def validate_one_time_promotions(
    user: User,
    promotion_ids: Sequence[int],
    *,
    spent: Decimal | None = None,
    now: datetime | None = None,
) -> list[Promotion]:
    """
    All-or-nothing check of claimed one-time promotions, in submitted order.

    Each id must name an existing one-time promotion that is active at `now`,
    whose minimum spending (when `spent` is given) is met, and that `user`
    has not used. A repeated id counts as a second claim and is rejected.
    """
    now = now or utcnow()
    used = used_promotion_ids(user.id)
    seen: set[int] = set()
    promotions: list[Promotion] = []

    for promo_id in promotion_ids:
        if promo_id in seen:
            raise InvalidRequestError(
                f"Promotion {promo_id} was claimed more than once",
                details={"promotionId": promo_id},
            )
        seen.add(promo_id)

        promo = db.session.get(Promotion, promo_id)
        reason = None
        if promo is None:
            reason = "does not exist"
        elif promo.type != PROMOTION_TYPE_ONE_TIME:
            reason = "is not a one-time promotion"
        elif not promo.is_active(now):
            reason = "is not currently active"
        elif spent is not None and promo.min_spending is not None and to_decimal(promo.min_spending) > spent:
            reason = "requires a higher minimum spend"
        elif promo_id in used:
            reason = "has already been used"

        if reason:
            raise InvalidRequestError(
                f"Promotion {promo_id} {reason}",
                details={"promotionId": promo_id},
            )
        promotions.append(promo)

    return promotions


def active_automatic_promotions(spent: Decimal, now: datetime) -> list[Promotion]:
    query = db.session.query(Promotion).filter(
        Promotion.type == PROMOTION_TYPE_AUTOMATIC,
        Promotion.start_time <= now,
        Promotion.end_time >= now,
    ).order_by(Promotion.id)
    return [
        p for p in query.all()
        if p.min_spending is None or to_decimal(p.min_spending) <= spent
    ]


def evaluate_purchase(
    user: User,
    spent,
    promotion_ids: Sequence[int] = (),
    *,
    now: datetime | None = None,
) -> PurchaseEvaluation:
    """
    Compute the points a purchase earns.

    total = base + sum(bonus of each claimed one-time promotion)
                 + sum(bonus of each active automatic promotion)

    Raises InvalidRequestError if any claimed promotion is invalid; nothing
    is partially applied. Does not record usage, see mark_promotions_used().
    """
    now = now or utcnow()
    spent = to_decimal(spent)
    if spent <= 0:
        raise InvalidRequestError("spent must be positive")

    evaluation = PurchaseEvaluation(spent=spent, base=base_points(spent))
    evaluation.consumed = validate_one_time_promotions(user, promotion_ids, spent=spent, now=now)
    evaluation.automatic = active_automatic_promotions(spent, now)
    evaluation.bonus = sum(
        promotion_bonus(p, spent) for p in evaluation.consumed + evaluation.automatic
    )
    return evaluation


def mark_promotions_used(user: User, promotions: Iterable[Promotion]) -> None:
    """Record consumption of one-time promotions (flushed, not committed)."""
    added = False
    for promo in promotions:
        db.session.add(PromotionUsage(user_id=user.id, promotion_id=promo.id))
        added = True
    if added:
        db.session.flush()


# =============================================================================
# PROMOTION LIFECYCLE
# =============================================================================


def _parse_type(value) -> str:
    value = parse_str(value, "type")
    if value not in PROMOTION_TYPES:
        raise InvalidRequestError("type must be 'automatic' or 'one-time'")
    return value


def _parse_rate(value) -> Decimal | None:
    wire = parse_number(value, "rate", minimum=0, allow_none=True)
    if wire is None:
        return None
    return to_decimal(wire) / RATE_WIRE_SCALE


def _parse_min_spending(value) -> Decimal | None:
    amount = parse_number(value, "minSpending", minimum=0, allow_none=True)
    return to_decimal(amount) if amount is not None else None


def create_promotion(actor: User, data: dict) -> Promotion:
    policy.require_permission(actor.role, "MANAGE_PROMOTIONS")
    require_fields(data, "name", "description", "type", "startTime", "endTime")

    now = utcnow()
    start_time = parse_datetime(data["startTime"], "startTime")
    end_time = parse_datetime(data["endTime"], "endTime")
    if start_time < now:
        raise InvalidRequestError("startTime cannot be in the past")
    if end_time <= start_time:
        raise InvalidRequestError("endTime must be after startTime")

    def _op():
        promo = Promotion(
            name=parse_str(data["name"], "name"),
            description=parse_str(data["description"], "description"),
            type=_parse_type(data["type"]),
            start_time=start_time,
            end_time=end_time,
            min_spending=_parse_min_spending(data.get("minSpending")),
            rate=_parse_rate(data.get("rate")),
            points=parse_int(data.get("points"), "points", minimum=0, allow_none=True),
        )
        db.session.add(promo)
        db.session.flush()
        return promo

    promo = run_atomic(_op)
    logger.info("promotion %s created by %s (%s)", promo.id, actor.utorid, promo.type)
    return promo


def get_promotion(actor: User, promotion_id: int) -> Promotion:
    promo = db.session.get(Promotion, promotion_id)
    if promo is None:
        raise NotFoundError(f"Promotion {promotion_id} not found")
    if not policy.is_privileged(actor.role) and not promo.is_active(utcnow()):
        raise NotFoundError(f"Promotion {promotion_id} not found")
    return promo


def list_promotions(actor: User, args) -> tuple[int, list[Promotion]]:
    """
    Paged promotion listing.

    Regular users and cashiers see what can be applied right now, minus
    one-time promotions the caller already used. Managers see everything and
    may filter by started/ended (one of the two).
    """
    page, limit = parse_pagination(args)
    now = utcnow()
    query = db.session.query(Promotion)

    name = args.get("name")
    if name:
        query = query.filter(Promotion.name.contains(name))

    promo_type = args.get("type")
    if promo_type:
        query = query.filter(Promotion.type == _parse_type(promo_type))

    started = parse_bool_arg(args.get("started"), "started")
    ended = parse_bool_arg(args.get("ended"), "ended")

    if policy.is_privileged(actor.role):
        if started is not None and ended is not None:
            raise InvalidRequestError("Filter by started or ended, not both")
        if started is not None:
            query = query.filter(Promotion.start_time <= now if started else Promotion.start_time > now)
        if ended is not None:
            query = query.filter(Promotion.end_time <= now if ended else Promotion.end_time > now)
    else:
        if started is not None or ended is not None:
            raise InvalidRequestError("started/ended filters are not available")
        query = query.filter(Promotion.start_time <= now, Promotion.end_time >= now)
        used = used_promotion_ids(actor.id)
        if used:
            query = query.filter(Promotion.id.notin_(used))

    count = query.count()
    results = query.order_by(Promotion.id).offset((page - 1) * limit).limit(limit).all()
    return count, results


def update_promotion(actor: User, promotion_id: int, data: dict) -> tuple[Promotion, set[str]]:
    """
    Patch a promotion.

    LIFECYCLE:
    - before startTime: every field is editable
    - after startTime: only endTime
    - after endTime: frozen

    Returns the promotion and the set of wire fields that changed.
    """
    policy.require_permission(actor.role, "MANAGE_PROMOTIONS")
    data = {k: v for k, v in data.items() if v is not None}

    def _op():
        promo = db.session.get(Promotion, promotion_id)
        if promo is None:
            raise NotFoundError(f"Promotion {promotion_id} not found")

        now = utcnow()
        if promo.end_time < now:
            raise InvalidRequestError("Promotion has ended and can no longer be edited")
        if promo.start_time <= now and set(data) - {"endTime"}:
            raise InvalidRequestError("Only endTime may be edited after a promotion starts")

        changed: set[str] = set()
        new_start = promo.start_time
        new_end = promo.end_time

        if "startTime" in data:
            new_start = parse_datetime(data["startTime"], "startTime")
            if new_start <= now:
                raise InvalidRequestError("startTime cannot be in the past")
            changed.add("startTime")
        if "endTime" in data:
            new_end = parse_datetime(data["endTime"], "endTime")
            if new_end <= now:
                raise InvalidRequestError("endTime cannot be in the past")
            changed.add("endTime")
        if new_end <= new_start:
            raise InvalidRequestError("endTime must be after startTime")
        promo.start_time = new_start
        promo.end_time = new_end

        if "name" in data:
            promo.name = parse_str(data["name"], "name")
            changed.add("name")
        if "description" in data:
            promo.description = parse_str(data["description"], "description")
            changed.add("description")
        if "type" in data:
            promo.type = _parse_type(data["type"])
            changed.add("type")
        if "minSpending" in data:
            promo.min_spending = _parse_min_spending(data["minSpending"])
            changed.add("minSpending")
        if "rate" in data:
            promo.rate = _parse_rate(data["rate"])
            changed.add("rate")
        if "points" in data:
            promo.points = parse_int(data["points"], "points", minimum=0)
            changed.add("points")

        db.session.flush()
        return promo, changed

    return run_atomic(_op)


def delete_promotion(actor: User, promotion_id: int) -> None:
    policy.require_permission(actor.role, "MANAGE_PROMOTIONS")

    def _op():
        promo = db.session.get(Promotion, promotion_id)
        if promo is None:
            raise NotFoundError(f"Promotion {promotion_id} not found")
        if promo.start_time <= utcnow():
            raise ForbiddenError("Promotions cannot be deleted once they have started")
        db.session.delete(promo)
        db.session.flush()

    run_atomic(_op)
    logger.info("promotion %s deleted by %s", promotion_id, actor.utorid)


def available_one_time_promotions(user: User) -> list[Promotion]:
    """Active one-time promotions `user` has not used yet (cashier lookup)."""
    now = utcnow()
    query = db.session.query(Promotion).filter(
        Promotion.type == PROMOTION_TYPE_ONE_TIME,
        Promotion.start_time <= now,
        Promotion.end_time >= now,
    )
    used = used_promotion_ids(user.id)
    if used:
        query = query.filter(Promotion.id.notin_(used))
    return query.order_by(Promotion.id).all()
