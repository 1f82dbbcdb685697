"""
Promotion lifecycle.

Verifies:
- rate is accepted and returned in wire units (x100) but stored per dollar
- Editing rules tighten once a promotion starts and again once it ends
- Promotions may only be deleted before they start
- Non-managers only see what applies to them right now
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from loyalty.errors import ForbiddenError, InvalidRequestError, NotFoundError
from loyalty.models.promotions import PROMOTION_TYPE_AUTOMATIC
from loyalty.services import promotions_service, transactions_service
from loyalty.time_utils import to_utc_z, utcnow


def _payload(**overrides):
    start = utcnow() + timedelta(days=1)
    data = {
        "name": "Double week",
        "description": "Extra points on everything",
        "type": "automatic",
        "startTime": to_utc_z(start),
        "endTime": to_utc_z(start + timedelta(days=7)),
        "rate": 2,
    }
    data.update(overrides)
    return data


class TestCreate:

    def test_rate_is_stored_per_dollar(self, manager):
        promo = promotions_service.create_promotion(manager, _payload())
        assert promo.rate == Decimal("0.02")
        assert promo.to_dict()["rate"] == 2.0

    def test_start_in_past(self, manager):
        with pytest.raises(InvalidRequestError):
            promotions_service.create_promotion(
                manager, _payload(startTime=to_utc_z(utcnow() - timedelta(hours=1)))
            )

    def test_bad_type(self, manager):
        with pytest.raises(InvalidRequestError):
            promotions_service.create_promotion(manager, _payload(type="weekly"))

    def test_cashier_cannot_create(self, cashier):
        with pytest.raises(ForbiddenError):
            promotions_service.create_promotion(cashier, _payload())

    def test_over_http(self, client, manager, auth_headers):
        resp = client.post("/promotions", json=_payload(type="one-time", points=25), headers=auth_headers(manager))
        assert resp.status_code == 201
        assert resp.json["type"] == "one-time"
        assert resp.json["points"] == 25


class TestUpdate:

    def test_everything_editable_before_start(self, manager):
        promo = promotions_service.create_promotion(manager, _payload())
        _, changed = promotions_service.update_promotion(manager, promo.id, {"name": "Triple week", "rate": 3})
        assert changed == {"name", "rate"}
        assert promo.to_dict()["rate"] == 3.0

    def test_only_end_time_after_start(self, manager, make_promotion):
        promo = make_promotion(type=PROMOTION_TYPE_AUTOMATIC, points=5)
        with pytest.raises(InvalidRequestError):
            promotions_service.update_promotion(manager, promo.id, {"points": 10})

        new_end = to_utc_z(utcnow() + timedelta(days=3))
        _, changed = promotions_service.update_promotion(manager, promo.id, {"endTime": new_end})
        assert changed == {"endTime"}

    def test_frozen_after_end(self, manager, make_promotion):
        promo = make_promotion(points=5, starts_in=timedelta(days=-3), lasts=timedelta(days=1))
        with pytest.raises(InvalidRequestError):
            promotions_service.update_promotion(
                manager, promo.id, {"endTime": to_utc_z(utcnow() + timedelta(days=1))}
            )


class TestDelete:

    def test_delete_before_start(self, manager):
        promo = promotions_service.create_promotion(manager, _payload())
        promotions_service.delete_promotion(manager, promo.id)
        with pytest.raises(NotFoundError):
            promotions_service.get_promotion(manager, promo.id)

    def test_started_promotion_cannot_be_deleted(self, manager, make_promotion):
        promo = make_promotion(points=5)
        with pytest.raises(ForbiddenError):
            promotions_service.delete_promotion(manager, promo.id)


class TestVisibility:

    def test_regular_sees_only_active_unused(self, regular, cashier, manager, make_promotion):
        active = make_promotion(points=5, name="Active")
        make_promotion(points=5, name="Later", starts_in=timedelta(days=2))

        count, promos = promotions_service.list_promotions(regular, {})
        assert count == 1
        assert promos[0].id == active.id

        transactions_service.create_purchase(cashier, regular.utorid, 5, [active.id])
        count, _ = promotions_service.list_promotions(regular, {})
        assert count == 0

        count, _ = promotions_service.list_promotions(manager, {})
        assert count == 2

    def test_started_filter_is_manager_only(self, regular, manager, make_promotion):
        make_promotion(points=5)
        with pytest.raises(InvalidRequestError):
            promotions_service.list_promotions(regular, {"started": "true"})

        count, _ = promotions_service.list_promotions(manager, {"started": "false"})
        assert count == 0

    def test_future_promotion_hidden_from_regular(self, regular, make_promotion):
        promo = make_promotion(points=5, starts_in=timedelta(days=2))
        with pytest.raises(NotFoundError):
            promotions_service.get_promotion(regular, promo.id)
