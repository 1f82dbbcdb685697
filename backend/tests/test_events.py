"""
Event capacity and points budget.

Verifies:
- space_remain tracks capacity minus guests through adds and removals
- Full or ended events refuse new guests with Gone
- Awards conserve pointsRemain + pointsAwarded and are all-or-nothing
"""

from datetime import timedelta

import pytest

from loyalty.errors import (
    ForbiddenError,
    GoneError,
    InsufficientBalanceError,
    InvalidRequestError,
    NotFoundError,
)
from loyalty.services import events_service, transactions_service
from loyalty.time_utils import to_utc_z, utcnow


# =============================================================================
# CAPACITY
# =============================================================================


class TestCapacity:

    def test_full_event_then_removal(self, make_user, manager, make_event):
        event = make_event(capacity=2)
        a, b, c = make_user("guesta01"), make_user("guestb01"), make_user("guestc01")

        events_service.add_guest(manager, event.id, a.utorid)
        events_service.add_guest(manager, event.id, b.utorid)
        assert event.space_remain == 0

        with pytest.raises(GoneError):
            events_service.add_guest(manager, event.id, c.utorid)

        events_service.remove_guest(manager, event.id, a.id)
        assert event.space_remain == 1
        assert event.num_guests == 1

    def test_unlimited_capacity(self, regular, manager, make_event):
        event = make_event(capacity=None)
        events_service.add_guest(manager, event.id, regular.utorid)
        assert event.space_remain is None
        assert event.num_guests == 1

    def test_adding_existing_guest_is_idempotent(self, regular, manager, make_event):
        event = make_event(capacity=5)
        events_service.add_guest(manager, event.id, regular.utorid)
        events_service.add_guest(manager, event.id, regular.utorid)
        assert event.space_remain == 4

    def test_ended_event_is_gone(self, regular, manager, make_event):
        event = make_event(starts_in=timedelta(days=-2), lasts=timedelta(hours=1))
        with pytest.raises(GoneError):
            events_service.add_guest(manager, event.id, regular.utorid)

    def test_organizer_cannot_be_guest(self, regular, manager, make_event):
        event = make_event()
        events_service.add_organizer(manager, event.id, regular.utorid)
        with pytest.raises(InvalidRequestError):
            events_service.add_guest(manager, event.id, regular.utorid)

    def test_capacity_cannot_drop_below_guests(self, make_user, manager, make_event):
        event = make_event(capacity=3)
        for utorid in ("guesta01", "guestb01"):
            events_service.add_guest(manager, event.id, make_user(utorid).utorid)

        with pytest.raises(InvalidRequestError):
            events_service.update_event(manager, event.id, {"capacity": 1})

        events_service.update_event(manager, event.id, {"capacity": 2})
        assert event.space_remain == 0

    def test_null_capacity_makes_event_unlimited(self, regular, make_user, manager, make_event):
        event = make_event(capacity=1)
        events_service.add_guest(manager, event.id, regular.utorid)

        _, changed = events_service.update_event(manager, event.id, {"capacity": None})
        assert changed == {"capacity"}
        assert event.capacity is None
        assert event.space_remain is None

        events_service.add_guest(manager, event.id, make_user("guesta01").utorid)
        assert event.num_guests == 2


# =============================================================================
# RSVP
# =============================================================================


class TestRsvp:

    def test_rsvp_and_cancel(self, regular, make_event):
        event = make_event(capacity=2)

        events_service.self_rsvp(regular, event.id)
        assert event.space_remain == 1

        with pytest.raises(InvalidRequestError):
            events_service.self_rsvp(regular, event.id)

        events_service.self_cancel_rsvp(regular, event.id)
        assert event.space_remain == 2

    def test_unpublished_event_is_hidden(self, regular, make_event):
        event = make_event(published=False)
        with pytest.raises(NotFoundError):
            events_service.self_rsvp(regular, event.id)

    def test_cancel_without_rsvp(self, regular, make_event):
        event = make_event()
        with pytest.raises(NotFoundError):
            events_service.self_cancel_rsvp(regular, event.id)


# =============================================================================
# POINTS BUDGET
# =============================================================================


class TestAward:

    def test_budget_is_conserved(self, make_user, manager, make_event):
        event = make_event(points=100)
        a, b = make_user("guesta01"), make_user("guestb01")
        events_service.add_guest(manager, event.id, a.utorid)
        events_service.add_guest(manager, event.id, b.utorid)

        txns = transactions_service.award_event_points(manager, event.id, 30)

        assert len(txns) == 2
        assert a.points == 30 and b.points == 30
        assert event.points_remain == 40
        assert event.points_awarded == 60
        assert event.points_remain + event.points_awarded == 100

    def test_over_award_changes_nothing(self, make_user, manager, make_event):
        event = make_event(points=50)
        a, b = make_user("guesta01"), make_user("guestb01")
        events_service.add_guest(manager, event.id, a.utorid)
        events_service.add_guest(manager, event.id, b.utorid)

        with pytest.raises(InsufficientBalanceError) as exc:
            transactions_service.award_event_points(manager, event.id, 30)

        assert exc.value.details == {"pointsRemain": 50, "requested": 60}
        assert a.points == 0 and b.points == 0
        assert event.points_remain == 50
        assert event.points_awarded == 0

    def test_award_single_guest(self, make_user, manager, make_event):
        event = make_event(points=100)
        a, b = make_user("guesta01"), make_user("guestb01")
        events_service.add_guest(manager, event.id, a.utorid)
        events_service.add_guest(manager, event.id, b.utorid)

        txns = transactions_service.award_event_points(manager, event.id, 10, b.utorid, "thanks")

        assert [t.utorid for t in txns] == [b.utorid]
        assert txns[0].related_id == event.id
        assert b.points == 10 and a.points == 0
        assert event.points_awarded == 10

    def test_target_must_be_guest(self, regular, manager, make_event):
        event = make_event()
        with pytest.raises(InvalidRequestError):
            transactions_service.award_event_points(manager, event.id, 10, regular.utorid)

    def test_organizer_may_award(self, make_user, manager, make_event):
        event = make_event(points=20)
        organizer = make_user("organize")
        guest = make_user("guesta01")
        events_service.add_organizer(manager, event.id, organizer.utorid)
        events_service.add_guest(organizer, event.id, guest.utorid)

        transactions_service.award_event_points(organizer, event.id, 20)
        assert guest.points == 20

    def test_outsider_may_not_award(self, regular, make_user, manager, make_event):
        event = make_event()
        events_service.add_guest(manager, event.id, make_user("guesta01").utorid)
        with pytest.raises(ForbiddenError):
            transactions_service.award_event_points(regular, event.id, 5)

    def test_points_edit_cannot_go_below_awarded(self, regular, manager, make_event):
        event = make_event(points=100)
        events_service.add_guest(manager, event.id, regular.utorid)
        transactions_service.award_event_points(manager, event.id, 60)

        with pytest.raises(InvalidRequestError):
            events_service.update_event(manager, event.id, {"points": 50})

        _, changed = events_service.update_event(manager, event.id, {"points": 150})
        assert changed == {"points"}
        assert event.points_remain == 90
        assert event.points_awarded == 60


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:

    def _payload(self, **overrides):
        start = utcnow() + timedelta(days=1)
        data = {
            "name": "Games night",
            "description": "Board games",
            "location": "BA3200",
            "startTime": to_utc_z(start),
            "endTime": to_utc_z(start + timedelta(hours=2)),
            "capacity": 10,
            "points": 200,
        }
        data.update(overrides)
        return data

    def test_create_starts_unpublished(self, manager):
        event = events_service.create_event(manager, self._payload())
        assert event.published is False
        assert event.space_remain == 10
        assert event.points_remain == 200

    def test_create_requires_points(self, manager):
        data = self._payload()
        del data["points"]
        with pytest.raises(InvalidRequestError):
            events_service.create_event(manager, data)

    def test_end_before_start(self, manager):
        start = utcnow() + timedelta(days=1)
        with pytest.raises(InvalidRequestError):
            events_service.create_event(manager, self._payload(
                startTime=to_utc_z(start), endTime=to_utc_z(start - timedelta(hours=1)),
            ))

    def test_organizer_cannot_publish(self, regular, manager, make_event):
        event = make_event(published=False)
        events_service.add_organizer(manager, event.id, regular.utorid)
        with pytest.raises(ForbiddenError):
            events_service.update_event(regular, event.id, {"published": True})

        _, changed = events_service.update_event(regular, event.id, {"location": "SS1069"})
        assert changed == {"location"}

    def test_published_event_cannot_be_deleted(self, manager, make_event):
        event = make_event(published=True)
        with pytest.raises(InvalidRequestError):
            events_service.delete_event(manager, event.id)

    def test_listing_hides_unpublished_from_regular(self, regular, manager, make_event):
        make_event(published=True, name="Public")
        make_event(published=False, name="Draft")

        count, events = events_service.list_events(regular, {})
        assert count == 1
        assert events[0].name == "Public"

        count, _ = events_service.list_events(manager, {})
        assert count == 2
