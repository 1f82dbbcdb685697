# Overview: Service-layer operations for events; guest capacity and points budget bookkeeping.

from __future__ import annotations

import logging
from typing import Optional

from ..errors import ForbiddenError, GoneError, InvalidRequestError, NotFoundError
from ..extensions import db
from ..models import Event, User
from ..permissions import policy
from ..time_utils import utcnow
from ..validation import (
    parse_bool,
    parse_bool_arg,
    parse_datetime,
    parse_int,
    parse_pagination,
    parse_str,
    require_fields,
)
from .concurrency import lock_for_update, run_atomic
"""
Event Capacity / Points Budget

STATE (per event):
- space_remain = capacity - len(guests), or null when capacity is null
- points_remain + points_awarded = total budget

TRANSITIONS:
- guest added (organizer/manager invite, self RSVP): space_remain - 1
- guest removed (manager, self cancel):               space_remain + 1
- award (transactions_service.award_event_points):    remain -> awarded
- manager edit of `points`:                           total changes, never below awarded

Adding a guest after the event ended, or when no space remains, is Gone.
space_remain is always recomputed from the guest list, never incremented blindly.
"""


logger = logging.getLogger(__name__)


def _load_actor(actor: User) -> User:
    fresh = db.session.get(User, actor.id, populate_existing=True)
    if fresh is None:
        raise ForbiddenError("Actor no longer exists")
    return fresh


def _get_event_for_update(event_id: int) -> Event:
    event = lock_for_update(db.session.query(Event).filter_by(id=event_id)).first()
    if event is None:
        raise NotFoundError(f"Event {event_id} not found")
    return event


def _get_user_by_utorid(utorid) -> User:
    utorid = parse_str(utorid, "utorid")
    user = db.session.query(User).filter_by(utorid=utorid).first()
    if user is None:
        raise NotFoundError(f"User {utorid} not found")
    return user


def _organizer_ids(event: Event) -> list[int]:
    return [o.id for o in event.organizers]


def _sync_space(event: Event) -> None:
    """Recompute space_remain from the guest list (flushes first)."""
    db.session.flush()
    if event.capacity is None:
        event.space_remain = None
    else:
        event.space_remain = event.capacity - len(event.guests)


def is_full(event: Event) -> bool:
    return event.capacity is not None and (event.space_remain or 0) <= 0


def has_ended(event: Event, now=None) -> bool:
    return event.end_time <= (now or utcnow())


def _parse_capacity(value) -> Optional[int]:
    return parse_int(value, "capacity", minimum=1, allow_none=True)


# =============================================================================
# LIFECYCLE
# =============================================================================


def create_event(actor: User, data: dict) -> Event:
    """Create an unpublished event whose whole budget is still unawarded."""
    policy.require_permission(actor.role, "MANAGE_EVENTS")
    require_fields(data, "name", "description", "location", "startTime", "endTime", "points")

    start_time = parse_datetime(data["startTime"], "startTime")
    end_time = parse_datetime(data["endTime"], "endTime")
    if start_time < utcnow():
        raise InvalidRequestError("startTime cannot be in the past")
    if end_time <= start_time:
        raise InvalidRequestError("endTime must be after startTime")
    capacity = _parse_capacity(data.get("capacity"))
    points = parse_int(data["points"], "points", minimum=0)

    def _op():
        event = Event(
            name=parse_str(data["name"], "name"),
            description=parse_str(data["description"], "description"),
            location=parse_str(data["location"], "location"),
            start_time=start_time,
            end_time=end_time,
            capacity=capacity,
            space_remain=capacity,
            points_remain=points,
            points_awarded=0,
            published=False,
        )
        db.session.add(event)
        db.session.flush()
        return event

    event = run_atomic(_op)
    logger.info("event %s created by %s (budget=%d)", event.id, actor.utorid, points)
    return event


def list_events(actor: User, args) -> tuple[int, list[Event]]:
    page, limit = parse_pagination(args)
    now = utcnow()
    query = db.session.query(Event)

    name = args.get("name")
    if name:
        query = query.filter(Event.name.contains(name))
    location = args.get("location")
    if location:
        query = query.filter(Event.location.contains(location))

    started = parse_bool_arg(args.get("started"), "started")
    ended = parse_bool_arg(args.get("ended"), "ended")
    if started is not None and ended is not None:
        raise InvalidRequestError("Filter by started or ended, not both")
    if started is not None:
        query = query.filter(Event.start_time <= now if started else Event.start_time > now)
    if ended is not None:
        query = query.filter(Event.end_time <= now if ended else Event.end_time > now)

    if not parse_bool_arg(args.get("showFull"), "showFull"):
        query = query.filter(db.or_(Event.capacity.is_(None), Event.space_remain > 0))

    published = parse_bool_arg(args.get("published"), "published")
    if policy.is_privileged(actor.role):
        if published is not None:
            query = query.filter(Event.published.is_(published))
    else:
        query = query.filter(Event.published.is_(True))

    count = query.count()
    results = query.order_by(Event.start_time, Event.id).offset((page - 1) * limit).limit(limit).all()
    return count, results


def get_event(actor: User, event_id: int) -> tuple[Event, bool]:
    """Returns (event, full_view). Unpublished events are hidden from outsiders."""
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFoundError(f"Event {event_id} not found")
    organizer_ids = _organizer_ids(event)
    if not policy.can_view_event(actor.role, actor.id, organizer_ids, event.published):
        raise NotFoundError(f"Event {event_id} not found")
    return event, policy.can_manage_event(actor.role, actor.id, organizer_ids)


def update_event(actor: User, event_id: int, data: dict) -> tuple[Event, set[str]]:
    """
    Patch an event.

    - organizers and managers may edit; points and published are manager-only
    - after startTime: name, description, location, startTime and capacity freeze
    - after endTime: endTime freezes too
    - capacity may not drop below the current guest count; null makes it unlimited
    - points (the total budget) may not drop below points already awarded
    - published only moves false -> true
    """
    data = {k: v for k, v in data.items() if v is not None or k == "capacity"}

    def _op():
        editor = _load_actor(actor)
        event = _get_event_for_update(event_id)
        policy.require_event_manager(editor.role, editor.id, _organizer_ids(event))

        privileged = policy.is_privileged(editor.role)
        if ("points" in data or "published" in data) and not privileged:
            raise ForbiddenError("Only managers may change points or published")

        now = utcnow()
        if event.start_time <= now and {"name", "description", "location", "startTime", "capacity"} & set(data):
            raise InvalidRequestError("Event has started; only endTime may change")
        if event.end_time <= now and "endTime" in data:
            raise InvalidRequestError("Event has ended")

        changed: set[str] = set()
        for field_name, attr in (("name", "name"), ("description", "description"), ("location", "location")):
            if field_name in data:
                setattr(event, attr, parse_str(data[field_name], field_name))
                changed.add(field_name)

        new_start, new_end = event.start_time, event.end_time
        if "startTime" in data:
            new_start = parse_datetime(data["startTime"], "startTime")
            if new_start < now:
                raise InvalidRequestError("startTime cannot be in the past")
            changed.add("startTime")
        if "endTime" in data:
            new_end = parse_datetime(data["endTime"], "endTime")
            if new_end < now:
                raise InvalidRequestError("endTime cannot be in the past")
            changed.add("endTime")
        if new_end <= new_start:
            raise InvalidRequestError("endTime must be after startTime")
        event.start_time, event.end_time = new_start, new_end

        if "capacity" in data:
            capacity = _parse_capacity(data["capacity"])
            if capacity is not None and capacity < event.num_guests:
                raise InvalidRequestError(
                    "capacity cannot be lower than the current guest count",
                    details={"numGuests": event.num_guests},
                )
            event.capacity = capacity
            _sync_space(event)
            changed.add("capacity")

        if "points" in data:
            total = parse_int(data["points"], "points", minimum=0)
            if total < event.points_awarded:
                raise InvalidRequestError(
                    "points cannot be lower than points already awarded",
                    details={"pointsAwarded": event.points_awarded},
                )
            event.points_remain = total - event.points_awarded
            changed.add("points")

        if "published" in data:
            if parse_bool(data["published"], "published") is not True:
                raise InvalidRequestError("published can only be set to true")
            event.published = True
            changed.add("published")

        db.session.flush()
        return event, changed

    return run_atomic(_op)


def delete_event(actor: User, event_id: int) -> None:
    policy.require_permission(actor.role, "MANAGE_EVENTS")

    def _op():
        event = _get_event_for_update(event_id)
        if event.published:
            raise InvalidRequestError("Published events cannot be deleted")
        db.session.delete(event)
        db.session.flush()

    run_atomic(_op)
    logger.info("event %s deleted by %s", event_id, actor.utorid)


# =============================================================================
# ORGANIZERS
# =============================================================================


def add_organizer(actor: User, event_id: int, utorid: str) -> tuple[Event, User]:
    def _op():
        manager = _load_actor(actor)
        policy.require_permission(manager.role, "MANAGE_EVENTS")
        event = _get_event_for_update(event_id)
        user = _get_user_by_utorid(utorid)

        if has_ended(event):
            raise GoneError("Event has ended")
        if event.is_guest(user.id):
            raise InvalidRequestError("A guest cannot also be an organizer")
        if not event.is_organizer(user.id):
            event.organizers.append(user)
            db.session.flush()
        return event, user

    return run_atomic(_op)


def remove_organizer(actor: User, event_id: int, user_id: int) -> None:
    def _op():
        manager = _load_actor(actor)
        policy.require_permission(manager.role, "MANAGE_EVENTS")
        event = _get_event_for_update(event_id)
        organizer = next((o for o in event.organizers if o.id == user_id), None)
        if organizer is None:
            raise NotFoundError(f"User {user_id} is not an organizer of this event")
        event.organizers.remove(organizer)
        db.session.flush()

    run_atomic(_op)


# =============================================================================
# GUESTS
# =============================================================================


def _admit(event: Event, user: User, now) -> None:
    """Shared guard and capacity bookkeeping for every way a guest is added."""
    if has_ended(event, now):
        raise GoneError("Event has ended")
    if is_full(event):
        raise GoneError("Event is full")
    event.guests.append(user)
    _sync_space(event)
    db.session.flush()


def add_guest(actor: User, event_id: int, utorid: str) -> tuple[Event, User]:
    """
    Organizer or manager puts `utorid` on the guest list.

    Adding someone already on the list returns the current state unchanged.
    """
    def _op():
        inviter = _load_actor(actor)
        event = _get_event_for_update(event_id)
        guest = _get_user_by_utorid(utorid)

        organizer_ids = _organizer_ids(event)
        policy.require_event_manager(inviter.role, inviter.id, organizer_ids)
        if not event.published and not policy.is_privileged(inviter.role):
            raise NotFoundError(f"Event {event_id} not found")
        if guest.id in organizer_ids:
            raise InvalidRequestError("An organizer cannot be added as a guest")
        if event.is_guest(guest.id):
            return event, guest

        _admit(event, guest, utcnow())
        logger.info("event %s: %s added by %s (space=%s)", event.id, guest.utorid, inviter.utorid, event.space_remain)
        return event, guest

    return run_atomic(_op)


def remove_guest(actor: User, event_id: int, user_id: int) -> None:
    def _op():
        manager = _load_actor(actor)
        policy.require_permission(manager.role, "MANAGE_EVENTS")
        event = _get_event_for_update(event_id)
        guest = next((g for g in event.guests if g.id == user_id), None)
        if guest is None:
            raise NotFoundError(f"User {user_id} is not a guest of this event")
        event.guests.remove(guest)
        _sync_space(event)
        db.session.flush()

    run_atomic(_op)


def self_rsvp(actor: User, event_id: int) -> tuple[Event, User]:
    def _op():
        user = _load_actor(actor)
        policy.require_permission(user.role, "RSVP_EVENTS")
        event = _get_event_for_update(event_id)
        if not event.published:
            raise NotFoundError(f"Event {event_id} not found")

        now = utcnow()
        if has_ended(event, now):
            raise GoneError("Event has ended")
        if event.is_guest(user.id):
            raise InvalidRequestError("Already on the guest list")
        if event.is_organizer(user.id):
            raise InvalidRequestError("An organizer cannot RSVP to their own event")

        _admit(event, user, now)
        return event, user

    return run_atomic(_op)


def self_cancel_rsvp(actor: User, event_id: int) -> None:
    def _op():
        user = _load_actor(actor)
        event = _get_event_for_update(event_id)
        if not event.is_guest(user.id):
            raise NotFoundError("Not on the guest list")
        if has_ended(event):
            raise GoneError("Event has ended")
        event.guests.remove(next(g for g in event.guests if g.id == user.id))
        _sync_space(event)
        db.session.flush()

    run_atomic(_op)
