# Overview: Flask API routes for events; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_auth, require_permission
from ..errors import InvalidRequestError, LoyaltyError
from ..extensions import db
from ..models.transactions import TXN_EVENT
from ..permissions import policy
from ..services import events_service, transactions_service


events_bp = Blueprint("events", __name__, url_prefix="/events")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def _guest_added(event, guest) -> dict:
    return {
        "id": event.id,
        "name": event.name,
        "location": event.location,
        "numGuests": event.num_guests,
        "guestAdded": guest.to_summary(),
    }


def _listing_dict(event, privileged: bool) -> dict:
    data = event.to_public_dict()
    if privileged:
        data.update({
            "pointsRemain": event.points_remain,
            "pointsAwarded": event.points_awarded,
            "published": event.published,
        })
    return data


@events_bp.post("")
@require_auth
@require_permission("MANAGE_EVENTS")
def create_event_route():
    try:
        data = request.get_json(silent=True) or {}
        event = events_service.create_event(g.current_user, data)
        return jsonify(event.to_dict()), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create event")


@events_bp.get("")
@require_auth
@require_permission("VIEW_EVENTS")
def list_events_route():
    try:
        count, events = events_service.list_events(g.current_user, request.args)
        privileged = policy.is_privileged(g.current_user.role)
        return jsonify({"count": count, "results": [_listing_dict(e, privileged) for e in events]})
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list events")


@events_bp.get("/<int:event_id>")
@require_auth
@require_permission("VIEW_EVENTS")
def get_event_route(event_id: int):
    try:
        event, full = events_service.get_event(g.current_user, event_id)
        return jsonify(event.to_dict() if full else event.to_public_dict())
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load event")


@events_bp.patch("/<int:event_id>")
@require_auth
def update_event_route(event_id: int):
    """Responds with id, name, location plus the fields that changed."""
    try:
        data = request.get_json(silent=True) or {}
        event, changed = events_service.update_event(g.current_user, event_id, data)
        full = event.to_dict()
        full["points"] = event.total_points
        body = {"id": event.id, "name": event.name, "location": event.location}
        body.update({key: full[key] for key in changed})
        return jsonify(body)
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update event")


@events_bp.delete("/<int:event_id>")
@require_auth
@require_permission("MANAGE_EVENTS")
def delete_event_route(event_id: int):
    try:
        events_service.delete_event(g.current_user, event_id)
        return "", 204
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to delete event")


@events_bp.post("/<int:event_id>/organizers")
@require_auth
@require_permission("MANAGE_EVENTS")
def add_organizer_route(event_id: int):
    try:
        data = request.get_json(silent=True) or {}
        event, _ = events_service.add_organizer(g.current_user, event_id, data.get("utorid"))
        return jsonify({
            "id": event.id,
            "name": event.name,
            "location": event.location,
            "organizers": [o.to_summary() for o in event.organizers],
        }), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to add organizer")


@events_bp.delete("/<int:event_id>/organizers/<int:user_id>")
@require_auth
@require_permission("MANAGE_EVENTS")
def remove_organizer_route(event_id: int, user_id: int):
    try:
        events_service.remove_organizer(g.current_user, event_id, user_id)
        return "", 204
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to remove organizer")


@events_bp.post("/<int:event_id>/guests")
@require_auth
def add_guest_route(event_id: int):
    try:
        data = request.get_json(silent=True) or {}
        event, guest = events_service.add_guest(g.current_user, event_id, data.get("utorid"))
        return jsonify(_guest_added(event, guest)), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to add guest")


@events_bp.post("/<int:event_id>/guests/me")
@require_auth
@require_permission("RSVP_EVENTS")
def self_rsvp_route(event_id: int):
    try:
        event, user = events_service.self_rsvp(g.current_user, event_id)
        return jsonify(_guest_added(event, user)), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to RSVP")


@events_bp.delete("/<int:event_id>/guests/me")
@require_auth
@require_permission("RSVP_EVENTS")
def self_cancel_rsvp_route(event_id: int):
    try:
        events_service.self_cancel_rsvp(g.current_user, event_id)
        return "", 204
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to cancel RSVP")


@events_bp.delete("/<int:event_id>/guests/<int:user_id>")
@require_auth
@require_permission("MANAGE_EVENTS")
def remove_guest_route(event_id: int, user_id: int):
    try:
        events_service.remove_guest(g.current_user, event_id, user_id)
        return "", 204
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to remove guest")


@events_bp.post("/<int:event_id>/transactions")
@require_auth
def award_points_route(event_id: int):
    """
    Award event points.

    With `utorid` the response is the single record; without, a list with
    one record per guest.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("type") != TXN_EVENT:
            raise InvalidRequestError("type must be 'event'")
        target = data.get("utorid")
        txns = transactions_service.award_event_points(
            g.current_user, event_id, data.get("amount"), target, data.get("remark")
        )
        if target:
            return jsonify(txns[0].to_dict()), 201
        return jsonify([t.to_dict() for t in txns]), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to award points")
