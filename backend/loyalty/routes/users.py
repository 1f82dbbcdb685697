# Overview: Flask API routes for users; registration, profiles, transfers and redemptions.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_auth, require_permission
from ..errors import InvalidRequestError, LoyaltyError
from ..extensions import db
from ..models.transactions import TXN_REDEMPTION, TXN_TRANSFER
from ..services import auth_service, transactions_service, users_service
from ..time_utils import to_utc_z


users_bp = Blueprint("users", __name__, url_prefix="/users")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@users_bp.post("")
@require_auth
@require_permission("REGISTER_USERS")
def register_user_route():
    """
    Register a new account (cashier and above).

    The response carries the activation token the new user needs to set a
    password via POST /auth/resets/<token>.
    """
    try:
        data = request.get_json(silent=True) or {}
        user = users_service.register_user(g.current_user, data)
        return jsonify({
            "id": user.id,
            "utorid": user.utorid,
            "name": user.name,
            "email": user.email,
            "verified": user.verified,
            "expiresAt": to_utc_z(user.reset_expires_at),
            "resetToken": user.reset_token,
        }), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to register user")


@users_bp.get("")
@require_auth
@require_permission("MANAGE_USERS")
def list_users_route():
    try:
        count, users = users_service.list_users(g.current_user, request.args)
        return jsonify({"count": count, "results": [u.to_dict() for u in users]})
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list users")


@users_bp.get("/me")
@require_auth
def get_me_route():
    try:
        return jsonify(users_service.me_dict(g.current_user))
    except Exception:
        return _internal_error("Failed to load profile")


@users_bp.patch("/me")
@require_auth
def update_me_route():
    try:
        data = request.get_json(silent=True) or {}
        user = users_service.update_me(g.current_user, data)
        return jsonify(user.to_dict())
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update profile")


@users_bp.patch("/me/password")
@require_auth
def change_password_route():
    try:
        data = request.get_json(silent=True) or {}
        auth_service.change_password(g.current_user, data.get("old"), data.get("new"))
        return jsonify({"message": "OK"})
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to change password")


@users_bp.post("/me/transactions")
@require_auth
@require_permission("REQUEST_REDEMPTION")
def request_redemption_route():
    """Redemption request: records intent, balance moves only when processed."""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("type") != TXN_REDEMPTION:
            raise InvalidRequestError("type must be 'redemption'")
        txn = transactions_service.request_redemption(
            g.current_user, data.get("amount"), data.get("remark")
        )
        return jsonify(txn.to_dict()), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to request redemption")


@users_bp.get("/me/transactions")
@require_auth
def list_my_transactions_route():
    try:
        count, txns = transactions_service.list_user_transactions(g.current_user, request.args)
        return jsonify({"count": count, "results": [t.to_dict() for t in txns]})
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list transactions")


@users_bp.get("/<int:user_id>")
@require_auth
@require_permission("LOOKUP_USERS")
def get_user_route(user_id: int):
    try:
        return jsonify(users_service.lookup_user(g.current_user, user_id))
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load user")


@users_bp.patch("/<int:user_id>")
@require_auth
@require_permission("MANAGE_USERS")
def update_user_route(user_id: int):
    """Responds with id, utorid, name plus the fields that changed."""
    try:
        data = request.get_json(silent=True) or {}
        user, changed = users_service.update_user(g.current_user, user_id, data)
        full = user.to_dict()
        body = {"id": user.id, "utorid": user.utorid, "name": user.name}
        body.update({key: full[key] for key in changed})
        return jsonify(body)
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update user")


@users_bp.post("/<int:user_id>/transactions")
@require_auth
@require_permission("TRANSFER_POINTS")
def transfer_route(user_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if data.get("type") != TXN_TRANSFER:
            raise InvalidRequestError("type must be 'transfer'")
        recipient = users_service.get_user(user_id)
        txn = transactions_service.create_transfer(
            g.current_user, recipient.utorid, data.get("amount"), data.get("remark")
        )
        return jsonify(txn.to_dict()), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to transfer points")
