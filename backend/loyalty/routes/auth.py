# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- POST   /auth/tokens                log in, returns a bearer token
- DELETE /auth/tokens                log out (revokes the caller's token)
- POST   /auth/resets                request a reset token (throttled per IP)
- POST   /auth/resets/<token>        set a new password with a reset token
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_auth
from ..errors import LoyaltyError
from ..extensions import db
from ..services import auth_service, session_service
from ..time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/tokens")
def login_route():
    """
    Authenticate user and create session token.

    The token must be sent as `Authorization: Bearer <token>`.
    """
    try:
        data = request.get_json(silent=True) or {}
        utorid = data.get("utorid")
        password = data.get("password")
        if not utorid or not password:
            return jsonify({"error": "utorid and password required", "kind": "InvalidRequest"}), 400

        user = auth_service.authenticate(utorid, password, ip_address=request.remote_addr)
        session, token = session_service.create_session(user)

        return jsonify({"token": token, "expiresAt": to_utc_z(session.expires_at)}), 200

    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.delete("/tokens")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token)
        return "", 204
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Logout failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/resets")
def request_reset_route():
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.request_password_reset(data.get("utorid"), request.remote_addr)
        return jsonify({
            "expiresAt": to_utc_z(user.reset_expires_at),
            "resetToken": user.reset_token,
        }), 202

    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Reset request failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/resets/<reset_token>")
def complete_reset_route(reset_token: str):
    """Consuming a reset token also signs the user out everywhere."""
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.complete_password_reset(
            reset_token, data.get("utorid"), data.get("password")
        )
        session_service.revoke_all_user_sessions(user.id)
        return jsonify({"message": "OK"}), 200

    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Password reset failed")
        return jsonify({"error": "Internal server error"}), 500
