from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_any_permission, require_auth, require_permission
from ..errors import LoyaltyError
from ..extensions import db
from ..services import promotions_service

promotions_bp = Blueprint("promotions", __name__, url_prefix="/promotions")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@promotions_bp.route("", methods=["POST"])
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def create_promotion():
    try:
        data = request.get_json(silent=True) or {}
        promo = promotions_service.create_promotion(g.current_user, data)
        return jsonify(promo.to_dict()), 201
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create promotion")


@promotions_bp.route("", methods=["GET"])
@require_auth
@require_any_permission("VIEW_PROMOTIONS", "MANAGE_PROMOTIONS")
def list_promotions():
    try:
        count, promos = promotions_service.list_promotions(g.current_user, request.args)
        return jsonify({"count": count, "results": [p.to_dict() for p in promos]})
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list promotions")


@promotions_bp.route("/<int:promo_id>", methods=["GET"])
@require_auth
@require_any_permission("VIEW_PROMOTIONS", "MANAGE_PROMOTIONS")
def get_promotion(promo_id: int):
    try:
        promo = promotions_service.get_promotion(g.current_user, promo_id)
        return jsonify(promo.to_dict())
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load promotion")


@promotions_bp.route("/<int:promo_id>", methods=["PATCH"])
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def update_promotion(promo_id: int):
    """Responds with id, name, type plus the fields that changed."""
    try:
        data = request.get_json(silent=True) or {}
        promo, changed = promotions_service.update_promotion(g.current_user, promo_id, data)
        full = promo.to_dict()
        body = {"id": promo.id, "name": promo.name, "type": promo.type}
        body.update({key: full[key] for key in changed})
        return jsonify(body)
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update promotion")


@promotions_bp.route("/<int:promo_id>", methods=["DELETE"])
@require_auth
@require_permission("MANAGE_PROMOTIONS")
def delete_promotion(promo_id: int):
    try:
        promotions_service.delete_promotion(g.current_user, promo_id)
        return "", 204
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to delete promotion")
