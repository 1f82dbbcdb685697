# Overview: Flask API routes for transactions; parses input and returns JSON responses.

"""Transaction API routes (purchases, adjustments, review and processing)."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_any_permission, require_auth, require_permission
from ..errors import InvalidRequestError, LoyaltyError
from ..extensions import db
from ..models.transactions import TXN_ADJUSTMENT, TXN_PURCHASE
from ..services import transactions_service
from ..validation import parse_bool, parse_id_list, parse_str, require_fields


transactions_bp = Blueprint("transactions", __name__, url_prefix="/transactions")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("")
@require_auth
@require_any_permission("CREATE_PURCHASE", "CREATE_ADJUSTMENT")
def create_transaction_route():
    """
    Create a purchase or an adjustment.

    purchase:   {type, utorid, spent, promotionIds?, remark?}
    adjustment: {type, utorid, amount, relatedId, promotionIds?, remark?}  (managers)
    """
    try:
        data = request.get_json(silent=True) or {}
        txn_type = data.get("type")
        require_fields(data, "utorid", "type")
        utorid = parse_str(data["utorid"], "utorid")
        promotion_ids = parse_id_list(data.get("promotionIds"), "promotionIds")

        if txn_type == TXN_PURCHASE:
            require_fields(data, "spent")
            txn = transactions_service.create_purchase(
                g.current_user, utorid, data["spent"], promotion_ids, data.get("remark")
            )
            body = txn.to_dict()
            body["earned"] = 0 if txn.suspicious else txn.points
            return jsonify(body), 201

        if txn_type == TXN_ADJUSTMENT:
            require_fields(data, "amount", "relatedId")
            txn = transactions_service.create_adjustment(
                g.current_user, utorid, data["amount"], data["relatedId"],
                promotion_ids, data.get("remark"),
            )
            return jsonify(txn.to_dict()), 201

        raise InvalidRequestError("type must be 'purchase' or 'adjustment'")

    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create transaction")


@transactions_bp.get("")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def list_transactions_route():
    try:
        count, txns = transactions_service.list_transactions(g.current_user, request.args)
        return jsonify({"count": count, "results": [t.to_dict() for t in txns]})
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list transactions")


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def get_transaction_route(transaction_id: int):
    try:
        txn = transactions_service.get_transaction(g.current_user, transaction_id)
        return jsonify(txn.to_dict())
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load transaction")


@transactions_bp.patch("/<int:transaction_id>/suspicious")
@require_auth
@require_permission("FLAG_TRANSACTIONS")
def set_suspicious_route(transaction_id: int):
    try:
        data = request.get_json(silent=True) or {}
        suspicious = parse_bool(data.get("suspicious"), "suspicious")
        txn = transactions_service.set_suspicious(g.current_user, transaction_id, suspicious)
        return jsonify(txn.to_dict())
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to flag transaction")


@transactions_bp.patch("/<int:transaction_id>/processed")
@require_auth
@require_permission("PROCESS_REDEMPTION")
def process_redemption_route(transaction_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if data.get("processed") is not True:
            raise InvalidRequestError("processed must be true")
        txn = transactions_service.process_redemption(g.current_user, transaction_id)
        return jsonify(txn.to_dict())
    except LoyaltyError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to process redemption")
