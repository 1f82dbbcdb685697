# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import LoyaltyError
from .permissions import policy
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def error_response(error: LoyaltyError):
    """JSON body and status for a domain error."""
    current_app.logger.debug("%s %s -> %s: %s", request.method, request.path, error.kind, error.message)
    return jsonify(error.to_dict()), error.status_code


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user to the user row as stored right now, so role checks
    downstream never see a role cached at login time.

    Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required", "kind": "Unauthorized"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token", "kind": "Unauthorized"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission for the caller's current role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "kind": "Unauthorized"}), 401

            if not policy.has_permission(g.current_user.role, permission_code):
                return jsonify({
                    "error": "Permission denied",
                    "kind": "Forbidden",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*permission_codes):
    """Require any of the specified permissions."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "kind": "Unauthorized"}), 401

            role = g.current_user.role
            if not any(policy.has_permission(role, code) for code in permission_codes):
                return jsonify({
                    "error": "Permission denied",
                    "kind": "Forbidden",
                    "required_permissions": list(permission_codes),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
