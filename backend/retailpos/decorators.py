# Overview: Request and capability decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import permission_service, session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user (the cashier every write is attributed to) and
    g.session_token. Returns 401 for a missing, revoked or expired token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if user is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability: str):
    """Require a capability of the authenticated user; use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            if not permission_service.has_capability(user, capability):
                return jsonify({
                    "error": "Permission denied",
                    "required_capability": capability,
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
