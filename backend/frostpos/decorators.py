# Overview: Request decorators establishing the calling actor and enforcing roles.

from functools import wraps
from flask import request, jsonify, g, current_app

ROLE_ADMIN = "ADMIN"
ROLE_CASHIER = "CASHIER"
VALID_ROLES = {ROLE_ADMIN, ROLE_CASHIER}

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


def require_actor(f):
    """
    Establish who is calling.

    Authentication happens upstream; the identity provider forwards the
    authenticated user id and role as headers. Sets:
    - g.user_id: int
    - g.user_role: "ADMIN" | "CASHIER"

    Returns 401 if either header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = request.headers.get(USER_ID_HEADER, "").strip()
        raw_role = request.headers.get(USER_ROLE_HEADER, "").strip().upper()

        if not raw_id or not raw_role:
            return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401

        try:
            user_id = int(raw_id)
        except ValueError:
            return jsonify({"error": "Invalid user id", "kind": "unauthenticated"}), 401

        if user_id <= 0 or raw_role not in VALID_ROLES:
            return jsonify({"error": "Invalid user identity", "kind": "unauthenticated"}), 401

        g.user_id = user_id
        g.user_role = raw_role
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require one of `roles`. Must be applied after @require_actor."""
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = getattr(g, "user_role", None)
            if role is None:
                return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401

            if role not in allowed:
                current_app.logger.warning(
                    "Denied %s %s for user %s (role %s)",
                    request.method, request.path, g.user_id, role,
                )
                return jsonify({
                    "error": "Permission denied",
                    "kind": "forbidden",
                    "details": {"required_roles": sorted(allowed)},
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
