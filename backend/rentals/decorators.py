# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .errors import Forbidden, Unauthorized
from .services import session_service
from .services.approval_gate import Actor, Role, can_review


def _is_authenticated() -> bool:
    return hasattr(g, "current_user") and hasattr(g, "actor")


def require_auth(f):
    """
    Require a valid bearer token.

    Sets the following Flask g attributes:
    - g.current_user: the authenticated User
    - g.actor: the same identity as an approval_gate.Actor
    - g.session_context: the full SessionContext

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify(Unauthorized().to_dict()), Unauthorized.status_code

        token = auth_header.split(" ", 1)[1].strip()
        context = session_service.validate_session(token)

        if not context:
            return jsonify(Unauthorized("Invalid or expired token").to_dict()), Unauthorized.status_code

        g.current_user = context.user
        g.actor = Actor.from_user(context.user)
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_reviewer(f):
    """Managers and admins only. Use after @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify(Unauthorized().to_dict()), Unauthorized.status_code
        if not can_review(g.actor):
            return jsonify(Forbidden("Manager or admin access required").to_dict()), Forbidden.status_code
        return f(*args, **kwargs)
    return decorated_function


def require_admin(f):
    """Admins only. Use after @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify(Unauthorized().to_dict()), Unauthorized.status_code
        if g.actor.role is not Role.ADMIN:
            return jsonify(Forbidden("Admin access required").to_dict()), Forbidden.status_code
        return f(*args, **kwargs)
    return decorated_function
