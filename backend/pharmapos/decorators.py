# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .identity import Actor


ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"


def require_actor(f):
    """
    Require an authenticated actor forwarded by the gateway.

    Authentication happens upstream; this only reads the identity headers
    and sets g.actor (an Actor). Every mutation records g.actor.user_id.

    Returns 401 if the id header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip()
        if not raw_id:
            return jsonify({"error": "Authentication required"}), 401
        if not raw_id.isdigit() or int(raw_id) <= 0:
            return jsonify({"error": f"Invalid {ACTOR_ID_HEADER} header"}), 401

        role = (request.headers.get(ACTOR_ROLE_HEADER) or "").strip() or None
        g.actor = Actor(user_id=int(raw_id), role=role)
        return f(*args, **kwargs)

    return decorated_function
