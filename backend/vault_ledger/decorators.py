# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require an acting user identity on mutating requests.

    Authentication happens upstream; the gateway forwards the verified user id
    in X-Actor-Id. Sets g.actor for the route. Every audit record names an
    actor, so requests without one are refused with 401.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor:
            return jsonify({
                "error": "ACTOR_REQUIRED",
                "message": f"{ACTOR_HEADER} header is required",
            }), 401

        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function
