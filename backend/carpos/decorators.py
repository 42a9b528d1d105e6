# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Require an acting user and put it on the request context.

    Authentication happens upstream (API gateway / auth service); it
    forwards the authenticated user id in the X-User-Id header. The id is
    request-scoped and passed explicitly into every service call; services
    never read it from ambient state.

    Sets:
    - g.actor_id: The acting user's id

    Returns 401 if the header is missing or not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER)

        if not raw:
            return jsonify({"error": "Actor identity required", "code": "Unauthenticated"}), 401

        try:
            actor_id = int(raw)
        except ValueError:
            return jsonify({"error": f"{ACTOR_HEADER} must be an integer", "code": "Unauthenticated"}), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
