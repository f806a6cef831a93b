# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require an operator identity on the request.

    Sets g.actor_id from the X-Actor-Id header. Authentication itself is
    handled upstream; this only establishes who is acting so that drawers,
    sales and audit events can be attributed.

    Returns 401 if the header is missing, 400 if it is not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER)
        if not raw:
            return jsonify({"error": f"{ACTOR_HEADER} header required"}), 401

        try:
            actor_id = int(raw.strip())
        except ValueError:
            return jsonify({"error": f"{ACTOR_HEADER} must be an integer"}), 400
        if actor_id <= 0:
            return jsonify({"error": f"{ACTOR_HEADER} must be positive"}), 400

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
