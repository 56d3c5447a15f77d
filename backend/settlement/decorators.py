# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


OPERATOR_HEADER = "X-Operator-Id"


def require_operator(f):
    """
    Require an operator context on mutating requests.

    Sets g.operator_id from the X-Operator-Id header. The value is trusted
    as-is; authenticating the operator happens upstream of this service.

    Returns 400 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        operator_id = (request.headers.get(OPERATOR_HEADER) or "").strip()
        if not operator_id:
            return jsonify({"error": f"{OPERATOR_HEADER} header required"}), 400
        if len(operator_id) > 64:
            return jsonify({"error": f"{OPERATOR_HEADER} exceeds max length 64"}), 400

        g.operator_id = operator_id
        return f(*args, **kwargs)

    return decorated_function
