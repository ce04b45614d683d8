from functools import wraps
from flask import jsonify
from flask_login import current_user


def require_admin(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            return _deny(401)
        if not getattr(current_user, "is_admin", False):
            return _deny(403)
        return fn(*args, **kwargs)
    return _wrap


def _deny(code: int):
    # JSON-only API: same shape as the login_manager's unauthorized handler
    return jsonify({"error": {401: "unauthorized", 403: "forbidden"}[code], "code": code}), code
