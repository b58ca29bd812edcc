from functools import wraps
from flask import g, jsonify

# ADMIN passes every role check
SUPERUSER_ROLE = "ADMIN"


def user_role_names(user) -> set:
    if user is None:
        return set()
    return user.role_names


def require_roles(*role_names: str):
    """
    Usage: @require_roles("MANAGER")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            roles = user_role_names(user)
            if SUPERUSER_ROLE not in roles and not roles.intersection(role_names):
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
