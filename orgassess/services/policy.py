from functools import wraps
from flask import jsonify
from flask_login import current_user
from orgassess.services import access_control

_ERRORS = {401: "unauthorized", 403: "forbidden", 404: "not_found"}


def _abort_smart(code: int):
    # JSON-only API: always a JSON-shaped error
    return jsonify({"ok": False, "error": _ERRORS[code], "code": code}), code


def _authenticated() -> bool:
    return bool(getattr(current_user, "is_authenticated", False)) and bool(getattr(current_user, "is_active", False))


def login_required_json(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not _authenticated():
            return _abort_smart(401)
        return fn(*args, **kwargs)
    return _wrap


def role_required(*roles):
    def deco(fn):
        @wraps(fn)
        def _wrap(*args, **kwargs):
            if not _authenticated():
                return _abort_smart(401)
            if current_user.role not in roles:
                return _abort_smart(403)
            return fn(*args, **kwargs)
        return _wrap
    return deco


def permission_required(*permissions):
    """All listed permissions must be granted by the caller's role."""
    def deco(fn):
        @wraps(fn)
        def _wrap(*args, **kwargs):
            if not _authenticated():
                return _abort_smart(401)
            if not all(access_control.has_permission(current_user, p) for p in permissions):
                return _abort_smart(403)
            return fn(*args, **kwargs)
        return _wrap
    return deco


def privileged_required(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not _authenticated():
            return _abort_smart(401)
        if not access_control.is_privileged(current_user):
            return _abort_smart(403)
        return fn(*args, **kwargs)
    return _wrap
