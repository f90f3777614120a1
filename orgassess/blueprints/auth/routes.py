from flask import request, jsonify, current_app
from flask_login import login_user, logout_user, current_user
from flask_wtf.csrf import generate_csrf

from orgassess.extensions import db, limiter
from orgassess.models.organization import ORG_STATUS_SUSPENDED
from orgassess.services import access_control as ac
from orgassess.services import tokens
from orgassess.services import users as user_svc
from orgassess.services.email import send_password_reset_email
from orgassess.services.policy import login_required_json
from orgassess.utils.helpers import utcnow
from . import bp


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _login_email_scope():
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


def _me_payload(user) -> dict:
    return {
        "ok": True,
        "user": user.to_dict(),
        "organization": user.organization.to_dict() if user.organization else None,
        "permissions": sorted(ac.permissions_for(user)),
        "features": ac.available_features(user),
    }


@bp.get("/csrf")
def csrf_token():
    return jsonify(ok=True, csrf_token=generate_csrf())


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")              # per-IP (anon -> IP via _rate_limit_key)
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)  # per-account
def login():
    data = _payload()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    if not email or not password:
        return jsonify(ok=False, error="Email and password are required."), 400

    user = user_svc.find_by_email(db.session, email)
    if user is None or not user.check_password(password):
        current_app.logger.info("login_failed", extra={"event": "login_failed", "reason": "credentials"})
        return jsonify(ok=False, error="Invalid email or password."), 400
    if not user.is_active:
        current_app.logger.info("login_failed", extra={"event": "login_failed", "reason": "inactive", "user_id": user.id})
        return jsonify(ok=False, error="This account has been deactivated."), 403
    if user.organization is not None and user.organization.status == ORG_STATUS_SUSPENDED:
        current_app.logger.info("login_failed", extra={"event": "login_failed", "reason": "org_suspended", "user_id": user.id})
        return jsonify(ok=False, error="Your organization has been suspended. Contact support."), 403

    user.last_login_at = utcnow()
    db.session.commit()
    login_user(user, remember=bool(data.get("remember")))
    current_app.logger.info("login", extra={"event": "login", "user_id": user.id, "role": user.role})
    return jsonify(_me_payload(user))


@bp.post("/logout")
def logout():
    if current_user.is_authenticated:
        logout_user()
    return jsonify(ok=True)


@bp.get("/me")
@login_required_json
def me():
    return jsonify(_me_payload(current_user))


@bp.post("/password/change")
@login_required_json
@limiter.limit("10 per hour")
def change_password():
    data = _payload()
    user_svc.change_password(
        db.session,
        current_user,
        data.get("current_password") or "",
        data.get("new_password") or "",
    )
    db.session.commit()
    current_app.logger.info("password_changed", extra={"event": "password_changed", "user_id": current_user.id})
    return jsonify(ok=True)


@bp.post("/password/reset-request")
@limiter.limit("10 per hour")
def reset_request():
    data = _payload()
    user = user_svc.find_by_email(db.session, data.get("email") or "")
    if user is not None and user.is_active:
        send_password_reset_email(user)
    # Always respond the same way
    return jsonify(ok=True, message="If that account exists, a reset link is on its way.")


def _set_password_from_token(kind: str):
    data = _payload()
    token = (data.get("token") or "").strip()
    email = tokens.verify(kind, token, max_age_seconds=tokens.ttl_seconds(kind)) if token else None
    if not email:
        return jsonify(ok=False, error="This link has expired or is invalid."), 400

    password = data.get("password") or ""
    confirm = data.get("confirm")
    if confirm is not None and confirm != password:
        return jsonify(ok=False, error="Passwords do not match."), 400

    user = user_svc.find_by_email(db.session, email)
    if user is None or not user.is_active:
        return jsonify(ok=False, error="This link has expired or is invalid."), 400
    user_svc.set_password(db.session, user, password)
    db.session.commit()
    current_app.logger.info("password_set", extra={"event": "password_set", "user_id": user.id, "via": kind})
    return jsonify(ok=True)


@bp.post("/password/reset")
@limiter.limit("10 per hour")
def reset_confirm():
    return _set_password_from_token(tokens.TOKEN_RESET)


@bp.post("/set-password")
@limiter.limit("10 per hour")
def set_password():
    return _set_password_from_token(tokens.TOKEN_INVITE)
