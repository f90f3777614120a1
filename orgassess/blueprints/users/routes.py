from flask import request, jsonify, current_app
from flask_login import current_user

from orgassess.extensions import db, limiter
from orgassess.services import users as user_svc
from orgassess.services import access_control as ac
from orgassess.services.bulk_users import import_users
from orgassess.services.email import send_invite_email
from orgassess.services.errors import ValidationError
from orgassess.services.policy import login_required_json, permission_required
from orgassess.utils.helpers import safe_int
from . import bp


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


@bp.get("/")
@login_required_json
def list_users():
    rows = user_svc.list_users(
        db.session,
        current_user,
        organization_id=safe_int(request.args.get("organization_id")),
        role=(request.args.get("role") or "").strip() or None,
        q=(request.args.get("q") or "").strip() or None,
        include_inactive=_flag("include_inactive"),
    )
    data = [user_svc.present_user(u, current_user) for u in rows]
    return jsonify(ok=True, rows=[d for d in data if d])


@bp.get("/assignable-roles")
@login_required_json
def assignable_roles():
    return jsonify(ok=True, roles=list(ac.assignable_roles(current_user)))


@bp.post("/")
@login_required_json
def create_user():
    data = request.get_json(silent=True) or {}
    user, password = user_svc.create_user(db.session, current_user, data)
    db.session.commit()
    current_app.logger.info(
        "user_created",
        extra={"event": "user_created", "user_id": user.id, "role": user.role, "by": current_user.id},
    )
    if data.get("send_invite", True):
        send_invite_email(user, password, invited_by=current_user)
    return jsonify(ok=True, user=user.to_dict()), 201


@bp.post("/import")
@permission_required(ac.CREATE_USERS)
@limiter.limit("10 per hour")
def bulk_import():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("Attach a CSV file as 'file'.")
    report = import_users(
        db.session,
        current_user,
        upload.stream,
        organization_id=safe_int(request.form.get("organization_id")),
    )
    db.session.commit()
    current_app.logger.info(
        "users_imported",
        extra={
            "event": "users_imported",
            "created": report.created,
            "skipped": report.skipped,
            "failed": report.failed,
            "by": current_user.id,
        },
    )
    if (request.form.get("send_invites") or "true").lower() in ("1", "true", "yes"):
        for user, password in report.created_users:
            send_invite_email(user, password, invited_by=current_user)
    return jsonify(ok=True, **report.to_dict())


@bp.get("/<int:user_id>")
@login_required_json
def get_user(user_id: int):
    user = user_svc.get_visible_user(db.session, current_user, user_id)
    return jsonify(ok=True, user=user_svc.present_user(user, current_user))


@bp.patch("/<int:user_id>")
@login_required_json
def update_user(user_id: int):
    user = user_svc.update_user(db.session, current_user, user_id, request.get_json(silent=True) or {})
    db.session.commit()
    return jsonify(ok=True, user=user.to_dict())


@bp.delete("/<int:user_id>")
@login_required_json
def deactivate_user(user_id: int):
    user = user_svc.deactivate_user(db.session, current_user, user_id)
    db.session.commit()
    current_app.logger.info(
        "user_deactivated", extra={"event": "user_deactivated", "user_id": user.id, "by": current_user.id}
    )
    return jsonify(ok=True, user=user.to_dict())
