from flask import jsonify, request
from flask_login import current_user

from orgassess.extensions import db
from orgassess.services import profile as svc
from orgassess.services.policy import login_required_json
from . import bp


def _payload(user, profile, completion) -> dict:
    return {
        "ok": True,
        "user": user.to_dict(),
        "profile": profile.to_dict(),
        "completion": completion.to_dict(),
    }


@bp.get("/")
@login_required_json
def my_profile():
    user, profile, completion = svc.get_profile(db.session, current_user, current_user.id)
    db.session.commit()
    return jsonify(_payload(user, profile, completion))


@bp.patch("/")
@login_required_json
def update_my_profile():
    user, profile, completion = svc.update_profile(
        db.session, current_user, current_user.id, request.get_json(silent=True) or {}
    )
    db.session.commit()
    return jsonify(_payload(user, profile, completion))


@bp.get("/completion")
@login_required_json
def my_completion():
    _, profile, completion = svc.get_profile(db.session, current_user, current_user.id)
    db.session.commit()
    return jsonify(
        ok=True,
        completion=completion.to_dict(),
        profile_completed=profile.profile_completed,
        threshold=svc.completion_threshold(),
    )


@bp.get("/<int:user_id>")
@login_required_json
def get_profile(user_id: int):
    user, profile, completion = svc.get_profile(db.session, current_user, user_id)
    db.session.commit()
    return jsonify(_payload(user, profile, completion))


@bp.patch("/<int:user_id>")
@login_required_json
def update_profile(user_id: int):
    user, profile, completion = svc.update_profile(
        db.session, current_user, user_id, request.get_json(silent=True) or {}
    )
    db.session.commit()
    return jsonify(_payload(user, profile, completion))
