from flask import request, jsonify
from flask_login import current_user

from orgassess.extensions import db
from orgassess.services import dashboard as svc
from orgassess.services.policy import login_required_json, privileged_required
from orgassess.utils.helpers import safe_int
from . import bp


@bp.get("/analytics")
@login_required_json
def analytics():
    """?organization_id=<id> for one organization; omitted = all (admins) or own (org admins)."""
    data = svc.get_analytics(db.session, current_user, safe_int(request.args.get("organization_id")))
    return jsonify(ok=True, analytics=data.to_dict())


@bp.get("/analytics/organizations")
@privileged_required
def analytics_by_org():
    rows = svc.list_organization_analytics(db.session, current_user)
    return jsonify(ok=True, rows=[r.to_dict() for r in rows])


@bp.get("/summary")
@privileged_required
def summary():
    return jsonify(ok=True, summary=svc.system_summary(db.session, current_user))
