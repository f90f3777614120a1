from flask import request, jsonify, current_app
from flask_login import current_user

from orgassess.extensions import db
from orgassess.models.user import ADMIN_ROLES
from orgassess.services import organizations as org_svc
from orgassess.services import departments as dept_svc
from orgassess.services.policy import login_required_json, role_required
from . import bp


@bp.get("/")
@login_required_json
def list_orgs():
    orgs = org_svc.list_organizations(
        db.session,
        current_user,
        status=(request.args.get("status") or "").strip() or None,
        q=(request.args.get("q") or "").strip() or None,
    )
    return jsonify(ok=True, rows=[o.to_dict() for o in orgs])


@bp.post("/")
@login_required_json
def create_org():
    org = org_svc.create_organization(db.session, current_user, request.get_json(silent=True) or {})
    db.session.commit()
    current_app.logger.info("org_created", extra={"event": "org_created", "organization_id": org.id, "by": current_user.id})
    return jsonify(ok=True, organization=org.to_dict()), 201


@bp.get("/<int:org_id>")
@login_required_json
def get_org(org_id: int):
    org = org_svc.get_visible_organization(db.session, current_user, org_id)
    return jsonify(ok=True, organization=org.to_dict())


@bp.patch("/<int:org_id>")
@login_required_json
def update_org(org_id: int):
    org = org_svc.update_organization(db.session, current_user, org_id, request.get_json(silent=True) or {})
    db.session.commit()
    return jsonify(ok=True, organization=org.to_dict())


@bp.post("/<int:org_id>/status")
@login_required_json
def set_org_status(org_id: int):
    data = request.get_json(silent=True) or {}
    org = org_svc.set_status(db.session, current_user, org_id, (data.get("status") or "").strip())
    db.session.commit()
    current_app.logger.info(
        "org_status_changed",
        extra={"event": "org_status_changed", "organization_id": org.id, "status": org.status, "by": current_user.id},
    )
    return jsonify(ok=True, organization=org.to_dict())


@bp.put("/<int:org_id>/admin-permissions")
@login_required_json
def set_admin_permissions(org_id: int):
    data = request.get_json(silent=True) or {}
    org = org_svc.update_admin_permissions(db.session, current_user, org_id, data.get("permissions"))
    db.session.commit()
    return jsonify(ok=True, organization=org.to_dict())


@bp.delete("/<int:org_id>")
@login_required_json
def delete_org(org_id: int):
    org_svc.delete_organization(db.session, current_user, org_id)
    db.session.commit()
    current_app.logger.info("org_deleted", extra={"event": "org_deleted", "organization_id": org_id, "by": current_user.id})
    return jsonify(ok=True)


@bp.get("/<int:org_id>/departments")
@login_required_json
def list_departments(org_id: int):
    rows = dept_svc.list_departments(db.session, current_user, org_id)
    return jsonify(ok=True, rows=[d.to_dict() for d in rows])


@bp.post("/<int:org_id>/departments")
@role_required(*ADMIN_ROLES)
def create_department(org_id: int):
    dept = dept_svc.create_department(db.session, current_user, org_id, request.get_json(silent=True) or {})
    db.session.commit()
    current_app.logger.info(
        "department_created",
        extra={"event": "department_created", "organization_id": org_id, "department_id": dept.id, "by": current_user.id},
    )
    return jsonify(ok=True, department=dept.to_dict()), 201


@bp.patch("/departments/<int:dept_id>")
@role_required(*ADMIN_ROLES)
def update_department(dept_id: int):
    dept = dept_svc.update_department(db.session, current_user, dept_id, request.get_json(silent=True) or {})
    db.session.commit()
    return jsonify(ok=True, department=dept.to_dict())


@bp.delete("/departments/<int:dept_id>")
@role_required(*ADMIN_ROLES)
def delete_department(dept_id: int):
    dept_svc.delete_department(db.session, current_user, dept_id)
    db.session.commit()
    current_app.logger.info(
        "department_deleted", extra={"event": "department_deleted", "department_id": dept_id, "by": current_user.id}
    )
    return jsonify(ok=True)
