from datetime import datetime

from flask import request, jsonify, current_app, make_response
from flask_login import current_user

from orgassess.extensions import db
from orgassess.services import assessments as svc
from orgassess.services import assignments as assign_svc
from orgassess.services.errors import ValidationError
from orgassess.services import access_control as ac
from orgassess.services.policy import login_required_json, permission_required
from orgassess.utils.helpers import safe_int
from . import bp


def _json() -> dict:
    return request.get_json(silent=True) or {}


def _arg(name: str):
    return (request.args.get(name) or "").strip() or None


# --- assessments ---

@bp.get("/")
@login_required_json
def list_assessments():
    rows = svc.list_assessments(
        db.session,
        current_user,
        organization_id=safe_int(request.args.get("organization_id")),
        status=_arg("status"),
        q=_arg("q"),
    )
    return jsonify(ok=True, rows=[a.to_dict() for a in rows])


@bp.post("/")
@login_required_json
def create_assessment():
    assessment = svc.create_assessment(db.session, current_user, _json())
    db.session.commit()
    current_app.logger.info(
        "assessment_created",
        extra={"event": "assessment_created", "assessment_id": assessment.id, "by": current_user.id},
    )
    return jsonify(ok=True, assessment=assessment.to_dict(include_sections=True)), 201


@bp.get("/<int:assessment_id>")
@login_required_json
def get_assessment(assessment_id: int):
    assessment = svc.get_visible_assessment(db.session, current_user, assessment_id)
    return jsonify(ok=True, assessment=assessment.to_dict(include_sections=True))


@bp.patch("/<int:assessment_id>")
@login_required_json
def update_assessment(assessment_id: int):
    assessment = svc.update_assessment(db.session, current_user, assessment_id, _json())
    db.session.commit()
    return jsonify(ok=True, assessment=assessment.to_dict())


@bp.delete("/<int:assessment_id>")
@login_required_json
def delete_assessment(assessment_id: int):
    svc.delete_assessment(db.session, current_user, assessment_id)
    db.session.commit()
    current_app.logger.info(
        "assessment_deleted", extra={"event": "assessment_deleted", "assessment_id": assessment_id, "by": current_user.id}
    )
    return jsonify(ok=True)


@bp.post("/<int:assessment_id>/status")
@login_required_json
def set_status(assessment_id: int):
    assessment = svc.set_status(db.session, current_user, assessment_id, (_json().get("status") or "").strip())
    db.session.commit()
    current_app.logger.info(
        "assessment_status_changed",
        extra={"event": "assessment_status_changed", "assessment_id": assessment.id, "status": assessment.status},
    )
    return jsonify(ok=True, assessment=assessment.to_dict())


# --- structure ---

@bp.post("/<int:assessment_id>/sections")
@login_required_json
def add_section(assessment_id: int):
    section = svc.add_section(db.session, current_user, assessment_id, _json())
    db.session.commit()
    return jsonify(ok=True, section=section.to_dict()), 201


@bp.patch("/sections/<int:section_id>")
@login_required_json
def update_section(section_id: int):
    section = svc.update_section(db.session, current_user, section_id, _json())
    db.session.commit()
    return jsonify(ok=True, section=section.to_dict())


@bp.delete("/sections/<int:section_id>")
@login_required_json
def delete_section(section_id: int):
    svc.delete_section(db.session, current_user, section_id)
    db.session.commit()
    return jsonify(ok=True)


@bp.post("/sections/<int:section_id>/questions")
@login_required_json
def add_question(section_id: int):
    question = svc.add_question(db.session, current_user, section_id, _json())
    db.session.commit()
    return jsonify(ok=True, question=question.to_dict()), 201


@bp.patch("/questions/<int:question_id>")
@login_required_json
def update_question(question_id: int):
    question = svc.update_question(db.session, current_user, question_id, _json())
    db.session.commit()
    return jsonify(ok=True, question=question.to_dict())


@bp.delete("/questions/<int:question_id>")
@login_required_json
def delete_question(question_id: int):
    svc.delete_question(db.session, current_user, question_id)
    db.session.commit()
    return jsonify(ok=True)


# --- competencies ---

@bp.get("/competencies")
@login_required_json
def list_competencies():
    rows = svc.list_competencies(db.session, current_user, safe_int(request.args.get("organization_id")))
    return jsonify(ok=True, rows=[c.to_dict() for c in rows])


@bp.post("/competencies")
@login_required_json
def create_competency():
    comp = svc.create_competency(db.session, current_user, _json())
    db.session.commit()
    return jsonify(ok=True, competency=comp.to_dict()), 201


# --- assignments ---

@bp.post("/<int:assessment_id>/assignments")
@login_required_json
def create_assignments(assessment_id: int):
    data = _json()
    items = data.get("assignments")
    if items is None:
        items = [data]
    if not isinstance(items, list):
        raise ValidationError("Assignments must be a list.")
    created = assign_svc.create_assignments(
        db.session,
        current_user,
        assessment_id,
        items,
        organization_id=safe_int(data.get("organization_id")),
    )
    db.session.commit()
    current_app.logger.info(
        "assignments_created",
        extra={"event": "assignments_created", "assessment_id": assessment_id, "count": len(created), "by": current_user.id},
    )
    return jsonify(ok=True, rows=[a.to_dict() for a in created]), 201


@bp.get("/assignments")
@login_required_json
def list_assignments():
    rows = assign_svc.list_assignments(
        db.session,
        current_user,
        status=_arg("status"),
        assessment_id=safe_int(request.args.get("assessment_id")),
        organization_id=safe_int(request.args.get("organization_id")),
        as_role=_arg("as"),
    )
    return jsonify(ok=True, rows=[a.to_dict() for a in rows])


@bp.get("/assignments/<int:assignment_id>")
@login_required_json
def get_assignment(assignment_id: int):
    assignment = assign_svc.get_assignment(db.session, current_user, assignment_id)
    payload = assignment.to_dict()
    payload["assessment"] = assignment.assessment.to_dict(include_sections=True)
    payload["responses"] = [r.to_dict() for r in assignment.responses]
    return jsonify(ok=True, assignment=payload)


@bp.delete("/assignments/<int:assignment_id>")
@login_required_json
def delete_assignment(assignment_id: int):
    assign_svc.delete_assignment(db.session, current_user, assignment_id)
    db.session.commit()
    return jsonify(ok=True)


@bp.put("/assignments/<int:assignment_id>/responses")
@login_required_json
def save_responses(assignment_id: int):
    answers = _json().get("responses")
    if not isinstance(answers, list):
        raise ValidationError("Responses must be a list.")
    saved = assign_svc.save_responses(db.session, current_user, assignment_id, answers)
    db.session.commit()
    return jsonify(ok=True, rows=[r.to_dict() for r in saved])


@bp.post("/assignments/<int:assignment_id>/submit")
@login_required_json
def submit(assignment_id: int):
    answers = _json().get("responses")
    if answers is not None and not isinstance(answers, list):
        raise ValidationError("Responses must be a list.")
    result = assign_svc.submit_assignment(db.session, current_user, assignment_id, answers)
    db.session.commit()
    current_app.logger.info(
        "assessment_submitted",
        extra={"event": "assessment_submitted", "assignment_id": assignment_id, "by": current_user.id},
    )
    return jsonify(ok=True, result=result.to_dict())


@bp.get("/assignments/<int:assignment_id>/result")
@login_required_json
def get_result(assignment_id: int):
    result = assign_svc.get_result(db.session, current_user, assignment_id)
    return jsonify(ok=True, result=result.to_dict())


@bp.get("/results")
@login_required_json
def list_results():
    rows = assign_svc.list_results(
        db.session,
        current_user,
        organization_id=safe_int(request.args.get("organization_id")),
        assessment_id=safe_int(request.args.get("assessment_id")),
    )
    return jsonify(ok=True, rows=[r.to_dict() for r in rows])


@bp.get("/results/export")
@permission_required(ac.EXPORT_RESULTS)
def export_results():
    csv_str = assign_svc.export_results_csv(
        db.session,
        current_user,
        organization_id=safe_int(request.args.get("organization_id")),
        assessment_id=safe_int(request.args.get("assessment_id")),
    )
    current_app.logger.info("results_exported", extra={"event": "results_exported", "by": current_user.id})

    stamp = datetime.now().strftime("%Y%m%d")
    filename = f"assessment_results_{stamp}.csv"

    resp = make_response(csv_str)
    resp.headers["Content-Type"] = "text/csv; charset=utf-8"
    resp.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return resp
