from flask import request, jsonify, current_app, send_file
from flask_login import current_user

from orgassess.extensions import db
from orgassess.models.support_ticket import TICKET_PRIORITIES, TICKET_CATEGORIES, TICKET_STATUSES
from orgassess.services import tickets as svc
from orgassess.services.email import send_ticket_status_email
from orgassess.services.policy import login_required_json
from orgassess.utils.helpers import safe_int
from . import bp


def _json() -> dict:
    return request.get_json(silent=True) or {}


def _ticket_payload(ticket, with_thread: bool = False) -> dict:
    data = ticket.to_dict()
    data["can_manage"] = svc.is_ticket_admin(current_user, ticket)
    if with_thread:
        data["messages"] = [m.to_dict() for m in ticket.messages]
        data["attachments"] = [a.to_dict() for a in ticket.attachments]
    return data


@bp.get("/meta")
@login_required_json
def meta():
    return jsonify(
        ok=True,
        statuses=list(TICKET_STATUSES),
        priorities=list(TICKET_PRIORITIES),
        categories=list(TICKET_CATEGORIES),
        transitions={k: list(v) for k, v in svc.TRANSITIONS.items()},
    )


@bp.get("/tickets")
@login_required_json
def list_tickets():
    rows = svc.list_tickets(
        db.session,
        current_user,
        status=(request.args.get("status") or "").strip() or None,
        priority=(request.args.get("priority") or "").strip() or None,
        category=(request.args.get("category") or "").strip() or None,
        assigned_to_id=safe_int(request.args.get("assigned_to_id")),
        organization_id=safe_int(request.args.get("organization_id")),
    )
    return jsonify(ok=True, rows=[t.to_dict() for t in rows])


@bp.post("/tickets")
@login_required_json
def create_ticket():
    ticket = svc.create_ticket(db.session, current_user, _json())
    db.session.commit()
    current_app.logger.info(
        "ticket_created",
        extra={"event": "ticket_created", "ticket_id": ticket.id, "priority": ticket.priority, "by": current_user.id},
    )
    return jsonify(ok=True, ticket=_ticket_payload(ticket)), 201


@bp.get("/tickets/<int:ticket_id>")
@login_required_json
def get_ticket(ticket_id: int):
    ticket = svc.get_ticket(db.session, current_user, ticket_id)
    return jsonify(ok=True, ticket=_ticket_payload(ticket, with_thread=True))


@bp.patch("/tickets/<int:ticket_id>")
@login_required_json
def update_ticket(ticket_id: int):
    ticket = svc.update_ticket(db.session, current_user, ticket_id, _json())
    db.session.commit()
    return jsonify(ok=True, ticket=_ticket_payload(ticket))


@bp.post("/tickets/<int:ticket_id>/status")
@login_required_json
def change_status(ticket_id: int):
    ticket, old = svc.change_status(db.session, current_user, ticket_id, (_json().get("status") or "").strip())
    db.session.commit()
    current_app.logger.info(
        "ticket_status_changed",
        extra={"event": "ticket_status_changed", "ticket_id": ticket.id, "from": old, "to": ticket.status, "by": current_user.id},
    )
    if ticket.staff_member_id != current_user.id:
        send_ticket_status_email(ticket, old)
    return jsonify(ok=True, ticket=_ticket_payload(ticket))


@bp.post("/tickets/<int:ticket_id>/assign")
@login_required_json
def assign(ticket_id: int):
    ticket = svc.assign_ticket(db.session, current_user, ticket_id, _json().get("assigned_to_id"))
    db.session.commit()
    current_app.logger.info(
        "ticket_assigned",
        extra={"event": "ticket_assigned", "ticket_id": ticket.id, "assigned_to_id": ticket.assigned_to_id, "by": current_user.id},
    )
    return jsonify(ok=True, ticket=_ticket_payload(ticket))


@bp.post("/tickets/<int:ticket_id>/rating")
@login_required_json
def rate(ticket_id: int):
    ticket = svc.rate_ticket(db.session, current_user, ticket_id, _json().get("rating"))
    db.session.commit()
    return jsonify(ok=True, ticket=_ticket_payload(ticket))


@bp.get("/tickets/<int:ticket_id>/messages")
@login_required_json
def list_messages(ticket_id: int):
    ticket = svc.get_ticket(db.session, current_user, ticket_id)
    return jsonify(ok=True, rows=[m.to_dict() for m in ticket.messages])


@bp.post("/tickets/<int:ticket_id>/messages")
@login_required_json
def add_message(ticket_id: int):
    message = svc.add_message(db.session, current_user, ticket_id, _json().get("message_text"))
    db.session.commit()
    return jsonify(ok=True, message=message.to_dict()), 201


@bp.post("/tickets/<int:ticket_id>/attachments")
@login_required_json
def upload_attachment(ticket_id: int):
    attachment = svc.add_attachment(
        db.session,
        current_user,
        ticket_id,
        request.files.get("file"),
        message_id=safe_int(request.form.get("message_id")),
    )
    db.session.commit()
    return jsonify(ok=True, attachment=attachment.to_dict()), 201


@bp.get("/attachments/<int:attachment_id>")
@login_required_json
def download_attachment(attachment_id: int):
    attachment, path = svc.get_attachment(db.session, current_user, attachment_id)
    return send_file(
        path,
        mimetype=attachment.mime_type or "application/octet-stream",
        as_attachment=True,
        download_name=attachment.file_name,
    )
