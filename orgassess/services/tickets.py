"""
Support tickets and their status workflow.

    open ──► in_progress ──► resolved ──► closed
      │          │   ▲           │
      │          ▼   │           └──► in_progress (reopen)
      └────► escalated ──► resolved / closed

Admins (manage_support anywhere, or the org admin of the ticket's organization)
drive every transition; a ticket's owner may only close it.
"""
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session
from werkzeug.datastructures import FileStorage

from orgassess.models import SupportTicket, TicketMessage, TicketAttachment, User, Organization
from orgassess.models.support_ticket import (
    TICKET_OPEN,
    TICKET_IN_PROGRESS,
    TICKET_RESOLVED,
    TICKET_CLOSED,
    TICKET_ESCALATED,
    TICKET_STATUSES,
    TICKET_PRIORITIES,
    TICKET_CATEGORIES,
)
from orgassess.models.user import ROLE_ORG_ADMIN
from orgassess.services import access_control as ac
from orgassess.services import storage
from orgassess.services.errors import ValidationError, PermissionDenied, NotFound, Conflict
from orgassess.utils.helpers import safe_int, utcnow
from orgassess.utils.validators import clean_str, clean_text

TRANSITIONS = {
    TICKET_OPEN: (TICKET_IN_PROGRESS, TICKET_ESCALATED, TICKET_RESOLVED, TICKET_CLOSED),
    TICKET_IN_PROGRESS: (TICKET_RESOLVED, TICKET_ESCALATED, TICKET_OPEN),
    TICKET_ESCALATED: (TICKET_IN_PROGRESS, TICKET_RESOLVED, TICKET_CLOSED),
    TICKET_RESOLVED: (TICKET_CLOSED, TICKET_IN_PROGRESS),
    TICKET_CLOSED: (),
}
RATEABLE_STATUSES = (TICKET_RESOLVED, TICKET_CLOSED)
MAX_MESSAGE_LENGTH = 10000


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


def is_ticket_admin(actor, ticket: SupportTicket) -> bool:
    if ac.has_permission(actor, ac.MANAGE_SUPPORT):
        return True
    return ac.is_org_admin_of(actor, ticket.organization_id)


def _can_see(actor, ticket: SupportTicket) -> bool:
    if actor is None:
        return False
    return actor.id == ticket.staff_member_id or is_ticket_admin(actor, ticket)


# --- queries ---

def list_tickets(
    session: Session,
    actor,
    *,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    category: Optional[str] = None,
    assigned_to_id: Optional[int] = None,
    organization_id: Optional[int] = None,
) -> List[SupportTicket]:
    query = session.query(SupportTicket)
    if ac.has_permission(actor, ac.MANAGE_SUPPORT):
        if organization_id is not None:
            query = query.filter(SupportTicket.organization_id == organization_id)
    elif actor.role == ROLE_ORG_ADMIN:
        query = query.filter(SupportTicket.organization_id == actor.organization_id)
    else:
        query = query.filter(SupportTicket.staff_member_id == actor.id)

    if status:
        if status not in TICKET_STATUSES:
            raise ValidationError("Unknown ticket status.")
        query = query.filter(SupportTicket.status == status)
    if priority:
        if priority not in TICKET_PRIORITIES:
            raise ValidationError("Unknown ticket priority.")
        query = query.filter(SupportTicket.priority == priority)
    if category:
        if category not in TICKET_CATEGORIES:
            raise ValidationError("Unknown ticket category.")
        query = query.filter(SupportTicket.category == category)
    if assigned_to_id is not None:
        query = query.filter(SupportTicket.assigned_to_id == assigned_to_id)
    return query.order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc()).all()


def get_ticket(session: Session, actor, ticket_id: int) -> SupportTicket:
    ticket = session.get(SupportTicket, ticket_id)
    if ticket is None or not _can_see(actor, ticket):
        raise NotFound("Ticket not found.")
    return ticket


# --- writes ---

def create_ticket(session: Session, actor, data: dict) -> SupportTicket:
    subject = clean_str(data.get("subject"))
    if not subject:
        raise ValidationError("Subject is required.")
    priority = data.get("priority") or "medium"
    if priority not in TICKET_PRIORITIES:
        raise ValidationError(f"Priority must be one of: {', '.join(TICKET_PRIORITIES)}.")
    category = data.get("category") or "general"
    if category not in TICKET_CATEGORIES:
        raise ValidationError(f"Category must be one of: {', '.join(TICKET_CATEGORIES)}.")

    org_id = actor.organization_id
    if org_id is None and ac.is_privileged(actor):
        org_id = safe_int(data.get("organization_id"))
    if org_id is None or session.get(Organization, org_id) is None:
        raise ValidationError("Organization is required.")

    ticket = SupportTicket(
        staff_member_id=actor.id,
        organization_id=org_id,
        subject=subject,
        description=clean_text(data.get("description")),
        priority=priority,
        category=category,
        status=TICKET_OPEN,
    )
    session.add(ticket)
    session.flush()
    return ticket


def update_ticket(session: Session, actor, ticket_id: int, data: dict) -> SupportTicket:
    """Priority/category triage by admins; the owner may fix subject/description while open."""
    ticket = get_ticket(session, actor, ticket_id)
    admin = is_ticket_admin(actor, ticket)
    if "priority" in data or "category" in data:
        if not admin:
            raise PermissionDenied("Only support staff can triage tickets.")
        if "priority" in data:
            if data["priority"] not in TICKET_PRIORITIES:
                raise ValidationError(f"Priority must be one of: {', '.join(TICKET_PRIORITIES)}.")
            ticket.priority = data["priority"]
        if "category" in data:
            if data["category"] not in TICKET_CATEGORIES:
                raise ValidationError(f"Category must be one of: {', '.join(TICKET_CATEGORIES)}.")
            ticket.category = data["category"]
    if "subject" in data or "description" in data:
        if actor.id != ticket.staff_member_id and not admin:
            raise PermissionDenied("You cannot edit this ticket.")
        if ticket.status == TICKET_CLOSED:
            raise Conflict("Closed tickets cannot be edited.")
        if "subject" in data:
            subject = clean_str(data.get("subject"))
            if not subject:
                raise ValidationError("Subject cannot be blank.")
            ticket.subject = subject
        if "description" in data:
            ticket.description = clean_text(data.get("description"))
    session.flush()
    return ticket


def change_status(session: Session, actor, ticket_id: int, status: str) -> Tuple[SupportTicket, str]:
    """Returns (ticket, previous status)."""
    ticket = get_ticket(session, actor, ticket_id)
    if status not in TICKET_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(TICKET_STATUSES)}.")
    if not is_ticket_admin(actor, ticket):
        if not (actor.id == ticket.staff_member_id and status == TICKET_CLOSED):
            raise PermissionDenied("Only support staff can change this ticket's status.")
    old = ticket.status
    if status == old:
        raise Conflict(f"Ticket is already {old.replace('_', ' ')}.")
    if not can_transition(old, status):
        raise Conflict(f"Cannot move a ticket from {old.replace('_', ' ')} to {status.replace('_', ' ')}.")

    now = utcnow()
    ticket.status = status
    if status == TICKET_RESOLVED:
        ticket.resolved_at = now
    elif status == TICKET_CLOSED:
        ticket.closed_at = now
    elif status == TICKET_IN_PROGRESS and old == TICKET_RESOLVED:
        ticket.resolved_at = None
    session.flush()
    return ticket, old


def assign_ticket(session: Session, actor, ticket_id: int, assignee_id) -> SupportTicket:
    """assignee_id=None clears the assignment."""
    ticket = get_ticket(session, actor, ticket_id)
    if not is_ticket_admin(actor, ticket):
        raise PermissionDenied("Only support staff can assign tickets.")
    if ticket.status == TICKET_CLOSED:
        raise Conflict("Closed tickets cannot be reassigned.")

    if assignee_id in (None, ""):
        ticket.assigned_to_id = None
        ticket.assigned_at = None
        session.flush()
        return ticket

    assignee = session.get(User, safe_int(assignee_id)) if safe_int(assignee_id) else None
    eligible = assignee is not None and assignee.is_active and (
        ac.is_privileged(assignee) or ac.is_org_admin_of(assignee, ticket.organization_id)
    )
    if not eligible:
        raise ValidationError("Tickets can only be assigned to an active administrator.")
    ticket.assigned_to_id = assignee.id
    ticket.assigned_at = utcnow()
    if ticket.status == TICKET_OPEN:
        ticket.status = TICKET_IN_PROGRESS
    session.flush()
    return ticket


def rate_ticket(session: Session, actor, ticket_id: int, rating) -> SupportTicket:
    ticket = get_ticket(session, actor, ticket_id)
    if actor.id != ticket.staff_member_id:
        raise PermissionDenied("Only the person who opened the ticket can rate it.")
    if ticket.status not in RATEABLE_STATUSES:
        raise Conflict("Tickets can be rated once they are resolved or closed.")
    value = safe_int(rating)
    if value is None or not 1 <= value <= 5:
        raise ValidationError("Rating must be a whole number from 1 to 5.")
    ticket.satisfaction_rating = value
    session.flush()
    return ticket


# --- conversation ---

def add_message(session: Session, actor, ticket_id: int, text: str) -> TicketMessage:
    ticket = get_ticket(session, actor, ticket_id)
    if ticket.status == TICKET_CLOSED:
        raise Conflict("This ticket is closed; open a new ticket instead.")
    body = clean_text(text)
    if not body:
        raise ValidationError("Message cannot be empty.")
    if len(body) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message is too long (max {MAX_MESSAGE_LENGTH} characters).")
    message = TicketMessage(sender_id=actor.id, message_text=body)
    ticket.messages.append(message)
    ticket.updated_at = utcnow()
    session.flush()
    return message


def add_attachment(
    session: Session,
    actor,
    ticket_id: int,
    file: FileStorage,
    message_id: Optional[int] = None,
) -> TicketAttachment:
    ticket = get_ticket(session, actor, ticket_id)
    if ticket.status == TICKET_CLOSED:
        raise Conflict("This ticket is closed; open a new ticket instead.")
    if message_id is not None:
        message = session.get(TicketMessage, message_id)
        if message is None or message.ticket_id != ticket.id:
            raise ValidationError("Message does not belong to this ticket.")

    name, rel_path, size = storage.save_attachment(file, ticket.id, message_id)
    attachment = TicketAttachment(
        message_id=message_id,
        uploaded_by_id=actor.id,
        file_name=name,
        storage_path=rel_path,
        file_size=size,
        mime_type=file.mimetype or None,
    )
    ticket.attachments.append(attachment)
    ticket.updated_at = utcnow()
    session.flush()
    return attachment


def get_attachment(session: Session, actor, attachment_id: int) -> Tuple[TicketAttachment, str]:
    """Returns (attachment, absolute file path)."""
    attachment = session.get(TicketAttachment, attachment_id)
    if attachment is None:
        raise NotFound("Attachment not found.")
    get_ticket(session, actor, attachment.ticket_id)
    return attachment, storage.absolute_path(attachment.storage_path)
