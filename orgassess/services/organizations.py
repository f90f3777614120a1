from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orgassess.models import Organization, User
from orgassess.models.organization import ORG_STATUSES, ORG_ADMIN_PERMISSIONS
from orgassess.services import access_control as ac
from orgassess.services.errors import ValidationError, PermissionDenied, NotFound, Conflict
from orgassess.utils.validators import clean_str, normalize_email, is_valid_email, normalize_phone

_TEXT_FIELDS = {
    "address": 500,
    "industry": 120,
    "size": 40,
    "logo_url": 500,
}


def _require_manage(actor) -> None:
    # actor=None is the trusted path (CLI)
    if actor is not None and not ac.has_permission(actor, ac.MANAGE_ORGANIZATIONS):
        raise PermissionDenied("You do not have permission to manage organizations.")


def _name_taken(session: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    q = session.query(Organization.id).filter(func.lower(Organization.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Organization.id != exclude_id)
    return session.query(q.exists()).scalar()


def _apply_fields(org: Organization, data: dict) -> None:
    if "contact_email" in data:
        email = normalize_email(data.get("contact_email"))
        if email and not is_valid_email(email):
            raise ValidationError("Contact email is not valid.")
        org.contact_email = email or None
    if "contact_phone" in data:
        raw = data.get("contact_phone")
        phone = normalize_phone(raw)
        if raw and not phone:
            raise ValidationError("Contact phone is not valid.")
        org.contact_phone = phone
    for field, max_len in _TEXT_FIELDS.items():
        if field in data:
            setattr(org, field, clean_str(data.get(field), max_len))


def _flush(session: Session) -> None:
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("An organization with this name already exists.") from e


def get_organization(session: Session, org_id: int) -> Organization:
    org = session.get(Organization, org_id)
    if org is None:
        raise NotFound("Organization not found.")
    return org


def get_visible_organization(session: Session, actor, org_id: int) -> Organization:
    org = get_organization(session, org_id)
    if not ac.validate_organization_access(actor, org.id, "organizations.get"):
        # same answer as a missing row: no cross-tenant enumeration
        raise NotFound("Organization not found.")
    return org


def list_organizations(
    session: Session,
    actor,
    *,
    status: Optional[str] = None,
    q: Optional[str] = None,
) -> List[Organization]:
    query = session.query(Organization)
    if not ac.is_privileged(actor):
        if actor is None or actor.organization_id is None:
            return []
        query = query.filter(Organization.id == actor.organization_id)
    if status:
        if status not in ORG_STATUSES:
            raise ValidationError("Unknown organization status.")
        query = query.filter(Organization.status == status)
    if q:
        query = query.filter(func.lower(Organization.name).like(f"%{q.strip().lower()}%"))
    return query.order_by(func.lower(Organization.name)).all()


def create_organization(session: Session, actor, data: dict) -> Organization:
    _require_manage(actor)
    name = clean_str(data.get("name"))
    if not name:
        raise ValidationError("Organization name is required.")
    if _name_taken(session, name):
        raise Conflict("An organization with this name already exists.")

    org = Organization(name=name)
    _apply_fields(org, data)
    if data.get("org_admin_permissions") is not None:
        org.org_admin_permissions = _validate_permissions(data["org_admin_permissions"])
    session.add(org)
    _flush(session)
    return org


def update_organization(session: Session, actor, org_id: int, data: dict) -> Organization:
    _require_manage(actor)
    org = get_organization(session, org_id)
    if "name" in data:
        name = clean_str(data.get("name"))
        if not name:
            raise ValidationError("Organization name cannot be blank.")
        if _name_taken(session, name, exclude_id=org.id):
            raise Conflict("An organization with this name already exists.")
        org.name = name
    _apply_fields(org, data)
    if "status" in data:
        _set_status(org, data["status"])
    _flush(session)
    return org


def _set_status(org: Organization, status: str) -> None:
    if status not in ORG_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ORG_STATUSES)}.")
    org.status = status


def set_status(session: Session, actor, org_id: int, status: str) -> Organization:
    _require_manage(actor)
    org = get_organization(session, org_id)
    _set_status(org, status)
    session.flush()
    return org


def _validate_permissions(perms) -> list:
    if not isinstance(perms, (list, tuple)):
        raise ValidationError("Permissions must be a list.")
    unknown = [p for p in perms if p not in ORG_ADMIN_PERMISSIONS]
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(map(str, unknown))}.")
    # stable order, no duplicates
    return [p for p in ORG_ADMIN_PERMISSIONS if p in perms]


def update_admin_permissions(session: Session, actor, org_id: int, perms) -> Organization:
    _require_manage(actor)
    org = get_organization(session, org_id)
    org.org_admin_permissions = _validate_permissions(perms)
    session.flush()
    return org


def delete_organization(session: Session, actor, org_id: int) -> None:
    _require_manage(actor)
    org = get_organization(session, org_id)
    users = session.query(func.count(User.id)).filter(User.organization_id == org.id).scalar()
    if users:
        raise Conflict(f"Organization still has {users} user(s); move or remove them first.")
    session.delete(org)
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("Organization cannot be deleted while it is referenced.") from e
