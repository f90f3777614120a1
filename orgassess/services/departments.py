"""
Organization departments. A department may hang under a parent department of
the same organization; the tree is kept acyclic and a department with
sub-departments cannot be deleted.
"""
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orgassess.models import Department, Organization
from orgassess.services import access_control as ac
from orgassess.services.errors import ValidationError, PermissionDenied, NotFound, Conflict
from orgassess.utils.validators import clean_str, clean_text


def _flush(session: Session) -> None:
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("A department with this name already exists.") from e


def _require_manage(actor, org_id: int, action: str) -> None:
    if not ac.has_permission(actor, ac.MANAGE_USERS):
        raise PermissionDenied("You do not have permission to manage departments.")
    if not ac.can_perform_admin_action(actor, org_id, action):
        raise PermissionDenied("You can only manage departments of your own organization.")


def _name_taken(session: Session, org_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    q = session.query(Department.id).filter(
        Department.organization_id == org_id,
        func.lower(Department.name) == name.lower(),
    )
    if exclude_id is not None:
        q = q.filter(Department.id != exclude_id)
    return session.query(q.exists()).scalar()


def _resolve_parent(session: Session, dept_org_id: int, parent_id, dept_id: Optional[int] = None) -> Optional[int]:
    if parent_id in (None, ""):
        return None
    try:
        parent_id = int(parent_id)
    except (TypeError, ValueError):
        raise ValidationError("Parent department is not valid.")
    parent = session.get(Department, parent_id)
    if parent is None or parent.organization_id != dept_org_id:
        raise ValidationError("Parent department must belong to the same organization.")
    # walk up from the new parent; meeting ourselves means a cycle
    node = parent
    while node is not None:
        if dept_id is not None and node.id == dept_id:
            raise ValidationError("A department cannot be nested under itself.")
        node = node.parent
    return parent.id


def get_visible_department(session: Session, actor, dept_id: int) -> Department:
    dept = session.get(Department, dept_id)
    if dept is None or not ac.validate_organization_access(actor, dept.organization_id, "departments.get"):
        raise NotFound("Department not found.")
    return dept


def list_departments(session: Session, actor, organization_id: int) -> List[Department]:
    if not ac.validate_organization_access(actor, organization_id, "departments.list"):
        raise NotFound("Organization not found.")
    return (
        session.query(Department)
        .filter(Department.organization_id == organization_id)
        .order_by(func.lower(Department.name), Department.id)
        .all()
    )


def create_department(session: Session, actor, organization_id: int, data: dict) -> Department:
    if session.get(Organization, organization_id) is None:
        raise NotFound("Organization not found.")
    _require_manage(actor, organization_id, "departments.create")
    name = clean_str(data.get("name"), 120)
    if not name:
        raise ValidationError("Department name is required.")
    if _name_taken(session, organization_id, name):
        raise Conflict("A department with this name already exists.")

    dept = Department(
        organization_id=organization_id,
        name=name,
        description=clean_text(data.get("description")),
        parent_department_id=_resolve_parent(session, organization_id, data.get("parent_department_id")),
        created_by_id=actor.id if actor is not None else None,
    )
    session.add(dept)
    _flush(session)
    return dept


def update_department(session: Session, actor, dept_id: int, data: dict) -> Department:
    dept = get_visible_department(session, actor, dept_id)
    _require_manage(actor, dept.organization_id, "departments.update")

    if "name" in data:
        name = clean_str(data.get("name"), 120)
        if not name:
            raise ValidationError("Department name is required.")
        if _name_taken(session, dept.organization_id, name, exclude_id=dept.id):
            raise Conflict("A department with this name already exists.")
        dept.name = name
    if "description" in data:
        dept.description = clean_text(data.get("description"))
    if "parent_department_id" in data:
        dept.parent_department_id = _resolve_parent(
            session, dept.organization_id, data.get("parent_department_id"), dept_id=dept.id
        )

    _flush(session)
    return dept


def delete_department(session: Session, actor, dept_id: int) -> None:
    dept = get_visible_department(session, actor, dept_id)
    _require_manage(actor, dept.organization_id, "departments.delete")
    has_children = session.query(
        session.query(Department.id).filter(Department.parent_department_id == dept.id).exists()
    ).scalar()
    if has_children:
        raise Conflict("Cannot delete a department with sub-departments. Delete or reassign them first.")
    session.delete(dept)
    session.flush()
