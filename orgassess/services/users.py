import secrets
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orgassess.models import User, Organization
from orgassess.models.user import ROLE_CHOICES, ROLE_ROOT
from orgassess.services import access_control as ac
from orgassess.services.errors import ValidationError, PermissionDenied, NotFound, Conflict
from orgassess.utils.validators import clean_str, normalize_email, is_valid_email

MIN_PASSWORD_LENGTH = 8
REQUIRED_FIELDS = ("email", "first_name", "last_name", "role", "organization_id")
_PROFILE_FIELDS = {"first_name": 120, "last_name": 120, "department": 120, "job_title": 120}


def generate_temporary_password() -> str:
    return secrets.token_urlsafe(12)


def validate_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return password


def find_by_email(session: Session, email: str) -> Optional[User]:
    email = normalize_email(email)
    if not email:
        return None
    return session.query(User).filter(func.lower(User.email) == email).one_or_none()


def present_user(target: User, requester) -> dict:
    """
    Serialize a user for the requester. Admins of the target's organization get the
    full record; everyone else goes through the sanitizer.
    """
    if target.role == ROLE_ROOT and getattr(requester, "role", None) != ROLE_ROOT:
        return {}
    if ac.has_permission(requester, ac.VIEW_USERS) and ac.is_org_admin_of(requester, target.organization_id):
        return target.to_dict()
    return ac.sanitize_user_data(target, requester)


def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


def get_visible_user(session: Session, actor, user_id: int) -> User:
    user = get_user(session, user_id)
    if not present_user(user, actor):
        raise NotFound("User not found.")
    return user


def list_users(
    session: Session,
    actor,
    *,
    organization_id: Optional[int] = None,
    role: Optional[str] = None,
    q: Optional[str] = None,
    include_inactive: bool = False,
) -> List[User]:
    query = session.query(User)
    if ac.is_privileged(actor):
        if organization_id is not None:
            query = query.filter(User.organization_id == organization_id)
    else:
        if actor is None or actor.organization_id is None:
            return []
        query = query.filter(User.organization_id == actor.organization_id)
    if actor is None or actor.role != ROLE_ROOT:
        query = query.filter(User.role != ROLE_ROOT)
    if role:
        query = query.filter(User.role == role)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    if q:
        like = f"%{q.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(User.email).like(like),
                func.lower(User.first_name).like(like),
                func.lower(User.last_name).like(like),
            )
        )
    return query.order_by(func.lower(User.last_name), func.lower(User.first_name), User.id).all()


def _check_role_grant(actor, role: str) -> None:
    if role not in ROLE_CHOICES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLE_CHOICES)}.")
    if actor is not None and role not in ac.assignable_roles(actor):
        raise PermissionDenied(f"You cannot assign the role '{role}'.")


def _resolve_org(session: Session, actor, org_id) -> Organization:
    try:
        org_id = int(org_id)
    except (TypeError, ValueError):
        raise ValidationError("Organization is required.")
    org = session.get(Organization, org_id)
    if org is None:
        raise ValidationError("Organization does not exist.")
    if actor is not None and not ac.can_perform_admin_action(actor, org.id, "users.create"):
        raise PermissionDenied("You can only add users to your own organization.")
    return org


def create_user(
    session: Session,
    actor,
    data: dict,
    *,
    password: Optional[str] = None,
) -> Tuple[User, str]:
    """
    Create a user. Without an explicit password a temporary one is generated and
    the account is flagged for a password change. Returns (user, password).
    actor=None is the trusted path (CLI, bulk import after its own checks).
    """
    if actor is not None and not ac.has_permission(actor, ac.CREATE_USERS):
        raise PermissionDenied("You do not have permission to create users.")

    if actor is not None and not ac.is_privileged(actor) and not data.get("organization_id"):
        data = {**data, "organization_id": actor.organization_id}
    missing = [f for f in REQUIRED_FIELDS if not data.get(f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}.")

    email = normalize_email(data.get("email"))
    if not is_valid_email(email):
        raise ValidationError("Email address is not valid.")
    first_name = clean_str(data.get("first_name"), 120)
    last_name = clean_str(data.get("last_name"), 120)
    if not first_name or not last_name:
        raise ValidationError("First and last name are required.")
    role = str(data.get("role")).strip()
    _check_role_grant(actor, role)
    org = _resolve_org(session, actor, data.get("organization_id"))

    if find_by_email(session, email) is not None:
        raise Conflict("A user with this email already exists.")

    temporary = password is None
    password = validate_password(password) if password is not None else generate_temporary_password()

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        organization_id=org.id,
        department=clean_str(data.get("department"), 120),
        job_title=clean_str(data.get("job_title"), 120),
        is_active=True,
        requires_password_change=temporary,
    )
    user.set_password(password)
    session.add(user)
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("A user with this email already exists.") from e
    return user, password


def update_user(session: Session, actor, user_id: int, data: dict) -> User:
    user = get_user(session, user_id)
    is_self = actor is not None and actor.id == user.id
    if not is_self:
        if not ac.has_permission(actor, ac.MANAGE_USERS):
            raise PermissionDenied("You do not have permission to manage users.")
        if not ac.validate_user_access(actor, user, "users.update"):
            raise NotFound("User not found.")
        if user.role == ROLE_ROOT and actor.role != ROLE_ROOT:
            raise NotFound("User not found.")
        if not ac.can_modify_user(actor, user, "users.update"):
            raise PermissionDenied("You cannot modify a user with this role.")

    for field, max_len in _PROFILE_FIELDS.items():
        if field in data:
            value = clean_str(data.get(field), max_len)
            if field in ("first_name", "last_name") and not value:
                raise ValidationError("First and last name cannot be blank.")
            setattr(user, field, value)

    if "email" in data:
        email = normalize_email(data.get("email"))
        if not is_valid_email(email):
            raise ValidationError("Email address is not valid.")
        other = find_by_email(session, email)
        if other is not None and other.id != user.id:
            raise Conflict("A user with this email already exists.")
        user.email = email

    if "role" in data and data["role"] != user.role:
        if is_self:
            raise PermissionDenied("You cannot change your own role.")
        _check_role_grant(actor, data["role"])
        user.role = data["role"]

    if "organization_id" in data and data["organization_id"] != user.organization_id:
        if not ac.is_privileged(actor):
            raise PermissionDenied("Only platform administrators can move users between organizations.")
        user.organization_id = _resolve_org(session, actor, data["organization_id"]).id

    if "is_active" in data:
        if is_self and not data["is_active"]:
            raise ValidationError("You cannot deactivate your own account.")
        if not is_self:
            user.is_active = bool(data["is_active"])

    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("A user with this email already exists.") from e
    return user


def deactivate_user(session: Session, actor, user_id: int) -> User:
    if not ac.has_permission(actor, ac.DELETE_USERS):
        raise PermissionDenied("You do not have permission to delete users.")
    user = get_user(session, user_id)
    if actor.id == user.id:
        raise ValidationError("You cannot deactivate your own account.")
    if user.role == ROLE_ROOT and actor.role != ROLE_ROOT:
        raise NotFound("User not found.")
    user.is_active = False
    session.flush()
    return user


def set_role(session: Session, user: User, role: str) -> User:
    """Trusted role change (CLI)."""
    _check_role_grant(None, role)
    user.role = role
    session.flush()
    return user


def change_password(session: Session, user: User, current_password: str, new_password: str) -> User:
    if not user.check_password(current_password or ""):
        raise ValidationError("Current password is incorrect.")
    validate_password(new_password)
    if current_password == new_password:
        raise ValidationError("New password must be different from the current one.")
    user.set_password(new_password)
    user.requires_password_change = False
    session.flush()
    return user


def set_password(session: Session, user: User, new_password: str) -> User:
    """Token-authenticated password set (reset link or invite)."""
    validate_password(new_password)
    user.set_password(new_password)
    user.requires_password_change = False
    session.flush()
    return user
