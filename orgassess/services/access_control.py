"""
Role -> permission matrix and the organization-scoping checks built on it.

Everything here is a pure lookup over the user object (role, id,
organization_id); nothing touches the database. Callers turn a False into
PermissionDenied / a 403.
"""
import logging
from typing import Iterable, List, Optional

from orgassess.models.user import (
    ROLE_ROOT,
    ROLE_SUPER_ADMIN,
    ROLE_ORG_ADMIN,
    ROLE_REVIEWER,
    ROLE_EMPLOYEE,
    ROLE_SUBSCRIBER,
    PRIVILEGED_ROLES,
)

# Child of the app logger ("orgassess"), so records reach the app's handlers
log = logging.getLogger(__name__)

# User management
MANAGE_USERS = "manage_users"
VIEW_USERS = "view_users"
CREATE_USERS = "create_users"
DELETE_USERS = "delete_users"
# Assessment management
CREATE_ASSESSMENTS = "create_assessments"
EDIT_ASSESSMENTS = "edit_assessments"
DELETE_ASSESSMENTS = "delete_assessments"
VIEW_ASSESSMENTS = "view_assessments"
ASSIGN_ASSESSMENTS = "assign_assessments"
# Results and analytics
VIEW_RESULTS = "view_results"
EXPORT_RESULTS = "export_results"
VIEW_ANALYTICS = "view_analytics"
# Organization / system
MANAGE_ORGANIZATIONS = "manage_organizations"
VIEW_ORGANIZATIONS = "view_organizations"
MANAGE_SYSTEM = "manage_system"
VIEW_REPORTS = "view_reports"
MANAGE_TEMPLATES = "manage_templates"
# Support
MANAGE_SUPPORT = "manage_support"
VIEW_SUPPORT = "view_support"
# Branding
MANAGE_BRANDING = "manage_branding"
VIEW_BRANDING = "view_branding"

ALL_PERMISSIONS = (
    MANAGE_USERS, VIEW_USERS, CREATE_USERS, DELETE_USERS,
    CREATE_ASSESSMENTS, EDIT_ASSESSMENTS, DELETE_ASSESSMENTS, VIEW_ASSESSMENTS, ASSIGN_ASSESSMENTS,
    VIEW_RESULTS, EXPORT_RESULTS, VIEW_ANALYTICS,
    MANAGE_ORGANIZATIONS, VIEW_ORGANIZATIONS,
    MANAGE_SYSTEM, VIEW_REPORTS, MANAGE_TEMPLATES,
    MANAGE_SUPPORT, VIEW_SUPPORT,
    MANAGE_BRANDING, VIEW_BRANDING,
)

ROLE_PERMISSIONS = {
    ROLE_ROOT: frozenset(ALL_PERMISSIONS),
    ROLE_SUPER_ADMIN: frozenset(ALL_PERMISSIONS),
    ROLE_ORG_ADMIN: frozenset({
        MANAGE_USERS, VIEW_USERS, CREATE_USERS,
        CREATE_ASSESSMENTS, EDIT_ASSESSMENTS, VIEW_ASSESSMENTS, ASSIGN_ASSESSMENTS,
        VIEW_RESULTS, EXPORT_RESULTS, VIEW_ANALYTICS,
        VIEW_REPORTS,
        VIEW_SUPPORT,
        VIEW_BRANDING,
    }),
    ROLE_REVIEWER: frozenset({VIEW_ASSESSMENTS, VIEW_RESULTS}),
    ROLE_EMPLOYEE: frozenset({VIEW_ASSESSMENTS}),
    ROLE_SUBSCRIBER: frozenset({VIEW_ASSESSMENTS, VIEW_RESULTS}),
}

# Features without an entry need no permission
FEATURE_PERMISSIONS = {
    "reporting": (VIEW_REPORTS,),
    "user-management": (MANAGE_USERS,),
    "assessment-builder": (CREATE_ASSESSMENTS,),
    "assessment-results": (VIEW_RESULTS,),
    "organization-management": (MANAGE_ORGANIZATIONS,),
    "system-settings": (MANAGE_SYSTEM,),
    "template-management": (MANAGE_TEMPLATES,),
    "support-hub": (VIEW_SUPPORT,),
    "branding": (VIEW_BRANDING,),
}

ALL_FEATURES = (
    "dashboard",
    "reporting",
    "user-management",
    "assessment-builder",
    "assessment-results",
    "organization-management",
    "system-settings",
    "template-management",
    "support-hub",
    "branding",
    "import-export",
    "competencies",
    "access-requests",
)

# Fields a same-organization colleague may see
LIMITED_USER_FIELDS = ("id", "first_name", "last_name", "role", "department", "job_title")

# Who may hand out which role
_ASSIGNABLE_ROLES = {
    ROLE_ROOT: (ROLE_ROOT, ROLE_SUPER_ADMIN, ROLE_ORG_ADMIN, ROLE_REVIEWER, ROLE_EMPLOYEE, ROLE_SUBSCRIBER),
    ROLE_SUPER_ADMIN: (ROLE_SUPER_ADMIN, ROLE_ORG_ADMIN, ROLE_REVIEWER, ROLE_EMPLOYEE, ROLE_SUBSCRIBER),
    ROLE_ORG_ADMIN: (ROLE_REVIEWER, ROLE_EMPLOYEE, ROLE_SUBSCRIBER),
}


def _org_of(item) -> Optional[int]:
    if isinstance(item, dict):
        return item.get("organization_id")
    return getattr(item, "organization_id", None)


def is_privileged(user) -> bool:
    return user is not None and getattr(user, "role", None) in PRIVILEGED_ROLES


def is_org_admin_of(user, org_id) -> bool:
    return (
        user is not None
        and user.role == ROLE_ORG_ADMIN
        and org_id is not None
        and user.organization_id == org_id
    )


def permissions_for(user) -> frozenset:
    if user is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(getattr(user, "role", None), frozenset())


def has_permission(user, permission: str) -> bool:
    return permission in permissions_for(user)


def can_access_feature(user, feature: str) -> bool:
    if user is None:
        return False
    return all(has_permission(user, p) for p in FEATURE_PERMISSIONS.get(feature, ()))


def available_features(user) -> List[str]:
    if user is None:
        return []
    return [f for f in ALL_FEATURES if can_access_feature(user, f)]


def validate_organization_access(user, org_id, context: str) -> bool:
    if user is None:
        log.warning("access_blocked", extra={"event": "access_blocked", "context": context, "reason": "no_user"})
        return False
    if is_privileged(user):
        return True
    if user.organization_id is None or user.organization_id != org_id:
        log.warning(
            "access_blocked",
            extra={"event": "access_blocked", "context": context, "reason": "cross_org", "role": user.role},
        )
        return False
    return True


def validate_user_access(user, target_user, context: str, allow_org_admin: bool = True) -> bool:
    """
    Privileged users reach anyone, users reach themselves, and (optionally)
    an org admin reaches users of their own organization.
    """
    if user is None:
        log.warning("access_blocked", extra={"event": "access_blocked", "context": context, "reason": "no_user"})
        return False
    if is_privileged(user):
        return True
    if target_user is not None and user.id == target_user.id:
        return True
    if allow_org_admin and target_user is not None and is_org_admin_of(user, target_user.organization_id):
        return True
    log.warning(
        "access_blocked",
        extra={"event": "access_blocked", "context": context, "reason": "user_scope", "role": user.role},
    )
    return False


def filter_by_organization(items: Iterable, user, context: str) -> list:
    items = list(items)
    if user is None:
        log.warning("access_blocked", extra={"event": "access_blocked", "context": context, "reason": "no_user"})
        return []
    if is_privileged(user):
        return items
    kept = [i for i in items if user.organization_id is not None and _org_of(i) == user.organization_id]
    if len(kept) != len(items):
        log.debug("filtered %d cross-org rows in %s", len(items) - len(kept), context)
    return kept


def validate_assignment_access(user, assignment, context: str) -> bool:
    if user is None or assignment is None:
        return False
    if is_privileged(user):
        return True
    if user.id in (assignment.employee_id, assignment.reviewer_id):
        return True
    if is_org_admin_of(user, assignment.organization_id):
        return True
    log.warning(
        "access_blocked",
        extra={"event": "access_blocked", "context": context, "reason": "assignment_scope", "role": user.role},
    )
    return False


def sanitize_user_data(target, requester) -> dict:
    if requester is None or target is None:
        return {}
    # Root accounts are invisible to everyone but root
    if target.role == ROLE_ROOT and requester.role != ROLE_ROOT:
        return {}
    if is_privileged(requester) or requester.id == target.id:
        return target.to_dict()
    if requester.organization_id is None or requester.organization_id != target.organization_id:
        return {}
    full = target.to_dict()
    return {k: full.get(k) for k in LIMITED_USER_FIELDS}


def can_perform_admin_action(user, org_id, action: str) -> bool:
    if user is None:
        log.warning("admin_action_blocked", extra={"event": "admin_action_blocked", "action": action, "reason": "no_user"})
        return False
    if is_privileged(user):
        return True
    if is_org_admin_of(user, org_id):
        return True
    log.warning(
        "admin_action_blocked",
        extra={"event": "admin_action_blocked", "action": action, "role": user.role, "target_org": org_id},
    )
    return False


def validate_reporting_access(user, org_id=None) -> bool:
    if user is None:
        return False
    if is_privileged(user):
        return True
    if user.role == ROLE_ORG_ADMIN:
        return org_id is None or user.organization_id == org_id
    return False


def assignable_roles(user) -> tuple:
    if user is None:
        return ()
    return _ASSIGNABLE_ROLES.get(user.role, ())


def can_modify_user(user, target_user, context: str) -> bool:
    """
    Writes to another account need reach (validate_user_access) and a target role
    the writer could grant; an org admin cannot touch admins of their own org.
    """
    if user is None or target_user is None:
        return False
    if user.id == target_user.id:
        return True
    if validate_user_access(user, target_user, context) and target_user.role in assignable_roles(user):
        return True
    log.warning(
        "access_blocked",
        extra={"event": "access_blocked", "context": context, "reason": "target_role", "role": user.role},
    )
    return False
