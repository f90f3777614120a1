"""
Dashboard analytics.

Per-organization metrics are computed with a handful of aggregate queries.
The "all organizations" view fans out over every active organization and
combines the results with weighted averages: average_rating is weighted by
rated_responses, competency averages by assessment_count. An organization
whose queries fail is logged and left out of the aggregate.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import List, Optional

from flask import current_app
from sqlalchemy import func, distinct
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orgassess.models import (
    Organization,
    User,
    Assessment,
    AssessmentQuestion,
    AssessmentAssignment,
    AssessmentResponse,
    AssessmentResult,
    Competency,
    SupportTicket,
)
from orgassess.models.assessment import STATUS_PUBLISHED
from orgassess.models.assignment import ASSIGNMENT_PENDING, ASSIGNMENT_IN_PROGRESS, ASSIGNMENT_COMPLETED
from orgassess.models.organization import ORG_STATUS_ACTIVE
from orgassess.models.support_ticket import TICKET_OPEN, TICKET_IN_PROGRESS, TICKET_ESCALATED
from orgassess.models.user import ROLE_EMPLOYEE, ROLE_REVIEWER
from orgassess.services import access_control as ac
from orgassess.services.errors import PermissionDenied, NotFound
from orgassess.utils.helpers import as_utc, percent

SECONDS_PER_DAY = 86400.0


@dataclass
class CompetencyStat:
    competency_id: int
    competency_name: str
    average_rating: float
    assessment_count: int


@dataclass
class DashboardAnalytics:
    organization_id: Optional[int] = None
    total_employees: int = 0
    total_reviewers: int = 0
    total_assessments: int = 0
    completed_assessments: int = 0
    pending_assessments: int = 0
    in_progress_assessments: int = 0
    total_assignments: int = 0
    total_responses: int = 0
    # results with max_score > 0; only these feed average_rating
    rated_responses: int = 0
    average_rating: float = 0.0
    completion_rate: float = 0.0
    average_completion_time: float = 0.0
    participation_rate: float = 0.0
    competency_analytics: List[CompetencyStat] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _count(session: Session, column, *criteria) -> int:
    return session.query(func.count(column)).filter(*criteria).scalar() or 0


def _average_completion_days(session: Session, org_id: int) -> float:
    rows = (
        session.query(AssessmentAssignment.created_at, AssessmentAssignment.completed_at)
        .filter(
            AssessmentAssignment.organization_id == org_id,
            AssessmentAssignment.status == ASSIGNMENT_COMPLETED,
            AssessmentAssignment.completed_at.isnot(None),
        )
        .all()
    )
    if not rows:
        return 0.0
    days = [
        max((as_utc(done) - as_utc(created)).total_seconds(), 0) / SECONDS_PER_DAY
        for created, done in rows
    ]
    return round(sum(days) / len(days), 2)


def competency_analytics(session: Session, org_id: int) -> List[CompetencyStat]:
    rows = (
        session.query(
            Competency.id,
            Competency.name,
            func.avg(AssessmentResponse.rating),
            func.count(distinct(AssessmentResponse.assignment_id)),
        )
        .join(AssessmentQuestion, AssessmentQuestion.competency_id == Competency.id)
        .join(AssessmentResponse, AssessmentResponse.question_id == AssessmentQuestion.id)
        .join(AssessmentAssignment, AssessmentAssignment.id == AssessmentResponse.assignment_id)
        .filter(
            Competency.organization_id == org_id,
            AssessmentAssignment.organization_id == org_id,
            AssessmentResponse.rating.isnot(None),
        )
        .group_by(Competency.id, Competency.name)
        .all()
    )
    stats = [
        CompetencyStat(
            competency_id=cid,
            competency_name=name,
            average_rating=round(float(avg or 0), 2),
            assessment_count=int(count or 0),
        )
        for cid, name, avg, count in rows
    ]
    stats.sort(key=lambda c: c.average_rating, reverse=True)
    return stats


def organization_analytics(session: Session, org_id: int) -> DashboardAnalytics:
    active_user = (User.organization_id == org_id, User.is_active.is_(True))
    total_employees = _count(session, User.id, *active_user, User.role == ROLE_EMPLOYEE)
    total_reviewers = _count(session, User.id, *active_user, User.role == ROLE_REVIEWER)
    total_assessments = _count(
        session,
        Assessment.id,
        Assessment.organization_id == org_id,
        Assessment.status == STATUS_PUBLISHED,
        Assessment.is_active.is_(True),
    )

    by_status = dict(
        session.query(AssessmentAssignment.status, func.count(AssessmentAssignment.id))
        .filter(AssessmentAssignment.organization_id == org_id)
        .group_by(AssessmentAssignment.status)
        .all()
    )
    completed = by_status.get(ASSIGNMENT_COMPLETED, 0)
    total_assignments = sum(by_status.values())

    results = (
        session.query(AssessmentResult.score, AssessmentResult.max_score)
        .filter(AssessmentResult.organization_id == org_id)
        .all()
    )
    total_responses = len(results)
    ratings = [(score / max_score) * 5 for score, max_score in results if max_score]
    average_rating = round(sum(ratings) / len(ratings), 2) if ratings else 0.0

    return DashboardAnalytics(
        organization_id=org_id,
        total_employees=total_employees,
        total_reviewers=total_reviewers,
        total_assessments=total_assessments,
        completed_assessments=completed,
        pending_assessments=by_status.get(ASSIGNMENT_PENDING, 0),
        in_progress_assessments=by_status.get(ASSIGNMENT_IN_PROGRESS, 0),
        total_assignments=total_assignments,
        total_responses=total_responses,
        rated_responses=len(ratings),
        average_rating=average_rating,
        completion_rate=percent(completed, total_assignments),
        average_completion_time=_average_completion_days(session, org_id),
        participation_rate=percent(total_responses, total_employees),
        competency_analytics=competency_analytics(session, org_id),
    )


def combine(per_org: List[DashboardAnalytics]) -> DashboardAnalytics:
    """Sum counts across organizations and recompute weighted averages and rates."""
    out = DashboardAnalytics()
    rating_weighted = 0.0
    time_weighted = 0.0
    comps = {}
    for a in per_org:
        out.total_employees += a.total_employees
        out.total_reviewers += a.total_reviewers
        out.total_assessments += a.total_assessments
        out.completed_assessments += a.completed_assessments
        out.pending_assessments += a.pending_assessments
        out.in_progress_assessments += a.in_progress_assessments
        out.total_assignments += a.total_assignments
        out.total_responses += a.total_responses
        out.rated_responses += a.rated_responses
        rating_weighted += a.average_rating * a.rated_responses
        time_weighted += a.average_completion_time * a.completed_assessments
        for c in a.competency_analytics:
            slot = comps.setdefault(c.competency_id, [c.competency_name, 0.0, 0])
            slot[1] += c.average_rating * c.assessment_count
            slot[2] += c.assessment_count

    if out.rated_responses:
        out.average_rating = round(rating_weighted / out.rated_responses, 2)
    if out.completed_assessments:
        out.average_completion_time = round(time_weighted / out.completed_assessments, 2)
    out.completion_rate = percent(out.completed_assessments, out.total_assignments)
    out.participation_rate = percent(out.total_responses, out.total_employees)
    out.competency_analytics = sorted(
        (
            CompetencyStat(
                competency_id=cid,
                competency_name=name,
                average_rating=round(total / count, 2) if count else 0.0,
                assessment_count=count,
            )
            for cid, (name, total, count) in comps.items()
        ),
        key=lambda c: c.average_rating,
        reverse=True,
    )
    return out


def _active_org_ids(session: Session) -> List[int]:
    return [
        oid for (oid,) in session.query(Organization.id)
        .filter(Organization.status == ORG_STATUS_ACTIVE)
        .order_by(Organization.id)
        .all()
    ]


def per_organization(session: Session) -> List[DashboardAnalytics]:
    out = []
    for org_id in _active_org_ids(session):
        try:
            out.append(organization_analytics(session, org_id))
        except SQLAlchemyError:
            session.rollback()
            current_app.logger.warning(
                "dashboard_org_failed",
                extra={"event": "dashboard_org_failed", "organization_id": org_id},
                exc_info=True,
            )
    return out


def get_analytics(session: Session, actor, organization_id: Optional[int] = None) -> DashboardAnalytics:
    """
    organization_id=None means "all organizations" for platform admins and
    "my organization" for org admins.
    """
    if organization_id is None and not ac.is_privileged(actor):
        organization_id = getattr(actor, "organization_id", None)
        if organization_id is None:
            raise PermissionDenied("You do not have access to reporting.")
    if not ac.validate_reporting_access(actor, organization_id):
        raise PermissionDenied("You do not have access to this organization's reporting.")

    if organization_id is None:
        return combine(per_organization(session))
    if session.get(Organization, organization_id) is None:
        raise NotFound("Organization not found.")
    return organization_analytics(session, organization_id)


def list_organization_analytics(session: Session, actor) -> List[DashboardAnalytics]:
    if not ac.is_privileged(actor):
        raise PermissionDenied("You do not have access to cross-organization reporting.")
    return per_organization(session)


def system_summary(session: Session, actor) -> dict:
    if not ac.is_privileged(actor):
        raise PermissionDenied("You do not have access to the system summary.")
    open_states = (TICKET_OPEN, TICKET_IN_PROGRESS, TICKET_ESCALATED)
    return {
        "organizations": _count(session, Organization.id),
        "active_organizations": _count(session, Organization.id, Organization.status == ORG_STATUS_ACTIVE),
        "users": _count(session, User.id),
        "active_users": _count(session, User.id, User.is_active.is_(True)),
        "assessments": _count(session, Assessment.id, Assessment.is_active.is_(True)),
        "published_assessments": _count(
            session, Assessment.id, Assessment.is_active.is_(True), Assessment.status == STATUS_PUBLISHED
        ),
        "completed_assignments": _count(
            session, AssessmentAssignment.id, AssessmentAssignment.status == ASSIGNMENT_COMPLETED
        ),
        "open_tickets": _count(session, SupportTicket.id, SupportTicket.status.in_(open_states)),
    }
