from typing import Iterable, List, Optional

import pandas as pd
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orgassess.models import (
    Assessment,
    AssessmentAssignment,
    AssessmentQuestion,
    AssessmentResponse,
    AssessmentResult,
    Organization,
    QuestionOption,
    User,
)
from orgassess.models.assessment import (
    STATUS_PUBLISHED,
    QUESTION_RATING,
    QUESTION_YES_NO,
    QUESTION_MULTIPLE_CHOICE,
    QUESTION_TEXT,
)
from orgassess.models.assignment import (
    ASSIGNMENT_STATUSES,
    ASSIGNMENT_PENDING,
    ASSIGNMENT_IN_PROGRESS,
    ASSIGNMENT_COMPLETED,
)
from orgassess.models.user import ROLE_ORG_ADMIN
from orgassess.services import access_control as ac
from orgassess.services.assessments import get_assessment
from orgassess.services.errors import ValidationError, PermissionDenied, NotFound, Conflict
from orgassess.utils.helpers import safe_int, utcnow, isoformat
from orgassess.utils.validators import clean_text, parse_date


# --- assignments ---

def _scoped_query(session: Session, actor):
    q = session.query(AssessmentAssignment)
    if ac.is_privileged(actor):
        return q
    if actor.role == ROLE_ORG_ADMIN:
        return q.filter(AssessmentAssignment.organization_id == actor.organization_id)
    return q.filter(
        or_(AssessmentAssignment.employee_id == actor.id, AssessmentAssignment.reviewer_id == actor.id)
    )


def list_assignments(
    session: Session,
    actor,
    *,
    status: Optional[str] = None,
    assessment_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    as_role: Optional[str] = None,
) -> List[AssessmentAssignment]:
    """as_role: 'employee' or 'reviewer' narrows to assignments where the caller plays that part."""
    query = _scoped_query(session, actor)
    if status:
        if status not in ASSIGNMENT_STATUSES:
            raise ValidationError("Unknown assignment status.")
        query = query.filter(AssessmentAssignment.status == status)
    if assessment_id is not None:
        query = query.filter(AssessmentAssignment.assessment_id == assessment_id)
    if organization_id is not None and ac.is_privileged(actor):
        query = query.filter(AssessmentAssignment.organization_id == organization_id)
    if as_role == "employee":
        query = query.filter(AssessmentAssignment.employee_id == actor.id)
    elif as_role == "reviewer":
        query = query.filter(AssessmentAssignment.reviewer_id == actor.id)
    return query.order_by(AssessmentAssignment.created_at.desc(), AssessmentAssignment.id.desc()).all()


def get_assignment(session: Session, actor, assignment_id: int) -> AssessmentAssignment:
    assignment = session.get(AssessmentAssignment, assignment_id)
    if assignment is None or not ac.validate_assignment_access(actor, assignment, "assignments.get"):
        raise NotFound("Assignment not found.")
    return assignment


def _org_member(session: Session, user_id, org_id: int, label: str) -> User:
    user = session.get(User, safe_int(user_id)) if safe_int(user_id) else None
    if user is None or not user.is_active or user.organization_id != org_id:
        raise ValidationError(f"The {label} must be an active member of the organization.")
    return user


def create_assignments(
    session: Session,
    actor,
    assessment_id: int,
    items: Iterable[dict],
    *,
    organization_id: Optional[int] = None,
) -> List[AssessmentAssignment]:
    """
    items: [{employee_id, reviewer_id, due_date}]. Global assessments are assigned
    inside the caller's organization (platform admins may pass organization_id).
    """
    if not ac.has_permission(actor, ac.ASSIGN_ASSESSMENTS):
        raise PermissionDenied("You do not have permission to assign assessments.")
    assessment = get_assessment(session, assessment_id)
    if assessment.status != STATUS_PUBLISHED:
        raise Conflict("Only published assessments can be assigned.")

    if assessment.is_global:
        org_id = (organization_id if ac.is_privileged(actor) else None) or actor.organization_id
    else:
        org_id = assessment.organization_id
    if org_id is None or not ac.can_perform_admin_action(actor, org_id, "assignments.create"):
        raise NotFound("Assessment not found.")

    items = list(items or [])
    if not items:
        raise ValidationError("At least one assignment is required.")

    created = []
    today = utcnow().date()
    for item in items:
        employee = _org_member(session, item.get("employee_id"), org_id, "employee")
        reviewer = _org_member(session, item.get("reviewer_id"), org_id, "reviewer")
        raw_due = item.get("due_date")
        due = parse_date(raw_due)
        if raw_due not in (None, "") and due is None:
            raise ValidationError("Due date must be a date (YYYY-MM-DD).")
        if due is not None and due < today:
            raise ValidationError("Due date cannot be in the past.")
        assignment = AssessmentAssignment(
            assessment_id=assessment.id,
            organization_id=org_id,
            employee_id=employee.id,
            reviewer_id=reviewer.id,
            assigned_by_id=actor.id,
            status=ASSIGNMENT_PENDING,
            due_date=due,
        )
        session.add(assignment)
        created.append(assignment)

    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("This reviewer is already assigned to review that employee for this assessment.") from e
    return created


def delete_assignment(session: Session, actor, assignment_id: int) -> None:
    assignment = get_assignment(session, actor, assignment_id)
    if not ac.has_permission(actor, ac.ASSIGN_ASSESSMENTS) or not ac.can_perform_admin_action(
        actor, assignment.organization_id, "assignments.delete"
    ):
        raise PermissionDenied("You do not have permission to remove assignments.")
    if assignment.status == ASSIGNMENT_COMPLETED:
        raise Conflict("Completed assignments cannot be removed.")
    session.delete(assignment)
    session.flush()


# --- responses ---

def _questions_by_id(assessment: Assessment) -> dict:
    return {q.id: q for s in assessment.sections for q in s.questions}


def _is_answered(question: AssessmentQuestion, response: Optional[AssessmentResponse]) -> bool:
    if response is None:
        return False
    if question.question_type in (QUESTION_RATING, QUESTION_YES_NO):
        return response.rating is not None
    if question.question_type == QUESTION_MULTIPLE_CHOICE:
        return response.selected_option_id is not None
    return bool(response.text_response and response.text_response.strip())


def _apply_answer(session: Session, question: AssessmentQuestion, response: AssessmentResponse, data: dict) -> None:
    qtype = question.question_type
    if qtype in (QUESTION_RATING, QUESTION_YES_NO):
        raw = data.get("rating")
        rating = safe_int(raw)
        if raw not in (None, "") and rating is None:
            raise ValidationError("Rating must be a whole number.")
        if rating is not None:
            low, high = (0, 1) if qtype == QUESTION_YES_NO else (1, question.scale_max)
            if not low <= rating <= high:
                raise ValidationError(f"Rating must be between {low} and {high}.")
        response.rating = rating
    elif qtype == QUESTION_MULTIPLE_CHOICE:
        option_id = safe_int(data.get("selected_option_id"))
        if option_id is not None:
            option = session.get(QuestionOption, option_id)
            if option is None or option.question_id != question.id:
                raise ValidationError("Selected option does not belong to this question.")
        response.selected_option_id = option_id
    elif qtype == QUESTION_TEXT:
        response.text_response = clean_text(data.get("text_response"))
    if "comment" in data:
        response.comment = clean_text(data.get("comment"))


def _require_reviewer(actor, assignment: AssessmentAssignment) -> None:
    if actor is None or actor.id != assignment.reviewer_id:
        raise PermissionDenied("Only the assigned reviewer can respond to this assessment.")
    if assignment.status == ASSIGNMENT_COMPLETED:
        raise Conflict("This assessment has already been submitted.")


def save_responses(session: Session, actor, assignment_id: int, answers: Iterable[dict]) -> List[AssessmentResponse]:
    assignment = get_assignment(session, actor, assignment_id)
    _require_reviewer(actor, assignment)
    questions = _questions_by_id(assignment.assessment)
    existing = {r.question_id: r for r in assignment.responses}

    saved = []
    for data in answers or []:
        question = questions.get(safe_int(data.get("question_id")))
        if question is None:
            raise ValidationError("Question does not belong to this assessment.")
        response = existing.get(question.id)
        if response is None:
            response = AssessmentResponse(question_id=question.id, respondent_id=actor.id)
            assignment.responses.append(response)
            existing[question.id] = response
        _apply_answer(session, question, response, data)
        saved.append(response)

    if assignment.status == ASSIGNMENT_PENDING:
        assignment.status = ASSIGNMENT_IN_PROGRESS
        assignment.started_at = utcnow()
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("Responses were saved concurrently; reload and try again.") from e
    return saved


def score(assignment: AssessmentAssignment) -> tuple:
    """(score, max_score) over answered rating questions."""
    questions = _questions_by_id(assignment.assessment)
    total = 0.0
    possible = 0.0
    for response in assignment.responses:
        question = questions.get(response.question_id)
        if question is None or question.question_type != QUESTION_RATING or response.rating is None:
            continue
        total += response.rating
        possible += question.scale_max
    return total, possible


def submit_assignment(
    session: Session,
    actor,
    assignment_id: int,
    answers: Optional[Iterable[dict]] = None,
) -> AssessmentResult:
    if answers:
        save_responses(session, actor, assignment_id, answers)
    assignment = get_assignment(session, actor, assignment_id)
    _require_reviewer(actor, assignment)

    by_question = {r.question_id: r for r in assignment.responses}
    missing = [
        q for q in _questions_by_id(assignment.assessment).values()
        if q.is_required and not _is_answered(q, by_question.get(q.id))
    ]
    if missing:
        raise ValidationError(f"{len(missing)} required question(s) still need an answer.")

    now = utcnow()
    total, possible = score(assignment)
    assignment.status = ASSIGNMENT_COMPLETED
    assignment.completed_at = now
    if assignment.started_at is None:
        assignment.started_at = now
    result = AssessmentResult(
        assignment_id=assignment.id,
        assessment_id=assignment.assessment_id,
        organization_id=assignment.organization_id,
        user_id=assignment.employee_id,
        score=total,
        max_score=possible,
        completed_at=now,
    )
    session.add(result)
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("This assessment has already been submitted.") from e
    return result


# --- results ---

def get_result(session: Session, actor, assignment_id: int) -> AssessmentResult:
    assignment = get_assignment(session, actor, assignment_id)
    if not ac.has_permission(actor, ac.VIEW_RESULTS) and actor.id != assignment.employee_id:
        raise PermissionDenied("You do not have permission to view results.")
    result = session.query(AssessmentResult).filter_by(assignment_id=assignment.id).one_or_none()
    if result is None:
        raise NotFound("No result yet; the assessment has not been submitted.")
    return result


def list_results(
    session: Session,
    actor,
    *,
    organization_id: Optional[int] = None,
    assessment_id: Optional[int] = None,
) -> List[AssessmentResult]:
    if not ac.has_permission(actor, ac.VIEW_RESULTS):
        raise PermissionDenied("You do not have permission to view results.")
    query = session.query(AssessmentResult)
    if ac.is_privileged(actor):
        if organization_id is not None:
            query = query.filter(AssessmentResult.organization_id == organization_id)
    elif actor.role == ROLE_ORG_ADMIN:
        query = query.filter(AssessmentResult.organization_id == actor.organization_id)
    else:
        query = query.join(AssessmentAssignment, AssessmentAssignment.id == AssessmentResult.assignment_id).filter(
            or_(AssessmentResult.user_id == actor.id, AssessmentAssignment.reviewer_id == actor.id)
        )
    if assessment_id is not None:
        query = query.filter(AssessmentResult.assessment_id == assessment_id)
    return query.order_by(AssessmentResult.completed_at.desc(), AssessmentResult.id.desc()).all()


EXPORT_COLUMNS = (
    "result_id",
    "organization",
    "assessment",
    "employee_name",
    "employee_email",
    "reviewer_name",
    "score",
    "max_score",
    "percentage",
    "completed_at",
)


def export_results_csv(
    session: Session,
    actor,
    *,
    organization_id: Optional[int] = None,
    assessment_id: Optional[int] = None,
) -> str:
    """
    Results the actor may see, flattened to one CSV row each. Same scoping as
    list_results; the export_results permission is checked on top.
    """
    if not ac.has_permission(actor, ac.EXPORT_RESULTS):
        raise PermissionDenied("You do not have permission to export results.")
    results = list_results(session, actor, organization_id=organization_id, assessment_id=assessment_id)

    assignment_ids = {r.assignment_id for r in results}
    assignments = {
        a.id: a for a in session.query(AssessmentAssignment).filter(AssessmentAssignment.id.in_(assignment_ids))
    } if assignment_ids else {}
    user_ids = {r.user_id for r in results} | {a.reviewer_id for a in assignments.values()}
    users = {u.id: u for u in session.query(User).filter(User.id.in_(user_ids))} if user_ids else {}
    org_ids = {r.organization_id for r in results}
    orgs = {o.id: o.name for o in session.query(Organization).filter(Organization.id.in_(org_ids))} if org_ids else {}

    rows = []
    for r in results:
        assignment = assignments.get(r.assignment_id)
        employee = users.get(r.user_id)
        reviewer = users.get(assignment.reviewer_id) if assignment is not None else None
        rows.append({
            "result_id": r.id,
            "organization": orgs.get(r.organization_id, ""),
            "assessment": assignment.assessment.title if assignment is not None else "",
            "employee_name": employee.full_name if employee is not None else "",
            "employee_email": employee.email if employee is not None else "",
            "reviewer_name": reviewer.full_name if reviewer is not None else "",
            "score": r.score,
            "max_score": r.max_score,
            "percentage": round(r.score / r.max_score * 100, 1) if r.max_score else None,
            "completed_at": isoformat(r.completed_at),
        })
    return pd.DataFrame(rows, columns=list(EXPORT_COLUMNS)).to_csv(index=False)
