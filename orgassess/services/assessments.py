from typing import List, Optional

from sqlalchemy import func, or_, false
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orgassess.models import (
    Assessment,
    AssessmentSection,
    AssessmentQuestion,
    QuestionOption,
    AssessmentAssignment,
    AssessmentResponse,
    Competency,
    Organization,
)
from orgassess.models.assessment import (
    ASSESSMENT_TYPES,
    ASSESSMENT_STATUSES,
    STATUS_DRAFT,
    STATUS_PUBLISHED,
    STATUS_ARCHIVED,
    QUESTION_TYPES,
    QUESTION_RATING,
    QUESTION_MULTIPLE_CHOICE,
    DEFAULT_SCALE_MAX,
)
from orgassess.services import access_control as ac
from orgassess.services.errors import ValidationError, PermissionDenied, NotFound, Conflict
from orgassess.utils.helpers import safe_int
from orgassess.utils.validators import clean_str, clean_text, parse_date

MIN_SCALE = 2
MAX_SCALE = 10

STATUS_TRANSITIONS = {
    STATUS_DRAFT: (STATUS_PUBLISHED, STATUS_ARCHIVED),
    STATUS_PUBLISHED: (STATUS_ARCHIVED,),
    STATUS_ARCHIVED: (),
}


# --- lookup & visibility ---

def _visible_query(session: Session, actor):
    q = session.query(Assessment).filter(Assessment.is_active.is_(True))
    if ac.is_privileged(actor):
        return q
    if actor is None:
        return q.filter(false())
    scope = or_(Assessment.is_global.is_(True), Assessment.organization_id == actor.organization_id)
    q = q.filter(scope)
    if not ac.has_permission(actor, ac.CREATE_ASSESSMENTS):
        q = q.filter(Assessment.status == STATUS_PUBLISHED)
    return q


def get_assessment(session: Session, assessment_id: int) -> Assessment:
    a = session.get(Assessment, assessment_id)
    if a is None or not a.is_active:
        raise NotFound("Assessment not found.")
    return a


def get_visible_assessment(session: Session, actor, assessment_id: int) -> Assessment:
    a = _visible_query(session, actor).filter(Assessment.id == assessment_id).one_or_none()
    if a is None:
        raise NotFound("Assessment not found.")
    return a


def list_assessments(
    session: Session,
    actor,
    *,
    organization_id: Optional[int] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
) -> List[Assessment]:
    query = _visible_query(session, actor)
    if organization_id is not None and ac.is_privileged(actor):
        query = query.filter(Assessment.organization_id == organization_id)
    if status:
        if status not in ASSESSMENT_STATUSES:
            raise ValidationError("Unknown assessment status.")
        query = query.filter(Assessment.status == status)
    if q:
        query = query.filter(func.lower(Assessment.title).like(f"%{q.strip().lower()}%"))
    return query.order_by(Assessment.created_at.desc(), Assessment.id.desc()).all()


# --- guards ---

def _require_edit(actor, assessment: Assessment) -> None:
    if not ac.has_permission(actor, ac.EDIT_ASSESSMENTS):
        raise PermissionDenied("You do not have permission to edit assessments.")
    if not ac.can_perform_admin_action(actor, assessment.organization_id, "assessments.edit"):
        raise NotFound("Assessment not found.")
    # global/preset templates belong to the platform
    if (assessment.is_global or assessment.assessment_type == "preset") and not ac.is_privileged(actor):
        raise PermissionDenied("Only platform administrators can edit shared assessments.")


def has_responses(session: Session, assessment_id: int) -> bool:
    q = (
        session.query(AssessmentResponse.id)
        .join(AssessmentAssignment, AssessmentAssignment.id == AssessmentResponse.assignment_id)
        .filter(AssessmentAssignment.assessment_id == assessment_id)
    )
    return session.query(q.exists()).scalar()


def _ensure_structure_editable(session: Session, assessment: Assessment) -> None:
    if assessment.status == STATUS_ARCHIVED:
        raise Conflict("Archived assessments cannot be modified.")
    if has_responses(session, assessment.id):
        raise Conflict("This assessment already has responses; its structure can no longer change.")


# --- assessments ---

def _apply_details(assessment: Assessment, data: dict) -> None:
    if "title" in data:
        title = clean_str(data.get("title"))
        if not title:
            raise ValidationError("Title cannot be blank.")
        assessment.title = title
    if "description" in data:
        assessment.description = clean_text(data.get("description"))
    if "category" in data:
        assessment.category = clean_str(data.get("category"), 120)
    if "estimated_time_minutes" in data:
        minutes = safe_int(data.get("estimated_time_minutes"))
        if data.get("estimated_time_minutes") not in (None, "") and (minutes is None or minutes < 0):
            raise ValidationError("Estimated time must be a positive number of minutes.")
        assessment.estimated_time_minutes = minutes
    for key in ("start_date", "end_date"):
        if key in data:
            raw = data.get(key)
            value = parse_date(raw)
            if raw not in (None, "") and value is None:
                raise ValidationError(f"{key.replace('_', ' ').capitalize()} must be a date (YYYY-MM-DD).")
            setattr(assessment, key, value)
    if assessment.start_date and assessment.end_date and assessment.end_date < assessment.start_date:
        raise ValidationError("End date cannot be before the start date.")


def create_assessment(session: Session, actor, data: dict) -> Assessment:
    if not ac.has_permission(actor, ac.CREATE_ASSESSMENTS):
        raise PermissionDenied("You do not have permission to create assessments.")
    title = clean_str(data.get("title"))
    if not title:
        raise ValidationError("Title is required.")

    org_id = safe_int(data.get("organization_id")) if ac.is_privileged(actor) else actor.organization_id
    org_id = org_id or actor.organization_id
    if org_id is None or session.get(Organization, org_id) is None:
        raise ValidationError("Organization is required.")
    if not ac.can_perform_admin_action(actor, org_id, "assessments.create"):
        raise PermissionDenied("You can only create assessments for your own organization.")

    assessment_type = data.get("assessment_type") or "custom"
    if assessment_type not in ASSESSMENT_TYPES:
        raise ValidationError(f"Assessment type must be one of: {', '.join(ASSESSMENT_TYPES)}.")
    is_global = bool(data.get("is_global"))
    if (is_global or assessment_type == "preset") and not ac.is_privileged(actor):
        raise PermissionDenied("Only platform administrators can create shared assessments.")

    assessment = Assessment(
        title=title,
        organization_id=org_id,
        created_by_id=actor.id,
        assessment_type=assessment_type,
        status=STATUS_DRAFT,
        is_global=is_global,
        is_deletable=assessment_type != "preset",
    )
    _apply_details(assessment, {k: v for k, v in data.items() if k != "title"})
    session.add(assessment)
    session.flush()

    for pos, section_data in enumerate(data.get("sections") or [], start=1):
        _build_section(session, assessment, section_data, default_order=pos)
    session.flush()
    return assessment


def update_assessment(session: Session, actor, assessment_id: int, data: dict) -> Assessment:
    assessment = get_assessment(session, assessment_id)
    _require_edit(actor, assessment)
    if assessment.status == STATUS_ARCHIVED:
        raise Conflict("Archived assessments cannot be modified.")
    _apply_details(assessment, data)
    session.flush()
    return assessment


def delete_assessment(session: Session, actor, assessment_id: int) -> Assessment:
    if not ac.has_permission(actor, ac.DELETE_ASSESSMENTS):
        raise PermissionDenied("You do not have permission to delete assessments.")
    assessment = get_assessment(session, assessment_id)
    if not ac.can_perform_admin_action(actor, assessment.organization_id, "assessments.delete"):
        raise NotFound("Assessment not found.")
    if assessment.assessment_type == "preset" or not assessment.is_deletable:
        raise Conflict("This assessment cannot be deleted.")
    assessment.is_active = False
    session.flush()
    return assessment


def set_status(session: Session, actor, assessment_id: int, status: str) -> Assessment:
    assessment = get_assessment(session, assessment_id)
    _require_edit(actor, assessment)
    if status not in ASSESSMENT_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ASSESSMENT_STATUSES)}.")
    if status == assessment.status:
        raise Conflict(f"Assessment is already {status}.")
    if status not in STATUS_TRANSITIONS[assessment.status]:
        raise Conflict(f"Cannot move an assessment from {assessment.status} to {status}.")
    if status == STATUS_PUBLISHED and assessment.question_count() < 1:
        raise ValidationError("Add at least one question before publishing.")
    assessment.status = status
    session.flush()
    return assessment


# --- sections ---

def _next_order(items) -> int:
    return max((i.order or 0 for i in items), default=0) + 1


def _build_section(session: Session, assessment: Assessment, data: dict, default_order: int = None) -> AssessmentSection:
    title = clean_str(data.get("title"))
    if not title:
        raise ValidationError("Section title is required.")
    section = AssessmentSection(
        title=title,
        description=clean_text(data.get("description")),
        order=safe_int(data.get("order")) or default_order or _next_order(assessment.sections),
    )
    assessment.sections.append(section)
    session.flush()
    for pos, q_data in enumerate(data.get("questions") or [], start=1):
        _build_question(session, assessment, section, q_data, default_order=pos)
    return section


def _get_section(session: Session, section_id: int) -> AssessmentSection:
    section = session.get(AssessmentSection, section_id)
    if section is None or not section.assessment.is_active:
        raise NotFound("Section not found.")
    return section


def add_section(session: Session, actor, assessment_id: int, data: dict) -> AssessmentSection:
    assessment = get_assessment(session, assessment_id)
    _require_edit(actor, assessment)
    _ensure_structure_editable(session, assessment)
    section = _build_section(session, assessment, data)
    session.flush()
    return section


def update_section(session: Session, actor, section_id: int, data: dict) -> AssessmentSection:
    section = _get_section(session, section_id)
    _require_edit(actor, section.assessment)
    _ensure_structure_editable(session, section.assessment)
    if "title" in data:
        title = clean_str(data.get("title"))
        if not title:
            raise ValidationError("Section title cannot be blank.")
        section.title = title
    if "description" in data:
        section.description = clean_text(data.get("description"))
    if "order" in data:
        order = safe_int(data.get("order"))
        if order is None or order < 1:
            raise ValidationError("Order must be a positive integer.")
        section.order = order
    session.flush()
    return section


def delete_section(session: Session, actor, section_id: int) -> None:
    section = _get_section(session, section_id)
    _require_edit(actor, section.assessment)
    _ensure_structure_editable(session, section.assessment)
    section.assessment.sections.remove(section)
    session.flush()


# --- questions ---

def _options_from(data: dict) -> list:
    raw = data.get("options") or []
    if not isinstance(raw, list):
        raise ValidationError("Options must be a list.")
    options = []
    for pos, item in enumerate(raw, start=1):
        if isinstance(item, str):
            item = {"text": item}
        if not isinstance(item, dict):
            raise ValidationError("Each option must be text or an object.")
        text = clean_str(item.get("text"), 500)
        if not text:
            raise ValidationError("Option text cannot be blank.")
        value = item.get("value")
        options.append(
            QuestionOption(
                text=text,
                value=safe_int(value, pos) if value is not None else pos,
                order=safe_int(item.get("order")) or pos,
            )
        )
    return options


def _check_competency(session: Session, assessment: Assessment, competency_id) -> Optional[int]:
    if competency_id in (None, ""):
        return None
    comp = session.get(Competency, safe_int(competency_id))
    if comp is None or (comp.organization_id != assessment.organization_id and not assessment.is_global):
        raise ValidationError("Competency does not exist in this organization.")
    return comp.id


def _apply_question(session: Session, assessment: Assessment, question: AssessmentQuestion, data: dict) -> None:
    if "text" in data:
        text = clean_text(data.get("text"))
        if not text:
            raise ValidationError("Question text is required.")
        question.text = text
    if "question_type" in data:
        qtype = data.get("question_type") or QUESTION_RATING
        if qtype not in QUESTION_TYPES:
            raise ValidationError(f"Question type must be one of: {', '.join(QUESTION_TYPES)}.")
        question.question_type = qtype
    if "scale_max" in data:
        raw = data.get("scale_max")
        scale = DEFAULT_SCALE_MAX if raw in (None, "") else safe_int(raw)
        if scale is None or not MIN_SCALE <= scale <= MAX_SCALE:
            raise ValidationError(f"Scale must be between {MIN_SCALE} and {MAX_SCALE}.")
        question.scale_max = scale
    if "is_required" in data:
        question.is_required = bool(data.get("is_required"))
    if "help_text" in data:
        question.help_text = clean_text(data.get("help_text"))
    if "order" in data and data.get("order") is not None:
        order = safe_int(data.get("order"))
        if order is None or order < 1:
            raise ValidationError("Order must be a positive integer.")
        question.order = order
    if "competency_id" in data:
        question.competency_id = _check_competency(session, assessment, data.get("competency_id"))

    if "options" in data:
        question.options = _options_from(data)
    if question.question_type == QUESTION_MULTIPLE_CHOICE:
        if len(question.options) < 2:
            raise ValidationError("Multiple choice questions need at least two options.")
    elif question.options:
        question.options = []


def _build_question(
    session: Session,
    assessment: Assessment,
    section: AssessmentSection,
    data: dict,
    default_order: int = None,
) -> AssessmentQuestion:
    question = AssessmentQuestion(
        text="",
        question_type=QUESTION_RATING,
        scale_max=DEFAULT_SCALE_MAX,
        is_required=True,
        order=default_order or _next_order(section.questions),
    )
    _apply_question(session, assessment, question, {"text": None, **data})
    section.questions.append(question)
    session.flush()
    return question


def _get_question(session: Session, question_id: int) -> AssessmentQuestion:
    question = session.get(AssessmentQuestion, question_id)
    if question is None or not question.section.assessment.is_active:
        raise NotFound("Question not found.")
    return question


def add_question(session: Session, actor, section_id: int, data: dict) -> AssessmentQuestion:
    section = _get_section(session, section_id)
    _require_edit(actor, section.assessment)
    _ensure_structure_editable(session, section.assessment)
    return _build_question(session, section.assessment, section, data)


def update_question(session: Session, actor, question_id: int, data: dict) -> AssessmentQuestion:
    question = _get_question(session, question_id)
    assessment = question.section.assessment
    _require_edit(actor, assessment)
    _ensure_structure_editable(session, assessment)
    _apply_question(session, assessment, question, data)
    session.flush()
    return question


def delete_question(session: Session, actor, question_id: int) -> None:
    question = _get_question(session, question_id)
    assessment = question.section.assessment
    _require_edit(actor, assessment)
    _ensure_structure_editable(session, assessment)
    question.section.questions.remove(question)
    session.flush()


# --- competencies ---

def list_competencies(session: Session, actor, organization_id: Optional[int] = None) -> List[Competency]:
    query = session.query(Competency)
    if ac.is_privileged(actor):
        if organization_id is not None:
            query = query.filter(Competency.organization_id == organization_id)
    else:
        query = query.filter(Competency.organization_id == actor.organization_id)
    return query.order_by(func.lower(Competency.name)).all()


def create_competency(session: Session, actor, data: dict) -> Competency:
    if not ac.has_permission(actor, ac.CREATE_ASSESSMENTS):
        raise PermissionDenied("You do not have permission to manage competencies.")
    name = clean_str(data.get("name"))
    if not name:
        raise ValidationError("Competency name is required.")
    org_id = safe_int(data.get("organization_id")) if ac.is_privileged(actor) else actor.organization_id
    org_id = org_id or actor.organization_id
    if org_id is None or not ac.can_perform_admin_action(actor, org_id, "competencies.create"):
        raise ValidationError("Organization is required.")
    comp = Competency(organization_id=org_id, name=name, description=clean_text(data.get("description")))
    session.add(comp)
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict("A competency with this name already exists.") from e
    return comp
