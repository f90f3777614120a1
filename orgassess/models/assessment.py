from sqlalchemy import func, text, CheckConstraint, Index
from orgassess.extensions import db
from orgassess.utils.helpers import utcnow, isoformat

ASSESSMENT_TYPES = ("preset", "custom")

STATUS_DRAFT = "draft"
STATUS_PUBLISHED = "published"
STATUS_ARCHIVED = "archived"
ASSESSMENT_STATUSES = (STATUS_DRAFT, STATUS_PUBLISHED, STATUS_ARCHIVED)

QUESTION_RATING = "rating"
QUESTION_MULTIPLE_CHOICE = "multiple_choice"
QUESTION_YES_NO = "yes_no"
QUESTION_TEXT = "text"
QUESTION_TYPES = (QUESTION_RATING, QUESTION_MULTIPLE_CHOICE, QUESTION_YES_NO, QUESTION_TEXT)
DEFAULT_SCALE_MAX = 7


class Competency(db.Model):
    __tablename__ = "competencies"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        Index("uq_competencies_org_lower_name", organization_id, func.lower(name), unique=True),
    )

    def to_dict(self) -> dict:
        return dict(id=self.id, organization_id=self.organization_id, name=self.name, description=self.description)


class Assessment(db.Model):
    __tablename__ = "assessments"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    assessment_type = db.Column(db.String(20), nullable=False, default="custom", server_default="custom")
    status = db.Column(db.String(20), nullable=False, default=STATUS_DRAFT, server_default=STATUS_DRAFT, index=True)
    is_deletable = db.Column(db.Boolean, nullable=False, default=True, server_default=text("true"))
    is_global = db.Column(db.Boolean, nullable=False, default=False, server_default=text("false"))
    # soft delete
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=text("true"), index=True)

    category = db.Column(db.String(120), nullable=True)
    estimated_time_minutes = db.Column(db.Integer, nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    sections = db.relationship(
        "AssessmentSection",
        back_populates="assessment",
        order_by="AssessmentSection.order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("assessment_type IN ('preset','custom')", name="ck_assessments_type_valid"),
        CheckConstraint("status IN ('draft','published','archived')", name="ck_assessments_status_valid"),
        Index("ix_assessments_org_status", organization_id, status),
    )

    def question_count(self) -> int:
        return sum(len(s.questions) for s in self.sections)

    def to_dict(self, include_sections: bool = False) -> dict:
        data = dict(
            id=self.id,
            title=self.title,
            description=self.description,
            organization_id=self.organization_id,
            created_by_id=self.created_by_id,
            assessment_type=self.assessment_type,
            status=self.status,
            is_deletable=self.is_deletable,
            is_global=self.is_global,
            category=self.category,
            estimated_time_minutes=self.estimated_time_minutes,
            start_date=self.start_date.isoformat() if self.start_date else None,
            end_date=self.end_date.isoformat() if self.end_date else None,
            created_at=isoformat(self.created_at),
            updated_at=isoformat(self.updated_at),
        )
        if include_sections:
            data["sections"] = [s.to_dict() for s in self.sections]
        return data

    def __repr__(self) -> str:
        return f"<Assessment id={self.id} title={self.title!r} status={self.status!r}>"


class AssessmentSection(db.Model):
    __tablename__ = "assessment_sections"

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(db.Integer, db.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=1)

    assessment = db.relationship("Assessment", back_populates="sections")
    questions = db.relationship(
        "AssessmentQuestion",
        back_populates="section",
        order_by="AssessmentQuestion.order",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            title=self.title,
            description=self.description,
            order=self.order,
            questions=[q.to_dict() for q in self.questions],
        )


class AssessmentQuestion(db.Model):
    __tablename__ = "assessment_questions"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(db.Integer, db.ForeignKey("assessment_sections.id", ondelete="CASCADE"), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=1)
    question_type = db.Column(db.String(20), nullable=False, default=QUESTION_RATING)
    scale_max = db.Column(db.Integer, nullable=False, default=DEFAULT_SCALE_MAX)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    help_text = db.Column(db.Text, nullable=True)
    competency_id = db.Column(db.Integer, db.ForeignKey("competencies.id", ondelete="SET NULL"), nullable=True, index=True)

    section = db.relationship("AssessmentSection", back_populates="questions")
    options = db.relationship(
        "QuestionOption",
        back_populates="question",
        order_by="QuestionOption.order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "question_type IN ('rating','multiple_choice','yes_no','text')",
            name="ck_assessment_questions_type_valid",
        ),
    )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            section_id=self.section_id,
            text=self.text,
            order=self.order,
            question_type=self.question_type,
            scale_max=self.scale_max,
            is_required=self.is_required,
            help_text=self.help_text,
            competency_id=self.competency_id,
            options=[o.to_dict() for o in self.options],
        )


class QuestionOption(db.Model):
    __tablename__ = "question_options"

    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey("assessment_questions.id", ondelete="CASCADE"), nullable=False, index=True)
    text = db.Column(db.String(500), nullable=False)
    value = db.Column(db.Integer, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=1)

    question = db.relationship("AssessmentQuestion", back_populates="options")

    def to_dict(self) -> dict:
        return dict(id=self.id, text=self.text, value=self.value, order=self.order)
