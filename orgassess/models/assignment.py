from sqlalchemy import func, CheckConstraint, UniqueConstraint, Index
from orgassess.extensions import db
from orgassess.utils.helpers import utcnow, isoformat

ASSIGNMENT_PENDING = "pending"
ASSIGNMENT_IN_PROGRESS = "in_progress"
ASSIGNMENT_COMPLETED = "completed"
ASSIGNMENT_STATUSES = (ASSIGNMENT_PENDING, ASSIGNMENT_IN_PROGRESS, ASSIGNMENT_COMPLETED)


class AssessmentAssignment(db.Model):
    __tablename__ = "assessment_assignments"

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(db.Integer, db.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=ASSIGNMENT_PENDING, server_default=ASSIGNMENT_PENDING, index=True)
    due_date = db.Column(db.Date, nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    assessment = db.relationship("Assessment")
    responses = db.relationship("AssessmentResponse", back_populates="assignment", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("assessment_id", "employee_id", "reviewer_id", name="uq_assignments_assessment_employee_reviewer"),
        CheckConstraint("status IN ('pending','in_progress','completed')", name="ck_assignments_status_valid"),
        Index("ix_assignments_org_status", organization_id, status),
    )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            assessment_id=self.assessment_id,
            organization_id=self.organization_id,
            employee_id=self.employee_id,
            reviewer_id=self.reviewer_id,
            assigned_by_id=self.assigned_by_id,
            status=self.status,
            due_date=self.due_date.isoformat() if self.due_date else None,
            started_at=isoformat(self.started_at),
            completed_at=isoformat(self.completed_at),
            created_at=isoformat(self.created_at),
            updated_at=isoformat(self.updated_at),
        )


class AssessmentResponse(db.Model):
    __tablename__ = "assessment_responses"

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("assessment_assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey("assessment_questions.id", ondelete="CASCADE"), nullable=False, index=True)
    respondent_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    rating = db.Column(db.Integer, nullable=True)
    text_response = db.Column(db.Text, nullable=True)
    selected_option_id = db.Column(db.Integer, db.ForeignKey("question_options.id", ondelete="SET NULL"), nullable=True)
    comment = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    assignment = db.relationship("AssessmentAssignment", back_populates="responses")

    __table_args__ = (
        UniqueConstraint("assignment_id", "question_id", name="uq_responses_assignment_question"),
    )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            assignment_id=self.assignment_id,
            question_id=self.question_id,
            respondent_id=self.respondent_id,
            rating=self.rating,
            text_response=self.text_response,
            selected_option_id=self.selected_option_id,
            comment=self.comment,
        )


class AssessmentResult(db.Model):
    __tablename__ = "assessment_results"

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("assessment_assignments.id", ondelete="CASCADE"), nullable=False, unique=True)
    assessment_id = db.Column(db.Integer, db.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    score = db.Column(db.Float, nullable=False, default=0)
    max_score = db.Column(db.Float, nullable=False, default=0)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            assignment_id=self.assignment_id,
            assessment_id=self.assessment_id,
            organization_id=self.organization_id,
            user_id=self.user_id,
            score=self.score,
            max_score=self.max_score,
            completed_at=isoformat(self.completed_at),
        )
