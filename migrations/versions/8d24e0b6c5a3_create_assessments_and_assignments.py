"""Create competencies, assessments, questions, assignments, responses and results"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "8d24e0b6c5a3"
down_revision = "3f1c9a7e2b01"
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade():
    op.create_table(
        "competencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_competencies_organization_id", "competencies", ["organization_id"])
    op.create_index(
        "uq_competencies_org_lower_name", "competencies",
        ["organization_id", sa.text("lower(name)")], unique=True,
    )

    op.create_table(
        "assessments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("assessment_type", sa.String(length=20), nullable=False, server_default="custom"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("is_deletable", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("category", sa.String(length=120), nullable=True),
        sa.Column("estimated_time_minutes", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("assessment_type IN ('preset','custom')", name="ck_assessments_type_valid"),
        sa.CheckConstraint("status IN ('draft','published','archived')", name="ck_assessments_status_valid"),
    )
    op.create_index("ix_assessments_organization_id", "assessments", ["organization_id"])
    op.create_index("ix_assessments_created_by_id", "assessments", ["created_by_id"])
    op.create_index("ix_assessments_status", "assessments", ["status"])
    op.create_index("ix_assessments_is_active", "assessments", ["is_active"])
    op.create_index("ix_assessments_org_status", "assessments", ["organization_id", "status"])

    op.create_table(
        "assessment_sections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assessment_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_assessment_sections_assessment_id", "assessment_sections", ["assessment_id"])

    op.create_table(
        "assessment_questions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("section_id", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("question_type", sa.String(length=20), nullable=False, server_default="rating"),
        sa.Column("scale_max", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("help_text", sa.Text(), nullable=True),
        sa.Column("competency_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["section_id"], ["assessment_sections.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["competency_id"], ["competencies.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "question_type IN ('rating','multiple_choice','yes_no','text')",
            name="ck_assessment_questions_type_valid",
        ),
    )
    op.create_index("ix_assessment_questions_section_id", "assessment_questions", ["section_id"])
    op.create_index("ix_assessment_questions_competency_id", "assessment_questions", ["competency_id"])

    op.create_table(
        "question_options",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("question_id", sa.Integer(), nullable=False),
        sa.Column("text", sa.String(length=500), nullable=False),
        sa.Column("value", sa.Integer(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["question_id"], ["assessment_questions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_question_options_question_id", "question_options", ["question_id"])

    op.create_table(
        "assessment_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assessment_id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("reviewer_id", sa.Integer(), nullable=False),
        sa.Column("assigned_by_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "assessment_id", "employee_id", "reviewer_id",
            name="uq_assignments_assessment_employee_reviewer",
        ),
        sa.CheckConstraint("status IN ('pending','in_progress','completed')", name="ck_assignments_status_valid"),
    )
    op.create_index("ix_assessment_assignments_assessment_id", "assessment_assignments", ["assessment_id"])
    op.create_index("ix_assessment_assignments_organization_id", "assessment_assignments", ["organization_id"])
    op.create_index("ix_assessment_assignments_employee_id", "assessment_assignments", ["employee_id"])
    op.create_index("ix_assessment_assignments_reviewer_id", "assessment_assignments", ["reviewer_id"])
    op.create_index("ix_assessment_assignments_status", "assessment_assignments", ["status"])
    op.create_index("ix_assignments_org_status", "assessment_assignments", ["organization_id", "status"])

    op.create_table(
        "assessment_responses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("question_id", sa.Integer(), nullable=False),
        sa.Column("respondent_id", sa.Integer(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("text_response", sa.Text(), nullable=True),
        sa.Column("selected_option_id", sa.Integer(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["assignment_id"], ["assessment_assignments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["question_id"], ["assessment_questions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["respondent_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["selected_option_id"], ["question_options.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("assignment_id", "question_id", name="uq_responses_assignment_question"),
    )
    op.create_index("ix_assessment_responses_assignment_id", "assessment_responses", ["assignment_id"])
    op.create_index("ix_assessment_responses_question_id", "assessment_responses", ["question_id"])

    op.create_table(
        "assessment_results",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("assessment_id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["assignment_id"], ["assessment_assignments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("assignment_id", name="uq_assessment_results_assignment_id"),
    )
    op.create_index("ix_assessment_results_assessment_id", "assessment_results", ["assessment_id"])
    op.create_index("ix_assessment_results_organization_id", "assessment_results", ["organization_id"])
    op.create_index("ix_assessment_results_user_id", "assessment_results", ["user_id"])
    op.create_index("ix_assessment_results_completed_at", "assessment_results", ["completed_at"])


def downgrade():
    op.drop_table("assessment_results")
    op.drop_table("assessment_responses")
    op.drop_table("assessment_assignments")
    op.drop_table("question_options")
    op.drop_table("assessment_questions")
    op.drop_table("assessment_sections")
    op.drop_table("assessments")
    op.drop_table("competencies")
