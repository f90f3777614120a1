from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import make_org, make_user, login
from orgassess.extensions import db
from orgassess.models import (
    Assessment,
    AssessmentSection,
    AssessmentQuestion,
    AssessmentAssignment,
    AssessmentResponse,
    AssessmentResult,
    Competency,
)
from orgassess.services import dashboard as svc
from orgassess.services.dashboard import CompetencyStat, DashboardAnalytics
from orgassess.services.errors import PermissionDenied
from orgassess.utils.helpers import utcnow


def _seed_org(name, ratings, completed_days=None):
    """One published assessment, one rating question tied to a competency, one assignment per rating."""
    org = make_org(name)
    boss = make_user(f"boss@{name.lower()}.test", role="org_admin", org=org)
    rev = make_user(f"rev@{name.lower()}.test", role="reviewer", org=org)
    comp = Competency(organization_id=org.id, name="Teamwork")
    db.session.add(comp)
    db.session.flush()

    assessment = Assessment(title="Review", organization_id=org.id, created_by_id=boss.id, status="published")
    section = AssessmentSection(title="S", order=1)
    question = AssessmentQuestion(text="Q", order=1, question_type="rating", scale_max=5, competency_id=comp.id)
    section.questions.append(question)
    assessment.sections.append(section)
    db.session.add(assessment)
    db.session.flush()

    now = utcnow()
    for i, rating in enumerate(ratings):
        emp = make_user(f"emp{i}@{name.lower()}.test", org=org)
        assignment = AssessmentAssignment(
            assessment_id=assessment.id,
            organization_id=org.id,
            employee_id=emp.id,
            reviewer_id=rev.id,
            status="pending",
            created_at=now - timedelta(days=completed_days or 0),
        )
        db.session.add(assignment)
        db.session.flush()
        if rating is None:
            continue
        assignment.status = "completed"
        assignment.completed_at = now
        db.session.add(AssessmentResponse(
            assignment_id=assignment.id, question_id=question.id, respondent_id=rev.id, rating=rating,
        ))
        db.session.add(AssessmentResult(
            assignment_id=assignment.id,
            assessment_id=assessment.id,
            organization_id=org.id,
            user_id=emp.id,
            score=rating,
            max_score=5,
            completed_at=now,
        ))
    db.session.flush()
    return org, boss


def test_organization_analytics(ctx):
    org, _ = _seed_org("Acme", [5, 3, None], completed_days=2)
    a = svc.organization_analytics(ctx, org.id)
    assert a.total_employees == 3
    assert a.total_reviewers == 1
    assert a.total_assessments == 1
    assert (a.completed_assessments, a.pending_assessments, a.in_progress_assessments) == (2, 1, 0)
    assert a.total_assignments == 3
    assert a.total_responses == 2
    # (5/5*5 + 3/5*5) / 2
    assert a.average_rating == 4.0
    assert a.completion_rate == 66.67
    assert a.participation_rate == 66.67
    assert a.average_completion_time == pytest.approx(2.0, abs=0.01)
    assert [(c.competency_name, c.average_rating, c.assessment_count) for c in a.competency_analytics] == [
        ("Teamwork", 4.0, 2)
    ]


def test_empty_organization_is_all_zero(ctx):
    org = make_org("Empty")
    a = svc.organization_analytics(ctx, org.id)
    assert a.total_assignments == 0
    assert a.average_rating == 0.0
    assert a.completion_rate == 0.0
    assert a.competency_analytics == []


def test_combine_weights_by_volume():
    one = DashboardAnalytics(
        organization_id=1, total_employees=10, completed_assessments=1, total_assignments=2,
        total_responses=1, rated_responses=1, average_rating=5.0, average_completion_time=1.0,
        competency_analytics=[CompetencyStat(7, "Teamwork", 5.0, 1)],
    )
    two = DashboardAnalytics(
        organization_id=2, total_employees=10, completed_assessments=3, total_assignments=3,
        total_responses=4, rated_responses=3, average_rating=1.0, average_completion_time=3.0,
        competency_analytics=[CompetencyStat(7, "Teamwork", 1.0, 3), CompetencyStat(8, "Focus", 4.0, 1)],
    )
    out = svc.combine([one, two])
    assert out.organization_id is None
    assert out.total_responses == 5
    assert out.rated_responses == 4
    assert out.average_rating == 2.0
    assert out.average_completion_time == 2.5
    assert out.completion_rate == 80.0
    assert out.participation_rate == 25.0
    assert [(c.competency_id, c.average_rating, c.assessment_count) for c in out.competency_analytics] == [
        (8, 4.0, 1),
        (7, 2.0, 4),
    ]


def test_get_analytics_scoping(ctx):
    acme, acme_boss = _seed_org("Acme", [5])
    globex, _ = _seed_org("Globex", [1, 3])
    admin = make_user("admin@platform.test", role="super_admin")

    everyone = svc.get_analytics(ctx, admin)
    assert everyone.organization_id is None
    assert everyone.total_responses == 3
    assert everyone.average_rating == 3.0

    mine = svc.get_analytics(ctx, acme_boss)
    assert mine.organization_id == acme.id
    assert mine.total_responses == 1
    with pytest.raises(PermissionDenied):
        svc.get_analytics(ctx, acme_boss, globex.id)

    employee = make_user("someone@acme.test", org=acme)
    with pytest.raises(PermissionDenied):
        svc.get_analytics(ctx, employee)
    assert len(svc.list_organization_analytics(ctx, admin)) == 2


def test_suspended_orgs_left_out_of_aggregate(ctx):
    _seed_org("Acme", [5])
    globex, _ = _seed_org("Globex", [1])
    globex.status = "suspended"
    ctx.flush()
    admin = make_user("admin@platform.test", role="super_admin")
    assert svc.get_analytics(ctx, admin).average_rating == 5.0


def test_dashboard_routes(app, client):
    with app.app_context():
        _, boss = _seed_org("Acme", [4])
        admin = make_user("admin@platform.test", role="super_admin")
        db.session.commit()
        boss_id, admin_id = boss.id, admin.id

    login(client, boss_id)
    r = client.get("/dash/analytics")
    assert r.status_code == 200
    assert r.get_json()["analytics"]["average_rating"] == 4.0
    assert client.get("/dash/summary").status_code == 403

    login(client, admin_id)
    r = client.get("/dash/summary")
    summary = r.get_json()["summary"]
    assert summary["organizations"] == 1
    assert summary["completed_assignments"] == 1
    assert summary["open_tickets"] == 0


def test_unscored_results_do_not_drag_average(ctx):
    org, _ = _seed_org("Acme", [5, None])
    pending = ctx.query(AssessmentAssignment).filter_by(status="pending").one()
    pending.status = "completed"
    pending.completed_at = utcnow()
    # an assessment with no rating questions scores 0 of 0
    ctx.add(AssessmentResult(
        assignment_id=pending.id,
        assessment_id=pending.assessment_id,
        organization_id=org.id,
        user_id=pending.employee_id,
        score=0,
        max_score=0,
        completed_at=utcnow(),
    ))
    ctx.flush()

    a = svc.organization_analytics(ctx, org.id)
    assert a.total_responses == 2
    assert a.rated_responses == 1
    assert a.average_rating == 5.0


def test_failing_organization_is_skipped(ctx, monkeypatch):
    acme, _ = _seed_org("Acme", [5])
    globex, _ = _seed_org("Globex", [1])
    admin = make_user("admin@platform.test", role="super_admin")
    ctx.commit()
    acme_id, broken_id = acme.id, globex.id

    real = svc.organization_analytics

    def flaky(session, org_id):
        if org_id == broken_id:
            raise SQLAlchemyError("statement timeout")
        return real(session, org_id)

    monkeypatch.setattr(svc, "organization_analytics", flaky)
    out = svc.get_analytics(ctx, admin)
    assert out.total_responses == 1
    assert out.average_rating == 5.0
    assert [a.organization_id for a in svc.list_organization_analytics(ctx, admin)] == [acme_id]
