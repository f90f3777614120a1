from datetime import date, timedelta
from io import StringIO

import pandas as pd
import pytest

from conftest import make_org, make_user, login
from orgassess.extensions import db
from orgassess.services import assessments as svc
from orgassess.services import assignments as assign_svc
from orgassess.services.errors import Conflict, NotFound, PermissionDenied, ValidationError

SURVEY = {
    "title": "Quarterly review",
    "sections": [
        {
            "title": "Delivery",
            "questions": [
                {"text": "Ships on time", "question_type": "rating", "scale_max": 5},
                {"text": "Owns outcomes", "question_type": "rating"},
                {
                    "text": "Preferred channel",
                    "question_type": "multiple_choice",
                    "options": ["Email", {"text": "Chat", "value": 9}],
                },
                {"text": "Anything else?", "question_type": "text", "is_required": False},
            ],
        }
    ],
}


def _people():
    org = make_org("Acme")
    boss = make_user("boss@acme.test", role="org_admin", org=org)
    ada = make_user("ada@acme.test", org=org)
    rev = make_user("rev@acme.test", role="reviewer", org=org)
    return org, boss, ada, rev


def _published(session, boss):
    a = svc.create_assessment(session, boss, SURVEY)
    svc.set_status(session, boss, a.id, "published")
    return a


def _questions(assessment):
    return [q for s in assessment.sections for q in s.questions]


def test_create_nested_assessment(ctx):
    org, boss, _, _ = _people()
    a = svc.create_assessment(ctx, boss, SURVEY)
    assert a.status == "draft"
    assert a.organization_id == org.id
    assert a.question_count() == 4
    rating, default_scale, mc, _ = _questions(a)
    assert rating.scale_max == 5
    assert default_scale.scale_max == 7
    assert [(o.text, o.value) for o in mc.options] == [("Email", 1), ("Chat", 9)]


def test_question_validation(ctx):
    _, boss, _, _ = _people()
    a = svc.create_assessment(ctx, boss, {"title": "T"})
    section = svc.add_section(ctx, boss, a.id, {"title": "S"})
    with pytest.raises(ValidationError):
        svc.add_question(ctx, boss, section.id, {"text": "Pick", "question_type": "multiple_choice", "options": ["one"]})
    with pytest.raises(ValidationError):
        svc.add_question(ctx, boss, section.id, {"text": "Rate", "scale_max": 11})
    with pytest.raises(ValidationError):
        svc.add_question(ctx, boss, section.id, {"text": "Rate", "question_type": "essay"})
    with pytest.raises(ValidationError):
        svc.add_question(ctx, boss, section.id, {"text": ""})


def test_employee_cannot_create_and_sees_published_only(ctx):
    _, boss, ada, _ = _people()
    with pytest.raises(PermissionDenied):
        svc.create_assessment(ctx, ada, {"title": "Mine"})
    draft = svc.create_assessment(ctx, boss, {"title": "Draft"})
    live = _published(ctx, boss)
    assert [a.id for a in svc.list_assessments(ctx, ada)] == [live.id]
    assert {a.id for a in svc.list_assessments(ctx, boss)} == {draft.id, live.id}
    with pytest.raises(NotFound):
        svc.get_visible_assessment(ctx, ada, draft.id)


def test_other_org_cannot_see_or_edit(ctx):
    _, boss, _, _ = _people()
    globex = make_org("Globex")
    other_boss = make_user("boss@globex.test", role="org_admin", org=globex)
    a = svc.create_assessment(ctx, boss, {"title": "Private"})
    with pytest.raises(NotFound):
        svc.get_visible_assessment(ctx, other_boss, a.id)
    with pytest.raises(NotFound):
        svc.update_assessment(ctx, other_boss, a.id, {"title": "Mine now"})


def test_status_transitions(ctx):
    _, boss, _, _ = _people()
    empty = svc.create_assessment(ctx, boss, {"title": "Empty"})
    with pytest.raises(ValidationError):
        svc.set_status(ctx, boss, empty.id, "published")

    a = _published(ctx, boss)
    with pytest.raises(Conflict):
        svc.set_status(ctx, boss, a.id, "draft")
    svc.set_status(ctx, boss, a.id, "archived")
    with pytest.raises(Conflict):
        svc.update_assessment(ctx, boss, a.id, {"title": "Too late"})


def test_delete_is_soft_and_respects_presets(ctx):
    _, boss, _, _ = _people()
    admin = make_user("root@platform.test", role="super_admin")
    a = svc.create_assessment(ctx, boss, {"title": "Temp"})
    svc.delete_assessment(ctx, admin, a.id)
    assert a.is_active is False
    with pytest.raises(NotFound):
        svc.get_assessment(ctx, a.id)

    preset = svc.create_assessment(ctx, admin, {"title": "360", "assessment_type": "preset", "organization_id": boss.organization_id})
    assert preset.is_deletable is False
    with pytest.raises(Conflict):
        svc.delete_assessment(ctx, admin, preset.id)
    with pytest.raises(PermissionDenied):
        svc.delete_assessment(ctx, boss, preset.id)


def test_assign_requires_published_and_members(ctx):
    _, boss, ada, rev = _people()
    draft = svc.create_assessment(ctx, boss, SURVEY)
    with pytest.raises(Conflict):
        assign_svc.create_assignments(ctx, boss, draft.id, [{"employee_id": ada.id, "reviewer_id": rev.id}])

    a = _published(ctx, boss)
    stranger = make_user("x@globex.test", org=make_org("Globex"))
    with pytest.raises(ValidationError):
        assign_svc.create_assignments(ctx, boss, a.id, [{"employee_id": stranger.id, "reviewer_id": rev.id}])
    yesterday = (date.today() - timedelta(days=2)).isoformat()
    with pytest.raises(ValidationError):
        assign_svc.create_assignments(
            ctx, boss, a.id, [{"employee_id": ada.id, "reviewer_id": rev.id, "due_date": yesterday}]
        )
    with pytest.raises(PermissionDenied):
        assign_svc.create_assignments(ctx, ada, a.id, [{"employee_id": ada.id, "reviewer_id": rev.id}])


def test_duplicate_assignment_conflicts(ctx):
    _, boss, ada, rev = _people()
    a = _published(ctx, boss)
    assign_svc.create_assignments(ctx, boss, a.id, [{"employee_id": ada.id, "reviewer_id": rev.id}])
    with pytest.raises(Conflict):
        assign_svc.create_assignments(ctx, boss, a.id, [{"employee_id": ada.id, "reviewer_id": rev.id}])


def test_respond_and_submit(ctx):
    _, boss, ada, rev = _people()
    a = _published(ctx, boss)
    (assignment,) = assign_svc.create_assignments(ctx, boss, a.id, [{"employee_id": ada.id, "reviewer_id": rev.id}])
    q1, q2, mc, free = _questions(a)

    with pytest.raises(PermissionDenied):
        assign_svc.save_responses(ctx, ada, assignment.id, [{"question_id": q1.id, "rating": 3}])
    with pytest.raises(ValidationError):
        assign_svc.save_responses(ctx, rev, assignment.id, [{"question_id": q1.id, "rating": 6}])

    assign_svc.save_responses(ctx, rev, assignment.id, [{"question_id": q1.id, "rating": 4}])
    assert assignment.status == "in_progress"
    assert assignment.started_at is not None

    with pytest.raises(ValidationError):
        assign_svc.submit_assignment(ctx, rev, assignment.id)

    result = assign_svc.submit_assignment(
        ctx,
        rev,
        assignment.id,
        [
            {"question_id": q2.id, "rating": 7},
            {"question_id": mc.id, "selected_option_id": mc.options[1].id},
        ],
    )
    # rating questions only: (4 + 7) / (5 + 7)
    assert (result.score, result.max_score) == (11.0, 12.0)
    assert result.user_id == ada.id
    assert assignment.status == "completed"
    assert assignment.completed_at is not None

    with pytest.raises(Conflict):
        assign_svc.submit_assignment(ctx, rev, assignment.id)
    with pytest.raises(Conflict):
        svc.add_section(ctx, boss, a.id, {"title": "Late"})


def test_result_visibility(ctx):
    _, boss, ada, rev = _people()
    a = _published(ctx, boss)
    (assignment,) = assign_svc.create_assignments(ctx, boss, a.id, [{"employee_id": ada.id, "reviewer_id": rev.id}])
    with pytest.raises(NotFound):
        assign_svc.get_result(ctx, boss, assignment.id)

    answers = [
        {"question_id": q.id, "rating": 1}
        if q.question_type == "rating"
        else {"question_id": q.id, "selected_option_id": q.options[0].id}
        for q in _questions(a) if q.is_required
    ]
    assign_svc.submit_assignment(ctx, rev, assignment.id, answers)

    assert assign_svc.get_result(ctx, ada, assignment.id).assignment_id == assignment.id
    assert [r.assignment_id for r in assign_svc.list_results(ctx, boss)] == [assignment.id]
    assert [r.assignment_id for r in assign_svc.list_results(ctx, rev)] == [assignment.id]
    with pytest.raises(PermissionDenied):
        assign_svc.list_results(ctx, ada)


def test_assessment_routes(app, client):
    with app.app_context():
        _, boss, ada, rev = _people()
        db.session.commit()
        boss_id, ada_id, rev_id = boss.id, ada.id, rev.id

    login(client, ada_id)
    assert client.post("/assessments/", json={"title": "Nope"}).status_code == 403

    login(client, boss_id)
    r = client.post("/assessments/", json=SURVEY)
    assert r.status_code == 201
    body = r.get_json()["assessment"]
    assessment_id = body["id"]
    assert len(body["sections"][0]["questions"]) == 4

    r = client.post(f"/assessments/{assessment_id}/status", json={"status": "published"})
    assert r.get_json()["assessment"]["status"] == "published"

    r = client.post(
        f"/assessments/{assessment_id}/assignments",
        json={"assignments": [{"employee_id": ada_id, "reviewer_id": rev_id}]},
    )
    assert r.status_code == 201
    assignment_id = r.get_json()["rows"][0]["id"]

    login(client, rev_id)
    r = client.get("/assessments/assignments?as=reviewer")
    assert [row["id"] for row in r.get_json()["rows"]] == [assignment_id]
    r = client.get(f"/assessments/assignments/{assignment_id}")
    questions = r.get_json()["assignment"]["assessment"]["sections"][0]["questions"]

    answers = []
    for q in questions:
        if q["question_type"] == "rating":
            answers.append({"question_id": q["id"], "rating": 2})
        elif q["question_type"] == "multiple_choice":
            answers.append({"question_id": q["id"], "selected_option_id": q["options"][0]["id"]})
    r = client.post(f"/assessments/assignments/{assignment_id}/submit", json={"responses": answers})
    assert r.status_code == 200
    assert r.get_json()["result"]["score"] == 4.0

    login(client, ada_id)
    r = client.get(f"/assessments/assignments/{assignment_id}/result")
    assert r.get_json()["result"]["max_score"] == 12.0


def _submitted(session):
    org, boss, ada, rev = _people()
    a = _published(session, boss)
    (assignment,) = assign_svc.create_assignments(session, boss, a.id, [{"employee_id": ada.id, "reviewer_id": rev.id}])
    answers = [
        {"question_id": q.id, "rating": 2}
        if q.question_type == "rating"
        else {"question_id": q.id, "selected_option_id": q.options[0].id}
        for q in _questions(a) if q.is_required
    ]
    assign_svc.submit_assignment(session, rev, assignment.id, answers)
    return org, boss, ada, rev


def test_export_results_csv(ctx):
    _, boss, ada, rev = _submitted(ctx)

    frame = pd.read_csv(StringIO(assign_svc.export_results_csv(ctx, boss)))
    assert list(frame.columns) == list(assign_svc.EXPORT_COLUMNS)
    assert len(frame) == 1
    row = frame.iloc[0]
    assert row["organization"] == "Acme"
    assert row["assessment"] == "Quarterly review"
    assert row["employee_email"] == "ada@acme.test"
    assert row["reviewer_name"] == "Rev Tester"
    assert row["score"] == 4.0
    assert row["percentage"] == round(row["score"] / row["max_score"] * 100, 1)

    # reviewers may view results but not export them
    with pytest.raises(PermissionDenied):
        assign_svc.export_results_csv(ctx, rev)

    other = make_user("boss@globex.test", role="org_admin", org=make_org("Globex"))
    assert pd.read_csv(StringIO(assign_svc.export_results_csv(ctx, other))).empty


def test_export_results_route(app, client):
    with app.app_context():
        _, boss, ada, _ = _submitted(db.session)
        db.session.commit()
        boss_id, ada_id = boss.id, ada.id

    assert client.get("/assessments/results/export").status_code == 401

    login(client, ada_id)
    assert client.get("/assessments/results/export").status_code == 403

    login(client, boss_id)
    r = client.get("/assessments/results/export")
    assert r.status_code == 200
    assert r.headers["Content-Type"].startswith("text/csv")
    assert 'filename="assessment_results_' in r.headers["Content-Disposition"]
    frame = pd.read_csv(StringIO(r.get_data(as_text=True)))
    assert frame["employee_email"].tolist() == ["ada@acme.test"]
