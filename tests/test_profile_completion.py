import pytest

from conftest import make_org, make_user, login
from orgassess.extensions import db
from orgassess.services import profile as svc
from orgassess.services.errors import NotFound, PermissionDenied, ValidationError


def test_weights_total():
    assert svc.TOTAL_WEIGHT == 92
    assert len(svc.COMPLETION_FIELDS) == 14


def test_empty_profile_scores_account_fields_only():
    result = svc.calculate_completion({"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.test"})
    # 30 of 92
    assert result.completed_weight == 30
    assert result.percentage == 33
    assert result.status == "incomplete"
    assert "Phone" in result.missing_fields and "First Name" not in result.missing_fields


def test_full_profile_is_complete():
    data = {
        "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.test",
        "phone": "+15551234567", "position": "Engineer", "department": "R&D",
        "date_of_birth": "1990-01-01", "hire_date": "2020-01-01", "bio": "Hi",
        "emergency_contact": {"name": "Bob", "relationship": "Brother", "phone": "5551234567"},
        "skills": ["python"], "certifications": ["x"],
        "education": [{"degree": "BSc"}], "work_experience": [{"company": "Acme"}],
    }
    result = svc.calculate_completion(data)
    assert result.percentage == 100
    assert result.status == "complete"
    assert result.missing_fields == []


@pytest.mark.parametrize(
    "key,value,expected",
    [
        ("bio", "   ", False),
        ("skills", [], False),
        ("skills", ["sql"], True),
        ("emergency_contact", {"name": "Bob", "relationship": "", "phone": "1"}, False),
        ("emergency_contact", "Bob", False),
        ("hire_date", None, False),
    ],
)
def test_field_completeness(key, value, expected):
    assert svc.is_field_complete(key, value) is expected


def test_status_bands():
    assert svc.completion_status(80) == "complete"
    assert svc.completion_status(79) == "partial"
    assert svc.completion_status(50) == "partial"
    assert svc.completion_status(49) == "incomplete"


def test_update_profile_recomputes_and_stores(ctx):
    org = make_org()
    user = make_user("ada@acme.test", org=org)
    _, profile, result = svc.update_profile(
        ctx,
        user,
        user.id,
        {
            "phone": "(555) 123-4567",
            "position": "Engineer",
            "department": "R&D",
            "skills": ["python", "python", " sql "],
            "emergency_contact": {"name": "Bob", "relationship": "Brother", "phone": "555 987 6543"},
        },
    )
    assert profile.phone == "5551234567"
    assert profile.skills == ["python", "sql"]
    # 30 + 8*3 + 7 + 4 = 65 of 92
    assert result.completed_weight == 65
    assert profile.completion_percentage == result.percentage == 71
    assert profile.profile_completed is False


def test_update_profile_rejects_bad_input(ctx):
    org = make_org()
    user = make_user("ada@acme.test", org=org)
    with pytest.raises(ValidationError):
        svc.update_profile(ctx, user, user.id, {"date_of_birth": "yesterday"})
    with pytest.raises(ValidationError):
        svc.update_profile(ctx, user, user.id, {"phone": "12"})
    with pytest.raises(ValidationError):
        svc.update_profile(ctx, user, user.id, {"education": "BSc"})


def test_profile_access_scope(ctx):
    acme, globex = make_org("Acme"), make_org("Globex")
    boss = make_user("boss@acme.test", role="org_admin", org=acme)
    ada = make_user("ada@acme.test", org=acme)
    bob = make_user("bob@acme.test", org=acme)
    eve = make_user("eve@globex.test", org=globex)

    assert svc.get_profile(ctx, boss, ada.id)[0].id == ada.id
    with pytest.raises(NotFound):
        svc.get_profile(ctx, bob, ada.id)
    with pytest.raises(NotFound):
        svc.get_profile(ctx, eve, ada.id)


def test_profile_routes(app, client):
    with app.app_context():
        user = make_user("ada@acme.test", org=make_org())
        db.session.commit()
        user_id = user.id

    login(client, user_id)
    r = client.get("/profile/completion")
    assert r.status_code == 200
    body = r.get_json()
    assert body["completion"]["percentage"] == 33
    assert body["profile_completed"] is False
    assert body["threshold"] == 80

    r = client.patch("/profile/", json={"bio": "Mathematician", "skills": ["analysis"]})
    assert r.status_code == 200
    assert r.get_json()["profile"]["skills"] == ["analysis"]
    # 30 + 5 + 4 = 39 of 92
    assert r.get_json()["completion"]["percentage"] == 42


def test_org_admin_cannot_edit_admin_profiles(ctx):
    org = make_org("Acme")
    boss = make_user("boss@acme.test", role="org_admin", org=org)
    peer = make_user("peer@acme.test", role="org_admin", org=org)
    ada = make_user("ada@acme.test", org=org)

    with pytest.raises(PermissionDenied):
        svc.update_profile(ctx, boss, peer.id, {"first_name": "Mallory"})
    assert peer.first_name == "Peer"
    assert svc.update_profile(ctx, boss, ada.id, {"position": "Analyst"})[1].position == "Analyst"
