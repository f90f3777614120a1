import pytest

from conftest import make_org, make_user, login
from orgassess.extensions import db, mail
from orgassess.models import Organization, User
from orgassess.services import organizations as org_svc
from orgassess.services import users as user_svc
from orgassess.services.errors import Conflict, NotFound, PermissionDenied, ValidationError


# --- organizations ---

def test_create_org_requires_platform_admin(ctx):
    admin = make_user("admin@platform.test", role="super_admin")
    org = org_svc.create_organization(ctx, admin, {"name": "  Acme  ", "contact_email": "Ops@Acme.test"})
    assert org.name == "Acme"
    assert org.contact_email == "ops@acme.test"
    assert org.status == "active"
    assert org.org_admin_permissions == ["manage_users", "assign_assessments", "manage_relationships"]

    boss = make_user("boss@acme.test", role="org_admin", org=org)
    with pytest.raises(PermissionDenied):
        org_svc.create_organization(ctx, boss, {"name": "Rogue"})


def test_org_name_unique_case_insensitive(ctx):
    admin = make_user("admin@platform.test", role="super_admin")
    org_svc.create_organization(ctx, admin, {"name": "Acme"})
    with pytest.raises(Conflict):
        org_svc.create_organization(ctx, admin, {"name": "ACME"})
    with pytest.raises(ValidationError):
        org_svc.create_organization(ctx, admin, {"name": " "})


def test_org_status_and_admin_permissions(ctx):
    admin = make_user("admin@platform.test", role="super_admin")
    org = make_org("Acme")
    assert org_svc.set_status(ctx, admin, org.id, "suspended").status == "suspended"
    with pytest.raises(ValidationError):
        org_svc.set_status(ctx, admin, org.id, "paused")

    org = org_svc.update_admin_permissions(ctx, admin, org.id, ["view_results", "manage_users", "view_results"])
    assert org.org_admin_permissions == ["manage_users", "view_results"]
    with pytest.raises(ValidationError):
        org_svc.update_admin_permissions(ctx, admin, org.id, ["launch_rockets"])


def test_org_visibility(ctx):
    acme, globex = make_org("Acme"), make_org("Globex")
    ada = make_user("ada@acme.test", org=acme)
    assert [o.id for o in org_svc.list_organizations(ctx, ada)] == [acme.id]
    with pytest.raises(NotFound):
        org_svc.get_visible_organization(ctx, ada, globex.id)


def test_delete_org_with_users_conflicts(ctx):
    admin = make_user("admin@platform.test", role="super_admin")
    org = make_org("Acme")
    make_user("ada@acme.test", org=org)
    with pytest.raises(Conflict):
        org_svc.delete_organization(ctx, admin, org.id)
    empty = make_org("Empty")
    org_svc.delete_organization(ctx, admin, empty.id)
    assert ctx.get(Organization, empty.id) is None


def test_cli_path_creates_org_without_actor(ctx):
    org = org_svc.create_organization(ctx, None, {"name": "Bootstrap Inc"})
    assert org.id is not None


# --- users ---

def test_create_user_with_temporary_password(ctx):
    org = make_org("Acme")
    boss = make_user("boss@acme.test", role="org_admin", org=org)
    user, password = user_svc.create_user(
        ctx, boss, {"email": " New@Acme.test ", "first_name": "New", "last_name": "Hire", "role": "employee"}
    )
    assert user.email == "new@acme.test"
    assert user.organization_id == org.id
    assert user.requires_password_change is True
    assert user.check_password(password)


def test_create_user_checks(ctx):
    acme, globex = make_org("Acme"), make_org("Globex")
    boss = make_user("boss@acme.test", role="org_admin", org=acme)
    base = {"email": "x@acme.test", "first_name": "X", "last_name": "Y", "role": "employee"}

    with pytest.raises(ValidationError):
        user_svc.create_user(ctx, boss, {**base, "email": "not-an-email"})
    with pytest.raises(ValidationError):
        user_svc.create_user(ctx, boss, {**base, "first_name": ""})
    with pytest.raises(PermissionDenied):
        user_svc.create_user(ctx, boss, {**base, "role": "super_admin"})
    with pytest.raises(PermissionDenied):
        user_svc.create_user(ctx, boss, {**base, "organization_id": globex.id})
    with pytest.raises(Conflict):
        user_svc.create_user(ctx, boss, {**base, "email": "BOSS@acme.test"})
    with pytest.raises(PermissionDenied):
        user_svc.create_user(ctx, make_user("ada@acme.test", org=acme), base)


def test_update_user_rules(ctx):
    org = make_org("Acme")
    boss = make_user("boss@acme.test", role="org_admin", org=org)
    ada = make_user("ada@acme.test", org=org)

    assert user_svc.update_user(ctx, ada, ada.id, {"job_title": "Analyst"}).job_title == "Analyst"
    with pytest.raises(PermissionDenied):
        user_svc.update_user(ctx, ada, ada.id, {"role": "org_admin"})
    with pytest.raises(PermissionDenied):
        user_svc.update_user(ctx, ada, boss.id, {"job_title": "Boss"})

    assert user_svc.update_user(ctx, boss, ada.id, {"role": "reviewer"}).role == "reviewer"
    with pytest.raises(PermissionDenied):
        user_svc.update_user(ctx, boss, ada.id, {"organization_id": make_org("Globex").id})


def test_deactivate_user(ctx):
    org = make_org("Acme")
    admin = make_user("admin@platform.test", role="super_admin")
    boss = make_user("boss@acme.test", role="org_admin", org=org)
    ada = make_user("ada@acme.test", org=org)

    with pytest.raises(PermissionDenied):
        user_svc.deactivate_user(ctx, boss, ada.id)
    with pytest.raises(ValidationError):
        user_svc.deactivate_user(ctx, admin, admin.id)
    assert user_svc.deactivate_user(ctx, admin, ada.id).is_active is False
    assert ada.id not in [u.id for u in user_svc.list_users(ctx, admin)]
    assert ada.id in [u.id for u in user_svc.list_users(ctx, admin, include_inactive=True)]


def test_present_user_levels(ctx):
    acme, globex = make_org("Acme"), make_org("Globex")
    root = make_user("root@platform.test", role="root")
    admin = make_user("admin@platform.test", role="super_admin")
    boss = make_user("boss@acme.test", role="org_admin", org=acme)
    ada = make_user("ada@acme.test", org=acme)
    bob = make_user("bob@acme.test", org=acme)
    eve = make_user("eve@globex.test", org=globex)

    assert user_svc.present_user(ada, boss)["email"] == "ada@acme.test"
    assert "email" not in user_svc.present_user(ada, bob)
    assert user_svc.present_user(ada, eve) == {}
    assert user_svc.present_user(root, admin) == {}
    assert root.id not in [u.id for u in user_svc.list_users(ctx, admin)]
    assert root.id in [u.id for u in user_svc.list_users(ctx, root)]
    with pytest.raises(NotFound):
        user_svc.get_visible_user(ctx, eve, ada.id)


def test_user_routes(app, client):
    with app.app_context():
        org = make_org("Acme")
        boss = make_user("boss@acme.test", role="org_admin", org=org)
        ada = make_user("ada@acme.test", org=org)
        db.session.commit()
        boss_id, ada_id = boss.id, ada.id

    login(client, boss_id)
    with mail.record_messages() as outbox:
        r = client.post(
            "/users/",
            json={"email": "new@acme.test", "first_name": "New", "last_name": "Hire", "role": "reviewer"},
        )
    assert r.status_code == 201
    assert r.get_json()["user"]["requires_password_change"] is True
    assert len(outbox) == 1
    assert "set-password?token=" in outbox[0].body

    r = client.get("/users/assignable-roles")
    assert r.get_json()["roles"] == ["reviewer", "employee", "subscriber"]

    r = client.get("/users/")
    emails = {row["email"] for row in r.get_json()["rows"]}
    assert emails == {"boss@acme.test", "ada@acme.test", "new@acme.test"}

    login(client, ada_id)
    r = client.get(f"/users/{boss_id}")
    assert r.status_code == 200
    assert "email" not in r.get_json()["user"]
    assert client.delete(f"/users/{boss_id}").status_code == 403

    with app.app_context():
        assert db.session.query(User).count() == 3


def test_org_routes(app, client):
    with app.app_context():
        admin = make_user("admin@platform.test", role="super_admin")
        db.session.commit()
        admin_id = admin.id

    r = client.get("/orgs/")
    assert r.status_code == 401
    assert r.get_json()["error"] == "unauthorized"

    login(client, admin_id)
    r = client.post("/orgs/", json={"name": "Acme", "industry": "Anvils"})
    assert r.status_code == 201
    org_id = r.get_json()["organization"]["id"]
    assert client.post("/orgs/", json={"name": "acme"}).status_code == 409

    r = client.post(f"/orgs/{org_id}/status", json={"status": "inactive"})
    assert r.get_json()["organization"]["status"] == "inactive"
    assert client.delete(f"/orgs/{org_id}").status_code == 200
    assert client.get(f"/orgs/{org_id}").status_code == 404


def test_org_admin_cannot_modify_higher_roles_in_own_org(ctx):
    org = make_org("Acme")
    boss = make_user("boss@acme.test", role="org_admin", org=org)
    peer = make_user("peer@acme.test", role="org_admin", org=org)
    platform = make_user("platform@acme.test", role="super_admin", org=org)

    with pytest.raises(PermissionDenied):
        user_svc.update_user(ctx, boss, platform.id, {"role": "employee", "email": "boss-owned@acme.test"})
    with pytest.raises(PermissionDenied):
        user_svc.update_user(ctx, boss, peer.id, {"is_active": False})
    with pytest.raises(PermissionDenied):
        user_svc.update_user(ctx, boss, peer.id, {"job_title": "Intern"})

    assert (platform.role, platform.email) == ("super_admin", "platform@acme.test")
    assert peer.is_active is True and peer.job_title is None


def test_user_route_refuses_admin_takeover(app, client):
    with app.app_context():
        org = make_org("Acme")
        boss = make_user("boss@acme.test", role="org_admin", org=org)
        platform = make_user("platform@acme.test", role="super_admin", org=org)
        db.session.commit()
        boss_id, platform_id = boss.id, platform.id

    login(client, boss_id)
    r = client.patch(f"/users/{platform_id}", json={"email": "mine@acme.test"})
    assert r.status_code == 403
    with app.app_context():
        assert db.session.get(User, platform_id).email == "platform@acme.test"
