import pytest

from conftest import make_org, make_user, login
from orgassess.extensions import db
from orgassess.models import Department
from orgassess.services import departments as dept_svc
from orgassess.services.errors import Conflict, NotFound, PermissionDenied, ValidationError


def test_create_and_list_scoped_to_org(ctx):
    acme, globex = make_org("Acme"), make_org("Globex")
    admin = make_user("ada@acme.test", role="org_admin", org=acme)
    staff = make_user("staff@acme.test", org=acme)

    eng = dept_svc.create_department(ctx, admin, acme.id, {"name": "  Engineering ", "description": "Builds things"})
    dept_svc.create_department(ctx, admin, acme.id, {"name": "Design"})
    assert eng.name == "Engineering"
    assert eng.created_by_id == admin.id

    assert [d.name for d in dept_svc.list_departments(ctx, staff, acme.id)] == ["Design", "Engineering"]
    with pytest.raises(NotFound):
        dept_svc.list_departments(ctx, staff, globex.id)
    with pytest.raises(PermissionDenied):
        dept_svc.create_department(ctx, admin, globex.id, {"name": "Sales"})
    with pytest.raises(PermissionDenied):
        dept_svc.create_department(ctx, staff, acme.id, {"name": "Sales"})


def test_department_name_rules(ctx):
    acme, globex = make_org("Acme"), make_org("Globex")
    root = make_user("root@platform.test", role="super_admin")
    dept_svc.create_department(ctx, root, acme.id, {"name": "Engineering"})

    with pytest.raises(Conflict):
        dept_svc.create_department(ctx, root, acme.id, {"name": "ENGINEERING"})
    with pytest.raises(ValidationError):
        dept_svc.create_department(ctx, root, acme.id, {"name": "   "})
    # same name in another org is fine
    assert dept_svc.create_department(ctx, root, globex.id, {"name": "Engineering"}).organization_id == globex.id


def test_parent_must_be_same_org_and_acyclic(ctx):
    acme, globex = make_org("Acme"), make_org("Globex")
    root = make_user("root@platform.test", role="super_admin")
    top = dept_svc.create_department(ctx, root, acme.id, {"name": "Engineering"})
    mid = dept_svc.create_department(ctx, root, acme.id, {"name": "Platform", "parent_department_id": top.id})
    leaf = dept_svc.create_department(ctx, root, acme.id, {"name": "Storage", "parent_department_id": mid.id})
    other = dept_svc.create_department(ctx, root, globex.id, {"name": "Ops"})

    assert leaf.parent_department_id == mid.id
    with pytest.raises(ValidationError):
        dept_svc.create_department(ctx, root, acme.id, {"name": "Sales", "parent_department_id": other.id})
    with pytest.raises(ValidationError):
        dept_svc.update_department(ctx, root, top.id, {"parent_department_id": leaf.id})
    with pytest.raises(ValidationError):
        dept_svc.update_department(ctx, root, top.id, {"parent_department_id": top.id})

    dept_svc.update_department(ctx, root, leaf.id, {"parent_department_id": None})
    assert leaf.parent_department_id is None


def test_delete_refuses_departments_with_children(ctx):
    acme = make_org("Acme")
    admin = make_user("ada@acme.test", role="org_admin", org=acme)
    top = dept_svc.create_department(ctx, admin, acme.id, {"name": "Engineering"})
    child = dept_svc.create_department(ctx, admin, acme.id, {"name": "Platform", "parent_department_id": top.id})

    with pytest.raises(Conflict):
        dept_svc.delete_department(ctx, admin, top.id)
    dept_svc.delete_department(ctx, admin, child.id)
    dept_svc.delete_department(ctx, admin, top.id)
    assert ctx.query(Department).count() == 0


def test_department_routes(app, client):
    with app.app_context():
        acme, globex = make_org("Acme"), make_org("Globex")
        admin = make_user("ada@acme.test", role="org_admin", org=acme)
        staff = make_user("staff@acme.test", org=acme)
        db.session.commit()
        acme_id, globex_id, admin_id, staff_id = acme.id, globex.id, admin.id, staff.id

    assert client.get(f"/orgs/{acme_id}/departments").status_code == 401

    login(client, staff_id)
    assert client.post(f"/orgs/{acme_id}/departments", json={"name": "Sales"}).status_code == 403

    login(client, admin_id)
    r = client.post(f"/orgs/{acme_id}/departments", json={"name": "Sales"})
    assert r.status_code == 201
    dept_id = r.get_json()["department"]["id"]
    assert client.post(f"/orgs/{acme_id}/departments", json={"name": "sales"}).status_code == 409
    assert client.post(f"/orgs/{globex_id}/departments", json={"name": "Sales"}).status_code == 403

    r = client.patch(f"/orgs/departments/{dept_id}", json={"description": "Revenue"})
    assert r.get_json()["department"]["description"] == "Revenue"

    login(client, staff_id)
    assert [d["name"] for d in client.get(f"/orgs/{acme_id}/departments").get_json()["rows"]] == ["Sales"]
    assert client.get(f"/orgs/{globex_id}/departments").status_code == 404

    login(client, admin_id)
    assert client.delete(f"/orgs/departments/{dept_id}").get_json() == {"ok": True}
    assert client.get(f"/orgs/{acme_id}/departments").get_json()["rows"] == []
