import types
from flask import Flask
from orgassess.services import policy


class DummyUser:
    def __init__(self, uid, role="employee", auth=True, active=True):
        self.id, self.role, self.organization_id = uid, role, 1
        self.is_authenticated, self.is_active = auth, active


def make_app():
    app = Flask(__name__); app.config.update(SECRET_KEY="x", TESTING=True)
    return app


def _call(view, user, monkeypatch):
    monkeypatch.setattr(policy, "current_user", user)
    with make_app().test_request_context("/x"):
        return view()


def test_login_required_unauth_json(monkeypatch):
    @policy.login_required_json
    def v(): return "ok", 200
    r = _call(v, DummyUser(None, auth=False), monkeypatch)
    assert r[1] == 401 and r[0].json == {"ok": False, "error": "unauthorized", "code": 401}


def test_login_required_inactive_is_unauth(monkeypatch):
    @policy.login_required_json
    def v(): return "ok", 200
    r = _call(v, DummyUser(7, active=False), monkeypatch)
    assert r[1] == 401


def test_login_required_ok(monkeypatch):
    @policy.login_required_json
    def v(): return "ok", 200
    assert _call(v, DummyUser(7), monkeypatch) == ("ok", 200)


def test_role_required_forbidden(monkeypatch):
    @policy.role_required("org_admin", "super_admin")
    def v(): return "ok", 200
    r = _call(v, DummyUser(7, role="employee"), monkeypatch)
    assert r[1] == 403 and r[0].json["error"] == "forbidden"


def test_role_required_ok(monkeypatch):
    @policy.role_required("org_admin", "super_admin")
    def v(): return "ok", 200
    assert _call(v, DummyUser(7, role="org_admin"), monkeypatch) == ("ok", 200)


def test_permission_required_needs_all(monkeypatch):
    @policy.permission_required("create_users", "delete_users")
    def v(): return "ok", 200
    assert _call(v, DummyUser(7, role="org_admin"), monkeypatch)[1] == 403
    assert _call(v, DummyUser(7, role="super_admin"), monkeypatch) == ("ok", 200)


def test_privileged_required(monkeypatch):
    @policy.privileged_required
    def v(): return "ok", 200
    assert _call(v, DummyUser(7, role="org_admin"), monkeypatch)[1] == 403
    assert _call(v, DummyUser(None, auth=False), monkeypatch)[1] == 401
    assert _call(v, types.SimpleNamespace(id=1, role="root", is_authenticated=True, is_active=True), monkeypatch) == ("ok", 200)
