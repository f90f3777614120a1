import re

from conftest import make_org, make_user, login, PASSWORD
from orgassess.extensions import db, mail
from orgassess.models import User
from orgassess.services import tokens


def _token_from(body: str) -> str:
    return re.search(r"token=([\w.\-]+)", body).group(1)


def _seed(app, **kw):
    with app.app_context():
        org = make_org("Acme", **kw)
        user = make_user("ada@acme.test", role="org_admin", org=org)
        db.session.commit()
        return user.id


def test_login_and_me(app, client):
    _seed(app)
    r = client.post("/auth/login", json={"email": "ADA@acme.test", "password": PASSWORD})
    assert r.status_code == 200
    body = r.get_json()
    assert body["user"]["email"] == "ada@acme.test"
    assert body["organization"]["name"] == "Acme"
    assert "create_users" in body["permissions"]
    assert "reporting" in body["features"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.get_json()["user"]["last_login_at"] is not None

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_login_failures(app, client):
    user_id = _seed(app)
    r = client.post("/auth/login", json={"email": "ada@acme.test", "password": "wrong-password"})
    assert r.status_code == 400
    assert r.get_json()["error"] == "Invalid email or password."
    assert client.post("/auth/login", json={"email": "", "password": ""}).status_code == 400

    with app.app_context():
        db.session.get(User, user_id).is_active = False
        db.session.commit()
    r = client.post("/auth/login", json={"email": "ada@acme.test", "password": PASSWORD})
    assert r.status_code == 403


def test_suspended_org_cannot_login(app, client):
    _seed(app, status="suspended")
    r = client.post("/auth/login", json={"email": "ada@acme.test", "password": PASSWORD})
    assert r.status_code == 403
    assert "suspended" in r.get_json()["error"]


def test_change_password(app, client):
    user_id = _seed(app)
    login(client, user_id)
    r = client.post("/auth/password/change", json={"current_password": "nope", "new_password": "another-pass-9"})
    assert r.status_code == 400
    r = client.post("/auth/password/change", json={"current_password": PASSWORD, "new_password": "short"})
    assert r.status_code == 400
    r = client.post("/auth/password/change", json={"current_password": PASSWORD, "new_password": "another-pass-9"})
    assert r.status_code == 200

    with app.app_context():
        assert db.session.get(User, user_id).check_password("another-pass-9")


def test_password_reset_flow(app, client):
    user_id = _seed(app)
    with mail.record_messages() as outbox:
        r = client.post("/auth/password/reset-request", json={"email": "ada@acme.test"})
        assert r.status_code == 200
        # unknown accounts get the same answer and no email
        r2 = client.post("/auth/password/reset-request", json={"email": "ghost@acme.test"})
        assert r2.get_json() == r.get_json()
    assert len(outbox) == 1
    token = _token_from(outbox[0].body)

    r = client.post("/auth/password/reset", json={"token": token, "password": "brand-new-pass", "confirm": "nope"})
    assert r.status_code == 400
    r = client.post("/auth/password/reset", json={"token": token, "password": "brand-new-pass"})
    assert r.status_code == 200

    # a reset token is not an invite token
    assert client.post("/auth/set-password", json={"token": token, "password": "brand-new-pass"}).status_code == 400

    with app.app_context():
        assert db.session.get(User, user_id).check_password("brand-new-pass")


def test_set_password_from_invite_clears_flag(app, client):
    with app.app_context():
        org = make_org("Acme")
        user = make_user("new@acme.test", org=org, requires_password_change=True)
        db.session.commit()
        user_id = user.id
        token = tokens.generate(tokens.TOKEN_INVITE, "new@acme.test")

    r = client.post("/auth/set-password", json={"token": token, "password": "my-own-password"})
    assert r.status_code == 200
    with app.app_context():
        user = db.session.get(User, user_id)
        assert user.requires_password_change is False
        assert user.check_password("my-own-password")

    assert client.post("/auth/set-password", json={"token": "garbage", "password": "x" * 10}).status_code == 400


def test_csrf_endpoint_and_health(client):
    assert client.get("/auth/csrf").get_json()["ok"] is True
    assert client.get("/healthz").get_json() == {"status": "ok"}
    assert client.get("/readyz").get_json()["database"] == "ok"
    r = client.get("/does-not-exist")
    assert r.status_code == 404
    assert r.get_json()["ok"] is False


def test_request_id_is_echoed(client):
    r = client.get("/auth/csrf", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"
    assert len(client.get("/auth/csrf").headers["X-Request-ID"]) == 32
