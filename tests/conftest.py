import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import pytest
from orgassess import create_app
from orgassess.extensions import db
from orgassess.models import Organization, User
from orgassess.models.user import ROLE_EMPLOYEE

PASSWORD = "correct-horse-1"


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    app = create_app()
    app.config.update(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        MAIL_SUPPRESS_SEND=True,
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        RATELIMIT_ENABLED=False,
        UPLOAD_FOLDER=str(tmp_path_factory.mktemp("uploads")),
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


@pytest.fixture()
def ctx(app):
    """App context for service-level tests; yields the session."""
    with app.app_context():
        yield db.session
        db.session.rollback()


# --- factories (call inside an app context) ---

def make_org(name="Acme", **kw) -> Organization:
    org = Organization(name=name, **kw)
    db.session.add(org)
    db.session.flush()
    return org


def make_user(email, role=ROLE_EMPLOYEE, org=None, password=PASSWORD, **kw) -> User:
    kw.setdefault("first_name", email.split("@")[0].title())
    kw.setdefault("last_name", "Tester")
    user = User(
        email=email,
        role=role,
        organization_id=org.id if org is not None else None,
        is_active=kw.pop("is_active", True),
        **kw,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user


def login(client, user_id: int) -> None:
    # Flask-Login reads the user id from the session
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)
        sess["_fresh"] = True
