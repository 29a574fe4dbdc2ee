import pytest
from werkzeug.security import generate_password_hash

from app.crm import auth as auth_module
from app.crm import create_app
from app.crm.db import session_scope
from app.crm.identity import Identity
from app.crm.models import Base, User

SEED_USERS = (
    ("admin", "admin@example.com", "admin"),
    ("mgr", "mgr@example.com", "manager"),
    ("alice", "alice@example.com", "staff"),
    ("bob", "bob@example.com", "staff"),
)


def _make_app(tmp_path, monkeypatch, csrf: bool = False):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "1" if csrf else "0")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        for username, email, role in SEED_USERS:
            s.add(User(username=username, email=email, password_hash=generate_password_hash("pw"), role=role))
    return app


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    return _make_app(tmp_path, monkeypatch)


@pytest.fixture()
def csrf_app(tmp_path, monkeypatch):
    return _make_app(tmp_path, monkeypatch, csrf=True)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login():
    def _login(client, who: str, password: str = "pw"):
        return client.post("/auth/login", json={"login": who, "password": password})

    return _login


@pytest.fixture()
def ident(app):
    """ident("alice") -> Identity for a seeded user."""

    def _ident(username: str) -> Identity:
        with session_scope(app) as s:
            return Identity.from_user(s.query(User).filter(User.username == username).one())

    return _ident
