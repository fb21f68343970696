import pytest
from werkzeug.security import generate_password_hash

from app.edms import create_app
from app.edms.db import session_scope
from app.edms.models import AuditEvent, Base, Permission, Role, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        p = Permission(key="requests.view", name="Requests: view")
        r = Role(key="admin", name="Administrator")
        r.permissions.append(p)
        u = User(
            email="admin@example.com",
            password_hash=generate_password_hash("pw"),
            is_active=True,
            rank="Capt",
            display_name="Smith, John",
        )
        u.roles.append(r)
        s.add_all([p, r, u])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_anonymous_request_list_is_401(client):
    r = client.get("/requests")
    assert r.status_code == 401
    assert r.json["error"] == "Login required."


def test_login_and_request_access(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["user"]["rank"] == "Capt"
    assert r.json["csrf_token"]

    r = client.get("/requests")
    assert r.status_code == 200
    assert r.json["requests"] == []


def test_bad_password_is_401_and_audited(app, client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    assert r.status_code == 401

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
    assert "auth.login_failed" in actions


def test_logout_ends_session(client):
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.get("/auth/logout")
    assert r.status_code == 200

    r = client.get("/requests")
    assert r.status_code == 401
