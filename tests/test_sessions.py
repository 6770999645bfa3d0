"""Tests for the database-backed session store."""
from datetime import timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.portal import auth, create_app
from app.portal.db import session_scope
from app.portal.models import Base, User, UserSession
from app.portal.sessions import derive_fernet
from app.portal.utils import utcnow


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("SESSION_STORE_SECRET", "test-store-secret")
    monkeypatch.setenv("SESSION_TTL_SECONDS", "60")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    auth._login_attempts.clear()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add(User(name="alice", email="alice@example.com", password_hash=generate_password_hash("pw")))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client):
    r = client.post("/login", data={"email": "alice@example.com", "password": "pw"})
    assert r.status_code == 302


def _rows(app) -> list[UserSession]:
    with session_scope(app) as s:
        return s.query(UserSession).all()


@pytest.mark.parametrize("path,status", [("/health", 200), ("/", 200), ("/login", 200), ("/signup", 200), ("/nope", 404)])
def test_requests_that_store_nothing_create_no_session(app, path, status):
    for _ in range(3):
        client = app.test_client()
        assert client.get(path).status_code == status
        assert client.get_cookie("portal_session") is None
    assert _rows(app) == []


def test_login_rotates_session_id(app, client):
    # The "Please login" flash stores an anonymous session first.
    assert client.get("/members").status_code == 302
    before = client.get_cookie("portal_session").value
    old_sid = _rows(app)[0].id

    _login(client)
    after = client.get_cookie("portal_session").value
    assert after != before
    with session_scope(app) as s:
        assert s.get(UserSession, old_sid) is None
    assert [row.id for row in _rows(app)] != [old_sid]
    assert client.get("/members").status_code == 200


def test_planted_session_cookie_does_not_survive_login(app, client):
    attacker = app.test_client()
    attacker.get("/members")
    planted = attacker.get_cookie("portal_session").value

    client.set_cookie("portal_session", planted)
    _login(client)
    assert client.get_cookie("portal_session").value != planted

    attacker.set_cookie("portal_session", planted)
    assert attacker.get("/members").status_code == 302


def test_login_persists_one_session_row_with_ttl(app, client):
    _login(client)
    rows = _rows(app)
    assert len(rows) == 1
    remaining = rows[0].expires_at - utcnow()
    assert timedelta(seconds=0) < remaining <= timedelta(seconds=60)

    cookie = client.get_cookie("portal_session")
    assert cookie is not None
    # The cookie carries only the signed id, never the payload.
    assert rows[0].id in cookie.value
    assert "alice" not in cookie.value


def test_session_payload_is_encrypted_at_rest(app, client):
    _login(client)
    row = _rows(app)[0]
    assert "alice" not in row.data
    assert "authenticated" not in row.data

    data = app.session_interface.decode_payload(app, row.data)
    assert data["authenticated"] is True
    assert data["username"] == "alice"


def test_payload_encrypted_with_another_secret_is_rejected(app, client):
    _login(client)
    row = _rows(app)[0]
    foreign = derive_fernet("some-other-secret").encrypt(b'{"authenticated": true, "user_id": 1}').decode()
    with session_scope(app) as s:
        s.get(UserSession, row.id).data = foreign

    assert client.get("/members").status_code == 302


def test_expired_session_is_not_authenticated_and_is_removed(app, client):
    _login(client)
    sid = _rows(app)[0].id
    with session_scope(app) as s:
        s.get(UserSession, sid).expires_at = utcnow() - timedelta(seconds=1)

    r = client.get("/members")
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(UserSession, sid) is None


def test_tampered_cookie_is_ignored(app, client):
    _login(client)
    sid = _rows(app)[0].id
    client.set_cookie("portal_session", f"{sid}.forged-signature")
    assert client.get("/members").status_code == 302


def test_each_request_extends_expiry(app, client):
    _login(client)
    sid = _rows(app)[0].id
    with session_scope(app) as s:
        s.get(UserSession, sid).expires_at = utcnow() + timedelta(seconds=5)

    assert client.get("/members").status_code == 200
    with session_scope(app) as s:
        assert s.get(UserSession, sid).expires_at > utcnow() + timedelta(seconds=30)


def test_logout_destroys_session_row(app, client):
    _login(client)
    assert len(_rows(app)) == 1
    client.get("/logout")
    assert _rows(app) == []
    assert client.get_cookie("portal_session") is None


def test_separate_browsers_get_separate_sessions(app):
    a = app.test_client()
    b = app.test_client()
    _login(a)
    assert a.get("/members").status_code == 200
    assert b.get("/members").status_code == 302
    ids = {row.id for row in _rows(app)}
    assert len(ids) == 2
