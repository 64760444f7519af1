import pytest
from werkzeug.security import generate_password_hash

from app.golfpoi import create_app
from app.golfpoi.db import session_scope
from app.golfpoi.models import AuditEvent, Base, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "WEATHER_API_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add_all(
            [
                User(email="admin@example.com", password_hash=generate_password_hash("pw"), admin_user=True, is_active=True),
                User(email="user@example.com", password_hash=generate_password_hash("pw"), admin_user=False, is_active=True),
            ]
        )

    return app.test_client()


def _login(client, email):
    return client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=False)


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_login_and_admin_access(client):
    # Anonymous is sent to the login page
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = _login(client, "admin@example.com")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/courses")

    r = client.get("/admin/")
    assert r.status_code == 200
    assert r.json["course_count"] == 0
    assert r.json["category_count"] == 0


def test_non_admin_is_refused_without_detail(client):
    _login(client, "user@example.com")
    r = client.get("/admin/")
    assert r.status_code == 403
    assert r.json == {"error": "unauthorized"}


def test_bad_password_is_rejected_and_audited(client):
    r = client.post("/auth/login", data={"email": "user@example.com", "password": "nope"})
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = client.get("/courses")
    assert r.status_code == 302

    with session_scope(client.application) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
        assert "auth.login_failed" in actions


def test_post_without_csrf_token_is_rejected(client):
    _login(client, "user@example.com")
    r = client.post("/courses/new", data={"name": "x", "description": "y", "province": "z"})
    assert r.status_code == 400
    assert r.json["error"] == "csrf"


def test_logout_clears_session(client):
    _login(client, "user@example.com")
    assert client.get("/courses").status_code == 200
    client.get("/auth/logout")
    assert client.get("/courses").status_code == 302
