import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.core.database import get_db
from app.main import app
from app.models.user import UserRole
from app.services.auth_service import auth_service

API = "/api/v1/auth"


@pytest.fixture
def client(engine, mailer, monkeypatch):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(auth_service, "mailer", mailer)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _cleared(response):
    headers = [h.lower() for h in response.headers.get_list("set-cookie")]
    return (
        any(h.startswith("access_token=") and "max-age=0" in h for h in headers)
        and any(h.startswith("refresh_token=") and "max-age=0" in h for h in headers)
    )


def _register_and_verify(client, mailer, email="learner@example.com", password="password123"):
    assert client.post(f"{API}/register", json={"email": email, "password": password}).status_code == 201
    token = mailer.last_token("verify")
    assert client.post(f"{API}/verify-email", json={"token": token}).json() == {"success": True}


def _login(client, email="learner@example.com", password="password123"):
    return client.post(f"{API}/login", json={"email": email, "password": password})


def test_register_conflict_and_validation(client, mailer):
    first = client.post(f"{API}/register", json={"email": "a@example.com", "password": "password123"})
    assert first.status_code == 201
    assert "verify your email" in first.json()["message"]
    assert "set-cookie" not in first.headers

    again = client.post(f"{API}/register", json={"email": "a@example.com", "password": "password123"})
    assert again.status_code == 409
    assert again.json()["success"] is False

    short = client.post(f"{API}/register", json={"email": "b@example.com", "password": "short"})
    assert short.status_code == 422
    fields = [error["field"] for error in short.json()["details"]["errors"]]
    assert "body.password" in fields

    bad_email = client.post(f"{API}/register", json={"email": "not-an-email", "password": "password123"})
    assert bad_email.status_code == 422


def test_login_unverified_is_401(client, mailer):
    client.post(f"{API}/register", json={"email": "a@example.com", "password": "password123"})
    response = _login(client, "a@example.com")
    assert response.status_code == 401
    assert response.json()["error"] == "Email not verified"


def test_session_lifecycle(client, mailer):
    _register_and_verify(client, mailer)

    login = _login(client)
    assert login.status_code == 200
    body = login.json()
    assert body["user"]["email"] == "learner@example.com"
    assert body["user"]["role"] == "USER"
    assert client.cookies.get("access_token") == body["access_token"]
    assert client.cookies.get("refresh_token") == body["refresh_token"]

    me = client.get(f"{API}/me")
    assert me.status_code == 200
    assert me.json()["id"] == body["user"]["id"]

    validate = client.get(f"{API}/validate")
    assert validate.json() == {"valid": True, "user": body["user"]}

    refreshed = client.post(f"{API}/refresh")
    assert refreshed.status_code == 200
    assert refreshed.json()["refresh_token"] != body["refresh_token"]
    assert client.cookies.get("refresh_token") == refreshed.json()["refresh_token"]

    logout = client.post(f"{API}/logout")
    assert logout.status_code == 200
    assert logout.json() == {"success": True}
    assert _cleared(logout)

    replay = TestClient(app, cookies={"refresh_token": refreshed.json()["refresh_token"]})
    assert replay.post(f"{API}/refresh").status_code == 401


def test_refresh_without_cookie_does_not_clear(client):
    response = client.post(f"{API}/refresh")
    assert response.status_code == 401
    assert response.json()["error"] == "Refresh token missing"
    assert "set-cookie" not in response.headers


def test_refresh_replay_clears_cookies(client, mailer):
    _register_and_verify(client, mailer)
    old_refresh = _login(client).json()["refresh_token"]
    assert client.post(f"{API}/refresh").status_code == 200

    replay = TestClient(app, cookies={"refresh_token": old_refresh})
    response = replay.post(f"{API}/refresh")

    assert response.status_code == 401
    assert _cleared(response)
    assert client.post(f"{API}/refresh").status_code == 401


def test_bearer_token_accepted_when_no_cookie(client, mailer):
    _register_and_verify(client, mailer)
    access = _login(client).json()["access_token"]

    anonymous = TestClient(app)
    assert anonymous.get(f"{API}/me").status_code == 401
    response = anonymous.get(f"{API}/me", headers={"Authorization": f"Bearer {access}"})
    assert response.status_code == 200


def test_login_rate_limited(client, monkeypatch):
    monkeypatch.setattr(settings, "LOGIN_RATE_LIMIT_PER_MINUTE", 2)
    assert _login(client, "ghost@example.com").status_code == 401
    assert _login(client, "ghost@example.com").status_code == 401
    assert _login(client, "ghost@example.com").status_code == 429


def test_login_throttle_ignores_email_case_and_spacing(client, monkeypatch):
    monkeypatch.setattr(settings, "LOGIN_RATE_LIMIT_PER_MINUTE", 2)
    assert _login(client, "Ghost@Example.com").status_code == 401
    assert _login(client, " ghost@example.com ").status_code == 401
    assert _login(client, "GHOST@EXAMPLE.COM").status_code == 429


def test_password_reset_over_http(client, mailer):
    _register_and_verify(client, mailer)

    assert client.post(f"{API}/forgot-password", json={"email": "learner@example.com"}).status_code == 200
    assert client.post(f"{API}/forgot-password", json={"email": "ghost@example.com"}).json() == {"success": True}
    throttled = client.post(f"{API}/forgot-password", json={"email": "learner@example.com"})
    assert throttled.status_code == 429

    token = mailer.last_token("reset")
    reset = client.post(f"{API}/reset-password", json={"token": token, "new_password": "new-password-1"})
    assert reset.status_code == 200
    reused = client.post(f"{API}/reset-password", json={"token": token, "new_password": "new-password-2"})
    assert reused.status_code == 401

    assert _login(client, password="new-password-1").status_code == 200


def test_change_password_requires_session(client, mailer):
    payload = {"current_password": "password123", "new_password": "new-password-1"}
    assert client.post(f"{API}/change-password", json=payload).status_code == 401

    _register_and_verify(client, mailer)
    _login(client)
    wrong = client.post(
        f"{API}/change-password",
        json={"current_password": "nope-nope", "new_password": "new-password-1"},
    )
    assert wrong.status_code == 401
    assert client.post(f"{API}/change-password", json=payload).status_code == 200
    assert client.post(f"{API}/refresh").status_code == 401


def test_admin_registration_requires_admin(client, mailer, db, make_user):
    payload = {"email": "boss@example.com", "password": "password123"}
    assert client.post(f"{API}/register/admin", json=payload).status_code == 401

    _register_and_verify(client, mailer)
    _login(client)
    assert client.post(f"{API}/register/admin", json=payload).status_code == 403

    make_user(email="root@example.com", password="root-password", role=UserRole.ADMIN)
    admin = TestClient(app)
    assert _login(admin, "root@example.com", "root-password").status_code == 200
    created = admin.post(f"{API}/register/admin", json=payload)
    assert created.status_code == 201
    assert created.json()["user"]["role"] == "ADMIN"


def test_mail_failure_is_502(client, mailer):
    mailer.fail = True
    response = client.post(f"{API}/register", json={"email": "a@example.com", "password": "password123"})
    assert response.status_code == 502
    assert response.json()["success"] is False


def test_root_and_metrics(client):
    assert client.get("/").json()["status"] == "running"
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "kotobamichi_http_requests_total" in metrics.text
