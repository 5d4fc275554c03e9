from profreviews.events import EventName
from profreviews.models import AuditLog
from sqlmodel import select


def test_register_requires_university_domain(client):
    r = client.post("/api/auth/register", json={"email": "ana@gmail.com", "password": "secret123"})
    assert r.status_code == 400

    r = client.post("/api/auth/register", json={"email": "Ana@Correo.Unimet.edu.ve", "password": "secret123"})
    assert r.status_code == 200
    assert r.json()["data"]["user"]["email"] == "ana@correo.unimet.edu.ve"


def test_register_rejects_duplicates(client):
    body = {"email": "ana@correo.unimet.edu.ve", "password": "secret123"}
    assert client.post("/api/auth/register", json=body).status_code == 200
    assert client.post("/api/auth/register", json=body).status_code == 400


def test_login_returns_token_and_me_works(client, make_user, login):
    make_user()
    auth = login("ana@correo.unimet.edu.ve")
    r = client.get("/api/auth/me", headers=auth)
    assert r.status_code == 200
    assert r.json()["data"]["email"] == "ana@correo.unimet.edu.ve"
    assert r.json()["data"]["has_unlimited_access"] is False


def test_cookie_authenticates_too(client, make_user):
    make_user()
    r = client.post("/api/auth/login", json={"email": "ana@correo.unimet.edu.ve", "password": "secret123"})
    assert r.status_code == 200
    assert client.get("/api/auth/me").status_code == 200


def test_me_requires_authentication(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"}).status_code == 401


def test_lockout_after_four_failures(client, make_user):
    make_user()
    body = {"email": "ana@correo.unimet.edu.ve", "password": "wrong-password"}
    for _ in range(4):
        assert client.post("/api/auth/login", json=body).status_code == 401

    r = client.post("/api/auth/login", json={"email": "ana@correo.unimet.edu.ve", "password": "secret123"})
    assert r.status_code == 403
    assert "locked" in r.json()["detail"]


def test_login_emits_signed_in_event(client, app, make_user):
    user = make_user()
    received = []
    app.state.access.bus.subscribe(EventName.AUTH_SIGNED_IN, received.append)

    client.post(
        "/api/auth/login",
        json={"email": "ana@correo.unimet.edu.ve", "password": "secret123"},
        headers={"X-Device-Id": "tablet-9"},
    )

    assert len(received) == 1
    assert received[0].user_id == user.id
    assert received[0].device_id == "tablet-9"


def test_login_and_failure_are_audited(client, make_user, db):
    make_user()
    client.post("/api/auth/login", json={"email": "ana@correo.unimet.edu.ve", "password": "nope-nope"})
    client.post("/api/auth/login", json={"email": "ana@correo.unimet.edu.ve", "password": "secret123"})
    actions = [log.action for log in db.exec(select(AuditLog).order_by(AuditLog.id)).all()]
    assert actions == ["LOGIN_FAILED", "LOGIN"]


def test_logout_clears_cookie(client, make_user):
    make_user()
    client.post("/api/auth/login", json={"email": "ana@correo.unimet.edu.ve", "password": "secret123"})
    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    assert client.get("/api/auth/me").status_code == 401
