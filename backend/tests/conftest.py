from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

from profreviews.auth import get_password_hash
from profreviews.device_storage import MemoryKeyValueStore
from profreviews.main import create_app
from profreviews.models import User, Role, Professor, Course
from profreviews.review_access import QuotaPolicy


PASSWORD = "secret123"


class FakeClock:
    def __init__(self, start: datetime = datetime(2025, 3, 10, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def anon_store():
    return MemoryKeyValueStore()


@pytest.fixture()
def app(engine, anon_store, clock):
    return create_app(
        engine,
        anon_store=anon_store,
        anon_policy=QuotaPolicy(limit=3, window=timedelta(hours=24)),
        authed_policy=QuotaPolicy(limit=3, window=timedelta(hours=24)),
        clock=clock,
    )


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_user(db):
    def _make(email="ana@correo.unimet.edu.ve", role=Role.STUDENT, unlimited=False) -> User:
        user = User(email=email, password_hash=get_password_hash(PASSWORD), role=role, has_unlimited_access=unlimited)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture()
def login(client):
    def _login(email, device_id=None) -> dict:
        headers = {"X-Device-Id": device_id} if device_id else {}
        r = client.post("/api/auth/login", json={"email": email, "password": PASSWORD}, headers=headers)
        assert r.status_code == 200, r.text
        # Tests pass the token explicitly; drop the cookie so anonymous calls stay anonymous
        client.cookies.clear()
        return {"Authorization": f"Bearer {r.json()['data']['access_token']}"}
    return _login


@pytest.fixture()
def catalog(db):
    professor = Professor(full_name="Maria Perez", department="Sistemas")
    course = Course(code="FPTSP01", name="Algoritmos", department="Sistemas")
    db.add(professor)
    db.add(course)
    db.commit()
    db.refresh(professor)
    db.refresh(course)
    return professor, course
