import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-with-enough-length-for-hs256-signing")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ovaview.api import app
from ovaview.auth import FallbackIdentity
from ovaview.database import Base, get_db
from ovaview.models.user import User
from ovaview.passwords import hash_password
from ovaview.roles import Role

ADMIN_FALLBACK = ("root@ovaview.test", "break-glass-admin")
CLIENT_FALLBACK = ("portal@ovaview.test", "break-glass-client")


@pytest.fixture
def session_local():
    """Provide an isolated in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def db(session_local):
    session = session_local()
    yield session
    session.close()


@pytest.fixture
def fallbacks():
    return [
        FallbackIdentity("fallback-admin", "Admin User", *ADMIN_FALLBACK, Role.ADMIN),
        FallbackIdentity("fallback-client", "Client User", *CLIENT_FALLBACK, Role.CLIENT_USER),
    ]


@pytest.fixture
def client(session_local, fallbacks):
    def override_get_db():
        session = session_local()
        try:
            yield session
        finally:
            session.close()

    previous = app.state.fallback_identities
    app.dependency_overrides[get_db] = override_get_db
    app.state.fallback_identities = fallbacks
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.fallback_identities = previous


@pytest.fixture
def make_user(db):
    def _make(
        email="ann@example.com",
        password="correct horse battery",
        role=Role.DATA_ENTRY,
        is_active=True,
        name="Ann Analyst",
        client_id=None,
        stored_password=None,
    ) -> User:
        user = User(
            name=name,
            email=email,
            password=stored_password if stored_password is not None else hash_password(password),
            role=role,
            is_active=is_active,
            client_id=client_id,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def login(client):
    """Log in through the API and return the access token."""

    def _login(email, password) -> str:
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        client.cookies.clear()
        return resp.json()["token"]["accessToken"]

    return _login


@pytest.fixture
def admin_token(make_user, login):
    make_user(email="admin@example.com", password="admin-password", role=Role.ADMIN, name="Ada Admin")
    return login("admin@example.com", "admin-password")
