"""Pytest configuration for funnelboard tests

WHAT: Shared fixtures for service-level and HTTP endpoint tests
WHY: One in-memory SQLite database per test, the real app factory with the
     database dependency overridden, and ready-made users, pipelines and keys
REFERENCES:
    - funnelboard/main.py: FastAPI application
    - funnelboard/database.py: get_db dependency
    - funnelboard/deps.py: JWT and API-key identities
"""

import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before the settings are cached
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SENTRY_DSN", "")

from funnelboard.models import Base, Pipeline, User  # noqa: E402
from funnelboard.schemas import PipelineCreate, PipelineStageCreate  # noqa: E402
from funnelboard.security import create_access_token  # noqa: E402
from funnelboard.services.api_key_service import ApiKeyService  # noqa: E402
from funnelboard.services.pipeline_service import PipelineService  # noqa: E402


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """In-memory SQLite shared by every connection of the test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """App from the real factory, with get_db pointing at the test session."""
    from funnelboard.database import get_db
    from funnelboard.main import create_app

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
def client(app) -> TestClient:
    # Not used as a context manager: startup would create the real engine
    return TestClient(app)


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def make_user(test_db_session):
    def _make_user(email: str = "owner@example.com", name: str = "Owner") -> User:
        user = User(email=email, name=name)
        test_db_session.add(user)
        test_db_session.commit()
        test_db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def user(make_user) -> User:
    return make_user()


@pytest.fixture
def other_user(make_user) -> User:
    return make_user(email="intruder@example.com", name="Intruder")


@pytest.fixture
def make_pipeline(test_db_session):
    def _make_pipeline(owner: User, name: str = "Inbound", stages=("New", "Qualified", "Won")) -> Pipeline:
        payload = PipelineCreate(name=name, stages=[PipelineStageCreate(name=s) for s in stages])
        return PipelineService(test_db_session).create(owner.id, payload)

    return _make_pipeline


@pytest.fixture
def pipeline(make_pipeline, user) -> Pipeline:
    """Pipeline 'Inbound' with stages New -> Qualified -> Won."""
    return make_pipeline(user)


# ============================================================================
# Authentication Fixtures
# ============================================================================

@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.email)}"}


@pytest.fixture
def api_key(test_db_session, user) -> str:
    """Plaintext API key for `user`."""
    _, raw_key = ApiKeyService(test_db_session).issue_key(user.id, "Zapier")
    return raw_key


@pytest.fixture
def api_headers(api_key):
    return {"X-API-Key": api_key}
