"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models.attachment import VisitAttachment  # noqa: F401
from app.models.user import User
from app.models.visit import Visit
from app.services.attachments import AttachmentService
from app.services.blob_store import LocalBlobStore, get_blob_store
from app.services.jwt import get_jwt_service
from app.services.locks import VisitLocks

CIRCLE_ID = 7


@pytest.fixture(name="db_session")
def db_session_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="blob_store")
def blob_store_fixture(tmp_path):
    """Blob store rooted in a per-test temporary directory."""
    return LocalBlobStore(tmp_path / "blobs", "http://testserver")


@pytest.fixture(name="client")
def client_fixture(db_session: Session, blob_store: LocalBlobStore):
    """Create a test client with overridden DB and blob store, and rate limiting disabled."""
    from app.rate_limit import limiter
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    app.dependency_overrides.clear()


def _make_user(db: Session, email: str, display_name: str) -> dict:
    user = User(email=email, display_name=display_name, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    token = get_jwt_service().create_token(user_id=user.id, email=user.email, display_name=user.display_name)
    return {
        "user_id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "token": token,
        "headers": {"Authorization": f"Bearer {token}"},
    }


@pytest.fixture(name="test_user")
def test_user_fixture(db_session: Session):
    """Create a test user and return its data plus a bearer token."""
    return _make_user(db_session, "test@example.com", "Test User")


@pytest.fixture(name="other_user")
def other_user_fixture(db_session: Session):
    return _make_user(db_session, "other@example.com", "Other User")


@pytest.fixture(name="visit")
def visit_fixture(db_session: Session, test_user: dict) -> Visit:
    """A scheduled visit in circle 7."""
    visit = Visit(circle_id=CIRCLE_ID, visitor_id=test_user["user_id"], status="scheduled")
    db_session.add(visit)
    db_session.commit()
    db_session.refresh(visit)
    return visit


@pytest.fixture(name="service")
def service_fixture(db_session: Session, blob_store: LocalBlobStore) -> AttachmentService:
    """Attachment service wired to the test database and blob store."""
    return AttachmentService(db_session, blob_store, locks=VisitLocks())
