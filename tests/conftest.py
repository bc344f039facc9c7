"""Shared pytest fixtures: in-memory database, app client and tenant factories."""

import os

# Settings are read at import time, so the environment has to be in place first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["DEBUG"] = "false"
for name in ("STRIPE_SECRET_KEY", "SENDGRID_API_KEY", "MAIL_FROM"):
    os.environ.pop(name, None)

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from core.database import get_session  # noqa: E402
from core.security import create_token_for_user, hash_password  # noqa: E402
from main import app  # noqa: E402
from models.models import MemberRole, Organization, OrganizationMember, User  # noqa: E402
from services.trial_service import initialize_trial  # noqa: E402


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(db):
    app.dependency_overrides[get_session] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Factory for users with the password ``password123``."""

    def _make(email: str, full_name: str = "Test User", **fields) -> User:
        user = User(full_name=full_name, email=email, password_hash=hash_password("password123"), **fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def add_member(db):
    """Factory for membership rows."""

    def _add(organization: Organization, user: User, role: MemberRole = MemberRole.MEMBER) -> OrganizationMember:
        member = OrganizationMember(organization_id=organization.id, user_id=user.id, role=role)
        db.add(member)
        db.commit()
        db.refresh(member)
        return member

    return _add


@pytest.fixture
def make_organization(db):
    """Factory for organizations with arbitrary stored fields."""

    def _make(name: str = "Acme Mailroom", **fields) -> Organization:
        organization = Organization(name=name, **fields)
        db.add(organization)
        db.commit()
        db.refresh(organization)
        return organization

    return _make


@pytest.fixture
def trial_start() -> datetime:
    return datetime(2024, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def trial_organization(db, make_organization, trial_start):
    """Organization whose trial was initialised at ``trial_start``."""
    organization = make_organization()
    return initialize_trial(db, organization.id, now=trial_start)


@pytest.fixture
def test_user(make_user) -> User:
    return make_user("admin@acme.com", "Ada Admin")


@pytest.fixture
def test_organization(db, make_organization, add_member, test_user) -> Organization:
    """Organization on a fresh trial with ``test_user`` as its admin."""
    organization = make_organization(contact_email=test_user.email, billing_email=test_user.email)
    add_member(organization, test_user, MemberRole.ADMIN)
    return initialize_trial(db, organization.id)


@pytest.fixture
def authenticated_client(client, test_user, test_organization) -> TestClient:
    client.headers["Authorization"] = f"Bearer {create_token_for_user(test_user)}"
    return client
