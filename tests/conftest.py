"""
Shared pytest fixtures for the Siteline test suite.

Provides:
    - app: Flask application (session-scoped, SQLite in-memory, uploads in a tmp dir)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client
    - make_user / add_member: factories for users and project team members
    - owner, org, project: an org owner with one active project
    - auth_headers: Bearer headers for any user
"""

from datetime import date, datetime, timezone

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import Organization, OrganizationMember, User
from app.models.project import Project, ProjectAccess
from app.services import cache_service
from app.services.jwt_service import generate_access_token
from app.services.permission_service import invalidate_all_cache
from app.utils.crypto import hash_password

PASSWORD = "correct-horse-battery"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # ids are reused across tests; stale permission / weather entries must go
        invalidate_all_cache()
        cache_service.reset_backend()
        yield
        invalidate_all_cache()
        cache_service.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Create an active user: ``make_user("pm@example.com", "Pat Manager")``."""
    def _make(email, full_name=None):
        user = User(email=email, full_name=full_name or email.split("@")[0].title(),
                    password_hash=hash_password(PASSWORD))
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def owner(make_user):
    return make_user("owner@example.com", "Olivia Owner")


@pytest.fixture()
def org(owner):
    now = datetime.now(timezone.utc)
    organization = Organization(name="Acme Builders", slug="acme-builders",
                                created_by_id=owner.id)
    _db.session.add(organization)
    _db.session.flush()
    _db.session.add(OrganizationMember(organization_id=organization.id, user_id=owner.id,
                                       role="owner", invited_at=now, joined_at=now))
    _db.session.commit()
    return organization


@pytest.fixture()
def project(org, owner):
    proj = Project(organization_id=org.id, name="Riverside Medical Office",
                   number="RMO-2401", status="active", budget=100000,
                   start_date=date(2024, 1, 1), end_date=date(2024, 12, 31),
                   latitude=40.7128, longitude=-74.0060, created_by_id=owner.id)
    _db.session.add(proj)
    _db.session.flush()
    _db.session.add(ProjectAccess(project_id=proj.id, user_id=owner.id, role="manager",
                                  granted_by_id=owner.id))
    _db.session.commit()
    return proj


@pytest.fixture()
def add_member(org, owner):
    """Join ``user`` to the org as a member and grant ``role`` on ``project``."""
    def _add(project, user, role="viewer", trade=None):
        now = datetime.now(timezone.utc)
        if not OrganizationMember.query.filter_by(organization_id=project.organization_id,
                                                  user_id=user.id).first():
            _db.session.add(OrganizationMember(
                organization_id=project.organization_id, user_id=user.id, role="member",
                invited_by_id=owner.id, invited_at=now, joined_at=now))
        _db.session.add(ProjectAccess(project_id=project.id, user_id=user.id, role=role,
                                      trade=trade, granted_by_id=owner.id))
        _db.session.commit()
        invalidate_all_cache()
        return user
    return _add


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.email)}"}
    return _headers


@pytest.fixture()
def owner_headers(owner, auth_headers):
    return auth_headers(owner)


class FakeGateway:
    """Stands in for LLMGateway: records calls and returns canned model content."""

    def __init__(self, content="{}", error=None):
        self.content = content
        self.error = error
        self.calls = []

    def chat(self, messages, **kwargs):
        self.calls.append({"messages": messages, **kwargs})
        if self.error:
            raise RuntimeError(self.error)
        return {"content": self.content, "prompt_tokens": 10, "completion_tokens": 5,
                "model": "fake-vision", "provider": "fake"}


@pytest.fixture()
def fake_gateway():
    return FakeGateway


@pytest.fixture()
def password():
    """Plain-text password every factory-made user can log in with."""
    return PASSWORD
