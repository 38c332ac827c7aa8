"""
Shared pytest fixtures for the Audit Pack test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org: Organization seeded with the default departments
    - make_profile: factory for profiles of any role/department
    - admin / manager / employee / outsider: ready-made profiles
    - auth_headers: bearer-token headers for a profile
    - request_fields / reviewed / new_request: payload, review signer, created request
"""

import pytest

from auditpack import create_app
from auditpack.ai.compliance_scorer import score_request
from auditpack.models import db as _db
from auditpack.models.auth import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_MANAGER, Profile
from auditpack.services.jwt_service import generate_access_token
from auditpack.services.profile_service import find_or_create_organization
from auditpack.services.request_lifecycle import create_request
from auditpack.utils.crypto import hash_password

FINANCE = "Finance & Accounting"
ENGINEERING = "Engineering"
PASSWORD = "correct-horse-1"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def org():
    organization = find_or_create_organization("Acme Corp")
    _db.session.commit()
    return organization


@pytest.fixture()
def make_profile(org):
    """Factory: make_profile(role, department, name=None, email=None)."""
    counter = {"n": 0}

    def _make(role=ROLE_EMPLOYEE, department=FINANCE, name=None, email=None, **kwargs):
        counter["n"] += 1
        n = counter["n"]
        profile = Profile(
            organization_id=org.id,
            email=email or f"{role}{n}@acme.example.com",
            password_hash=hash_password(PASSWORD),
            full_name=name or f"{role.title()} {n}",
            role=role,
            department=department,
            **kwargs,
        )
        _db.session.add(profile)
        _db.session.commit()
        return profile

    return _make


@pytest.fixture()
def admin(make_profile):
    return make_profile(ROLE_ADMIN, "General", name="Ada Admin")


@pytest.fixture()
def manager(make_profile):
    return make_profile(ROLE_MANAGER, FINANCE, name="Milo Manager")


@pytest.fixture()
def employee(make_profile):
    return make_profile(ROLE_EMPLOYEE, FINANCE, name="Erin Employee")


@pytest.fixture()
def outsider(make_profile):
    """Employee of another department."""
    return make_profile(ROLE_EMPLOYEE, ENGINEERING, name="Otto Outsider")


@pytest.fixture()
def auth_headers():
    """auth_headers(profile) → {"Authorization": "Bearer …"}."""

    def _headers(profile):
        token = generate_access_token(profile.id, profile.role)["access_token"]
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Request fixtures ─────────────────────────────────────────────────────


@pytest.fixture()
def request_fields():
    return {
        "title": "Client dinner",
        "category": "expense",
        "department": FINANCE,
        "description": "Dinner with the audit partner to close the quarterly review.",
        "total_amount": "184.50",
        "audit_date": "2026-09-30",
        "attachments": [],
    }


@pytest.fixture()
def reviewed():
    """reviewed(fields) → payload plus a review signed for exactly these fields."""

    def _reviewed(fields):
        return {**fields, "ai_review": score_request(fields)}

    return _reviewed


@pytest.fixture()
def new_request(employee, request_fields, reviewed):
    """A pending request owned by ``employee`` in Finance."""
    return create_request(employee, reviewed(request_fields))
