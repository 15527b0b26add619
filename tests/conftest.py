"""
Pytest configuration and fixtures for IRB Portal tests.
"""

import os
import sys
import tempfile
from datetime import date, datetime
from pathlib import Path
from uuid import uuid4

# Settings are read once at import time, so the test environment is fixed first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["COOKIE_SECURE"] = "false"
os.environ["AUTO_APPROVE_REGISTRATIONS"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="irb-uploads-")

sys.path.append(str(Path(__file__).parent.parent))

import pytest
from fastapi.testclient import TestClient

from irb_portal.auth.jwt_handler import get_jwt_handler
from irb_portal.auth.models import RoleName
from irb_portal.auth.password import get_password_handler
from irb_portal.config import settings
from irb_portal.core.cache import get_cache
from irb_portal.database.enums import StudyStatus, StudyType
from irb_portal.database.models import Base, Role, Study, StudyCoordinator, User
from irb_portal.database.seed import seed_roles
from irb_portal.database.session import SessionLocal, engine
from irb_portal.main import app

PASSWORD = "Str0ngPassw0rd"


@pytest.fixture
def db():
    """Fresh schema with seeded roles for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    seed_roles(session)
    session.commit()
    get_cache().clear()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    """Point document storage at a per-test directory."""
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def client(db):
    return TestClient(app)


def create_user(session, role: RoleName, email: str = None, password: str = PASSWORD,
                is_active: bool = True, is_approved: bool = True) -> User:
    role_row = session.query(Role).filter_by(name=role.value).one()
    user = User(
        email=email or f"{role.value}-{uuid4().hex[:8]}@example.org",
        password_hash=get_password_handler().hash_password(password),
        first_name="Test",
        last_name=role.value.replace("_", " ").title(),
        role=role_row,
        is_active=is_active,
        is_approved=is_approved,
        password_changed_at=datetime.utcnow(),
    )
    session.add(user)
    session.commit()
    return user


def create_study(session, pi: User, status: StudyStatus = StudyStatus.DRAFT,
                 protocol_number: str = None, **fields) -> Study:
    study = Study(
        title=fields.pop("title", "Sleep Quality in Shift Workers"),
        protocol_number=protocol_number or f"IRB-{uuid4().hex[:6].upper()}",
        description=fields.pop("description", "Observational study of sleep quality among night shift nurses."),
        type=fields.pop("type", StudyType.OBSERVATIONAL.value),
        status=status.value,
        principal_investigator_id=pi.id,
        **fields,
    )
    session.add(study)
    session.commit()
    return study


def assign_coordinator(session, study: Study, coordinator: User) -> StudyCoordinator:
    assignment = StudyCoordinator(study_id=study.id, coordinator_id=coordinator.id, is_active=True)
    session.add(assignment)
    session.commit()
    return assignment


def auth_headers(user: User) -> dict:
    tokens = get_jwt_handler().create_token_pair(user.id, user.email, user.role_name)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest.fixture
def admin(db):
    return create_user(db, RoleName.ADMIN)


@pytest.fixture
def pi(db):
    return create_user(db, RoleName.PRINCIPAL_INVESTIGATOR)


@pytest.fixture
def researcher(db):
    return create_user(db, RoleName.RESEARCHER)


@pytest.fixture
def reviewer(db):
    return create_user(db, RoleName.REVIEWER)


@pytest.fixture
def coordinator(db):
    return create_user(db, RoleName.COORDINATOR)


@pytest.fixture
def study(db, pi):
    """Draft study led by the pi fixture."""
    return create_study(db, pi)


@pytest.fixture
def active_study(db, pi, coordinator):
    """Active study with the coordinator fixture assigned."""
    active = create_study(db, pi, status=StudyStatus.ACTIVE, target_enrollment=50)
    assign_coordinator(db, active, coordinator)
    return active


@pytest.fixture
def participant_payload():
    today = date.today().isoformat()
    return {
        "subject_id": "SUBJ-001",
        "consent_date": today,
        "enrollment_date": today,
        "group_assignment": "Arm A",
    }
