import os

# Embedded metrics print to stdout instead of looking for a CloudWatch agent
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")
os.environ.setdefault("LOG_FORMAT", "console")

from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

# --- Alembic Imports ---
from alembic.config import Config
from alembic import command
# --- End Alembic Imports ---

# Import app and DB dependency function first
from main import app, get_db
from auth import get_current_user

# Import database components needed for setup
from database import Base, build_engine
import crud
import models
import schemas

TEST_DATABASE_URL = "sqlite:///./jobconnect-test.db"
ALEMBIC_INI = Path(__file__).resolve().parent / "alembic.ini"

test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def _remove_db_files(db_path: str):
    for path in (db_path, f"{db_path}-wal", f"{db_path}-shm"):
        if os.path.exists(path):
            try:
                os.unlink(path)
            except OSError as e:
                print(f"Error removing test database file {path}: {e}")


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    _remove_db_files(db_path)

    print(f"Creating test database tables from models at {db_path}")
    Base.metadata.create_all(bind=test_engine)

    print("Stamping database with Alembic head revision")
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.stamp(alembic_cfg, "head")

    yield  # Tests run here

    test_engine.dispose()
    _remove_db_files(db_path)


@pytest.fixture(autouse=True)
def clean_tables(setup_test_database):
    """Empty every table after each test so tests never see each other's rows."""
    yield
    with test_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")
def db_session(setup_test_database):
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


# Override the get_db dependency for tests
@pytest.fixture(scope="function")
def override_get_db():
    """Override the get_db dependency to use our test database.

    This creates a new session for each API call, allowing proper
    transaction handling within FastAPI endpoints.
    """

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def test_client(override_get_db):
    """Provides a test client configured with our test database session."""
    yield TestClient(app)
    app.dependency_overrides.pop(get_current_user, None)


# --- Test data helpers --- #
def create_user(
    db,
    user_id: str,
    full_name: str = "Test User",
    role: models.AppRole = models.AppRole.candidate,
) -> models.Profile:
    """Create a profile and role row directly in the test database."""
    profile = crud.ensure_user(db, user_id, f"{user_id}@example.com", full_name=full_name)
    crud.set_user_role(db, user_id, role)
    db.commit()
    db.refresh(profile)
    return profile


def create_company(db, admin_user_id: str, name: str = "Acme") -> models.Company:
    return crud.create_company(db, schemas.CompanyCreate(name=name), user_id=admin_user_id)


def create_job(db, company_id: str, user_id: str, **overrides) -> models.Job:
    data = {
        "company_id": company_id,
        "title": "Backend Developer",
        "description": "Build and run our Python services.",
        "city": "Sao Paulo",
        "state": "SP",
        "skills_required": ["Python"],
    }
    data.update(overrides)
    return crud.create_job(db, schemas.JobCreate(**data), user_id=user_id)


@pytest.fixture
def login_as():
    """Make every following request run as ``user_id``."""

    def _login(user_id: str):
        def _current_user():
            db = TestSessionLocal()
            try:
                return crud.get_profile_by_user_id(db, user_id)
            finally:
                db.close()

        app.dependency_overrides[get_current_user] = _current_user

    yield _login
    app.dependency_overrides.pop(get_current_user, None)
