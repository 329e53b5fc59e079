# backend/tests/conftest.py
"""
Pytest configuration for the ClassBook backend.

Each test gets its own SQLite file database so threads can share it the
way the API worker pool does. Time is pinned through an injected clock.
"""

import os
import sys

# Set testing mode BEFORE any app imports
os.environ["is_testing"] = "true"
os.environ["create_tables_on_startup"] = "false"

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from app.core.config import settings  # noqa: E402

settings.is_testing = True

from datetime import date, datetime, time, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from app.api.dependencies import get_cache_service_dep, get_clock, get_db  # noqa: E402
from app.core.ulid_helper import generate_ulid  # noqa: E402
from app.database import build_engine, init_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.availability import BookingPolicy, RecurringAvailabilityRule  # noqa: E402
from app.models.course import Course, CourseEnrollment, EnrollmentType  # noqa: E402
from app.services.cache_service import CacheService  # noqa: E402
from app.services.credit_service import CreditService  # noqa: E402

SAO_PAULO = "America/Sao_Paulo"

# Monday 2024-12-16 09:00 in Sao Paulo (UTC-3, no DST)
FIXED_NOW = datetime(2024, 12, 16, 12, 0, tzinfo=timezone.utc)

# The following Monday, a week after FIXED_NOW
TARGET_MONDAY = date(2024, 12, 23)


def fixed_clock() -> datetime:
    return FIXED_NOW


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def engine(tmp_path):
    db_engine = build_engine(f"sqlite:///{tmp_path / 'classbook_test.db'}")
    init_db(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    """Create a new database session for each test."""
    session: Session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Identities and time
# ============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def target_monday() -> date:
    return TARGET_MONDAY


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def instructor_id() -> str:
    return generate_ulid()


@pytest.fixture
def student_id() -> str:
    return generate_ulid()


@pytest.fixture
def other_student_id() -> str:
    return generate_ulid()


@pytest.fixture
def cache_service() -> CacheService:
    """Memory-only cache, fresh per test."""
    return CacheService(default_ttl=300)


# ============================================================================
# Course data
# ============================================================================


@pytest.fixture
def course(db: Session, instructor_id: str) -> Course:
    course = Course(
        instructor_id=instructor_id,
        title="Intro to Guitar",
        price_per_hour=Decimal("1.00"),
        is_active=True,
    )
    db.add(course)
    db.commit()
    return course


@pytest.fixture
def policy(db: Session, course: Course) -> BookingPolicy:
    policy = BookingPolicy(
        course_id=course.id,
        min_advance_booking_hours=2,
        max_advance_booking_days=60,
        slot_duration_hours=1,
        buffer_time_minutes=0,
        timezone=SAO_PAULO,
    )
    db.add(policy)
    db.commit()
    return policy


@pytest.fixture
def monday_rule(db: Session, course: Course, policy: BookingPolicy) -> RecurringAvailabilityRule:
    """Mondays 09:00-18:00."""
    rule = RecurringAvailabilityRule(
        course_id=course.id,
        instructor_id=course.instructor_id,
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(18, 0),
        is_active=True,
    )
    db.add(rule)
    db.commit()
    return rule


@pytest.fixture
def funded_student(db: Session, student_id: str) -> str:
    CreditService(db).grant_credits(user_id=student_id, amount=10, description="Welcome credits")
    return student_id


@pytest.fixture
def full_course_student(db: Session, course: Course, other_student_id: str) -> str:
    db.add(
        CourseEnrollment(
            course_id=course.id,
            student_id=other_student_id,
            enrollment_type=EnrollmentType.FULL_COURSE.value,
        )
    )
    db.commit()
    return other_student_id


# ============================================================================
# API client
# ============================================================================


@pytest.fixture
def client(session_factory, cache_service):
    """TestClient bound to the per-test database, cache and fixed clock."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: fixed_clock
    app.dependency_overrides[get_cache_service_dep] = lambda: cache_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build the identity header for a user id."""

    def _headers(user_id: str) -> dict:
        return {"X-User-Id": user_id}

    return _headers
