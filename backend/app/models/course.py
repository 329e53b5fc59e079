# backend/app/models/course.py
"""
Course and enrollment models.

Courses and enrollments are owned by the catalog collaborator. The booking
engine only reads them: the course names its instructor and price, and an
enrollment tells whether a student already paid for the whole course.
"""

from enum import Enum
import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.constants import MAX_TITLE_LENGTH
from ..database import Base

logger = logging.getLogger(__name__)


class EnrollmentType(str, Enum):
    """How a student joined a course."""

    FULL_COURSE = "full_course"  # Paid up front, classes are free
    SINGLE_CLASS = "single_class"  # Pays per booked class


class Course(Base):
    """A class offering taught by one instructor."""

    __tablename__ = "courses"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    instructor_id = Column(String(26), nullable=False, index=True)
    title = Column(String(MAX_TITLE_LENGTH), nullable=False)
    # Credits per hour; NULL falls back to the configured default price
    price_per_hour = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    enrollments = relationship(
        "CourseEnrollment", back_populates="course", cascade="all, delete-orphan"
    )
    policy = relationship(
        "BookingPolicy", back_populates="course", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "price_per_hour IS NULL OR price_per_hour >= 0", name="check_course_price_non_negative"
        ),
    )

    def __repr__(self) -> str:
        return f"<Course {self.id}: {self.title} (instructor={self.instructor_id})>"


class CourseEnrollment(Base):
    """A student's enrollment in a course."""

    __tablename__ = "course_enrollments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    course_id = Column(String(26), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(String(26), nullable=False, index=True)
    enrollment_type = Column(String(20), nullable=False, default=EnrollmentType.SINGLE_CLASS.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    course = relationship("Course", back_populates="enrollments")

    __table_args__ = (
        UniqueConstraint("course_id", "student_id", name="unique_course_enrollment"),
        CheckConstraint(
            "enrollment_type IN ('full_course', 'single_class')",
            name="ck_course_enrollments_type",
        ),
    )

    @property
    def is_full_course(self) -> bool:
        return self.enrollment_type == EnrollmentType.FULL_COURSE.value

    def __repr__(self) -> str:
        return (
            f"<CourseEnrollment course={self.course_id} student={self.student_id} "
            f"type={self.enrollment_type}>"
        )
