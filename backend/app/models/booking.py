# backend/app/models/booking.py
"""
Booking model for ClassBook.

A booking is a self-contained record of one reserved class: it stores the
instructor, the local date and times, and the UTC instants they map to, so
it stays meaningful after the availability that produced it changes.
"""

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    SCHEDULED = "scheduled"  # Default - reserved and paid
    COMPLETED = "completed"  # Class taught
    CANCELLED = "cancelled"  # Cancelled by student or instructor


class Booking(Base):
    """
    One reserved class between a student and an instructor.

    Only SCHEDULED bookings occupy the instructor's time. The partial
    unique index keeps a single scheduled booking per instructor start.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False, index=True)
    instructor_id = Column(String(26), nullable=False, index=True)
    student_id = Column(String(26), nullable=False, index=True)

    # Local date/time in the policy timezone at booking time
    booking_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_hours = Column(Float, nullable=False)
    timezone = Column(String(64), nullable=False)

    # UTC instants used for overlap checks
    booking_start_utc = Column(DateTime(timezone=True), nullable=False)
    booking_end_utc = Column(DateTime(timezone=True), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.SCHEDULED.value, index=True)
    credits_charged = Column(Numeric(10, 2), nullable=False, default=0)
    refunded = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    cancelled_by_id = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # First participant check-in inside the join window
    attended_at = Column(DateTime(timezone=True), nullable=True)
    attendance_marked_by_id = Column(String(26), nullable=True)

    course = relationship("Course")

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'completed', 'cancelled')",
            name="ck_bookings_status",
        ),
        CheckConstraint("duration_hours > 0", name="check_duration_positive"),
        CheckConstraint("credits_charged >= 0", name="check_credits_non_negative"),
        CheckConstraint("booking_end_utc > booking_start_utc", name="check_utc_order"),
        Index(
            "uq_bookings_instructor_scheduled_start",
            "instructor_id",
            "booking_date",
            "start_time",
            unique=True,
            sqlite_where=text("status = 'scheduled'"),
            postgresql_where=text("status = 'scheduled'"),
        ),
        Index("idx_bookings_instructor_start_utc", "instructor_id", "booking_start_utc"),
        Index("idx_bookings_student_start_utc", "student_id", "booking_start_utc"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.SCHEDULED.value
        logger.info(
            f"Creating booking for student {self.student_id} with instructor {self.instructor_id}"
        )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: student={self.student_id}, "
            f"instructor={self.instructor_id}, date={self.booking_date}, "
            f"time={self.start_time}-{self.end_time}, status={self.status}>"
        )

    def cancel(self, cancelled_by_user_id: str, reason: Optional[str] = None) -> None:
        """Cancel this booking."""
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = datetime.now(timezone.utc)
        self.cancelled_by_id = cancelled_by_user_id
        self.cancellation_reason = reason
        logger.info(f"Booking {self.id} cancelled by user {cancelled_by_user_id}")

    def complete(self) -> None:
        """Mark booking as completed."""
        self.status = BookingStatus.COMPLETED.value
        self.completed_at = datetime.now(timezone.utc)
        logger.info(f"Booking {self.id} marked as completed")

    def mark_attended(self, user_id: str, at: datetime) -> None:
        """Record attendance; later marks keep the first one."""
        if self.attended_at is not None:
            return
        self.attended_at = at
        self.attendance_marked_by_id = user_id
        logger.info(f"Booking {self.id} attendance marked by user {user_id}")

    @property
    def is_scheduled(self) -> bool:
        return self.status == BookingStatus.SCHEDULED.value

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.student_id, self.instructor_id)

    @property
    def start_utc(self) -> datetime:
        """UTC start, tz-aware even when the driver returns naive values."""
        value: datetime = self.booking_start_utc
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @property
    def end_utc(self) -> datetime:
        value: datetime = self.booking_end_utc
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
