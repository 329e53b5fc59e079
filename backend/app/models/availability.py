# backend/app/models/availability.py
"""
Availability models for ClassBook.

An instructor describes when a course can be booked with three kinds of
entries, layered in this order when slots are computed:

Classes:
    RecurringAvailabilityRule: Weekly window, e.g. every Monday 09:00-18:00
    SpecificDateSlot: One-date override that adds or removes time
    BlockedDate: Voids every window on a date
    BookingPolicy: Per-course slicing and booking-window rules
"""

import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.constants import DAYS_OF_WEEK, MAX_REASON_LENGTH
from ..database import Base

logger = logging.getLogger(__name__)


class RecurringAvailabilityRule(Base):
    """
    Weekly availability window for a course.

    day_of_week uses 0 = Sunday through 6 = Saturday. An end_time of
    00:00 means the window runs until midnight. Rules are deactivated,
    never deleted, so bookings made against them stay explainable.
    """

    __tablename__ = "recurring_availability_rules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    course_id = Column(String(26), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    instructor_id = Column(String(26), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="check_day_of_week_range"),
        Index("idx_recurring_rules_course_day", "course_id", "day_of_week", "is_active"),
    )

    @property
    def day_name(self) -> str:
        return DAYS_OF_WEEK[self.day_of_week]

    def deactivate(self) -> None:
        self.is_active = False
        logger.info(f"Recurring rule {self.id} deactivated")

    def __repr__(self) -> str:
        return (
            f"<RecurringAvailabilityRule {self.id}: day={self.day_of_week} "
            f"{self.start_time}-{self.end_time} active={self.is_active}>"
        )


class SpecificDateSlot(Base):
    """
    Override for a single calendar date.

    is_available=False removes the range from that date's windows;
    is_available=True adds it, even when no recurring rule exists.
    """

    __tablename__ = "specific_date_slots"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    course_id = Column(String(26), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    instructor_id = Column(String(26), nullable=False)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    reason = Column(String(MAX_REASON_LENGTH), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_specific_slots_course_date", "course_id", "date"),)

    def __repr__(self) -> str:
        kind = "add" if self.is_available else "remove"
        return f"<SpecificDateSlot {self.date} {self.start_time}-{self.end_time} {kind}>"


class BlockedDate(Base):
    """Date on which a course cannot be booked at all."""

    __tablename__ = "blocked_dates"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    course_id = Column(String(26), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    instructor_id = Column(String(26), nullable=False)
    date = Column(Date, nullable=False, index=True)
    reason = Column(String(MAX_REASON_LENGTH), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("course_id", "date", name="unique_course_blocked_date"),
        Index("idx_blocked_dates_course_date", "course_id", "date"),
    )

    def __repr__(self) -> str:
        return f"<BlockedDate {self.date} - {self.reason or 'No reason'}>"


class BookingPolicy(Base):
    """Slot and booking-window settings, one row per course."""

    __tablename__ = "booking_policies"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    course_id = Column(
        String(26), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    min_advance_booking_hours = Column(Float, nullable=False, default=2)
    max_advance_booking_days = Column(Integer, nullable=False, default=60)
    slot_duration_hours = Column(Float, nullable=False, default=1)
    buffer_time_minutes = Column(Integer, nullable=False, default=0)
    timezone = Column(String(64), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    course = relationship("Course", back_populates="policy")

    __table_args__ = (
        CheckConstraint("min_advance_booking_hours >= 0", name="check_min_advance_non_negative"),
        CheckConstraint("max_advance_booking_days >= 1", name="check_max_advance_positive"),
        CheckConstraint("slot_duration_hours > 0", name="check_slot_duration_positive"),
        CheckConstraint("buffer_time_minutes >= 0", name="check_buffer_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<BookingPolicy course={self.course_id} slot={self.slot_duration_hours}h "
            f"buffer={self.buffer_time_minutes}m tz={self.timezone}>"
        )
