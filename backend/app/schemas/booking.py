# backend/app/schemas/booking.py
"""
Booking schemas for ClassBook.

A booking carries its own local date/time and UTC instants, so it stays
meaningful after the availability that produced it changes.
"""

from datetime import date, datetime, time
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from ..core.constants import MAX_REASON_LENGTH
from ..models.booking import BookingStatus
from ._strict_base import StrictRequestModel
from .base import Credits, StandardizedModel


class BookingCreate(StrictRequestModel):
    """Reserve the slot starting at start_time on booking_date."""

    course_id: str = Field(..., description="Course to book")
    booking_date: date = Field(..., description="Local date of the class")
    start_time: time = Field(..., description="Local start time of an offered slot")

    @field_validator("start_time")
    @classmethod
    def drop_seconds(cls, v: time) -> time:
        return time(v.hour, v.minute)


class BookingCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class BookingResponse(StandardizedModel):
    id: str
    course_id: str
    instructor_id: str
    student_id: str
    booking_date: date
    start_time: time
    end_time: time
    duration_hours: float
    timezone: str
    booking_start_utc: datetime
    booking_end_utc: datetime
    status: BookingStatus
    credits_charged: Credits
    refunded: bool
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    attended_at: Optional[datetime] = None
    attendance_marked_by_id: Optional[str] = None


class CancellationResponse(StandardizedModel):
    refunded: bool
    credits_refunded: Credits
    policy_basis: str
    booking: BookingResponse


class BookingAccessResponse(StandardizedModel):
    booking_id: str
    room_name: str
    room_link: str
    is_instructor: bool
    is_student: bool


class UserCalendarResponse(StandardizedModel):
    year: int
    month: int
    events: List[BookingResponse]
    summary: Dict[str, int] = Field(
        ..., description="Counts per status plus 'total' and 'attended'"
    )
