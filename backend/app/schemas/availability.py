# backend/app/schemas/availability.py
"""
Availability schemas for ClassBook.

Window ordering and policy ranges are checked in the service layer so
that 00:00 can end a window and policy errors share one error code.
"""

import datetime
from typing import Dict, List, Optional

from pydantic import Field

from ..core.constants import MAX_REASON_LENGTH
from ._strict_base import StrictRequestModel
from .base import StandardizedModel

DateType = datetime.date
TimeType = datetime.time


class RecurringRuleCreate(StrictRequestModel):
    course_id: str
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: TimeType
    end_time: TimeType = Field(..., description="00:00 ends the window at midnight")


class SpecificSlotCreate(StrictRequestModel):
    course_id: str
    date: DateType
    start_time: TimeType
    end_time: TimeType
    is_available: bool = Field(True, description="False removes time from that date")
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class BlockDateCreate(StrictRequestModel):
    course_id: str
    date: DateType
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class PolicyUpdate(StrictRequestModel):
    """Omitted fields keep their current value."""

    course_id: str
    min_advance_booking_hours: Optional[float] = None
    max_advance_booking_days: Optional[int] = None
    slot_duration_hours: Optional[float] = None
    buffer_time_minutes: Optional[int] = None
    timezone: Optional[str] = None


class RecurringRuleResponse(StandardizedModel):
    id: str
    course_id: str
    instructor_id: str
    day_of_week: int
    start_time: TimeType
    end_time: TimeType
    is_active: bool


class SpecificSlotResponse(StandardizedModel):
    id: str
    course_id: str
    date: DateType
    start_time: TimeType
    end_time: TimeType
    is_available: bool
    reason: Optional[str] = None


class BlockedDateResponse(StandardizedModel):
    id: str
    course_id: str
    date: DateType
    reason: Optional[str] = None


class PolicyResponse(StandardizedModel):
    min_advance_booking_hours: float
    max_advance_booking_days: int
    slot_duration_hours: float
    buffer_time_minutes: int
    timezone: str


class InstructorAvailabilityResponse(StandardizedModel):
    course_id: str
    recurring_rules: List[RecurringRuleResponse]
    specific_slots: List[SpecificSlotResponse]
    blocked_dates: List[BlockedDateResponse]
    policy: PolicyResponse


class SlotResponse(StandardizedModel):
    date: DateType
    start_time: str = Field(..., description="HH:MM in the course timezone")
    end_time: str = Field(..., description="HH:MM in the course timezone")
    # Set on instructor-wide queries, which mix courses
    course_id: Optional[str] = None
    timezone: Optional[str] = None


class AvailableSlotsResponse(StandardizedModel):
    course_id: Optional[str] = None
    instructor_id: Optional[str] = None
    start_date: DateType
    end_date: DateType
    timezone: Optional[str] = Field(None, description="Omitted when courses differ")
    slots: List[SlotResponse]
    slots_by_date: Dict[str, List[str]] = Field(
        default_factory=dict, description="ISO date -> slot start times"
    )


class CalendarDayResponse(StandardizedModel):
    date: DateType
    slots: List[SlotResponse]


class InstructorCalendarResponse(StandardizedModel):
    """Month view of an instructor's bookable slots; every date is listed."""

    instructor_id: str
    year: int
    month: int
    days: List[CalendarDayResponse]
