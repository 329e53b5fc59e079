# backend/app/services/slot_engine.py
"""
Slot Computation Engine for ClassBook

Turns declarative availability (weekly rules, date overrides, blocked
dates) into concrete bookable slots. Per calendar date the overlay is an
ordered pipeline of interval-set operations:

    1. blocked date            -> nothing
    2. recurring windows       -> merge_intervals
       minus unavailable slots -> subtract_intervals
       plus available slots    -> merge_intervals
    3. slice_window            -> fixed-length slots separated by the buffer
    4. booking window filter   -> now + min advance <= start <= now + max advance
    5. booking overlap filter  -> drop slots touching buffered scheduled bookings

Intervals are half-open ``(start_minute, end_minute)`` pairs measured from
local midnight in the course timezone; 1440 is the midnight ending a day.
The computation is read-only and gives no reservation guarantee.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import MINUTES_PER_DAY
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, local_datetime, month_bounds, utc_now
from ..models.availability import BookingPolicy, RecurringAvailabilityRule, SpecificDateSlot
from ..models.booking import Booking
from ..models.course import Course
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

Interval = Tuple[int, int]
Clock = Callable[[], datetime]


# Interval helpers


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def window_minutes(start: time, end: time) -> Interval:
    """Convert a wall-clock window to minutes; an end of 00:00 means midnight."""
    end_minutes = time_to_minutes(end)
    if end_minutes == 0:
        end_minutes = MINUTES_PER_DAY
    return time_to_minutes(start), end_minutes


def minutes_to_time(minutes: int) -> time:
    """Inverse of time_to_minutes; 1440 maps back to 00:00."""
    minutes %= MINUTES_PER_DAY
    return time(minutes // 60, minutes % 60)


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Union of intervals; overlapping and touching ranges are joined."""
    merged: List[Interval] = []
    for start, end in sorted(i for i in intervals if i[1] > i[0]):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def subtract_intervals(base: Iterable[Interval], removals: Iterable[Interval]) -> List[Interval]:
    """Remove every removal range from the base set."""
    result = merge_intervals(base)
    for cut_start, cut_end in merge_intervals(removals):
        remaining: List[Interval] = []
        for start, end in result:
            if cut_end <= start or cut_start >= end:
                remaining.append((start, end))
                continue
            if start < cut_start:
                remaining.append((start, cut_start))
            if cut_end < end:
                remaining.append((cut_end, end))
        result = remaining
    return result


def slice_window(window: Interval, slot_minutes: int, buffer_minutes: int = 0) -> List[Interval]:
    """
    Cut a window into consecutive slots.

    Each slot starts at the previous end plus the buffer; a trailing
    remainder shorter than a slot is discarded.
    """
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")
    start, end = window
    slots: List[Interval] = []
    cursor = start
    while cursor + slot_minutes <= end:
        slots.append((cursor, cursor + slot_minutes))
        cursor += slot_minutes + buffer_minutes
    return slots


def build_day_windows(
    recurring: Iterable[Interval],
    removals: Iterable[Interval],
    additions: Iterable[Interval],
) -> List[Interval]:
    """(recurring minus removals) union additions."""
    base = subtract_intervals(merge_intervals(recurring), removals)
    return merge_intervals([*base, *additions])


def rule_weekday(day: date) -> int:
    """Weekday in rule convention, 0 = Sunday."""
    return (day.weekday() + 1) % 7


# Value types


@dataclass(frozen=True)
class Slot:
    """One bookable slot in the course's local time."""

    date: date
    start_time: time
    end_time: time

    def to_dict(self) -> Dict[str, str]:
        return {
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Slot":
        return cls(
            date=date.fromisoformat(data["date"]),
            start_time=time.fromisoformat(data["start_time"]),
            end_time=time.fromisoformat(data["end_time"]),
        )


@dataclass(frozen=True)
class EffectivePolicy:
    """Stored booking policy of a course, or the configured defaults."""

    min_advance_booking_hours: float
    max_advance_booking_days: int
    slot_duration_hours: float
    buffer_time_minutes: int
    timezone: str

    @classmethod
    def defaults(cls) -> "EffectivePolicy":
        return cls(
            min_advance_booking_hours=settings.default_min_advance_booking_hours,
            max_advance_booking_days=settings.default_max_advance_booking_days,
            slot_duration_hours=settings.default_slot_duration_hours,
            buffer_time_minutes=settings.default_buffer_time_minutes,
            timezone=settings.default_timezone,
        )

    @classmethod
    def from_model(cls, policy: Optional[BookingPolicy]) -> "EffectivePolicy":
        if policy is None:
            return cls.defaults()
        return cls(
            min_advance_booking_hours=float(policy.min_advance_booking_hours),
            max_advance_booking_days=int(policy.max_advance_booking_days),
            slot_duration_hours=float(policy.slot_duration_hours),
            buffer_time_minutes=int(policy.buffer_time_minutes),
            timezone=policy.timezone,
        )

    @property
    def slot_minutes(self) -> int:
        return int(round(self.slot_duration_hours * 60))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_advance_booking_hours": self.min_advance_booking_hours,
            "max_advance_booking_days": self.max_advance_booking_days,
            "slot_duration_hours": self.slot_duration_hours,
            "buffer_time_minutes": self.buffer_time_minutes,
            "timezone": self.timezone,
        }


BookedRange = Tuple[datetime, datetime]


def compute_day_slots(
    day: date,
    rules: Sequence[RecurringAvailabilityRule],
    overrides: Sequence[SpecificDateSlot],
    is_blocked: bool,
    policy: EffectivePolicy,
    booked: Sequence[BookedRange],
    now: datetime,
) -> List[Slot]:
    """
    Slots of a single date.

    ``rules`` may contain every active rule of the course; only those for
    the date's weekday are used. ``booked`` holds UTC ranges of the
    instructor's scheduled bookings, not yet widened by the buffer.
    """
    if is_blocked:
        return []

    weekday = rule_weekday(day)
    recurring = [
        window_minutes(r.start_time, r.end_time) for r in rules if r.day_of_week == weekday
    ]
    removals = [
        window_minutes(o.start_time, o.end_time)
        for o in overrides
        if o.date == day and not o.is_available
    ]
    additions = [
        window_minutes(o.start_time, o.end_time)
        for o in overrides
        if o.date == day and o.is_available
    ]
    windows = build_day_windows(recurring, removals, additions)

    earliest = now + timedelta(hours=policy.min_advance_booking_hours)
    latest = now + timedelta(days=policy.max_advance_booking_days)
    buffer = timedelta(minutes=policy.buffer_time_minutes)
    blocked_ranges = [(start - buffer, end + buffer) for start, end in booked]

    slots: List[Slot] = []
    for window in windows:
        for start_minute, end_minute in slice_window(
            window, policy.slot_minutes, policy.buffer_time_minutes
        ):
            slot_start = local_datetime(day, start_minute, policy.timezone)
            if slot_start < earliest or slot_start > latest:
                continue
            slot_end = local_datetime(day, end_minute, policy.timezone)
            if any(slot_start < b_end and slot_end > b_start for b_start, b_end in blocked_ranges):
                continue
            slots.append(Slot(day, minutes_to_time(start_minute), minutes_to_time(end_minute)))
    return slots


def group_slots_by_date(slots: Iterable[Slot]) -> "OrderedDict[date, List[Slot]]":
    """Index slots by date, keeping the date and time order."""
    grouped: "OrderedDict[date, List[Slot]]" = OrderedDict()
    for slot in sorted(slots, key=lambda s: (s.date, s.start_time)):
        grouped.setdefault(slot.date, []).append(slot)
    return grouped


class SlotComputationEngine(BaseService):
    """
    Computes bookable slots for a course.

    ``clock`` returns the current instant and is injectable so results are
    deterministic under test.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db)
        self.clock: Clock = clock or utc_now
        self.course_repository = RepositoryFactory.create_course_repository(db)
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    def get_offered_course(self, course_id: str, instructor_id: Optional[str] = None) -> Course:
        """
        Load an active course, optionally checking who teaches it.

        Raises:
            NotFoundException: unknown course, or not taught by ``instructor_id``
        """
        course = self.course_repository.get_active_course(course_id)
        if course is None:
            raise NotFoundException("Course not found", details={"course_id": course_id})
        if instructor_id is not None and course.instructor_id != instructor_id:
            raise NotFoundException(
                "Course is not offered by this instructor",
                details={"course_id": course_id, "instructor_id": instructor_id},
            )
        return course

    def resolve_policy(self, course_id: str) -> EffectivePolicy:
        return EffectivePolicy.from_model(self.availability_repository.get_policy(course_id))

    @staticmethod
    def validate_range(start_date: date, end_date: date) -> None:
        if start_date > end_date:
            raise ValidationException(
                "start_date must not be after end_date",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        days = (end_date - start_date).days + 1
        if days > settings.max_query_days:
            raise ValidationException(
                f"Date range cannot exceed {settings.max_query_days} days",
                details={"days": days, "max_query_days": settings.max_query_days},
            )

    @staticmethod
    def month_range(year: int, month: int) -> Tuple[date, date]:
        """First and last date of a calendar month; bad values are a ValidationException."""
        if not 1 <= month <= 12 or not 1 <= year <= 9999:
            raise ValidationException(
                "Invalid calendar month", details={"year": year, "month": month}
            )
        return month_bounds(year, month)

    @BaseService.measure_operation("compute_slots")
    def compute_slots(
        self, course_id: str, instructor_id: Optional[str], start_date: date, end_date: date
    ) -> List[Slot]:
        """
        Bookable slots between two dates, inclusive, sorted by date then time.

        Raises:
            ValidationException: bad or oversized range (before any store access)
            NotFoundException: unknown course or instructor mismatch
        """
        self.validate_range(start_date, end_date)
        course = self.get_offered_course(course_id, instructor_id)
        policy = self.resolve_policy(course_id)
        now = self.now()

        repo = self.availability_repository
        rules = repo.get_active_rules(course_id)
        overrides = repo.get_specific_slots(course_id, start_date, end_date)
        blocked_dates = repo.get_blocked_dates(course_id, start_date, end_date)
        blocked = {b.date for b in blocked_dates}
        booked = self._booked_ranges(course.instructor_id, start_date, end_date, policy)

        slots: List[Slot] = []
        day = start_date
        while day <= end_date:
            slots.extend(
                compute_day_slots(
                    day,
                    rules,
                    [o for o in overrides if o.date == day],
                    day in blocked,
                    policy,
                    booked,
                    now,
                )
            )
            day += timedelta(days=1)

        self.logger.debug(
            "Computed slots",
            extra={
                "course_id": course_id,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "slot_count": len(slots),
            },
        )
        return slots

    def _booked_ranges(
        self, instructor_id: str, start_date: date, end_date: date, policy: EffectivePolicy
    ) -> List[BookedRange]:
        """UTC ranges of scheduled bookings that could touch the queried dates."""
        buffer = timedelta(minutes=policy.buffer_time_minutes)
        range_start = local_datetime(start_date, 0, policy.timezone) - buffer
        range_end = local_datetime(end_date, MINUTES_PER_DAY, policy.timezone) + buffer
        bookings: List[Booking] = self.booking_repository.get_scheduled_overlapping(
            instructor_id, ensure_utc(range_start), ensure_utc(range_end)
        )
        return [(b.start_utc, b.end_utc) for b in bookings]
