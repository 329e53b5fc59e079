# backend/app/services/booking_workflow.py
"""
Booking Workflow for ClassBook

Drives one student through picking a date, picking a time and confirming
a reservation for a course:

    SELECTING_DATE -> SELECTING_TIME -> CONFIRMING -> COMMITTED
                                                  \\-> FAILED

Slot data is fetched one visible month at a time and kept in a
MonthSlotCache. Commits go through the booking coordinator
(BookingService.reserve_slot) and are tagged with a CommitTicket so a
response that arrives after reset/back/close is ignored.
"""

import asyncio
import calendar
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
import logging
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from ..core.exceptions import (
    DomainException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    SlotNoLongerAvailableException,
    UnauthorizedException,
)
from ..models.booking import Booking
from .slot_engine import Slot, group_slots_by_date

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    SELECTING_DATE = "SELECTING_DATE"
    SELECTING_TIME = "SELECTING_TIME"
    CONFIRMING = "CONFIRMING"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


class WorkflowAction(str, Enum):
    SHOW_MONTH = "show_month"
    SELECT_DATE = "select_date"
    SELECT_TIME = "select_time"
    CONFIRM = "confirm"
    BACK = "back"


# (state, action) -> next state. reset/close are legal from every state.
TRANSITIONS: Dict[Tuple[WorkflowState, WorkflowAction], WorkflowState] = {
    (WorkflowState.SELECTING_DATE, WorkflowAction.SHOW_MONTH): WorkflowState.SELECTING_DATE,
    (WorkflowState.SELECTING_DATE, WorkflowAction.SELECT_DATE): WorkflowState.SELECTING_TIME,
    (WorkflowState.SELECTING_TIME, WorkflowAction.SELECT_TIME): WorkflowState.CONFIRMING,
    (WorkflowState.SELECTING_TIME, WorkflowAction.BACK): WorkflowState.SELECTING_DATE,
    (WorkflowState.CONFIRMING, WorkflowAction.CONFIRM): WorkflowState.CONFIRMING,
    (WorkflowState.CONFIRMING, WorkflowAction.BACK): WorkflowState.SELECTING_TIME,
}

# Errors that end the session; only reset/close are accepted afterwards
FATAL_ERRORS = (UnauthorizedException, ForbiddenException, NotFoundException)


class BookingCoordinator(Protocol):
    def reserve_slot(
        self, student_id: str, course_id: str, booking_date: date, start_time: time
    ) -> Booking:
        ...


# (course_id, instructor_id, start_date, end_date) -> slots
SlotSource = Callable[[str, Optional[str], date, date], List[Slot]]


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def shift_month(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


class MonthSlotCache:
    """Slots per visible month, loaded with one query and indexed by date."""

    def __init__(self, loader: Callable[[date, date], List[Slot]]):
        self._loader = loader
        self._months: Dict[date, Dict[date, List[Slot]]] = {}
        self.loads = 0

    def get(self, month: date) -> Dict[date, List[Slot]]:
        key = month_start(month)
        cached = self._months.get(key)
        if cached is None:
            slots = self._loader(key, month_end(key))
            self.loads += 1
            cached = dict(group_slots_by_date(slots))
            self._months[key] = cached
        return cached

    def is_loaded(self, month: date) -> bool:
        return month_start(month) in self._months

    def invalidate(self, month: date) -> None:
        self._months.pop(month_start(month), None)

    def clear(self) -> None:
        self._months.clear()


@dataclass(frozen=True)
class CommitTicket:
    generation: int
    sequence: int
    booking_date: date
    start_time: time


class BookingWorkflow:
    """
    Date/time/confirm wizard for a single student and course.

    The workflow never retries a failed commit; the error is kept in
    ``last_error`` and re-raised to the caller. Errors outside the domain
    taxonomy leave the workflow in CONFIRMING like any business failure.
    """

    def __init__(
        self,
        coordinator: BookingCoordinator,
        slot_source: SlotSource,
        student_id: str,
        course_id: str,
        instructor_id: Optional[str] = None,
        today: Optional[date] = None,
    ):
        self.coordinator = coordinator
        self.student_id = student_id
        self.course_id = course_id
        self.instructor_id = instructor_id
        self.cache = MonthSlotCache(
            lambda start, end: slot_source(course_id, instructor_id, start, end)
        )
        self._initial_month = month_start(today or date.today())

        self.state = WorkflowState.SELECTING_DATE
        self.visible_month = self._initial_month
        self.selected_date: Optional[date] = None
        self.selected_time: Optional[time] = None
        self.booking: Optional[Booking] = None
        self.last_error: Optional[Exception] = None

        self._generation = 0
        self._sequence = 0
        self._pending: Optional[CommitTicket] = None

    # Transition table

    def _transition(self, action: WorkflowAction) -> WorkflowState:
        target = TRANSITIONS.get((self.state, action))
        if target is None:
            raise InvalidTransitionException(self.state.value, action.value)
        return target

    def _reject(self, action: WorkflowAction, reason: str) -> None:
        raise InvalidTransitionException(self.state.value, action.value, reason)

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    # Month navigation

    def month_slots(self) -> Dict[date, List[Slot]]:
        """Slots of the visible month by date; loads the month on first use."""
        return self.cache.get(self.visible_month)

    def available_dates(self) -> List[date]:
        return sorted(day for day, slots in self.month_slots().items() if slots)

    def available_times(self) -> List[time]:
        if self.selected_date is None:
            return []
        slots = self.cache.get(self.selected_date).get(self.selected_date, [])
        return [slot.start_time for slot in slots]

    def show_month(self, month: date) -> None:
        self.state = self._transition(WorkflowAction.SHOW_MONTH)
        self.cache.invalidate(self.visible_month)
        self.visible_month = month_start(month)
        self.cache.invalidate(self.visible_month)

    def next_month(self) -> None:
        self.show_month(shift_month(self.visible_month, 1))

    def previous_month(self) -> None:
        self.show_month(shift_month(self.visible_month, -1))

    # Selection

    def select_date(self, day: date) -> None:
        self._transition(WorkflowAction.SELECT_DATE)
        if month_start(day) != self.visible_month or not self.month_slots().get(day):
            self._reject(WorkflowAction.SELECT_DATE, f"no slots on {day.isoformat()}")
        self.state = WorkflowState.SELECTING_TIME
        self.selected_date = day
        self.selected_time = None

    def select_time(self, start_time: time) -> None:
        self._transition(WorkflowAction.SELECT_TIME)
        requested = time(start_time.hour, start_time.minute)
        if requested not in self.available_times():
            self._reject(
                WorkflowAction.SELECT_TIME, f"{requested.strftime('%H:%M')} is not offered"
            )
        self.state = WorkflowState.CONFIRMING
        self.selected_time = requested

    def back(self) -> None:
        target = self._transition(WorkflowAction.BACK)
        self._generation += 1
        self._pending = None
        if target == WorkflowState.SELECTING_DATE:
            self.selected_date = None
        self.selected_time = None
        self.state = target

    def reset(self) -> None:
        self._generation += 1
        self._pending = None
        self.state = WorkflowState.SELECTING_DATE
        self.visible_month = self._initial_month
        self.selected_date = None
        self.selected_time = None
        self.booking = None
        self.last_error = None

    def close(self) -> None:
        self.reset()
        self.cache.clear()

    # Commit

    def begin_confirm(self) -> CommitTicket:
        """Open the single outstanding commit for the current selection."""
        self._transition(WorkflowAction.CONFIRM)
        if self._pending is not None:
            self._reject(WorkflowAction.CONFIRM, "a commit is already pending")
        assert self.selected_date is not None and self.selected_time is not None

        self._sequence += 1
        self._pending = CommitTicket(
            generation=self._generation,
            sequence=self._sequence,
            booking_date=self.selected_date,
            start_time=self.selected_time,
        )
        self.last_error = None
        return self._pending

    def resolve_confirm(
        self,
        ticket: CommitTicket,
        booking: Optional[Booking] = None,
        error: Optional[Exception] = None,
    ) -> bool:
        """
        Apply a commit response.

        Returns:
            False when the ticket is stale and the response was discarded
        """
        if ticket != self._pending or ticket.generation != self._generation:
            logger.info(
                "Discarding stale booking response",
                extra={"course_id": self.course_id, "sequence": ticket.sequence},
            )
            return False
        self._pending = None

        if error is None:
            self.booking = booking
            self.state = WorkflowState.COMMITTED
            self.cache.invalidate(ticket.booking_date)
            return True

        self.last_error = error
        if isinstance(error, SlotNoLongerAvailableException):
            self.selected_time = None
            self.cache.invalidate(ticket.booking_date)
            self.state = WorkflowState.SELECTING_TIME
        elif isinstance(error, FATAL_ERRORS):
            self.state = WorkflowState.FAILED
        else:
            self.state = WorkflowState.CONFIRMING
        return True

    def confirm(self) -> Booking:
        """
        Reserve the selected slot.

        Raises:
            InvalidTransitionException: not in CONFIRMING or already pending
            Exception: the coordinator's error, after the state change
        """
        ticket = self.begin_confirm()
        try:
            booking = self.coordinator.reserve_slot(
                self.student_id, self.course_id, ticket.booking_date, ticket.start_time
            )
        except Exception as e:
            self.resolve_confirm(ticket, error=e)
            raise
        self.resolve_confirm(ticket, booking=booking)
        return booking

    async def confirm_async(self) -> Optional[Booking]:
        """
        Reserve the selected slot in a worker thread.

        Returns None when the session moved on before the response arrived.
        """
        ticket = self.begin_confirm()
        try:
            booking = await asyncio.to_thread(
                self.coordinator.reserve_slot,
                self.student_id,
                self.course_id,
                ticket.booking_date,
                ticket.start_time,
            )
        except Exception as e:
            if self.resolve_confirm(ticket, error=e):
                raise
            return None
        if not self.resolve_confirm(ticket, booking=booking):
            return None
        return booking

