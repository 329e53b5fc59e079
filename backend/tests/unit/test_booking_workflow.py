"""
Unit tests for the booking workflow state machine and its month cache.
"""

from datetime import date, time
from unittest.mock import MagicMock

import pytest

from app.core.exceptions import (
    InsufficientCreditsException,
    InvalidTransitionException,
    NotFoundException,
    SlotNoLongerAvailableException,
    TransientFailureException,
)
from app.services.booking_workflow import (
    BookingWorkflow,
    MonthSlotCache,
    WorkflowState,
    month_end,
    shift_month,
)
from app.services.slot_engine import Slot

COURSE_ID = "01HF4G12ABCDEF3456789XYZAB"
STUDENT_ID = "01HF4G12ABCDEF3456789XYZAC"
DEC_23 = date(2024, 12, 23)
DEC_30 = date(2024, 12, 30)


class FakeSlotSource:
    """Records every month query and serves a fixed slot list."""

    def __init__(self, slots):
        self.slots = list(slots)
        self.calls = []

    def __call__(self, course_id, instructor_id, start_date, end_date):
        self.calls.append((course_id, instructor_id, start_date, end_date))
        return [s for s in self.slots if start_date <= s.date <= end_date]


@pytest.fixture
def slot_source():
    return FakeSlotSource(
        [
            Slot(DEC_23, time(9), time(10)),
            Slot(DEC_23, time(14), time(15)),
            Slot(DEC_30, time(9), time(10)),
            Slot(date(2025, 1, 6), time(9), time(10)),
        ]
    )


@pytest.fixture
def coordinator():
    mock = MagicMock()
    mock.reserve_slot.return_value = MagicMock(id="booking-1", booking_date=DEC_23)
    return mock


@pytest.fixture
def workflow(coordinator, slot_source):
    return BookingWorkflow(
        coordinator, slot_source, STUDENT_ID, COURSE_ID, today=date(2024, 12, 16)
    )


def confirming(workflow, day=DEC_23, start=time(14)):
    workflow.select_date(day)
    workflow.select_time(start)
    return workflow


class TestMonthHelpers:
    def test_month_end_handles_leap_years(self):
        assert month_end(date(2024, 2, 10)) == date(2024, 2, 29)
        assert month_end(date(2025, 2, 10)) == date(2025, 2, 28)

    def test_shift_month_wraps_years(self):
        assert shift_month(date(2024, 12, 1), 1) == date(2025, 1, 1)
        assert shift_month(date(2025, 1, 1), -1) == date(2024, 12, 1)


class TestMonthSlotCache:
    def test_one_query_per_month(self, slot_source):
        cache = MonthSlotCache(lambda start, end: slot_source(COURSE_ID, None, start, end))

        first = cache.get(DEC_23)
        second = cache.get(date(2024, 12, 2))

        assert first is second
        assert slot_source.calls == [(COURSE_ID, None, date(2024, 12, 1), date(2024, 12, 31))]
        assert sorted(first) == [DEC_23, DEC_30]

    def test_invalidate_forces_reload(self, slot_source):
        cache = MonthSlotCache(lambda start, end: slot_source(COURSE_ID, None, start, end))
        cache.get(DEC_23)
        cache.invalidate(DEC_30)
        assert not cache.is_loaded(DEC_23)
        cache.get(DEC_23)
        assert cache.loads == 2


class TestSelection:
    def test_initial_state(self, workflow):
        assert workflow.state == WorkflowState.SELECTING_DATE
        assert workflow.visible_month == date(2024, 12, 1)
        assert workflow.available_dates() == [DEC_23, DEC_30]

    def test_select_date_then_time(self, workflow):
        workflow.select_date(DEC_23)
        assert workflow.state == WorkflowState.SELECTING_TIME
        assert workflow.available_times() == [time(9), time(14)]

        workflow.select_time(time(14))
        assert workflow.state == WorkflowState.CONFIRMING
        assert (workflow.selected_date, workflow.selected_time) == (DEC_23, time(14))

    def test_select_date_without_slots_is_rejected(self, workflow):
        with pytest.raises(InvalidTransitionException):
            workflow.select_date(date(2024, 12, 24))
        assert workflow.state == WorkflowState.SELECTING_DATE

    def test_select_date_outside_visible_month_is_rejected(self, workflow):
        with pytest.raises(InvalidTransitionException):
            workflow.select_date(date(2025, 1, 6))

    def test_select_time_not_offered_is_rejected(self, workflow):
        workflow.select_date(DEC_23)
        with pytest.raises(InvalidTransitionException):
            workflow.select_time(time(10))
        assert workflow.state == WorkflowState.SELECTING_TIME

    def test_select_time_requires_selecting_time(self, workflow):
        with pytest.raises(InvalidTransitionException) as exc_info:
            workflow.select_time(time(9))
        assert exc_info.value.details == {"state": "SELECTING_DATE", "action": "select_time"}

    def test_back_steps_clear_selections(self, workflow):
        confirming(workflow)
        workflow.back()
        assert workflow.state == WorkflowState.SELECTING_TIME
        assert workflow.selected_time is None
        assert workflow.selected_date == DEC_23

        workflow.back()
        assert workflow.state == WorkflowState.SELECTING_DATE
        assert workflow.selected_date is None

    def test_back_from_selecting_date_is_illegal(self, workflow):
        with pytest.raises(InvalidTransitionException):
            workflow.back()


class TestMonthNavigation:
    def test_whole_month_loaded_once(self, workflow, slot_source):
        workflow.available_dates()
        workflow.select_date(DEC_23)
        workflow.available_times()
        assert len(slot_source.calls) == 1

    def test_next_month_loads_new_month(self, workflow, slot_source):
        workflow.available_dates()
        workflow.next_month()

        assert workflow.visible_month == date(2025, 1, 1)
        assert workflow.available_dates() == [date(2025, 1, 6)]
        assert slot_source.calls[-1][2:] == (date(2025, 1, 1), date(2025, 1, 31))
        assert not workflow.cache.is_loaded(date(2024, 12, 1))

    def test_previous_month_reloads(self, workflow, slot_source):
        workflow.available_dates()
        workflow.previous_month()
        workflow.next_month()
        workflow.available_dates()
        assert len(slot_source.calls) == 2

    def test_show_month_only_while_selecting_date(self, workflow):
        workflow.select_date(DEC_23)
        with pytest.raises(InvalidTransitionException):
            workflow.show_month(date(2025, 1, 1))


class TestConfirm:
    def test_success_commits_and_invalidates_month(self, workflow, coordinator):
        confirming(workflow)
        booking = workflow.confirm()

        coordinator.reserve_slot.assert_called_once_with(STUDENT_ID, COURSE_ID, DEC_23, time(14))
        assert booking is coordinator.reserve_slot.return_value
        assert workflow.state == WorkflowState.COMMITTED
        assert workflow.booking is booking
        assert not workflow.cache.is_loaded(DEC_23)

    def test_slot_taken_returns_to_time_selection(self, workflow, coordinator):
        coordinator.reserve_slot.side_effect = SlotNoLongerAvailableException()
        confirming(workflow)

        with pytest.raises(SlotNoLongerAvailableException):
            workflow.confirm()

        assert workflow.state == WorkflowState.SELECTING_TIME
        assert workflow.selected_time is None
        assert workflow.selected_date == DEC_23
        assert not workflow.cache.is_loaded(DEC_23)
        assert isinstance(workflow.last_error, SlotNoLongerAvailableException)

    @pytest.mark.parametrize(
        "error",
        [
            InsufficientCreditsException(required=1, available=0),
            TransientFailureException(),
        ],
    )
    def test_recoverable_errors_stay_confirming(self, workflow, coordinator, error):
        coordinator.reserve_slot.side_effect = error
        confirming(workflow)

        with pytest.raises(type(error)):
            workflow.confirm()

        assert workflow.state == WorkflowState.CONFIRMING
        assert workflow.selected_time == time(14)
        assert coordinator.reserve_slot.call_count == 1

    def test_withdrawn_course_fails_session(self, workflow, coordinator):
        coordinator.reserve_slot.side_effect = NotFoundException("Course not found")
        confirming(workflow)

        with pytest.raises(NotFoundException):
            workflow.confirm()

        assert workflow.state == WorkflowState.FAILED
        with pytest.raises(InvalidTransitionException):
            workflow.back()
        workflow.reset()
        assert workflow.state == WorkflowState.SELECTING_DATE

    def test_unexpected_error_releases_pending_commit(self, workflow, coordinator):
        coordinator.reserve_slot.side_effect = [RuntimeError("driver crashed"), MagicMock(id="b2")]
        confirming(workflow)

        with pytest.raises(RuntimeError):
            workflow.confirm()

        assert workflow.state == WorkflowState.CONFIRMING
        assert not workflow.is_pending
        assert isinstance(workflow.last_error, RuntimeError)

        assert workflow.confirm().id == "b2"
        assert workflow.state == WorkflowState.COMMITTED

    def test_confirm_requires_confirming(self, workflow):
        with pytest.raises(InvalidTransitionException):
            workflow.confirm()

    def test_second_begin_while_pending_is_rejected(self, workflow):
        confirming(workflow)
        workflow.begin_confirm()
        assert workflow.is_pending
        with pytest.raises(InvalidTransitionException):
            workflow.begin_confirm()

    def test_stale_response_after_reset_is_discarded(self, workflow):
        confirming(workflow)
        ticket = workflow.begin_confirm()
        workflow.reset()

        applied = workflow.resolve_confirm(ticket, booking=MagicMock())

        assert applied is False
        assert workflow.state == WorkflowState.SELECTING_DATE
        assert workflow.booking is None

    def test_stale_response_after_back_is_discarded(self, workflow):
        confirming(workflow)
        ticket = workflow.begin_confirm()
        workflow.back()
        workflow.select_time(time(9))

        applied = workflow.resolve_confirm(ticket, error=SlotNoLongerAvailableException())

        assert applied is False
        assert workflow.state == WorkflowState.CONFIRMING
        assert workflow.selected_time == time(9)

    def test_close_clears_cache(self, workflow, slot_source):
        confirming(workflow)
        workflow.close()
        assert workflow.state == WorkflowState.SELECTING_DATE
        assert workflow.selected_date is None
        assert not workflow.cache.is_loaded(DEC_23)


class TestConfirmAsync:
    @pytest.mark.asyncio
    async def test_async_confirm_commits(self, workflow, coordinator):
        confirming(workflow)
        booking = await workflow.confirm_async()
        assert booking is coordinator.reserve_slot.return_value
        assert workflow.state == WorkflowState.COMMITTED

    @pytest.mark.asyncio
    async def test_async_response_after_reset_is_dropped(self, workflow, coordinator):
        def reserve_then_user_resets(*args):
            workflow.reset()
            return MagicMock(id="late")

        coordinator.reserve_slot.side_effect = reserve_then_user_resets
        confirming(workflow)

        result = await workflow.confirm_async()

        assert result is None
        assert workflow.state == WorkflowState.SELECTING_DATE
        assert workflow.booking is None

    @pytest.mark.asyncio
    async def test_async_error_is_raised(self, workflow, coordinator):
        coordinator.reserve_slot.side_effect = SlotNoLongerAvailableException()
        confirming(workflow)
        with pytest.raises(SlotNoLongerAvailableException):
            await workflow.confirm_async()
        assert workflow.state == WorkflowState.SELECTING_TIME

    @pytest.mark.asyncio
    async def test_async_unexpected_error_releases_pending_commit(self, workflow, coordinator):
        coordinator.reserve_slot.side_effect = RuntimeError("driver crashed")
        confirming(workflow)
        with pytest.raises(RuntimeError):
            await workflow.confirm_async()
        assert workflow.state == WorkflowState.CONFIRMING
        assert not workflow.is_pending
