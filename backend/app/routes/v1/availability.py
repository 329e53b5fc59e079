# backend/app/routes/v1/availability.py
"""
Availability routes - API v1

Instructor management of course availability and the public slot query,
mounted under /api/v1/availability.

Endpoints:
    GET /slots - Bookable slots of a course or an instructor in a date range (public)
    GET /instructor/{instructor_id}/calendar - Month of bookable slots (public)
    GET /instructor - Rules, overrides, blocked dates and policy of a course
    POST /recurring - Add a weekly window
    DELETE /recurring/{rule_id} - Deactivate a weekly window
    POST /specific - Add or remove time on one date
    POST /block - Block a whole date
    PUT /settings - Update the booking policy
"""

import asyncio
from datetime import date
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from ...api.dependencies import get_availability_service, get_current_user_id
from ...core.exceptions import DomainException, ValidationException
from ...errors import handle_domain_exception
from ...schemas.availability import (
    AvailableSlotsResponse,
    BlockDateCreate,
    BlockedDateResponse,
    CalendarDayResponse,
    InstructorAvailabilityResponse,
    InstructorCalendarResponse,
    PolicyResponse,
    PolicyUpdate,
    RecurringRuleCreate,
    RecurringRuleResponse,
    SlotResponse,
    SpecificSlotCreate,
    SpecificSlotResponse,
)
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


@router.get("/slots", response_model=AvailableSlotsResponse, response_model_exclude_none=True)
async def get_available_slots(
    start_date: date = Query(..., description="First date, inclusive"),
    end_date: date = Query(..., description="Last date, inclusive"),
    course_id: Optional[str] = Query(None, description="Course ULID"),
    instructor_id: Optional[str] = Query(
        None, description="Must match the course instructor; alone, spans all their courses"
    ),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailableSlotsResponse:
    """
    Bookable slots; no identity required.

    With ``course_id`` the slots of that course are returned. With only
    ``instructor_id`` the slots of every active course of the instructor
    are merged, each tagged with its course and timezone.
    """
    try:
        if course_id is None:
            if instructor_id is None:
                raise ValidationException(
                    "course_id or instructor_id is required",
                    details={"fields": ["course_id", "instructor_id"]},
                )
            return await _instructor_slots(
                availability_service, instructor_id, start_date, end_date
            )
        slots = await asyncio.to_thread(
            availability_service.get_available_slots,
            course_id,
            instructor_id,
            start_date,
            end_date,
        )
        policy = await asyncio.to_thread(availability_service.get_policy, course_id)
    except DomainException as e:
        handle_domain_exception(e)

    payloads = [slot.to_dict() for slot in slots]
    return AvailableSlotsResponse(
        course_id=course_id,
        instructor_id=instructor_id,
        start_date=start_date,
        end_date=end_date,
        timezone=policy.timezone,
        slots=[SlotResponse(**payload) for payload in payloads],
        slots_by_date=_start_times_by_date(payloads),
    )


async def _instructor_slots(
    availability_service: AvailabilityService,
    instructor_id: str,
    start_date: date,
    end_date: date,
) -> AvailableSlotsResponse:
    course_slots = await asyncio.to_thread(
        availability_service.get_instructor_slots, instructor_id, start_date, end_date
    )
    payloads = [item.to_dict() for item in course_slots]
    timezones = {item.timezone for item in course_slots}
    return AvailableSlotsResponse(
        instructor_id=instructor_id,
        start_date=start_date,
        end_date=end_date,
        timezone=timezones.pop() if len(timezones) == 1 else None,
        slots=[SlotResponse(**payload) for payload in payloads],
        slots_by_date=_start_times_by_date(payloads),
    )


def _start_times_by_date(payloads: List[Dict[str, str]]) -> Dict[str, List[str]]:
    by_date: Dict[str, List[str]] = {}
    for payload in payloads:
        times = by_date.setdefault(payload["date"], [])
        if payload["start_time"] not in times:
            times.append(payload["start_time"])
    return by_date


@router.get(
    "/instructor/{instructor_id}/calendar",
    response_model=InstructorCalendarResponse,
    response_model_exclude_none=True,
)
async def get_instructor_calendar(
    instructor_id: str = Path(..., description="Instructor ULID", pattern=ULID_PATH_PATTERN),
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> InstructorCalendarResponse:
    """Public month view of an instructor's bookable slots across their courses."""
    try:
        calendar = await asyncio.to_thread(
            availability_service.get_instructor_calendar, instructor_id, year, month
        )
    except DomainException as e:
        handle_domain_exception(e)
    return InstructorCalendarResponse(
        instructor_id=calendar.instructor_id,
        year=calendar.year,
        month=calendar.month,
        days=[
            CalendarDayResponse(
                date=day, slots=[SlotResponse(**item.to_dict()) for item in items]
            )
            for day, items in calendar.days.items()
        ],
    )


@router.get("/instructor", response_model=InstructorAvailabilityResponse)
async def get_instructor_availability(
    course_id: str = Query(..., description="Course ULID"),
    current_user_id: str = Depends(get_current_user_id),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> InstructorAvailabilityResponse:
    try:
        data = await asyncio.to_thread(
            availability_service.get_availability, current_user_id, course_id
        )
    except DomainException as e:
        handle_domain_exception(e)

    return InstructorAvailabilityResponse(
        course_id=data["course_id"],
        recurring_rules=[RecurringRuleResponse.model_validate(r) for r in data["recurring_rules"]],
        specific_slots=[SpecificSlotResponse.model_validate(s) for s in data["specific_slots"]],
        blocked_dates=[BlockedDateResponse.model_validate(b) for b in data["blocked_dates"]],
        policy=PolicyResponse(**data["policy"].to_dict()),
    )


@router.post(
    "/recurring", response_model=RecurringRuleResponse, status_code=status.HTTP_201_CREATED
)
async def add_recurring_rule(
    payload: RecurringRuleCreate,
    current_user_id: str = Depends(get_current_user_id),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> RecurringRuleResponse:
    try:
        rule = await asyncio.to_thread(
            availability_service.add_recurring_rule,
            current_user_id,
            payload.course_id,
            payload.day_of_week,
            payload.start_time,
            payload.end_time,
        )
        return RecurringRuleResponse.model_validate(rule)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/recurring/{rule_id}", response_model=RecurringRuleResponse)
async def deactivate_recurring_rule(
    rule_id: str = Path(..., description="Rule ULID", pattern=ULID_PATH_PATTERN),
    course_id: Optional[str] = Query(None, description="Optional course the rule belongs to"),
    current_user_id: str = Depends(get_current_user_id),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> RecurringRuleResponse:
    """Soft-delete; the rule stays listed as inactive in history."""
    try:
        rule = await asyncio.to_thread(
            availability_service.deactivate_recurring_rule, current_user_id, rule_id, course_id
        )
        return RecurringRuleResponse.model_validate(rule)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/specific", response_model=SpecificSlotResponse, status_code=status.HTTP_201_CREATED
)
async def add_specific_slot(
    payload: SpecificSlotCreate,
    current_user_id: str = Depends(get_current_user_id),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> SpecificSlotResponse:
    try:
        slot = await asyncio.to_thread(
            availability_service.add_specific_slot,
            current_user_id,
            payload.course_id,
            payload.date,
            payload.start_time,
            payload.end_time,
            payload.is_available,
            payload.reason,
        )
        return SpecificSlotResponse.model_validate(slot)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/block", response_model=BlockedDateResponse, status_code=status.HTTP_201_CREATED)
async def block_date(
    payload: BlockDateCreate,
    current_user_id: str = Depends(get_current_user_id),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> BlockedDateResponse:
    try:
        blocked = await asyncio.to_thread(
            availability_service.block_date,
            current_user_id,
            payload.course_id,
            payload.date,
            payload.reason,
        )
        return BlockedDateResponse.model_validate(blocked)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/settings", response_model=PolicyResponse)
async def update_policy(
    payload: PolicyUpdate,
    current_user_id: str = Depends(get_current_user_id),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> PolicyResponse:
    fields = payload.model_dump(exclude={"course_id"}, exclude_none=True)
    try:
        policy = await asyncio.to_thread(
            lambda: availability_service.update_policy(
                current_user_id, payload.course_id, **fields
            )
        )
        return PolicyResponse.model_validate(policy)
    except DomainException as e:
        handle_domain_exception(e)
