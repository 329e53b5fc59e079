# backend/app/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService.

Endpoints:
    GET / - List the caller's bookings with pagination
    POST / - Reserve an offered slot
    GET /upcoming - Next scheduled classes
    GET /history - Past and cancelled classes
    GET /calendar - The caller's bookings in one month with a status summary
    GET /{booking_id} - Booking details
    DELETE /{booking_id} - Cancel a booking, refunding per policy
    PUT /{booking_id}/complete - Mark a class as completed (instructor only)
    POST /{booking_id}/attendance - Check in to a class during its join window
    GET /{booking_id}/access - Room details for a scheduled class
"""

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from ...api.dependencies import (
    get_booking_service,
    get_current_user_id,
    get_room_access_service,
)
from ...core.constants import DEFAULT_PAGE_SIZE, DEFAULT_UPCOMING_LIMIT, MAX_PAGE_SIZE
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...models.booking import BookingStatus
from ...schemas.base_responses import PaginatedResponse, create_paginated_response
from ...schemas.booking import (
    BookingAccessResponse,
    BookingCancel,
    BookingCreate,
    BookingResponse,
    CancellationResponse,
    UserCalendarResponse,
)
from ...services.booking_service import BookingService
from ...services.room_access_service import RoomAccessService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def _booking_id_path() -> Any:
    return Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    )


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.get("", response_model=PaginatedResponse[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaginatedResponse[BookingResponse]:
    """Bookings where the caller is student or instructor."""
    try:
        items, total = await asyncio.to_thread(
            booking_service.list_bookings,
            current_user_id,
            status_filter,
            page,
            per_page,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return create_paginated_response(
        [BookingResponse.model_validate(b) for b in items], total, page, per_page
    )


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Reserve a slot for the caller.

    409 when the slot is gone, 422 on insufficient credits, 503 with
    Retry-After when the reservation could not be attempted.
    """
    try:
        booking = await asyncio.to_thread(
            booking_service.reserve_slot,
            current_user_id,
            booking_data.course_id,
            booking_data.booking_date,
            booking_data.start_time,
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/upcoming", response_model=PaginatedResponse[BookingResponse])
async def get_upcoming_bookings(
    limit: int = Query(DEFAULT_UPCOMING_LIMIT, ge=1, le=20),
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaginatedResponse[BookingResponse]:
    try:
        bookings = await asyncio.to_thread(
            booking_service.get_upcoming_bookings, current_user_id, limit
        )
    except DomainException as e:
        handle_domain_exception(e)
    items = [BookingResponse.model_validate(b) for b in bookings]
    return create_paginated_response(items, len(items), 1, limit)


@router.get("/history", response_model=PaginatedResponse[BookingResponse])
async def get_booking_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaginatedResponse[BookingResponse]:
    try:
        items, total = await asyncio.to_thread(
            booking_service.get_booking_history, current_user_id, page, per_page
        )
    except DomainException as e:
        handle_domain_exception(e)
    return create_paginated_response(
        [BookingResponse.model_validate(b) for b in items], total, page, per_page
    )


@router.get("/calendar", response_model=UserCalendarResponse)
async def get_user_calendar(
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> UserCalendarResponse:
    """The caller's bookings dated in one month, with counts per status."""
    try:
        calendar = await asyncio.to_thread(
            booking_service.get_user_calendar, current_user_id, year, month
        )
    except DomainException as e:
        handle_domain_exception(e)
    return UserCalendarResponse(
        year=calendar.year,
        month=calendar.month,
        events=[BookingResponse.model_validate(b) for b in calendar.events],
        summary=calendar.summary,
    )


# ============================================================================
# SECTION 2: Booking-specific routes
# ============================================================================


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str = _booking_id_path(),
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.get_booking_for_user, current_user_id, booking_id
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/{booking_id}", response_model=CancellationResponse)
async def cancel_booking(
    booking_id: str = _booking_id_path(),
    cancel_data: Optional[BookingCancel] = Body(None),
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> CancellationResponse:
    """Cancel a scheduled booking; either participant may cancel."""
    reason = cancel_data.reason if cancel_data else None
    try:
        result = await asyncio.to_thread(
            booking_service.cancel_booking, current_user_id, booking_id, reason
        )
    except DomainException as e:
        handle_domain_exception(e)
    return CancellationResponse(
        refunded=result.refunded,
        credits_refunded=result.credits_refunded,
        policy_basis=result.policy_basis,
        booking=BookingResponse.model_validate(result.booking),
    )


@router.put("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: str = _booking_id_path(),
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Mark a class as completed. Only the instructor can do this."""
    try:
        booking = await asyncio.to_thread(
            booking_service.complete_class, current_user_id, booking_id
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/attendance", response_model=BookingResponse)
async def mark_attendance(
    booking_id: str = _booking_id_path(),
    current_user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Check in to a class from 15 minutes before its start until its end."""
    try:
        booking = await asyncio.to_thread(
            booking_service.mark_attendance, current_user_id, booking_id
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/access", response_model=BookingAccessResponse)
async def get_booking_access(
    booking_id: str = _booking_id_path(),
    current_user_id: str = Depends(get_current_user_id),
    room_access_service: RoomAccessService = Depends(get_room_access_service),
) -> BookingAccessResponse:
    try:
        access = await asyncio.to_thread(
            room_access_service.get_booking_access, current_user_id, booking_id
        )
    except DomainException as e:
        handle_domain_exception(e)
    return BookingAccessResponse(booking_id=booking_id, **access.to_dict())
