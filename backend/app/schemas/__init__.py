# backend/app/schemas/__init__.py
"""
Pydantic schemas for the ClassBook API.
"""

from .availability import (
    AvailableSlotsResponse,
    BlockDateCreate,
    BlockedDateResponse,
    InstructorAvailabilityResponse,
    PolicyResponse,
    PolicyUpdate,
    RecurringRuleCreate,
    RecurringRuleResponse,
    SlotResponse,
    SpecificSlotCreate,
    SpecificSlotResponse,
)
from .base_responses import HealthCheckResponse, PaginatedResponse, create_paginated_response
from .booking import (
    BookingAccessResponse,
    BookingCancel,
    BookingCreate,
    BookingResponse,
    CancellationResponse,
)
from .credit import CreditBalanceResponse, CreditEntryResponse, CreditSummaryResponse

__all__ = [
    "AvailableSlotsResponse",
    "BlockDateCreate",
    "BlockedDateResponse",
    "BookingAccessResponse",
    "BookingCancel",
    "BookingCreate",
    "BookingResponse",
    "CancellationResponse",
    "CreditBalanceResponse",
    "CreditEntryResponse",
    "CreditSummaryResponse",
    "HealthCheckResponse",
    "InstructorAvailabilityResponse",
    "PaginatedResponse",
    "PolicyResponse",
    "PolicyUpdate",
    "RecurringRuleCreate",
    "RecurringRuleResponse",
    "SlotResponse",
    "SpecificSlotCreate",
    "SpecificSlotResponse",
    "create_paginated_response",
]
