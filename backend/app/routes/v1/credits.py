# backend/app/routes/v1/credits.py
"""
Credit ledger routes - API v1

Read-only views of the caller's credit ledger under /api/v1/credits.

Endpoints:
    GET / - Ledger entries, newest first
    GET /balance - Current balance
    GET /summary - Balance with earned, spent and refunded totals
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import get_credit_service, get_current_user_id
from ...core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...schemas.base_responses import PaginatedResponse, create_paginated_response
from ...schemas.credit import CreditBalanceResponse, CreditEntryResponse, CreditSummaryResponse
from ...services.credit_service import CreditService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["credits-v1"])


@router.get("", response_model=PaginatedResponse[CreditEntryResponse])
async def get_credit_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user_id: str = Depends(get_current_user_id),
    credit_service: CreditService = Depends(get_credit_service),
) -> PaginatedResponse[CreditEntryResponse]:
    try:
        items, total = await asyncio.to_thread(
            credit_service.get_history, current_user_id, page, per_page
        )
    except DomainException as e:
        handle_domain_exception(e)
    return create_paginated_response(
        [CreditEntryResponse.model_validate(entry) for entry in items], total, page, per_page
    )


@router.get("/balance", response_model=CreditBalanceResponse)
async def get_credit_balance(
    current_user_id: str = Depends(get_current_user_id),
    credit_service: CreditService = Depends(get_credit_service),
) -> CreditBalanceResponse:
    try:
        balance = await asyncio.to_thread(credit_service.get_balance, current_user_id)
    except DomainException as e:
        handle_domain_exception(e)
    return CreditBalanceResponse(user_id=current_user_id, balance=balance)


@router.get("/summary", response_model=CreditSummaryResponse)
async def get_credit_summary(
    current_user_id: str = Depends(get_current_user_id),
    credit_service: CreditService = Depends(get_credit_service),
) -> CreditSummaryResponse:
    try:
        summary = await asyncio.to_thread(credit_service.get_summary, current_user_id)
    except DomainException as e:
        handle_domain_exception(e)
    return CreditSummaryResponse(user_id=current_user_id, **summary)
