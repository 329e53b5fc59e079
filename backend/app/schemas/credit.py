# backend/app/schemas/credit.py
"""
Credit ledger schemas. Amounts are signed: spends are negative.
"""

from datetime import datetime
from typing import Optional

from .base import Credits, StandardizedModel


class CreditBalanceResponse(StandardizedModel):
    user_id: str
    balance: Credits


class CreditEntryResponse(StandardizedModel):
    id: str
    amount: Credits
    entry_type: str
    related_booking_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


class CreditSummaryResponse(StandardizedModel):
    user_id: str
    balance: Credits
    total_earned: Credits
    total_spent: Credits
    total_refunded: Credits
