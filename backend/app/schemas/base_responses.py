"""
Base response schemas shared by list and status endpoints.
"""

from datetime import datetime, timezone
from typing import Dict, Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..core.constants import MAX_PAGE_SIZE

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaginatedResponse(BaseModel, Generic[T]):
    """Standard paginated response for list endpoints."""

    items: List[T] = Field(description="Items on this page")
    total: int = Field(description="Total number of items")
    page: int = Field(default=1, description="Current page number", ge=1)
    per_page: int = Field(default=20, description="Items per page", ge=1, le=MAX_PAGE_SIZE)
    has_next: bool = Field(description="Whether there's a next page")
    has_prev: bool = Field(description="Whether there's a previous page")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": ["..."],
                "total": 42,
                "page": 1,
                "per_page": 20,
                "has_next": True,
                "has_prev": False,
            }
        }
    )


class HealthCheckResponse(BaseModel):
    """Liveness plus per-component checks."""

    status: str = Field(
        description="Service health status", pattern="^(healthy|degraded|unhealthy)$"
    )
    service: str = Field(default="ClassBook API", description="Service name")
    version: str = Field(description="API version")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    checks: Dict[str, bool] = Field(description="Individual component health checks")


def create_paginated_response(
    items: List[T], total: int, page: int = 1, per_page: int = 20
) -> PaginatedResponse[T]:
    """Wrap a page of items with its pagination metadata."""
    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        per_page=per_page,
        has_next=page * per_page < total,
        has_prev=page > 1,
    )
