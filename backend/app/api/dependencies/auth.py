# backend/app/api/dependencies/auth.py
"""
Caller identity dependency.

Authentication happens upstream; the authenticated user id arrives in the
X-User-Id header. Requests without a well-formed id are rejected with 401.
"""

import logging
from typing import Optional

from fastapi import Header

from ...core.constants import USER_ID_HEADER
from ...core.exceptions import UnauthorizedException
from ...core.ulid_helper import is_valid_ulid

logger = logging.getLogger(__name__)


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER),
) -> str:
    """
    Return the caller's user id.

    Raises:
        HTTPException: 401 when the header is missing or malformed
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise UnauthorizedException(
            f"Missing {USER_ID_HEADER} header", code="MISSING_IDENTITY"
        ).to_http_exception()
    if not is_valid_ulid(user_id):
        logger.info("Rejected malformed caller id", extra={"header": USER_ID_HEADER})
        raise UnauthorizedException(
            f"Malformed {USER_ID_HEADER} header", code="INVALID_IDENTITY"
        ).to_http_exception()
    return user_id
