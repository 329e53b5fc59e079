"""Application-wide constants for the ClassBook backend."""

from __future__ import annotations

BRAND_NAME = "ClassBook"
API_TITLE = f"{BRAND_NAME} API"
API_DESCRIPTION = "Class availability, slot computation and credit-backed booking reservations"
API_VERSION = "1.0.0"

DEFAULT_TIMEZONE = "America/Sao_Paulo"

# Text constraints
MAX_REASON_LENGTH = 255
MAX_TITLE_LENGTH = 200

# Query limits
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_UPCOMING_LIMIT = 5

# Attendance can be marked from this many minutes before the class start
ATTENDANCE_OPENS_MINUTES = 15

# Day of week mapping (0 = Sunday, matching the scheduling client)
DAYS_OF_WEEK = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

MINUTES_PER_DAY = 24 * 60

# Caller identity header set by the authentication gateway
USER_ID_HEADER = "X-User-Id"
