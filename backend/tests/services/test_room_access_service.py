"""
Service tests for video room access.
"""

from datetime import time

import pytest

from app.core.config import settings
from app.core.exceptions import NotFoundException, UnauthorizedActionException
from app.core.ulid_helper import generate_ulid
from app.services.booking_service import BookingService
from app.services.room_access_service import RoomAccessService


@pytest.fixture
def booking(db, clock, course, monday_rule, funded_student, target_monday):
    return BookingService(db, clock=clock).reserve_slot(
        funded_student, course.id, target_monday, time(14)
    )


@pytest.fixture
def rooms(db):
    return RoomAccessService(db)


def test_student_gets_room_link(rooms, booking, funded_student):
    access = rooms.get_booking_access(funded_student, booking.id)

    assert access.room_name == f"{settings.video_room_prefix}-{booking.id}"
    assert access.room_link.endswith(f"/{access.room_name}")
    assert access.is_student and not access.is_instructor


def test_instructor_is_flagged(rooms, booking, instructor_id):
    access = rooms.get_booking_access(instructor_id, booking.id)
    assert access.is_instructor
    assert access.to_dict()["is_student"] is False


def test_outsider_is_rejected(rooms, booking, other_student_id):
    with pytest.raises(UnauthorizedActionException):
        rooms.get_booking_access(other_student_id, booking.id)


def test_unknown_booking(rooms, student_id):
    with pytest.raises(NotFoundException):
        rooms.get_booking_access(student_id, generate_ulid())


def test_cancelled_booking_has_no_room(db, clock, rooms, booking, funded_student):
    BookingService(db, clock=clock).cancel_booking(funded_student, booking.id)
    with pytest.raises(NotFoundException):
        rooms.get_booking_access(funded_student, booking.id)
