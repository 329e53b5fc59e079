# backend/app/services/room_access_service.py
"""
Room access hand-off for scheduled classes.

The video room itself is external; this service only decides who may
enter and derives the room name and link for a booking.
"""

from dataclasses import dataclass
import logging
from typing import Dict, Union

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotFoundException, UnauthorizedActionException
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoomAccess:
    room_name: str
    room_link: str
    is_instructor: bool
    is_student: bool

    def to_dict(self) -> Dict[str, Union[str, bool]]:
        return {
            "room_name": self.room_name,
            "room_link": self.room_link,
            "is_instructor": self.is_instructor,
            "is_student": self.is_student,
        }


class RoomAccessService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    @staticmethod
    def room_name_for(booking_id: str) -> str:
        return f"{settings.video_room_prefix}-{booking_id}"

    @BaseService.measure_operation("get_booking_access")
    def get_booking_access(self, actor_id: str, booking_id: str) -> RoomAccess:
        """
        Room details for a participant of a scheduled booking.

        Raises:
            NotFoundException: booking missing or not scheduled
            UnauthorizedActionException: actor is not a participant
        """
        booking = self.booking_repository.get_by_id(booking_id, load_relationships=False)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        if not booking.is_participant(actor_id):
            raise UnauthorizedActionException(
                "You are not a participant of this class", details={"booking_id": booking_id}
            )
        if not booking.is_scheduled:
            raise NotFoundException(
                "Class is not scheduled",
                details={"booking_id": booking_id, "status": booking.status},
            )

        room_name = self.room_name_for(booking.id)
        return RoomAccess(
            room_name=room_name,
            room_link=f"{settings.video_room_base_url.rstrip('/')}/{room_name}",
            is_instructor=booking.instructor_id == actor_id,
            is_student=booking.student_id == actor_id,
        )
