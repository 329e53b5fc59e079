# backend/app/repositories/course_repository.py
"""
Course Repository for ClassBook

Read-only access to the catalog-owned course and enrollment rows the
booking engine depends on.
"""

import logging
from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..models.course import Course, CourseEnrollment
from .base_repository import BaseRepository, repository_error

logger = logging.getLogger(__name__)


class CourseRepository(BaseRepository[Course]):
    """Repository for course lookups."""

    def __init__(self, db: Session):
        super().__init__(db, Course)
        self.logger = logging.getLogger(__name__)

    def get_active_course(self, course_id: str) -> Optional[Course]:
        """Return the course when it exists and is still offered."""
        try:
            return (
                self._apply_eager_loading(self._build_query())
                .filter(Course.id == course_id, Course.is_active.is_(True))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting course {course_id}: {str(e)}")
            raise repository_error("Failed to get course", e) from e

    def get_active_courses_for_instructor(self, instructor_id: str) -> List[Course]:
        """Courses the instructor currently offers, in creation order."""
        try:
            return cast(
                List[Course],
                self._apply_eager_loading(self._build_query())
                .filter(Course.instructor_id == instructor_id, Course.is_active.is_(True))
                .order_by(Course.id)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting courses of instructor {instructor_id}: {str(e)}")
            raise repository_error("Failed to get instructor courses", e) from e

    def get_enrollment(self, course_id: str, student_id: str) -> Optional[CourseEnrollment]:
        try:
            return (
                self.db.query(CourseEnrollment)
                .filter(
                    CourseEnrollment.course_id == course_id,
                    CourseEnrollment.student_id == student_id,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting enrollment: {str(e)}")
            raise repository_error("Failed to get enrollment", e) from e

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Course.policy))
