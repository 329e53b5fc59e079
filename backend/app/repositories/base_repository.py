# backend/app/repositories/base_repository.py
"""
Base Repository Pattern for ClassBook

Shared data access for the course, availability, booking and ledger
repositories. Repositories never commit: services own the unit of work
and commit or roll back through BaseService.transaction().

Constraint violations surface as IntegrityConflictException so the
booking path can tell a lost slot race from any other database failure.
"""

import logging
from typing import Any, Generic, NoReturn, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import (
    IntegrityConflictException,
    RepositoryException,
    TransientFailureException,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


def repository_error(message: str, exc: SQLAlchemyError) -> Exception:
    """
    Exception to raise for a failed query.

    Lost connections and lock timeouts are retry-eligible, so they become
    TransientFailureException; anything else is a RepositoryException.
    """
    if isinstance(exc, OperationalError):
        return TransientFailureException(details={"error_type": type(exc).__name__})
    return RepositoryException(message)


class BaseRepository(Generic[T]):
    """
    Generic repository bound to one model class.

    Attributes:
        db: SQLAlchemy session owned by the calling service
        model: Mapped model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str, load_relationships: bool = True) -> Optional[T]:
        """Fetch one row by primary key, optionally with eager loads."""
        try:
            query = self._build_query().filter(self.model.id == id)  # type: ignore[attr-defined]
            if load_relationships:
                query = self._apply_eager_loading(query)
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {self.model.__name__} {id}: {str(e)}")
            raise repository_error(f"Failed to retrieve {self.model.__name__}", e) from e

    def create(self, **kwargs: Any) -> T:
        """
        Add a row and flush it so defaults, ids and constraints apply now.

        Raises:
            IntegrityConflictException: a unique, check or foreign key constraint failed
            RepositoryException: any other database failure
        """
        entity = self.model(**kwargs)
        self.db.add(entity)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self._rollback_conflict("creating", exc)
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise repository_error(f"Failed to create {self.model.__name__}", e) from e
        return entity

    def flush(self) -> None:
        """Flush pending changes made to loaded rows."""
        try:
            self.db.flush()
        except IntegrityError as exc:
            self._rollback_conflict("flushing", exc)

    def refresh(self, instance: T) -> None:
        self.db.refresh(instance)

    # Subclass hooks

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _apply_eager_loading(self, query: Query) -> Query:
        """Override to add joinedload/selectinload options."""
        return query

    def _rollback_conflict(self, action: str, exc: IntegrityError) -> NoReturn:
        self.logger.warning(
            "Integrity error %s %s: %s",
            action,
            self.model.__name__,
            exc.orig,
            extra={"model": self.model.__name__},
        )
        self.db.rollback()
        raise IntegrityConflictException(f"Integrity constraint violated: {exc.orig}") from exc
