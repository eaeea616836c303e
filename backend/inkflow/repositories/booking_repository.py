# backend/inkflow/repositories/booking_repository.py
"""
Booking Repository for the InkFlow reservation engine.

This repository handles:
- Booking CRUD operations
- Expanded-range overlap queries for slot computation and conflict checks
- Reminder and review-request selection for scheduled jobs
"""

from datetime import datetime
import logging
from typing import Any, List, Optional, cast

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.enums import ACTIVE_BOOKING_STATUSES, BookingStatus
from ..core.exceptions import RepositoryException
from ..database.session_utils import supports_row_locks
from ..models.booking import Booking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Booking.provider), joinedload(Booking.client))

    def create(self, **kwargs: Any) -> Booking:
        """Create a booking, exposing integrity errors for conflict handling."""
        try:
            return super().create(**kwargs)
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise exc.__cause__
            raise

    def lock_for_update(self, booking_id: str) -> Optional[Booking]:
        """Load a booking holding a row lock (no-op on SQLite)."""
        try:
            query = self.db.query(Booking).filter(Booking.id == booking_id)
            if supports_row_locks(self.db):
                query = query.with_for_update()
            return cast(Optional[Booking], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock booking: {str(e)}") from e

    def get_occupying_bookings(
        self,
        provider_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Bookings still holding their slot whose expanded range intersects the window.

        Ordered by expanded start.
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.provider_id == provider_id,
                Booking.status.in_(list(ACTIVE_BOOKING_STATUSES)),
                Booking.occupied_start < window_end,
                Booking.occupied_end > window_start,
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return cast(List[Booking], query.order_by(Booking.occupied_start).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting occupying bookings: {str(e)}")
            raise RepositoryException(f"Failed to get occupying bookings: {str(e)}") from e

    def get_confirmed_starting_between(
        self, start: datetime, end: datetime
    ) -> List[Booking]:
        query = (
            self._apply_eager_loading(self._build_query())
            .filter(
                Booking.status == BookingStatus.CONFIRMED,
                Booking.start_time >= start,
                Booking.start_time < end,
            )
            .order_by(Booking.start_time)
        )
        return cast(List[Booking], self._execute_query(query))
