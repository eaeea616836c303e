# backend/inkflow/repositories/provider_repository.py
"""
Provider Repository for the InkFlow reservation engine.

Handles provider lookups, the per-provider row lock taken by booking
creation, and the working-hour / absence queries used by slot computation.
"""

from datetime import date
import logging
from typing import Dict, List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from ..core.exceptions import RepositoryException
from ..database.session_utils import supports_row_locks
from ..models.availability import Absence, WorkingHour
from ..models.provider import Provider
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ProviderRepository(BaseRepository[Provider]):
    def __init__(self, db: Session):
        super().__init__(db, Provider)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(selectinload(Provider.working_hours))

    def lock_for_update(self, provider_id: str) -> Optional[Provider]:
        """
        Load a provider holding a row lock until the transaction ends.

        Concurrent booking attempts for the same provider serialise here.
        SQLite has no row locks; its single writer gives the same effect.
        """
        try:
            query = self.db.query(Provider).filter(Provider.id == provider_id)
            if supports_row_locks(self.db):
                query = query.with_for_update()
            return cast(Optional[Provider], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking provider {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock provider: {str(e)}") from e

    def find_by_stripe_customer_id(self, customer_id: str) -> Optional[Provider]:
        return self.find_one_by(stripe_customer_id=customer_id)

    def get_active_working_hours(self, provider_id: str, day_of_week: int) -> List[WorkingHour]:
        """Active working-hour rows for one weekday, ordered by start time."""
        query = (
            self.db.query(WorkingHour)
            .filter(
                WorkingHour.provider_id == provider_id,
                WorkingHour.day_of_week == day_of_week,
                WorkingHour.is_active.is_(True),
            )
            .order_by(WorkingHour.start_time)
        )
        return cast(List[WorkingHour], self._execute_query(query))

    def get_absences_between(
        self, provider_id: str, start_date: date, end_date: date
    ) -> Dict[date, Optional[str]]:
        """Absence dates (inclusive range) mapped to their reason."""
        query = self.db.query(Absence).filter(
            Absence.provider_id == provider_id,
            Absence.date >= start_date,
            Absence.date <= end_date,
        )
        absences = cast(List[Absence], self._execute_query(query))
        return {absence.date: absence.reason for absence in absences}
