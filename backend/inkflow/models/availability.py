# backend/inkflow/models/availability.py
"""
Availability models: recurring weekly working hours and whole-day absences.

``day_of_week`` follows ``date.weekday()``: 0 is Monday, 6 is Sunday. Several
rows for the same day describe a split shift.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class WorkingHour(Base):
    """A recurring weekly interval during which a provider accepts bookings."""

    __tablename__ = "working_hours"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(
        String(26), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    provider = relationship("Provider", back_populates="working_hours")

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_working_hours_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_working_hours_time_order"),
        Index("idx_working_hours_provider_day", "provider_id", "day_of_week"),
    )

    def __repr__(self) -> str:
        return f"<WorkingHour day={self.day_of_week} {self.start_time}-{self.end_time}>"


class Absence(Base):
    """Provider leave: blocks the entire calendar day."""

    __tablename__ = "absences"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(
        String(26), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False
    )
    date = Column(Date, nullable=False, index=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    provider = relationship("Provider", back_populates="absences")

    __table_args__ = (
        UniqueConstraint("provider_id", "date", name="unique_provider_absence_date"),
        Index("idx_absences_provider_date", "provider_id", "date"),
    )

    def __repr__(self) -> str:
        return f"<Absence {self.date} - {self.reason or 'Leave'}>"
