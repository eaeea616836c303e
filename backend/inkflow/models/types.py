# backend/inkflow/models/types.py
"""
Custom SQLAlchemy column types.

``BookingStatusType`` is the only place where the canonical ``BookingStatus``
enum is translated to and from its persisted upper-case code.
"""

from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import String, TypeDecorator

from inkflow.core.enums import BookingStatus

if TYPE_CHECKING:
    from sqlalchemy.sql.type_api import TypeDecorator as _TypeDecorator

    TypeDecoratorProtocol = _TypeDecorator[Any]
else:
    TypeDecoratorProtocol = TypeDecorator


BOOKING_STATUS_CODES = {status: status.value.upper() for status in BookingStatus}
ACTIVE_STATUS_CODES = ("PENDING_PAYMENT", "CONFIRMED")


class BookingStatusType(TypeDecoratorProtocol):
    """Persist ``BookingStatus`` by member name, e.g. ``PENDING_PAYMENT``."""

    impl = String(20)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[str]:
        if value is None:
            return None
        return BOOKING_STATUS_CODES[BookingStatus(value)]

    def process_result_value(self, value: Any, dialect: Any) -> Optional[BookingStatus]:
        if value is None:
            return None
        return BookingStatus(str(value).lower())
