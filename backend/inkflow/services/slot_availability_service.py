# backend/inkflow/services/slot_availability_service.py
"""
Slot availability for the InkFlow reservation engine.

Free intervals are computed from a provider's active working hours, whole-day
absences, and the expanded occupied ranges of bookings that still hold their
slot (pending payment or confirmed).

Both sides of every overlap test are expanded: an existing booking occupies
[start - prep, end + cleanup + buffer) and a candidate is tested with its own
margins applied the same way. The raw candidate [start, end) must fit inside
one working window; the margins may spill outside it.

The module-level functions are pure and carry the algorithm;
``SlotAvailabilityService`` loads the inputs and applies them.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BookingKind
from ..core.exceptions import EntityNotFoundException, ValidationException
from ..core.timezone_utils import studio_now
from ..models.provider import Provider
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

TimeRange = Tuple[datetime, datetime]
Margins = Tuple[int, int, int]

REASON_OVERLAP = "overlaps an existing booking (prep/cleanup included)"
REASON_OUTSIDE_HOURS = "outside working hours"
REASON_IN_PAST = "start time is not in the future"


def absence_reason(reason: Optional[str]) -> str:
    return f"within an absence ({reason or 'Leave'})"


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    duration_minutes: int


@dataclass(frozen=True)
class SlotQueryResult:
    slots: List[Slot]
    truncated: bool = False


@dataclass(frozen=True)
class SlotCheck:
    available: bool
    reason: Optional[str] = None
    conflicting_range: Optional[TimeRange] = None


def expand_range(start: datetime, end: datetime, margins: Margins) -> TimeRange:
    """Widen a raw range by prep before and cleanup + buffer after."""
    prep, cleanup, buffer = margins
    return start - timedelta(minutes=prep), end + timedelta(minutes=cleanup + buffer)


def ranges_overlap(a: TimeRange, b: TimeRange) -> bool:
    """Half-open interval intersection."""
    return a[0] < b[1] and b[0] < a[1]


def find_conflict(candidate: TimeRange, occupied: Sequence[TimeRange]) -> Optional[TimeRange]:
    for occupied_range in occupied:
        if ranges_overlap(candidate, occupied_range):
            return occupied_range
    return None


def compute_day_slots(
    day: date,
    windows: Sequence[Tuple[time, time]],
    occupied: Sequence[TimeRange],
    duration_minutes: int,
    interval_minutes: int,
    margins: Margins,
    now: datetime,
    limit: Optional[int] = None,
) -> List[Slot]:
    """
    Walk each working window at ``interval_minutes`` granularity.

    A candidate is kept when it ends inside its window, its expanded range is
    clear of every occupied range, and it starts strictly after ``now``.
    Windows are scanned independently and results returned in time order.

    The candidate is widened by its own prep, cleanup and buffer before the
    overlap test, the same rule ``check_slot`` and booking creation apply, so
    every listed slot can actually be booked.
    """
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=interval_minutes)
    slots: List[Slot] = []
    seen = set()

    for window_start, window_end in sorted(windows):
        cursor = datetime.combine(day, window_start)
        end_of_window = datetime.combine(day, window_end)
        while cursor + duration <= end_of_window:
            candidate_end = cursor + duration
            if cursor > now and cursor not in seen:
                expanded = expand_range(cursor, candidate_end, margins)
                if find_conflict(expanded, occupied) is None:
                    slots.append(Slot(cursor, candidate_end, duration_minutes))
                    seen.add(cursor)
            cursor += step

    slots.sort(key=lambda slot: slot.start)
    if limit is not None:
        return slots[:limit]
    return slots


class SlotAvailabilityService(BaseService):
    """Read-only slot computation. Safe to call repeatedly."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.provider_repository = RepositoryFactory.create_provider_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def _get_provider(self, provider_id: str) -> Provider:
        provider = self.provider_repository.get_by_id(provider_id)
        if provider is None:
            raise EntityNotFoundException("provider", provider_id)
        return provider

    @staticmethod
    def _validate_duration(duration_minutes: int) -> None:
        if duration_minutes <= 0:
            raise ValidationException("Duration must be a positive number of minutes")

    def _interval_for(self, provider: Provider) -> int:
        return int(provider.slot_interval_minutes or settings.slot_interval_minutes)

    def _occupied_ranges(
        self,
        provider_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[TimeRange]:
        bookings = self.booking_repository.get_occupying_bookings(
            provider_id, window_start, window_end, exclude_booking_id=exclude_booking_id
        )
        return [booking.expanded_range for booking in bookings]

    def _slots_for_day(
        self,
        provider: Provider,
        day: date,
        duration_minutes: int,
        kind: BookingKind,
        now: datetime,
        absent_days: set,
        limit: Optional[int] = None,
    ) -> List[Slot]:
        if day in absent_days:
            return []
        working_hours = self.provider_repository.get_active_working_hours(
            provider.id, day.weekday()
        )
        if not working_hours:
            return []
        margins = provider.margins_for(kind)
        day_start = datetime.combine(day, time.min) - timedelta(minutes=margins[0])
        day_end = datetime.combine(day + timedelta(days=1), time.min) + timedelta(
            minutes=margins[1] + margins[2]
        )
        occupied = self._occupied_ranges(provider.id, day_start, day_end)
        windows = [(wh.start_time, wh.end_time) for wh in working_hours]
        return compute_day_slots(
            day,
            windows,
            occupied,
            duration_minutes,
            self._interval_for(provider),
            margins,
            now,
            limit=limit,
        )

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self,
        provider_id: str,
        day: date,
        duration_minutes: int,
        kind: Optional[BookingKind] = None,
        now: Optional[datetime] = None,
    ) -> List[Slot]:
        """
        Free slots for one day, capped at ``SLOT_MAX_CANDIDATES``.

        A day without active working hours, or inside an absence, yields an
        empty list.
        """
        return self.get_available_slots_for_range(
            provider_id, day, day, duration_minutes, kind=kind, now=now
        ).slots

    @BaseService.measure_operation("get_available_slots_for_range")
    def get_available_slots_for_range(
        self,
        provider_id: str,
        start_date: date,
        end_date: date,
        duration_minutes: int,
        kind: Optional[BookingKind] = None,
        now: Optional[datetime] = None,
    ) -> SlotQueryResult:
        """Per-day slots over an inclusive date range, merged in time order."""
        self._validate_duration(duration_minutes)
        if end_date < start_date:
            raise ValidationException("End date must not be before start date")
        span_days = (end_date - start_date).days + 1
        if span_days > settings.slot_max_range_days:
            raise ValidationException(
                f"Date range cannot exceed {settings.slot_max_range_days} days"
            )

        provider = self._get_provider(provider_id)
        booking_kind = BookingKind(kind) if kind else BookingKind.SESSION
        reference_now = now if now is not None else studio_now()
        cap = settings.slot_max_candidates
        absent_days = set(
            self.provider_repository.get_absences_between(provider.id, start_date, end_date)
        )

        slots: List[Slot] = []
        truncated = False
        day = start_date
        while day <= end_date:
            remaining = cap - len(slots)
            # One extra candidate tells us whether the cap cut anything off.
            day_slots = self._slots_for_day(
                provider,
                day,
                duration_minutes,
                booking_kind,
                reference_now,
                absent_days,
                limit=remaining + 1,
            )
            if len(day_slots) > remaining:
                slots.extend(day_slots[:remaining])
                truncated = True
                break
            slots.extend(day_slots)
            day += timedelta(days=1)

        if truncated:
            self.logger.info(
                "Slot listing truncated",
                extra={"provider_id": provider_id, "cap": cap, "start_date": str(start_date)},
            )
        return SlotQueryResult(slots=slots, truncated=truncated)

    def check_slot(
        self,
        provider: Provider,
        start: datetime,
        end: datetime,
        kind: BookingKind,
        now: Optional[datetime] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> SlotCheck:
        """
        Check one requested range.

        Checks run in order: start in the future, expanded overlap with an
        occupied range, absence on the day, containment in a working window.
        """
        reference_now = now if now is not None else studio_now()
        if start <= reference_now:
            return SlotCheck(False, REASON_IN_PAST)

        expanded = expand_range(start, end, provider.margins_for(kind))
        occupied = self._occupied_ranges(
            provider.id, expanded[0], expanded[1], exclude_booking_id=exclude_booking_id
        )
        conflict = find_conflict(expanded, occupied)
        if conflict is not None:
            return SlotCheck(False, REASON_OVERLAP, conflict)

        absences = self.provider_repository.get_absences_between(
            provider.id, start.date(), end.date()
        )
        if absences:
            first_day = min(absences)
            return SlotCheck(False, absence_reason(absences[first_day]))

        day = start.date()
        for wh in self.provider_repository.get_active_working_hours(provider.id, day.weekday()):
            window_start = datetime.combine(day, wh.start_time)
            window_end = datetime.combine(day, wh.end_time)
            if window_start <= start and end <= window_end:
                return SlotCheck(True)
        return SlotCheck(False, REASON_OUTSIDE_HOURS)
