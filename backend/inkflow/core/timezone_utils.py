"""
Timezone utilities for the InkFlow reservation engine.

All scheduling happens in a single studio timezone. Datetimes are stored as
naive local wall-clock values in that zone.
"""

from datetime import date, datetime
from typing import Optional

import pytz

from .config import settings


def get_studio_timezone(name: Optional[str] = None) -> pytz.BaseTzInfo:
    """
    Get the studio timezone.

    Args:
        name: Optional override (used by tests); defaults to STUDIO_TIMEZONE

    Returns:
        Studio timezone as pytz timezone object
    """
    return pytz.timezone(name or settings.studio_timezone)


def studio_now() -> datetime:
    """Current naive wall-clock datetime in the studio timezone."""
    return datetime.now(get_studio_timezone()).replace(tzinfo=None, microsecond=0)


def studio_today() -> date:
    """Get 'today' in the studio timezone."""
    return datetime.now(get_studio_timezone()).date()


def to_studio_naive(dt: datetime) -> datetime:
    """
    Normalise a datetime to naive studio wall-clock time.

    Aware datetimes are converted into the studio zone; naive datetimes are
    assumed to already be studio-local.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(get_studio_timezone()).replace(tzinfo=None)


def studio_naive_to_utc(dt: datetime) -> datetime:
    """
    Convert a naive studio-local datetime to an aware UTC datetime.

    Args:
        dt: Naive wall-clock datetime in the studio zone

    Returns:
        Aware UTC datetime
    """
    localized = get_studio_timezone().localize(dt) if dt.tzinfo is None else dt
    return localized.astimezone(pytz.UTC)


def utc_timestamp_to_studio(epoch_seconds: int) -> datetime:
    """Convert a Unix timestamp (as sent by Stripe) to naive studio time."""
    return datetime.fromtimestamp(epoch_seconds, tz=pytz.UTC).astimezone(
        get_studio_timezone()
    ).replace(tzinfo=None)
