# backend/inkflow/services/calendar_export.py
"""RFC 5545 iCalendar rendering for booking exports."""

from datetime import datetime
from typing import Iterable, List, Optional

from ..core.constants import BRAND_NAME
from ..core.timezone_utils import studio_naive_to_utc
from ..models.booking import Booking

CRLF = "\r\n"


def escape_ical_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return (
        text.replace("\\", "\\\\").replace(";", "\\;").replace(",", "\\,").replace("\n", "\\n")
    )


def format_ical_datetime(value: datetime) -> str:
    """Studio wall-clock time to ``YYYYMMDDTHHMMSSZ``."""
    return studio_naive_to_utc(value).strftime("%Y%m%dT%H%M%SZ")


def booking_vevent(booking: Booking) -> List[str]:
    studio = booking.provider.display_name if booking.provider else BRAND_NAME
    lines = [
        "BEGIN:VEVENT",
        f"UID:inkflow-{booking.id}@inkflow.app",
        f"DTSTAMP:{format_ical_datetime(booking.updated_at or booking.created_at)}",
        f"DTSTART:{format_ical_datetime(booking.start_time)}",
        f"DTEND:{format_ical_datetime(booking.end_time)}",
        f"SUMMARY:{escape_ical_text(f'Tatouage - {studio}')}",
    ]
    description = escape_ical_text(booking.description)
    if description:
        lines.append(f"DESCRIPTION:{description}")
    if booking.provider and booking.provider.studio_name:
        lines.append(f"LOCATION:{escape_ical_text(booking.provider.studio_name)}")
    lines.append("END:VEVENT")
    return lines


def render_calendar(bookings: Iterable[Booking], calendar_name: str = BRAND_NAME) -> str:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//InkFlow//Calendar//FR",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_ical_text(calendar_name)}",
    ]
    for booking in bookings:
        lines.extend(booking_vevent(booking))
    lines.append("END:VCALENDAR")
    return CRLF.join(lines) + CRLF
