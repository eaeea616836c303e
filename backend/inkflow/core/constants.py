"""Application-wide constants for the InkFlow reservation engine."""

from __future__ import annotations

BRAND_NAME = "InkFlow"

API_TITLE = f"{BRAND_NAME} Reservation API"
API_VERSION = "1.0.0"
API_DESCRIPTION = "Slot availability, reservations and deposit/balance payments for tattoo studios."

# Booking duration constraints
MIN_BOOKING_DURATION = 30  # minutes
MAX_BOOKING_DURATION = 480  # minutes (8 hours)

# Pricing constraints (EUR)
MAX_BOOKING_PRICE = 10000

# Text constraints
MAX_DESCRIPTION_LENGTH = 2000
MAX_ZONE_LENGTH = 100
MAX_SIZE_LENGTH = 50
MAX_STYLE_LENGTH = 100
MAX_NOTES_LENGTH = 1000
MAX_NAME_LENGTH = 120
MAX_PHONE_LENGTH = 30
MAX_REFERENCE_PHOTOS = 10
MAX_URL_LENGTH = 2048
MAX_REASON_LENGTH = 255

# Prep/cleanup defaults (minutes) per booking kind, used when a provider has no override
DEFAULT_PREP_CLEANUP_BY_KIND = {
    "consultation": (5, 5),
    "session": (15, 15),
    "retouch": (10, 10),
}
DEFAULT_BUFFER_MINUTES = 0
DEFAULT_SLOT_INTERVAL_MINUTES = 30

# Deposit requested when a booking does not name one (percent of price)
DEFAULT_DEPOSIT_PERCENTAGE = 30

# Reminder windows
REMINDER_48H_WINDOW_HOURS = 48
REMINDER_24H_WINDOW_HOURS = 24

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"
