"""
Watched date handling.

Letterboxd exports dates as plain ``YYYY-MM-DD`` strings while Trakt
returns full ISO-8601 timestamps. Both sides are compared on the UTC
calendar day.
"""

from datetime import date, datetime, timezone

# Tried in order after ISO-8601
FALLBACK_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


class WatchedDateError(ValueError):
    """Raised for a watched date that cannot be parsed."""

    def __init__(self, value: str):
        super().__init__(f"Unparseable watched date: {value!r}")
        self.value = value


def parse_watched_date(value: str) -> datetime:
    """
    Parse a watched date into an aware UTC datetime.

    Date-only input maps to midnight UTC; naive timestamps are taken as UTC.

    Args:
        value: Date or timestamp text

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        WatchedDateError: If the value matches no known format
    """
    text = (value or "").strip()
    if not text:
        raise WatchedDateError(value)

    parsed = None
    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = datetime.fromisoformat(iso_text)
    except ValueError:
        for fmt in FALLBACK_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        raise WatchedDateError(value)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_day(value: str) -> date:
    """Calendar day (UTC) of a date or timestamp string."""
    return parse_watched_date(value).date()


def to_trakt_timestamp(value: str) -> str:
    """
    Expand a watched date into the timestamp format Trakt accepts.

    >>> to_trakt_timestamp("2023-01-01")
    '2023-01-01T00:00:00.000Z'
    """
    parsed = parse_watched_date(value)
    return "{}.{:03d}Z".format(
        parsed.strftime("%Y-%m-%dT%H:%M:%S"),
        parsed.microsecond // 1000,
    )

