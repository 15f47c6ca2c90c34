import re
from datetime import datetime, date, timezone


DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CLOCK_12H_RE = re.compile(r"^(0?[1-9]|1[0-2]):([0-5]\d)\s?(AM|PM)$", re.IGNORECASE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    """Current UTC time as an ISO-8601 string with a ``Z`` suffix."""
    return utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def today_local() -> date:
    return date.today()


def date_key(value: date | datetime | str) -> str:
    """Canonical ``YYYY-MM-DD`` key for a calendar day.

    Strings are accepted only when already canonical; datetimes are truncated
    to their own calendar date without any timezone shift.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value or "").strip()
    if not DATE_KEY_RE.match(text):
        raise ValueError(f"Date must be in YYYY-MM-DD format: {value!r}")
    # Reject impossible calendar dates such as 2024-02-30.
    date.fromisoformat(text)
    return text


def parse_date_key(value: str) -> date:
    return date.fromisoformat(date_key(value))


def parse_iso_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def clock_minutes(value: str) -> int | None:
    """Minutes after midnight for a ``H:MM AM/PM`` string, or None."""
    m = CLOCK_12H_RE.match((value or "").strip())
    if not m:
        return None
    hour = int(m.group(1)) % 12
    if m.group(3).upper() == "PM":
        hour += 12
    return hour * 60 + int(m.group(2))
