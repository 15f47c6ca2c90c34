"""Unit parsing for the free-text water and sleep fields of a daily log."""

import re

OZ_PER_ML = 0.033814
OZ_PER_LITER = 33.814
OZ_PER_CUP = 8.0
MAX_DAILY_WATER_OZ = 300.0
MAX_SLEEP_MINUTES = 24 * 60

WATER_RE = re.compile(r"^(\d+(?:\.\d+)?)\s?(oz|ml|cups?|l|liters?|litres?)?$", re.IGNORECASE)
SLEEP_DURATION_RE = re.compile(
    r"^(?:(\d{1,2})\s?(?:h|hrs?|hours?))?\s?(?:(\d{1,2})\s?(?:m|mins?|minutes?))?$",
    re.IGNORECASE,
)
DECIMAL_HOURS_RE = re.compile(r"^(\d{1,2}(?:\.\d+)?)$")


def ml_to_oz(ml: float) -> float:
    return ml * OZ_PER_ML


def liters_to_oz(liters: float) -> float:
    return liters * OZ_PER_LITER


def cups_to_oz(cups: float) -> float:
    return cups * OZ_PER_CUP


def water_to_oz(value: str) -> float | None:
    """Ounce-equivalent of a water string such as ``2000 ml`` or ``3 cups``.

    Returns 0.0 for an empty string and None when the text does not parse.
    A bare number is read as ounces.
    """
    text = (value or "").strip()
    if not text:
        return 0.0
    m = WATER_RE.match(text)
    if not m:
        return None
    amount = float(m.group(1))
    unit = (m.group(2) or "oz").lower()
    if unit.startswith("ml"):
        return ml_to_oz(amount)
    if unit.startswith("l"):
        return liters_to_oz(amount)
    if unit.startswith("cup"):
        return cups_to_oz(amount)
    return amount


def sleep_minutes(value: str) -> int | None:
    """Total minutes for ``7h 30m``, ``8 hours``, ``45m`` or decimal ``7.5``."""
    text = (value or "").strip()
    if not text:
        return 0
    m = DECIMAL_HOURS_RE.match(text)
    if m:
        return int(round(float(m.group(1)) * 60))
    m = SLEEP_DURATION_RE.match(text)
    if not m or (m.group(1) is None and m.group(2) is None):
        return None
    hours = int(m.group(1) or 0)
    minutes = int(m.group(2) or 0)
    return hours * 60 + minutes


def sleep_hours(value: str) -> float:
    minutes = sleep_minutes(value)
    return round(minutes / 60.0, 2) if minutes else 0.0
