"""Pure upgrade rules for historical daily-log encodings.

Sleep quality used to be a 1-5 rating; it is now a 0-100 percentage.
Meal times used to be typed freely; they are now ``H:MM AM/PM``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TIME = "12:00 PM"
LEGACY_SLEEP_SCALE_MAX = 5
SLEEP_SCALE_FACTOR = 20

_CANONICAL_TIME_RE = re.compile(r"^(0?[1-9]|1[0-2]):([0-5]\d)\s?(AM|PM)$", re.IGNORECASE)
_TWENTY_FOUR_HOUR_RE = re.compile(r"^([0-2]?\d):([0-5]\d)$")
_INFORMAL_TIME_RE = re.compile(r"^(0?[1-9]|1[0-2])(?:\.([0-5]\d))?$")


@dataclass(frozen=True)
class MigrationOutcome:
    updated: bool
    original_quality: int
    new_quality: int


def migrate_sleep_quality(old: float | int) -> int:
    if old <= 0:
        return 0
    if old > 100:
        return int(old)
    if old <= LEGACY_SLEEP_SCALE_MAX:
        return int(min(100, round(old * SLEEP_SCALE_FACTOR)))
    return int(old)


def is_legacy_sleep_quality(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and 0 < value <= LEGACY_SLEEP_SCALE_MAX


def migrate_food_log_sleep_data(record: dict[str, Any]) -> MigrationOutcome:
    """Upgrade ``record["sleepQuality"]`` in place when it is on the 1-5 scale."""
    original = record.get("sleepQuality") or 0
    if is_legacy_sleep_quality(original):
        new_quality = migrate_sleep_quality(original)
        record["sleepQuality"] = new_quality
        logger.warning("Sleep quality updated: %s/5 -> %s%%", original, new_quality)
        return MigrationOutcome(updated=True, original_quality=original, new_quality=new_quality)
    return MigrationOutcome(updated=False, original_quality=original, new_quality=original)


def normalize_time_string(value: Any) -> tuple[str, bool]:
    """Return ``(time, fell_back)`` with ``time`` in ``H:MM AM/PM`` form.

    Order of interpretation: canonical 12-hour, then 24-hour ``H:MM``, then
    informal meridiem-less values (``7``, ``7.30``) where hours 1-7 are read
    as morning and 8-12 as evening. Anything else becomes ``12:00 PM``.
    """
    text = str(value if value is not None else "").strip()

    m = _CANONICAL_TIME_RE.match(text)
    if m:
        return f"{int(m.group(1))}:{m.group(2)} {m.group(3).upper()}", False

    m = _TWENTY_FOUR_HOUR_RE.match(text)
    if m:
        hours24 = int(m.group(1))
        if 0 <= hours24 <= 23:
            hours12 = 12 if hours24 == 0 else hours24 - 12 if hours24 > 12 else hours24
            period = "PM" if hours24 >= 12 else "AM"
            return f"{hours12}:{m.group(2)} {period}", False

    m = _INFORMAL_TIME_RE.match(text)
    if m:
        hours = int(m.group(1))
        minutes = m.group(2) or "00"
        # Without a meridiem, 1-7 reads as morning and 8-12 as evening.
        period = "AM" if hours <= 7 else "PM"
        guessed = f"{hours}:{minutes} {period}"
        logger.warning("Guessed meridiem for time %r -> %s", text, guessed)
        return guessed, False

    if text:
        logger.warning("Could not parse time %r, using default %s", text, DEFAULT_TIME)
    return DEFAULT_TIME, True
