"""Chronological per-day entries for the timeline view."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Iterable

from schemas.food_log import DEFAULT_SLOT_TIMES, DailyLog, MealEntry
from utils.datetime_utils import clock_minutes, parse_date_key
from utils.units import water_to_oz

WATER_TIME = "12:00 PM"
EXERCISE_TIME = "6:00 AM"
SLEEP_TIME = "11:00 PM"

MEAL_TYPES = ("breakfast", "lunch", "dinner")

_SNACK_TITLES = {
    "midMorningSnack": "Mid-Morning Snack",
    "midDaySnack": "Afternoon Snack",
    "nighttimeSnack": "Evening Snack",
}


@dataclass
class TimelineEntry:
    time: str
    type: str
    title: str
    content: str
    water_oz: float = 0.0


@dataclass
class TimelineDay:
    id: str
    date: str
    display_date: str
    entries: list[TimelineEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DaySummary:
    meals: int = 0
    snacks: int = 0
    water_oz: float = 0.0


def _water(value: str) -> float:
    return water_to_oz(value) or 0.0


def _meal_content(meal: MealEntry) -> str:
    parts = [
        value for value in (
            meal.meat_dairy,
            meal.vegetables_fruits,
            meal.breads_cereals_grains,
            meal.fats,
            meal.candy_sweets,
            meal.other_drinks,
        )
        if value.strip()
    ]
    return ", ".join(parts) if parts else "No details recorded"


def _sort_key(entry: TimelineEntry) -> int:
    minutes = clock_minutes(entry.time)
    return minutes if minutes is not None else 12 * 60


def day_entries(log: DailyLog) -> list[TimelineEntry]:
    entries: list[TimelineEntry] = []

    for slot, meal in log.meals().items():
        if meal.has_content():
            entries.append(
                TimelineEntry(
                    time=meal.time or DEFAULT_SLOT_TIMES[slot],
                    type=slot,
                    title=slot.capitalize(),
                    content=_meal_content(meal),
                    water_oz=_water(meal.water_intake),
                )
            )

    for slot, snack in log.snacks().items():
        if snack.has_content():
            entries.append(
                TimelineEntry(
                    time=snack.time or DEFAULT_SLOT_TIMES[slot],
                    type="snack",
                    title=_SNACK_TITLES[slot],
                    content=snack.snack,
                )
            )

    if log.daily_water_intake.strip():
        entries.append(
            TimelineEntry(
                time=WATER_TIME,
                type="water",
                title="Daily Water Intake",
                content=log.daily_water_intake,
                water_oz=_water(log.daily_water_intake),
            )
        )

    if log.exercise.strip():
        entries.append(TimelineEntry(time=EXERCISE_TIME, type="exercise", title="Exercise", content=log.exercise))

    if log.sleep_quality > 0 or log.sleep_hours.strip():
        parts = []
        if log.sleep_hours.strip():
            parts.append(log.sleep_hours)
        if log.sleep_quality > 0:
            parts.append(f"Quality: {log.sleep_quality}%")
        entries.append(
            TimelineEntry(time=SLEEP_TIME, type="sleep", title="Sleep", content=", ".join(parts))
        )

    # sorted() is stable: equal times keep insertion order.
    return sorted(entries, key=_sort_key)


def build_timeline(logs: Iterable[DailyLog]) -> list[TimelineDay]:
    """Days with at least one entry, most recent first."""
    days: list[TimelineDay] = []
    for log in sorted(logs, key=lambda item: item.date, reverse=True):
        entries = day_entries(log)
        if not entries:
            continue
        day = parse_date_key(log.date)
        days.append(
            TimelineDay(
                id=f"day-{log.date}",
                date=log.date,
                display_date=f"{day.strftime('%b')} {day.day}, {day.year}",
                entries=entries,
            )
        )
    return days


def day_summary(day: TimelineDay | None) -> DaySummary:
    if day is None:
        return DaySummary()
    return DaySummary(
        meals=sum(1 for e in day.entries if e.type in MEAL_TYPES),
        snacks=sum(1 for e in day.entries if e.type == "snack"),
        water_oz=round(sum(e.water_oz for e in day.entries), 1),
    )
