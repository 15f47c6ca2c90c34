"""Summary statistics over a set of daily logs. Pure functions of their input."""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Iterable

from schemas.food_log import DailyLog
from utils.datetime_utils import parse_date_key, today_local
from utils.units import sleep_hours, water_to_oz

RANGE_DAYS = {"week": 7, "month": 30}

MEAL_LABELS = {
    "breakfast": "Breakfast",
    "lunch": "Lunch",
    "dinner": "Dinner",
    "midMorningSnack": "Morning Snack",
    "midDaySnack": "Afternoon Snack",
    "nighttimeSnack": "Evening Snack",
}


@dataclass
class SleepPoint:
    date: str
    quality: int
    hours: float


@dataclass
class DayPoint:
    date: str
    label: str
    entries: int
    sleep_quality: int
    water_oz: float


@dataclass
class MealCount:
    meal: str
    count: int


@dataclass
class AnalyticsSummary:
    date_range: str
    start_date: str
    end_date: str
    total_entries: int = 0
    streak_count: int = 0
    weekly_average: float = 0.0
    most_logged_meal: str = "None"
    avg_sleep_quality: float = 0.0
    avg_sleep_hours: float = 0.0
    total_water_oz: float = 0.0
    exercise_days: int = 0
    daily: list[DayPoint] = field(default_factory=list)
    sleep: list[SleepPoint] = field(default_factory=list)
    meal_distribution: list[MealCount] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _round1(value: float) -> float:
    return round(value * 10) / 10


def _logged_days(logs: Iterable[DailyLog]) -> dict[str, DailyLog]:
    return {log.date: log for log in logs if log.has_any_entry()}


def calculate_streak(logged_dates: set[str], today: date) -> int:
    """Consecutive logged days ending today, or ending yesterday if today is blank."""
    cursor = today
    if cursor.isoformat() not in logged_dates:
        cursor = today - timedelta(days=1)
    streak = 0
    while cursor.isoformat() in logged_dates:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def meal_distribution(logs: Iterable[DailyLog]) -> list[MealCount]:
    counts: Counter[str] = Counter()
    for log in logs:
        for slot, meal in log.meals().items():
            if meal.has_content():
                counts[MEAL_LABELS[slot]] += 1
        for slot, snack in log.snacks().items():
            if snack.has_content():
                counts[MEAL_LABELS[slot]] += 1
    # Ties keep slot order so the result is deterministic.
    order = list(MEAL_LABELS.values())
    ranked = sorted(counts.items(), key=lambda item: (-item[1], order.index(item[0])))
    return [MealCount(meal=meal, count=count) for meal, count in ranked]


def build_analytics(logs: Iterable[DailyLog], date_range: str = "week", today: date | None = None) -> AnalyticsSummary:
    if date_range not in RANGE_DAYS:
        raise ValueError(f"date_range must be one of {sorted(RANGE_DAYS)}")
    today = today or today_local()
    days_back = RANGE_DAYS[date_range]
    start = today - timedelta(days=days_back)

    logged = _logged_days(logs)
    in_range = [
        logged[key] for key in sorted(logged)
        if start <= parse_date_key(key) <= today
    ]

    summary = AnalyticsSummary(
        date_range=date_range,
        start_date=start.isoformat(),
        end_date=today.isoformat(),
    )
    summary.streak_count = calculate_streak(set(logged), today)
    if not in_range:
        summary.daily = _daily_series({}, start, today)
        return summary

    summary.total_entries = len(in_range)
    summary.weekly_average = _round1(len(in_range) / days_back * 7)

    summary.meal_distribution = meal_distribution(in_range)
    if summary.meal_distribution:
        summary.most_logged_meal = summary.meal_distribution[0].meal

    summary.sleep = [
        SleepPoint(date=log.date, quality=log.sleep_quality, hours=sleep_hours(log.sleep_hours))
        for log in in_range
        if log.sleep_quality > 0
    ]
    if summary.sleep:
        summary.avg_sleep_quality = _round1(sum(p.quality for p in summary.sleep) / len(summary.sleep))
        summary.avg_sleep_hours = _round1(sum(p.hours for p in summary.sleep) / len(summary.sleep))

    summary.total_water_oz = _round1(sum(water_to_oz(log.daily_water_intake) or 0.0 for log in in_range))
    summary.exercise_days = sum(1 for log in in_range if log.exercise.strip())
    summary.daily = _daily_series({log.date: log for log in in_range}, start, today)
    return summary


def _daily_series(by_date: dict[str, DailyLog], start: date, end: date) -> list[DayPoint]:
    points: list[DayPoint] = []
    cursor = start
    while cursor <= end:
        key = cursor.isoformat()
        log = by_date.get(key)
        points.append(
            DayPoint(
                date=key,
                label=cursor.strftime("%b %d"),
                entries=1 if log else 0,
                sleep_quality=log.sleep_quality if log else 0,
                water_oz=_round1(water_to_oz(log.daily_water_intake) or 0.0) if log else 0.0,
            )
        )
        cursor += timedelta(days=1)
    return points
