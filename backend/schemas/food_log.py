"""Record shape of one day's food/health log.

Attribute names are snake_case; the serialized form (backup JSON, remote
documents, API payloads) uses the camelCase aliases.
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from utils.data_migration import normalize_time_string
from utils.datetime_utils import CLOCK_12H_RE, date_key, iso_now, parse_iso_timestamp
from utils.units import MAX_DAILY_WATER_OZ, MAX_SLEEP_MINUTES, sleep_minutes, water_to_oz


MEAL_SLOTS = ("breakfast", "lunch", "dinner")
SNACK_SLOTS = ("midMorningSnack", "midDaySnack", "nighttimeSnack")
HEALTH_FIELDS = ("bowelMovements", "exercise", "dailyWaterIntake", "sleepQuality", "sleepHours", "notes")
MEAL_FIELDS = (
    "time",
    "meatDairy",
    "vegetablesFruits",
    "breadsCerealsGrains",
    "fats",
    "candySweets",
    "waterIntake",
    "otherDrinks",
)
SNACK_FIELDS = ("time", "snack")

DEFAULT_SLOT_TIMES = {
    "breakfast": "8:00 AM",
    "lunch": "12:00 PM",
    "dinner": "6:00 PM",
    "midMorningSnack": "10:00 AM",
    "midDaySnack": "3:00 PM",
    "nighttimeSnack": "9:00 PM",
}

_INJECTION_MARKERS = ("<script", "javascript:")


def _normalize_time(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    normalized, _ = normalize_time_string(value)
    return normalized


def _check_clock(value: str) -> str:
    if not CLOCK_12H_RE.match(value):
        raise ValueError("Invalid time format after transformation")
    return value


def _check_food_category(value: str) -> str:
    if value and len(value) < 2:
        raise ValueError("Food entries must be either empty or at least 2 characters")
    return value


def _check_water(value: str) -> str:
    ounces = water_to_oz(value)
    if ounces is None or not 0 <= ounces <= MAX_DAILY_WATER_OZ:
        raise ValueError("Water intake must be a reasonable amount with a valid unit (oz, ml, cups, l)")
    return value


def _check_sleep_hours(value: str) -> str:
    minutes = sleep_minutes(value)
    if minutes is None:
        raise ValueError("Invalid sleep duration format")
    if not 0 <= minutes <= MAX_SLEEP_MINUTES:
        raise ValueError("Sleep duration must be reasonable (0-24 hours)")
    return value


def _check_safe_text(value: str) -> str:
    lowered = value.lower()
    if any(marker in lowered for marker in _INJECTION_MARKERS):
        raise ValueError("Text contains invalid content")
    return value


def _stringify_id(value: Any) -> Any:
    # Document stores may hand back numeric ids.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _check_date(value: str) -> str:
    return date_key(value)


def _check_timestamp(value: str) -> str:
    if parse_iso_timestamp(value) is None:
        raise ValueError("Invalid ISO-8601 timestamp")
    return value


ClockTime = Annotated[str, BeforeValidator(_normalize_time), AfterValidator(_check_clock)]
FoodCategory = Annotated[str, Field(max_length=500), AfterValidator(_check_food_category)]
WaterAmount = Annotated[str, AfterValidator(_check_water)]
SleepDuration = Annotated[str, AfterValidator(_check_sleep_hours)]
SafeNotes = Annotated[str, Field(max_length=1000), AfterValidator(_check_safe_text)]
SafeExercise = Annotated[str, Field(max_length=500), AfterValidator(_check_safe_text)]
DateKey = Annotated[str, AfterValidator(_check_date)]
Timestamp = Annotated[str, AfterValidator(_check_timestamp)]
DocumentId = Annotated[Optional[str], BeforeValidator(_stringify_id)]


class JournalModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class MealEntry(JournalModel):
    time: ClockTime
    meat_dairy: FoodCategory
    vegetables_fruits: FoodCategory
    breads_cereals_grains: FoodCategory
    fats: FoodCategory
    candy_sweets: FoodCategory
    water_intake: WaterAmount
    other_drinks: FoodCategory

    def has_content(self) -> bool:
        return any(
            value.strip()
            for value in (
                self.meat_dairy,
                self.vegetables_fruits,
                self.breads_cereals_grains,
                self.fats,
                self.candy_sweets,
                self.water_intake,
                self.other_drinks,
            )
        )


class SnackEntry(JournalModel):
    time: ClockTime
    snack: FoodCategory

    def has_content(self) -> bool:
        return bool(self.snack.strip())


class DailyLog(JournalModel):
    id: DocumentId = None
    user_id: DocumentId = None
    date: DateKey

    breakfast: MealEntry
    lunch: MealEntry
    dinner: MealEntry

    mid_morning_snack: SnackEntry
    mid_day_snack: SnackEntry
    nighttime_snack: SnackEntry

    bowel_movements: str = Field(max_length=200)
    exercise: SafeExercise
    daily_water_intake: WaterAmount
    sleep_quality: int = Field(ge=0, le=100)
    sleep_hours: SleepDuration
    notes: SafeNotes

    created_at: Timestamp
    updated_at: Timestamp

    # Lenient validation runs after migration and only needs the 0-100 range.
    allow_legacy_sleep_scale: ClassVar[bool] = False

    @field_validator("sleep_quality")
    @classmethod
    def _reject_legacy_sleep_scale(cls, value: int) -> int:
        if 0 < value <= 5 and not cls.allow_legacy_sleep_scale:
            raise ValueError("Sleep quality must be 0-100 percentage, not 1-5 scale")
        return value

    def meals(self) -> dict[str, MealEntry]:
        return {"breakfast": self.breakfast, "lunch": self.lunch, "dinner": self.dinner}

    def snacks(self) -> dict[str, SnackEntry]:
        return {
            "midMorningSnack": self.mid_morning_snack,
            "midDaySnack": self.mid_day_snack,
            "nighttimeSnack": self.nighttime_snack,
        }

    def has_any_entry(self) -> bool:
        if any(meal.has_content() for meal in self.meals().values()):
            return True
        if any(snack.has_content() for snack in self.snacks().values()):
            return True
        return bool(
            self.bowel_movements
            or self.exercise
            or self.daily_water_intake
            or self.sleep_hours
            or self.notes
            or self.sleep_quality > 0
        )


class MigratedDailyLog(DailyLog):
    allow_legacy_sleep_scale: ClassVar[bool] = True


def empty_meal(slot: str) -> dict[str, str]:
    entry = {name: "" for name in MEAL_FIELDS}
    entry["time"] = DEFAULT_SLOT_TIMES[slot]
    return entry


def empty_snack(slot: str) -> dict[str, str]:
    return {"time": DEFAULT_SLOT_TIMES[slot], "snack": ""}


def empty_record(date: str, user_id: str | None = None, now: str | None = None) -> dict[str, Any]:
    stamp = now or iso_now()
    record: dict[str, Any] = {"date": date}
    if user_id:
        record["userId"] = user_id
    for slot in MEAL_SLOTS:
        record[slot] = empty_meal(slot)
    for slot in SNACK_SLOTS:
        record[slot] = empty_snack(slot)
    record.update(
        {
            "bowelMovements": "",
            "exercise": "",
            "dailyWaterIntake": "",
            "sleepQuality": 0,
            "sleepHours": "",
            "notes": "",
            "createdAt": stamp,
            "updatedAt": stamp,
        }
    )
    return record


def empty_daily_log(date: str, user_id: str | None = None, now: str | None = None) -> DailyLog:
    return DailyLog.model_validate(empty_record(date_key(date), user_id=user_id, now=now))
