"""Strict and lenient validation entry points for daily logs.

Both return a ``ValidationResult`` instead of raising; callers decide whether
to fall back to another data source or keep the raw record with a warning.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from schemas.food_log import (
    HEALTH_FIELDS,
    MEAL_FIELDS,
    MEAL_SLOTS,
    SNACK_FIELDS,
    SNACK_SLOTS,
    DailyLog,
    MigratedDailyLog,
    empty_meal,
    empty_record,
    empty_snack,
)
from utils.data_migration import is_legacy_sleep_quality, migrate_sleep_quality
from utils.datetime_utils import iso_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ValidationResult(Generic[T]):
    success: bool
    data: T | None = None
    errors: list[str] = field(default_factory=list)


def format_validation_errors(exc: ValidationError) -> list[str]:
    out: list[str] = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err.get("loc", ()))
        message = str(err.get("msg") or "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        out.append(f"{path}: {message}" if path else message)
    return out or ["Unknown validation error"]


def _run(model: type[DailyLog], raw: Any) -> ValidationResult[DailyLog]:
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True, exclude_none=True)
    if not isinstance(raw, dict):
        return ValidationResult(success=False, errors=["Record must be an object"])
    try:
        return ValidationResult(success=True, data=model.model_validate(raw))
    except ValidationError as exc:
        return ValidationResult(success=False, errors=format_validation_errors(exc))


def validate(raw: Any) -> ValidationResult[DailyLog]:
    """Strict validation: no tolerance for legacy encodings or missing timestamps."""
    return _run(DailyLog, raw)


def _fill_slots(record: dict[str, Any]) -> None:
    for slot in MEAL_SLOTS:
        current = record.get(slot)
        if not isinstance(current, dict):
            record[slot] = empty_meal(slot)
            continue
        defaults = empty_meal(slot)
        record[slot] = {name: current.get(name, defaults[name]) for name in MEAL_FIELDS}
        for name in MEAL_FIELDS:
            if record[slot][name] is None:
                record[slot][name] = defaults[name]
    for slot in SNACK_SLOTS:
        current = record.get(slot)
        if not isinstance(current, dict):
            record[slot] = empty_snack(slot)
            continue
        defaults = empty_snack(slot)
        record[slot] = {
            name: current.get(name) if current.get(name) is not None else defaults[name]
            for name in SNACK_FIELDS
        }
    for name in HEALTH_FIELDS:
        if record.get(name) is None:
            record[name] = 0 if name == "sleepQuality" else ""


def migrate_record(raw: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a raw record to the current encoding without validating it."""
    migrated = copy.deepcopy(raw)

    original_quality = migrated.get("sleepQuality")
    if is_legacy_sleep_quality(original_quality):
        migrated["sleepQuality"] = migrate_sleep_quality(original_quality)
        logger.warning(
            "Converted sleep quality %s/5 to %s%% for %s",
            original_quality,
            migrated["sleepQuality"],
            migrated.get("date", "unknown date"),
        )

    now = iso_now()
    if not migrated.get("createdAt"):
        migrated["createdAt"] = now
    if not migrated.get("updatedAt"):
        migrated["updatedAt"] = now

    _fill_slots(migrated)
    return migrated


def validate_and_migrate(raw: Any) -> ValidationResult[DailyLog]:
    """Lenient validation for records from the remote store, backup, or a sweep."""
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True, exclude_none=True)
    if not isinstance(raw, dict):
        return ValidationResult(success=False, errors=["Record must be an object"])
    return _run(MigratedDailyLog, migrate_record(raw))



def salvage(raw: Any) -> ValidationResult[DailyLog]:
    """Lenient validation that resets only the offending fields to their defaults.

    Used where dropping a whole day is worse than losing one bad field. The
    record's date must itself be valid; timestamps are kept when they parse.
    """
    result = validate_and_migrate(raw)
    if result.success or not isinstance(raw, dict):
        return result

    migrated = migrate_record(raw)
    try:
        defaults = empty_record(str(migrated.get("date")), now=iso_now())
    except ValueError:
        return result
    for err in result.errors:
        path = err.split(":", 1)[0].split(".")
        if not path or path[0] not in defaults or path[0] == "date":
            continue
        target, fallback = migrated, defaults
        for part in path[:-1]:
            target, fallback = target.get(part), fallback.get(part)
            if not isinstance(target, dict) or not isinstance(fallback, dict):
                break
        else:
            if path[-1] in fallback:
                target[path[-1]] = copy.deepcopy(fallback[path[-1]])

    retried = _run(MigratedDailyLog, migrated)
    if retried.success:
        logger.warning(
            "Kept record for %s after resetting invalid fields: %s",
            migrated.get("date"),
            "; ".join(result.errors),
        )
        retried.errors = list(result.errors)
    return retried
