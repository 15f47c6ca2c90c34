"""Plain-text and JSON exports of daily logs over a date range."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from schemas.food_log import DEFAULT_SLOT_TIMES, DailyLog
from utils.datetime_utils import date_key, iso_now, parse_date_key

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Food & Health Log Report"
EXPORT_FORMATS = ("text", "json")

_SNACK_LABELS = {
    "midMorningSnack": "Mid-Morning Snack",
    "midDaySnack": "Afternoon Snack",
    "nighttimeSnack": "Evening Snack",
}


@dataclass
class ExportOptions:
    start: str
    end: str
    export_format: str = "text"
    include_metadata: bool = False
    include_health_metrics: bool = True
    title: str = DEFAULT_TITLE


@dataclass
class ExportResult:
    filename: str
    media_type: str
    content: str


def _display_date(value: str) -> str:
    day = parse_date_key(value)
    return f"{day.strftime('%b')} {day.day}, {day.year}"


def _generated_on(now: datetime | None = None) -> str:
    now = now or datetime.now()
    hour = now.hour % 12 or 12
    meridiem = "AM" if now.hour < 12 else "PM"
    return f"{_display_date(now.date().isoformat())} at {hour}:{now.minute:02d} {meridiem}"


def _meal_lines(log: DailyLog) -> list[str]:
    lines: list[str] = []
    for slot, meal in log.meals().items():
        if not meal.has_content():
            continue
        items = [
            value for value in (
                meal.meat_dairy,
                meal.vegetables_fruits,
                meal.breads_cereals_grains,
                meal.fats,
                meal.candy_sweets,
                meal.water_intake,
                meal.other_drinks,
            )
            if value.strip()
        ]
        lines.append(f"{slot.capitalize()} ({meal.time or DEFAULT_SLOT_TIMES[slot]})")
        lines.append(f"  {', '.join(items)}")
        lines.append("")
    for slot, snack in log.snacks().items():
        if not snack.has_content():
            continue
        lines.append(f"{_SNACK_LABELS[slot]} ({snack.time or DEFAULT_SLOT_TIMES[slot]})")
        lines.append(f"  {snack.snack}")
        lines.append("")
    return lines


def _health_lines(log: DailyLog) -> list[str]:
    items = []
    if log.bowel_movements:
        items.append(f"  Bowel Movements: {log.bowel_movements}")
    if log.exercise:
        items.append(f"  Exercise: {log.exercise}")
    if log.daily_water_intake:
        items.append(f"  Water Intake: {log.daily_water_intake}")
    if log.sleep_quality:
        items.append(f"  Sleep Quality: {log.sleep_quality}%")
    if log.sleep_hours:
        items.append(f"  Sleep Hours: {log.sleep_hours}")
    if log.notes:
        items.append(f"  Notes: {log.notes}")
    if not items:
        return []
    return ["Health Metrics:", *items, ""]


def _filename(options: ExportOptions, extension: str) -> str:
    return f"food-log-{options.start}-to-{options.end}.{extension}"


def export_text(logs: list[DailyLog], options: ExportOptions, now: datetime | None = None) -> ExportResult:
    lines = [
        options.title,
        f"Date Range: {_display_date(options.start)} - {_display_date(options.end)}",
    ]
    if options.include_metadata:
        lines.append(f"Generated on: {_generated_on(now)}")
        lines.append(f"Total entries: {len(logs)}")
    lines.extend(["", "=" * 50, ""])

    for log in logs:
        lines.append(f"Date: {_display_date(log.date)}")
        lines.append("-" * 30)
        lines.extend(_meal_lines(log))
        if options.include_health_metrics:
            lines.extend(_health_lines(log))
        lines.append("")

    return ExportResult(
        filename=_filename(options, "txt"),
        media_type="text/plain",
        content="\n".join(lines) + "\n",
    )


def export_json(logs: list[DailyLog], options: ExportOptions) -> ExportResult:
    payload = {
        "metadata": {
            "title": options.title,
            "dateRange": {"start": options.start, "end": options.end},
            "generatedAt": iso_now(),
            "totalEntries": len(logs),
            "includeHealthMetrics": options.include_health_metrics,
        },
        "data": [log.to_record() for log in logs],
    }
    return ExportResult(
        filename=_filename(options, "json"),
        media_type="application/json",
        content=json.dumps(payload, indent=2, ensure_ascii=False),
    )


def export_logs(logs: list[DailyLog], options: ExportOptions) -> ExportResult:
    """Export the logs whose date falls in ``[options.start, options.end]``, oldest first."""
    if options.export_format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {options.export_format}")
    options.start, options.end = date_key(options.start), date_key(options.end)
    if options.start > options.end:
        raise ValueError("Export start date must not be after the end date")
    selected = sorted(
        (log for log in logs if options.start <= log.date <= options.end and log.has_any_entry()),
        key=lambda log: log.date,
    )
    logger.info("Exporting %s day(s) as %s", len(selected), options.export_format)
    if options.export_format == "json":
        return export_json(selected, options)
    return export_text(selected, options)
