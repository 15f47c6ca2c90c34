from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from api.deps import get_store, parse_date_param
from services.analytics_service import RANGE_DAYS, build_analytics
from services.export_service import EXPORT_FORMATS, ExportOptions, export_logs
from services.food_log_store import FoodLogStore
from services.timeline_service import build_timeline, day_summary
from utils.datetime_utils import parse_date_key, today_local

router = APIRouter(tags=["insights"])

MAX_EXPORT_DAYS = 366
MAX_TIMELINE_DAYS = 90


async def _load_days(store: FoodLogStore, start, end) -> None:
    cursor = start
    while cursor <= end:
        await store.load_food_log(cursor)
        cursor += timedelta(days=1)


@router.get("/analytics")
async def analytics(
    date_range: str = Query(default="week", alias="range"),
    store: FoodLogStore = Depends(get_store),
):
    if date_range not in RANGE_DAYS:
        raise HTTPException(status_code=422, detail=f"range must be one of {sorted(RANGE_DAYS)}")
    today = today_local()
    await _load_days(store, today - timedelta(days=RANGE_DAYS[date_range]), today)
    return build_analytics(store.logs.values(), date_range=date_range, today=today).to_dict()


@router.get("/timeline")
async def timeline(
    days: int = Query(default=7, ge=1, le=MAX_TIMELINE_DAYS),
    store: FoodLogStore = Depends(get_store),
):
    today = today_local()
    start = today - timedelta(days=days - 1)
    await _load_days(store, start, today)
    timeline_days = build_timeline(store.get_logs_in_range(start, today))
    return [
        {**day.to_dict(), "summary": vars(day_summary(day))}
        for day in timeline_days
    ]


@router.get("/export")
async def export(
    start: str = Query(...),
    end: str = Query(...),
    export_format: str = Query(default="text", alias="format"),
    include_metadata: bool = Query(default=False),
    include_health_metrics: bool = Query(default=True),
    title: Optional[str] = Query(default=None),
    store: FoodLogStore = Depends(get_store),
):
    start_key, end_key = parse_date_param(start), parse_date_param(end)
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=422, detail=f"format must be one of {list(EXPORT_FORMATS)}")
    first, last = parse_date_key(start_key), parse_date_key(end_key)
    if first > last:
        raise HTTPException(status_code=400, detail="start must not be after end")
    if (last - first).days + 1 > MAX_EXPORT_DAYS:
        raise HTTPException(status_code=400, detail=f"Export range is limited to {MAX_EXPORT_DAYS} days")

    await _load_days(store, first, last)
    options = ExportOptions(
        start=start_key,
        end=end_key,
        export_format=export_format,
        include_metadata=include_metadata,
        include_health_metrics=include_health_metrics,
    )
    if title:
        options.title = title
    result = export_logs(store.get_logs_in_range(start_key, end_key), options)
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )
