from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from api.deps import get_store, parse_date_param
from schemas.food_log import MEAL_SLOTS, SNACK_SLOTS
from services.food_log_store import FoodLogStore, FoodLogValidationError

router = APIRouter(prefix="/food-logs", tags=["food-logs"])


def _validation_failed(exc: FoodLogValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail={"message": str(exc), "errors": exc.errors})


def _with_status(store: FoodLogStore, record: dict) -> dict:
    return {**record, "syncStatus": store.sync_status(record["date"])}


@router.get("")
def list_food_logs(
    start: str = Query(...),
    end: str = Query(...),
    store: FoodLogStore = Depends(get_store),
):
    start_key, end_key = parse_date_param(start), parse_date_param(end)
    if start_key > end_key:
        raise HTTPException(status_code=400, detail="start must not be after end")
    return [log.to_record() for log in store.get_logs_in_range(start_key, end_key)]


@router.get("/{date}")
async def get_food_log(date: str, store: FoodLogStore = Depends(get_store)):
    key = parse_date_param(date)
    store.set_current_date(key)
    log = await store.load_food_log(key)
    return _with_status(store, log.to_record())


@router.patch("/{date}")
async def update_food_log(
    date: str,
    updates: dict[str, Any] = Body(...),
    store: FoodLogStore = Depends(get_store),
):
    key = parse_date_param(date)
    await store.load_food_log(key)
    try:
        log = await store.update_food_log(key, updates)
    except FoodLogValidationError as exc:
        raise _validation_failed(exc)
    return _with_status(store, log.to_record())


@router.delete("/{date}")
async def delete_food_log(date: str, store: FoodLogStore = Depends(get_store)):
    key = parse_date_param(date)
    deleted = await store.delete_food_log(key)
    if not deleted:
        raise HTTPException(status_code=404, detail="No log for that date")
    return {"deleted": True, "date": key}


@router.put("/{date}/meals/{meal}")
async def put_meal(
    date: str,
    meal: str,
    meal_data: dict[str, Any] = Body(...),
    store: FoodLogStore = Depends(get_store),
):
    if meal not in MEAL_SLOTS:
        raise HTTPException(status_code=404, detail=f"Unknown meal: {meal}")
    key = parse_date_param(date)
    await store.load_food_log(key)
    try:
        log = await store.update_meal(key, meal, meal_data)
    except FoodLogValidationError as exc:
        raise _validation_failed(exc)
    return _with_status(store, log.to_record())


@router.put("/{date}/snacks/{snack}")
async def put_snack(
    date: str,
    snack: str,
    snack_data: dict[str, Any] = Body(...),
    store: FoodLogStore = Depends(get_store),
):
    if snack not in SNACK_SLOTS:
        raise HTTPException(status_code=404, detail=f"Unknown snack: {snack}")
    key = parse_date_param(date)
    await store.load_food_log(key)
    try:
        log = await store.update_snack(key, snack, snack_data)
    except FoodLogValidationError as exc:
        raise _validation_failed(exc)
    return _with_status(store, log.to_record())


@router.put("/{date}/metrics/{field}")
async def put_health_metric(
    date: str,
    field: str,
    value: Optional[Any] = Body(..., embed=True),
    store: FoodLogStore = Depends(get_store),
):
    key = parse_date_param(date)
    await store.load_food_log(key)
    try:
        log = await store.update_health_metric(key, field, value)
    except FoodLogValidationError as exc:
        raise _validation_failed(exc)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _with_status(store, log.to_record())
