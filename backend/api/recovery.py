from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_auth_session, get_store
from auth.session import AuthSession
from services.food_log_store import FoodLogStore
from services.migration_service import (
    migrate_local_backup,
    migrate_remote_sleep_quality,
    sync_local_backup_to_remote,
)
from utils.datetime_utils import parse_iso_timestamp

router = APIRouter(tags=["recovery"])

STATUS_ERROR_PREVIEW = 3


def _parse_window(value: Optional[str], name: str) -> Optional[datetime]:
    if value is None:
        return None
    parsed = parse_iso_timestamp(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"{name} must be an ISO-8601 timestamp")
    return parsed


@router.get("/recovery/status")
def recovery_status(store: FoodLogStore = Depends(get_store)):
    unresolved = [e for e in store.errors if not e.resolved]
    preview = unresolved[:STATUS_ERROR_PREVIEW]
    return {
        "needs_recovery": store.needs_recovery,
        "error": store.error,
        "errors": [f"{e.operation}: {e.error}" for e in preview],
        "more_errors": max(len(unresolved) - len(preview), 0),
        "loading": store.loading,
        "saving": store.saving,
        "syncing": store.syncing,
    }


@router.post("/recovery/local")
async def recover_local(store: FoodLogStore = Depends(get_store)):
    report = await store.recover_from_local_storage()
    store.clear_error()
    return asdict(report)


@router.post("/recovery/sync")
async def recover_sync(store: FoodLogStore = Depends(get_store)):
    if not store.remote_enabled:
        raise HTTPException(status_code=409, detail="Remote sync requires a signed-in user and a configured remote store")
    report = await store.sync_all_data()
    if not report.errors:
        store.resolve_errors("remote")
        store.clear_error()
    return asdict(report)


@router.post("/recovery/validate")
async def validate_all(store: FoodLogStore = Depends(get_store)):
    return asdict(await store.validate_all_data())


@router.post("/recovery/migrate-backup")
async def migrate_backup(
    store: FoodLogStore = Depends(get_store),
    auth: AuthSession = Depends(get_auth_session),
):
    result = {"local": asdict(migrate_local_backup(store.local_backup)), "remote": None}
    if store.remote_store is not None and auth.user_id:
        result["remote"] = asdict(await migrate_remote_sleep_quality(store.remote_store, auth.user_id))
    return result


@router.post("/recovery/push-backup")
async def push_backup(
    store: FoodLogStore = Depends(get_store),
    auth: AuthSession = Depends(get_auth_session),
):
    if store.remote_store is None or not auth.user_id:
        raise HTTPException(status_code=409, detail="Remote sync requires a signed-in user and a configured remote store")
    return asdict(await sync_local_backup_to_remote(store.local_backup, store.remote_store, auth.user_id))


@router.get("/audit")
def audit_trail(
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
    store: FoodLogStore = Depends(get_store),
):
    entries = store.get_audit_trail(_parse_window(start, "start"), _parse_window(end, "end"))
    return [entry.to_dict() for entry in entries]


@router.get("/errors")
def error_ledger(
    include_resolved: bool = Query(default=False),
    store: FoodLogStore = Depends(get_store),
):
    return [e.to_dict() for e in store.errors if include_resolved or not e.resolved]
