"""Reconciling cache for daily logs.

The store's ``logs`` map is the single source of truth while the service
runs. Every mutation is validated strictly, committed to the map, mirrored to
the local backup synchronously, then handed to a per-date debounced remote
save. Remote failures never undo a local commit; they land in the error
ledger for the recovery flow.

Load order is fixed: a cached record wins; otherwise an authenticated user
reads the remote store and an anonymous user reads the local backup; a miss
conjures an empty day. The backup is read for authenticated users only
through ``recover_from_local_storage``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from schemas.food_log import (
    HEALTH_FIELDS,
    MEAL_SLOTS,
    SNACK_SLOTS,
    DailyLog,
    empty_daily_log,
    empty_record,
)
from services.food_log_validation import salvage, validate, validate_and_migrate
from services.local_backup import LocalBackup, backup_key
from services.remote_store import RemoteStore, StoreResult
from utils.data_migration import is_legacy_sleep_quality
from utils.datetime_utils import date_key, iso_now, parse_iso_timestamp, today_local
from utils.scheduler import DebouncedScheduler

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = ("create", "update", "delete", "migrate")
AUDIT_SOURCES = ("user", "migration", "sync", "system")
_PROTECTED_FIELDS = ("id", "userId", "date", "createdAt", "updatedAt")


class FoodLogValidationError(ValueError):
    """Raised when a mutation would leave a day's record invalid."""

    def __init__(self, date: str, errors: list[str]):
        self.date = date
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


@dataclass
class AuditEntry:
    timestamp: str
    user_id: str
    action: str
    source: str
    date: str | None = None
    field: str | None = None
    old_value: Any = None
    new_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        out = {
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "action": self.action,
            "source": self.source,
        }
        for key, value in (
            ("date", self.date),
            ("field", self.field),
            ("oldValue", self.old_value),
            ("newValue", self.new_value),
        ):
            if value is not None:
                out[key] = value
        return out


@dataclass
class DataError:
    timestamp: str
    operation: str
    error: str
    data: Any = None
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DataHealthReport:
    valid: int = 0
    invalid: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class MergeReport:
    merged: int = 0
    skipped: int = 0
    invalid: int = 0
    errors: list[str] = field(default_factory=list)


def _field_aliases() -> dict[str, str]:
    aliases: dict[str, str] = {}
    for name, info in DailyLog.model_fields.items():
        alias = info.alias or name
        aliases[name] = alias
        aliases[alias] = alias
    return aliases


_FIELD_ALIASES = _field_aliases()


def _canonical_key(key: str) -> str | None:
    return _FIELD_ALIASES.get(key)


def _to_camel_dict(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in data.items():
        parts = str(key).split("_")
        out[parts[0] + "".join(p[:1].upper() + p[1:] for p in parts[1:])] = value
    return out


def _is_newer(candidate: str, reference: str) -> bool:
    a = parse_iso_timestamp(candidate)
    b = parse_iso_timestamp(reference)
    if a is None or b is None:
        return False
    return a > b


class FoodLogStore:
    def __init__(
        self,
        local_backup: LocalBackup,
        remote_store: RemoteStore | None = None,
        *,
        debounce_seconds: float = 1.0,
        recent_limit: int = 100,
        audit_limit: int = 1000,
        error_limit: int = 100,
    ):
        self.local_backup = local_backup
        self.remote_store = remote_store
        self.recent_limit = recent_limit

        self.logs: dict[str, DailyLog] = {}
        self.current_date: str = date_key(today_local())
        self.user_id: str | None = None

        self.loading = False
        self.saving = False
        self.syncing = False
        self.error: str | None = None

        self.audit_trail: deque[AuditEntry] = deque(maxlen=max(int(audit_limit), 1))
        self.errors: deque[DataError] = deque(maxlen=max(int(error_limit), 1))

        self._scheduler = DebouncedScheduler(debounce_seconds)
        self._save_locks: dict[str, asyncio.Lock] = {}
        self._loading_dates: set[str] = set()
        self._in_flight: set[str] = set()
        self._sync_state: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Context

    @property
    def remote_enabled(self) -> bool:
        return bool(self.user_id) and self.remote_store is not None

    def set_current_date(self, value) -> str:
        self.current_date = date_key(value)
        return self.current_date

    async def set_user_id(self, user_id: str | None) -> None:
        previous = self.user_id
        user_id = (user_id or "").strip() or None
        if previous and previous != user_id:
            # Pending saves belong to the account that made them.
            await self.flush_pending_saves()
            self.logs.clear()
            self._sync_state.clear()
        self.user_id = user_id
        if user_id and user_id != previous:
            await self.sync_all_data()

    # ------------------------------------------------------------------
    # Reads

    def get_food_log(self, value) -> DailyLog | None:
        return self.logs.get(date_key(value))

    def get_logs_in_range(self, start, end) -> list[DailyLog]:
        start_key, end_key = date_key(start), date_key(end)
        return [self.logs[k] for k in sorted(self.logs) if start_key <= k <= end_key]

    async def load_food_log(self, value) -> DailyLog:
        key = date_key(value)
        cached = self.logs.get(key)
        if cached is not None:
            return cached
        if key in self._loading_dates:
            return empty_daily_log(key, user_id=self.user_id)

        self._loading_dates.add(key)
        self.loading = True
        self.error = None
        try:
            log: DailyLog | None = None
            if self.remote_enabled:
                result = await self.remote_store.get_by_date(self.user_id, key)
                if result.success and result.data:
                    log = self._accept_external(result.data, source="sync", operation="remote_load_validation")
                    if log is not None:
                        self._sync_state[key] = "synced"
                elif not result.success:
                    self.record_error("remote_load", result.error or "Load failed", {"date": key})
                    if result.index_error:
                        self.error = result.error
            else:
                raw = self.local_backup.load(key)
                if raw is not None:
                    log = self._accept_external(raw, source="system", operation="local_load_validation")

            if log is None:
                log = empty_daily_log(key, user_id=self.user_id)

            # An update may have committed while the remote call was pending.
            if key not in self.logs:
                self.logs[key] = log
            return self.logs[key]
        finally:
            self._loading_dates.discard(key)
            self.loading = bool(self._loading_dates)

    # ------------------------------------------------------------------
    # Mutations

    async def update_food_log(self, value, updates: dict[str, Any]) -> DailyLog:
        key = date_key(value)
        if not isinstance(updates, dict):
            raise TypeError("updates must be a mapping of field names to values")

        self.saving = True
        self.error = None
        try:
            unknown = [k for k in updates if _canonical_key(k) is None]
            if unknown:
                errors = [f"{k}: Unknown field" for k in unknown]
                self._reject(key, errors, updates)

            current = self.logs.get(key)
            base = current.to_record() if current is not None else empty_record(key, user_id=self.user_id)
            merged = dict(base)
            for k, v in updates.items():
                alias = _canonical_key(k)
                if alias in _PROTECTED_FIELDS:
                    continue
                merged[alias] = v

            stamp = iso_now()
            if not _is_newer(stamp, base["updatedAt"]):
                stamp = base["updatedAt"]
            merged["updatedAt"] = stamp
            merged["createdAt"] = base["createdAt"]
            merged["date"] = key
            if self.user_id:
                merged["userId"] = self.user_id
            else:
                merged.pop("userId", None)

            validation = validate(merged)
            if not validation.success:
                self._reject(key, validation.errors, updates)

            log = validation.data
            self.logs[key] = log
            self.local_backup.save(key, log.to_record())
            self._audit_changes(key, current, log)

            if self.remote_enabled:
                self._schedule_remote_save(key)
            return log
        finally:
            self.saving = bool(self._in_flight)

    def _reject(self, key: str, errors: list[str], updates: dict[str, Any]) -> None:
        exc = FoodLogValidationError(key, errors)
        self.error = str(exc)
        self.record_error("updateFoodLog", str(exc), {"date": key, "updates": updates})
        raise exc

    async def update_meal(self, value, meal: str, meal_data: dict[str, Any]) -> DailyLog:
        if meal not in MEAL_SLOTS:
            raise ValueError(f"Unknown meal: {meal}")
        return await self._update_slot(value, meal, meal_data)

    async def update_snack(self, value, snack: str, snack_data: dict[str, Any]) -> DailyLog:
        if snack not in SNACK_SLOTS:
            raise ValueError(f"Unknown snack: {snack}")
        return await self._update_slot(value, snack, snack_data)

    async def _update_slot(self, value, slot: str, data: dict[str, Any]) -> DailyLog:
        key = date_key(value)
        current = self.logs.get(key)
        existing = current.to_record()[slot] if current is not None else empty_record(key)[slot]
        return await self.update_food_log(key, {slot: {**existing, **_to_camel_dict(data)}})

    async def update_health_metric(self, value, metric: str, metric_value: Any) -> DailyLog:
        alias = _canonical_key(metric)
        if alias not in HEALTH_FIELDS:
            raise ValueError(f"Unknown health metric: {metric}")
        return await self.update_food_log(value, {alias: metric_value})

    async def delete_food_log(self, value) -> bool:
        key = date_key(value)
        self._scheduler.cancel(key)
        current = self.logs.get(key)
        found = current is not None
        remote_id = current.id if current is not None else None
        if current is None:
            # Not cached (e.g. after a restart): find the stored copy so the remote id is known.
            raw = self.local_backup.load(key)
            if raw is not None:
                found = True
                if raw.get("id") and raw.get("userId") == self.user_id:
                    remote_id = str(raw["id"])
            if self.remote_enabled and not remote_id:
                result = await self.remote_store.get_by_date(self.user_id, key)
                if not result.success:
                    self.record_error("remote_delete", result.error or "Lookup failed", {"date": key})
                elif isinstance(result.data, dict):
                    found = True
                    remote_id = str(result.data["id"]) if result.data.get("id") else None
        if not found:
            return False

        self.logs.pop(key, None)
        self._sync_state.pop(key, None)
        self.local_backup.remove(key)
        self.add_audit_entry("delete", "user", date=key)

        if remote_id and self.remote_enabled:
            async with self._lock_for(key):
                result = await self.remote_store.delete(remote_id)
            if not result.success:
                self.record_error("remote_delete", result.error or "Delete failed", {"date": key, "id": remote_id})
        return True

    # ------------------------------------------------------------------
    # Remote persistence

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._save_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._save_locks[key] = lock
        return lock

    def _schedule_remote_save(self, key: str) -> None:
        self._sync_state[key] = "pending"

        async def _save() -> None:
            await self._save_remote(key)

        self._scheduler.schedule(key, _save)

    async def _save_remote(self, key: str) -> None:
        async with self._lock_for(key):
            # The record sent is the one current when the save runs, not when it was scheduled.
            log = self.logs.get(key)
            if log is None or not self.remote_enabled:
                return
            record = log.to_record()
            record["userId"] = self.user_id

            self._in_flight.add(key)
            self.saving = True
            try:
                result = await self.remote_store.upsert(record)
            except Exception as exc:
                logger.exception("Remote store raised during save of %s", key)
                result = StoreResult.fail(str(exc) or exc.__class__.__name__)
            finally:
                self._in_flight.discard(key)
                self.saving = bool(self._in_flight)

            if not result.success:
                self._sync_state[key] = "failed"
                self.record_error("remote_save", result.error or "Remote save failed", {"date": key})
                logger.warning("Remote save failed for %s, data preserved locally: %s", key, result.error)
                return
            await self._apply_remote_ack(key, result.data)

    async def _apply_remote_ack(self, key: str, data: Any) -> None:
        remote_id = str(data.get("id")) if isinstance(data, dict) and data.get("id") else None
        current = self.logs.get(key)
        if current is None:
            # Deleted while the save was in flight; do not leave an orphan behind.
            if remote_id:
                result = await self.remote_store.delete(remote_id)
                if not result.success:
                    self.record_error("remote_delete", result.error or "Delete failed", {"date": key, "id": remote_id})
            return
        if remote_id and current.id != remote_id:
            current = current.model_copy(update={"id": remote_id})
            self.logs[key] = current
            self.local_backup.save(key, current.to_record())
        if not self._scheduler.is_pending(key):
            self._sync_state[key] = "synced"

    def _retry_failed_saves(self) -> int:
        if not self.remote_enabled:
            return 0
        failed = [k for k, state in self._sync_state.items() if state == "failed" and k in self.logs]
        for key in failed:
            self._schedule_remote_save(key)
        if failed:
            logger.info("Retrying %s failed remote save(s)", len(failed))
        return len(failed)

    async def flush_pending_saves(self) -> None:
        await self._scheduler.flush()

    async def force_save(self, value) -> None:
        key = date_key(value)
        log = self.logs.get(key)
        if log is None:
            return
        self.local_backup.save(key, log.to_record())
        if not self.remote_enabled:
            return
        if self._scheduler.is_pending(key):
            await self._scheduler.flush(key)
        else:
            await self._save_remote(key)

    def sync_status(self, value) -> str | None:
        key = date_key(value)
        if key not in self.logs:
            return None
        if not self.remote_enabled:
            return "local"
        if key in self._in_flight or self._scheduler.is_pending(key):
            return "pending"
        return self._sync_state.get(key, "local")

    # ------------------------------------------------------------------
    # Recovery and sync

    async def sync_all_data(self) -> MergeReport:
        report = MergeReport()
        if not self.remote_enabled:
            return report

        self.syncing = True
        try:
            result = await self.remote_store.get_recent(self.user_id, self.recent_limit)
            if not result.success:
                self.record_error("remote_sync", result.error or "Sync failed")
                if result.index_error:
                    self.error = result.error
                report.errors.append(result.error or "Sync failed")
                return report

            for raw in result.data or []:
                validation = validate_and_migrate(raw)
                if not validation.success:
                    date = raw.get("date") if isinstance(raw, dict) else None
                    message = f"Remote record {date or '?'} invalid: {', '.join(validation.errors)}"
                    self.record_error("sync_validation", message, raw)
                    report.invalid += 1
                    report.errors.append(message)
                    continue
                log = validation.data
                existing = self.logs.get(log.date)
                if existing is not None and (
                    self.sync_status(log.date) == "pending" or _is_newer(existing.updated_at, log.updated_at)
                ):
                    report.skipped += 1
                    if log.id and not existing.id:
                        # Pending save must update the remote document, not create a second one.
                        self.logs[log.date] = existing.model_copy(update={"id": log.id})
                    if self.sync_status(log.date) != "pending":
                        self._schedule_remote_save(log.date)
                    continue
                if is_legacy_sleep_quality(raw.get("sleepQuality")):
                    self._audit_migration(log.date, raw.get("sleepQuality"), log.sleep_quality, source="sync")
                self.logs[log.date] = log
                self._sync_state[log.date] = "synced"
                self.local_backup.save(log.date, log.to_record())
                report.merged += 1
            if report.merged:
                self.add_audit_entry("update", "sync")
            self._retry_failed_saves()
            return report
        finally:
            self.syncing = False

    async def recover_from_local_storage(self) -> MergeReport:
        report = MergeReport()
        for key in self.local_backup.list_date_keys():
            raw = self.local_backup.load(key)
            if raw is None:
                report.invalid += 1
                message = f"Failed to recover {backup_key(key)}"
                report.errors.append(message)
                self.record_error("localStorage_recovery", message)
                continue
            log = self._accept_external(raw, source="migration", operation="localStorage_recovery")
            if log is None:
                report.invalid += 1
                report.errors.append(f"{key}: record could not be validated")
                continue
            if log.date != key:
                logger.warning("Backup entry %s holds a record dated %s", backup_key(key), log.date)
            existing = self.logs.get(log.date)
            if existing is not None and _is_newer(existing.updated_at, log.updated_at):
                report.skipped += 1
                continue
            if existing is not None and existing.id and not log.id:
                log = log.model_copy(update={"id": existing.id})
            self.logs[log.date] = log
            report.merged += 1

        self.add_audit_entry("migrate", "system")
        if report.invalid == 0:
            self.resolve_errors("localStorage")
        self._retry_failed_saves()
        return report

    async def validate_all_data(self) -> DataHealthReport:
        report = DataHealthReport()
        for key in sorted(self.logs):
            validation = validate(self.logs[key].to_record())
            if validation.success:
                report.valid += 1
            else:
                report.invalid += 1
                report.errors.append(f"{key}: {', '.join(validation.errors)}")
        return report

    def _accept_external(self, raw: Any, *, source: str, operation: str) -> DailyLog | None:
        """Lenient path for records that did not come from this session's user input."""
        validation = validate_and_migrate(raw)
        if not validation.success:
            validation = salvage(raw)
            if validation.success:
                self.record_error(
                    operation,
                    f"Data partially invalid, kept with defaults: {', '.join(validation.errors)}",
                    raw,
                )
            else:
                self.record_error(operation, f"Data invalid: {', '.join(validation.errors)}", raw)
                return None
        log = validation.data
        if isinstance(raw, dict) and is_legacy_sleep_quality(raw.get("sleepQuality")):
            self._audit_migration(log.date, raw.get("sleepQuality"), log.sleep_quality, source=source)
        return log

    # ------------------------------------------------------------------
    # Audit trail and error ledger

    def add_audit_entry(
        self,
        action: str,
        source: str,
        *,
        date: str | None = None,
        field: str | None = None,
        old_value: Any = None,
        new_value: Any = None,
    ) -> AuditEntry:
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")
        if source not in AUDIT_SOURCES:
            raise ValueError(f"Unknown audit source: {source}")
        entry = AuditEntry(
            timestamp=iso_now(),
            user_id=self.user_id or "anonymous",
            action=action,
            source=source,
            date=date,
            field=field,
            old_value=old_value,
            new_value=new_value,
        )
        self.audit_trail.append(entry)
        return entry

    def _audit_changes(self, key: str, previous: DailyLog | None, current: DailyLog) -> None:
        if previous is None:
            self.add_audit_entry("create", "user", date=key)
            return
        before = previous.to_record()
        after = current.to_record()
        changed = [
            name for name in after
            if name not in _PROTECTED_FIELDS and before.get(name) != after.get(name)
        ]
        if not changed:
            self.add_audit_entry("update", "user", date=key)
            return
        for name in changed:
            self.add_audit_entry(
                "update",
                "user",
                date=key,
                field=name,
                old_value=before.get(name),
                new_value=after.get(name),
            )

    def _audit_migration(self, key: str, old: Any, new: Any, *, source: str) -> None:
        self.add_audit_entry(
            "migrate",
            "migration" if source != "sync" else "sync",
            date=key,
            field="sleepQuality",
            old_value=old,
            new_value=new,
        )

    def get_audit_trail(self, start: datetime | None = None, end: datetime | None = None) -> list[AuditEntry]:
        entries = list(self.audit_trail)
        if start is None and end is None:
            return entries
        out: list[AuditEntry] = []
        for entry in entries:
            stamp = parse_iso_timestamp(entry.timestamp)
            if stamp is None:
                continue
            if start is not None and stamp < start:
                continue
            if end is not None and stamp > end:
                continue
            out.append(entry)
        return out

    def record_error(self, operation: str, error: str, data: Any = None) -> DataError:
        entry = DataError(timestamp=iso_now(), operation=operation, error=error, data=data)
        self.errors.append(entry)
        return entry

    def resolve_errors(self, operation_prefix: str | None = None) -> int:
        count = 0
        for entry in self.errors:
            if entry.resolved:
                continue
            if operation_prefix is None or entry.operation.startswith(operation_prefix):
                entry.resolved = True
                count += 1
        return count

    def clear_error(self) -> None:
        self.error = None

    @property
    def needs_recovery(self) -> bool:
        current = (self.error or "").lower()
        if "validation" in current or "data" in current:
            return True
        return any(e.operation.startswith("remote") and not e.resolved for e in self.errors)
