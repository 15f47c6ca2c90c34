from __future__ import annotations

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.models import LocalBackupEntry  # noqa: E402
from services.food_log_store import FoodLogValidationError  # noqa: E402
from services.local_backup import LocalBackup  # noqa: E402
from services.remote_store import INDEX_ERROR_MESSAGE  # noqa: E402
from journal_support import FakeRemoteStore, make_backup, make_session_factory, make_store, raw_record  # noqa: E402
from utils.datetime_utils import parse_iso_timestamp, utcnow  # noqa: E402

DAY = "2024-03-01"


def test_breakfast_entry_flows_to_cache_backup_and_remote():
    factory = make_session_factory()
    backup = LocalBackup(factory)
    remote = FakeRemoteStore()

    async def scenario():
        store = make_store(remote, backup)
        await store.set_user_id("user-1")
        await store.load_food_log(DAY)
        await store.update_meal(DAY, "breakfast", {"time": "8:00 AM", "meatDairy": "eggs"})
        pending = store.sync_status(DAY)
        await store.flush_pending_saves()
        return store, pending

    store, pending = asyncio.run(scenario())

    log = store.get_food_log(DAY)
    assert log.breakfast.meat_dairy == "eggs"
    assert log.breakfast.time == "8:00 AM"
    assert log.user_id == "user-1"
    assert pending == "pending"
    assert store.sync_status(DAY) == "synced"

    db = factory()
    try:
        assert [row.key for row in db.query(LocalBackupEntry).all()] == ["foodLog_2024-03-01"]
    finally:
        db.close()
    assert backup.load(DAY)["breakfast"]["meatDairy"] == "eggs"

    assert len(remote.upserts) == 1
    sent = remote.upserts[0]
    assert sent["userId"] == "user-1"
    assert sent["breakfast"]["meatDairy"] == "eggs"
    assert log.id == "doc-1"


def test_concurrent_updates_keep_one_record_with_latest_timestamp():
    remote = FakeRemoteStore()

    async def scenario():
        store = make_store(remote)
        await store.set_user_id("user-1")
        results = await asyncio.gather(
            *(store.update_health_metric(DAY, "notes", f"note {i}") for i in range(10))
        )
        await store.flush_pending_saves()
        return store, results

    store, results = asyncio.run(scenario())

    assert list(store.logs) == [DAY]
    latest = max(parse_iso_timestamp(r.updated_at) for r in results)
    assert parse_iso_timestamp(store.logs[DAY].updated_at) == latest
    assert store.logs[DAY].notes == "note 9"
    # Debounced into a single remote write.
    assert len(remote.upserts) == 1
    assert len(remote.for_user("user-1")) == 1


def test_edits_during_an_in_flight_save_are_not_lost():
    remote = FakeRemoteStore(delay=0.05)

    async def scenario():
        store = make_store(remote, debounce=0.0)
        await store.set_user_id("user-1")
        await store.update_meal(DAY, "breakfast", {"meatDairy": "yogurt"})
        await asyncio.sleep(0.01)
        await store.update_health_metric(DAY, "notes", "slept well")
        await store.flush_pending_saves()
        return store

    store = asyncio.run(scenario())

    docs = remote.for_user("user-1")
    assert len(docs) == 1
    assert docs[0]["breakfast"]["meatDairy"] == "yogurt"
    assert docs[0]["notes"] == "slept well"
    assert remote.upserts[-1]["id"] == docs[0]["id"]
    assert store.logs[DAY].id == docs[0]["id"]


def test_created_at_is_kept_and_updated_at_advances():
    async def scenario():
        store = make_store()
        first = await store.update_health_metric(DAY, "exercise", "walk")
        await asyncio.sleep(0.005)
        second = await store.update_health_metric(DAY, "exercise", "run")
        return first, second

    first, second = asyncio.run(scenario())
    assert second.created_at == first.created_at
    assert parse_iso_timestamp(second.updated_at) >= parse_iso_timestamp(first.updated_at)


def test_invalid_update_leaves_cache_untouched_and_is_ledgered():
    async def scenario():
        store = make_store()
        await store.update_health_metric(DAY, "dailyWaterIntake", "64 oz")
        with pytest.raises(FoodLogValidationError) as excinfo:
            await store.update_health_metric(DAY, "dailyWaterIntake", "500 l")
        return store, excinfo.value

    store, exc = asyncio.run(scenario())
    assert store.logs[DAY].daily_water_intake == "64 oz"
    assert any(err.startswith("dailyWaterIntake") for err in exc.errors)
    assert store.errors[-1].operation == "updateFoodLog"
    assert store.needs_recovery
    assert store.local_backup.load(DAY)["dailyWaterIntake"] == "64 oz"


def test_unknown_fields_are_rejected():
    async def scenario():
        store = make_store()
        with pytest.raises(FoodLogValidationError):
            await store.update_food_log(DAY, {"caffeine": "lots"})
        with pytest.raises(ValueError):
            await store.update_meal(DAY, "brunch", {"fats": "butter"})
        return store

    store = asyncio.run(scenario())
    assert DAY not in store.logs


def test_updates_accept_snake_case_and_ignore_protected_fields():
    async def scenario():
        store = make_store()
        return await store.update_food_log(
            DAY,
            {"sleep_hours": "7h 30m", "date": "1999-01-01", "createdAt": "2000-01-01T00:00:00Z"},
        )

    log = asyncio.run(scenario())
    assert log.date == DAY
    assert log.sleep_hours == "7h 30m"
    assert not log.created_at.startswith("2000")


def test_audit_trail_records_one_entry_per_changed_field():
    async def scenario():
        store = make_store()
        await store.load_food_log(DAY)
        await store.update_food_log(DAY, {"notes": "a", "exercise": "swim"})
        return store

    store = asyncio.run(scenario())
    entries = [e for e in store.get_audit_trail() if e.action == "update"]
    assert {e.field for e in entries} == {"notes", "exercise"}
    notes = next(e for e in entries if e.field == "notes")
    assert (notes.old_value, notes.new_value) == ("", "a")
    assert notes.user_id == "anonymous"
    assert notes.date == DAY

    now = utcnow()
    assert store.get_audit_trail(start=now + timedelta(minutes=1)) == []
    assert len(store.get_audit_trail(start=now - timedelta(minutes=1), end=now + timedelta(minutes=1))) == 2


def test_anonymous_load_reads_local_backup():
    backup = make_backup()
    backup.save(DAY, raw_record(DAY, notes="offline day", sleepQuality=4))

    store = make_store(backup=backup)
    log = asyncio.run(store.load_food_log(DAY))
    assert log.notes == "offline day"
    assert log.sleep_quality == 80
    assert any(e.action == "migrate" and e.field == "sleepQuality" for e in store.audit_trail)


def test_authenticated_load_prefers_remote_and_ignores_backup():
    backup = make_backup()
    backup.save(DAY, raw_record(DAY, notes="from backup"))
    remote = FakeRemoteStore()
    remote.seed(raw_record(DAY, userId="user-1", notes="from remote"))

    async def scenario():
        store = make_store(remote, backup)
        store.user_id = "user-1"
        first = await store.load_food_log(DAY)
        missing = await store.load_food_log("2024-03-02")
        return first, missing

    first, missing = asyncio.run(scenario())
    assert first.notes == "from remote"
    assert missing.notes == ""
    assert not missing.has_any_entry()


def test_load_is_a_no_op_for_cached_dates():
    remote = FakeRemoteStore()

    async def scenario():
        store = make_store(remote)
        store.user_id = "user-1"
        await store.update_health_metric(DAY, "notes", "local edit")
        remote.seed(raw_record(DAY, userId="user-1", notes="remote copy"))
        log = await store.load_food_log(DAY)
        await store.flush_pending_saves()
        return log

    assert asyncio.run(scenario()).notes == "local edit"


def test_index_error_surfaces_the_refresh_message():
    remote = FakeRemoteStore()
    remote.index_error = True

    async def scenario():
        store = make_store(remote)
        store.user_id = "user-1"
        log = await store.load_food_log(DAY)
        return store, log

    store, log = asyncio.run(scenario())
    assert store.error == INDEX_ERROR_MESSAGE
    assert not log.has_any_entry()
    assert store.errors[-1].operation == "remote_load"


def test_partially_invalid_remote_record_is_kept_with_defaults():
    remote = FakeRemoteStore()
    remote.seed(raw_record(DAY, userId="user-1", notes="keep me", dailyWaterIntake="500 l"))

    async def scenario():
        store = make_store(remote)
        store.user_id = "user-1"
        return store, await store.load_food_log(DAY)

    store, log = asyncio.run(scenario())
    assert log.notes == "keep me"
    assert log.daily_water_intake == ""
    assert store.errors[-1].operation == "remote_load_validation"


def test_remote_save_failure_keeps_local_data_and_flags_recovery():
    remote = FakeRemoteStore()
    remote.fail_upserts = True

    async def scenario():
        store = make_store(remote)
        await store.set_user_id("user-1")
        await store.update_health_metric(DAY, "notes", "important")
        await store.flush_pending_saves()
        return store

    store = asyncio.run(scenario())
    assert store.logs[DAY].notes == "important"
    assert store.local_backup.load(DAY)["notes"] == "important"
    assert store.sync_status(DAY) == "failed"
    assert store.errors[-1].operation == "remote_save"
    store.clear_error()
    assert store.needs_recovery
    assert store.resolve_errors("remote") == 1
    assert not store.needs_recovery


def test_sign_in_merges_remote_days_without_dropping_local_ones():
    remote = FakeRemoteStore()
    remote.seed(raw_record("2024-02-02", userId="user-1", sleepQuality=3, notes="cloud"))

    async def scenario():
        store = make_store(remote)
        await store.update_health_metric("2024-02-01", "notes", "offline")
        await store.set_user_id("user-1")
        return store

    store = asyncio.run(scenario())
    assert store.logs["2024-02-01"].notes == "offline"
    assert store.logs["2024-02-02"].notes == "cloud"
    assert store.logs["2024-02-02"].sleep_quality == 60
    assert store.local_backup.load("2024-02-02")["sleepQuality"] == 60


def test_sync_keeps_unsaved_local_edits():
    remote = FakeRemoteStore()
    remote.seed(raw_record(DAY, userId="user-1", notes="stale remote"))

    async def scenario():
        store = make_store(remote, debounce=5.0)
        store.user_id = "user-1"
        await store.update_health_metric(DAY, "notes", "fresh local")
        report = await store.sync_all_data()
        await store.flush_pending_saves()
        return store, report

    store, report = asyncio.run(scenario())
    assert report.skipped == 1
    assert store.logs[DAY].notes == "fresh local"
    assert remote.upserts[-1]["notes"] == "fresh local"
    assert len(remote.for_user("user-1")) == 1


def test_sync_drops_invalid_remote_records_and_ledgers_them():
    remote = FakeRemoteStore()
    remote.seed(raw_record("2024-02-01", userId="user-1", notes="ok"))
    remote.seed(raw_record("2024-02-02", userId="user-1", exercise="<script>x</script>"))

    async def scenario():
        store = make_store(remote)
        store.user_id = "user-1"
        return store, await store.sync_all_data()

    store, report = asyncio.run(scenario())
    assert report.merged == 1
    assert report.invalid == 1
    assert "2024-02-02" not in store.logs
    assert store.errors[-1].operation == "sync_validation"


def test_switching_accounts_clears_the_previous_users_days():
    remote = FakeRemoteStore()

    async def scenario():
        store = make_store(remote)
        await store.set_user_id("user-1")
        await store.update_health_metric(DAY, "notes", "mine")
        await store.set_user_id("user-2")
        return store

    store = asyncio.run(scenario())
    assert store.user_id == "user-2"
    assert DAY not in store.logs
    assert remote.for_user("user-1")[0]["notes"] == "mine"
    assert remote.for_user("user-2") == []


def test_delete_removes_day_everywhere():
    remote = FakeRemoteStore()

    async def scenario():
        store = make_store(remote)
        await store.set_user_id("user-1")
        await store.update_health_metric(DAY, "notes", "typo day")
        await store.flush_pending_saves()
        deleted = await store.delete_food_log(DAY)
        return store, deleted

    store, deleted = asyncio.run(scenario())
    assert deleted
    assert store.get_food_log(DAY) is None
    assert store.local_backup.load(DAY) is None
    assert remote.deletes == ["doc-1"]
    assert remote.for_user("user-1") == []
    assert store.audit_trail[-1].action == "delete"


def test_recovery_restores_every_backup_day_and_upgrades_legacy_ones():
    backup = make_backup()
    backup.save("2024-01-01", raw_record("2024-01-01", sleepQuality=4))
    backup.save("2024-01-02", raw_record("2024-01-02", notes="normal day", sleepQuality=70))
    backup.save("2024-01-03", {"date": "2024-01-03", "exercise": "yoga"})

    async def scenario():
        store = make_store(backup=backup)
        return store, await store.recover_from_local_storage()

    store, report = asyncio.run(scenario())
    assert report.merged == 3
    assert report.invalid == 0
    assert sorted(store.logs) == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert store.logs["2024-01-01"].sleep_quality == 80
    assert store.logs["2024-01-02"].notes == "normal day"
    assert store.logs["2024-01-03"].exercise == "yoga"
    assert any(e.action == "migrate" and e.source == "system" for e in store.audit_trail)


def test_recovery_counts_unreadable_entries():
    backup = make_backup()
    backup.save_raw("2024-01-01", "{broken")
    backup.save("2024-01-02", raw_record("2024-01-02"))

    store = make_store(backup=backup)
    report = asyncio.run(store.recover_from_local_storage())
    assert report.merged == 1
    assert report.invalid == 1
    assert store.errors[-1].operation == "localStorage_recovery"


def test_validate_all_data_reports_counts():
    async def scenario():
        store = make_store()
        await store.update_health_metric("2024-01-01", "notes", "fine")
        await store.update_health_metric("2024-01-02", "notes", "also fine")
        # Simulate an out-of-band bad value in memory.
        store.logs["2024-01-02"] = store.logs["2024-01-02"].model_copy(update={"sleep_quality": 3})
        return await store.validate_all_data()

    report = asyncio.run(scenario())
    assert (report.valid, report.invalid) == (1, 1)
    assert report.errors[0].startswith("2024-01-02")


def test_error_ledger_is_bounded():
    store = make_store()
    store.errors = type(store.errors)(maxlen=3)
    for i in range(5):
        store.record_error("remote_save", f"failure {i}")
    assert [e.error for e in store.errors] == ["failure 2", "failure 3", "failure 4"]


def test_logs_in_range_are_sorted_and_inclusive():
    async def scenario():
        store = make_store()
        for day in ("2024-01-03", "2024-01-01", "2024-01-05"):
            await store.update_health_metric(day, "notes", day)
        return store

    store = asyncio.run(scenario())
    assert [log.date for log in store.get_logs_in_range("2024-01-01", "2024-01-03")] == ["2024-01-01", "2024-01-03"]


def test_signed_in_without_remote_loads_and_keeps_backup_day():
    backup = make_backup()
    backup.save(DAY, raw_record(DAY, notes="important day", exercise="ran 5k"))

    async def scenario():
        store = make_store(backup=backup)
        await store.set_user_id("user-1")
        loaded = await store.load_food_log(DAY)
        await store.update_food_log(DAY, {"bowelMovements": "normal"})
        return store, loaded

    store, loaded = asyncio.run(scenario())
    assert loaded.notes == "important day"
    assert store.sync_status(DAY) == "local"
    saved = backup.load(DAY)
    assert saved["notes"] == "important day"
    assert saved["exercise"] == "ran 5k"
    assert saved["bowelMovements"] == "normal"
    assert saved["userId"] == "user-1"


def test_numeric_remote_ids_are_accepted_as_strings():
    remote = FakeRemoteStore()
    remote.seed(raw_record(DAY, userId="user-1", id=42, notes="from cloud"))

    async def scenario():
        store = make_store(remote)
        await store.set_user_id("user-1")
        return store

    store = asyncio.run(scenario())
    log = store.get_food_log(DAY)
    assert log is not None
    assert log.id == "42"
    assert log.notes == "from cloud"
    assert not [e for e in store.errors if e.operation == "sync_validation"]


def test_delete_of_uncached_day_uses_stored_copy():
    remote = FakeRemoteStore()
    existing = remote.seed(raw_record(DAY, userId="user-1", notes="keep me"))
    backup = make_backup()
    backup.save(DAY, raw_record(DAY, userId="user-1", id=existing["id"], notes="keep me"))

    async def scenario():
        store = make_store(remote, backup)
        store.user_id = "user-1"
        deleted = await store.delete_food_log(DAY)
        missing = await store.delete_food_log("2024-03-09")
        return store, deleted, missing

    store, deleted, missing = asyncio.run(scenario())
    assert deleted
    assert backup.load(DAY) is None
    assert remote.deletes == [existing["id"]]
    assert remote.for_user("user-1") == []
    assert not missing
    assert [e.action for e in store.audit_trail] == ["delete"]


def test_delete_of_unknown_day_has_no_side_effects():
    backup = make_backup()
    backup.save("2024-03-02", raw_record("2024-03-02", notes="other day"))

    async def scenario():
        store = make_store(backup=backup)
        return store, await store.delete_food_log(DAY)

    store, deleted = asyncio.run(scenario())
    assert not deleted
    assert list(store.audit_trail) == []
    assert backup.load("2024-03-02")["notes"] == "other day"


def test_sync_retries_failed_remote_saves():
    remote = FakeRemoteStore()
    remote.fail_upserts = True

    async def scenario():
        store = make_store(remote)
        await store.set_user_id("user-1")
        await store.update_health_metric(DAY, "notes", "offline edit")
        await store.flush_pending_saves()
        failed = store.sync_status(DAY)
        remote.fail_upserts = False
        await store.sync_all_data()
        await store.flush_pending_saves()
        return store, failed

    store, failed = asyncio.run(scenario())
    assert failed == "failed"
    docs = remote.for_user("user-1")
    assert len(docs) == 1
    assert docs[0]["notes"] == "offline edit"
    assert store.sync_status(DAY) == "synced"
    assert store.logs[DAY].id == docs[0]["id"]


def test_sync_pushes_local_day_newer_than_remote_copy():
    remote = FakeRemoteStore()
    existing = remote.seed(raw_record(DAY, userId="user-1", notes="old"))

    async def scenario():
        store = make_store(remote)
        await store.update_health_metric(DAY, "notes", "newer offline")
        await store.set_user_id("user-1")
        await store.flush_pending_saves()
        return store

    store = asyncio.run(scenario())
    docs = remote.for_user("user-1")
    assert len(docs) == 1
    assert docs[0]["id"] == existing["id"]
    assert docs[0]["notes"] == "newer offline"
    assert store.logs[DAY].id == existing["id"]


def test_burst_of_edits_is_coalesced_into_one_upsert():
    remote = FakeRemoteStore()

    async def scenario():
        store = make_store(remote, debounce=0.05)
        await store.set_user_id("user-1")
        await store.update_health_metric(DAY, "notes", "first")
        await store.update_meal(DAY, "lunch", {"meatDairy": "tuna"})
        await store.update_health_metric(DAY, "notes", "final")
        before = len(remote.upserts)
        await asyncio.sleep(0.2)
        return store, before

    store, before = asyncio.run(scenario())
    assert before == 0
    assert len(remote.upserts) == 1
    sent = remote.upserts[0]
    assert sent["notes"] == "final"
    assert sent["lunch"]["meatDairy"] == "tuna"
    assert store.sync_status(DAY) == "synced"


def test_sign_out_flushes_and_clears_the_users_days():
    remote = FakeRemoteStore()

    async def scenario():
        store = make_store(remote, debounce=5.0)
        await store.set_user_id("user-1")
        await store.update_health_metric(DAY, "notes", "mine")
        await store.set_user_id(None)
        return store

    store = asyncio.run(scenario())
    assert store.user_id is None
    assert store.logs == {}
    assert remote.for_user("user-1")[0]["notes"] == "mine"
