from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.models import LocalBackupEntry  # noqa: E402
from services.local_backup import LocalBackup, backup_key  # noqa: E402
from journal_support import make_session_factory, raw_record  # noqa: E402


def test_save_and_load_round_trip_under_prefixed_key():
    factory = make_session_factory()
    backup = LocalBackup(factory)
    record = raw_record("2024-03-01", notes="hello")

    assert backup.save("2024-03-01", record)
    assert backup.load("2024-03-01") == record

    db = factory()
    try:
        keys = [row.key for row in db.query(LocalBackupEntry).all()]
    finally:
        db.close()
    assert keys == [backup_key("2024-03-01")] == ["foodLog_2024-03-01"]


def test_save_overwrites_existing_entry():
    backup = LocalBackup(make_session_factory())
    backup.save("2024-03-01", raw_record("2024-03-01", notes="first"))
    backup.save("2024-03-01", raw_record("2024-03-01", notes="second"))
    assert backup.load("2024-03-01")["notes"] == "second"
    assert backup.list_date_keys() == ["2024-03-01"]


def test_list_date_keys_only_returns_journal_entries_sorted():
    factory = make_session_factory()
    backup = LocalBackup(factory)
    backup.save("2024-03-02", raw_record("2024-03-02"))
    backup.save("2024-03-01", raw_record("2024-03-01"))

    db = factory()
    try:
        db.add(LocalBackupEntry(key="preferences", payload="{}"))
        db.add(LocalBackupEntry(key="foodLogXbogus", payload="{}"))
        db.commit()
    finally:
        db.close()

    assert backup.list_date_keys() == ["2024-03-01", "2024-03-02"]


def test_corrupt_entries_load_as_missing():
    backup = LocalBackup(make_session_factory())
    backup.save_raw("2024-03-01", "{not json")
    backup.save_raw("2024-03-02", "[1, 2, 3]")
    assert backup.load("2024-03-01") is None
    assert backup.load("2024-03-02") is None
    assert backup.load("2024-03-03") is None
    assert backup.load_all() == {}


def test_remove_deletes_the_entry():
    backup = LocalBackup(make_session_factory())
    backup.save("2024-03-01", raw_record("2024-03-01"))
    assert backup.remove("2024-03-01")
    assert backup.load("2024-03-01") is None
    assert backup.remove("2024-03-01")


def test_unserializable_record_is_not_saved():
    backup = LocalBackup(make_session_factory())
    assert not backup.save("2024-03-01", {"date": "2024-03-01", "bad": object()})
    assert backup.load("2024-03-01") is None
