"""Bulk sweeps that upgrade stored records in place.

Each sweep walks every record it can see, keeps going past individual
failures, and returns one aggregate ``SweepReport``. The remote sweep is
administrative and irreversible; nothing calls it automatically.
"""

import logging
from dataclasses import dataclass, field

from services.food_log_validation import validate_and_migrate
from services.local_backup import LocalBackup, backup_key
from services.remote_store import RemoteStore
from utils.data_migration import is_legacy_sleep_quality, migrate_food_log_sleep_data

logger = logging.getLogger(__name__)

EARLIEST_DATE = "0001-01-01"
LATEST_DATE = "9999-12-31"


@dataclass
class SweepReport:
    checked: int = 0
    migrated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)


def migrate_local_backup(backup: LocalBackup) -> SweepReport:
    """Rewrite legacy 1-5 sleep quality in every backup entry."""
    report = SweepReport()
    for date in backup.list_date_keys():
        report.checked += 1
        record = backup.load(date)
        if record is None:
            report.fail(f"{backup_key(date)}: unreadable entry")
            continue
        outcome = migrate_food_log_sleep_data(record)
        if not outcome.updated:
            continue
        if backup.save(date, record):
            report.migrated += 1
        else:
            report.fail(f"{backup_key(date)}: write failed")

    logger.info(
        "Local backup sweep: checked=%s migrated=%s failed=%s",
        report.checked,
        report.migrated,
        report.failed,
    )
    return report


async def migrate_remote_sleep_quality(remote: RemoteStore, user_id: str) -> SweepReport:
    report = SweepReport()
    result = await remote.get_range(user_id, EARLIEST_DATE, LATEST_DATE)
    if not result.success:
        report.fail(result.error or "Remote scan failed")
        return report

    for document in result.data or []:
        report.checked += 1
        if not is_legacy_sleep_quality(document.get("sleepQuality")):
            continue
        record = dict(document)
        outcome = migrate_food_log_sleep_data(record)
        saved = await remote.upsert(record)
        if saved.success:
            report.migrated += 1
            logger.info(
                "Remote sleep quality for %s: %s -> %s",
                document.get("date"),
                outcome.original_quality,
                outcome.new_quality,
            )
        else:
            report.fail(f"{document.get('date', document.get('id', '?'))}: {saved.error}")

    logger.info(
        "Remote sleep quality sweep for %s: checked=%s migrated=%s failed=%s",
        user_id,
        report.checked,
        report.migrated,
        report.failed,
    )
    return report


async def sync_local_backup_to_remote(backup: LocalBackup, remote: RemoteStore, user_id: str) -> SweepReport:
    """Push every backup record to the remote store under ``user_id``.

    Records are migrated and validated first; an existing remote document
    for the same date is updated rather than duplicated.
    """
    report = SweepReport()
    for date, raw in backup.load_all().items():
        report.checked += 1
        validation = validate_and_migrate(raw)
        if not validation.success:
            report.fail(f"{date}: {', '.join(validation.errors)}")
            continue
        record = validation.data.to_record()
        record["userId"] = user_id

        existing = await remote.get_by_date(user_id, record["date"])
        if not existing.success:
            report.fail(f"{date}: {existing.error}")
            continue
        if isinstance(existing.data, dict) and existing.data.get("id"):
            record["id"] = str(existing.data["id"])
        else:
            record.pop("id", None)

        saved = await remote.upsert(record)
        if saved.success:
            report.migrated += 1
        else:
            report.fail(f"{date}: {saved.error}")

    logger.info(
        "Backup to remote sync for %s: checked=%s pushed=%s failed=%s",
        user_id,
        report.checked,
        report.migrated,
        report.failed,
    )
    return report
