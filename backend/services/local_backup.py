"""Durable on-disk safety net for daily logs.

Every method is best-effort: storage and parse failures are logged and turned
into a miss, never raised, so the backup cannot become a new failure mode.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import LocalBackupEntry

logger = logging.getLogger(__name__)

KEY_PREFIX = "foodLog_"


def backup_key(date: str) -> str:
    return f"{KEY_PREFIX}{date}"


class LocalBackup:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def save(self, date: str, record: dict[str, Any]) -> bool:
        key = backup_key(date)
        db = self._session_factory()
        try:
            payload = json.dumps(record, ensure_ascii=False)
            row = db.get(LocalBackupEntry, key)
            if row is None:
                db.add(LocalBackupEntry(key=key, payload=payload, updated_at=datetime.utcnow()))
            else:
                row.payload = payload
                row.updated_at = datetime.utcnow()
            db.commit()
            return True
        except (SQLAlchemyError, TypeError, ValueError):
            db.rollback()
            logger.exception("Failed to save %s to local backup", key)
            return False
        finally:
            db.close()

    def load(self, date: str) -> dict[str, Any] | None:
        key = backup_key(date)
        db = self._session_factory()
        try:
            row = db.get(LocalBackupEntry, key)
            if row is None:
                return None
            parsed = json.loads(row.payload)
            if not isinstance(parsed, dict):
                logger.error("Local backup entry %s is not an object", key)
                return None
            return parsed
        except (SQLAlchemyError, ValueError):
            logger.exception("Failed to load %s from local backup", key)
            return None
        finally:
            db.close()

    def remove(self, date: str) -> bool:
        key = backup_key(date)
        db = self._session_factory()
        try:
            row = db.get(LocalBackupEntry, key)
            if row is not None:
                db.delete(row)
                db.commit()
            return True
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to remove %s from local backup", key)
            return False
        finally:
            db.close()

    def list_date_keys(self) -> list[str]:
        db = self._session_factory()
        try:
            rows = (
                db.query(LocalBackupEntry.key)
                .filter(LocalBackupEntry.key.startswith(KEY_PREFIX, autoescape=True))
                .order_by(LocalBackupEntry.key.asc())
                .all()
            )
            return [row.key[len(KEY_PREFIX):] for row in rows]
        except SQLAlchemyError:
            logger.exception("Failed to enumerate local backup entries")
            return []
        finally:
            db.close()

    def load_all(self) -> dict[str, dict[str, Any]]:
        out: dict[str, dict[str, Any]] = {}
        for date in self.list_date_keys():
            record = self.load(date)
            if record is not None:
                out[date] = record
        return out

    def save_raw(self, date: str, payload: str) -> bool:
        """Store an already-serialized payload as-is, without re-encoding it."""
        key = backup_key(date)
        db = self._session_factory()
        try:
            row = db.get(LocalBackupEntry, key)
            if row is None:
                db.add(LocalBackupEntry(key=key, payload=payload, updated_at=datetime.utcnow()))
            else:
                row.payload = payload
            db.commit()
            return True
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to write raw payload for %s", key)
            return False
        finally:
            db.close()
