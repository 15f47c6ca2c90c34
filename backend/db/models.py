from datetime import datetime
from sqlalchemy import Column, Text, DateTime

from db.database import Base


class LocalBackupEntry(Base):
    """One serialized daily log, keyed ``foodLog_<YYYY-MM-DD>``."""

    __tablename__ = "local_backup_entries"

    key = Column(Text, primary_key=True)
    payload = Column(Text, nullable=False)  # JSON, legacy or current shape
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
