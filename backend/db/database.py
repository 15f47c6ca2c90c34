from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings


engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False,
)


# WAL keeps backup writes durable without blocking concurrent readers
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def run_startup_migrations() -> None:
    """Apply lightweight schema fixes for existing SQLite backup databases."""
    inspector = inspect(engine)

    def _table_columns(table_name: str) -> set[str]:
        try:
            return {col["name"] for col in inspector.get_columns(table_name)}
        except Exception:
            return set()

    backup_columns = _table_columns("local_backup_entries")
    if not backup_columns:
        # Tables may not exist yet on first boot.
        return

    alter_statements: list[str] = []
    if "updated_at" not in backup_columns:
        alter_statements.append("ALTER TABLE local_backup_entries ADD COLUMN updated_at DATETIME")

    with engine.begin() as conn:
        for stmt in alter_statements:
            conn.execute(text(stmt))
        conn.execute(text(
            """
            CREATE INDEX IF NOT EXISTS idx_local_backup_updated_at
            ON local_backup_entries (updated_at)
            """
        ))
