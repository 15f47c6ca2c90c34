from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Daily Journal"
    DATABASE_URL: str = "sqlite:///data/journal.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:8050",
        "https://localhost:8050",
        "https://127.0.0.1:8050",
    ]
    # Hosted document store; an empty URL keeps the journal local-only.
    REMOTE_STORE_URL: str = ""
    REMOTE_STORE_API_KEY: str = ""
    REMOTE_STORE_COLLECTION: str = "foodLogs"
    REMOTE_STORE_TIMEOUT_SECONDS: float = 10.0
    SAVE_DEBOUNCE_SECONDS: float = 1.0
    SYNC_RECENT_LIMIT: int = 100
    AUDIT_TRAIL_LIMIT: int = 1000
    ERROR_LEDGER_LIMIT: int = 100
    AUTH_TOKEN_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    @property
    def remote_sync_enabled(self) -> bool:
        return bool((self.REMOTE_STORE_URL or "").strip())

    def validate_security_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if self.AUTH_TOKEN_SECRET == "change-me-in-production":
            errors.append("AUTH_TOKEN_SECRET must be changed from the default value")
        if len((self.AUTH_TOKEN_SECRET or "").strip()) < 16:
            errors.append("AUTH_TOKEN_SECRET must be at least 16 characters")
        if self.remote_sync_enabled and not self.REMOTE_STORE_URL.startswith("https://"):
            errors.append("REMOTE_STORE_URL must use https in production-like environments")
        if self.SAVE_DEBOUNCE_SECONDS < 0:
            errors.append("SAVE_DEBOUNCE_SECONDS cannot be negative")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Insecure production configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
