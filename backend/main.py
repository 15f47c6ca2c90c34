import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config import settings
from db.database import engine, Base, SessionLocal, run_startup_migrations
from auth.session import AuthSession, bind_auth
from api.session import router as session_router
from api.food_logs import router as food_logs_router
from api.recovery import router as recovery_router
from api.insights import router as insights_router
from services.food_log_store import FoodLogStore
from services.local_backup import LocalBackup
from services.remote_store import RestRemoteStore

logger = logging.getLogger(__name__)

settings.validate_security_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)
run_startup_migrations()


def build_store() -> FoodLogStore:
    remote = None
    if settings.remote_sync_enabled:
        remote = RestRemoteStore(
            settings.REMOTE_STORE_URL,
            api_key=settings.REMOTE_STORE_API_KEY,
            collection=settings.REMOTE_STORE_COLLECTION,
            timeout_seconds=settings.REMOTE_STORE_TIMEOUT_SECONDS,
        )
    else:
        logger.info("REMOTE_STORE_URL not set; journal runs local-only")
    return FoodLogStore(
        LocalBackup(SessionLocal),
        remote,
        debounce_seconds=settings.SAVE_DEBOUNCE_SECONDS,
        recent_limit=settings.SYNC_RECENT_LIMIT,
        audit_limit=settings.AUDIT_TRAIL_LIMIT,
        error_limit=settings.ERROR_LEDGER_LIMIT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.store.flush_pending_saves()


app = FastAPI(title=settings.APP_NAME, version="1.0.0", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.store = build_store()
app.state.auth_session = AuthSession()
bind_auth(app.state.auth_session, app.state.store)


# Routers
app.include_router(session_router, prefix="/api")
app.include_router(food_logs_router, prefix="/api")
app.include_router(recovery_router, prefix="/api")
app.include_router(insights_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME, "remote_sync": settings.remote_sync_enabled}


# Serve frontend static files (in production)
static_dir = Path(__file__).parent / "static"
if static_dir.exists():
    app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")
