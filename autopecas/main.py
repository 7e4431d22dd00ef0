import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autopecas.core.config import CORS_ORIGINS, DATABASE_URL, DEV_ADMIN_EMAIL, DEV_ADMIN_PASSWORD
from autopecas.core.database import Base, SessionLocal, engine
from autopecas.core.logging_setup import configure_logging
from autopecas.core.startup_checks import ensure_migrations_applied, validate_database_environment
from autopecas.middleware.observability import ObservabilityMiddleware
from autopecas.middleware.session import SessionMiddleware
import autopecas.models  # garante que os models são importados antes do create_all

from autopecas.services.broadcast import broadcast_hub
from autopecas.services.users import ensure_dev_admin
from autopecas.routers.ai import router as ai_router
from autopecas.routers.auth import router as auth_router
from autopecas.routers.bot import router as bot_router
from autopecas.routers.conversations import router as conversations_router
from autopecas.routers.dashboard import router as dashboard_router
from autopecas.routers.internal_metrics import router as internal_metrics_router
from autopecas.routers.orders import router as orders_router
from autopecas.routers.products import router as products_router
from autopecas.routers.realtime import router as realtime_router
from autopecas.routers.reports import router as reports_router
from autopecas.routers.users import router as users_router
from autopecas.routers.whatsapp import router as whatsapp_router

configure_logging()

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[BOOTSTRAP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Autopeças WhatsApp API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)
app.add_middleware(SessionMiddleware)


def _bootstrap_dev_admin() -> None:
    if not DEV_ADMIN_EMAIL or not DEV_ADMIN_PASSWORD:
        logger.warning("%s skipped: configure DEV_ADMIN_EMAIL and DEV_ADMIN_PASSWORD.", BOOTSTRAP_PREFIX)
        return

    db = SessionLocal()
    try:
        user = ensure_dev_admin(db, email=DEV_ADMIN_EMAIL, password=DEV_ADMIN_PASSWORD)
        if user is None:
            logger.info("%s exists email=%s", BOOTSTRAP_PREFIX, DEV_ADMIN_EMAIL)
        else:
            logger.info("%s created success id=%s email=%s", BOOTSTRAP_PREFIX, user.id, user.email)
    except Exception:
        logger.exception("%s ERROR bootstrap failed", BOOTSTRAP_PREFIX)
        raise
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        _bootstrap_dev_admin()
    except Exception:
        logger.exception("%s ERROR startup failed", BOOTSTRAP_PREFIX)
        raise


# Routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(products_router)
app.include_router(conversations_router)
app.include_router(bot_router)
app.include_router(ai_router)
app.include_router(whatsapp_router)
app.include_router(orders_router)
app.include_router(dashboard_router)
app.include_router(reports_router)
app.include_router(realtime_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy", "connections": broadcast_hub.connection_count}
