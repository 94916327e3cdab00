"""
AI email assistant backend: Razorpay subscription reconciliation, the
metered chat quota and editor autocomplete.
"""
import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

from app.core import config

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True  # Override any existing configuration
)

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Run Alembic migrations on startup. Uses alembic.ini and DATABASE_URL.
    Fails startup if migrations fail, so the DB is never left out of sync."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    if not os.getenv("DATABASE_URL"):
        logger.error(
            "DATABASE_URL is not set. Alembic migrations will not run; "
            "tables are created from the models on the local default database."
        )
        return
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
        alembic_cfg.set_main_option("sqlalchemy.url", config.DATABASE_URL)
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise  # Fail startup so DB is not left out of sync; fix migration or env and redeploy


from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.routes import chat, completion, razorpay
from app.db.session import engine
from app.db.base import Base
# Import all models to ensure they're registered with Base
from app.models import RazorpaySubscription, ChatbotInteraction  # noqa: F401

app = FastAPI(title="AI Email Assistant API")


@app.on_event("startup")
async def startup_event():
    """Run Alembic migrations, falling back to create_all when there is no alembic.ini."""
    run_migrations()
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(razorpay.router, prefix="/api/razorpay", tags=["Razorpay"])
app.include_router(chat.router, prefix="/api/chat", tags=["Chat"])
app.include_router(completion.router, prefix="/api/completion", tags=["Completion"])


@app.get("/health")
async def health():
    return {"status": "ok"}
