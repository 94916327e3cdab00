import logging

from app.db.session import engine
from app.db.base import Base
from app.models import *  # noqa: F401,F403 (registers models with Base)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("create_tables")

logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("All tables created successfully!")
