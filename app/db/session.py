from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from app.core.config import DATABASE_URL

SQLALCHEMY_DATABASE_URL = DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite is for local dev/tests; FastAPI runs sync handlers in a threadpool
        return {"connect_args": {"check_same_thread": False}}
    # Configure connection pooling to prevent connection exhaustion under
    # concurrent webhook deliveries and chat requests
    return {
        "poolclass": QueuePool,
        "pool_size": 10,  # Number of connections to maintain persistently
        "max_overflow": 20,  # Maximum number of connections to create beyond pool_size
        "pool_timeout": 30,  # Seconds to wait before giving up on getting a connection
        "pool_pre_ping": True,  # Verify connections before using them (handles stale connections)
        "pool_recycle": 3600,  # Recycle connections after 1 hour to prevent stale connections
    }


engine = create_engine(SQLALCHEMY_DATABASE_URL, echo=False, **_engine_kwargs(SQLALCHEMY_DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
