# backend/config/database.py
import logging
import sqlite3
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def engine_options(url: str) -> Dict[str, Any]:
    """Engine keyword arguments for the configured backend."""
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True, "connect_args": {"connect_timeout": 30}}

    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        options["poolclass"] = StaticPool
    return options


engine = create_engine(settings.DATABASE_URL, echo=False, **engine_options(settings.DATABASE_URL))

# Order change-feed listeners are attached to this factory at startup
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; rolled back if the request fails mid-transaction."""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Factory for code that opens short sessions itself, such as WebSocket handlers."""
    return SessionLocal


@event.listens_for(Engine, "connect")
def enforce_sqlite_foreign_keys(dbapi_connection, connection_record):
    """assignedTo / createdBy / team leader references are real foreign keys."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_database(bind=None):
    """Create the users, orders and notifications tables."""
    from models.base import Base
    import models.user  # noqa: F401
    import models.order  # noqa: F401
    import models.notification  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info(f"Database tables initialized: {', '.join(sorted(Base.metadata.tables))}")


def check_database_health() -> bool:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
