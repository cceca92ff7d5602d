"""
Database engine and session management
PostgreSQL in staging/prod, sqlite accepted for dev and tests
"""
import logging
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from ..config import config

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """
    Create an engine with settings suited to the backend

    sqlite URLs share one connection (StaticPool) so in-memory databases survive
    across sessions. PostgreSQL gets health-checked pooled connections.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_recycle=900,
        pool_timeout=30,
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "application_name": "riskmate",
        },
    )


engine = build_engine(config.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Get database session
    Use as FastAPI dependency: db: Session = Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine = None) -> None:
    """Create all tables that do not exist yet"""
    from .base import Base
    from . import models  # noqa: F401 - registers models on Base.metadata

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info(f"Database schema ensured on {target.url.get_backend_name()}")


def check_database_health() -> bool:
    """Run a trivial query against the configured database"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False
