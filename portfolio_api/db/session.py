import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from portfolio_api.core.config import settings
from portfolio_api.models import Base

logger = logging.getLogger(__name__)


def build_session_factory(database_url: str, create_tables: bool = True) -> sessionmaker:
    """Create an engine + session factory for ``database_url``."""
    # Writes run in worker threads; SQLite connections must be shareable
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine: Engine = create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=settings.DEBUG,  # Log SQL queries in debug mode
    )
    if create_tables:
        Base.metadata.create_all(bind=engine, checkfirst=True)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def session_factory_from_settings() -> Optional[sessionmaker]:
    """Session factory when DATABASE_URL is configured, otherwise None."""
    if not settings.DATABASE_URL:
        return None
    try:
        return build_session_factory(settings.DATABASE_URL)
    except Exception as exc:
        # Persistence is optional; the contact flow runs without it
        logger.error("Contact persistence disabled, database unavailable: %s", exc)
        return None
