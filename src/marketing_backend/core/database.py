"""Database module."""

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger("database")


class Base(DeclarativeBase):
    pass


def create_db_engine(database_url: str) -> Engine:
    """Create the engine for the configured database URL."""
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set in your .env file!")

    connect_args = {}
    if database_url.startswith("sqlite"):
        # Requests are served from a threadpool.
        connect_args["check_same_thread"] = False

    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory whose objects stay readable after commit."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def check_connection(engine: Engine) -> bool:
    """Run a trivial query to confirm the database is reachable."""
    try:
        with engine.connect() as conn:
            result = conn.execute(text("SELECT 1"))
            logger.info("Database connection successful: %s", result.scalar())
            return True
    except SQLAlchemyError as e:
        logger.error("Database connection failed: %s", e)
        return False
