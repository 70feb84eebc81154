"""SQLite engine creation and schema setup."""

import logging
import os

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

# Import tables so they are attached to SQLModel.metadata before create_all
from texttune.db import tables  # noqa: F401

logger = logging.getLogger(__name__)


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_db_engine(database_path: str) -> Engine:
    """Create a file-backed SQLite engine, making the parent directory if needed."""
    parent = os.path.dirname(os.path.abspath(database_path))
    os.makedirs(parent, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{database_path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)
    logger.info("Ensured database tables at %s", engine.url.database)


def open_session(engine: Engine) -> Session:
    """Session whose loaded rows stay usable after commit/close."""
    return Session(engine, expire_on_commit=False)
