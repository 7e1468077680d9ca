"""
Database session management for gridbase.

Provides session factory and initialization utilities.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from ..errors import PersistenceError
from ..utils import parse_number, fold_text
from .models import Base

logger = logging.getLogger(__name__)

DB_FILENAME = 'workspace.db'

# Global session factory
_SessionFactory: Optional[sessionmaker] = None
_engine: Optional[Engine] = None


def _register_sqlite_hooks(engine: Engine):
    """Enable foreign keys and install the value-coercion SQL functions."""

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # Same coercions as the in-memory evaluator, so both paths agree
        dbapi_conn.create_function("to_number", 1, parse_number, deterministic=True)
        dbapi_conn.create_function("fold_text", 1, fold_text, deterministic=True)


def create_workspace_engine(workspace_path: Path, echo: bool = False) -> Engine:
    """Create an engine for the workspace database without touching globals."""
    db_url = f'sqlite:///{Path(workspace_path) / DB_FILENAME}'
    engine = create_engine(db_url, echo=echo)
    _register_sqlite_hooks(engine)
    return engine


def init_db(workspace_path: Path, echo: bool = False) -> Engine:
    """
    Initialize database and create all tables.

    Args:
        workspace_path: Path to workspace directory
        echo: If True, log all SQL statements (debug mode)

    Returns:
        SQLAlchemy engine
    """
    global _engine, _SessionFactory

    workspace_path = Path(workspace_path)
    workspace_path.mkdir(parents=True, exist_ok=True)

    if _engine is not None:
        _engine.dispose()

    _engine = create_workspace_engine(workspace_path, echo=echo)
    Base.metadata.create_all(_engine)

    _SessionFactory = sessionmaker(bind=_engine)
    logger.debug(f"Initialized database at {workspace_path / DB_FILENAME}")

    return _engine


def get_session() -> Session:
    """
    Get a new database session.

    Raises:
        RuntimeError: If database not initialized
    """
    if _SessionFactory is None:
        raise RuntimeError(
            "Database not initialized. Call init_db() first."
        )
    return _SessionFactory()


@contextmanager
def atomic(session: Session):
    """
    Run a unit of work on an existing session.

    Commits on success and rolls back on any failure, so no partial state
    is ever committed. Storage failures surface as PersistenceError; domain
    errors propagate unchanged.

    Usage:
        with atomic(session):
            session.add(row)
            session.add_all(cells)
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Unit of work rolled back: {e}")
        raise PersistenceError(f"Storage operation failed: {e}") from e
    except Exception:
        session.rollback()
        raise


@contextmanager
def session_scope():
    """
    Provide a transactional scope around a series of operations.

    Usage:
        with session_scope() as session:
            session.add(table)
            # Automatically commits or rolls back
    """
    session = get_session()
    try:
        with atomic(session):
            yield session
    finally:
        session.close()


def close_db():
    """Close database connection and cleanup."""
    global _engine, _SessionFactory

    if _engine:
        _engine.dispose()
        _engine = None

    _SessionFactory = None
