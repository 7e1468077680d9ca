"""
Database module for gridbase.

Provides SQLAlchemy session management and initialization.
"""

from .models import Base, Table, Column, Row, Cell, ColumnType
from .session import get_session, init_db, close_db, atomic, session_scope

__all__ = [
    'Base',
    'Table',
    'Column',
    'Row',
    'Cell',
    'ColumnType',
    'get_session',
    'init_db',
    'close_db',
    'atomic',
    'session_scope',
]
