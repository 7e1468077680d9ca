"""Service layer for gridbase."""

from .table_service import (
    TableService, TableSnapshot, RowSnapshot, ColumnSnapshot, CellSnapshot,
)

__all__ = [
    'TableService',
    'TableSnapshot',
    'RowSnapshot',
    'ColumnSnapshot',
    'CellSnapshot',
]
