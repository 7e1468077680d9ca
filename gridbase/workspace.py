"""
Database-backed Workspace class for gridbase.

Provides a single entry point over the row/cell store and the view services
using SQLAlchemy + SQLite.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union
import logging

from sqlalchemy.orm import Session

from .db.models import Table, Column, Row, Cell, ColumnType
from .db.session import init_db, get_session, close_db
from .services.table_service import TableService, TableSnapshot
from .views.filters import FilterGroup
from .views.sorting import SortKey
from .views.service import ViewService

logger = logging.getLogger(__name__)


class Workspace:
    """
    A directory holding one SQLite database of user tables.

    Usage:
        ws = Workspace.open("/path/to/workspace")
        table = ws.create_table("People")
        ws.create_column(table.id, "Name")
        ws.create_column(table.id, "Age", ColumnType.NUMBER)
        ws.create_row(table.id, {"Name": "Bob", "Age": "30"})
        ws.sort_table(table.id, [{"columnName": "Age", "columnType": "NUMBER", "order": "DESC"}])
        snapshot = ws.get_table(table.id)
        ws.close()
    """

    def __init__(self, workspace_path: Path, session: Session):
        self.workspace_path = Path(workspace_path)
        self.session = session
        self.tables = TableService(session)
        self.views = ViewService(session, tables=self.tables)

    @classmethod
    def open(cls, workspace_path: Path, echo: bool = False) -> 'Workspace':
        """
        Open or create a workspace.

        Args:
            workspace_path: Path to workspace directory
            echo: If True, log all SQL statements

        Returns:
            Workspace instance
        """
        workspace_path = Path(workspace_path)
        init_db(workspace_path, echo=echo)
        session = get_session()

        logger.info(f"Opened workspace at {workspace_path}")
        return cls(workspace_path, session)

    def close(self):
        """Close workspace and cleanup database connection."""
        if self.session:
            self.session.close()
        close_db()
        logger.info("Closed workspace")

    def __enter__(self) -> 'Workspace':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # =========================================================================
    # Schema and data
    # =========================================================================

    def create_table(self, name: str) -> Table:
        return self.tables.create_table(name)

    def list_tables(self) -> List[Table]:
        return self.tables.list_tables()

    def delete_table(self, table_id: int) -> None:
        self.tables.delete_table(table_id)

    def create_column(self, table_id: int, name: str,
                      column_type: Union[str, ColumnType] = ColumnType.TEXT) -> Column:
        return self.tables.create_column(table_id, name, column_type)

    def rename_column(self, column_id: int, new_name: str) -> Column:
        return self.tables.rename_column(column_id, new_name)

    def delete_column(self, column_id: int) -> None:
        self.tables.delete_column(column_id)

    def create_row(self, table_id: int, values: Optional[Dict[str, Any]] = None) -> Row:
        return self.tables.create_row(table_id, values)

    def delete_row(self, row_id: int) -> None:
        self.tables.delete_row(row_id)

    def update_cell(self, cell_id: int, value: Any) -> Cell:
        return self.tables.update_cell(cell_id, value)

    def set_cell(self, row_id: int, column_name: str, value: Any) -> Cell:
        return self.tables.set_cell(row_id, column_name, value)

    def load_table(self, table_id: int, row_ids=None) -> TableSnapshot:
        """Raw table contents in current order, ignoring the stored filter."""
        return self.tables.load_table(table_id, row_ids=row_ids)

    # =========================================================================
    # Views
    # =========================================================================

    def get_table(self, table_id: int, search: Optional[str] = None) -> TableSnapshot:
        """Table with the stored filter applied, rows in persisted order."""
        return self.views.load_view(table_id, search=search)

    def update_table_filter(self, table_id: int, filters) -> FilterGroup:
        return self.views.set_filter(table_id, filters)

    def sort_table(self, table_id: int, keys: Union[str, Sequence[Any]]) -> List[int]:
        return self.views.set_sort(table_id, keys)

    def reset_order(self, table_id: int) -> List[int]:
        return self.views.reset_order(table_id)

    def reapply_sort(self, table_id: int) -> List[int]:
        return self.views.reapply_sort(table_id)

    def get_sort(self, table_id: int) -> List[SortKey]:
        return self.views.get_sort(table_id)

    def get_filter(self, table_id: int) -> FilterGroup:
        return self.views.get_filter(table_id)
