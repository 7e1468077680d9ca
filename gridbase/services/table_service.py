"""
Row/cell store for gridbase tables.

Every mutation that touches more than one entity (column + cells,
row + cells, rename cascade) runs as a single unit of work so readers never
see a column with only some rows' cells populated.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from ..db.models import Table, Column, Row, Cell, ColumnType
from ..db.session import atomic
from ..errors import (
    SchemaValidationError, TableNotFoundError, ColumnNotFoundError,
    RowNotFoundError, CellNotFoundError,
)

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200


@dataclass
class CellSnapshot:
    id: Optional[int]
    value: str
    type: str


@dataclass
class ColumnSnapshot:
    id: int
    name: str
    type: str
    order: int


@dataclass
class RowSnapshot:
    """A row with its full cell set, keyed by column name."""
    id: int
    order: int
    orig_order: int
    cells: Dict[str, CellSnapshot] = field(default_factory=dict)

    def get(self, column_name: str, default: Optional[str] = None) -> Optional[str]:
        cell = self.cells.get(column_name)
        return cell.value if cell is not None else default

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'order': self.order,
            'origOrder': self.orig_order,
            'cells': [
                {'id': cell.id, 'columnName': name, 'type': cell.type, 'value': cell.value}
                for name, cell in self.cells.items()
            ],
        }


@dataclass
class TableSnapshot:
    """Read-only view of a table: ordered columns and ordered rows."""
    id: int
    name: str
    filtering: str
    sorting: str
    columns: List[ColumnSnapshot] = field(default_factory=list)
    rows: List[RowSnapshot] = field(default_factory=list)

    @property
    def row_ids(self) -> List[int]:
        return [row.id for row in self.rows]

    def column_values(self, column_name: str) -> List[Optional[str]]:
        """Values of one column in row order."""
        return [row.get(column_name) for row in self.rows]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'filtering': self.filtering,
            'sorting': self.sorting,
            'columns': [
                {'id': c.id, 'name': c.name, 'type': c.type, 'order': c.order}
                for c in self.columns
            ],
            'rows': [row.to_dict() for row in self.rows],
        }


def coerce_column_type(value: Union[str, ColumnType]) -> ColumnType:
    """Accept a ColumnType or its (case-insensitive) name."""
    if isinstance(value, ColumnType):
        return value
    try:
        return ColumnType(str(value).strip().upper())
    except ValueError:
        raise SchemaValidationError(
            f"Unknown column type '{value}' (expected TEXT or NUMBER)"
        )


def _clean_name(name: Optional[str], what: str) -> str:
    name = (name or '').strip()
    if not name:
        raise SchemaValidationError(f"{what} name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise SchemaValidationError(f"{what} name longer than {MAX_NAME_LENGTH} characters")
    return name


def _cell_text(value: Any) -> str:
    return '' if value is None else str(value)


class TableService:
    """CRUD for tables, columns, rows and cells."""

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_table(self, table_id: int) -> Table:
        table = self.session.get(Table, table_id)
        if table is None:
            raise TableNotFoundError(table_id)
        return table

    def get_column(self, column_id: int) -> Column:
        column = self.session.get(Column, column_id)
        if column is None:
            raise ColumnNotFoundError(column_id)
        return column

    def get_row(self, row_id: int) -> Row:
        row = self.session.get(Row, row_id)
        if row is None:
            raise RowNotFoundError(row_id)
        return row

    def list_tables(self) -> List[Table]:
        return self.session.query(Table).order_by(Table.id).all()

    def columns_of(self, table_id: int) -> List[Column]:
        return (self.session.query(Column)
                .filter(Column.table_id == table_id)
                .order_by(Column.order, Column.id)
                .all())

    def column_names(self, table_id: int) -> List[str]:
        return [c.name for c in self.columns_of(table_id)]

    # =========================================================================
    # Tables
    # =========================================================================

    def create_table(self, name: str) -> Table:
        name = _clean_name(name, "Table")
        with atomic(self.session):
            table = Table(name=name, filtering='', sorting='', version=0)
            self.session.add(table)
        logger.info(f"Created table '{name}' (id={table.id})")
        return table

    def delete_table(self, table_id: int) -> None:
        table = self.get_table(table_id)
        with atomic(self.session):
            self.session.delete(table)
        logger.info(f"Deleted table {table_id}")

    # =========================================================================
    # Columns
    # =========================================================================

    def create_column(self, table_id: int, name: str,
                      column_type: Union[str, ColumnType] = ColumnType.TEXT) -> Column:
        """
        Add a column and an empty cell for every existing row, atomically.

        Args:
            table_id: Owning table
            name: Column name, unique within the table
            column_type: TEXT or NUMBER

        Returns:
            Created Column
        """
        table = self.get_table(table_id)
        name = _clean_name(name, "Column")
        column_type = coerce_column_type(column_type)
        if name in self.column_names(table_id):
            raise SchemaValidationError(f"Column '{name}' already exists in table {table_id}")

        with atomic(self.session):
            max_order = (self.session.query(func.max(Column.order))
                         .filter(Column.table_id == table_id)
                         .scalar())
            column = Column(
                table_id=table_id,
                name=name,
                type=column_type.value,
                order=0 if max_order is None else max_order + 1,
            )
            self.session.add(column)
            self.session.flush()

            row_ids = [rid for (rid,) in
                       self.session.query(Row.id).filter(Row.table_id == table_id)]
            self.session.add_all([
                Cell(row_id=rid, column_id=column.id, column_name=name,
                     type=column_type.value, value='')
                for rid in row_ids
            ])
            table.bump_version()

        logger.info(f"Created column '{name}' ({column_type.value}) in table {table_id} "
                    f"with {len(row_ids)} cells")
        return column

    def rename_column(self, column_id: int, new_name: str) -> Column:
        """
        Rename a column and rewrite the denormalized name on its cells.

        Persisted filters and sorts that mention the old name are left as they
        are; they stop matching the column from now on.
        """
        column = self.get_column(column_id)
        new_name = _clean_name(new_name, "Column")
        if new_name == column.name:
            return column
        if new_name in self.column_names(column.table_id):
            raise SchemaValidationError(
                f"Column '{new_name}' already exists in table {column.table_id}"
            )

        old_name = column.name
        with atomic(self.session):
            column.name = new_name
            (self.session.query(Cell)
             .filter(Cell.column_id == column_id)
             .update({Cell.column_name: new_name}, synchronize_session=False))
            column.table.bump_version()

        logger.info(f"Renamed column '{old_name}' -> '{new_name}' in table {column.table_id}")
        return column

    def delete_column(self, column_id: int) -> None:
        column = self.get_column(column_id)
        table = column.table
        with atomic(self.session):
            self.session.query(Cell).filter(Cell.column_id == column_id).delete(
                synchronize_session=False
            )
            self.session.delete(column)
            table.bump_version()
        logger.info(f"Deleted column {column_id} from table {table.id}")

    # =========================================================================
    # Rows and cells
    # =========================================================================

    def create_row(self, table_id: int, values: Optional[Dict[str, Any]] = None) -> Row:
        """
        Append a row with one cell per existing column.

        Args:
            table_id: Owning table
            values: Optional initial values keyed by column name

        Returns:
            Created Row; ``order`` and ``orig_order`` are the next sequence number
        """
        self.get_table(table_id)
        values = values or {}
        columns = self.columns_of(table_id)
        unknown = set(values) - {c.name for c in columns}
        if unknown:
            raise SchemaValidationError(
                f"Unknown column(s) for table {table_id}: {', '.join(sorted(unknown))}"
            )

        with atomic(self.session):
            max_seq = (self.session.query(func.max(Row.orig_order))
                       .filter(Row.table_id == table_id)
                       .scalar())
            seq = (max_seq or 0) + 1
            row = Row(table_id=table_id, order=seq, orig_order=seq)
            self.session.add(row)
            self.session.flush()

            self.session.add_all([
                Cell(row_id=row.id, column_id=col.id, column_name=col.name,
                     type=col.type, value=_cell_text(values.get(col.name)))
                for col in columns
            ])

        logger.info(f"Created row {row.id} (seq {seq}) in table {table_id}")
        return row

    def delete_row(self, row_id: int) -> None:
        row = self.get_row(row_id)
        table_id = row.table_id
        with atomic(self.session):
            self.session.query(Cell).filter(Cell.row_id == row_id).delete(
                synchronize_session=False
            )
            self.session.delete(row)
        logger.info(f"Deleted row {row_id} from table {table_id}")

    def update_cell(self, cell_id: int, value: Any) -> Cell:
        """Set a cell's value. The cell's type never changes."""
        cell = self.session.get(Cell, cell_id)
        if cell is None:
            raise CellNotFoundError(cell_id)
        with atomic(self.session):
            cell.value = _cell_text(value)
        logger.debug(f"Updated cell {cell_id}")
        return cell

    def set_cell(self, row_id: int, column_name: str, value: Any) -> Cell:
        """Set a value addressed by row id and column name."""
        cell = (self.session.query(Cell)
                .filter(Cell.row_id == row_id, Cell.column_name == column_name)
                .first())
        if cell is not None:
            return self.update_cell(cell.id, value)

        row = self.get_row(row_id)
        column = (self.session.query(Column)
                  .filter(Column.table_id == row.table_id, Column.name == column_name)
                  .first())
        if column is None:
            raise ColumnNotFoundError(column_name)

        logger.warning(f"Row {row_id} had no cell for column '{column_name}'; creating it")
        with atomic(self.session):
            cell = Cell(row_id=row_id, column_id=column.id, column_name=column.name,
                        type=column.type, value=_cell_text(value))
            self.session.add(cell)
        return cell

    # =========================================================================
    # Reads
    # =========================================================================

    def load_table(self, table_id: int,
                   row_ids: Optional[Union[Iterable[int], Select]] = None) -> TableSnapshot:
        """
        Load a table snapshot.

        Args:
            table_id: Table to load
            row_ids: Optional restriction, either ids or a select of ids

        Returns:
            TableSnapshot with columns by ``order`` and rows by current ``order``
        """
        table = self.get_table(table_id)
        columns = self.columns_of(table_id)

        row_query = self.session.query(Row).filter(Row.table_id == table_id)
        cell_query = (self.session.query(Cell)
                      .join(Row, Cell.row_id == Row.id)
                      .filter(Row.table_id == table_id))
        if row_ids is not None:
            if not isinstance(row_ids, Select):
                row_ids = list(row_ids)
            row_query = row_query.filter(Row.id.in_(row_ids))
            cell_query = cell_query.filter(Row.id.in_(row_ids))

        rows = row_query.order_by(Row.order, Row.orig_order).all()

        by_row: Dict[int, Dict[int, Cell]] = {}
        for cell in cell_query:
            by_row.setdefault(cell.row_id, {})[cell.column_id] = cell

        snapshot = TableSnapshot(
            id=table.id,
            name=table.name,
            filtering=table.filtering or '',
            sorting=table.sorting or '',
            columns=[ColumnSnapshot(id=c.id, name=c.name, type=c.type, order=c.order)
                     for c in columns],
        )
        for row in rows:
            row_cells = by_row.get(row.id, {})
            snap = RowSnapshot(id=row.id, order=row.order, orig_order=row.orig_order)
            for col in columns:
                cell = row_cells.get(col.id)
                if cell is None:
                    logger.warning(f"Missing cell for row {row.id}, column '{col.name}' "
                                   f"in table {table_id}; treating as empty")
                    snap.cells[col.name] = CellSnapshot(id=None, value='', type=col.type)
                else:
                    snap.cells[col.name] = CellSnapshot(id=cell.id, value=cell.value,
                                                        type=cell.type)
            snapshot.rows.append(snap)

        return snapshot
