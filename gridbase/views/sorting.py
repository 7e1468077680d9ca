"""
Multi-key sorting with persisted row rank.

A sort is an ordered sequence of keys; the first key is the most significant:

    [{columnName: 'Status', columnType: 'TEXT', order: 'ASC'},
     {columnName: 'Age', columnType: 'NUMBER', order: 'DESC'}]

Sorting rewrites every row's ``order`` as a rank 1..N in one transaction and
stores the key sequence on the table. An empty sequence resets ``order`` to
``orig_order`` and clears the stored sort.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db.models import Table, Row, Cell, ColumnType
from ..db.session import atomic
from ..errors import SortValidationError, TableNotFoundError
from ..utils import parse_number, fold_text

logger = logging.getLogger(__name__)


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class SortKey:
    column_name: str
    column_type: ColumnType = ColumnType.TEXT
    order: SortOrder = SortOrder.ASC

    @property
    def descending(self) -> bool:
        return self.order is SortOrder.DESC

    def to_dict(self) -> Dict[str, str]:
        return {
            'columnName': self.column_name,
            'columnType': self.column_type.value,
            'order': self.order.value,
        }


# =============================================================================
# Parsing and serialization
# =============================================================================

def _parse_key(data: Any, index: int) -> SortKey:
    if isinstance(data, SortKey):
        return data
    if not isinstance(data, Mapping):
        raise SortValidationError(f"Sort key {index} must be an object")

    column_name = data.get('columnName', data.get('column_name'))
    if not isinstance(column_name, str) or not column_name.strip():
        raise SortValidationError(f"Sort key {index} is missing 'columnName'")

    raw_type = data.get('columnType', data.get('column_type', ColumnType.TEXT.value))
    try:
        column_type = ColumnType(str(raw_type).upper())
    except ValueError:
        raise SortValidationError(f"Unknown columnType '{raw_type}' in sort key {index}")

    raw_order = data.get('order', SortOrder.ASC.value)
    try:
        order = SortOrder(str(raw_order).upper())
    except ValueError:
        raise SortValidationError(f"Unknown order '{raw_order}' in sort key {index}")

    return SortKey(column_name=column_name, column_type=column_type, order=order)


def parse_sort(data: Union[None, str, Sequence[Any]]) -> List[SortKey]:
    """
    Parse a sort key sequence from a list or JSON text.

    Raises:
        SortValidationError: Malformed keys or a column named twice
    """
    if data is None:
        return []
    if isinstance(data, str):
        if not data.strip():
            return []
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise SortValidationError(f"Sort is not valid JSON: {e}")
    if not isinstance(data, (list, tuple)):
        raise SortValidationError("Sort must be a list of sort keys")

    keys = [_parse_key(item, i) for i, item in enumerate(data)]

    seen = set()
    for key in keys:
        if key.column_name in seen:
            raise SortValidationError(f"Column '{key.column_name}' appears twice in sort")
        seen.add(key.column_name)
    return keys


def serialize_sort(keys: Sequence[SortKey]) -> str:
    """Serialize for storage on the table; no keys is stored as ''."""
    if not keys:
        return ''
    return json.dumps([key.to_dict() for key in keys])


def validate_sort(keys: Sequence[SortKey], known_columns: Iterable[str]) -> None:
    known = set(known_columns)
    unknown = [key.column_name for key in keys if key.column_name not in known]
    if unknown:
        raise SortValidationError(
            f"Sort references unknown column(s): {', '.join(unknown)}"
        )


# =============================================================================
# Ordering
# =============================================================================

def sort_key_for(key: SortKey, value: Optional[str]) -> Tuple:
    """
    Comparable key for one value.

    NUMBER: missing or non-numeric values rank below every number.
    TEXT: case-insensitive.
    """
    if key.column_type is ColumnType.NUMBER:
        number = parse_number(value)
        if number is None:
            return (0, 0.0)
        return (1, number)
    return (fold_text(value),)


@dataclass
class SortableRow:
    id: int
    orig_order: int
    values: Dict[str, str]


def compute_order(keys: Sequence[SortKey], rows: Iterable[SortableRow]) -> List[int]:
    """
    Total order of row ids for the given keys.

    Starts from insertion order and applies the keys from least to most
    significant with a stable sort, so equal rows stay in ``orig_order``.
    """
    ordered = sorted(rows, key=lambda r: (r.orig_order, r.id))
    for key in reversed(keys):
        ordered = sorted(
            ordered,
            key=lambda r, k=key: sort_key_for(k, r.values.get(k.column_name)),
            reverse=key.descending,
        )
    return [r.id for r in ordered]


class SortEngine:
    """Computes and persists row order for a table."""

    def __init__(self, session: Session):
        self.session = session

    def _get_table(self, table_id: int) -> Table:
        table = self.session.get(Table, table_id)
        if table is None:
            raise TableNotFoundError(table_id)
        return table

    def _load_sortable_rows(self, table_id: int, column_names: Sequence[str]) -> List[SortableRow]:
        rows = {
            rid: SortableRow(id=rid, orig_order=orig, values={})
            for rid, orig in (self.session.query(Row.id, Row.orig_order)
                              .filter(Row.table_id == table_id))
        }
        if column_names and rows:
            cells = (self.session.query(Cell.row_id, Cell.column_name, Cell.value)
                     .join(Row, Cell.row_id == Row.id)
                     .filter(Row.table_id == table_id,
                             Cell.column_name.in_(list(column_names))))
            for row_id, column_name, value in cells:
                rows[row_id].values[column_name] = value
        return list(rows.values())

    def plan(self, table: Table, keys: Sequence[SortKey], strict: bool = True) -> List[int]:
        """
        Row ids in the order ``keys`` produce, without writing anything.

        No keys means insertion order.
        """
        if not keys:
            return [rid for (rid,) in (self.session.query(Row.id)
                                       .filter(Row.table_id == table.id)
                                       .order_by(Row.orig_order))]

        known = table.column_names
        if strict:
            validate_sort(keys, known)
        else:
            for key in keys:
                if key.column_name not in known:
                    logger.warning(f"Sort on table {table.id} references unknown column "
                                   f"'{key.column_name}'; values treated as missing")

        rows = self._load_sortable_rows(table.id, [k.column_name for k in keys])
        return compute_order(keys, rows)

    def stage(self, table: Table, keys: Sequence[SortKey], ordered_ids: Sequence[int]) -> None:
        """Write ranks and the stored sort; the caller owns the unit of work."""
        if not keys:
            (self.session.query(Row)
             .filter(Row.table_id == table.id)
             .update({Row.order: Row.orig_order}, synchronize_session=False))
        elif ordered_ids:
            self.session.execute(
                update(Row),
                [{'id': rid, 'order': rank} for rank, rid in enumerate(ordered_ids, start=1)],
            )
        table.sorting = serialize_sort(keys)

    def sort(self, table_id: int, keys: Union[str, Sequence[Any]], strict: bool = True) -> List[int]:
        """
        Sort a table and persist the result.

        Args:
            table_id: Table to sort
            keys: Sort keys (SortKey objects, dicts or JSON text)
            strict: Reject keys on unknown columns; otherwise they sort as missing

        Returns:
            Row ids in their new order
        """
        keys = parse_sort(keys)
        table = self._get_table(table_id)
        if not keys:
            return self.reset(table_id)

        ordered_ids = self.plan(table, keys, strict=strict)
        with atomic(self.session):
            self.stage(table, keys, ordered_ids)

        logger.info(f"Sorted table {table_id} by "
                    f"{', '.join(f'{k.column_name} {k.order.value}' for k in keys)}")
        return ordered_ids

    def reset(self, table_id: int) -> List[int]:
        """Restore insertion order and clear the stored sort."""
        table = self._get_table(table_id)
        with atomic(self.session):
            self.stage(table, [], [])

        logger.info(f"Reset table {table_id} to insertion order")
        return self.plan(table, [])

    def reapply(self, table_id: int) -> List[int]:
        """Re-run the stored sort, e.g. after rows were added or edited."""
        table = self._get_table(table_id)
        keys = parse_sort(table.sorting)
        if not keys:
            return self.reset(table_id)
        return self.sort(table_id, keys, strict=False)
