"""
View state service - the persisted filter and sort of each table.

The table row carries both pieces of state as serialized text. Loading a view
always replays the stored filter; rows come back in their persisted order.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import yaml
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from ..db.models import Table
from ..db.session import atomic
from ..errors import TableNotFoundError, ValidationError
from ..services.table_service import TableService, TableSnapshot
from .compiler import FilterCompiler
from .filters import FilterGroup, parse_filter, serialize_filter, validate_filter
from .sorting import SortEngine, SortKey, parse_sort, validate_sort

logger = logging.getLogger(__name__)


class ViewService:
    """
    Service for a table's view state.

    Provides:
    - Filter persistence (set/get/clear)
    - Sorting through the SortEngine (sort/reset/reapply)
    - View loading with the stored filter and optional find-in-view search
    - YAML export/import of view state
    """

    def __init__(self, session: Session, tables: Optional[TableService] = None):
        self.session = session
        self.tables = tables or TableService(session)
        self.compiler = FilterCompiler()
        self.sort_engine = SortEngine(session)
        # (table_id, version, filtering) -> compiled select for the stored filter
        self._compiled: Dict[Tuple[int, int, str], Optional[Select]] = {}

    def _get_table(self, table_id: int) -> Table:
        table = self.session.get(Table, table_id)
        if table is None:
            raise TableNotFoundError(table_id)
        return table

    # =========================================================================
    # Filtering
    # =========================================================================

    def get_filter(self, table_id: int) -> FilterGroup:
        """Stored filter tree (an empty AND group when inactive)."""
        table = self._get_table(table_id)
        return parse_filter(table.filtering)

    def set_filter(self, table_id: int,
                   filters: Union[None, str, Dict[str, Any], FilterGroup]) -> FilterGroup:
        """
        Validate and store a filter tree. Row order is not touched.

        Raises:
            FilterValidationError: Malformed tree or unknown column; the stored
                filter is left unchanged
        """
        table = self._get_table(table_id)
        group = parse_filter(filters)
        validate_filter(group, table.column_names)

        with atomic(self.session):
            table.filtering = serialize_filter(group)
            table.bump_version()

        self._forget(table_id)
        if group.is_empty():
            logger.info(f"Cleared filter on table {table_id}")
        else:
            logger.info(f"Set filter on table {table_id} "
                        f"({len(group.column_names())} column(s) referenced)")
        return group

    def clear_filter(self, table_id: int) -> None:
        self.set_filter(table_id, None)

    def _forget(self, table_id: int) -> None:
        for key in [k for k in self._compiled if k[0] == table_id]:
            del self._compiled[key]

    def _compiled_filter(self, table: Table) -> Optional[Select]:
        """Compiled stored filter, cached per table version. None when inactive."""
        cache_key = (table.id, table.version or 0, table.filtering or '')
        if cache_key not in self._compiled:
            self._forget(table.id)
            group = parse_filter(table.filtering)
            if group.is_empty():
                self._compiled[cache_key] = None
            else:
                self._compiled[cache_key] = self.compiler.compile(
                    table.id, group, table.column_names, strict=False
                )
        return self._compiled[cache_key]

    def matching_row_ids(self, table_id: int, search: Optional[str] = None) -> Optional[Select]:
        """
        Select of row ids passing the stored filter and ``search``.

        Returns None when neither is active, meaning "all rows".
        """
        table = self._get_table(table_id)
        if search:
            return self.compiler.compile(
                table.id, parse_filter(table.filtering), table.column_names,
                strict=False, search=search,
            )
        return self._compiled_filter(table)

    # =========================================================================
    # Sorting
    # =========================================================================

    def get_sort(self, table_id: int) -> List[SortKey]:
        table = self._get_table(table_id)
        return parse_sort(table.sorting)

    def set_sort(self, table_id: int, keys: Union[str, Sequence[Any]]) -> List[int]:
        """Sort the table by ``keys`` (empty resets to insertion order)."""
        return self.sort_engine.sort(table_id, keys)

    def reset_order(self, table_id: int) -> List[int]:
        return self.sort_engine.reset(table_id)

    def reapply_sort(self, table_id: int) -> List[int]:
        return self.sort_engine.reapply(table_id)

    # =========================================================================
    # Loading
    # =========================================================================

    def load_view(self, table_id: int, search: Optional[str] = None) -> TableSnapshot:
        """
        Load the table as the user sees it.

        Args:
            table_id: Table to load
            search: Optional find-in-view text (not persisted)

        Returns:
            TableSnapshot with filtered rows in persisted order
        """
        row_ids = self.matching_row_ids(table_id, search=search)
        return self.tables.load_table(table_id, row_ids=row_ids)

    # =========================================================================
    # Import / Export
    # =========================================================================

    def export_yaml(self, table_id: int) -> str:
        """Export the table's view state as YAML."""
        table = self._get_table(table_id)
        group = parse_filter(table.filtering)
        data = {
            'table': table.name,
            'filtering': group.to_dict(),
            'sorting': [key.to_dict() for key in parse_sort(table.sorting)],
        }
        return yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def import_yaml(self, table_id: int, yaml_content: str) -> None:
        """
        Apply view state from YAML.

        The filter and the sort are validated first and then written in one
        unit of work, so either both land or neither does.
        """
        data = yaml.safe_load(yaml_content) or {}
        if not isinstance(data, dict):
            raise ValidationError("View YAML must be a mapping")

        table = self._get_table(table_id)
        group = parse_filter(data.get('filtering'))
        keys = parse_sort(data.get('sorting') or [])
        validate_filter(group, table.column_names)
        validate_sort(keys, table.column_names)

        ordered_ids = self.sort_engine.plan(table, keys)
        with atomic(self.session):
            table.filtering = serialize_filter(group)
            table.bump_version()
            self.sort_engine.stage(table, keys, ordered_ids)

        self._forget(table_id)
        logger.info(f"Imported view state into table {table_id}")

    def import_file(self, table_id: int, path: Path) -> None:
        """Import view state from a YAML file."""
        with open(path) as f:
            self.import_yaml(table_id, f.read())

    def export_file(self, table_id: int, path: Path) -> None:
        """Export view state to a YAML file."""
        yaml_content = self.export_yaml(table_id)
        with open(path, 'w') as f:
            f.write(yaml_content)
