"""
Compile filter trees into SQL over the row/cell store.

Each leaf condition gets its own LEFT OUTER JOIN of the cells table, aliased
by the leaf's position in the tree (``cell_d2_0_3_1`` is the second child of
the fourth child of the root, at depth 2). Column names are checked against
the live schema before being used as join keys, and every literal is sent as
a bound parameter.
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, or_, select, func, true, false
from sqlalchemy.orm import aliased
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from ..db.models import Row, Cell
from ..errors import FilterValidationError
from ..utils import parse_number, fold_text
from .filters import (
    FilterCondition, FilterGroup, FilterNode, CombineWith, Operator,
    condition_matches,
)

logger = logging.getLogger(__name__)


class FilterCompiler:
    """
    Turns a FilterGroup into ``SELECT rows.id ...`` for one table.

    Usage:
        compiler = FilterCompiler()
        stmt = compiler.compile(table_id, group, known_columns=['Name', 'Age'])
        ids = [rid for (rid,) in session.execute(stmt)]
    """

    def compile(
        self,
        table_id: int,
        group: FilterGroup,
        known_columns: Iterable[str],
        strict: bool = True,
        search: Optional[str] = None,
    ) -> Select:
        """
        Build the row-id query.

        Args:
            table_id: Table whose rows are selected
            group: Filter tree
            known_columns: Column names of the live schema
            strict: Raise on unknown columns; otherwise treat them as empty values
            search: Optional "find in view" text, matched against any cell

        Returns:
            Select of matching ``Row.id`` ordered by current row order

        Raises:
            FilterValidationError: Unknown column in strict mode
        """
        known = set(known_columns)
        joins: List[Tuple[object, str]] = []
        clause = self._compile_node(group, (0,), known, strict, joins)

        stmt = select(Row.id).select_from(Row)
        for alias, column_name in joins:
            stmt = stmt.outerjoin(
                alias,
                and_(alias.row_id == Row.id, alias.column_name == column_name),
            )

        stmt = stmt.where(Row.table_id == table_id, clause)
        if search:
            stmt = stmt.where(self._search_clause(search))

        logger.debug(f"Compiled filter for table {table_id} with {len(joins)} join(s)")
        # Used as an IN (...) subquery; keep its FROM list intact
        return stmt.order_by(Row.order, Row.orig_order).correlate(None)

    def _compile_node(
        self,
        node: FilterNode,
        path: Tuple[int, ...],
        known: Set[str],
        strict: bool,
        joins: List[Tuple[object, str]],
    ) -> ColumnElement:
        if isinstance(node, FilterCondition):
            return self._compile_condition(node, path, known, strict, joins)

        if not node.conditions:
            return true()

        children = [
            self._compile_node(child, path + (i,), known, strict, joins)
            for i, child in enumerate(node.conditions)
        ]
        if node.combine_with is CombineWith.AND:
            return and_(*children)
        return or_(*children)

    def _compile_condition(
        self,
        cond: FilterCondition,
        path: Tuple[int, ...],
        known: Set[str],
        strict: bool,
        joins: List[Tuple[object, str]],
    ) -> ColumnElement:
        if cond.column_name not in known:
            if strict:
                raise FilterValidationError(
                    f"Filter references unknown column '{cond.column_name}'"
                )
            logger.warning(f"Filter references unknown column '{cond.column_name}'; "
                           f"evaluating it as an empty value")
            return true() if condition_matches(cond, '') else false()

        depth = len(path) - 1
        alias_name = f"cell_d{depth}_" + "_".join(str(p) for p in path)
        alias = aliased(Cell, name=alias_name)
        joins.append((alias, cond.column_name))

        value = func.coalesce(alias.value, '')
        return self._operator_clause(cond, value)

    @staticmethod
    def _operator_clause(cond: FilterCondition, value: ColumnElement) -> ColumnElement:
        op = cond.operator

        if op is Operator.IS:
            return value == cond.value
        if op is Operator.IS_NOT:
            return value != cond.value
        if op is Operator.CONTAINS:
            return func.instr(func.fold_text(value), fold_text(cond.value)) > 0
        if op is Operator.NOT_CONTAINS:
            return func.instr(func.fold_text(value), fold_text(cond.value)) == 0
        if op is Operator.IS_EMPTY:
            return value == ''
        if op is Operator.IS_NOT_EMPTY:
            return value != ''

        right = parse_number(cond.value)
        if right is None:
            return false()
        number = func.to_number(value)
        if op is Operator.GT:
            return and_(number.is_not(None), number > right)
        return and_(number.is_not(None), number < right)

    @staticmethod
    def _search_clause(search: str) -> ColumnElement:
        """Rows where any cell contains ``search``, case-insensitively."""
        return (
            select(Cell.id)
            .where(
                Cell.row_id == Row.id,
                func.instr(func.fold_text(Cell.value), fold_text(search)) > 0,
            )
            .exists()
        )
