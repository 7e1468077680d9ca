"""
Filter trees for table views.

A filter is a recursive tree of groups and conditions:

    group     := {combineWith: 'AND' | 'OR', conditions: [node, ...]}
    node      := group | condition
    condition := {columnName: str, operator: op, value?: str}
    op        := 'is' | 'is not' | 'contains' | 'not contains'
               | 'is empty' | 'is not empty' | 'gt' | 'lt'

The tree is a tagged union of two dataclasses; evaluation dispatches on the
node type. An empty group matches every row, at any depth.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..errors import FilterValidationError
from ..utils import parse_number, fold_text

logger = logging.getLogger(__name__)


class Operator(str, Enum):
    IS = "is"
    IS_NOT = "is not"
    CONTAINS = "contains"
    NOT_CONTAINS = "not contains"
    IS_EMPTY = "is empty"
    IS_NOT_EMPTY = "is not empty"
    GT = "gt"
    LT = "lt"

    @property
    def takes_value(self) -> bool:
        return self not in (Operator.IS_EMPTY, Operator.IS_NOT_EMPTY)


class CombineWith(str, Enum):
    AND = "AND"
    OR = "OR"


@dataclass
class FilterCondition:
    """Leaf: compare one column of a row against a literal."""
    column_name: str
    operator: Operator
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'columnName': self.column_name, 'operator': self.operator.value}
        if self.operator.takes_value:
            data['value'] = self.value
        return data


@dataclass
class FilterGroup:
    """Internal node: combine children left to right with AND or OR."""
    combine_with: CombineWith = CombineWith.AND
    conditions: List['FilterNode'] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'combineWith': self.combine_with.value,
            'conditions': [child.to_dict() for child in self.conditions],
        }

    def is_empty(self) -> bool:
        """True when the tree holds no leaf conditions (it matches everything)."""
        return not any(True for _ in iter_conditions(self))

    def column_names(self) -> List[str]:
        """Column names referenced by leaves, in tree order, without repeats."""
        seen: List[str] = []
        for cond in iter_conditions(self):
            if cond.column_name not in seen:
                seen.append(cond.column_name)
        return seen


FilterNode = Union[FilterCondition, FilterGroup]


def iter_conditions(node: FilterNode) -> Iterable[FilterCondition]:
    """Yield every leaf condition in depth-first order."""
    if isinstance(node, FilterCondition):
        yield node
    else:
        for child in node.conditions:
            yield from iter_conditions(child)


# =============================================================================
# Parsing and serialization
# =============================================================================

def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _parse_condition(data: Mapping[str, Any], path: str) -> FilterCondition:
    column_name = _pick(data, 'columnName', 'column_name', 'column')
    if not isinstance(column_name, str) or not column_name.strip():
        raise FilterValidationError(f"Condition at {path} is missing 'columnName'")

    raw_op = data.get('operator')
    try:
        operator = Operator(raw_op)
    except ValueError:
        raise FilterValidationError(f"Unknown operator '{raw_op}' at {path}")

    value = data.get('value')
    if operator.takes_value:
        if value is None:
            raise FilterValidationError(
                f"Operator '{operator.value}' at {path} requires a value"
            )
        if isinstance(value, (dict, list)):
            raise FilterValidationError(f"Value at {path} must be a scalar")
        value = str(value)
    else:
        value = None

    return FilterCondition(column_name=column_name, operator=operator, value=value)


def _parse_node(data: Any, path: str) -> FilterNode:
    if not isinstance(data, Mapping):
        raise FilterValidationError(f"Filter node at {path} must be an object, got {type(data).__name__}")

    if 'operator' in data:
        return _parse_condition(data, path)

    if 'conditions' not in data:
        raise FilterValidationError(
            f"Filter node at {path} is neither a condition nor a group"
        )

    raw_combine = _pick(data, 'combineWith', 'combine_with', default='AND')
    try:
        combine_with = CombineWith(str(raw_combine).upper())
    except ValueError:
        raise FilterValidationError(f"Unknown combineWith '{raw_combine}' at {path}")

    children = data['conditions']
    if not isinstance(children, list):
        raise FilterValidationError(f"'conditions' at {path} must be a list")

    return FilterGroup(
        combine_with=combine_with,
        conditions=[_parse_node(child, f"{path}.{i}") for i, child in enumerate(children)],
    )


def _raw_node(node: Any) -> Any:
    """Dict form of a hand-built node, without trusting its field types."""
    if isinstance(node, FilterCondition):
        return {
            'columnName': node.column_name,
            'operator': getattr(node.operator, 'value', node.operator),
            'value': node.value,
        }
    if isinstance(node, FilterGroup):
        conditions = node.conditions
        if isinstance(conditions, (list, tuple)):
            conditions = [_raw_node(child) for child in conditions]
        return {
            'combineWith': getattr(node.combine_with, 'value', node.combine_with),
            'conditions': conditions,
        }
    return node


def parse_filter(data: Union[None, str, Mapping[str, Any], FilterGroup]) -> FilterGroup:
    """
    Parse a filter tree from a dict, JSON text or a FilterGroup.

    Empty input (None or '') yields an empty AND group. A bare condition at the
    top level is wrapped in an AND group. FilterGroup objects are checked node
    by node like any other input.

    Raises:
        FilterValidationError: If the tree is malformed
    """
    if isinstance(data, (FilterGroup, FilterCondition)):
        data = _raw_node(data)
    if data is None:
        return FilterGroup()
    if isinstance(data, str):
        if not data.strip():
            return FilterGroup()
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise FilterValidationError(f"Filter is not valid JSON: {e}")

    node = _parse_node(data, 'root')
    if isinstance(node, FilterCondition):
        return FilterGroup(conditions=[node])
    return node


def serialize_filter(group: FilterGroup) -> str:
    """Serialize for storage on the table; an empty tree is stored as ''."""
    if group.is_empty():
        return ''
    return json.dumps(group.to_dict())


def validate_filter(group: FilterGroup, known_columns: Iterable[str]) -> None:
    """Reject leaves that reference columns absent from the table schema."""
    known = set(known_columns)
    unknown = [name for name in group.column_names() if name not in known]
    if unknown:
        raise FilterValidationError(
            f"Filter references unknown column(s): {', '.join(unknown)}"
        )


# =============================================================================
# In-memory evaluation
# =============================================================================

def condition_matches(cond: FilterCondition, cell_value: Optional[str]) -> bool:
    """Evaluate one condition against a stored value (None means missing)."""
    value = '' if cell_value is None else cell_value
    op = cond.operator

    if op is Operator.IS:
        return value == cond.value
    if op is Operator.IS_NOT:
        return value != cond.value
    if op is Operator.CONTAINS:
        return fold_text(cond.value) in fold_text(value)
    if op is Operator.NOT_CONTAINS:
        return fold_text(cond.value) not in fold_text(value)
    if op is Operator.IS_EMPTY:
        return value == ''
    if op is Operator.IS_NOT_EMPTY:
        return value != ''

    # gt / lt: either side non-numeric fails the comparison
    left = parse_number(value)
    right = parse_number(cond.value)
    if left is None or right is None:
        return False
    if op is Operator.GT:
        return left > right
    return left < right


def row_matches(node: FilterNode, row: Mapping[str, Any]) -> bool:
    """
    Evaluate a filter tree against one row.

    ``row`` is anything with ``get(column_name)`` returning the stored text,
    e.g. a plain dict or a RowSnapshot. A missing column is an empty value.
    """
    if isinstance(node, FilterCondition):
        return condition_matches(node, row.get(node.column_name))

    if not node.conditions:
        return True
    if node.combine_with is CombineWith.AND:
        return all(row_matches(child, row) for child in node.conditions)
    return any(row_matches(child, row) for child in node.conditions)
