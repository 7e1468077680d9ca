"""
Table views for gridbase.

A view is a table seen through two independent rules, both persisted on the
table: a nested boolean filter tree and a multi-key sort.

Example:
    from gridbase.views import ViewService

    views = ViewService(session)

    views.set_filter(table_id, {
        'combineWith': 'OR',
        'conditions': [
            {'columnName': 'Age', 'operator': 'gt', 'value': '10'},
            {'columnName': 'Name', 'operator': 'is', 'value': 'amy'},
        ]
    })
    views.set_sort(table_id, [
        {'columnName': 'Name', 'columnType': 'TEXT', 'order': 'ASC'}
    ])

    snapshot = views.load_view(table_id)
"""

from .filters import (
    FilterCondition, FilterGroup, Operator, CombineWith,
    parse_filter, serialize_filter, row_matches,
)
from .compiler import FilterCompiler
from .sorting import SortEngine, SortKey, SortOrder, parse_sort, serialize_sort
from .service import ViewService

__all__ = [
    'FilterCondition',
    'FilterGroup',
    'Operator',
    'CombineWith',
    'parse_filter',
    'serialize_filter',
    'row_matches',
    'FilterCompiler',
    'SortEngine',
    'SortKey',
    'SortOrder',
    'parse_sort',
    'serialize_sort',
    'ViewService',
]
