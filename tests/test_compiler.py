"""
Tests for the SQL filter compiler.

The compiled query must select exactly the rows the in-memory evaluator
accepts, in current row order.
"""

import logging
import shutil
import tempfile
from pathlib import Path

import pytest

from gridbase import Workspace
from gridbase.db.models import Row
from gridbase.errors import FilterValidationError
from gridbase.views.compiler import FilterCompiler
from gridbase.views.filters import FilterGroup, parse_filter, row_matches


ROWS = [
    {"Name": "Bob", "Age": "30", "City": "Paris"},
    {"Name": "amy", "Age": "5", "City": ""},
    {"Name": "Carl", "Age": "abc", "City": "London"},
    {"Name": "", "Age": "", "City": "paris"},
    {"Name": "Dana", "Age": "10", "City": "Berlin"},
]


@pytest.fixture
def temp_workspace():
    """Create a temporary workspace for testing."""
    temp_dir = tempfile.mkdtemp()
    ws = Workspace.open(Path(temp_dir))

    yield ws

    ws.close()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def table_id(temp_workspace):
    ws = temp_workspace
    table = ws.create_table("People")
    ws.create_column(table.id, "Name", "TEXT")
    ws.create_column(table.id, "Age", "NUMBER")
    ws.create_column(table.id, "City", "TEXT")
    for values in ROWS:
        ws.create_row(table.id, values)
    return table.id


def cond(column, operator, value=None):
    return {"columnName": column, "operator": operator, "value": value}


def sql_ids(ws, table_id, tree, **kwargs):
    stmt = FilterCompiler().compile(
        table_id, parse_filter(tree), ws.tables.column_names(table_id), **kwargs
    )
    return [rid for (rid,) in ws.session.execute(stmt)]


def memory_ids(ws, table_id, tree):
    group = parse_filter(tree)
    return [row.id for row in ws.load_table(table_id).rows if row_matches(group, row)]


def names(ws, table_id, ids):
    by_id = {row.id: row.get("Name") for row in ws.load_table(table_id).rows}
    return [by_id[rid] for rid in ids]


TREES = [
    {"conditions": [cond("Name", "is", "Bob")]},
    {"conditions": [cond("Name", "is", "bob")]},
    {"conditions": [cond("Name", "is not", "Bob")]},
    {"conditions": [cond("Name", "contains", "A")]},
    {"conditions": [cond("Name", "not contains", "a")]},
    {"conditions": [cond("City", "contains", "")]},
    {"conditions": [cond("City", "is empty")]},
    {"conditions": [cond("Name", "is not empty")]},
    {"conditions": [cond("Age", "gt", "9")]},
    {"conditions": [cond("Age", "lt", "10")]},
    {"conditions": [cond("Age", "lt", "ten")]},
    {"conditions": [cond("City", "gt", "0")]},
    {"combineWith": "OR", "conditions": [cond("Age", "gt", "10"), cond("Name", "is", "amy")]},
    {"combineWith": "AND", "conditions": [
        cond("City", "contains", "par"),
        {"combineWith": "OR", "conditions": [cond("Age", "gt", "1"), cond("Name", "is empty")]},
    ]},
    {"combineWith": "OR", "conditions": [
        {"combineWith": "AND", "conditions": []},
        cond("Name", "is", "nobody"),
    ]},
    {"combineWith": "AND", "conditions": [
        {"combineWith": "OR", "conditions": []},
        cond("Age", "is not empty"),
    ]},
    {"combineWith": "OR", "conditions": [
        cond("Name", "is", "Bob"),
        {"combineWith": "OR", "conditions": [
            cond("Name", "is", "Carl"),
            {"combineWith": "AND", "conditions": [cond("Age", "gt", "5"), cond("City", "is", "Berlin")]},
        ]},
    ]},
]


class TestCompiledMatchesMemory:
    """SQL and in-memory evaluation agree."""

    @pytest.mark.parametrize("tree", TREES)
    def test_same_rows(self, temp_workspace, table_id, tree):
        assert sql_ids(temp_workspace, table_id, tree) == memory_ids(temp_workspace, table_id, tree)

    def test_contains_scenario(self, temp_workspace, table_id):
        ids = sql_ids(temp_workspace, table_id, {"conditions": [cond("Name", "contains", "a")]})
        assert names(temp_workspace, table_id, ids) == ["amy", "Carl", "Dana"]

    def test_numeric_comparison_skips_non_numbers(self, temp_workspace, table_id):
        ids = sql_ids(temp_workspace, table_id, {"conditions": [cond("Age", "gt", "9")]})
        assert names(temp_workspace, table_id, ids) == ["Bob", "Dana"]

    @pytest.mark.parametrize("age", ["1_000", "0x10", "1,000"])
    def test_separators_and_hex_are_not_numbers(self, temp_workspace, table_id, age):
        temp_workspace.create_row(table_id, {"Name": "Eve", "Age": age})
        for op in ("gt", "lt"):
            tree = {"conditions": [cond("Age", op, "9")]}
            ids = sql_ids(temp_workspace, table_id, tree)
            assert "Eve" not in names(temp_workspace, table_id, ids)
            assert ids == memory_ids(temp_workspace, table_id, tree)

    def test_non_numeric_condition_value_matches_nothing(self, temp_workspace, table_id):
        assert sql_ids(temp_workspace, table_id, {"conditions": [cond("Age", "gt", "ten")]}) == []

    def test_empty_tree_matches_all(self, temp_workspace, table_id):
        assert len(sql_ids(temp_workspace, table_id, FilterGroup())) == len(ROWS)

    def test_only_rows_of_the_table(self, temp_workspace, table_id):
        ws = temp_workspace
        other = ws.create_table("Other")
        ws.create_column(other.id, "Name")
        ws.create_row(other.id, {"Name": "Bob"})
        ids = sql_ids(ws, table_id, {"conditions": [cond("Name", "is", "Bob")]})
        assert len(ids) == 1
        assert ws.tables.get_row(ids[0]).table_id == table_id

    def test_results_follow_row_order(self, temp_workspace, table_id):
        ws = temp_workspace
        ws.sort_table(table_id, [{"columnName": "Name", "columnType": "TEXT", "order": "DESC"}])
        ids = sql_ids(ws, table_id, {"conditions": [cond("Name", "is not empty")]})
        assert names(ws, table_id, ids) == ["Dana", "Carl", "Bob", "amy"]


class TestQueryShape:
    """Join aliasing and parameter binding."""

    def test_one_alias_per_leaf(self, temp_workspace, table_id):
        group = parse_filter({"conditions": [
            cond("Name", "is", "a"),
            {"combineWith": "OR", "conditions": [cond("Name", "is", "b"), cond("Age", "gt", "1")]},
        ]})
        stmt = FilterCompiler().compile(table_id, group, ["Name", "Age", "City"])
        sql = str(stmt)
        assert "cell_d1_0_0" in sql
        assert "cell_d2_0_1_0" in sql
        assert "cell_d2_0_1_1" in sql
        assert sql.count("LEFT OUTER JOIN") == 3

    def test_values_are_bound_parameters(self, temp_workspace, table_id):
        hostile = "x' OR '1'='1"
        group = parse_filter({"conditions": [cond("Name", "is", hostile)]})
        stmt = FilterCompiler().compile(table_id, group, ["Name", "Age", "City"])
        assert hostile not in str(stmt)
        assert hostile in stmt.compile().params.values()
        assert sql_ids(temp_workspace, table_id, group) == []

    def test_hostile_value_does_not_touch_data(self, temp_workspace, table_id):
        ws = temp_workspace
        sql_ids(ws, table_id, {"conditions": [cond("Name", "contains", "'; DELETE FROM rows; --")]})
        assert ws.session.query(Row).count() == len(ROWS)


class TestUnknownColumns:
    """Column names are checked against the live schema."""

    def test_strict_rejects_unknown_column(self, temp_workspace, table_id):
        with pytest.raises(FilterValidationError, match="Height"):
            sql_ids(temp_workspace, table_id, {"conditions": [cond("Height", "gt", "1")]})

    def test_strict_rejects_injection_in_column_name(self, temp_workspace, table_id):
        with pytest.raises(FilterValidationError):
            sql_ids(temp_workspace, table_id,
                    {"conditions": [cond("Name' OR 1=1 --", "is", "x")]})

    def test_lenient_treats_unknown_column_as_empty(self, temp_workspace, table_id, caplog):
        ws = temp_workspace
        with caplog.at_level(logging.WARNING):
            everything = sql_ids(ws, table_id, {"conditions": [cond("Ghost", "is empty")]},
                                 strict=False)
        assert len(everything) == len(ROWS)
        assert "unknown column 'Ghost'" in caplog.text

        nothing = sql_ids(ws, table_id, {"conditions": [cond("Ghost", "is", "x")]}, strict=False)
        assert nothing == []


class TestSearch:
    """Find-in-view text matched against any cell."""

    def test_search_any_cell_case_insensitive(self, temp_workspace, table_id):
        ids = sql_ids(temp_workspace, table_id, FilterGroup(), search="PAR")
        assert names(temp_workspace, table_id, ids) == ["Bob", ""]

    def test_search_combines_with_filter(self, temp_workspace, table_id):
        ids = sql_ids(temp_workspace, table_id,
                      {"conditions": [cond("Age", "gt", "10")]}, search="par")
        assert names(temp_workspace, table_id, ids) == ["Bob"]

    def test_search_without_hits(self, temp_workspace, table_id):
        assert sql_ids(temp_workspace, table_id, FilterGroup(), search="zzz") == []
