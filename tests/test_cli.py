"""
Tests for the gridbase CLI.
"""

import json
import shutil
import tempfile
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from gridbase import Workspace
from gridbase.cli import app


runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep the user's real config file out of the tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: home)
    return home


@pytest.fixture
def workspace_path():
    """An initialized, empty workspace directory."""
    temp_dir = tempfile.mkdtemp()
    Workspace.open(Path(temp_dir)).close()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def populated_workspace(workspace_path):
    """Workspace with a People table (id 1) - returns the path."""
    with Workspace.open(workspace_path) as ws:
        table = ws.create_table("People")
        ws.create_column(table.id, "Name")
        ws.create_column(table.id, "Age", "NUMBER")
        ws.create_row(table.id, {"Name": "Bob", "Age": "30"})
        ws.create_row(table.id, {"Name": "amy", "Age": "5"})
    return workspace_path


def view_names(path, table_id=1):
    with Workspace.open(path) as ws:
        return ws.get_table(table_id).column_values("Name")


class TestInit:
    """Tests for init."""

    def test_init_creates_database(self):
        temp_dir = Path(tempfile.mkdtemp())
        try:
            target = temp_dir / "ws"
            result = runner.invoke(app, ["init", str(target)])
            assert result.exit_code == 0
            assert (target / "workspace.db").exists()
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def test_commands_refuse_missing_workspace(self):
        temp_dir = Path(tempfile.mkdtemp())
        try:
            result = runner.invoke(app, ["table", "list", str(temp_dir / "nope")])
            assert result.exit_code == 1
            assert "not found" in result.stdout
            assert not (temp_dir / "nope").exists()
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)


class TestTableCommands:
    """Tests for the table, column, row and cell groups."""

    def test_build_table(self, workspace_path):
        path = str(workspace_path)
        assert runner.invoke(app, ["table", "create", path, "People"]).exit_code == 0
        assert runner.invoke(app, ["column", "add", path, "1", "Name"]).exit_code == 0
        assert runner.invoke(app, ["column", "add", path, "1", "Age", "--type", "NUMBER"]).exit_code == 0
        result = runner.invoke(app, ["row", "add", path, "1", "--set", "Name=Bob", "--set", "Age=30"])
        assert result.exit_code == 0

        with Workspace.open(workspace_path) as ws:
            snapshot = ws.get_table(1)
            assert [c.type for c in snapshot.columns] == ["TEXT", "NUMBER"]
            assert snapshot.rows[0].get("Age") == "30"

    def test_table_list(self, populated_workspace):
        result = runner.invoke(app, ["table", "list", str(populated_workspace)])
        assert result.exit_code == 0
        assert "People" in result.stdout

    def test_table_show(self, populated_workspace):
        result = runner.invoke(app, ["table", "show", str(populated_workspace), "1"])
        assert result.exit_code == 0
        assert "Bob" in result.stdout
        assert "amy" in result.stdout

    def test_table_show_search(self, populated_workspace):
        result = runner.invoke(app, ["table", "show", str(populated_workspace), "1", "--search", "AM"])
        assert result.exit_code == 0
        assert "amy" in result.stdout
        assert "Bob" not in result.stdout

    def test_table_show_missing(self, populated_workspace):
        result = runner.invoke(app, ["table", "show", str(populated_workspace), "9"])
        assert result.exit_code == 1
        assert "Table 9 not found" in result.stdout

    def test_row_add_unknown_column(self, populated_workspace):
        result = runner.invoke(app, ["row", "add", str(populated_workspace), "1", "--set", "Height=2"])
        assert result.exit_code == 1
        assert "Invalid input" in result.stdout

    def test_row_add_bad_assignment(self, populated_workspace):
        result = runner.invoke(app, ["row", "add", str(populated_workspace), "1", "--set", "Bob"])
        assert result.exit_code != 0

    def test_cell_set(self, populated_workspace):
        result = runner.invoke(app, ["cell", "set", str(populated_workspace), "2", "Name", "Amy"])
        assert result.exit_code == 0
        assert view_names(populated_workspace) == ["Bob", "Amy"]

    def test_column_rename(self, populated_workspace):
        result = runner.invoke(app, ["column", "rename", str(populated_workspace), "1", "Full Name"])
        assert result.exit_code == 0
        with Workspace.open(populated_workspace) as ws:
            assert ws.tables.column_names(1) == ["Full Name", "Age"]

    def test_table_delete(self, populated_workspace):
        result = runner.invoke(app, ["table", "delete", str(populated_workspace), "1", "--yes"])
        assert result.exit_code == 0
        with Workspace.open(populated_workspace) as ws:
            assert ws.list_tables() == []


class TestViewCommands:
    """Tests for the filter, sort and view groups."""

    def test_filter_set_and_show(self, populated_workspace):
        path = str(populated_workspace)
        tree = json.dumps({"combineWith": "AND", "conditions": [
            {"columnName": "Name", "operator": "contains", "value": "a"}
        ]})
        result = runner.invoke(app, ["filter", "set", path, "1", tree])
        assert result.exit_code == 0
        assert view_names(populated_workspace) == ["amy"]

        result = runner.invoke(app, ["filter", "show", path, "1"])
        assert result.exit_code == 0
        assert "contains" in result.stdout

    def test_filter_set_invalid(self, populated_workspace):
        tree = json.dumps({"conditions": [{"columnName": "Name", "operator": "like", "value": "a"}]})
        result = runner.invoke(app, ["filter", "set", str(populated_workspace), "1", tree])
        assert result.exit_code == 1
        assert "Unknown operator" in result.stdout

    def test_filter_clear(self, populated_workspace):
        path = str(populated_workspace)
        tree = json.dumps({"conditions": [{"columnName": "Name", "operator": "is", "value": "Bob"}]})
        runner.invoke(app, ["filter", "set", path, "1", tree])
        result = runner.invoke(app, ["filter", "clear", path, "1"])
        assert result.exit_code == 0
        assert view_names(populated_workspace) == ["Bob", "amy"]

    def test_sort_set_uses_schema_type(self, populated_workspace):
        with Workspace.open(populated_workspace) as ws:
            ws.create_row(1, {"Name": "Carl", "Age": "100"})
        result = runner.invoke(app, ["sort", "set", str(populated_workspace), "1", "Age"])
        assert result.exit_code == 0
        assert view_names(populated_workspace) == ["amy", "Bob", "Carl"]

    def test_sort_set_flags(self, populated_workspace):
        path = str(populated_workspace)
        result = runner.invoke(app, ["sort", "set", path, "1", "Name:desc:text"])
        assert result.exit_code == 0
        assert view_names(populated_workspace) == ["Bob", "amy"]

        result = runner.invoke(app, ["sort", "show", path, "1"])
        assert "Name (TEXT) DESC" in result.stdout

    def test_sort_set_unknown_flag(self, populated_workspace):
        result = runner.invoke(app, ["sort", "set", str(populated_workspace), "1", "Name:sideways"])
        assert result.exit_code != 0

    def test_sort_reset(self, populated_workspace):
        path = str(populated_workspace)
        runner.invoke(app, ["sort", "set", path, "1", "Name"])
        result = runner.invoke(app, ["sort", "reset", path, "1"])
        assert result.exit_code == 0
        assert view_names(populated_workspace) == ["Bob", "amy"]

        result = runner.invoke(app, ["sort", "show", path, "1"])
        assert "No sort active" in result.stdout

    def test_row_add_resorts(self, populated_workspace):
        path = str(populated_workspace)
        runner.invoke(app, ["sort", "set", path, "1", "Name"])
        runner.invoke(app, ["row", "add", path, "1", "--set", "Name=Abe"])
        assert view_names(populated_workspace) == ["Abe", "amy", "Bob"]

    def test_view_export_import(self, populated_workspace):
        path = str(populated_workspace)
        runner.invoke(app, ["sort", "set", path, "1", "Age:desc"])
        out_file = populated_workspace / "view.yaml"

        result = runner.invoke(app, ["view", "export", path, "1", "--output", str(out_file)])
        assert result.exit_code == 0
        data = yaml.safe_load(out_file.read_text())
        assert data["sorting"][0]["columnType"] == "NUMBER"

        runner.invoke(app, ["sort", "reset", path, "1"])
        result = runner.invoke(app, ["view", "import", path, "1", str(out_file)])
        assert result.exit_code == 0
        with Workspace.open(populated_workspace) as ws:
            assert ws.get_sort(1)[0].column_name == "Age"


class TestConfigCommand:
    """Tests for the config command."""

    def test_config_show_defaults(self):
        result = runner.invoke(app, ["config", "--show"])
        assert result.exit_code == 0
        assert "8000" in result.stdout

    def test_config_update(self, isolated_home):
        result = runner.invoke(app, ["config", "--server-port", "9001", "--page-size", "10"])
        assert result.exit_code == 0
        data = json.loads((isolated_home / ".gridbase" / "config.json").read_text())
        assert data["server"]["port"] == 9001
        assert data["cli"]["page_size"] == 10

    def test_config_no_color(self, isolated_home):
        result = runner.invoke(app, ["config", "--no-color"])
        assert result.exit_code == 0
        data = json.loads((isolated_home / ".gridbase" / "config.json").read_text())
        assert data["cli"]["color"] is False

        result = runner.invoke(app, ["config", "--color"])
        assert result.exit_code == 0
        data = json.loads((isolated_home / ".gridbase" / "config.json").read_text())
        assert data["cli"]["color"] is True

    def test_color_setting_reaches_consoles(self, workspace_path, monkeypatch):
        from gridbase import cli, decorators

        monkeypatch.setattr(cli.console, "no_color", False)
        monkeypatch.setattr(decorators.console, "no_color", False)
        runner.invoke(app, ["config", "--no-color"])

        result = runner.invoke(app, ["table", "list", str(workspace_path)])
        assert result.exit_code == 0
        assert cli.console.no_color is True
        assert decorators.console.no_color is True

    def test_color_left_alone_by_default(self, workspace_path, monkeypatch):
        from gridbase import cli

        monkeypatch.setattr(cli.console, "no_color", False)
        result = runner.invoke(app, ["table", "list", str(workspace_path)])
        assert result.exit_code == 0
        assert cli.console.no_color is False
