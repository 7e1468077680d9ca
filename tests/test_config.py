"""
Tests for configuration loading and saving.
"""

import json
from pathlib import Path

import pytest

from gridbase.config import (
    GridbaseConfig,
    ServerConfig,
    get_config_path,
    load_config,
    save_config,
    ensure_config_exists,
    update_config,
)


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    return tmp_path


class TestConfigPath:

    def test_fallback_directory(self, home):
        assert get_config_path() == home / ".gridbase" / "config.json"

    def test_xdg_directory(self, home):
        (home / ".config").mkdir()
        assert get_config_path() == home / ".config" / "gridbase" / "config.json"


class TestLoadSave:

    def test_defaults_without_file(self, home):
        config = load_config()
        assert config.server.port == 8000
        assert config.cli.page_size == 50
        assert config.workspace.default_path is None

    def test_save_and_load(self, home):
        config = GridbaseConfig(server=ServerConfig(host="0.0.0.0", port=9000))
        path = save_config(config)
        assert path.exists()
        assert load_config().server.host == "0.0.0.0"

    def test_partial_file_fills_defaults(self, home):
        path = get_config_path()
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"workspace": {"echo_sql": True}}))
        config = load_config()
        assert config.workspace.echo_sql is True
        assert config.server.port == 8000

    def test_corrupt_file_falls_back_to_defaults(self, home, caplog):
        path = get_config_path()
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        assert load_config() == GridbaseConfig()
        assert "Failed to load config" in caplog.text

    def test_unknown_keys_fall_back_to_defaults(self, home):
        path = get_config_path()
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"server": {"hostname": "x"}}))
        assert load_config() == GridbaseConfig()

    def test_ensure_config_exists(self, home):
        path = ensure_config_exists()
        assert json.loads(path.read_text()) == GridbaseConfig().to_dict()


class TestUpdateConfig:

    def test_only_given_values_change(self, home):
        update_config(server_port=9100)
        config = update_config(workspace_default_path="/data/ws")
        assert config.server.port == 9100
        assert config.server.host == "127.0.0.1"
        assert load_config().workspace.default_path == "/data/ws"

    def test_false_values_are_applied(self, home):
        update_config(cli_color=True)
        assert update_config(cli_color=False).cli.color is False
