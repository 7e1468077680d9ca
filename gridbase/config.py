"""
Configuration management for gridbase.

Handles loading and saving user configuration from:
- XDG config directory: ~/.config/gridbase/config.json
- Fallback: ~/.gridbase/config.json
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    """Web server configuration."""
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class CLIConfig:
    """CLI default options."""
    verbose: bool = False
    color: bool = True
    page_size: int = 50


@dataclass
class WorkspaceConfig:
    """Workspace-related settings."""
    default_path: Optional[str] = None
    echo_sql: bool = False


@dataclass
class GridbaseConfig:
    """Main gridbase configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    cli: CLIConfig = field(default_factory=CLIConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "server": asdict(self.server),
            "cli": asdict(self.cli),
            "workspace": asdict(self.workspace),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GridbaseConfig':
        """Create from dictionary."""
        return cls(
            server=ServerConfig(**data.get("server", {})),
            cli=CLIConfig(**data.get("cli", {})),
            workspace=WorkspaceConfig(**data.get("workspace", {})),
        )


def get_config_path() -> Path:
    """
    Get configuration file path.

    Follows XDG Base Directory specification:
    1. ~/.config/gridbase/config.json
    2. Fallback: ~/.gridbase/config.json
    """
    xdg_config_home = Path.home() / ".config"
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "gridbase"
    else:
        config_dir = Path.home() / ".gridbase"

    return config_dir / "config.json"


def load_config() -> GridbaseConfig:
    """
    Load configuration from file.

    Returns:
        GridbaseConfig instance with loaded values or defaults
    """
    config_path = get_config_path()

    if not config_path.exists():
        return GridbaseConfig()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        return GridbaseConfig.from_dict(data)
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}; using defaults")
        return GridbaseConfig()


def save_config(config: GridbaseConfig) -> Path:
    """Save configuration to file and return its path."""
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info(f"Configuration saved to {config_path}")
    return config_path


def ensure_config_exists() -> Path:
    """Ensure configuration file exists, creating with defaults if not."""
    config_path = get_config_path()

    if not config_path.exists():
        save_config(GridbaseConfig())
        logger.info(f"Created default configuration at {config_path}")

    return config_path


def update_config(
    # Server settings
    server_host: Optional[str] = None,
    server_port: Optional[int] = None,
    # CLI settings
    cli_verbose: Optional[bool] = None,
    cli_color: Optional[bool] = None,
    cli_page_size: Optional[int] = None,
    # Workspace settings
    workspace_default_path: Optional[str] = None,
    workspace_echo_sql: Optional[bool] = None,
) -> GridbaseConfig:
    """
    Update configuration.

    Only updates provided values, leaving others unchanged.
    """
    config = load_config()

    if server_host is not None:
        config.server.host = server_host
    if server_port is not None:
        config.server.port = server_port

    if cli_verbose is not None:
        config.cli.verbose = cli_verbose
    if cli_color is not None:
        config.cli.color = cli_color
    if cli_page_size is not None:
        config.cli.page_size = cli_page_size

    if workspace_default_path is not None:
        config.workspace.default_path = workspace_default_path
    if workspace_echo_sql is not None:
        config.workspace.echo_sql = workspace_echo_sql

    save_config(config)
    return config
