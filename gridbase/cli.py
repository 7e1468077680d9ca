import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .db.session import DB_FILENAME
from .decorators import handle_workspace_errors, console as error_console
from .services.table_service import TableSnapshot
from .workspace import Workspace

# Initialize Rich Console
console = Console()

# Configure logging to use Rich's RichHandler
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
logger = logging.getLogger("gridbase")

# Main app
app = typer.Typer(help="Tables with persisted filter and sort views")

# Command groups
table_app = typer.Typer(help="Create, list, show and delete tables")
column_app = typer.Typer(help="Add, rename and delete columns")
row_app = typer.Typer(help="Add and delete rows")
cell_app = typer.Typer(help="Edit cell values")
filter_app = typer.Typer(help="Manage the stored filter of a table")
sort_app = typer.Typer(help="Manage the stored sort of a table")
view_app = typer.Typer(help="Export and import view state as YAML")

# Register command groups
app.add_typer(table_app, name="table")
app.add_typer(column_app, name="column")
app.add_typer(row_app, name="row")
app.add_typer(cell_app, name="cell")
app.add_typer(filter_app, name="filter")
app.add_typer(sort_app, name="sort")
app.add_typer(view_app, name="view")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
):
    """
    gridbase - user-defined tables with nested filters and multi-key sorts.

    Every table keeps its filter and sort in the database, so reopening a
    table shows the same rows in the same order.
    """
    from .config import load_config

    cli_config = load_config().cli
    if not cli_config.color:
        console.no_color = True
        error_console.no_color = True

    if verbose or cli_config.verbose:
        logger.setLevel(logging.DEBUG)
        if verbose:
            console.print("[bold green]Verbose mode enabled.[/bold green]")


def open_workspace(workspace_path: Path) -> Workspace:
    """Open an existing workspace; refuses to create one implicitly."""
    from .config import load_config

    if not (Path(workspace_path) / DB_FILENAME).exists():
        raise FileNotFoundError(f"{workspace_path} (use 'gridbase init' first)")
    return Workspace.open(workspace_path, echo=load_config().workspace.echo_sql)


def print_snapshot(snapshot: TableSnapshot, limit: Optional[int] = None):
    """Render a table snapshot with Rich."""
    table = Table(title=f"{snapshot.name} (id={snapshot.id})")
    table.add_column("Row", style="cyan", justify="right")
    for col in snapshot.columns:
        justify = "right" if col.type == "NUMBER" else "left"
        table.add_column(f"{col.name} [dim]#{col.id}[/dim]", justify=justify)

    rows = snapshot.rows if limit is None else snapshot.rows[:limit]
    for row in rows:
        table.add_row(str(row.id), *[row.get(col.name, "") for col in snapshot.columns])

    console.print(table)
    if limit is not None and len(snapshot.rows) > limit:
        console.print(f"[dim]Showing {limit} of {len(snapshot.rows)} rows[/dim]")
    if snapshot.filtering:
        console.print("[dim]Filter active[/dim]")
    if snapshot.sorting:
        console.print("[dim]Sort active[/dim]")


def _parse_assignments(assignments: List[str]) -> Dict[str, str]:
    values = {}
    for item in assignments:
        if "=" not in item:
            raise typer.BadParameter(f"Expected COLUMN=VALUE, got '{item}'")
        name, value = item.split("=", 1)
        values[name.strip()] = value
    return values


def _parse_sort_specs(ws: Workspace, table_id: int, specs: List[str]) -> List[Dict[str, str]]:
    """
    Turn ``Name``, ``Name:desc`` or ``Age:number:desc`` into sort key dicts.

    The column type defaults to the column's schema type.
    """
    schema = {c.name: c.type for c in ws.tables.columns_of(table_id)}
    keys = []
    for spec in specs:
        name, *flags = spec.split(":")
        key = {"columnName": name, "columnType": schema.get(name, "TEXT"), "order": "ASC"}
        for flag in flags:
            flag = flag.strip().upper()
            if flag in ("ASC", "DESC"):
                key["order"] = flag
            elif flag in ("TEXT", "NUMBER"):
                key["columnType"] = flag
            else:
                raise typer.BadParameter(f"Unknown sort flag '{flag}' in '{spec}'")
        keys.append(key)
    return keys


# ============================================================================
# Core Workspace Commands
# ============================================================================

@app.command()
def init(
    workspace_path: Path = typer.Argument(..., help="Path to create the workspace"),
    echo_sql: bool = typer.Option(False, "--echo-sql", help="Echo SQL statements for debugging")
):
    """
    Initialize a new workspace.

    Example:
        gridbase init ~/my-workspace
    """
    try:
        ws = Workspace.open(workspace_path, echo=echo_sql)
        ws.close()
        console.print(f"[green]✓ Workspace initialized at {workspace_path}[/green]")
        console.print(f"  Database: {workspace_path / DB_FILENAME}")
    except Exception as e:
        console.print(f"[red]Error initializing workspace: {e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def serve(
    workspace_path: Optional[Path] = typer.Argument(None, help="Path to workspace (defaults from config)"),
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind to (defaults from config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind to (defaults from config)"),
):
    """
    Start the REST API server.

    Examples:
        gridbase serve ~/my-workspace --port 8080
    """
    from .config import load_config

    config = load_config()

    if workspace_path is None:
        if config.workspace.default_path:
            workspace_path = Path(config.workspace.default_path)
        else:
            console.print("[red]Error: No workspace path specified[/red]")
            console.print("[yellow]Either provide a path or set default with:[/yellow]")
            console.print("[yellow]  gridbase config --workspace-path ~/my-workspace[/yellow]")
            raise typer.Exit(code=1)

    if not (workspace_path / DB_FILENAME).exists():
        console.print(f"[red]Error: Workspace not found: {workspace_path}[/red]")
        raise typer.Exit(code=1)

    server_host = host if host is not None else config.server.host
    server_port = port if port is not None else config.server.port

    import uvicorn
    from .server import create_app

    console.print(f"[blue]Workspace: {workspace_path}[/blue]")
    console.print(f"[green]Server running at http://{server_host}:{server_port}[/green]")
    console.print("[dim]Press Ctrl+C to stop[/dim]")

    app_instance = create_app(workspace_path, echo=config.workspace.echo_sql)
    try:
        uvicorn.run(app_instance, host=server_host, port=server_port, log_level="info")
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped[/yellow]")


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", help="Initialize config file with defaults"),
    set_server_host: Optional[str] = typer.Option(None, "--server-host", help="Set web server host"),
    set_server_port: Optional[int] = typer.Option(None, "--server-port", help="Set web server port"),
    set_workspace_path: Optional[str] = typer.Option(None, "--workspace-path", help="Set default workspace path"),
    set_echo_sql: Optional[bool] = typer.Option(None, "--echo-sql/--no-echo-sql", help="Log SQL statements"),
    set_verbose: Optional[bool] = typer.Option(None, "--cli-verbose/--no-cli-verbose", help="Enable verbose output by default"),
    set_page_size: Optional[int] = typer.Option(None, "--page-size", help="Rows shown by 'table show'"),
    set_color: Optional[bool] = typer.Option(None, "--color/--no-color", help="Use colored console output"),
):
    """
    View or edit gridbase configuration.

    Examples:
        gridbase config --show
        gridbase config --workspace-path ~/my-workspace --server-port 9000
    """
    from .config import load_config, ensure_config_exists, update_config, get_config_path

    if init:
        config_path = ensure_config_exists()
        console.print(f"[green]Configuration initialized at {config_path}[/green]")
        return

    has_settings = any([
        set_server_host, set_server_port, set_workspace_path, set_page_size,
        set_echo_sql is not None, set_verbose is not None, set_color is not None,
    ])

    if has_settings:
        update_config(
            server_host=set_server_host,
            server_port=set_server_port,
            cli_verbose=set_verbose,
            cli_color=set_color,
            cli_page_size=set_page_size,
            workspace_default_path=set_workspace_path,
            workspace_echo_sql=set_echo_sql,
        )
        console.print(f"[green]✓ Configuration updated ({get_config_path()})[/green]")

    if show or not has_settings:
        console.print(f"[bold]Config file:[/bold] {get_config_path()}")
        console.print_json(json.dumps(load_config().to_dict()))


# ============================================================================
# Tables
# ============================================================================

@table_app.command(name="create")
@handle_workspace_errors
def table_create(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    name: str = typer.Argument(..., help="Table name"),
):
    """Create an empty table."""
    with open_workspace(workspace_path) as ws:
        table = ws.create_table(name)
        console.print(f"[green]✓ Created table '{table.name}' (id={table.id})[/green]")


@table_app.command(name="list")
@handle_workspace_errors
def table_list(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
):
    """List tables."""
    with open_workspace(workspace_path) as ws:
        tables = ws.list_tables()
        if not tables:
            console.print("[yellow]No tables found[/yellow]")
            return

        out = Table(title="Tables")
        out.add_column("ID", style="cyan")
        out.add_column("Name", style="green")
        out.add_column("Columns", justify="right")
        out.add_column("Rows", justify="right")
        out.add_column("Filter")
        out.add_column("Sort")
        for t in tables:
            out.add_row(
                str(t.id), t.name, str(len(t.columns)), str(len(t.rows)),
                "yes" if t.filtering else "-",
                "yes" if t.sorting else "-",
            )
        console.print(out)


@table_app.command(name="show")
@handle_workspace_errors
def table_show(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Find in view"),
    raw: bool = typer.Option(False, "--raw", help="Ignore the stored filter"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum rows to show"),
):
    """
    Show a table as the view sees it (stored filter applied, persisted order).

    Examples:
        gridbase table show ~/ws 1
        gridbase table show ~/ws 1 --search bob
    """
    from .config import load_config

    with open_workspace(workspace_path) as ws:
        snapshot = ws.load_table(table_id) if raw else ws.get_table(table_id, search=search)
        print_snapshot(snapshot, limit=limit if limit is not None else load_config().cli.page_size)


@table_app.command(name="delete")
@handle_workspace_errors
def table_delete(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a table with all its columns, rows and cells."""
    if not yes and not typer.confirm(f"Delete table {table_id}?"):
        raise typer.Exit(code=0)
    with open_workspace(workspace_path) as ws:
        ws.delete_table(table_id)
        console.print(f"[green]✓ Deleted table {table_id}[/green]")


# ============================================================================
# Columns, rows, cells
# ============================================================================

@column_app.command(name="add")
@handle_workspace_errors
def column_add(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
    name: str = typer.Argument(..., help="Column name"),
    column_type: str = typer.Option("TEXT", "--type", "-t", help="TEXT or NUMBER"),
):
    """Add a column; existing rows get an empty cell."""
    with open_workspace(workspace_path) as ws:
        column = ws.create_column(table_id, name, column_type)
        console.print(f"[green]✓ Added column '{column.name}' ({column.type}, id={column.id})[/green]")


@column_app.command(name="rename")
@handle_workspace_errors
def column_rename(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    column_id: int = typer.Argument(..., help="Column ID"),
    name: str = typer.Argument(..., help="New column name"),
):
    """
    Rename a column.

    Stored filters and sorts that use the old name stop matching it.
    """
    with open_workspace(workspace_path) as ws:
        column = ws.rename_column(column_id, name)
        console.print(f"[green]✓ Column {column.id} is now '{column.name}'[/green]")


@column_app.command(name="delete")
@handle_workspace_errors
def column_delete(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    column_id: int = typer.Argument(..., help="Column ID"),
):
    """Delete a column and its cells."""
    with open_workspace(workspace_path) as ws:
        ws.delete_column(column_id)
        console.print(f"[green]✓ Deleted column {column_id}[/green]")


@row_app.command(name="add")
@handle_workspace_errors
def row_add(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
    assignments: Optional[List[str]] = typer.Option(None, "--set", "-s", help="COLUMN=VALUE (repeatable)"),
    resort: bool = typer.Option(True, "--resort/--no-resort", help="Re-run the stored sort afterwards"),
):
    """
    Append a row.

    Example:
        gridbase row add ~/ws 1 --set Name=Bob --set Age=30
    """
    values = _parse_assignments(assignments or [])
    with open_workspace(workspace_path) as ws:
        row = ws.create_row(table_id, values)
        if resort:
            ws.reapply_sort(table_id)
        console.print(f"[green]✓ Added row {row.id}[/green]")


@row_app.command(name="delete")
@handle_workspace_errors
def row_delete(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    row_id: int = typer.Argument(..., help="Row ID"),
):
    """Delete a row and its cells."""
    with open_workspace(workspace_path) as ws:
        ws.delete_row(row_id)
        console.print(f"[green]✓ Deleted row {row_id}[/green]")


@cell_app.command(name="set")
@handle_workspace_errors
def cell_set(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    row_id: int = typer.Argument(..., help="Row ID"),
    column_name: str = typer.Argument(..., help="Column name"),
    value: str = typer.Argument(..., help="New value"),
    resort: bool = typer.Option(True, "--resort/--no-resort", help="Re-run the stored sort afterwards"),
):
    """Set the value of one cell."""
    with open_workspace(workspace_path) as ws:
        cell = ws.set_cell(row_id, column_name, value)
        if resort:
            ws.reapply_sort(ws.tables.get_row(row_id).table_id)
        console.print(f"[green]✓ {cell.column_name} = {cell.value!r}[/green]")


# ============================================================================
# Filter and sort
# ============================================================================

@filter_app.command(name="set")
@handle_workspace_errors
def filter_set(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
    filter_json: Optional[str] = typer.Argument(None, help="Filter tree as JSON"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read the filter tree from a JSON file"),
):
    """
    Store a filter tree for a table.

    Example:
        gridbase filter set ~/ws 1 '{"combineWith": "OR", "conditions": [
            {"columnName": "Age", "operator": "gt", "value": "10"},
            {"columnName": "Name", "operator": "is", "value": "amy"}]}'
    """
    if file is not None:
        filter_json = file.read_text()
    if filter_json is None:
        raise typer.BadParameter("Provide the filter as an argument or with --file")

    with open_workspace(workspace_path) as ws:
        group = ws.update_table_filter(table_id, filter_json)
        if group.is_empty():
            console.print(f"[green]✓ Cleared filter on table {table_id}[/green]")
        else:
            console.print(f"[green]✓ Filter stored on table {table_id}[/green]")


@filter_app.command(name="show")
@handle_workspace_errors
def filter_show(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
):
    """Print the stored filter tree."""
    with open_workspace(workspace_path) as ws:
        console.print_json(json.dumps(ws.get_filter(table_id).to_dict()))


@filter_app.command(name="clear")
@handle_workspace_errors
def filter_clear(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
):
    """Remove the stored filter."""
    with open_workspace(workspace_path) as ws:
        ws.update_table_filter(table_id, None)
        console.print(f"[green]✓ Cleared filter on table {table_id}[/green]")


@sort_app.command(name="set")
@handle_workspace_errors
def sort_set(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
    keys: List[str] = typer.Argument(..., help="Sort keys, most significant first: NAME[:asc|desc][:text|number]"),
):
    """
    Sort a table and store the sort.

    Examples:
        gridbase sort set ~/ws 1 Name
        gridbase sort set ~/ws 1 Status Age:desc
    """
    with open_workspace(workspace_path) as ws:
        ws.sort_table(table_id, _parse_sort_specs(ws, table_id, keys))
        order = ", ".join(f"{k.column_name} {k.order.value}" for k in ws.get_sort(table_id))
        console.print(f"[green]✓ Sorted table {table_id} by {order}[/green]")


@sort_app.command(name="reset")
@handle_workspace_errors
def sort_reset(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
):
    """Restore insertion order and clear the stored sort."""
    with open_workspace(workspace_path) as ws:
        ws.reset_order(table_id)
        console.print(f"[green]✓ Table {table_id} back in insertion order[/green]")


@sort_app.command(name="show")
@handle_workspace_errors
def sort_show(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
):
    """Print the stored sort keys."""
    with open_workspace(workspace_path) as ws:
        keys = ws.get_sort(table_id)
        if not keys:
            console.print("[yellow]No sort active[/yellow]")
            return
        for i, key in enumerate(keys, start=1):
            console.print(f"  {i}. {key.column_name} ({key.column_type.value}) {key.order.value}")


# ============================================================================
# View state import / export
# ============================================================================

@view_app.command(name="export")
@handle_workspace_errors
def view_export(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
):
    """Export a table's filter and sort as YAML."""
    with open_workspace(workspace_path) as ws:
        if output is not None:
            ws.views.export_file(table_id, output)
            console.print(f"[green]✓ View state written to {output}[/green]")
        else:
            typer.echo(ws.views.export_yaml(table_id))


@view_app.command(name="import")
@handle_workspace_errors
def view_import(
    workspace_path: Path = typer.Argument(..., help="Path to workspace"),
    table_id: int = typer.Argument(..., help="Table ID"),
    file: Path = typer.Argument(..., help="YAML file from 'view export'"),
):
    """Apply a filter and sort exported with 'view export'."""
    with open_workspace(workspace_path) as ws:
        ws.views.import_file(table_id, file)
        console.print(f"[green]✓ View state imported into table {table_id}[/green]")
