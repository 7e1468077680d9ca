"""Decorators for gridbase CLI commands."""

import functools
import logging
from typing import Callable, Any
import typer
from rich.console import Console

from .errors import NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)
console = Console()


def handle_workspace_errors(func: Callable) -> Callable:
    """
    Decorator to handle common workspace operation errors.

    Centralizes error reporting for:
    - ValidationError: Rejected filter, sort or schema input
    - NotFoundError: Unknown table, column, row or cell
    - PersistenceError: Unit of work failed; safe to retry
    - FileNotFoundError: Workspace doesn't exist
    - General exceptions: Unexpected errors
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid input: {e}")
            raise typer.Exit(code=1)
        except NotFoundError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)
        except PersistenceError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            console.print("[yellow]Nothing was changed; the command can be retried[/yellow]")
            raise typer.Exit(code=1)
        except FileNotFoundError as e:
            console.print(f"[bold red]Error:[/bold red] Workspace or file not found: {e}")
            raise typer.Exit(code=1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(code=130)
        except (typer.Exit, typer.BadParameter):
            raise
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            console.print(f"[bold red]Unexpected error:[/bold red] {e}")
            raise typer.Exit(code=1)

    return wrapper
