"""
Async execution utilities for CLI commands
"""

import asyncio
import sys
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import click
from rich.console import Console

from ...core.errors import IngestionError

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def async_command(f: F) -> Callable[..., Any]:
    """
    Decorator to run async functions in CLI context with proper error handling
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return asyncio.run(f(*args, **kwargs))  # type: ignore
        except (click.exceptions.Exit, click.ClickException, click.Abort):
            raise
        except KeyboardInterrupt:
            console = Console()
            console.print("\n[yellow]Operation interrupted by user[/yellow]")
            sys.exit(130)  # Standard exit code for SIGINT
        except IngestionError as e:
            console = Console()
            console.print(f"[red]{e.code}: {e.message}[/red]")
            sys.exit(1)
        except Exception as e:
            console = Console()
            console.print(f"[red]Operation failed: {e}[/red]")
            sys.exit(1)

    return wrapper
