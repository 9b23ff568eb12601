"""
Main CLI entry point for docingest
"""

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install

from .. import __version__
from ..core.config import DEFAULT_CONFIG_PATH

# Install rich traceback handler for better error display
install(show_locals=False)

# Initialize console
console = Console(stderr=True)

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
)


@click.group()
@click.version_option(version=__version__, prog_name="docingest")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="YAML configuration file"
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool, config_path: Optional[str]) -> None:
    """
    docingest - resilient URL ingestion

    Queue URLs for ingestion and inspect the job queue.

    Examples:
      docingest enqueue https://example.com/docs     # Queue a URL
      docingest jobs --status FAILED                 # List failed jobs
      docingest retry <job-id>                       # Re-queue a failed job
      docingest chunk README.md --max-tokens 200     # Preview chunking
    """
    ctx.ensure_object(dict)

    # Configure console
    if no_color:
        ctx.obj["console"] = Console(force_terminal=False, no_color=True)
    else:
        ctx.obj["console"] = Console()

    # Configure logging level
    if verbose:
        logging.getLogger().setLevel(logging.INFO)
        logging.getLogger("docingest").setLevel(logging.DEBUG)
        ctx.obj["verbose"] = True
    else:
        ctx.obj["verbose"] = False

    # Store global options
    ctx.obj["no_color"] = no_color
    ctx.obj["config_path"] = config_path


# Import and register commands at module level to support testing
from .commands import chunk, jobs, memory  # noqa: E402

cli.add_command(jobs.enqueue)
cli.add_command(jobs.status)
cli.add_command(jobs.list_jobs)
cli.add_command(jobs.cancel)
cli.add_command(jobs.retry)
cli.add_command(jobs.cleanup)
cli.add_command(chunk.chunk)
cli.add_command(memory.memory)


def main() -> None:
    """Main entry point for the CLI application"""
    try:
        cli()

    except KeyboardInterrupt:
        console.print("\n[yellow]Operation interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
