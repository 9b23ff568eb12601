"""
Memory status command
"""

import click
from rich.console import Console

from ..ui.display import create_key_value_table
from ..utils.services import load_config


@click.command()
@click.pass_context
def memory(ctx: click.Context) -> None:
    """
    Show process memory usage against the configured thresholds.
    """
    console: Console = ctx.obj["console"]
    config = load_config(ctx)

    controller = config.memory.to_controller(config.processing.batch_delay)
    stats = controller.get_memory_stats()

    console.print(create_key_value_table(stats, "Memory"))

    status_colors = {"normal": "green", "warning": "yellow", "critical": "red"}
    color = status_colors.get(stats["status"], "white")
    console.print(f"[{color}]{stats['recommendation']}[/{color}]")
