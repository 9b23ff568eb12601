"""
Chunk a local file and show the result, for tuning chunking settings
"""

import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ...ingestion.chunking_engine import ContentChunker
from ...ingestion.collaborators import PageMetadata
from ..ui.formatters import truncate_text
from ..utils.services import load_config


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--max-tokens", type=int, help="Token budget per chunk (default from config)")
@click.option("--overlap-tokens", type=int, help="Overlap budget (default from config)")
@click.option("--json", "as_json", is_flag=True, help="Print chunks as JSON")
@click.pass_context
def chunk(
    ctx: click.Context,
    file: Path,
    max_tokens: Optional[int],
    overlap_tokens: Optional[int],
    as_json: bool,
) -> None:
    """
    Split a text or markdown FILE into chunks.
    """
    console: Console = ctx.obj["console"]
    config = load_config(ctx)

    try:
        chunker = ContentChunker(
            max_tokens=max_tokens if max_tokens is not None else config.chunking.max_tokens,
            overlap_tokens=(
                overlap_tokens if overlap_tokens is not None else config.chunking.overlap_tokens
            ),
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    content = file.read_text(encoding="utf-8")
    chunks = chunker.chunk(content, PageMetadata(url=file.resolve().as_uri(), title=file.stem))

    if as_json:
        click.echo(json.dumps([c.to_dict() for c in chunks], indent=2, ensure_ascii=False))
        return

    if not chunks:
        console.print("[yellow]No chunks produced (file is empty)[/yellow]")
        return

    table = Table(title=f"{file.name}: {len(chunks)} chunks", show_header=True, header_style="bold blue")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Section", style="green")
    table.add_column("Tokens", justify="right")
    table.add_column("Preview", style="dim")

    for c in chunks:
        table.add_row(
            str(c.metadata.chunk_index),
            c.metadata.section or "-",
            str(c.token_count),
            truncate_text(c.content.replace("\n", " "), 60),
        )

    console.print(table)
