"""
Job queue commands
"""

import json
from typing import Optional

import click
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console

from ...core.errors import JobError
from ...jobs.models import JobOptions, JobStatus
from ..ui.display import create_job_panel, create_jobs_table, create_stats_table
from ..utils.async_runner import async_command
from ..utils.services import load_config, open_queue


@click.command()
@click.argument("url")
@click.option("--max-depth", type=int, default=3, show_default=True, help="Maximum crawl depth (1-10)")
@click.option("--follow-links", is_flag=True, help="Follow links found on the page")
@click.option("--no-robots", is_flag=True, help="Ignore robots.txt")
@click.pass_context
@async_command
async def enqueue(
    ctx: click.Context, url: str, max_depth: int, follow_links: bool, no_robots: bool
) -> None:
    """
    Queue a URL for ingestion.

    Prints the new job ID.

    Examples:
      docingest enqueue https://docs.python.org/3/library/asyncio.html
      docingest enqueue https://example.com --max-depth 2 --follow-links
    """
    console: Console = ctx.obj["console"]

    try:
        options = JobOptions(
            max_depth=max_depth, follow_links=follow_links, respect_robots=not no_robots
        )
    except PydanticValidationError as e:
        console.print(f"[red]Invalid job options: {e.errors()[0]['msg']}[/red]")
        ctx.exit(1)

    config = load_config(ctx)
    async with open_queue(config) as queue:
        job_id = await queue.enqueue(url, options)

    console.print(f"[green]✓ Job queued:[/green] {job_id}")


@click.command()
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Print the job as JSON")
@click.pass_context
@async_command
async def status(ctx: click.Context, job_id: str, as_json: bool) -> None:
    """
    Show the status and progress of a job.
    """
    console: Console = ctx.obj["console"]
    config = load_config(ctx)

    async with open_queue(config) as queue:
        job = await queue.get_status(job_id)

    if job is None:
        console.print(f"[red]Job not found: {job_id}[/red]")
        ctx.exit(1)

    if as_json:
        click.echo(json.dumps(job.to_dict(), indent=2))
    else:
        console.print(create_job_panel(job))


@click.command(name="jobs")
@click.option(
    "--status", "status_filter",
    type=click.Choice([s.value for s in JobStatus], case_sensitive=False),
    help="Only show jobs in this status"
)
@click.option("--limit", type=int, default=20, show_default=True, help="Maximum jobs to list")
@click.pass_context
@async_command
async def list_jobs(ctx: click.Context, status_filter: Optional[str], limit: int) -> None:
    """
    List jobs, newest first, with queue totals.
    """
    console: Console = ctx.obj["console"]
    config = load_config(ctx)
    status_value = JobStatus(status_filter.upper()) if status_filter else None

    async with open_queue(config) as queue:
        jobs = await queue.list_jobs(status=status_value, limit=limit)
        stats = await queue.get_queue_stats()

    if jobs:
        console.print(create_jobs_table(jobs))
    else:
        console.print("[yellow]No jobs found[/yellow]")
    console.print(create_stats_table(stats))


@click.command()
@click.argument("job_id")
@click.pass_context
@async_command
async def cancel(ctx: click.Context, job_id: str) -> None:
    """
    Cancel a job that has not started processing.
    """
    console: Console = ctx.obj["console"]
    config = load_config(ctx)

    async with open_queue(config) as queue:
        cancelled = await queue.cancel_job(job_id)

    if not cancelled:
        console.print(f"[yellow]Job {job_id} was not cancelled (not found or no longer queued)[/yellow]")
        ctx.exit(1)

    console.print(f"[green]✓ Job cancelled:[/green] {job_id}")


@click.command()
@click.argument("job_id")
@click.pass_context
@async_command
async def retry(ctx: click.Context, job_id: str) -> None:
    """
    Re-queue a failed job as a new job.
    """
    console: Console = ctx.obj["console"]
    config = load_config(ctx)

    try:
        async with open_queue(config) as queue:
            new_job_id = await queue.retry_job(job_id)
    except JobError as e:
        console.print(f"[red]{e.message}[/red]")
        ctx.exit(1)

    console.print(f"[green]✓ Job {job_id} re-queued as:[/green] {new_job_id}")


@click.command()
@click.option("--days", type=int, default=30, show_default=True, help="Delete finished jobs older than this")
@click.pass_context
@async_command
async def cleanup(ctx: click.Context, days: int) -> None:
    """
    Delete completed and failed jobs older than --days.
    """
    console: Console = ctx.obj["console"]
    if days < 0:
        console.print("[red]Error: --days must not be negative[/red]")
        ctx.exit(1)

    config = load_config(ctx)
    async with open_queue(config) as queue:
        deleted = await queue.cleanup_old_jobs(older_than_days=days)

    console.print(f"[green]✓ Removed {deleted} jobs older than {days} days[/green]")
