"""
Rich display components for jobs and queue state
"""

from typing import Any, Dict, List

from rich.panel import Panel
from rich.table import Table

from ...jobs.models import Job, QueueStats
from .formatters import format_duration, format_job_status, format_timestamp, truncate_text


def create_jobs_table(jobs: List[Job], title: str = "Jobs") -> Table:
    """
    Create a Rich table listing jobs
    """
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("URL", style="white")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Created", style="dim")

    for job in jobs:
        table.add_row(
            job.id,
            truncate_text(job.url, 60),
            format_job_status(job.status),
            str(job.progress.chunks_created),
            format_timestamp(job.created_at),
        )

    return table


def create_job_panel(job: Job) -> Panel:
    """
    Create a detail panel for one job
    """
    progress = job.progress
    content_lines = [
        f"URL: {job.url}",
        f"Status: [{format_job_status(job.status).style}]{job.status.value}[/]",
        f"Created: {format_timestamp(job.created_at)}",
        f"Processing time: {format_duration(job.processing_time)}",
        "",
        f"Pages processed: {progress.pages_processed}",
        f"Chunks created: {progress.chunks_created}",
        f"Chunks embedded: {progress.chunks_embedded}",
    ]

    if job.error_message:
        content_lines.append("")
        content_lines.append(f"[red]Error: {job.error_message}[/red]")

    if progress.errors:
        content_lines.append("")
        content_lines.append(f"[yellow]{len(progress.errors)} recorded errors:[/yellow]")
        for error in progress.errors[-5:]:
            content_lines.append(f"  • {truncate_text(error, 100)}")

    return Panel("\n".join(content_lines), title=f"Job {job.id}", border_style="blue")


def create_stats_table(stats: QueueStats) -> Table:
    table = Table(title="Queue", show_header=False)
    table.add_column("Status", style="cyan")
    table.add_column("Jobs", justify="right")

    for name, count in stats.to_dict().items():
        table.add_row(name.title(), str(count))

    return table


def create_key_value_table(data: Dict[str, Any], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    for key, value in data.items():
        table.add_row(key.replace("_", " ").title(), str(value))

    return table
