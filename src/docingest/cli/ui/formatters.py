"""
Output formatting utilities
"""

from datetime import datetime, timedelta
from typing import Optional

from rich.text import Text

from ...jobs.models import JobStatus


def format_timestamp(dt: Optional[datetime]) -> str:
    """Format timestamp for display"""
    if dt is None:
        return "-"

    now = datetime.now()
    diff = now - dt

    if diff < timedelta(seconds=60):
        return f"{int(diff.total_seconds())}s ago"
    elif diff < timedelta(hours=1):
        return f"{int(diff.total_seconds() // 60)}m ago"
    elif diff < timedelta(days=1):
        return f"{int(diff.total_seconds() // 3600)}h ago"
    elif diff < timedelta(days=7):
        return f"{diff.days}d ago"
    else:
        return dt.strftime("%Y-%m-%d")


def format_job_status(status: JobStatus) -> Text:
    """Format job status with color coding"""
    status_colors = {
        JobStatus.QUEUED: "blue",
        JobStatus.PROCESSING: "yellow",
        JobStatus.COMPLETED: "green",
        JobStatus.FAILED: "red",
    }
    return Text(status.value, style=status_colors.get(status, "white"))


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        minutes, secs = divmod(int(seconds), 60)
        return f"{minutes}m {secs}s"


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate text to specified length"""
    if len(text) <= max_length:
        return text

    return text[: max_length - len(suffix)] + suffix
