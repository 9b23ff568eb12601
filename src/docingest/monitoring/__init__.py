"""
Memory pressure control and metrics collection.
"""

from .memory import MemoryController, MemoryStatus, PsutilMemorySource
from .metrics import MetricsCollector

__all__ = [
    "MemoryController",
    "MemoryStatus",
    "PsutilMemorySource",
    "MetricsCollector",
]
