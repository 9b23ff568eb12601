"""
Metrics recording for the ingestion pipeline.

Metrics are best-effort: a sink that raises must never fail the job that
was reporting to it, so callers go through ``record_safely``.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class MetricsSink(Protocol):
    """What the pipeline needs from a metrics backend."""

    def record(
        self, name: str, value: float, unit: str, tags: Optional[Dict[str, str]] = None
    ) -> None: ...

    def record_api_call(
        self, service: str, operation: str, duration: float, success: bool
    ) -> None: ...

    def record_processing_speed(
        self, operation: str, items: int, duration: float
    ) -> None: ...


@dataclass
class MetricPoint:
    """Single recorded metric value."""
    name: str
    value: float
    unit: str
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'value': self.value,
            'unit': self.unit,
            'tags': self.tags,
            'timestamp': self.timestamp.isoformat()
        }


class MetricsCollector:
    """
    In-process metrics sink with a bounded history per metric name.

    Good enough for the CLI and tests; a deployment would forward the same
    calls to a real telemetry backend.
    """

    def __init__(self, history_size: int = 1000):
        self.history_size = history_size
        self._series: Dict[str, Deque[MetricPoint]] = defaultdict(
            lambda: deque(maxlen=self.history_size)
        )

    def record(
        self, name: str, value: float, unit: str, tags: Optional[Dict[str, str]] = None
    ) -> None:
        self._series[name].append(MetricPoint(name, float(value), unit, dict(tags or {})))

    def record_api_call(
        self, service: str, operation: str, duration: float, success: bool
    ) -> None:
        tags = {'service': service, 'operation': operation, 'success': str(success).lower()}
        self.record('api_call_duration', duration, 'seconds', tags)
        self.record('api_call_count', 1, 'count', tags)

    def record_processing_speed(
        self, operation: str, items: int, duration: float
    ) -> None:
        rate = items / duration if duration > 0 else float(items)
        self.record('processing_speed', rate, 'items_per_second', {'operation': operation})

    def get_series(self, name: str) -> List[MetricPoint]:
        return list(self._series.get(name, ()))

    def get_summary(self) -> Dict[str, Dict[str, float]]:
        """Count, sum, min, max and average per metric name."""
        summary = {}
        for name, points in self._series.items():
            if not points:
                continue
            values = [p.value for p in points]
            summary[name] = {
                'count': len(values),
                'sum': sum(values),
                'min': min(values),
                'max': max(values),
                'avg': sum(values) / len(values)
            }
        return summary

    def clear(self) -> None:
        self._series.clear()


def record_safely(sink: Optional[MetricsSink], method: str, *args: Any, **kwargs: Any) -> None:
    """Call ``sink.<method>(...)``, logging instead of raising on failure."""
    if sink is None:
        return
    try:
        getattr(sink, method)(*args, **kwargs)
    except Exception as e:
        logger.warning(f"Metrics sink call {method} failed: {e}")
