"""
Job lifecycle events.

Publishing is fire-and-forget: ``publish_safely`` logs bus failures instead of
letting them fail the job that triggered the event.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

JOB_STARTED = "job.started"
JOB_PROGRESS = "job.progress"
JOB_COMPLETED = "job.completed"

Subscriber = Callable[[str, Dict[str, Any]], Awaitable[None]]


class EventBus(Protocol):
    async def publish(self, event: str, payload: Dict[str, Any]) -> None: ...


class InMemoryEventBus:
    """Records published events and fans them out to subscribers."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self._subscribers: Dict[str, List[Subscriber]] = {}

    def subscribe(self, event: str, callback: Subscriber) -> None:
        self._subscribers.setdefault(event, []).append(callback)

    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))
        callbacks = self._subscribers.get(event, [])
        if callbacks:
            await asyncio.gather(*(callback(event, payload) for callback in callbacks))

    def events_named(self, event: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


class LoggingEventBus:
    """Event bus that only writes events to the log."""

    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Event {event}: {payload}")


async def publish_safely(bus: Optional[EventBus], event: str, payload: Dict[str, Any]) -> None:
    if bus is None:
        return
    try:
        await bus.publish(event, payload)
    except Exception as e:
        logger.warning(f"Failed to publish {event} for job {payload.get('job_id')}: {e}")
