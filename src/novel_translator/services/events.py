"""Scan and batch events, fanned out to whoever is watching a job.

The pipelines emit synchronously from their own task; the CLI reads progress
hooks directly, while the WebSocket handler subscribes per job.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()

# Last event a job emits; listeners can stop after one of these
JOB_FINISHED_EVENTS = frozenset({"job_completed", "job_stopped", "job_failed"})


@dataclass
class PipelineEvent:
    """A single pipeline event."""

    type: str
    data: dict = field(default_factory=dict)
    job_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_final(self) -> bool:
        return self.type in JOB_FINISHED_EVENTS

    def to_dict(self) -> dict:
        """Serialize for WebSocket JSON transport."""
        return {
            "type": self.type,
            "data": self.data,
            "job_id": self.job_id,
            "timestamp": self.timestamp,
        }


@dataclass
class _Subscription:
    callback: Callable[[PipelineEvent], None]
    job_id: Optional[str] = None

    def wants(self, event: PipelineEvent) -> bool:
        return self.job_id is None or self.job_id == event.job_id


class EventBus:
    """Synchronous event bus.

    Callbacks run in the emitter's task, so they must not block; the
    WebSocket subscriber only puts events into an ``asyncio.Queue``.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, _Subscription] = {}

    def subscribe(
        self, callback: Callable[[PipelineEvent], None], job_id: Optional[str] = None
    ) -> str:
        """Register a callback, optionally for one job only.

        Returns:
            Subscription id for :meth:`unsubscribe`
        """
        sub_id = str(uuid.uuid4())
        self._subscriptions[sub_id] = _Subscription(callback, job_id)
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        self._subscriptions.pop(sub_id, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def emit(self, event: PipelineEvent) -> None:
        """Deliver an event to every matching subscriber."""
        for sub_id, sub in list(self._subscriptions.items()):
            if not sub.wants(event):
                continue
            try:
                sub.callback(event)
            except Exception as e:
                logger.warning(
                    "event_subscriber_failed", subscriber=sub_id, event=event.type, error=str(e)
                )
