"""Lifecycle events published by the dispatcher for CLI/TUI observers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from seed_agent.dispatcher.models import GenerationUsage, Job, SkipReason, SubmissionReceipt
from seed_agent.storage.common import utc_now

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    STARTUP = "startup"
    POLLING = "polling"
    PUSH_CONNECTED = "push_connected"
    PUSH_DISCONNECTED = "push_disconnected"
    JOB_FOUND = "job_found"
    JOB_ACCEPTED = "job_accepted"
    JOB_PROCESSING = "job_processing"
    JOB_SKIPPED = "job_skipped"
    RESPONSE_GENERATED = "response_generated"
    RESPONSE_SUBMITTED = "response_submitted"
    ERROR = "error"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True, slots=True)
class AgentEvent:
    """One lifecycle event; unused fields stay None."""

    kind: EventKind
    job: Job | None = None
    reason: SkipReason | None = None
    message: str | None = None
    error: BaseException | None = None
    usage: GenerationUsage | None = None
    receipt: SubmissionReceipt | None = None
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def job_id(self) -> str | None:
        return self.job.job_id if self.job is not None else None


class EventSubscription:
    """Queue-backed consumer handle returned by `EventBus.subscribe()`."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[AgentEvent | None] = asyncio.Queue()
        self.closed = False

    def _deliver(self, event: AgentEvent | None) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> AgentEvent | None:
        """Next event, or None once the subscription is closed."""

        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def drain(self) -> list[AgentEvent]:
        """Pop every event delivered so far without waiting."""

        events: list[AgentEvent] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._unsubscribe(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AgentEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class EventBus:
    """Typed fan-out channel: every subscriber gets every event, in order."""

    def __init__(self) -> None:
        self._subscribers: list[EventSubscription] = []

    def subscribe(self) -> EventSubscription:
        subscription = EventSubscription(self)
        self._subscribers.append(subscription)
        return subscription

    def publish(self, event: AgentEvent) -> None:
        """Deliver without blocking the publisher."""

        logger.debug("Event %s job=%s", event.kind.value, event.job_id or "-")
        for subscription in list(self._subscribers):
            subscription._deliver(event)

    def emit(self, kind: EventKind, **fields: Any) -> AgentEvent:
        event = AgentEvent(kind=kind, **fields)
        self.publish(event)
        return event

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()

    def _unsubscribe(self, subscription: EventSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
