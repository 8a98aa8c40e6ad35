"""In-process domain events and per-organization change streams.

The bus is created by the application factory and handed to callers through
dependencies; nothing in the core reaches for a global instance. Events that
describe stored state are queued on the database session and only published
once that session commits.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Set, Tuple, Union
from uuid import UUID

from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from src.core.timeutil import utcnow


logger = logging.getLogger(__name__)

PENDING_EVENTS_KEY = "pending_domain_events"


class DomainEventType(str, Enum):
    LIMIT_REACHED = "limit-reached"
    NEAR_LIMIT = "near-limit"
    USAGE_CHANGED = "usage-changed"
    SUBSCRIPTION_CHANGED = "subscription-changed"


@dataclass(frozen=True)
class DomainEvent:
    type: DomainEventType
    org_id: UUID
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "org_id": str(self.org_id),
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_sse(self) -> str:
        payload = json.dumps(self.to_dict(), default=str)
        return f"id: {self.id}\nevent: {self.type.value}\ndata: {payload}\n\n"


Handler = Callable[[DomainEvent], Union[Awaitable[None], None]]


class EventBus:
    """Publish/subscribe dispatcher with per-organization streams."""

    def __init__(self, stream_queue_size: int = 100) -> None:
        self._handlers: Dict[DomainEventType, Dict[str, Handler]] = defaultdict(dict)
        self._streams: Dict[UUID, Set[asyncio.Queue]] = defaultdict(set)
        self._stream_queue_size = stream_queue_size

    def subscribe(self, event_type: DomainEventType, handler: Handler) -> str:
        handler_id = str(uuid.uuid4())
        self._handlers[event_type][handler_id] = handler
        logger.debug(f"Subscribed handler {handler_id} to {event_type.value}")
        return handler_id

    def unsubscribe(self, event_type: DomainEventType, handler_id: str) -> bool:
        return self._handlers[event_type].pop(handler_id, None) is not None

    async def publish(self, event: DomainEvent) -> None:
        for handler_id, handler in list(self._handlers[event.type].items()):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # A broken subscriber must not undo the mutation that emitted the event.
                logger.exception(
                    f"Event handler {handler_id} failed for {event.type.value}"
                )

        for queue in list(self._streams.get(event.org_id, ())):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)

    async def emit(
        self, event_type: DomainEventType, org_id: UUID, **data: Any
    ) -> DomainEvent:
        event = DomainEvent(type=event_type, org_id=org_id, data=data)
        await self.publish(event)
        return event

    def emit_on_commit(
        self, session: AsyncSession, event_type: DomainEventType, org_id: UUID, **data: Any
    ) -> DomainEvent:
        """Queue an event until ``session`` commits; see :func:`publish_committed`."""

        event = DomainEvent(type=event_type, org_id=org_id, data=data)
        _pending(session).append((self, event))
        return event

    @asynccontextmanager
    async def stream(self, org_id: UUID) -> AsyncIterator["asyncio.Queue[DomainEvent]"]:
        """Register a queue receiving every event for ``org_id`` while open.

        Slow consumers lose the oldest queued events rather than blocking
        publishers.
        """

        queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=self._stream_queue_size)
        self._streams[org_id].add(queue)
        try:
            yield queue
        finally:
            listeners = self._streams.get(org_id)
            if listeners is not None:
                listeners.discard(queue)
                if not listeners:
                    self._streams.pop(org_id, None)

    def listener_count(self, org_id: UUID) -> int:
        return len(self._streams.get(org_id, ()))


def _pending(session: AsyncSession) -> List[Tuple[EventBus, DomainEvent]]:
    return session.info.setdefault(PENDING_EVENTS_KEY, [])


async def publish_committed(session: AsyncSession) -> int:
    """Publish the events queued on ``session``. Call only after a commit."""

    pending = session.info.pop(PENDING_EVENTS_KEY, [])
    for bus, event in pending:
        await bus.publish(event)
    return len(pending)


@sa_event.listens_for(Session, "after_rollback")
def _drop_pending_on_rollback(session: Session) -> None:
    dropped = session.info.pop(PENDING_EVENTS_KEY, None)
    if dropped:
        logger.debug(f"Discarded {len(dropped)} unpublished events after rollback")
