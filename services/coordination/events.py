"""
Domain Events & Dispatcher

The state machine and the conflict engine only EMIT events. Subscribers
(audit trail, notifications) consume them asynchronously from a queue,
with their own retry/backoff, decoupled from detection correctness.

Architecture:
  ProjectTransitionService / ConflictService
         ↓ publish() (non-blocking)
  EventDispatcher queue
         ↓ worker
  AuditSubscriber, NotificationSubscriber, ...

Delivery is fire-and-forget from the publisher's perspective: a failing
subscriber never rolls back a transition or a detection run.
"""

import asyncio
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, Field

from conflict_config import DISPATCH_MAX_RETRIES, DISPATCH_BASE_DELAY_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Events
# =============================================================================

class DomainEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: f"evt_{uuid.uuid4().hex}")
    timestamp: datetime = Field(default_factory=_now)

    class Config:
        frozen = True


class ProjectStateChanged(DomainEvent):
    project_id: uuid.UUID
    old_state: str
    new_state: str
    actor_id: str


class ConflictDetected(DomainEvent):
    project_id: uuid.UUID
    project_name: str
    applicant_id: str
    conflicting_project_ids: List[uuid.UUID] = Field(default_factory=list)
    moratorium_ids: List[uuid.UUID] = Field(default_factory=list)


class MoratoriumAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class MoratoriumChanged(DomainEvent):
    moratorium_id: uuid.UUID
    action: MoratoriumAction
    municipality_code: str
    actor_id: str


Handler = Callable[[DomainEvent], Awaitable[None]]


# =============================================================================
# Dispatcher
# =============================================================================

class EventDispatcher:
    """
    In-process asynchronous event dispatcher.

    Usage:
        dispatcher = EventDispatcher()
        dispatcher.subscribe(ProjectStateChanged, audit_subscriber.handle)
        await dispatcher.start()
        dispatcher.publish(event)     # never blocks, never raises
        await dispatcher.drain()      # wait until queue is processed
        await dispatcher.stop()
    """

    def __init__(
        self,
        max_retries: int = DISPATCH_MAX_RETRIES,
        base_delay_seconds: float = DISPATCH_BASE_DELAY_SECONDS,
    ):
        self._handlers: Dict[Type[DomainEvent], List[Handler]] = defaultdict(list)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._max_retries = max_retries
        self._base_delay = base_delay_seconds
        self.delivered = 0
        self.dead_letters: List[dict] = []

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: DomainEvent) -> None:
        """Enqueue an event; the caller never waits for delivery."""
        self._queue.put_nowait(event)
        logger.debug("event_published", event_type=type(event).__name__, event_id=event.event_id)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="event-dispatcher")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        if not self.running:
            await self.start()
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: DomainEvent) -> None:
        handlers = [
            handler
            for event_type, registered in self._handlers.items()
            if isinstance(event, event_type)
            for handler in registered
        ]
        for handler in handlers:
            await self._deliver_with_retry(handler, event)

    async def _deliver_with_retry(self, handler: Handler, event: DomainEvent) -> None:
        handler_name = getattr(handler, "__qualname__", repr(handler))
        for attempt in range(self._max_retries + 1):
            try:
                await handler(event)
                self.delivered += 1
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= self._max_retries:
                    logger.error(
                        "event_delivery_failed",
                        event_type=type(event).__name__,
                        event_id=event.event_id,
                        handler=handler_name,
                        attempts=attempt + 1,
                        error=str(e),
                    )
                    self.dead_letters.append({
                        "event_id": event.event_id,
                        "event_type": type(event).__name__,
                        "handler": handler_name,
                        "error": str(e),
                    })
                    return
                delay = self._base_delay * (2 ** attempt)
                logger.warning(
                    "event_delivery_retry",
                    event_type=type(event).__name__,
                    handler=handler_name,
                    attempt=attempt + 1,
                    retry_in_seconds=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
