"""Notification dispatcher.

The dispatcher provides:
- Handler registration by event or category
- Sync and async handlers
- Error isolation (handler failures don't break other handlers)
- Batching, so a group of notifications goes out together or not at all
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Union
from uuid import UUID

from commission_engine.events.types import EventCategory, Notification, NotificationEvent

logger = logging.getLogger(__name__)

Handler = Callable[[Notification], Union[None, Awaitable[None]]]


class Notifier(Protocol):
    """Fire-and-forget notification sink consumed by the services."""

    async def notify(
        self,
        event: NotificationEvent,
        payload: dict[str, Any],
        actor_id: UUID | None = None,
    ) -> None:
        ...


@dataclass
class HandlerRegistration:
    """Registration of a notification handler."""

    handler: Handler
    events: set[NotificationEvent] | None  # None = all events
    categories: set[EventCategory] | None  # None = all categories


class NotificationDispatcher:
    """Fans notifications out to registered handlers.

    Usage:
        dispatcher = NotificationDispatcher()
        dispatcher.on(NotificationEvent.PAID, email_submitter)
        dispatcher.on_category(EventCategory.COMPLIANCE, post_to_channel)

        await dispatcher.notify(NotificationEvent.PAID, {"commission_id": ...})

        async with dispatcher.batch():
            await dispatcher.notify(...)
            await dispatcher.notify(...)
        # All notifications dispatched when the context exits
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []
        self._batching = False
        self._batch: list[Notification] = []

    def on(self, event: NotificationEvent | list[NotificationEvent], handler: Handler) -> None:
        """Register handler for specific event(s)."""
        events = set(event) if isinstance(event, list) else {event}
        self._handlers.append(HandlerRegistration(handler, events, None))

    def on_category(
        self, category: EventCategory | list[EventCategory], handler: Handler
    ) -> None:
        """Register handler for event category(ies)."""
        cats = set(category) if isinstance(category, list) else {category}
        self._handlers.append(HandlerRegistration(handler, None, cats))

    def on_all(self, handler: Handler) -> None:
        self._handlers.append(HandlerRegistration(handler, None, None))

    def off(self, handler: Handler) -> None:
        """Unregister a handler. Bound methods match by equality."""
        self._handlers = [reg for reg in self._handlers if reg.handler != handler]

    async def notify(
        self,
        event: NotificationEvent,
        payload: dict[str, Any],
        actor_id: UUID | None = None,
    ) -> list[Exception]:
        """Dispatch a notification to all matching handlers.

        Returns any exceptions raised by handlers; they are logged and
        never propagated.
        """
        notification = Notification(
            event=NotificationEvent(event), payload=dict(payload), actor_id=actor_id
        )
        if self._batching:
            self._batch.append(notification)
            return []
        return await self._dispatch(notification)

    async def _dispatch(self, notification: Notification) -> list[Exception]:
        errors: list[Exception] = []
        for reg in list(self._handlers):
            if reg.events and notification.event not in reg.events:
                continue
            if reg.categories and notification.category not in reg.categories:
                continue
            try:
                result = reg.handler(notification)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(
                    "Handler %s failed for notification %s",
                    reg.handler,
                    notification.event.value,
                )
                errors.append(e)
        return errors

    def batch(self) -> NotificationBatch:
        """Hold notifications until the context exits cleanly."""
        return NotificationBatch(self)

    def _start_batch(self) -> None:
        self._batching = True
        self._batch = []

    def _discard_batch(self) -> None:
        self._batching = False
        self._batch = []

    async def _end_batch(self) -> list[Exception]:
        self._batching = False
        pending, self._batch = self._batch, []
        errors: list[Exception] = []
        for notification in pending:
            errors.extend(await self._dispatch(notification))
        return errors


class NotificationBatch:
    """Async context manager for batching notifications."""

    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatcher = dispatcher
        self._errors: list[Exception] = []

    async def __aenter__(self) -> NotificationBatch:
        self._dispatcher._start_batch()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            self._errors = await self._dispatcher._end_batch()
        else:
            self._dispatcher._discard_batch()

    @property
    def errors(self) -> list[Exception]:
        """Errors from handler execution (available after context exits)."""
        return self._errors


async def notify_safely(
    notifier: Notifier | None,
    event: NotificationEvent,
    payload: dict[str, Any],
    actor_id: UUID | None = None,
) -> None:
    """Call a notifier after commit, logging and dropping any failure."""
    if notifier is None:
        return
    try:
        await notifier.notify(event, payload, actor_id)
    except Exception:
        logger.exception("Notifier failed for %s", event.value)

