"""In-process event dispatcher.

Decouples the transport from consumers: the connection manager dispatches
decoded envelopes and lifecycle events here, UI code subscribes here.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

EventHandler = Callable[..., Any]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by ``EventDispatcher.on``; pass it to ``off`` to unsubscribe."""

    event_type: str
    token: int


def _type_key(event_type: str | Enum) -> str:
    return event_type.value if isinstance(event_type, Enum) else event_type


class EventDispatcher:
    """Typed pub/sub registry mapping event type to ordered handlers.

    Handlers for a type run in registration order. A failing handler is
    logged and skipped; it never prevents later handlers from running and
    never propagates to the caller of ``dispatch``. Coroutine handlers are
    scheduled as tasks on the running loop.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, dict[int, EventHandler]] = defaultdict(dict)
        self._tokens = itertools.count(1)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def on(self, event_type: str | Enum, handler: EventHandler) -> Subscription:
        """Register a handler, appended after existing handlers for the type."""
        key = _type_key(event_type)
        token = next(self._tokens)
        self._handlers[key][token] = handler
        return Subscription(event_type=key, token=token)

    def off(self, target: Subscription | str | Enum) -> int:
        """Remove one subscription, or every handler for a type.

        Args:
            target: A Subscription removes exactly that registration; an event
                type removes all handlers registered for it

        Returns:
            Number of handlers removed
        """
        if isinstance(target, Subscription):
            handlers = self._handlers.get(target.event_type)
            if handlers is None or target.token not in handlers:
                return 0
            del handlers[target.token]
            if not handlers:
                del self._handlers[target.event_type]
            return 1

        handlers = self._handlers.pop(_type_key(target), None)
        return len(handlers) if handlers else 0

    def clear(self) -> None:
        """Remove all registrations."""
        self._handlers.clear()

    def handler_count(self, event_type: str | Enum | None = None) -> int:
        """Count handlers for one type, or across all types."""
        if event_type is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(_type_key(event_type), {}))

    def dispatch(self, event_type: str | Enum, *args: Any) -> int:
        """Invoke every handler registered for ``event_type``.

        Returns:
            Number of handlers invoked
        """
        key = _type_key(event_type)
        handlers = self._handlers.get(key)
        if not handlers:
            return 0

        invoked = 0
        # Snapshot so on/off from inside a handler cannot disturb this call
        for handler in list(handlers.values()):
            invoked += 1
            try:
                result = handler(*args)
            except Exception:
                logger.exception("Event handler failed", event_type=key)
                continue

            if inspect.isawaitable(result):
                self._schedule(key, result)

        return invoked

    def _schedule(self, event_type: str, awaitable: Any) -> None:
        async def _run() -> None:
            await awaitable

        try:
            task = asyncio.get_running_loop().create_task(_run())
        except RuntimeError:
            logger.warning("No running loop for async handler", event_type=event_type)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        self._background_tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(event_type, t))

    def _on_task_done(self, event_type: str, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Async event handler failed",
                event_type=event_type,
                error=str(exc),
                error_type=type(exc).__name__,
            )
