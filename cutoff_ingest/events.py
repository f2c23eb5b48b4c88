"""In-process event bus for pipeline events.

Stages publish SystemEvents; subscribers (the audit logger, CLI reporters)
receive them. While the event system is running, delivery happens on a
background worker so a slow subscriber never blocks an import. Before it
is started (scripts, one-off maintenance) events are dispatched inline.

Usage:
    from cutoff_ingest.events import emit

    await emit(SystemEvent(
        event_type=EventType.IMPORT_STARTED,
        session_id=session.id,
        data={"file_name": "KEA_2024_DENTAL_R1.csv"},
    ))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from cutoff_ingest.config import settings
from cutoff_ingest.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# None keys handlers that receive every event
_handlers: dict[EventType | None, list[EventHandler]] = {}
_queue: asyncio.Queue[SystemEvent] | None = None
_worker_task: asyncio.Task[None] | None = None


# ── Subscriptions ────────────────────────────────────────────────────


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    """Register an async handler for all events, or only for `event_types`."""
    keys: list[EventType | None] = list(event_types) if event_types else [None]
    for key in keys:
        bucket = _handlers.setdefault(key, [])
        if handler not in bucket:
            bucket.append(handler)
    logger.info(
        "Subscribed %s to %s",
        getattr(handler, "__name__", repr(handler)),
        "all events" if event_types is None else [t.value for t in event_types],
    )


def unsubscribe(handler: EventHandler) -> None:
    """Remove a handler from every event type it was registered for."""
    for bucket in _handlers.values():
        if handler in bucket:
            bucket.remove(handler)


def _handlers_for(event_type: EventType) -> list[EventHandler]:
    found = list(_handlers.get(None, []))
    found.extend(h for h in _handlers.get(event_type, []) if h not in found)
    return found


# ── Delivery ─────────────────────────────────────────────────────────


async def emit(event: SystemEvent) -> None:
    """Publish an event: queued when the worker runs, dispatched inline otherwise."""
    if _queue is None or _worker_task is None or _worker_task.done():
        await dispatch(event)
        return
    await _queue.put(event)
    logger.debug("Queued %s (session=%s)", event.event_type.value, event.session_id)


async def dispatch(event: SystemEvent) -> None:
    """Deliver one event to every matching handler, isolating failures."""
    handlers = _handlers_for(event.event_type)
    if not handlers:
        return

    results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
    for handler, result in zip(handlers, results, strict=True):
        if isinstance(result, Exception):
            logger.error(
                "Handler %s failed for %s: %s",
                getattr(handler, "__name__", repr(handler)),
                event.event_type.value,
                result,
            )


async def _drain(queue: asyncio.Queue[SystemEvent]) -> None:
    while True:
        event = await queue.get()
        try:
            await dispatch(event)
        except Exception:
            logger.exception("Error dispatching %s", event.event_type.value)
        finally:
            queue.task_done()


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Start the background worker. Calling it twice is harmless."""
    global _queue, _worker_task
    if _worker_task is not None and not _worker_task.done():
        return
    _queue = asyncio.Queue()
    _worker_task = asyncio.create_task(_drain(_queue))
    logger.info("Event system started (%d handlers)", sum(len(v) for v in _handlers.values()))


async def stop_event_system(timeout: float | None = None) -> None:
    """Wait up to `timeout` seconds for queued events, then stop the worker."""
    global _queue, _worker_task
    queue, task = _queue, _worker_task
    _queue, _worker_task = None, None
    if queue is None or task is None:
        return

    limit = settings.ingest.event_flush_timeout if timeout is None else timeout
    try:
        await asyncio.wait_for(queue.join(), timeout=limit)
    except TimeoutError:
        logger.warning("Dropping %d undelivered events after %.1fs", queue.qsize(), limit)

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    logger.info("Event system stopped")
