# card_reader/core/dispatcher.py

import asyncio
import logging
from typing import Any, Callable, Coroutine, Dict, List, Union
from collections import defaultdict

from card_reader.protocols.line_protocol import EventKind, LineEvent

# A subscriber receives the event payload; it may be a plain or an async function
EventCallback = Callable[[str], Union[None, Coroutine[Any, Any, None]]]

logger = logging.getLogger(__name__)


def _callback_name(callback: Callable) -> str:
    return getattr(callback, '__name__', repr(callback))


class EventDispatcher:
    """
    Fans classified line events out to the subscribers of each event kind.

    ``dispatch`` only returns after every subscriber of the event has run,
    so events reach subscribers in the order the lines were read.
    """

    def __init__(self):
        self._callbacks: Dict[EventKind, List[EventCallback]] = defaultdict(list)

    def register_callback(self, kind: EventKind, callback: EventCallback) -> None:
        """Registers a callback for one event kind."""
        if not isinstance(kind, EventKind):
            raise ValueError(f"Unknown event kind: {kind!r}")
        if not callable(callback):
            raise TypeError("Callback must be callable")
        if callback in self._callbacks[kind]:
            logger.warning(f"Callback {_callback_name(callback)} already registered for {kind} events")
            return
        self._callbacks[kind].append(callback)
        logger.debug(f"Registered callback {_callback_name(callback)} for {kind} events")

    def unregister_callback(self, kind: EventKind, callback: EventCallback) -> None:
        try:
            self._callbacks[kind].remove(callback)
            logger.debug(f"Unregistered callback {_callback_name(callback)} for {kind} events")
        except ValueError:
            logger.warning(f"Callback {_callback_name(callback)} not found for {kind} events")

    def unregister_callback_from_all(self, callback: EventCallback) -> None:
        """Unregisters a callback from every event kind it is registered for."""
        removed = 0
        for callbacks in self._callbacks.values():
            if callback in callbacks:
                callbacks.remove(callback)
                removed += 1
        if not removed:
            logger.warning(f"Callback {_callback_name(callback)} was not registered for any event kind.")

    def has_callbacks(self, kind: EventKind) -> bool:
        return bool(self._callbacks.get(kind))

    async def dispatch(self, event: LineEvent) -> None:
        """Delivers one event to all of its subscribers; subscriber errors are logged."""
        callbacks_to_run = list(self._callbacks.get(event.kind, ()))
        if not callbacks_to_run:
            return

        results = await asyncio.gather(
            *(self._invoke(cb, event.payload) for cb in callbacks_to_run),
            return_exceptions=True,
        )
        for callback, result in zip(callbacks_to_run, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Error executing {event.kind} callback {_callback_name(callback)}: {result}",
                    exc_info=result,
                )

    async def dispatch_all(self, events: List[LineEvent]) -> None:
        for event in events:
            await self.dispatch(event)

    @staticmethod
    async def _invoke(callback: EventCallback, payload: str) -> None:
        result = callback(payload)
        if asyncio.iscoroutine(result):
            await result
