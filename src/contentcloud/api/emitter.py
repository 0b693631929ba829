"""Listener registry for component notifications.

Streams and the chunked uploader report progress through named
notifications ("data", "retry", "chunk_uploaded", ...). Listeners are plain
callables invoked in registration order; a listener that raises is logged
and does not stop the component or the other listeners.
"""
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Emitter:
    """Minimal on/off/emit registry."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> Listener:
        """Register a listener; returns it so this can be used as a decorator."""
        self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener for event; returns True if there were any."""
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Listener for '{event}' raised")
        return bool(listeners)
