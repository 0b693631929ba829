#!/usr/bin/env python3
"""Lifecycle shared by the long-poll and enterprise event streams.

A stream runs its protocol in one asyncio task. Events reach consumers two
ways, usable together:

    - "data" listeners, called once per event
    - async iteration over a bounded queue; when the queue is full the
      stream task waits, so a slow consumer pauses fetching

stop() cancels the task, which discards any pending sleep or in-flight
request, and ends iteration. A fatal error stops the stream, is reported
once through the "error" notification and is raised by the iterator.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Optional

from .emitter import Emitter

logger = logging.getLogger(__name__)

_END = object()


class StreamState(Enum):
    """What the stream task is currently doing."""
    IDLE = "idle"
    LONG_POLLING = "long_polling"
    FETCHING = "fetching"
    RETRY_WAIT = "retry_wait"
    STOPPED = "stopped"


class BaseEventStream(Emitter):
    """Task, queue and stop handling for event streams.

    Subclasses implement _run(), calling deliver() for each event. Returning
    from _run() ends the stream normally; raising ends it with an error.
    """

    def __init__(self, queue_size: int = 1000):
        super().__init__()
        self.state = StreamState.IDLE
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._task: Optional[asyncio.Task] = None
        self._iterating = False
        self._error: Optional[Exception] = None
        self._error_raised = False

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def error(self) -> Optional[Exception]:
        """The error that stopped the stream, if any."""
        return self._error

    # ----------------------------------------
    # Lifecycle
    # ----------------------------------------

    def start(self) -> None:
        """Start the stream task (no-op if already started or stopped)."""
        if self._task is not None or self.state is StreamState.STOPPED:
            return
        logger.info(f"{self.name} starting")
        self._task = asyncio.create_task(self._run_task(), name=self.name)

    async def _run_task(self) -> None:
        try:
            await self._run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._error = e
            self.state = StreamState.STOPPED
            logger.error(f"{self.name} stopped on error: {e}")
            self.emit("error", e)
        else:
            self.state = StreamState.STOPPED
            logger.info(f"{self.name} ended")
        await self._finish()

    async def _finish(self) -> None:
        if self._iterating:
            await self._queue.put(_END)

    async def stop(self) -> None:
        """Stop the stream, discarding pending timers and in-flight requests."""
        self.state = StreamState.STOPPED
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        # Replace whatever is buffered with the end marker so iteration ends now
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)
        logger.info(f"{self.name} stopped")

    async def wait_closed(self) -> None:
        """Wait for the stream task to finish on its own."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def _run(self) -> None:
        raise NotImplementedError

    # ----------------------------------------
    # Delivery
    # ----------------------------------------

    async def deliver(self, event: Any) -> None:
        self.emit("data", event)
        if self._iterating:
            await self._queue.put(event)

    def __aiter__(self) -> "BaseEventStream":
        self._iterating = True
        if self._task is not None and self._task.done():
            self._queue.put_nowait(_END)
        self.start()
        return self

    async def __anext__(self) -> Any:
        item = await self._queue.get()
        if item is _END:
            self._queue.put_nowait(_END)
            if self._error is not None and not self._error_raised:
                self._error_raised = True
                raise self._error
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "BaseEventStream":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
