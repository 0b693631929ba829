#!/usr/bin/env python3
"""Long-poll Event Stream.

Turns the long-poll endpoint plus the events endpoint into a continuous,
deduplicated stream of user events.

Protocol (one cycle):
    1. Ask the API for the long-poll server (refreshed on "reconnect", and
       after the server's max_retries long-polls on the same URL)
    2. Long-poll it with the current stream position
    3. On "new_change", fetch events from the current position
    4. Drop events already delivered (bounded recency filter)
    5. Advance the position and deliver the rest
    6. Go back to 2

Temporary failures put the stream in RETRY_WAIT with exponential backoff
and restart at step 1. Authentication failures, non-retryable API errors,
or too many consecutive failures stop it.

Usage:
    stream = await EventsManager(client).get_event_stream()
    stream.on("retry", lambda error, delay: print(f"retrying in {delay:.1f}s"))
    async with stream:
        async for event in stream:
            print(event["event_type"], event["source"]["name"])
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union

from .exceptions import StreamError, TimeoutError, build_api_error
from .request import RequestDescriptor
from .resilience import is_retryable, retry_delay_seconds
from .streaming import BaseEventStream, StreamState

if TYPE_CHECKING:
    from .events import EventsManager, LongPollInfo

logger = logging.getLogger(__name__)


@dataclass
class EventStreamOptions:
    """Tuning for EventStream.

    Attributes:
        retry_delay: Base backoff in seconds after a failed cycle
        deduplication_filter_size: Event IDs remembered for deduplication
        fetch_interval: Minimum seconds between two event fetches
        max_retries: Consecutive failures before the stream gives up (None = never)
        queue_size: Events buffered for an async-for consumer
    """
    retry_delay: float = 1.0
    deduplication_filter_size: int = 5000
    fetch_interval: float = 1.0
    max_retries: Optional[int] = 10
    queue_size: int = 1000


def _as_int(position: Any) -> Optional[int]:
    try:
        return int(position)
    except (TypeError, ValueError):
        return None


class EventStream(BaseEventStream):
    """Deduplicating, self-reconnecting stream of user events.

    Notifications:
        "data"(event): one per delivered event
        "retry"(error, delay): a cycle failed and will be retried after delay seconds
        "error"(error): the stream stopped on this error; nothing follows
    """

    def __init__(
        self,
        events: "EventsManager",
        stream_position: Union[str, int],
        options: Optional[EventStreamOptions] = None,
    ):
        self.options = options or EventStreamOptions()
        super().__init__(queue_size=self.options.queue_size)
        self._events = events
        self._stream_position = stream_position
        self._long_poll_info: Optional["LongPollInfo"] = None
        self._long_poll_attempts = 0
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._last_fetch_at: Optional[float] = None
        self._failures = 0

    def get_stream_position(self) -> Union[str, int]:
        return self._stream_position

    # ----------------------------------------
    # Deduplication
    # ----------------------------------------

    def _is_duplicate(self, event: dict) -> bool:
        event_id = event.get("event_id")
        return event_id is not None and event_id in self._seen

    def _remember(self, event: dict) -> None:
        event_id = event.get("event_id")
        if event_id is None:
            return
        if event_id in self._seen:
            self._seen.move_to_end(event_id)
        else:
            self._seen[event_id] = None
        while len(self._seen) > self.options.deduplication_filter_size:
            self._seen.popitem(last=False)

    def _advance(self, position: Union[str, int]) -> None:
        current, new = _as_int(self._stream_position), _as_int(position)
        if current is not None and new is not None and new < current:
            logger.warning(
                f"Ignoring stream position {position} behind current position {self._stream_position}"
            )
            return
        self._stream_position = position

    # ----------------------------------------
    # Protocol
    # ----------------------------------------

    async def _run(self) -> None:
        while True:
            try:
                await self._cycle()
                self._failures = 0
            except Exception as e:
                if not is_retryable(e):
                    raise
                self._failures += 1
                max_retries = self.options.max_retries
                if max_retries is not None and self._failures > max_retries:
                    raise StreamError(
                        f"EventStream gave up after {self._failures} consecutive failures: {e}",
                        position=self._stream_position,
                        cause=e,
                    )

                delay = retry_delay_seconds(self._failures, self.options.retry_delay)
                self.state = StreamState.RETRY_WAIT
                self._long_poll_info = None
                logger.warning(f"EventStream cycle failed: {e}. Reconnecting in {delay:.2f}s")
                self.emit("retry", e, delay)
                await self.sleep(delay)

    async def _cycle(self) -> None:
        info = self._long_poll_info
        if info is None or self._long_poll_attempts > info.max_retries:
            self.state = StreamState.LONG_POLLING
            info = self._long_poll_info = await self._events.get_long_poll_info()
            self._long_poll_attempts = 0

        message = await self._long_poll(info)
        if message == "reconnect":
            logger.debug("Long-poll server asked to reconnect")
            self._long_poll_info = None
        elif message == "new_change":
            await self._fetch_events()

    async def _long_poll(self, info: "LongPollInfo") -> Optional[str]:
        self.state = StreamState.LONG_POLLING
        self._long_poll_attempts += 1
        request = RequestDescriptor.from_url(
            "GET",
            info.url,
            params={"stream_position": self._stream_position},
        )
        client = self._events.client
        try:
            response = await client.send(request, timeout=info.retry_timeout, max_retries=0)
        except TimeoutError:
            logger.debug("Long-poll timed out with no changes")
            return None

        if response.status_code != 200:
            raise build_api_error(response)

        body = response.body if isinstance(response.body, dict) else {}
        return body.get("message")

    async def _fetch_events(self) -> None:
        if self._last_fetch_at is not None:
            wait = self.options.fetch_interval - (time.monotonic() - self._last_fetch_at)
            await self.sleep(wait)

        self.state = StreamState.FETCHING
        self._last_fetch_at = time.monotonic()
        body = await self._events.get(stream_position=self._stream_position)

        if not isinstance(body, dict) or "entries" not in body or not body.get("next_stream_position"):
            return

        entries = body["entries"] or []
        fresh = []
        for event in entries:
            if not self._is_duplicate(event):
                fresh.append(event)
            self._remember(event)
        self._advance(body["next_stream_position"])

        logger.debug(
            f"Fetched {len(entries)} events ({len(entries) - len(fresh)} duplicates), "
            f"position={self._stream_position}"
        )
        for event in fresh:
            await self.deliver(event)
