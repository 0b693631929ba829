#!/usr/bin/env python3
"""Enterprise (admin log) Event Stream.

Polls the admin log feed in chunks. While chunks come back with events the
next chunk is requested straight away; once caught up, the stream waits
polling_interval seconds between polls, or ends if polling is disabled.

The stream starts from now unless a start date or a stream position is
given. A stream position of 0 replays the full available history.

Usage:
    stream = EventsManager(client).get_enterprise_event_stream(
        stream_position=0,
        event_type_filter=[EventType.LOGIN, EventType.FAILED_LOGIN],
        polling_interval=0,
    )
    stream.on("new_stream_state", save_checkpoint)
    async for event in stream:
        audit(event)
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from .resilience import is_retryable
from .streaming import BaseEventStream, StreamState

if TYPE_CHECKING:
    from .events import EventsManager

logger = logging.getLogger(__name__)

ADMIN_LOGS = "admin_logs"


def _now_start_date() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S-00:00")


def _position_is_set(position: Any) -> bool:
    return position is not None and position != ""


@dataclass
class EnterpriseStreamOptions:
    """Options for EnterpriseEventStream.

    Attributes:
        stream_position: Position to resume from; 0 means full history
        start_date: Only events created after this date
        end_date: Only events created before this date
        event_type_filter: Event types to return (EventType members or strings)
        polling_interval: Seconds between polls once caught up; 0 ends the stream instead
        chunk_size: Events per request (the API caps this at 500)
        queue_size: Events buffered for an async-for consumer
    """
    stream_position: Optional[Union[str, int]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    event_type_filter: Optional[list] = None
    polling_interval: float = 60
    chunk_size: int = 500
    queue_size: int = 1000


@dataclass
class EnterpriseStreamState:
    """Everything needed to resume an enterprise stream where it left off."""
    stream_position: Optional[Union[str, int]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    event_type_filter: Optional[list[str]] = field(default=None)


class EnterpriseEventStream(BaseEventStream):
    """Stream of admin log events.

    Notifications:
        "data"(event): one per delivered event
        "new_stream_state"(EnterpriseStreamState): after each chunk with events
        "wait"(delay): caught up, next poll in delay seconds
        "retry"(error, delay): a poll failed, next poll in delay seconds
        "end"(): caught up with polling disabled
        "error"(error): the stream stopped on this error
    """

    def __init__(
        self,
        events: "EventsManager",
        options: Optional[EnterpriseStreamOptions] = None,
    ):
        # Own copy: start_date and state restores are written into it
        self.options = replace(options) if options else EnterpriseStreamOptions()
        super().__init__(queue_size=self.options.queue_size)
        self._events = events

        if not self.options.start_date and not _position_is_set(self.options.stream_position):
            self.options.start_date = _now_start_date()

        self._stream_position = self.options.stream_position

    @property
    def polling_enabled(self) -> bool:
        return bool(self.options.polling_interval)

    def get_stream_position(self) -> Optional[Union[str, int]]:
        """Current position, or None if nothing was fetched and none was given."""
        return self._stream_position

    def get_stream_state(self) -> EnterpriseStreamState:
        event_types = None
        if self.options.event_type_filter:
            event_types = [
                t.value if isinstance(t, Enum) else str(t)
                for t in self.options.event_type_filter
            ]
        return EnterpriseStreamState(
            stream_position=self._stream_position,
            start_date=self.options.start_date,
            end_date=self.options.end_date,
            event_type_filter=event_types,
        )

    def set_stream_state(self, state: EnterpriseStreamState) -> None:
        self._stream_position = state.stream_position
        self.options.start_date = state.start_date
        self.options.end_date = state.end_date
        self.options.event_type_filter = state.event_type_filter

    def build_params(self) -> dict[str, Any]:
        """Query parameters for the next poll."""
        state = self.get_stream_state()
        params: dict[str, Any] = {"stream_type": ADMIN_LOGS}
        if _position_is_set(state.stream_position):
            params["stream_position"] = state.stream_position
        if state.start_date:
            params["created_after"] = state.start_date
        if state.end_date:
            params["created_before"] = state.end_date
        if state.event_type_filter:
            params["event_type"] = ",".join(state.event_type_filter)
        if self.options.chunk_size:
            params["limit"] = self.options.chunk_size
        return params

    async def _run(self) -> None:
        interval = self.options.polling_interval
        while True:
            self.state = StreamState.FETCHING
            try:
                body = await self._events.get(**self.build_params())
            except Exception as e:
                if not self.polling_enabled or not is_retryable(e):
                    raise
                logger.warning(f"Admin log poll failed: {e}. Polling again in {interval}s")
                self.state = StreamState.RETRY_WAIT
                self.emit("retry", e, interval)
                await self.sleep(interval)
                continue

            entries = body.get("entries") if isinstance(body, dict) else None
            if not entries:
                if not self.polling_enabled:
                    self.emit("end")
                    return
                logger.debug(f"Caught up at position {self._stream_position}, waiting {interval}s")
                self.state = StreamState.IDLE
                self.emit("wait", interval)
                await self.sleep(interval)
                continue

            self._stream_position = body.get("next_stream_position", self._stream_position)
            self.emit("new_stream_state", self.get_stream_state())
            logger.debug(f"Fetched {len(entries)} admin events, position={self._stream_position}")

            for event in entries:
                await self.deliver(event)
