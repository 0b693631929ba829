#!/usr/bin/env python3
"""Events Manager.

Wraps the /events endpoints: the user event feed, the admin log feed used by
enterprise streams, and the long-poll server discovery that EventStream
builds on.

Example:
    events = EventsManager(client)
    position = await events.get_current_stream_position()

    stream = await events.get_event_stream()
    async with stream:
        async for event in stream:
            print(event["event_type"])
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from .client import ContentClient
from .exceptions import build_response_error, build_unexpected_response_error

if TYPE_CHECKING:
    from .enterprise_event_stream import EnterpriseEventStream
    from .event_stream import EventStream

logger = logging.getLogger(__name__)

ENDPOINT = "/events"
CURRENT_STREAM_POSITION = "now"


class EventType(str, Enum):
    """Admin log event types accepted by the enterprise event filter."""
    ADD_DEVICE_ASSOCIATION = "ADD_DEVICE_ASSOCIATION"
    ADD_LOGIN_ACTIVITY_DEVICE = "ADD_LOGIN_ACTIVITY_DEVICE"
    ADMIN_LOGIN = "ADMIN_LOGIN"
    APPLICATION_PUBLIC_KEY_ADDED = "APPLICATION_PUBLIC_KEY_ADDED"
    APPLICATION_PUBLIC_KEY_DELETED = "APPLICATION_PUBLIC_KEY_DELETED"
    CHANGE_ADMIN_ROLE = "CHANGE_ADMIN_ROLE"
    COLLABORATION_ACCEPT = "COLLABORATION_ACCEPT"
    COLLABORATION_EXPIRATION = "COLLABORATION_EXPIRATION"
    COLLABORATION_INVITE = "COLLABORATION_INVITE"
    COLLABORATION_REMOVE = "COLLABORATION_REMOVE"
    COLLABORATION_ROLE_CHANGE = "COLLABORATION_ROLE_CHANGE"
    COMMENT_CREATE = "COMMENT_CREATE"
    COMMENT_DELETE = "COMMENT_DELETE"
    COMMENT_EDIT = "COMMENT_EDIT"
    CONTENT_ACCESS = "CONTENT_ACCESS"
    CONTENT_WORKFLOW_AUTOMATION_ADD = "CONTENT_WORKFLOW_AUTOMATION_ADD"
    CONTENT_WORKFLOW_UPLOAD_POLICY_VIOLATION = "CONTENT_WORKFLOW_UPLOAD_POLICY_VIOLATION"
    COPY = "COPY"
    DELETE = "DELETE"
    DELETE_USER = "DELETE_USER"
    DOWNLOAD = "DOWNLOAD"
    EDIT = "EDIT"
    EDIT_USER = "EDIT_USER"
    EMAIL_ALIAS_CONFIRM = "EMAIL_ALIAS_CONFIRM"
    ENABLE_TWO_FACTOR_AUTH = "ENABLE_TWO_FACTOR_AUTH"
    ENTERPRISE_APP_AUTHORIZATION_DELETE = "ENTERPRISE_APP_AUTHORIZATION_DELETE"
    FAILED_LOGIN = "FAILED_LOGIN"
    FILE_MARKED_MALICIOUS = "FILE_MARKED_MALICIOUS"
    FILE_WATERMARKED_DOWNLOAD = "FILE_WATERMARKED_DOWNLOAD"
    GROUP_ADD_FILE = "GROUP_ADD_FILE"
    GROUP_ADD_FOLDER = "GROUP_ADD_FOLDER"
    GROUP_ADD_ITEM = "GROUP_ADD_ITEM"
    GROUP_ADD_USER = "GROUP_ADD_USER"
    GROUP_CREATION = "GROUP_CREATION"
    GROUP_DELETION = "GROUP_DELETION"
    GROUP_EDITED = "GROUP_EDITED"
    GROUP_REMOVE_FILE = "GROUP_REMOVE_FILE"
    GROUP_REMOVE_FOLDER = "GROUP_REMOVE_FOLDER"
    GROUP_REMOVE_USER = "GROUP_REMOVE_USER"
    ITEM_MODIFY = "ITEM_MODIFY"
    ITEM_OPEN = "ITEM_OPEN"
    ITEM_SHARED_UPDATE = "ITEM_SHARED_UPDATE"
    ITEM_SYNC = "ITEM_SYNC"
    ITEM_UNSYNC = "ITEM_UNSYNC"
    LOCK = "LOCK"
    LOGIN = "LOGIN"
    METADATA_INSTANCE_CREATE = "METADATA_INSTANCE_CREATE"
    METADATA_INSTANCE_DELETE = "METADATA_INSTANCE_DELETE"
    METADATA_INSTANCE_UPDATE = "METADATA_INSTANCE_UPDATE"
    METADATA_TEMPLATE_CREATE = "METADATA_TEMPLATE_CREATE"
    METADATA_TEMPLATE_UPDATE = "METADATA_TEMPLATE_UPDATE"
    MOVE = "MOVE"
    NEW_USER = "NEW_USER"
    PREVIEW = "PREVIEW"
    REMOVE_DEVICE_ASSOCIATION = "REMOVE_DEVICE_ASSOCIATION"
    REMOVE_LOGIN_ACTIVITY_DEVICE = "REMOVE_LOGIN_ACTIVITY_DEVICE"
    RENAME = "RENAME"
    SHARE = "SHARE"
    SHARE_EXPIRATION = "SHARE_EXPIRATION"
    STORAGE_EXPIRATION = "STORAGE_EXPIRATION"
    TASK_ASSIGNMENT_CREATE = "TASK_ASSIGNMENT_CREATE"
    TASK_ASSIGNMENT_UPDATE = "TASK_ASSIGNMENT_UPDATE"
    TASK_CREATE = "TASK_CREATE"
    TERMS_OF_SERVICE_AGREE = "TERMS_OF_SERVICE_AGREE"
    TERMS_OF_SERVICE_REJECT = "TERMS_OF_SERVICE_REJECT"
    UNDELETE = "UNDELETE"
    UNLOCK = "UNLOCK"
    UNSHARE = "UNSHARE"
    UPDATE_COLLABORATION_EXPIRATION = "UPDATE_COLLABORATION_EXPIRATION"
    UPDATE_SHARE_EXPIRATION = "UPDATE_SHARE_EXPIRATION"
    UPLOAD = "UPLOAD"
    WATERMARK_LABEL_CREATE = "WATERMARK_LABEL_CREATE"
    WATERMARK_LABEL_DELETE = "WATERMARK_LABEL_DELETE"


@dataclass
class LongPollInfo:
    """Connection details for the real-time (long-poll) server.

    Attributes:
        url: Long-poll URL, including its own query string
        max_retries: Long-poll requests to make before asking for a new URL
        retry_timeout: Seconds a long-poll request may stay open
        ttl: Seconds the URL is valid for, if the server says
    """
    url: str
    max_retries: int = 10
    retry_timeout: float = 610.0
    ttl: Optional[int] = None

    @classmethod
    def from_entry(cls, entry: dict[str, Any]) -> "LongPollInfo":
        ttl = entry.get("ttl")
        return cls(
            url=entry["url"],
            max_retries=int(entry.get("max_retries", 10)),
            retry_timeout=float(entry.get("retry_timeout", 610)),
            ttl=int(ttl) if ttl is not None else None,
        )


class EventsManager:
    """Calls for the /events endpoints."""

    def __init__(self, client: ContentClient):
        self.client = client

    async def get_current_stream_position(self) -> Union[str, int]:
        """Return the stream position pointing at "now"."""
        response = await self.client.get(ENDPOINT, params={"stream_position": CURRENT_STREAM_POSITION})
        if response.status_code != 200 or not isinstance(response.body, dict):
            raise build_unexpected_response_error(response)
        return response.body["next_stream_position"]

    async def get(self, **params) -> dict[str, Any]:
        """Fetch one chunk of events.

        Args:
            **params: Query parameters, e.g. stream_position, stream_type, limit

        Returns:
            The events body with ``entries`` and ``next_stream_position``
        """
        query = {k: v for k, v in params.items() if v is not None}
        return await self.client.request_json("GET", ENDPOINT, params=query)

    async def get_long_poll_info(self) -> LongPollInfo:
        """Ask the API which real-time server to long-poll.

        Raises:
            UnexpectedResponseError: If the OPTIONS call does not return 200
            ResponseError: If no realtime_server entry is offered
        """
        response = await self.client.options(ENDPOINT)
        if response.status_code != 200 or not isinstance(response.body, dict):
            raise build_unexpected_response_error(response)

        entry = next(
            (e for e in response.body.get("entries", []) if e.get("type") == "realtime_server"),
            None,
        )
        if entry is None:
            raise build_response_error(response, "No valid long poll server specified")

        info = LongPollInfo.from_entry(entry)
        logger.debug(f"Long-poll server: max_retries={info.max_retries}, timeout={info.retry_timeout}s")
        return info

    async def get_event_stream(
        self,
        stream_position: Optional[Union[str, int]] = None,
        **options,
    ) -> "EventStream":
        """Create a long-poll EventStream, starting from now unless a position is given.

        The stream is returned unstarted; iterate it or use it as an async
        context manager to start it.
        """
        from .event_stream import EventStream, EventStreamOptions

        if stream_position is None:
            stream_position = await self.get_current_stream_position()
        return EventStream(self, stream_position, EventStreamOptions(**options))

    def get_enterprise_event_stream(self, **options) -> "EnterpriseEventStream":
        """Create an EnterpriseEventStream over the admin logs."""
        from .enterprise_event_stream import EnterpriseEventStream, EnterpriseStreamOptions

        return EnterpriseEventStream(self, EnterpriseStreamOptions(**options))
