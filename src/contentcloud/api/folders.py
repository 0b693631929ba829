"""Folders Manager: folder info and folder listings."""
import logging
from typing import Any, Optional

from .client import ContentClient
from .exceptions import build_unexpected_response_error
from .paging import PagingIterator

logger = logging.getLogger(__name__)

ENDPOINT = "/folders"
ROOT_FOLDER_ID = "0"


class FoldersManager:
    """Calls for the /folders endpoints."""

    def __init__(self, client: ContentClient):
        self.client = client

    async def get(self, folder_id: str, fields: Optional[list[str]] = None) -> dict[str, Any]:
        params = {"fields": ",".join(fields)} if fields else None
        return await self.client.request_json("GET", f"{ENDPOINT}/{folder_id}", params=params)

    async def get_items(
        self,
        folder_id: str,
        limit: int = 100,
        offset: Optional[int] = None,
        marker: Optional[str] = None,
        usemarker: bool = False,
        fields: Optional[list[str]] = None,
    ) -> PagingIterator:
        """List a folder's items.

        Offset paging is used by default; pass usemarker=True (optionally
        with a marker to resume from) for marker paging, which stays
        consistent for very large folders.

        Returns:
            A PagingIterator over the folder's items
        """
        params: dict[str, Any] = {"limit": limit}
        if usemarker or marker:
            params["usemarker"] = "true"
            if marker:
                params["marker"] = marker
        elif offset is not None:
            params["offset"] = offset
        if fields:
            params["fields"] = ",".join(fields)

        response = await self.client.get(f"{ENDPOINT}/{folder_id}/items", params=params)
        if response.status_code != 200:
            raise build_unexpected_response_error(response)

        logger.debug(f"Listing folder {folder_id} with {params}")
        return PagingIterator(response, self.client)
