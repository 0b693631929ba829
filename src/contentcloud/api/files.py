#!/usr/bin/env python3
"""Files Manager: upload sessions and chunked uploads.

Upload-session calls go to the upload base URL (CONTENT_UPLOAD_URL). A
session is created for a file size, parts are PUT with their byte range and
SHA-1 digest, and the session is committed with the list of uploaded parts
plus the SHA-1 of the whole file.

Example:
    files = FilesManager(client)
    uploader = await files.get_chunked_uploader("0", size, "report.pdf", open("report.pdf", "rb"))
    uploaded = await uploader.start()
"""
import asyncio
import base64
import hashlib
import logging
from typing import TYPE_CHECKING, Any, Optional

from .client import ContentClient
from .exceptions import ValidationError, build_unexpected_response_error
from .paging import PagingIterator

if TYPE_CHECKING:
    from .chunked_uploader import ChunkedUploader

logger = logging.getLogger(__name__)

ENDPOINT = "/files"
UPLOAD_SESSIONS = "/files/upload_sessions"
PARTS_PAGE_LIMIT = 1000
DEFAULT_COMMIT_RETRY_AFTER = 1.0


def sha1_digest(data: bytes) -> str:
    """Base64 SHA-1 of data, the form the Digest header expects."""
    return base64.b64encode(hashlib.sha1(data).digest()).decode("ascii")


class FilesManager:
    """Calls for file upload sessions."""

    def __init__(self, client: ContentClient):
        self.client = client

    # ----------------------------------------
    # Upload Sessions
    # ----------------------------------------

    async def create_upload_session(self, folder_id: str, size: int, name: str) -> dict[str, Any]:
        """Create a session for uploading a new file into a folder."""
        if size <= 0:
            raise ValidationError("File size must be positive", field="size")
        logger.info(f"Creating upload session for '{name}' ({size:,} bytes) in folder {folder_id}")
        return await self.client.request_json(
            "POST",
            UPLOAD_SESSIONS,
            json_body={"folder_id": folder_id, "file_size": size, "file_name": name},
            upload=True,
        )

    async def create_new_version_upload_session(self, file_id: str, size: int) -> dict[str, Any]:
        """Create a session for uploading a new version of an existing file."""
        if size <= 0:
            raise ValidationError("File size must be positive", field="size")
        logger.info(f"Creating new-version upload session for file {file_id} ({size:,} bytes)")
        return await self.client.request_json(
            "POST",
            f"{ENDPOINT}/{file_id}/upload_sessions",
            json_body={"file_size": size},
            upload=True,
        )

    async def get_upload_session(self, session_id: str) -> dict[str, Any]:
        return await self.client.request_json("GET", f"{UPLOAD_SESSIONS}/{session_id}", upload=True)

    async def upload_part(
        self,
        session_id: str,
        part: bytes,
        offset: int,
        total_size: int,
        max_retries: Optional[int] = None,
    ) -> dict[str, Any]:
        """Upload one part of the file.

        Args:
            session_id: Upload session ID
            part: The part's bytes
            offset: Byte offset of the part within the file
            total_size: Size of the whole file
            max_retries: Transport retry override passed to the client

        Returns:
            The API body, with the stored part under "part"

        Raises:
            UnexpectedResponseError: If the API does not answer 200
        """
        headers = {
            "Content-Type": "application/octet-stream",
            "Digest": f"SHA={sha1_digest(part)}",
            "Content-Range": f"bytes {offset}-{offset + len(part) - 1}/{total_size}",
        }
        response = await self.client.put(
            f"{UPLOAD_SESSIONS}/{session_id}",
            data=bytes(part),
            headers=headers,
            upload=True,
            max_retries=max_retries,
        )
        if response.status_code != 200:
            raise build_unexpected_response_error(response)
        return response.body

    async def get_upload_session_parts(
        self,
        session_id: str,
        limit: int = PARTS_PAGE_LIMIT,
        offset: int = 0,
    ) -> PagingIterator:
        """Iterate over the parts uploaded to a session so far."""
        response = await self.client.get(
            f"{UPLOAD_SESSIONS}/{session_id}/parts",
            params={"limit": limit, "offset": offset},
            upload=True,
        )
        if response.status_code != 200:
            raise build_unexpected_response_error(response)
        return PagingIterator(response, self.client)

    async def commit_upload_session(
        self,
        session_id: str,
        file_hash: str,
        parts: Optional[list[dict[str, Any]]] = None,
        **attributes,
    ) -> dict[str, Any]:
        """Commit the session, turning the uploaded parts into a file.

        If parts is not given the part list is fetched from the API. A 202
        means the server is still assembling parts; the commit is repeated
        after Retry-After seconds with the same part list.

        Args:
            session_id: Upload session ID
            file_hash: Base64 SHA-1 of the whole file
            parts: Uploaded parts as returned by upload_part
            **attributes: File attributes to set, e.g. description

        Returns:
            The created file collection (HTTP 201 body)
        """
        if parts is None:
            parts_iterator = await self.get_upload_session_parts(session_id)
            parts = await parts_iterator.collect()

        body = {"attributes": attributes, "parts": parts}
        headers = {"Digest": f"SHA={file_hash}"}

        while True:
            response = await self.client.post(
                f"{UPLOAD_SESSIONS}/{session_id}/commit",
                json_body=body,
                headers=headers,
                upload=True,
            )
            if response.status_code == 201:
                logger.info(f"Upload session {session_id} committed ({len(parts)} parts)")
                return response.body

            if response.status_code == 202:
                delay = response.retry_after()
                if delay is None:
                    delay = DEFAULT_COMMIT_RETRY_AFTER
                logger.debug(f"Commit of {session_id} still processing, retrying in {delay}s")
                await asyncio.sleep(delay)
                continue

            raise build_unexpected_response_error(response)

    async def abort_upload_session(self, session_id: str) -> None:
        """Delete the session and every part uploaded to it."""
        logger.info(f"Aborting upload session {session_id}")
        await self.client.request_json("DELETE", f"{UPLOAD_SESSIONS}/{session_id}", upload=True)

    # ----------------------------------------
    # Chunked Uploader Factories
    # ----------------------------------------

    async def get_chunked_uploader(
        self,
        folder_id: str,
        size: int,
        name: str,
        file,
        **options,
    ) -> "ChunkedUploader":
        """Create an upload session and a ChunkedUploader for a new file."""
        from .chunked_uploader import ChunkedUploader, UploadOptions

        session = await self.create_upload_session(folder_id, size, name)
        return ChunkedUploader(self, session, file, size, UploadOptions(**options))

    async def get_new_version_chunked_uploader(
        self,
        file_id: str,
        size: int,
        file,
        **options,
    ) -> "ChunkedUploader":
        """Create an upload session and a ChunkedUploader for a new file version."""
        from .chunked_uploader import ChunkedUploader, UploadOptions

        session = await self.create_new_version_upload_session(file_id, size)
        return ChunkedUploader(self, session, file, size, UploadOptions(**options))
