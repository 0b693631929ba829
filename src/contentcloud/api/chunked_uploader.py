#!/usr/bin/env python3
"""Chunked Uploader for large files.

Uploads a file through an upload session: the file is cut into parts of the
session's part_size, parts are uploaded by a bounded pool of workers, and
the session is committed once every byte of the file is covered by exactly
one acknowledged part.

Lifecycle:
    CREATED -> UPLOADING -> COMMITTING -> COMMITTED
    CREATED/UPLOADING/FAILED -> ABORTED        (abort)
    COMMITTING -> FAILED                       (commit error)

A part that fails does not abort the session. start() raises
PartUploadError listing the failed offsets and leaves the session
UPLOADING; calling start() again re-sends only those parts.

Usage:
    uploader = await files.get_chunked_uploader(folder_id, size, name, fp, parallelism=8)
    uploader.on("progress", lambda done, total: print(f"{done}/{total}"))
    new_file = await uploader.start()
"""
import asyncio
import base64
import hashlib
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from .emitter import Emitter
from .exceptions import (
    ContentCloudError,
    InvalidUploadStateError,
    NetworkError,
    PartUploadError,
    UploadAbortedError,
    UploadError,
    UploadIncompleteError,
    ValidationError,
)
from .resilience import retry_async

if TYPE_CHECKING:
    from .files import FilesManager

logger = logging.getLogger(__name__)

Source = Union[bytes, bytearray, memoryview, str, Any]


# ============================================
# Session State
# ============================================

class UploadStatus(Enum):
    CREATED = "created"
    UPLOADING = "uploading"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadPart:
    """A part acknowledged by the API."""
    part_id: str
    offset: int
    size: int
    sha1: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "UploadPart":
        return cls(
            part_id=data["part_id"],
            offset=int(data["offset"]),
            size=int(data["size"]),
            sha1=data.get("sha1", ""),
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "part_id": self.part_id,
            "offset": self.offset,
            "size": self.size,
            "sha1": self.sha1,
        }

    @property
    def end(self) -> int:
        return self.offset + self.size


@dataclass
class UploadSessionState:
    """Progress of one upload session.

    Attributes:
        session_id: Upload session ID
        part_size: Size of every part except possibly the last
        total_size: Size of the file
        uploaded_parts: Acknowledged parts keyed by offset
        status: Current UploadStatus
    """
    session_id: str
    part_size: int
    total_size: int
    uploaded_parts: dict[int, UploadPart] = field(default_factory=dict)
    status: UploadStatus = UploadStatus.CREATED

    @property
    def uploaded_bytes(self) -> int:
        return sum(part.size for part in self.uploaded_parts.values())

    @property
    def expected_parts(self) -> int:
        return -(-self.total_size // self.part_size) if self.part_size else 0

    def sorted_parts(self) -> list[UploadPart]:
        return sorted(self.uploaded_parts.values(), key=lambda p: p.offset)

    def gaps(self) -> list[tuple[int, int]]:
        """Byte ranges [start, end) of the file not covered by any part."""
        missing = []
        cursor = 0
        for part in self.sorted_parts():
            if part.offset > cursor:
                missing.append((cursor, part.offset))
            cursor = max(cursor, part.end)
        if cursor < self.total_size:
            missing.append((cursor, self.total_size))
        return missing

    def overlaps(self) -> list[tuple[int, int]]:
        """Byte ranges covered by more than one part, or past the end of the file."""
        found = []
        cursor = 0
        for part in self.sorted_parts():
            if part.offset < cursor:
                found.append((part.offset, min(cursor, part.end)))
            cursor = max(cursor, part.end)
        if cursor > self.total_size:
            found.append((self.total_size, cursor))
        return found

    def is_complete(self) -> bool:
        """True when the parts tile [0, total_size) exactly."""
        return not self.gaps() and not self.overlaps()

    def validate_tiling(self) -> None:
        """Raise UploadIncompleteError unless the parts tile the file exactly."""
        gaps, overlaps = self.gaps(), self.overlaps()
        if gaps or overlaps:
            raise UploadIncompleteError(
                f"Uploaded parts do not cover the file exactly "
                f"({len(gaps)} gaps, {len(overlaps)} overlaps)",
                gaps=gaps,
                session_id=self.session_id,
                details={"overlaps": overlaps},
            )

    def parts_list(self) -> list[dict[str, Any]]:
        return [part.to_api() for part in self.sorted_parts()]


@dataclass
class UploadOptions:
    """Options for ChunkedUploader.

    Attributes:
        parallelism: Parts uploaded at the same time
        retry_interval: Base backoff in seconds between attempts of a part
        max_part_retries: Transport retries per part before it counts as failed
        file_attributes: Attributes sent with the commit, e.g. description
    """
    parallelism: int = 4
    retry_interval: float = 1.0
    max_part_retries: int = 5
    file_attributes: Optional[dict[str, Any]] = None


# ============================================
# The Uploader
# ============================================

class ChunkedUploader(Emitter):
    """Uploads one file through one upload session.

    Notifications:
        "chunk_uploaded"(part), "progress"(uploaded_bytes, total_size),
        "chunk_error"(error), "upload_complete"(file),
        "error"({"upload_session": ..., "error": ...}),
        "aborted"(), "abort_failed"(error)
    """

    def __init__(
        self,
        files: "FilesManager",
        upload_session: dict[str, Any],
        file: Source,
        size: int,
        options: Optional[UploadOptions] = None,
    ):
        super().__init__()
        self.options = options or UploadOptions()
        if self.options.parallelism < 1:
            raise ValidationError("parallelism must be at least 1", field="parallelism")

        part_size = int(upload_session["part_size"])
        if part_size <= 0:
            raise ValidationError("Upload session part_size must be positive", field="part_size")

        self._files = files
        self.upload_session = upload_session
        self.state = UploadSessionState(
            session_id=upload_session["id"],
            part_size=part_size,
            total_size=size,
        )

        self._buffer: Optional[memoryview] = None
        self._file = None
        if isinstance(file, str):
            file = file.encode("utf-8")
        if isinstance(file, (bytes, bytearray, memoryview)):
            self._buffer = memoryview(file)
            if len(self._buffer) != size:
                raise ValidationError(
                    f"Source is {len(self._buffer)} bytes but size is {size}",
                    field="size",
                )
        elif hasattr(file, "read"):
            self._file = file
        else:
            raise ValidationError(f"Unsupported upload source: {type(file).__name__}", field="file")

        self._read_offset = 0
        self._read_lock = asyncio.Lock()
        self._file_sha1 = hashlib.sha1()
        self._failed_chunks: dict[int, bytes] = {}
        self._part_errors: dict[int, Exception] = {}
        self._retry_queue: deque[int] = deque()
        self._task: Optional[asyncio.Task] = None
        self._workers: list[asyncio.Task] = []
        self._aborting = False
        self._file_result: Optional[dict[str, Any]] = None

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def status(self) -> UploadStatus:
        return self.state.status

    # ----------------------------------------
    # Reading
    # ----------------------------------------

    async def _read(self, size: int) -> bytes:
        if self._buffer is not None:
            return bytes(self._buffer[self._read_offset:self._read_offset + size])

        chunks = []
        remaining = size
        while remaining:
            data = await asyncio.to_thread(self._file.read, remaining)
            if not data:
                break
            chunks.append(data)
            remaining -= len(data)
        return b"".join(chunks)

    async def _next_chunk(self) -> Optional[tuple[int, bytes]]:
        async with self._read_lock:
            if self._retry_queue:
                offset = self._retry_queue.popleft()
                return offset, self._failed_chunks[offset]

            if self._read_offset >= self.state.total_size:
                return None

            offset = self._read_offset
            size = min(self.state.part_size, self.state.total_size - offset)
            data = await self._read(size)
            if len(data) != size:
                raise UploadError(
                    f"Source ended at byte {offset + len(data)}, expected {self.state.total_size}",
                    session_id=self.session_id,
                )
            self._file_sha1.update(data)
            self._read_offset += size
            return offset, data

    # ----------------------------------------
    # Uploading
    # ----------------------------------------

    def _on_part_retry(self, error: Exception, attempt: int, delay: float) -> None:
        logger.debug(f"Part upload retry {attempt} for session {self.session_id} in {delay:.1f}s: {error}")

    async def _upload_chunk(self, offset: int, data: bytes) -> None:
        try:
            result = await retry_async(
                self._files.upload_part,
                self.session_id,
                data,
                offset,
                self.state.total_size,
                max_attempts=self.options.max_part_retries + 1,
                base_delay=self.options.retry_interval,
                should_retry=lambda e: isinstance(e, NetworkError),
                on_retry=self._on_part_retry,
                max_retries=0,
            )
            part_info = result.get("part") if isinstance(result, dict) else None
            if not part_info:
                raise UploadError(
                    f"Upload of part at offset {offset} returned no part info",
                    session_id=self.session_id,
                )
            part = UploadPart.from_api(part_info)

        except ContentCloudError as e:
            self._failed_chunks[offset] = data
            self._part_errors[offset] = e
            logger.warning(f"Part at offset {offset} of session {self.session_id} failed: {e}")
            self.emit("chunk_error", e)
            return

        self.state.uploaded_parts[part.offset] = part
        self._failed_chunks.pop(offset, None)
        self._part_errors.pop(offset, None)
        logger.debug(f"Uploaded part {part.part_id} ({part.offset}-{part.end - 1})")
        self.emit("chunk_uploaded", part)
        self.emit("progress", self.state.uploaded_bytes, self.state.total_size)

    async def _worker(self) -> None:
        while True:
            chunk = await self._next_chunk()
            if chunk is None:
                return
            await self._upload_chunk(*chunk)

    async def _upload_parts(self) -> None:
        self._retry_queue = deque(sorted(self._failed_chunks))
        self._part_errors.clear()

        self._workers = [
            asyncio.create_task(self._worker())
            for _ in range(self.options.parallelism)
        ]
        try:
            await asyncio.gather(*self._workers)
        finally:
            for worker in self._workers:
                worker.cancel()
            self._workers = []

        if self._failed_chunks:
            offsets = sorted(self._failed_chunks)
            raise PartUploadError(
                f"{len(offsets)} of {self.state.expected_parts} parts failed to upload",
                failed_offsets=offsets,
                errors=[self._part_errors[o] for o in offsets if o in self._part_errors],
                session_id=self.session_id,
            )

    def _fail(self, error: Exception) -> None:
        self.state.status = UploadStatus.FAILED
        logger.error(f"Upload session {self.session_id} failed: {error}")
        self.emit("error", {"upload_session": self.upload_session, "error": error})

    async def _run(self) -> dict[str, Any]:
        self.state.status = UploadStatus.UPLOADING
        logger.info(
            f"Uploading {self.state.total_size:,} bytes in {self.state.expected_parts} parts "
            f"(session {self.session_id}, parallelism {self.options.parallelism})"
        )

        try:
            await self._upload_parts()
        except PartUploadError:
            raise
        except Exception as e:
            self._fail(e)
            raise

        try:
            self.state.validate_tiling()
            self.state.status = UploadStatus.COMMITTING
            file_hash = base64.b64encode(self._file_sha1.digest()).decode("ascii")
            result = await self._files.commit_upload_session(
                self.session_id,
                file_hash,
                parts=self.state.parts_list(),
                **(self.options.file_attributes or {}),
            )
        except Exception as e:
            self._fail(e)
            raise

        self.state.status = UploadStatus.COMMITTED
        self._file_result = result
        self.emit("upload_complete", result)
        return result

    async def start(self) -> dict[str, Any]:
        """Upload the file and commit the session.

        Calling start() while an upload is running waits for that upload.
        After a PartUploadError, calling it again retries the failed parts.

        Returns:
            The committed file collection

        Raises:
            PartUploadError: If parts failed; the session stays open
            UploadIncompleteError: If the parts do not tile the file
            UploadAbortedError: If abort() was called while uploading
            InvalidUploadStateError: If the session is committing, committed,
                aborted or failed
        """
        if self._task is None or self._task.done():
            if self.state.status is UploadStatus.COMMITTED and self._file_result is not None:
                return self._file_result
            if self.state.status not in (UploadStatus.CREATED, UploadStatus.UPLOADING):
                raise InvalidUploadStateError(
                    f"Cannot start upload in status {self.state.status.value}",
                    status=self.state.status.value,
                    session_id=self.session_id,
                )
            self._task = asyncio.create_task(self._run())

        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._aborting or self.state.status is UploadStatus.ABORTED:
                raise UploadAbortedError(session_id=self.session_id)
            raise

    async def abort(self) -> None:
        """Stop uploading and delete the session.

        Raises:
            InvalidUploadStateError: If the session is committing, committed or
                already aborted
            ContentCloudError: If the delete request failed; abort may be retried
        """
        allowed = (UploadStatus.CREATED, UploadStatus.UPLOADING, UploadStatus.FAILED)
        if self.state.status not in allowed:
            raise InvalidUploadStateError(
                f"Cannot abort upload in status {self.state.status.value}",
                status=self.state.status.value,
                session_id=self.session_id,
            )

        self._aborting = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self._failed_chunks.clear()
        self._part_errors.clear()
        self._retry_queue.clear()
        self._buffer = None

        try:
            await self._files.abort_upload_session(self.session_id)
        except Exception as e:
            self.state.status = UploadStatus.FAILED
            logger.error(f"Failed to abort upload session {self.session_id}: {e}")
            self.emit("abort_failed", e)
            raise

        self.state.status = UploadStatus.ABORTED
        logger.info(f"Upload session {self.session_id} aborted")
        self.emit("aborted")
