#!/usr/bin/env python3
"""Unit tests for FilesManager and FoldersManager.

Tests cover:
    - Upload session creation and input validation
    - Part upload headers (Digest, Content-Range)
    - Commit with explicit and fetched part lists, including 202 retries
    - Chunked uploader factories
    - Folder listings in offset and marker mode
    - Retry-After parsing (delta-seconds and HTTP-date)

Note: These tests use a mocked client; no HTTP requests are made.
"""
import base64
import hashlib
import sys
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.contentcloud.api.chunked_uploader import ChunkedUploader
from src.contentcloud.api.exceptions import UnexpectedResponseError, ValidationError
from src.contentcloud.api.files import DEFAULT_COMMIT_RETRY_AFTER, FilesManager, sha1_digest
from src.contentcloud.api.folders import FoldersManager
from src.contentcloud.api.paging import PagingMode
from src.contentcloud.api.request import APIResponse, RequestDescriptor

SESSION_ID = "F971964745A5CD0C001BBE4E58196BFD"
SESSION = {"id": SESSION_ID, "part_size": 8388608, "total_parts": 2}
PARTS = [
    {"part_id": "BFDF5379", "offset": 0, "size": 8388608, "sha1": "134b65991ed521fcfe4724b7d814ab8ded5185dc"},
    {"part_id": "6F2D3486", "offset": 8388608, "size": 1024, "sha1": "234b65934ed521fcfe3424b7d814ab8ded5185dc"},
]


def make_client():
    client = MagicMock()
    client.request_json = AsyncMock()
    client.get = AsyncMock()
    client.put = AsyncMock()
    client.post = AsyncMock()
    return client


# ============================================
# Upload Session Tests
# ============================================

class TestUploadSessions:
    """Test session creation and part upload."""

    @pytest.mark.asyncio
    async def test_create_upload_session(self):
        client = make_client()
        client.request_json.return_value = SESSION

        session = await FilesManager(client).create_upload_session("0", 8389632, "big.mp4")

        assert session == SESSION
        client.request_json.assert_awaited_once_with(
            "POST",
            "/files/upload_sessions",
            json_body={"folder_id": "0", "file_size": 8389632, "file_name": "big.mp4"},
            upload=True,
        )

    @pytest.mark.asyncio
    async def test_create_new_version_session(self):
        client = make_client()
        client.request_json.return_value = SESSION

        await FilesManager(client).create_new_version_upload_session("12345", 8389632)

        args = client.request_json.await_args
        assert args.args == ("POST", "/files/12345/upload_sessions")
        assert args.kwargs["json_body"] == {"file_size": 8389632}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [0, -1])
    async def test_non_positive_size_rejected(self, size):
        client = make_client()
        with pytest.raises(ValidationError):
            await FilesManager(client).create_upload_session("0", size, "empty.txt")
        client.request_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upload_part_headers(self):
        client = make_client()
        client.put.return_value = APIResponse(status_code=200, body={"part": PARTS[1]})
        data = b"x" * 1024

        result = await FilesManager(client).upload_part(SESSION_ID, data, 8388608, 8389632)

        assert result == {"part": PARTS[1]}
        call = client.put.await_args
        assert call.args[0] == f"/files/upload_sessions/{SESSION_ID}"
        headers = call.kwargs["headers"]
        expected_digest = base64.b64encode(hashlib.sha1(data).digest()).decode()
        assert headers["Digest"] == f"SHA={expected_digest}"
        assert headers["Content-Range"] == "bytes 8388608-8389631/8389632"
        assert headers["Content-Type"] == "application/octet-stream"
        assert call.kwargs["data"] == data
        assert call.kwargs["upload"] is True

    @pytest.mark.asyncio
    async def test_upload_part_unexpected_status(self):
        client = make_client()
        client.put.return_value = APIResponse(status_code=416, body={"code": "range_not_satisfiable"})

        with pytest.raises(UnexpectedResponseError):
            await FilesManager(client).upload_part(SESSION_ID, b"abc", 0, 3)

    def test_sha1_digest(self):
        assert sha1_digest(b"") == "2jmj7l5rSw0yVb/vlWAYkK/YBwk="


# ============================================
# Commit Tests
# ============================================

class TestCommit:
    """Test committing an upload session."""

    @pytest.mark.asyncio
    async def test_commit_with_parts(self):
        client = make_client()
        client.post.return_value = APIResponse(status_code=201, body={"total_count": 1, "entries": [{"id": "1"}]})

        result = await FilesManager(client).commit_upload_session(
            SESSION_ID, "fpRyg5eVQletdZqEKaFlqwBXJzM=", parts=PARTS, description="Q3 video",
        )

        assert result["entries"][0]["id"] == "1"
        call = client.post.await_args
        assert call.args[0] == f"/files/upload_sessions/{SESSION_ID}/commit"
        assert call.kwargs["json_body"] == {"attributes": {"description": "Q3 video"}, "parts": PARTS}
        assert call.kwargs["headers"] == {"Digest": "SHA=fpRyg5eVQletdZqEKaFlqwBXJzM="}

    @pytest.mark.asyncio
    async def test_commit_retries_while_processing(self):
        client = make_client()
        client.post.side_effect = [
            APIResponse(status_code=202, headers={"Retry-After": "0.001"}),
            APIResponse(status_code=202, headers={"retry-after": "0"}),
            APIResponse(status_code=201, body={"entries": [{"id": "1"}]}),
        ]

        await FilesManager(client).commit_upload_session(SESSION_ID, "hash", parts=PARTS)

        assert client.post.await_count == 3
        bodies = [c.kwargs["json_body"] for c in client.post.await_args_list]
        assert all(body["parts"] == PARTS for body in bodies)

    @pytest.mark.asyncio
    async def test_commit_fetches_parts_when_not_given(self):
        client = make_client()
        parts_request = RequestDescriptor.from_url(
            "GET", f"https://upload.example.test/files/upload_sessions/{SESSION_ID}/parts",
            params={"limit": 1000, "offset": 0},
        )
        client.get.return_value = APIResponse(
            status_code=200,
            body={"entries": PARTS, "offset": 0, "limit": 1000, "total_count": 2},
            request=parts_request,
        )
        client.post.return_value = APIResponse(status_code=201, body={"entries": []})

        await FilesManager(client).commit_upload_session(SESSION_ID, "hash")

        assert client.post.await_args.kwargs["json_body"]["parts"] == PARTS
        assert client.get.await_args.kwargs["params"] == {"limit": 1000, "offset": 0}

    @pytest.mark.asyncio
    async def test_commit_unexpected_status(self):
        client = make_client()
        client.post.return_value = APIResponse(status_code=412, body={"code": "precondition_failed"})

        with pytest.raises(UnexpectedResponseError):
            await FilesManager(client).commit_upload_session(SESSION_ID, "hash", parts=PARTS)

    @pytest.mark.asyncio
    async def test_abort_deletes_session(self):
        client = make_client()

        await FilesManager(client).abort_upload_session(SESSION_ID)

        client.request_json.assert_awaited_once_with(
            "DELETE", f"/files/upload_sessions/{SESSION_ID}", upload=True,
        )


# ============================================
# Uploader Factory Tests
# ============================================

class TestUploaderFactories:
    """Test that factories open a session and wire up the uploader."""

    @pytest.mark.asyncio
    async def test_get_chunked_uploader(self):
        client = make_client()
        client.request_json.return_value = {"id": "s1", "part_size": 4}

        uploader = await FilesManager(client).get_chunked_uploader(
            "0", 10, "notes.txt", b"0123456789", parallelism=3,
        )

        assert isinstance(uploader, ChunkedUploader)
        assert uploader.session_id == "s1"
        assert uploader.options.parallelism == 3
        assert uploader.state.expected_parts == 3

    @pytest.mark.asyncio
    async def test_get_new_version_chunked_uploader(self):
        client = make_client()
        client.request_json.return_value = {"id": "s2", "part_size": 4}

        uploader = await FilesManager(client).get_new_version_chunked_uploader("99", 4, b"abcd")

        assert uploader.session_id == "s2"
        assert client.request_json.await_args.args[1] == "/files/99/upload_sessions"


# ============================================
# Folder Tests
# ============================================

def items_response(body, params):
    request = RequestDescriptor.from_url(
        "GET", "https://api.example.test/2.0/folders/0/items", params=params,
    )
    return APIResponse(status_code=200, body=body, request=request)


class TestFolders:
    """Test folder listings."""

    @pytest.mark.asyncio
    async def test_get_items_offset_paging(self):
        client = make_client()
        client.get.return_value = items_response(
            {"entries": [{"id": "1"}], "offset": 0, "limit": 100, "total_count": 1},
            {"limit": 100},
        )

        iterator = await FoldersManager(client).get_items("0", fields=["name", "size"])

        assert iterator.paging_mode is PagingMode.OFFSET
        assert client.get.await_args.kwargs["params"] == {"limit": 100, "fields": "name,size"}
        assert await iterator.collect() == [{"id": "1"}]

    @pytest.mark.asyncio
    async def test_get_items_marker_paging(self):
        client = make_client()
        client.get.return_value = items_response(
            {"entries": [{"id": "1"}], "next_marker": None, "limit": 10},
            {"limit": 10, "usemarker": "true", "marker": "m0"},
        )

        iterator = await FoldersManager(client).get_items("0", limit=10, marker="m0")

        assert iterator.paging_mode is PagingMode.MARKER
        assert client.get.await_args.kwargs["params"] == {"limit": 10, "usemarker": "true", "marker": "m0"}

    @pytest.mark.asyncio
    async def test_get_items_unexpected_status(self):
        client = make_client()
        client.get.return_value = APIResponse(status_code=404, body={"code": "not_found"})

        with pytest.raises(UnexpectedResponseError):
            await FoldersManager(client).get_items("missing")

    @pytest.mark.asyncio
    async def test_get_folder_fields(self):
        client = make_client()
        client.request_json.return_value = {"id": "0", "name": "All Files"}

        folder = await FoldersManager(client).get("0", fields=["name"])

        assert folder["name"] == "All Files"
        client.request_json.assert_awaited_once_with("GET", "/folders/0", params={"fields": "name"})


# ============================================
# Retry-After Tests
# ============================================

class TestRetryAfter:
    """Test Retry-After parsing on responses."""

    NOW = datetime(2015, 10, 21, 7, 27, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value, expected", [
        ("7", 7.0),
        ("0.5", 0.5),
        (" 3 ", 3.0),
        ("Wed, 21 Oct 2015 07:28:00 GMT", 30.0),
        ("Wed, 21 Oct 2015 07:00:00 GMT", 0.0),
        ("soon", None),
        ("-1", None),
        ("nan", None),
    ])
    def test_parse(self, value, expected):
        response = APIResponse(status_code=202, headers={"Retry-After": value})
        assert response.retry_after(now=self.NOW) == expected

    def test_missing_header(self):
        assert APIResponse(status_code=202).retry_after() is None

    @pytest.mark.asyncio
    async def test_commit_waits_for_http_date(self):
        client = make_client()
        client.post.side_effect = [
            APIResponse(status_code=202, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
            APIResponse(status_code=202, headers={"Retry-After": "whenever"}),
            APIResponse(status_code=201, body={"entries": [{"id": "1"}]}),
        ]

        with patch("src.contentcloud.api.files.asyncio.sleep", new=AsyncMock()) as sleep:
            await FilesManager(client).commit_upload_session(SESSION_ID, "hash", parts=PARTS)

        delays = [c.args[0] for c in sleep.await_args_list]
        assert delays[0] == 0.0
        assert delays[1] == DEFAULT_COMMIT_RETRY_AFTER
