#!/usr/bin/env python3
"""Content Cloud command-line tool.

Small front end over the client library: tail the user event stream, tail
the admin log, list a folder, or upload a large file in parts.

Environment Variables Required:
    - CONTENT_ACCESS_TOKEN: Access token
    - CONTENT_API_URL: API base URL

Optional:
    - CONTENT_UPLOAD_URL: Upload base URL (defaults to CONTENT_API_URL)
    - CONTENT_MAX_RETRIES, CONTENT_RETRY_INTERVAL, CONTENT_REQUEST_TIMEOUT

Example Usage:
    $ python main.py events                          # Tail events from now
    $ python main.py enterprise-events --from-start --no-poll
    $ python main.py list-folder 0 --marker
    $ python main.py upload big.iso --folder 0 --parallelism 8
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

load_dotenv()

from src.contentcloud.api import (
    ContentClient,
    ContentCloudError,
    EventsManager,
    FilesManager,
    FoldersManager,
    TokenManager,
)

logger = logging.getLogger("contentcloud.cli")


async def tail_events(client: ContentClient, args: argparse.Namespace) -> None:
    """Print user events as they arrive until interrupted or --limit is reached."""
    events = EventsManager(client)
    stream = await events.get_event_stream(
        stream_position=args.position,
        fetch_interval=args.fetch_interval,
    )
    stream.on("retry", lambda error, delay: logger.warning(f"Reconnecting in {delay:.1f}s: {error}"))

    count = 0
    async with stream:
        async for event in stream:
            print(json.dumps(event) if args.json else f"{event.get('created_at')}  {event.get('event_type')}")
            count += 1
            if args.limit and count >= args.limit:
                break
    print(f"[Main] Stopped at stream position {stream.get_stream_position()}")


async def tail_enterprise_events(client: ContentClient, args: argparse.Namespace) -> None:
    """Print admin log events."""
    events = EventsManager(client)
    stream = events.get_enterprise_event_stream(
        stream_position=0 if args.from_start else args.position,
        event_type_filter=args.event_type or None,
        polling_interval=0 if args.no_poll else args.polling_interval,
    )
    stream.on("wait", lambda delay: logger.info(f"Caught up, polling again in {delay}s"))

    async with stream:
        async for event in stream:
            print(json.dumps(event) if args.json else f"{event.get('created_at')}  {event.get('event_type')}")
    print(f"[Main] Stream state: {stream.get_stream_state()}")


async def list_folder(client: ContentClient, args: argparse.Namespace) -> None:
    """Print every item of a folder."""
    folders = FoldersManager(client)
    items = await folders.get_items(args.folder_id, limit=args.page_size, usemarker=args.marker)

    count = 0
    async for item in items:
        print(f"{item.get('type', '?'):<8} {item.get('id', ''):<14} {item.get('name', '')}")
        count += 1
    print(f"\n[Main] {count} item(s), paged by {items.paging_mode.value}")


async def upload_file(client: ContentClient, args: argparse.Namespace) -> None:
    """Upload a file through a chunked upload session."""
    files = FilesManager(client)
    size = os.path.getsize(args.path)
    name = args.name or os.path.basename(args.path)

    with open(args.path, "rb") as fp:
        if args.new_version_of:
            uploader = await files.get_new_version_chunked_uploader(
                args.new_version_of, size, fp, parallelism=args.parallelism,
            )
        else:
            uploader = await files.get_chunked_uploader(
                args.folder, size, name, fp, parallelism=args.parallelism,
            )

        uploader.on("progress", lambda done, total: print(f"\r[Main] {done * 100 // total}% uploaded", end=""))
        try:
            result = await uploader.start()
        except ContentCloudError:
            print()
            logger.error("Upload failed, aborting session")
            await uploader.abort()
            raise

    print()
    entries = result.get("entries", [result])
    print(f"[Main] Uploaded file id={entries[0].get('id')} name={entries[0].get('name')}")


async def run(args: argparse.Namespace) -> int:
    start_time = datetime.now(timezone.utc)

    try:
        token_manager = TokenManager()
        client = ContentClient(token_manager)
    except ContentCloudError as e:
        print(f"[Main] Configuration error: {e}")
        return 1

    try:
        async with client:
            await args.handler(client, args)
    except ContentCloudError as e:
        logger.error(f"{e}")
        return 2

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(f"Completed in {duration:.1f} seconds")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Content Cloud API command-line tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json", action="store_true", help="Print raw JSON events")
    sub = parser.add_subparsers(dest="command", required=True)

    events = sub.add_parser("events", help="Tail the user event stream")
    events.add_argument("--position", help="Stream position to start from (default: now)")
    events.add_argument("--fetch-interval", type=float, default=1.0, metavar="SECONDS")
    events.add_argument("--limit", type=int, help="Stop after this many events")
    events.set_defaults(handler=tail_events)

    enterprise = sub.add_parser("enterprise-events", help="Tail the admin log")
    enterprise.add_argument("--position", help="Stream position to resume from")
    enterprise.add_argument("--from-start", action="store_true", help="Replay the full history")
    enterprise.add_argument("--event-type", action="append", metavar="TYPE", help="Repeatable event type filter")
    enterprise.add_argument("--polling-interval", type=float, default=60, metavar="SECONDS")
    enterprise.add_argument("--no-poll", action="store_true", help="Exit once caught up")
    enterprise.set_defaults(handler=tail_enterprise_events)

    folder = sub.add_parser("list-folder", help="List a folder's items")
    folder.add_argument("folder_id", nargs="?", default="0")
    folder.add_argument("--page-size", type=int, default=100)
    folder.add_argument("--marker", action="store_true", help="Use marker paging")
    folder.set_defaults(handler=list_folder)

    upload = sub.add_parser("upload", help="Chunked upload of a large file")
    upload.add_argument("path")
    upload.add_argument("--folder", default="0", help="Destination folder ID")
    upload.add_argument("--name", help="File name (default: local name)")
    upload.add_argument("--new-version-of", metavar="FILE_ID", help="Upload as a new version of this file")
    upload.add_argument("--parallelism", type=int, default=4)
    upload.set_defaults(handler=upload_file)

    return parser


def main():
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\n[Main] Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
