"""Server entry point."""

import argparse
import asyncio
import logging
import os
from pathlib import Path

from ..common.constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    INACTIVITY_TIMEOUT,
    MAX_ROOM_AGE,
    SWEEP_INTERVAL,
)
from .relay_server import RelayServer, ServerConfig


def setup_logging(log_file: str | None, verbose: bool = False) -> None:
    """Configure logging to file and console."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
    # Suppress per-frame websockets debug logs
    logging.getLogger("websockets").setLevel(logging.WARNING)


def read_api_key(keyfile: str | None) -> str | None:
    """Read the shared secret from a key file, falling back to the environment."""
    path = keyfile or os.environ.get("VIDEO_SYNC_API_KEYFILE")
    if path:
        return Path(path).read_text().strip()
    return os.environ.get("VIDEO_SYNC_API_KEY")


def main() -> None:
    parser = argparse.ArgumentParser(description="Video Sync relay server")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Host to bind to")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", DEFAULT_PORT)),
        help="Port to bind to (default: $PORT or %(default)s)",
    )
    parser.add_argument(
        "--api-key-file",
        help="File holding the shared API key "
        "(default: $VIDEO_SYNC_API_KEYFILE, then $VIDEO_SYNC_API_KEY)",
    )
    parser.add_argument(
        "--sweep-interval",
        type=float,
        default=SWEEP_INTERVAL,
        help="Seconds between inactive-room sweeps",
    )
    parser.add_argument(
        "--inactivity-timeout",
        type=float,
        default=INACTIVITY_TIMEOUT,
        help="Seconds without activity before a room is swept",
    )
    parser.add_argument(
        "--max-room-age",
        type=float,
        default=MAX_ROOM_AGE,
        help="Seconds after creation before a room is swept regardless of activity",
    )
    parser.add_argument("--log-file", help="Log file path (in addition to stderr)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    api_key = read_api_key(args.api_key_file)
    if not api_key:
        parser.error("no API key configured (use --api-key-file or $VIDEO_SYNC_API_KEY)")
    if args.inactivity_timeout < args.sweep_interval:
        parser.error("--inactivity-timeout must be at least --sweep-interval")

    setup_logging(args.log_file, args.verbose)

    server = RelayServer(
        ServerConfig(
            api_key=api_key,
            host=args.host,
            port=args.port,
            sweep_interval=args.sweep_interval,
            inactivity_timeout=args.inactivity_timeout,
            max_room_age=args.max_room_age,
        )
    )
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        print("\nRelay stopped")


if __name__ == "__main__":
    main()
