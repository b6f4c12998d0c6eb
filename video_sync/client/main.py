"""Client entry point: a headless watch-party member driven from stdin."""

import argparse
import asyncio
import logging
import os
from pathlib import Path

from ..common.constants import DEFAULT_SERVER_URL
from ..common.protocol import MemberInfo, RoomMetadata
from .clock import SystemClock
from .player import SimulatedPlayer
from .session import ReconnectingSession
from .storage import JsonFileStore, ResumeDecision, clear_session, load_session, resume_decision
from .types import Notice

HELP = "commands: play | pause | seek SECONDS | rate RATE | status | quit"


def setup_logging(log_file: str | None, verbose: bool = False) -> None:
    """Log to a file if given; otherwise only warnings reach the console."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    root.addHandler(console)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        root.addHandler(file_handler)
    logging.getLogger("websockets").setLevel(logging.WARNING)


async def _read_line(prompt: str = "") -> str:
    return await asyncio.get_running_loop().run_in_executor(None, input, prompt)


async def _handle_command(line: str, session: ReconnectingSession, player: SimulatedPlayer) -> bool:
    """Apply one command to the player. Returns False to quit."""
    parts = line.split()
    if not parts:
        return True
    command, args = parts[0].lower(), parts[1:]
    try:
        if command == "play":
            player.play()
        elif command == "pause":
            player.pause()
        elif command == "seek" and args:
            player.current_time = float(args[0])
        elif command == "rate" and args:
            player.playback_rate = float(args[0])
        elif command == "status":
            state = "paused" if player.paused else "playing"
            print(
                f"{session.state.value} room={session.room_id} "
                f"{state} at {player.current_time:.1f}s x{player.playback_rate:g}"
            )
        elif command in ("leave", "quit", "exit"):
            return False
        else:
            print(HELP)
    except ValueError as e:
        print(f"Invalid value: {e}")
    return True


async def run_client(args: argparse.Namespace) -> None:
    store = JsonFileStore(Path(args.state_file) if args.state_file else None)
    player = SimulatedPlayer()

    room_id = args.room
    server_url = args.server
    api_key = args.api_key
    if not room_id and not args.create:
        saved = load_session(store)
        decision = resume_decision(saved, SystemClock().now_ms())
        if saved is not None and decision == ResumeDecision.PROMPT:
            answer = await _read_line(f"Rejoin room {saved.room_id}? [y/N] ")
            decision = ResumeDecision.AUTO if answer.strip().lower() == "y" else ResumeDecision.DISCARD
        if saved is not None and decision == ResumeDecision.AUTO:
            print(f"Resuming room {saved.room_id}")
            room_id = saved.room_id
            server_url = saved.server_url
            api_key = api_key or saved.api_key
        elif saved is not None:
            clear_session(store)

    if not api_key:
        print("No API key (use --api-key or $VIDEO_SYNC_API_KEY)")
        return
    if not room_id and not args.create:
        print("Nothing to do: pass --room ROOM_ID or --create")
        return

    session = ReconnectingSession(server_url, api_key, store, player=player, username=args.name)

    @session.on_notice
    async def show_notice(notice: Notice) -> None:
        print(f"* {notice.message}")

    @session.on_roster
    async def show_roster(roster: list[MemberInfo]) -> None:
        names = ", ".join(m.username + (" (host)" if m.is_creator else "") for m in roster)
        print(f"* {len(roster)} watching: {names}")

    await session.start()
    try:
        if args.create:
            created = await session.create_room(RoomMetadata(title=args.title, url=args.url))
            print(f"Created room {created}")
        else:
            await session.join_room(room_id)
        print(HELP)
        while True:
            line = await _read_line()
            if not await _handle_command(line, session, player):
                break
    except EOFError:
        pass
    finally:
        await session.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Video Sync client")
    parser.add_argument(
        "--server",
        default=os.environ.get("VIDEO_SYNC_SERVER", DEFAULT_SERVER_URL),
        help="Relay URL (default: %(default)s)",
    )
    parser.add_argument(
        "--api-key",
        default=os.environ.get("VIDEO_SYNC_API_KEY"),
        help="Shared API key (default: $VIDEO_SYNC_API_KEY)",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--room", help="Room id to join")
    group.add_argument("--create", action="store_true", help="Create a new room")
    parser.add_argument("--title", help="Video title offered when creating a room")
    parser.add_argument("--url", help="Video URL offered when creating a room")
    parser.add_argument(
        "--name", default=os.environ.get("USER", "viewer"), help="Display name"
    )
    parser.add_argument("--state-file", help="Where to persist member id and session")
    parser.add_argument("--log", help="Log file path")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    setup_logging(args.log, args.verbose)

    try:
        asyncio.run(run_client(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
