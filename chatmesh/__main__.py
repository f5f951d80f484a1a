#!/usr/bin/env python3
"""
Anonymous Chat Mesh

Local demo and console driver.

Usage:
    python -m chatmesh                  # scripted scenario
    python -m chatmesh --interactive    # read "<user_id> <text>" lines

    # Against a shared Redis
    CHATMESH_STORE_BACKEND=redis REDIS_URL=redis://localhost:6379/0 python -m chatmesh

In interactive mode a line may also carry media:
    42 !photo <file_id> [caption]
    42 !voice <file_id> [caption]
    42 !sticker <file_id>
    42 !video <file_id>          (unsupported kinds get a notice)
"""

from __future__ import annotations

import argparse
import asyncio
import random
import sys
from dataclasses import replace
from typing import Optional

from chatmesh.app import ChatMesh
from chatmesh.bot.dispatcher import InboundMessage
from chatmesh.core.config import ChatMeshConfig
from chatmesh.core.types import ManualClock, system_clock
from chatmesh.observability.logging import LogLevel, setup_logging
from chatmesh.transport.backends import LoggingTransport

ALICE, BOB, CAROL = 101, 202, 303


def _load_config(seed: Optional[int]) -> ChatMeshConfig:
    config_result = ChatMeshConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)
    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        sys.exit(1)

    if seed is not None:
        config = replace(config, matchmaking=replace(config.matchmaking, seed=seed))
    return config


async def _say(mesh: ChatMesh, sender: int, text: str) -> None:
    print(f"\n{sender} > {text}")
    await mesh.dispatcher.handle_text(sender, text)


async def demo(config: ChatMeshConfig) -> None:
    """Scripted walk through pairing, moderation, rooms, moods and inactivity."""
    print("\n" + "=" * 60)
    print("Anonymous Chat Mesh - Local Demo")
    print("=" * 60)

    clock = ManualClock(start=system_clock())
    created = await ChatMesh.create(
        config, LoggingTransport(), clock=clock, rng=random.Random(config.matchmaking.seed),
    )
    if created.is_err():
        print(f"Store error: {created.error}")
        sys.exit(1)
    mesh = created.unwrap()

    try:
        print("\n--- Pairing ---")
        for user in (ALICE, BOB, CAROL):
            await _say(mesh, user, "/start")
        await _say(mesh, ALICE, "/find")
        await _say(mesh, BOB, "/find")

        print("\n--- Relay & moderation ---")
        paired = (await mesh.repo.load(ALICE)).unwrap()
        partner = paired.context.partner_id or BOB
        await _say(mesh, ALICE, "hi stranger!")
        await _say(mesh, partner, "this is shit")
        await mesh.dispatcher.handle_message(InboundMessage.sticker(partner, "sticker-wave"))

        print("\n--- Rooms ---")
        await _say(mesh, CAROL, "/createroom Chess 4")
        # Empty rooms are not listed, so find the new one in the store.
        await _say(mesh, CAROL, "/listrooms")
        stored = (await mesh.store.scan("room:")).unwrap()
        if stored:
            room_id = stored[0].value["id"]
            await _say(mesh, CAROL, f"/joinroom {room_id}")
            await _say(mesh, CAROL, "/listrooms")
            await _say(mesh, CAROL, "anyone up for a game?")
            await _say(mesh, CAROL, "/leave")
            await _say(mesh, CAROL, "/listrooms")

        print("\n--- Moods ---")
        for mood in ("happy", "happy", "calm"):
            await _say(mesh, CAROL, f"/setmood {mood} demo entry")
        await _say(mesh, CAROL, "/viewmood")
        await _say(mesh, CAROL, "/moodstats")

        print("\n--- Inactivity ---")
        clock.advance(config.reaper.inactivity_timeout_s + 1)
        await _say(mesh, ALICE, "are you still there?")

        print("\n--- Metrics ---")
        print(mesh.metrics.registry.export_prometheus())
    finally:
        await mesh.close()

    print("✓ Demo complete")
    print("=" * 60 + "\n")


def _parse_line(line: str) -> Optional[tuple[int, str]]:
    head, _, text = line.strip().partition(" ")
    try:
        return int(head), text
    except ValueError:
        return None


async def interactive(config: ChatMeshConfig) -> None:
    """Dispatch "<user_id> <text>" lines from stdin until EOF."""
    created = await ChatMesh.create(config, LoggingTransport())
    if created.is_err():
        print(f"Store error: {created.error}")
        sys.exit(1)
    mesh = created.unwrap()

    print("Enter '<user_id> <text>' lines; Ctrl-D to quit.")
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            parsed = _parse_line(line)
            if parsed is None:
                print("expected: <user_id> <text>")
                continue
            sender, text = parsed

            if text.startswith("!"):
                kind, _, rest = text[1:].partition(" ")
                file_id, _, caption = rest.partition(" ")
                if kind == "photo":
                    message = InboundMessage.photo(sender, file_id, caption)
                elif kind == "voice":
                    message = InboundMessage.voice(sender, file_id, caption)
                elif kind == "sticker":
                    message = InboundMessage.sticker(sender, file_id)
                else:
                    message = InboundMessage.unsupported(sender, kind)
                await mesh.dispatcher.handle_message(message)
            else:
                await mesh.dispatcher.handle_text(sender, text)
    finally:
        await mesh.close()


async def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="chatmesh",
        description="Anonymous chat matchmaking and room engine",
    )
    parser.add_argument(
        "--interactive", "-i",
        action="store_true",
        help="read '<user_id> <text>' lines from stdin",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="fix the matchmaking random seed",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="log at DEBUG level",
    )
    args = parser.parse_args(argv)

    config = _load_config(args.seed)
    level = LogLevel.DEBUG if args.verbose else LogLevel.from_name(config.observability.log_level)
    setup_logging(level, json_output=config.observability.log_json)

    try:
        if args.interactive:
            await interactive(config)
        else:
            await demo(config)
    except KeyboardInterrupt:
        print("\nInterrupted")


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
