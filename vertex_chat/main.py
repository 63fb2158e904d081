"""
Terminal chat front-end.

Reads messages from stdin and renders the streamed assistant reply delta by
delta. Ctrl-C while a reply is streaming cancels it and keeps the partial
text; Ctrl-C at the prompt, `/quit` or end of input exits.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import TextIO

from .chat_service import ChatStreamController
from .config import Configuration
from .logging_utils import setup_logging
from .streaming.models import SessionStatus, StreamUpdate

QUIT_COMMANDS = {"/quit", "/exit"}


class TerminalRenderer:
    """Render sink writing stream updates to a text stream."""

    def __init__(self, out: TextIO = sys.stdout):
        self.out = out

    def __call__(self, update: StreamUpdate) -> None:
        if update.kind == "delta":
            self.out.write(update.delta or "")
        elif update.status is SessionStatus.COMPLETED:
            self.out.write("\n")
        elif update.status is SessionStatus.CANCELLED:
            self.out.write(" [cancelled]\n")
        elif update.status is SessionStatus.FAILED:
            self.out.write(f"\n{update.content}\n")
        self.out.flush()


async def _open_stdin() -> asyncio.StreamReader | None:
    """Attach stdin to the event loop where the platform allows it."""
    if sys.platform == "win32":
        return None
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


async def _read_line(reader: asyncio.StreamReader | None) -> str | None:
    if reader is None:
        line = await asyncio.to_thread(sys.stdin.readline)
    else:
        line = (await reader.readline()).decode("utf-8", errors="replace")
    return line if line else None


async def run_chat(
    controller: ChatStreamController,
    shutdown_event: asyncio.Event,
    out: TextIO = sys.stdout,
) -> None:
    """Prompt, send and render until shutdown or end of input."""
    for turn in controller.conversation.turns:
        if turn.is_welcome:
            out.write(f"{turn.content}\n")

    reader = await _open_stdin()
    while not shutdown_event.is_set():
        out.write("> ")
        out.flush()

        read_task = asyncio.create_task(_read_line(reader))
        stop_task = asyncio.create_task(shutdown_event.wait())
        done, pending = await asyncio.wait(
            [read_task, stop_task], return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if read_task not in done:
            break
        line = read_task.result()
        if line is None or line.strip() in QUIT_COMMANDS:
            break

        await controller.send(line)


def handle_interrupt(
    controller: ChatStreamController, shutdown_event: asyncio.Event
) -> None:
    """Cancel the streaming reply, or shut down when idle."""
    if not controller.cancel():
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()


async def main(argv: list[str] | None = None) -> None:
    """Main entry point - interactive chat with graceful shutdown handling."""
    parser = argparse.ArgumentParser(prog="vertex-chat", description=__doc__)
    parser.add_argument("--config", help="path to a config.yaml")
    args = parser.parse_args(argv)

    config = Configuration(args.config)
    setup_logging(config.get_logging_config().get("level", "INFO"))

    shutdown_event = asyncio.Event()
    controller = ChatStreamController.from_configuration(
        config, observer=TerminalRenderer()
    )

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(
            signal.SIGINT, handle_interrupt, controller, shutdown_event
        )
        loop.add_signal_handler(signal.SIGTERM, shutdown_event.set)

    async with controller:
        try:
            await run_chat(controller, shutdown_event)
        except KeyboardInterrupt:
            logging.info("Keyboard interrupt received, shutting down...")
        finally:
            logging.info("Chat client shutdown complete")


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
