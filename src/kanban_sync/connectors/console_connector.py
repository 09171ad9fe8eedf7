# src/kanban_sync/connectors/console_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
import threading
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

PROMPT = "kanban> "


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


async def _ainput(prompt: str) -> str:
    """
    input() on a daemon thread.

    Unlike asyncio.to_thread, a pending read does not keep the process alive
    at shutdown. EOFError / KeyboardInterrupt are re-raised in the caller.
    """
    loop = asyncio.get_running_loop()
    fut: asyncio.Future[str] = loop.create_future()

    def _deliver(line: str | None, exc: BaseException | None) -> None:
        if fut.done():
            return
        if exc is not None:
            fut.set_exception(exc)
        else:
            fut.set_result(line or "")

    def _reader() -> None:
        line: str | None = None
        exc: BaseException | None = None
        try:
            line = input(prompt)
        except (EOFError, KeyboardInterrupt) as e:
            exc = e
        with contextlib.suppress(RuntimeError):
            # Loop already closed: nobody is waiting for this line any more.
            loop.call_soon_threadsafe(_deliver, line, exc)

    threading.Thread(target=_reader, name="kanban-console-input", daemon=True).start()
    return await fut


async def run_console_loop(state: AppState) -> None:
    """
    Interactive board console.

    input() runs on a reader thread so sync polling and pushes keep running on
    the event loop while the user is typing.
    """
    logger.info("Console connector started (device=%s).", state.device_id)
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    def emit(text: str) -> None:
        # Immediate user-visible feedback for long operations (e.g. a slow provider)
        print(f"[{_ts_local()}] {text}", flush=True)

    while True:
        try:
            user_input = (await _ainput(PROMPT)).strip()
            _rewrite_prev_line(f"[{_ts_local()}] {PROMPT}{user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        if not user_input.startswith("/"):
            # Plain text is a shortcut for /add.
            user_input = f"/add {user_input}"

        try:
            response = await command_registry.handle(state, user_input, emit=emit)
        except ValueError as e:
            response = f"Invalid input: {e}"
        except Exception:
            # Local persistence failures end up here: tell the user the change may be lost.
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command; the change may not have been saved."

        if response is not None:
            print(f"[{_ts_local()}] {response}")

    logger.info("Console connector finished.")
