# src/kanban_sync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs on one asyncio loop:
- the first sync (raced against the startup timeout),
- sync polling and the retention sweeper as background tasks,
- the console REPL (optional; otherwise waits for a signal).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_app
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState, tasks: list[asyncio.Task]) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    for t in tasks:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    try:
        # Pushes in flight are awaited so the last edit reaches the cloud.
        await state.orchestrator.aclose()
    except Exception:
        logger.exception("Failed to close sync orchestrator.")

    try:
        close = getattr(state.persistence, "close", None)
        if close is not None:
            close()
    except Exception:
        logger.debug("Persistence close failed.", exc_info=True)


async def run(state: AppState) -> None:
    settings = state.settings

    await state.orchestrator.start()

    sweep_interval = float(getattr(settings, "sweep_interval_hours", 24.0)) * 3600.0
    tasks = [
        asyncio.create_task(state.orchestrator.run_polling(), name="kanban-sync-polling"),
        asyncio.create_task(
            state.sweeper.run_forever(interval_seconds=sweep_interval), name="kanban-retention-sweeper"
        ),
    ]

    stop_main = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not supported on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        if getattr(settings, "console_enabled", True):
            console = asyncio.create_task(run_console_loop(state), name="kanban-console")
            stopper = asyncio.create_task(stop_main.wait())
            await asyncio.wait({console, stopper}, return_when=asyncio.FIRST_COMPLETED)
            if not console.done():
                # input() blocks in a worker thread; the process exits without waiting for it.
                console.cancel()
            stopper.cancel()
        else:
            logger.info("Console disabled. Running sync in the background. Press Ctrl+C to stop.")
            await stop_main.wait()
    finally:
        await _shutdown(state, tasks)


def main() -> None:
    settings = get_settings()

    log_dir = getattr(settings, "data_dir", ".local/kanban")
    setup_logging(log_dir=log_dir, console_level=str(getattr(settings, "log_level", "INFO")))

    logger.info("Starting %s...", getattr(settings, "app_name", "kanban-sync"))

    # IMPORTANT: reuse same settings object
    state = create_app(settings=settings)

    try:
        asyncio.run(run(state))
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
