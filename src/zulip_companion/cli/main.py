# src/zulip_companion/cli/main.py

"""
CLI entrypoint.

Initializes logging, validates configuration, builds the App and polls Zulip
until SIGINT/SIGTERM. Exits with status 1 when configuration is missing or
the bot identity cannot be established.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys

from ..config import ConfigError, Settings, get_settings
from ..logging_setup import setup_logging
from .bootstrap import StartupError, build_app

logger = logging.getLogger(__name__)


async def _run(settings: Settings) -> None:
    app = await build_app(settings)

    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        if main_task is not None:
            main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Some platforms (Windows) do not support loop signal handlers.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        await app.run()
    except asyncio.CancelledError:
        pass
    finally:
        await app.aclose()


def main() -> None:
    settings = get_settings()

    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    try:
        settings.validate()
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("Starting %s...", settings.app_name)

    try:
        asyncio.run(_run(settings))
    except StartupError as e:
        logger.error("%s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        pass

    logger.info("Bye.")


if __name__ == "__main__":
    main()
