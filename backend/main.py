"""Entry point: load settings, configure logging, run the chat backend."""

from __future__ import annotations

import asyncio

from multichat.config.settings import Settings
from multichat.core.logging import setup_logging
from multichat.pipeline.runner import AppRunner


async def _main() -> None:
    setup_logging()
    runner = AppRunner(Settings.load())
    await runner.run()


if __name__ == "__main__":
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        pass
