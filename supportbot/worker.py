"""Standalone bot process: ``supportbot-worker``."""

import asyncio
import sys

from supportbot.config import get_settings
from supportbot.logging_config import get_logger, setup_logging
from supportbot.runtime import BotRuntime
from supportbot.services.stream_service import StreamExhaustedError

logger = get_logger("worker")


async def run() -> int:
    settings = get_settings()
    setup_logging(settings.log_level)
    runtime = BotRuntime(settings)
    await runtime.start()
    try:
        await runtime.wait()
    except StreamExhaustedError as exc:
        logger.error("Stream reconnect attempts exhausted, exiting", extra={"context": {"error": str(exc)}})
        return 1
    finally:
        await runtime.stop()
    return 0


def main() -> None:
    try:
        code = asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Worker interrupted, shutting down")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
