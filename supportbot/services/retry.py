import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from supportbot.logging_config import get_logger

logger = get_logger("retry")

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for a zero-based attempt, capped at max_delay."""
    return min(base_delay * (2**attempt), max_delay)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    operation: str = "operation",
    sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """Await fn, retrying failures with capped exponential backoff.

    The last error is re-raised once max_retries retries have failed.
    """
    sleep = sleep_func or asyncio.sleep
    attempt = 0
    while True:
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if attempt >= max_retries:
                logger.warning(
                    f"{operation} failed after {attempt + 1} attempts",
                    extra={"context": {"operation": operation, "error": str(exc)}},
                )
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.debug(
                f"{operation} attempt {attempt + 1} failed, retrying in {delay:.2f}s",
                extra={"context": {"operation": operation, "error": str(exc)}},
            )
            attempt += 1
            await sleep(delay)
