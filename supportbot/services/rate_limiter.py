import time
from dataclasses import dataclass
from typing import Callable, Optional

from supportbot.logging_config import get_logger

logger = get_logger("rate_limiter")


@dataclass
class RateWindow:
    count: int
    window_reset_at: float


class RateLimiter:
    """Fixed-window request counter keyed by string.

    Keys are namespaced by the caller (``ai:<tenant>``, ``send:<feed>``) so one
    instance serves every throttle in the process.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._windows: dict[str, RateWindow] = {}

    def allow(self, key: str, max_per_window: int, window_duration_ms: int) -> bool:
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now > window.window_reset_at:
            self._windows[key] = RateWindow(count=1, window_reset_at=now + window_duration_ms / 1000)
            return True

        window.count += 1
        if window.count <= max_per_window:
            return True

        logger.warning(
            "Rate limit exceeded",
            extra={"context": {"key": key, "count": window.count, "max_per_window": max_per_window}},
        )
        return False

    def sweep(self) -> int:
        """Drop windows that already expired. Returns the number removed."""
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now > window.window_reset_at]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug(f"Rate limiter sweep removed {len(expired)} entries")
        return len(expired)

    def clear(self) -> None:
        self._windows.clear()

    def get_stats(self) -> dict:
        now = self._clock()
        active = sum(1 for window in self._windows.values() if now <= window.window_reset_at)
        return {
            "total_entries": len(self._windows),
            "active_entries": active,
            "expired_entries": len(self._windows) - active,
        }


def ai_key(tenant_id: str) -> str:
    return f"ai:{tenant_id}"


def send_key(feed_id: str) -> str:
    return f"send:{feed_id}"
