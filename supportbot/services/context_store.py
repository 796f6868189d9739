import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from supportbot.logging_config import get_logger
from supportbot.schemas.chat import ContextEntry

logger = get_logger("context_store")


@dataclass
class _ContextWindow:
    entries: deque
    last_activity: float


class ContextStore:
    """Rolling per-tenant transcript handed to the AI provider as short-term memory."""

    def __init__(
        self,
        window_size: int = 10,
        idle_ttl_seconds: float = 1800,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._window_size = window_size
        self._idle_ttl = idle_ttl_seconds
        self._clock = clock or time.monotonic
        self._windows: dict[str, _ContextWindow] = {}

    def append(self, tenant_id: str, entry: ContextEntry) -> None:
        window = self._windows.get(tenant_id)
        if window is None:
            window = _ContextWindow(entries=deque(maxlen=self._window_size), last_activity=self._clock())
            self._windows[tenant_id] = window
        window.entries.append(entry)
        window.last_activity = self._clock()

    def get_entries(self, tenant_id: str) -> list[ContextEntry]:
        window = self._windows.get(tenant_id)
        return list(window.entries) if window else []

    def format_context(self, tenant_id: str) -> str:
        entries = self.get_entries(tenant_id)
        if not entries:
            return ""
        lines = [f"{'Assistant' if e.is_bot else e.author}: {e.content}" for e in entries]
        return "Recent conversation:\n" + "\n".join(lines) + "\n\n"

    def clear(self, tenant_id: str) -> bool:
        return self._windows.pop(tenant_id, None) is not None

    def expire_idle(self) -> int:
        now = self._clock()
        idle = [tenant_id for tenant_id, w in self._windows.items() if now - w.last_activity > self._idle_ttl]
        for tenant_id in idle:
            del self._windows[tenant_id]
        if idle:
            logger.debug(f"Expired {len(idle)} idle context windows")
        return len(idle)

    def get_stats(self) -> dict:
        return {
            "context_windows": len(self._windows),
            "context_entries": sum(len(w.entries) for w in self._windows.values()),
        }
