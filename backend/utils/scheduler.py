from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DeferredAction = Callable[[], Awaitable[None]]


class DebouncedScheduler:
    """Trailing-edge debounce keyed by name.

    Scheduling an action for a key cancels any timer still waiting for that
    key. Once a timer fires its action runs to completion; in-flight actions
    are never cancelled by a later schedule.
    """

    def __init__(self, delay_seconds: float):
        self.delay_seconds = max(float(delay_seconds), 0.0)
        self._pending: dict[str, tuple[asyncio.Task, DeferredAction]] = {}
        self._running: set[asyncio.Task] = set()

    @property
    def pending_keys(self) -> list[str]:
        return sorted(self._pending)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def schedule(self, key: str, action: DeferredAction) -> None:
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(self._fire_later(key, action))
        self._pending[key] = (task, action)

    def cancel(self, key: str) -> bool:
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    async def flush(self, key: str | None = None) -> None:
        """Run pending actions now and wait for in-flight ones to finish."""
        keys = [key] if key is not None else list(self._pending)
        actions: list[DeferredAction] = []
        for k in keys:
            entry = self._pending.pop(k, None)
            if entry is None:
                continue
            entry[0].cancel()
            actions.append(entry[1])

        running = list(self._running)
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        for action in actions:
            await self._run(action)

    async def _fire_later(self, key: str, action: DeferredAction) -> None:
        await asyncio.sleep(self.delay_seconds)
        current = asyncio.current_task()
        entry = self._pending.get(key)
        if entry is None or entry[0] is not current:
            return
        del self._pending[key]
        self._running.add(current)
        try:
            await self._run(action)
        finally:
            self._running.discard(current)

    async def _run(self, action: DeferredAction) -> None:
        try:
            await action()
        except Exception:
            logger.exception("Deferred action failed")
