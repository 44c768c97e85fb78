"""
Cancellable delayed tasks keyed by id (one pending task per key).

Process-local: scheduled work is lost on restart.
"""
import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class DelayedTasks:
    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def schedule(self, key: str, delay_seconds: float, callback: Callable[[], Awaitable[None]]) -> None:
        """Run `callback` after `delay_seconds`, replacing any task pending under `key`."""
        self.cancel(key)
        self._tasks[key] = asyncio.create_task(self._run(key, delay_seconds, callback))

    async def _run(self, key: str, delay_seconds: float, callback: Callable[[], Awaitable[None]]) -> None:
        try:
            await asyncio.sleep(delay_seconds)
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Delayed task %s failed: %s", key, exc, exc_info=True)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    def is_scheduled(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()


offer_timers = DelayedTasks()
