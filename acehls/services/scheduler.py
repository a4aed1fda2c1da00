"""
One-shot deferred jobs keyed by session id.

Each session gets at most one pending job (the post-start status check).
A job first waits out its delay, then runs its action shielded from
cancellation: cancelling a session's job only aborts the waiting phase, an
action already talking to the engine is allowed to finish. Failures of such
a detached action are still logged once it completes.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class StatusCheckScheduler:
    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, session_id: str, delay: float, action: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """Run ``action`` once after ``delay`` seconds. Must be called from a running event loop."""
        self.cancel(session_id)
        task = asyncio.create_task(
            self._run(session_id, delay, action),
            name=f"status-check-{session_id[:8]}"
        )
        self._tasks[session_id] = task
        task.add_done_callback(lambda t, sid=session_id: self._forget(sid, t))
        logger.debug(f"Scheduled status check for session {session_id} in {delay}s")
        return task

    async def _run(self, session_id: str, delay: float, action: Callable[[], Awaitable[None]]):
        await asyncio.sleep(delay)
        inner = asyncio.ensure_future(action())
        try:
            await asyncio.shield(inner)
        except asyncio.CancelledError:
            inner.add_done_callback(lambda t, sid=session_id: self._report_detached(sid, t))
            logger.debug(f"Status check for session {session_id} detached after cancellation")
            raise
        except Exception:
            logger.exception(f"Status check for session {session_id} failed unexpectedly")

    def _report_detached(self, session_id: str, task: asyncio.Future):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Detached status check for session {session_id} failed: {exc!r}", exc_info=exc)

    def _forget(self, session_id: str, task: asyncio.Task):
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]

    def cancel(self, session_id: str) -> bool:
        task = self._tasks.pop(session_id, None)
        if task and not task.done():
            task.cancel()
            return True
        return False

    async def join(self, session_id: str):
        """Wait for the session's job to finish (no-op if none is scheduled)."""
        task = self._tasks.get(session_id)
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def pending(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def has_pending(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def shutdown(self):
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Status check scheduler stopped ({len(tasks)} task(s) cancelled)")
