"""
Stream session lifecycle.

Turns a content id into a tracked session: starts it on the engine, registers
it as ``starting``, and schedules a single deferred stats poll that promotes
it to ``streaming`` (engine downloading) or ``error`` (poll failed). Stopping
is best-effort towards the engine but always removes the session locally.

Session state machine::

    starting -> streaming     stats report "dl"
    starting -> error         stats poll failed
    any      -> stopped       explicit stop (session removed)
"""
import re
import uuid
import logging
from datetime import datetime, timezone
from typing import List, Optional

from ..core.errors import (
    AceHLSError, InvalidContentId, SessionNotFound, StreamStartFailed, NoStatsAvailable,
)
from ..models.schemas import StreamSession, StreamStats, StartOptions, EngineVersion
from .engine_client import EngineClient
from .registry import SessionRegistry
from .scheduler import StatusCheckScheduler
from . import metrics

logger = logging.getLogger(__name__)

CONTENT_ID_RE = re.compile(r"^[0-9a-fA-F]{40}$")
DOWNLOADING_STATUS = "dl"


def is_valid_content_id(content_id) -> bool:
    return isinstance(content_id, str) and CONTENT_ID_RE.fullmatch(content_id) is not None


class StreamService:
    def __init__(self, engine: EngineClient, registry: SessionRegistry,
                 scheduler: Optional[StatusCheckScheduler] = None, status_check_delay: float = 3.0):
        self.engine = engine
        self.registry = registry
        self.scheduler = scheduler or StatusCheckScheduler()
        self.status_check_delay = status_check_delay

    @staticmethod
    def now():
        return datetime.now(timezone.utc)

    def _new_session_id(self) -> str:
        while True:
            session_id = uuid.uuid4().hex
            if session_id not in self.registry:
                return session_id

    async def start_stream(self, content_id: str, options: Optional[StartOptions] = None) -> StreamSession:
        if not is_valid_content_id(content_id):
            raise InvalidContentId()
        options = options or StartOptions()

        session_id = self._new_session_id()
        try:
            engine_session = await self.engine.start_stream(content_id, use_api_events=options.use_api_events)
        except AceHLSError as e:
            metrics.acehls_stream_start_failures.inc()
            logger.error(f"Engine refused to start content_id={content_id}: {e}")
            raise StreamStartFailed(e) from e

        session = self.registry.insert(StreamSession(
            id=session_id,
            content_id=content_id,
            playback_url=engine_session.playback_url,
            stat_url=engine_session.stat_url,
            command_url=engine_session.command_url,
            event_url=engine_session.event_url,
            status="starting",
            started_at=self.now(),
        ))
        metrics.acehls_streams_started.inc()
        metrics.on_session_count(len(self.registry))
        logger.info(f"Stream session {session_id} created for content_id={content_id}")
        logger.debug(f"Session {session_id} locators: playback={session.playback_url} stat={session.stat_url} "
                     f"command={session.command_url} event={session.event_url}")

        self.scheduler.schedule(session_id, self.status_check_delay, lambda: self._check_status(session_id))
        return session

    async def _check_status(self, session_id: str):
        """Deferred one-shot promotion; failures are recorded on the session, never raised."""
        session = self.registry.get(session_id)
        if session is None:
            metrics.acehls_status_checks.labels(result="skipped").inc()
            logger.debug(f"Session {session_id} gone before status check, skipping")
            return

        try:
            stats = await self.get_stream_stats(session_id)
        except SessionNotFound:
            metrics.acehls_status_checks.labels(result="skipped").inc()
            return
        except AceHLSError as e:
            if self.registry.update_status(session_id, "error", expected="starting"):
                metrics.acehls_status_checks.labels(result="error").inc()
                logger.warning(f"Status check failed for session {session_id}: {e}")
            else:
                metrics.acehls_status_checks.labels(result="skipped").inc()
            return

        if stats.status != DOWNLOADING_STATUS:
            metrics.acehls_status_checks.labels(result="starting").inc()
            logger.debug(f"Session {session_id} still buffering (engine status={stats.status})")
            return

        if self.registry.update_status(session_id, "streaming", expected="starting"):
            metrics.acehls_status_checks.labels(result="streaming").inc()
            logger.info(f"Session {session_id} is streaming (peers={stats.peers}, speed_down={stats.speed_down})")
        else:
            metrics.acehls_status_checks.labels(result="skipped").inc()

    async def stop_stream(self, session_id: str) -> StreamSession:
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        self.scheduler.cancel(session_id)

        if session.command_url:
            try:
                await self.engine.stop_stream(session.command_url)
                logger.info(f"Sent stop command to engine for session {session_id}")
            except AceHLSError as e:
                # The engine may already have torn the stream down
                logger.warning(f"Failed to stop stream gracefully for session {session_id}: {e}")

        removed = self.registry.delete(session_id)
        if removed is None:
            # Lost a race with a concurrent stop
            raise SessionNotFound(session_id)
        removed.status = "stopped"
        metrics.acehls_streams_stopped.inc()
        metrics.on_session_count(len(self.registry))
        logger.info(f"Stream session {session_id} stopped and removed")
        return removed

    async def get_stream_stats(self, session_id: str) -> StreamStats:
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if not session.stat_url:
            raise NoStatsAvailable()
        return await self.engine.get_stats(session.stat_url)

    def list_active_sessions(self) -> List[StreamSession]:
        return self.registry.snapshot()

    async def get_engine_status(self, timeout: Optional[float] = None) -> EngineVersion:
        return await self.engine.check_engine(timeout=timeout)

    async def shutdown(self):
        await self.scheduler.shutdown()
