#!/usr/bin/env python3
"""
Tests for the stream session lifecycle.

This validates that:
1. Malformed content ids are rejected before any engine call
2. A successful start registers exactly one "starting" session
3. Stop always removes the session, even when the engine stop fails
4. The deferred status check promotes to "streaming" / "error"
5. A session removed before (or during) its status check never reappears
"""

import sys
import os
import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from acehls.services.stream_service import StreamService, is_valid_content_id
from acehls.services.engine_client import EngineClient
from acehls.services.scheduler import StatusCheckScheduler
from acehls.services.registry import SessionRegistry
from acehls.models.schemas import EngineSession, StreamStats, StartOptions
from acehls.core.errors import (
    InvalidContentId, SessionNotFound, StreamStartFailed, EngineUnreachable, EngineError, NoStatsAvailable,
)

CONTENT_ID = "dd1e67078381739d14beca697356ab76d49d1a2d"
UNKNOWN_ID = "ffffffffffffffffffffffffffffffffffffffff"


def make_engine(stats_status="dl"):
    engine = MagicMock()
    engine.start_stream = AsyncMock(return_value=EngineSession(
        playback_url="http://127.0.0.1:6878/ace/m/h/s.m3u8",
        stat_url="http://127.0.0.1:6878/ace/stat/h/s",
        command_url="http://127.0.0.1:6878/ace/cmd/h/s",
        event_url="http://127.0.0.1:6878/ace/event/h/s",
    ))
    engine.get_stats = AsyncMock(return_value=StreamStats(status=stats_status, peers=4))
    engine.stop_stream = AsyncMock(return_value={"response": "ok", "error": None})
    return engine


def make_service(engine=None, delay=0.0):
    return StreamService(engine or make_engine(), SessionRegistry(), status_check_delay=delay)


def make_http_engine(stats_response):
    """Real EngineClient against an engine that starts fine but answers stats with ``stats_response``."""
    def handler(request):
        if request.url.path.startswith("/ace/stat/"):
            return httpx.Response(200, json={"response": stats_response, "error": None})
        return httpx.Response(200, json={
            "response": {
                "playback_url": "http://127.0.0.1:6878/ace/m/h/s.m3u8",
                "stat_url": "http://127.0.0.1:6878/ace/stat/h/s",
                "command_url": "http://127.0.0.1:6878/ace/cmd/h/s",
            },
            "error": None,
        })

    return EngineClient("http://127.0.0.1:6878", transport=httpx.MockTransport(handler))


@pytest.mark.parametrize("content_id", [
    "",
    "abc",
    CONTENT_ID[:-1],
    CONTENT_ID + "0",
    "g" * 40,
    "dd1e67078381739d14beca697356ab76d49d1a2z",
    " " + CONTENT_ID[1:],
    CONTENT_ID[:20] + "-" + CONTENT_ID[21:],
])
def test_invalid_content_id_rejected(content_id):
    engine = make_engine()
    service = make_service(engine)

    with pytest.raises(InvalidContentId):
        asyncio.run(service.start_stream(content_id))

    engine.start_stream.assert_not_called()
    assert service.list_active_sessions() == []


def test_content_id_validation_is_case_insensitive():
    assert is_valid_content_id(CONTENT_ID)
    assert is_valid_content_id(CONTENT_ID.upper())
    assert not is_valid_content_id(None)
    assert not is_valid_content_id(CONTENT_ID + "\n")


def test_start_registers_starting_session():
    engine = make_engine()

    async def scenario():
        service = make_service(engine, delay=60)
        session = await service.start_stream(CONTENT_ID, StartOptions(use_api_events=True))
        active = service.list_active_sessions()
        pending = service.scheduler.has_pending(session.id)
        await service.shutdown()
        return session, active, pending

    session, active, pending = asyncio.run(scenario())

    assert session.status == "starting"
    assert session.content_id == CONTENT_ID
    assert session.command_url.endswith("/ace/cmd/h/s")
    assert [s.id for s in active] == [session.id]
    assert pending, "status check should be scheduled, not run inline"
    engine.start_stream.assert_awaited_once_with(CONTENT_ID, use_api_events=True)


def test_start_failure_creates_no_session():
    for cause in (EngineUnreachable("down"), EngineError("Engine error: bad id")):
        engine = make_engine()
        engine.start_stream.side_effect = cause
        service = make_service(engine)

        with pytest.raises(StreamStartFailed) as exc:
            asyncio.run(service.start_stream(CONTENT_ID))

        assert exc.value.cause is cause
        assert service.list_active_sessions() == []
        assert service.scheduler.pending() == 0


def test_start_with_unexpected_engine_payload_creates_no_session():
    engine = EngineClient("http://127.0.0.1:6878", transport=httpx.MockTransport(
        lambda r: httpx.Response(200, json={"response": "busy", "error": None})
    ))
    service = make_service(engine)

    with pytest.raises(StreamStartFailed) as exc:
        asyncio.run(service.start_stream(CONTENT_ID))

    assert isinstance(exc.value.cause, EngineError)
    assert len(service.registry) == 0


def test_session_ids_are_unique():
    async def scenario():
        service = make_service(delay=60)
        ids = {(await service.start_stream(CONTENT_ID)).id for _ in range(20)}
        count = len(service.list_active_sessions())
        await service.shutdown()
        return ids, count

    ids, count = asyncio.run(scenario())
    assert len(ids) == 20
    assert count == 20


def test_stop_unknown_session():
    service = make_service()
    with pytest.raises(SessionNotFound):
        asyncio.run(service.stop_stream("nope"))
    assert service.list_active_sessions() == []


def test_stop_removes_even_if_graceful_stop_fails():
    engine = make_engine()
    engine.stop_stream.side_effect = EngineUnreachable("HTTP 500")

    async def scenario():
        service = make_service(engine, delay=60)
        session = await service.start_stream(CONTENT_ID)
        stopped = await service.stop_stream(session.id)
        return service, session, stopped

    service, session, stopped = asyncio.run(scenario())

    assert stopped.status == "stopped"
    assert service.registry.get(session.id) is None
    engine.stop_stream.assert_awaited_once_with(session.command_url)


def test_stop_without_command_url_skips_engine():
    engine = make_engine()
    engine.start_stream.return_value = EngineSession(playback_url="http://127.0.0.1:6878/ace/m/h/s.m3u8")

    async def scenario():
        service = make_service(engine, delay=60)
        session = await service.start_stream(CONTENT_ID)
        await service.stop_stream(session.id)
        return service

    service = asyncio.run(scenario())
    engine.stop_stream.assert_not_called()
    assert service.list_active_sessions() == []


def test_stop_twice():
    async def scenario():
        service = make_service(delay=60)
        session = await service.start_stream(CONTENT_ID)
        await service.stop_stream(session.id)
        with pytest.raises(SessionNotFound):
            await service.stop_stream(session.id)

    asyncio.run(scenario())


def test_stats_errors():
    engine = make_engine()
    engine.start_stream.return_value = EngineSession(playback_url="http://127.0.0.1:6878/ace/m/h/s.m3u8")

    async def scenario():
        service = make_service(engine, delay=60)
        with pytest.raises(SessionNotFound):
            await service.get_stream_stats(UNKNOWN_ID)
        session = await service.start_stream(CONTENT_ID)
        with pytest.raises(NoStatsAvailable):
            await service.get_stream_stats(session.id)
        await service.shutdown()

    asyncio.run(scenario())


def test_stats_propagate_engine_errors_unchanged():
    engine = make_engine()
    cause = EngineError("Engine error: unknown playback session id")
    engine.get_stats.side_effect = cause

    async def scenario():
        service = make_service(engine, delay=60)
        session = await service.start_stream(CONTENT_ID)
        try:
            await service.get_stream_stats(session.id)
        finally:
            await service.shutdown()

    with pytest.raises(EngineError) as exc:
        asyncio.run(scenario())
    assert exc.value is cause


class TestDeferredStatusCheck(unittest.TestCase):
    """Deferred status promotion after start"""

    def run_start(self, engine):
        async def scenario():
            service = make_service(engine, delay=0)
            session = await service.start_stream(CONTENT_ID)
            await service.scheduler.join(session.id)
            return service, session

        return asyncio.run(scenario())

    def test_promotes_to_streaming(self):
        service, session = self.run_start(make_engine("dl"))
        self.assertEqual(service.registry.get(session.id).status, "streaming")

    def test_prebuf_stays_starting(self):
        service, session = self.run_start(make_engine("prebuf"))
        self.assertEqual(service.registry.get(session.id).status, "starting")

    def test_poll_failure_marks_error(self):
        engine = make_engine()
        engine.get_stats.side_effect = EngineUnreachable("connection refused")
        service, session = self.run_start(engine)
        self.assertEqual(service.registry.get(session.id).status, "error")

    def test_check_never_raises(self):
        engine = make_engine()
        engine.get_stats.side_effect = EngineError("Engine error: boom")
        service, session = self.run_start(engine)
        self.assertEqual(service.scheduler.pending(), 0)
        self.assertEqual(service.registry.get(session.id).status, "error")

    def test_malformed_stats_marks_error(self):
        for stats_response in ({"status": "dl", "speed_down": 12.5}, "busy"):
            service, session = self.run_start(make_http_engine(stats_response))
            self.assertEqual(service.registry.get(session.id).status, "error")

    def test_detached_check_failure_is_logged(self):
        async def scenario():
            scheduler = StatusCheckScheduler()
            entered = asyncio.Event()
            release = asyncio.Event()

            async def action():
                entered.set()
                await release.wait()
                raise RuntimeError("stats exploded")

            scheduler.schedule("session-1", 0, action)
            await entered.wait()
            self.assertTrue(scheduler.cancel("session-1"))
            await asyncio.sleep(0.01)
            release.set()
            for _ in range(5):
                await asyncio.sleep(0.01)

        with self.assertLogs("acehls.services.scheduler", level="ERROR") as logs:
            asyncio.run(scenario())
        self.assertTrue(any("stats exploded" in line for line in logs.output))

        self.assertEqual(service.registry.get(session.id).status, "error")

    def test_removed_before_check_does_not_reappear(self):
        engine = make_engine()

        async def scenario():
            service = make_service(engine, delay=0.05)
            session = await service.start_stream(CONTENT_ID)
            await service.stop_stream(session.id)
            await asyncio.sleep(0.1)
            return service, session

        service, session = asyncio.run(scenario())
        self.assertIsNone(service.registry.get(session.id))
        self.assertEqual(service.list_active_sessions(), [])
        engine.get_stats.assert_not_called()

    def test_removed_during_check_does_not_reappear(self):
        for outcome in ("dl", "fail"):
            engine = make_engine()

            async def scenario():
                entered = asyncio.Event()
                release = asyncio.Event()

                async def slow_stats(stat_url):
                    entered.set()
                    await release.wait()
                    if outcome == "fail":
                        raise EngineUnreachable("gone")
                    return StreamStats(status="dl")

                engine.get_stats.side_effect = slow_stats
                service = make_service(engine, delay=0)
                session = await service.start_stream(CONTENT_ID)
                await entered.wait()

                await service.stop_stream(session.id)
                release.set()
                for _ in range(5):
                    await asyncio.sleep(0.01)
                return service, session

            service, session = asyncio.run(scenario())
            self.assertIsNone(service.registry.get(session.id))
            self.assertEqual(len(service.registry), 0)

    def test_check_skips_already_promoted(self):
        engine = make_engine("dl")

        async def scenario():
            service = make_service(engine, delay=0.05)
            session = await service.start_stream(CONTENT_ID)
            service.registry.update_status(session.id, "error")
            await service.scheduler.join(session.id)
            return service, session

        service, session = asyncio.run(scenario())
        self.assertEqual(service.registry.get(session.id).status, "error")


if __name__ == '__main__':
    unittest.main()
