"""
Shared fixtures: a fake Ace Stream engine served through httpx.MockTransport.
"""
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

ENGINE = "http://127.0.0.1:6878"
CONTENT_ID = "dd1e67078381739d14beca697356ab76d49d1a2d"
SEGMENT_HASH = "7a3c5e1b"

MANIFEST = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:3\n"
    "#EXT-X-TARGETDURATION:5\n"
    "#EXT-X-MEDIA-SEQUENCE:12\n"
    "#EXTINF:5.000,\n"
    f"{ENGINE}/ace/c/{SEGMENT_HASH}/12.ts\n"
    "#EXTINF:5.000,\n"
    f"{ENGINE}/ace/c/{SEGMENT_HASH}/13.ts\n"
    "#EXTINF:5.000,\n"
    f"{ENGINE}/ace/c/{SEGMENT_HASH}/14.ts?t=1\n"
)


class FakeEngine:
    """Minimal engine: records requests and answers the endpoints the service uses."""

    def __init__(self):
        self.requests = []
        self.stats_status = "dl"
        self.manifest_status = 200
        self.segment_content_type = "video/mp2t"
        self.fail_stop = False
        self.start_error = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if path == "/webui/api/service":
            return httpx.Response(200, json={"result": {"version": "3.1.74", "code": 3017400}, "error": None})

        if path == "/ace/manifest.m3u8" and params.get("format") == "json":
            if self.start_error:
                return httpx.Response(200, json={"response": None, "error": self.start_error})
            return httpx.Response(200, json={
                "response": {
                    "playback_url": f"{ENGINE}/ace/m/{SEGMENT_HASH}/abc.m3u8",
                    "stat_url": f"{ENGINE}/ace/stat/{SEGMENT_HASH}/abc",
                    "command_url": f"{ENGINE}/ace/cmd/{SEGMENT_HASH}/abc",
                    "event_url": f"{ENGINE}/ace/event/{SEGMENT_HASH}/abc",
                    "playback_session_id": "abc",
                    "is_live": 1,
                },
                "error": None,
            })

        if path == "/ace/manifest.m3u8":
            if self.manifest_status != 200:
                return httpx.Response(self.manifest_status, text="not ready")
            return httpx.Response(200, text=MANIFEST, headers={"content-type": "application/vnd.apple.mpegurl"})

        if path.startswith("/ace/stat/"):
            return httpx.Response(200, json={
                "response": {
                    "status": self.stats_status,
                    "peers": 7,
                    "speed_down": 512,
                    "speed_up": 64,
                    "downloaded": 1048576,
                    "uploaded": 4096,
                    "total_progress": 0,
                },
                "error": None,
            })

        if path.startswith("/ace/cmd/"):
            if self.fail_stop:
                return httpx.Response(500)
            return httpx.Response(200, json={"response": "ok", "error": None})

        if path.startswith("/ace/c/"):
            headers = {"content-type": self.segment_content_type} if self.segment_content_type else {}
            return httpx.Response(200, content=b"\x47" + path.encode(), headers=headers)

        return httpx.Response(404, text="unknown")


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def engine_transport(fake_engine):
    return httpx.MockTransport(fake_engine.handler)
