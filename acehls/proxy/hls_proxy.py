"""
HLS proxy for AceStream sessions.

Browsers can only reach this service, not the engine, so manifests are
fetched from the engine and every absolute segment URL the engine embeds
(``http://<engine>/ace/...``) is rewritten to this service's
``<api>/streams/proxy/...`` route. Segments are relayed byte-for-byte.

Rewriting is a plain prefix substitution; the engine only ever lists
segments as absolute URLs under its ``/ace/`` base, so no M3U8 parsing is
needed.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from ..core.errors import UpstreamError, ProxyFetchFailed, InvalidSegmentPath, SessionNotFound
from ..services.engine_client import EngineClient
from ..services.registry import SessionRegistry
from ..services import metrics

logger = logging.getLogger(__name__)

HLS_MEDIA_TYPE = "application/vnd.apple.mpegurl"
DEFAULT_SEGMENT_MEDIA_TYPE = "video/mp2t"

NO_CACHE = "no-cache, no-store, must-revalidate"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
}


@dataclass
class ProxiedContent:
    body: bytes
    media_type: str
    headers: Dict[str, str] = field(default_factory=dict)


def rewrite_manifest(manifest: str, engine_base: str, proxy_base: str) -> str:
    """Replace every occurrence of ``engine_base`` with ``proxy_base``; nothing else changes."""
    if not engine_base:
        return manifest
    return manifest.replace(engine_base, proxy_base)


def _is_safe_component(value: str) -> bool:
    return bool(value) and '/' not in value and '\\' not in value and value not in ('.', '..')


class HLSProxy:
    def __init__(self, engine: EngineClient, registry: SessionRegistry,
                 timeout: float = 10.0, segment_cache_max_age: int = 0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.engine = engine
        self.registry = registry
        self.timeout = timeout
        self.segment_cache_max_age = segment_cache_max_age
        self._transport = transport

    def _headers(self, cache_control: str = NO_CACHE) -> Dict[str, str]:
        return {"Cache-Control": cache_control, **CORS_HEADERS}

    def _segment_cache_control(self) -> str:
        if self.segment_cache_max_age > 0:
            return f"public, max-age={self.segment_cache_max_age}, immutable"
        return NO_CACHE

    async def _fetch(self, url: str, kind: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.RequestError as e:
            metrics.on_proxy_request(kind, "fetch_failed")
            logger.warning(f"Failed to fetch {kind} from engine ({url}): {e!r}")
            raise ProxyFetchFailed(f"Failed to fetch {kind} from engine: {e}") from e

        if response.status_code >= 400:
            metrics.on_proxy_request(kind, "upstream_error")
            logger.warning(f"Engine returned {response.status_code} for {kind} {url}")
            raise UpstreamError(response.status_code, response.reason_phrase)
        if not response.is_success:
            # Redirects and other non-2xx answers have nothing a player can use
            metrics.on_proxy_request(kind, "fetch_failed")
            logger.warning(f"Unexpected engine status {response.status_code} for {kind} {url}")
            raise ProxyFetchFailed(f"Failed to fetch {kind} from engine: unexpected status {response.status_code}")

        metrics.on_proxy_request(kind, "ok")
        return response

    async def get_manifest(self, session_id: str, proxy_base: str) -> ProxiedContent:
        """Fetch the session's manifest and point its segment URLs at ``proxy_base``.

        ``proxy_base`` is the public URL of the segment proxy route, ending in
        ``/``, e.g. ``http://host/api/streams/proxy/``.
        """
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        response = await self._fetch(self.engine.manifest_url(session.content_id), "manifest")
        manifest = rewrite_manifest(response.text, self.engine.segment_base_url, proxy_base)
        logger.debug(f"Rewrote manifest for session {session_id}:\n{manifest}")

        headers = self._headers()
        headers["Content-Type"] = HLS_MEDIA_TYPE
        return ProxiedContent(body=manifest.encode('utf-8'), media_type=HLS_MEDIA_TYPE, headers=headers)

    async def get_segment(self, session_hash: str, segment_name: str) -> ProxiedContent:
        if not (_is_safe_component(session_hash) and _is_safe_component(segment_name)):
            raise InvalidSegmentPath()

        response = await self._fetch(self.engine.segment_url(session_hash, segment_name), "segment")
        media_type = response.headers.get("content-type") or DEFAULT_SEGMENT_MEDIA_TYPE

        headers = self._headers(self._segment_cache_control())
        headers["Content-Type"] = media_type
        return ProxiedContent(body=response.content, media_type=media_type, headers=headers)

    def get_direct_stream_url(self, session_id: str) -> str:
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return self.engine.direct_stream_url(session.content_id)
