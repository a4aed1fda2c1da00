"""
Client for the AceStream engine HTTP control API.

Wraps the handful of engine endpoints the session manager and HLS proxy need
and normalizes failures into two kinds:

- EngineUnreachable: connection/timeout problems or non-2xx HTTP statuses
- EngineError: the engine answered but the JSON body carries an ``error``
  or does not have the expected shape
"""
import httpx
import logging
from typing import Optional, Dict, Any, Type, TypeVar
from urllib.parse import urlencode

from pydantic import BaseModel, ValidationError

from ..core.errors import EngineUnreachable, EngineError
from ..models.schemas import EngineVersion, EngineSession, StreamStats

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class EngineClient:
    def __init__(self, base_url: str, timeout: float = 10.0, public_url: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.public_url = (public_url or self.base_url).rstrip('/')
        self.timeout = timeout
        # Injected by tests (httpx.MockTransport); None uses the default network transport
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    def _url(self, path: str) -> str:
        # Stat/command URLs come back absolute; anything else is engine-relative
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(self, path: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """GET ``path`` on the engine and return the decoded JSON body."""
        url = self._url(path)
        logger.debug(f"Engine request: {url}")
        try:
            async with self._client(timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EngineUnreachable(
                f"Ace Stream engine request failed: HTTP {e.response.status_code}: {e.response.reason_phrase}"
            ) from e
        except httpx.RequestError as e:
            raise EngineUnreachable(f"Ace Stream engine request failed: {e!r}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise EngineError(f"Engine returned invalid JSON from {url}") from e

        if not isinstance(data, dict):
            raise EngineError(f"Engine returned unexpected payload from {url}")
        if data.get("error") is not None:
            raise EngineError(f"Engine error: {data['error']}")
        return data

    def _parse(self, model: Type[M], payload: Any, path: str) -> M:
        try:
            return model.model_validate(payload or {})
        except ValidationError as e:
            logger.debug(f"Unexpected engine payload from {path}: {payload!r}")
            raise EngineError(f"Engine returned unexpected payload from {self._url(path)}") from e

    async def check_engine(self, timeout: Optional[float] = None) -> EngineVersion:
        path = "/webui/api/service?method=get_version"
        data = await self.request(path, timeout=timeout)
        return self._parse(EngineVersion, data.get("result"), path)

    async def start_stream(self, content_id: str, use_api_events: bool = False) -> EngineSession:
        """Ask the engine to start ``content_id`` as HLS and return its session locators."""
        params = {"id": content_id, "format": "json"}
        if use_api_events:
            params["use_api_events"] = "1"

        path = f"/ace/manifest.m3u8?{urlencode(params)}"
        data = await self.request(path)
        session = self._parse(EngineSession, data.get("response"), path)
        if not session.playback_url:
            session.playback_url = self.manifest_url(content_id)
        return session

    async def stop_stream(self, command_url: str) -> Dict[str, Any]:
        return await self.request(f"{command_url}?method=stop")

    async def get_stats(self, stat_url: str) -> StreamStats:
        data = await self.request(stat_url)
        return self._parse(StreamStats, data.get("response"), stat_url)

    # URL builders for the HLS proxy

    @property
    def segment_base_url(self) -> str:
        """Prefix the engine uses for every segment it lists in a manifest."""
        return f"{self.base_url}/ace/"

    def manifest_url(self, content_id: str) -> str:
        return f"{self.base_url}/ace/manifest.m3u8?{urlencode({'id': content_id})}"

    def segment_url(self, session_hash: str, segment_name: str) -> str:
        return f"{self.base_url}/ace/c/{session_hash}/{segment_name}"

    def direct_stream_url(self, content_id: str) -> str:
        return f"{self.public_url}/ace/getstream?{urlencode({'id': content_id})}"
