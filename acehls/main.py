from contextlib import asynccontextmanager
from fastapi import FastAPI, APIRouter, Query, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from typing import Optional
from datetime import datetime, timezone
import logging
import time

from .utils.logging import setup
from .core.config import cfg, Cfg
from .core.errors import AceHLSError, InvalidContentId, EngineError
from .models.schemas import (
    StreamSession, StartOptions, SessionView, StartStreamResponse, StopStreamResponse,
    StreamStatusResponse, ActiveSessionsResponse, ServiceHealth,
)
from .services.engine_client import EngineClient
from .services.registry import SessionRegistry
from .services.scheduler import StatusCheckScheduler
from .services.stream_service import StreamService, is_valid_content_id
from .services.metrics import on_session_count
from .proxy.hls_proxy import HLSProxy

logger = logging.getLogger(__name__)

setup(getattr(logging, cfg.LOG_LEVEL))

VERSION = "1.0.0"


def build_services(settings: Cfg):
    """Wire the engine client, registry, lifecycle manager and proxy for one app instance."""
    engine = EngineClient(settings.engine_base_url, timeout=settings.ENGINE_TIMEOUT_S,
                          public_url=settings.engine_public_url)
    registry = SessionRegistry()
    stream_service = StreamService(engine, registry, StatusCheckScheduler(),
                                   status_check_delay=settings.STATUS_CHECK_DELAY_S)
    hls_proxy = HLSProxy(engine, registry, timeout=settings.PROXY_TIMEOUT_S,
                         segment_cache_max_age=settings.SEGMENT_CACHE_MAX_AGE_S)
    return stream_service, hls_proxy


# Dependencies

def get_settings(request: Request) -> Cfg:
    return request.app.state.settings

def get_stream_service(request: Request) -> StreamService:
    return request.app.state.stream_service

def get_hls_proxy(request: Request) -> HLSProxy:
    return request.app.state.hls_proxy

def public_base(request: Request, settings: Cfg) -> str:
    """Base URL clients use to reach the API routes (scheme://host[/root]/<prefix>)."""
    base = settings.PUBLIC_BASE_URL or str(request.base_url).rstrip('/')
    return f"{base}{settings.API_PREFIX}"

def session_view(session: StreamSession, api_base: str) -> SessionView:
    return SessionView(
        id=session.id,
        contentId=session.content_id,
        status=session.status,
        hlsUrl=f"{api_base}/streams/hls/{session.id}/manifest.m3u8",
        startedAt=session.started_at,
    )


# Streams

streams = APIRouter(prefix="/streams", tags=["streams"])

@streams.post("/start/{content_id}", response_model=StartStreamResponse)
async def start_stream(content_id: str, request: Request, events: Optional[str] = Query(None),
                       service: StreamService = Depends(get_stream_service),
                       settings: Cfg = Depends(get_settings)):
    if not is_valid_content_id(content_id):
        raise InvalidContentId()
    session = await service.start_stream(content_id, StartOptions(use_api_events=events == "true"))
    return StartStreamResponse(session=session_view(session, public_base(request, settings)))

@streams.post("/stop/{session_id}", response_model=StopStreamResponse)
async def stop_stream(session_id: str, service: StreamService = Depends(get_stream_service)):
    await service.stop_stream(session_id)
    return StopStreamResponse()

@streams.get("/status/{session_id}", response_model=StreamStatusResponse)
async def stream_status(session_id: str, service: StreamService = Depends(get_stream_service)):
    stats = await service.get_stream_stats(session_id)
    return StreamStatusResponse(stats=stats)

@streams.get("/active", response_model=ActiveSessionsResponse)
def active_streams(request: Request, service: StreamService = Depends(get_stream_service),
                   settings: Cfg = Depends(get_settings)):
    api_base = public_base(request, settings)
    sessions = [session_view(s, api_base) for s in service.list_active_sessions()]
    return ActiveSessionsResponse(sessions=sessions, count=len(sessions))

@streams.get("/hls/{session_id}/manifest.m3u8")
async def hls_manifest(session_id: str, request: Request, proxy: HLSProxy = Depends(get_hls_proxy),
                       settings: Cfg = Depends(get_settings)):
    content = await proxy.get_manifest(session_id, f"{public_base(request, settings)}/streams/proxy/")
    return Response(content=content.body, media_type=content.media_type, headers=content.headers)

@streams.get("/proxy/c/{session_hash}/{segment}")
async def hls_segment(session_hash: str, segment: str, proxy: HLSProxy = Depends(get_hls_proxy)):
    content = await proxy.get_segment(session_hash, segment)
    return Response(content=content.body, media_type=content.media_type, headers=content.headers)

@streams.get("/direct/{session_id}")
def direct_stream(session_id: str, proxy: HLSProxy = Depends(get_hls_proxy)):
    # Native players (VLC etc.) do better with the engine's raw stream than with proxied HLS
    return RedirectResponse(proxy.get_direct_stream_url(session_id), status_code=302)


# Health

health = APIRouter(prefix="/health", tags=["health"])

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()

def _uptime(request: Request) -> float:
    return round(time.monotonic() - request.app.state.started_at, 3)

@health.get("")
async def health_status(request: Request, service: StreamService = Depends(get_stream_service),
                        settings: Cfg = Depends(get_settings)):
    status = "healthy"
    try:
        version = await service.get_engine_status(timeout=settings.ENGINE_HEALTH_TIMEOUT_S)
        ace = ServiceHealth(status="healthy", version=version.version)
    except AceHLSError as e:
        ace = ServiceHealth(status="error", error=e.message)
        status = "degraded"

    return {
        "status": status,
        "timestamp": _timestamp(),
        "uptime": _uptime(request),
        "services": {"aceStream": ace.model_dump()},
    }

@health.get("/ready")
async def health_ready(service: StreamService = Depends(get_stream_service),
                       settings: Cfg = Depends(get_settings)):
    try:
        await service.get_engine_status(timeout=settings.ENGINE_READY_TIMEOUT_S)
    except EngineError:
        # The engine answered, it just did not like the request
        pass
    except AceHLSError as e:
        return JSONResponse(status_code=503, content={
            "status": "not ready",
            "timestamp": _timestamp(),
            "errors": [e.message],
        })
    return {"status": "ready", "timestamp": _timestamp()}

@health.get("/live")
def health_live(request: Request):
    return {"status": "alive", "timestamp": _timestamp(), "uptime": _uptime(request)}


# Application

def create_app(settings: Optional[Cfg] = None, stream_service: Optional[StreamService] = None,
               hls_proxy: Optional[HLSProxy] = None) -> FastAPI:
    settings = settings or cfg
    if stream_service is None or hls_proxy is None:
        default_service, default_proxy = build_services(settings)
        stream_service = stream_service or default_service
        hls_proxy = hls_proxy or default_proxy

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Ace Stream HLS API starting, engine at {settings.engine_base_url}")
        try:
            version = await stream_service.get_engine_status(timeout=settings.ENGINE_HEALTH_TIMEOUT_S)
            logger.info(f"Ace Stream engine reachable (version={version.version})")
        except AceHLSError as e:
            logger.warning(f"Ace Stream engine not available at startup: {e}")

        yield

        await stream_service.shutdown()
        logger.info("Ace Stream HLS API stopped")

    app = FastAPI(title="Ace Stream HLS API", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.stream_service = stream_service
    app.state.hls_proxy = hls_proxy
    app.state.started_at = time.monotonic()

    allow_origins = ["*"] if settings.FRONTEND_URL == "*" else [settings.FRONTEND_URL]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=settings.FRONTEND_URL != "*",
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AceHLSError)
    async def ace_hls_error_handler(request: Request, exc: AceHLSError):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={
                "error": "Not found",
                "message": f"Route {request.url.path} not found",
            })
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail},
                            headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={
            "error": "Internal server error",
            "message": str(exc) if settings.LOG_LEVEL == "DEBUG" else "Something went wrong",
        })

    app.include_router(streams, prefix=settings.API_PREFIX)
    app.include_router(health, prefix=settings.API_PREFIX)

    @app.get("/")
    def root():
        return {
            "message": "Ace Stream HLS API",
            "version": VERSION,
            "endpoints": {
                "streams": f"{settings.API_PREFIX}/streams",
                "health": f"{settings.API_PREFIX}/health",
            },
        }

    @app.get("/metrics")
    def get_metrics():
        """Prometheus metrics endpoint."""
        on_session_count(len(stream_service.list_active_sessions()))
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
