from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal, List
from datetime import datetime

SessionStatus = Literal["starting", "streaming", "error", "stopped"]

class StreamSession(BaseModel):
    id: str
    content_id: str
    playback_url: str
    stat_url: Optional[str] = None
    command_url: Optional[str] = None
    event_url: Optional[str] = None
    status: SessionStatus = "starting"
    started_at: datetime

class StartOptions(BaseModel):
    use_api_events: bool = False

class EngineVersion(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: Optional[str] = None
    code: Optional[int] = None

class EngineSession(BaseModel):
    """Locators returned by the engine when it accepts a start request."""
    model_config = ConfigDict(extra="ignore")

    playback_url: Optional[str] = None
    stat_url: Optional[str] = None
    command_url: Optional[str] = None
    event_url: Optional[str] = None
    playback_session_id: Optional[str] = None
    is_live: Optional[int] = None

class StreamStats(BaseModel):
    # The engine reports "prebuf" while buffering and "dl" while downloading
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    peers: Optional[int] = None
    speed_down: Optional[int] = None
    speed_up: Optional[int] = None
    downloaded: Optional[int] = None
    uploaded: Optional[int] = None
    total_progress: Optional[float] = None

# API views (camelCase on the wire, matching the web client)

class SessionView(BaseModel):
    id: str
    contentId: str
    status: SessionStatus
    hlsUrl: str
    startedAt: datetime

class StartStreamResponse(BaseModel):
    success: bool = True
    session: SessionView

class StopStreamResponse(BaseModel):
    success: bool = True
    message: str = "Stream stopped successfully"

class StreamStatusResponse(BaseModel):
    success: bool = True
    stats: StreamStats

class ActiveSessionsResponse(BaseModel):
    success: bool = True
    sessions: List[SessionView] = Field(default_factory=list)
    count: int = 0

class ServiceHealth(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy", "error"]
    version: Optional[str] = None
    error: Optional[str] = None
