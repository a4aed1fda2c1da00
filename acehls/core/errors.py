"""
Error taxonomy for stream sessions and the HLS proxy.

Every error carries the HTTP status the API surface answers with, so route
handlers can simply let them propagate to the registered exception handler.
"""
from typing import Optional


class AceHLSError(Exception):
    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidContentId(AceHLSError):
    status_code = 400
    default_message = "Invalid Ace Stream ID format"


class SessionNotFound(AceHLSError):
    status_code = 404
    default_message = "Stream session not found"

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        super().__init__()


class StreamStartFailed(AceHLSError):
    status_code = 502
    default_message = "Failed to start stream"

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"Failed to start stream: {cause}")


class EngineUnreachable(AceHLSError):
    """Transport-level failure talking to the engine (safe to retry)."""
    status_code = 502
    default_message = "Ace Stream engine unreachable"


class EngineError(AceHLSError):
    """The engine answered but reported a logical error."""
    status_code = 502
    default_message = "Ace Stream engine error"


class NoStatsAvailable(AceHLSError):
    status_code = 400
    default_message = "Stream session has no stats available"


class InvalidSegmentPath(AceHLSError):
    status_code = 400
    default_message = "Invalid segment path"


class UpstreamError(AceHLSError):
    """Engine returned a non-2xx status while proxying; the status is passed through."""

    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"Engine returned {status_code}: {reason}".rstrip(": "))


class ProxyFetchFailed(AceHLSError):
    status_code = 502
    default_message = "Failed to fetch from engine"
