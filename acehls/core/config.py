import os
from pydantic import BaseModel, validator, field_validator, model_validator
from dotenv import load_dotenv
load_dotenv()

class Cfg(BaseModel):
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", 3001))

    # AceStream engine control API
    ACESTREAM_HOST: str = os.getenv("ACESTREAM_HOST", "127.0.0.1")
    ACESTREAM_PORT: int = int(os.getenv("ACESTREAM_PORT", 6878))
    # Engine address as seen by clients (used for direct stream redirects)
    ACESTREAM_PUBLIC_URL: str | None = os.getenv("ACESTREAM_PUBLIC_URL")

    ENGINE_TIMEOUT_S: float = float(os.getenv("ENGINE_TIMEOUT_S", "10"))
    ENGINE_HEALTH_TIMEOUT_S: float = float(os.getenv("ENGINE_HEALTH_TIMEOUT_S", "5"))
    ENGINE_READY_TIMEOUT_S: float = float(os.getenv("ENGINE_READY_TIMEOUT_S", "2"))
    PROXY_TIMEOUT_S: float = float(os.getenv("PROXY_TIMEOUT_S", "10"))

    # Delay before the one-shot status check promotes a new session
    STATUS_CHECK_DELAY_S: float = float(os.getenv("STATUS_CHECK_DELAY_S", "3"))

    API_PREFIX: str = os.getenv("API_PREFIX", "/api")
    # Externally visible base URL of this service, e.g. "https://tv.example.org"
    # When unset, URLs handed to clients are derived from the inbound request
    PUBLIC_BASE_URL: str | None = os.getenv("PUBLIC_BASE_URL")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # 0 keeps segments uncacheable like manifests
    SEGMENT_CACHE_MAX_AGE_S: int = int(os.getenv("SEGMENT_CACHE_MAX_AGE_S", 0))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @validator('APP_PORT', 'ACESTREAM_PORT')
    def validate_ports(cls, v):
        if not (1 <= v <= 65535):
            raise ValueError('Ports must be between 1-65535')
        return v

    @validator('ENGINE_TIMEOUT_S', 'ENGINE_HEALTH_TIMEOUT_S', 'ENGINE_READY_TIMEOUT_S', 'PROXY_TIMEOUT_S')
    def validate_positive_timeouts(cls, v):
        if v <= 0:
            raise ValueError('Timeout values must be > 0')
        return v

    @validator('STATUS_CHECK_DELAY_S')
    def validate_status_check_delay(cls, v):
        if v < 0:
            raise ValueError('STATUS_CHECK_DELAY_S must be >= 0')
        return v

    @validator('SEGMENT_CACHE_MAX_AGE_S')
    def validate_segment_cache_max_age(cls, v):
        if v < 0:
            raise ValueError('SEGMENT_CACHE_MAX_AGE_S must be >= 0')
        return v

    @field_validator('API_PREFIX')
    @classmethod
    def validate_api_prefix(cls, v):
        if v == "":
            return v
        if not v.startswith('/') or v.endswith('/'):
            raise ValueError('API_PREFIX must start with "/" and must not end with "/"')
        return v

    @field_validator('ACESTREAM_PUBLIC_URL', 'PUBLIC_BASE_URL')
    @classmethod
    def validate_base_urls(cls, v):
        if v is None or v == "":
            return None
        if not (v.startswith('http://') or v.startswith('https://')):
            raise ValueError(f'Invalid base URL: {v}. Expected an http:// or https:// URL')
        return v.rstrip('/')

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v not in valid_levels:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(valid_levels)}')
        return v

    @model_validator(mode='after')
    def validate_engine_host(self):
        if not self.ACESTREAM_HOST:
            raise ValueError('ACESTREAM_HOST must not be empty')
        return self

    @property
    def engine_base_url(self) -> str:
        return f"http://{self.ACESTREAM_HOST}:{self.ACESTREAM_PORT}"

    @property
    def engine_public_url(self) -> str:
        return self.ACESTREAM_PUBLIC_URL or self.engine_base_url

cfg = Cfg()
