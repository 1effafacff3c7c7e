# config.py
"""
Centralized configuration for the API.

Values are read from the environment (a local ``.env`` file is honoured through
python-dotenv) and collected in a single ``Settings`` object that is built once
at startup and handed to the app, the scrapers and the cache.
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# Action identifiers recognised by the upstream admin-ajax backend
DEFAULT_NONCE_ACTION = "aa1208d27f29ca340c92c66d1926f13f"
DEFAULT_RESOLVE_ACTION = "2a3505c93b0035d3f455df82bf976b84"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class RouteCacheTTL(BaseModel):
    search: int = Field(600, description="Search results TTL in seconds")
    ongoing: int = Field(600, description="Ongoing list TTL in seconds")
    completed: int = Field(3600, description="Completed list TTL in seconds")
    anime: int = Field(300, description="Anime detail TTL in seconds")
    episode: int = Field(180, description="Episode streaming TTL in seconds")


class CacheSettings(BaseModel):
    std_ttl: int = Field(0, description="Default TTL, 0 means no expiration")
    check_period: int = Field(120, description="Seconds between expired-key sweeps")
    route_ttl: RouteCacheTTL = Field(default_factory=RouteCacheTTL)


class RateLimitSettings(BaseModel):
    window_seconds: int = Field(15 * 60, description="Length of one rate-limit window")
    max_requests: int = Field(100, description="Requests allowed per client per window")
    standard_headers: bool = Field(True, description="Send RateLimit-* headers")


class Settings(BaseModel):
    source_url: str = Field("https://otakudesu.cloud", description="Base URL of the scraped site")
    base_url: str = Field("http://localhost:3000", description="Public base URL of this API")
    port: int = Field(3000, description="Port for local development")
    request_timeout: float = Field(25.0, description="Timeout for every outbound request")
    max_retries: int = Field(2, description="Extra attempts for page fetches")
    retry_delay: float = Field(1.0, description="Base delay for linear retry backoff")
    user_agent: str = DEFAULT_USER_AGENT
    nonce_action: str = DEFAULT_NONCE_ACTION
    resolve_action: str = DEFAULT_RESOLVE_ACTION
    log_level: str = "INFO"
    cache: CacheSettings = Field(default_factory=CacheSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)

    @property
    def ajax_url(self) -> str:
        return f"{self.source_url.rstrip('/')}/wp-admin/admin-ajax.php"


def _public_base_url(port: int) -> str:
    explicit = os.getenv("BASE_URL")
    if explicit:
        return explicit.rstrip("/")
    # Vercel exposes the deployment host without a scheme
    vercel_url = os.getenv("VERCEL_URL")
    if vercel_url:
        return f"https://{vercel_url}"
    return f"http://localhost:{port}"


def load_settings(**overrides) -> Settings:
    """Build settings from the environment; keyword overrides win over env values."""
    port = int(os.getenv("PORT", "3000"))
    values = {
        "source_url": os.getenv("SOURCE_URL", "https://otakudesu.cloud").rstrip("/"),
        "base_url": _public_base_url(port),
        "port": port,
        "request_timeout": float(os.getenv("REQUEST_TIMEOUT", "25")),
        "nonce_action": os.getenv("NONCE_ACTION", DEFAULT_NONCE_ACTION),
        "resolve_action": os.getenv("RESOLVE_ACTION", DEFAULT_RESOLVE_ACTION),
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
    }
    values.update(overrides)
    return Settings(**values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
