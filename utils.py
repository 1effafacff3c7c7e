# utils.py
"""
Small helpers shared by the scrapers and the API layer: slug handling, URL
building, cache keys, query sanitizing, error normalisation, the page-fetch
retry policy and the settled-result type used to isolate concurrent branches.
"""
import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, TypeVar

from httpx import HTTPStatusError, RequestError, TimeoutException

from exceptions import (
    NotFoundError,
    ScraperError,
    UpstreamHTTPError,
    UpstreamTimeout,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SLUG_PATTERN = re.compile(r'^[a-zA-Z0-9\-_]+$')


def parse_slug_from_link(url: Optional[str], type: str = 'anime') -> Optional[str]:
    """
    Extract the slug that follows ``/{type}/`` in a URL.
    Examples:
        https://otakudesu.cloud/anime/kusuriya-sub-indo/ -> kusuriya-sub-indo
        /episode/ksr-episode-1-sub-indo/ -> ksr-episode-1-sub-indo
    """
    if not url or not isinstance(url, str):
        return None
    match = re.search(rf'/(?:{re.escape(type)})/([a-zA-Z0-9\-_]+)', url)
    return match.group(1) if match else None


def build_url(base_url: str, path: str) -> str:
    clean_base = re.sub(r'/+$', '', base_url)
    clean_path = re.sub(r'^/+', '', path)
    return f"{clean_base}/{clean_path}"


def generate_cache_key(prefix: str, *args: Any) -> str:
    sanitized = [re.sub(r'[^a-zA-Z0-9\-_]', '_', str(arg)) for arg in args if arg is not None]
    return f"{prefix}:{':'.join(sanitized)}"


def sanitize_query(query: Optional[str]) -> str:
    if not query or not isinstance(query, str):
        return ''
    query = re.sub(r'[<>"\'&]', '', query.strip())
    query = re.sub(r'\s+', ' ', query)
    return query[:100]


def is_valid_slug(slug: Optional[str]) -> bool:
    return bool(slug) and isinstance(slug, str) and bool(SLUG_PATTERN.match(slug))


def validate_slug(slug: Optional[str], kind: str) -> str:
    if not is_valid_slug(slug):
        raise ValidationError(f"Invalid {kind} slug")
    return slug


def handle_error(error: BaseException) -> Dict[str, Any]:
    """Map any exception to a standardized ``{status, message}`` pair."""
    if isinstance(error, ValidationError):
        return {"status": 400, "message": str(error) or "Invalid request"}
    if isinstance(error, (UpstreamTimeout, TimeoutException)):
        return {"status": 408, "message": "Request Timeout: The target server took too long to respond."}
    if isinstance(error, NotFoundError):
        return {"status": 404, "message": str(error) or "Content Not Found"}
    if isinstance(error, HTTPStatusError):
        error = UpstreamHTTPError(str(error), error.response.status_code)
    if isinstance(error, UpstreamHTTPError):
        status = error.status_code
        if status is None:
            return {"status": 503, "message": "Network error: The target server could not be reached."}
        if status == 404:
            return {"status": 404, "message": "Content Not Found on the target server."}
        if status >= 500:
            return {"status": 502, "message": f"The target server responded with status {status}."}
        return {"status": status, "message": f"The target server responded with status {status}."}
    if isinstance(error, RequestError):
        return {"status": 503, "message": "Network error: The target server could not be reached."}
    if isinstance(error, ScraperError) and 'not found' in str(error).lower():
        return {"status": 404, "message": "Content Not Found"}
    return {"status": 500, "message": "Internal Server Error"}


def _is_retryable(error: BaseException) -> bool:
    # Client errors are final, except 429 (Too Many Requests)
    if isinstance(error, HTTPStatusError):
        status = error.response.status_code
        return not (400 <= status < 500 and status != 429)
    return isinstance(error, RequestError)


async def retry_request(
    request_fn: Callable[[], Awaitable[T]],
    max_retries: int = 2,
    delay: float = 1.0,
) -> T:
    """Run ``request_fn`` with at most ``max_retries`` extra attempts and linear backoff."""
    attempt = 0
    while True:
        try:
            return await request_fn()
        except (HTTPStatusError, RequestError) as e:
            if attempt >= max_retries or not _is_retryable(e):
                raise
            attempt += 1
            wait = delay * attempt
            logger.warning(f"Retry {attempt}/{max_retries} after {wait:.1f}s: {e}")
            await asyncio.sleep(wait)


class Settled(NamedTuple):
    """Outcome of one concurrent branch: either a value or the error that ended it."""
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None

    def value_or(self, default: Any) -> Any:
        if self.ok and self.value is not None:
            return self.value
        return default


async def settle(awaitable: Awaitable[Any], name: str = "branch") -> Settled:
    """Await a branch and capture its outcome instead of letting it raise."""
    try:
        return Settled(True, await awaitable)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"A scraping branch was rejected ({name}): {e}")
        return Settled(False, error=e)


def settle_sync(fn: Callable[..., Any], *args: Any, name: str = "branch") -> Settled:
    try:
        return Settled(True, fn(*args))
    except Exception as e:
        logger.warning(f"A scraping branch was rejected ({name}): {e}")
        return Settled(False, error=e)
