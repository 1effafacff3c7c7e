# ratelimit.py
import logging
import math
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from config import RateLimitSettings

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter per client address."""

    def __init__(self, settings: RateLimitSettings, clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, client_id: str) -> Tuple[bool, int, int]:
        """Count one request; returns (allowed, remaining, seconds until reset)."""
        now = self._clock()
        window = self.settings.window_seconds
        started, count = self._windows.get(client_id, (now, 0))
        if now - started >= window:
            started, count = now, 0
            # Drop windows that ended so idle clients do not accumulate
            self._windows = {k: v for k, v in self._windows.items() if now - v[0] < window}
        count += 1
        self._windows[client_id] = (started, count)

        reset = max(0, math.ceil(started + window - now))
        remaining = max(0, self.settings.max_requests - count)
        return count <= self.settings.max_requests, remaining, reset

    async def middleware(self, request: Request, call_next):
        client_id = request.client.host if request.client else 'unknown'
        allowed, remaining, reset = self.hit(client_id)

        if allowed:
            response = await call_next(request)
        else:
            logger.warning(f"Rate limit exceeded for {client_id}")
            response = JSONResponse(
                status_code=429,
                content={
                    'success': False,
                    'error': 'Too many requests, please try again later.',
                    'timestamp': datetime.now(timezone.utc).isoformat(),
                },
            )
            response.headers['Retry-After'] = str(reset)

        if self.settings.standard_headers:
            response.headers['RateLimit-Limit'] = str(self.settings.max_requests)
            response.headers['RateLimit-Remaining'] = str(remaining)
            response.headers['RateLimit-Reset'] = str(reset)
        return response
