# exceptions.py
from typing import Optional


class ScraperError(Exception):
    """Base class for every error raised by the scraping layer."""


class NotFoundError(ScraperError):
    """The requested page or entity does not exist upstream."""


class DecodeError(ScraperError):
    """An opaque mirror payload could not be decoded."""


class ValidationError(ScraperError):
    """A slug or query was rejected before any network call."""


class UpstreamTimeout(ScraperError):
    """The upstream site did not answer within the request timeout."""


class UpstreamHTTPError(ScraperError):
    """The upstream site answered with an error status or could not be reached.

    ``status_code`` is ``None`` for network-level failures (DNS, connection reset).
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
