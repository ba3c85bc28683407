"""
Error taxonomy of the stream-resolution pipeline.

Services raise these; the API layer maps them to HTTP responses via `status_code`.
Indexer failures never show up here: they are absorbed into `partial=True` results.
"""
from typing import Optional


class DeflixError(Exception):
    status_code = 500
    message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidCredential(DeflixError):
    """The debrid provider rejected the API token. Terminal for the request."""
    status_code = 401
    message = "Invalid debrid API token"


class ProviderUnavailable(DeflixError):
    """The provider call could not complete (network, timeout, 5xx). Safe to retry later."""
    status_code = 503
    message = "Debrid provider unavailable, please try again later"


class NotCached(DeflixError):
    """The torrent would need a real-time download, which is never waited on."""
    status_code = 409
    message = "This torrent is not cached by the debrid provider (anymore), please pick another stream"


class QuotaExceeded(DeflixError):
    """Account-level limits reached on the provider side. Not retried automatically."""
    status_code = 429
    message = "Debrid account limit reached"


class TicketExpired(DeflixError):
    status_code = 404
    message = "Stream link expired, please reload the stream list"
