"""
event_ingest.errors

Exceptions raised across module boundaries. Everything recoverable inside a
module (malformed markup, bad JSON, a single invalid event) is handled
locally and never surfaces as one of these.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for ingestion errors."""


class FetchError(IngestError):
    """A page could not be retrieved."""

    def __init__(self, url: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code


class HttpClientError(FetchError):
    """Non-retryable 4xx response (anything but 429)."""


class FetchFailedError(FetchError):
    """Retries exhausted on 429, 5xx or transport errors."""


class PersistenceError(IngestError):
    """The event store rejected a read or write."""


class UnknownStageError(IngestError, ValueError):
    """A stage name or alias that maps to no pipeline worker."""
