"""
event_ingest.runtime.results

What engines hand back. ``FetchResult`` is the full record of one GET (with
retries folded in); ``FetchResponse`` is the reduced ``(html, status)`` pair
the extraction waterfall asks for when it probes feeds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from event_ingest.runtime.resilience import is_retryable_status


class BlockSignal(str, Enum):
    LIKELY_BLOCKED = "likely_blocked"
    LOGIN_REQUIRED = "login_required"
    CAPTCHA_PRESENT = "captcha_present"


@dataclass(frozen=True)
class RequestMeta:
    """Headers and routing actually used for the request."""

    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    proxy: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class EngineError:
    """Transport-level failure (no HTTP response was received)."""

    type: str
    message: str
    is_retryable: bool = False


@dataclass
class FetchResult:
    final_url: str
    status_code: int | None = None
    content_type: str | None = None
    text: str = ""
    elapsed_ms: float = 0.0
    headers: dict[str, str] = field(default_factory=dict)

    request_meta: RequestMeta = field(default_factory=RequestMeta)
    error: EngineError | None = None
    block_signals: list[BlockSignal] = field(default_factory=list)
    # One entry per failed attempt before this result.
    engine_trace: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        if self.error is not None or self.status_code is None:
            return False
        return 200 <= self.status_code < 400

    @property
    def is_retryable(self) -> bool:
        return self.error.is_retryable if self.error else is_retryable_status(self.status_code)

    @property
    def is_client_error(self) -> bool:
        """4xx other than 429: the request itself is wrong, retrying won't help."""
        if self.error is not None or self.status_code is None:
            return False
        return 400 <= self.status_code < 500 and self.status_code != 429

    @property
    def is_blocked(self) -> bool:
        return bool(self.block_signals)

    def short_error(self) -> str:
        """One-line reason for a failed fetch; empty when the fetch succeeded."""
        if self.ok:
            return ""
        if self.error:
            return f"{self.error.type}: {self.error.message}"
        return f"HTTP {self.status_code}" if self.status_code else "Unknown Error"

    def to_response(self) -> FetchResponse:
        """Reduce to the waterfall's shape; transport failures become status 0."""
        return FetchResponse(html=self.text or "", status=self.status_code or 0)


@dataclass(frozen=True)
class FetchResponse:
    html: str
    status: int = 200

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400
