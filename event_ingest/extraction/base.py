"""
event_ingest.extraction.base

Shared types and helpers for the extraction waterfall.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlparse

from event_ingest.runtime.results import FetchResponse
from event_ingest.schemas.event import RawEventCard
from event_ingest.schemas.pipeline import ExtractionStrategy

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], FetchResponse]

WATERFALL_ORDER: tuple[ExtractionStrategy, ...] = (
    ExtractionStrategy.HYDRATION,
    ExtractionStrategy.STRUCTURED_DATA,
    ExtractionStrategy.FEED,
    ExtractionStrategy.DOM,
)


@dataclass
class ExtractionContext:
    """Everything a strategy needs besides the HTML itself."""

    base_url: str
    preferred_strategy: ExtractionStrategy | None = None
    feed_discovery: bool = True
    dom_selectors: list[str] | None = None
    source_name: str | None = None
    # Only the feed strategy makes secondary requests.
    fetcher: Fetcher | None = None


@dataclass
class ExtractionResult:
    """
    Outcome of a single strategy.

    ``found`` is derived from ``events`` so the two can never disagree.
    """

    strategy: ExtractionStrategy
    events: list[RawEventCard] = field(default_factory=list)
    tried: bool = True
    error: str | None = None
    time_ms: float = 0.0

    @property
    def found(self) -> int:
        return len(self.events)

    def trace(self) -> dict[str, Any]:
        """Machine-readable summary without the events themselves."""
        return {
            "strategy": self.strategy.value,
            "tried": self.tried,
            "found": self.found,
            "error": self.error,
            "time_ms": round(self.time_ms, 2),
        }


@dataclass
class WaterfallResult:
    winning_strategy: ExtractionStrategy | None
    events: list[RawEventCard]
    strategy_trace: dict[ExtractionStrategy, dict[str, Any]]
    total_time_ms: float

    @property
    def total_events(self) -> int:
        return len(self.events)

    def to_dict(self, *, include_events: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "winning_strategy": self.winning_strategy.value if self.winning_strategy else None,
            "total_events": self.total_events,
            "strategy_trace": {s.value: t for s, t in self.strategy_trace.items()},
            "total_time_ms": round(self.total_time_ms, 2),
        }
        if include_events:
            out["events"] = [e.model_dump() for e in self.events]
        return out


def run_strategy(
    strategy: ExtractionStrategy,
    extract: Callable[[], list[RawEventCard]],
) -> ExtractionResult:
    """
    Time ``extract`` and convert any exception into an error result.

    Strategies never raise outward; the waterfall relies on this to keep going.
    """
    t0 = time.perf_counter()
    try:
        events = extract()
        error = None
    except Exception as e:
        logger.debug(f"{strategy.value} extraction failed: {e}", exc_info=True)
        events = []
        error = str(e) or type(e).__name__
    return ExtractionResult(
        strategy=strategy,
        events=events,
        error=error,
        time_ms=(time.perf_counter() - t0) * 1000,
    )


# ---------------------------------------------------------------------
# URL + JSON helpers
# ---------------------------------------------------------------------


def resolve_url(url: str | None, base_url: str) -> str:
    """Resolve a possibly relative URL against ``base_url``."""
    if not url:
        return ""
    url = url.strip()
    if url.startswith(("http://", "https://")):
        return url
    if not base_url or not urlparse(base_url).scheme:
        return url
    return urljoin(base_url, url)


def origin_of(url: str) -> str | None:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,])\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*:")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def soft_repair_json(text: str) -> str | None:
    """
    Best-effort repair of sloppy hand-written JSON.

    Returns the input unchanged when it already parses, the repaired text when
    the repairs make it parse, otherwise None. Quote normalization is blunt:
    apostrophes inside string values get turned into double quotes too, which
    usually makes the repair fail and the caller skip the block.
    """
    try:
        json.loads(text)
        return text
    except ValueError:
        pass

    repaired = _TRAILING_COMMA_RE.sub(r"\1", text)
    repaired = repaired.replace("'", '"')
    repaired = _BARE_KEY_RE.sub(r'\1"\2":', repaired)
    repaired = _CONTROL_CHARS_RE.sub("", repaired)

    try:
        json.loads(repaired)
    except ValueError:
        return None
    return repaired


def load_json_lenient(text: str) -> Any | None:
    """Parse JSON, falling back to soft repair. None when both fail."""
    try:
        return json.loads(text)
    except ValueError:
        repaired = soft_repair_json(text)
        if repaired is None:
            return None
        return json.loads(repaired)


def snapshot(value: Any) -> str:
    """Compact JSON dump used as the raw_html debug snapshot."""
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)
