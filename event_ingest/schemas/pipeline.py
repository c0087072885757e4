# event_ingest/schemas/pipeline.py
"""
Pipeline queue and source configuration schemas.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from event_ingest.schemas.event import TimeMode


class PipelineStage(str, Enum):
    """Stages a queue item moves through from discovery to persistence."""

    DISCOVERED = "discovered"
    ANALYZING = "analyzing"
    AWAITING_FETCH = "awaiting_fetch"
    EXTRACTED = "extracted"
    READY_TO_PERSIST = "ready_to_persist"
    INDEXED = "indexed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.INDEXED, PipelineStage.FAILED)


class FetcherType(str, Enum):
    """Retrieval methods, ordered from cheapest to most expensive."""

    STATIC = "static"
    PUPPETEER = "puppeteer"
    PLAYWRIGHT = "playwright"
    SCRAPINGBEE = "scrapingbee"

    @property
    def cost_rank(self) -> int:
        return list(FetcherType).index(self)


class ExtractionStrategy(str, Enum):
    """Extraction strategies in waterfall priority order."""

    HYDRATION = "hydration"
    STRUCTURED_DATA = "structured_data"
    FEED = "feed"
    DOM = "dom"


class PipelineQueueItem(BaseModel):
    """
    A unit of work in the ingestion queue.

    Created on discovery and mutated only by the queue store's advance and
    record-failure operations. ``retired`` is set once the item reaches
    ``indexed`` or fails permanently.
    """

    id: str
    source_id: str
    source_url: str
    stage: PipelineStage = PipelineStage.DISCOVERED
    priority: int = 100
    attempts: int = 0
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    retired: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)


class SourceHistory(BaseModel):
    """Historical performance of a source, used for fetcher routing."""

    fetcher_type: FetcherType = FetcherType.STATIC
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    avg_events_found: float = 0.0
    consecutive_failures: int = 0
    total_runs: int = 0
    last_success_at: datetime | None = None

    def record_success(self, events_found: int, at: datetime) -> None:
        """Fold a successful run into the running averages."""
        self.total_runs += 1
        self.consecutive_failures = 0
        self.last_success_at = at
        self.success_rate = self._rolling(self.success_rate, 1.0)
        self.avg_events_found = self._rolling(self.avg_events_found, float(events_found))

    def record_failure(self) -> None:
        """Fold a failed run into the running averages."""
        self.total_runs += 1
        self.consecutive_failures += 1
        self.success_rate = self._rolling(self.success_rate, 0.0)

    def _rolling(self, current: float, sample: float) -> float:
        if self.total_runs <= 1:
            return sample
        return current + (sample - current) / self.total_runs


class ScraperSource(BaseModel):
    """Configuration of a single scraped website or feed."""

    id: str
    name: str
    url: str
    city: str
    category: str = "community"
    strategy: str = "waterfall"
    target_urls: list[str] = Field(default_factory=list)
    fetcher_type: FetcherType = FetcherType.STATIC
    preferred_strategy: ExtractionStrategy | None = None
    dom_selectors: list[str] | None = None
    feed_discovery: bool = True
    default_time_mode: TimeMode = TimeMode.FIXED
    rate_limit_s: float | None = None
    enabled: bool = True
    history: SourceHistory = Field(default_factory=SourceHistory)

    def urls(self) -> list[str]:
        """Return the pages to scrape, defaulting to the source URL."""
        return self.target_urls or [self.url]
