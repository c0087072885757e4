"""
Base Scraper Strategy.

Abstract base class for all per-source scraper strategies. Subclasses decide
how a source is scraped and parsed; the base class owns everything shared:

- fetching with retries, politeness delay and rotated user agents
- bounded concurrent batch fetching
- validation, deduplication and insert/update against the event store
- the timed run loop that writes one record to the run log
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from event_ingest.engines.base import BaseEngine, EngineContext
from event_ingest.errors import FetchFailedError, HttpClientError
from event_ingest.ingestion.collaborators import (
    EventStore,
    Filter,
    RunLogSink,
    ScraperRunRecord,
    escape_like,
)
from event_ingest.monitoring.logging import with_context
from event_ingest.normalization.transforms import (
    canonicalize_url,
    is_valid_http_url,
    parse_iso,
    to_utc,
)
from event_ingest.runtime.resilience import RateLimiter
from event_ingest.schemas.event import ScrapedEvent
from event_ingest.schemas.pipeline import ScraperSource

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
MIN_NAME_LENGTH = 3
DESCRIPTION_COMPARE_CHARS = 100
EVENT_TIMEZONE = "Europe/Amsterdam"
DEDUP_COLUMNS = ("id", "event_date", "description")

# Columns an update must not overwrite on an already-published row.
INSERT_ONLY_FIELDS = ("created_by", "status")


# ============================================================================
# RESULT TYPES
# ============================================================================


@dataclass(frozen=True)
class DedupeResult:
    existing_id: str | None = None
    needs_update: bool = False
    ambiguous: bool = False


@dataclass
class ProcessStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.skipped + self.failed


@dataclass
class FetchOutcome:
    """Result of one URL in a batch: either ``html`` or ``error`` is set."""

    url: str
    html: str | None = None
    error: str | None = None
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.html is not None


@dataclass
class ScraperRunResult:
    source_id: str
    strategy: str
    stats: ProcessStats = field(default_factory=ProcessStats)
    events_found: int = 0
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None


# ============================================================================
# HELPERS
# ============================================================================


def event_date_key(value: Any) -> str | None:
    """
    Normalize a start time or stored ``event_date`` to a UTC ISO string.

    Stores hand back timezone-aware datetimes while scraped times are often
    naive strings; both sides go through ``to_utc`` so the same instant always
    yields the same key. Date-only values become midnight UTC. Unparseable
    text is returned unchanged.
    """
    if value is None:
        return None
    moment = value if isinstance(value, date) else parse_iso(str(value))
    if moment is None:
        return str(value)
    return to_utc(moment).isoformat()


def _description_head(value: str | None) -> str:
    return (value or "").strip()[:DESCRIPTION_COMPARE_CHARS]


# ============================================================================
# BASE STRATEGY
# ============================================================================


class BaseScraperStrategy(ABC):
    """
    Abstract base class for scraper strategies.

    Subclasses must implement:
    - scrape(): fetch the source and return normalized events
    - parse_event_list(): turn one page of HTML into events
    """

    name: str = "base"

    def __init__(
        self,
        source: ScraperSource,
        *,
        engine: BaseEngine,
        store: EventStore,
        run_log: RunLogSink | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        politeness_delay_s: float | None = None,
    ) -> None:
        """
        Initialize the strategy.

        Args:
            source: Source configuration (URLs, defaults, history)
            engine: HTTP engine that performs the actual requests and retries
            store: Event store used for deduplication and writes
            run_log: Optional sink receiving one record per ``run()``
            concurrency: Thread pool size for ``fetch_many``
            politeness_delay_s: Default minimum delay between requests to this
                source; ``source.rate_limit_s`` takes precedence when set. Engines
                built by ``EngineRouter.from_settings`` add no delay of their own.
        """
        self.source = source
        self.engine = engine
        self.store = store
        self.run_log = run_log
        self.concurrency = max(1, concurrency)
        delay_s = source.rate_limit_s if source.rate_limit_s is not None else politeness_delay_s
        self._limiter = RateLimiter(min_delay_s=delay_s)
        self.logger = with_context(logger, source_id=source.id)

    # ========================================================================
    # ABSTRACT METHODS - Must be implemented by subclasses
    # ========================================================================

    @abstractmethod
    def scrape(self) -> list[ScrapedEvent]:
        """Fetch the source and return normalized events."""

    @abstractmethod
    def parse_event_list(self, html: str, url: str | None = None) -> list[ScrapedEvent]:
        """
        Parse one listing page into events.

        Args:
            html: Raw HTML of the page
            url: URL the page was fetched from, used to resolve relative links

        Returns:
            Normalized events found on the page
        """

    # ========================================================================
    # FETCHING
    # ========================================================================

    def fetch(self, url: str, ctx: EngineContext | None = None) -> str:
        """
        GET ``url`` and return the body.

        Retries (429, 5xx, transport errors) happen inside the engine.

        Raises:
            HttpClientError: non-retryable 4xx response
            FetchFailedError: retries exhausted
        """
        self._limiter.wait()
        result = self.engine.get(url, ctx=ctx)
        if result.ok:
            return result.text
        if result.is_client_error:
            raise HttpClientError(url, f"HTTP {result.status_code}", status_code=result.status_code)
        raise FetchFailedError(url, result.short_error(), status_code=result.status_code)

    def fetch_many(self, urls: list[str], concurrency: int | None = None) -> list[FetchOutcome]:
        """
        Fetch ``urls`` in fixed-size concurrent batches.

        A failing URL is reported in its outcome and never cancels the others.
        Outcomes keep the input order.
        """
        size = max(1, concurrency or self.concurrency)
        outcomes: list[FetchOutcome] = []

        def _one(u: str) -> FetchOutcome:
            try:
                return FetchOutcome(url=u, html=self.fetch(u))
            except (HttpClientError, FetchFailedError) as e:
                return FetchOutcome(url=u, error=str(e), status_code=e.status_code)

        for start in range(0, len(urls), size):
            batch = urls[start : start + size]
            by_url: dict[int, FetchOutcome] = {}
            with ThreadPoolExecutor(max_workers=size) as ex:
                futs = {ex.submit(_one, u): i for i, u in enumerate(batch)}
                for fut in as_completed(futs):
                    by_url[futs[fut]] = fut.result()
            outcomes.extend(by_url[i] for i in range(len(batch)))

        failed = [o for o in outcomes if not o.ok]
        if failed:
            self.logger.warning(f"{len(failed)}/{len(outcomes)} fetches failed for {self.source.name}")
        return outcomes

    # ========================================================================
    # VALIDATION & DEDUPLICATION
    # ========================================================================

    def validate_event(self, event: ScrapedEvent) -> str | None:
        """
        Return the reason ``event`` is unusable, or None when it is valid.
        """
        if not event.name or len(event.name.strip()) < MIN_NAME_LENGTH:
            return f"Event name is required and must be at least {MIN_NAME_LENGTH} characters"
        if not event.city:
            return "City is required"
        if event.start_time and parse_iso(event.start_time) is None:
            return "Invalid start_time format (expected ISO 8601)"
        if event.ticket_url and not is_valid_http_url(event.ticket_url):
            return "Invalid ticket_url format"
        return None

    def has_event_changed(self, existing: dict[str, Any], event: ScrapedEvent) -> bool:
        if event.start_time and existing.get("event_date"):
            if event_date_key(existing["event_date"]) != event_date_key(event.start_time):
                return True
        if event.description and existing.get("description"):
            if _description_head(existing["description"]) != _description_head(event.description):
                return True
        return False

    def deduplicate_event(self, event: ScrapedEvent) -> DedupeResult:
        """
        Find an existing row for ``event``.

        Exact match on the canonical source URL first, then a case-insensitive
        title match within the calendar day of the start time. Several fuzzy
        candidates are reported as ambiguous with no ``existing_id``.
        """
        source_url = canonicalize_url(event.source_url)
        exact = self.store.select([Filter("source_url", "eq", source_url)], columns=DEDUP_COLUMNS, limit=1)
        if exact:
            return DedupeResult(existing_id=exact[0]["id"], needs_update=self.has_event_changed(exact[0], event))

        start = event_date_key(event.start_time)
        if not start:
            return DedupeResult()

        day = start[:10]
        candidates = self.store.select(
            [
                Filter("title", "ilike", escape_like(event.name.strip())),
                Filter("event_date", "gte", f"{day}T00:00:00+00:00"),
                Filter("event_date", "lte", f"{day}T23:59:59.999999+00:00"),
            ],
            columns=DEDUP_COLUMNS,
            limit=2,
        )
        if len(candidates) > 1:
            return DedupeResult(ambiguous=True)
        if candidates:
            match = candidates[0]
            return DedupeResult(existing_id=match["id"], needs_update=self.has_event_changed(match, event))
        return DedupeResult()

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    def transform_to_record(self, event: ScrapedEvent) -> dict[str, Any]:
        """Map a ScrapedEvent to the event store's row shape."""
        location = "POINT(0 0)"
        coordinates = None
        if event.coordinates:
            location = f"POINT({event.coordinates.lng} {event.coordinates.lat})"
            coordinates = {"lat": event.coordinates.lat, "lng": event.coordinates.lng}

        start = parse_iso(event.start_time) if event.start_time else None
        if isinstance(start, datetime):
            event_time = start.strftime("%H:%M")
        else:
            event_time = "TBD"

        time_mode = event.time_mode or self.source.default_time_mode

        return {
            "title": event.name.strip(),
            "description": (event.description or "").strip(),
            "category": event.category,
            "event_type": "anchor",
            "venue_name": event.venue_name or "",
            "location": location,
            "event_date": event_date_key(event.start_time) or datetime.now(timezone.utc).isoformat(),
            "event_time": event_time,
            "image_url": event.image_url or None,
            "created_by": None,
            "status": "published",
            "source_url": canonicalize_url(event.source_url),
            "time_mode": time_mode.value,
            "structured_date": (
                {
                    "utc_start": event.start_time,
                    "utc_end": event.end_time,
                    "timezone": EVENT_TIMEZONE,
                    "all_day": not isinstance(start, datetime),
                }
                if event.start_time
                else None
            ),
            "structured_location": {
                "name": event.venue_name or "",
                "address": event.address,
                "coordinates": coordinates,
            },
            "place_id": event.place_id,
            "city": event.city,
        }

    def insert_event(self, event: ScrapedEvent) -> str:
        return self.store.insert(self.transform_to_record(event))

    def update_event(self, existing_id: str, event: ScrapedEvent) -> None:
        record = self.transform_to_record(event)
        for key in INSERT_ONLY_FIELDS:
            record.pop(key, None)
        self.store.update(existing_id, record)

    def process_events(self, events: list[ScrapedEvent]) -> ProcessStats:
        """
        Validate, deduplicate and write ``events``.

        A failing event is counted and logged; it never aborts the batch.
        """
        stats = ProcessStats()
        for event in events:
            try:
                reason = self.validate_event(event)
                if reason:
                    self.logger.warning(f"Validation failed for '{event.name}': {reason}")
                    stats.failed += 1
                    continue

                dedupe = self.deduplicate_event(event)
                if dedupe.ambiguous:
                    self.logger.info(f"Ambiguous duplicate for '{event.name}', inserting as new")

                if dedupe.existing_id:
                    if dedupe.needs_update:
                        self.update_event(dedupe.existing_id, event)
                        stats.updated += 1
                    else:
                        stats.skipped += 1
                else:
                    self.insert_event(event)
                    stats.inserted += 1
            except Exception as e:
                self.logger.error(f"Error processing event '{event.name}': {e}")
                stats.failed += 1
        return stats

    # ========================================================================
    # RUN LOOP
    # ========================================================================

    def run(self) -> ScraperRunResult:
        """Scrape, then process; always returns a result and logs the run."""
        self.logger.info(f"[{self.source.name}] Starting scrape...")
        t0 = time.time()
        result = ScraperRunResult(source_id=self.source.id, strategy=self.name)

        try:
            events = self.scrape()
            result.events_found = len(events)
            result.stats = self.process_events(events)
        except Exception as e:
            result.error = str(e)
            self.logger.error(f"[{self.source.name}] Scrape failed: {e}")

        result.duration_ms = (time.time() - t0) * 1000
        if result.success:
            s = result.stats
            self.logger.info(
                f"[{self.source.name}] Completed in {result.duration_ms:.0f}ms: "
                f"{s.inserted} inserted, {s.updated} updated, {s.skipped} skipped, {s.failed} failed"
            )
        self._log_run(result)
        return result

    def _log_run(self, result: ScraperRunResult) -> None:
        if self.run_log is None:
            return
        record = ScraperRunRecord(
            strategy=result.strategy,
            status="success" if result.success else "error",
            source_id=result.source_id,
            inserted=result.stats.inserted,
            updated=result.stats.updated,
            skipped=result.stats.skipped,
            failed=result.stats.failed,
            error=result.error,
            duration_ms=result.duration_ms,
        )
        try:
            self.run_log.log_run(record)
        except Exception as e:
            self.logger.warning(f"Could not write run log for {self.source.id}: {e}")
