"""
event_ingest.ingestion.workers

Stage workers driven by the pipeline orchestrator.

Each worker claims up to ``limit`` queue items from its input stage, does
one unit of work per item and moves the item forward (``advance``) or
records a failure. One failing item never stops the batch.

    discovery   : sources           -> discovered
    analysis    : discovered        -> analyzing -> awaiting_fetch
    extraction  : awaiting_fetch    -> extracted -> ready_to_persist
    persistence : ready_to_persist  -> indexed
    repair      : sources with a failure streak (no queue stage)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from event_ingest.diagnostics.analyzer import FAILURE_STREAK, analyze, upgrade_fetcher
from event_ingest.diagnostics.classifiers import diagnose_http_response
from event_ingest.diagnostics.signals import NextStep
from event_ingest.engines.router import EngineRouter
from event_ingest.extraction.base import ExtractionContext
from event_ingest.extraction.dom_fallback import count_selector_matches
from event_ingest.extraction.waterfall import run_waterfall
from event_ingest.monitoring.logging import with_context
from event_ingest.schemas.event import Coordinates, ScrapedEvent
from event_ingest.schemas.pipeline import FetcherType, PipelineQueueItem, PipelineStage, ScraperSource

from .collaborators import EventStore, RunLogSink, ScraperRunRecord, SourceRegistry, VenueLookup
from .queue import QueueStore
from .scrapers import BaseScraperStrategy, build_strategy

logger = logging.getLogger(__name__)

ZERO_EVENTS_ERROR = "No events extracted"


@dataclass
class WorkerResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PipelineContext:
    """Collaborators shared by all workers."""

    queue: QueueStore
    sources: SourceRegistry
    router: EngineRouter
    store: EventStore
    venues: VenueLookup | None = None
    run_log: RunLogSink | None = None
    fetch_concurrency: int = 5
    politeness_delay_s: float | None = None

    def strategy_for(self, source: ScraperSource) -> BaseScraperStrategy:
        return build_strategy(
            source,
            engine=self.router.engine_for(source.fetcher_type),
            store=self.store,
            run_log=self.run_log,
            concurrency=self.fetch_concurrency,
            politeness_delay_s=self.politeness_delay_s,
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageWorker:
    """Base class: subclasses implement ``__call__(limit) -> WorkerResult``."""

    name = "worker"
    stage: PipelineStage | None = None

    def __init__(self, ctx: PipelineContext) -> None:
        self.ctx = ctx
        self.logger = with_context(logger, stage=self.name)

    def __call__(self, limit: int) -> WorkerResult:
        raise NotImplementedError

    def _source(self, item: PipelineQueueItem, result: WorkerResult) -> ScraperSource | None:
        source = self.ctx.sources.get(item.source_id)
        if source is None:
            self.ctx.queue.record_failure(item.id, f"Unknown source {item.source_id}", permanent=True)
            result.failed += 1
            result.details.append({"item_id": item.id, "error": "unknown source"})
        return source


# ============================================================================
# DISCOVERY
# ============================================================================


class DiscoveryWorker(StageWorker):
    """Enqueue enabled sources that have no live item in the queue."""

    name = "discovery"

    def __call__(self, limit: int) -> WorkerResult:
        result = WorkerResult()
        for source in self.ctx.sources.list_enabled():
            if result.processed >= limit:
                break
            if self.ctx.queue.has_active(source.id):
                continue
            # Sources that keep failing go to the back of the line.
            priority = 100 + 10 * source.history.consecutive_failures
            item = self.ctx.queue.enqueue(source.id, source.url, priority=priority)
            result.processed += 1
            result.succeeded += 1
            result.details.append({"item_id": item.id, "source_id": source.id})
        if result.processed:
            self.logger.info(f"Discovered {result.processed} source(s)")
        return result


# ============================================================================
# ANALYSIS
# ============================================================================


class AnalysisWorker(StageWorker):
    """
    Fetch each source statically and let the analyzer pick a fetcher.

    A blocked or JS-only static response is itself the analysis: the source
    is upgraded one step and moves on.
    """

    name = "analysis"
    stage = PipelineStage.DISCOVERED

    def __call__(self, limit: int) -> WorkerResult:
        result = WorkerResult()
        for item in self.ctx.queue.claim(PipelineStage.DISCOVERED, limit):
            result.processed += 1
            source = self._source(item, result)
            if source is None:
                continue
            self.ctx.queue.advance(item.id, PipelineStage.ANALYZING)
            log = with_context(self.logger, source_id=source.id, item_id=item.id)
            try:
                detail = self._analyze(item, source)
            except Exception as e:
                log.error(f"Analysis failed for {source.url}: {e}")
                self.ctx.queue.record_failure(item.id, str(e), retry_stage=PipelineStage.DISCOVERED)
                result.failed += 1
                result.details.append({"item_id": item.id, "error": str(e)})
                continue

            if detail.get("error"):
                result.failed += 1
            else:
                result.succeeded += 1
            result.details.append(detail)
        return result

    def _set_fetcher(self, source: ScraperSource, fetcher: FetcherType) -> None:
        if fetcher != source.fetcher_type:
            logger.info(f"Routing {source.id}: {source.fetcher_type.value} -> {fetcher.value}")
        source.fetcher_type = fetcher
        source.history.fetcher_type = fetcher
        self.ctx.sources.save(source)

    def _analyze(self, item: PipelineQueueItem, source: ScraperSource) -> dict[str, Any]:
        fetched = self.ctx.router.static.get(source.url)
        detail: dict[str, Any] = {"item_id": item.id, "source_id": source.id}

        if not fetched.ok:
            diagnosis = diagnose_http_response(fetched.status_code, fetched.headers, fetched.text)
            detail["diagnosis"] = diagnosis.label.value
            if diagnosis.is_permanent:
                self.ctx.queue.record_failure(
                    item.id, diagnosis.reason, permanent=True, retry_stage=PipelineStage.DISCOVERED
                )
                detail["error"] = diagnosis.reason
                return detail
            if diagnosis.next_step in (NextStep.SWITCH_TO_PROXY, NextStep.SWITCH_TO_RENDERER):
                self._set_fetcher(source, upgrade_fetcher(source.fetcher_type))
                self.ctx.queue.advance(
                    item.id,
                    PipelineStage.AWAITING_FETCH,
                    {"fetcher": source.fetcher_type.value, "diagnosis": diagnosis.label.value},
                )
                detail["fetcher"] = source.fetcher_type.value
                return detail
            self.ctx.queue.record_failure(item.id, fetched.short_error(), retry_stage=PipelineStage.DISCOVERED)
            detail["error"] = fetched.short_error()
            return detail

        analysis = analyze(fetched.text, source.history)
        if analysis.should_upgrade or analysis.should_downgrade:
            self._set_fetcher(source, analysis.recommended_fetcher)
        self.ctx.queue.advance(
            item.id,
            PipelineStage.AWAITING_FETCH,
            {"fetcher": source.fetcher_type.value, "analysis": analysis.to_dict()},
        )
        detail["fetcher"] = source.fetcher_type.value
        detail["confidence"] = round(analysis.confidence, 4)
        return detail


# ============================================================================
# EXTRACTION / ENRICHMENT
# ============================================================================


class ExtractionWorker(StageWorker):
    """
    Fetch through the routed engine, run the waterfall, geocode venues.

    Zero events and transport failures are transient; a 4xx (other than
    429) is permanent. Source history is updated either way.
    """

    name = "extraction"
    stage = PipelineStage.AWAITING_FETCH

    def __init__(self, ctx: PipelineContext, *, throttle: Callable[[int], float] | None = None) -> None:
        super().__init__(ctx)
        # Called with the number of claimed items before any of them is fetched.
        self.throttle = throttle

    def __call__(self, limit: int) -> WorkerResult:
        result = WorkerResult()
        items = self.ctx.queue.claim(PipelineStage.AWAITING_FETCH, limit)
        if items and self.throttle:
            self.throttle(len(items))
        for item in items:
            result.processed += 1
            source = self._source(item, result)
            if source is None:
                continue
            log = with_context(self.logger, source_id=source.id, item_id=item.id)
            try:
                events, error, permanent = self._extract(source)
            except Exception as e:
                events, error, permanent = [], str(e), False

            if error:
                source.history.record_failure()
                self.ctx.sources.save(source)
                self.ctx.queue.record_failure(
                    item.id, error, permanent=permanent, retry_stage=PipelineStage.AWAITING_FETCH
                )
                log.warning(f"Extraction failed for {source.url}: {error}")
                result.failed += 1
                result.details.append({"item_id": item.id, "source_id": source.id, "error": error})
                continue

            events = [self.enrich(e) for e in events]
            source.history.record_success(len(events), utcnow())
            self.ctx.sources.save(source)

            payload = {"events": [e.model_dump(mode="json") for e in events]}
            self.ctx.queue.advance(item.id, PipelineStage.EXTRACTED, payload)
            self.ctx.queue.advance(item.id, PipelineStage.READY_TO_PERSIST)
            result.succeeded += 1
            result.details.append({"item_id": item.id, "source_id": source.id, "events": len(events)})
        return result

    def _extract(self, source: ScraperSource) -> tuple[list[ScrapedEvent], str | None, bool]:
        strategy = self.ctx.strategy_for(source)
        outcomes = strategy.fetch_many(source.urls())
        pages = [o for o in outcomes if o.ok]
        if not pages:
            first = outcomes[0] if outcomes else None
            status = first.status_code if first else None
            diagnosis = diagnose_http_response(status)
            permanent = status is not None and 400 <= status < 500 and status != 429
            return [], f"{diagnosis.label.value}: {first.error if first else 'no URLs'}", permanent

        events: list[ScrapedEvent] = []
        for page in pages:
            events.extend(strategy.parse_event_list(page.html or "", page.url))
        if not events:
            return [], ZERO_EVENTS_ERROR, False
        return events, None, False

    def enrich(self, event: ScrapedEvent) -> ScrapedEvent:
        """Attach coordinates and place id from the venue lookup."""
        if self.ctx.venues is None or event.coordinates or not event.venue_name:
            return event
        try:
            match = self.ctx.venues.lookup(event.venue_name, event.city)
        except Exception as e:
            self.logger.warning(f"Venue lookup failed for {event.venue_name}: {e}")
            return event
        if match is None:
            return event
        return event.model_copy(
            update={
                "coordinates": Coordinates(lat=match.lat, lng=match.lng),
                "place_id": event.place_id or match.place_id,
            }
        )


# ============================================================================
# PERSISTENCE / INDEXING
# ============================================================================


class PersistenceWorker(StageWorker):
    name = "persistence"
    stage = PipelineStage.READY_TO_PERSIST

    def __call__(self, limit: int) -> WorkerResult:
        result = WorkerResult()
        for item in self.ctx.queue.claim(PipelineStage.READY_TO_PERSIST, limit):
            result.processed += 1
            source = self._source(item, result)
            if source is None:
                continue
            strategy = self.ctx.strategy_for(source)
            try:
                events = [ScrapedEvent.model_validate(e) for e in item.payload.get("events", [])]
                stats = strategy.process_events(events)
            except Exception as e:
                self.ctx.queue.record_failure(item.id, str(e))
                result.failed += 1
                result.details.append({"item_id": item.id, "source_id": source.id, "error": str(e)})
                continue

            self.ctx.queue.advance(item.id, PipelineStage.INDEXED, {"stats": asdict(stats)})
            if self.ctx.run_log is not None:
                self.ctx.run_log.log_run(
                    ScraperRunRecord(
                        strategy=strategy.name,
                        status="success",
                        source_id=source.id,
                        inserted=stats.inserted,
                        updated=stats.updated,
                        skipped=stats.skipped,
                        failed=stats.failed,
                    )
                )
            result.succeeded += 1
            result.details.append({"item_id": item.id, "source_id": source.id, **asdict(stats)})
        return result


# ============================================================================
# REPAIR
# ============================================================================


class RepairWorker(StageWorker):
    """
    Self-healing for sources on a failure streak.

    Re-analyzes the source and moves its fetcher at least one step up, drops
    custom DOM selectors that no longer match, pins the preferred extraction
    strategy to the current waterfall winner, then gives the source's failed
    queue items a fresh attempt budget.
    """

    name = "repair"

    def __call__(self, limit: int) -> WorkerResult:
        result = WorkerResult()
        for source in self.ctx.sources.list_broken(FAILURE_STREAK)[:limit]:
            result.processed += 1
            try:
                changes = self.repair(source)
            except Exception as e:
                self.logger.error(f"Repair failed for {source.id}: {e}")
                result.failed += 1
                result.details.append({"source_id": source.id, "error": str(e)})
                continue
            result.succeeded += 1
            result.details.append({"source_id": source.id, "changes": changes})
        return result

    def repair(self, source: ScraperSource) -> list[str]:
        log = with_context(self.logger, source_id=source.id)
        changes: list[str] = []
        current = source.fetcher_type
        fetched = self.ctx.router.static.get(source.url)

        target = upgrade_fetcher(current)
        if fetched.ok:
            analysis = analyze(fetched.text, source.history)
            if analysis.recommended_fetcher.cost_rank > target.cost_rank:
                target = analysis.recommended_fetcher
        if target != current:
            source.fetcher_type = target
            source.history.fetcher_type = target
            changes.append(f"fetcher {current.value} -> {target.value}")

        if fetched.ok and source.dom_selectors:
            counts = count_selector_matches(fetched.text, source.dom_selectors)
            live = [s for s in source.dom_selectors if counts.get(s, 0) > 0]
            if live != source.dom_selectors:
                changes.append(f"dropped selectors {sorted(set(source.dom_selectors) - set(live))}")
                source.dom_selectors = live or None

        if fetched.ok:
            outcome = run_waterfall(
                fetched.text,
                ExtractionContext(
                    base_url=source.url,
                    feed_discovery=source.feed_discovery,
                    dom_selectors=source.dom_selectors,
                    source_name=source.name,
                ),
            )
            if outcome.winning_strategy and outcome.winning_strategy != source.preferred_strategy:
                source.preferred_strategy = outcome.winning_strategy
                changes.append(f"preferred strategy -> {outcome.winning_strategy.value}")

        source.history.consecutive_failures = 0
        self.ctx.sources.save(source)
        reset = self.ctx.queue.reset_failed(source.id)
        if reset:
            changes.append(f"reset {reset} failed item(s)")
        log.info(f"Repaired {source.id}: {', '.join(changes) or 'no changes'}")
        return changes
