"""
Unit tests for the stage workers.

Workers run against in-memory collaborators and the FakeEngine from
conftest; every page a test needs is registered on ``fake_engine.pages``.
"""

import pytest
from conftest import DOM_HTML, JSON_LD_HTML, PLAIN_HTML

from event_ingest.ingestion.collaborators import VenueMatch
from event_ingest.ingestion.workers import (
    ZERO_EVENTS_ERROR,
    AnalysisWorker,
    DiscoveryWorker,
    ExtractionWorker,
    PersistenceWorker,
    RepairWorker,
)
from event_ingest.schemas.pipeline import ExtractionStrategy, FetcherType, PipelineStage

SOURCE_URL = "https://venue.example/agenda"


def _queued(ctx, stage=PipelineStage.DISCOVERED, payload=None, source_id="test-source"):
    """Enqueue an item for ``source_id`` and move it to ``stage``."""
    item = ctx.queue.enqueue(source_id, SOURCE_URL)
    if stage != PipelineStage.DISCOVERED or payload:
        ctx.queue.advance(item.id, stage, payload)
    return item.id


# =============================================================================
# DISCOVERY
# =============================================================================


class TestDiscoveryWorker:
    """Tests for DiscoveryWorker."""

    def test_enqueues_enabled_sources(self, pipeline_context):
        result = DiscoveryWorker(pipeline_context)(limit=10)

        assert result.succeeded == 1
        counts = pipeline_context.queue.stage_counts()
        assert counts[PipelineStage.DISCOVERED] == 1

    def test_skips_sources_with_live_items(self, pipeline_context):
        worker = DiscoveryWorker(pipeline_context)
        worker(limit=10)
        result = worker(limit=10)

        assert result.processed == 0
        assert len(pipeline_context.queue.items()) == 1

    def test_skips_disabled_sources(self, pipeline_context, create_source):
        pipeline_context.sources.save(create_source(id="off", enabled=False))
        DiscoveryWorker(pipeline_context)(limit=10)
        assert {i.source_id for i in pipeline_context.queue.items()} == {"test-source"}

    def test_failing_sources_get_lower_priority(self, pipeline_context, create_source):
        flaky = create_source(id="flaky", url="https://flaky.example/agenda")
        flaky.history.consecutive_failures = 2
        pipeline_context.sources.save(flaky)

        DiscoveryWorker(pipeline_context)(limit=10)

        priorities = {i.source_id: i.priority for i in pipeline_context.queue.items()}
        assert priorities == {"test-source": 100, "flaky": 120}

    def test_respects_limit(self, pipeline_context, create_source):
        pipeline_context.sources.save(create_source(id="second", url="https://second.example/"))
        result = DiscoveryWorker(pipeline_context)(limit=1)
        assert result.processed == 1
        assert len(pipeline_context.queue.items()) == 1


# =============================================================================
# ANALYSIS
# =============================================================================


class TestAnalysisWorker:
    """Tests for AnalysisWorker routing decisions."""

    def test_static_friendly_page(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (200, JSON_LD_HTML)
        item_id = _queued(pipeline_context)

        result = AnalysisWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert result.succeeded == 1
        assert item.stage == PipelineStage.AWAITING_FETCH
        assert item.payload["fetcher"] == "static"
        assert "analysis" in item.payload

    def test_js_shell_upgrades_fetcher(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (200, '<html><body><div id="root"></div></body></html>')
        item_id = _queued(pipeline_context)

        AnalysisWorker(pipeline_context)(limit=5)

        source = pipeline_context.sources.get("test-source")
        assert source.fetcher_type == FetcherType.PUPPETEER
        assert source.history.fetcher_type == FetcherType.PUPPETEER
        assert pipeline_context.queue.get(item_id).payload["fetcher"] == "puppeteer"

    def test_blocked_response_upgrades_one_step(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (403, "Forbidden")
        item_id = _queued(pipeline_context)

        result = AnalysisWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert result.succeeded == 1
        assert item.stage == PipelineStage.AWAITING_FETCH
        assert item.payload["diagnosis"] == "blocked_or_denied"
        assert pipeline_context.sources.get("test-source").fetcher_type == FetcherType.PUPPETEER

    def test_not_found_is_permanent(self, pipeline_context):
        item_id = _queued(pipeline_context)

        result = AnalysisWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert result.failed == 1
        assert item.stage == PipelineStage.FAILED
        assert item.payload["failed_from"] == "discovered"

    def test_server_error_is_retried_later(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (503, "Service Unavailable")
        item_id = _queued(pipeline_context)

        result = AnalysisWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert result.failed == 1
        assert item.stage == PipelineStage.DISCOVERED
        assert item.attempts == 1
        assert item.next_attempt_at is not None
        assert item.last_error == "HTTP 503"

    def test_unknown_source_fails_permanently(self, pipeline_context):
        item_id = _queued(pipeline_context, source_id="ghost")

        result = AnalysisWorker(pipeline_context)(limit=5)

        assert result.failed == 1
        assert result.details == [{"item_id": item_id, "error": "unknown source"}]
        assert pipeline_context.queue.get(item_id).stage == PipelineStage.FAILED


# =============================================================================
# EXTRACTION
# =============================================================================


class TestExtractionWorker:
    """Tests for ExtractionWorker."""

    def test_extracts_and_enriches(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (200, JSON_LD_HTML)
        pipeline_context.venues.add("Paradiso", "Amsterdam", VenueMatch(lat=52.36, lng=4.88, place_id="osm:1"))
        item_id = _queued(pipeline_context, PipelineStage.AWAITING_FETCH)

        result = ExtractionWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert result.succeeded == 1
        assert item.stage == PipelineStage.READY_TO_PERSIST
        [event] = item.payload["events"]
        assert event["name"] == "Jazz Night"
        assert event["source_url"] == "https://venue.example/events/jazz-night"
        assert event["coordinates"] == {"lat": 52.36, "lng": 4.88}
        assert event["place_id"] == "osm:1"

        history = pipeline_context.sources.get("test-source").history
        assert history.total_runs == 1
        assert history.consecutive_failures == 0

    def test_throttle_sized_to_claimed_items(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (200, JSON_LD_HTML)
        _queued(pipeline_context, PipelineStage.AWAITING_FETCH)
        taken = []

        ExtractionWorker(pipeline_context, throttle=lambda n: taken.append(n) or 0.0)(limit=5)

        assert taken == [1]

    def test_empty_claim_takes_no_tokens(self, pipeline_context):
        taken = []
        result = ExtractionWorker(pipeline_context, throttle=taken.append)(limit=5)
        assert result.processed == 0
        assert taken == []

    def test_strategy_gets_default_politeness_delay(self, pipeline_context, create_source):
        pipeline_context.politeness_delay_s = 0.75
        strategy = pipeline_context.strategy_for(create_source())
        assert strategy._limiter.min_delay_s == 0.75

    def test_routes_through_source_fetcher(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (200, JSON_LD_HTML)
        pipeline_context.sources.get("test-source").fetcher_type = FetcherType.SCRAPINGBEE
        _queued(pipeline_context, PipelineStage.AWAITING_FETCH)

        ExtractionWorker(pipeline_context)(limit=5)

        assert pipeline_context.router.requested == [FetcherType.SCRAPINGBEE]

    def test_zero_events_is_transient(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (200, PLAIN_HTML)
        item_id = _queued(pipeline_context, PipelineStage.AWAITING_FETCH)

        result = ExtractionWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert result.failed == 1
        assert item.stage == PipelineStage.AWAITING_FETCH
        assert item.last_error == ZERO_EVENTS_ERROR
        assert pipeline_context.sources.get("test-source").history.consecutive_failures == 1

    def test_client_error_is_permanent(self, pipeline_context):
        item_id = _queued(pipeline_context, PipelineStage.AWAITING_FETCH)

        ExtractionWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert item.stage == PipelineStage.FAILED
        assert item.payload["failed_from"] == "awaiting_fetch"

    def test_server_error_is_transient(self, pipeline_context, fake_engine):
        fake_engine.pages[SOURCE_URL] = (500, "oops")
        item_id = _queued(pipeline_context, PipelineStage.AWAITING_FETCH)

        ExtractionWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert item.stage == PipelineStage.AWAITING_FETCH
        assert item.attempts == 1

    def test_enrich_keeps_existing_coordinates(self, pipeline_context, create_event):
        pipeline_context.venues.add("Test Venue", "Amsterdam", VenueMatch(lat=1.0, lng=1.0))
        event = create_event(coordinates={"lat": 52.0, "lng": 4.0})

        enriched = ExtractionWorker(pipeline_context).enrich(event)

        assert enriched.coordinates.lat == 52.0

    def test_enrich_survives_lookup_errors(self, pipeline_context, create_event):
        class Broken:
            def lookup(self, name, city):
                raise RuntimeError("geocoder down")

        pipeline_context.venues = Broken()
        event = create_event()
        assert ExtractionWorker(pipeline_context).enrich(event) is event


# =============================================================================
# PERSISTENCE
# =============================================================================


class TestPersistenceWorker:
    """Tests for PersistenceWorker."""

    def test_indexes_and_logs_run(self, pipeline_context, event_store, create_event):
        payload = {"events": [create_event(name="Jazz Night").model_dump(mode="json")]}
        item_id = _queued(pipeline_context, PipelineStage.READY_TO_PERSIST, payload)

        result = PersistenceWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert result.succeeded == 1
        assert item.stage == PipelineStage.INDEXED
        assert item.retired
        assert item.payload["stats"]["inserted"] == 1
        assert len(event_store) == 1

        [record] = pipeline_context.run_log.records
        assert record.status == "success"
        assert record.source_id == "test-source"
        assert record.inserted == 1

    def test_second_pass_skips_duplicates(self, pipeline_context, event_store, create_event):
        payload = {"events": [create_event().model_dump(mode="json")]}
        _queued(pipeline_context, PipelineStage.READY_TO_PERSIST, payload)
        PersistenceWorker(pipeline_context)(limit=5)

        _queued(pipeline_context, PipelineStage.READY_TO_PERSIST, payload)
        result = PersistenceWorker(pipeline_context)(limit=5)

        assert result.details[0]["skipped"] == 1
        assert len(event_store) == 1

    def test_invalid_payload_is_transient(self, pipeline_context):
        item_id = _queued(pipeline_context, PipelineStage.READY_TO_PERSIST, {"events": [{"name": "x"}]})

        result = PersistenceWorker(pipeline_context)(limit=5)

        item = pipeline_context.queue.get(item_id)
        assert result.failed == 1
        assert item.stage == PipelineStage.READY_TO_PERSIST
        assert item.attempts == 1
        assert pipeline_context.run_log.records == []


# =============================================================================
# REPAIR
# =============================================================================


class TestRepairWorker:
    """Tests for RepairWorker self-healing."""

    @pytest.fixture
    def broken_source(self, pipeline_context, create_source):
        source = create_source(dom_selectors=[".gone", ".agenda-item"], feed_discovery=False)
        source.history.consecutive_failures = 3
        pipeline_context.sources.save(source)
        return source

    def test_repair_rewrites_source(self, pipeline_context, fake_engine, broken_source):
        fake_engine.pages[SOURCE_URL] = (200, DOM_HTML)
        failed = _queued(pipeline_context)
        pipeline_context.queue.record_failure(failed, "HTTP 500", permanent=True)

        result = RepairWorker(pipeline_context)(limit=5)

        assert result.succeeded == 1
        assert result.details[0]["changes"] == [
            "fetcher static -> puppeteer",
            "dropped selectors ['.gone']",
            "preferred strategy -> dom",
            "reset 1 failed item(s)",
        ]
        source = pipeline_context.sources.get("test-source")
        assert source.fetcher_type == FetcherType.PUPPETEER
        assert source.dom_selectors == [".agenda-item"]
        assert source.preferred_strategy == ExtractionStrategy.DOM
        assert source.history.consecutive_failures == 0

        item = pipeline_context.queue.get(failed)
        assert item.stage == PipelineStage.DISCOVERED
        assert item.attempts == 0

    def test_unreachable_source_still_upgraded(self, pipeline_context, broken_source):
        changes = RepairWorker(pipeline_context).repair(broken_source)

        assert changes == ["fetcher static -> puppeteer"]
        assert broken_source.dom_selectors == [".gone", ".agenda-item"]
        assert broken_source.history.consecutive_failures == 0

    def test_healthy_sources_left_alone(self, pipeline_context):
        result = RepairWorker(pipeline_context)(limit=5)
        assert result.processed == 0
