"""
Unit tests for the event and pipeline schemas.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from event_ingest.schemas.event import Coordinates, ScrapedEvent, TimeMode
from event_ingest.schemas.pipeline import FetcherType, PipelineStage, ScraperSource, SourceHistory

NOW = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)


class TestSourceHistory:
    """Tests for the rolling success statistics."""

    def test_first_success_sets_averages(self):
        history = SourceHistory()
        history.record_success(12, NOW)

        assert history.total_runs == 1
        assert history.success_rate == 1.0
        assert history.avg_events_found == 12.0
        assert history.last_success_at == NOW

    def test_failures_build_a_streak(self):
        history = SourceHistory()
        history.record_success(10, NOW)
        history.record_failure()
        history.record_failure()

        assert history.consecutive_failures == 2
        assert history.total_runs == 3
        assert history.success_rate == pytest.approx(1 / 3)
        assert history.avg_events_found == 10.0

    def test_success_resets_streak(self):
        history = SourceHistory(consecutive_failures=4)
        history.record_success(2, NOW)
        assert history.consecutive_failures == 0

    def test_success_rate_bounds(self):
        with pytest.raises(ValidationError):
            SourceHistory(success_rate=1.5)


class TestEnums:
    def test_fetcher_cost_order(self):
        assert FetcherType.STATIC.cost_rank < FetcherType.PUPPETEER.cost_rank
        assert FetcherType.PLAYWRIGHT.cost_rank < FetcherType.SCRAPINGBEE.cost_rank

    @pytest.mark.parametrize(
        "stage,terminal",
        [(PipelineStage.INDEXED, True), (PipelineStage.FAILED, True), (PipelineStage.AWAITING_FETCH, False)],
    )
    def test_terminal_stages(self, stage, terminal):
        assert stage.is_terminal is terminal


class TestScraperSource:
    def test_defaults(self, create_source):
        source = create_source()
        assert source.strategy == "waterfall"
        assert source.fetcher_type == FetcherType.STATIC
        assert source.default_time_mode == TimeMode.FIXED
        assert source.feed_discovery

    def test_urls_default_to_source_url(self, create_source):
        assert create_source().urls() == ["https://venue.example/agenda"]

    def test_target_urls_win(self, create_source):
        source = create_source(target_urls=["https://venue.example/a", "https://venue.example/b"])
        assert source.urls() == ["https://venue.example/a", "https://venue.example/b"]

    def test_enum_fields_parse_strings(self, create_source):
        source = create_source(fetcher_type="scrapingbee", preferred_strategy="feed", default_time_mode="window")
        assert source.fetcher_type == FetcherType.SCRAPINGBEE
        assert source.preferred_strategy.value == "feed"
        assert source.default_time_mode == TimeMode.WINDOW


class TestScrapedEvent:
    def test_coordinates_bounds(self):
        with pytest.raises(ValidationError):
            Coordinates(lat=91, lng=0)

    def test_json_dump_round_trips_enums(self, create_event):
        event = create_event(time_mode=TimeMode.RECURRING, coordinates={"lat": 52.37, "lng": 4.89})
        data = event.model_dump(mode="json")

        assert data["time_mode"] == "recurring"
        assert ScrapedEvent.model_validate(data) == event
