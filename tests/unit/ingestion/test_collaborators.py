"""
Unit tests for the in-memory collaborators and the Nominatim venue lookup.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from event_ingest.errors import PersistenceError
from event_ingest.ingestion.collaborators import (
    Filter,
    InMemoryEventStore,
    InMemoryRunLog,
    InMemorySourceRegistry,
    NominatimVenueLookup,
    ScraperRunRecord,
    StaticVenueLookup,
    VenueMatch,
    escape_like,
    like_to_regex,
)


class TestFilter:
    def test_rejects_unknown_op(self):
        with pytest.raises(ValueError):
            Filter("title", "contains", "x")

    @pytest.mark.parametrize(
        "pattern,value,expected",
        [
            ("jazz night", "Jazz Night", True),
            ("jazz%", "Jazz Night", True),
            ("j_zz night", "Jazz Night", True),
            ("jazz", "Jazz Night", False),
            ("50% off", "50% OFF", True),
            ("100\\% jazz", "100% Jazz", True),
            ("100\\% jazz", "100 Years of Jazz", False),
            ("jazz\\_night", "Jazz-Night", False),
            ("a\\\\b", "a\\b", True),
        ],
    )
    def test_like_to_regex(self, pattern, value, expected):
        assert bool(like_to_regex(pattern).match(value)) is expected

    @pytest.mark.parametrize("text", ["100% Jazz", "Jazz_Night", r"back\slash", "plain"])
    def test_escaped_text_matches_only_itself(self, text):
        pattern = like_to_regex(escape_like(text))
        assert pattern.match(text.upper())
        assert not pattern.match(text + "!")

    def test_escape_like(self):
        assert escape_like("100% a_b") == "100\\% a\\_b"


class TestInMemoryEventStore:
    """Tests for InMemoryEventStore."""

    def test_insert_and_get(self, event_store):
        record_id = event_store.insert({"title": "Jazz Night"})
        assert event_store.get(record_id)["title"] == "Jazz Night"
        assert len(event_store) == 1

    def test_update_unknown_raises(self, event_store):
        with pytest.raises(PersistenceError):
            event_store.update("missing", {"title": "x"})

    def test_select_filters_and_columns(self):
        store = InMemoryEventStore(
            [
                {"id": "1", "title": "Jazz Night", "event_date": "2026-05-01T20:00:00"},
                {"id": "2", "title": "Jazz Night", "event_date": "2026-05-02T20:00:00"},
                {"id": "3", "title": "Rock Night", "event_date": "2026-05-01T21:00:00"},
            ]
        )
        rows = store.select(
            [
                Filter("title", "ilike", "jazz night"),
                Filter("event_date", "gte", "2026-05-01T00:00:00"),
                Filter("event_date", "lte", "2026-05-01T23:59:59"),
            ],
            columns=["event_date"],
        )
        assert rows == [{"id": "1", "event_date": "2026-05-01T20:00:00"}]

    def test_select_limit(self):
        store = InMemoryEventStore([{"city": "amsterdam"} for _ in range(5)])
        assert len(store.select([Filter("city", "eq", "amsterdam")], limit=2)) == 2

    def test_none_matches_only_eq(self):
        store = InMemoryEventStore([{"id": "1", "place_id": None}])
        assert store.select([Filter("place_id", "eq", None)])
        assert not store.select([Filter("place_id", "gte", "a")])

    def test_datetime_filter_values(self):
        store = InMemoryEventStore([{"id": "1", "event_date": "2026-05-01T20:00:00"}])
        cutoff = datetime(2026, 5, 1, 0, 0)
        assert store.select([Filter("event_date", "gte", cutoff)])

    def test_range_compares_instants_across_offsets(self):
        # 00:30 at +02:00 is 22:30 UTC on the previous day.
        stored = datetime(2026, 5, 2, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        store = InMemoryEventStore([{"id": "1", "event_date": stored}])
        day = [
            Filter("event_date", "gte", "2026-05-01T00:00:00+00:00"),
            Filter("event_date", "lte", "2026-05-01T23:59:59+00:00"),
        ]
        assert store.select(day)

    def test_upsert(self, event_store):
        first = event_store.upsert({"source_url": "https://x.example/e", "title": "A"}, "source_url")
        second = event_store.upsert({"source_url": "https://x.example/e", "title": "B"}, "source_url")
        assert first == second
        assert event_store.get(first)["title"] == "B"
        assert len(event_store) == 1


class TestVenueLookups:
    def test_static_lookup_case_insensitive(self):
        venues = StaticVenueLookup({("Paradiso", "Amsterdam"): VenueMatch(52.36, 4.88, "osm:way/1")})
        assert venues.lookup("paradiso", "AMSTERDAM").place_id == "osm:way/1"
        assert venues.lookup("Paradiso", "Utrecht") is None
        assert venues.calls == 2

    def test_static_lookup_city_wildcard(self):
        venues = StaticVenueLookup()
        venues.add("Melkweg", "", VenueMatch(52.36, 4.88))
        assert venues.lookup("Melkweg", "Amsterdam") is not None

    def test_nominatim_maps_osm_ids_and_caches(self):
        location = MagicMock(latitude=52.3622, longitude=4.8838, address="Paradiso, Amsterdam")
        location.raw = {"osm_type": "way", "osm_id": 123, "place_id": 999}
        geocoder = MagicMock()
        geocoder.geocode.return_value = location

        venues = NominatimVenueLookup(user_agent="test", min_delay_s=0, geocoder=geocoder)
        match = venues.lookup("Paradiso", "Amsterdam")
        venues.lookup("paradiso", "amsterdam")

        assert match == VenueMatch(lat=52.3622, lng=4.8838, place_id="osm:way/123", display_name="Paradiso, Amsterdam")
        geocoder.geocode.assert_called_once_with("Paradiso, Amsterdam", exactly_one=True)

    def test_nominatim_no_result(self):
        geocoder = MagicMock()
        geocoder.geocode.return_value = None
        venues = NominatimVenueLookup(user_agent="test", min_delay_s=0, geocoder=geocoder)
        assert venues.lookup("Nowhere", "Amsterdam") is None
        assert venues.lookup("", "Amsterdam") is None
        assert geocoder.geocode.call_count == 1


class TestSourceRegistry:
    def test_list_broken_worst_first(self, create_source):
        ok = create_source(id="ok")
        bad = create_source(id="bad")
        worse = create_source(id="worse")
        disabled = create_source(id="off", enabled=False)
        bad.history.consecutive_failures = 3
        worse.history.consecutive_failures = 7
        disabled.history.consecutive_failures = 9

        registry = InMemorySourceRegistry([ok, bad, worse, disabled])

        assert [s.id for s in registry.list_broken(3)] == ["worse", "bad"]
        assert len(registry.list_enabled()) == 3


class TestRunLog:
    def test_record_to_dict(self):
        record = ScraperRunRecord(
            strategy="waterfall",
            status="success",
            source_id="paradiso",
            inserted=2,
            completed_at=datetime(2026, 5, 1, tzinfo=timezone.utc),
        )
        data = record.to_dict()
        assert data["completed_at"] == "2026-05-01T00:00:00+00:00"
        assert data["inserted"] == 2

    def test_in_memory_run_log(self):
        run_log = InMemoryRunLog()
        run_log.log_run(ScraperRunRecord(strategy="waterfall", status="error", error="boom"))
        assert run_log.records[0].error == "boom"
