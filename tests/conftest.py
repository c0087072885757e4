"""
Shared pytest fixtures for the event ingestion test suite.

Provides factory fixtures for sources, scraped events and raw cards, a
scriptable engine that serves canned pages, and a few HTML documents that
exercise each extraction strategy.
"""

from datetime import datetime, timezone
from typing import Optional

import pytest

from event_ingest.engines.base import BaseEngine, EngineContext
from event_ingest.ingestion.collaborators import (
    InMemoryEventStore,
    InMemoryRunLog,
    InMemorySourceRegistry,
    StaticVenueLookup,
)
from event_ingest.ingestion.queue import InMemoryQueueStore
from event_ingest.ingestion.workers import PipelineContext
from event_ingest.runtime.results import EngineError, FetchResult
from event_ingest.schemas.event import RawEventCard, ScrapedEvent
from event_ingest.schemas.pipeline import ScraperSource


# =============================================================================
# ENGINE DOUBLE
# =============================================================================


class FakeEngine(BaseEngine):
    """
    Engine serving canned responses keyed by URL.

    Values are ``(status, body)`` tuples or an ``EngineError`` for transport
    failures. Unknown URLs answer 404.
    """

    def __init__(self, pages: Optional[dict] = None) -> None:
        super().__init__(name="fake")
        self.pages = dict(pages or {})
        self.calls: list[str] = []

    def get(self, url: str, *, ctx: Optional[EngineContext] = None) -> FetchResult:
        self.calls.append(url)
        page = self.pages.get(url, (404, "Not Found"))
        if isinstance(page, EngineError):
            return FetchResult(final_url=url, error=page)
        status, body = page
        return FetchResult(final_url=url, status_code=status, text=body)


class FakeRouter:
    """Router double: every fetcher type resolves to the same engine."""

    def __init__(self, engine: BaseEngine) -> None:
        self.static = engine
        self.requested = []

    def engine_for(self, fetcher_type):
        self.requested.append(fetcher_type)
        return self.static

    def close(self) -> None:
        return


# =============================================================================
# HTML FIXTURES
# =============================================================================


JSON_LD_HTML = """
<html><head>
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "MusicEvent", "name": "Jazz Night",
 "startDate": "2026-05-01T20:00:00", "location": {"@type": "Place", "name": "Paradiso"},
 "url": "/events/jazz-night"}
</script>
</head><body><h1>Agenda</h1></body></html>
"""

RSS_LINK_HTML = """
<html><head>
<link rel="alternate" type="application/rss+xml" href="/feed.xml">
</head><body><p>Nothing else here</p></body></html>
"""

RSS_FEED = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Agenda</title>
<item>
  <title>Poetry Evening</title>
  <link>https://library.example/events/poetry</link>
  <pubDate>Fri, 15 May 2026 19:30:00 +0200</pubDate>
  <description>Readings by local poets</description>
</item>
</channel></rss>
"""

PLAIN_HTML = "<html><body><h1>Welcome</h1><p>About us</p></body></html>"

DOM_HTML = """
<html><body>
<div class="agenda-item">
  <h3>Open Mic</h3>
  <time datetime="2026-06-02T21:00:00">Tue 2 Jun</time>
  <span class="venue">De Nieuwe Anita</span>
  <a href="/agenda/open-mic">More</a>
</div>
<div class="agenda-item">
  <h3>Film Club</h3>
  <span class="date">3 juni 2026</span>
  <a href="/agenda/film-club">More</a>
</div>
</body></html>
"""


# =============================================================================
# FACTORY FIXTURES
# =============================================================================


@pytest.fixture
def create_source():
    """
    Return a function that creates ScraperSource objects with sensible defaults.

    Example:
        source = create_source(id="melkweg", preferred_strategy="hydration")
    """

    def _create_source(**kwargs) -> ScraperSource:
        defaults = {
            "id": "test-source",
            "name": "Test Source",
            "url": "https://venue.example/agenda",
            "city": "Amsterdam",
            "category": "music",
        }
        defaults.update(kwargs)
        return ScraperSource(**defaults)

    return _create_source


@pytest.fixture
def create_event():
    """
    Return a function that creates ScrapedEvent objects with sensible defaults.

    Example:
        event = create_event(name="My Event", start_time="2026-05-01T20:00:00")
    """

    def _create_event(
        name: str = "Test Event",
        start_time: Optional[str] = "2026-05-01T20:00:00",
        **kwargs,
    ) -> ScrapedEvent:
        defaults = {
            "name": name,
            "category": "music",
            "source_url": "https://venue.example/events/test-event",
            "start_time": start_time,
            "city": "Amsterdam",
            "venue_name": "Test Venue",
            "description": "A night of music",
        }
        defaults.update(kwargs)
        return ScrapedEvent(**defaults)

    return _create_event


@pytest.fixture
def create_card():
    """Return a function that creates RawEventCard objects."""

    def _create_card(title: str = "Test Event", **kwargs) -> RawEventCard:
        return RawEventCard(title=title, **kwargs)

    return _create_card


@pytest.fixture
def fake_engine():
    """Engine with no pages; tests add entries to ``fake_engine.pages``."""
    return FakeEngine()


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
def fixed_now():
    return datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def pipeline_context(fake_engine, event_store, create_source):
    """PipelineContext wired with in-memory collaborators and one source."""
    return PipelineContext(
        queue=InMemoryQueueStore(max_attempts=3),
        sources=InMemorySourceRegistry([create_source()]),
        router=FakeRouter(fake_engine),
        store=event_store,
        venues=StaticVenueLookup(),
        run_log=InMemoryRunLog(),
        fetch_concurrency=2,
    )
