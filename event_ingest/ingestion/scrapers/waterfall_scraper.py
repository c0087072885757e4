"""
Waterfall Scraper Strategy.

Generic strategy for any configured source: fetch the target pages, run the
extraction waterfall on each one, normalize the raw cards into ScrapedEvents.
"""

from __future__ import annotations

import re
from datetime import date
from urllib.parse import urlencode, urlparse, urlunparse

from event_ingest.engines.base import engine_fetcher
from event_ingest.extraction.base import ExtractionContext, WaterfallResult, resolve_url
from event_ingest.extraction.waterfall import run_waterfall
from event_ingest.normalization.transforms import is_valid_http_url, normalize_date, strip_or_none
from event_ingest.schemas.event import RawEventCard, ScrapedEvent, TimeMode
from event_ingest.schemas.pipeline import ScraperSource

from .base_scraper import BaseScraperStrategy
from .registry import register_strategy

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _slug(text: str) -> str:
    return _SLUG_RE.sub("-", text.lower()).strip("-")[:80]


def event_source_url(card: RawEventCard, page_url: str) -> str:
    """
    URL identifying a card's event.

    Cards without their own link share the listing page URL; they get an
    ``event`` query key (title + date) so exact-URL dedup keeps them apart.
    """
    if card.detail_url:
        return resolve_url(card.detail_url, page_url)
    parts = urlparse(page_url)
    key = _slug(f"{card.title} {card.date}")
    query = "&".join(q for q in (parts.query, urlencode({"event": key})) if q)
    return urlunparse((parts.scheme, parts.netloc, parts.path, parts.params, query, ""))


def split_location(text: str) -> tuple[str | None, str | None]:
    """``"Venue, Street 1, City"`` -> (``"Venue"``, ``"Street 1, City"``)."""
    text = strip_or_none(text) or ""
    if not text:
        return None, None
    venue, _, rest = text.partition(",")
    return strip_or_none(venue), strip_or_none(rest)


def card_to_event(
    card: RawEventCard,
    source: ScraperSource,
    page_url: str,
    *,
    time_mode: TimeMode | None = None,
    reference: date | None = None,
) -> ScrapedEvent:
    """Normalize one raw card using the source's defaults."""
    venue_name, address = split_location(card.location)
    return ScrapedEvent(
        name=(card.title or "").strip(),
        category=card.category_hint or source.category,
        source_url=event_source_url(card, page_url),
        description=strip_or_none(card.description),
        start_time=normalize_date(card.date, reference=reference),
        venue_name=venue_name,
        address=address,
        city=source.city,
        image_url=card.image_url if is_valid_http_url(card.image_url) else None,
        time_mode=time_mode or source.default_time_mode,
        raw_html=card.raw_html or None,
    )


@register_strategy("waterfall")
class WaterfallScraperStrategy(BaseScraperStrategy):
    """Scrape configured URLs through hydration -> structured data -> feed -> DOM."""

    name = "waterfall"
    time_mode: TimeMode | None = None

    def extraction_context(self, page_url: str) -> ExtractionContext:
        return ExtractionContext(
            base_url=page_url,
            preferred_strategy=self.source.preferred_strategy,
            feed_discovery=self.source.feed_discovery,
            dom_selectors=self.source.dom_selectors,
            source_name=self.source.name,
            fetcher=engine_fetcher(self.engine),
        )

    def extract_page(self, html: str, url: str) -> WaterfallResult:
        return run_waterfall(html, self.extraction_context(url))

    def parse_event_list(self, html: str, url: str | None = None) -> list[ScrapedEvent]:
        page_url = url or self.source.url
        outcome = self.extract_page(html, page_url)
        return [card_to_event(c, self.source, page_url, time_mode=self.time_mode) for c in outcome.events]

    def scrape(self) -> list[ScrapedEvent]:
        """
        Fetch every target URL and parse the ones that came back.

        Raises the first fetch error when every page failed, so ``run()``
        records the source as failing instead of "0 events".
        """
        outcomes = self.fetch_many(self.source.urls())
        pages = [o for o in outcomes if o.ok]
        if not pages and outcomes:
            raise RuntimeError(f"All {len(outcomes)} page fetches failed: {outcomes[0].error}")

        events: list[ScrapedEvent] = []
        for page in pages:
            events.extend(self.parse_event_list(page.html or "", page.url))
        return events
