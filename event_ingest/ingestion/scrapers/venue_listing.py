"""
Venue Listing Strategy.

For sources that list places rather than dated happenings (food halls,
markets, galleries). Entries are open-ended ``window`` events, may have no
start time, and are matched on place id before URL or title.
"""

from __future__ import annotations

from event_ingest.ingestion.collaborators import Filter
from event_ingest.normalization.transforms import is_valid_http_url, parse_iso
from event_ingest.schemas.event import ScrapedEvent, TimeMode

from .base_scraper import DEDUP_COLUMNS, DedupeResult
from .registry import register_strategy
from .waterfall_scraper import WaterfallScraperStrategy

MIN_VENUE_NAME_LENGTH = 2


@register_strategy("venue_listing")
class VenueListingStrategy(WaterfallScraperStrategy):
    name = "venue_listing"
    time_mode = TimeMode.WINDOW

    def validate_event(self, event: ScrapedEvent) -> str | None:
        if not event.name or len(event.name.strip()) < MIN_VENUE_NAME_LENGTH:
            return f"Venue name is required and must be at least {MIN_VENUE_NAME_LENGTH} characters"
        if not event.city:
            return "City is required"
        if event.start_time and parse_iso(event.start_time) is None:
            return "Invalid start_time format (expected ISO 8601)"
        if event.ticket_url and not is_valid_http_url(event.ticket_url):
            return "Invalid ticket_url format"
        return None

    def deduplicate_event(self, event: ScrapedEvent) -> DedupeResult:
        if event.place_id:
            rows = self.store.select([Filter("place_id", "eq", event.place_id)], columns=DEDUP_COLUMNS, limit=1)
            if rows:
                return DedupeResult(existing_id=rows[0]["id"], needs_update=self.has_event_changed(rows[0], event))
        return super().deduplicate_event(event)
