# event_ingest/schemas/event.py
"""
Event candidate schemas.

Two shapes flow through the ingestion core:

- RawEventCard: what an extractor pulls out of a single HTML document or feed.
  Free-text fields, nothing parsed yet, immutable once created.
- ScrapedEvent: a normalized record ready for validation, deduplication and
  persistence by a scraper strategy.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

RAW_HTML_MAX_CHARS = 5000


class TimeMode(str, Enum):
    """How an event's timing is interpreted downstream."""

    FIXED = "fixed"
    WINDOW = "window"
    RECURRING = "recurring"


class Coordinates(BaseModel):
    """Geographic coordinates of a venue."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


# ============================================================================
# RAW EXTRACTION OUTPUT
# ============================================================================


class RawEventCard(BaseModel):
    """
    Event candidate produced by any extraction strategy.

    ``raw_html`` keeps a bounded debug snapshot of the source markup (or the
    source JSON for structured strategies).
    """

    model_config = ConfigDict(frozen=True)

    title: str
    date: str = ""
    location: str = ""
    description: str = ""
    detail_url: str = ""
    image_url: str | None = None
    raw_html: str = ""
    category_hint: str | None = None

    @field_validator("raw_html")
    @classmethod
    def _bound_raw_html(cls, value: str) -> str:
        return value[:RAW_HTML_MAX_CHARS]


# ============================================================================
# NORMALIZED CANDIDATE
# ============================================================================


class ScrapedEvent(BaseModel):
    """
    Normalized event record ready for persistence.

    Times are ISO-8601 strings; validation of their format happens in the
    scraper strategy so that a bad record is rejected, not raised.
    """

    name: str
    category: str
    source_url: str
    description: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    venue_name: str | None = None
    city: str | None = None
    address: str | None = None
    ticket_url: str | None = None
    website_url: str | None = None
    price_range: str | None = None
    image_url: str | None = None
    time_mode: TimeMode | None = None
    coordinates: Coordinates | None = None
    place_id: str | None = None
    raw_html: str | None = None
