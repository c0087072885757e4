"""Extraction waterfall: hydration, structured data, feeds, DOM fallback."""

from event_ingest.extraction.base import (
    WATERFALL_ORDER,
    ExtractionContext,
    ExtractionResult,
    WaterfallResult,
    resolve_url,
    soft_repair_json,
)
from event_ingest.extraction.dom_fallback import extract_from_dom
from event_ingest.extraction.feeds import extract_from_feeds, parse_ics_feed, parse_rss_feed
from event_ingest.extraction.hydration import extract_from_hydration
from event_ingest.extraction.structured_data import extract_from_structured_data
from event_ingest.extraction.waterfall import run_waterfall, strategy_order

__all__ = [
    "WATERFALL_ORDER",
    "ExtractionContext",
    "ExtractionResult",
    "WaterfallResult",
    "extract_from_dom",
    "extract_from_feeds",
    "extract_from_hydration",
    "extract_from_structured_data",
    "parse_ics_feed",
    "parse_rss_feed",
    "resolve_url",
    "run_waterfall",
    "soft_repair_json",
    "strategy_order",
]
