"""Scraper strategies. Importing this package registers the built-in strategies."""

from event_ingest.ingestion.scrapers.base_scraper import (
    BaseScraperStrategy,
    DedupeResult,
    FetchOutcome,
    ProcessStats,
    ScraperRunResult,
)
from event_ingest.ingestion.scrapers.registry import STRATEGY_REGISTRY, build_strategy, register_strategy
from event_ingest.ingestion.scrapers.venue_listing import VenueListingStrategy
from event_ingest.ingestion.scrapers.waterfall_scraper import WaterfallScraperStrategy, card_to_event

__all__ = [
    "STRATEGY_REGISTRY",
    "BaseScraperStrategy",
    "DedupeResult",
    "FetchOutcome",
    "ProcessStats",
    "ScraperRunResult",
    "VenueListingStrategy",
    "WaterfallScraperStrategy",
    "build_strategy",
    "card_to_event",
    "register_strategy",
]
