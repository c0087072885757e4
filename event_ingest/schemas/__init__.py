"""Shared data models for the ingestion core."""

from event_ingest.schemas.event import (
    Coordinates,
    RawEventCard,
    ScrapedEvent,
    TimeMode,
)
from event_ingest.schemas.pipeline import (
    ExtractionStrategy,
    FetcherType,
    PipelineQueueItem,
    PipelineStage,
    ScraperSource,
    SourceHistory,
)

__all__ = [
    "Coordinates",
    "ExtractionStrategy",
    "FetcherType",
    "PipelineQueueItem",
    "PipelineStage",
    "RawEventCard",
    "ScrapedEvent",
    "ScraperSource",
    "SourceHistory",
    "TimeMode",
]
