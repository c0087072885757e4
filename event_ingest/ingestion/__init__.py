"""Queue-driven ingestion: scraper strategies, stage workers, orchestrator."""

from event_ingest.ingestion.collaborators import (
    Filter,
    InMemoryEventStore,
    InMemoryRunLog,
    InMemorySourceRegistry,
    ScraperRunRecord,
    StaticVenueLookup,
    VenueMatch,
)
from event_ingest.ingestion.orchestrator import (
    OrchestratorMode,
    OrchestratorOptions,
    OrchestratorReport,
    PipelineOrchestrator,
    WorkerKind,
    resolve_stage,
)
from event_ingest.ingestion.queue import InMemoryQueueStore
from event_ingest.ingestion.workers import PipelineContext, WorkerResult

__all__ = [
    "Filter",
    "InMemoryEventStore",
    "InMemoryQueueStore",
    "InMemoryRunLog",
    "InMemorySourceRegistry",
    "OrchestratorMode",
    "OrchestratorOptions",
    "OrchestratorReport",
    "PipelineContext",
    "PipelineOrchestrator",
    "ScraperRunRecord",
    "StaticVenueLookup",
    "VenueMatch",
    "WorkerKind",
    "WorkerResult",
    "resolve_stage",
]
