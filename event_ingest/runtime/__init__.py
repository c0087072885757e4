"""Runtime primitives shared by engines and scrapers."""

from event_ingest.runtime.blocks import classify_blocks
from event_ingest.runtime.resilience import RateLimiter, RetryPolicy, TokenBucket, is_retryable_status
from event_ingest.runtime.results import (
    BlockSignal,
    EngineError,
    FetchResponse,
    FetchResult,
    RequestMeta,
)

__all__ = [
    "BlockSignal",
    "EngineError",
    "FetchResponse",
    "FetchResult",
    "RateLimiter",
    "RequestMeta",
    "RetryPolicy",
    "TokenBucket",
    "classify_blocks",
    "is_retryable_status",
]
