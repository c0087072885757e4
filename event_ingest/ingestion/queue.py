"""
event_ingest.ingestion.queue

Pipeline queue store.

Items move forward only through ``advance`` and backward/sideways only
through ``record_failure``. Transient failures schedule a retry with
exponential backoff; after ``max_attempts`` (or on a permanent failure) the
item is parked in ``failed`` and retired until ``reset_failed``.
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from event_ingest.runtime.resilience import RetryPolicy
from event_ingest.schemas.pipeline import PipelineQueueItem, PipelineStage

logger = logging.getLogger(__name__)

# Queue retries are scheduled, not slept, so the scale is minutes.
DEFAULT_QUEUE_RETRY = RetryPolicy(max_retries=3, base_delay_s=60.0, max_delay_s=3600.0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueStore(Protocol):
    def enqueue(
        self,
        source_id: str,
        source_url: str,
        *,
        priority: int = 100,
        payload: dict[str, Any] | None = None,
    ) -> PipelineQueueItem: ...

    def claim(self, stage: PipelineStage, limit: int) -> list[PipelineQueueItem]: ...

    def advance(
        self,
        item_id: str,
        stage: PipelineStage,
        payload: dict[str, Any] | None = None,
    ) -> PipelineQueueItem: ...

    def record_failure(
        self,
        item_id: str,
        error: str,
        *,
        permanent: bool = False,
        retry_stage: PipelineStage | None = None,
    ) -> PipelineQueueItem: ...

    def stage_counts(self) -> dict[PipelineStage, int]: ...

    def seconds_until_due(self, stages: Iterable[PipelineStage]) -> float | None: ...

    def reset_failed(self, source_id: str | None = None) -> int: ...

    def has_active(self, source_id: str) -> bool: ...


class InMemoryQueueStore:
    """Thread-safe in-process queue store."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        retry_policy: RetryPolicy = DEFAULT_QUEUE_RETRY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.max_attempts = max_attempts
        self.retry_policy = retry_policy
        self._clock = clock
        self._items: dict[str, PipelineQueueItem] = {}
        self._order: dict[str, int] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def _get(self, item_id: str) -> PipelineQueueItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise KeyError(f"Unknown queue item {item_id}") from None

    def get(self, item_id: str) -> PipelineQueueItem:
        with self._lock:
            return self._get(item_id).model_copy(deep=True)

    def items(self) -> list[PipelineQueueItem]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._items.values()]

    def enqueue(
        self,
        source_id: str,
        source_url: str,
        *,
        priority: int = 100,
        payload: dict[str, Any] | None = None,
    ) -> PipelineQueueItem:
        item = PipelineQueueItem(
            id=str(uuid.uuid4()),
            source_id=source_id,
            source_url=source_url,
            priority=priority,
            payload=dict(payload or {}),
        )
        with self._lock:
            self._items[item.id] = item
            self._order[item.id] = next(self._seq)
        return item.model_copy(deep=True)

    def claim(self, stage: PipelineStage, limit: int) -> list[PipelineQueueItem]:
        """
        Items in ``stage`` that are due, lowest priority value first.

        Retired items and items whose retry time is still in the future are
        skipped.
        """
        now = self._clock()
        with self._lock:
            due = [
                i
                for i in self._items.values()
                if i.stage == stage
                and not i.retired
                and (i.next_attempt_at is None or i.next_attempt_at <= now)
            ]
            due.sort(key=lambda i: (i.priority, self._order[i.id]))
            return [i.model_copy(deep=True) for i in due[: max(0, limit)]]

    def advance(
        self,
        item_id: str,
        stage: PipelineStage,
        payload: dict[str, Any] | None = None,
    ) -> PipelineQueueItem:
        with self._lock:
            item = self._get(item_id)
            if item.retired:
                raise ValueError(f"Queue item {item_id} is retired ({item.stage.value})")
            item.stage = stage
            if payload:
                item.payload.update(payload)
            item.next_attempt_at = None
            if stage == PipelineStage.INDEXED:
                item.retired = True
            return item.model_copy(deep=True)

    def record_failure(
        self,
        item_id: str,
        error: str,
        *,
        permanent: bool = False,
        retry_stage: PipelineStage | None = None,
    ) -> PipelineQueueItem:
        """
        Record a failed attempt.

        Transient failures go back to ``retry_stage`` (default: the current
        stage) with ``next_attempt_at`` pushed out by the retry policy.
        """
        with self._lock:
            item = self._get(item_id)
            item.attempts += 1
            item.last_error = error

            if permanent or item.attempts >= self.max_attempts:
                item.payload["failed_from"] = (retry_stage or item.stage).value
                item.stage = PipelineStage.FAILED
                item.retired = True
                item.next_attempt_at = None
                logger.warning(
                    f"Queue item {item_id} ({item.source_id}) parked as failed after "
                    f"{item.attempts} attempt(s): {error}"
                )
            else:
                if retry_stage is not None:
                    item.stage = retry_stage
                delay_s = self.retry_policy.compute_backoff_s(item.attempts - 1)
                item.next_attempt_at = self._clock() + timedelta(seconds=delay_s)
            return item.model_copy(deep=True)

    def stage_counts(self) -> dict[PipelineStage, int]:
        counts = {stage: 0 for stage in PipelineStage}
        with self._lock:
            for item in self._items.values():
                counts[item.stage] += 1
        return counts

    def seconds_until_due(self, stages: Iterable[PipelineStage]) -> float | None:
        """
        Seconds until the next live item in ``stages`` can be claimed.

        0 when one is due now, None when those stages hold no live items.
        """
        wanted = set(stages)
        now = self._clock()
        with self._lock:
            pending = [
                i.next_attempt_at
                for i in self._items.values()
                if i.stage in wanted and not i.retired
            ]
        if not pending:
            return None
        if any(at is None or at <= now for at in pending):
            return 0.0
        return (min(pending) - now).total_seconds()

    def reset_failed(self, source_id: str | None = None) -> int:
        """Move failed items back to the stage they failed in, with a fresh attempt budget."""
        reset = 0
        with self._lock:
            for item in self._items.values():
                if item.stage != PipelineStage.FAILED:
                    continue
                if source_id is not None and item.source_id != source_id:
                    continue
                item.stage = PipelineStage(item.payload.pop("failed_from", PipelineStage.DISCOVERED.value))
                item.retired = False
                item.attempts = 0
                item.next_attempt_at = None
                reset += 1
        return reset

    def has_active(self, source_id: str) -> bool:
        with self._lock:
            return any(i.source_id == source_id and not i.retired for i in self._items.values())
