"""
Pipeline Orchestrator.

Drives queue items through the stage workers under a throttled schedule.

Modes:
- status          read-only snapshot of the queue
- discovery_only  enqueue sources, nothing else
- run_stage       invoke exactly one worker once
- run_all         one sequential pass over every stage with a backlog
- auto_process    bounded loop of passes until the backlog drains
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from event_ingest.configs.settings import Settings
from event_ingest.errors import UnknownStageError
from event_ingest.monitoring.logging import with_context
from event_ingest.runtime.resilience import TokenBucket
from event_ingest.schemas.pipeline import PipelineStage

from .workers import (
    AnalysisWorker,
    DiscoveryWorker,
    ExtractionWorker,
    PersistenceWorker,
    PipelineContext,
    RepairWorker,
    WorkerResult,
)

logger = logging.getLogger(__name__)

Worker = Callable[[int], WorkerResult]


class OrchestratorMode(str, Enum):
    STATUS = "status"
    DISCOVERY_ONLY = "discovery_only"
    RUN_STAGE = "run_stage"
    RUN_ALL = "run_all"
    AUTO_PROCESS = "auto_process"


class WorkerKind(str, Enum):
    DISCOVERY = "discovery"
    ANALYSIS = "analysis"
    EXTRACTION = "extraction"
    PERSISTENCE = "persistence"
    REPAIR = "repair"


WORKER_CLASSES: dict[WorkerKind, type] = {
    WorkerKind.DISCOVERY: DiscoveryWorker,
    WorkerKind.ANALYSIS: AnalysisWorker,
    WorkerKind.EXTRACTION: ExtractionWorker,
    WorkerKind.PERSISTENCE: PersistenceWorker,
    WorkerKind.REPAIR: RepairWorker,
}

# Names operators type on the command line, including the historical
# agent names of each worker.
STAGE_ALIASES: dict[str, WorkerKind] = {
    "discovery": WorkerKind.DISCOVERY,
    "discover": WorkerKind.DISCOVERY,
    "scout": WorkerKind.DISCOVERY,
    "analysis": WorkerKind.ANALYSIS,
    "analyze": WorkerKind.ANALYSIS,
    "strategist": WorkerKind.ANALYSIS,
    "extraction": WorkerKind.EXTRACTION,
    "extract": WorkerKind.EXTRACTION,
    "enrich": WorkerKind.EXTRACTION,
    "curator": WorkerKind.EXTRACTION,
    "persistence": WorkerKind.PERSISTENCE,
    "persist": WorkerKind.PERSISTENCE,
    "index": WorkerKind.PERSISTENCE,
    "vectorizer": WorkerKind.PERSISTENCE,
    "repair": WorkerKind.REPAIR,
    "heal": WorkerKind.REPAIR,
}

BACKLOG_STAGES = (
    PipelineStage.DISCOVERED,
    PipelineStage.AWAITING_FETCH,
    PipelineStage.READY_TO_PERSIST,
)


def resolve_stage(name: str | WorkerKind) -> WorkerKind:
    """Map a stage name or alias to a worker kind."""
    if isinstance(name, WorkerKind):
        return name
    kind = STAGE_ALIASES.get((name or "").strip().lower().replace("-", "_"))
    if kind is None:
        raise UnknownStageError(f"Unknown stage '{name}'. Valid: {', '.join(sorted(STAGE_ALIASES))}")
    return kind


@dataclass
class OrchestratorOptions:
    max_cycles: int = 10
    throttle_pct: float = 80.0
    geocode_max_rps: float = 1.0
    discovery_batch_size: int = 50
    analysis_batch_size: int = 30
    extraction_batch_size: int = 5
    persist_batch_size: int = 20
    repair_batch_size: int = 2
    discovery_floor: int = 10
    repair_every: int = 5
    # Longest single pause while every backlog item waits on a retry.
    max_idle_wait_s: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> OrchestratorOptions:
        return cls(
            max_cycles=settings.MAX_CYCLES,
            throttle_pct=settings.THROTTLE_PCT,
            geocode_max_rps=settings.GEOCODE_MAX_RPS,
            analysis_batch_size=settings.ANALYSIS_BATCH_SIZE,
            extraction_batch_size=settings.EXTRACTION_BATCH_SIZE,
            persist_batch_size=settings.PERSIST_BATCH_SIZE,
            repair_batch_size=settings.REPAIR_BATCH_SIZE,
            discovery_floor=settings.DISCOVERY_FLOOR,
            max_idle_wait_s=settings.MAX_IDLE_WAIT_S,
        )


@dataclass
class OrchestratorReport:
    mode: OrchestratorMode
    success: bool = True
    pipeline_stats: dict[str, int] = field(default_factory=dict)
    actions_taken: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cycles_run: int = 0
    items_processed: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["mode"] = self.mode.value
        out["duration_ms"] = round(self.duration_ms, 2)
        return out


class PipelineOrchestrator:
    """
    Enum-dispatched stage runner.

    The geocoding token bucket is created once per orchestrator and shared by
    every cycle, so the budget carries across passes.
    """

    def __init__(
        self,
        ctx: PipelineContext,
        options: OrchestratorOptions | None = None,
        *,
        bucket: TokenBucket | None = None,
        workers: Mapping[WorkerKind, Worker] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ctx = ctx
        self._sleep = sleep
        self.options = options or OrchestratorOptions()
        self.bucket = bucket or TokenBucket.for_budget(self.options.geocode_max_rps, self.options.throttle_pct)
        self.workers: dict[WorkerKind, Worker] = {
            kind: cls(ctx, throttle=self._throttle) if kind == WorkerKind.EXTRACTION else cls(ctx)
            for kind, cls in WORKER_CLASSES.items()
        }
        self.workers.update(workers or {})
        self.logger = with_context(logger, run_id=uuid.uuid4().hex[:12])

    # ========================================================================
    # ENTRY POINT
    # ========================================================================

    def run(
        self,
        mode: OrchestratorMode | str,
        *,
        stage: str | WorkerKind | None = None,
        max_cycles: int | None = None,
        heal: bool = False,
    ) -> OrchestratorReport:
        mode = OrchestratorMode(mode)
        report = OrchestratorReport(mode=mode)
        t0 = time.time()

        if mode == OrchestratorMode.RUN_STAGE:
            if stage is None:
                raise UnknownStageError("run_stage requires a stage")
            kind = resolve_stage(stage)
            self._invoke(kind, report)
        elif mode == OrchestratorMode.DISCOVERY_ONLY:
            self._invoke(WorkerKind.DISCOVERY, report)
        elif mode == OrchestratorMode.RUN_ALL:
            self._run_pass(report, discover=True)
        elif mode == OrchestratorMode.AUTO_PROCESS:
            self._auto_process(report, max_cycles or self.options.max_cycles, heal)

        report.pipeline_stats = self.stats()
        report.success = not report.errors
        report.duration_ms = (time.time() - t0) * 1000
        self.logger.info(
            f"Orchestrator {mode.value} finished: {report.cycles_run} cycle(s), "
            f"{report.items_processed} item(s), {len(report.errors)} error(s)",
            extra={"payload": report.to_dict()},
        )
        return report

    def stats(self) -> dict[str, int]:
        return {stage.value: count for stage, count in self.ctx.queue.stage_counts().items()}

    def backlog(self) -> int:
        counts = self.ctx.queue.stage_counts()
        return sum(counts.get(s, 0) for s in BACKLOG_STAGES)

    # ========================================================================
    # DISPATCH
    # ========================================================================

    def _limit(self, kind: WorkerKind) -> int:
        return {
            WorkerKind.DISCOVERY: self.options.discovery_batch_size,
            WorkerKind.ANALYSIS: self.options.analysis_batch_size,
            WorkerKind.EXTRACTION: self.options.extraction_batch_size,
            WorkerKind.PERSISTENCE: self.options.persist_batch_size,
            WorkerKind.REPAIR: self.options.repair_batch_size,
        }[kind]

    def _invoke(self, kind: WorkerKind, report: OrchestratorReport) -> WorkerResult | None:
        """Run one worker; exceptions land in ``report.errors``."""
        limit = self._limit(kind)
        log = with_context(self.logger, stage=kind.value)
        try:
            result = self.workers[kind](limit)
        except Exception as e:
            log.error(f"Worker {kind.value} failed: {e}", exc_info=True)
            report.errors.append(f"{kind.value}: {e}")
            return None

        report.items_processed += result.processed
        if result.processed:
            report.actions_taken.append(
                f"{kind.value}: {result.succeeded}/{result.processed} succeeded, {result.failed} failed"
            )
        return result

    def _throttle(self, claimed: int) -> float:
        """Take one geocoding token per claimed extraction item."""
        waited = self.bucket.acquire(claimed)
        if waited > 0:
            self.logger.debug(f"Throttled extraction of {claimed} item(s) for {waited:.2f}s")
        return waited

    def _run_pass(self, report: OrchestratorReport, *, discover: bool) -> None:
        counts = self.ctx.queue.stage_counts()
        if discover and counts[PipelineStage.DISCOVERED] < self.options.discovery_floor:
            self._invoke(WorkerKind.DISCOVERY, report)
            counts = self.ctx.queue.stage_counts()
        if counts[PipelineStage.DISCOVERED]:
            self._invoke(WorkerKind.ANALYSIS, report)
            counts = self.ctx.queue.stage_counts()
        if counts[PipelineStage.AWAITING_FETCH]:
            self._invoke(WorkerKind.EXTRACTION, report)
            counts = self.ctx.queue.stage_counts()
        if counts[PipelineStage.READY_TO_PERSIST]:
            self._invoke(WorkerKind.PERSISTENCE, report)

    def _auto_process(self, report: OrchestratorReport, max_cycles: int, heal: bool) -> None:
        if heal:
            self._invoke(WorkerKind.REPAIR, report)

        for cycle in range(1, max_cycles + 1):
            if self.backlog() == 0:
                self.logger.info(f"Backlog empty, stopping after {report.cycles_run} cycle(s)")
                break
            self._wait_until_due()
            report.cycles_run = cycle
            self._run_pass(report, discover=False)
            if cycle % self.options.repair_every == 0:
                self._invoke(WorkerKind.REPAIR, report)

    def _wait_until_due(self) -> None:
        """Sleep towards the earliest retry when no backlog item is claimable yet."""
        wait_s = self.ctx.queue.seconds_until_due(BACKLOG_STAGES)
        if not wait_s:
            return
        pause = min(wait_s, self.options.max_idle_wait_s)
        self.logger.info(f"Nothing due for {wait_s:.0f}s, pausing {pause:.0f}s")
        self._sleep(pause)
