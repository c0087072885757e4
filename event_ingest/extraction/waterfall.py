"""
event_ingest.extraction.waterfall

Runs the extraction strategies in priority order and stops at the first one
that finds events:

    hydration -> structured_data -> feed -> dom

A preferred strategy (learned per source) is tried first; the rest keep
their relative order.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from event_ingest.schemas.pipeline import ExtractionStrategy

from .base import WATERFALL_ORDER, ExtractionContext, ExtractionResult, WaterfallResult
from .dom_fallback import extract_from_dom
from .feeds import extract_from_feeds
from .hydration import extract_from_hydration
from .structured_data import extract_from_structured_data

logger = logging.getLogger(__name__)

StrategyFn = Callable[[str, ExtractionContext], ExtractionResult]

STRATEGIES: dict[ExtractionStrategy, StrategyFn] = {
    ExtractionStrategy.HYDRATION: extract_from_hydration,
    ExtractionStrategy.STRUCTURED_DATA: extract_from_structured_data,
    ExtractionStrategy.FEED: extract_from_feeds,
    ExtractionStrategy.DOM: extract_from_dom,
}


def strategy_order(preferred: ExtractionStrategy | None = None) -> list[ExtractionStrategy]:
    if preferred is None:
        return list(WATERFALL_ORDER)
    return [preferred] + [s for s in WATERFALL_ORDER if s != preferred]


def run_waterfall(html: str, context: ExtractionContext) -> WaterfallResult:
    """
    Extract events from one HTML document.

    Every attempted strategy lands in ``strategy_trace``; only the winner's
    events are returned.
    """
    t0 = time.perf_counter()
    trace = {}
    winner: ExtractionResult | None = None

    for strategy in strategy_order(context.preferred_strategy):
        result = STRATEGIES[strategy](html, context)
        trace[strategy] = result.trace()
        if result.error:
            logger.debug(f"{strategy.value} on {context.base_url}: {result.error}")
        if result.found > 0:
            winner = result
            break

    total_ms = (time.perf_counter() - t0) * 1000
    outcome = WaterfallResult(
        winning_strategy=winner.strategy if winner else None,
        events=list(winner.events) if winner else [],
        strategy_trace=trace,
        total_time_ms=total_ms,
    )
    logger.info(
        f"Waterfall {context.source_name or context.base_url}: "
        f"{outcome.total_events} events via {outcome.winning_strategy.value if winner else 'none'} "
        f"({total_ms:.0f}ms)",
        extra={"payload": outcome.to_dict()},
    )
    return outcome
