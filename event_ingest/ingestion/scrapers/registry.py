"""
Scraper strategy registry.

Maps the ``strategy`` name in a source's configuration to a strategy class.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from event_ingest.schemas.pipeline import ScraperSource

if TYPE_CHECKING:
    from .base_scraper import BaseScraperStrategy

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY = "waterfall"

STRATEGY_REGISTRY: dict[str, type[BaseScraperStrategy]] = {}


def register_strategy(name: str):
    """
    Decorator to register a strategy class.

    Usage:
        @register_strategy("waterfall")
        class WaterfallScraperStrategy(BaseScraperStrategy):
            ...
    """

    def decorator(cls: type[BaseScraperStrategy]) -> type[BaseScraperStrategy]:
        STRATEGY_REGISTRY[name] = cls
        return cls

    return decorator


def build_strategy(source: ScraperSource, **kwargs: Any) -> BaseScraperStrategy:
    """
    Instantiate the strategy configured for ``source``.

    Unknown strategy names fall back to the generic waterfall strategy.
    Keyword arguments are passed to the strategy constructor.
    """
    cls = STRATEGY_REGISTRY.get(source.strategy)
    if cls is None:
        logger.warning(f"Unknown strategy '{source.strategy}' for {source.id}, using {DEFAULT_STRATEGY}")
        cls = STRATEGY_REGISTRY[DEFAULT_STRATEGY]
    return cls(source, **kwargs)
