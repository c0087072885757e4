"""
event_ingest.engines.router

Maps a source's FetcherType to a configured engine.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from event_ingest.configs.settings import Settings
from event_ingest.schemas.pipeline import FetcherType

from .base import BaseEngine
from .http import HttpEngine, HttpEngineOptions, ProxyEngine, ProxyEngineOptions

logger = logging.getLogger(__name__)


class EngineRouter:
    """
    Resolve fetcher types to engines.

    Render fetchers (puppeteer, playwright) have no in-process engine; they
    resolve to the proxy engine (which renders JS remotely) when one is
    configured, else to the static engine.
    """

    def __init__(
        self,
        static: BaseEngine,
        engines: Mapping[FetcherType, BaseEngine] | None = None,
    ) -> None:
        self.static = static
        self._engines: dict[FetcherType, BaseEngine] = {FetcherType.STATIC: static}
        self._engines.update(engines or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineRouter:
        options = HttpEngineOptions(
            timeout_s=settings.HTTP_TIMEOUT_S,
            max_retries=settings.HTTP_MAX_RETRIES,
            base_delay_s=settings.HTTP_BACKOFF_BASE_S,
            max_delay_s=settings.HTTP_BACKOFF_CAP_S,
        )
        engines: dict[FetcherType, BaseEngine] = {}
        if settings.SCRAPER_PROXY_API_KEY is not None:
            proxy_options = ProxyEngineOptions(api_key=settings.SCRAPER_PROXY_API_KEY.get_secret_value())
            if settings.SCRAPER_PROXY_URL:
                proxy_options.endpoint = settings.SCRAPER_PROXY_URL
            proxy = ProxyEngine(proxy_options=proxy_options, options=options)
            for fetcher in (FetcherType.PUPPETEER, FetcherType.PLAYWRIGHT, FetcherType.SCRAPINGBEE):
                engines[fetcher] = proxy
        return cls(HttpEngine(options=options), engines)

    def engine_for(self, fetcher_type: FetcherType) -> BaseEngine:
        engine = self._engines.get(fetcher_type)
        if engine is None:
            logger.warning(f"No engine configured for {fetcher_type.value}, falling back to static")
            return self.static
        return engine

    def close(self) -> None:
        for engine in {id(e): e for e in self._engines.values()}.values():
            engine.close()
