"""
event_ingest.engines.base

The fetch engine contract. Every engine returns a ``FetchResult``, so the
router can hand any fetcher tier to a worker without special cases.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from event_ingest.runtime.results import FetchResponse, FetchResult

Headers = dict[str, str]

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_2_1) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
)


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


@dataclass
class EngineContext:
    """Per-request overrides; unset fields fall back to the engine defaults."""

    timeout_s: float | None = None
    user_agent: str | None = None
    proxy: str | None = None
    headers: Headers | None = None
    cookies: dict[str, str] | None = None


class BaseEngine(ABC):
    """Common interface for all engines."""

    def __init__(self, *, name: str = "base") -> None:
        self.name = name

    @abstractmethod
    def get(self, url: str, *, ctx: EngineContext | None = None) -> FetchResult:
        raise NotImplementedError

    def close(self) -> None:
        """Release pooled sessions. No-op by default."""
        return


def engine_fetcher(
    engine: BaseEngine,
    ctx: EngineContext | None = None,
) -> Callable[[str], FetchResponse]:
    """
    Adapt an engine to the ``fetch(url) -> FetchResponse`` capability used by
    the extraction waterfall. Transport failures come back as status 0.
    """

    def fetch(url: str) -> FetchResponse:
        return engine.get(url, ctx=ctx).to_response()

    return fetch
