from event_ingest.engines.base import USER_AGENTS, BaseEngine, EngineContext, engine_fetcher, random_user_agent
from event_ingest.engines.http import HttpEngine, HttpEngineOptions, ProxyEngine, ProxyEngineOptions
from event_ingest.engines.router import EngineRouter

__all__ = [
    "USER_AGENTS",
    "BaseEngine",
    "EngineContext",
    "EngineRouter",
    "HttpEngine",
    "HttpEngineOptions",
    "ProxyEngine",
    "ProxyEngineOptions",
    "engine_fetcher",
    "random_user_agent",
]
