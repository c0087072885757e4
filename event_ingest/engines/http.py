"""
event_ingest.engines.http

Fetch engines built on ``requests``. One pooled session per engine; every
GET goes through the politeness limiter and the shared retry policy, and
failures come back inside the ``FetchResult`` instead of as exceptions.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import requests
from requests.adapters import HTTPAdapter

from event_ingest.runtime.blocks import classify_blocks
from event_ingest.runtime.resilience import RateLimiter, RetryPolicy
from event_ingest.runtime.results import EngineError, FetchResult, RequestMeta

from .base import BaseEngine, EngineContext, Headers, random_user_agent

logger = logging.getLogger(__name__)


@dataclass
class HttpEngineOptions:
    timeout_s: float = 15.0
    verify_ssl: bool = True

    max_retries: int = 3
    backoff_mode: str = "exp"  # exp | fixed | none
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0

    # Minimum spacing between requests on this engine.
    min_delay_s: float | None = None
    jitter_s: float | None = None

    # None picks a fresh browser UA for every request.
    user_agent: str | None = None

    pool_connections: int = 10
    pool_maxsize: int = 20


class HttpEngine(BaseEngine):
    """Plain GETs over a pooled ``requests.Session``."""

    def __init__(
        self,
        *,
        options: HttpEngineOptions | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "http",
    ) -> None:
        super().__init__(name=name)
        self.options = opts = options or HttpEngineOptions()
        self._sleep = sleep
        self._session = session or requests.Session()
        pooled = HTTPAdapter(pool_connections=opts.pool_connections, pool_maxsize=opts.pool_maxsize)
        for scheme in ("http://", "https://"):
            self._session.mount(scheme, pooled)

        self._limiter = RateLimiter(min_delay_s=opts.min_delay_s, jitter_s=opts.jitter_s, sleep=sleep)
        self.retry_policy = RetryPolicy(
            max_retries=opts.max_retries,
            backoff_mode=opts.backoff_mode,
            base_delay_s=opts.base_delay_s,
            max_delay_s=opts.max_delay_s,
        )

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Hooks for engines that tunnel through another endpoint
    # ------------------------------------------------------------------

    def _prepare(self, url: str, ctx: EngineContext) -> tuple[str, dict[str, Any]]:
        """Return the URL to request and the query params to send with it."""
        return url, {}

    def _finalize(self, url: str, resp: requests.Response, result: FetchResult) -> FetchResult:
        return result

    # ------------------------------------------------------------------

    def _request_meta(self, ctx: EngineContext) -> RequestMeta:
        agent = ctx.user_agent or self.options.user_agent or random_user_agent()
        sent: Headers = {"User-Agent": agent}
        for key, value in (ctx.headers or {}).items():
            sent[str(key)] = str(value)
        return RequestMeta(headers=sent, proxy=ctx.proxy, user_agent=agent)

    def _attempt(
        self, url: str, ctx: EngineContext, meta: RequestMeta, trace: list[dict[str, Any]]
    ) -> FetchResult:
        """Issue one GET. Transport errors become a result with ``error`` set."""
        request_url, params = self._prepare(url, ctx)
        self._limiter.wait()
        started = time.monotonic()
        try:
            resp = self._session.get(
                request_url,
                params=params or None,
                headers=meta.headers,
                cookies=ctx.cookies or None,
                proxies={"http": ctx.proxy, "https": ctx.proxy} if ctx.proxy else None,
                timeout=float(ctx.timeout_s or self.options.timeout_s),
                verify=self.options.verify_ssl,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            return FetchResult(
                final_url=url,
                elapsed_ms=(time.monotonic() - started) * 1000,
                request_meta=meta,
                error=EngineError(type=type(exc).__name__, message=str(exc), is_retryable=True),
                engine_trace=trace,
            )

        if not resp.encoding:
            resp.encoding = "utf-8"
        received = {str(k): str(v) for k, v in resp.headers.items()}
        result = FetchResult(
            final_url=str(resp.url),
            status_code=int(resp.status_code),
            content_type=received.get("Content-Type"),
            text=resp.text or "",
            elapsed_ms=(time.monotonic() - started) * 1000,
            headers=received,
            request_meta=meta,
            engine_trace=trace,
        )
        result = self._finalize(url, resp, result)
        result.block_signals = classify_blocks(result.text)
        if result.is_blocked:
            logger.info(f"Block signals on {url}: {[s.value for s in result.block_signals]}")
        return result

    def get(self, url: str, *, ctx: EngineContext | None = None) -> FetchResult:
        """
        GET ``url`` with bounded retries.

        429/5xx and transport errors are retried with backoff; any other
        non-2xx/3xx response is returned as-is. Never raises.
        """
        ctx = ctx or EngineContext()
        meta = self._request_meta(ctx)
        trace: list[dict[str, Any]] = []
        attempts = self.retry_policy.max_retries + 1

        for attempt in range(attempts):
            result = self._attempt(url, ctx, meta, trace)
            if result.ok:
                return result

            entry: dict[str, Any] = {"attempt": attempt, "ok": False}
            if result.error:
                entry["error"] = result.error.type
            else:
                entry["status"] = result.status_code
            trace.append(entry)

            if attempt + 1 >= attempts or not result.is_retryable:
                return result
            delay = self.retry_policy.compute_backoff_s(attempt)
            logger.debug(f"Retrying {url} in {delay:.2f}s ({result.short_error()})")
            if delay > 0:
                self._sleep(delay)

        # Only reachable with a negative retry budget.
        return FetchResult(
            final_url=url,
            error=EngineError(type="HttpEngineError", message="No attempts made"),
            engine_trace=trace,
        )


@dataclass
class ProxyEngineOptions:
    """Anti-bot proxy API settings (ScrapingBee-compatible query interface)."""

    endpoint: str = "https://app.scrapingbee.com/api/v1/"
    api_key: str = ""
    render_js: bool = True
    premium_proxy: bool = False
    country_code: str | None = None


class ProxyEngine(HttpEngine):
    """
    Routes requests through a scraping proxy API.

    The target URL travels as a query parameter; the proxy answers with the
    final HTML and reports the origin's status in a response header.
    """

    def __init__(
        self,
        *,
        proxy_options: ProxyEngineOptions,
        options: HttpEngineOptions | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not proxy_options.api_key:
            raise ValueError("ProxyEngine requires an api_key")
        super().__init__(options=options, session=session, sleep=sleep, name="proxy")
        self.proxy_options = proxy_options

    def _prepare(self, url: str, ctx: EngineContext) -> tuple[str, dict[str, Any]]:
        params: dict[str, Any] = {
            "api_key": self.proxy_options.api_key,
            "url": url,
            "render_js": "true" if self.proxy_options.render_js else "false",
            "premium_proxy": "true" if self.proxy_options.premium_proxy else "false",
        }
        if self.proxy_options.country_code:
            params["country_code"] = self.proxy_options.country_code
        return self.proxy_options.endpoint, params

    def _finalize(self, url: str, resp: requests.Response, result: FetchResult) -> FetchResult:
        # Never leak the api key through final_url.
        result.final_url = resp.headers.get("Spb-Resolved-Url") or url
        initial_status = resp.headers.get("Spb-Initial-Status-Code")
        if result.ok and initial_status and initial_status.isdigit():
            result.status_code = int(initial_status)
        return result
