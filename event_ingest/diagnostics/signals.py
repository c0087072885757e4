"""
event_ingest.diagnostics.signals

Standardized labels for fetch diagnoses and fetcher-routing signals.
"""

from enum import Enum

from event_ingest.schemas.pipeline import FetcherType


class DiagnosisLabel(str, Enum):
    OK = "ok"
    JS_REQUIRED_OR_MISSING_CONTENT = "js_required_or_missing_content"
    RATE_LIMITED = "rate_limited"
    REQUIRES_AUTH = "requires_auth"
    CHALLENGE_DETECTED = "challenge_detected"
    BLOCKED_OR_DENIED = "blocked_or_denied"
    NOT_FOUND = "not_found"
    UNKNOWN_ERROR = "unknown_error"


class NextStep(str, Enum):
    TRY_HTTP_TUNING = "try_http_tuning"
    SWITCH_TO_RENDERER = "switch_to_renderer"
    SWITCH_TO_PROXY = "switch_to_proxy"
    USE_AUTH = "use_auth"
    RETIRE_URL = "retire_url"
    PROCEED = "proceed"


class SignalType(str, Enum):
    """
    Fingerprints the analyzer looks for.

    Each carries a weight and the fetcher it pushes toward. Negative weights
    are static-friendly and always credit the static fetcher.
    """

    # JS-heavy (render)
    REACT_ROOT = "REACT_ROOT"
    VUE_APP = "VUE_APP"
    ANGULAR_APP = "ANGULAR_APP"
    SVELTE_APP = "SVELTE_APP"
    NEXT_DATA = "NEXT_DATA"
    NUXT_DATA = "NUXT_DATA"
    LAZY_LOADING = "LAZY_LOADING"
    INFINITE_SCROLL = "INFINITE_SCROLL"
    CLIENT_ROUTER = "CLIENT_ROUTER"

    # anti-bot (proxy)
    CLOUDFLARE = "CLOUDFLARE"
    RECAPTCHA = "RECAPTCHA"
    BOT_DETECTION = "BOT_DETECTION"

    # static-friendly
    JSON_LD = "JSON_LD"
    RSS_FEED = "RSS_FEED"
    SERVER_RENDERED = "SERVER_RENDERED"
    WORDPRESS = "WORDPRESS"

    # failure patterns
    CONSECUTIVE_FAILURES = "CONSECUTIVE_FAILURES"
    EMPTY_BODY = "EMPTY_BODY"
    REDIRECT_LOOP = "REDIRECT_LOOP"

    @property
    def weight(self) -> float:
        return SIGNAL_WEIGHTS[self][0]

    @property
    def target(self) -> FetcherType:
        return SIGNAL_WEIGHTS[self][1]


_RENDER = FetcherType.PUPPETEER
_PROXY = FetcherType.SCRAPINGBEE
_STATIC = FetcherType.STATIC

SIGNAL_WEIGHTS: dict[SignalType, tuple[float, FetcherType]] = {
    SignalType.REACT_ROOT: (0.9, _RENDER),
    SignalType.VUE_APP: (0.9, _RENDER),
    SignalType.ANGULAR_APP: (0.9, _RENDER),
    SignalType.SVELTE_APP: (0.85, _RENDER),
    SignalType.NEXT_DATA: (0.7, _RENDER),
    SignalType.NUXT_DATA: (0.7, _RENDER),
    SignalType.LAZY_LOADING: (0.6, _RENDER),
    SignalType.INFINITE_SCROLL: (0.7, _RENDER),
    SignalType.CLIENT_ROUTER: (0.8, _RENDER),
    SignalType.CLOUDFLARE: (0.95, _PROXY),
    SignalType.RECAPTCHA: (0.9, _PROXY),
    SignalType.BOT_DETECTION: (0.85, _PROXY),
    SignalType.JSON_LD: (-0.5, _STATIC),
    SignalType.RSS_FEED: (-0.6, _STATIC),
    SignalType.SERVER_RENDERED: (-0.4, _STATIC),
    SignalType.WORDPRESS: (-0.3, _STATIC),
    SignalType.CONSECUTIVE_FAILURES: (0.3, _RENDER),
    SignalType.EMPTY_BODY: (0.5, _RENDER),
    SignalType.REDIRECT_LOOP: (0.4, _PROXY),
}
