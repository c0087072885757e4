"""
event_ingest.diagnostics.analyzer

Fetcher routing: pick the cheapest fetcher likely to get real content.

Signals come from three axes of the HTML (JS-render fingerprints, anti-bot
fingerprints, static-friendly fingerprints), from response quality, and from
the source's history. Each fetcher starts from a small baseline favoring
cheaper options; positive signal weights accumulate on the fetcher they
point at, negative ones on static.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any

from event_ingest.schemas.pipeline import FetcherType, SourceHistory

from .signals import SignalType

FETCHER_COST_ORDER: tuple[FetcherType, ...] = tuple(FetcherType)

BASELINE_SCORES: dict[FetcherType, float] = {
    FetcherType.STATIC: 0.3,
    FetcherType.PUPPETEER: 0.1,
    FetcherType.PLAYWRIGHT: 0.05,
    FetcherType.SCRAPINGBEE: 0.0,
}

DOWNGRADE_MIN_CONFIDENCE = 0.7
STATIC_MIN_CONFIDENCE = 0.6
JS_HEAVY_MIN_SCORE = 0.5
FAILURE_STREAK = 3
MIN_BODY_CHARS = 1000
MIN_SHELL_TEXT_CHARS = 200

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class AnalyzerSignal:
    type: SignalType
    weight: float
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "weight": self.weight, "detail": self.detail}


@dataclass
class AnalyzerResult:
    recommended_fetcher: FetcherType
    confidence: float
    signals: list[AnalyzerSignal] = field(default_factory=list)
    reasoning: str = ""
    should_upgrade: bool = False
    should_downgrade: bool = False
    scores: dict[FetcherType, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommended_fetcher": self.recommended_fetcher.value,
            "confidence": round(self.confidence, 4),
            "signals": [s.to_dict() for s in self.signals],
            "reasoning": self.reasoning,
            "should_upgrade": self.should_upgrade,
            "should_downgrade": self.should_downgrade,
        }


def _signal(signals: list[AnalyzerSignal], kind: SignalType, detail: str, weight: float | None = None) -> None:
    signals.append(AnalyzerSignal(type=kind, weight=kind.weight if weight is None else weight, detail=detail))


def _any(html: str, *needles: str) -> bool:
    return any(n in html for n in needles)


# ============================================================================
# SIGNAL COLLECTORS
# ============================================================================


def js_framework_signals(html: str, signals: list[AnalyzerSignal]) -> None:
    if _any(html, 'id="root"', 'id="__next"', "data-reactroot", "__REACT_ROOT__"):
        _signal(signals, SignalType.REACT_ROOT, "React application detected")
    if "__NEXT_DATA__" in html:
        _signal(signals, SignalType.NEXT_DATA, "Next.js hydration data present")
    if 'id="app"' in html and "v-" in html:
        _signal(signals, SignalType.VUE_APP, "Vue.js application detected")
    if "__NUXT__" in html:
        _signal(signals, SignalType.NUXT_DATA, "Nuxt.js hydration data present")
    if _any(html, "ng-app", "ng-version", "_ngcontent"):
        _signal(signals, SignalType.ANGULAR_APP, "Angular application detected")
    if _any(html, "svelte-", "__svelte"):
        _signal(signals, SignalType.SVELTE_APP, "Svelte application detected")
    if _any(html, "data-src=", "lazyload", 'loading="lazy"'):
        _signal(signals, SignalType.LAZY_LOADING, "Lazy loading detected")
    if _any(html, "infinite-scroll", "loadMore", "load-more"):
        _signal(signals, SignalType.INFINITE_SCROLL, "Infinite scroll pattern detected")
    if _any(html, "pushState", "replaceState", "history.push"):
        _signal(signals, SignalType.CLIENT_ROUTER, "Client-side routing detected")


def anti_bot_signals(html: str, signals: list[AnalyzerSignal]) -> None:
    if _any(html, "cf-browser-verification", "cloudflare", "cf-ray"):
        _signal(signals, SignalType.CLOUDFLARE, "Cloudflare protection detected")
    if _any(html, "recaptcha", "grecaptcha"):
        _signal(signals, SignalType.RECAPTCHA, "reCAPTCHA challenge detected")
    if _any(html, "bot-detect", "are you human", "verify you are not a robot"):
        _signal(signals, SignalType.BOT_DETECTION, "Bot detection mechanism found")


def static_signals(html: str, signals: list[AnalyzerSignal]) -> None:
    if "application/ld+json" in html:
        _signal(signals, SignalType.JSON_LD, "JSON-LD structured data present (static-friendly)")
    if _any(html, "application/rss+xml", "application/atom+xml"):
        _signal(signals, SignalType.RSS_FEED, "RSS/Atom feed available (static-friendly)")
    # template comments survive server rendering, client bundles strip them
    if len(html) > 5000 and html.count("<!--") > 3:
        _signal(signals, SignalType.SERVER_RENDERED, "Server-rendered template markers found")
    if _any(html, "wp-content", "wordpress"):
        _signal(signals, SignalType.WORDPRESS, "WordPress CMS detected (static-friendly)")


def response_quality_signals(html: str, signals: list[AnalyzerSignal]) -> None:
    if len(html) < MIN_BODY_CHARS:
        _signal(signals, SignalType.EMPTY_BODY, f"Very short response ({len(html)} chars) - likely JS-rendered")
        return
    text = _WS_RE.sub(" ", _TAG_RE.sub("", html)).strip()
    if len(text) < MIN_SHELL_TEXT_CHARS:
        _signal(signals, SignalType.EMPTY_BODY, "HTML shell with no meaningful text content")


def history_signals(history: SourceHistory, signals: list[AnalyzerSignal]) -> None:
    if history.consecutive_failures >= FAILURE_STREAK:
        _signal(
            signals,
            SignalType.CONSECUTIVE_FAILURES,
            f"{history.consecutive_failures} consecutive failures",
            weight=SignalType.CONSECUTIVE_FAILURES.weight * history.consecutive_failures,
        )
    if history.success_rate < 0.5 and history.avg_events_found > 0:
        _signal(
            signals,
            SignalType.CONSECUTIVE_FAILURES,
            f"Low success rate: {history.success_rate * 100:.0f}%",
            weight=0.4,
        )


# ============================================================================
# RECOMMENDATION
# ============================================================================


def score_signals(signals: list[AnalyzerSignal]) -> dict[FetcherType, float]:
    scores = dict(BASELINE_SCORES)
    for s in signals:
        if s.weight > 0:
            scores[s.type.target] += s.weight
        else:
            scores[FetcherType.STATIC] += abs(s.weight)
    return scores


def recommend(
    signals: list[AnalyzerSignal],
    current: FetcherType = FetcherType.STATIC,
) -> AnalyzerResult:
    scores = score_signals(signals)

    # Walk in cost order; a fetcher must beat the leader by more than float
    # noise, so ties stay with the cheaper one.
    recommended = FetcherType.STATIC
    top = scores[recommended]
    for fetcher in FETCHER_COST_ORDER:
        if scores[fetcher] > top and not math.isclose(scores[fetcher], top):
            recommended, top = fetcher, scores[fetcher]

    total = sum(scores.values())
    confidence = top / total if total > 0 else 0.5

    top_signals = sorted(signals, key=lambda s: abs(s.weight), reverse=True)[:3]
    if top_signals:
        reasoning = "Based on: " + "; ".join(s.detail for s in top_signals)
    else:
        reasoning = "No strong signals detected, defaulting to static fetch"

    return AnalyzerResult(
        recommended_fetcher=recommended,
        confidence=confidence,
        signals=signals,
        reasoning=reasoning,
        should_upgrade=recommended.cost_rank > current.cost_rank,
        should_downgrade=recommended.cost_rank < current.cost_rank and confidence > DOWNGRADE_MIN_CONFIDENCE,
        scores=scores,
    )


def analyze(html: str, history: SourceHistory | None = None) -> AnalyzerResult:
    """
    Recommend a fetcher for a page, optionally informed by source history.

    ``should_upgrade``/``should_downgrade`` compare against
    ``history.fetcher_type`` (static when no history is given).
    """
    html = html or ""
    signals: list[AnalyzerSignal] = []
    js_framework_signals(html, signals)
    anti_bot_signals(html, signals)
    static_signals(html, signals)
    response_quality_signals(html, signals)
    if history is not None:
        history_signals(history, signals)

    current = history.fetcher_type if history is not None else FetcherType.STATIC
    return recommend(signals, current)


# ============================================================================
# QUICK CHECKS
# ============================================================================


def is_js_heavy(html: str) -> bool:
    signals: list[AnalyzerSignal] = []
    js_framework_signals(html, signals)
    response_quality_signals(html, signals)
    return sum(s.weight for s in signals if s.weight > 0) > JS_HEAVY_MIN_SCORE


def needs_anti_bot(html: str) -> bool:
    signals: list[AnalyzerSignal] = []
    anti_bot_signals(html, signals)
    return bool(signals)


def can_use_static(html: str) -> bool:
    result = analyze(html)
    return result.recommended_fetcher == FetcherType.STATIC and result.confidence > STATIC_MIN_CONFIDENCE


def upgrade_fetcher(current: FetcherType) -> FetcherType:
    """Next more capable fetcher; the most capable stays put."""
    idx = FETCHER_COST_ORDER.index(current)
    return FETCHER_COST_ORDER[min(idx + 1, len(FETCHER_COST_ORDER) - 1)]


def downgrade_fetcher(current: FetcherType) -> FetcherType:
    idx = FETCHER_COST_ORDER.index(current)
    return FETCHER_COST_ORDER[max(idx - 1, 0)]
