"""Fetch diagnostics and fetcher routing."""

from event_ingest.diagnostics.analyzer import (
    FETCHER_COST_ORDER,
    AnalyzerResult,
    AnalyzerSignal,
    analyze,
    can_use_static,
    downgrade_fetcher,
    is_js_heavy,
    needs_anti_bot,
    upgrade_fetcher,
)
from event_ingest.diagnostics.classifiers import Diagnosis, diagnose_http_response
from event_ingest.diagnostics.signals import DiagnosisLabel, NextStep, SignalType

__all__ = [
    "FETCHER_COST_ORDER",
    "AnalyzerResult",
    "AnalyzerSignal",
    "Diagnosis",
    "DiagnosisLabel",
    "NextStep",
    "SignalType",
    "analyze",
    "can_use_static",
    "diagnose_http_response",
    "downgrade_fetcher",
    "is_js_heavy",
    "needs_anti_bot",
    "upgrade_fetcher",
]
