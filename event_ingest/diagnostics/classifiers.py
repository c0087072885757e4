"""
event_ingest.diagnostics.classifiers

Heuristics for classifying an HTTP response after a static fetch.

Workers use the diagnosis to decide between retrying later, escalating the
source's fetcher and retiring the queue item.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .signals import DiagnosisLabel, NextStep

CHALLENGE_PATTERNS = (
    "captcha",
    "recaptcha",
    "turnstile",
    "cf-turnstile",
    "verify you are human",
    "unusual traffic",
)

JS_REQUIRED_PATTERNS = ("javascript is required", "enable javascript")

# A 200 body shorter than this is an app shell or an error stub, not an agenda.
MIN_CONTENT_LENGTH = 500

PERMANENT_LABELS = (DiagnosisLabel.NOT_FOUND, DiagnosisLabel.REQUIRES_AUTH)


@dataclass(frozen=True)
class Diagnosis:
    label: DiagnosisLabel
    reason: str
    next_step: NextStep
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_permanent(self) -> bool:
        """Failures that will not fix themselves by retrying the same request."""
        return self.label in PERMANENT_LABELS


def _status_diagnosis(status_code: int) -> Diagnosis | None:
    details = {"status_code": status_code}
    if status_code == 401:
        return Diagnosis(DiagnosisLabel.REQUIRES_AUTH, "Received 401 Unauthorized", NextStep.USE_AUTH, details)
    if status_code == 403:
        return Diagnosis(DiagnosisLabel.BLOCKED_OR_DENIED, "Received 403 Forbidden", NextStep.SWITCH_TO_PROXY, details)
    if status_code in (404, 410):
        return Diagnosis(
            DiagnosisLabel.NOT_FOUND, f"Received {status_code}; page is gone", NextStep.RETIRE_URL, details
        )
    return None


def diagnose_http_response(
    status_code: int | None, headers: dict[str, str] | None = None, text: str | None = None
) -> Diagnosis:
    """
    Classify a raw HTTP response.

    Checks run in order: transport failure, rate limiting, challenge pages,
    auth / deny / gone statuses, then thin 200 bodies. Anything left over is
    OK for 2xx and UNKNOWN_ERROR otherwise.
    """
    if not status_code:
        return Diagnosis(
            DiagnosisLabel.UNKNOWN_ERROR, "No HTTP response (transport error)", NextStep.TRY_HTTP_TUNING
        )

    body = (text or "").lower()
    header_map = {k.lower(): v.lower() for k, v in (headers or {}).items()}

    if status_code == 429 or "retry-after" in header_map:
        return Diagnosis(
            DiagnosisLabel.RATE_LIMITED,
            "Received 429 status or Retry-After header",
            NextStep.TRY_HTTP_TUNING,
            {"status_code": status_code, "retry_after": header_map.get("retry-after")},
        )

    challenge = next((p for p in CHALLENGE_PATTERNS if p in body), None)
    if challenge:
        return Diagnosis(
            DiagnosisLabel.CHALLENGE_DETECTED,
            f"Found challenge pattern: {challenge}",
            NextStep.SWITCH_TO_PROXY,
            {"pattern": challenge},
        )

    by_status = _status_diagnosis(status_code)
    if by_status:
        return by_status

    if status_code == 200 and (len(body) < MIN_CONTENT_LENGTH or any(p in body for p in JS_REQUIRED_PATTERNS)):
        return Diagnosis(
            DiagnosisLabel.JS_REQUIRED_OR_MISSING_CONTENT,
            "Response too short or contains JS-requirement message",
            NextStep.SWITCH_TO_RENDERER,
            {"len": len(body)},
        )

    if 200 <= status_code < 300:
        return Diagnosis(DiagnosisLabel.OK, "Status 2xx", NextStep.PROCEED, {"status_code": status_code})

    return Diagnosis(
        DiagnosisLabel.UNKNOWN_ERROR,
        f"Unhandled status code: {status_code}",
        NextStep.TRY_HTTP_TUNING,
        {"status_code": status_code},
    )
