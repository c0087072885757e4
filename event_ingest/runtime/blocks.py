"""
event_ingest.runtime.blocks

Spot captcha walls, access denials and login gates in fetched bodies.
"""

from __future__ import annotations

import re

from .results import BlockSignal

# Matched case-insensitively against the whole body.
_BLOCK_PATTERNS: dict[BlockSignal, re.Pattern] = {
    BlockSignal.CAPTCHA_PRESENT: re.compile(
        r"\bcaptcha\b|verify you are (?:a )?human|are you a robot|cf-chl-|datadome",
        re.IGNORECASE,
    ),
    BlockSignal.LIKELY_BLOCKED: re.compile(
        r"access denied|unusual traffic|request blocked|you have been blocked",
        re.IGNORECASE,
    ),
    BlockSignal.LOGIN_REQUIRED: re.compile(
        r"login required|please log ?in|log in to (?:see|view) (?:the )?(?:agenda|events|tickets)",
        re.IGNORECASE,
    ),
}


def classify_blocks(text: str | None) -> list[BlockSignal]:
    """Block signals found in ``text``, in declaration order."""
    if not text:
        return []
    return [signal for signal, pattern in _BLOCK_PATTERNS.items() if pattern.search(text)]
