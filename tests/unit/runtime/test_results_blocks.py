"""
Unit tests for FetchResult helpers and block classification.
"""

import pytest

from event_ingest.runtime.blocks import classify_blocks
from event_ingest.runtime.results import BlockSignal, EngineError, FetchResult


class TestFetchResult:
    """Tests for FetchResult status helpers."""

    def test_ok(self):
        assert FetchResult(final_url="u", status_code=200).ok
        assert FetchResult(final_url="u", status_code=301).ok
        assert not FetchResult(final_url="u", status_code=404).ok

    def test_error_is_never_ok(self):
        result = FetchResult(final_url="u", status_code=200, error=EngineError("timeout", "slow"))
        assert not result.ok
        assert result.short_error() == "timeout: slow"

    @pytest.mark.parametrize("status,expected", [(404, True), (403, True), (429, False), (500, False)])
    def test_is_client_error(self, status, expected):
        assert FetchResult(final_url="u", status_code=status).is_client_error is expected

    def test_is_retryable_follows_error(self):
        result = FetchResult(final_url="u", error=EngineError("connection", "reset", is_retryable=True))
        assert result.is_retryable
        assert FetchResult(final_url="u", status_code=503).is_retryable

    def test_short_error(self):
        assert FetchResult(final_url="u", status_code=502).short_error() == "HTTP 502"
        assert FetchResult(final_url="u").short_error() == "Unknown Error"
        assert FetchResult(final_url="u", status_code=200).short_error() == ""


class TestClassifyBlocks:
    def test_captcha(self):
        assert classify_blocks("<p>Please complete the CAPTCHA</p>") == [BlockSignal.CAPTCHA_PRESENT]

    def test_multiple_signals(self):
        signals = classify_blocks("Access denied. Verify you are human.")
        assert BlockSignal.CAPTCHA_PRESENT in signals
        assert BlockSignal.LIKELY_BLOCKED in signals

    def test_clean_page(self):
        assert classify_blocks("<h1>Agenda</h1>") == []
        assert classify_blocks(None) == []

    def test_login_gate(self):
        assert classify_blocks("Log in to see the agenda") == [BlockSignal.LOGIN_REQUIRED]


class TestFetchResultConversions:
    def test_is_blocked(self):
        assert FetchResult(final_url="u", status_code=200, block_signals=[BlockSignal.LIKELY_BLOCKED]).is_blocked
        assert not FetchResult(final_url="u", status_code=200).is_blocked

    def test_to_response(self):
        response = FetchResult(final_url="u", status_code=404, text="gone").to_response()
        assert (response.html, response.status, response.ok) == ("gone", 404, False)

    def test_transport_failure_is_status_zero(self):
        response = FetchResult(final_url="u", error=EngineError("timeout", "slow")).to_response()
        assert response.status == 0
        assert response.html == ""
