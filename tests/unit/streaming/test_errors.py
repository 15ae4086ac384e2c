"""Unit tests for error classification."""

import pytest

from agent_chat.streaming.errors import ERROR_MESSAGES, AgentErrorCode, classify_error, error_info


class TestClassifyByStatus:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (429, AgentErrorCode.RATE_LIMIT),
            (401, AgentErrorCode.UNAUTHORIZED),
            (403, AgentErrorCode.UNAUTHORIZED),
            (408, AgentErrorCode.TIMEOUT),
            (504, AgentErrorCode.TIMEOUT),
            (500, AgentErrorCode.SERVICE_UNAVAILABLE),
            (502, AgentErrorCode.SERVICE_UNAVAILABLE),
            (503, AgentErrorCode.SERVICE_UNAVAILABLE),
        ],
    )
    def test_status_codes(self, status, expected):
        assert classify_error("HTTP error", status_code=status).code is expected

    def test_daily_limit_on_429(self):
        info = classify_error("Daily message limit reached", status_code=429)

        assert info.code is AgentErrorCode.DAILY_LIMIT
        assert info.retryable is False

    def test_status_beats_keywords(self):
        assert classify_error("network glitch", status_code=401).code is AgentErrorCode.UNAUTHORIZED

    def test_unmapped_status_falls_back_to_keywords(self):
        assert classify_error("request timed out", status_code=418).code is AgentErrorCode.TIMEOUT

    def test_integer_code_is_a_status(self):
        assert classify_error("nope", code=429).code is AgentErrorCode.RATE_LIMIT


class TestClassifyByCode:
    def test_known_code(self):
        assert classify_error(None, code="stream_interrupted").code is AgentErrorCode.STREAM_INTERRUPTED

    def test_daily_code_value(self):
        assert classify_error(None, code="DAILY_RATE_LIMIT_EXCEEDED").code is AgentErrorCode.DAILY_LIMIT

    def test_unknown_code_uses_message(self):
        assert classify_error("connection reset", code="E_SOMETHING").code is AgentErrorCode.NETWORK


class TestClassifyByKeyword:
    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Rate limit exceeded", AgentErrorCode.RATE_LIMIT),
            ("Unauthorized", AgentErrorCode.UNAUTHORIZED),
            ("Request timeout: read", AgentErrorCode.TIMEOUT),
            ("Network connection error", AgentErrorCode.NETWORK),
            ("Service unavailable", AgentErrorCode.SERVICE_UNAVAILABLE),
            ("Response interrupted", AgentErrorCode.STREAM_INTERRUPTED),
            ("Invalid JSON in response", AgentErrorCode.PARSE_ERROR),
            ("Something odd", AgentErrorCode.UNKNOWN),
            (None, AgentErrorCode.UNKNOWN),
        ],
    )
    def test_keywords(self, message, expected):
        assert classify_error(message).code is expected

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Auth token expired", AgentErrorCode.UNAUTHORIZED),
            ("Authentication failed", AgentErrorCode.UNAUTHORIZED),
            ("Could not connect to upstream", AgentErrorCode.NETWORK),
            ("Tool failed: unknown author", AgentErrorCode.UNKNOWN),
            ("Authoring tool crashed", AgentErrorCode.UNKNOWN),
            ("Disconnected by upstream model", AgentErrorCode.UNKNOWN),
            ("Model overloaded, disconnected", AgentErrorCode.SERVICE_UNAVAILABLE),
        ],
    )
    def test_keywords_match_whole_words(self, message, expected):
        assert classify_error(message).code is expected


class TestErrorInfo:
    def test_every_code_has_a_message(self):
        assert set(ERROR_MESSAGES) == set(AgentErrorCode)

    def test_retryable_flags(self):
        assert error_info(AgentErrorCode.RATE_LIMIT).retryable is True
        assert error_info(AgentErrorCode.UNAUTHORIZED).retryable is False
        assert error_info(AgentErrorCode.RATE_LIMIT).message == "Too many requests. Please wait a moment."
