"""
Tests for failed-exchange classification
"""
import pytest

from cogs.moodchat.core.exceptions import (
    ErrorKind,
    MESSAGES,
    QuotaExceededException,
    UpstreamConfigException,
    UpstreamException,
    UpstreamProtocolException,
    UpstreamTimeoutException,
    UpstreamUnreachableException,
    classify_error,
)


def test_timeout_exception():
    kind, message = classify_error(UpstreamTimeoutException("deepseek", 120))

    assert kind is ErrorKind.UPSTREAM_TIMEOUT
    assert message == MESSAGES["en"][ErrorKind.UPSTREAM_TIMEOUT]


def test_builtin_timeout_error():
    kind, _ = classify_error(TimeoutError())

    assert kind is ErrorKind.UPSTREAM_TIMEOUT


def test_connection_refused():
    kind, _ = classify_error(ConnectionRefusedError("Connection refused"))

    assert kind is ErrorKind.UPSTREAM_UNREACHABLE


def test_unreachable_exception():
    error = UpstreamUnreachableException("gateway", "Connection failed")

    assert classify_error(error)[0] is ErrorKind.UPSTREAM_UNREACHABLE


def test_missing_api_key():
    kind, message = classify_error(UpstreamConfigException("deepseek", "DEEPSEEK_API_KEY"))

    assert kind is ErrorKind.UPSTREAM_CONFIG_ERROR
    assert message == MESSAGES["en"][ErrorKind.UPSTREAM_CONFIG_ERROR]


def test_protocol_exception():
    error = UpstreamProtocolException("gateway", "Response has no choices")

    assert classify_error(error)[0] is ErrorKind.UPSTREAM_PROTOCOL_ERROR


@pytest.mark.parametrize("status,kind", [
    (500, ErrorKind.UPSTREAM_CONFIG_ERROR),
    (504, ErrorKind.UPSTREAM_TIMEOUT),
    (502, ErrorKind.UPSTREAM_UNREACHABLE),
    (503, ErrorKind.UPSTREAM_UNREACHABLE),
])
def test_status_codes(status, kind):
    error = UpstreamException("gateway", "Request failed", status_code=status)

    assert classify_error(error)[0] is kind


@pytest.mark.parametrize("text,kind", [
    ("Failed host lookup: 'example.invalid'", ErrorKind.UPSTREAM_UNREACHABLE),
    ("Request timed out", ErrorKind.UPSTREAM_TIMEOUT),
    ("DEEPSEEK_API_KEY is not set", ErrorKind.UPSTREAM_CONFIG_ERROR),
    ("Daily limit exceeded", ErrorKind.QUOTA_EXCEEDED),
    ("upstream answered 504", ErrorKind.UPSTREAM_TIMEOUT),
])
def test_text_heuristics(text, kind):
    assert classify_error(RuntimeError(text))[0] is kind


def test_quota_exception_keeps_its_message():
    error = QuotaExceededException("Daily message limit exceeded. Maximum 10 messages per day.")

    kind, message = classify_error(error)

    assert kind is ErrorKind.QUOTA_EXCEEDED
    assert message == "Daily message limit exceeded. Maximum 10 messages per day."


def test_quota_exception_default_message():
    assert str(QuotaExceededException(count=10, limit=10)) == (
        "Daily limit exceeded. Maximum 10 messages per day."
    )


def test_russian_locale():
    kind, message = classify_error(UpstreamTimeoutException("deepseek", 30), locale="ru")

    assert kind is ErrorKind.UPSTREAM_TIMEOUT
    assert message == MESSAGES["ru"][ErrorKind.UPSTREAM_TIMEOUT]


def test_unknown_locale_falls_back_to_english():
    _, message = classify_error(TimeoutError(), locale="de")

    assert message == MESSAGES["en"][ErrorKind.UPSTREAM_TIMEOUT]


def test_unclassified_keeps_raw_text():
    kind, message = classify_error(ValueError("something odd happened"))

    assert kind is ErrorKind.UNCLASSIFIED
    assert message == "something odd happened"


def test_unclassified_without_text_uses_generic_message():
    kind, message = classify_error(ValueError())

    assert kind is ErrorKind.UNCLASSIFIED
    assert message == MESSAGES["en"][ErrorKind.UNCLASSIFIED]


def test_exception_str_includes_cause():
    cause = OSError("boom")
    error = UpstreamException("groq", "Request failed", original_error=cause)

    assert str(error) == "[groq] Request failed (Caused by: boom)"
