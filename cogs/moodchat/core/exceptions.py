"""
Custom Exceptions for Moodchat
==============================

Defines the exception classes raised by the exchange capabilities and the
classifier that turns any failed exchange into an ``ErrorKind`` plus a
user-presentable message.
"""

import re
from enum import Enum
from typing import Optional, Tuple


class ErrorKind(Enum):
    """Classification of a failed exchange."""
    QUOTA_EXCEEDED = "quota_exceeded"
    UPSTREAM_UNREACHABLE = "upstream_unreachable"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_PROTOCOL_ERROR = "upstream_protocol_error"
    UPSTREAM_CONFIG_ERROR = "upstream_config_error"
    UNCLASSIFIED = "unclassified"


class ChatException(Exception):
    """Base exception for the chat module."""

    def __init__(self, message: str, original_error: Exception = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self):
        if self.original_error:
            return f"{self.message} (Caused by: {self.original_error})"
        return self.message


class QuotaExceededException(ChatException):
    """Raised when an identity has used up its daily message quota."""

    def __init__(self, message: str = None, count: int = None, limit: int = None):
        self.count = count
        self.limit = limit
        if message is None:
            message = "Daily limit exceeded"
            if limit is not None:
                message += f". Maximum {limit} messages per day."
        super().__init__(message)


class UpstreamException(ChatException):
    """Exception raised when an upstream LLM provider or gateway fails."""

    def __init__(
        self,
        provider_name: str,
        message: str,
        status_code: Optional[int] = None,
        original_error: Exception = None
    ):
        self.provider_name = provider_name
        self.status_code = status_code
        super().__init__(f"[{provider_name}] {message}", original_error)


class UpstreamUnreachableException(UpstreamException):
    """Exception raised when the upstream cannot be connected to."""


class UpstreamTimeoutException(UpstreamException):
    """Exception raised when an upstream request times out."""

    def __init__(self, provider_name: str, timeout: float, original_error: Exception = None):
        self.timeout = timeout
        super().__init__(
            provider_name,
            f"Request timed out after {timeout} seconds",
            original_error=original_error
        )


class UpstreamProtocolException(UpstreamException):
    """Exception raised when the upstream answers with an unexpected shape."""


class UpstreamConfigException(UpstreamException):
    """Exception raised when a provider credential or setting is missing."""

    def __init__(self, provider_name: str, config_key: str, message: str = None):
        self.config_key = config_key
        super().__init__(provider_name, message or f"{config_key} is not set in environment variables")


# ==================== Classification ====================

MESSAGES = {
    "en": {
        ErrorKind.QUOTA_EXCEEDED: "Daily message limit exceeded. Please try again tomorrow.",
        ErrorKind.UPSTREAM_UNREACHABLE: "Could not connect to the server. Make sure the backend is running.",
        ErrorKind.UPSTREAM_TIMEOUT: "The server took too long to respond.",
        ErrorKind.UPSTREAM_PROTOCOL_ERROR: "Received an unexpected response from the server.",
        ErrorKind.UPSTREAM_CONFIG_ERROR: "Server error. Check the API key configuration.",
        ErrorKind.UNCLASSIFIED: "Something went wrong. Please try again later.",
    },
    "ru": {
        ErrorKind.QUOTA_EXCEEDED: "Превышен дневной лимит сообщений. Попробуйте завтра.",
        ErrorKind.UPSTREAM_UNREACHABLE: "Не удалось подключиться к серверу. Убедитесь, что бэкенд запущен.",
        ErrorKind.UPSTREAM_TIMEOUT: "Превышено время ожидания ответа от сервера.",
        ErrorKind.UPSTREAM_PROTOCOL_ERROR: "Сервер вернул ответ в неожиданном формате.",
        ErrorKind.UPSTREAM_CONFIG_ERROR: "Ошибка сервера. Проверьте настройку API ключа в .env файле.",
        ErrorKind.UNCLASSIFIED: "Что-то пошло не так. Попробуйте позже.",
    },
}

_QUOTA_PHRASES = ("daily limit exceeded", "превышен дневной лимит")
_UNREACHABLE_PHRASES = (
    "failed host lookup",
    "connection refused",
    "name or service not known",
    "nodename nor servname",
    "network is unreachable",
    "all connection attempts failed",
)
_TIMEOUT_PHRASES = ("timeout", "timed out")
_CONFIG_PHRASES = ("is not set", "server configuration", "api key")
_STATUS_RE = re.compile(r"\b(5\d\d)\b")


def localized_message(kind: ErrorKind, locale: str = "en") -> str:
    """Get the user-presentable message for an error kind."""
    return MESSAGES.get(locale, MESSAGES["en"])[kind]


def _kind_from_status(status_code: int) -> Optional[ErrorKind]:
    if status_code == 500:
        return ErrorKind.UPSTREAM_CONFIG_ERROR
    if status_code == 504:
        return ErrorKind.UPSTREAM_TIMEOUT
    if 500 <= status_code < 600:
        return ErrorKind.UPSTREAM_UNREACHABLE
    return None


def _kind_from_text(text: str) -> ErrorKind:
    lowered = text.lower()
    if any(phrase in lowered for phrase in _QUOTA_PHRASES):
        return ErrorKind.QUOTA_EXCEEDED
    if any(phrase in lowered for phrase in _UNREACHABLE_PHRASES):
        return ErrorKind.UPSTREAM_UNREACHABLE
    if any(phrase in lowered for phrase in _TIMEOUT_PHRASES):
        return ErrorKind.UPSTREAM_TIMEOUT
    if any(phrase in lowered for phrase in _CONFIG_PHRASES):
        return ErrorKind.UPSTREAM_CONFIG_ERROR
    match = _STATUS_RE.search(lowered)
    if match:
        return _kind_from_status(int(match.group(1))) or ErrorKind.UNCLASSIFIED
    return ErrorKind.UNCLASSIFIED


def classify_error(error: BaseException, locale: str = "en") -> Tuple[ErrorKind, str]:
    """
    Classify a failed exchange.

    The exception type wins, then an attached HTTP status code, then the
    content of the error text.

    Args:
        error: The exception raised by the Send capability
        locale: Language of the returned message ("en" or "ru")

    Returns:
        Tuple of (error kind, user-presentable message)
    """
    if isinstance(error, QuotaExceededException):
        # The gateway's own wording is already meant for the user
        return ErrorKind.QUOTA_EXCEEDED, error.message

    if isinstance(error, UpstreamConfigException):
        kind = ErrorKind.UPSTREAM_CONFIG_ERROR
    elif isinstance(error, UpstreamTimeoutException):
        kind = ErrorKind.UPSTREAM_TIMEOUT
    elif isinstance(error, UpstreamUnreachableException):
        kind = ErrorKind.UPSTREAM_UNREACHABLE
    elif isinstance(error, UpstreamProtocolException):
        kind = ErrorKind.UPSTREAM_PROTOCOL_ERROR
    elif isinstance(error, (TimeoutError, ConnectionError)):
        kind = (
            ErrorKind.UPSTREAM_TIMEOUT
            if isinstance(error, TimeoutError)
            else ErrorKind.UPSTREAM_UNREACHABLE
        )
    else:
        status_code = getattr(error, "status_code", None)
        kind = _kind_from_status(status_code) if isinstance(status_code, int) else None
        if kind is None:
            kind = _kind_from_text(str(error))

    if kind is ErrorKind.UNCLASSIFIED:
        text = str(error).strip()
        return kind, text or localized_message(kind, locale)

    return kind, localized_message(kind, locale)
