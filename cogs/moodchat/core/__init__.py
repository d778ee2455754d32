"""Core module - Framework-independent logic."""

from .config import ChatConfig, ProviderConfig
from .exceptions import (
    ErrorKind,
    ChatException,
    QuotaExceededException,
    UpstreamException,
    UpstreamUnreachableException,
    UpstreamTimeoutException,
    UpstreamProtocolException,
    UpstreamConfigException,
    classify_error,
    localized_message,
)
from .rate_limiter import RateGovernor, QuotaStatus

__all__ = [
    'ChatConfig',
    'ProviderConfig',
    'ErrorKind',
    'ChatException',
    'QuotaExceededException',
    'UpstreamException',
    'UpstreamUnreachableException',
    'UpstreamTimeoutException',
    'UpstreamProtocolException',
    'UpstreamConfigException',
    'classify_error',
    'localized_message',
    'RateGovernor',
    'QuotaStatus',
]
