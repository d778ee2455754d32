"""Models module - Data structures."""

from .message import (
    DecodedResponse,
    Emotion,
    ExchangeResult,
    Message,
    Role,
    SendOptions,
    UsageSnapshot,
    to_api_messages,
)
from .session import (
    Conversation,
    ExchangeFailure,
    Failed,
    Idle,
    Pending,
    Ready,
    SessionConfiguration,
    SessionState,
    state_name,
    topic_of,
)

__all__ = [
    'DecodedResponse',
    'Emotion',
    'ExchangeResult',
    'Message',
    'Role',
    'SendOptions',
    'UsageSnapshot',
    'to_api_messages',
    'Conversation',
    'ExchangeFailure',
    'Failed',
    'Idle',
    'Pending',
    'Ready',
    'SessionConfiguration',
    'SessionState',
    'state_name',
    'topic_of',
]
