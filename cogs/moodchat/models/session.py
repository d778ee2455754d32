"""Session state models.

A session is always in exactly one of four states. All of them share the
conversation and the configuration; ``Pending`` and ``Ready`` also remember
the current topic, ``Failed`` carries the error.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from ..core.exceptions import ErrorKind
from .message import Message, SendOptions

DEFAULT_TEMPERATURE = 0.7
DEFAULT_PROVIDER = "deepseek"
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0

Conversation = Tuple[Message, ...]


def clamp_temperature(value: float) -> float:
    return min(MAX_TEMPERATURE, max(MIN_TEMPERATURE, float(value)))


@dataclass(frozen=True)
class SessionConfiguration:
    """Exchange settings carried across every transition."""

    temperature: float = DEFAULT_TEMPERATURE
    system_prompt: str = ""
    provider: str = DEFAULT_PROVIDER
    model: str = ""
    available_models: Optional[Dict[str, Any]] = None

    def send_options(self) -> SendOptions:
        return SendOptions(
            temperature=self.temperature,
            provider=self.provider,
            system_prompt=self.system_prompt or None,
            model=self.model or None,
        )


@dataclass(frozen=True)
class ExchangeFailure:
    """Why the last exchange failed."""
    kind: ErrorKind
    message: str
    detail: str = ""


@dataclass(frozen=True)
class SessionState:
    conversation: Conversation = ()
    config: SessionConfiguration = field(default_factory=SessionConfiguration)

    def with_config(self, **changes) -> "SessionState":
        """Same state with some configuration fields replaced."""
        return replace(self, config=replace(self.config, **changes))


@dataclass(frozen=True)
class Idle(SessionState):
    """No conversation yet, or it was cleared."""


@dataclass(frozen=True)
class Pending(SessionState):
    """An exchange is in flight."""
    current_topic: Optional[str] = None
    exchange_id: int = 0


@dataclass(frozen=True)
class Ready(SessionState):
    """The last exchange succeeded."""
    current_topic: Optional[str] = None


@dataclass(frozen=True)
class Failed(SessionState):
    """The last exchange failed; the conversation is kept."""
    error: Optional[ExchangeFailure] = None


def topic_of(state: SessionState) -> Optional[str]:
    """Current topic of a state, if the state has one."""
    match state:
        case Pending(current_topic=topic) | Ready(current_topic=topic):
            return topic
        case Idle() | Failed():
            return None
    raise TypeError(f"Unknown session state: {type(state).__name__}")


def state_name(state: SessionState) -> str:
    match state:
        case Idle():
            return "idle"
        case Pending():
            return "pending"
        case Ready():
            return "ready"
        case Failed():
            return "failed"
    raise TypeError(f"Unknown session state: {type(state).__name__}")
