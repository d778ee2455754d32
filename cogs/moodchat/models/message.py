"""Message and exchange models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class Role(Enum):
    """Author of a message."""
    USER = "user"
    ASSISTANT = "assistant"


class Emotion(Enum):
    """Emotion colour reported by the model."""
    GREEN = "GREEN"
    BLUE = "BLUE"
    RED = "RED"


@dataclass(frozen=True)
class UsageSnapshot:
    """Token usage and context-window fill of one exchange."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated: bool
    max_context_tokens: int
    context_usage_percent: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the gateway's ``tokenUsage`` shape."""
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "estimated": self.estimated,
            "max_context_tokens": self.max_context_tokens,
            "context_usage_percent": self.context_usage_percent,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["UsageSnapshot"]:
        """Build from a ``tokenUsage`` object; returns None if it is not one."""
        if not isinstance(data, dict):
            return None
        try:
            percent = float(data.get("context_usage_percent") or 0.0)
            return cls(
                prompt_tokens=int(data.get("prompt_tokens") or 0),
                completion_tokens=int(data.get("completion_tokens") or 0),
                total_tokens=int(data.get("total_tokens") or 0),
                estimated=bool(data.get("estimated", False)),
                max_context_tokens=int(data.get("max_context_tokens") or 0),
                context_usage_percent=min(100.0, max(0.0, percent)),
            )
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class DecodedResponse:
    """Fields extracted from a raw model reply."""
    body: str
    topic: Optional[str] = None
    emotion: Optional[Emotion] = None
    raw: str = ""


@dataclass(frozen=True)
class Message:
    """Single message of a conversation. Immutable."""

    text: str
    role: Role
    timestamp: datetime = field(default_factory=datetime.now)
    topic: Optional[str] = None
    body: Optional[str] = None
    emotion: Optional[Emotion] = None
    temperature: Optional[float] = None
    usage: Optional[UsageSnapshot] = None

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(text=text, role=Role.USER)

    @classmethod
    def assistant(
        cls,
        decoded: DecodedResponse,
        temperature: Optional[float] = None,
        usage: Optional[UsageSnapshot] = None
    ) -> "Message":
        return cls(
            text=decoded.raw,
            role=Role.ASSISTANT,
            topic=decoded.topic,
            body=decoded.body,
            emotion=decoded.emotion,
            temperature=temperature,
            usage=usage,
        )

    @property
    def is_user(self) -> bool:
        return self.role is Role.USER

    @property
    def display_text(self) -> str:
        """Text to show: the decoded body when there is one."""
        return self.body if self.body is not None else self.text

    def to_api(self) -> Dict[str, str]:
        """Convert to an upstream chat message."""
        return {"role": self.role.value, "content": self.text}

    def to_dict(self) -> Dict:
        """Convert to dictionary for storage or logging."""
        return {
            "text": self.text,
            "role": self.role.value,
            "timestamp": self.timestamp.isoformat(),
            "topic": self.topic,
            "body": self.body,
            "emotion": self.emotion.value if self.emotion else None,
            "temperature": self.temperature,
            "usage": self.usage.to_dict() if self.usage else None,
        }


@dataclass(frozen=True)
class SendOptions:
    """Options passed to the Send capability."""
    temperature: float
    provider: str
    system_prompt: Optional[str] = None
    model: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Render the optional gateway request fields."""
        payload: Dict[str, Any] = {"temperature": self.temperature}
        if self.system_prompt:
            payload["systemPrompt"] = self.system_prompt
        if self.provider:
            payload["provider"] = self.provider
        if self.model:
            payload["model"] = self.model
        return payload


@dataclass(frozen=True)
class ExchangeResult:
    """What the Send capability returns for one exchange."""
    text: str
    model: Optional[str] = None
    provider: Optional[str] = None
    usage: Optional[UsageSnapshot] = None
    raw_usage: Optional[Dict[str, Any]] = None


def to_api_messages(
    conversation: Iterable[Message],
    system_prompt: Optional[str] = None
) -> List[Dict[str, str]]:
    """Render a conversation as upstream chat messages, system prompt first."""
    messages = [message.to_api() for message in conversation]
    if system_prompt and system_prompt.strip():
        messages.insert(0, {"role": "system", "content": system_prompt})
    return messages
