"""Request models for the gateway API."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """One chat turn as sent by clients."""

    role: str
    content: str

    def to_api(self) -> dict:
        return {"role": self.role, "content": self.content}


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    messages: list[ChatMessage]
    temperature: Optional[float] = Field(None, description="Sampling temperature")
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")
    provider: Optional[str] = Field(None, description="deepseek, huggingface or groq")
    model: Optional[str] = Field(None, description="Model id, provider default when absent")
