"""Client for the Moodchat HTTP gateway.

Used by the bot when ``[gateway] url`` is set: the gateway holds the provider
keys and the per-IP quota, the bot only forwards conversations.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from ..core.exceptions import (
    QuotaExceededException,
    UpstreamException,
    UpstreamProtocolException,
    UpstreamTimeoutException,
    UpstreamUnreachableException,
)
from ..models.message import ExchangeResult, Message, SendOptions, UsageSnapshot

logger = logging.getLogger(__name__)

CHAT_TIMEOUT = 180.0
MODELS_TIMEOUT = 30.0
NO_RESPONSE = "No response"
PROVIDER_NAME = "gateway"


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"{response.status_code}: {response.text}"
    if isinstance(data, dict):
        for key in ("message", "error"):
            if isinstance(data.get(key), str):
                return data[key]
    return fallback


class GatewayClient:
    """Send and Catalog capability backed by the gateway's wire contract."""

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        chat_timeout: float = CHAT_TIMEOUT,
        models_timeout: float = MODELS_TIMEOUT
    ):
        self.base_url = base_url.rstrip("/")
        self.chat_timeout = chat_timeout
        self.models_timeout = models_timeout
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient()

    async def _request(self, method: str, path: str, timeout: float, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return await self.http_client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutException(PROVIDER_NAME, timeout, e) from e
        except httpx.RequestError as e:
            raise UpstreamUnreachableException(
                PROVIDER_NAME, f"Network error: {e}", original_error=e
            ) from e

    async def send(self, conversation: Sequence[Message], options: SendOptions) -> ExchangeResult:
        """
        Post a conversation to ``/api/chat``.

        Raises:
            QuotaExceededException: On HTTP 429
            UpstreamException: On any other failure
        """
        payload: Dict[str, Any] = {"messages": [message.to_api() for message in conversation]}
        payload.update(options.to_payload())

        response = await self._request("POST", "/api/chat", self.chat_timeout, json=payload)

        if response.status_code == 429:
            data = self._json_or_empty(response)
            raise QuotaExceededException(
                data.get("message") if isinstance(data.get("message"), str) else None,
                limit=data.get("limit"),
            )

        if response.status_code != 200:
            message = _error_message(response, f"Failed to get response: {response.status_code}")
            logger.error(f"Gateway chat error {response.status_code}: {message}")
            raise UpstreamException(PROVIDER_NAME, message, status_code=response.status_code)

        try:
            data = response.json()
            message = data["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamProtocolException(PROVIDER_NAME, "Invalid response format", original_error=e) from e
        if not isinstance(message, dict):
            raise UpstreamProtocolException(PROVIDER_NAME, "Invalid response format")

        content = message.get("content")
        usage = data.get("usage")
        return ExchangeResult(
            text=content if isinstance(content, str) else NO_RESPONSE,
            model=data.get("model"),
            provider=data.get("provider"),
            usage=UsageSnapshot.from_dict(data.get("tokenUsage")),
            raw_usage=usage if isinstance(usage, dict) else None,
        )

    async def fetch(self) -> Dict[str, Any]:
        """Get the model catalog from ``/api/models``."""
        response = await self._request("GET", "/api/models", self.models_timeout)
        if response.status_code != 200:
            message = _error_message(response, f"Failed to get models: {response.status_code}")
            raise UpstreamException(PROVIDER_NAME, message, status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamProtocolException(PROVIDER_NAME, "Invalid models response", original_error=e) from e
        if not isinstance(data, dict):
            raise UpstreamProtocolException(PROVIDER_NAME, "Invalid models response")
        return data

    @staticmethod
    def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()
