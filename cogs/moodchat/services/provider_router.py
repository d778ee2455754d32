"""Provider routing for upstream LLM services."""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from groq import AsyncGroq

from ..core.config import ChatConfig, ProviderConfig
from ..core.exceptions import (
    UpstreamConfigException,
    UpstreamException,
    UpstreamProtocolException,
    UpstreamTimeoutException,
    UpstreamUnreachableException,
)
from ..models.message import ExchangeResult, Message, SendOptions, to_api_messages

logger = logging.getLogger(__name__)

HF_MODEL_HINT = (
    'Model "{model}" does not support chat completion or is unavailable. '
    "Try another model from the list."
)


def extract_error_message(body: str) -> str:
    """Pull the human-readable part out of an upstream error body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body

    if not isinstance(data, dict):
        return body

    error = data.get("error")
    if error:
        if isinstance(error, str):
            return error
        if isinstance(error, dict):
            if error.get("message"):
                return str(error["message"])
            if error.get("type"):
                return f"{error['type']}: {error.get('code') or ''}".rstrip(": ")
        return json.dumps(error)
    if data.get("message"):
        return str(data["message"])
    return body


def _needs_model_hint(status_code: int, body: str) -> bool:
    if status_code == 404:
        return True
    if status_code != 400:
        return False
    lowered = body.lower()
    return any(
        phrase in lowered
        for phrase in ("not found", "not a chat model", "model_not_supported")
    )


class ProviderRouter:
    """
    Send capability that talks to the upstream providers directly.

    DeepSeek and Hugging Face are reached over their OpenAI-compatible HTTP
    endpoints; Groq goes through its SDK with fallback models.
    """

    def __init__(
        self,
        config: ChatConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        groq_client: Optional[AsyncGroq] = None
    ):
        """
        Initialize provider router.

        Args:
            config: ChatConfig object with provider settings
            http_client: Shared HTTP client (created if not given)
            groq_client: Groq SDK client (created from GROQ_API_KEY if not given)
        """
        self.config = config
        self.timeout = config.rate_limit.request_timeout
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.timeout)
        self._owns_groq_client = groq_client is None
        self.groq_client = groq_client

        groq = config.providers.get("groq")
        if self.groq_client is None and groq and groq.api_key:
            try:
                self.groq_client = AsyncGroq(api_key=groq.api_key, timeout=self.timeout)
            except Exception as e:
                logger.error(f"Failed to initialize Groq client: {e}")

    def resolve_provider(self, name: Optional[str]) -> ProviderConfig:
        provider = self.config.get_provider(name or self.config.default_provider)
        if name and provider.name != name.lower():
            logger.warning(f"Unknown provider {name!r}, using {provider.name}")
        return provider

    async def send(self, conversation: Sequence[Message], options: SendOptions) -> ExchangeResult:
        """
        Perform one chat exchange.

        Args:
            conversation: Messages so far, the new user message last
            options: Temperature, provider, system prompt and model

        Returns:
            ExchangeResult with the raw reply text and the upstream usage object

        Raises:
            UpstreamException: If the provider fails (see subclasses)
        """
        messages = to_api_messages(conversation, options.system_prompt)
        return await self.complete(messages, options.provider, options.model, options.temperature)

    async def complete(
        self,
        messages: List[Dict[str, str]],
        provider_name: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None
    ) -> ExchangeResult:
        """Send already-rendered chat messages to a provider."""
        provider = self.resolve_provider(provider_name)
        model = model or provider.model

        if not provider.api_key:
            raise UpstreamConfigException(provider.name, provider.api_key_env or "API key")

        if self.config.logging.log_api_calls:
            logger.info(
                f"Sending {len(messages)} messages to {provider.display_name} "
                f"(model={model}, temperature={temperature})"
            )

        start_time = time.time()
        if provider.name == "groq":
            data, model = await self._send_groq(provider, messages, model, temperature)
        else:
            data = await self._send_openai_compatible(provider, messages, model, temperature)
        response_time = time.time() - start_time

        text = self._extract_text(provider, data)
        logger.info(f"{provider.display_name} {model} response ({response_time:.2f}s): {len(text)} chars")

        usage = data.get("usage")
        return ExchangeResult(
            text=text,
            model=data.get("model") or model,
            provider=provider.name,
            raw_usage=usage if isinstance(usage, dict) else None,
        )

    async def _send_openai_compatible(
        self,
        provider: ProviderConfig,
        messages: List[Dict[str, str]],
        model: str,
        temperature: Optional[float]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
        }
        if temperature is not None:
            payload["temperature"] = temperature

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {provider.api_key}",
        }

        try:
            response = await self.http_client.post(
                provider.url, json=payload, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutException(provider.name, self.timeout, e) from e
        except httpx.RequestError as e:
            raise UpstreamUnreachableException(provider.name, f"Connection failed: {e}", original_error=e) from e

        if response.is_error:
            body = response.text
            logger.error(f"{provider.display_name} API error: {response.status_code} {body}")
            message = f"API error: {response.status_code} - {extract_error_message(body)}"
            if provider.name == "huggingface" and _needs_model_hint(response.status_code, body):
                message += ". " + HF_MODEL_HINT.format(model=model)
            raise UpstreamException(provider.name, message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamProtocolException(provider.name, "Response is not valid JSON", original_error=e) from e
        if not isinstance(data, dict):
            raise UpstreamProtocolException(provider.name, "Response is not a JSON object")
        return data

    async def _send_groq(
        self,
        provider: ProviderConfig,
        messages: List[Dict[str, str]],
        model: str,
        temperature: Optional[float]
    ) -> Tuple[Dict[str, Any], str]:
        if self.groq_client is None:
            raise UpstreamConfigException(provider.name, provider.api_key_env)

        # Try primary model first, then fallback models on rate limit
        models_to_try = [model] + [m for m in provider.fallback_models if m != model]

        for attempt, current in enumerate(models_to_try):
            is_last = attempt == len(models_to_try) - 1
            try:
                logger.info(f"Trying Groq model: {current} (attempt {attempt + 1}/{len(models_to_try)})")
                kwargs: Dict[str, Any] = {"model": current, "messages": messages}
                if temperature is not None:
                    kwargs["temperature"] = temperature
                response = await self.groq_client.chat.completions.create(**kwargs)
                return response.model_dump(), current

            except Exception as e:
                error_str = str(e)
                status_code = getattr(e, "status_code", None)

                if status_code == 429 or "rate_limit_exceeded" in error_str or "rate limit" in error_str.lower():
                    logger.warning(f"Rate limit hit on {current}, trying fallback...")
                elif status_code == 400 and "decommissioned" in error_str.lower():
                    logger.warning(f"Model {current} has been decommissioned, trying fallback...")
                else:
                    logger.error(f"Groq API error on {current}: {e}")
                    raise self._wrap_groq_error(provider, e)

                if is_last:
                    logger.error(f"All Groq models exhausted. Last error: {e}")
                    raise self._wrap_groq_error(provider, e)

        raise UpstreamProtocolException(provider.name, "No Groq model to try")

    def _wrap_groq_error(self, provider: ProviderConfig, error: Exception) -> UpstreamException:
        name = type(error).__name__
        if "Timeout" in name:
            return UpstreamTimeoutException(provider.name, self.timeout, error)
        if "Connection" in name:
            return UpstreamUnreachableException(provider.name, f"Connection failed: {error}", original_error=error)
        return UpstreamException(
            provider.name,
            f"API error: {error}",
            status_code=getattr(error, "status_code", None),
            original_error=error,
        )

    @staticmethod
    def _extract_text(provider: ProviderConfig, data: Dict[str, Any]) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise UpstreamProtocolException(provider.name, "Response has no choices[0].message.content")
        if not isinstance(content, str):
            raise UpstreamProtocolException(provider.name, "Response content is not a string")
        return content

    async def aclose(self) -> None:
        """Close the HTTP clients this router created."""
        if self._owns_http_client:
            await self.http_client.aclose()
        if self._owns_groq_client and self.groq_client is not None:
            await self.groq_client.close()
