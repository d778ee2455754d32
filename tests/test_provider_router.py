"""
Tests for direct upstream provider routing
"""
import json

import httpx
import pytest

from cogs.moodchat.core.config import ChatConfig
from cogs.moodchat.core.exceptions import (
    UpstreamConfigException,
    UpstreamException,
    UpstreamProtocolException,
    UpstreamTimeoutException,
    UpstreamUnreachableException,
)
from cogs.moodchat.models import Message, SendOptions
from cogs.moodchat.services.provider_router import ProviderRouter, extract_error_message


def completion(content="topic:T: body:B: emotion:GREEN:", model="deepseek-chat", usage=None):
    data = {"model": model, "choices": [{"message": {"role": "assistant", "content": content}}]}
    if usage is not None:
        data["usage"] = usage
    return data


def make_router(config, handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProviderRouter(config, http_client=client)


@pytest.mark.asyncio
async def test_send_posts_openai_compatible_payload(chat_config):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion(usage={"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}))

    router = make_router(chat_config, handler)
    options = SendOptions(temperature=0.5, provider="deepseek", system_prompt="Be nice")

    result = await router.send((Message.user("Hi"),), options)

    assert seen["url"] == "https://api.deepseek.com/v1/chat/completions"
    assert seen["auth"] == "Bearer ds-key"
    assert seen["body"]["model"] == "deepseek-chat"
    assert seen["body"]["stream"] is False
    assert seen["body"]["temperature"] == 0.5
    assert seen["body"]["messages"] == [
        {"role": "system", "content": "Be nice"},
        {"role": "user", "content": "Hi"},
    ]
    assert result.text == "topic:T: body:B: emotion:GREEN:"
    assert result.provider == "deepseek"
    assert result.model == "deepseek-chat"
    assert result.raw_usage == {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}


@pytest.mark.asyncio
async def test_blank_system_prompt_is_not_sent(chat_config):
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion())

    router = make_router(chat_config, handler)

    await router.send((Message.user("Hi"),), SendOptions(temperature=0.7, provider="deepseek", system_prompt="  "))

    assert [m["role"] for m in seen["body"]["messages"]] == ["user"]


@pytest.mark.asyncio
async def test_model_override_and_huggingface_route(chat_config):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["model"] = json.loads(request.content)["model"]
        return httpx.Response(200, json=completion(model="google/gemma-2-2b-it"))

    router = make_router(chat_config, handler)

    result = await router.complete(
        [{"role": "user", "content": "Hi"}], "huggingface", "google/gemma-2-2b-it"
    )

    assert seen["url"] == "https://router.huggingface.co/v1/chat/completions"
    assert seen["model"] == "google/gemma-2-2b-it"
    assert result.provider == "huggingface"


@pytest.mark.asyncio
async def test_unknown_provider_uses_default(chat_config):
    router = make_router(chat_config, lambda request: httpx.Response(200, json=completion()))

    result = await router.complete([{"role": "user", "content": "Hi"}], "nope")

    assert result.provider == "deepseek"


@pytest.mark.asyncio
async def test_missing_api_key(clean_env, tmp_path):
    config = ChatConfig(str(tmp_path / "missing.ini"))
    router = make_router(config, lambda request: httpx.Response(200, json=completion()))

    with pytest.raises(UpstreamConfigException) as exc_info:
        await router.complete([{"role": "user", "content": "Hi"}], "deepseek")

    assert exc_info.value.config_key == "DEEPSEEK_API_KEY"


@pytest.mark.asyncio
async def test_upstream_error_status(chat_config):
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

    router = make_router(chat_config, handler)

    with pytest.raises(UpstreamException) as exc_info:
        await router.complete([{"role": "user", "content": "Hi"}], "deepseek")

    assert exc_info.value.status_code == 401
    assert "API error: 401 - Invalid API key" in exc_info.value.message


@pytest.mark.asyncio
async def test_huggingface_unsupported_model_hint(chat_config):
    def handler(request):
        return httpx.Response(400, json={"error": "Model foo/bar is not a chat model"})

    router = make_router(chat_config, handler)

    with pytest.raises(UpstreamException) as exc_info:
        await router.complete([{"role": "user", "content": "Hi"}], "huggingface", "foo/bar")

    assert 'Model "foo/bar" does not support chat completion' in exc_info.value.message


@pytest.mark.asyncio
async def test_timeout(chat_config):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    router = make_router(chat_config, handler)

    with pytest.raises(UpstreamTimeoutException):
        await router.complete([{"role": "user", "content": "Hi"}], "deepseek")


@pytest.mark.asyncio
async def test_connection_failure(chat_config):
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    router = make_router(chat_config, handler)

    with pytest.raises(UpstreamUnreachableException):
        await router.complete([{"role": "user", "content": "Hi"}], "deepseek")


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, text="not json"),
    httpx.Response(200, json=["a", "list"]),
    httpx.Response(200, json={"choices": []}),
    httpx.Response(200, json={"choices": [{"message": {"content": None}}]}),
])
async def test_malformed_response(chat_config, response):
    router = make_router(chat_config, lambda request: response)

    with pytest.raises(UpstreamProtocolException):
        await router.complete([{"role": "user", "content": "Hi"}], "deepseek")


@pytest.mark.parametrize("body,expected", [
    ('{"error": "plain"}', "plain"),
    ('{"error": {"message": "nested"}}', "nested"),
    ('{"error": {"type": "invalid_request", "code": "bad_model"}}', "invalid_request: bad_model"),
    ('{"message": "top level"}', "top level"),
    ("<html>oops</html>", "<html>oops</html>"),
])
def test_extract_error_message(body, expected):
    assert extract_error_message(body) == expected


class FakeGroqResponse:
    def __init__(self, model):
        self.model = model

    def model_dump(self):
        return completion(model=self.model)


class RateLimited(Exception):
    status_code = 429


class FakeCompletions:
    def __init__(self, failing):
        self.failing = set(failing)
        self.models = []

    async def create(self, model, messages, temperature=None):
        self.models.append(model)
        if model in self.failing:
            raise RateLimited("rate limit reached")
        return FakeGroqResponse(model)


class FakeGroq:
    def __init__(self, failing=()):
        self.completions = FakeCompletions(failing)
        self.chat = self

    async def close(self):
        pass


@pytest.fixture
def groq_config(chat_config, monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gq-key")
    chat_config.reload()
    chat_config.providers["groq"].fallback_models = ["llama-3.1-8b-instant", "gemma2-9b-it"]
    return chat_config


@pytest.mark.asyncio
async def test_groq_falls_back_on_rate_limit(groq_config):
    groq = FakeGroq(failing={"llama-3.3-70b-versatile"})
    router = ProviderRouter(groq_config, http_client=httpx.AsyncClient(), groq_client=groq)

    result = await router.complete([{"role": "user", "content": "Hi"}], "groq")

    assert groq.completions.models == ["llama-3.3-70b-versatile", "llama-3.1-8b-instant"]
    assert result.model == "llama-3.1-8b-instant"
    assert result.provider == "groq"


@pytest.mark.asyncio
async def test_groq_all_models_exhausted(groq_config):
    groq = FakeGroq(failing={"llama-3.3-70b-versatile", "llama-3.1-8b-instant", "gemma2-9b-it"})
    router = ProviderRouter(groq_config, http_client=httpx.AsyncClient(), groq_client=groq)

    with pytest.raises(UpstreamException) as exc_info:
        await router.complete([{"role": "user", "content": "Hi"}], "groq")

    assert exc_info.value.status_code == 429
    assert len(groq.completions.models) == 3
