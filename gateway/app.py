"""FastAPI application proxying chat exchanges to the upstream providers.

Every client IP gets a daily message quota; exchanges are answered in the
OpenAI chat-completions shape with ``tokenUsage`` and ``quota`` added.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from cogs.moodchat.core import (
    ChatConfig,
    RateGovernor,
    UpstreamConfigException,
    UpstreamException,
    UpstreamTimeoutException,
)
from cogs.moodchat.models import to_api_messages
from cogs.moodchat.services.model_catalog import ModelCatalog
from cogs.moodchat.services.provider_router import ProviderRouter
from cogs.moodchat.services.token_accountant import build_usage_snapshot

from .models import ChatRequest

logger = logging.getLogger(__name__)

INVALID_REQUEST = "Invalid request. Messages array is required."


def client_identity(request: Request) -> str:
    """Quota key of a request: the client IP as seen through proxies."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def error_response(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"error": error}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def create_app(
    config: Optional[ChatConfig] = None,
    router=None,
    governor: Optional[RateGovernor] = None,
    catalog=None
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Chat configuration (loaded from config/chat_config.ini if not given)
        router: Object with ``complete(messages, provider, model, temperature)``
        governor: Per-IP daily quota
        catalog: Object with async ``fetch()``

    Returns:
        FastAPI application
    """
    config = config or ChatConfig()
    router = router or ProviderRouter(config)
    governor = governor or RateGovernor(
        daily_limit=config.rate_limit.daily_limit,
        reap_interval=config.rate_limit.reap_interval,
    )
    catalog = catalog or ModelCatalog(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Gateway starting, daily limit {governor.daily_limit} messages per IP")
        governor.start_reaper()
        yield
        await governor.stop_reaper()
        await router.aclose()
        await catalog.aclose()
        logger.info("Gateway stopped")

    app = FastAPI(
        title="Moodchat Gateway",
        description="Chat proxy with per-IP daily quotas and token accounting",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.router = router
    app.state.governor = governor
    app.state.catalog = catalog

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration:.0f}ms)")
        return response

    # ============= Health & Info =============

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/api/models")
    async def models():
        """Providers, their models and presets."""
        try:
            return await catalog.fetch()
        except Exception as e:
            logger.error(f"Error fetching models: {e}")
            return error_response(500, "Failed to fetch models", str(e))

    # ============= Chat =============

    @app.post("/api/chat")
    async def chat(request: Request):
        """Run one exchange for the calling IP."""
        try:
            chat_request = ChatRequest.model_validate(await request.json())
        except (ValueError, ValidationError):
            return error_response(400, INVALID_REQUEST)

        identity = client_identity(request)
        quota = governor.acquire(identity)
        if not quota.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Daily limit exceeded",
                    "message": f"Daily message limit exceeded. Maximum {quota.limit} messages per day.",
                    "limit": quota.limit,
                    "remaining": 0,
                },
            )

        logger.info(
            f"Chat request from {identity}: {len(chat_request.messages)} messages, "
            f"provider={chat_request.provider or 'default'}, model={chat_request.model or 'default'}"
        )

        messages = to_api_messages(chat_request.messages, chat_request.system_prompt)
        try:
            result = await router.complete(
                messages,
                chat_request.provider,
                chat_request.model,
                chat_request.temperature,
            )
        except UpstreamConfigException as e:
            logger.error(f"Configuration error: {e}")
            return error_response(500, "Internal server error", "Server configuration error: API key not set")
        except UpstreamTimeoutException as e:
            logger.error(f"Upstream timeout: {e}")
            return error_response(504, "Gateway timeout", e.message)
        except UpstreamException as e:
            logger.error(f"Upstream error: {e}")
            return error_response(502, "Bad gateway", e.message)
        except Exception as e:
            logger.error(f"Error processing chat request: {e}", exc_info=e)
            return error_response(500, "Internal server error", str(e))

        usage = build_usage_snapshot(messages, result.text, result.model, result.raw_usage)
        logger.info(f"Token usage for {identity}: {usage.to_dict()}")

        body: Dict[str, Any] = {
            "choices": [{"message": {"role": "assistant", "content": result.text}}],
            "model": result.model,
            "provider": result.provider,
            "tokenUsage": usage.to_dict(),
            "quota": {
                "count": quota.count,
                "remaining": quota.remaining,
                "limit": quota.limit,
            },
        }
        if result.raw_usage is not None:
            body["usage"] = result.raw_usage
        return body

    return app
