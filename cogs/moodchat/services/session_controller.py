"""Session controller - the conversation state machine."""

import asyncio
import itertools
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..core.exceptions import ErrorKind, QuotaExceededException, classify_error, localized_message
from ..core.rate_limiter import RateGovernor
from ..models.message import ExchangeResult, Message, SendOptions, to_api_messages
from ..models.session import (
    Conversation,
    ExchangeFailure,
    Failed,
    Idle,
    Pending,
    Ready,
    SessionConfiguration,
    SessionState,
    clamp_temperature,
    state_name,
    topic_of,
)
from .response_decoder import decode_response
from .token_accountant import build_usage_snapshot

logger = logging.getLogger(__name__)

SendFn = Callable[[Conversation, SendOptions], Awaitable[ExchangeResult]]


class SessionController:
    """
    Drives one conversation through Idle, Pending, Ready and Failed.

    Submissions are serialized per controller. The Send call is the only
    suspension point; its result is applied only while the session is still
    waiting on that exchange, so a cleared session never receives a late reply.
    Settings changes take effect immediately and are persisted in the background.
    """

    def __init__(
        self,
        send: SendFn,
        settings=None,
        catalog=None,
        governor: Optional[RateGovernor] = None,
        identity: Optional[str] = None,
        locale: str = "en",
        defaults: Optional[SessionConfiguration] = None
    ):
        """
        Initialize the controller.

        Args:
            send: Coroutine function performing one exchange
            settings: Object with async ``load()`` and ``save(field, value)``
            catalog: Object with async ``fetch()`` returning the model catalog
            governor: Daily quota gate, applied before Send when set with an identity
            identity: Key for the governor
            locale: Language of user-presentable error messages
            defaults: Configuration for absent persisted settings
        """
        self._send = send
        self._settings = settings
        self._catalog = catalog
        self._governor = governor
        self.identity = identity
        self.locale = locale
        self._defaults = defaults or SessionConfiguration()

        self._state: SessionState = Idle(config=self._defaults)
        self._lock = asyncio.Lock()
        self._exchange_ids = itertools.count(1)
        self._inflight: Optional[asyncio.Task] = None
        self._persistence: Set[asyncio.Task] = set()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> SessionConfiguration:
        return self._state.config

    @property
    def busy(self) -> bool:
        """True while an exchange or a settings save is in flight."""
        return isinstance(self._state, Pending) or bool(self._persistence)

    def current_topic(self) -> Optional[str]:
        return topic_of(self._state)

    # ==================== Exchange ====================

    async def submit(self, text: str) -> SessionState:
        """
        Append a user message and run one exchange.

        Waits for an exchange already in flight on this session to finish first.

        Returns:
            The state after the exchange (Ready or Failed, or whatever the
            session was moved to while waiting)
        """
        async with self._lock:
            exchange_id = next(self._exchange_ids)
            conversation = self._state.conversation + (Message.user(text),)
            config = self._state.config
            self._state = Pending(
                conversation=conversation,
                config=config,
                current_topic=topic_of(self._state),
                exchange_id=exchange_id,
            )

            if self._governor is not None and self.identity is not None:
                quota = self._governor.acquire(self.identity)
                if not quota.allowed:
                    error = QuotaExceededException(count=quota.count, limit=quota.limit)
                    self._state = Failed(
                        conversation=conversation,
                        config=config,
                        error=ExchangeFailure(
                            ErrorKind.QUOTA_EXCEEDED,
                            localized_message(ErrorKind.QUOTA_EXCEEDED, self.locale),
                            detail=str(error),
                        ),
                    )
                    return self._state

            task = asyncio.create_task(self._send(conversation, config.send_options()))
            self._inflight = task
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                if self._is_waiting_on(exchange_id):
                    self._apply_cancellation()
                raise
            finally:
                if self._inflight is task:
                    self._inflight = None

            if not self._is_waiting_on(exchange_id):
                logger.info(
                    f"Discarding response of exchange {exchange_id}: session is {state_name(self._state)}"
                )
                return self._state

            if task.cancelled():
                # Cancelled from outside without going through clear()
                self._apply_cancellation()
                return self._state

            error = task.exception()
            if error is not None:
                self._apply_failure(error)
            else:
                self._apply_result(conversation, config, task.result())
            return self._state

    def _is_waiting_on(self, exchange_id: int) -> bool:
        match self._state:
            case Pending(exchange_id=current):
                return current == exchange_id
        return False

    def _apply_result(
        self,
        conversation: Conversation,
        config: SessionConfiguration,
        result: ExchangeResult
    ) -> None:
        decoded = decode_response(result.text)
        model = result.model or config.model or None
        usage = result.usage or build_usage_snapshot(
            to_api_messages(conversation, config.system_prompt),
            result.text,
            model,
            result.raw_usage,
        )

        reply = Message.assistant(decoded, temperature=config.temperature, usage=usage)
        self._state = Ready(
            conversation=self._state.conversation + (reply,),
            config=self._state.config,
            current_topic=decoded.topic,
        )
        logger.info(
            f"Exchange done for {self.identity}: topic={decoded.topic!r}, "
            f"emotion={decoded.emotion.value if decoded.emotion else None}, "
            f"tokens={usage.total_tokens} ({usage.context_usage_percent}%)"
        )

    def _apply_cancellation(self) -> None:
        self._state = Failed(
            conversation=self._state.conversation,
            config=self._state.config,
            error=ExchangeFailure(
                ErrorKind.UNCLASSIFIED,
                localized_message(ErrorKind.UNCLASSIFIED, self.locale),
                detail="Exchange cancelled",
            ),
        )

    def _apply_failure(self, error: BaseException) -> None:
        kind, message = classify_error(error, self.locale)
        logger.warning(f"Exchange failed for {self.identity} ({kind.value}): {error}")
        self._state = Failed(
            conversation=self._state.conversation,
            config=self._state.config,
            error=ExchangeFailure(kind, message, detail=str(error)),
        )

    def cancel(self) -> None:
        """Cancel the exchange in flight, if any."""
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

    def clear(self) -> None:
        """Drop the conversation, keeping the configuration."""
        self.cancel()
        self._state = Idle(config=self._state.config)

    def delete_message_at(self, index: int) -> None:
        """Remove one message; out-of-range indexes are ignored."""
        conversation = self._state.conversation
        if not 0 <= index < len(conversation):
            return
        self._state = replace(
            self._state,
            conversation=conversation[:index] + conversation[index + 1:],
        )

    # ==================== Configuration ====================

    def set_temperature(self, value: float) -> None:
        value = clamp_temperature(value)
        self._state = self._state.with_config(temperature=value)
        self._persist("temperature", value)

    def set_system_prompt(self, prompt: str) -> None:
        self._state = self._state.with_config(system_prompt=prompt)
        self._persist("systemPrompt", prompt)

    def set_provider(self, provider: str) -> None:
        self._state = self._state.with_config(provider=provider)
        self._persist("provider", provider)

    def set_model(self, model: str) -> None:
        self._state = self._state.with_config(model=model)
        self._persist("model", model)

    def _persist(self, field: str, value: Any) -> None:
        if self._settings is None:
            return
        task = asyncio.create_task(self._save_setting(field, value))
        self._persistence.add(task)
        task.add_done_callback(self._persistence.discard)

    async def _save_setting(self, field: str, value: Any) -> bool:
        try:
            saved = await self._settings.save(field, value)
        except Exception as e:
            logger.error(f"Failed to persist {field} for {self.identity}: {e}")
            return False
        if not saved:
            logger.warning(f"Settings storage rejected {field} for {self.identity}")
        return bool(saved)

    async def wait_for_persistence(self) -> None:
        """Wait until every background settings save has finished."""
        if self._persistence:
            await asyncio.gather(*list(self._persistence))

    async def load_settings(self) -> None:
        """Overlay persisted settings, using the defaults for absent ones."""
        if self._settings is None:
            return
        try:
            stored: Dict[str, Any] = await self._settings.load() or {}
        except Exception as e:
            logger.error(f"Failed to load settings for {self.identity}: {e}")
            return

        defaults = self._defaults
        temperature = stored.get("temperature")
        if isinstance(temperature, (int, float)) and not isinstance(temperature, bool):
            temperature = clamp_temperature(temperature)
        else:
            temperature = defaults.temperature

        def text(key: str, fallback: str) -> str:
            value = stored.get(key)
            return value if isinstance(value, str) else fallback

        self._state = self._state.with_config(
            temperature=temperature,
            system_prompt=text("systemPrompt", defaults.system_prompt),
            provider=text("provider", "") or defaults.provider,
            model=text("model", defaults.model),
        )

    async def load_models(self) -> None:
        """Overlay the model catalog; failures are logged and ignored."""
        if self._catalog is None:
            return
        try:
            models = await self._catalog.fetch()
        except Exception as e:
            logger.warning(f"Failed to load available models: {e}")
            return
        self._state = self._state.with_config(available_models=models)
