"""
Tests for the conversation state machine
"""
import asyncio

import pytest

from cogs.moodchat.core.exceptions import ErrorKind, MESSAGES, UpstreamTimeoutException
from cogs.moodchat.core.rate_limiter import RateGovernor
from cogs.moodchat.models import Emotion, ExchangeResult, Role, UsageSnapshot
from cogs.moodchat.models.session import Failed, Idle, Pending, Ready, SessionConfiguration
from cogs.moodchat.services.session_controller import SessionController
from cogs.moodchat.storage import SettingsStorage

from .conftest import FakeCatalog, FakeSettings

REPLY = "topic:Greeting: body:Hello there: emotion:GREEN:"


class ScriptedSend:
    """Send capability returning queued results or raising queued errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [ExchangeResult(text=REPLY)]
        self.calls = []

    async def __call__(self, conversation, options):
        self.calls.append((conversation, options))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class GatedSend:
    """Send capability that blocks until released."""

    def __init__(self, text=REPLY):
        self.text = text
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, conversation, options):
        self.started.set()
        await self.release.wait()
        return ExchangeResult(text=self.text)


@pytest.mark.asyncio
async def test_submit_success_moves_to_ready():
    send = ScriptedSend()
    controller = SessionController(send)

    state = await controller.submit("Hi")

    assert isinstance(state, Ready)
    assert state.current_topic == "Greeting"
    assert len(state.conversation) == 2

    user, reply = state.conversation
    assert user.role is Role.USER and user.text == "Hi"
    assert reply.role is Role.ASSISTANT
    assert reply.body == "Hello there"
    assert reply.emotion is Emotion.GREEN
    assert reply.temperature == 0.7


@pytest.mark.asyncio
async def test_submit_passes_conversation_and_options():
    send = ScriptedSend()
    defaults = SessionConfiguration(temperature=1.2, system_prompt="Be brief", provider="groq")
    controller = SessionController(send, defaults=defaults)

    await controller.submit("Hi")

    conversation, options = send.calls[0]
    assert [message.text for message in conversation] == ["Hi"]
    assert options.temperature == 1.2
    assert options.system_prompt == "Be brief"
    assert options.provider == "groq"
    assert options.model is None


@pytest.mark.asyncio
async def test_state_is_pending_while_waiting():
    send = GatedSend()
    controller = SessionController(send)

    task = asyncio.create_task(controller.submit("Hi"))
    await send.started.wait()

    assert isinstance(controller.state, Pending)
    assert len(controller.state.conversation) == 1

    send.release.set()
    state = await task
    assert isinstance(state, Ready)


@pytest.mark.asyncio
async def test_pending_carries_previous_topic():
    send = GatedSend()
    controller = SessionController(send)
    send.release.set()
    await controller.submit("Hi")

    send.release.clear()
    send.started.clear()
    task = asyncio.create_task(controller.submit("And now?"))
    await send.started.wait()

    assert controller.current_topic() == "Greeting"

    send.release.set()
    await task


@pytest.mark.asyncio
async def test_failure_keeps_user_message():
    send = ScriptedSend(UpstreamTimeoutException("gateway", 180))
    controller = SessionController(send)

    state = await controller.submit("Hi")

    assert isinstance(state, Failed)
    assert state.error.kind is ErrorKind.UPSTREAM_TIMEOUT
    assert state.error.message == MESSAGES["en"][ErrorKind.UPSTREAM_TIMEOUT]
    assert [message.text for message in state.conversation] == ["Hi"]
    assert controller.current_topic() is None


@pytest.mark.asyncio
async def test_failure_uses_session_locale():
    send = ScriptedSend(ConnectionRefusedError("Connection refused"))
    controller = SessionController(send, locale="ru")

    state = await controller.submit("Привет")

    assert state.error.kind is ErrorKind.UPSTREAM_UNREACHABLE
    assert state.error.message == MESSAGES["ru"][ErrorKind.UPSTREAM_UNREACHABLE]


@pytest.mark.asyncio
async def test_retry_after_failure():
    send = ScriptedSend(ConnectionRefusedError("Connection refused"), ExchangeResult(text=REPLY))
    controller = SessionController(send)

    await controller.submit("Hi")
    state = await controller.submit("Hi again")

    assert isinstance(state, Ready)
    assert [message.text for message in state.conversation][:2] == ["Hi", "Hi again"]
    assert len(state.conversation) == 3


@pytest.mark.asyncio
async def test_quota_exhausted_skips_send(clock):
    send = ScriptedSend()
    governor = RateGovernor(daily_limit=1, clock=clock)
    controller = SessionController(send, governor=governor, identity="42")

    await controller.submit("first")
    state = await controller.submit("second")

    assert len(send.calls) == 1
    assert isinstance(state, Failed)
    assert state.error.kind is ErrorKind.QUOTA_EXCEEDED
    assert "Maximum 1 messages per day" in state.error.detail
    assert state.conversation[-1].text == "second"


@pytest.mark.asyncio
async def test_clear_during_pending_discards_late_reply():
    send = GatedSend()
    controller = SessionController(send)

    task = asyncio.create_task(controller.submit("Hi"))
    await send.started.wait()

    controller.clear()
    send.release.set()
    state = await task

    assert isinstance(state, Idle)
    assert state.conversation == ()
    assert isinstance(controller.state, Idle)


@pytest.mark.asyncio
async def test_clear_keeps_configuration():
    controller = SessionController(ScriptedSend())
    controller.set_temperature(1.5)
    await controller.submit("Hi")

    controller.clear()

    assert isinstance(controller.state, Idle)
    assert controller.config.temperature == 1.5


@pytest.mark.asyncio
async def test_submissions_are_serialized():
    send = GatedSend()
    controller = SessionController(send)

    first = asyncio.create_task(controller.submit("one"))
    await send.started.wait()
    second = asyncio.create_task(controller.submit("two"))
    await asyncio.sleep(0)

    assert len(controller.state.conversation) == 1

    send.release.set()
    await first
    state = await second

    assert isinstance(state, Ready)
    assert [message.text for message in state.conversation if message.is_user] == ["one", "two"]
    assert len(state.conversation) == 4


@pytest.mark.asyncio
async def test_outer_cancellation_fails_session():
    send = GatedSend()
    controller = SessionController(send)

    task = asyncio.create_task(controller.submit("Hi"))
    await send.started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert isinstance(controller.state, Failed)
    assert controller.state.error.detail == "Exchange cancelled"


@pytest.mark.asyncio
async def test_usage_from_exchange_result():
    usage = UsageSnapshot(10, 5, 15, False, 64000, 0.0)
    controller = SessionController(ScriptedSend(ExchangeResult(text=REPLY, usage=usage)))

    state = await controller.submit("Hi")

    assert state.conversation[-1].usage is usage


@pytest.mark.asyncio
async def test_usage_from_raw_counts():
    result = ExchangeResult(
        text=REPLY,
        model="deepseek-chat",
        raw_usage={"prompt_tokens": 20, "completion_tokens": 12, "total_tokens": 32},
    )
    controller = SessionController(ScriptedSend(result))

    state = await controller.submit("Hi")
    usage = state.conversation[-1].usage

    assert usage.estimated is False
    assert usage.total_tokens == 32
    assert usage.max_context_tokens == 64000


@pytest.mark.asyncio
async def test_usage_estimated_without_counts():
    controller = SessionController(ScriptedSend(ExchangeResult(text="plain answer")))

    state = await controller.submit("Hi")
    usage = state.conversation[-1].usage

    assert usage.estimated is True
    assert usage.prompt_tokens > 0
    assert usage.total_tokens == usage.prompt_tokens + usage.completion_tokens


@pytest.mark.asyncio
async def test_delete_message_at():
    controller = SessionController(ScriptedSend())
    await controller.submit("Hi")

    controller.delete_message_at(0)

    assert isinstance(controller.state, Ready)
    assert len(controller.state.conversation) == 1
    assert controller.state.conversation[0].role is Role.ASSISTANT


@pytest.mark.asyncio
async def test_delete_message_out_of_range_is_ignored():
    controller = SessionController(ScriptedSend())
    await controller.submit("Hi")
    before = controller.state

    controller.delete_message_at(5)
    controller.delete_message_at(-1)

    assert controller.state is before


@pytest.mark.asyncio
async def test_set_temperature_is_clamped_and_persisted():
    settings = FakeSettings()
    controller = SessionController(ScriptedSend(), settings=settings)

    controller.set_temperature(3.5)
    await controller.wait_for_persistence()

    assert controller.config.temperature == 2.0
    assert settings.saved == [("temperature", 2.0)]


@pytest.mark.asyncio
async def test_setters_persist_each_field():
    settings = FakeSettings()
    controller = SessionController(ScriptedSend(), settings=settings)

    controller.set_system_prompt("Talk like a pirate")
    controller.set_provider("huggingface")
    controller.set_model("Qwen/Qwen2.5-7B-Instruct")
    await controller.wait_for_persistence()

    assert controller.config.system_prompt == "Talk like a pirate"
    assert controller.config.provider == "huggingface"
    assert controller.config.model == "Qwen/Qwen2.5-7B-Instruct"
    assert sorted(field for field, _ in settings.saved) == ["model", "provider", "systemPrompt"]


@pytest.mark.asyncio
async def test_save_failure_does_not_block_update():
    settings = FakeSettings(fail_save=True)
    controller = SessionController(ScriptedSend(), settings=settings)

    controller.set_temperature(0.2)
    await controller.wait_for_persistence()

    assert controller.config.temperature == 0.2


@pytest.mark.asyncio
async def test_load_settings_overlays_stored_values():
    settings = FakeSettings({"temperature": 1.1, "systemPrompt": "Stored", "model": "deepseek-reasoner"})
    controller = SessionController(ScriptedSend(), settings=settings)

    await controller.load_settings()

    assert controller.config.temperature == 1.1
    assert controller.config.system_prompt == "Stored"
    assert controller.config.provider == "deepseek"
    assert controller.config.model == "deepseek-reasoner"


@pytest.mark.asyncio
async def test_load_settings_uses_defaults_for_invalid_values():
    settings = FakeSettings({"temperature": "hot", "provider": ""})
    defaults = SessionConfiguration(temperature=0.9, provider="groq")
    controller = SessionController(ScriptedSend(), settings=settings, defaults=defaults)

    await controller.load_settings()

    assert controller.config.temperature == 0.9
    assert controller.config.provider == "groq"


@pytest.mark.asyncio
async def test_load_settings_clamps_stored_temperature():
    controller = SessionController(ScriptedSend(), settings=FakeSettings({"temperature": 9}))

    await controller.load_settings()

    assert controller.config.temperature == 2.0


@pytest.mark.asyncio
async def test_load_settings_failure_keeps_state():
    controller = SessionController(ScriptedSend(), settings=FakeSettings(fail_load=True))
    before = controller.state

    await controller.load_settings()

    assert controller.state is before


@pytest.mark.asyncio
async def test_load_models():
    catalog = FakeCatalog()
    controller = SessionController(ScriptedSend(), catalog=catalog)

    await controller.load_models()

    assert controller.config.available_models == catalog.catalog


@pytest.mark.asyncio
async def test_load_models_failure_is_ignored():
    controller = SessionController(ScriptedSend(), catalog=FakeCatalog(error=OSError("offline")))

    await controller.load_models()

    assert controller.config.available_models is None
    assert isinstance(controller.state, Idle)


@pytest.mark.asyncio
async def test_rapid_setter_calls_persist_the_last_value(tmp_path):
    storage = SettingsStorage(str(tmp_path))

    for trial in range(10):
        identity = f"user-{trial}"
        controller = SessionController(ScriptedSend(), settings=storage.for_identity(identity))
        for step in range(40):
            controller.set_temperature(step * 0.05)
        await controller.wait_for_persistence()

        stored = await storage.load(identity)
        assert stored["temperature"] == controller.config.temperature
