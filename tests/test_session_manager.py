"""
Tests for the per-identity session cache
"""
import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from cogs.moodchat.core.config import ChatConfig
from cogs.moodchat.models import ExchangeResult
from cogs.moodchat.models.session import SessionConfiguration
from cogs.moodchat.services.session_manager import SessionManager
from cogs.moodchat.storage import SettingsStorage

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


async def echo_send(conversation, options):
    return ExchangeResult(text=f"topic:Echo: body:{conversation[-1].text}: emotion:BLUE:")


@pytest.mark.asyncio
async def test_get_returns_cached_controller():
    manager = SessionManager(echo_send)

    first = await manager.get(42)
    second = await manager.get("42")

    assert first is second
    assert manager.identities() == ["42"]
    assert first.identity == "42"


@pytest.mark.asyncio
async def test_sessions_are_independent():
    manager = SessionManager(echo_send)

    alice = await manager.get(1)
    bob = await manager.get(2)
    await alice.submit("hello")

    assert len(alice.state.conversation) == 2
    assert bob.state.conversation == ()


@pytest.mark.asyncio
async def test_new_session_loads_persisted_settings(tmp_path):
    storage = SettingsStorage(str(tmp_path))
    await storage.save("7", "temperature", 1.8)
    manager = SessionManager(echo_send, storage=storage)

    controller = await manager.get(7)

    assert controller.config.temperature == 1.8


@pytest.mark.asyncio
async def test_settings_changes_are_persisted(tmp_path):
    storage = SettingsStorage(str(tmp_path))
    manager = SessionManager(echo_send, storage=storage)

    controller = await manager.get(7)
    controller.set_provider("groq")
    await manager.wait_for_persistence()

    assert await storage.load("7") == {"provider": "groq"}


@pytest.mark.asyncio
async def test_defaults_apply_to_new_sessions():
    defaults = SessionConfiguration(temperature=0.3, system_prompt="Short answers")
    manager = SessionManager(echo_send, defaults=defaults)

    controller = await manager.get(1)

    assert controller.config.temperature == 0.3
    assert controller.config.system_prompt == "Short answers"


def test_defaults_from_config():
    config = SimpleNamespace(
        default_temperature=5.0,
        default_system_prompt="Prompt",
        default_provider="huggingface",
    )

    defaults = SessionManager.defaults_from_config(config)

    assert defaults.temperature == 2.0
    assert defaults.system_prompt == "Prompt"
    assert defaults.provider == "huggingface"


@pytest.mark.asyncio
async def test_drop_and_peek():
    manager = SessionManager(echo_send)
    await manager.get(1)

    assert manager.peek(1) is not None
    assert manager.drop(1) is True
    assert manager.drop(1) is False
    assert manager.peek(1) is None


@pytest.mark.asyncio
async def test_drop_all():
    manager = SessionManager(echo_send)
    await asyncio.gather(manager.get(1), manager.get(2), manager.get(3))

    assert manager.drop_all() == 3
    assert manager.identities() == []


@pytest.mark.asyncio
async def test_shipped_config_loads_empty_prompt_for_new_users(clean_env, tmp_path):
    config = ChatConfig(str(CONFIG_DIR / "chat_config.ini"))
    manager = SessionManager(
        echo_send,
        storage=SettingsStorage(str(tmp_path)),
        defaults=SessionManager.defaults_from_config(config),
    )

    controller = await manager.get("u1")

    assert controller.config.system_prompt == ""
    assert controller.config.temperature == 0.7
    assert controller.config.provider == "deepseek"


class FakeMonotonic:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_evict_idle_drops_only_stale_sessions():
    clock = FakeMonotonic()
    manager = SessionManager(echo_send, clock=clock)
    await manager.get("old")
    clock.now += 500
    await manager.get("recent")
    clock.now += 600

    assert manager.evict_idle(1000) == 1
    assert manager.identities() == ["recent"]


@pytest.mark.asyncio
async def test_get_refreshes_idle_timer():
    clock = FakeMonotonic()
    manager = SessionManager(echo_send, clock=clock)
    first = await manager.get(1)
    clock.now += 900
    assert await manager.get(1) is first
    clock.now += 900

    assert manager.evict_idle(1000) == 0
    assert manager.peek(1) is first


@pytest.mark.asyncio
async def test_evict_idle_keeps_busy_sessions():
    clock = FakeMonotonic()
    release = asyncio.Event()

    async def slow_send(conversation, options):
        await release.wait()
        return ExchangeResult(text="topic:T: body:B: emotion:BLUE:")

    manager = SessionManager(slow_send, clock=clock)
    controller = await manager.get(1)
    submit = asyncio.create_task(controller.submit("Hi"))
    await asyncio.sleep(0)
    clock.now += 5000

    assert controller.busy is True
    assert manager.evict_idle(1000) == 0

    release.set()
    await submit
    assert manager.evict_idle(1000) == 1
