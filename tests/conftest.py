"""
Pytest configuration and fixtures
"""
from datetime import date, timedelta

import pytest

from cogs.moodchat.core.config import ChatConfig
from cogs.moodchat.services import token_accountant

PROVIDER_ENV = (
    "DEEPSEEK_API_KEY",
    "HUGGINGFACE_API_KEY",
    "GROQ_API_KEY",
    "DEEPSEEK_MODEL",
    "HUGGINGFACE_MODEL",
    "DEFAULT_PROVIDER",
    "DAILY_MESSAGE_LIMIT",
    "PORT",
    "MOODCHAT_GATEWAY_URL",
)


class FixedClock:
    """Controllable replacement for the governor's UTC date."""

    def __init__(self, today: date = date(2025, 1, 15)):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int = 1) -> None:
        self.today += timedelta(days=days)


class FakeSettings:
    """In-memory settings capability."""

    def __init__(self, stored=None, fail_load=False, fail_save=False):
        self.stored = dict(stored or {})
        self.fail_load = fail_load
        self.fail_save = fail_save
        self.saved = []

    async def load(self):
        if self.fail_load:
            raise OSError("settings unavailable")
        return dict(self.stored)

    async def save(self, field, value):
        if self.fail_save:
            raise OSError("disk full")
        self.saved.append((field, value))
        self.stored[field] = value
        return True


class FakeCatalog:
    def __init__(self, catalog=None, error=None):
        self.catalog = catalog if catalog is not None else {
            "providers": {"deepseek": {"name": "DeepSeek", "models": ["deepseek-chat"], "presets": {}}},
            "defaultProvider": "deepseek",
        }
        self.error = error
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.catalog

    async def aclose(self):
        pass


@pytest.fixture(autouse=True)
def heuristic_tokenizer(monkeypatch):
    """Keep tests offline: tiktoken downloads its encodings on first use."""
    def unavailable(model):
        raise RuntimeError("tiktoken disabled in tests")

    monkeypatch.setattr(token_accountant, "_load_encoding", unavailable)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def clean_env(monkeypatch):
    for name in PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def chat_config(clean_env, tmp_path):
    """ChatConfig with defaults and fake provider keys."""
    clean_env.setenv("DEEPSEEK_API_KEY", "ds-key")
    clean_env.setenv("HUGGINGFACE_API_KEY", "hf-key")
    return ChatConfig(str(tmp_path / "missing.ini"))
