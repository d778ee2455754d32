"""JSON-based persistent storage for per-user session settings."""

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = ("temperature", "systemPrompt", "provider", "model")


class SettingsStorage:
    """Stores ``{identity: {temperature, systemPrompt, provider, model}}`` in one JSON file."""

    def __init__(self, storage_dir: str = "data/moodchat"):
        """
        Initialize storage with a directory path.

        Args:
            storage_dir: Directory to store the settings file
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.settings_file = self.storage_dir / "settings.json"
        # Serializes read-modify-write cycles coming from executor threads
        self._lock = threading.Lock()
        # Hands writes to the executor one at a time, in call order
        self._write_lock = asyncio.Lock()

    def _load_all(self) -> Dict[str, Dict[str, Any]]:
        if not self.settings_file.exists():
            return {}
        with open(self.settings_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.settings_file} does not contain a JSON object")
        return data

    def _sync_load(self, identity: str) -> Dict[str, Any]:
        with self._lock:
            record = self._load_all().get(identity) or {}
        return {key: value for key, value in record.items() if key in SETTINGS_FIELDS}

    def _sync_save(self, identity: str, field: str, value: Any) -> None:
        with self._lock:
            settings = self._load_all()
            settings.setdefault(identity, {})[field] = value
            tmp_file = self.settings_file.with_suffix(".tmp")
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(settings, f, indent=2, ensure_ascii=False)
            tmp_file.replace(self.settings_file)

    async def load(self, identity: str) -> Dict[str, Any]:
        """
        Load the persisted settings of an identity.

        Raises:
            OSError, ValueError: If the settings file cannot be read
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._sync_load, str(identity))

    async def save(self, identity: str, field: str, value: Any) -> bool:
        """
        Persist one settings field.

        Returns:
            True on success, False if the field is unknown or the write failed
        """
        if field not in SETTINGS_FIELDS:
            logger.warning(f"Refusing to save unknown settings field {field!r}")
            return False
        try:
            loop = asyncio.get_running_loop()
            async with self._write_lock:
                await loop.run_in_executor(None, self._sync_save, str(identity), field, value)
            return True
        except Exception as e:
            logger.error(f"Failed to save {field} for {identity}: {e}")
            return False

    def for_identity(self, identity: Any) -> "IdentitySettings":
        """Settings capability bound to one identity."""
        return IdentitySettings(self, str(identity))


class IdentitySettings:
    """The ``load``/``save`` capability a session controller consumes."""

    def __init__(self, storage: SettingsStorage, identity: str):
        self.storage = storage
        self.identity = identity

    async def load(self) -> Dict[str, Any]:
        return await self.storage.load(self.identity)

    async def save(self, field: str, value: Any) -> bool:
        return await self.storage.save(self.identity, field, value)
